"""Domain-specific errors for bop."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bop.core.model import KernelParamBackup


class BopError(Exception):
    """Base error for bop."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class SysfsReadError(BopError):
    """Raised when a sysfs/procfs file exists but cannot be read."""


class SysfsWriteError(BopError):
    """Raised when writing a sysfs/procfs value fails."""


class ParseError(BopError):
    """Raised when kernel-provided text cannot be parsed."""


class DetectionError(BopError):
    """Raised when hardware or bootloader detection cannot proceed."""


class NotRootError(BopError):
    """Raised when a mutating operation is attempted without UID 0."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"'{operation}' must be run as root (try: sudo bop {operation})")
        self.operation = operation


class ConflictingServiceError(BopError):
    """Raised when another power manager is active."""


class StateError(BopError):
    """Raised on journal I/O or schema problems."""


class BootloaderError(BopError):
    """Raised when reading, editing, or regenerating boot configuration fails.

    ``backups`` holds the byte-exact originals of every file already rewritten
    when the failure happened, so callers can still journal them.
    """

    def __init__(
        self,
        message: str,
        *,
        path: str | None = None,
        backups: Sequence[KernelParamBackup] = (),
    ) -> None:
        super().__init__(message, path=path)
        self.backups = tuple(backups)


class CommandError(BopError):
    """Raised when an external command is missing or exits non-zero."""


class ConfigError(BopError):
    """Raised when the configuration file is unreadable or invalid."""


class ProfileValidationError(BopError):
    """Raised when a hardware profile file does not conform to schema or semantics."""
