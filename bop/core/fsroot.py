"""Rooted filesystem access for sysfs, procfs and configuration files.

Every other component reads and writes the machine through an ``FsRoot`` so
that a temporary directory can stand in for ``/`` in tests.
"""

from __future__ import annotations

import errno
import logging
import os
from pathlib import Path

from bop.core.errors import SysfsReadError, SysfsWriteError

LOGGER = logging.getLogger(__name__)


class FsRoot:
    def __init__(self, root: str | os.PathLike[str] = "/") -> None:
        self.root = Path(root)

    @classmethod
    def system(cls) -> FsRoot:
        return cls("/")

    def __repr__(self) -> str:
        return f"FsRoot({str(self.root)!r})"

    def path(self, rel: str | os.PathLike[str]) -> Path:
        """Join ``rel`` to the root; leading slashes are ignored."""
        return self.root / str(rel).lstrip("/")

    def read(self, rel: str) -> str:
        try:
            return self.path(rel).read_text(encoding="utf-8", errors="replace").strip()
        except OSError as exc:
            raise SysfsReadError(f"failed to read {rel}: {exc.strerror or exc}", path=rel) from exc

    def read_optional(self, rel: str) -> str | None:
        """Like :meth:`read` but returns None for missing or unreadable files."""
        try:
            return self.path(rel).read_text(encoding="utf-8", errors="replace").strip()
        except (FileNotFoundError, PermissionError):
            return None
        except OSError as exc:
            raise SysfsReadError(f"failed to read {rel}: {exc.strerror or exc}", path=rel) from exc

    def read_raw(self, rel: str) -> str:
        """Return the file content byte-for-byte, newlines untranslated.

        Bytes that are not UTF-8 come back as lone surrogates and are written
        out unchanged by :meth:`write`.
        """
        with self.path(rel).open("r", encoding="utf-8", errors="surrogateescape", newline="") as handle:
            return handle.read()

    def write(self, rel: str, value: str, *, create_parents: bool = False) -> None:
        target = self.path(rel)
        try:
            if create_parents:
                target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8", errors="surrogateescape", newline="") as handle:
                handle.write(value)
        except OSError as exc:
            raise SysfsWriteError(f"failed to write {rel}: {exc.strerror or exc}", path=rel) from exc
        LOGGER.debug("wrote %r to %s", value, target)

    def remove(self, rel: str, *, missing_ok: bool = True) -> None:
        try:
            self.path(rel).unlink(missing_ok=missing_ok)
        except OSError as exc:
            raise SysfsWriteError(f"failed to remove {rel}: {exc.strerror or exc}", path=rel) from exc

    def list_dir(self, rel: str, *, missing_ok: bool = False) -> list[str]:
        try:
            return sorted(os.listdir(self.path(rel)))
        except (FileNotFoundError, NotADirectoryError) as exc:
            if missing_ok:
                return []
            raise SysfsReadError(f"failed to list {rel}: {exc.strerror or exc}", path=rel) from exc
        except OSError as exc:
            if missing_ok and exc.errno == errno.EACCES:
                return []
            raise SysfsReadError(f"failed to list {rel}: {exc.strerror or exc}", path=rel) from exc

    def exists(self, rel: str) -> bool:
        return self.path(rel).exists()

    def is_dir(self, rel: str) -> bool:
        return self.path(rel).is_dir()

    def canonicalize(self, rel: str) -> Path:
        try:
            return self.path(rel).resolve(strict=True)
        except OSError as exc:
            raise SysfsReadError(f"failed to resolve {rel}: {exc.strerror or exc}", path=rel) from exc

    def read_link_name(self, rel: str) -> str | None:
        """Basename of a symlink target (e.g. a ``driver`` link), or None."""
        try:
            return Path(os.readlink(self.path(rel))).name
        except OSError:
            return None
