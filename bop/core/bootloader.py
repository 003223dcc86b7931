"""Kernel command-line editing for systemd-boot and GRUB.

Every file is backed up byte-for-byte before its first rewrite. Lines that
need no change are never re-serialized, so operator formatting survives.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Sequence
from enum import Enum
from functools import partial
from subprocess import CompletedProcess

from bop.core import commands
from bop.core.errors import BootloaderError, BopError
from bop.core.fsroot import FsRoot
from bop.core.model import KernelParamBackup

LOGGER = logging.getLogger(__name__)

ENTRIES_DIR = "/boot/loader/entries"
GRUB_DEFAULT = "/etc/default/grub"
GRUB_CFG_CANDIDATES = ("/boot/grub/grub.cfg", "/boot/grub2/grub.cfg")
GRUB_MKCONFIG = ("grub-mkconfig", "grub2-mkconfig")

_GRUB_LINE_RE = re.compile(r"^(\s*GRUB_CMDLINE_LINUX_DEFAULT=)(.*)$")

Runner = Callable[[Sequence[str]], "CompletedProcess[str] | None"]


class BootloaderKind(str, Enum):
    SYSTEMD_BOOT = "systemd-boot"
    GRUB = "grub"


def param_key(param: str) -> str:
    return param.split("=", 1)[0]


def add_params_to_tokens(tokens: Sequence[str], params: Iterable[str]) -> list[str]:
    """Keep exact matches, replace same-key tokens in place, append the rest."""
    result = list(tokens)
    for param in params:
        if param in result:
            continue
        key = param_key(param)
        replaced = False
        for idx, token in enumerate(result):
            if param_key(token) == key:
                result[idx] = param
                replaced = True
        if not replaced:
            result.append(param)
    return result


def remove_params_from_tokens(tokens: Sequence[str], params: Iterable[str]) -> list[str]:
    keys = {param_key(p) for p in params}
    return [token for token in tokens if param_key(token) not in keys]


def _split_cr(line: str) -> tuple[str, str]:
    if line.endswith("\r"):
        return line[:-1], "\r"
    return line, ""


def _is_options_line(line: str) -> bool:
    parts = line.split(None, 1)
    return bool(parts) and parts[0] == "options" and not line[:1].isspace()


def _edit_options_line(line: str, edit: Callable[[list[str]], list[str]]) -> str:
    body, cr = _split_cr(line)
    tokens = body.split()[1:]
    new_tokens = edit(tokens)
    if new_tokens == tokens:
        return line
    return " ".join(["options", *new_tokens]) + cr


def edit_systemd_boot_entry(
    content: str,
    edit: Callable[[list[str]], list[str]],
    *,
    path: str,
    all_lines: bool = False,
) -> str:
    """Apply ``edit`` to the ``options`` line(s) of a loader entry."""
    lines = content.split("\n")
    found = False
    for idx, line in enumerate(lines):
        if not _is_options_line(line):
            continue
        if found and not all_lines:
            break
        found = True
        lines[idx] = _edit_options_line(line, edit)
    if not found:
        if all_lines:
            return content
        raise BootloaderError(f"no 'options' line found in {path}", path=path)
    return "\n".join(lines)


def _edit_grub_line(line: str, edit: Callable[[list[str]], list[str]], path: str) -> str:
    body, cr = _split_cr(line)
    match = _GRUB_LINE_RE.match(body)
    if match is None:
        return line
    prefix, rest = match.group(1), match.group(2)
    if rest[:1] in ('"', "'"):
        quote = rest[0]
        end = rest.find(quote, 1)
        if end == -1:
            raise BootloaderError(f"unterminated quote in GRUB_CMDLINE_LINUX_DEFAULT in {path}", path=path)
        value, suffix = rest[1:end], rest[end + 1:]
    else:
        quote = '"'
        value, _, tail = rest.partition(" ")
        suffix = f" {tail}" if tail else ""
    tokens = value.split()
    new_tokens = edit(tokens)
    if new_tokens == tokens:
        return line
    return f"{prefix}{quote}{' '.join(new_tokens)}{quote}{suffix}{cr}"


def edit_grub_default(
    content: str,
    edit: Callable[[list[str]], list[str]],
    *,
    path: str,
    required: bool = True,
) -> str:
    """Edit the effective (last) GRUB_CMDLINE_LINUX_DEFAULT assignment only."""
    lines = content.split("\n")
    targets = [idx for idx, line in enumerate(lines) if _GRUB_LINE_RE.match(_split_cr(line)[0])]
    if not targets:
        if required:
            raise BootloaderError(f"no GRUB_CMDLINE_LINUX_DEFAULT line found in {path}", path=path)
        return content
    idx = targets[-1]
    lines[idx] = _edit_grub_line(lines[idx], edit, path)
    return "\n".join(lines)


class BootloaderEditor:
    def __init__(self, fs: FsRoot, *, runner: Runner | None = None) -> None:
        self.fs = fs
        self.runner = runner or commands.run_command

    def detect(self) -> BootloaderKind:
        if self.fs.is_dir(ENTRIES_DIR):
            return BootloaderKind.SYSTEMD_BOOT
        if self.fs.exists(GRUB_DEFAULT):
            return BootloaderKind.GRUB
        raise BootloaderError(
            f"no supported bootloader found (looked for {ENTRIES_DIR} and {GRUB_DEFAULT})"
        )

    def _entry_paths(self) -> list[str]:
        try:
            names = self.fs.list_dir(ENTRIES_DIR)
        except BopError as exc:
            raise BootloaderError(f"failed to read entries dir {ENTRIES_DIR}: {exc}", path=ENTRIES_DIR) from exc
        return [f"{ENTRIES_DIR}/{name}" for name in names if name.endswith(".conf")]

    def _read(self, path: str) -> str:
        try:
            return self.fs.read_raw(path)
        except OSError as exc:
            raise BootloaderError(f"failed to read {path}: {exc}", path=path) from exc

    def add_kernel_params(self, params: Sequence[str]) -> list[KernelParamBackup]:
        """Add ``params`` and return a backup for every file rewritten."""
        params = list(params)
        if not params:
            return []
        kind = self.detect()
        LOGGER.debug("adding kernel params %s via %s", params, kind.value)
        edit = partial(add_params_to_tokens, params=params)

        if kind is BootloaderKind.SYSTEMD_BOOT:
            paths = self._entry_paths()
            if not paths:
                raise BootloaderError(f"no .conf files found in {ENTRIES_DIR}", path=ENTRIES_DIR)
            pending = []
            for path in paths:
                content = self._read(path)
                new_content = edit_systemd_boot_entry(content, edit, path=path)
                if new_content != content:
                    pending.append((path, content, new_content))
            return self._write_all(pending)

        content = self._read(GRUB_DEFAULT)
        new_content = edit_grub_default(content, edit, path=GRUB_DEFAULT)
        if new_content == content:
            return []
        backups = self._write_all([(GRUB_DEFAULT, content, new_content)])
        self.regenerate_grub(backups=backups)
        return backups

    def _write_all(self, pending: Sequence[tuple[str, str, str]]) -> list[KernelParamBackup]:
        backups: list[KernelParamBackup] = []
        for path, original, new_content in pending:
            backups.append(KernelParamBackup(path=path, original_content=original))
            try:
                self.fs.write(path, new_content)
            except BopError as exc:
                LOGGER.warning("writing %s failed, rolling back %d file(s)", path, len(backups))
                try:
                    self._restore_files(backups)
                except BootloaderError as rollback_exc:
                    raise BootloaderError(
                        f"failed to write {path}: {exc}; rollback incomplete: {rollback_exc}",
                        path=path,
                        backups=rollback_exc.backups,
                    ) from exc
                raise BootloaderError(f"failed to write {path}: {exc}", path=path) from exc
        return backups

    def remove_kernel_params(self, params: Sequence[str]) -> list[str]:
        """Strip every token whose key matches one of ``params``; returns rewritten paths."""
        params = list(params)
        if not params:
            return []
        kind = self.detect()
        edit = partial(remove_params_from_tokens, params=params)
        touched: list[str] = []

        if kind is BootloaderKind.SYSTEMD_BOOT:
            for path in self._entry_paths():
                content = self._read(path)
                new_content = edit_systemd_boot_entry(content, edit, path=path, all_lines=True)
                if new_content != content:
                    self._write(path, new_content)
                    touched.append(path)
            return touched

        content = self._read(GRUB_DEFAULT)
        new_content = edit_grub_default(content, edit, path=GRUB_DEFAULT, required=False)
        if new_content != content:
            self._write(GRUB_DEFAULT, new_content)
            touched.append(GRUB_DEFAULT)
            self.regenerate_grub()
        return touched

    def _write(self, path: str, content: str) -> None:
        try:
            self.fs.write(path, content)
        except BopError as exc:
            raise BootloaderError(f"failed to write {path}: {exc}", path=path) from exc

    def _restore_files(self, backups: Sequence[KernelParamBackup]) -> list[KernelParamBackup]:
        failed: list[KernelParamBackup] = []
        errors: list[str] = []
        for backup in backups:
            try:
                self.fs.write(backup.path, backup.original_content)
            except BopError as exc:
                failed.append(backup)
                errors.append(f"{backup.path}: {exc}")
        if errors:
            raise BootloaderError(
                f"failed to restore {len(errors)} of {len(backups)} entries: {'; '.join(errors)}",
                backups=failed,
            )
        return [b for b in backups if b not in failed]

    def restore_backups(self, backups: Sequence[KernelParamBackup]) -> None:
        """Write every backup back, then regenerate grub.cfg if GRUB was touched.

        Every entry is attempted; on failure ``BootloaderError.backups`` lists
        the entries that still need restoring.
        """
        failed: list[KernelParamBackup] = []
        errors: list[str] = []
        try:
            restored = self._restore_files(backups)
        except BootloaderError as exc:
            failed.extend(exc.backups)
            errors.append(str(exc))
            restored = [b for b in backups if b not in exc.backups]

        grub_restored = [b for b in restored if b.path == GRUB_DEFAULT]
        if grub_restored:
            try:
                self.regenerate_grub()
            except BootloaderError as exc:
                failed.extend(grub_restored)
                errors.append(str(exc))
        if errors:
            raise BootloaderError("; ".join(errors), backups=failed)

    def grub_cfg_path(self) -> str:
        for candidate in GRUB_CFG_CANDIDATES:
            if self.fs.exists(candidate):
                return candidate
        LOGGER.warning("no existing grub.cfg found, defaulting to %s", GRUB_CFG_CANDIDATES[0])
        return GRUB_CFG_CANDIDATES[0]

    def regenerate_grub(self, *, backups: Sequence[KernelParamBackup] = ()) -> None:
        cfg = self.grub_cfg_path()
        for tool in GRUB_MKCONFIG:
            result = self.runner([tool, "-o", cfg])
            if result is None:
                continue
            if result.returncode != 0:
                stderr = (result.stderr or "").strip()
                raise BootloaderError(
                    f"{tool} -o {cfg} failed with status {result.returncode}"
                    + (f": {stderr}" if stderr else "")
                    + f"; restore {GRUB_DEFAULT} from the journal with 'bop revert'",
                    path=cfg,
                    backups=backups,
                )
            LOGGER.debug("regenerated %s with %s", cfg, tool)
            return
        raise BootloaderError(
            f"neither {' nor '.join(GRUB_MKCONFIG)} is installed; cannot regenerate {cfg}",
            path=cfg,
            backups=backups,
        )
