"""On-disk apply journal: (de)serialization, atomic persistence and merging."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from bop.core.errors import StateError
from bop.core.model import ApplyJournal, KernelParamBackup, SysfsChange
from bop.core.yamlio import validate

DEFAULT_STATE_FILE = Path("/var/lib/bop/state.json")
LOGGER = logging.getLogger(__name__)

_LIST_FIELDS = (
    "kernel_params_added",
    "services_disabled",
    "systemd_units_created",
    "modprobe_files_created",
    "acpi_wakeup_toggled",
)


def now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_journal() -> ApplyJournal:
    return ApplyJournal(timestamp=now_rfc3339())


def journal_to_dict(journal: ApplyJournal) -> dict[str, Any]:
    data = asdict(journal)
    if journal.brightness_original is None:
        data.pop("brightness_original")
    return data


def journal_from_dict(doc: Any, *, source: str = "<journal>") -> ApplyJournal:
    """Build a journal from parsed JSON. Unknown keys are ignored and
    missing lists default to empty, so older journals load unchanged."""
    if not isinstance(doc, dict):
        raise StateError(f"journal {source} must contain a JSON object", path=source)
    validate(doc, "journal.schema.json", source, StateError)

    return ApplyJournal(
        timestamp=doc.get("timestamp", ""),
        sysfs_changes=[
            SysfsChange(
                path=entry["path"],
                original_value=entry["original_value"],
                new_value=entry["new_value"],
            )
            for entry in doc.get("sysfs_changes", [])
        ],
        kernel_param_backups=[
            KernelParamBackup(path=entry["path"], original_content=entry["original_content"])
            for entry in doc.get("kernel_param_backups", [])
        ],
        brightness_original=doc.get("brightness_original"),
        **{name: list(doc.get(name, [])) for name in _LIST_FIELDS},
    )


def merge_backups(
    prior: Iterable[KernelParamBackup],
    new: Iterable[KernelParamBackup],
) -> list[KernelParamBackup]:
    """Keep prior backups for untouched files; new backups win per path."""
    new = list(new)
    touched = {backup.path for backup in new}
    merged = [backup for backup in prior if backup.path not in touched]
    seen: set[str] = set()
    for backup in new:
        if backup.path in seen:
            continue
        seen.add(backup.path)
        merged.append(backup)
    return merged


class JournalStore:
    """Single-writer JSON store for the apply journal."""

    def __init__(self, path: str | Path = DEFAULT_STATE_FILE) -> None:
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> ApplyJournal | None:
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StateError(f"failed to read state file {self.path}: {exc}", path=str(self.path)) from exc
        try:
            doc = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateError(f"failed to parse state file {self.path}: {exc}", path=str(self.path)) from exc
        return journal_from_dict(doc, source=str(self.path))

    def save(self, journal: ApplyJournal) -> None:
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as fh:
                json.dump(journal_to_dict(journal), fh, indent=2)
                fh.write("\n")
            tmp.replace(self.path)
        except OSError as exc:
            raise StateError(f"failed to write state file {self.path}: {exc}", path=str(self.path)) from exc
        LOGGER.debug("journal saved to %s", self.path)

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            raise StateError(f"failed to remove state file {self.path}: {exc}", path=str(self.path)) from exc
        LOGGER.debug("journal %s removed", self.path)
