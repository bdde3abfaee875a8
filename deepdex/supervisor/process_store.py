"""JSON-backed process record table shared across CLI invocations."""

from __future__ import annotations

import json
import logging
import shutil
from pathlib import Path

from deepdex.config import processes_path

from .models import ProcessStore

logger = logging.getLogger("deepdex.supervisor.process_store")


def empty_store() -> ProcessStore:
    return ProcessStore()


class ProcessRecordStore:
    """Load/save pair around the single process store file.

    There is no locking: concurrent invocations follow last-writer-wins.
    Writes go through a temp file and ``replace`` so readers never see a
    truncated document.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or processes_path()

    def load(self) -> ProcessStore:
        """Read the store; absent or invalid content yields an empty store."""
        if not self.path.exists():
            return empty_store()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable process store %s: %s", self.path, exc)
            self._backup_unusable()
            return empty_store()
        if not isinstance(raw, dict):
            logger.warning("Ignoring process store %s: not an object", self.path)
            self._backup_unusable()
            return empty_store()
        try:
            return ProcessStore.model_validate(raw)
        except ValueError as exc:
            logger.warning("Ignoring invalid process store %s: %s", self.path, exc)
            self._backup_unusable()
            return empty_store()

    @property
    def backup_path(self) -> Path:
        return self.path.with_name(self.path.name + ".bak")

    def _backup_unusable(self) -> None:
        """Copy an unusable store aside so the next save does not destroy it."""
        try:
            shutil.copy2(self.path, self.backup_path)
        except OSError as exc:
            logger.warning("Could not back up process store %s: %s", self.path, exc)
            return
        logger.warning("Kept a copy of the unusable process store at %s", self.backup_path)

    def save(self, store: ProcessStore) -> None:
        """Overwrite the store file with the full serialized store."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".json.tmp")
        temp_path.write_text(json.dumps(store.to_json(), indent=2), encoding="utf-8")
        temp_path.replace(self.path)
