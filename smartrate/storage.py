"""
storage.py — Catalog persistence, backup and restore.

The catalog is kept in a small JSON key-value file: one object, one key
per thing we persist. Today that is only the catalog array under a
versioned key, but keeping the container generic means a future key
(saved quotations, user preferences) will not need a new file format.

Backups are the same array, pretty-printed, in a dated file the user
keeps somewhere safe. Restoring replaces the whole catalog, so we parse
and validate everything first and only swap after the caller confirms.
A bad file never touches the store.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from smartrate.catalog import CatalogStore
from smartrate.config import config
from smartrate.schemas import CatalogBackup, RateEntry

logger = logging.getLogger(__name__)

INVALID_BACKUP_MESSAGE = "Invalid backup file."


class RestoreError(ValueError):
    """Backup text is not JSON, not an array, or holds a bad record."""

    def __init__(self, detail: str = ""):
        super().__init__(INVALID_BACKUP_MESSAGE)
        self.detail = detail


class KeyValueStore:
    """
    JSON-object file used as a local key-value store.

    Writes go to a temp file in the same directory and are moved into
    place with os.replace, so a crash mid-write leaves the old file.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or config.storage.store_path)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def set_aside(self, move: bool = False) -> Optional[Path]:
        """
        Keep the current file next to the store as <name>.corrupt-<stamp>.

        Called when the file cannot be trusted, before anything can be
        saved over it. move=True renames it away (the store then starts
        from nothing); otherwise a copy is left and the file stays put.
        """
        if not self.path.exists():
            return None
        stamp = time.strftime("%Y%m%d-%H%M%S")
        aside = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        n = 1
        while aside.exists():
            aside = self.path.with_name(f"{self.path.name}.corrupt-{stamp}-{n}")
            n += 1
        if move:
            os.replace(self.path, aside)
        else:
            shutil.copy2(self.path, aside)
        logger.error("Unreadable store contents kept at %s", aside)
        return aside

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            logger.error("Store file %s is corrupt (%s); starting empty.", self.path, exc)
            self.set_aside(move=True)
            return {}
        if not isinstance(data, dict):
            logger.error("Store file %s is not a JSON object; starting empty.", self.path)
            self.set_aside(move=True)
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        os.makedirs(self.path.parent, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise


def load_catalog(store: KeyValueStore, key: Optional[str] = None) -> CatalogStore:
    """
    Load the persisted catalog. A missing key is an empty catalog.

    A value that fails to parse is logged and copied aside rather than
    crashing the app on startup, so the next save cannot destroy it; the
    user can still restore a backup.
    """
    key = key or config.storage.catalog_key
    raw = store.get(key)
    if raw is None:
        logger.info("No saved catalog under '%s'; starting empty.", key)
        return CatalogStore()
    try:
        entries = parse_backup(raw)
    except RestoreError as exc:
        logger.error("Failed to load saved catalog: %s", exc.detail)
        store.set_aside()
        return CatalogStore()
    logger.info("Loaded %d rates from %s", len(entries), store.path)
    return CatalogStore(entries)


def save_catalog(store: KeyValueStore, catalog: CatalogStore, key: Optional[str] = None) -> None:
    key = key or config.storage.catalog_key
    payload = json.dumps(
        [e.model_dump(by_alias=True) for e in catalog.entries],
        ensure_ascii=False,
    )
    store.set(key, payload)
    logger.debug("Saved %d rates under '%s'", len(catalog), key)


def parse_backup(text: str) -> List[RateEntry]:
    """
    Parse backup JSON into RateEntry records.

    Raises RestoreError for anything that is not a JSON array of valid
    entries. Entry order is preserved exactly.
    """
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError) as exc:
        raise RestoreError(f"not valid JSON: {exc}") from exc

    if not isinstance(data, list):
        raise RestoreError(f"expected a JSON array, got {type(data).__name__}")

    try:
        return CatalogBackup.model_validate({"entries": data}).entries
    except ValidationError as exc:
        raise RestoreError(f"bad entry in backup: {exc.error_count()} error(s)") from exc


def restore_catalog(
    catalog: CatalogStore,
    text: str,
    confirm: Callable[[int], bool],
) -> bool:
    """
    Replace the catalog with a backup after the user confirms.

    confirm() receives the number of entries about to be restored and
    returns True to go ahead. Returns whether the catalog was replaced.
    """
    entries = parse_backup(text)
    if not confirm(len(entries)):
        logger.info("Restore of %d rates cancelled by user.", len(entries))
        return False
    catalog.replace_all(entries)
    return True


def restore_prompt(count: int) -> str:
    return f"Restore {count} items? This will replace your current database."
