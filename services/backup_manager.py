"""
Backup Manager - byte-for-byte snapshots of content files and explicit restore.

Backups are named `<flattened-path>.<UTC timestamp>.backup` and carry a
`<backup_id>.json` sidecar describing the source file. They are retained
until someone prunes them.
"""
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from services.content_store import ContentStore, atomic_write_text
from services.models import BackupRecord

logger = logging.getLogger(__name__)

BACKUP_SUFFIX = ".backup"


class BackupManager:
    def __init__(self, directory: Path, store: ContentStore):
        self.directory = Path(directory)
        self.store = store

    def _sidecar(self, backup_id: str) -> Path:
        return self.directory / f"{backup_id}.json"

    def _open_exclusive(self, stem: str):
        """Create a new backup file, adding a numeric suffix if the name is taken."""
        self.directory.mkdir(parents=True, exist_ok=True)
        counter = 0
        while True:
            backup_id = stem if counter == 0 else f"{stem}-{counter}"
            target = self.directory / f"{backup_id}{BACKUP_SUFFIX}"
            try:
                return backup_id, target, open(target, "xb")
            except FileExistsError:
                counter += 1

    def snapshot(self, path: str) -> str:
        """
        Copy the current bytes of a content file into the backups directory.

        Args:
            path: Content-relative path

        Returns:
            The backup id

        Raises:
            FileNotFoundError: when the content file does not exist
        """
        rel = self.store.relative(path)
        data = self.store.read_bytes(rel)
        now = datetime.now(timezone.utc)
        flattened = rel.replace("/", "__")
        stem = f"{flattened}.{now.strftime('%Y%m%dT%H%M%S%fZ')}"

        backup_id, target, handle = self._open_exclusive(stem)
        with handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())

        record = BackupRecord(
            backup_id=backup_id,
            source=rel,
            backup_path=str(target),
            created_at=now.isoformat(),
            size=len(data),
        )
        atomic_write_text(self._sidecar(backup_id), record.model_dump_json(indent=2) + "\n")
        logger.info("Backed up %s to %s", rel, target.name)
        return backup_id

    def get(self, backup_id: str) -> Optional[BackupRecord]:
        sidecar = self._sidecar(backup_id)
        if "/" in backup_id or "\\" in backup_id or not sidecar.is_file():
            return None
        try:
            return BackupRecord.model_validate_json(sidecar.read_text(encoding="utf-8"))
        except (ValidationError, json.JSONDecodeError) as e:
            logger.warning("Backup metadata %s is unreadable: %s", sidecar, e)
            return None

    def list_backups(self, path: Optional[str] = None) -> List[BackupRecord]:
        """Backups newest first, optionally only those of one content file."""
        if not self.directory.is_dir():
            return []
        source = self.store.relative(path) if path else None
        records = []
        for sidecar in self.directory.glob("*.json"):
            record = self.get(sidecar.stem)
            if record is None:
                continue
            if source is None or record.source == source:
                records.append(record)
        records.sort(key=lambda r: (r.created_at, r.backup_id), reverse=True)
        return records

    def restore(self, backup_id: str) -> bool:
        """
        Overwrite the live file with the backup's bytes.

        Returns:
            True on success, False when the backup id is unknown
        """
        record = self.get(backup_id)
        if record is None:
            logger.warning("Backup %s not found; nothing restored", backup_id)
            return False
        backup_path = Path(record.backup_path)
        if not backup_path.is_file():
            logger.warning("Backup file %s is missing; nothing restored", backup_path)
            return False

        data = backup_path.read_bytes()
        target = self.store.resolve(record.source)
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(f".{target.name}.restore.tmp")
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, target)
        logger.info("Restored %s from backup %s", record.source, backup_id)
        return True
