"""
Improvement Store - one JSON blob per ImprovementBatch.

Batch status only moves forward: pending -> applied | rejected. A finalised
batch is never re-opened and its items are never changed again.
"""
import logging
import uuid
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from services.content_store import atomic_write_text
from services.models import BATCH_STATUS_ORDER, ImprovementBatch, ImprovementStatus, utc_now
from utils.errors import InvalidTransitionError

logger = logging.getLogger(__name__)


def new_batch_id() -> str:
    return f"batch_{uuid.uuid4().hex[:12]}"


def new_improvement_id() -> str:
    return f"imp_{uuid.uuid4().hex[:12]}"


class ImprovementStore:
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, batch_id: str) -> Path:
        return self.directory / f"{batch_id}.json"

    def save(self, batch: ImprovementBatch) -> ImprovementBatch:
        """Persist a batch, refusing to move a stored batch backwards."""
        existing = self.get(batch.id)
        if existing is not None and existing.status != "pending":
            if batch.status != existing.status or batch.model_dump() != existing.model_dump():
                raise InvalidTransitionError(f"Batch {batch.id} is {existing.status} and cannot be modified")
        if existing is not None and BATCH_STATUS_ORDER[batch.status] < BATCH_STATUS_ORDER[existing.status]:
            raise InvalidTransitionError(f"Batch {batch.id} cannot move from {existing.status} to {batch.status}")
        atomic_write_text(self._path(batch.id), batch.model_dump_json(indent=2) + "\n")
        return batch

    def create(self, batch: ImprovementBatch) -> ImprovementBatch:
        if self._path(batch.id).exists():
            raise InvalidTransitionError(f"Batch {batch.id} already exists")
        if batch.status != "pending":
            raise InvalidTransitionError("New batches must start pending")
        self.save(batch)
        logger.info("Stored batch %s with %d improvements (%s)", batch.id, len(batch.improvements), ", ".join(batch.source_files))
        return batch

    def get(self, batch_id: str) -> Optional[ImprovementBatch]:
        path = self._path(batch_id)
        if not path.exists():
            return None
        try:
            return ImprovementBatch.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            logger.error("Batch file %s is invalid: %s", path, e)
            raise

    def list(self, status: Optional[str] = None) -> List[ImprovementBatch]:
        """All readable batches, oldest first. Unreadable batch files are logged and skipped."""
        if not self.directory.is_dir():
            return []
        batches = []
        for path in self.directory.glob("batch_*.json"):
            try:
                batch = self.get(path.stem)
            except (ValidationError, OSError) as e:
                logger.error("Skipping unreadable batch file %s: %s", path.name, e)
                continue
            if batch is not None and (status is None or batch.status == status):
                batches.append(batch)
        batches.sort(key=lambda b: (b.created_at, b.id))
        return batches

    def mark_items(
        self,
        batch: ImprovementBatch,
        updates: Dict[str, ImprovementStatus],
        errors: Optional[Dict[str, str]] = None,
    ) -> ImprovementBatch:
        """Set the status of pending items in a pending batch and persist it."""
        if batch.status != "pending":
            raise InvalidTransitionError(f"Batch {batch.id} is {batch.status}; its items are final")
        errors = errors or {}
        now = utc_now()
        for item in batch.improvements:
            if item.id not in updates:
                continue
            if item.status != "pending":
                raise InvalidTransitionError(f"Improvement {item.id} is already {item.status}")
            item.status = updates[item.id]
            item.processed_at = now
            if item.id in errors:
                item.error = errors[item.id]
        return self.save(batch)

    def finalise(self, batch: ImprovementBatch) -> ImprovementBatch:
        """
        Close a batch whose items are all processed.

        The batch becomes `rejected` when every item was rejected by a reviewer
        (or it holds no items at all), and `applied` otherwise. Batches with
        pending items are left untouched.
        """
        if batch.status != "pending" or not batch.all_processed:
            return batch
        if all(item.status == "rejected" for item in batch.improvements):
            batch.status = "rejected"
        else:
            batch.status = "applied"
        batch.finalised_at = utc_now()
        self.save(batch)
        logger.info("Batch %s finalised as %s", batch.id, batch.status)
        return batch

    def pending_batches(self) -> List[ImprovementBatch]:
        return self.list(status="pending")

