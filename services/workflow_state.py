"""
Persisted workflow state, one JSON record per workflow id.

The current stage lives on disk instead of in process memory so that several
workers (or a CLI next to the API) see the same stage.
"""
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from services.content_store import atomic_write_text
from services.models import WorkflowEvent, WorkflowState, utc_now

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class WorkflowStateStore:
    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, workflow_id: str) -> Path:
        if not _SAFE_ID.match(workflow_id) or workflow_id in (".", ".."):
            raise ValueError(f"Invalid workflow id: {workflow_id!r}")
        return self.directory / f"{workflow_id}.json"

    def load(self, workflow_id: str) -> WorkflowState:
        path = self._path(workflow_id)
        if not path.exists():
            return WorkflowState(workflow_id=workflow_id)
        try:
            return WorkflowState.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            logger.error("Workflow state %s is corrupt, starting from idle: %s", path, e)
            return WorkflowState(workflow_id=workflow_id)

    def save(self, state: WorkflowState) -> WorkflowState:
        state.updated_at = utc_now()
        atomic_write_text(self._path(state.workflow_id), state.model_dump_json(indent=2) + "\n")
        return state

    def set_stage(self, workflow_id: str, stage: str) -> WorkflowState:
        state = self.load(workflow_id)
        if state.current_stage != stage:
            logger.info("Workflow %s: %s -> %s", workflow_id, state.current_stage, stage)
        state.current_stage = stage
        return self.save(state)

    def record_event(
        self,
        workflow_id: str,
        action: str,
        details: Optional[Dict[str, Any]] = None,
        stage: Optional[str] = None,
        **fields: Any,
    ) -> WorkflowState:
        """Append a history event and optionally move the stage / update fields."""
        state = self.load(workflow_id)
        state.history.append(WorkflowEvent(action=action, details=details or {}))
        if stage is not None:
            if state.current_stage != stage:
                logger.info("Workflow %s: %s -> %s", workflow_id, state.current_stage, stage)
            state.current_stage = stage
        for name, value in fields.items():
            setattr(state, name, value)
        return self.save(state)
