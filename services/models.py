"""
Data model for the content-improvement workflow.

Timestamps are ISO-8601 UTC strings, as everywhere else in the project.
Content documents themselves are never modelled: they are opaque JSON values.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

BatchStatus = Literal["pending", "applied", "rejected"]
ImprovementStatus = Literal["pending", "applied", "stale", "rejected"]

WorkflowStage = Literal[
    "idle",
    "analyzing",
    "improving",
    "improvements_pending",
    "applying",
    "apply_partially_failed",
]

BATCH_STATUS_ORDER = {"pending": 0, "applied": 1, "rejected": 1}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContentFileInfo(BaseModel):
    path: str  # posix path relative to the content root
    section: str
    size: int
    modified_at: str


class ContentIssue(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str
    severity: Literal["critical", "high", "medium", "low"] = "medium"
    message: str
    field: Optional[str] = None
    suggestion: Optional[str] = None


class FileAnalysis(BaseModel):
    file: str
    section: str
    score: float
    brand_alignment: str
    issues: List[ContentIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    assistant_score: Optional[float] = None
    assistant_alignment: Optional[str] = None
    error: Optional[str] = None


class AnalysisResult(BaseModel):
    success: bool
    workflow_id: str
    files: List[FileAnalysis] = Field(default_factory=list)
    overall_score: float = 0.0
    brand_alignment: str = "weak"
    total_issues: int = 0
    timestamp: str = Field(default_factory=utc_now)


class BatchSummary(BaseModel):
    count: int = 0
    quality_score: Optional[float] = Field(default=None, ge=0, le=100)
    brand_alignment: Optional[str] = None


class Improvement(BaseModel):
    id: str
    batch_id: str
    file: str
    field: str
    original: Any
    improved: Any
    reasoning: str = ""
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    status: ImprovementStatus = "pending"
    processed_at: Optional[str] = None
    error: Optional[str] = None


class ImprovementBatch(BaseModel):
    id: str
    workflow_id: str
    source_files: List[str]
    created_at: str = Field(default_factory=utc_now)
    status: BatchStatus = "pending"
    raw_response: str = ""
    improvements: List[Improvement] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)
    finalised_at: Optional[str] = None

    def pending_items(self) -> List[Improvement]:
        return [item for item in self.improvements if item.status == "pending"]

    @property
    def all_processed(self) -> bool:
        return all(item.status != "pending" for item in self.improvements)


class FileImproveOutcome(BaseModel):
    file: str
    batch_id: Optional[str] = None
    count: int = 0
    raw_path: Optional[str] = None
    error_type: Optional[str] = None
    error: Optional[str] = None


class ImproveResult(BaseModel):
    success: bool
    workflow_id: str
    created: List[FileImproveOutcome] = Field(default_factory=list)
    manual_review: List[FileImproveOutcome] = Field(default_factory=list)
    failed: List[FileImproveOutcome] = Field(default_factory=list)
    improvements_created: int = 0
    timestamp: str = Field(default_factory=utc_now)


class ApplyResult(BaseModel):
    success: bool
    applied: int = 0
    remaining: int = 0
    failed: int = 0
    stale: int = 0
    applied_ids: List[str] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    backups: List[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_now)


class RejectResult(BaseModel):
    rejected: int = 0
    remaining: int = 0
    unknown_ids: List[str] = Field(default_factory=list)
    timestamp: str = Field(default_factory=utc_now)


class BackupRecord(BaseModel):
    backup_id: str
    source: str  # path relative to the content root
    backup_path: str
    created_at: str
    size: int


class WorkflowEvent(BaseModel):
    timestamp: str = Field(default_factory=utc_now)
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)


class WorkflowState(BaseModel):
    workflow_id: str
    current_stage: WorkflowStage = "idle"
    last_run: Optional[str] = None
    last_errors: List[Dict[str, Any]] = Field(default_factory=list)
    last_apply: Optional[Dict[str, Any]] = None
    history: List[WorkflowEvent] = Field(default_factory=list)
    updated_at: str = Field(default_factory=utc_now)
