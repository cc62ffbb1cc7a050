"""
Content Improvement Workflow - orchestration of analyze → improve → review → apply
(Orchestrator-only: the OpenAI client lives in agents/assistant_client.py.)

Stages per workflow id (persisted, see services/workflow_state.py):
    idle → analyzing → idle
    idle → improving → improvements_pending
    improvements_pending → applying → idle | improvements_pending | apply_partially_failed
Any stage falls back to its resting stage when an exception escapes, with the
error recorded on the workflow state.
"""

import asyncio
import logging
from collections import OrderedDict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from agents.assistant_client import AssistantClient
from agents.prompt_loader import get_prompt_loader
from agents.response_parser import extract_improvements, extract_summary, parse, parse_analysis
from agents.settings import ContentSettings
from services.backup_manager import BackupManager
from services.content_analyzer import ContentAnalyzer, brand_alignment
from services.content_store import ContentStore, atomic_write_text
from services.improvement_store import ImprovementStore, new_batch_id, new_improvement_id
from services.models import (
    AnalysisResult,
    ApplyResult,
    BackupRecord,
    BatchSummary,
    ContentFileInfo,
    ContentIssue,
    FileAnalysis,
    FileImproveOutcome,
    Improvement,
    ImprovementBatch,
    ImproveResult,
    RejectResult,
    utc_now,
)
from services.workflow_state import WorkflowStateStore
from utils.errors import (
    AssistantError,
    AssistantTimeoutError,
    NotAvailableError,
    StaleImprovementError,
    TransportError,
)
from utils.field_path import get_field, set_field

logger = logging.getLogger(__name__)

ANALYZE_PROMPT = "analyze_content"
IMPROVE_PROMPT = "improve_content"

# Failures that abort a single file but not the whole run
ASSISTANT_FAILURES = (TransportError, AssistantError, AssistantTimeoutError)


class ContentImprovementWorkflow:
    """
    Orchestrates the content-improvement pipeline for one workflow id.

    Workflow operations:
    1. analyze_content: local heuristics + assistant review, read-only
    2. improve_content: assistant rewrite → staged ImprovementBatch per file
    3. apply_improvements / reject_improvements: reviewer decisions on staged items
    4. rollback: explicit restore of a backup taken by apply
    """

    def __init__(
        self,
        settings: ContentSettings,
        assistant: Optional[AssistantClient] = None,
        sleep=None,
    ):
        self.settings = settings
        self.workflow_id = settings.workflow_id
        self.content_store = ContentStore(settings.content_root, settings.tracked_files, settings.exclude)
        self.improvement_store = ImprovementStore(settings.improvements_dir)
        self.backups = BackupManager(settings.backups_dir, self.content_store)
        self.state_store = WorkflowStateStore(settings.state_dir)
        self.analyzer = ContentAnalyzer(settings.jargon_replacements)
        self.prompts = get_prompt_loader(str(settings.prompts_dir))
        self.sleep = sleep or asyncio.sleep
        self._assistant = assistant

    @property
    def assistant(self) -> AssistantClient:
        if self._assistant is None:
            self._assistant = AssistantClient.from_settings(self.settings, sleep=self.sleep)
        return self._assistant

    def log_progress(self, message: str):
        """Log workflow progress"""
        logger.info("[%s] %s", self.workflow_id, message)

    # ------------------------------------------------------------------
    # Availability and stage helpers
    # ------------------------------------------------------------------

    def is_available(self) -> bool:
        return self.content_store.is_available() and (self._assistant is not None or self.settings.assistant_configured)

    def _check_available(self) -> List[str]:
        if not self.settings.content_root.is_dir():
            raise NotAvailableError(f"Content root not found: {self.settings.content_root}")
        paths = self.content_store.tracked_paths()
        if not paths:
            raise NotAvailableError(f"No tracked content files under {self.settings.content_root}")
        if self._assistant is None and not self.settings.assistant_configured:
            raise NotAvailableError("Brand voice assistant is not configured (API key and assistant id required)")
        return paths

    def _resting_stage(self) -> str:
        return "improvements_pending" if self.get_pending_improvements() else "idle"

    def _record_failure(self, action: str, error: Exception):
        self.state_store.record_event(
            self.workflow_id,
            action,
            {"error": str(error), "error_type": type(error).__name__},
            stage=self._resting_stage(),
            last_errors=[{"error": str(error), "error_type": type(error).__name__, "timestamp": utc_now()}],
        )

    async def _inter_file_pause(self, index: int):
        if index and self.settings.inter_file_delay_ms:
            await self.sleep(self.settings.inter_file_delay_ms / 1000.0)

    async def _ask(self, prompt_name: str, rel: str, document: Any) -> str:
        section = Path(rel).stem
        instructions = self.prompts.format_user_prompt(prompt_name, file_name=Path(rel).name, section=section)
        return await self.assistant.ask(
            document,
            instructions,
            additional_instructions=self.prompts.get_system_prompt(prompt_name),
        )

    # ------------------------------------------------------------------
    # Analyze
    # ------------------------------------------------------------------

    async def analyze_content(self) -> AnalysisResult:
        """Analyze every tracked file. Never writes to content files."""
        paths = self._check_available()
        self.state_store.set_stage(self.workflow_id, "analyzing")
        self.log_progress(f"Analyzing {len(paths)} content files")

        try:
            files = []
            for index, rel in enumerate(paths):
                await self._inter_file_pause(index)
                files.append(await self._analyze_file(rel))
        except Exception as e:
            logger.exception("Content analysis failed: %s", e)
            self._record_failure("analysis_failed", e)
            raise

        overall = round(sum(f.score for f in files) / len(files), 1) if files else 0.0
        errors = [{"file": f.file, "error": f.error} for f in files if f.error]
        result = AnalysisResult(
            success=not errors,
            workflow_id=self.workflow_id,
            files=files,
            overall_score=overall,
            brand_alignment=brand_alignment(overall),
            total_issues=sum(len(f.issues) for f in files),
        )
        self.state_store.record_event(
            self.workflow_id,
            "analysis_completed",
            {"files": len(files), "overall_score": overall, "total_issues": result.total_issues, "errors": len(errors)},
            stage=self._resting_stage(),
            last_run=result.timestamp,
            last_errors=errors,
        )
        self.log_progress(f"Analysis complete: score {overall}, {result.total_issues} issues")
        return result

    async def _analyze_file(self, rel: str) -> FileAnalysis:
        section = Path(rel).stem
        try:
            document = self.content_store.read(rel)
        except (OSError, ValueError) as e:
            logger.warning("Could not read %s: %s", rel, e)
            issue = ContentIssue(type="structure", severity="critical", message=f"Unreadable content file: {e}")
            return FileAnalysis(file=rel, section=section, score=0.0, brand_alignment="weak",
                                issues=[issue], error=f"{type(e).__name__}: {e}")

        local = self.analyzer.analyze(document)
        entry = FileAnalysis(
            file=rel,
            section=section,
            score=local["score"],
            brand_alignment=local["brand_alignment"],
            issues=local["issues"],
            suggestions=local["suggestions"],
        )

        try:
            raw = await self._ask(ANALYZE_PROMPT, rel, document)
        except ASSISTANT_FAILURES as e:
            logger.warning("Assistant analysis of %s failed: %s", rel, e)
            entry.error = f"{type(e).__name__}: {e}"
            return entry

        parsed = parse(raw)
        reply = parse_analysis(parsed.value) if parsed.kind == "json" else None
        if reply is None:
            entry.error = "Assistant analysis reply was not a valid JSON object"
            return entry

        entry.issues.extend(reply.issues)
        entry.suggestions.extend(s for s in reply.suggestions if s not in entry.suggestions)
        entry.assistant_alignment = reply.brand_alignment
        if reply.score is not None:
            entry.assistant_score = reply.score
            entry.score = round((local["score"] + reply.score) / 2, 1)
            entry.brand_alignment = brand_alignment(entry.score)
        return entry

    # ------------------------------------------------------------------
    # Improve
    # ------------------------------------------------------------------

    async def improve_content(self) -> ImproveResult:
        """Ask the assistant to improve every tracked file and stage the results."""
        paths = self._check_available()
        self.state_store.set_stage(self.workflow_id, "improving")
        self.log_progress(f"Improving {len(paths)} content files")

        result = ImproveResult(success=True, workflow_id=self.workflow_id)
        try:
            for index, rel in enumerate(paths):
                await self._inter_file_pause(index)
                bucket, outcome = await self._improve_file(rel)
                getattr(result, bucket).append(outcome)
        except Exception as e:
            logger.exception("Content improvement failed: %s", e)
            self._record_failure("improvement_failed", e)
            raise

        result.success = not result.failed
        result.improvements_created = sum(o.count for o in result.created)
        self.state_store.record_event(
            self.workflow_id,
            "improvement_completed",
            {
                "batches": [o.batch_id for o in result.created],
                "improvements": result.improvements_created,
                "manual_review": [o.file for o in result.manual_review],
                "failed": [o.file for o in result.failed],
            },
            stage=self._resting_stage(),
            last_run=result.timestamp,
            last_errors=[o.model_dump(include={"file", "error_type", "error"}) for o in result.failed],
        )
        self.log_progress(
            f"Improvement complete: {result.improvements_created} staged, "
            f"{len(result.manual_review)} for manual review, {len(result.failed)} failed"
        )
        return result

    async def _improve_file(self, rel: str) -> Tuple[str, FileImproveOutcome]:
        try:
            document = self.content_store.read(rel)
        except (OSError, ValueError) as e:
            logger.warning("Could not read %s: %s", rel, e)
            return "failed", FileImproveOutcome(file=rel, error_type=type(e).__name__, error=str(e))

        try:
            raw = await self._ask(IMPROVE_PROMPT, rel, document)
        except ASSISTANT_FAILURES as e:
            logger.exception("Assistant improvement of %s failed: %s", rel, e)
            return "failed", FileImproveOutcome(file=rel, error_type=type(e).__name__, error=str(e))

        parsed = parse(raw)
        if parsed.kind == "text":
            raw_path = self._save_raw_response(rel, raw)
            return "manual_review", FileImproveOutcome(file=rel, raw_path=str(raw_path))

        proposals = extract_improvements(rel, document, parsed.value)
        min_confidence = float(self.prompts.get_parameters(IMPROVE_PROMPT).get("min_confidence") or 0.0)
        proposals = [p for p in proposals if p.confidence is None or p.confidence >= min_confidence]

        summary = extract_summary(parsed.value)
        if summary["quality_score"] is None or summary["brand_alignment"] is None:
            local = self.analyzer.analyze(document)
            summary["quality_score"] = summary["quality_score"] if summary["quality_score"] is not None else local["score"]
            summary["brand_alignment"] = summary["brand_alignment"] or local["brand_alignment"]

        batch_id = new_batch_id()
        batch = ImprovementBatch(
            id=batch_id,
            workflow_id=self.workflow_id,
            source_files=[rel],
            raw_response=raw,
            improvements=[
                Improvement(
                    id=new_improvement_id(),
                    batch_id=batch_id,
                    file=rel,
                    field=p.field,
                    original=p.original,
                    improved=p.improved,
                    reasoning=p.reasoning,
                    confidence=p.confidence,
                )
                for p in proposals
            ],
            summary=BatchSummary(count=len(proposals), **summary),
        )
        self.improvement_store.create(batch)
        if not batch.improvements:
            # Nothing to review; close it so it never shows up as pending
            self.improvement_store.finalise(batch)
        return "created", FileImproveOutcome(file=rel, batch_id=batch_id, count=len(proposals))

    def _save_raw_response(self, rel: str, raw: str) -> Path:
        stamp = utc_now().replace(":", "").replace("-", "").split(".")[0]
        target = self.settings.raw_responses_dir / f"{rel.replace('/', '__')}.{stamp}.txt"
        counter = 1
        while target.exists():
            target = target.with_name(f"{rel.replace('/', '__')}.{stamp}-{counter}.txt")
            counter += 1
        atomic_write_text(target, raw)
        logger.warning("Reply for %s was not JSON; saved for manual review at %s", rel, target)
        return target

    # ------------------------------------------------------------------
    # Review: pending, apply, reject
    # ------------------------------------------------------------------

    def _pending_index(self) -> Tuple[Dict[str, ImprovementBatch], List[Improvement]]:
        batches: Dict[str, ImprovementBatch] = {}
        items: List[Improvement] = []
        for batch in self.improvement_store.pending_batches():
            batches[batch.id] = batch
            items.extend(batch.pending_items())
        return batches, items

    def get_pending_improvements(self) -> List[Improvement]:
        return self._pending_index()[1]

    def _persist_marks(self, batches: Dict[str, ImprovementBatch], items: List[Improvement],
                       status: str, errors: Optional[Dict[str, str]] = None):
        by_batch: Dict[str, Dict[str, str]] = {}
        for item in items:
            by_batch.setdefault(item.batch_id, {})[item.id] = status
        for batch_id, updates in by_batch.items():
            self.improvement_store.mark_items(batches[batch_id], updates, errors)

    async def apply_improvements(self, ids: Optional[List[str]] = None) -> ApplyResult:
        """
        Apply pending improvements to the content files.

        Args:
            ids: Improvement ids to apply; None applies every pending item, [] applies nothing

        Returns:
            ApplyResult with applied/remaining/failed/stale counts, per-item errors and backup ids
        """
        batches, pending = self._pending_index()
        if ids is None:
            selected = pending
            unknown: List[str] = []
        else:
            wanted = list(dict.fromkeys(ids))
            by_id = {item.id: item for item in pending}
            selected = [by_id[i] for i in wanted if i in by_id]
            unknown = [i for i in wanted if i not in by_id]

        result = ApplyResult(success=True, remaining=len(pending))
        result.errors.extend({"id": i, "error": "Improvement not found or not pending"} for i in unknown)
        if not selected:
            return result

        self.state_store.set_stage(self.workflow_id, "applying")
        self.log_progress(f"Applying {len(selected)} improvements")

        try:
            grouped: "OrderedDict[str, List[Improvement]]" = OrderedDict()
            for item in selected:
                grouped.setdefault(item.file, []).append(item)

            for rel, items in grouped.items():
                self._apply_file(rel, items, batches, result)

            for batch_id in {item.batch_id for item in selected}:
                self.improvement_store.finalise(batches[batch_id])
        except Exception as e:
            logger.exception("Applying improvements failed: %s", e)
            self._record_failure("apply_failed", e)
            raise

        result.remaining = len(self.get_pending_improvements())
        result.success = result.failed == 0
        if result.failed:
            stage = "apply_partially_failed"
        else:
            stage = "improvements_pending" if result.remaining else "idle"

        counters = {"applied": result.applied, "stale": result.stale, "failed": result.failed, "remaining": result.remaining}
        self.state_store.record_event(
            self.workflow_id,
            "improvements_applied",
            dict(counters, backups=result.backups),
            stage=stage,
            last_apply=dict(counters, timestamp=result.timestamp),
            last_errors=result.errors,
        )
        self.log_progress(
            f"Apply complete: {result.applied} applied, {result.stale} stale, "
            f"{result.failed} failed, {result.remaining} remaining"
        )
        return result

    def _apply_file(self, rel: str, items: List[Improvement], batches: Dict[str, ImprovementBatch], result: ApplyResult):
        try:
            document = self.content_store.read(rel)
        except (OSError, ValueError) as e:
            logger.error("Cannot read %s, %d improvements left pending: %s", rel, len(items), e)
            result.failed += len(items)
            result.errors.extend({"id": i.id, "file": rel, "field": i.field, "error": f"{type(e).__name__}: {e}"} for i in items)
            return

        changed: List[Improvement] = []
        stale: List[Improvement] = []
        stale_errors: Dict[str, str] = {}
        for item in items:
            try:
                live = get_field(document, item.field)
                missing = False
            except (KeyError, ValueError):
                live, missing = None, True
            if missing or live != item.original:
                err = StaleImprovementError(item.id, rel, item.field, item.original, live, missing=missing)
                logger.warning("Skipping improvement %s: %s", item.id, err)
                result.errors.append(err.to_dict())
                stale_errors[item.id] = str(err)
                stale.append(item)
                continue
            set_field(document, item.field, item.improved)
            changed.append(item)

        if stale:
            self._persist_marks(batches, stale, "stale", stale_errors)
            result.stale += len(stale)

        if not changed:
            return

        try:
            backup_id = self.backups.snapshot(rel)
            self.content_store.write(rel, document)
        except OSError as e:
            logger.exception("Writing %s failed, %d improvements left pending: %s", rel, len(changed), e)
            result.failed += len(changed)
            result.errors.extend({"id": i.id, "file": rel, "field": i.field, "error": f"{type(e).__name__}: {e}"} for i in changed)
            return

        result.backups.append(backup_id)
        self._persist_marks(batches, changed, "applied")
        result.applied += len(changed)
        result.applied_ids.extend(i.id for i in changed)
        logger.info("Applied %d improvements to %s (backup %s)", len(changed), rel, backup_id)

    async def reject_improvements(self, ids: List[str]) -> RejectResult:
        """Reviewer rejection of pending improvements. Content files are not touched."""
        batches, pending = self._pending_index()
        by_id = {item.id: item for item in pending}
        wanted = list(dict.fromkeys(ids or []))
        selected = [by_id[i] for i in wanted if i in by_id]
        result = RejectResult(unknown_ids=[i for i in wanted if i not in by_id], remaining=len(pending))
        if not selected:
            return result

        self._persist_marks(batches, selected, "rejected")
        for batch_id in {item.batch_id for item in selected}:
            self.improvement_store.finalise(batches[batch_id])

        result.rejected = len(selected)
        result.remaining = len(self.get_pending_improvements())
        self.state_store.record_event(
            self.workflow_id,
            "improvements_rejected",
            {"rejected": result.rejected, "remaining": result.remaining},
            stage=self._resting_stage(),
        )
        self.log_progress(f"Rejected {result.rejected} improvements, {result.remaining} remaining")
        return result

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    async def rollback(self, backup_id: str) -> bool:
        """Restore a content file from a backup taken during apply."""
        restored = self.backups.restore(backup_id)
        record = self.backups.get(backup_id)
        self.state_store.record_event(
            self.workflow_id,
            "rollback",
            {"backup_id": backup_id, "file": record.source if record else None, "restored": restored},
        )
        if restored:
            self.log_progress(f"Rolled back {record.source} from {backup_id}")
        return restored

    def get_backups(self, path: Optional[str] = None) -> List[BackupRecord]:
        return self.backups.list_backups(path)

    # ------------------------------------------------------------------
    # Pure reads
    # ------------------------------------------------------------------

    def get_content_files(self) -> List[ContentFileInfo]:
        return self.content_store.list_files()

    def get_workflow_status(self) -> Dict[str, Any]:
        state = self.state_store.load(self.workflow_id)
        pending = self.get_pending_improvements()
        counts = {"pending": 0, "applied": 0, "rejected": 0}
        for batch in self.improvement_store.list():
            counts[batch.status] += 1

        if state.current_stage == "apply_partially_failed":
            next_action = "Fix the failed files and apply the remaining improvements"
        elif pending:
            next_action = "Review and apply pending improvements"
        elif state.last_run is None:
            next_action = "Run content analysis"
        else:
            next_action = "Run content improvement"

        return {
            "workflow_id": self.workflow_id,
            "available": self.is_available(),
            "current_stage": state.current_stage,
            "files_tracked": len(self.content_store.tracked_paths()),
            "pending_improvements": len(pending),
            "batches": counts,
            "last_run": state.last_run,
            "last_errors": state.last_errors,
            "last_apply": state.last_apply,
            "next_recommended_action": next_action,
            "updated_at": state.updated_at,
        }

    def get_improvement_history(self) -> Dict[str, Any]:
        state = self.state_store.load(self.workflow_id)
        batches = []
        for batch in self.improvement_store.list():
            statuses: Dict[str, int] = {}
            for item in batch.improvements:
                statuses[item.status] = statuses.get(item.status, 0) + 1
            batches.append({
                "id": batch.id,
                "status": batch.status,
                "source_files": batch.source_files,
                "created_at": batch.created_at,
                "finalised_at": batch.finalised_at,
                "summary": batch.summary.model_dump(),
                "items": statuses,
            })
        return {
            "workflow_id": self.workflow_id,
            "events": [event.model_dump() for event in state.history],
            "batches": batches,
        }
