"""
Response Parser - turns raw assistant replies into validated structures.

The assistant is an untrusted text generator. A reply is either strict JSON
(kind="json") or anything else (kind="text"); there is no partial extraction
of JSON embedded in prose. JSON replies are then validated field by field and
entries that do not fit are dropped with a warning.
"""
import json
import logging
from typing import Any, Dict, Iterator, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from services.models import ContentIssue
from utils.field_path import (
    format_field_path,
    get_field,
    has_field,
    is_addressable_key,
    iter_string_leaves,
    parse_field_path,
)

# Module logger
logger = logging.getLogger(__name__)

ALIGNMENT_LABELS = ("strong", "moderate", "weak")
SEVERITIES = ("critical", "high", "medium", "low")


class ParsedResult(BaseModel):
    kind: Literal["json", "text"]
    value: Any


class ImprovementProposal(BaseModel):
    field: str
    original: str
    improved: str
    reasoning: str = ""
    confidence: Optional[float] = Field(default=None, ge=0, le=1)

    @field_validator("field")
    @classmethod
    def _valid_path(cls, value: str) -> str:
        parse_field_path(value)
        return value.strip()


class AnalysisReply(BaseModel):
    score: Optional[float] = None
    brand_alignment: Optional[str] = None
    issues: List[ContentIssue] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


def parse(raw_text: str) -> ParsedResult:
    """
    Parse a raw assistant reply.

    Examples:
        '{"a":1}'                   -> ParsedResult(kind="json", value={"a": 1})
        'Sure, here you go: {"a":1}' -> ParsedResult(kind="text", value=<same string>)
    """
    try:
        value = json.loads(raw_text.strip())
    except (json.JSONDecodeError, AttributeError, TypeError) as e:
        logger.warning("Assistant reply is not valid JSON (%s); keeping it as text for manual review", e)
        return ParsedResult(kind="text", value=raw_text)
    return ParsedResult(kind="json", value=value)


def alignment_label(value: Any) -> Optional[str]:
    """Normalise a brand alignment value to strong/moderate/weak."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # 0-1 ratio or 0-100 score
        ratio = value / 100.0 if value > 1 else float(value)
        if ratio >= 0.8:
            return "strong"
        if ratio >= 0.6:
            return "moderate"
        return "weak"
    if isinstance(value, str):
        lowered = value.strip().lower()
        for label in ALIGNMENT_LABELS:
            if lowered.startswith(label):
                return label
    return None


def _clamp_score(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0.0, min(100.0, float(value)))


def extract_summary(parsed_value: Any) -> Dict[str, Any]:
    """Read the optional qualityScore / brandAlignment fields of an improve reply."""
    if not isinstance(parsed_value, dict):
        return {"quality_score": None, "brand_alignment": None}
    score = parsed_value.get("qualityScore", parsed_value.get("quality_score"))
    alignment = parsed_value.get("brandAlignment", parsed_value.get("brand_alignment"))
    return {"quality_score": _clamp_score(score), "brand_alignment": alignment_label(alignment)}


def _live_string(document: Any, field: str) -> Optional[str]:
    try:
        value = get_field(document, field)
    except (KeyError, ValueError):
        return None
    return value if isinstance(value, str) else None


def _from_improvement_list(file: str, document: Any, entries: List[Any]) -> List[ImprovementProposal]:
    proposals = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning("%s: improvement #%d is not an object; dropped", file, index)
            continue
        data = dict(entry)
        if "reasoning" not in data and "reason" in data:
            data["reasoning"] = data["reason"]
        if "original" not in data and isinstance(data.get("field"), str):
            live = _live_string(document, data["field"])
            if live is not None:
                data["original"] = live
        try:
            proposal = ImprovementProposal.model_validate(data)
        except ValidationError as e:
            logger.warning("%s: improvement #%d failed validation; dropped: %s", file, index, e.errors()[:1])
            continue
        if not has_field(document, proposal.field):
            logger.warning("%s: improvement for unknown field %s dropped", file, proposal.field)
            continue
        proposals.append(proposal)
    return proposals


def _iter_tracked_changes(value: Any, prefix: List[Any]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    if isinstance(value, dict):
        if "improved" in value and "original" in value and prefix:
            yield format_field_path(prefix), value
            return
        for key, child in value.items():
            if not is_addressable_key(key):
                logger.warning("Tracked change under key %r cannot be addressed; skipped", key)
                continue
            yield from _iter_tracked_changes(child, prefix + [key])
    elif isinstance(value, list):
        for index, child in enumerate(value):
            yield from _iter_tracked_changes(child, prefix + [index])


def _from_tracked_changes(file: str, document: Any, changes: List[Tuple[str, Dict[str, Any]]]) -> List[ImprovementProposal]:
    proposals = []
    for field, change in changes:
        live = _live_string(document, field)
        if live is None:
            logger.warning("%s: tracked change for %s does not match a text field; dropped", file, field)
            continue
        explanation = change.get("changes") or {}
        if isinstance(explanation, dict):
            reasoning = " ".join(str(part) for part in (explanation.get("what"), explanation.get("why")) if part)
        else:
            reasoning = str(explanation)
        try:
            proposals.append(ImprovementProposal(
                field=field,
                original=live,
                improved=change.get("improved"),
                reasoning=reasoning,
                confidence=change.get("confidence"),
            ))
        except ValidationError as e:
            logger.warning("%s: tracked change for %s failed validation; dropped: %s", file, field, e.errors()[:1])
    return proposals


def _from_rewritten_document(file: str, document: Any, rewritten: Any) -> List[ImprovementProposal]:
    if type(rewritten) is not type(document):
        logger.warning("%s: reply does not have the shape of the content document; nothing staged", file)
        return []
    proposals = []
    for field, improved in iter_string_leaves(rewritten):
        live = _live_string(document, field)
        if live is None or live == improved:
            continue
        proposals.append(ImprovementProposal(field=field, original=live, improved=improved, reasoning="Rewritten by assistant"))
    return proposals


def extract_improvements(file: str, original_document: Any, parsed_value: Any) -> List[ImprovementProposal]:
    """
    Turn a JSON reply into improvement proposals for one content file.

    Accepted reply shapes, checked in this order:
      1. {"improvements": [{field, original, improved, reasoning, confidence}, ...]}
      2. tracked-change objects {"title": {"original", "improved", "changes": {"what", "why"}}}
         nested where the field lives in the document
      3. the full rewritten document; changed text leaves become proposals

    Proposals whose improved text equals the original are dropped.
    """
    if isinstance(parsed_value, dict) and isinstance(parsed_value.get("improvements"), list):
        proposals = _from_improvement_list(file, original_document, parsed_value["improvements"])
    else:
        changes = list(_iter_tracked_changes(parsed_value, []))
        if changes:
            proposals = _from_tracked_changes(file, original_document, changes)
        else:
            proposals = _from_rewritten_document(file, original_document, parsed_value)

    kept = [p for p in proposals if p.original != p.improved]
    if len(kept) != len(proposals):
        logger.debug("%s: dropped %d unchanged proposals", file, len(proposals) - len(kept))
    logger.info("%s: extracted %d improvement proposals", file, len(kept))
    return kept


def parse_analysis(parsed_value: Any) -> Optional[AnalysisReply]:
    """Validate an analysis reply; returns None (with a warning) when it does not fit."""
    if not isinstance(parsed_value, dict):
        logger.warning("Analysis reply is not a JSON object; ignoring it")
        return None

    issues = []
    for entry in parsed_value.get("issues") or []:
        if isinstance(entry, str):
            entry = {"message": entry}
        if not isinstance(entry, dict):
            continue
        data = dict(entry)
        data.setdefault("type", "assistant")
        if data.get("severity") not in SEVERITIES:
            data["severity"] = "medium"
        try:
            issues.append(ContentIssue.model_validate(data))
        except ValidationError as e:
            logger.warning("Analysis issue dropped: %s", e.errors()[:1])

    suggestions = [str(s) for s in parsed_value.get("suggestions") or [] if isinstance(s, (str, int, float))]
    score = parsed_value.get("score", parsed_value.get("qualityScore"))
    alignment = parsed_value.get("brandAlignment", parsed_value.get("brand_alignment"))
    return AnalysisReply(
        score=_clamp_score(score),
        brand_alignment=alignment_label(alignment),
        issues=issues,
        suggestions=suggestions,
    )
