"""
Local heuristics for brand voice and copy quality.

Runs without the assistant so every analysis has a baseline: forbidden
jargon, title/CTA/description length and sentence length. Scores follow the
quality formula used across the workflow:

    score = 100 - 25 * critical - 15 * high - 5 * (everything else), clamped to [0, 100]
"""
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from services.models import ContentIssue
from utils.field_path import iter_string_leaves

logger = logging.getLogger(__name__)

TEXTUAL_KEYS = ("title", "description", "content", "text", "bio", "testimonial", "question",
                "answer", "subtitle", "heading", "headline", "label", "name", "cta", "button")
SKIP_KEYS = ("id", "slug", "url", "link", "href", "email", "phone", "date", "price", "currency", "icon", "image", "src")
ACTION_WORDS = ("get", "start", "try", "discover", "learn", "book", "contact", "download", "join", "see", "talk")

TITLE_MAX = 60
TITLE_MIN = 10
CTA_MAX = 30
DESCRIPTION_MIN = 50
SENTENCE_WORDS_MAX = 25

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def _last_key(path: str) -> str:
    key = path.rsplit(".", 1)[-1]
    return re.sub(r"\[\d+\]", "", key).lower()


def is_textual_field(path: str, value: str) -> bool:
    key = _last_key(path)
    if not key:
        return len(value) > 20
    if any(skip == key or key.endswith(skip) for skip in SKIP_KEYS):
        return False
    if any(text in key for text in TEXTUAL_KEYS):
        return True
    return len(value) > 20


def text_fields(document: Any) -> List[Tuple[str, str]]:
    return [(path, value) for path, value in iter_string_leaves(document)
            if value.strip() and is_textual_field(path, value)]


def average_sentence_length(text: str) -> float:
    sentences = [s for s in _SENTENCE_SPLIT.split(text) if s.strip()]
    if not sentences:
        return 0.0
    return len(text.split()) / len(sentences)


def quality_score(issues: List[ContentIssue]) -> float:
    critical = sum(1 for i in issues if i.severity == "critical")
    high = sum(1 for i in issues if i.severity == "high")
    other = len(issues) - critical - high
    score = 100 - critical * 25 - high * 15 - other * 5
    return float(max(0, min(100, score)))


def brand_alignment(score: float) -> str:
    if score >= 80:
        return "strong"
    if score >= 60:
        return "moderate"
    return "weak"


class ContentAnalyzer:
    """Heuristic analyzer for one content document at a time."""

    def __init__(self, jargon_replacements: Optional[Dict[str, str]] = None):
        self.jargon_replacements = dict(jargon_replacements or {})
        self._jargon_patterns = {
            word: re.compile(rf"\b{re.escape(word)}\w*\b", re.IGNORECASE)
            for word in self.jargon_replacements
        }

    def _check_jargon(self, path: str, text: str) -> List[ContentIssue]:
        issues = []
        for word, pattern in self._jargon_patterns.items():
            match = pattern.search(text)
            if match:
                issues.append(ContentIssue(
                    type="brand_voice",
                    severity="high",
                    field=path,
                    message=f'Forbidden jargon "{match.group(0)}"',
                    suggestion=f'Replace "{word}" with "{self.jargon_replacements[word]}"',
                ))
        return issues

    def _check_field(self, path: str, text: str) -> List[ContentIssue]:
        issues = []
        key = _last_key(path)
        lowered_path = path.lower()
        length = len(text)

        if "title" in key or "heading" in key or "headline" in key:
            if length > TITLE_MAX:
                issues.append(ContentIssue(type="title_length", severity="medium", field=path,
                                           message=f"Title too long ({length} chars). Ideal for web: 30-60 chars."))
            elif length < TITLE_MIN:
                issues.append(ContentIssue(type="title_length", severity="low", field=path,
                                           message=f"Title very short ({length} chars). Consider making it more descriptive."))

        if "cta" in lowered_path or "button" in lowered_path:
            if length > CTA_MAX:
                issues.append(ContentIssue(type="cta_length", severity="medium", field=path,
                                           message=f"CTA quite long ({length} chars). Shorter CTAs often perform better."))
            if not any(word in text.lower() for word in ACTION_WORDS):
                issues.append(ContentIssue(type="cta_action", severity="low", field=path,
                                           message="CTA could be more actionable. Consider adding an action word."))

        if "description" in key and length < DESCRIPTION_MIN and "brief" not in lowered_path:
            issues.append(ContentIssue(type="description_length", severity="low", field=path,
                                       message=f"Description quite short ({length} chars). Consider expanding."))

        avg = average_sentence_length(text)
        if avg > SENTENCE_WORDS_MAX:
            issues.append(ContentIssue(type="sentence_length", severity="medium", field=path,
                                       message=f"Long sentences (avg: {avg:.1f} words). Consider breaking them up."))
        return issues

    def analyze(self, document: Any) -> Dict[str, Any]:
        """
        Analyze one document.

        Returns:
            dict with issues, suggestions, score, brand_alignment and fields_checked
        """
        fields = text_fields(document)
        issues: List[ContentIssue] = []
        if not fields:
            issues.append(ContentIssue(type="structure", severity="critical",
                                       message="No textual content found in document"))
        for path, text in fields:
            issues.extend(self._check_jargon(path, text))
            issues.extend(self._check_field(path, text))

        suggestions = []
        for issue in issues:
            if issue.suggestion and issue.suggestion not in suggestions:
                suggestions.append(issue.suggestion)

        score = quality_score(issues)
        logger.debug("Local analysis: %d fields, %d issues, score=%.0f", len(fields), len(issues), score)
        return {
            "issues": issues,
            "suggestions": suggestions,
            "score": score,
            "brand_alignment": brand_alignment(score),
            "fields_checked": len(fields),
        }
