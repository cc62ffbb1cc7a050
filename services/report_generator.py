"""
Report Generator - renders an AnalysisResult as a markdown brand voice report.

Sections: executive summary, priority issues grouped by severity, a per-file
table (lowest score first) and next steps. Score labels use the same 80/60
thresholds as brand alignment.
"""
import logging
from pathlib import Path
from typing import Dict, List

from services.content_store import atomic_write_text
from services.models import AnalysisResult, ContentIssue

logger = logging.getLogger(__name__)

SEVERITY_ORDER = ("critical", "high", "medium", "low")
# Minutes to fix one issue of each severity
FIX_MINUTES = {"critical": 3, "high": 3, "medium": 1, "low": 0}
MAX_PRIORITY_ACTIONS = 5


def score_label(score: float) -> str:
    if score >= 80:
        return "Good"
    if score >= 60:
        return "Needs Improvement"
    return "Poor"


def estimated_fix_time(counts: Dict[str, int]) -> str:
    minutes = sum(FIX_MINUTES[severity] * counts.get(severity, 0) for severity in SEVERITY_ORDER)
    if minutes < 60:
        return f"{minutes} minutes"
    return f"{round(minutes / 60)} hours"


def severity_counts(result: AnalysisResult) -> Dict[str, int]:
    counts = {severity: 0 for severity in SEVERITY_ORDER}
    for entry in result.files:
        for issue in entry.issues:
            counts[issue.severity] += 1
    return counts


def _cell(value) -> str:
    return str(value).replace("|", "\\|").replace("\n", " ")


def _issue_line(file: str, issue: ContentIssue) -> str:
    where = f"`{file}`" + (f" `{issue.field}`" if issue.field else "")
    line = f"- {where}: {issue.message}"
    if issue.suggestion:
        line += f" (suggestion: {issue.suggestion})"
    return line


def render_markdown(result: AnalysisResult) -> str:
    counts = severity_counts(result)
    actionable = counts["critical"] + counts["high"] + counts["medium"]

    lines: List[str] = ["# Brand Voice Analysis Report", f"*Generated: {result.timestamp}*", ""]

    lines += ["## Executive Summary", ""]
    lines.append(f"- **Overall Score**: {result.overall_score:.1f} ({score_label(result.overall_score)})")
    lines.append(f"- **Brand Alignment**: {result.brand_alignment}")
    lines.append(f"- **Files Analyzed**: {len(result.files)}")
    lines.append("- **Issues**: " + ", ".join(f"{counts[s]} {s}" for s in SEVERITY_ORDER))
    lines.append(f"- **Estimated Time to Fix**: {estimated_fix_time(counts)}")
    lines.append(f"- **Priority Actions**: {min(MAX_PRIORITY_ACTIONS, actionable)}")
    lines.append("")

    lines += ["## Priority Issues", ""]
    if not result.total_issues:
        lines += ["No issues found.", ""]
    for severity in SEVERITY_ORDER:
        if not counts[severity]:
            continue
        lines += [f"### {severity.capitalize()} ({counts[severity]})", ""]
        for entry in result.files:
            lines.extend(_issue_line(entry.file, issue) for issue in entry.issues if issue.severity == severity)
        lines.append("")

    lines += ["## File Analysis", ""]
    if result.files:
        lines.append("| File | Score | Status | Alignment | Issues | Main Issue |")
        lines.append("|------|-------|--------|-----------|--------|------------|")
        for entry in sorted(result.files, key=lambda f: (f.score, f.file)):
            ranked = sorted(entry.issues, key=lambda i: SEVERITY_ORDER.index(i.severity))
            main_issue = ranked[0].message if ranked else "N/A"
            lines.append(
                f"| {_cell(entry.file)} | {entry.score:.1f} | {score_label(entry.score)} | "
                f"{entry.brand_alignment} | {len(entry.issues)} | {_cell(main_issue)} |"
            )
    else:
        lines.append("No content files analyzed.")
    lines.append("")

    errors = [entry for entry in result.files if entry.error]
    if errors:
        lines += ["## Errors", ""]
        lines.extend(f"- `{entry.file}`: {entry.error}" for entry in errors)
        lines.append("")

    lines += [
        "## Next Steps",
        "",
        "1. Review this report for voice consistency issues",
        "2. Run `content-improver improve` to stage assistant improvements",
        "3. Review them with `content-improver pending`, then `apply` or `reject`",
        "4. Re-run `content-improver analyze --report` to measure the change",
    ]
    return "\n".join(lines) + "\n"


def write_report(result: AnalysisResult, path: Path) -> Path:
    path = Path(path)
    atomic_write_text(path, render_markdown(result))
    logger.info("Analysis report written to %s", path)
    return path
