"""
Tests for the markdown analysis report
"""

from services.models import AnalysisResult, ContentIssue, FileAnalysis
from services.report_generator import (
    estimated_fix_time,
    render_markdown,
    score_label,
    severity_counts,
    write_report,
)


def make_result():
    return AnalysisResult(
        success=False,
        workflow_id="test",
        files=[
            FileAnalysis(
                file="hero.json",
                section="hero",
                score=90.0,
                brand_alignment="strong",
                issues=[ContentIssue(type="length", severity="low", message="Title is short", field="headline")],
            ),
            FileAnalysis(
                file="faq.json",
                section="faq",
                score=55.0,
                brand_alignment="weak",
                issues=[
                    ContentIssue(type="jargon", severity="medium", message="Uses \"leverage\"", field="[0].answer",
                                 suggestion="use"),
                    ContentIssue(type="structure", severity="critical", message="Missing | question"),
                ],
                error="AssistantTimeoutError: no reply",
            ),
        ],
        overall_score=72.5,
        brand_alignment="moderate",
        total_issues=3,
        timestamp="2026-01-01T00:00:00+00:00",
    )


class TestReportGenerator:
    def test_score_labels(self):
        assert score_label(80) == "Good"
        assert score_label(79.9) == "Needs Improvement"
        assert score_label(60) == "Needs Improvement"
        assert score_label(59) == "Poor"

    def test_fix_time_estimate(self):
        assert estimated_fix_time({"critical": 1, "high": 2, "medium": 4}) == "13 minutes"
        assert estimated_fix_time({"critical": 30}) == "2 hours"

    def test_executive_summary(self):
        report = render_markdown(make_result())

        assert report.startswith("# Brand Voice Analysis Report\n")
        assert "- **Overall Score**: 72.5 (Needs Improvement)" in report
        assert "- **Files Analyzed**: 2" in report
        assert "- **Issues**: 1 critical, 0 high, 1 medium, 1 low" in report
        assert "- **Estimated Time to Fix**: 4 minutes" in report
        assert "- **Priority Actions**: 2" in report

    def test_priority_issues_ordered_by_severity(self):
        report = render_markdown(make_result())

        critical = report.index("### Critical (1)")
        medium = report.index("### Medium (1)")
        low = report.index("### Low (1)")
        assert critical < medium < low
        assert "### High" not in report
        assert '- `faq.json` `[0].answer`: Uses "leverage" (suggestion: use)' in report

    def test_file_table_lowest_score_first(self):
        lines = render_markdown(make_result()).splitlines()
        rows = [line for line in lines if line.startswith("| ") and line.endswith(" |") and ".json" in line]

        assert rows[0] == "| faq.json | 55.0 | Poor | weak | 2 | Missing \\| question |"
        assert rows[1] == "| hero.json | 90.0 | Good | strong | 1 | Title is short |"

    def test_errors_and_empty_result(self):
        assert "- `faq.json`: AssistantTimeoutError: no reply" in render_markdown(make_result())

        empty = render_markdown(AnalysisResult(success=True, workflow_id="test"))
        assert "No issues found." in empty
        assert "No content files analyzed." in empty
        assert "## Errors" not in empty

    def test_severity_counts(self):
        assert severity_counts(make_result()) == {"critical": 1, "high": 0, "medium": 1, "low": 1}

    def test_write_report_creates_parent_dirs(self, tmp_path):
        path = write_report(make_result(), tmp_path / "reports" / "analysis.md")

        assert path.read_text(encoding="utf-8") == render_markdown(make_result())
