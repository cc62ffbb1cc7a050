"""
Tests for ContentImprovementWorkflow
Drives the full analyze → improve → apply / reject → rollback cycle against a
temporary content root with a scripted assistant.
"""

import json

import pytest

from agents.settings import ContentSettings
from conftest import FakeAssistant, write_json
from utils.errors import AssistantTimeoutError, NotAvailableError, TransportError
from workflows import ContentImprovementWorkflow


def improve_reply(*changes, score=80, alignment="strong"):
    return json.dumps({
        "improvements": [
            {"field": field, "original": original, "improved": improved, "reasoning": "Clearer", "confidence": 0.9}
            for field, original, improved in changes
        ],
        "qualityScore": score,
        "brandAlignment": alignment,
    })


def read(path):
    return json.loads(path.read_text(encoding="utf-8"))


@pytest.fixture
def hero_workflow(settings, content_root):
    write_json(content_root / "hero.json", {"headline": "Old"})
    assistant = FakeAssistant({"hero.json": improve_reply(("headline", "Old", "New"))})
    return ContentImprovementWorkflow(settings, assistant=assistant)


class TestImproveAndApply:
    @pytest.mark.asyncio
    async def test_old_to_new_with_backup(self, hero_workflow, content_root):
        improved = await hero_workflow.improve_content()
        assert improved.success
        assert improved.improvements_created == 1

        pending = hero_workflow.get_pending_improvements()
        assert [(p.file, p.field, p.original, p.improved) for p in pending] == [("hero.json", "headline", "Old", "New")]

        result = await hero_workflow.apply_improvements()

        assert result.applied == 1
        assert result.remaining == 0
        assert result.failed == 0
        assert read(content_root / "hero.json") == {"headline": "New"}
        assert len(result.backups) == 1
        backup = hero_workflow.backups.get(result.backups[0])
        assert json.loads(open(backup.backup_path, encoding="utf-8").read()) == {"headline": "Old"}

    @pytest.mark.asyncio
    async def test_prompt_and_content_sent_to_assistant(self, hero_workflow):
        await hero_workflow.improve_content()

        call = next(c for c in hero_workflow.assistant.calls if "hero.json" in c["instructions"])
        assert call["content"] == {"headline": "Old"}
        assert call["additional_instructions"] == hero_workflow.prompts.get_system_prompt("improve_content")

    @pytest.mark.asyncio
    async def test_applied_value_round_trips_and_siblings_unchanged(self, settings, content_root):
        original = {"hero": {"title": "Leverage design", "subtitle": "Keep me"}, "stats": [{"label": "Fast", "number": "48h"}]}
        write_json(content_root / "hero.json", original)
        assistant = FakeAssistant({"hero.json": improve_reply(("stats[0].label", "Fast", "Quick turnaround"))})
        workflow = ContentImprovementWorkflow(settings, assistant=assistant)

        await workflow.improve_content()
        await workflow.apply_improvements()

        expected = json.loads(json.dumps(original))
        expected["stats"][0]["label"] = "Quick turnaround"
        assert read(content_root / "hero.json") == expected

    @pytest.mark.asyncio
    async def test_dotted_key_never_rewrites_nested_field(self, settings, content_root):
        original = {"a.b": "Plain key", "a": {"b": "Nested value"}}
        write_json(content_root / "hero.json", original)
        rewritten = json.dumps({"a.b": "Rewritten plain key", "a": {"b": "Nested value"}})
        workflow = ContentImprovementWorkflow(settings, assistant=FakeAssistant({"hero.json": rewritten}))

        await workflow.improve_content()
        await workflow.apply_improvements()

        assert workflow.get_pending_improvements() == []
        assert read(content_root / "hero.json") == original

    @pytest.mark.asyncio
    async def test_empty_id_list_applies_nothing(self, hero_workflow, content_root):
        await hero_workflow.improve_content()
        before = (content_root / "hero.json").read_bytes()

        result = await hero_workflow.apply_improvements([])

        assert result.applied == 0
        assert result.remaining == 1
        assert (content_root / "hero.json").read_bytes() == before
        assert len(hero_workflow.get_pending_improvements()) == 1

    @pytest.mark.asyncio
    async def test_apply_selected_ids_only(self, settings, content_root):
        assistant = FakeAssistant({"hero.json": improve_reply(
            ("headline", "Old", "New"),
            ("cta.label", "Get started", "Start your project"),
        )})
        workflow = ContentImprovementWorkflow(settings, assistant=assistant)
        await workflow.improve_content()
        headline = next(p for p in workflow.get_pending_improvements() if p.field == "headline")

        result = await workflow.apply_improvements([headline.id, "imp_unknown"])

        assert result.applied == 1
        assert result.remaining == 1
        assert result.errors == [{"id": "imp_unknown", "error": "Improvement not found or not pending"}]
        assert read(content_root / "hero.json") == {"headline": "New", "cta": {"label": "Get started"}}
        assert workflow.get_workflow_status()["current_stage"] == "improvements_pending"

    @pytest.mark.asyncio
    async def test_stale_improvement_left_untouched_while_others_apply(self, settings, content_root):
        assistant = FakeAssistant({"hero.json": improve_reply(
            ("headline", "Old", "New"),
            ("cta.label", "Get started", "Start your project"),
        )})
        workflow = ContentImprovementWorkflow(settings, assistant=assistant)
        await workflow.improve_content()

        # Someone edits the headline between staging and apply
        write_json(content_root / "hero.json", {"headline": "Edited by hand", "cta": {"label": "Get started"}})

        result = await workflow.apply_improvements()

        assert result.applied == 1
        assert result.stale == 1
        assert result.remaining == 0
        assert read(content_root / "hero.json") == {"headline": "Edited by hand", "cta": {"label": "Start your project"}}
        stale = result.errors[0]
        assert stale["field"] == "headline"
        assert stale["expected"] == "Old"
        assert stale["actual"] == "Edited by hand"

        batch = workflow.improvement_store.list(status="applied")[0]
        assert {i.field: i.status for i in batch.improvements} == {"headline": "stale", "cta.label": "applied"}

    @pytest.mark.asyncio
    async def test_missing_field_is_stale(self, hero_workflow, content_root):
        await hero_workflow.improve_content()
        write_json(content_root / "hero.json", {"title": "Restructured"})

        result = await hero_workflow.apply_improvements()

        assert result.applied == 0
        assert result.stale == 1
        assert result.errors[0]["missing"] is True
        assert read(content_root / "hero.json") == {"title": "Restructured"}
        assert result.backups == []

    @pytest.mark.asyncio
    async def test_write_failure_leaves_items_pending(self, hero_workflow, monkeypatch):
        await hero_workflow.improve_content()

        def broken_write(path, document):
            raise PermissionError("read-only file system")

        monkeypatch.setattr(hero_workflow.content_store, "write", broken_write)
        result = await hero_workflow.apply_improvements()

        assert not result.success
        assert result.failed == 1
        assert result.applied == 0
        assert result.remaining == 1
        assert hero_workflow.get_workflow_status()["current_stage"] == "apply_partially_failed"
        assert result.backups == []

    @pytest.mark.asyncio
    async def test_corrupt_batch_file_does_not_block_other_batches(self, hero_workflow, settings, content_root):
        await hero_workflow.improve_content()
        (settings.improvements_dir / "batch_broken.json").write_text("{not json", encoding="utf-8")

        assert [p.field for p in hero_workflow.get_pending_improvements()] == ["headline"]
        assert hero_workflow.get_workflow_status()["current_stage"] == "improvements_pending"
        assert len(hero_workflow.get_improvement_history()["batches"]) == 2

        result = await hero_workflow.apply_improvements()

        assert result.applied == 1
        assert read(content_root / "hero.json") == {"headline": "New"}


class TestImproveOutcomes:
    @pytest.mark.asyncio
    async def test_text_reply_saved_for_manual_review(self, settings, content_root):
        raw = 'Sure, here you go: {"headline": "New"}'
        workflow = ContentImprovementWorkflow(settings, assistant=FakeAssistant({"hero.json": raw}))

        result = await workflow.improve_content()

        assert [o.file for o in result.manual_review] == ["hero.json"]
        saved = result.manual_review[0].raw_path
        assert open(saved, encoding="utf-8").read() == raw
        assert workflow.get_pending_improvements() == []

    @pytest.mark.asyncio
    async def test_reply_without_changes_creates_closed_batch(self, workflow):
        result = await workflow.improve_content()

        assert len(result.created) == 2
        assert all(o.count == 0 for o in result.created)
        assert [b.status for b in workflow.improvement_store.list()] == ["rejected", "rejected"]
        assert workflow.get_pending_improvements() == []

    @pytest.mark.asyncio
    async def test_assistant_failures_abort_only_that_file(self, settings):
        assistant = FakeAssistant({
            "faq.json": TransportError("create_run", "Server exploded", status_code=500),
            "hero.json": improve_reply(("headline", "Old", "New")),
        })
        workflow = ContentImprovementWorkflow(settings, assistant=assistant)

        result = await workflow.improve_content()

        assert not result.success
        assert [(o.file, o.error_type) for o in result.failed] == [("faq.json", "TransportError")]
        assert [o.file for o in result.created] == ["hero.json"]
        status = workflow.get_workflow_status()
        assert status["current_stage"] == "improvements_pending"
        assert status["last_errors"][0]["file"] == "faq.json"

    @pytest.mark.asyncio
    async def test_timeout_is_reported_per_file(self, settings):
        assistant = FakeAssistant(default=AssistantTimeoutError(3, run_id="run_1"))
        workflow = ContentImprovementWorkflow(settings, assistant=assistant)

        result = await workflow.improve_content()

        assert {o.error_type for o in result.failed} == {"AssistantTimeoutError"}
        assert workflow.get_workflow_status()["current_stage"] == "idle"


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_analyze_never_mutates_content(self, settings, content_root):
        reply = json.dumps({"score": 60, "brandAlignment": "moderate",
                            "issues": [{"field": "headline", "severity": "high", "message": "Vague"}],
                            "suggestions": ["Say what you do"]})
        workflow = ContentImprovementWorkflow(settings, assistant=FakeAssistant(default=reply))
        before = {p.name: p.read_bytes() for p in content_root.glob("*.json")}

        result = await workflow.analyze_content()

        assert {p.name: p.read_bytes() for p in content_root.glob("*.json")} == before
        assert result.success
        assert [f.file for f in result.files] == ["faq.json", "hero.json"]
        hero = result.files[1]
        assert hero.assistant_score == 60
        assert any(i.message == "Vague" for i in hero.issues)
        assert "Say what you do" in hero.suggestions
        assert workflow.get_workflow_status()["current_stage"] == "idle"

    @pytest.mark.asyncio
    async def test_assistant_failure_keeps_local_analysis(self, settings):
        assistant = FakeAssistant(default=TransportError("create_thread", "connection refused"))
        workflow = ContentImprovementWorkflow(settings, assistant=assistant)

        result = await workflow.analyze_content()

        assert not result.success
        assert all(f.error and "TransportError" in f.error for f in result.files)
        assert all(f.assistant_score is None for f in result.files)
        assert result.total_issues >= 1  # "Old" is a very short headline

    @pytest.mark.asyncio
    async def test_not_available_without_assistant(self, tmp_path, content_root):
        settings = ContentSettings(content_root=content_root, workdir=tmp_path / "work")
        workflow = ContentImprovementWorkflow(settings)

        with pytest.raises(NotAvailableError):
            await workflow.analyze_content()
        assert workflow.get_workflow_status()["available"] is False

    @pytest.mark.asyncio
    async def test_not_available_without_content(self, tmp_path, fake_assistant):
        settings = ContentSettings(content_root=tmp_path / "missing", workdir=tmp_path / "work",
                                   openai_api_key="k", assistant_id="a")
        workflow = ContentImprovementWorkflow(settings, assistant=fake_assistant)

        with pytest.raises(NotAvailableError):
            await workflow.improve_content()
        assert fake_assistant.calls == []


class TestReviewAndHistory:
    @pytest.mark.asyncio
    async def test_reject_finalises_batch(self, hero_workflow, content_root):
        await hero_workflow.improve_content()
        item = hero_workflow.get_pending_improvements()[0]

        result = await hero_workflow.reject_improvements([item.id, "imp_unknown"])

        assert result.rejected == 1
        assert result.remaining == 0
        assert result.unknown_ids == ["imp_unknown"]
        assert read(content_root / "hero.json") == {"headline": "Old"}
        hero_batches = [b for b in hero_workflow.improvement_store.list() if b.source_files == ["hero.json"]]
        assert hero_batches[0].status == "rejected"
        assert hero_workflow.get_workflow_status()["current_stage"] == "idle"

    @pytest.mark.asyncio
    async def test_rollback_restores_backup(self, hero_workflow, content_root):
        await hero_workflow.improve_content()
        applied = await hero_workflow.apply_improvements()

        assert await hero_workflow.rollback(applied.backups[0]) is True
        assert read(content_root / "hero.json") == {"headline": "Old"}
        assert await hero_workflow.rollback("unknown-backup") is False

        actions = [e["action"] for e in hero_workflow.get_improvement_history()["events"]]
        assert actions[-2:] == ["rollback", "rollback"]

    @pytest.mark.asyncio
    async def test_status_and_history_are_persisted_per_workflow(self, hero_workflow, settings):
        assert hero_workflow.get_workflow_status()["next_recommended_action"] == "Run content analysis"

        await hero_workflow.improve_content()

        reloaded = ContentImprovementWorkflow(settings, assistant=FakeAssistant())
        status = reloaded.get_workflow_status()
        assert status["current_stage"] == "improvements_pending"
        assert status["pending_improvements"] == 1
        assert status["next_recommended_action"] == "Review and apply pending improvements"

        history = reloaded.get_improvement_history()
        assert [e["action"] for e in history["events"]] == ["improvement_completed"]
        assert len(history["batches"]) == 2

        other = ContentImprovementWorkflow(settings.model_copy(update={"workflow_id": "other"}), assistant=FakeAssistant())
        assert other.get_workflow_status()["current_stage"] == "idle"

    @pytest.mark.asyncio
    async def test_reads_have_no_side_effects(self, workflow, settings):
        workflow.get_workflow_status()
        workflow.get_improvement_history()
        workflow.get_content_files()
        workflow.get_pending_improvements()

        assert not settings.workdir.exists()
