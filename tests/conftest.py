import sys
import json
from pathlib import Path
from typing import Any, Dict, List, Optional
import pytest

# Ensure project root is importable
THIS_DIR = Path(__file__).parent
PROJECT_ROOT = THIS_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from agents.settings import ContentSettings  # noqa: E402
from workflows import ContentImprovementWorkflow  # noqa: E402


def write_json(path: Path, document: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    return path


class FakeAssistant:
    """Scripted stand-in for AssistantClient.

    `replies` maps a content file name (e.g. "hero.json") to either a reply
    string or an exception instance to raise. Unknown files get `default`.
    """

    def __init__(self, replies: Optional[Dict[str, Any]] = None, default: Any = '{"improvements": []}'):
        self.replies = dict(replies or {})
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def ask(self, content_payload, instructions, additional_instructions=None,
                  poll_interval_ms=None, max_attempts=None):
        self.calls.append({
            "content": content_payload,
            "instructions": instructions,
            "additional_instructions": additional_instructions,
        })
        reply = self.default
        for name, scripted in self.replies.items():
            if name in instructions:
                reply = scripted
                break
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def content_root(tmp_path) -> Path:
    root = tmp_path / "data"
    write_json(root / "hero.json", {"headline": "Old", "cta": {"label": "Get started"}})
    write_json(root / "faq.json", [{"question": "What do you do?", "answer": "We build websites that sell."}])
    return root


@pytest.fixture
def settings(tmp_path, content_root) -> ContentSettings:
    return ContentSettings(
        openai_api_key="test-key",
        assistant_id="asst_test",
        content_root=content_root,
        workdir=tmp_path / "work",
        workflow_id="test",
        poll_interval_ms=0,
        max_attempts=3,
    )


@pytest.fixture
def fake_assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture
def workflow(settings, fake_assistant) -> ContentImprovementWorkflow:
    return ContentImprovementWorkflow(settings, assistant=fake_assistant)
