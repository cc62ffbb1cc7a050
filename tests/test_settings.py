"""
Tests for configuration resolution and prompt loading
"""

import pydantic
import pytest

from agents.prompt_loader import PromptLoader, get_prompt_loader
from agents.settings import ContentSettings
from agents.utils.config_loader import ConfigLoader

ENV_VARS = (
    "OPENAI_API_KEY",
    "OPENAI_BRANDVOICE_ASSISTANT_ID",
    "OPENAI_BASE_URL",
    "CONTENT_ROOT",
    "CONTENT_WORKDIR",
    "CONTENT_WORKFLOW_ID",
    "ASSISTANT_POLL_INTERVAL_MS",
    "ASSISTANT_MAX_ATTEMPTS",
    "CONTENT_CONFIG",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


CONFIG = """
openai:
  assistant_id: asst_from_yaml
content:
  root: site/data
  exclude: ["drafts/*"]
storage:
  workdir: work
polling:
  interval_ms: 500
  max_attempts: 5
workflow:
  id: marketing
"""


class TestConfigLoader:
    def test_missing_file_gives_empty_config(self, tmp_path, clean_env):
        assert ConfigLoader.load(str(tmp_path / "nope.yaml")) == {}

    def test_non_mapping_is_ignored(self, tmp_path, clean_env):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        assert ConfigLoader.load(str(path)) == {}

    def test_env_var_selects_config_file(self, tmp_path, clean_env):
        path = tmp_path / "custom.yaml"
        path.write_text("workflow:\n  id: from-env\n", encoding="utf-8")
        clean_env.setenv("CONTENT_CONFIG", str(path))
        assert ConfigLoader.load() == {"workflow": {"id": "from-env"}}


class TestContentSettings:
    def test_yaml_values_and_defaults(self, tmp_path, clean_env):
        path = tmp_path / "config.content.yaml"
        path.write_text(CONFIG, encoding="utf-8")
        clean_env.chdir(tmp_path)

        settings = ContentSettings.from_config(str(path))

        assert settings.assistant_id == "asst_from_yaml"
        assert settings.content_root == (tmp_path / "site" / "data").resolve()
        assert settings.exclude == ["drafts/*"]
        assert settings.poll_interval_ms == 500
        assert settings.max_attempts == 5
        assert settings.workflow_id == "marketing"
        assert settings.backups_dir == (tmp_path / "work" / "backups").resolve()
        assert "leverage" in settings.jargon_replacements
        assert not settings.assistant_configured

    def test_priority_override_over_env_over_yaml(self, tmp_path, clean_env):
        path = tmp_path / "config.content.yaml"
        path.write_text(CONFIG, encoding="utf-8")
        clean_env.setenv("OPENAI_API_KEY", "sk-env")
        clean_env.setenv("OPENAI_BRANDVOICE_ASSISTANT_ID", "asst_env")
        clean_env.setenv("ASSISTANT_MAX_ATTEMPTS", "9")
        clean_env.setenv("CONTENT_WORKFLOW_ID", "env-flow")

        settings = ContentSettings.from_config(str(path), workflow_id="override-flow")

        assert settings.assistant_id == "asst_env"
        assert settings.max_attempts == 9
        assert settings.workflow_id == "override-flow"
        assert settings.assistant_configured

    def test_invalid_polling_values_rejected(self, tmp_path):
        with pytest.raises(pydantic.ValidationError):
            ContentSettings(max_attempts=0, workdir=tmp_path)
        with pytest.raises(pydantic.ValidationError):
            ContentSettings(poll_interval_ms=-1, workdir=tmp_path)


class TestPromptLoader:
    def test_bundled_prompts_load(self):
        loader = get_prompt_loader()
        for name in ("improve_content", "analyze_content"):
            assert loader.get_system_prompt(name)
            assert loader.get_metadata(name)["name"] == name

    def test_improve_prompt_formats_file_details(self):
        text = get_prompt_loader().format_user_prompt("improve_content", file_name="hero.json", section="hero")
        assert "hero.json" in text
        assert '"improvements"' in text
        assert get_prompt_loader().get_parameters("improve_content")["min_confidence"] == 0.0

    def test_missing_template_variable(self):
        with pytest.raises(ValueError):
            get_prompt_loader().format_user_prompt("improve_content", file_name="hero.json")

    def test_prompt_requires_name_and_system_prompt(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("name: broken\n", encoding="utf-8")
        with pytest.raises(ValueError):
            PromptLoader(str(tmp_path)).load_prompt("broken")

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ValueError):
            PromptLoader(str(tmp_path / "nope"))
