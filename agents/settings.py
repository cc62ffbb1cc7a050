"""
Runtime settings for the content-improvement workflow.

Values are resolved with a fixed priority:
explicit override > environment variable > config.content.yaml > default.
"""

import os
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .utils.config_loader import ConfigLoader

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_ASSISTANT_ID_ENV = "OPENAI_BRANDVOICE_ASSISTANT_ID"
DEFAULT_API_KEY_ENV = "OPENAI_API_KEY"

DEFAULT_JARGON_REPLACEMENTS: Dict[str, str] = {
    "transform": "change",
    "leverage": "use",
    "seamless": "smooth",
    "strategic": "planned",
    "innovative": "new",
    "premium": "quality",
    "synergy": "teamwork",
    "cutting-edge": "modern",
    "best-in-class": "proven",
    "world-class": "excellent",
    "game-changer": "big improvement",
    "holistic": "complete",
}


class ContentSettings(BaseModel):
    """Resolved settings. Paths are absolute once built via `from_config`."""

    model_config = ConfigDict(extra="ignore")

    openai_api_key: Optional[str] = None
    assistant_id: Optional[str] = None
    openai_base_url: Optional[str] = None
    content_root: Path = Path("data")
    tracked_files: List[str] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)
    workdir: Path = Path("content-improver")
    workflow_id: str = "default"
    poll_interval_ms: int = 2000
    max_attempts: int = 30
    inter_file_delay_ms: int = 0
    prompts_dir: Path = PROJECT_ROOT / "prompts"
    jargon_replacements: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_JARGON_REPLACEMENTS))

    @field_validator("poll_interval_ms", "inter_file_delay_ms")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @field_validator("max_attempts")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @property
    def improvements_dir(self) -> Path:
        return self.workdir / "improvements"

    @property
    def raw_responses_dir(self) -> Path:
        return self.improvements_dir / "raw"

    @property
    def backups_dir(self) -> Path:
        return self.workdir / "backups"

    @property
    def state_dir(self) -> Path:
        return self.workdir / "state"

    @property
    def assistant_configured(self) -> bool:
        return bool(self.openai_api_key and self.assistant_id)

    @classmethod
    def from_config(cls, config_path: Optional[str] = None, **overrides: Any) -> "ContentSettings":
        """
        Build settings from YAML + environment.

        Args:
            config_path: Optional YAML path (defaults to ConfigLoader resolution)
            **overrides: Field values that win over env and YAML

        Returns:
            ContentSettings with absolute paths
        """
        cfg = ConfigLoader.load(config_path)
        openai_cfg = cfg.get("openai", {}) or {}
        content_cfg = cfg.get("content", {}) or {}
        storage_cfg = cfg.get("storage", {}) or {}
        polling_cfg = cfg.get("polling", {}) or {}
        workflow_cfg = cfg.get("workflow", {}) or {}
        brand_cfg = cfg.get("brand_voice", {}) or {}

        api_key_var = openai_cfg.get("api_key_env_var", DEFAULT_API_KEY_ENV)
        assistant_var = openai_cfg.get("assistant_id_env_var", DEFAULT_ASSISTANT_ID_ENV)

        values: Dict[str, Any] = {
            "openai_api_key": os.getenv(api_key_var) or os.getenv(DEFAULT_API_KEY_ENV),
            "assistant_id": os.getenv(assistant_var) or openai_cfg.get("assistant_id"),
            "openai_base_url": os.getenv("OPENAI_BASE_URL") or openai_cfg.get("base_url"),
            "content_root": os.getenv("CONTENT_ROOT") or content_cfg.get("root") or "data",
            "tracked_files": content_cfg.get("tracked_files") or [],
            "exclude": content_cfg.get("exclude") or [],
            "workdir": os.getenv("CONTENT_WORKDIR") or storage_cfg.get("workdir") or "content-improver",
            "workflow_id": os.getenv("CONTENT_WORKFLOW_ID") or workflow_cfg.get("id") or "default",
            "poll_interval_ms": os.getenv("ASSISTANT_POLL_INTERVAL_MS") or polling_cfg.get("interval_ms", 2000),
            "max_attempts": os.getenv("ASSISTANT_MAX_ATTEMPTS") or polling_cfg.get("max_attempts", 30),
            "inter_file_delay_ms": workflow_cfg.get("inter_file_delay_ms", 0),
        }
        if cfg.get("prompts_dir"):
            values["prompts_dir"] = cfg["prompts_dir"]
        if brand_cfg.get("jargon_replacements"):
            values["jargon_replacements"] = brand_cfg["jargon_replacements"]

        values.update({k: v for k, v in overrides.items() if v is not None})
        settings = cls(**values)

        # Relative paths are anchored at the current working directory
        settings.content_root = Path(settings.content_root).expanduser().resolve()
        settings.workdir = Path(settings.workdir).expanduser().resolve()
        settings.prompts_dir = Path(settings.prompts_dir).expanduser().resolve()

        if not settings.openai_api_key:
            # Do not raise here (analysis of local files and apply still work), but log clearly
            logger.warning("OpenAI API key not found in environment (checked %s and %s)", api_key_var, DEFAULT_API_KEY_ENV)
        logger.debug(
            "Resolved settings: content_root=%s workdir=%s workflow_id=%s assistant_id=%s",
            settings.content_root, settings.workdir, settings.workflow_id, settings.assistant_id,
        )
        return settings
