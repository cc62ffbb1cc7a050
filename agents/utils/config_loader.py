import os
import yaml
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class ConfigLoader:
    """
    Centralized application configuration loader.

    - Reads YAML from a default path (`config.content.yaml`) unless overridden,
      either explicitly or through the `CONTENT_CONFIG` environment variable
    - Returns a dictionary (empty when file missing or unreadable)
    - Handles errors internally and logs diagnostics
    """

    DEFAULT_CONFIG_PATH = "config.content.yaml"

    @staticmethod
    def resolve_path(config_path: Optional[str] = None) -> str:
        return config_path or os.getenv("CONTENT_CONFIG") or ConfigLoader.DEFAULT_CONFIG_PATH

    @staticmethod
    def load(config_path: Optional[str] = None) -> Dict[str, Any]:
        path = ConfigLoader.resolve_path(config_path)
        try:
            if os.path.exists(path):
                with open(path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    logger.warning("ConfigLoader: %s does not contain a mapping; ignoring it", path)
                    return {}
                logger.debug("ConfigLoader: Loaded config from %s", path)
                return data
            logger.debug("ConfigLoader: Config file %s not found; returning empty config", path)
            return {}
        except Exception as e:
            logger.exception("ConfigLoader: Failed to load config from %s: %s", path, e)
            return {}
