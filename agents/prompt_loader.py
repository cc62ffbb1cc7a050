"""
Centralized prompt management for assistant requests.
Loads prompts from YAML files and provides formatting utilities.
"""

import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from functools import lru_cache

DEFAULT_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"


class PromptLoader:
    """Loads and manages prompts from YAML configuration files."""

    def __init__(self, prompts_dir: Optional[str] = None):
        """
        Initialize the prompt loader.

        Args:
            prompts_dir: Directory containing prompt YAML files
        """
        self.prompts_dir = Path(prompts_dir) if prompts_dir else DEFAULT_PROMPTS_DIR
        if not self.prompts_dir.exists():
            raise ValueError(f"Prompts directory not found: {self.prompts_dir}")

    @lru_cache(maxsize=32)
    def load_prompt(self, prompt_name: str) -> Dict[str, Any]:
        """
        Load prompt configuration for a workflow step.

        Args:
            prompt_name: Name of the prompt (e.g., 'improve_content')

        Returns:
            Dictionary containing prompt configuration

        Raises:
            FileNotFoundError: If prompt file doesn't exist
            ValueError: If prompt file is invalid
        """
        prompt_file = self.prompts_dir / f"{prompt_name}.yaml"

        if not prompt_file.exists():
            raise FileNotFoundError(f"Prompt file not found: {prompt_file}")

        with open(prompt_file, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f)

        if not isinstance(config, dict):
            raise ValueError(f"Prompt file is not a mapping: {prompt_file}")

        # Validate required fields
        required_fields = ["name", "system_prompt"]
        for field in required_fields:
            if field not in config:
                raise ValueError(f"Prompt file missing required field '{field}': {prompt_file}")

        return config

    def get_system_prompt(self, prompt_name: str) -> str:
        """Get the run-level instructions for a prompt."""
        config = self.load_prompt(prompt_name)
        return config["system_prompt"].strip()

    def get_user_prompt_template(self, prompt_name: str) -> str:
        config = self.load_prompt(prompt_name)
        return config.get("user_prompt_template", "").strip()

    def get_parameters(self, prompt_name: str) -> Dict[str, Any]:
        config = self.load_prompt(prompt_name)
        return config.get("parameters", {}) or {}

    def format_user_prompt(self, prompt_name: str, **kwargs) -> str:
        """
        Format the user prompt template with provided variables.

        Args:
            prompt_name: Name of the prompt
            **kwargs: Variables to substitute in the template

        Returns:
            Formatted prompt string
        """
        template = self.get_user_prompt_template(prompt_name)
        if not template:
            return ""

        try:
            return template.format(**kwargs)
        except KeyError as e:
            raise ValueError(f"Missing required template variable: {e}")

    def get_metadata(self, prompt_name: str) -> Dict[str, Any]:
        config = self.load_prompt(prompt_name)
        return {
            "name": config.get("name"),
            "description": config.get("description"),
            "version": config.get("version", "1.0")
        }


# Global prompt loader instances, one per directory
_prompt_loaders: Dict[Path, PromptLoader] = {}


def get_prompt_loader(prompts_dir: Optional[str] = None) -> PromptLoader:
    """Get the shared prompt loader for a directory (singleton per directory)."""
    key = Path(prompts_dir).resolve() if prompts_dir else DEFAULT_PROMPTS_DIR
    loader = _prompt_loaders.get(key)
    if loader is None:
        loader = PromptLoader(str(key))
        _prompt_loaders[key] = loader
    return loader
