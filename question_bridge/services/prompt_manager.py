"""
Prompt Manager Service

Loads the generation prompt templates from ``prompts.json`` and renders them
with ``string.Template`` substitution. The file is re-read when its
modification time changes, so prompts can be tuned without a restart.
"""

import json
from pathlib import Path
from string import Template
from typing import Any, Dict, Optional

DEFAULT_PROMPTS_FILE = Path(__file__).resolve().parent.parent / "prompts.json"


class PromptManager:
    """Read-only access to the prompt templates used by the AI pipeline."""

    def __init__(self, prompts_file: Optional[Path] = None):
        self.prompts_file = Path(prompts_file or DEFAULT_PROMPTS_FILE)
        self._prompts_cache: Dict[str, Any] = {}
        self._file_mtime: Optional[float] = None
        self.reload()

    def reload(self) -> None:
        """Reload prompts from file (hot-reload support)"""
        if not self.prompts_file.exists():
            raise FileNotFoundError(f"Prompts file not found: {self.prompts_file}")

        with open(self.prompts_file, "r", encoding="utf-8") as f:
            self._prompts_cache = json.load(f)

        self._file_mtime = self.prompts_file.stat().st_mtime

    def _check_reload(self) -> None:
        if self.prompts_file.exists() and self.prompts_file.stat().st_mtime != self._file_mtime:
            self.reload()

    def get_prompt(self, prompt_name: str) -> Dict[str, Any]:
        """
        Get a specific prompt configuration

        Raises:
            KeyError: If prompt not found
        """
        self._check_reload()

        if prompt_name not in self._prompts_cache.get("prompts", {}):
            raise KeyError(f"Prompt not found: {prompt_name}")

        return self._prompts_cache["prompts"][prompt_name].copy()

    def render_prompt(self, prompt_name: str, variables: Dict[str, Any]) -> str:
        """
        Render a prompt template with variable substitution

        Example:
            >>> pm = PromptManager()
            >>> pm.render_prompt("reaction_snippets", {
            ...     "news_title": "...",
            ...     "news_content": "...",
            ...     "concept_name": "주도권",
            ... })
        """
        template = Template(self.get_prompt(prompt_name).get("template", ""))

        try:
            return template.substitute(variables)
        except KeyError as e:
            missing_var = str(e).strip("'")
            raise ValueError(
                f"Missing required variable '{missing_var}' for prompt '{prompt_name}'"
            )

    def get_prompt_metadata(self, prompt_name: str) -> Dict[str, Any]:
        """Generation settings for a prompt, falling back to the file's defaults."""
        prompt_config = self.get_prompt(prompt_name)
        defaults = self._prompts_cache.get("defaults", {})

        return {
            "description": prompt_config.get("description", ""),
            "temperature": prompt_config.get("temperature", defaults.get("default_temperature", 0.7)),
            "max_tokens": prompt_config.get("max_tokens", defaults.get("default_max_tokens", 1500)),
            "result_key": prompt_config.get("result_key"),
        }


_prompt_manager: Optional[PromptManager] = None


def get_prompt_manager() -> PromptManager:
    """Process-wide prompt manager."""
    global _prompt_manager
    if _prompt_manager is None:
        _prompt_manager = PromptManager()
    return _prompt_manager
