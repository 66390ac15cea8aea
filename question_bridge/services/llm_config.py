import os
from typing import Any, Dict, Optional

from question_bridge import config

DEFAULT_LOCAL_BASE_URL = "http://localhost:1234"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    value_str = str(value).strip().lower()
    return value_str in {"1", "true", "yes", "on"}


def get_env_llm_defaults() -> Dict[str, Any]:
    return {
        "enabled": _to_bool(os.getenv("AI_FEATURES_ENABLED", "true")),
        "mode": os.getenv("DEFAULT_LLM_MODE", "online"),
        "anthropic_api_key": os.getenv("ANTHROPIC_API_KEY", config.ANTHROPIC_API_KEY),
        "anthropic_model": os.getenv("ANTHROPIC_MODEL", DEFAULT_ANTHROPIC_MODEL),
        "base_url": os.getenv("LOCAL_LLM_BASE_URL", DEFAULT_LOCAL_BASE_URL),
        "chat_model": os.getenv("LOCAL_LLM_CHAT_MODEL", "qwen2.5-7b-instruct"),
        "json_mode": _to_bool(os.getenv("LOCAL_LLM_JSON_MODE", "true")),
        "timeout_seconds": float(os.getenv("LOCAL_LLM_TIMEOUT_SECONDS", "120")),
    }


def is_ai_enabled(llm_config: Optional[Dict[str, Any]] = None) -> bool:
    """Whether the text-generation collaborator can be called at all."""
    resolved = llm_config or get_env_llm_defaults()
    if not resolved.get("enabled", True):
        return False
    if resolved.get("mode") == "local":
        return bool(str(resolved.get("base_url") or "").strip())
    return bool(resolved.get("anthropic_api_key"))
