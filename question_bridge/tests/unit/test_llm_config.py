from question_bridge.services.llm_config import get_env_llm_defaults, is_ai_enabled


def test_env_llm_defaults(monkeypatch):
    monkeypatch.setenv("DEFAULT_LLM_MODE", "local")
    monkeypatch.setenv("LOCAL_LLM_BASE_URL", "http://localhost:1234")
    monkeypatch.setenv("LOCAL_LLM_CHAT_MODEL", "qwen2.5-7b-instruct")
    monkeypatch.setenv("LOCAL_LLM_JSON_MODE", "false")
    monkeypatch.setenv("LOCAL_LLM_TIMEOUT_SECONDS", "45")
    monkeypatch.setenv("ANTHROPIC_MODEL", "claude-test")

    defaults = get_env_llm_defaults()

    assert defaults["mode"] == "local"
    assert defaults["base_url"] == "http://localhost:1234"
    assert defaults["chat_model"] == "qwen2.5-7b-instruct"
    assert defaults["json_mode"] is False
    assert defaults["timeout_seconds"] == 45.0
    assert defaults["anthropic_model"] == "claude-test"


def test_ai_enabled_requires_a_backend():
    assert is_ai_enabled({"enabled": True, "mode": "online", "anthropic_api_key": "key"}) is True
    assert is_ai_enabled({"enabled": True, "mode": "online", "anthropic_api_key": ""}) is False
    assert is_ai_enabled({"enabled": True, "mode": "local", "base_url": "http://localhost:1234"}) is True
    assert is_ai_enabled({"enabled": True, "mode": "local", "base_url": " "}) is False


def test_kill_switch_disables_ai(monkeypatch):
    monkeypatch.setenv("AI_FEATURES_ENABLED", "false")
    monkeypatch.setenv("DEFAULT_LLM_MODE", "online")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "key")

    assert is_ai_enabled() is False
