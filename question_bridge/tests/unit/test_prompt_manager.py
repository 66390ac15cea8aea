import json

import pytest

from question_bridge.services.prompt_manager import PromptManager


def test_bundled_prompts_cover_every_stage():
    manager = PromptManager()

    for name in ("reaction_snippets", "conclusion_candidates", "scripture_recommendations"):
        assert manager.get_prompt(name)["template"]
    assert manager.get_prompt_metadata("scripture_recommendations")["result_key"] == "scripture_candidates"


def test_render_prompt_substitutes_variables():
    manager = PromptManager()

    prompt = manager.render_prompt("conclusion_candidates", {
        "reactions": "1. 불안하다",
        "concept_name": "염려",
        "question": "왜 염려하는가?",
    })

    assert "그러나 성경에서 염려은(는)" in prompt
    assert "1. 불안하다" in prompt
    assert "${" not in prompt


def test_render_prompt_reports_missing_variable():
    manager = PromptManager()

    with pytest.raises(ValueError, match="news_title"):
        manager.render_prompt("reaction_snippets", {"news_content": "내용", "concept_name": "염려"})


def test_unknown_prompt_raises_key_error():
    with pytest.raises(KeyError):
        PromptManager().get_prompt("missing")


def test_metadata_falls_back_to_file_defaults(tmp_path):
    prompts_file = tmp_path / "prompts.json"
    prompts_file.write_text(json.dumps({
        "defaults": {"default_temperature": 0.2, "default_max_tokens": 300},
        "prompts": {"custom": {"template": "Hello $name"}},
    }), encoding="utf-8")

    manager = PromptManager(prompts_file)

    assert manager.render_prompt("custom", {"name": "world"}) == "Hello world"
    metadata = manager.get_prompt_metadata("custom")
    assert metadata["temperature"] == 0.2
    assert metadata["max_tokens"] == 300
    assert metadata["result_key"] is None
