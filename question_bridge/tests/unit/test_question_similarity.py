from types import SimpleNamespace

import pytest

from question_bridge.services.question_similarity import (
    extract_keywords,
    find_similar_questions,
    normalize_question,
    question_similarity,
    validate_question,
)


def test_identical_questions_after_trim_and_case_score_one():
    assert question_similarity("  Why Do We Suffer?  ", "why do we suffer?") == 1.0


def test_punctuation_is_ignored():
    assert question_similarity("why do we pray?", "why do we pray") == 1.0
    assert question_similarity("질문입니다", "질문입니다?") == 1.0


def test_partial_keyword_overlap():
    score = question_similarity("이 뉴스는 어떤 질문을 던지나요?", "이 뉴스는 어떤 질문을 던지는가?")
    # {뉴스는, 어떤, 질문을, 던지나요} vs {뉴스는, 어떤, 질문을, 던지는가} -> 3 / 5
    assert score == pytest.approx(0.6)
    assert score > 0.3


def test_similarity_is_symmetric_and_bounded():
    pairs = [
        ("what is grace", "grace is what we receive"),
        ("용서란 무엇인가", "무엇이 용서인가"),
        ("a b c", "completely different words"),
    ]
    for first, second in pairs:
        forward = question_similarity(first, second)
        assert forward == question_similarity(second, first)
        assert 0.0 <= forward <= 1.0


def test_empty_and_missing_inputs_score_zero():
    assert question_similarity("", "anything here") == 0.0
    assert question_similarity(None, "anything here") == 0.0
    assert question_similarity("   ", "   ") == 0.0


def test_questions_without_keywords_score_zero():
    # Every token is a single character, so neither side has keywords.
    assert question_similarity("a b", "c d") == 0.0


def test_extract_keywords_strips_one_trailing_particle_and_short_tokens():
    keywords = extract_keywords(normalize_question("왜 우리는 기도를"))
    assert keywords == {"우리는", "기도"}
    assert extract_keywords("a bb ccc") == {"bb", "ccc"}


def test_find_similar_questions_filters_and_orders():
    items = [
        SimpleNamespace(id="low", question="completely unrelated topic"),
        SimpleNamespace(id="exact", question="why do we pray"),
        SimpleNamespace(id="partial", question="why do we fast"),
        SimpleNamespace(id="missing", question=None),
    ]

    results = find_similar_questions("why do we pray", items, threshold=0.3)

    assert [r.item.id for r in results] == ["exact", "partial"]
    assert results[0].score == 1.0
    assert all(r.score >= 0.3 for r in results)


def test_find_similar_questions_keeps_input_order_for_ties():
    items = [{"id": n, "question": "why do we pray"} for n in ("first", "second", "third")]

    results = find_similar_questions("why do we pray", items, question_of=lambda item: item["question"])

    assert [r.item["id"] for r in results] == ["first", "second", "third"]


def test_validate_question():
    assert validate_question("왜 기도하는가?") == (True, None)
    assert validate_question("   ")[0] is False
    assert validate_question(None)[0] is False

    valid, error = validate_question("x" * 121)
    assert valid is False
    assert "120" in error
    assert validate_question("x" * 120) == (True, None)
