"""Keyword-overlap similarity between free-text questions.

Pure text operations with no storage dependencies. Used to group news items,
reflections and concept cards that hold "the same question".
"""
import re
from dataclasses import dataclass
from typing import Generic, Iterable, List, Optional, Set, Tuple, TypeVar

from question_bridge.config import QUESTION_MAX_LENGTH, QUESTION_SIMILARITY_THRESHOLD

# Korean particles / endings; only one is stripped, from the very end of the question.
_TRAILING_PARTICLE = re.compile(r"[은는이가을를의에서로와과도만까지부터]$")
_PUNCTUATION = re.compile(r"[?？!！.。,，]")

T = TypeVar("T")


@dataclass(frozen=True)
class SimilarityResult(Generic[T]):
    """A candidate paired with its similarity to the target question."""

    item: T
    score: float


def normalize_question(question: Optional[str]) -> str:
    return (question or "").strip().lower()


def extract_keywords(normalized: str) -> Set[str]:
    """Keyword tokens of an already-normalized question.

    Strips one trailing particle, removes sentence punctuation, splits on
    whitespace and drops tokens of length <= 1.
    """
    cleaned = _TRAILING_PARTICLE.sub("", normalized)
    cleaned = _PUNCTUATION.sub("", cleaned)
    return {token for token in cleaned.split() if len(token) > 1}


def question_similarity(first: Optional[str], second: Optional[str]) -> float:
    """Jaccard similarity of two questions' keyword sets, in [0, 1].

    Identical questions (after trimming and lowercasing) score 1. Questions
    with no usable keywords score 0. Never raises on odd input.
    """
    n1 = normalize_question(first)
    n2 = normalize_question(second)
    if not n1 or not n2:
        return 0.0
    if n1 == n2:
        return 1.0

    keywords1 = extract_keywords(n1)
    keywords2 = extract_keywords(n2)
    if not keywords1 or not keywords2:
        return 0.0

    return len(keywords1 & keywords2) / len(keywords1 | keywords2)


def find_similar_questions(
    target: str,
    items: Iterable[T],
    *,
    threshold: float = QUESTION_SIMILARITY_THRESHOLD,
    question_of=lambda item: getattr(item, "question", None),
) -> List[SimilarityResult[T]]:
    """Candidates scoring at least ``threshold``, best first.

    Ties keep input order (``sorted`` is stable).
    """
    scored = [
        SimilarityResult(item=item, score=question_similarity(target, question_of(item)))
        for item in items
    ]
    matches = [result for result in scored if result.score >= threshold]
    return sorted(matches, key=lambda result: result.score, reverse=True)


def validate_question(question: Optional[str]) -> Tuple[bool, Optional[str]]:
    """Return ``(valid, error)`` for a user-entered question."""
    if not question or not question.strip():
        return False, "A question is required"
    if len(question) > QUESTION_MAX_LENGTH:
        return False, f"Questions must be at most {QUESTION_MAX_LENGTH} characters"
    return True, None

