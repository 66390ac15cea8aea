"""
Related-question lookups for the Question Bridge view.

Works on the item dicts produced by ``ConceptStore.list_questioned_items``
(``id``, ``type``, ``title``, ``question``, ...).
"""

import logging
from typing import Any, Dict, List, Optional

from question_bridge.config import QUESTION_SIMILARITY_THRESHOLD, RELATED_QUESTION_THRESHOLD
from question_bridge.services.question_similarity import find_similar_questions, question_similarity

logger = logging.getLogger(__name__)

ITEM_TYPES = ("news", "concept", "reflection")


def _question_of(item: Dict[str, Any]) -> Optional[str]:
    return item.get("question")


def group_related(
    target: str,
    items: List[Dict[str, Any]],
    *,
    exclude_id: Optional[str] = None,
    exclude_type: Optional[str] = None,
    threshold: float = RELATED_QUESTION_THRESHOLD,
) -> Dict[str, List[Dict[str, Any]]]:
    """Items asking a similar question, bucketed by type and best match first.

    The item being viewed is left out: by ``(id, type)`` when a type is
    given, otherwise by id alone.
    """
    grouped: Dict[str, List[Dict[str, Any]]] = {item_type: [] for item_type in ITEM_TYPES}
    if not (target or "").strip():
        return grouped

    for match in find_similar_questions(target, items, threshold=threshold, question_of=_question_of):
        item = match.item
        if exclude_id is not None and item.get("id") == exclude_id:
            if exclude_type is None or item.get("type") == exclude_type:
                continue
        bucket = grouped.get(item.get("type"))
        if bucket is None:
            logger.debug("Ignoring item of unknown type %s", item.get("type"))
            continue
        bucket.append({**item, "score": round(match.score, 4)})
    return grouped


def group_by_question(
    items: List[Dict[str, Any]],
    *,
    threshold: float = QUESTION_SIMILARITY_THRESHOLD,
) -> List[Dict[str, Any]]:
    """Greedy clustering: each item joins the first group whose lead question it matches.

    Groups keep the lead item's question and are ordered by size, largest first.
    """
    groups: List[Dict[str, Any]] = []
    for item in items:
        question = _question_of(item)
        if not (question or "").strip():
            continue
        for group in groups:
            if question_similarity(group["question"], question) >= threshold:
                group["items"].append(item)
                break
        else:
            groups.append({"question": question.strip(), "items": [item]})
    return sorted(groups, key=lambda group: len(group["items"]), reverse=True)
