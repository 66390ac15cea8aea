"""
Concept card persistence and source-document lookups.

Service layer over the async SQLAlchemy session. Plays the role of the
document store for the linking workflow: get-by-id, query-by-field,
create-document (one write, identity assigned by the store) and
update-fields. Link rows are written together with their card so a save is
a single transaction.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from question_bridge.config import SCRIPTURE_POOL_LIMIT
from question_bridge.models import Concept, ConceptLink, NewsItem, Reflection
from question_bridge.services.concept_state import (
    ConceptState,
    EvidenceEntry,
    LinkRow,
)

logger = logging.getLogger(__name__)

QUERYABLE_FIELDS = {
    "userId": Concept.user_id,
    "conceptName": Concept.concept_name,
    "question": Concept.question,
}


# ---------------------------------------------------------------------------
# Row <-> state mapping
# ---------------------------------------------------------------------------

def _link_rows(concept_id: str, state: ConceptState) -> List[ConceptLink]:
    return [
        ConceptLink(
            concept_id=concept_id,
            source_type=link.source_type,
            source_id=link.source_id,
            source_path=link.source_path,
            target=link.target,
            position=position,
            pinned=link.pinned,
            confidence=link.confidence,
            created_by=link.created_by,
            evidence=[entry.to_document() for entry in link.evidence],
            added_at=link.added_at,
        )
        for position, link in enumerate(state.links)
    ]


def _apply_fields(concept: Concept, state: ConceptState) -> None:
    concept.concept_name = state.concept_name
    concept.concept_phrase = state.concept_phrase
    concept.question = state.question
    concept.conclusion = state.conclusion
    concept.b_statement = state.b_statement
    concept.user_id = state.user_id
    concept.user_name = state.user_name
    # New dict every time so the JSON column is flagged dirty
    concept.sequence = state.sequence_document()


def state_from_rows(concept: Concept, links: List[ConceptLink]) -> ConceptState:
    sequence = concept.sequence or {}
    state = ConceptState(
        user_id=concept.user_id,
        user_name=concept.user_name,
        concept_name=concept.concept_name or "",
        concept_phrase=concept.concept_phrase,
        question=concept.question or "",
        conclusion=concept.conclusion,
        a_statement=sequence.get("aStatement"),
        b_statement=concept.b_statement,
        created_at=concept.created_at,
        updated_at=concept.updated_at,
    )
    state.links = [
        LinkRow(
            source_type=row.source_type,
            source_id=row.source_id,
            source_path=row.source_path,
            target=row.target,
            pinned=bool(row.pinned),
            confidence=row.confidence if row.confidence is not None else 1.0,
            created_by=row.created_by or "manual",
            evidence=[EvidenceEntry.from_document(e) for e in row.evidence or []],
            added_at=row.added_at,
        )
        for row in sorted(links, key=lambda r: r.position)
    ]
    state.load_sequence_fields(sequence)
    return state


def serialize_news(news: NewsItem) -> Dict[str, Any]:
    return {
        "id": news.id,
        "type": "news",
        "title": news.title,
        "subtitle": news.subtitle,
        "content": news.content,
        "question": news.question,
        "createdAt": news.created_at,
    }


def serialize_reflection(reflection: Reflection) -> Dict[str, Any]:
    return {
        "id": reflection.id,
        "type": "reflection",
        "parentTitle": reflection.parent_title,
        "parentPath": reflection.parent_path,
        "content": reflection.content,
        "bibleRef": reflection.bible_ref,
        "question": reflection.question,
        "createdAt": reflection.created_at,
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ConceptStore:
    """Document-store collaborator backed by an ``AsyncSession``."""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    # -- concept cards -----------------------------------------------------

    async def get_card(self, card_id: str) -> ConceptState:
        """Load a card. Raises ``LookupError`` if it does not exist."""
        concept = await self.db.get(Concept, card_id)
        if concept is None:
            raise LookupError(f"Concept {card_id} not found")
        result = await self.db.execute(
            select(ConceptLink).where(ConceptLink.concept_id == card_id)
        )
        return state_from_rows(concept, list(result.scalars().all()))

    async def create_card(self, state: ConceptState) -> str:
        """Store a draft card and all of its links in one commit; returns the new id."""
        concept = Concept()
        _apply_fields(concept, state)
        try:
            self.db.add(concept)
            await self.db.flush()
            for row in _link_rows(concept.id, state):
                self.db.add(row)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(concept)
        state.created_at = concept.created_at
        state.updated_at = concept.updated_at
        logger.info("Concept created: %s (%d links)", concept.id, len(state.links))
        return concept.id

    async def import_document(self, document: Dict[str, Any]) -> str:
        """Store an exported concept document as a new card.

        Older documents that only carry ``bridge.aEvidence`` / ``bEvidence``
        get their evidence folded into link rows.
        """
        state = ConceptState.from_document(document)
        if not state.user_id:
            raise ValueError("userId is required")
        return await self.create_card(state)

    async def save_card(self, card_id: str, state: ConceptState) -> None:
        """Replace a card's fields and link rows. Raises ``LookupError`` if missing."""
        concept = await self.db.get(Concept, card_id)
        if concept is None:
            raise LookupError(f"Concept {card_id} not found")
        try:
            _apply_fields(concept, state)
            await self.db.execute(delete(ConceptLink).where(ConceptLink.concept_id == card_id))
            for row in _link_rows(card_id, state):
                self.db.add(row)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.db.refresh(concept)
        state.updated_at = concept.updated_at
        logger.debug("Concept saved: %s", card_id)

    async def list_cards(self, *, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Card summaries, newest first, optionally filtered by owner."""
        query = select(Concept).order_by(Concept.created_at.desc())
        if user_id:
            query = query.where(Concept.user_id == user_id)
        result = await self.db.execute(query)
        return [self._summary(c) for c in result.scalars().all()]

    async def query_cards(self, field: str, value: Any) -> List[Dict[str, Any]]:
        """Cards whose ``field`` equals ``value``. Raises ``ValueError`` for unknown fields."""
        column = QUERYABLE_FIELDS.get(field)
        if column is None:
            raise ValueError(f"Cannot query concepts by {field}")
        result = await self.db.execute(
            select(Concept).where(column == value).order_by(Concept.created_at.desc())
        )
        return [self._summary(c) for c in result.scalars().all()]

    @staticmethod
    def _summary(concept: Concept) -> Dict[str, Any]:
        return {
            "id": concept.id,
            "type": "concept",
            "conceptName": concept.concept_name,
            "conceptPhrase": concept.concept_phrase,
            "question": concept.question,
            "conclusion": concept.conclusion,
            "userId": concept.user_id,
            "userName": concept.user_name,
            "createdAt": concept.created_at,
            "updatedAt": concept.updated_at,
        }

    # -- source documents --------------------------------------------------

    async def get_news(self, news_id: str) -> Optional[Dict[str, Any]]:
        news = await self.db.get(NewsItem, news_id)
        return serialize_news(news) if news else None

    async def get_reflection(self, reflection_id: str) -> Optional[Dict[str, Any]]:
        reflection = await self.db.get(Reflection, reflection_id)
        return serialize_reflection(reflection) if reflection else None

    async def resolve_links(self, state: ConceptState) -> Dict[str, List[Dict[str, Any]]]:
        """Fetch every linked document individually; unresolved links are skipped."""
        resolved = {"recent": [], "scriptureSupport": []}
        for link in state.links:
            if link.source_type == "news":
                document = await self.get_news(link.source_id)
            else:
                document = await self.get_reflection(link.source_id)
            if document is None:
                logger.debug("Skipping unresolved %s link %s", link.source_type, link.source_id)
                continue
            key = "recent" if link.target == "recent" else "scriptureSupport"
            resolved[key].append({**document, "pinned": link.pinned, "sourceId": link.source_id})
        return resolved

    async def reflection_pool(self, limit: int = SCRIPTURE_POOL_LIMIT) -> List[Dict[str, Any]]:
        """Newest reflections in the shape the scripture recommender expects."""
        result = await self.db.execute(
            select(Reflection).order_by(Reflection.created_at.desc()).limit(limit)
        )
        return [
            {
                "id": r.id,
                "content": r.content,
                "bibleRef": r.bible_ref,
                "parentTitle": r.parent_title,
            }
            for r in result.scalars().all()
        ]

    async def list_questioned_items(self) -> List[Dict[str, Any]]:
        """Every news item, concept and reflection that carries a question."""
        items: List[Dict[str, Any]] = []

        news_rows = await self.db.execute(select(NewsItem).where(NewsItem.question.isnot(None)))
        for news in news_rows.scalars().all():
            if news.question:
                items.append({
                    "id": news.id,
                    "type": "news",
                    "title": news.title or "Untitled",
                    "question": news.question,
                    "preview": news.subtitle or (news.content or "")[:50] or None,
                    "createdAt": news.created_at,
                })

        concept_rows = await self.db.execute(select(Concept))
        for concept in concept_rows.scalars().all():
            if concept.question:
                items.append({
                    "id": concept.id,
                    "type": "concept",
                    "title": concept.concept_name or "Untitled concept",
                    "question": concept.question,
                    "preview": (concept.concept_phrase or "")[:50] or None,
                    "createdAt": concept.created_at,
                })

        reflection_rows = await self.db.execute(
            select(Reflection).where(Reflection.question.isnot(None))
        )
        for reflection in reflection_rows.scalars().all():
            if reflection.question:
                items.append({
                    "id": reflection.id,
                    "type": "reflection",
                    "title": reflection.parent_title or "Reflection",
                    "question": reflection.question,
                    "preview": (reflection.content or "")[:50] or None,
                    "createdAt": reflection.created_at,
                })

        return items

    async def create_news(self, *, title: str, subtitle: Optional[str] = None,
                          content: Optional[str] = None,
                          question: Optional[str] = None) -> Dict[str, Any]:
        news = NewsItem(title=title, subtitle=subtitle, content=content, question=question)
        self.db.add(news)
        await self.db.commit()
        await self.db.refresh(news)
        logger.info("News item created: %s", news.id)
        return serialize_news(news)

    async def create_reflection(self, *, content: str, parent_title: Optional[str] = None,
                                parent_path: Optional[str] = None,
                                bible_ref: Optional[str] = None,
                                question: Optional[str] = None,
                                user_id: Optional[str] = None) -> Dict[str, Any]:
        reflection = Reflection(
            content=content,
            parent_title=parent_title,
            parent_path=parent_path,
            bible_ref=bible_ref,
            question=question,
            user_id=user_id,
        )
        self.db.add(reflection)
        await self.db.commit()
        await self.db.refresh(reflection)
        logger.info("Reflection created: %s", reflection.id)
        return serialize_reflection(reflection)
