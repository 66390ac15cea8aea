"""
API endpoints for concept cards and their links.

Provides endpoints for:
- Creating a concept card from a draft payload (one write)
- Listing cards and reading one card with its linked documents resolved
- Linking / unlinking / pinning news items and reflections
- The legacy A/B evidence link, and importing older card documents
- Response snippets, the conclusion and the A statement
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from question_bridge.api_errors import http_error
from question_bridge.db_session import get_async_session
from question_bridge.schemas import (
    AddLinkRequest,
    ConceptCreatedResponse,
    ConceptsListResponse,
    CreateConceptRequest,
    ImportConceptRequest,
    LinkEvidenceRequest,
    ResponseTextRequest,
    StatementRequest,
    UpdateConceptRequest,
)
from question_bridge.services.concept_session import ConceptSession, new_draft, open_card
from question_bridge.services.concept_state import SourceRef
from question_bridge.services.concept_store import ConceptStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/concepts", tags=["concepts"])


def card_payload(session: ConceptSession) -> Dict[str, Any]:
    return {"id": session.card_id, **session.state.to_document()}


async def load_session(card_id: str, db: AsyncSession) -> ConceptSession:
    try:
        return await open_card(ConceptStore(db), card_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Concept not found")


@router.get("/health")
async def health_check():
    """Health check endpoint for concepts API."""
    return {"status": "healthy", "service": "concepts_api"}


@router.post("", response_model=ConceptCreatedResponse)
async def create_concept(
    request: CreateConceptRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Create a concept card.

    The card is assembled as a draft (links, responses, statements) and
    stored in a single write, which assigns its id.
    """
    session = new_draft(
        ConceptStore(db),
        user_id=request.user_id,
        user_name=request.user_name,
        concept_name=request.concept_name,
        question=request.question,
        concept_phrase=request.concept_phrase,
    )
    try:
        for ref in request.recent:
            await session.add_link("recent", SourceRef(ref.source_type, ref.source_id, ref.source_path))
        for ref in request.scripture_support:
            await session.add_link("scripture_support",
                                   SourceRef(ref.source_type, ref.source_id, ref.source_path))
        for text in request.responses:
            await session.add_response(text)
        if request.conclusion is not None:
            await session.set_conclusion(request.conclusion)
        if request.a_statement is not None:
            await session.set_a_statement(request.a_statement)
        card_id = await session.save()
    except Exception as e:
        raise http_error(e)

    logger.info(f"[CONCEPTS] Created concept {card_id} for user {request.user_id}")
    return ConceptCreatedResponse(id=card_id, concept=card_payload(session))


@router.post("/import", response_model=ConceptCreatedResponse)
async def import_concept(
    request: ImportConceptRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Store an exported concept document as a new card.

    Documents written before the link table existed only carry
    ``bridge.aEvidence`` / ``bridge.bEvidence``; their evidence becomes link
    rows and shows up in both views.
    """
    store = ConceptStore(db)
    try:
        card_id = await store.import_document(request.document)
        session = await open_card(store, card_id)
    except Exception as e:
        raise http_error(e)

    logger.info(f"[CONCEPTS] Imported concept {card_id} ({len(session.state.links)} links)")
    return ConceptCreatedResponse(id=card_id, concept=card_payload(session))


@router.get("", response_model=ConceptsListResponse)
async def list_concepts(
    user_id: Optional[str] = None,
    question: Optional[str] = None,
    db: AsyncSession = Depends(get_async_session),
):
    """List concept cards, newest first, by owner or by exact question."""
    store = ConceptStore(db)
    if question is not None:
        concepts = await store.query_cards("question", question)
        if user_id:
            concepts = [c for c in concepts if c["userId"] == user_id]
    else:
        concepts = await store.list_cards(user_id=user_id)
    return ConceptsListResponse(concepts=concepts, count=len(concepts))


@router.get("/{concept_id}")
async def get_concept(
    concept_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    """Card document plus the linked news items and reflections that still exist."""
    session = await load_session(concept_id, db)
    payload = card_payload(session)
    payload["resolved"] = await session.store.resolve_links(session.state)
    return payload


@router.patch("/{concept_id}")
async def update_concept(
    concept_id: str,
    request: UpdateConceptRequest,
    db: AsyncSession = Depends(get_async_session),
):
    session = await load_session(concept_id, db)
    try:
        await session.update_details(
            concept_name=request.concept_name,
            question=request.question,
            concept_phrase=request.concept_phrase,
        )
    except Exception as e:
        raise http_error(e)
    return card_payload(session)


# ============================================================================
# Links
# ============================================================================

@router.post("/{concept_id}/links")
async def add_link(
    concept_id: str,
    request: AddLinkRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """Link a news item or reflection. Linking an already-linked source is a no-op."""
    session = await load_session(concept_id, db)
    try:
        ref = SourceRef(request.source_type, request.source_id, request.source_path)
        added = await session.add_link(request.target, ref)
    except Exception as e:
        raise http_error(e)
    return {"added": added, "concept": card_payload(session)}


@router.delete("/{concept_id}/links/{target}/{source_id}")
async def remove_link(
    concept_id: str,
    target: str,
    source_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    session = await load_session(concept_id, db)
    try:
        removed = await session.remove_link(target, source_id)
    except Exception as e:
        raise http_error(e)
    return {"removed": removed, "concept": card_payload(session)}


@router.post("/{concept_id}/links/{target}/{source_id}/pin")
async def toggle_link_pin(
    concept_id: str,
    target: str,
    source_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    session = await load_session(concept_id, db)
    try:
        pinned = await session.toggle_pin(target, source_id)
    except Exception as e:
        raise http_error(e)
    if pinned is None:
        raise HTTPException(status_code=404, detail="Link not found")
    return {"pinned": pinned, "concept": card_payload(session)}


@router.post("/{concept_id}/evidence")
async def link_evidence(
    concept_id: str,
    request: LinkEvidenceRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """Legacy A/B evidence link; adds an evidence entry to the source's link row."""
    session = await load_session(concept_id, db)
    try:
        ref = SourceRef(request.source_type, request.source_id, request.source_path)
        link = await session.link_with_evidence(
            ref, request.slot,
            excerpt=request.excerpt,
            why=request.why,
            title=request.title,
            pinned=request.pinned,
        )
    except Exception as e:
        raise http_error(e)
    return {"evidence": link.to_evidence_item(link.evidence[-1]), "concept": card_payload(session)}


# ============================================================================
# Responses and statements
# ============================================================================

@router.post("/{concept_id}/responses")
async def add_response(
    concept_id: str,
    request: ResponseTextRequest,
    db: AsyncSession = Depends(get_async_session),
):
    session = await load_session(concept_id, db)
    try:
        snippet = await session.add_response(request.text)
    except Exception as e:
        raise http_error(e)
    return {"response": snippet.to_document(), "concept": card_payload(session)}


@router.post("/{concept_id}/responses/{response_id}/pin")
async def toggle_response_pin(
    concept_id: str,
    response_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    session = await load_session(concept_id, db)
    try:
        pinned = await session.toggle_response_pin(response_id)
    except Exception as e:
        raise http_error(e)
    if pinned is None:
        raise HTTPException(status_code=404, detail="Response not found")
    return {"pinned": pinned, "concept": card_payload(session)}


@router.delete("/{concept_id}/responses/{response_id}")
async def delete_response(
    concept_id: str,
    response_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    session = await load_session(concept_id, db)
    try:
        deleted = await session.delete_response(response_id)
    except Exception as e:
        raise http_error(e)
    if not deleted:
        raise HTTPException(status_code=404, detail="Response not found")
    return {"deleted": True, "concept": card_payload(session)}


@router.put("/{concept_id}/conclusion")
async def set_conclusion(
    concept_id: str,
    request: StatementRequest,
    db: AsyncSession = Depends(get_async_session),
):
    session = await load_session(concept_id, db)
    try:
        await session.set_conclusion(request.text)
    except Exception as e:
        raise http_error(e)
    return card_payload(session)


@router.put("/{concept_id}/a-statement")
async def set_a_statement(
    concept_id: str,
    request: StatementRequest,
    db: AsyncSession = Depends(get_async_session),
):
    session = await load_session(concept_id, db)
    try:
        await session.set_a_statement(request.text)
    except Exception as e:
        raise http_error(e)
    return card_payload(session)
