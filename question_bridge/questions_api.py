"""
API endpoints for the Question Bridge view.

Provides endpoints for:
- Validating a user-entered question
- Scoring two questions against each other
- Listing news items, concept cards and reflections that ask a similar question
- Grouping every questioned item by shared question
- Seeding news items and reflections (local development)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from question_bridge.config import QUESTION_SIMILARITY_THRESHOLD, RELATED_QUESTION_THRESHOLD
from question_bridge.db_session import get_async_session
from question_bridge.schemas import (
    CreateNewsRequest,
    CreateReflectionRequest,
    QuestionValidationRequest,
    QuestionValidationResponse,
    RelatedQuestionsRequest,
    SimilarityRequest,
    SimilarityResponse,
)
from question_bridge.services.concept_store import ConceptStore
from question_bridge.services.question_similarity import question_similarity, validate_question
from question_bridge.services.related_questions import group_by_question, group_related

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/questions", tags=["questions"])


@router.get("/health")
async def health_check():
    """Health check endpoint for questions API."""
    return {"status": "healthy", "service": "questions_api"}


@router.post("/validate", response_model=QuestionValidationResponse)
async def validate(request: QuestionValidationRequest):
    valid, error = validate_question(request.question)
    return QuestionValidationResponse(valid=valid, error=error)


@router.post("/similarity", response_model=SimilarityResponse)
async def similarity(request: SimilarityRequest):
    return SimilarityResponse(score=question_similarity(request.first, request.second))


@router.post("/related")
async def related_items(
    request: RelatedQuestionsRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """
    Items whose question resembles ``request.question``, grouped by type.

    Returns:
        {"question": ..., "related": {"news": [...], "concept": [...], "reflection": [...]}, "count": n}
    """
    threshold = request.threshold if request.threshold is not None else RELATED_QUESTION_THRESHOLD
    if not 0.0 <= threshold <= 1.0:
        raise HTTPException(status_code=400, detail="Threshold must be between 0 and 1")

    items = await ConceptStore(db).list_questioned_items()
    related = group_related(
        request.question,
        items,
        exclude_id=request.exclude_id,
        exclude_type=request.exclude_type,
        threshold=threshold,
    )
    count = sum(len(bucket) for bucket in related.values())
    logger.info(f"[QUESTIONS] {count} related items for question '{request.question}'")
    return {"question": request.question, "related": related, "count": count}


@router.get("/groups")
async def question_groups(
    threshold: float = QUESTION_SIMILARITY_THRESHOLD,
    db: AsyncSession = Depends(get_async_session),
):
    """Every questioned item, clustered by similar question."""
    if not 0.0 <= threshold <= 1.0:
        raise HTTPException(status_code=400, detail="Threshold must be between 0 and 1")
    items = await ConceptStore(db).list_questioned_items()
    groups = group_by_question(items, threshold=threshold)
    return {"groups": groups, "count": len(groups)}


@router.post("/news")
async def create_news(
    request: CreateNewsRequest,
    db: AsyncSession = Depends(get_async_session),
):
    if request.question is not None:
        valid, error = validate_question(request.question)
        if not valid:
            raise HTTPException(status_code=400, detail=error)
    return await ConceptStore(db).create_news(
        title=request.title,
        subtitle=request.subtitle,
        content=request.content,
        question=request.question,
    )


@router.post("/reflections")
async def create_reflection(
    request: CreateReflectionRequest,
    db: AsyncSession = Depends(get_async_session),
):
    if not request.content.strip():
        raise HTTPException(status_code=400, detail="Reflection content is required")
    if request.question is not None:
        valid, error = validate_question(request.question)
        if not valid:
            raise HTTPException(status_code=400, detail=error)
    return await ConceptStore(db).create_reflection(
        content=request.content,
        parent_title=request.parent_title,
        parent_path=request.parent_path,
        bible_ref=request.bible_ref,
        question=request.question,
        user_id=request.user_id,
    )
