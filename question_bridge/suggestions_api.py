"""
API endpoints for the AI suggestion pipeline of a concept card.

Stage A: news item -> reaction snippets
Stage B: pinned responses -> conclusion candidates
Stage C: conclusion -> supporting reflections (also started automatically,
         in the background, after a conclusion candidate is selected)

A stage that cannot run (AI disabled, missing input, collaborator failure,
write never acknowledged) answers with an error status whose detail carries
the stage state, so the suggestions already on screen are never lost.
"""

import asyncio
import logging
from typing import Optional, Set, Tuple

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from question_bridge.api_errors import http_error, status_for_kind
from question_bridge.config import SCRIPTURE_FOLLOWUP_DELAY_SECONDS
from question_bridge.db_session import get_async_session, get_async_session_context
from question_bridge.services.concept_session import open_card
from question_bridge.services.concept_state import Failed, StageState, describe_stage
from question_bridge.services.concept_store import ConceptStore
from question_bridge.services.errors import StageBusyError
from question_bridge.services.generation_client import GenerationClient, get_generation_client
from question_bridge.services.suggestion_pipeline import SuggestionPipeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ai-suggestions"])

# (concept_id, stage) pairs with a generation request currently running
_in_flight: Set[Tuple[str, str]] = set()


async def load_pipeline(concept_id: str, db: AsyncSession,
                        generator: GenerationClient) -> SuggestionPipeline:
    try:
        session = await open_card(ConceptStore(db), concept_id)
    except LookupError:
        raise HTTPException(status_code=404, detail="Concept not found")
    return SuggestionPipeline(session, generator)


def stage_payload(stage: str, state: StageState) -> dict:
    return {"stage": stage, **describe_stage(state)}


def stage_result(stage: str, state: StageState) -> dict:
    """Return the stage payload, or raise with it when the stage recorded an error."""
    payload = stage_payload(stage, state)
    if isinstance(state, Failed):
        raise HTTPException(status_code=status_for_kind(state.kind), detail=payload)
    return payload


async def run_stage(concept_id: str, stage: str, pipeline: SuggestionPipeline) -> StageState:
    key = (concept_id, stage)
    if key in _in_flight:
        error = StageBusyError(f"AI {stage} generation is already in progress")
        return Failed(kind=error.kind, message=str(error), items=pipeline.stage(stage).items)

    _in_flight.add(key)
    try:
        if stage == "reactions":
            return await pipeline.generate_reactions()
        if stage == "conclusions":
            return await pipeline.generate_conclusions()
        return await pipeline.generate_scriptures()
    finally:
        _in_flight.discard(key)


async def scripture_followup_background(concept_id: str, generator: GenerationClient,
                                        delay: Optional[float] = None) -> None:
    """Stage C after a conclusion was chosen, on its own database session.

    Runs with the generator the request resolved, so dependency overrides and
    per-request configuration also apply to the follow-up.
    """
    await asyncio.sleep(SCRIPTURE_FOLLOWUP_DELAY_SECONDS if delay is None else delay)
    logger.info(f"[BACKGROUND] Scripture recommendations for concept {concept_id}")
    async with get_async_session_context() as db:
        try:
            session = await open_card(ConceptStore(db), concept_id)
        except LookupError:
            logger.warning(f"[BACKGROUND] Concept {concept_id} disappeared before scripture follow-up")
            return
        pipeline = SuggestionPipeline(session, generator)
        state = await run_stage(concept_id, "scriptures", pipeline)
        logger.info(f"[BACKGROUND] Scripture follow-up for {concept_id} finished: {state.name}")


@router.get("/api/ai/health")
async def health_check():
    """Health check endpoint for the suggestions API."""
    return {"status": "healthy", "service": "suggestions_api"}


@router.get("/api/ai/status")
async def ai_status(generator: GenerationClient = Depends(get_generation_client)):
    """Whether AI suggestions are available, and through which backend."""
    return {
        "enabled": generator.is_enabled(),
        "mode": generator.config.get("mode"),
    }


@router.get("/api/concepts/{concept_id}/ai")
async def get_pipeline_status(
    concept_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    pipeline = await load_pipeline(concept_id, db, generator)
    return pipeline.status()


# ============================================================================
# Stage A - reactions
# ============================================================================

@router.post("/api/concepts/{concept_id}/ai/reactions")
async def generate_reactions(
    concept_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    pipeline = await load_pipeline(concept_id, db, generator)
    state = await run_stage(concept_id, "reactions", pipeline)
    logger.info(f"[AI] Reactions for concept {concept_id}: {state.name}")
    return stage_result("reactions", state)


@router.post("/api/concepts/{concept_id}/ai/reactions/{snippet_id}/select")
async def select_reaction(
    concept_id: str,
    snippet_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    pipeline = await load_pipeline(concept_id, db, generator)
    try:
        snippet = await pipeline.select_reaction(snippet_id)
    except Exception as e:
        raise http_error(e)
    return {"response": snippet.to_document(), **stage_payload("reactions", pipeline.state.reactions)}


@router.post("/api/concepts/{concept_id}/ai/reactions/{snippet_id}/reject")
async def reject_reaction(
    concept_id: str,
    snippet_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    pipeline = await load_pipeline(concept_id, db, generator)
    try:
        await pipeline.reject_reaction(snippet_id)
    except Exception as e:
        raise http_error(e)
    return stage_payload("reactions", pipeline.state.reactions)


# ============================================================================
# Stage B - conclusions
# ============================================================================

@router.post("/api/concepts/{concept_id}/ai/conclusions")
async def generate_conclusions(
    concept_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    pipeline = await load_pipeline(concept_id, db, generator)
    state = await run_stage(concept_id, "conclusions", pipeline)
    logger.info(f"[AI] Conclusions for concept {concept_id}: {state.name}")
    return stage_result("conclusions", state)


@router.post("/api/concepts/{concept_id}/ai/conclusions/{suggestion_id}/select")
async def select_conclusion(
    concept_id: str,
    suggestion_id: str,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    """
    Adopt a conclusion candidate.

    Every other candidate is marked rejected, and scripture recommendations
    for the new conclusion are generated in the background.
    """
    pipeline = await load_pipeline(concept_id, db, generator)
    try:
        chosen = await pipeline.select_conclusion(suggestion_id, follow_up=False)
    except Exception as e:
        raise http_error(e)

    background_tasks.add_task(scripture_followup_background, concept_id, generator)
    logger.info(f"[AI] Conclusion {suggestion_id} selected for {concept_id}; scripture follow-up scheduled")
    return {
        "conclusion": pipeline.state.conclusion,
        "selected": chosen.to_document(),
        "scripturesScheduled": True,
        **stage_payload("conclusions", pipeline.state.conclusions),
    }


@router.post("/api/concepts/{concept_id}/ai/conclusions/{suggestion_id}/reject")
async def reject_conclusion(
    concept_id: str,
    suggestion_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    pipeline = await load_pipeline(concept_id, db, generator)
    try:
        await pipeline.reject_conclusion(suggestion_id)
    except Exception as e:
        raise http_error(e)
    return stage_payload("conclusions", pipeline.state.conclusions)


# ============================================================================
# Stage C - scriptures
# ============================================================================

@router.post("/api/concepts/{concept_id}/ai/scriptures")
async def generate_scriptures(
    concept_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    pipeline = await load_pipeline(concept_id, db, generator)
    state = await run_stage(concept_id, "scriptures", pipeline)
    logger.info(f"[AI] Scriptures for concept {concept_id}: {state.name}")
    return stage_result("scriptures", state)


@router.post("/api/concepts/{concept_id}/ai/scriptures/{reflection_id}/pin")
async def pin_scripture(
    concept_id: str,
    reflection_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    """Link a recommended reflection as pinned scripture support."""
    pipeline = await load_pipeline(concept_id, db, generator)
    try:
        link = await pipeline.pin_scripture(reflection_id)
    except Exception as e:
        raise http_error(e)
    return {"link": link.to_sequence_item(), **stage_payload("scriptures", pipeline.state.scriptures)}


@router.post("/api/concepts/{concept_id}/ai/scriptures/{reflection_id}/dismiss")
async def dismiss_scripture(
    concept_id: str,
    reflection_id: str,
    db: AsyncSession = Depends(get_async_session),
    generator: GenerationClient = Depends(get_generation_client),
):
    pipeline = await load_pipeline(concept_id, db, generator)
    try:
        await pipeline.dismiss_scripture(reflection_id)
    except Exception as e:
        raise http_error(e)
    return stage_payload("scriptures", pipeline.state.scriptures)
