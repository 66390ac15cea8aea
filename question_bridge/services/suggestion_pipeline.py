"""
AI Suggestion Pipeline - reactions -> conclusion -> scripture support

Three independently triggered stages, each consuming what the author
accepted from the previous one:

A. Reactions:   first linked news item + concept name -> reaction snippets
B. Conclusions: pinned responses + concept name + question -> conclusion candidates
C. Scriptures:  conclusion + reflection pool -> supporting reflections

Each stage keeps a tagged state (Idle / Loading / Suggested / Failed). A
successful generation replaces that stage's suggestions wholesale; any
failure (AI disabled, precondition unmet, collaborator error, store never
acknowledging the write) records a stage-scoped error and leaves the
suggestions exactly as they were.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Dict, Optional, Set

from question_bridge.config import SCRIPTURE_FOLLOWUP_DELAY_SECONDS
from question_bridge.services.concept_session import NO_CHANGE, ConceptSession
from question_bridge.services.concept_state import (
    ConceptState,
    ConclusionSuggestion,
    Failed,
    LinkRow,
    Loading,
    ResponseSnippet,
    ScriptureSuggestion,
    SourceRef,
    StageState,
    Suggested,
    describe_stage,
    mark_suggestion,
    new_snippet_id,
    with_items,
)
from question_bridge.services.errors import (
    GenerationDisabledError,
    GenerationFailedError,
    PersistenceError,
    PreconditionError,
    QuestionBridgeError,
    StageBusyError,
)
from question_bridge.services.generation_client import GenerationClient

logger = logging.getLogger(__name__)

STAGES = ("reactions", "conclusions", "scriptures")


class SuggestionPipeline:
    """
    Drives the three AI stages for one concept session.

    The session's store provides ``get_news`` (stage A input) and
    ``reflection_pool`` (stage C input).
    """

    def __init__(self, session: ConceptSession, generator: GenerationClient,
                 followup_delay: float = SCRIPTURE_FOLLOWUP_DELAY_SECONDS):
        self.session = session
        self.generator = generator
        self.followup_delay = followup_delay
        self._followups: Set[asyncio.Task] = set()

    @property
    def state(self) -> ConceptState:
        return self.session.state

    def stage(self, name: str) -> StageState:
        if name not in STAGES:
            raise ValueError(f"Unknown stage: {name}")
        return getattr(self.state, name)

    def status(self) -> Dict[str, Any]:
        return {
            "aiEnabled": self.generator.is_enabled(),
            **{name: describe_stage(self.stage(name)) for name in STAGES},
        }

    # ------------------------------------------------------------------
    # Stage plumbing
    # ------------------------------------------------------------------

    def _fail(self, name: str, error: QuestionBridgeError) -> Failed:
        current = self.stage(name)
        failed = Failed(kind=error.kind, message=str(error), items=current.items)
        setattr(self.state, name, failed)
        if isinstance(error, (PreconditionError, GenerationDisabledError)):
            logger.info("AI %s not started: %s", name, error)
        else:
            logger.error("AI %s failed: %s", name, error)
        return failed

    def _busy(self, name: str) -> Optional[Failed]:
        """Report (without storing) that a request for this stage is already running."""
        current = self.stage(name)
        if not isinstance(current, Loading):
            return None
        error = StageBusyError(f"AI {name} generation is already in progress")
        logger.info("%s", error)
        # The in-flight request owns the stage state; only the caller sees this.
        return Failed(kind=error.kind, message=str(error), items=current.items)

    async def _guarded(self, name: str, body) -> StageState:
        """Run a stage body in Loading; unexpected errors become a stage error."""
        setattr(self.state, name, Loading(self.stage(name).items))
        try:
            return await body
        except QuestionBridgeError as e:
            return self._fail(name, e)
        except Exception as e:
            return self._fail(name, GenerationFailedError(f"AI {name} failed: {e}"))

    def _require_enabled(self) -> None:
        if not self.generator.is_enabled():
            raise GenerationDisabledError(
                "AI features are disabled. Configure an API key or local model to use suggestions."
            )

    async def _commit(self, name: str, items, description: str) -> StageState:
        def mutate(state: ConceptState):
            setattr(state, name, Suggested(tuple(items)))
            return True

        try:
            await self.session.apply(description, mutate)
        except PersistenceError as e:
            return self._fail(name, e)
        return self.stage(name)

    # ------------------------------------------------------------------
    # Stage A - reactions
    # ------------------------------------------------------------------

    async def generate_reactions(self) -> StageState:
        busy = self._busy("reactions")
        if busy:
            return busy
        try:
            self._require_enabled()
            news_links = [link for link in self.state.links_for("recent") if link.source_type == "news"]
            if not news_links:
                raise PreconditionError("No linked news item. Link a news item first.")
        except QuestionBridgeError as e:
            return self._fail("reactions", e)

        return await self._guarded("reactions", self._reactions_from(news_links[0].source_id))

    async def _reactions_from(self, news_id: str) -> StageState:
        news = await self.session.store.get_news(news_id)
        if news is None:
            raise PreconditionError("The linked news item could not be loaded.")

        result = await self.generator.generate_reaction_snippets(
            news.get("title") or "",
            news.get("content") or news.get("subtitle") or "",
            self.state.concept_name,
        )
        if not result.success:
            raise GenerationFailedError(result.error or "AI reaction generation failed")
        if not result.items:
            raise GenerationFailedError("AI returned no reactions")

        suggestions = [
            ResponseSnippet(id=new_snippet_id("ai_react"), text=text, pinned=False,
                            source="ai", status="suggested")
            for text in result.items
        ]
        return await self._commit("reactions", suggestions, "AI reaction suggestions")

    async def select_reaction(self, snippet_id: str) -> ResponseSnippet:
        """Promote a suggestion into the committed responses as a pinned, selected snippet."""
        def mutate(state: ConceptState):
            current = state.reactions
            suggestion = next((s for s in current.items if s.id == snippet_id), None)
            if suggestion is None:
                return NO_CHANGE
            confirmed = replace(suggestion, status="selected", pinned=True)
            state.responses.append(confirmed)
            state.reactions = with_items(current, [s for s in current.items if s.id != snippet_id])
            return confirmed

        confirmed = await self.session.apply(f"select AI reaction {snippet_id}", mutate)
        if confirmed is None:
            raise LookupError(f"Reaction suggestion {snippet_id} not found")
        return confirmed

    async def reject_reaction(self, snippet_id: str) -> None:
        def mutate(state: ConceptState):
            current = state.reactions
            remaining = [s for s in current.items if s.id != snippet_id]
            if len(remaining) == len(current.items):
                return NO_CHANGE
            state.reactions = with_items(current, remaining)
            return True

        if await self.session.apply(f"reject AI reaction {snippet_id}", mutate) is None:
            raise LookupError(f"Reaction suggestion {snippet_id} not found")

    # ------------------------------------------------------------------
    # Stage B - conclusions
    # ------------------------------------------------------------------

    async def generate_conclusions(self) -> StageState:
        busy = self._busy("conclusions")
        if busy:
            return busy
        try:
            self._require_enabled()
            pinned = self.state.pinned_response_texts()
            if not pinned:
                raise PreconditionError("Pin at least one response first.")
        except QuestionBridgeError as e:
            return self._fail("conclusions", e)

        return await self._guarded("conclusions", self._conclusions_from(pinned))

    async def _conclusions_from(self, pinned) -> StageState:
        result = await self.generator.generate_conclusion_candidates(
            pinned, self.state.concept_name, self.state.question or "",
        )
        if not result.success:
            raise GenerationFailedError(result.error or "AI conclusion generation failed")
        if not result.items:
            raise GenerationFailedError("AI returned no conclusion candidates")

        suggestions = [
            ConclusionSuggestion(id=new_snippet_id("ai_concl"), text=text)
            for text in result.items
        ]
        return await self._commit("conclusions", suggestions, "AI conclusion suggestions")

    async def select_conclusion(self, suggestion_id: str, *, follow_up: bool = True) -> ConclusionSuggestion:
        """Adopt one candidate as the conclusion; every sibling becomes rejected.

        Scripture recommendations start automatically after a short delay.
        """
        def mutate(state: ConceptState):
            current = state.conclusions
            chosen = next((c for c in current.items if c.id == suggestion_id), None)
            if chosen is None:
                return NO_CHANGE
            if chosen.status != "suggested":
                raise ValueError(f"Conclusion suggestion {suggestion_id} was already {chosen.status}")
            state.conclusion = chosen.text
            state.conclusions = with_items(current, [mark_suggestion(c, suggestion_id) for c in current.items])
            return replace(chosen, status="selected")

        chosen = await self.session.apply(f"select AI conclusion {suggestion_id}", mutate)
        if chosen is None:
            raise LookupError(f"Conclusion suggestion {suggestion_id} not found")
        if follow_up:
            self._schedule_scripture_followup()
        return chosen

    async def reject_conclusion(self, suggestion_id: str) -> None:
        def mutate(state: ConceptState):
            current = state.conclusions
            target = next((c for c in current.items if c.id == suggestion_id), None)
            if target is None:
                return NO_CHANGE
            if target.status != "suggested":
                raise ValueError(f"Conclusion suggestion {suggestion_id} was already {target.status}")
            state.conclusions = with_items(current, [
                replace(c, status="rejected") if c.id == suggestion_id else c
                for c in current.items
            ])
            return True

        if await self.session.apply(f"reject AI conclusion {suggestion_id}", mutate) is None:
            raise LookupError(f"Conclusion suggestion {suggestion_id} not found")

    def _schedule_scripture_followup(self) -> None:
        async def run():
            await asyncio.sleep(self.followup_delay)
            await self.generate_scriptures()

        task = asyncio.get_running_loop().create_task(run())
        self._followups.add(task)
        task.add_done_callback(self._followups.discard)

    async def wait_for_followups(self) -> None:
        """Wait for automatically scheduled stages (used on shutdown and in tests)."""
        if self._followups:
            await asyncio.gather(*list(self._followups))

    # ------------------------------------------------------------------
    # Stage C - scriptures
    # ------------------------------------------------------------------

    async def generate_scriptures(self) -> StageState:
        busy = self._busy("scriptures")
        if busy:
            return busy
        conclusion = (self.state.conclusion or "").strip()
        try:
            self._require_enabled()
            if not conclusion:
                raise PreconditionError("Set a conclusion before asking for scripture support.")
        except QuestionBridgeError as e:
            return self._fail("scriptures", e)

        return await self._guarded("scriptures", self._scriptures_for(conclusion))

    async def _scriptures_for(self, conclusion: str) -> StageState:
        pool = await self.session.store.reflection_pool()
        result = await self.generator.recommend_scriptures(conclusion, pool)
        if not result.success:
            raise GenerationFailedError(result.error or "AI scripture recommendation failed")
        if not result.items:
            raise GenerationFailedError("AI found no supporting reflections")

        suggestions = [
            ScriptureSuggestion(
                reflection_id=candidate.reflection_id,
                reason=candidate.reason,
                similarity=candidate.similarity,
            )
            for candidate in result.items
        ]
        return await self._commit("scriptures", suggestions, "AI scripture suggestions")

    async def pin_scripture(self, reflection_id: str) -> LinkRow:
        """Turn a recommendation into a pinned scripture-support link."""
        def mutate(state: ConceptState):
            current = state.scriptures
            if not any(s.reflection_id == reflection_id for s in current.items):
                return NO_CHANGE
            state.add_link("scripture_support", SourceRef("reflection", reflection_id),
                           pinned=True, confidence=1.0)
            link = state.find_link("scripture_support", reflection_id, "reflection")
            link.pinned = True
            state.scriptures = with_items(
                current, [s for s in current.items if s.reflection_id != reflection_id]
            )
            return link

        link = await self.session.apply(f"pin AI scripture {reflection_id}", mutate)
        if link is None:
            raise LookupError(f"Scripture suggestion {reflection_id} not found")
        return link

    async def dismiss_scripture(self, reflection_id: str) -> None:
        def mutate(state: ConceptState):
            current = state.scriptures
            remaining = [s for s in current.items if s.reflection_id != reflection_id]
            if len(remaining) == len(current.items):
                return NO_CHANGE
            state.scriptures = with_items(current, remaining)
            return True

        if await self.session.apply(f"dismiss AI scripture {reflection_id}", mutate) is None:
            raise LookupError(f"Scripture suggestion {reflection_id} not found")
