"""
Link authoring workflow for a single concept card.

``ConceptSession`` owns one card handle (draft or persisted). Every edit is
applied to the in-memory state immediately; for persisted cards the new
state is then written through the ``PersistenceOutbox``, which rolls the
edit back if the store never acknowledges it. Draft cards keep every edit
local and are written once, on ``save()``.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from question_bridge.services.concept_state import (
    CardHandle,
    ConceptState,
    DraftCard,
    LinkRow,
    PersistedCard,
    ResponseSnippet,
    SourceRef,
    new_snippet_id,
    persist_handle,
)
from question_bridge.services.errors import DraftCardError, PersistenceError
from question_bridge.services.outbox import PendingWrite, PersistenceOutbox
from question_bridge.services.question_similarity import validate_question

logger = logging.getLogger(__name__)

# Returned by a mutation that left the state untouched; nothing is written.
NO_CHANGE = object()


class ConceptSession:
    """Single-writer editing session for one concept card."""

    def __init__(self, store, handle: CardHandle, outbox: Optional[PersistenceOutbox] = None):
        self.store = store
        self.handle = handle
        self.outbox = outbox or PersistenceOutbox()
        self._lock = asyncio.Lock()
        self._draft_changed = False

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConceptState:
        return self.handle.state

    @property
    def is_draft(self) -> bool:
        return isinstance(self.handle, DraftCard)

    @property
    def card_id(self) -> Optional[str]:
        return self.handle.id if isinstance(self.handle, PersistedCard) else None

    def require_card_id(self) -> str:
        if not isinstance(self.handle, PersistedCard):
            raise DraftCardError("Save the concept card before using this action")
        return self.handle.id

    @property
    def dirty(self) -> bool:
        """True while some local change has not been acknowledged by the store."""
        if isinstance(self.handle, DraftCard):
            return self._draft_changed
        return self.outbox.is_dirty(self.handle.id)

    def _restore(self, snapshot: ConceptState) -> None:
        self.handle.state = snapshot

    # ------------------------------------------------------------------
    # Mutation plumbing
    # ------------------------------------------------------------------

    async def apply(self, description: str, mutate: Callable[[ConceptState], Any]) -> Any:
        """Run ``mutate`` on the card state, then persist unless it returned ``NO_CHANGE``."""
        async with self._lock:
            before = self.state.snapshot()
            result = mutate(self.state)
            if result is NO_CHANGE:
                return None

            if isinstance(self.handle, DraftCard):
                self._draft_changed = True
                return result

            card_id = self.handle.id
            state = self.state
            await self.outbox.submit(PendingWrite(
                card_id=card_id,
                description=description,
                write=lambda: self.store.save_card(card_id, state),
                rollback=lambda: self._restore(before),
            ))
            return result

    # ------------------------------------------------------------------
    # Links
    # ------------------------------------------------------------------

    async def add_link(self, target: str, ref: SourceRef) -> bool:
        """Attach a source; re-adding the same ``(source_type, source_id)`` is a no-op."""
        def mutate(state: ConceptState):
            return True if state.add_link(target, ref) else NO_CHANGE

        added = await self.apply(f"link {ref.source_type} {ref.source_id}", mutate)
        return bool(added)

    async def remove_link(self, target: str, source_id: str) -> bool:
        def mutate(state: ConceptState):
            return True if state.remove_link(target, source_id) else NO_CHANGE

        removed = await self.apply(f"unlink {source_id}", mutate)
        return bool(removed)

    async def toggle_pin(self, target: str, source_id: str) -> Optional[bool]:
        """Flip the link's pin; returns the new value, or None if it is not linked."""
        def mutate(state: ConceptState):
            pinned = state.toggle_pin(target, source_id)
            return NO_CHANGE if pinned is None else pinned

        return await self.apply(f"toggle pin {source_id}", mutate)

    async def link_with_evidence(self, ref: SourceRef, slot: str, *, excerpt: str,
                                 why: Optional[str] = None, title: Optional[str] = None,
                                 pinned: bool = True) -> LinkRow:
        """Legacy "link to concept" entry point with an explicit A/B evidence slot."""
        excerpt = (excerpt or "").strip()
        if not excerpt:
            raise ValueError("An excerpt is required to link evidence")

        def mutate(state: ConceptState):
            return state.attach_evidence(ref, slot, excerpt=excerpt,
                                         why=(why or "").strip() or None,
                                         title=title, pinned=pinned)

        return await self.apply(f"link evidence {ref.source_id} to slot {slot}", mutate)

    # ------------------------------------------------------------------
    # Responses and statements
    # ------------------------------------------------------------------

    async def add_response(self, text: str) -> ResponseSnippet:
        text = (text or "").strip()
        if not text:
            raise ValueError("Response text is required")
        snippet = ResponseSnippet(id=new_snippet_id("resp"), text=text)

        def mutate(state: ConceptState):
            state.responses.append(snippet)
            return snippet

        return await self.apply("add response", mutate)

    async def toggle_response_pin(self, response_id: str) -> Optional[bool]:
        def mutate(state: ConceptState):
            snippet = state.find_response(response_id)
            if snippet is None:
                return NO_CHANGE
            snippet.pinned = not snippet.pinned
            return snippet.pinned

        return await self.apply(f"toggle response pin {response_id}", mutate)

    async def delete_response(self, response_id: str) -> bool:
        def mutate(state: ConceptState):
            remaining = [r for r in state.responses if r.id != response_id]
            if len(remaining) == len(state.responses):
                return NO_CHANGE
            state.responses = remaining
            return True

        return bool(await self.apply(f"delete response {response_id}", mutate))

    async def set_conclusion(self, conclusion: str) -> None:
        def mutate(state: ConceptState):
            state.conclusion = conclusion.strip()
            return True

        await self.apply("edit conclusion", mutate)

    async def set_a_statement(self, statement: str) -> None:
        def mutate(state: ConceptState):
            state.a_statement = statement.strip()
            return True

        await self.apply("edit A statement", mutate)

    async def update_details(self, *, concept_name: Optional[str] = None,
                             question: Optional[str] = None,
                             concept_phrase: Optional[str] = None) -> None:
        if question is not None:
            valid, error = validate_question(question)
            if not valid:
                raise ValueError(error)
        if concept_name is not None and not concept_name.strip():
            raise ValueError("Concept name is required")

        def mutate(state: ConceptState):
            if concept_name is not None:
                state.concept_name = concept_name.strip()
            if question is not None:
                state.question = question.strip()
            if concept_phrase is not None:
                state.concept_phrase = concept_phrase.strip() or None
            return True

        await self.apply("edit details", mutate)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    async def save(self) -> str:
        """Give a draft its stored identity (one write), or re-save a persisted card."""
        if isinstance(self.handle, PersistedCard):
            await self.apply("save", lambda state: True)
            return self.handle.id

        state = self.state
        if not state.concept_name.strip():
            raise ValueError("Concept name is required")
        valid, error = validate_question(state.question)
        if not valid:
            raise ValueError(error)

        async with self._lock:
            try:
                card_id = await self.store.create_card(state)
            except Exception as exc:
                logger.error("Failed to create concept card: %s", exc)
                raise PersistenceError(f"Could not create concept card: {exc}") from exc
            self.handle = persist_handle(self.handle, card_id)
            self._draft_changed = False
        logger.info("Draft concept saved as %s", card_id)
        return card_id


def new_draft(store, *, user_id: str, concept_name: str = "", question: str = "",
              concept_phrase: Optional[str] = None, user_name: Optional[str] = None,
              outbox: Optional[PersistenceOutbox] = None) -> ConceptSession:
    state = ConceptState(
        user_id=user_id,
        user_name=user_name,
        concept_name=concept_name,
        question=question,
        concept_phrase=concept_phrase,
    )
    return ConceptSession(store, DraftCard(state), outbox=outbox)


async def open_card(store, card_id: str, outbox: Optional[PersistenceOutbox] = None) -> ConceptSession:
    """Load a stored card into a session. Raises ``LookupError`` if it does not exist."""
    state = await store.get_card(card_id)
    return ConceptSession(store, PersistedCard(id=card_id, state=state), outbox=outbox)
