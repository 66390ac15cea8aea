"""
Pytest configuration and shared fixtures for Question Bridge tests.

This module provides:
- An in-memory concept store (with injectable write failures)
- A scripted text-generation collaborator
- A throwaway SQLite database for store and router tests
"""

import copy
import itertools

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from question_bridge.models import Base
from question_bridge.services.generation_client import GenerationResult
from question_bridge.services.outbox import PersistenceOutbox


# ============================================================================
# In-memory store
# ============================================================================

class MemoryStore:
    """Stands in for ``ConceptStore``; keeps deep copies of every saved state."""

    def __init__(self):
        self.cards = {}
        self.news = {}
        self.reflections = []
        self.writes = 0
        self.fail_next = 0
        self._ids = itertools.count(1)

    async def get_card(self, card_id):
        if card_id not in self.cards:
            raise LookupError(f"Concept {card_id} not found")
        return copy.deepcopy(self.cards[card_id])

    async def create_card(self, state):
        self._maybe_fail()
        card_id = f"concept-{next(self._ids)}"
        self.cards[card_id] = copy.deepcopy(state)
        self.writes += 1
        return card_id

    async def save_card(self, card_id, state):
        self._maybe_fail()
        self.cards[card_id] = copy.deepcopy(state)
        self.writes += 1

    async def get_news(self, news_id):
        return self.news.get(news_id)

    async def reflection_pool(self, limit=20):
        return self.reflections[:limit]

    def _maybe_fail(self):
        if self.fail_next:
            self.fail_next -= 1
            raise ConnectionError("store unavailable")


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def fast_outbox():
    """Outbox that retries without sleeping."""
    return PersistenceOutbox(retries=3, backoff_base=0)


# ============================================================================
# Scripted generator
# ============================================================================

class ScriptedGenerator:
    """Returns queued ``GenerationResult`` objects and records every call."""

    def __init__(self, enabled=True):
        self.enabled = enabled
        self.config = {"mode": "online"}
        self.calls = []
        self.results = {"reactions": [], "conclusions": [], "scriptures": []}

    def is_enabled(self):
        return self.enabled

    def queue(self, stage, result):
        self.results[stage].append(result)

    def _next(self, stage):
        queued = self.results[stage]
        return queued.pop(0) if queued else GenerationResult(success=False, error="nothing queued")

    async def generate_reaction_snippets(self, news_title, news_content, concept_name):
        self.calls.append(("reactions", news_title, news_content, concept_name))
        return self._next("reactions")

    async def generate_conclusion_candidates(self, pinned_reactions, concept_name, question):
        self.calls.append(("conclusions", list(pinned_reactions), concept_name, question))
        return self._next("conclusions")

    async def recommend_scriptures(self, conclusion, reflections):
        self.calls.append(("scriptures", conclusion, list(reflections)))
        return self._next("scriptures")


@pytest.fixture
def generator():
    return ScriptedGenerator()


# ============================================================================
# SQLite database
# ============================================================================

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh file-backed SQLite database per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'question_bridge_test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
