"""
Persistence outbox for optimistic concept edits.

Each mutation is applied in memory first and then queued here together with
the state it replaced. The card stays dirty until the store acknowledges the
write. Failed attempts are retried with exponential backoff; once retries
are exhausted the caller's rollback runs and ``PersistenceError`` is raised,
so the in-memory card never silently diverges from what is stored.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional

from question_bridge.config import PERSIST_BACKOFF_BASE, PERSIST_RETRIES
from question_bridge.services.errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class PendingWrite:
    card_id: str
    description: str
    write: Callable[[], Awaitable[None]]
    rollback: Callable[[], None]
    attempts: int = 0
    last_error: Optional[str] = None


@dataclass
class OutboxStats:
    acknowledged: int = 0
    retried: int = 0
    rolled_back: int = 0


class PersistenceOutbox:
    """Retries card writes and tracks which cards have unacknowledged changes."""

    def __init__(self, retries: int = PERSIST_RETRIES, backoff_base: float = PERSIST_BACKOFF_BASE,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        if retries < 1:
            raise ValueError("retries must be at least 1")
        self.retries = retries
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._dirty: Dict[str, int] = {}
        self.stats = OutboxStats()

    def is_dirty(self, card_id: str) -> bool:
        return self._dirty.get(card_id, 0) > 0

    def _mark(self, card_id: str) -> None:
        self._dirty[card_id] = self._dirty.get(card_id, 0) + 1

    def _settle(self, card_id: str) -> None:
        remaining = self._dirty.get(card_id, 0) - 1
        if remaining > 0:
            self._dirty[card_id] = remaining
        else:
            self._dirty.pop(card_id, None)

    def _delay(self, attempt: int) -> float:
        if self.backoff_base <= 0:
            return 0.0
        return self.backoff_base * (2 ** attempt) + random.uniform(0, self.backoff_base)

    async def submit(self, pending: PendingWrite) -> None:
        """Write until acknowledged; roll back and raise ``PersistenceError`` otherwise."""
        self._mark(pending.card_id)
        try:
            for attempt in range(self.retries):
                pending.attempts = attempt + 1
                try:
                    await pending.write()
                    self.stats.acknowledged += 1
                    if attempt:
                        logger.info("Write '%s' for concept %s acknowledged after %d attempts",
                                    pending.description, pending.card_id, pending.attempts)
                    return
                except Exception as exc:
                    pending.last_error = str(exc)
                    logger.warning("Write '%s' for concept %s failed (attempt %d/%d): %s",
                                   pending.description, pending.card_id,
                                   pending.attempts, self.retries, exc)
                if attempt + 1 < self.retries:
                    self.stats.retried += 1
                    await self._sleep(self._delay(attempt))

            pending.rollback()
            self.stats.rolled_back += 1
            logger.error("Giving up on '%s' for concept %s; local change rolled back: %s",
                         pending.description, pending.card_id, pending.last_error)
            raise PersistenceError(
                f"Could not save '{pending.description}': {pending.last_error}"
            )
        finally:
            self._settle(pending.card_id)
