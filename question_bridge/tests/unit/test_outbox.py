import pytest

from question_bridge.services.errors import PersistenceError
from question_bridge.services.outbox import PendingWrite, PersistenceOutbox


class _FlakyWrite:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")


@pytest.mark.asyncio
async def test_write_retried_until_acknowledged():
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    outbox = PersistenceOutbox(retries=3, backoff_base=0.5, sleep=fake_sleep)
    write = _FlakyWrite(failures=2)
    rolled_back = []

    await outbox.submit(PendingWrite("c1", "edit", write, lambda: rolled_back.append(True)))

    assert write.calls == 3
    assert rolled_back == []
    assert len(delays) == 2
    assert 0.5 <= delays[0] <= 1.0
    assert 1.0 <= delays[1] <= 1.5
    assert outbox.stats.acknowledged == 1
    assert outbox.stats.retried == 2
    assert not outbox.is_dirty("c1")


@pytest.mark.asyncio
async def test_exhausted_retries_roll_back_and_raise():
    outbox = PersistenceOutbox(retries=2, backoff_base=0)
    write = _FlakyWrite(failures=5)
    rolled_back = []

    with pytest.raises(PersistenceError) as excinfo:
        await outbox.submit(PendingWrite("c1", "toggle pin", write, lambda: rolled_back.append(True)))

    assert write.calls == 2
    assert rolled_back == [True]
    assert "toggle pin" in str(excinfo.value)
    assert outbox.stats.rolled_back == 1
    assert not outbox.is_dirty("c1")


@pytest.mark.asyncio
async def test_card_is_dirty_while_write_pending():
    outbox = PersistenceOutbox(retries=1, backoff_base=0)
    observed = []

    async def write():
        observed.append(outbox.is_dirty("c1"))

    await outbox.submit(PendingWrite("c1", "edit", write, lambda: None))

    assert observed == [True]
    assert not outbox.is_dirty("c1")


def test_outbox_requires_at_least_one_attempt():
    with pytest.raises(ValueError):
        PersistenceOutbox(retries=0)
