import pytest

from question_bridge.services.concept_session import new_draft, open_card
from question_bridge.services.concept_state import SourceRef
from question_bridge.services.errors import DraftCardError, PersistenceError


async def _persisted(store, outbox):
    draft = new_draft(store, user_id="user-1", concept_name="은혜", question="은혜란 무엇인가?",
                      outbox=outbox)
    card_id = await draft.save()
    return await open_card(store, card_id, outbox=outbox)


@pytest.mark.asyncio
async def test_draft_edits_stay_local_until_save(memory_store, fast_outbox):
    session = new_draft(memory_store, user_id="user-1", concept_name="은혜",
                        question="은혜란 무엇인가?", outbox=fast_outbox)

    await session.add_link("recent", SourceRef("news", "n1"))
    await session.add_response("고맙다")

    assert session.is_draft
    assert session.dirty
    assert memory_store.writes == 0
    with pytest.raises(DraftCardError):
        session.require_card_id()

    card_id = await session.save()

    assert memory_store.writes == 1
    assert session.card_id == card_id
    assert not session.is_draft
    assert not session.dirty
    stored = memory_store.cards[card_id]
    assert [link.source_id for link in stored.links] == ["n1"]
    assert stored.responses[0].text == "고맙다"


@pytest.mark.asyncio
async def test_draft_save_validates_name_and_question(memory_store):
    session = new_draft(memory_store, user_id="user-1", concept_name="  ", question="질문?")
    with pytest.raises(ValueError):
        await session.save()

    session = new_draft(memory_store, user_id="user-1", concept_name="은혜", question="x" * 121)
    with pytest.raises(ValueError):
        await session.save()
    assert memory_store.writes == 0


@pytest.mark.asyncio
async def test_draft_save_failure_keeps_draft(memory_store):
    memory_store.fail_next = 1
    session = new_draft(memory_store, user_id="user-1", concept_name="은혜", question="질문?")

    with pytest.raises(PersistenceError):
        await session.save()
    assert session.is_draft


@pytest.mark.asyncio
async def test_duplicate_link_writes_once(memory_store, fast_outbox):
    session = await _persisted(memory_store, fast_outbox)
    writes_before = memory_store.writes

    assert await session.add_link("recent", SourceRef("news", "n1")) is True
    assert await session.add_link("recent", SourceRef("news", "n1")) is False

    assert memory_store.writes == writes_before + 1
    assert len(session.state.links_for("recent")) == 1


@pytest.mark.asyncio
async def test_remove_absent_link_does_not_write(memory_store, fast_outbox):
    session = await _persisted(memory_store, fast_outbox)
    writes_before = memory_store.writes

    assert await session.remove_link("recent", "missing") is False
    assert memory_store.writes == writes_before


@pytest.mark.asyncio
async def test_toggle_pin_twice_is_persisted_each_time(memory_store, fast_outbox):
    session = await _persisted(memory_store, fast_outbox)
    await session.add_link("scripture_support", SourceRef("reflection", "r1"))

    assert await session.toggle_pin("scripture_support", "r1") is True
    assert await session.toggle_pin("scripture_support", "r1") is False
    assert await session.toggle_pin("scripture_support", "missing") is None

    stored = memory_store.cards[session.card_id]
    assert stored.find_link("scripture_support", "r1").pinned is False


@pytest.mark.asyncio
async def test_failed_write_rolls_back_in_memory_change(memory_store, fast_outbox):
    session = await _persisted(memory_store, fast_outbox)
    memory_store.fail_next = 3

    with pytest.raises(PersistenceError):
        await session.add_link("recent", SourceRef("news", "n1"))

    assert session.state.links == []
    assert not session.dirty
    assert memory_store.cards[session.card_id].links == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried(memory_store, fast_outbox):
    session = await _persisted(memory_store, fast_outbox)
    memory_store.fail_next = 2

    await session.set_conclusion("그러나 성경에서 은혜는 보상이라기보다 선물입니다.")

    stored = memory_store.cards[session.card_id]
    assert stored.conclusion.startswith("그러나")


@pytest.mark.asyncio
async def test_link_with_evidence_requires_excerpt(memory_store, fast_outbox):
    session = await _persisted(memory_store, fast_outbox)

    with pytest.raises(ValueError):
        await session.link_with_evidence(SourceRef("news", "n1"), "A", excerpt="  ")

    link = await session.link_with_evidence(SourceRef("news", "n1"), "A", excerpt="발췌", why="이유")
    assert [entry.slot for entry in link.evidence] == ["A"]
    assert session.state.bridge_view()["aEvidence"][0]["why"] == "이유"


@pytest.mark.asyncio
async def test_response_lifecycle(memory_store, fast_outbox):
    session = await _persisted(memory_store, fast_outbox)

    snippet = await session.add_response("서운하다")
    assert await session.toggle_response_pin(snippet.id) is True
    assert session.state.pinned_response_texts() == ["서운하다"]
    assert await session.delete_response(snippet.id) is True
    assert await session.delete_response(snippet.id) is False

    with pytest.raises(ValueError):
        await session.add_response("   ")


@pytest.mark.asyncio
async def test_update_details_validates_question(memory_store, fast_outbox):
    session = await _persisted(memory_store, fast_outbox)

    with pytest.raises(ValueError):
        await session.update_details(question="")

    await session.update_details(concept_name="용서", concept_phrase="  ")
    assert session.state.concept_name == "용서"
    assert session.state.concept_phrase is None


@pytest.mark.asyncio
async def test_open_missing_card_raises_lookup(memory_store):
    with pytest.raises(LookupError):
        await open_card(memory_store, "nope")
