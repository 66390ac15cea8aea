from contextlib import asynccontextmanager

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from question_bridge import suggestions_api
from question_bridge.concepts_api import router as concepts_router
from question_bridge.db_session import get_async_session
from question_bridge.models import Base
from question_bridge.questions_api import router as questions_router
from question_bridge.services.generation_client import GenerationResult, ScriptureCandidate, get_generation_client


@pytest.fixture
def client(tmp_path, generator, monkeypatch):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @asynccontextmanager
    async def lifespan(app):
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        yield
        await engine.dispose()

    async def override_session():
        async with factory() as session:
            yield session

    app = FastAPI(lifespan=lifespan)
    app.include_router(concepts_router)
    app.include_router(suggestions_api.router)
    app.include_router(questions_router)
    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_generation_client] = lambda: generator

    monkeypatch.setattr(suggestions_api, "get_async_session_context", factory)
    monkeypatch.setattr(suggestions_api, "SCRIPTURE_FOLLOWUP_DELAY_SECONDS", 0)

    with TestClient(app) as test_client:
        yield test_client


def _create_concept(client, **overrides):
    news = client.post("/api/questions/news", json={"title": "물가 상승", "content": "물가가 올랐다",
                                                    "question": "왜 염려하는가?"}).json()
    payload = {
        "user_id": "user-1",
        "concept_name": "염려",
        "question": "왜 염려하는가?",
        "recent": [{"source_type": "news", "source_id": news["id"]}],
    }
    payload.update(overrides)
    response = client.post("/api/concepts", json=payload)
    assert response.status_code == 200, response.text
    return response.json()["id"], news["id"]


def test_health_routes_not_shadowed(client):
    for path, service in (
        ("/api/concepts/health", "concepts_api"),
        ("/api/ai/health", "suggestions_api"),
        ("/api/questions/health", "questions_api"),
    ):
        payload = client.get(path).json()
        assert payload == {"status": "healthy", "service": service}


def test_create_concept_validates_question(client):
    response = client.post("/api/concepts", json={"user_id": "u", "concept_name": "염려", "question": "x" * 121})
    assert response.status_code == 400

    response = client.post("/api/concepts", json={
        "user_id": "u", "concept_name": "염려", "question": "질문?",
        "recent": [{"source_type": "podcast", "source_id": "p1"}],
    })
    assert response.status_code == 400


def test_get_concept_resolves_links(client):
    concept_id, news_id = _create_concept(client, scripture_support=[
        {"source_type": "reflection", "source_id": "deleted"},
    ])

    payload = client.get(f"/api/concepts/{concept_id}").json()

    assert payload["id"] == concept_id
    assert [item["sourceId"] for item in payload["sequence"]["recent"]] == [news_id]
    assert [doc["title"] for doc in payload["resolved"]["recent"]] == ["물가 상승"]
    assert payload["resolved"]["scriptureSupport"] == []
    assert client.get("/api/concepts/missing").status_code == 404


def test_link_pin_and_unlink(client):
    concept_id, news_id = _create_concept(client)

    again = client.post(f"/api/concepts/{concept_id}/links",
                        json={"target": "recent", "source_type": "news", "source_id": news_id})
    assert again.json()["added"] is False

    pinned = client.post(f"/api/concepts/{concept_id}/links/recent/{news_id}/pin")
    assert pinned.json()["pinned"] is True
    assert client.post(f"/api/concepts/{concept_id}/links/recent/missing/pin").status_code == 404

    removed = client.delete(f"/api/concepts/{concept_id}/links/recent/{news_id}")
    assert removed.json()["removed"] is True
    assert client.get(f"/api/concepts/{concept_id}").json()["sequence"]["recent"] == []


def test_legacy_evidence_link(client):
    concept_id, news_id = _create_concept(client)

    response = client.post(f"/api/concepts/{concept_id}/evidence", json={
        "slot": "A", "source_type": "news", "source_id": news_id, "excerpt": "물가가 올랐다", "why": "출발점",
    })

    assert response.status_code == 200
    concept = response.json()["concept"]
    assert concept["bridge"]["aEvidence"][0]["id"].startswith(f"news_{news_id}_")
    assert len(concept["sequence"]["recent"]) == 1

    client.post(f"/api/concepts/{concept_id}/evidence", json={
        "slot": "B", "source_type": "news", "source_id": news_id, "excerpt": "다른 시각",
    })
    bridge = client.get(f"/api/concepts/{concept_id}").json()["bridge"]
    assert [item["excerpt"] for item in bridge["aEvidence"]] == ["물가가 올랐다"]
    assert [item["excerpt"] for item in bridge["bEvidence"]] == ["다른 시각"]


def test_import_legacy_concept_document(client):
    response = client.post("/api/concepts/import", json={"document": {
        "conceptName": "용서",
        "question": "용서란 무엇인가?",
        "userId": "user-1",
        "bridge": {"aEvidence": [{"sourceType": "news", "sourceId": "n1", "excerpt": "발췌"}]},
    }})

    assert response.status_code == 200, response.text
    concept = response.json()["concept"]
    assert [item["sourceId"] for item in concept["sequence"]["recent"]] == ["n1"]
    assert concept["bridge"]["aEvidence"][0]["excerpt"] == "발췌"

    bad = client.post("/api/concepts/import", json={"document": {
        "userId": "user-1", "bridge": {"aEvidence": [{"sourceType": "podcast", "sourceId": "p1"}]},
    }})
    assert bad.status_code == 400


def test_ai_stage_disabled_reports_error(client, generator):
    concept_id, _ = _create_concept(client)
    generator.enabled = False

    response = client.post(f"/api/concepts/{concept_id}/ai/reactions")

    assert response.status_code == 503
    detail = response.json()["detail"]
    assert detail["state"] == "error"
    assert detail["error"]["kind"] == "disabled"
    assert client.get("/api/ai/status").json()["enabled"] is False


def test_ai_pipeline_end_to_end(client, generator):
    concept_id, _ = _create_concept(client)
    reflection = client.post("/api/questions/reflections",
                             json={"content": "염려하지 말라", "bible_ref": "마 6:34"}).json()

    generator.queue("reactions", GenerationResult(success=True, items=["불안하다", "억울하다"]))
    reactions = client.post(f"/api/concepts/{concept_id}/ai/reactions").json()
    assert reactions["state"] == "suggested"

    selected = client.post(f"/api/concepts/{concept_id}/ai/reactions/{reactions['items'][0]['id']}/select")
    assert selected.json()["response"]["pinned"] is True

    generator.queue("conclusions", GenerationResult(success=True, items=["후보 하나", "후보 둘"]))
    conclusions = client.post(f"/api/concepts/{concept_id}/ai/conclusions").json()
    assert generator.calls[-1][1] == ["불안하다"]

    generator.queue("scriptures", GenerationResult(success=True, items=[
        ScriptureCandidate(reflection_id=reflection["id"], reason="염려", similarity=1.0),
    ]))
    chosen_id = conclusions["items"][0]["id"]
    chosen = client.post(f"/api/concepts/{concept_id}/ai/conclusions/{chosen_id}/select").json()
    assert chosen["conclusion"] == "후보 하나"
    assert chosen["scripturesScheduled"] is True

    status = client.get(f"/api/concepts/{concept_id}/ai").json()
    assert status["scriptures"]["state"] == "suggested"
    assert generator.calls[-1][:2] == ("scriptures", "후보 하나")

    pinned = client.post(f"/api/concepts/{concept_id}/ai/scriptures/{reflection['id']}/pin")
    assert pinned.json()["link"]["pinned"] is True

    concept = client.get(f"/api/concepts/{concept_id}").json()
    assert concept["conclusion"] == "후보 하나"
    assert [doc["id"] for doc in concept["resolved"]["scriptureSupport"]] == [reflection["id"]]
    statuses = [c["status"] for c in concept["sequence"]["aiConclusionSuggestions"]]
    assert statuses == ["selected", "rejected"]


def test_related_questions_excludes_viewer(client):
    concept_id, news_id = _create_concept(client)

    response = client.post("/api/questions/related", json={
        "question": "왜 염려하는가?", "exclude_id": news_id, "exclude_type": "news",
    })

    related = response.json()["related"]
    assert related["news"] == []
    assert [item["id"] for item in related["concept"]] == [concept_id]


def test_validate_question_endpoint(client):
    assert client.post("/api/questions/validate", json={"question": "질문?"}).json() == {"valid": True, "error": None}
    assert client.post("/api/questions/validate", json={"question": " "}).json()["valid"] is False
