"""Unit tests for FastAPI endpoints."""

from __future__ import annotations

import fakeredis
import pytest
from fastapi.testclient import TestClient
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from newsdesk import main
from newsdesk.core.config import get_settings
from newsdesk.core.security import limiter
from newsdesk.models.database import create_schema
from newsdesk.models.models import SummaryState
from newsdesk.services.container import build_container
from tests.support import add_category, add_source, add_summary, make_settings


@pytest.fixture
def settings():
    return make_settings(similarity_enabled=False)


@pytest.fixture
def client(monkeypatch, settings):
    """Runs the real lifespan with fake Redis, in-memory SQLite and a fake chat model."""

    async def create_test_container(_settings, **overrides):
        container = build_container(
            settings,
            redis=fakeredis.FakeAsyncRedis(decode_responses=True),
            chat_models={
                "light": FakeListChatModel(
                    responses=['{"title": "Budget passed", "article": "In English."}']
                )
            },
        )
        await create_schema(container.engine)
        return container

    monkeypatch.setattr(main, "create_container", create_test_container)
    app = main.create_app(settings)
    app.dependency_overrides[get_settings] = lambda: settings
    limiter.reset()
    with TestClient(app) as c:
        yield c


def _seed(client, title: str = "Budget", state=SummaryState.VALIDATED) -> str:
    """Insert one summary inside the app's event loop; validated ones are also cached."""
    container = client.app.state.container

    async def seed() -> str:
        async with container.session_factory() as session:
            source = await add_source(session)
            await add_category(session)
            summary = await add_summary(session, source, title=title, state=state)
            await session.commit()
            if state == SummaryState.VALIDATED:
                await container.cache.refresh_summary(session, summary.id)
            return summary.id

    return client.portal.call(seed)


class TestHealthEndpoint:
    def test_health_reports_dependencies(self, client):
        resp = client.get("/healthz/")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"
        assert data["cache"] == "connected"

    def test_health_includes_environment(self, client):
        assert client.get("/healthz/").json()["environment"] == "development"


class TestRootEndpoint:
    def test_root_returns_service_info(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["service"] == "Newsdesk"


class TestFeedEndpoints:
    def test_latest_summaries_come_from_cache(self, client):
        summary_id = _seed(client)
        resp = client.get("/api/v1/summaries", params={"language": "ru"})
        assert resp.status_code == 200
        data = resp.json()
        assert [s["id"] for s in data] == [summary_id]
        assert data[0]["source"] == "Example"
        assert client.get("/api/v1/summaries", params={"language": "en"}).json() == []

    def test_single_summary(self, client):
        summary_id = _seed(client)
        resp = client.get(f"/api/v1/summaries/{summary_id}")
        assert resp.status_code == 200
        assert resp.json()["title"] == "Budget"

    def test_uncached_summary_is_built_from_database(self, client):
        summary_id = _seed(client, state=SummaryState.CREATED)
        resp = client.get(f"/api/v1/summaries/{summary_id}")
        assert resp.status_code == 200
        assert resp.json()["state"] == "created"

    def test_unknown_summary_returns_404(self, client):
        assert client.get("/api/v1/summaries/nonexistent-id").status_code == 404

    def test_similarities_page_is_empty_for_lone_summary(self, client):
        summary_id = _seed(client)
        resp = client.get(f"/api/v1/summaries/{summary_id}/similarities")
        assert resp.json() == {"items": [], "next_offset": None}

    def test_unknown_digest_returns_404(self, client):
        assert client.get("/api/v1/digests/nonexistent-id").status_code == 404
        assert client.get("/api/v1/digests").json() == []


class TestMaintenanceEndpoints:
    def test_requires_api_key(self, client):
        assert client.post("/api/v1/maintenance/rebuild-cache").status_code == 403
        assert client.get("/api/v1/maintenance/stats").status_code == 403

    def test_wrong_api_key_is_rejected(self, client):
        resp = client.post("/api/v1/maintenance/process-sources", headers={"X-API-Key": "nope"})
        assert resp.status_code == 403

    def test_process_sources_is_accepted(self, client, auth_headers):
        resp = client.post("/api/v1/maintenance/process-sources", headers=auth_headers)
        assert resp.status_code == 202
        assert resp.json()["message"] == "News processing started"

    def test_rebuild_cache_counts(self, client, auth_headers):
        _seed(client)
        resp = client.post("/api/v1/maintenance/rebuild-cache", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"summaries": 1, "digests": 0}

    def test_translate_summary(self, client, auth_headers):
        summary_id = _seed(client)
        resp = client.post(
            f"/api/v1/maintenance/translate-summary/{summary_id}",
            params={"language": "en"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["summary_id"] == summary_id
        assert data["translated_id"] is not None
        english = client.get("/api/v1/summaries", params={"language": "en"}).json()
        assert [s["title"] for s in english] == ["Budget passed"]

    def test_revisit_with_nothing_to_check_streams_nothing(self, client, auth_headers):
        resp = client.post("/api/v1/maintenance/revisit-categories", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.text == ""

    def test_stats(self, client, auth_headers):
        _seed(client, state=SummaryState.CREATED)
        resp = client.get("/api/v1/maintenance/stats", headers=auth_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["pending_validation"] == 1
        assert data["groups"] == 0
        assert data["timeline_ru"] == 0
