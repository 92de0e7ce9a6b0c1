"""API-level tests for the pipeline endpoints."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from decision_miner.api import app
from decision_miner.credentials import StaticCredentialProvider
from decision_miner.db.base import get_db
from decision_miner.db.models import CandidateModel, ExtractionCostModel
from decision_miner.routes import get_extraction_client, get_orchestrator
from decision_miner.sync.orchestrator import SyncOrchestrator
from helpers import (
    OTHER_USER,
    USER,
    FakeExtractionClient,
    FakePlatformClient,
    extraction_error_with_usage,
    raw_pr,
)

HEADERS = {"X-User-Id": USER}


@pytest.fixture
def extraction_client():
    return FakeExtractionClient()


@pytest.fixture
def platform_client():
    recent = datetime.now(timezone.utc).replace(microsecond=0) - timedelta(days=1)
    return FakePlatformClient([[raw_pr(12, recent)]])


@pytest.fixture
def client(session_factory, settings, extraction_client, platform_client):
    """TestClient wired to a per-test database and fake upstreams."""

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    def override_get_orchestrator():
        return SyncOrchestrator(
            session_factory,
            credential_provider=StaticCredentialProvider({USER: "tok"}),
            client_factory=lambda token: platform_client,
            settings=settings,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = override_get_orchestrator
    app.dependency_overrides[get_extraction_client] = lambda: extraction_client
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestSystemEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_version(self, client):
        response = client.get("/version")
        assert response.status_code == 200
        assert "version" in response.json()

    def test_missing_user_header(self, client, make_repo):
        repo = make_repo()
        response = client.get(f"/repos/{repo.id}/sync")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "UNAUTHORIZED"


class TestSyncEndpoints:
    def test_no_sync_yet(self, client, make_repo):
        repo = make_repo()
        response = client.get(f"/repos/{repo.id}/sync", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"hasSync": False, "syncRun": None}

    def test_trigger_runs_in_background(self, client, make_repo, platform_client):
        repo = make_repo()

        response = client.post(f"/repos/{repo.id}/sync", headers=HEADERS)

        assert response.status_code == 202
        data = response.json()
        assert data["alreadyRunning"] is False
        assert data["status"] == "syncing"
        assert data["syncRun"]["phase"] == "fetching"

        # TestClient returns after background tasks complete
        status = client.get(f"/repos/{repo.id}/sync", headers=HEADERS).json()
        assert status["hasSync"] is True
        assert status["syncRun"]["id"] == data["syncRunId"]
        assert status["syncRun"]["status"] == "success"
        assert status["syncRun"]["candidates_created"] == 1
        assert platform_client.closed

    def test_trigger_while_running(self, client, make_repo, session_factory, settings):
        repo = make_repo()
        running = SyncOrchestrator(session_factory, settings=settings).start_sync(repo.id, USER)

        response = client.post(f"/repos/{repo.id}/sync", headers=HEADERS)

        assert response.status_code == 202
        data = response.json()
        assert data["alreadyRunning"] is True
        assert data["syncRunId"] == running.sync_run_id

    def test_other_users_repository(self, client, make_repo):
        repo = make_repo(user_id=OTHER_USER)
        response = client.post(f"/repos/{repo.id}/sync", headers=HEADERS)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_unknown_repository(self, client):
        response = client.get("/repos/missing/sync", headers=HEADERS)
        assert response.status_code == 404


class TestCandidateEndpoints:
    def test_get_candidate(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo())

        response = client.get(f"/candidates/{candidate.id}", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["status"] == "new"

    def test_extract(self, client, make_repo, make_candidate, extraction_client):
        candidate = make_candidate(make_repo())

        response = client.post(f"/candidates/{candidate.id}/extract", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "extracted"
        assert data["candidate"]["title"] == "Use PostgreSQL for session storage"
        assert data["model"] == "claude-test"
        assert extraction_client.calls == 1

    def test_extract_failure_is_recorded(
        self, client, make_repo, make_candidate, extraction_client, session_factory
    ):
        candidate = make_candidate(make_repo())
        extraction_client.error = extraction_error_with_usage(cost=0.02)

        response = client.post(f"/candidates/{candidate.id}/extract", headers=HEADERS)

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "EXTRACTION_ERROR"
        db = session_factory()
        try:
            assert db.get(CandidateModel, candidate.id).status == "failed"
            assert db.query(ExtractionCostModel).count() == 1
        finally:
            db.close()

    def test_extract_over_limit(
        self, client, make_repo, make_candidate, db_session, extraction_client
    ):
        repo = make_repo()
        candidate = make_candidate(repo)
        db_session.add(
            ExtractionCostModel(
                repo_id=repo.id,
                user_id=USER,
                model="claude-test",
                input_tokens=1,
                output_tokens=1,
                total_cost=0.01,
                batch_size=20,
            )
        )
        db_session.commit()

        response = client.post(f"/candidates/{candidate.id}/extract", headers=HEADERS)

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "LIMIT_EXCEEDED"
        assert int(response.headers["Retry-After"]) > 0
        assert extraction_client.calls == 0
        assert client.get(f"/candidates/{candidate.id}", headers=HEADERS).json()["status"] == "new"

    def test_approve_with_edits(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo(), status="extracted", decision="Use PostgreSQL")

        response = client.post(
            f"/candidates/{candidate.id}/approve",
            headers=HEADERS,
            json={"edits": {"title": "Sessions live in PostgreSQL", "tags": ["DB", "db"]}},
        )

        assert response.status_code == 200
        decision = response.json()
        assert decision["title"] == "Sessions live in PostgreSQL"
        assert decision["decision"] == "Use PostgreSQL"
        assert decision["tags"] == ["db"]
        assert decision["source_candidate_id"] == candidate.id

    def test_approve_without_body(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo())
        response = client.post(f"/candidates/{candidate.id}/approve", headers=HEADERS)
        assert response.status_code == 200

    def test_approve_rejects_provenance_edits(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo())
        response = client.post(
            f"/candidates/{candidate.id}/approve",
            headers=HEADERS,
            json={"edits": {"source_type": "manual"}},
        )
        assert response.status_code == 422

    def test_approve_twice(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo())
        client.post(f"/candidates/{candidate.id}/approve", headers=HEADERS)

        response = client.post(f"/candidates/{candidate.id}/approve", headers=HEADERS)

        assert response.status_code == 409
        assert response.json()["error"]["details"]["current_status"] == "approved"

    def test_dismiss(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo())

        response = client.post(
            f"/candidates/{candidate.id}/dismiss",
            headers=HEADERS,
            json={"reason": "too_minor", "note": "Routine change"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "dismissed"
        assert data["dismiss_reason"] == "too_minor"

    def test_dismiss_extracted_candidate(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo(), status="extracted")

        response = client.post(
            f"/candidates/{candidate.id}/dismiss",
            headers=HEADERS,
            json={"reason": "duplicate"},
        )

        assert response.status_code == 409
        assert response.json() == {
            "error": {
                "code": "CONFLICT",
                "message": "Candidate cannot be dismissed from status 'extracted'",
                "details": {"current_status": "extracted"},
            }
        }

    def test_candidate_of_other_user(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo(user_id=OTHER_USER))
        response = client.get(f"/candidates/{candidate.id}", headers=HEADERS)
        assert response.status_code == 403


class TestDecisionEndpoints:
    @pytest.fixture
    def decision_id(self, client, make_repo, make_candidate):
        candidate = make_candidate(make_repo(), status="extracted", decision="Use PostgreSQL")
        return client.post(f"/candidates/{candidate.id}/approve", headers=HEADERS).json()["id"]

    def test_get(self, client, decision_id):
        response = client.get(f"/decisions/{decision_id}", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["decision"] == "Use PostgreSQL"

    def test_patch(self, client, decision_id):
        response = client.patch(
            f"/decisions/{decision_id}",
            headers=HEADERS,
            json={"consequences": "More load on the primary database"},
        )

        assert response.status_code == 200
        assert response.json()["consequences"] == "More load on the primary database"

    def test_patch_unknown_field(self, client, decision_id):
        response = client.patch(
            f"/decisions/{decision_id}", headers=HEADERS, json={"repo_id": "other"}
        )
        assert response.status_code == 422

    def test_delete(self, client, decision_id):
        response = client.delete(f"/decisions/{decision_id}", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"status": "success", "decision_id": decision_id}
        assert client.get(f"/decisions/{decision_id}", headers=HEADERS).status_code == 404

    def test_suggest(self, client, decision_id, extraction_client):
        response = client.post(f"/decisions/{decision_id}/suggest", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["suggestions"] == ["Backups must cover the sessions table"]
        assert data["model"] == "claude-test"
        assert extraction_client.calls == 1


class TestCostEndpoints:
    def test_repo_costs(self, client, make_repo, make_candidate):
        repo = make_repo()
        candidate = make_candidate(repo)
        client.post(f"/candidates/{candidate.id}/extract", headers=HEADERS)

        response = client.get(f"/repos/{repo.id}/costs", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["window_count"] == 1
        assert data["window_cost"] == pytest.approx(0.01)
        assert data["remaining_calls"] == 19

    def test_user_costs(self, client, make_repo, make_candidate):
        repo = make_repo()
        client.post(f"/candidates/{make_candidate(repo).id}/extract", headers=HEADERS)

        response = client.get("/costs", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()
        assert data["total_extractions"] == 1
        assert data["repo_breakdown"][0]["repo_name"] == "acme/api"

    def test_costs_of_other_users_repository(self, client, make_repo):
        repo = make_repo(user_id=OTHER_USER)
        response = client.get(f"/repos/{repo.id}/costs", headers=HEADERS)
        assert response.status_code == 403
