"""Test configuration and fixtures."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict

import pytest
from sqlalchemy.orm import sessionmaker

from decision_miner.config import Settings
from decision_miner.db.base import create_db_engine, init_database
from decision_miner.db.models import ArtifactModel, CandidateModel, RepositoryModel
from helpers import USER


@pytest.fixture
def engine(tmp_path):
    """A fresh SQLite file database per test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        github_token="test-token",
        sync_lookback_days=90,
        sync_overlap_minutes=120,
        sync_max_duration_seconds=1800,
        extraction_max_calls=20,
        extraction_max_spend_usd=5.0,
    )


@pytest.fixture
def make_repo(db_session) -> Callable[..., RepositoryModel]:
    def factory(
        full_name: str = "acme/api",
        user_id: str = USER,
        **kwargs: Any,
    ) -> RepositoryModel:
        repo = RepositoryModel(full_name=full_name, user_id=user_id, **kwargs)
        db_session.add(repo)
        db_session.commit()
        return repo

    return factory


@pytest.fixture
def make_artifact(db_session) -> Callable[..., ArtifactModel]:
    counter = {"n": 0}

    def factory(repo: RepositoryModel, **kwargs: Any) -> ArtifactModel:
        counter["n"] += 1
        values: Dict[str, Any] = {
            "github_id": str(1000 + counter["n"]),
            "type": "pr",
            "title": "Migrate session storage from Redis to PostgreSQL",
            "body": "We decided to move sessions because Redis persistence was unreliable.",
            "diff": "+ new line\n" * 40,
            "labels": ["architecture"],
            "file_paths": ["src/sessions/store.py"],
            "files_changed": 3,
            "additions": 40,
            "deletions": 5,
            "processing_status": "sieved_in",
        }
        values.update(kwargs)
        artifact = ArtifactModel(repo_id=repo.id, **values)
        db_session.add(artifact)
        db_session.commit()
        return artifact

    return factory


@pytest.fixture
def make_candidate(db_session, make_artifact) -> Callable[..., CandidateModel]:
    def factory(
        repo: RepositoryModel, status: str = "new", **kwargs: Any
    ) -> CandidateModel:
        artifact = make_artifact(repo)
        values: Dict[str, Any] = {
            "title": artifact.title,
            "summary": "Sessions move to PostgreSQL",
            "confidence": 0.6,
            "impact": "medium",
            "risk": "medium",
            "tags": ["architecture"],
            "sieve_score": 60,
        }
        values.update(kwargs)
        candidate = CandidateModel(
            repo_id=repo.id,
            user_id=repo.user_id,
            artifact_id=artifact.id,
            status=status,
            **values,
        )
        db_session.add(candidate)
        db_session.commit()
        return candidate

    return factory


@pytest.fixture
def now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)
