"""Fakes and builders shared by the test modules."""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from decision_miner.errors import ExtractionError
from decision_miner.extract.schema import (
    DecisionExtraction,
    ExtractionResult,
    SuggestionResult,
    Usage,
)
from decision_miner.github.models import ArtifactPage, RawArtifact

USER = "user-1"
OTHER_USER = "user-2"


def raw_pr(
    number: int,
    updated_at: datetime,
    title: str = "Adopt PostgreSQL for session storage",
    body: Optional[str] = "We decided to replace Redis because persistence was unreliable.",
    labels: Optional[List[str]] = None,
    file_paths: Optional[List[str]] = None,
    additions: int = 120,
    deletions: int = 30,
) -> RawArtifact:
    return RawArtifact(
        github_id=str(number),
        type="pr",
        title=title,
        url=f"https://github.com/acme/api/pull/{number}",
        body=body,
        diff="+ changed\n" * 50,
        author="octocat",
        branch="main",
        labels=labels if labels is not None else ["architecture"],
        file_paths=file_paths if file_paths is not None else ["src/db/sessions.py", "requirements.txt"],
        files_changed=len(file_paths) if file_paths is not None else 2,
        additions=additions,
        deletions=deletions,
        authored_at=updated_at - timedelta(days=1),
        merged_at=updated_at,
        updated_at=updated_at,
    )


def raw_commit(sha: str, committed_at: datetime, title: str = "Switch cache backend to Redis") -> RawArtifact:
    return RawArtifact(
        github_id=sha,
        type="commit",
        title=title,
        url=f"https://github.com/acme/api/commit/{sha}",
        body="Memcached could not hold the larger session payloads.",
        diff="--- src/cache.py\n" + "+ changed\n" * 30,
        author="octocat",
        branch="main",
        file_paths=["src/cache.py"],
        files_changed=1,
        additions=30,
        deletions=4,
        authored_at=committed_at,
        updated_at=committed_at,
    )


class FakePlatformClient:
    """In-memory platform client serving pre-built pages.

    ``fail_after`` raises ``error`` once that many pages have been served.
    ``truncated`` marks the last pull request page as cut off by the page
    limit.
    """

    def __init__(
        self,
        pages: List[List[RawArtifact]],
        error: Optional[BaseException] = None,
        fail_after: Optional[int] = None,
        commit_pages: Optional[List[List[RawArtifact]]] = None,
        truncated: bool = False,
    ):
        self.pages = pages
        self.error = error
        self.fail_after = fail_after
        self.commit_pages = commit_pages or []
        self.truncated = truncated
        self.since_calls: List[Optional[datetime]] = []
        self.commit_since_calls: List[Optional[datetime]] = []
        self.closed = False

    async def list_artifacts_since(self, repo_full_name, since, start_page=1):
        self.since_calls.append(since)
        for index, artifacts in enumerate(self.pages):
            if self.fail_after is not None and index >= self.fail_after:
                raise self.error
            last = index + 1 == len(self.pages)
            yield ArtifactPage(
                page=index + 1,
                artifacts=artifacts,
                has_more=not last,
                truncated=self.truncated and last,
            )
        if self.error is not None and self.fail_after is None:
            raise self.error

    async def list_commits_since(self, repo_full_name, since, branch=None, start_page=1):
        self.commit_since_calls.append(since)
        for index, artifacts in enumerate(self.commit_pages):
            yield ArtifactPage(
                page=index + 1,
                artifacts=artifacts,
                has_more=index + 1 < len(self.commit_pages),
            )

    async def close(self):
        self.closed = True


def decision_extraction(significance: float = 0.8, **overrides: Any) -> DecisionExtraction:
    values: Dict[str, Any] = {
        "title": "Use PostgreSQL for session storage",
        "context": "Sessions were stored in Redis without persistence and were lost on restarts.",
        "decision": "Store user sessions in PostgreSQL alongside the rest of the application data.",
        "reasoning": "PostgreSQL is already operated by the team and provides durable storage.",
        "consequences": "Session reads add load on the primary database and need an index on expiry.",
        "alternatives": "Enable Redis AOF persistence.",
        "tags": ["Database", "sessions"],
        "significance": significance,
    }
    values.update(overrides)
    return DecisionExtraction(**values)


class FakeExtractionClient:
    """Returns scripted results and counts calls."""

    def __init__(
        self,
        decisions: Optional[List[DecisionExtraction]] = None,
        error: Optional[BaseException] = None,
        cost: float = 0.01,
        suggestions: Optional[List[str]] = None,
    ):
        self.decisions = decisions if decisions is not None else [decision_extraction()]
        self.error = error
        self.cost = cost
        self.suggestions = suggestions or ["Backups must cover the sessions table"]
        self.calls = 0

    async def extract(self, batch):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return ExtractionResult(
            decisions=list(self.decisions),
            model="claude-test",
            input_tokens=1200,
            output_tokens=300,
            total_cost=self.cost,
            raw_response={"decisions": []},
        )

    async def suggest_consequences(self, title, context, decision, reasoning):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return SuggestionResult(
            suggestions=list(self.suggestions),
            model="claude-test",
            input_tokens=400,
            output_tokens=100,
            total_cost=self.cost,
        )

    async def close(self):
        pass


def extraction_error_with_usage(cost: float = 0.02) -> ExtractionError:
    error = ExtractionError("Model returned invalid JSON")
    error.usage = Usage(
        model="claude-test", input_tokens=1000, output_tokens=50, total_cost=cost
    )
    return error
