"""
Tests for the GitHub client, against an in-process mock transport.
"""

from datetime import datetime, timezone

import httpx
import pytest

from decision_miner.errors import (
    Forbidden,
    NotFound,
    RateLimited,
    ServiceUnavailable,
    Unauthorized,
)
from decision_miner.github.client import GitHubAPIError, GitHubClient, truncate_bytes

SINCE = datetime(2026, 1, 1, tzinfo=timezone.utc)


def pr_item(number: int, updated_at: str, merged: bool = True) -> dict:
    return {
        "number": number,
        "title": f"PR {number}",
        "html_url": f"https://github.com/acme/api/pull/{number}",
        "body": "Body",
        "user": {"login": "octocat"},
        "base": {"ref": "main"},
        "labels": [{"name": "architecture"}],
        "created_at": "2025-12-30T10:00:00Z",
        "updated_at": updated_at,
        "merged_at": updated_at if merged else None,
    }


def make_client(handler, **kwargs) -> GitHubClient:
    kwargs.setdefault("base_delay", 0)
    return GitHubClient(token="t", transport=httpx.MockTransport(handler), **kwargs)


def pr_detail_response(request: httpx.Request) -> httpx.Response:
    """Serve the diff and files endpoints used to hydrate a PR."""
    if request.url.path.endswith("/files"):
        return httpx.Response(
            200,
            json=[
                {"filename": "requirements.txt", "additions": 3, "deletions": 1},
                {"filename": "src/app.py", "additions": 10, "deletions": 0},
            ],
        )
    return httpx.Response(200, text="diff --git a/x b/x\n+line\n")


class TestListArtifacts:
    """Merged PR stream."""

    @pytest.mark.asyncio
    async def test_single_short_page(self):
        listed = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/api/pulls":
                listed.append(dict(request.url.params))
                return httpx.Response(
                    200,
                    json=[
                        pr_item(3, "2026-02-03T00:00:00Z"),
                        pr_item(2, "2026-02-02T00:00:00Z", merged=False),
                    ],
                )
            return pr_detail_response(request)

        client = make_client(handler, per_page=50)
        pages = [page async for page in client.list_artifacts_since("acme/api", SINCE)]
        await client.close()

        assert len(pages) == 1
        assert pages[0].has_more is False
        assert [a.github_id for a in pages[0].artifacts] == ["3"]
        artifact = pages[0].artifacts[0]
        assert artifact.file_paths == ["requirements.txt", "src/app.py"]
        assert artifact.additions == 13
        assert artifact.deletions == 1
        assert artifact.diff.startswith("diff --git")
        assert listed[0]["state"] == "closed"
        assert listed[0]["sort"] == "updated"
        assert listed[0]["direction"] == "desc"

    @pytest.mark.asyncio
    async def test_stops_at_watermark(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/api/pulls":
                return httpx.Response(
                    200,
                    json=[
                        pr_item(5, "2026-02-05T00:00:00Z"),
                        pr_item(1, "2025-12-01T00:00:00Z"),
                    ],
                )
            return pr_detail_response(request)

        client = make_client(handler, per_page=2)
        pages = [page async for page in client.list_artifacts_since("acme/api", SINCE)]

        assert len(pages) == 1
        assert [a.github_id for a in pages[0].artifacts] == ["5"]
        assert pages[0].has_more is False

    @pytest.mark.asyncio
    async def test_follows_full_pages_up_to_max_pages(self):
        requested_pages = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/api/pulls":
                page = int(request.url.params["page"])
                requested_pages.append(page)
                return httpx.Response(
                    200, json=[pr_item(100 - page, f"2026-02-{10 - page:02d}T00:00:00Z")]
                )
            return pr_detail_response(request)

        client = make_client(handler, per_page=1, max_pages=3)
        pages = [page async for page in client.list_artifacts_since("acme/api", SINCE)]

        assert requested_pages == [1, 2, 3]
        assert [p.has_more for p in pages] == [True, True, False]
        assert [p.truncated for p in pages] == [False, False, True]

    @pytest.mark.asyncio
    async def test_page_limit_leaves_older_items_unfetched(self):
        updated = {3: "2026-02-03T00:00:00Z", 2: "2026-02-02T00:00:00Z", 1: "2026-02-01T00:00:00Z"}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/api/pulls":
                page = int(request.url.params["page"])
                number = 4 - page
                return httpx.Response(200, json=[pr_item(number, updated[number])] if number else [])
            return pr_detail_response(request)

        client = make_client(handler, per_page=1, max_pages=2)
        pages = [page async for page in client.list_artifacts_since("acme/api", SINCE)]

        assert [a.github_id for p in pages for a in p.artifacts] == ["3", "2"]
        assert pages[-1].has_more is False
        assert pages[-1].truncated is True

    @pytest.mark.asyncio
    async def test_stream_reaching_the_watermark_is_not_truncated(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/api/pulls":
                return httpx.Response(200, json=[pr_item(1, "2025-12-01T00:00:00Z")])
            return pr_detail_response(request)

        client = make_client(handler, per_page=1, max_pages=1)
        pages = [page async for page in client.list_artifacts_since("acme/api", SINCE)]

        assert pages[0].artifacts == []
        assert pages[0].truncated is False

    @pytest.mark.asyncio
    async def test_restart_from_page(self):
        requested_pages = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested_pages.append(int(request.url.params["page"]))
            return httpx.Response(200, json=[])

        client = make_client(handler)
        pages = [
            page
            async for page in client.list_artifacts_since("acme/api", SINCE, start_page=4)
        ]

        assert requested_pages == [4]
        assert pages[0].page == 4
        assert pages[0].artifacts == []


def commit_detail(sha: str, committed_at: str, patch: str) -> dict:
    return {
        "sha": sha,
        "html_url": f"https://github.com/acme/api/commit/{sha}",
        "commit": {
            "message": f"Switch cache backend\n\nCommit {sha} body",
            "author": {"name": "Octo Cat", "date": committed_at},
            "committer": {"date": committed_at},
        },
        "author": {"login": "octocat"},
        "stats": {"additions": 12, "deletions": 2},
        "files": [{"filename": "src/cache.py", "patch": patch}],
    }


class TestListCommits:
    """Commit sub-stream."""

    @pytest.mark.asyncio
    async def test_pages_and_truncates_patches(self):
        listed = []
        shas = {1: ["c3", "c2"], 2: ["c1"]}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/api/commits":
                listed.append(dict(request.url.params))
                page = int(request.url.params["page"])
                return httpx.Response(200, json=[{"sha": sha} for sha in shas.get(page, [])])
            sha = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(
                200, json=commit_detail(sha, "2026-02-01T12:00:00Z", "+ é cached\n" * 50)
            )

        client = make_client(handler, per_page=2, max_diff_bytes=64)
        pages = [
            page async for page in client.list_commits_since("acme/api", SINCE, branch="main")
        ]
        await client.close()

        assert [p.page for p in pages] == [1, 2]
        assert [p.has_more for p in pages] == [True, False]
        assert not any(p.truncated for p in pages)
        commits = [a for p in pages for a in p.artifacts]
        assert [c.github_id for c in commits] == ["c3", "c2", "c1"]
        assert listed[0]["since"] == SINCE.isoformat()
        assert listed[0]["sha"] == "main"

        first = commits[0]
        assert first.type == "commit"
        assert first.title == "Switch cache backend"
        assert first.body == "Commit c3 body"
        assert first.branch == "main"
        assert first.file_paths == ["src/cache.py"]
        assert first.additions == 12
        assert first.updated_at == datetime(2026, 2, 1, 12, tzinfo=timezone.utc)
        assert first.diff.startswith("--- src/cache.py\n")
        assert len(first.diff.encode("utf-8")) <= 64

    @pytest.mark.asyncio
    async def test_full_last_page_is_truncated(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/repos/acme/api/commits":
                page = int(request.url.params["page"])
                return httpx.Response(200, json=[{"sha": f"s{page}"}])
            sha = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json=commit_detail(sha, "2026-02-01T12:00:00Z", "+x\n"))

        client = make_client(handler, per_page=1, max_pages=2)
        pages = [page async for page in client.list_commits_since("acme/api", SINCE)]

        assert [p.truncated for p in pages] == [False, True]


class TestErrorMapping:
    """HTTP failures mapped onto the error taxonomy."""

    @pytest.mark.asyncio
    async def test_rate_limit_403_with_zero_remaining(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "retry-after": "42"},
                json={"message": "API rate limit exceeded"},
            )

        client = make_client(handler)
        with pytest.raises(RateLimited) as exc_info:
            await client.get_repository("acme/api")
        assert exc_info.value.retry_after == 42

    @pytest.mark.asyncio
    async def test_429_is_rate_limited(self):
        client = make_client(lambda request: httpx.Response(429))
        with pytest.raises(RateLimited):
            await client.get_repository("acme/api")

    @pytest.mark.asyncio
    async def test_plain_403_is_forbidden(self):
        client = make_client(lambda request: httpx.Response(403, json={}))
        with pytest.raises(Forbidden):
            await client.get_repository("acme/api")

    @pytest.mark.asyncio
    async def test_401_is_unauthorized(self):
        client = make_client(lambda request: httpx.Response(401))
        with pytest.raises(Unauthorized):
            await client.get_repository("acme/api")

    @pytest.mark.asyncio
    async def test_404_is_not_found(self):
        client = make_client(lambda request: httpx.Response(404))
        with pytest.raises(NotFound):
            await client.get_repository("acme/api")

    @pytest.mark.asyncio
    async def test_other_4xx_is_api_error(self):
        client = make_client(lambda request: httpx.Response(422, text="bad"))
        with pytest.raises(GitHubAPIError) as exc_info:
            await client.get_repository("acme/api")
        assert exc_info.value.upstream_status == 422

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            if calls["n"] < 3:
                return httpx.Response(502)
            return httpx.Response(200, json={"id": 7})

        client = make_client(handler, max_retries=3)
        assert await client.get_repository("acme/api") == {"id": 7}
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self):
        calls = {"n": 0}

        def handler(request: httpx.Request) -> httpx.Response:
            calls["n"] += 1
            return httpx.Response(503)

        client = make_client(handler, max_retries=2)
        with pytest.raises(ServiceUnavailable):
            await client.get_repository("acme/api")
        assert calls["n"] == 3

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        client = make_client(handler, max_retries=1)
        with pytest.raises(ServiceUnavailable):
            await client.get_repository("acme/api")


class TestBackoffAndTruncation:
    def test_backoff_is_bounded(self):
        client = GitHubClient(token="t", base_delay=1.0, max_delay=5.0)
        for attempt in range(10):
            assert 0 <= client._calculate_backoff(attempt) <= 5.0

    def test_truncate_bytes_keeps_characters_whole(self):
        text = "é" * 10
        truncated = truncate_bytes(text, 5)
        assert truncated == "éé"
        assert len(truncated.encode("utf-8")) <= 5

    def test_truncate_bytes_passthrough(self):
        assert truncate_bytes("short", 100) == "short"
        assert truncate_bytes(None, 100) is None
