"""GitHub API client for pull-request and commit history.

Async wrapper around the GitHub REST API that streams a repository's
merged pull requests (and optionally commits) newer than a watermark.

Includes rate-limit detection and bounded retries with exponential backoff
and full jitter for transient failures. Errors are mapped onto the
pipeline's error taxonomy so callers never see raw HTTP failures.
"""

import asyncio
import logging
import random
import time
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..errors import (
    Forbidden,
    NotFound,
    PipelineError,
    RateLimited,
    ServiceUnavailable,
    Unauthorized,
)
from .models import ArtifactPage, RawArtifact, parse_github_ts

logger = logging.getLogger(__name__)

DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"


class GitHubAPIError(PipelineError):
    """Non-retryable GitHub response that maps to no more specific error."""

    code = "GITHUB_API_ERROR"
    status_code = 502

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.upstream_status = upstream_status
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(
            message,
            details={"upstream_status": upstream_status, "url": request_url},
        )


def truncate_bytes(text: Optional[str], max_bytes: int) -> Optional[str]:
    """Cut ``text`` to at most ``max_bytes`` of UTF-8 without splitting a character."""
    if text is None:
        return None
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


class GitHubClient:
    """Async GitHub API client with rate limiting and retry logic.

    Attributes:
        token: GitHub API token.
        base_url: Base URL for the GitHub API (GitHub Enterprise supported).
        per_page: Page size used for list endpoints.
        max_pages: Hard bound on pages fetched by one stream.
        max_diff_bytes: Diffs larger than this are truncated.
        max_retries: Retry attempts for transient failures.
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Cap on a single backoff delay.
        timeout: Request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as client:
        ...     async for page in client.list_artifacts_since("octo/repo", since):
        ...         ...
    """

    # HTTP status codes that should trigger a retry
    RETRYABLE_STATUS_CODES = {408, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        per_page: int = 50,
        max_pages: int = 20,
        max_diff_bytes: int = 100_000,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.per_page = per_page
        self.max_pages = max_pages
        self.max_diff_bytes = max_diff_bytes
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "decision-miner/0.1",
        }

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _calculate_backoff(self, attempt: int) -> float:
        """Exponential backoff with full jitter.

        Args:
            attempt: The current retry attempt (0-indexed).
        """
        exponential_delay = self.base_delay * (2**attempt)
        capped_delay = min(exponential_delay, self.max_delay)
        return random.uniform(0, capped_delay)

    @staticmethod
    def _parse_int_header(headers: httpx.Headers, name: str) -> Optional[int]:
        value = headers.get(name)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return None

    def _rate_limit_error(self, response: httpx.Response) -> RateLimited:
        """Build a RateLimited error carrying the retry hint from the headers."""
        reset_at = self._parse_int_header(response.headers, "x-ratelimit-reset")
        retry_after = None
        if reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))
        header_retry = self._parse_int_header(response.headers, "retry-after")
        if header_retry is not None:
            retry_after = header_retry

        logger.warning(
            "GitHub API rate limit exceeded",
            extra={"reset_at": reset_at, "retry_after": retry_after},
        )
        return RateLimited(
            "GitHub API rate limit exceeded",
            retry_after=retry_after,
            details={"reset_at": reset_at},
        )

    def _raise_for_status(self, response: httpx.Response, path: str) -> None:
        status = response.status_code
        if status < 400:
            return
        if status == 429:
            raise self._rate_limit_error(response)
        if status == 403:
            if self._parse_int_header(response.headers, "x-ratelimit-remaining") == 0:
                raise self._rate_limit_error(response)
            raise Forbidden(
                "GitHub denied access to the resource", details={"path": path}
            )
        if status == 401:
            raise Unauthorized(
                "GitHub credential is missing, expired or revoked",
                details={"path": path},
            )
        if status == 404:
            raise NotFound("GitHub resource not found", details={"path": path})

        body = response.text
        logger.error(
            "GitHub API error",
            extra={"status_code": status, "path": path, "response_body": body[:500]},
        )
        raise GitHubAPIError(
            f"GitHub API error: {status}",
            upstream_status=status,
            response_body=body,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Raises:
            RateLimited: quota exhausted (never retried)
            Unauthorized, Forbidden, NotFound: non-retryable client errors
            ServiceUnavailable: retries exhausted on 5xx, timeouts or network errors
        """
        last_error: Optional[str] = None

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method, path, params=params, headers=headers
                )
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code not in self.RETRYABLE_STATUS_CODES:
                    self._raise_for_status(response, path)
                    return response
                last_error = f"HTTP {response.status_code}"

            if attempt < self.max_retries:
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "Retryable error from GitHub API",
                    extra={
                        "error": last_error,
                        "attempt": attempt + 1,
                        "max_retries": self.max_retries,
                        "delay": delay,
                        "path": path,
                    },
                )
                await asyncio.sleep(delay)

        logger.error(
            "GitHub API request failed after all retries",
            extra={"path": path, "method": method, "error": last_error},
        )
        raise ServiceUnavailable(
            f"GitHub API unavailable after {self.max_retries + 1} attempts: {last_error}",
            details={"path": path},
        )

    # ------------------------------------------------------------------
    # Repository metadata
    # ------------------------------------------------------------------

    async def get_repository(self, repo_full_name: str) -> Dict[str, Any]:
        """Fetch repository metadata (id, default branch, ...)."""
        response = await self._request("GET", f"/repos/{repo_full_name}")
        return response.json()

    # ------------------------------------------------------------------
    # Pull requests
    # ------------------------------------------------------------------

    async def fetch_pull_request_diff(self, repo_full_name: str, number: str) -> str:
        """Unified diff of a PR, truncated to ``max_diff_bytes``."""
        response = await self._request(
            "GET",
            f"/repos/{repo_full_name}/pulls/{number}",
            headers={"Accept": DIFF_MEDIA_TYPE},
        )
        return truncate_bytes(response.text, self.max_diff_bytes) or ""

    async def fetch_pull_request_files(
        self, repo_full_name: str, number: str
    ) -> List[Dict[str, Any]]:
        """Changed files of a PR (first 100 only)."""
        response = await self._request(
            "GET",
            f"/repos/{repo_full_name}/pulls/{number}/files",
            params={"per_page": 100},
        )
        return response.json()

    async def _hydrate_pull_request(
        self, repo_full_name: str, pr: Dict[str, Any]
    ) -> RawArtifact:
        artifact = RawArtifact.from_pull_request(pr)
        artifact.diff = await self.fetch_pull_request_diff(
            repo_full_name, artifact.github_id
        )
        files = await self.fetch_pull_request_files(repo_full_name, artifact.github_id)
        artifact.file_paths = [f.get("filename", "") for f in files]
        if not artifact.files_changed:
            artifact.files_changed = len(files)
        if not (artifact.additions or artifact.deletions):
            artifact.additions = sum(f.get("additions") or 0 for f in files)
            artifact.deletions = sum(f.get("deletions") or 0 for f in files)
        return artifact

    async def list_artifacts_since(
        self,
        repo_full_name: str,
        since: Optional[datetime],
        start_page: int = 1,
    ) -> AsyncIterator[ArtifactPage]:
        """Stream merged PRs updated after ``since``, one page at a time.

        PRs are listed closed, most recently updated first. The stream ends
        at a short page, at the first page reaching back to ``since``, or
        after ``max_pages``; in the last case the final page is marked
        ``truncated``. It can be restarted from any page number.
        """
        page = max(1, start_page)
        while page <= self.max_pages:
            response = await self._request(
                "GET",
                f"/repos/{repo_full_name}/pulls",
                params={
                    "state": "closed",
                    "sort": "updated",
                    "direction": "desc",
                    "per_page": self.per_page,
                    "page": page,
                },
            )
            items = response.json() or []

            newer = [
                pr
                for pr in items
                if since is None
                or (
                    parse_github_ts(pr.get("updated_at")) is not None
                    and parse_github_ts(pr.get("updated_at")) > since
                )
            ]
            artifacts = []
            for pr in newer:
                if not pr.get("merged_at"):
                    continue
                artifacts.append(await self._hydrate_pull_request(repo_full_name, pr))

            upstream_more = len(items) == self.per_page and len(newer) == len(items)
            has_more = upstream_more and page < self.max_pages
            truncated = upstream_more and page >= self.max_pages
            logger.debug(
                "Fetched pull request page",
                extra={
                    "repo": repo_full_name,
                    "page": page,
                    "listed": len(items),
                    "merged": len(artifacts),
                    "has_more": has_more,
                    "truncated": truncated,
                },
            )
            yield ArtifactPage(
                page=page, artifacts=artifacts, has_more=has_more, truncated=truncated
            )

            if not has_more:
                return
            page += 1

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    async def list_commits_since(
        self,
        repo_full_name: str,
        since: Optional[datetime],
        branch: Optional[str] = None,
        start_page: int = 1,
    ) -> AsyncIterator[ArtifactPage]:
        """Stream commits on ``branch`` since ``since``, with their patches."""
        page = max(1, start_page)
        while page <= self.max_pages:
            params: Dict[str, Any] = {"per_page": self.per_page, "page": page}
            if since is not None:
                params["since"] = since.isoformat()
            if branch:
                params["sha"] = branch
            response = await self._request(
                "GET", f"/repos/{repo_full_name}/commits", params=params
            )
            items = response.json() or []

            artifacts = []
            for item in items:
                detail = await self._request(
                    "GET", f"/repos/{repo_full_name}/commits/{item['sha']}"
                )
                artifact = RawArtifact.from_commit(detail.json(), branch=branch)
                artifact.diff = truncate_bytes(artifact.diff, self.max_diff_bytes)
                artifacts.append(artifact)

            upstream_more = len(items) == self.per_page
            has_more = upstream_more and page < self.max_pages
            yield ArtifactPage(
                page=page,
                artifacts=artifacts,
                has_more=has_more,
                truncated=upstream_more and page >= self.max_pages,
            )

            if not has_more:
                return
            page += 1
