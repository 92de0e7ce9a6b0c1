"""Value types produced by the GitHub client."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def parse_github_ts(value: Optional[str]) -> Optional[datetime]:
    """Parse GitHub's ISO-8601 timestamps (``2026-01-02T03:04:05Z``)."""
    if not value:
        return None
    ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class RawArtifact:
    """A merged PR or a commit, as fetched from the platform."""

    github_id: str
    type: str
    title: str
    url: Optional[str] = None
    body: Optional[str] = None
    diff: Optional[str] = None
    author: Optional[str] = None
    branch: Optional[str] = None
    labels: List[str] = field(default_factory=list)
    file_paths: List[str] = field(default_factory=list)
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0
    authored_at: Optional[datetime] = None
    merged_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_pull_request(cls, pr: Dict[str, Any]) -> "RawArtifact":
        """Build from a ``GET /repos/{o}/{r}/pulls`` list item."""
        return cls(
            github_id=str(pr["number"]),
            type="pr",
            title=pr.get("title") or "",
            url=pr.get("html_url"),
            body=pr.get("body"),
            author=(pr.get("user") or {}).get("login"),
            branch=(pr.get("base") or {}).get("ref"),
            labels=[label.get("name", "") for label in pr.get("labels") or []],
            files_changed=pr.get("changed_files") or 0,
            additions=pr.get("additions") or 0,
            deletions=pr.get("deletions") or 0,
            authored_at=parse_github_ts(pr.get("created_at")),
            merged_at=parse_github_ts(pr.get("merged_at")),
            updated_at=parse_github_ts(pr.get("updated_at")),
        )

    @classmethod
    def from_commit(cls, commit: Dict[str, Any], branch: Optional[str] = None) -> "RawArtifact":
        """Build from a ``GET /repos/{o}/{r}/commits/{sha}`` payload."""
        detail = commit.get("commit") or {}
        message = detail.get("message") or ""
        title, _, body = message.partition("\n")
        files = commit.get("files") or []
        patches = [f"--- {f.get('filename')}\n{f['patch']}" for f in files if f.get("patch")]
        stats = commit.get("stats") or {}
        committed = parse_github_ts((detail.get("committer") or {}).get("date"))
        return cls(
            github_id=commit["sha"],
            type="commit",
            title=title.strip(),
            url=commit.get("html_url"),
            body=body.strip() or None,
            diff="\n\n".join(patches) or None,
            author=(commit.get("author") or {}).get("login")
            or (detail.get("author") or {}).get("name"),
            branch=branch,
            file_paths=[f.get("filename", "") for f in files],
            files_changed=len(files),
            additions=stats.get("additions") or 0,
            deletions=stats.get("deletions") or 0,
            authored_at=parse_github_ts((detail.get("author") or {}).get("date")),
            updated_at=committed,
        )


@dataclass
class ArtifactPage:
    """One page of the artifact stream.

    ``truncated`` is set on the last page when the stream stopped at
    ``max_pages`` while upstream still had items newer than ``since``.
    """

    page: int
    artifacts: List[RawArtifact]
    has_more: bool
    truncated: bool = False
