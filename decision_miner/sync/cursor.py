"""
Incremental sync cursor.

A cursor records how far a repository has been synced, per sub-stream.
Advancing always backs off by a fixed overlap so that items updated around
the boundary are fetched again; upserts make the re-fetch harmless.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

DEFAULT_OVERLAP = timedelta(minutes=120)


def _parse_ts(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


class Cursor(BaseModel):
    """Immutable sync watermark."""

    model_config = ConfigDict(frozen=True)

    pr_updated_after: Optional[datetime] = None
    commit_since: Optional[datetime] = None
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prUpdatedAfter": self.pr_updated_after.isoformat()
            if self.pr_updated_after
            else None,
            "commitSince": self.commit_since.isoformat() if self.commit_since else None,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Cursor"]:
        """Rebuild a cursor from its stored form; ``None`` for empty storage."""
        if not data:
            return None
        return cls(
            pr_updated_after=_parse_ts(data.get("prUpdatedAfter")),
            commit_since=_parse_ts(data.get("commitSince")),
            version=int(data.get("version") or 0),
        )


class CursorManager:
    """Computes initial, next and merged cursors. Pure; no I/O."""

    def __init__(self, overlap: timedelta = DEFAULT_OVERLAP):
        self.overlap = overlap

    def initial_cursor(
        self, lookback_days: int, now: Optional[datetime] = None
    ) -> Cursor:
        """Cursor anchored ``lookback_days`` before now for every sub-stream."""
        now = now or datetime.now(timezone.utc)
        anchor = now - timedelta(days=lookback_days)
        return Cursor(pr_updated_after=anchor, commit_since=anchor, version=0)

    def watermark(self, last_seen: datetime) -> datetime:
        """``last_seen`` minus the overlap."""
        return last_seen - self.overlap

    def next_cursor(
        self,
        existing: Optional[Cursor],
        pr_last_seen: Optional[datetime] = None,
        commit_last_seen: Optional[datetime] = None,
    ) -> Cursor:
        """Cursor for the next run.

        Each sub-stream that saw items moves to its watermark; the others
        keep their value from ``existing``.
        """
        return self.merge(
            existing,
            pr_updated_after=self.watermark(pr_last_seen) if pr_last_seen else None,
            commit_since=self.watermark(commit_last_seen) if commit_last_seen else None,
        )

    def merge(
        self,
        existing: Optional[Cursor],
        pr_updated_after: Optional[datetime] = None,
        commit_since: Optional[datetime] = None,
    ) -> Cursor:
        """Apply only the provided sub-cursors on top of ``existing``."""
        base = existing or Cursor()
        updates: Dict[str, Any] = {}
        if pr_updated_after is not None and pr_updated_after != base.pr_updated_after:
            updates["pr_updated_after"] = pr_updated_after
        if commit_since is not None and commit_since != base.commit_since:
            updates["commit_since"] = commit_since
        if not updates:
            return base
        updates["version"] = base.version + 1
        return base.model_copy(update=updates)

    def effective_cursor(
        self, stored: Optional[Cursor], lookback_days: int
    ) -> Cursor:
        """The stored cursor, with missing sub-cursors filled from the lookback."""
        initial = self.initial_cursor(lookback_days)
        if stored is None:
            return initial
        return stored.model_copy(
            update={
                "pr_updated_after": stored.pr_updated_after
                or initial.pr_updated_after,
                "commit_since": stored.commit_since or initial.commit_since,
            }
        )
