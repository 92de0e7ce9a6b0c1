"""
Extraction cost governor.

Bounds LLM spend per repository over a trailing window, by number of
extracted artifacts and by dollars. Reads are aggregations over the
write-once extraction cost ledger.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db.models import ExtractionCostModel, RepositoryModel, as_utc
from ..errors import LimitExceeded
from .schema import Usage

logger = structlog.get_logger()


@dataclass
class CostStats:
    """Spend of one repository: trailing window and all time."""

    window_count: int
    window_cost: float
    remaining_calls: int
    remaining_spend: float
    total_cost: float
    total_extractions: int
    retry_after: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_count": self.window_count,
            "window_cost": round(self.window_cost, 6),
            "remaining_calls": self.remaining_calls,
            "remaining_spend": round(self.remaining_spend, 6),
            "total_cost": round(self.total_cost, 6),
            "total_extractions": self.total_extractions,
            "retry_after": self.retry_after,
        }


@dataclass
class UserCostStats:
    total_cost: float
    total_extractions: int
    repo_breakdown: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_cost": round(self.total_cost, 6),
            "total_extractions": self.total_extractions,
            "repo_breakdown": self.repo_breakdown,
        }


class ExtractionGovernor:
    """Gate and ledger for LLM calls.

    Usage:
        governor = ExtractionGovernor(db)
        governor.enforce_extraction_limit(repo_id)
        ... call the LLM ...
        governor.record_extraction_cost(repo_id, user_id, usage)
    """

    def __init__(
        self,
        db: Session,
        window: timedelta = timedelta(hours=24),
        max_calls: int = 20,
        max_spend: float = 5.0,
    ):
        self.db = db
        self.window = window
        self.max_calls = max_calls
        self.max_spend = max_spend

    @classmethod
    def from_settings(cls, db: Session, settings: Any) -> "ExtractionGovernor":
        return cls(
            db,
            window=timedelta(hours=settings.extraction_window_hours),
            max_calls=settings.extraction_max_calls,
            max_spend=settings.extraction_max_spend_usd,
        )

    def _window_start(self, now: datetime) -> datetime:
        return now - self.window

    def check_extraction_limit(
        self, repo_id: str, now: Optional[datetime] = None
    ) -> Tuple[bool, CostStats]:
        """Whether another call may be dispatched for ``repo_id``. Read-only."""
        now = now or datetime.now(timezone.utc)
        window_start = self._window_start(now)

        window_count, window_cost, oldest = (
            self.db.query(
                func.coalesce(func.sum(ExtractionCostModel.batch_size), 0),
                func.coalesce(func.sum(ExtractionCostModel.total_cost), 0.0),
                func.min(ExtractionCostModel.created_at),
            )
            .filter(
                ExtractionCostModel.repo_id == repo_id,
                ExtractionCostModel.created_at >= window_start,
            )
            .one()
        )
        total_count, total_cost = (
            self.db.query(
                func.coalesce(func.sum(ExtractionCostModel.batch_size), 0),
                func.coalesce(func.sum(ExtractionCostModel.total_cost), 0.0),
            )
            .filter(ExtractionCostModel.repo_id == repo_id)
            .one()
        )

        window_count = int(window_count)
        window_cost = float(window_cost)
        allowed = window_count < self.max_calls and window_cost < self.max_spend

        retry_after = None
        if not allowed and oldest is not None:
            frees_at = as_utc(oldest) + self.window
            retry_after = max(1, int((frees_at - now).total_seconds()))

        stats = CostStats(
            window_count=window_count,
            window_cost=window_cost,
            remaining_calls=max(self.max_calls - window_count, 0),
            remaining_spend=max(self.max_spend - window_cost, 0.0),
            total_cost=float(total_cost),
            total_extractions=int(total_count),
            retry_after=retry_after,
        )
        return allowed, stats

    def enforce_extraction_limit(self, repo_id: str) -> CostStats:
        """Raise LimitExceeded when the repository is over budget."""
        allowed, stats = self.check_extraction_limit(repo_id)
        if not allowed:
            logger.warning(
                "extraction_limit_exceeded",
                repo_id=repo_id,
                window_count=stats.window_count,
                window_cost=stats.window_cost,
                retry_after=stats.retry_after,
            )
            raise LimitExceeded(
                f"Extraction limit reached for this repository "
                f"({self.max_calls} calls or ${self.max_spend:.2f} per "
                f"{int(self.window.total_seconds() // 3600)}h)",
                retry_after=stats.retry_after,
                details={"stats": stats.to_dict()},
            )
        return stats

    def record_extraction_cost(
        self, repo_id: str, user_id: str, usage: Usage
    ) -> ExtractionCostModel:
        """Append one ledger row and commit it immediately."""
        entry = ExtractionCostModel(
            repo_id=repo_id,
            user_id=user_id,
            model=usage.model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_cost=usage.total_cost,
            batch_size=usage.batch_size,
            candidate_ids=list(usage.candidate_ids),
            purpose=usage.purpose,
        )
        self.db.add(entry)
        self.db.commit()
        logger.info(
            "extraction_cost_recorded",
            repo_id=repo_id,
            model=usage.model,
            total_cost=usage.total_cost,
            purpose=usage.purpose,
        )
        return entry

    def get_cost_stats(self, repo_id: str) -> CostStats:
        return self.check_extraction_limit(repo_id)[1]

    def get_user_cost_stats(self, user_id: str) -> UserCostStats:
        """All-time spend of a user, broken down per repository."""
        rows = (
            self.db.query(
                ExtractionCostModel.repo_id,
                RepositoryModel.full_name,
                func.coalesce(func.sum(ExtractionCostModel.total_cost), 0.0),
                func.coalesce(func.sum(ExtractionCostModel.batch_size), 0),
            )
            .outerjoin(RepositoryModel, RepositoryModel.id == ExtractionCostModel.repo_id)
            .filter(ExtractionCostModel.user_id == user_id)
            .group_by(ExtractionCostModel.repo_id, RepositoryModel.full_name)
            .order_by(ExtractionCostModel.repo_id)
            .all()
        )
        breakdown = [
            {
                "repo_id": repo_id,
                "repo_name": full_name or "Unknown",
                "cost": round(float(cost), 6),
                "extractions": int(count),
            }
            for repo_id, full_name, cost, count in rows
        ]
        return UserCostStats(
            total_cost=sum(item["cost"] for item in breakdown),
            total_extractions=sum(item["extractions"] for item in breakdown),
            repo_breakdown=breakdown,
        )
