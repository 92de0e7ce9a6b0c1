"""
SQLAlchemy models for Decision Miner.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from ulid import ULID

from .base import Base


def generate_id() -> str:
    """Generate a sortable ULID primary key."""
    return str(ULID())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


repo_sync_status_enum = Enum(
    "idle", "syncing", "success", "partial", "error", name="repo_sync_status"
)

sync_run_status_enum = Enum(
    "syncing", "success", "partial", "error", name="sync_run_status"
)

artifact_type_enum = Enum("pr", "commit", name="artifact_type")

artifact_processing_enum = Enum(
    "pending", "sieved_in", "sieved_out", name="artifact_processing_status"
)

candidate_status_enum = Enum(
    "new",
    "extracting",
    "extracted",
    "failed",
    "dismissed",
    "approved",
    name="candidate_status",
)

level_enum = Enum("low", "medium", "high", name="impact_level")
risk_enum = Enum("low", "medium", "high", name="risk_level")

dismiss_reason_enum = Enum(
    "not_decision",
    "too_minor",
    "duplicate",
    "incorrect",
    "other",
    name="dismiss_reason",
)

decision_source_enum = Enum("candidate", "manual", name="decision_source")

cost_purpose_enum = Enum("extraction", "suggestion", name="extraction_purpose")


class RepositoryModel(Base):
    """A tracked repository and its sync state."""

    __tablename__ = "repositories"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(128), nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    github_id = Column(Integer, nullable=True, index=True)
    default_branch = Column(String(255), nullable=False, default="main")
    enabled = Column(Boolean, nullable=False, default=True)

    # Sync state; at most one run is 'syncing' per repository
    sync_status = Column(repo_sync_status_enum, nullable=False, default="idle")
    cursor = Column(JSON, nullable=True)
    latest_sync_id = Column(String(36), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)

    # Denormalized counters
    artifact_count = Column(Integer, nullable=False, default=0)
    candidate_count = Column(Integer, nullable=False, default=0)
    decision_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "full_name", name="uq_repositories_user_full_name"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "full_name": self.full_name,
            "github_id": self.github_id,
            "default_branch": self.default_branch,
            "enabled": self.enabled,
            "sync_status": self.sync_status,
            "cursor": self.cursor,
            "latest_sync_id": self.latest_sync_id,
            "last_sync_at": _iso(self.last_sync_at),
            "artifact_count": self.artifact_count,
            "candidate_count": self.candidate_count,
            "decision_count": self.decision_count,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class SyncOperationModel(Base):
    """One attempt to sync a repository.

    Terminal statuses (success, partial, error) are never changed again.
    """

    __tablename__ = "sync_operations"

    id = Column(String(36), primary_key=True, default=generate_id)
    repo_id = Column(
        String(36), ForeignKey("repositories.id"), nullable=False, index=True
    )
    user_id = Column(String(128), nullable=False)
    status = Column(sync_run_status_enum, nullable=False, default="syncing")

    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    fetched_count = Column(Integer, nullable=False, default=0)
    sieved_in_count = Column(Integer, nullable=False, default=0)
    sieved_out_count = Column(Integer, nullable=False, default=0)
    candidates_created = Column(Integer, nullable=False, default=0)
    error_count = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)
    reason_code = Column(String(64), nullable=True)

    start_cursor = Column(JSON, nullable=True)
    end_cursor = Column(JSON, nullable=True)

    # Ordered list of {"ts", "level", "message"}
    logs = Column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("ix_sync_operations_repo_started", "repo_id", "started_at"),
    )

    def append_log(self, message: str, level: str = "info") -> None:
        """Append a log entry; reassigns so the JSON column is flushed."""
        entry = {"ts": utcnow().isoformat(), "level": level, "message": message}
        self.logs = [*(self.logs or []), entry]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repo_id": self.repo_id,
            "user_id": self.user_id,
            "status": self.status,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "fetched_count": self.fetched_count,
            "sieved_in_count": self.sieved_in_count,
            "sieved_out_count": self.sieved_out_count,
            "candidates_created": self.candidates_created,
            "error_count": self.error_count,
            "error_message": self.error_message,
            "reason_code": self.reason_code,
            "start_cursor": self.start_cursor,
            "end_cursor": self.end_cursor,
            "logs": list(self.logs or []),
        }


class ArtifactModel(Base):
    """A fetched PR or commit. Upserted by (repo_id, github_id, type), never deleted."""

    __tablename__ = "artifacts"

    id = Column(String(36), primary_key=True, default=generate_id)
    repo_id = Column(
        String(36), ForeignKey("repositories.id"), nullable=False, index=True
    )
    github_id = Column(String(64), nullable=False)
    type = Column(artifact_type_enum, nullable=False, default="pr")
    url = Column(String(500), nullable=True)
    branch = Column(String(255), nullable=True)

    title = Column(Text, nullable=False, default="")
    body = Column(Text, nullable=True)
    diff = Column(Text, nullable=True)
    author = Column(String(255), nullable=True)
    labels = Column(JSON, nullable=False, default=list)
    file_paths = Column(JSON, nullable=False, default=list)
    files_changed = Column(Integer, nullable=False, default=0)
    additions = Column(Integer, nullable=False, default=0)
    deletions = Column(Integer, nullable=False, default=0)

    authored_at = Column(DateTime(timezone=True), nullable=True)
    merged_at = Column(DateTime(timezone=True), nullable=True)
    platform_updated_at = Column(DateTime(timezone=True), nullable=True)

    processing_status = Column(
        artifact_processing_enum, nullable=False, default="pending", index=True
    )
    sieve_score = Column(Integer, nullable=True)
    sieve_rules = Column(JSON, nullable=True)
    sieved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("repo_id", "github_id", "type", name="uq_artifacts_identity"),
        Index("ix_artifacts_repo_processing", "repo_id", "processing_status"),
    )

    def to_dict(self, include_diff: bool = False) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "repo_id": self.repo_id,
            "github_id": self.github_id,
            "type": self.type,
            "url": self.url,
            "branch": self.branch,
            "title": self.title,
            "body": self.body,
            "author": self.author,
            "labels": list(self.labels or []),
            "file_paths": list(self.file_paths or []),
            "files_changed": self.files_changed,
            "additions": self.additions,
            "deletions": self.deletions,
            "authored_at": _iso(self.authored_at),
            "merged_at": _iso(self.merged_at),
            "platform_updated_at": _iso(self.platform_updated_at),
            "processing_status": self.processing_status,
            "sieve_score": self.sieve_score,
            "sieve_rules": self.sieve_rules,
            "sieved_at": _iso(self.sieved_at),
        }
        if include_diff:
            data["diff"] = self.diff
        return data


class CandidateModel(Base):
    """A sieved artifact proposed as a decision, awaiting review or extraction."""

    __tablename__ = "candidates"

    id = Column(String(36), primary_key=True, default=generate_id)
    repo_id = Column(
        String(36), ForeignKey("repositories.id"), nullable=False, index=True
    )
    user_id = Column(String(128), nullable=False, index=True)
    artifact_id = Column(
        String(36), ForeignKey("artifacts.id"), nullable=False, unique=True
    )

    title = Column(Text, nullable=False)
    summary = Column(Text, nullable=True)
    context = Column(Text, nullable=True)
    decision = Column(Text, nullable=True)
    reasoning = Column(Text, nullable=True)
    consequences = Column(Text, nullable=True)
    alternatives = Column(Text, nullable=True)
    confidence = Column(Float, nullable=False, default=0.0)
    impact = Column(level_enum, nullable=False, default="medium")
    risk = Column(risk_enum, nullable=False, default="medium")
    tags = Column(JSON, nullable=False, default=list)
    sieve_score = Column(Integer, nullable=True)

    status = Column(candidate_status_enum, nullable=False, default="new", index=True)
    failure_reason = Column(String(64), nullable=True)
    failure_message = Column(Text, nullable=True)

    dismiss_reason = Column(dismiss_reason_enum, nullable=True)
    dismiss_note = Column(String(500), nullable=True)
    dismissed_at = Column(DateTime(timezone=True), nullable=True)

    extraction_model = Column(String(100), nullable=True)
    extraction_raw = Column(JSON, nullable=True)
    extracted_at = Column(DateTime(timezone=True), nullable=True)

    approved_at = Column(DateTime(timezone=True), nullable=True)
    decision_id = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (Index("ix_candidates_repo_status", "repo_id", "status"),)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repo_id": self.repo_id,
            "user_id": self.user_id,
            "artifact_id": self.artifact_id,
            "title": self.title,
            "summary": self.summary,
            "context": self.context,
            "decision": self.decision,
            "reasoning": self.reasoning,
            "consequences": self.consequences,
            "alternatives": self.alternatives,
            "confidence": self.confidence,
            "impact": self.impact,
            "risk": self.risk,
            "tags": list(self.tags or []),
            "sieve_score": self.sieve_score,
            "status": self.status,
            "failure_reason": self.failure_reason,
            "failure_message": self.failure_message,
            "dismiss_reason": self.dismiss_reason,
            "dismiss_note": self.dismiss_note,
            "dismissed_at": _iso(self.dismissed_at),
            "extraction_model": self.extraction_model,
            "extracted_at": _iso(self.extracted_at),
            "approved_at": _iso(self.approved_at),
            "decision_id": self.decision_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class DecisionModel(Base):
    """An approved decision record.

    Provenance columns are written once at creation; only the content
    columns change through explicit edits.
    """

    __tablename__ = "decisions"

    id = Column(String(36), primary_key=True, default=generate_id)
    repo_id = Column(
        String(36), ForeignKey("repositories.id"), nullable=False, index=True
    )
    created_by_user_id = Column(String(128), nullable=False)

    title = Column(Text, nullable=False)
    context = Column(Text, nullable=True)
    decision = Column(Text, nullable=False)
    reasoning = Column(Text, nullable=True)
    consequences = Column(Text, nullable=True)
    alternatives = Column(Text, nullable=True)
    tags = Column(JSON, nullable=False, default=list)
    significance = Column(Float, nullable=True)
    impact = Column(level_enum, nullable=True)

    # Provenance
    source_type = Column(decision_source_enum, nullable=False, default="candidate")
    source_candidate_id = Column(String(36), nullable=True, unique=True)
    source_artifact_id = Column(String(36), ForeignKey("artifacts.id"), nullable=True)
    extraction_model = Column(String(100), nullable=True)
    extraction_raw = Column(JSON, nullable=True)

    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repo_id": self.repo_id,
            "created_by_user_id": self.created_by_user_id,
            "title": self.title,
            "context": self.context,
            "decision": self.decision,
            "reasoning": self.reasoning,
            "consequences": self.consequences,
            "alternatives": self.alternatives,
            "tags": list(self.tags or []),
            "significance": self.significance,
            "impact": self.impact,
            "source_type": self.source_type,
            "source_candidate_id": self.source_candidate_id,
            "source_artifact_id": self.source_artifact_id,
            "extraction_model": self.extraction_model,
            "deleted_at": _iso(self.deleted_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class ExtractionCostModel(Base):
    """Write-once record of one LLM call and what it cost."""

    __tablename__ = "extraction_costs"

    id = Column(String(36), primary_key=True, default=generate_id)
    repo_id = Column(
        String(36), ForeignKey("repositories.id"), nullable=False, index=True
    )
    user_id = Column(String(128), nullable=False, index=True)
    model = Column(String(100), nullable=False)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_cost = Column(Float, nullable=False, default=0.0)
    batch_size = Column(Integer, nullable=False, default=1)
    candidate_ids = Column(JSON, nullable=False, default=list)
    purpose = Column(cost_purpose_enum, nullable=False, default="extraction")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_extraction_costs_repo_created", "repo_id", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "repo_id": self.repo_id,
            "user_id": self.user_id,
            "model": self.model,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_cost": self.total_cost,
            "batch_size": self.batch_size,
            "candidate_ids": list(self.candidate_ids or []),
            "purpose": self.purpose,
            "created_at": _iso(self.created_at),
        }
