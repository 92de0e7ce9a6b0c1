"""Create pipeline tables

Revision ID: 0001_create_pipeline_tables
Revises:
Create Date: 2026-10-18

Repositories, sync operations, artifacts, candidates, decisions,
extraction costs and the audit log.
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_create_pipeline_tables"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "repositories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("github_id", sa.Integer(), nullable=True),
        sa.Column("default_branch", sa.String(length=255), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column(
            "sync_status",
            sa.Enum(
                "idle", "syncing", "success", "partial", "error",
                name="repo_sync_status",
            ),
            nullable=False,
        ),
        sa.Column("cursor", sa.JSON(), nullable=True),
        sa.Column("latest_sync_id", sa.String(length=36), nullable=True),
        _ts("last_sync_at"),
        sa.Column("artifact_count", sa.Integer(), nullable=False),
        sa.Column("candidate_count", sa.Integer(), nullable=False),
        sa.Column("decision_count", sa.Integer(), nullable=False),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.UniqueConstraint("user_id", "full_name", name="uq_repositories_user_full_name"),
    )
    op.create_index("ix_repositories_user_id", "repositories", ["user_id"])
    op.create_index("ix_repositories_github_id", "repositories", ["github_id"])

    op.create_table(
        "sync_operations",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("repo_id", sa.String(length=36), sa.ForeignKey("repositories.id"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "status",
            sa.Enum("syncing", "success", "partial", "error", name="sync_run_status"),
            nullable=False,
        ),
        _ts("started_at", nullable=False),
        _ts("completed_at"),
        sa.Column("fetched_count", sa.Integer(), nullable=False),
        sa.Column("sieved_in_count", sa.Integer(), nullable=False),
        sa.Column("sieved_out_count", sa.Integer(), nullable=False),
        sa.Column("candidates_created", sa.Integer(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("reason_code", sa.String(length=64), nullable=True),
        sa.Column("start_cursor", sa.JSON(), nullable=True),
        sa.Column("end_cursor", sa.JSON(), nullable=True),
        sa.Column("logs", sa.JSON(), nullable=False),
    )
    op.create_index("ix_sync_operations_repo_id", "sync_operations", ["repo_id"])
    op.create_index(
        "ix_sync_operations_repo_started", "sync_operations", ["repo_id", "started_at"]
    )

    op.create_table(
        "artifacts",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("repo_id", sa.String(length=36), sa.ForeignKey("repositories.id"), nullable=False),
        sa.Column("github_id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.Enum("pr", "commit", name="artifact_type"), nullable=False),
        sa.Column("url", sa.String(length=500), nullable=True),
        sa.Column("branch", sa.String(length=255), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("diff", sa.Text(), nullable=True),
        sa.Column("author", sa.String(length=255), nullable=True),
        sa.Column("labels", sa.JSON(), nullable=False),
        sa.Column("file_paths", sa.JSON(), nullable=False),
        sa.Column("files_changed", sa.Integer(), nullable=False),
        sa.Column("additions", sa.Integer(), nullable=False),
        sa.Column("deletions", sa.Integer(), nullable=False),
        _ts("authored_at"),
        _ts("merged_at"),
        _ts("platform_updated_at"),
        sa.Column(
            "processing_status",
            sa.Enum("pending", "sieved_in", "sieved_out", name="artifact_processing_status"),
            nullable=False,
        ),
        sa.Column("sieve_score", sa.Integer(), nullable=True),
        sa.Column("sieve_rules", sa.JSON(), nullable=True),
        _ts("sieved_at"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
        sa.UniqueConstraint("repo_id", "github_id", "type", name="uq_artifacts_identity"),
    )
    op.create_index("ix_artifacts_repo_id", "artifacts", ["repo_id"])
    op.create_index("ix_artifacts_processing_status", "artifacts", ["processing_status"])
    op.create_index(
        "ix_artifacts_repo_processing", "artifacts", ["repo_id", "processing_status"]
    )

    op.create_table(
        "candidates",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("repo_id", sa.String(length=36), sa.ForeignKey("repositories.id"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column(
            "artifact_id", sa.String(length=36), sa.ForeignKey("artifacts.id"),
            nullable=False, unique=True,
        ),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("decision", sa.Text(), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("consequences", sa.Text(), nullable=True),
        sa.Column("alternatives", sa.Text(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("impact", sa.Enum("low", "medium", "high", name="impact_level"), nullable=False),
        sa.Column("risk", sa.Enum("low", "medium", "high", name="risk_level"), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("sieve_score", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "new", "extracting", "extracted", "failed", "dismissed", "approved",
                name="candidate_status",
            ),
            nullable=False,
        ),
        sa.Column("failure_reason", sa.String(length=64), nullable=True),
        sa.Column("failure_message", sa.Text(), nullable=True),
        sa.Column(
            "dismiss_reason",
            sa.Enum(
                "not_decision", "too_minor", "duplicate", "incorrect", "other",
                name="dismiss_reason",
            ),
            nullable=True,
        ),
        sa.Column("dismiss_note", sa.String(length=500), nullable=True),
        _ts("dismissed_at"),
        sa.Column("extraction_model", sa.String(length=100), nullable=True),
        sa.Column("extraction_raw", sa.JSON(), nullable=True),
        _ts("extracted_at"),
        _ts("approved_at"),
        sa.Column("decision_id", sa.String(length=36), nullable=True),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_candidates_repo_id", "candidates", ["repo_id"])
    op.create_index("ix_candidates_user_id", "candidates", ["user_id"])
    op.create_index("ix_candidates_status", "candidates", ["status"])
    op.create_index("ix_candidates_repo_status", "candidates", ["repo_id", "status"])

    op.create_table(
        "decisions",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("repo_id", sa.String(length=36), sa.ForeignKey("repositories.id"), nullable=False),
        sa.Column("created_by_user_id", sa.String(length=128), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("context", sa.Text(), nullable=True),
        sa.Column("decision", sa.Text(), nullable=False),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("consequences", sa.Text(), nullable=True),
        sa.Column("alternatives", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("significance", sa.Float(), nullable=True),
        sa.Column(
            "impact",
            # Type already created with the candidates table
            postgresql.ENUM("low", "medium", "high", name="impact_level", create_type=False),
            nullable=True,
        ),
        sa.Column(
            "source_type",
            sa.Enum("candidate", "manual", name="decision_source"),
            nullable=False,
        ),
        sa.Column("source_candidate_id", sa.String(length=36), nullable=True, unique=True),
        sa.Column(
            "source_artifact_id", sa.String(length=36), sa.ForeignKey("artifacts.id"),
            nullable=True,
        ),
        sa.Column("extraction_model", sa.String(length=100), nullable=True),
        sa.Column("extraction_raw", sa.JSON(), nullable=True),
        _ts("deleted_at"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_decisions_repo_id", "decisions", ["repo_id"])

    op.create_table(
        "extraction_costs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("repo_id", sa.String(length=36), sa.ForeignKey("repositories.id"), nullable=False),
        sa.Column("user_id", sa.String(length=128), nullable=False),
        sa.Column("model", sa.String(length=100), nullable=False),
        sa.Column("input_tokens", sa.Integer(), nullable=False),
        sa.Column("output_tokens", sa.Integer(), nullable=False),
        sa.Column("total_cost", sa.Float(), nullable=False),
        sa.Column("batch_size", sa.Integer(), nullable=False),
        sa.Column("candidate_ids", sa.JSON(), nullable=False),
        sa.Column(
            "purpose",
            sa.Enum("extraction", "suggestion", name="extraction_purpose"),
            nullable=False,
        ),
        _ts("created_at", nullable=False),
    )
    op.create_index("ix_extraction_costs_repo_id", "extraction_costs", ["repo_id"])
    op.create_index("ix_extraction_costs_user_id", "extraction_costs", ["user_id"])
    op.create_index(
        "ix_extraction_costs_repo_created", "extraction_costs", ["repo_id", "created_at"]
    )

    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        _ts("ts", nullable=False),
        sa.Column(
            "actor_kind",
            sa.Enum("human", "system", name="audit_actor_kind"),
            nullable=False,
        ),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column(
            "action",
            sa.Enum("created", "updated", "status_changed", "deleted", name="audit_action"),
            nullable=False,
        ),
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
    )
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index(
        "ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"]
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("extraction_costs")
    op.drop_table("decisions")
    op.drop_table("candidates")
    op.drop_table("artifacts")
    op.drop_table("sync_operations")
    op.drop_table("repositories")

    bind = op.get_bind()
    for name in (
        "audit_action",
        "audit_actor_kind",
        "extraction_purpose",
        "decision_source",
        "dismiss_reason",
        "candidate_status",
        "risk_level",
        "impact_level",
        "artifact_processing_status",
        "artifact_type",
        "sync_run_status",
        "repo_sync_status",
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
