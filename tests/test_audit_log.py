"""
Tests for the AuditLog model and service.

Verifies:
- AuditLogModel structure and to_dict()
- AuditService logging methods (create, update, status_change, delete)
- Entries live and die with the caller's transaction
- query_by_entity ordering and paging
"""

from datetime import datetime, timedelta, timezone

from decision_miner.db.audit_models import AuditLogModel
from decision_miner.db.audit_service import AuditService


class TestAuditLogModel:
    """Tests for AuditLogModel structure."""

    def test_model_has_required_columns(self):
        """Verify all required columns exist."""
        columns = {c.name for c in AuditLogModel.__table__.columns}
        required = {
            "id", "ts", "actor_kind", "actor_id", "action",
            "entity_kind", "entity_id", "before", "after", "note",
        }
        assert required.issubset(columns)

    def test_to_dict_output(self):
        """Verify to_dict() returns expected structure."""
        entry = AuditLogModel(
            id="test-id-123",
            ts=datetime(2026, 1, 26, 12, 0, 0, tzinfo=timezone.utc),
            actor_kind="human",
            actor_id="user-1",
            action="created",
            entity_kind="Decision",
            entity_id="decision-123",
            before=None,
            after={"title": "Use PostgreSQL"},
            note="Approved from candidate cand-1",
        )

        result = entry.to_dict()

        assert result["id"] == "test-id-123"
        assert result["ts"] == "2026-01-26T12:00:00+00:00"
        assert result["actor_kind"] == "human"
        assert result["action"] == "created"
        assert result["entity_kind"] == "Decision"
        assert result["before"] is None
        assert result["after"] == {"title": "Use PostgreSQL"}
        assert result["note"] == "Approved from candidate cand-1"

    def test_indexes_defined(self):
        indexes = {idx.name for idx in AuditLogModel.__table__.indexes}
        assert "ix_audit_log_entity" in indexes
        assert "ix_audit_log_entity_ts" in indexes


class TestAuditServiceLogging:
    def test_log_create(self, db_session):
        audit = AuditService(db_session)

        entry = audit.log_create(
            entity_kind="Repository",
            entity_id="repo-123",
            after={"full_name": "acme/api"},
            actor_kind="human",
            actor_id="user-1",
        )

        assert entry.id is not None
        assert entry.action == "created"
        assert entry.before is None
        assert entry.after == {"full_name": "acme/api"}
        assert entry.actor_id == "user-1"

    def test_defaults_to_system_actor(self, db_session):
        entry = AuditService(db_session).log_create("SyncOperation", "run-1", {"status": "syncing"})
        assert entry.actor_kind == "system"
        assert entry.actor_id == "unknown"

    def test_log_update_captures_before_after(self, db_session):
        entry = AuditService(db_session).log_update(
            entity_kind="Decision",
            entity_id="decision-1",
            before={"title": "Old title"},
            after={"title": "New title"},
            actor_kind="human",
            actor_id="user-1",
        )

        assert entry.action == "updated"
        assert entry.before == {"title": "Old title"}
        assert entry.after == {"title": "New title"}

    def test_log_status_change(self, db_session):
        entry = AuditService(db_session).log_status_change(
            entity_kind="Candidate",
            entity_id="cand-1",
            old_status="new",
            new_status="extracting",
        )

        assert entry.action == "status_changed"
        assert entry.before == {"status": "new"}
        assert entry.after == {"status": "extracting"}
        assert "new -> extracting" in entry.note

    def test_status_change_keeps_explicit_note(self, db_session):
        entry = AuditService(db_session).log_status_change(
            "Candidate", "cand-1", "new", "dismissed", note="duplicate"
        )
        assert entry.note == "duplicate"

    def test_log_delete(self, db_session):
        entry = AuditService(db_session).log_delete(
            "Decision", "decision-1", {"title": "Use PostgreSQL"}
        )

        assert entry.action == "deleted"
        assert entry.before == {"title": "Use PostgreSQL"}
        assert entry.after is None


class TestAuditTransactions:
    """Entries are flushed, not committed."""

    def test_rollback_discards_entry(self, db_session):
        AuditService(db_session).log_create("Decision", "decision-1", {"title": "x"})
        db_session.rollback()

        assert db_session.query(AuditLogModel).count() == 0

    def test_commit_persists_entry(self, db_session, session_factory):
        entry = AuditService(db_session).log_create("Decision", "decision-1", {"title": "x"})
        db_session.commit()

        other = session_factory()
        try:
            assert other.get(AuditLogModel, entry.id) is not None
        finally:
            other.close()


class TestAuditQueries:
    def test_query_by_entity(self, db_session):
        audit = AuditService(db_session)
        audit.log_create("Candidate", "cand-1", {"status": "new"})
        audit.log_status_change("Candidate", "cand-1", "new", "extracting")
        audit.log_create("Candidate", "cand-2", {"status": "new"})

        results = audit.query_by_entity("Candidate", "cand-1")

        assert len(results) == 2
        assert {r.entity_id for r in results} == {"cand-1"}

    def test_query_by_entity_is_newest_first(self, db_session):
        audit = AuditService(db_session)
        first = audit.log_create("Candidate", "cand-1", {"status": "new"})
        second = audit.log_status_change("Candidate", "cand-1", "new", "dismissed")
        first.ts = datetime.now(timezone.utc) - timedelta(minutes=5)
        db_session.flush()

        results = audit.query_by_entity("Candidate", "cand-1")

        assert [r.id for r in results] == [second.id, first.id]

    def test_query_by_entity_paging(self, db_session):
        audit = AuditService(db_session)
        for i in range(5):
            audit.log_update("Decision", "decision-1", {"n": i}, {"n": i + 1})

        assert len(audit.query_by_entity("Decision", "decision-1", limit=2)) == 2
        assert len(audit.query_by_entity("Decision", "decision-1", limit=10, offset=3)) == 2
