"""
Audit Log Service.

Records audit entries inside the caller's transaction: entries are added and
flushed here, and become durable when the caller commits. A rolled-back
transition therefore leaves no audit trace either.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.orm import Session

from .audit_models import AuditLogModel
from .models import generate_id, utcnow


class AuditService:
    """Service for managing audit log entries.

    Usage:
        audit = AuditService(db)
        audit.log_status_change("Candidate", cand.id, "new", "dismissed", actor_kind="human", actor_id=user_id)
        db.commit()
    """

    def __init__(self, db: Session):
        self.db = db

    def _record(
        self,
        action: str,
        entity_kind: str,
        entity_id: str,
        before: Optional[Dict[str, Any]],
        after: Optional[Dict[str, Any]],
        actor_kind: str,
        actor_id: str,
        note: Optional[str],
    ) -> AuditLogModel:
        entry = AuditLogModel(
            id=generate_id(),
            ts=utcnow(),
            actor_kind=actor_kind,
            actor_id=actor_id,
            action=action,
            entity_kind=entity_kind,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def log_create(
        self,
        entity_kind: str,
        entity_id: str,
        after: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the creation of an entity.

        Args:
            entity_kind: Type of entity (e.g., "Decision", "SyncOperation")
            entity_id: ID of the entity
            after: State of the entity after creation
            actor_kind: Type of actor ("human", "system")
            actor_id: ID of the actor
            note: Optional human-readable note
        """
        return self._record(
            "created", entity_kind, entity_id, None, after, actor_kind, actor_id, note
        )

    def log_update(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log an update to an entity, with the changed fields before and after."""
        return self._record(
            "updated", entity_kind, entity_id, before, after, actor_kind, actor_id, note
        )

    def log_status_change(
        self,
        entity_kind: str,
        entity_id: str,
        old_status: str,
        new_status: str,
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log a status change on an entity."""
        return self._record(
            "status_changed",
            entity_kind,
            entity_id,
            {"status": old_status},
            {"status": new_status},
            actor_kind,
            actor_id,
            note or f"Status changed: {old_status} -> {new_status}",
        )

    def log_delete(
        self,
        entity_kind: str,
        entity_id: str,
        before: Dict[str, Any],
        actor_kind: str = "system",
        actor_id: str = "unknown",
        note: Optional[str] = None,
    ) -> AuditLogModel:
        """Log the (soft) deletion of an entity."""
        return self._record(
            "deleted", entity_kind, entity_id, before, None, actor_kind, actor_id, note
        )

    def query_by_entity(
        self,
        entity_kind: str,
        entity_id: str,
        limit: int = 100,
        offset: int = 0,
    ) -> List[AuditLogModel]:
        """Get audit history for a specific entity, newest first."""
        return (
            self.db.query(AuditLogModel)
            .filter(
                AuditLogModel.entity_kind == entity_kind,
                AuditLogModel.entity_id == entity_id,
            )
            .order_by(desc(AuditLogModel.ts), desc(AuditLogModel.id))
            .offset(offset)
            .limit(limit)
            .all()
        )
