"""
Database package for Decision Miner.
"""

from .audit_models import AuditLogModel
from .audit_service import AuditService
from .base import Base, get_db, get_engine, get_session_local, init_database
from .models import (
    ArtifactModel,
    CandidateModel,
    DecisionModel,
    ExtractionCostModel,
    RepositoryModel,
    SyncOperationModel,
)

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "get_session_local",
    "init_database",
    "AuditLogModel",
    "AuditService",
    "ArtifactModel",
    "CandidateModel",
    "DecisionModel",
    "ExtractionCostModel",
    "RepositoryModel",
    "SyncOperationModel",
]
