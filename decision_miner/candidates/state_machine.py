"""
Candidate lifecycle.

    new ──► extracting ──► extracted ──► approved
     │  ▲       │  │
     │  └───────┘  └──► failed ──► extracting (re-attempt)
     ├──► dismissed
     └──► approved

The extracting ──► new edge exists only to undo a claim that the cost
governor refused. Every transition is a conditional UPDATE guarded by the
expected current status, so two writers can never both win.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db.models import CandidateModel, utcnow
from ..errors import Conflict


class CandidateStatus(str, Enum):
    NEW = "new"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    FAILED = "failed"
    DISMISSED = "dismissed"
    APPROVED = "approved"


class DismissReason(str, Enum):
    NOT_DECISION = "not_decision"
    TOO_MINOR = "too_minor"
    DUPLICATE = "duplicate"
    INCORRECT = "incorrect"
    OTHER = "other"


TRANSITIONS: Mapping[CandidateStatus, FrozenSet[CandidateStatus]] = {
    CandidateStatus.NEW: frozenset(
        {CandidateStatus.EXTRACTING, CandidateStatus.DISMISSED, CandidateStatus.APPROVED}
    ),
    CandidateStatus.EXTRACTING: frozenset(
        {CandidateStatus.EXTRACTED, CandidateStatus.FAILED, CandidateStatus.NEW}
    ),
    CandidateStatus.EXTRACTED: frozenset({CandidateStatus.APPROVED}),
    CandidateStatus.FAILED: frozenset({CandidateStatus.EXTRACTING}),
    CandidateStatus.DISMISSED: frozenset(),
    CandidateStatus.APPROVED: frozenset(),
}

# Statuses from which an extraction may be claimed, in claim order
CLAIMABLE = (CandidateStatus.NEW, CandidateStatus.FAILED)
APPROVABLE = (CandidateStatus.NEW, CandidateStatus.EXTRACTED)


def can_transition(current: str, target: str) -> bool:
    try:
        return CandidateStatus(target) in TRANSITIONS[CandidateStatus(current)]
    except ValueError:
        return False


def conditional_transition(
    db: Session,
    candidate_id: str,
    expected: Iterable[str],
    target: CandidateStatus,
    **values: Any,
) -> bool:
    """Move a candidate to ``target`` only if it is currently in ``expected``.

    Does not commit. Returns True when exactly this caller made the change.
    """
    expected = [CandidateStatus(s).value for s in expected]
    illegal = [s for s in expected if not can_transition(s, target.value)]
    if illegal:
        raise ValueError(f"illegal transition {illegal} -> {target.value}")

    changes: Dict[str, Any] = {"status": target.value, "updated_at": utcnow()}
    changes.update(values)
    result = db.execute(
        update(CandidateModel)
        .where(CandidateModel.id == candidate_id, CandidateModel.status.in_(expected))
        .values(**changes)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def claim(db: Session, candidate_id: str) -> CandidateStatus:
    """Atomically move a claimable candidate to ``extracting`` and commit.

    Returns the status the candidate was claimed from, or raises
    :class:`~decision_miner.errors.Conflict` carrying the actual status.
    """
    for status in CLAIMABLE:
        claimed = conditional_transition(
            db,
            candidate_id,
            [status],
            CandidateStatus.EXTRACTING,
            failure_reason=None,
            failure_message=None,
        )
        if claimed:
            db.commit()
            return status

    db.rollback()
    current = db.query(CandidateModel.status).filter(CandidateModel.id == candidate_id).scalar()
    raise Conflict(
        f"Candidate cannot be claimed for extraction from status '{current}'",
        current_status=current,
    )
