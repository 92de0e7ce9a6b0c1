"""
Decision pipeline API routes.

Caller identity comes from ``get_current_user_id``; every handler checks
ownership through the services before touching a record.
"""

from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from .auth import get_current_user_id, require_repo_access
from .candidates.services import CandidateService, DecisionService
from .config import get_settings
from .db.base import get_db, get_session_local
from .extract.client import ExtractionClient
from .extract.governor import ExtractionGovernor
from .schemas import ApproveRequest, DecisionEdits, DismissRequest
from .sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()

router = APIRouter(tags=["pipeline"])


def get_orchestrator() -> SyncOrchestrator:
    """Dependency returning a sync orchestrator on the default session factory."""
    return SyncOrchestrator(get_session_local())


async def get_extraction_client() -> AsyncGenerator[ExtractionClient, None]:
    """Dependency yielding an LLM client for the request, closed afterwards."""
    client = ExtractionClient.from_settings(get_settings())
    try:
        yield client
    finally:
        await client.close()


def get_governor(db: Session = Depends(get_db)) -> ExtractionGovernor:
    return ExtractionGovernor.from_settings(db, get_settings())


# =============================================================================
# Sync
# =============================================================================


@router.post("/repos/{repo_id}/sync", status_code=202)
async def trigger_sync(
    repo_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Start a sync and run it in the background.

    Returns immediately. When a run is already in flight, that run is
    returned with ``alreadyRunning`` set and nothing new is started.
    """
    started = orchestrator.start_sync(repo_id, user_id)
    if not started.already_running:
        background_tasks.add_task(orchestrator.run_sync, started.sync_run_id)
    logger.info(
        "sync_requested",
        repo_id=repo_id,
        sync_run_id=started.sync_run_id,
        already_running=started.already_running,
    )
    return {
        "syncRunId": started.sync_run_id,
        "status": started.status,
        "alreadyRunning": started.already_running,
        "syncRun": started.sync_run,
    }


@router.get("/repos/{repo_id}/sync")
async def get_sync_status(
    repo_id: str,
    user_id: str = Depends(get_current_user_id),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Latest sync run of a repository."""
    status = orchestrator.get_sync_status(repo_id, user_id)
    return {"hasSync": status["has_sync"], "syncRun": status["sync_run"]}


# =============================================================================
# Candidates
# =============================================================================


@router.get("/candidates/{candidate_id}")
async def get_candidate(
    candidate_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return CandidateService(db).get_candidate(candidate_id, user_id).to_dict()


@router.post("/candidates/{candidate_id}/extract")
async def extract_candidate(
    candidate_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: ExtractionClient = Depends(get_extraction_client),
    governor: ExtractionGovernor = Depends(get_governor),
) -> Dict[str, Any]:
    """Claim a candidate and run LLM extraction on it."""
    service = CandidateService(db, extraction_client=client, governor=governor)
    outcome = await service.claim_for_extraction(candidate_id, user_id)
    return outcome.to_dict()


@router.post("/candidates/{candidate_id}/approve")
async def approve_candidate(
    candidate_id: str,
    body: Optional[ApproveRequest] = None,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Approve a candidate, creating its decision record."""
    edits = body.edits.changes() if body and body.edits else None
    decision = CandidateService(db).approve_candidate(candidate_id, user_id, edits)
    return decision.to_dict()


@router.post("/candidates/{candidate_id}/dismiss")
async def dismiss_candidate(
    candidate_id: str,
    body: DismissRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    candidate = CandidateService(db).dismiss_candidate(
        candidate_id, user_id, body.reason, body.note
    )
    return candidate.to_dict()


# =============================================================================
# Decisions
# =============================================================================


@router.get("/decisions/{decision_id}")
async def get_decision(
    decision_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    return DecisionService(db).get_decision(decision_id, user_id).to_dict()


@router.patch("/decisions/{decision_id}")
async def update_decision(
    decision_id: str,
    edits: DecisionEdits,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Edit a decision's content fields."""
    decision = DecisionService(db).update(decision_id, user_id, edits.changes())
    return decision.to_dict()


@router.delete("/decisions/{decision_id}")
async def delete_decision(
    decision_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Soft-delete a decision."""
    decision = DecisionService(db).soft_delete(decision_id, user_id)
    return {"status": "success", "decision_id": decision.id}


@router.post("/decisions/{decision_id}/suggest")
async def suggest_consequences(
    decision_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    client: ExtractionClient = Depends(get_extraction_client),
    governor: ExtractionGovernor = Depends(get_governor),
) -> Dict[str, Any]:
    """LLM-suggested consequences for a decision."""
    service = DecisionService(db, extraction_client=client, governor=governor)
    result = await service.suggest_consequences(decision_id, user_id)
    return {
        "suggestions": list(result.suggestions),
        "model": result.model,
        "total_cost": result.total_cost,
    }


# =============================================================================
# Costs
# =============================================================================


@router.get("/repos/{repo_id}/costs")
async def get_repo_costs(
    repo_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    governor: ExtractionGovernor = Depends(get_governor),
) -> Dict[str, Any]:
    """Extraction spend of one repository."""
    repo = require_repo_access(db, user_id, repo_id)
    return governor.get_cost_stats(repo.id).to_dict()


@router.get("/costs")
async def get_user_costs(
    user_id: str = Depends(get_current_user_id),
    governor: ExtractionGovernor = Depends(get_governor),
) -> Dict[str, Any]:
    """Extraction spend of the caller across repositories."""
    return governor.get_user_cost_stats(user_id).to_dict()
