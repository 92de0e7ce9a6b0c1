"""
Candidate and decision services.

Review operations (extract, approve, dismiss) on candidates, and the
post-approval edits on decision records.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db.audit_service import AuditService
from ..db.models import (
    ArtifactModel,
    CandidateModel,
    DecisionModel,
    RepositoryModel,
    as_utc,
    utcnow,
)
from ..errors import (
    Conflict,
    Forbidden,
    LimitExceeded,
    NotFound,
    ValidationError,
)
from ..extract.client import ExtractionClient
from ..extract.governor import ExtractionGovernor
from ..extract.schema import (
    DecisionExtraction,
    ExtractionInput,
    SuggestionResult,
    Usage,
)
from .state_machine import (
    APPROVABLE,
    CandidateStatus,
    DismissReason,
    claim,
    conditional_transition,
)

logger = structlog.get_logger()

DISMISS_NOTE_MAX_CHARS = 500
EDITABLE_DECISION_FIELDS = (
    "title",
    "context",
    "decision",
    "reasoning",
    "consequences",
    "alternatives",
    "tags",
)


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """Tags have set semantics: lowercased, de-duplicated, sorted."""
    return sorted({t.strip().lower() for t in tags or [] if t and t.strip()})


def impact_from_significance(significance: float) -> str:
    if significance >= 0.7:
        return "high"
    if significance >= 0.4:
        return "medium"
    return "low"


@dataclass
class ExtractionOutcome:
    """Result of one extraction attempt on a candidate."""

    candidate: CandidateModel
    status: str
    extraction: Optional[DecisionExtraction] = None
    reason: Optional[str] = None
    model: Optional[str] = None
    total_cost: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "candidate": self.candidate.to_dict(),
            "status": self.status,
            "extraction": self.extraction.model_dump() if self.extraction else None,
            "reason": self.reason,
            "model": self.model,
            "total_cost": self.total_cost,
        }


def _validate_edits(edits: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    if not edits:
        return {}
    unknown = set(edits) - set(EDITABLE_DECISION_FIELDS)
    if unknown:
        raise ValidationError(
            "Only decision content fields can be edited",
            details={"fields": sorted(unknown)},
        )
    cleaned = {k: v for k, v in edits.items() if v is not None}
    if "title" in cleaned and not str(cleaned["title"]).strip():
        raise ValidationError("Title cannot be empty")
    if "decision" in cleaned and not str(cleaned["decision"]).strip():
        raise ValidationError("Decision text cannot be empty")
    if "tags" in cleaned:
        cleaned["tags"] = normalize_tags(cleaned["tags"])
    return cleaned


class CandidateService:
    """Review workflow for decision candidates.

    Usage:
        service = CandidateService(db, extraction_client, governor)
        outcome = await service.claim_for_extraction(candidate_id, user_id)
    """

    def __init__(
        self,
        db: Session,
        extraction_client: Optional[ExtractionClient] = None,
        governor: Optional[ExtractionGovernor] = None,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.extraction_client = extraction_client
        self.governor = governor or ExtractionGovernor(db)
        self.audit = audit or AuditService(db)

    def get_candidate(self, candidate_id: str, user_id: str) -> CandidateModel:
        """Load a candidate the caller owns."""
        candidate = self.db.get(CandidateModel, candidate_id)
        if candidate is None:
            raise NotFound("Candidate not found", details={"candidate_id": candidate_id})
        if candidate.user_id != user_id:
            raise Forbidden("Candidate belongs to another user")
        return candidate

    def _reload(self, candidate_id: str) -> CandidateModel:
        self.db.expire_all()
        return self.db.get(CandidateModel, candidate_id)

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _mark_failed(
        self, candidate_id: str, user_id: str, reason: str, message: Optional[str]
    ) -> None:
        """Compensate a claim: extracting -> failed, committed on its own."""
        self.db.rollback()
        moved = conditional_transition(
            self.db,
            candidate_id,
            [CandidateStatus.EXTRACTING],
            CandidateStatus.FAILED,
            failure_reason=reason,
            failure_message=(message or "")[:2000] or None,
        )
        if moved:
            self.audit.log_status_change(
                "Candidate", candidate_id, "extracting", "failed",
                actor_kind="system", actor_id=user_id, note=reason,
            )
        self.db.commit()

    def _record_usage(
        self, repo_id: str, user_id: str, candidate_id: str, usage: Usage
    ) -> None:
        usage.batch_size = 1
        usage.candidate_ids = [candidate_id]
        usage.purpose = "extraction"
        self.governor.record_extraction_cost(repo_id, user_id, usage)

    async def claim_for_extraction(
        self, candidate_id: str, user_id: str
    ) -> ExtractionOutcome:
        """Claim a candidate and run one extraction attempt on it.

        Raises:
            NotFound, Forbidden: ownership
            Conflict: the candidate is not claimable (carries current status)
            LimitExceeded: governor refused; the candidate is restored
            ExtractionError, ServiceUnavailable: candidate left 'failed'

        Any other exception, and cancellation, also leave the candidate
        'failed' (``internal_error`` or ``interrupted``) before propagating.
        """
        if self.extraction_client is None:
            raise ValidationError("Extraction is not configured")

        candidate = self.get_candidate(candidate_id, user_id)
        repo_id = candidate.repo_id
        previous = claim(self.db, candidate_id)
        self.audit.log_status_change(
            "Candidate", candidate_id, previous.value, "extracting",
            actor_kind="human", actor_id=user_id,
        )
        self.db.commit()
        log = logger.bind(candidate_id=candidate_id, repo_id=repo_id)
        log.info("candidate_extraction_claimed", previous_status=previous.value)

        # Every path out of here leaves the candidate outside 'extracting'
        settled = False
        try:
            try:
                self.governor.enforce_extraction_limit(repo_id)
            except LimitExceeded:
                restored = conditional_transition(
                    self.db, candidate_id, [CandidateStatus.EXTRACTING], previous
                )
                if restored:
                    self.audit.log_status_change(
                        "Candidate", candidate_id, "extracting", previous.value,
                        actor_kind="system", actor_id=user_id,
                        note="extraction limit exceeded",
                    )
                self.db.commit()
                settled = True
                raise

            candidate = self._reload(candidate_id)
            artifact = self.db.get(ArtifactModel, candidate.artifact_id)
            if artifact is None:
                raise NotFound(
                    "Artifact not found", details={"artifact_id": candidate.artifact_id}
                )
            batch = [
                ExtractionInput(
                    identifier=f"{artifact.type}:{artifact.github_id}",
                    title=artifact.title,
                    body=artifact.body,
                    diff=artifact.diff,
                    author=artifact.author,
                    merged_at=as_utc(artifact.merged_at),
                )
            ]
            # Nothing may stay open across the LLM call
            self.db.commit()

            try:
                result = await self.extraction_client.extract(batch)
            except Exception as e:
                usage = getattr(e, "usage", None)
                if usage is not None:
                    self._record_usage(repo_id, user_id, candidate_id, usage)
                log.warning("candidate_extraction_failed", error=str(e))
                self._mark_failed(candidate_id, user_id, "extraction_error", str(e))
                settled = True
                raise

            self._record_usage(
                repo_id,
                user_id,
                candidate_id,
                Usage(
                    model=result.model,
                    input_tokens=result.input_tokens,
                    output_tokens=result.output_tokens,
                    total_cost=result.total_cost,
                ),
            )

            if not result.decisions:
                self._mark_failed(candidate_id, user_id, "not_a_decision", None)
                settled = True
                log.info("candidate_not_a_decision", model=result.model)
                return ExtractionOutcome(
                    candidate=self._reload(candidate_id),
                    status=CandidateStatus.FAILED.value,
                    reason="not_a_decision",
                    model=result.model,
                    total_cost=result.total_cost,
                )

            best = max(result.decisions, key=lambda d: d.significance)
            moved = conditional_transition(
                self.db,
                candidate_id,
                [CandidateStatus.EXTRACTING],
                CandidateStatus.EXTRACTED,
                title=best.title,
                context=best.context,
                decision=best.decision,
                reasoning=best.reasoning,
                consequences=best.consequences,
                alternatives=best.alternatives,
                tags=normalize_tags(best.tags),
                confidence=best.significance,
                impact=impact_from_significance(best.significance),
                extraction_model=result.model,
                extraction_raw={
                    "response": result.raw_response,
                    "decisions": [d.model_dump() for d in result.decisions],
                    "dropped": result.dropped,
                },
                extracted_at=utcnow(),
            )
            if not moved:
                self.db.rollback()
                settled = True
                raise Conflict(
                    "Candidate left 'extracting' during extraction",
                    current_status=self._reload(candidate_id).status,
                )
            self.audit.log_status_change(
                "Candidate", candidate_id, "extracting", "extracted",
                actor_kind="system", actor_id=user_id,
            )
            self.db.commit()
            settled = True
        except Exception as e:
            if not settled:
                log.exception("candidate_extraction_crashed")
                self._mark_failed(candidate_id, user_id, "internal_error", str(e))
                settled = True
            raise
        finally:
            if not settled:
                log.warning("candidate_extraction_interrupted")
                self._mark_failed(candidate_id, user_id, "interrupted", None)

        log.info("candidate_extracted", model=result.model, significance=best.significance)
        return ExtractionOutcome(
            candidate=self._reload(candidate_id),
            status=CandidateStatus.EXTRACTED.value,
            extraction=best,
            model=result.model,
            total_cost=result.total_cost,
        )

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def approve_candidate(
        self,
        candidate_id: str,
        user_id: str,
        edits: Optional[Dict[str, Any]] = None,
    ) -> DecisionModel:
        """Promote a candidate to a decision record.

        Creating the decision, marking the candidate approved and bumping the
        repository's decision count happen in one transaction.
        """
        edits = _validate_edits(edits)
        candidate = self.get_candidate(candidate_id, user_id)
        current = candidate.status
        if current == CandidateStatus.APPROVED.value:
            raise Conflict("Candidate is already approved", current_status=current)
        if current not in {s.value for s in APPROVABLE}:
            raise Conflict(
                f"Candidate cannot be approved from status '{current}'",
                current_status=current,
            )

        try:
            decision = DecisionModel(
                repo_id=candidate.repo_id,
                created_by_user_id=user_id,
                title=edits.get("title", candidate.title),
                context=edits.get("context", candidate.context or candidate.summary),
                decision=edits.get(
                    "decision", candidate.decision or candidate.summary or candidate.title
                ),
                reasoning=edits.get("reasoning", candidate.reasoning),
                consequences=edits.get("consequences", candidate.consequences),
                alternatives=edits.get("alternatives", candidate.alternatives),
                tags=edits.get("tags", normalize_tags(candidate.tags)),
                significance=candidate.confidence,
                impact=candidate.impact,
                source_type="candidate",
                source_candidate_id=candidate.id,
                source_artifact_id=candidate.artifact_id,
                extraction_model=candidate.extraction_model,
                extraction_raw=candidate.extraction_raw,
            )
            self.db.add(decision)
            self.db.flush()

            moved = conditional_transition(
                self.db,
                candidate_id,
                [current],
                CandidateStatus.APPROVED,
                approved_at=utcnow(),
                decision_id=decision.id,
            )
            if not moved:
                raise Conflict(
                    "Candidate changed while being approved",
                    current_status=self.db.query(CandidateModel.status)
                    .filter(CandidateModel.id == candidate_id)
                    .scalar(),
                )

            self.db.execute(
                update(RepositoryModel)
                .where(RepositoryModel.id == candidate.repo_id)
                .values(decision_count=RepositoryModel.decision_count + 1)
                .execution_options(synchronize_session=False)
            )
            self.audit.log_create(
                "Decision", decision.id, decision.to_dict(),
                actor_kind="human", actor_id=user_id,
                note=f"Approved from candidate {candidate_id}",
            )
            self.audit.log_status_change(
                "Candidate", candidate_id, current, "approved",
                actor_kind="human", actor_id=user_id,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            "candidate_approved",
            candidate_id=candidate_id,
            decision_id=decision.id,
            repo_id=decision.repo_id,
        )
        self.db.refresh(decision)
        return decision

    # ------------------------------------------------------------------
    # Dismissal
    # ------------------------------------------------------------------

    def dismiss_candidate(
        self,
        candidate_id: str,
        user_id: str,
        reason: str,
        note: Optional[str] = None,
    ) -> CandidateModel:
        """Dismiss a candidate that has not been extracted or approved."""
        valid = {r.value for r in DismissReason}
        if reason not in valid:
            raise ValidationError(
                "Invalid dismiss reason", details={"reason": reason, "allowed": sorted(valid)}
            )
        if note is not None and len(note) > DISMISS_NOTE_MAX_CHARS:
            raise ValidationError(
                f"Dismiss note must be at most {DISMISS_NOTE_MAX_CHARS} characters"
            )

        self.get_candidate(candidate_id, user_id)
        moved = conditional_transition(
            self.db,
            candidate_id,
            [CandidateStatus.NEW],
            CandidateStatus.DISMISSED,
            dismiss_reason=reason,
            dismiss_note=note,
            dismissed_at=utcnow(),
        )
        if not moved:
            self.db.rollback()
            current = self._reload(candidate_id).status
            raise Conflict(
                f"Candidate cannot be dismissed from status '{current}'",
                current_status=current,
            )
        self.audit.log_status_change(
            "Candidate", candidate_id, "new", "dismissed",
            actor_kind="human", actor_id=user_id, note=reason,
        )
        self.db.commit()
        logger.info("candidate_dismissed", candidate_id=candidate_id, reason=reason)
        return self._reload(candidate_id)


class DecisionService:
    """Edits, soft deletion and suggestions on approved decisions."""

    def __init__(
        self,
        db: Session,
        extraction_client: Optional[ExtractionClient] = None,
        governor: Optional[ExtractionGovernor] = None,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.extraction_client = extraction_client
        self.governor = governor or ExtractionGovernor(db)
        self.audit = audit or AuditService(db)

    def get_decision(self, decision_id: str, user_id: str) -> DecisionModel:
        decision = self.db.get(DecisionModel, decision_id)
        if decision is None or decision.deleted_at is not None:
            raise NotFound("Decision not found", details={"decision_id": decision_id})
        repo = self.db.get(RepositoryModel, decision.repo_id)
        if repo is None or repo.user_id != user_id:
            raise Forbidden("Decision belongs to another user")
        return decision

    def update(
        self, decision_id: str, user_id: str, edits: Dict[str, Any]
    ) -> DecisionModel:
        """Edit content fields; provenance fields are not editable."""
        changes = _validate_edits(edits)
        decision = self.get_decision(decision_id, user_id)
        if not changes:
            return decision

        before = {k: getattr(decision, k) for k in changes}
        for key, value in changes.items():
            setattr(decision, key, value)
        self.audit.log_update(
            "Decision", decision_id, before, changes,
            actor_kind="human", actor_id=user_id,
        )
        self.db.commit()
        self.db.refresh(decision)
        return decision

    def soft_delete(self, decision_id: str, user_id: str) -> DecisionModel:
        decision = self.get_decision(decision_id, user_id)
        decision.deleted_at = utcnow()
        self.db.execute(
            update(RepositoryModel)
            .where(RepositoryModel.id == decision.repo_id, RepositoryModel.decision_count > 0)
            .values(decision_count=RepositoryModel.decision_count - 1)
            .execution_options(synchronize_session=False)
        )
        self.audit.log_delete(
            "Decision", decision_id, {"title": decision.title},
            actor_kind="human", actor_id=user_id,
        )
        self.db.commit()
        self.db.refresh(decision)
        return decision

    async def suggest_consequences(
        self, decision_id: str, user_id: str
    ) -> SuggestionResult:
        """LLM suggestions for consequences missing from a decision. Cost-governed."""
        if self.extraction_client is None:
            raise ValidationError("Extraction is not configured")
        decision = self.get_decision(decision_id, user_id)
        repo_id = decision.repo_id
        self.governor.enforce_extraction_limit(repo_id)
        title, context, text, reasoning = (
            decision.title,
            decision.context,
            decision.decision,
            decision.reasoning,
        )
        self.db.commit()

        try:
            result = await self.extraction_client.suggest_consequences(
                title, context, text, reasoning
            )
        except Exception as e:
            usage = getattr(e, "usage", None)
            if usage is not None:
                usage.purpose = "suggestion"
                self.governor.record_extraction_cost(repo_id, user_id, usage)
            raise

        self.governor.record_extraction_cost(
            repo_id,
            user_id,
            Usage(
                model=result.model,
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
                total_cost=result.total_cost,
                purpose="suggestion",
            ),
        )
        return result
