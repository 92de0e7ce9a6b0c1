"""
Sync orchestrator - one repository sync run, end to end.

Flow:
1. Lock: conditional UPDATE of the repository to 'syncing' and create the run
2. Cursor: read the stored watermark (or the lookback default)
3. Fetch: page through merged PRs, upserting each page in its own commit
4. Sieve: score every pending artifact of the repository
5. Promote: upsert candidates for the artifacts that passed
6. Finalize: advance the cursor, drive run and repository to a terminal status

Step 6 runs in a ``finally`` block, so a run never stays 'syncing' because of
an error inside this process. Runs orphaned by a crashed process are swept
by :meth:`SyncOrchestrator.reconcile_stale_runs`.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Tuple

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session, sessionmaker

from ..auth import require_repo_access
from ..config import Settings, get_settings
from ..credentials import CredentialProvider, SettingsCredentialProvider
from ..db.audit_service import AuditService
from ..db.models import (
    ArtifactModel,
    CandidateModel,
    RepositoryModel,
    SyncOperationModel,
    as_utc,
    utcnow,
)
from ..errors import NotFound, PipelineError, RateLimited
from ..github.client import GitHubClient
from ..github.models import ArtifactPage, RawArtifact
from ..sieve.scorer import SieveConfig, evaluate
from .cursor import Cursor, CursorManager

logger = structlog.get_logger()

# Fields whose change sends an artifact back through the sieve
CONTENT_FIELDS = ("title", "body", "diff", "labels", "file_paths")

# User-facing phase of a run
PHASES = {
    "syncing": "fetching",
    "success": "complete",
    "partial": "complete",
    "error": "failed",
}


class PlatformClient(Protocol):
    def list_artifacts_since(
        self, repo_full_name: str, since: Optional[datetime], start_page: int = 1
    ) -> AsyncIterator[ArtifactPage]:
        ...

    def list_commits_since(
        self,
        repo_full_name: str,
        since: Optional[datetime],
        branch: Optional[str] = None,
        start_page: int = 1,
    ) -> AsyncIterator[ArtifactPage]:
        ...

    async def close(self) -> None:
        ...


ClientFactory = Callable[[str], PlatformClient]


@dataclass
class SyncStartResult:
    sync_run_id: Optional[str]
    status: str
    already_running: bool
    sync_run: Optional[Dict[str, Any]] = None


@dataclass
class SyncTriggerResult:
    success: bool
    sync_run_id: Optional[str]
    status: str
    fetched_count: int = 0
    candidates_created: int = 0
    error_message: Optional[str] = None
    already_running: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "sync_run_id": self.sync_run_id,
            "status": self.status,
            "fetched_count": self.fetched_count,
            "candidates_created": self.candidates_created,
            "error_message": self.error_message,
            "already_running": self.already_running,
        }


@dataclass
class _RunState:
    fetched: int = 0
    sieved: int = 0
    fetch_completed: bool = False
    rate_limited: bool = False
    error: Optional[BaseException] = None
    reason_code: Optional[str] = None
    max_seen_pr: Optional[datetime] = None
    max_seen_commit: Optional[datetime] = None
    # Sub-streams that stopped at the page limit; their cursors are kept
    pr_truncated: bool = False
    commit_truncated: bool = False
    notes: List[str] = field(default_factory=list)

    @property
    def truncated(self) -> bool:
        return self.pr_truncated or self.commit_truncated

    def fail(self, error: BaseException, reason_code: str) -> None:
        if self.error is None:
            self.error = error
            self.reason_code = reason_code


def _reason_code(error: BaseException) -> str:
    if isinstance(error, PipelineError):
        return error.code.lower()
    if isinstance(error, asyncio.CancelledError):
        return "cancelled"
    return "internal_error"


def _latest(current: Optional[datetime], candidate: Optional[datetime]) -> Optional[datetime]:
    if candidate is None:
        return current
    if current is None or candidate > current:
        return candidate
    return current


def default_client_factory(settings: Settings) -> ClientFactory:
    def factory(token: str) -> GitHubClient:
        return GitHubClient(
            token=token,
            base_url=settings.github_api_url,
            per_page=settings.github_per_page,
            max_pages=settings.github_max_pages,
            max_diff_bytes=settings.max_diff_bytes,
            max_retries=settings.github_max_retries,
            timeout=settings.github_timeout_seconds,
        )

    return factory


class SyncOrchestrator:
    """Runs repository syncs with single-flight locking and guaranteed cleanup.

    Usage:
        orchestrator = SyncOrchestrator(get_session_local())
        result = await orchestrator.trigger_sync(repo_id, user_id)
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        credential_provider: Optional[CredentialProvider] = None,
        client_factory: Optional[ClientFactory] = None,
        cursor_manager: Optional[CursorManager] = None,
        sieve_config: Optional[SieveConfig] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory
        self.credential_provider = credential_provider or SettingsCredentialProvider()
        self.client_factory = client_factory or default_client_factory(self.settings)
        self.cursor_manager = cursor_manager or CursorManager(
            overlap=timedelta(minutes=self.settings.sync_overlap_minutes)
        )
        self.sieve_config = sieve_config or SieveConfig.from_settings(self.settings)

    # ------------------------------------------------------------------
    # Step 1: lock and run creation
    # ------------------------------------------------------------------

    def start_sync(self, repo_id: str, user_id: str) -> SyncStartResult:
        """Acquire the repository lock and create a run in 'syncing'.

        When a run is already in flight nothing is changed and that run is
        returned with ``already_running=True``.
        """
        db = self.session_factory()
        try:
            repo = require_repo_access(db, user_id, repo_id, require_enabled=True)
            repo_id = repo.id
            start_cursor = repo.cursor

            locked = db.execute(
                update(RepositoryModel)
                .where(
                    RepositoryModel.id == repo_id,
                    RepositoryModel.user_id == user_id,
                    RepositoryModel.sync_status != "syncing",
                )
                .values(sync_status="syncing", updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if locked.rowcount == 0:
                db.rollback()
                running = self._latest_run(db, repo_id)
                logger.info(
                    "sync_already_running",
                    repo_id=repo_id,
                    sync_run_id=running.id if running else None,
                )
                return SyncStartResult(
                    sync_run_id=running.id if running else None,
                    status=running.status if running else "syncing",
                    already_running=True,
                    sync_run=self._snapshot(running),
                )

            op = SyncOperationModel(
                repo_id=repo_id,
                user_id=user_id,
                status="syncing",
                started_at=utcnow(),
                start_cursor=start_cursor,
                logs=[],
            )
            op.append_log("Sync started")
            db.add(op)
            db.flush()
            db.execute(
                update(RepositoryModel)
                .where(RepositoryModel.id == repo_id)
                .values(latest_sync_id=op.id)
                .execution_options(synchronize_session=False)
            )
            AuditService(db).log_create(
                "SyncOperation", op.id, {"repo_id": repo_id, "status": "syncing"},
                actor_kind="human", actor_id=user_id,
            )
            db.commit()
            logger.info("sync_started", repo_id=repo_id, sync_run_id=op.id)
            return SyncStartResult(
                sync_run_id=op.id,
                status="syncing",
                already_running=False,
                sync_run=self._snapshot(op),
            )
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Steps 2-6
    # ------------------------------------------------------------------

    async def run_sync(self, sync_id: str) -> SyncTriggerResult:
        """Execute a started run to a terminal status."""
        db = self.session_factory()
        state = _RunState()
        try:
            op = db.get(SyncOperationModel, sync_id)
            if op is None:
                raise NotFound("Sync run not found", details={"sync_run_id": sync_id})
            if op.status != "syncing":
                return self._result(op)

            repo_id, user_id = op.repo_id, op.user_id
            db.commit()

            log = logger.bind(repo_id=repo_id, sync_run_id=sync_id)
            stored: Optional[Cursor] = None
            try:
                repo = db.get(RepositoryModel, repo_id)
                full_name, branch = repo.full_name, repo.default_branch
                stored = Cursor.from_dict(repo.cursor)
                db.commit()
                cursor = self.cursor_manager.effective_cursor(
                    stored, self.settings.sync_lookback_days
                )
                await self._fetch(
                    db, sync_id, repo_id, user_id, full_name, branch, cursor, state, log
                )
            except BaseException as e:
                db.rollback()
                state.fail(e, _reason_code(e))
                log.warning("sync_interrupted", reason_code=state.reason_code)
                raise
            finally:
                try:
                    self._sieve_and_promote(db, sync_id, repo_id, user_id, state, log)
                except BaseException as e:
                    db.rollback()
                    state.fail(e, _reason_code(e))
                    raise
                finally:
                    self._finalize(db, sync_id, repo_id, stored, state, log)

            return self._result(db.get(SyncOperationModel, sync_id))
        finally:
            db.close()

    async def trigger_sync(self, repo_id: str, user_id: str) -> SyncTriggerResult:
        """Start and run a sync in one call."""
        started = self.start_sync(repo_id, user_id)
        if started.already_running:
            run = started.sync_run or {}
            return SyncTriggerResult(
                success=False,
                sync_run_id=started.sync_run_id,
                status=started.status,
                fetched_count=run.get("fetched_count", 0),
                candidates_created=run.get("candidates_created", 0),
                already_running=True,
            )
        return await self.run_sync(started.sync_run_id)

    async def _fetch(
        self,
        db: Session,
        sync_id: str,
        repo_id: str,
        user_id: str,
        full_name: str,
        branch: Optional[str],
        cursor: Cursor,
        state: _RunState,
        log: Any,
    ) -> None:
        try:
            token = self.credential_provider.get_token(user_id)
            client = self.client_factory(token)
            try:
                self._log(
                    db,
                    sync_id,
                    f"Fetching pull requests updated after {cursor.pr_updated_after.isoformat()}",
                )
                async for page in client.list_artifacts_since(
                    full_name, cursor.pr_updated_after
                ):
                    self._store_page(db, sync_id, repo_id, page, state, "pr")

                if self.settings.sync_include_commits:
                    self._log(db, sync_id, f"Fetching commits since {cursor.commit_since.isoformat()}")
                    async for page in client.list_commits_since(
                        full_name, cursor.commit_since, branch=branch
                    ):
                        self._store_page(db, sync_id, repo_id, page, state, "commit")
            finally:
                await client.close()
            state.fetch_completed = True
        except RateLimited as e:
            db.rollback()
            state.rate_limited = True
            state.fail(e, "rate_limited")
            hint = f"; retry after {e.retry_after}s" if e.retry_after is not None else ""
            self._log(db, sync_id, f"Rate limited by GitHub{hint}", level="warning")
            log.warning("sync_rate_limited", retry_after=e.retry_after)
        except PipelineError as e:
            db.rollback()
            state.fail(e, _reason_code(e))
            self._log(db, sync_id, f"Fetch failed: {e.message}", level="error")
            log.warning("sync_fetch_failed", error_code=e.code, error=e.message)
        except Exception as e:
            db.rollback()
            state.fail(e, "internal_error")
            self._log(db, sync_id, f"Fetch failed: {e}", level="error")
            log.exception("sync_fetch_crashed")

    def _store_page(
        self,
        db: Session,
        sync_id: str,
        repo_id: str,
        page: ArtifactPage,
        state: _RunState,
        kind: str,
    ) -> None:
        """Upsert one page of artifacts and commit it."""
        inserted, changed = self.upsert_artifacts(db, repo_id, page.artifacts)
        for artifact in page.artifacts:
            if kind == "pr":
                state.max_seen_pr = _latest(state.max_seen_pr, artifact.updated_at)
            else:
                state.max_seen_commit = _latest(state.max_seen_commit, artifact.updated_at)
        state.fetched += len(page.artifacts)

        op = db.get(SyncOperationModel, sync_id)
        op.fetched_count = state.fetched
        op.append_log(
            f"Fetched {kind} page {page.page}: {len(page.artifacts)} artifacts "
            f"({inserted} new, {changed} changed)"
        )
        if page.truncated:
            if kind == "pr":
                state.pr_truncated = True
            else:
                state.commit_truncated = True
            op.append_log(
                f"Stopped at the {kind} page limit after page {page.page}; "
                "older items remain upstream, cursor kept",
                level="warning",
            )
            logger.warning(
                "sync_page_limit_reached", sync_run_id=sync_id, kind=kind, page=page.page
            )
        if inserted:
            db.execute(
                update(RepositoryModel)
                .where(RepositoryModel.id == repo_id)
                .values(artifact_count=RepositoryModel.artifact_count + inserted)
                .execution_options(synchronize_session=False)
            )
        db.commit()

    @staticmethod
    def upsert_artifacts(
        db: Session, repo_id: str, artifacts: List[RawArtifact]
    ) -> Tuple[int, int]:
        """Insert or update artifacts by (repo, github id, type). Does not commit.

        An existing artifact goes back to 'pending' only when its content
        changed, so re-fetching unchanged items is a no-op for the sieve.

        Returns:
            (inserted, content_changed) counts
        """
        inserted = changed = 0
        for raw in artifacts:
            existing = (
                db.query(ArtifactModel)
                .filter(
                    ArtifactModel.repo_id == repo_id,
                    ArtifactModel.github_id == raw.github_id,
                    ArtifactModel.type == raw.type,
                )
                .one_or_none()
            )
            values = {
                "url": raw.url,
                "branch": raw.branch,
                "title": raw.title,
                "body": raw.body,
                "diff": raw.diff,
                "author": raw.author,
                "labels": list(raw.labels),
                "file_paths": list(raw.file_paths),
                "files_changed": raw.files_changed,
                "additions": raw.additions,
                "deletions": raw.deletions,
                "authored_at": raw.authored_at,
                "merged_at": raw.merged_at,
                "platform_updated_at": raw.updated_at,
            }
            if existing is None:
                db.add(
                    ArtifactModel(
                        repo_id=repo_id,
                        github_id=raw.github_id,
                        type=raw.type,
                        processing_status="pending",
                        **values,
                    )
                )
                inserted += 1
                continue

            content_changed = any(
                getattr(existing, name) != values[name] for name in CONTENT_FIELDS
            )
            for name, value in values.items():
                if name in ("authored_at", "merged_at", "platform_updated_at"):
                    if as_utc(getattr(existing, name)) == as_utc(value):
                        continue
                elif getattr(existing, name) == value:
                    continue
                setattr(existing, name, value)
            if content_changed:
                existing.processing_status = "pending"
                existing.sieved_at = None
                changed += 1
        db.flush()
        return inserted, changed

    def _sieve_and_promote(
        self,
        db: Session,
        sync_id: str,
        repo_id: str,
        user_id: str,
        state: _RunState,
        log: Any,
    ) -> None:
        """Sieve all pending artifacts and upsert candidates, in one commit."""
        try:
            pending = (
                db.query(ArtifactModel)
                .filter(
                    ArtifactModel.repo_id == repo_id,
                    ArtifactModel.processing_status == "pending",
                )
                .order_by(ArtifactModel.id)
                .all()
            )
            sieved_in = sieved_out = created = 0
            now = utcnow()
            for artifact in pending:
                verdict = evaluate(artifact, self.sieve_config)
                artifact.sieve_score = verdict.score
                artifact.sieve_rules = {
                    "matched_rules": list(verdict.matched_rules),
                    "reason": verdict.reason,
                }
                artifact.sieved_at = now
                if not verdict.is_decision_worthy:
                    artifact.processing_status = "sieved_out"
                    sieved_out += 1
                    continue

                artifact.processing_status = "sieved_in"
                sieved_in += 1
                if self._upsert_candidate(db, repo_id, user_id, artifact, verdict):
                    created += 1

            op = db.get(SyncOperationModel, sync_id)
            op.sieved_in_count += sieved_in
            op.sieved_out_count += sieved_out
            op.candidates_created += created
            op.append_log(
                f"Sieved {len(pending)} artifacts: {sieved_in} in, {sieved_out} out, "
                f"{created} new candidates"
            )
            if created:
                db.execute(
                    update(RepositoryModel)
                    .where(RepositoryModel.id == repo_id)
                    .values(candidate_count=RepositoryModel.candidate_count + created)
                    .execution_options(synchronize_session=False)
                )
            db.commit()
            state.sieved = len(pending)
            log.info(
                "sync_sieve_completed",
                sieved_in=sieved_in,
                sieved_out=sieved_out,
                candidates_created=created,
            )
        except Exception as e:
            db.rollback()
            state.fail(e, "sieve_failed")
            self._log(db, sync_id, f"Sieve failed: {e}", level="error")
            log.exception("sync_sieve_failed")

    @staticmethod
    def _upsert_candidate(
        db: Session,
        repo_id: str,
        user_id: str,
        artifact: ArtifactModel,
        verdict: Any,
    ) -> bool:
        """Create the artifact's candidate, or refresh it while still 'new'.

        Candidates past 'new' carry review or extraction work and are left alone.
        Returns True when a candidate was created.
        """
        fields = dict(verdict.candidate_fields)
        existing = (
            db.query(CandidateModel)
            .filter(CandidateModel.artifact_id == artifact.id)
            .one_or_none()
        )
        if existing is None:
            db.add(
                CandidateModel(
                    repo_id=repo_id,
                    user_id=user_id,
                    artifact_id=artifact.id,
                    status="new",
                    sieve_score=verdict.score,
                    **fields,
                )
            )
            db.flush()
            return True
        if existing.status == "new":
            for name, value in fields.items():
                if getattr(existing, name) != value:
                    setattr(existing, name, value)
            if existing.sieve_score != verdict.score:
                existing.sieve_score = verdict.score
        return False

    def _finalize(
        self,
        db: Session,
        sync_id: str,
        repo_id: str,
        stored: Optional[Cursor],
        state: _RunState,
        log: Any,
    ) -> None:
        """Advance the cursor and mark run and repository terminal."""
        try:
            db.rollback()
            if state.error is None and not state.truncated:
                status = "success"
            elif (
                state.error is None
                or state.rate_limited
                or state.fetched
                or state.sieved
            ):
                status = "partial"
            else:
                status = "error"
            reason_code = state.reason_code
            if reason_code is None and state.truncated:
                reason_code = "page_limit"

            # A truncated sub-stream keeps its cursor: the unfetched items
            # are older than anything seen on the pages that were fetched.
            new_cursor = stored
            pr_seen = None if state.pr_truncated else state.max_seen_pr
            commit_seen = None if state.commit_truncated else state.max_seen_commit
            if state.fetch_completed and (pr_seen or commit_seen):
                new_cursor = self.cursor_manager.next_cursor(
                    stored, pr_last_seen=pr_seen, commit_last_seen=commit_seen
                )

            error_message = None
            if state.error is None and state.truncated:
                error_message = "Stopped at the page limit before reaching the cursor"
            elif state.error is not None:
                error_message = (
                    state.error.message
                    if isinstance(state.error, PipelineError)
                    else str(state.error)
                ) or type(state.error).__name__
                if isinstance(state.error, RateLimited) and state.error.retry_after is not None:
                    error_message = f"{error_message} (retry after {state.error.retry_after}s)"

            op = db.get(SyncOperationModel, sync_id)
            if new_cursor is not stored and new_cursor is not None:
                op.append_log(
                    f"Cursor advanced to {new_cursor.to_dict()['prUpdatedAfter']}"
                )
            op.append_log(f"Sync finished: {status}", level="info" if status == "success" else "warning")
            now = utcnow()
            finished = db.execute(
                update(SyncOperationModel)
                .where(
                    SyncOperationModel.id == sync_id,
                    SyncOperationModel.status == "syncing",
                )
                .values(
                    status=status,
                    completed_at=now,
                    error_message=error_message,
                    reason_code=reason_code,
                    error_count=1 if state.error is not None else 0,
                    end_cursor=new_cursor.to_dict() if new_cursor else None,
                    logs=op.logs,
                )
                .execution_options(synchronize_session=False)
            )
            repo_values: Dict[str, Any] = {"sync_status": status, "last_sync_at": now}
            if new_cursor is not stored and new_cursor is not None:
                repo_values["cursor"] = new_cursor.to_dict()
            db.execute(
                update(RepositoryModel)
                .where(
                    RepositoryModel.id == repo_id,
                    RepositoryModel.sync_status == "syncing",
                    RepositoryModel.latest_sync_id == sync_id,
                )
                .values(**repo_values)
                .execution_options(synchronize_session=False)
            )
            if finished.rowcount:
                AuditService(db).log_status_change(
                    "SyncOperation", sync_id, "syncing", status, note=error_message
                )
            else:
                log.warning("sync_already_finalized")
            db.commit()
            log.info(
                "sync_finished",
                status=status,
                fetched=state.fetched,
                reason_code=reason_code,
            )
        except Exception:
            db.rollback()
            log.exception("sync_finalize_failed")
            raise

    # ------------------------------------------------------------------
    # Reads and maintenance
    # ------------------------------------------------------------------

    def get_sync_status(self, repo_id: str, user_id: str) -> Dict[str, Any]:
        """Latest run of a repository. Read-only."""
        db = self.session_factory()
        try:
            repo = require_repo_access(db, user_id, repo_id)
            run = self._latest_run(db, repo.id)
            return {"has_sync": run is not None, "sync_run": self._snapshot(run)}
        finally:
            db.close()

    def reconcile_stale_runs(self, max_duration: Optional[timedelta] = None) -> int:
        """Mark runs stuck in 'syncing' longer than ``max_duration`` as errors.

        Returns:
            Number of runs reconciled
        """
        if max_duration is None:
            max_duration = timedelta(seconds=self.settings.sync_max_duration_seconds)
        cutoff = datetime.now(timezone.utc) - max_duration
        db = self.session_factory()
        reconciled = 0
        try:
            stale = (
                db.query(SyncOperationModel.id, SyncOperationModel.repo_id)
                .filter(
                    SyncOperationModel.status == "syncing",
                    SyncOperationModel.started_at < cutoff,
                )
                .all()
            )
            for sync_id, repo_id in stale:
                message = f"Run exceeded {int(max_duration.total_seconds())}s without finishing"
                result = db.execute(
                    update(SyncOperationModel)
                    .where(
                        SyncOperationModel.id == sync_id,
                        SyncOperationModel.status == "syncing",
                    )
                    .values(
                        status="error",
                        completed_at=utcnow(),
                        reason_code="stale_run",
                        error_message=message,
                        error_count=1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    continue
                db.execute(
                    update(RepositoryModel)
                    .where(
                        RepositoryModel.id == repo_id,
                        RepositoryModel.sync_status == "syncing",
                        RepositoryModel.latest_sync_id == sync_id,
                    )
                    .values(sync_status="error")
                    .execution_options(synchronize_session=False)
                )
                AuditService(db).log_status_change(
                    "SyncOperation", sync_id, "syncing", "error", note="stale_run"
                )
                reconciled += 1
                logger.warning("sync_run_reconciled", sync_run_id=sync_id, repo_id=repo_id)
            db.commit()
            return reconciled
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _log(self, db: Session, sync_id: str, message: str, level: str = "info") -> None:
        op = db.get(SyncOperationModel, sync_id)
        op.append_log(message, level=level)
        db.commit()

    @staticmethod
    def _latest_run(db: Session, repo_id: str) -> Optional[SyncOperationModel]:
        repo = db.get(RepositoryModel, repo_id)
        if repo is not None and repo.latest_sync_id:
            run = db.get(SyncOperationModel, repo.latest_sync_id)
            if run is not None:
                return run
        return (
            db.query(SyncOperationModel)
            .filter(SyncOperationModel.repo_id == repo_id)
            .order_by(SyncOperationModel.started_at.desc(), SyncOperationModel.id.desc())
            .first()
        )

    @staticmethod
    def _snapshot(run: Optional[SyncOperationModel]) -> Optional[Dict[str, Any]]:
        if run is None:
            return None
        data = run.to_dict()
        data["phase"] = PHASES.get(run.status, run.status)
        return data

    @staticmethod
    def _result(run: SyncOperationModel) -> SyncTriggerResult:
        return SyncTriggerResult(
            success=run.status == "success",
            sync_run_id=run.id,
            status=run.status,
            fetched_count=run.fetched_count,
            candidates_created=run.candidates_created,
            error_message=run.error_message,
        )
