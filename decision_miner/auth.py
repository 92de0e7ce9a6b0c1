"""
Caller identity and repository access checks.

Session handling lives in front of this service; by the time a request
arrives here the authenticated user id is carried in the ``X-User-Id``
header.
"""

from typing import Optional

from fastapi import Header
from sqlalchemy.orm import Session

from .db.models import RepositoryModel
from .errors import Forbidden, NotFound, Unauthorized


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """FastAPI dependency returning the authenticated user id."""
    if not x_user_id or not x_user_id.strip():
        raise Unauthorized("Authentication required")
    return x_user_id.strip()


def find_repository(db: Session, user_id: str, repo_id: str) -> Optional[RepositoryModel]:
    """Resolve a repository by internal id, or by numeric GitHub id for this user."""
    repo = db.get(RepositoryModel, repo_id)
    if repo is None and repo_id.isdigit():
        repo = (
            db.query(RepositoryModel)
            .filter(
                RepositoryModel.github_id == int(repo_id),
                RepositoryModel.user_id == user_id,
            )
            .first()
        )
    return repo


def require_repo_access(
    db: Session, user_id: str, repo_id: str, require_enabled: bool = False
) -> RepositoryModel:
    """Load a repository the caller owns.

    Raises:
        NotFound: no such repository
        Forbidden: owned by someone else, or disabled when ``require_enabled``
    """
    repo = find_repository(db, user_id, repo_id)
    if repo is None:
        raise NotFound("Repository not found", details={"repo_id": repo_id})
    if repo.user_id != user_id:
        raise Forbidden("Repository belongs to another user")
    if require_enabled and not repo.enabled:
        raise Forbidden("Repository is disabled", details={"repo_id": repo.id})
    return repo
