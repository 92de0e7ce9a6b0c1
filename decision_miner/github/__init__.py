"""
GitHub integration: paged artifact streams over the REST API.
"""

from .client import GitHubAPIError, GitHubClient
from .models import ArtifactPage, RawArtifact

__all__ = ["ArtifactPage", "GitHubAPIError", "GitHubClient", "RawArtifact"]
