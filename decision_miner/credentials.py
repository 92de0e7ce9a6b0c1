"""Platform credential lookup."""

from typing import Dict, Optional, Protocol

from .config import get_settings
from .errors import Unauthorized


class CredentialProvider(Protocol):
    """Resolves the platform token to act on behalf of a user."""

    def get_token(self, user_id: str) -> str:
        """Return a token or raise Unauthorized."""


class SettingsCredentialProvider:
    """Single shared token from GITHUB_TOKEN, used for every user."""

    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get_token(self, user_id: str) -> str:
        token = self._token or get_settings().github_token
        if not token:
            raise Unauthorized(
                "No GitHub credential configured", details={"user_id": user_id}
            )
        return token


class StaticCredentialProvider:
    """Per-user tokens held in memory."""

    def __init__(self, tokens: Dict[str, str]):
        self.tokens = dict(tokens)

    def get_token(self, user_id: str) -> str:
        token = self.tokens.get(user_id)
        if not token:
            raise Unauthorized(
                "GitHub credential missing or revoked", details={"user_id": user_id}
            )
        return token
