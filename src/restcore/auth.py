"""
Auth collaborator interface.

The client core only needs two things from credentials: the headers to send
and the full URL for an endpoint. Acquisition, rotation, persistence and
expiry checks live outside this package.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Protocol

from restcore.config import DEFAULT_BASE_URL
from restcore.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_USER_AGENT = "restcore/0.1.0"


class AuthType(str, Enum):
    """Credential type."""

    API_KEY = "api_key"
    OAUTH = "oauth"
    JWT = "jwt"


class AuthProvider(Protocol):
    """What the client needs from an auth collaborator."""

    def build_authenticated_url(self, endpoint: str) -> str: ...

    def get_auth_headers(self) -> Mapping[str, str]: ...


class StaticCredentialAuth:
    """
    Auth provider for a credential that is already in hand.

    URLs are built as `<base_url>/<segment>/<endpoint>`, with segment `key`
    for API keys and OAuth tokens and `jwt` for JWTs. Every credential type
    is sent as a bearer token.
    """

    def __init__(
        self,
        credential: str,
        *,
        auth_type: AuthType = AuthType.API_KEY,
        base_url: str = DEFAULT_BASE_URL,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        if not credential:
            raise ValidationError(
                "Credential required",
                errors={"credential": "must not be empty"},
            )
        self._credential = credential
        self.auth_type = auth_type
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent

    def __repr__(self) -> str:
        return f"StaticCredentialAuth(auth_type={self.auth_type.value}, base_url={self.base_url!r})"

    @property
    def _segment(self) -> str:
        return "jwt" if self.auth_type == AuthType.JWT else "key"

    def build_authenticated_url(self, endpoint: str) -> str:
        return f"{self.base_url}/{self._segment}/{endpoint.lstrip('/')}"

    def get_auth_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "Authorization": f"Bearer {self._credential}",
        }
