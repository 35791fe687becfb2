"""Tests for the static credential auth provider."""

from __future__ import annotations

import pytest

from restcore.auth import DEFAULT_USER_AGENT, AuthType, StaticCredentialAuth
from restcore.config import DEFAULT_BASE_URL
from restcore.errors import ValidationError


class TestStaticCredentialAuth:
    """URL and header construction."""

    def test_api_key_url(self) -> None:
        auth = StaticCredentialAuth("abc")
        assert auth.build_authenticated_url("me") == f"{DEFAULT_BASE_URL}/key/me"

    def test_oauth_uses_key_segment(self) -> None:
        auth = StaticCredentialAuth("abc", auth_type=AuthType.OAUTH)
        assert auth.build_authenticated_url("my-games") == f"{DEFAULT_BASE_URL}/key/my-games"

    def test_jwt_segment(self) -> None:
        auth = StaticCredentialAuth("abc", auth_type=AuthType.JWT)
        assert auth.build_authenticated_url("me") == f"{DEFAULT_BASE_URL}/jwt/me"

    def test_slashes_normalized(self) -> None:
        auth = StaticCredentialAuth("abc", base_url="https://example.test/api/1/")
        url = auth.build_authenticated_url("/game/42/uploads")
        assert url == "https://example.test/api/1/key/game/42/uploads"

    def test_headers(self) -> None:
        headers = StaticCredentialAuth("abc").get_auth_headers()
        assert headers == {
            "Content-Type": "application/json",
            "User-Agent": DEFAULT_USER_AGENT,
            "Authorization": "Bearer abc",
        }

    def test_custom_user_agent(self) -> None:
        headers = StaticCredentialAuth("abc", user_agent="uploader/2.0").get_auth_headers()
        assert headers["User-Agent"] == "uploader/2.0"

    def test_empty_credential_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Credential required"):
            StaticCredentialAuth("")

    def test_repr_hides_credential(self) -> None:
        assert "super-secret" not in repr(StaticCredentialAuth("super-secret"))
