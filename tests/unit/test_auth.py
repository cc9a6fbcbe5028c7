"""Unit tests for JWT decoding and admin role checks."""

import time
from unittest.mock import MagicMock, patch
from uuid import UUID

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from jose import jwt
from postgrest.exceptions import APIError as PostgrestAPIError

from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt, extract_bearer_token, has_role

USER_ID = "550e8400-e29b-41d4-a716-446655440000"

_SIGNING_KEY = ec.generate_private_key(ec.SECP256R1())
_OTHER_KEY = ec.generate_private_key(ec.SECP256R1())


def _pem(key: ec.EllipticCurvePrivateKey) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


def create_test_token(
    sub: str = USER_ID,
    email: str | None = "admin@example.com",
    role: str | None = "authenticated",
    exp_offset: int = 3600,
    key: ec.EllipticCurvePrivateKey = _SIGNING_KEY,
    **extra,
) -> str:
    """Create an ES256 test JWT.

    Args:
        sub: Subject (user ID).
        email: User email.
        role: User role.
        exp_offset: Seconds from now for expiration (negative for expired).
        key: EC private key used for signing.

    Returns:
        str: Encoded JWT token.
    """
    now = int(time.time())
    payload = {
        "sub": sub,
        "email": email,
        "role": role,
        "exp": now + exp_offset,
        "iat": now - 10,
        "aud": "authenticated",
        "iss": "https://test.supabase.co/auth/v1",
        **extra,
    }
    return jwt.encode(payload, _pem(key), algorithm="ES256")


@pytest.fixture(autouse=True)
def signing_key():
    """Verify tokens against the test key pair."""
    with patch("src.api.middleware.auth.get_signing_key", return_value=_SIGNING_KEY.public_key()):
        yield


class TestDecodeJWT:
    """Tests for decode_jwt function."""

    def test_decode_jwt_with_valid_token(self) -> None:
        """Test decode_jwt successfully decodes a valid token."""
        payload = decode_jwt(create_test_token())

        assert payload.sub == USER_ID
        assert payload.email == "admin@example.com"
        assert payload.aud == "authenticated"
        assert payload.to_user_context().user_id == UUID(USER_ID)

    def test_decode_jwt_expired(self) -> None:
        """Test decode_jwt raises TOKEN_EXPIRED for an expired token."""
        with pytest.raises(AuthError) as exc_info:
            decode_jwt(create_test_token(exp_offset=-3600))

        assert exc_info.value.code == AuthErrorCode.TOKEN_EXPIRED

    def test_decode_jwt_wrong_key(self) -> None:
        """Test decode_jwt rejects a token signed by another key."""
        with pytest.raises(AuthError) as exc_info:
            decode_jwt(create_test_token(key=_OTHER_KEY))

        assert exc_info.value.code == AuthErrorCode.INVALID_SIGNATURE

    def test_decode_jwt_malformed(self) -> None:
        """Test decode_jwt rejects garbage."""
        with pytest.raises(AuthError) as exc_info:
            decode_jwt("not-a-jwt")

        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    def test_decode_jwt_rejects_hs256(self) -> None:
        """Test that symmetric tokens are not accepted."""
        token = jwt.encode({"sub": USER_ID, "exp": int(time.time()) + 60, "iat": int(time.time())}, "secret")

        with pytest.raises(AuthError):
            decode_jwt(token)


class TestExtractBearerToken:
    """Tests for extract_bearer_token."""

    def test_returns_token(self) -> None:
        """Test the token part is returned."""
        assert extract_bearer_token("Bearer abc.def") == "abc.def"

    @pytest.mark.parametrize("header", ["", None, "abc", "Basic abc", "Bearer a b"])
    def test_rejects_bad_headers(self, header) -> None:
        """Test missing or malformed headers raise UNAUTHORIZED."""
        with pytest.raises(AuthError) as exc_info:
            extract_bearer_token(header)

        assert exc_info.value.code == AuthErrorCode.UNAUTHORIZED


class TestHasRole:
    """Tests for has_role."""

    def test_true_when_rpc_confirms(self) -> None:
        """Test the has_role RPC result is returned."""
        mock_client = MagicMock()
        mock_client.rpc.return_value.execute.return_value.data = True

        with patch("src.api.middleware.auth.get_supabase_client", return_value=mock_client):
            assert has_role(UUID(USER_ID), "admin") is True

        mock_client.rpc.assert_called_once_with("has_role", {"_user_id": USER_ID, "_role": "admin"})

    def test_false_when_rpc_denies(self) -> None:
        """Test a falsy RPC result means no role."""
        mock_client = MagicMock()
        mock_client.rpc.return_value.execute.return_value.data = False

        with patch("src.api.middleware.auth.get_supabase_client", return_value=mock_client):
            assert has_role(UUID(USER_ID)) is False

    def test_false_when_lookup_fails(self) -> None:
        """Test a failed lookup counts as no role."""
        mock_client = MagicMock()
        mock_client.rpc.return_value.execute.side_effect = PostgrestAPIError({"message": "boom", "code": "XX000"})

        with patch("src.api.middleware.auth.get_supabase_client", return_value=mock_client):
            assert has_role(UUID(USER_ID)) is False
