"""Admin authentication: Supabase JWT verification and role checks."""

import json
import logging
from enum import Enum
from functools import lru_cache
from typing import Any
from uuid import UUID

import jwt
from jwt import PyJWK
from postgrest.exceptions import APIError as PostgrestAPIError

from src.core.config import get_settings
from src.core.supabase import get_supabase_client
from src.schemas.auth import TokenPayload

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"


class AuthErrorCode(str, Enum):
    """Authentication error codes."""

    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"


class AuthError(Exception):
    """JWT validation failure with a specific error code."""

    def __init__(self, message: str, code: AuthErrorCode) -> None:
        self.message = message
        self.code = code
        super().__init__(message)


@lru_cache
def get_signing_key() -> Any:
    """Load the public key from the signing key JWK setting."""
    jwk_json = get_settings().supabase_signing_key_jwk
    if not jwk_json:
        raise AuthError("Signing key not configured", AuthErrorCode.INVALID_TOKEN)

    try:
        jwk_data = json.loads(jwk_json)
    except json.JSONDecodeError as e:
        raise AuthError(f"Invalid signing key JWK format: {e}", AuthErrorCode.INVALID_TOKEN) from e

    return PyJWK.from_dict(jwk_data).key


def extract_bearer_token(authorization: str | None) -> str:
    """Return the token of a ``Bearer <token>`` header value.

    Raises:
        AuthError: If the header is missing or malformed.
    """
    if not authorization:
        raise AuthError("Authorization header required", AuthErrorCode.UNAUTHORIZED)
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthError(
            "Invalid authorization header format. Expected: Bearer <token>",
            AuthErrorCode.UNAUTHORIZED,
        )
    return parts[1]


def decode_jwt(token: str) -> TokenPayload:
    """Decode and validate a Supabase ES256 JWT.

    Raises:
        AuthError: If the token is invalid, expired, or has a wrong signature.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            get_signing_key(),
            algorithms=["ES256"],
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_iat": True,
                "verify_aud": False,
                "require": ["exp", "iat", "sub"],
            },
        )
    except AuthError:
        raise
    except jwt.ExpiredSignatureError as e:
        raise AuthError("Token has expired", AuthErrorCode.TOKEN_EXPIRED) from e
    except jwt.InvalidSignatureError as e:
        raise AuthError("Invalid token signature", AuthErrorCode.INVALID_SIGNATURE) from e
    except jwt.MissingRequiredClaimError as e:
        raise AuthError(f"Token missing required claim: {e}", AuthErrorCode.INVALID_TOKEN) from e
    except jwt.PyJWTError as e:
        raise AuthError(f"Invalid token: {e}", AuthErrorCode.INVALID_TOKEN) from e

    return TokenPayload(
        sub=payload["sub"],
        email=payload.get("email"),
        role=payload.get("role"),
        exp=payload["exp"],
        iat=payload["iat"],
        aud=payload.get("aud") if isinstance(payload.get("aud"), str) else None,
        iss=payload.get("iss"),
    )


def has_role(user_id: UUID, role: str = ADMIN_ROLE) -> bool:
    """Check a user's role through the ``has_role`` database function.

    A failed lookup counts as "no role".
    """
    try:
        response = get_supabase_client().rpc("has_role", {"_user_id": str(user_id), "_role": role}).execute()
    except PostgrestAPIError as e:
        logger.error("Role lookup failed for %s: %s", user_id, e.message)
        return False
    return bool(response.data)
