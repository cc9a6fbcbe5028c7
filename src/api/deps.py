"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Header

from src.api.middleware.auth import ADMIN_ROLE, AuthError, AuthErrorCode, decode_jwt, extract_bearer_token, has_role
from src.api.middleware.error_handler import AuthenticationError, AuthorizationError
from src.schemas.auth import UserContext


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the current user from the Authorization header.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        AuthenticationError: 401 if token is missing, invalid, or expired.
    """
    try:
        payload = decode_jwt(extract_bearer_token(authorization))
        return payload.to_user_context()
    except AuthError as e:
        detail = "Token has expired" if e.code == AuthErrorCode.TOKEN_EXPIRED else e.message
        raise AuthenticationError(detail) from e


async def get_current_admin(
    user: Annotated[UserContext, Depends(get_current_user)],
) -> UserContext:
    """Require the authenticated user to hold the admin role.

    The returned context is the actor passed into every admin operation.

    Raises:
        AuthorizationError: 403 if the user is not an admin.
    """
    if not has_role(user.user_id, ADMIN_ROLE):
        raise AuthorizationError("Admin role required")
    return user


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
CurrentAdmin = Annotated[UserContext, Depends(get_current_admin)]
