"""FastAPI dependency injection functions."""

from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, status

from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from src.api.middleware.error_handler import RateLimitError
from src.core.config import get_settings
from src.core.rate_limiter import get_rate_limiter
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
        HTTPException: 401 if token is missing, invalid, or expired.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_jwt(parts[1]).to_user_context()
    except AuthError as e:
        detail = "Token has expired" if e.code == AuthErrorCode.TOKEN_EXPIRED else e.message
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


CurrentUser = Annotated[UserContext, Depends(get_current_user)]


def check_rate_limit(action: str) -> Callable:
    """Build a dependency limiting ``action`` per authenticated user.

    Args:
        action: Limit bucket name, e.g. ``offer.accept``.

    Returns:
        Dependency that raises RateLimitError when the user is over the limit.
    """

    async def dependency(user: CurrentUser) -> None:
        settings = get_settings()
        limiter = get_rate_limiter()
        allowed, _, retry_after = await limiter.check_and_increment(
            f"user:{user.user_id}:{action}",
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
        if not allowed:
            raise RateLimitError(
                message="Rate limit exceeded. Please wait before trying again.",
                retry_after=retry_after,
                limit=settings.rate_limit_requests,
            )

    return dependency
