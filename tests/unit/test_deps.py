"""Unit tests for FastAPI dependency injection functions."""

import time
from unittest.mock import patch
from uuid import UUID

import pytest
from fastapi import HTTPException

from src.api.deps import check_rate_limit, get_current_user
from src.api.middleware.auth import AuthError, AuthErrorCode
from src.api.middleware.error_handler import RateLimitError
from src.core.rate_limiter import InMemoryRateLimitStorage, RateLimitConfig
from src.schemas.auth import TokenPayload, UserContext
from tests.conftest import CLIENT_ID, PRO_ID


class TestGetCurrentUser:
    """Tests for get_current_user dependency."""

    @pytest.mark.asyncio
    @patch("src.api.deps.decode_jwt")
    async def test_extracts_user_context_correctly(self, mock_decode: any) -> None:
        """Test get_current_user extracts UserContext from valid token."""
        mock_decode.return_value = TokenPayload(
            sub=CLIENT_ID,
            email="ana@example.com",
            role="authenticated",
            exp=int(time.time()) + 3600,
            iat=int(time.time()),
        )

        user = await get_current_user("Bearer valid-token")

        assert isinstance(user, UserContext)
        assert user.user_id == UUID(CLIENT_ID)
        assert user.id == CLIENT_ID
        assert user.email == "ana@example.com"
        mock_decode.assert_called_once_with("valid-token")

    @pytest.mark.asyncio
    async def test_raises_401_for_missing_header(self) -> None:
        """Test get_current_user raises 401 when Authorization header is missing."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("")

        assert exc_info.value.status_code == 401
        assert "Authorization header required" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_raises_401_for_invalid_header_format(self) -> None:
        """Test get_current_user raises 401 for invalid header format."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("invalid-token")

        assert exc_info.value.status_code == 401
        assert "Invalid authorization header format" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_raises_401_for_wrong_scheme(self) -> None:
        """Test get_current_user raises 401 for non-Bearer scheme."""
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("Basic some-credentials")

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    @patch("src.api.deps.decode_jwt")
    async def test_raises_401_for_expired_token(self, mock_decode: any) -> None:
        """Test get_current_user raises 401 for expired token."""
        mock_decode.side_effect = AuthError("Token has expired", AuthErrorCode.TOKEN_EXPIRED)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user("Bearer expired-token")

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Token has expired"


class TestCheckRateLimit:
    """Tests for the per-action rate limit dependency."""

    @pytest.mark.asyncio
    async def test_limits_per_user_and_action(self) -> None:
        """Each user and action has its own counter."""
        limiter = InMemoryRateLimitStorage(RateLimitConfig(max_requests=2, window_seconds=60))
        client = UserContext(user_id=UUID(CLIENT_ID))
        pro = UserContext(user_id=UUID(PRO_ID))
        accept = check_rate_limit("offer.accept")

        with patch("src.api.deps.get_rate_limiter", return_value=limiter), \
             patch("src.api.deps.get_settings") as mock_settings:
            mock_settings.return_value.rate_limit_requests = 2
            mock_settings.return_value.rate_limit_window_seconds = 60

            await accept(client)
            await accept(client)
            with pytest.raises(RateLimitError) as exc_info:
                await accept(client)

            await accept(pro)
            await check_rate_limit("offer.reject")(client)

        assert exc_info.value.status_code == 429
        assert exc_info.value.retry_after > 0
