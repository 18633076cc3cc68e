"""Pytest configuration and fixtures."""

import json
import os
import time
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import jwt
import pytest
from fastapi.testclient import TestClient

from tests.fake_supabase import FakeSupabase

TEST_JWT_SECRET = "test-signing-secret-with-enough-length-for-hs256"

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault(
    "SUPABASE_SIGNING_KEY_JWK",
    json.dumps(
        {
            "kty": "oct",
            "alg": "HS256",
            "k": jwt.utils.base64url_encode(TEST_JWT_SECRET.encode()).decode(),
        }
    ),
)
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_stripe_secret_key")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_webhook_secret")
os.environ.setdefault("FRONTEND_URL", "https://handi.test")
os.environ.setdefault("API_BASE_URL", "https://api.handi.test")
os.environ.setdefault("RECEIPT_LOOKUP_DELAY_SECONDS", "0")
os.environ.setdefault("REDIS_URL", "")

CLIENT_ID = "11111111-1111-4111-8111-111111111111"
PRO_ID = "22222222-2222-4222-8222-222222222222"
OTHER_PRO_ID = "33333333-3333-4333-8333-333333333333"
STRANGER_ID = "44444444-4444-4444-8444-444444444444"


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    yield settings
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def isolated_state() -> Generator[None, None, None]:
    """Reset process-wide caches so tests never see each other's state."""
    from src.core import rate_limiter
    from src.services import review_service, view_cache

    view_cache._view_cache = None
    review_service._prompt_cache = None
    rate_limiter._rate_limiter = None
    yield
    view_cache._view_cache = None
    review_service._prompt_cache = None
    rate_limiter._rate_limiter = None


@pytest.fixture(autouse=True)
def realtime_publish() -> Generator[AsyncMock, None, None]:
    """Capture realtime broadcasts instead of calling Supabase Realtime."""
    from src.core.realtime import RealtimeBus

    with patch.object(RealtimeBus, "publish", AsyncMock(return_value=True)) as publish:
        yield publish


@pytest.fixture(autouse=True)
def sent_emails() -> Generator[AsyncMock, None, None]:
    """Capture transactional emails instead of calling Resend."""
    with patch(
        "src.services.email_service.EmailService.send",
        AsyncMock(return_value={"success": True, "email_id": "email_test"}),
    ) as send:
        yield send


@pytest.fixture(autouse=True)
def mock_stripe() -> Generator[MagicMock, None, None]:
    """Stripe module double shared by every CheckoutService."""
    stripe_double = MagicMock()
    stripe_double.checkout.Session.retrieve.return_value = {}
    with patch("src.services.checkout_service.get_stripe", return_value=stripe_double):
        yield stripe_double


@pytest.fixture
def fake_db() -> Generator[FakeSupabase, None, None]:
    """In-memory Supabase client returned by ``get_supabase_client``.

    Yields:
        FakeSupabase: The shared fake; seed and inspect tables through it.
    """
    from src.core.storage import get_object_storage
    from src.core.supabase import get_supabase_client

    fake = FakeSupabase()
    get_supabase_client.cache_clear()
    get_object_storage.cache_clear()
    with patch("src.core.supabase.create_client", return_value=fake):
        yield fake
    get_supabase_client.cache_clear()
    get_object_storage.cache_clear()


@pytest.fixture
def marketplace(fake_db: FakeSupabase) -> dict[str, Any]:
    """A client, a professional, a request and their conversation.

    Returns:
        dict: Seeded ``request`` and ``conversation`` rows plus ids.
    """
    fake_db.seed(
        "profiles",
        {"id": CLIENT_ID, "full_name": "Ana Cliente", "email": "ana@example.com"},
        {"id": PRO_ID, "full_name": "Pedro Plomero", "email": "pedro@example.com"},
        {"id": OTHER_PRO_ID, "full_name": "Otro Pro", "email": "otro@example.com"},
    )
    (request,) = fake_db.seed(
        "requests",
        {
            "created_by": CLIENT_ID,
            "title": "Reparar fuga en cocina",
            "status": "active",
            "required_at": "2026-04-10T00:00:00+00:00",
            "address_line": "Av. Reforma 123",
            "city": "CDMX",
        },
    )
    (conversation,) = fake_db.seed(
        "conversations",
        {"customer_id": CLIENT_ID, "pro_id": PRO_ID, "request_id": request["id"], "hidden_for": []},
    )
    return {
        "client_id": CLIENT_ID,
        "pro_id": PRO_ID,
        "request": request,
        "conversation": conversation,
    }


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Build signed access tokens for a user id."""

    def _make(user_id: str, expires_in: int = 3600, **claims: Any) -> str:
        now = int(time.time())
        payload = {
            "sub": user_id,
            "email": f"{user_id[:8]}@example.com",
            "role": "authenticated",
            "aud": "authenticated",
            "iat": now,
            "exp": now + expires_in,
            **claims,
        }
        return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token: Callable[..., str]) -> Callable[[str], dict[str, str]]:
    """Authorization headers for a user id."""

    def _headers(user_id: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


@pytest.fixture
def client(fake_db: FakeSupabase) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Yields:
        TestClient: FastAPI test client backed by the in-memory database.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
