"""Integration tests for the payment redirect and Stripe webhook endpoints."""

from typing import Any
from unittest.mock import MagicMock, patch

import pytest
import stripe
from fastapi.testclient import TestClient

from src.services.fees import compute_client_totals_cents
from src.services.payment_reconciliation_service import PAID_MESSAGE
from tests.conftest import CLIENT_ID, PRO_ID
from tests.fake_supabase import FakeSupabase

SESSION_ID = "cs_test_route"


@pytest.fixture
def accepted_offer(fake_db: FakeSupabase, marketplace: dict) -> dict[str, Any]:
    """An accepted offer waiting for payment."""
    (offer,) = fake_db.seed(
        "offers",
        {
            "conversation_id": marketplace["conversation"]["id"],
            "client_id": CLIENT_ID,
            "professional_id": PRO_ID,
            "title": "Reparar fuga",
            "amount": 1500.0,
            "currency": "MXN",
            "status": "accepted",
            "checkout_session_id": SESSION_ID,
        },
    )
    return offer


@pytest.fixture
def paid_session(accepted_offer: dict, marketplace: dict, mock_stripe: MagicMock) -> dict[str, Any]:
    """The paid session Stripe reports for the offer."""
    session = {
        "id": SESSION_ID,
        "status": "complete",
        "payment_status": "paid",
        "payment_intent": "pi_route_1",
        "client_reference_id": accepted_offer["id"],
        "metadata": {
            "type": "offer_payment",
            "offer_id": accepted_offer["id"],
            "conversation_id": accepted_offer["conversation_id"],
            "request_id": marketplace["request"]["id"],
            "proId": PRO_ID,
            "client_id": CLIENT_ID,
            "scheduled_date": "2026-04-12",
            "scheduled_time": "16:00",
            **compute_client_totals_cents(1500).as_metadata(),
        },
    }
    mock_stripe.checkout.Session.retrieve.return_value = session
    return session


class TestPaymentSuccessRedirect:
    """Tests for GET /api/v1/payment/success."""

    def test_reconciles_and_redirects_to_conversation(
        self, client: TestClient, fake_db: FakeSupabase, marketplace: dict, accepted_offer: dict, paid_session: dict
    ) -> None:
        """The redirect marks the offer paid and sends the browser to the chat."""
        conversation_id = marketplace["conversation"]["id"]

        response = client.get(
            "/api/v1/payment/success",
            params={"session_id": SESSION_ID, "cid": conversation_id, "rid": marketplace["request"]["id"]},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"https://handi.test/mensajes/{conversation_id}"
        assert fake_db.row("offers", accepted_offer["id"])["status"] == "paid"
        assert fake_db.row("requests", marketplace["request"]["id"])["status"] == "in_process"

    def test_refresh_does_not_duplicate(
        self, client: TestClient, fake_db: FakeSupabase, marketplace: dict, accepted_offer: dict, paid_session: dict
    ) -> None:
        """Reloading the success page posts the paid message once."""
        params = {"session_id": SESSION_ID, "cid": marketplace["conversation"]["id"]}

        client.get("/api/v1/payment/success", params=params, follow_redirects=False)
        client.get("/api/v1/payment/success", params=params, follow_redirects=False)

        assert len([m for m in fake_db.rows("messages") if m["body"] == PAID_MESSAGE]) == 1
        assert len(fake_db.rows("pro_calendar_events")) == 1

    def test_redirects_even_when_unverified(
        self, client: TestClient, fake_db: FakeSupabase, marketplace: dict, accepted_offer: dict, mock_stripe: MagicMock
    ) -> None:
        """An unresolvable session still redirects and changes nothing."""
        mock_stripe.checkout.Session.retrieve.side_effect = stripe.InvalidRequestError("No such session", "id")

        response = client.get(
            "/api/v1/payment/success",
            params={"session_id": "cs_forged", "cid": marketplace["conversation"]["id"]},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert fake_db.row("offers", accepted_offer["id"])["status"] == "accepted"

    def test_without_conversation(self, client: TestClient, fake_db: FakeSupabase) -> None:
        """Without a session or conversation the inbox is the target."""
        response = client.get("/api/v1/payment/success", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://handi.test/mensajes"

    def test_offerless_session_uses_redirect_ids(
        self, client: TestClient, fake_db: FakeSupabase, marketplace: dict, mock_stripe: MagicMock
    ) -> None:
        """A paid session without an offer is mirrored onto the request named by rid and cid."""
        conversation_id = marketplace["conversation"]["id"]
        request_id = marketplace["request"]["id"]
        mock_stripe.checkout.Session.retrieve.return_value = {
            "id": "cs_test_no_offer",
            "status": "complete",
            "payment_status": "paid",
            "payment_intent": "pi_route_2",
            "metadata": {
                "proId": PRO_ID,
                "scheduled_date": "2026-04-15",
                "scheduled_time": "10:00",
                **compute_client_totals_cents(900).as_metadata(),
            },
        }

        response = client.get(
            "/api/v1/payment/success",
            params={"session_id": "cs_test_no_offer", "rid": request_id, "cid": conversation_id},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert response.headers["location"] == f"https://handi.test/mensajes/{conversation_id}"
        request = fake_db.row("requests", request_id)
        assert request["status"] == "in_process"
        assert request["scheduled_date"] == "2026-04-15"
        (entry,) = fake_db.rows("pro_calendar_events", request_id=request_id)
        assert entry["pro_id"] == PRO_ID
        (agreement,) = fake_db.rows("agreements", request_id=request_id)
        assert agreement["status"] == "paid"
        assert agreement["amount"] == 900.0


class TestStripeWebhook:
    """Tests for POST /api/v1/webhooks/stripe endpoint."""

    def test_rejects_missing_signature(self, client: TestClient) -> None:
        """Test that requests without Stripe-Signature are rejected."""
        response = client.post("/api/v1/webhooks/stripe", content=b"{}")

        assert response.status_code == 400
        assert response.json()["detail"] == "Missing Stripe-Signature header"

    def test_rejects_invalid_signature(self, client: TestClient, mock_stripe: MagicMock) -> None:
        """Test that requests with a bad signature are rejected."""
        mock_stripe.Webhook.construct_event.side_effect = stripe.SignatureVerificationError("bad", "sig")

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "t=1,v1=bad"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid signature"

    def test_handles_checkout_completed_event(
        self,
        client: TestClient,
        fake_db: FakeSupabase,
        accepted_offer: dict,
        paid_session: dict,
        mock_stripe: MagicMock,
    ) -> None:
        """Test that checkout.session.completed writes the receipt and reconciles."""
        mock_stripe.Webhook.construct_event.return_value = {
            "id": "evt_route_1",
            "type": "checkout.session.completed",
            "data": {"object": paid_session},
        }

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=b'{"test": "payload"}',
            headers={"stripe-signature": "valid_signature"},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "received"}
        (receipt,) = fake_db.rows("receipts")
        assert receipt["checkout_session_id"] == SESSION_ID
        assert receipt["total_amount"] == 182700
        assert fake_db.row("offers", accepted_offer["id"])["status"] == "paid"

    def test_handles_checkout_expired_event(
        self, client: TestClient, fake_db: FakeSupabase, accepted_offer: dict, mock_stripe: MagicMock
    ) -> None:
        """Test that checkout.session.expired clears the stale checkout link."""
        mock_stripe.Webhook.construct_event.return_value = {
            "id": "evt_route_2",
            "type": "checkout.session.expired",
            "data": {"object": {"id": SESSION_ID, "metadata": {"offer_id": accepted_offer["id"]}}},
        }

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "valid_signature"},
        )

        assert response.status_code == 200
        offer = fake_db.row("offers", accepted_offer["id"])
        assert offer["checkout_session_id"] is None
        assert offer["status"] == "accepted"

    def test_processing_failure_is_acknowledged(self, client: TestClient, mock_stripe: MagicMock) -> None:
        """Test that handler errors are logged and still acknowledged."""
        mock_stripe.Webhook.construct_event.return_value = {
            "id": "evt_route_3",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_x", "metadata": {"offer_id": "o1"}, "payment_status": "paid"}},
        }

        with patch(
            "src.api.routes.webhooks.PaymentReconciliationService.handle_checkout_completed",
            side_effect=RuntimeError("database down"),
        ):
            response = client.post(
                "/api/v1/webhooks/stripe",
                content=b"{}",
                headers={"stripe-signature": "valid_signature"},
            )

        assert response.status_code == 200
        assert response.json() == {"status": "received"}

    def test_ignores_unhandled_event_types(self, client: TestClient, mock_stripe: MagicMock) -> None:
        """Test that unknown events are acknowledged without processing."""
        mock_stripe.Webhook.construct_event.return_value = {"id": "evt_4", "type": "customer.created", "data": {"object": {}}}

        response = client.post(
            "/api/v1/webhooks/stripe",
            content=b"{}",
            headers={"stripe-signature": "valid_signature"},
        )

        assert response.status_code == 200
