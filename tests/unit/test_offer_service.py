"""Unit tests for the offer state machine."""

from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.api.middleware.error_handler import InvalidTransitionError, PermissionDeniedError, ValidationError
from src.schemas.offer import OfferCreate
from src.services.conversation_service import ConversationService, stable_message_id
from src.services.offer_service import OfferService, split_service_date
from tests.conftest import CLIENT_ID, PRO_ID, STRANGER_ID
from tests.fake_supabase import FakeSupabase


def seed_offer(fake_db: FakeSupabase, conversation: dict[str, Any], **overrides: Any) -> dict[str, Any]:
    row = {
        "conversation_id": conversation["id"],
        "client_id": CLIENT_ID,
        "professional_id": PRO_ID,
        "title": "Reparar fuga",
        "amount": 1500.0,
        "currency": "MXN",
        "service_date": "2026-04-12T16:00:00+00:00",
        "status": "pending",
        **overrides,
    }
    return fake_db.seed("offers", row)[0]


class TestCreateOffer:
    """Tests for create_offer."""

    @pytest.mark.asyncio
    async def test_creates_pending_offer_and_message(
        self, fake_db: FakeSupabase, marketplace: dict, realtime_publish: AsyncMock
    ) -> None:
        """A new offer is pending and announced with an offer message."""
        conversation = marketplace["conversation"]

        offer = await OfferService().create_offer(
            conversation["id"],
            CLIENT_ID,
            OfferCreate(title="Reparar fuga", amount=Decimal("1500.00"), currency="mxn"),
        )

        assert offer["status"] == "pending"
        assert offer["professional_id"] == PRO_ID
        assert offer["currency"] == "MXN"
        messages = fake_db.rows("messages", conversation_id=conversation["id"])
        assert len(messages) == 1
        assert messages[0]["message_type"] == "offer"
        assert messages[0]["payload"]["offer_id"] == offer["id"]
        assert messages[0]["payload"]["kind"] == "offer"
        assert fake_db.row("conversations", conversation["id"])["last_message_at"] == messages[0]["created_at"]
        realtime_publish.assert_awaited()

    @pytest.mark.asyncio
    async def test_rejects_unsupported_currency(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Currencies outside the supported list are refused."""
        with pytest.raises(ValidationError, match="EUR"):
            await OfferService().create_offer(
                marketplace["conversation"]["id"],
                CLIENT_ID,
                OfferCreate(title="Reparar fuga", amount=Decimal("100"), currency="EUR"),
            )
        assert fake_db.rows("offers") == []

    @pytest.mark.asyncio
    async def test_only_the_client_can_offer(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """The professional cannot make an offer to themselves."""
        with pytest.raises(PermissionDeniedError):
            await OfferService().create_offer(
                marketplace["conversation"]["id"],
                PRO_ID,
                OfferCreate(title="Reparar fuga", amount=Decimal("100")),
            )


class TestAcceptOffer:
    """Tests for accept_offer."""

    @pytest.mark.asyncio
    async def test_professional_accepts(
        self, fake_db: FakeSupabase, marketplace: dict, sent_emails: AsyncMock
    ) -> None:
        """Accepting mirrors an accepted agreement and notifies the client."""
        offer = seed_offer(fake_db, marketplace["conversation"])

        updated = await OfferService().accept_offer(offer["id"], PRO_ID)

        assert updated["status"] == "accepted"
        agreements = fake_db.rows("agreements", request_id=marketplace["request"]["id"])
        assert len(agreements) == 1
        assert agreements[0]["status"] == "accepted"
        assert agreements[0]["amount"] == 1500.0
        status_messages = [m for m in fake_db.rows("messages") if m["message_type"] == "system"]
        assert status_messages[0]["payload"]["status"] == "accepted"
        assert sent_emails.await_args.args[0] == "ana@example.com"

    @pytest.mark.asyncio
    async def test_client_cannot_accept(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Only the professional accepts; the status is left unchanged."""
        offer = seed_offer(fake_db, marketplace["conversation"])

        with pytest.raises(PermissionDeniedError):
            await OfferService().accept_offer(offer["id"], CLIENT_ID)
        assert fake_db.row("offers", offer["id"])["status"] == "pending"

    @pytest.mark.asyncio
    async def test_stranger_cannot_accept(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Non-participants are refused before the state machine runs."""
        offer = seed_offer(fake_db, marketplace["conversation"])

        with pytest.raises(PermissionDeniedError):
            await OfferService().accept_offer(offer["id"], STRANGER_ID)

    @pytest.mark.asyncio
    async def test_lost_race_reports_winning_status(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """A compare-and-set that finds the row moved reports the new status."""
        offer = seed_offer(fake_db, marketplace["conversation"], status="canceled")
        stale = {**offer, "status": "pending"}
        service = OfferService()

        with patch.object(service, "get_offer", AsyncMock(side_effect=[stale, offer])):
            with pytest.raises(InvalidTransitionError) as exc_info:
                await service.accept_offer(offer["id"], PRO_ID)

        assert exc_info.value.current == "canceled"
        assert exc_info.value.requested == "accepted"
        assert fake_db.row("offers", offer["id"])["status"] == "canceled"


class TestIllegalTransitions:
    """Disallowed transitions fail with INVALID_TRANSITION and change nothing."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["accepted", "rejected", "canceled", "expired", "paid"])
    async def test_accept_outside_pending(self, fake_db: FakeSupabase, marketplace: dict, status: str) -> None:
        """Only pending offers can be accepted."""
        offer = seed_offer(fake_db, marketplace["conversation"], status=status)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await OfferService().accept_offer(offer["id"], PRO_ID)

        assert exc_info.value.error_type == "INVALID_TRANSITION"
        assert exc_info.value.current == status
        assert fake_db.row("offers", offer["id"])["status"] == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["accepted", "rejected", "canceled", "expired", "paid"])
    async def test_reject_outside_pending(self, fake_db: FakeSupabase, marketplace: dict, status: str) -> None:
        """Only pending offers can be rejected."""
        offer = seed_offer(fake_db, marketplace["conversation"], status=status)

        with pytest.raises(InvalidTransitionError):
            await OfferService().reject_offer(offer["id"], PRO_ID, "Muy caro")
        assert fake_db.row("offers", offer["id"])["status"] == status

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["rejected", "canceled", "expired", "paid"])
    async def test_cancel_terminal_offer(self, fake_db: FakeSupabase, marketplace: dict, status: str) -> None:
        """Terminal offers cannot be canceled."""
        offer = seed_offer(fake_db, marketplace["conversation"], status=status)

        with pytest.raises(InvalidTransitionError):
            await OfferService().cancel_offer(offer["id"], CLIENT_ID)
        assert fake_db.row("offers", offer["id"])["status"] == status

    @pytest.mark.asyncio
    async def test_pending_cannot_be_paid(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Payment only applies to accepted offers."""
        offer = seed_offer(fake_db, marketplace["conversation"])

        with pytest.raises(InvalidTransitionError):
            await OfferService().mark_paid(offer, "pi_123")
        assert fake_db.row("offers", offer["id"])["status"] == "pending"

    @pytest.mark.asyncio
    async def test_expire_only_from_pending(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Accepted offers do not expire."""
        offer = seed_offer(fake_db, marketplace["conversation"], status="accepted")

        with pytest.raises(InvalidTransitionError):
            await OfferService().expire_offer(offer["id"])


class TestRejectAndCancel:
    """Tests for reject_offer, cancel_offer and expire_offer."""

    @pytest.mark.asyncio
    async def test_rejection_folds_into_offer_state(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """The folded state shows the rejection and its reason; no agreement exists."""
        conversation = marketplace["conversation"]
        offer = await OfferService().create_offer(
            conversation["id"],
            CLIENT_ID,
            OfferCreate(title="Pintar recámara", amount=Decimal("1500")),
        )

        await OfferService().reject_offer(offer["id"], PRO_ID, "too expensive")

        states = await ConversationService().offer_states(conversation["id"])
        assert len(states) == 1
        assert states[0]["status"] == "rejected"
        assert states[0]["reason"] == "too expensive"
        assert states[0]["title"] == "Pintar recámara"
        assert fake_db.rows("agreements") == []

    @pytest.mark.asyncio
    async def test_reject_requires_reason(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """A blank reason is refused."""
        offer = seed_offer(fake_db, marketplace["conversation"])

        with pytest.raises(ValidationError):
            await OfferService().reject_offer(offer["id"], PRO_ID, "   ")
        assert fake_db.row("offers", offer["id"])["status"] == "pending"

    @pytest.mark.asyncio
    async def test_professional_cannot_cancel_pending(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Pending offers are withdrawn by the client only."""
        offer = seed_offer(fake_db, marketplace["conversation"])

        with pytest.raises(PermissionDeniedError):
            await OfferService().cancel_offer(offer["id"], PRO_ID)

    @pytest.mark.asyncio
    async def test_cancel_accepted_expires_checkout(
        self, fake_db: FakeSupabase, marketplace: dict, mock_stripe: MagicMock
    ) -> None:
        """Either party may cancel an unpaid accepted offer; its checkout dies."""
        offer = seed_offer(
            fake_db,
            marketplace["conversation"],
            status="accepted",
            checkout_url="https://checkout.stripe.com/c/cs_1",
            checkout_session_id="cs_1",
        )
        fake_db.seed(
            "agreements",
            {"request_id": marketplace["request"]["id"], "professional_id": PRO_ID, "amount": 1500.0, "status": "accepted"},
        )

        updated = await OfferService().cancel_offer(offer["id"], PRO_ID, "Ya no tengo disponibilidad")

        assert updated["status"] == "canceled"
        assert updated["checkout_url"] is None
        mock_stripe.checkout.Session.expire.assert_called_once_with("cs_1")
        assert fake_db.rows("agreements")[0]["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_system_expires_pending(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Pending offers can be expired by the system."""
        offer = seed_offer(fake_db, marketplace["conversation"])

        updated = await OfferService().expire_offer(offer["id"])

        assert updated["status"] == "expired"


class TestMarkPaid:
    """Tests for mark_paid."""

    @pytest.mark.asyncio
    async def test_first_call_moves_second_is_noop(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Only the first writer moves accepted -> paid."""
        offer = seed_offer(fake_db, marketplace["conversation"], status="accepted", checkout_url="https://pay")
        service = OfferService()

        assert await service.mark_paid(offer, "pi_123") is True
        assert await service.mark_paid(fake_db.row("offers", offer["id"]), "pi_123") is False

        stored = fake_db.row("offers", offer["id"])
        assert stored["status"] == "paid"
        assert stored["payment_intent_id"] == "pi_123"
        assert stored["checkout_url"] is None

    @pytest.mark.asyncio
    async def test_concurrent_writer_already_paid(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """A stale accepted copy of an offer that is now paid is not an error."""
        offer = seed_offer(fake_db, marketplace["conversation"], status="paid")

        assert await OfferService().mark_paid({**offer, "status": "accepted"}, "pi_123") is False


class TestCreateCheckout:
    """Tests for create_checkout."""

    @pytest.mark.asyncio
    async def test_creates_session_with_fees(
        self, fake_db: FakeSupabase, marketplace: dict, mock_stripe: MagicMock
    ) -> None:
        """The client is charged service plus commission plus tax."""
        offer = seed_offer(fake_db, marketplace["conversation"], status="accepted")
        session = MagicMock()
        session.id = "cs_new"
        session.url = "https://checkout.stripe.com/c/cs_new"
        mock_stripe.checkout.Session.create.return_value = session

        result = await OfferService().create_checkout(offer["id"], CLIENT_ID)

        assert result["total_cents"] == 182700
        assert result["checkout_url"] == "https://checkout.stripe.com/c/cs_new"
        assert result["reused"] is False

        kwargs = mock_stripe.checkout.Session.create.call_args.kwargs
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 182700
        assert kwargs["line_items"][0]["price_data"]["currency"] == "mxn"
        assert kwargs["metadata"]["offer_id"] == offer["id"]
        assert kwargs["metadata"]["proId"] == PRO_ID
        assert kwargs["metadata"]["request_id"] == marketplace["request"]["id"]
        assert kwargs["metadata"]["scheduled_date"] == "2026-04-12"
        assert kwargs["metadata"]["scheduled_time"] == "16:00"
        assert "session_id={CHECKOUT_SESSION_ID}" in kwargs["success_url"]

        stored = fake_db.row("offers", offer["id"])
        assert stored["checkout_session_id"] == "cs_new"
        pending_id = stable_message_id(f"checkout:{offer['id']}:cs_new")
        assert fake_db.row("messages", pending_id)["payload"]["checkout_url"] == session.url

    @pytest.mark.asyncio
    async def test_reuses_open_session(
        self, fake_db: FakeSupabase, marketplace: dict, mock_stripe: MagicMock
    ) -> None:
        """An offer with an open session gets the same URL back."""
        offer = seed_offer(
            fake_db,
            marketplace["conversation"],
            status="accepted",
            checkout_url="https://checkout.stripe.com/c/cs_open",
            checkout_session_id="cs_open",
        )
        mock_stripe.checkout.Session.retrieve.return_value = {
            "id": "cs_open",
            "status": "open",
            "url": "https://checkout.stripe.com/c/cs_open",
        }

        result = await OfferService().create_checkout(offer["id"], CLIENT_ID)

        assert result["reused"] is True
        assert result["session_id"] == "cs_open"
        mock_stripe.checkout.Session.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_only_client_pays(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """The professional cannot open a checkout."""
        offer = seed_offer(fake_db, marketplace["conversation"], status="accepted")

        with pytest.raises(PermissionDeniedError):
            await OfferService().create_checkout(offer["id"], PRO_ID)

    @pytest.mark.asyncio
    async def test_pending_offer_cannot_be_paid(self, fake_db: FakeSupabase, marketplace: dict) -> None:
        """Checkout requires an accepted offer."""
        offer = seed_offer(fake_db, marketplace["conversation"])

        with pytest.raises(InvalidTransitionError):
            await OfferService().create_checkout(offer["id"], CLIENT_ID)


class TestSplitServiceDate:
    """Tests for split_service_date."""

    def test_bare_date(self) -> None:
        """A date without time has no time part."""
        assert split_service_date("2026-04-12") == ("2026-04-12", None)

    def test_offset_is_normalized_to_utc(self) -> None:
        """Aware datetimes are converted to UTC."""
        assert split_service_date("2026-04-12T15:30:00-06:00") == ("2026-04-12", "21:30")

    def test_naive_datetime(self) -> None:
        """Naive datetimes are taken as given."""
        assert split_service_date("2026-04-12T08:15") == ("2026-04-12", "08:15")

    @pytest.mark.parametrize("raw", [None, "", "mañana temprano"])
    def test_unparseable(self, raw: str | None) -> None:
        """Garbage yields no date and no time."""
        assert split_service_date(raw) == (None, None)
