"""Unit tests for folding structured state out of the message log."""

from src.services.message_fold import fold_all_offers, fold_key, fold_offer_state, fold_snapshots


def _message(message_id: str, created_at: str, payload: dict) -> dict:
    return {"id": message_id, "created_at": created_at, "payload": payload}


class TestFoldSnapshots:
    """Tests for fold_snapshots."""

    def test_last_write_wins_per_field(self) -> None:
        """Later snapshots override earlier ones field by field."""
        state = fold_snapshots(
            [
                {"title": "Pintar sala", "amount": "1500", "status": "pending"},
                {"status": "accepted"},
                {"status": "paid", "checkout_url": "https://pay"},
            ]
        )

        assert state == {"title": "Pintar sala", "amount": "1500", "status": "paid", "checkout_url": "https://pay"}

    def test_none_does_not_erase(self) -> None:
        """A snapshot carrying None keeps the previous value."""
        state = fold_snapshots([{"title": "A"}, {"title": None, "status": "pending"}])

        assert state["title"] == "A"

    def test_field_filter(self) -> None:
        """Only the requested fields are folded."""
        state = fold_snapshots([{"title": "A", "kind": "offer"}], fields=["title"])

        assert state == {"title": "A"}


class TestFoldOfferState:
    """Tests for fold_offer_state and fold_all_offers."""

    def test_folds_in_creation_order_regardless_of_input_order(self) -> None:
        """Messages are sorted by created_at before folding."""
        messages = [
            _message("m3", "2026-03-01T10:02:00+00:00", {"offer_id": "o1", "status": "paid"}),
            _message("m1", "2026-03-01T10:00:00+00:00", {"offer_id": "o1", "title": "Fuga", "status": "pending"}),
            _message("m2", "2026-03-01T10:01:00+00:00", {"offer_id": "o1", "status": "accepted"}),
        ]

        state = fold_offer_state(messages, "o1")

        assert state == {"offer_id": "o1", "title": "Fuga", "status": "paid"}

    def test_unknown_offer_is_none(self) -> None:
        """An offer never mentioned has no state."""
        assert fold_offer_state([_message("m1", "t", {"offer_id": "o1"})], "o2") is None

    def test_all_offers_in_first_seen_order(self) -> None:
        """Each offer appears once, in the order it was first mentioned."""
        messages = [
            _message("m1", "2026-03-01T10:00:00+00:00", {"offer_id": "b", "status": "pending"}),
            _message("m2", "2026-03-01T10:01:00+00:00", {"offer_id": "a", "status": "pending"}),
            _message("m3", "2026-03-01T10:02:00+00:00", {"offer_id": "b", "status": "rejected", "reason": "Muy caro"}),
            _message("m4", "2026-03-01T10:03:00+00:00", {"text": "hola"}),
        ]

        states = fold_all_offers(messages)

        assert [s["offer_id"] for s in states] == ["b", "a"]
        assert states[0]["status"] == "rejected"
        assert states[0]["reason"] == "Muy caro"


def test_fold_key_for_receipts() -> None:
    """Receipt payloads fold on receipt_id like offers fold on offer_id."""
    messages = [
        _message("m1", "2026-03-01T10:00:00+00:00", {"receipt_id": "r1", "download_url": "https://a"}),
        _message("m2", "2026-03-01T10:01:00+00:00", {"receipt_id": "r1", "download_url": "https://b"}),
    ]

    assert fold_key(messages, "receipt_id", "r1") == {"receipt_id": "r1", "download_url": "https://b"}
