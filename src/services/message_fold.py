"""Rebuild structured state from the append-only message log.

Offer, quote and receipt state is never stored on a single message. Each
message contributes a partial snapshot; the current state is the
field-by-field latest value over all snapshots that share an id. These
helpers are pure: they take rows already read from the store.
"""

from collections.abc import Iterable, Mapping
from typing import Any

OFFER_FIELDS = (
    "title",
    "description",
    "amount",
    "currency",
    "service_date",
    "status",
    "checkout_url",
    "reason",
)


def _sort_key(message: Mapping[str, Any]) -> tuple[str, str]:
    return (str(message.get("created_at") or ""), str(message.get("id") or ""))


def fold_snapshots(
    snapshots: Iterable[Mapping[str, Any]],
    fields: Iterable[str] | None = None,
) -> dict[str, Any]:
    """Merge snapshots oldest to newest, last write wins per field.

    A snapshot that omits a field (or carries it as None) leaves the
    previous value in place.

    Args:
        snapshots: Payload dicts, oldest first.
        fields: Restrict the merge to these fields. All keys when None.

    Returns:
        The merged state.
    """
    allowed = set(fields) if fields is not None else None
    state: dict[str, Any] = {}
    for snapshot in snapshots:
        for key, value in snapshot.items():
            if value is None:
                continue
            if allowed is not None and key not in allowed:
                continue
            state[key] = value
    return state


def payloads_for_key(
    messages: Iterable[Mapping[str, Any]],
    key: str,
    value: str | None = None,
) -> list[dict[str, Any]]:
    """Payloads carrying ``key`` (optionally equal to ``value``), oldest first."""
    selected = []
    for message in sorted(messages, key=_sort_key):
        payload = message.get("payload") or {}
        if key not in payload:
            continue
        if value is not None and str(payload[key]) != str(value):
            continue
        selected.append(payload)
    return selected


def fold_key(
    messages: Iterable[Mapping[str, Any]],
    key: str,
    value: str,
    fields: Iterable[str] | None = None,
) -> dict[str, Any] | None:
    """Fold every payload whose ``key`` equals ``value``.

    Returns:
        The merged state including ``key``, or None when no message matches.
    """
    payloads = payloads_for_key(messages, key, value)
    if not payloads:
        return None
    state = fold_snapshots(payloads, fields)
    state[key] = value
    return state


def fold_offer_state(messages: Iterable[Mapping[str, Any]], offer_id: str) -> dict[str, Any] | None:
    """Current rendered state of one offer."""
    return fold_key(messages, "offer_id", offer_id, OFFER_FIELDS)


def fold_all_offers(messages: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Folded state of every offer mentioned in ``messages``, in first-seen order."""
    ordered = sorted(messages, key=_sort_key)
    offer_ids: list[str] = []
    for message in ordered:
        offer_id = (message.get("payload") or {}).get("offer_id")
        if offer_id and str(offer_id) not in offer_ids:
            offer_ids.append(str(offer_id))
    return [
        state
        for offer_id in offer_ids
        if (state := fold_offer_state(ordered, offer_id)) is not None
    ]
