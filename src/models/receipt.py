"""Receipt model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict
from uuid import UUID


class Receipt(TypedDict):
    """Receipt table row representation.

    Amounts are integer minor units (cents). ``checkout_session_id`` is the
    idempotency key; ``folio`` is generated once and then persisted.
    """

    id: UUID
    checkout_session_id: str | None
    payment_intent_id: str | None
    offer_id: UUID | None
    request_id: UUID | None
    conversation_id: UUID | None
    client_id: UUID | None
    professional_id: UUID | None
    folio: str | None
    service_amount: int
    commission_amount: int
    iva_amount: int
    total_amount: int
    currency: str
    created_at: datetime
