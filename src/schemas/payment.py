"""Payment reconciliation result schemas."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ReconciliationOutcome(str, Enum):
    """Overall outcome of a reconciliation attempt."""

    RECONCILED = "RECONCILED"
    UNVERIFIED_PAYMENT = "UNVERIFIED_PAYMENT"


class AgreementGate(str, Enum):
    """What the agreement idempotency gate decided."""

    APPLIED = "applied"
    ALREADY_PAID = "already_paid"
    NO_AGREEMENT = "no_agreement"


class DegradedStep(BaseModel):
    """A dependency step that failed without aborting reconciliation."""

    step: str = Field(description="Step name, e.g. 'receipt_attachment'")
    error: str = Field(description="Error summary")
    code: str = Field(default="DEPENDENCY_DEGRADED", description="Error code")


class ReconciliationResult(BaseModel):
    """Result of applying a payment event.

    ``outcome`` is ``RECONCILED`` whenever payment truth (offer, agreement,
    request, calendar) was converged, even if cosmetic steps degraded.
    """

    model_config = ConfigDict(from_attributes=True)

    outcome: ReconciliationOutcome
    checkout_session_id: str | None = None
    payment_intent_id: str | None = None
    offer_id: str | None = None
    conversation_id: str | None = None
    request_id: str | None = None
    professional_id: str | None = None
    agreement_id: str | None = None
    agreement_gate: AgreementGate | None = None
    receipt_id: str | None = None
    receipt_is_placeholder: bool = False
    paid_message_created: bool = False
    notified_professional: bool = False
    degraded: list[DegradedStep] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.outcome == ReconciliationOutcome.RECONCILED

    def degrade(self, step: str, error: Exception | str) -> None:
        """Record a failed, non-critical step."""
        self.degraded.append(DegradedStep(step=step, error=str(error)[:500]))
