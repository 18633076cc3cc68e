"""Agreement Pydantic schemas for API request/response models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.models.agreement import AgreementStatus


class AgreementUpdate(BaseModel):
    """Schema for PATCH /agreements/{id}: edit amount and/or status."""

    amount: float | None = Field(default=None, gt=0, description="New agreed amount (only before payment)")
    status: AgreementStatus | None = Field(default=None, description="Requested status")

    @model_validator(mode="after")
    def require_change(self) -> "AgreementUpdate":
        if self.amount is None and self.status is None:
            raise ValueError("amount or status is required")
        return self


class AgreementResponse(BaseModel):
    """Schema for agreement API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID = Field(description="Agreement unique identifier")
    request_id: UUID = Field(description="Request the agreement binds")
    professional_id: UUID = Field(description="Assigned professional")
    amount: float | None = Field(default=None, description="Agreed amount")
    status: AgreementStatus = Field(description="Current status")
    completed_by_pro: bool = Field(default=False, description="Professional confirmed completion")
    completed_by_client: bool = Field(default=False, description="Client confirmed completion")
    created_at: datetime = Field(description="Creation timestamp")
    updated_at: datetime | None = Field(default=None, description="Last update timestamp")
