"""Agreement routes."""

from uuid import UUID

from fastapi import APIRouter, Depends

from src.api.deps import CurrentUser, check_rate_limit
from src.schemas.agreement import AgreementResponse, AgreementUpdate
from src.services.agreement_service import AgreementService

router = APIRouter(prefix="/agreements", tags=["agreements"])


@router.get("/{agreement_id}", response_model=AgreementResponse, summary="Get an agreement")
async def get_agreement(agreement_id: UUID, user: CurrentUser) -> AgreementResponse:
    agreement, _, _ = await AgreementService().require_participant(agreement_id, user.id)
    return AgreementResponse(**agreement)


@router.patch(
    "/{agreement_id}",
    response_model=AgreementResponse,
    summary="Update an agreement",
    description="Change the amount (before payment) and/or move the status. 'paid' is never accepted here.",
    dependencies=[Depends(check_rate_limit("agreement.update"))],
)
async def update_agreement(agreement_id: UUID, data: AgreementUpdate, user: CurrentUser) -> AgreementResponse:
    service = AgreementService()
    agreement = None
    if data.amount is not None:
        agreement = await service.update_amount(agreement_id, user.id, data.amount)
    if data.status is not None:
        agreement = await service.transition(agreement_id, user.id, data.status)
    return AgreementResponse(**agreement)


@router.post(
    "/{agreement_id}/complete",
    response_model=AgreementResponse,
    summary="Confirm completion",
    description="Each side confirms the work is done; both confirmations complete the agreement.",
    dependencies=[Depends(check_rate_limit("agreement.complete"))],
)
async def confirm_completion(agreement_id: UUID, user: CurrentUser) -> AgreementResponse:
    agreement = await AgreementService().confirm_completion(agreement_id, user.id)
    return AgreementResponse(**agreement)
