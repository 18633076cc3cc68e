"""Offer state machine routes."""

from uuid import UUID

from fastapi import APIRouter, Depends

from src.api.deps import CurrentUser, check_rate_limit
from src.schemas.offer import CheckoutResponse, OfferCancel, OfferReject, OfferResponse
from src.services.offer_service import OfferService

router = APIRouter(prefix="/offers", tags=["offers"])


@router.get("/{offer_id}", response_model=OfferResponse, summary="Get an offer")
async def get_offer(offer_id: UUID, user: CurrentUser) -> OfferResponse:
    offer = await OfferService().get_offer_for_participant(offer_id, user.id)
    return OfferResponse(**offer)


@router.post(
    "/{offer_id}/accept",
    response_model=OfferResponse,
    summary="Accept an offer",
    description="Professional only. Payment is requested separately by the client.",
    dependencies=[Depends(check_rate_limit("offer.accept"))],
)
async def accept_offer(offer_id: UUID, user: CurrentUser) -> OfferResponse:
    offer = await OfferService().accept_offer(offer_id, user.id)
    return OfferResponse(**offer)


@router.post(
    "/{offer_id}/reject",
    response_model=OfferResponse,
    summary="Reject an offer",
    description="Professional only; a reason is required.",
    dependencies=[Depends(check_rate_limit("offer.reject"))],
)
async def reject_offer(offer_id: UUID, data: OfferReject, user: CurrentUser) -> OfferResponse:
    offer = await OfferService().reject_offer(offer_id, user.id, data.reason)
    return OfferResponse(**offer)


@router.post(
    "/{offer_id}/cancel",
    response_model=OfferResponse,
    summary="Cancel an offer",
    description="Client while pending; either party once accepted and before payment.",
    dependencies=[Depends(check_rate_limit("offer.cancel"))],
)
async def cancel_offer(offer_id: UUID, user: CurrentUser, data: OfferCancel | None = None) -> OfferResponse:
    offer = await OfferService().cancel_offer(offer_id, user.id, data.reason if data else None)
    return OfferResponse(**offer)


@router.post(
    "/{offer_id}/checkout",
    response_model=CheckoutResponse,
    summary="Get a checkout link",
    description="Client only, for accepted offers. Reuses an open checkout session when there is one.",
    dependencies=[Depends(check_rate_limit("offer.checkout"))],
)
async def create_checkout(offer_id: UUID, user: CurrentUser) -> CheckoutResponse:
    result = await OfferService().create_checkout(offer_id, user.id)
    return CheckoutResponse(**result)
