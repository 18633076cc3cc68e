"""Browser redirect target after Stripe checkout."""

import logging

from fastapi import APIRouter, Query, status
from fastapi.responses import RedirectResponse

from src.core.config import get_settings
from src.services.payment_reconciliation_service import PaymentReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payments"])


@router.get(
    "/success",
    status_code=status.HTTP_302_FOUND,
    summary="Checkout success redirect",
    description="Reconciles the paid session, then redirects the browser back to the conversation.",
)
async def payment_success(
    session_id: str | None = Query(default=None, description="Stripe Checkout Session id"),
    cid: str | None = Query(default=None, description="Conversation id"),
    rid: str | None = Query(default=None, description="Request id"),
) -> RedirectResponse:
    """Reconcile from the redirect.

    The webhook applies the same reconciliation, so this is safe to hit
    repeatedly (page refresh) and in any order relative to the webhook.
    The redirect happens whether or not reconciliation succeeded.
    """
    conversation_id = cid
    if session_id:
        try:
            result = await PaymentReconciliationService().reconcile_payment(
                session_id, conversation_id_hint=cid, request_id_hint=rid
            )
            conversation_id = conversation_id or result.conversation_id
            logger.info(
                "Redirect reconciliation for session %s (request %s): %s",
                session_id,
                rid,
                result.outcome.value,
            )
        except Exception as e:
            logger.error("Redirect reconciliation failed for session %s: %s", session_id, str(e))

    base = get_settings().frontend_url.rstrip("/")
    target = f"{base}/mensajes/{conversation_id}" if conversation_id else f"{base}/mensajes"
    return RedirectResponse(url=target, status_code=status.HTTP_302_FOUND)
