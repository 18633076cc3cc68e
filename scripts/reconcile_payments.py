#!/usr/bin/env python
"""Script to replay payment reconciliation for offers stuck before 'paid'.

This script:
1. Reads accepted offers that still hold a Stripe checkout session id
   (or uses the session ids given on the command line)
2. Asks Stripe whether each session was paid
3. Runs the same reconciliation the webhook and the success redirect run

Reconciliation is idempotent, so running this after a webhook outage is
safe even when some of the sessions were already reconciled.

Usage:
    python scripts/reconcile_payments.py
    python scripts/reconcile_payments.py cs_live_123 cs_live_456

Requirements:
    - STRIPE_SECRET_KEY and Supabase credentials must be set
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.stripe import configure_stripe
from src.core.supabase import get_supabase_client
from src.models.offer import OfferStatus
from src.schemas.payment import ReconciliationOutcome
from src.services.payment_reconciliation_service import PaymentReconciliationService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def pending_session_ids() -> list[str]:
    """Session ids of accepted offers that were sent to checkout."""
    client = get_supabase_client()
    response = (
        client.table("offers")
        .select("id, checkout_session_id")
        .eq("status", OfferStatus.ACCEPTED.value)
        .execute()
    )
    return [row["checkout_session_id"] for row in response.data or [] if row.get("checkout_session_id")]


async def reconcile_sessions(session_ids: list[str]) -> dict:
    """Reconcile each session and count the outcomes."""
    service = PaymentReconciliationService()
    reconciled = 0
    unverified = 0
    degraded = 0
    failed = 0

    for session_id in session_ids:
        try:
            result = await service.reconcile_payment(session_id)
        except Exception as e:
            failed += 1
            logger.error(f"Failed to reconcile session {session_id}: {e}", exc_info=True)
            continue

        if result.outcome == ReconciliationOutcome.RECONCILED:
            reconciled += 1
            if result.degraded:
                degraded += 1
                logger.warning(f"Session {session_id} reconciled with degraded steps: {result.degraded}")
            else:
                logger.info(f"Reconciled session {session_id} (offer {result.offer_id})")
        else:
            unverified += 1
            logger.info(f"Session {session_id} is not paid, nothing to do")

    return {
        "processed": len(session_ids),
        "reconciled": reconciled,
        "unverified": unverified,
        "degraded": degraded,
        "failed": failed,
    }


async def main() -> None:
    """Main entry point for the reconciliation script."""
    configure_stripe()

    session_ids = sys.argv[1:] or pending_session_ids()
    logger.info(f"Replaying reconciliation for {len(session_ids)} checkout sessions...")

    try:
        results = await reconcile_sessions(session_ids)

        logger.info("=" * 60)
        logger.info("Reconciliation complete!")
        logger.info(f"Sessions processed: {results['processed']}")
        logger.info(f"Reconciled: {results['reconciled']}")
        logger.info(f"With degraded steps: {results['degraded']}")
        logger.info(f"Not paid / unverified: {results['unverified']}")
        logger.info(f"Failed: {results['failed']}")
        logger.info("=" * 60)

        if results["failed"] > 0:
            logger.warning("Some sessions failed to reconcile. Check logs for details.")
            sys.exit(1)

    except Exception as e:
        logger.error(f"Reconciliation failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
