"""Payment provider webhook endpoints.

Both endpoints verify the raw request bytes before any JSON parsing. A 5xx
response asks the provider to redeliver; finalization is idempotent, so
redelivery is always safe.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from orders import OrderManager, FinalizeStatus
from payments import (
    CardEventKind,
    CardWebhookVerifier,
    CryptoWebhookVerifier,
    MissingSignatureError,
    InvalidSignatureError,
    MalformedPayloadError,
)
from ..dependencies import get_order_manager, get_card_verifier, get_crypto_verifier

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"]
)

@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    verifier: CardWebhookVerifier = Depends(get_card_verifier),
    manager: OrderManager = Depends(get_order_manager)
):
    """Handle Stripe payment intent events."""
    payload = await request.body()
    try:
        event = verifier.verify(payload, stripe_signature)
    except MissingSignatureError as e:
        logger.warning(f"Stripe webhook rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe signature")
    except InvalidSignatureError as e:
        logger.warning(f"Stripe webhook rejected: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe signature")
    except MalformedPayloadError as e:
        logger.error(f"Malformed Stripe webhook: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Malformed event")

    if event.kind == CardEventKind.PAYMENT_FAILED:
        logger.info(
            f"Payment intent {event.payment_intent_id} failed: {event.failure_message}"
        )
        return {'received': True}
    if event.kind != CardEventKind.PAYMENT_SUCCEEDED:
        logger.debug(f"Ignoring Stripe event {event.event_type}")
        return {'received': True}

    try:
        result = await manager.finalize_card_order(
            event.payment_intent_id,
            amount_received=event.amount_received
        )
    except Exception as e:
        logger.exception(f"Unexpected error finalizing payment intent {event.payment_intent_id}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={'received': False, 'error': 'internal_error'}
        )

    if result.success:
        return {'received': True, 'status': result.status.value}
    if result.retryable:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={'received': False, 'status': result.status.value}
        )
    return {'received': True, 'status': 'logic_error', 'reason': result.status.value}

@router.post("/crypto")
async def crypto_webhook(
    request: Request,
    x_alchemy_signature: Optional[str] = Header(None),
    verifier: CryptoWebhookVerifier = Depends(get_crypto_verifier),
    manager: OrderManager = Depends(get_order_manager)
):
    """Handle Alchemy block activity deliveries."""
    payload = await request.body()
    try:
        transfer = verifier.verify(payload, x_alchemy_signature)
    except (MissingSignatureError, InvalidSignatureError) as e:
        logger.warning(f"Crypto webhook rejected: {e}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")
    except MalformedPayloadError as e:
        # Redelivery would not fix the body
        logger.error(f"Malformed crypto webhook: {e}")
        return {'success': False, 'status': 'malformed_payload'}

    if transfer is None:
        return {'status': 'no_activity'}
    if not transfer.succeeded:
        logger.info(f"Transaction {transfer.hash} reverted on chain")
        return {'status': 'tx_failed_on_chain'}

    try:
        result = await manager.finalize_crypto_order(transfer)
    except Exception as e:
        logger.exception(f"Unexpected error finalizing transaction {transfer.hash}: {e}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={'success': False, 'status': 'internal_error'}
        )

    if result.retryable:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={'success': False, 'status': result.status.value}
        )
    if result.status == FinalizeStatus.COMPLETED:
        return {'success': True, 'status': 'success'}
    return {'success': result.success, 'status': result.status.value}
