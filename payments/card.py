"""Stripe card payments: webhook verification and payment intents."""

import asyncio
import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from functools import partial
from typing import Dict, Optional

import stripe
from pydantic import BaseModel

from . import (
    WebhookVerifier,
    MissingSignatureError,
    InvalidSignatureError,
    MalformedPayloadError,
    PaymentGatewayError,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 300

class CardEventKind(str, Enum):
    """Card webhook events the order core distinguishes."""
    PAYMENT_SUCCEEDED = 'payment_succeeded'
    PAYMENT_FAILED = 'payment_failed'
    OTHER = 'other'

EVENT_KINDS = {
    'payment_intent.succeeded': CardEventKind.PAYMENT_SUCCEEDED,
    'payment_intent.payment_failed': CardEventKind.PAYMENT_FAILED,
}

class CardEvent(BaseModel):
    """A verified Stripe webhook event."""
    event_id: Optional[str] = None
    event_type: str
    kind: CardEventKind
    payment_intent_id: Optional[str] = None
    amount_received: Optional[int] = None  # Minor units (cents)
    currency: Optional[str] = None
    failure_message: Optional[str] = None

def to_minor_units(amount: Decimal) -> int:
    """Convert a two-decimal currency amount to integer minor units."""
    return int((Decimal(amount) * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))

class CardWebhookVerifier(WebhookVerifier):
    """Verifies Stripe-Signature headers over raw webhook bodies."""

    def __init__(self, webhook_secret: str, tolerance: int = DEFAULT_TOLERANCE):
        """Initialize the verifier.

        Args:
            webhook_secret: Endpoint signing secret (whsec_...)
            tolerance: Maximum age in seconds of the signed timestamp
        """
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def verify(self, payload: bytes, signature: Optional[str]) -> CardEvent:
        if not signature:
            raise MissingSignatureError("Missing Stripe signature")
        if not self.webhook_secret:
            raise InvalidSignatureError("Stripe webhook secret is not configured")

        try:
            body = payload.decode('utf-8')
        except UnicodeDecodeError:
            raise MalformedPayloadError("Webhook body is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise InvalidSignatureError(f"Stripe signature verification failed: {e}")

        try:
            event = json.loads(body)
        except json.JSONDecodeError as e:
            raise MalformedPayloadError(f"Webhook body is not JSON: {e}")

        return self._parse_event(event)

    def _parse_event(self, event) -> CardEvent:
        if not isinstance(event, dict) or not isinstance(event.get('type'), str):
            raise MalformedPayloadError("Stripe event has no type")

        event_type = event['type']
        kind = EVENT_KINDS.get(event_type, CardEventKind.OTHER)
        if kind == CardEventKind.OTHER:
            return CardEvent(event_id=event.get('id'), event_type=event_type, kind=kind)

        intent = (event.get('data') or {}).get('object')
        if not isinstance(intent, dict) or not intent.get('id'):
            raise MalformedPayloadError(f"{event_type} event has no payment intent")

        amount = intent.get('amount_received')
        if amount is not None and (isinstance(amount, bool) or not isinstance(amount, int)):
            raise MalformedPayloadError(f"Invalid amount_received: {amount!r}")

        failure = intent.get('last_payment_error') or {}
        return CardEvent(
            event_id=event.get('id'),
            event_type=event_type,
            kind=kind,
            payment_intent_id=intent['id'],
            amount_received=amount,
            currency=intent.get('currency'),
            failure_message=failure.get('message') if isinstance(failure, dict) else None
        )

class CardPaymentGateway:
    """Creates and cancels Stripe payment intents.

    The Stripe client is synchronous, so calls run in the default executor.
    """

    def __init__(self, api_key: str, currency: str = 'usd', client=stripe):
        self.api_key = api_key
        self.currency = currency
        self._client = client

    async def _call(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(func, *args, api_key=self.api_key, **kwargs))

    async def create_payment_intent(self, amount: Decimal, metadata: Dict[str, str]) -> Dict[str, str]:
        """Create a payment intent for an amount in currency units.

        Returns:
            Dict with the intent id and the client secret the buyer pays against

        Raises:
            PaymentGatewayError: If the processor rejects the request
        """
        if not self.api_key:
            raise PaymentGatewayError("Stripe secret key is not configured")

        try:
            intent = await self._call(
                self._client.PaymentIntent.create,
                amount=to_minor_units(amount),
                currency=self.currency,
                metadata=metadata,
                automatic_payment_methods={'enabled': True}
            )
        except self._client.StripeError as e:
            logger.error(f"Stripe error creating payment intent: {e}")
            raise PaymentGatewayError(f"Failed to create payment intent: {e}")

        logger.info(f"Created payment intent {intent['id']} for {amount} {self.currency}")
        return {'id': intent['id'], 'client_secret': intent['client_secret']}

    async def cancel_payment_intent(self, payment_intent_id: str) -> bool:
        """Cancel an intent whose order never materialised or was released.

        Returns:
            True if cancelled, False if the processor refused (logged)
        """
        try:
            await self._call(self._client.PaymentIntent.cancel, payment_intent_id)
        except self._client.StripeError as e:
            logger.warning(f"Could not cancel payment intent {payment_intent_id}: {e}")
            return False
        logger.info(f"Cancelled payment intent {payment_intent_id}")
        return True
