"""Payments module for verifying payment provider webhooks.

This module provides:
- A common verifier interface over raw webhook bodies and signature headers
- Stripe card payment verification and payment intent management (payments.card)
- Alchemy blockchain webhook verification (payments.crypto)

Verifiers are stateless. They only do signature math and payload
validation and never touch the order ledger.
"""
from abc import ABC, abstractmethod
from typing import Any, Optional

class PaymentError(Exception):
    """Base exception for payment provider errors."""
    pass

class MissingSignatureError(PaymentError):
    """Raised when a webhook arrives without a signature header."""
    pass

class InvalidSignatureError(PaymentError):
    """Raised when a webhook signature does not verify."""
    pass

class MalformedPayloadError(PaymentError):
    """Raised when a verified webhook body lacks required fields."""
    pass

class PaymentGatewayError(PaymentError):
    """Raised when a call to the card payment processor fails."""
    pass

class WebhookVerifier(ABC):
    """Verifies a raw webhook delivery and extracts the payment facts."""

    @abstractmethod
    def verify(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify the signature over the raw body and parse it.

        Args:
            payload: Raw request body, exactly as received
            signature: Value of the provider's signature header

        Raises:
            MissingSignatureError: If no signature was supplied
            InvalidSignatureError: If the signature does not match
            MalformedPayloadError: If the body cannot be interpreted
        """

from .card import CardWebhookVerifier, CardPaymentGateway, CardEvent, CardEventKind, to_minor_units
from .crypto import CryptoWebhookVerifier, CryptoTransfer, TxStatus

__all__ = [
    'PaymentError',
    'MissingSignatureError',
    'InvalidSignatureError',
    'MalformedPayloadError',
    'PaymentGatewayError',
    'WebhookVerifier',
    'CardWebhookVerifier',
    'CardPaymentGateway',
    'CardEvent',
    'CardEventKind',
    'to_minor_units',
    'CryptoWebhookVerifier',
    'CryptoTransfer',
    'TxStatus',
]
