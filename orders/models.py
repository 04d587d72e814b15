"""Order state, payment method and request models."""

import re
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

TX_HASH_RE = re.compile(r'^0x[0-9a-fA-F]{64}$')
ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')

# Wei resolution
MAX_CRYPTO_DECIMALS = 18

class OrderStatus(str, Enum):
    PENDING = 'pending'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    REFUNDED = 'refunded'

class ItemStatus(str, Enum):
    AVAILABLE = 'available'
    RESERVED = 'reserved'
    SOLD = 'sold'

class PaymentMethod(str, Enum):
    CARD = 'card'
    CRYPTO = 'crypto'

class FinalizeStatus(str, Enum):
    """Outcome of a finalization attempt."""
    COMPLETED = 'completed'
    ALREADY_PROCESSED = 'already_processed'
    ORDER_NOT_FOUND = 'order_not_found'
    NO_PENDING_ORDER = 'no_pending_order'
    ORDER_NOT_PENDING = 'order_not_pending'
    RECIPIENT_WALLET_MISMATCH = 'recipient_wallet_mismatch'
    AMOUNT_MISMATCH = 'amount_mismatch'
    ITEM_NOT_RESERVED = 'item_not_reserved'
    DB_ERROR = 'db_error'

class FinalizeResult(BaseModel):
    """Result of finalize_card_order / finalize_crypto_order.

    `success` is true for completed and already_processed. Everything else
    leaves the order untouched.
    """
    success: bool
    status: FinalizeStatus
    order_id: Optional[UUID] = None
    detail: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return self.status == FinalizeStatus.DB_ERROR

class CryptoPaymentDetails(BaseModel):
    """What the buyer's wallet reported after broadcasting the transfer."""
    model_config = ConfigDict(extra='forbid')

    tx_hash: str
    buyer_wallet_address: str
    amount_paid_crypto: Decimal

    @field_validator('tx_hash')
    @classmethod
    def check_tx_hash(cls, value: str) -> str:
        if not TX_HASH_RE.match(value):
            raise ValueError('must be a 0x-prefixed 32-byte hex transaction hash')
        return value.lower()

    @field_validator('buyer_wallet_address')
    @classmethod
    def check_address(cls, value: str) -> str:
        if not ADDRESS_RE.match(value):
            raise ValueError('must be a 0x-prefixed 20-byte hex address')
        return value

    @field_validator('amount_paid_crypto')
    @classmethod
    def check_amount(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or value <= 0:
            raise ValueError('must be a positive amount')
        if -value.as_tuple().exponent > MAX_CRYPTO_DECIMALS:
            raise ValueError(f'at most {MAX_CRYPTO_DECIMALS} decimal places allowed')
        return value

class CreateOrderRequest(BaseModel):
    """Request model for reserving an item."""
    model_config = ConfigDict(extra='forbid')

    item_id: UUID
    payment_method: PaymentMethod
    crypto: Optional[CryptoPaymentDetails] = None

    @model_validator(mode='after')
    def check_payment_details(self):
        if self.payment_method == PaymentMethod.CRYPTO and self.crypto is None:
            raise ValueError('crypto payment details are required for crypto orders')
        if self.payment_method == PaymentMethod.CARD and self.crypto is not None:
            raise ValueError('crypto payment details are not accepted for card orders')
        return self
