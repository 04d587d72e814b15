"""Alchemy blockchain webhook verification.

Alchemy signs each delivery with HMAC-SHA256 over the raw body, keyed with the
webhook's signing key, and sends the hex digest in X-Alchemy-Signature. Block
deliveries carry the matching transactions under event.data.block.transactions;
blocks without matches arrive as heartbeats with an empty list.
"""

import hashlib
import hmac
import json
import logging
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel

from . import WebhookVerifier, MissingSignatureError, InvalidSignatureError, MalformedPayloadError

logger = logging.getLogger(__name__)

class TxStatus(str, Enum):
    """On-chain execution status of a transaction."""
    SUCCESS = 'success'
    REVERTED = 'reverted'

# Receipt status values: 1 = success, 0 = reverted
STATUS_VALUES = {
    1: TxStatus.SUCCESS,
    '1': TxStatus.SUCCESS,
    '0x1': TxStatus.SUCCESS,
    0: TxStatus.REVERTED,
    '0': TxStatus.REVERTED,
    '0x0': TxStatus.REVERTED,
}

class CryptoTransfer(BaseModel):
    """A verified on-chain transfer reported by the indexer."""
    hash: str
    from_address: str
    to_address: str
    value_wei: str  # Smallest-unit integer as a decimal string
    status: TxStatus

    @property
    def succeeded(self) -> bool:
        return self.status == TxStatus.SUCCESS

def parse_wei(value: Any) -> str:
    """Normalise a decimal or 0x-hex wei amount to a decimal string."""
    if isinstance(value, bool):
        raise MalformedPayloadError(f"Invalid transaction value: {value!r}")
    if isinstance(value, int):
        wei = value
    elif isinstance(value, str):
        text = value.strip()
        try:
            wei = int(text, 16) if text.lower().startswith('0x') else int(text, 10)
        except ValueError:
            raise MalformedPayloadError(f"Invalid transaction value: {value!r}")
    else:
        raise MalformedPayloadError(f"Invalid transaction value: {value!r}")

    if wei < 0:
        raise MalformedPayloadError(f"Negative transaction value: {value!r}")
    return str(wei)

def _address(tx: dict, key: str) -> str:
    # GraphQL webhooks nest addresses as {"address": "0x..."}
    value = tx.get(key)
    if isinstance(value, dict):
        value = value.get('address')
    if not isinstance(value, str) or not value:
        raise MalformedPayloadError(f"Transaction is missing '{key}' address")
    return value

class CryptoWebhookVerifier(WebhookVerifier):
    """Verifies Alchemy webhook signatures and extracts the reported transfer."""

    def __init__(self, signing_key: str):
        self.signing_key = signing_key

    def sign(self, payload: bytes) -> str:
        """Compute the expected signature for a raw body."""
        return hmac.new(self.signing_key.encode('utf-8'), payload, hashlib.sha256).hexdigest()

    def verify(self, payload: bytes, signature: Optional[str]) -> Optional[CryptoTransfer]:
        """Verify a delivery and return its transfer.

        Returns:
            The first transaction in the block, or None for a heartbeat
        """
        if not signature:
            raise MissingSignatureError("Missing Alchemy signature")
        if not self.signing_key:
            raise InvalidSignatureError("Alchemy signing key is not configured")
        if not hmac.compare_digest(self.sign(payload), signature.strip().lower()):
            raise InvalidSignatureError("Alchemy signature mismatch")

        try:
            body = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedPayloadError(f"Webhook body is not JSON: {e}")

        return self._extract_transfer(body)

    def _extract_transfer(self, body: Any) -> Optional[CryptoTransfer]:
        block = body
        for key in ('event', 'data', 'block'):
            if not isinstance(block, dict) or not isinstance(block.get(key), dict):
                raise MalformedPayloadError(f"Webhook payload has no '{key}' object")
            block = block[key]

        transactions = block.get('transactions') or []
        if not isinstance(transactions, list):
            raise MalformedPayloadError("Block transactions is not a list")
        if not transactions:
            return None

        tx = transactions[0]
        if not isinstance(tx, dict):
            raise MalformedPayloadError("Transaction entry is not an object")
        if not isinstance(tx.get('hash'), str) or not tx['hash']:
            raise MalformedPayloadError("Transaction is missing its hash")

        status = tx.get('status')
        if isinstance(status, bool) or status not in STATUS_VALUES:
            raise MalformedPayloadError(f"Unknown transaction status: {status!r}")

        for skipped in transactions[1:]:
            if not isinstance(skipped, dict):
                skipped = {}
            to_address = skipped.get('to')
            if isinstance(to_address, dict):
                to_address = to_address.get('address')
            logger.error(
                f"Skipped transaction {skipped.get('hash')} in block delivery for {tx['hash']} "
                f"(to {to_address}, value {skipped.get('value')}); reconcile manually"
            )

        return CryptoTransfer(
            hash=tx['hash'],
            from_address=_address(tx, 'from'),
            to_address=_address(tx, 'to'),
            value_wei=parse_wei(tx.get('value')),
            status=STATUS_VALUES[status]
        )
