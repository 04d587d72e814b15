"""Orders module for reserving items and finalizing their payments.

This module handles:
- Reserving an item with a pending order (card or crypto)
- Finalizing orders from verified payment events, exactly once
- Order status queries for the confirmation poller
- Cancelling abandoned card orders and expiring stale pending orders
"""
import logging
from decimal import Decimal
from typing import Dict, Optional, Union
from uuid import UUID

from asyncpg.pool import Pool
from asyncpg.exceptions import (
    PostgresError,
    InterfaceError,
    UniqueViolationError,
    ForeignKeyViolationError,
)
from web3 import Web3

from config import Settings, get_settings
from database import get_pool
from database.exceptions import DatabaseError
from payments import CardPaymentGateway, CryptoTransfer, to_minor_units
from .models import (
    OrderStatus,
    ItemStatus,
    PaymentMethod,
    FinalizeStatus,
    FinalizeResult,
    CryptoPaymentDetails,
    CreateOrderRequest,
)

logger = logging.getLogger(__name__)

# Failures that abort a store transaction
STORE_ERRORS = (PostgresError, InterfaceError, OSError)

class OrderError(Exception):
    """Base class for order-related errors."""
    pass

class ValidationError(OrderError):
    """Raised when order input is rejected before any write."""
    pass

class DuplicatePaymentError(ValidationError):
    """Raised when a transaction hash or payment intent is already on an order."""
    pass

class SellerWalletMissingError(ValidationError):
    """Raised when a crypto order targets a seller without a payout wallet."""
    pass

class ItemNotFoundError(OrderError):
    """Raised when the requested item does not exist."""
    pass

class ItemNotAvailableError(OrderError):
    """Raised when the item is already reserved or sold."""
    pass

class OrderNotFoundError(OrderError):
    """Raised when the requested order does not exist."""
    pass

class OrderPermissionError(OrderError):
    """Raised when a user acts on an order that is not theirs."""
    pass

class OrderStateError(OrderError):
    """Raised when an order is not in a state that allows the operation."""
    pass

class _ItemNotReserved(Exception):
    """Aborts a finalization transaction when the item cannot be marked sold."""
    pass

class OrderManager:
    """Manages order reservation, finalization and recovery."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        settings: Optional[Settings] = None,
        card_gateway: Optional[CardPaymentGateway] = None
    ) -> None:
        """Initialize order manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            settings: Optional settings. If not provided, process settings are used.
            card_gateway: Optional Stripe gateway. Built from settings if not provided.
        """
        self.pool = pool
        self.settings = settings or get_settings()
        self.card_gateway = card_gateway or CardPaymentGateway(
            self.settings.stripe_secret_key,
            currency=self.settings.currency
        )

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_pending_order(
        self,
        buyer_id: str,
        item_id: UUID,
        payment_method: Union[PaymentMethod, str],
        details: Optional[CryptoPaymentDetails] = None
    ) -> Dict:
        """Reserve an item for a buyer with a pending order.

        Args:
            buyer_id: Authenticated buyer's user id
            item_id: Item to reserve
            payment_method: 'card' or 'crypto'
            details: Transfer details reported by the buyer's wallet (crypto only)

        Returns:
            Dict with order_id, status, payment_method, amount_paid, currency and,
            for card orders, payment_intent_id and client_secret

        Raises:
            ValidationError: If the input is invalid or the buyer owns the item
            DuplicatePaymentError: If the payment reference is already used
            SellerWalletMissingError: If the seller cannot receive crypto
            ItemNotFoundError: If the item does not exist
            ItemNotAvailableError: If the item is reserved or sold
            PaymentGatewayError: If the card intent cannot be created
            DatabaseError: If the store fails
        """
        await self.ensure_pool()

        try:
            request = CreateOrderRequest(
                item_id=item_id,
                payment_method=payment_method,
                crypto=details
            )
        except ValueError as e:
            raise ValidationError(f"Invalid order request: {e}")

        try:
            # Fail fast before talking to the card processor
            async with self.pool.acquire() as conn:
                item = await conn.fetchrow(
                    'SELECT id, seller_id, price, status FROM items WHERE id = $1',
                    request.item_id
                )
            self._check_item(item, request.item_id, buyer_id)

            intent = None
            if request.payment_method == PaymentMethod.CARD:
                intent = await self.card_gateway.create_payment_intent(
                    item['price'],
                    {'item_id': str(request.item_id), 'buyer_id': buyer_id}
                )

            try:
                order = await self._reserve(buyer_id, request, intent)
            except Exception as e:
                if intent:
                    logger.warning(
                        f"Reservation of item {request.item_id} failed after creating "
                        f"payment intent {intent['id']}: {e}"
                    )
                    await self.card_gateway.cancel_payment_intent(intent['id'])
                raise

        except STORE_ERRORS as e:
            logger.error(f"Database error reserving item {item_id}: {e}")
            raise DatabaseError(f"Failed to create order: {e}")

        logger.info(
            f"Order {order['order_id']} reserved item {request.item_id} "
            f"for buyer {buyer_id} ({request.payment_method.value})"
        )
        if intent:
            order['client_secret'] = intent['client_secret']
        return order

    def _check_item(self, item, item_id: UUID, buyer_id: str) -> None:
        if not item:
            raise ItemNotFoundError(f"Item {item_id} not found")
        if item['status'] != ItemStatus.AVAILABLE.value:
            raise ItemNotAvailableError(f"Item {item_id} is {item['status']}")
        if item['seller_id'] == buyer_id:
            raise ValidationError("Sellers cannot buy their own items")

    async def _reserve(self, buyer_id: str, request: CreateOrderRequest, intent: Optional[Dict]) -> Dict:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                item = await conn.fetchrow(
                    'SELECT id, seller_id, price, status FROM items WHERE id = $1 FOR UPDATE',
                    request.item_id
                )
                self._check_item(item, request.item_id, buyer_id)

                crypto = request.crypto
                seller_wallet = None
                if request.payment_method == PaymentMethod.CRYPTO:
                    seller_wallet = await conn.fetchval(
                        'SELECT crypto_wallet_address FROM users WHERE id = $1',
                        item['seller_id']
                    )
                    if not seller_wallet:
                        raise SellerWalletMissingError(
                            f"Seller of item {request.item_id} has no crypto wallet"
                        )

                try:
                    order = await conn.fetchrow(
                        '''
                        INSERT INTO orders (
                            item_id, buyer_id, seller_id, payment_method, status,
                            amount_paid, currency, tx_hash, chain_id,
                            buyer_wallet_address, seller_wallet_address,
                            amount_paid_crypto, payment_intent_id
                        ) VALUES ($1, $2, $3, $4, 'pending', $5, $6, $7, $8, $9, $10, $11, $12)
                        RETURNING id, status, payment_method, amount_paid, currency,
                                  payment_intent_id, tx_hash
                        ''',
                        request.item_id,
                        buyer_id,
                        item['seller_id'],
                        request.payment_method.value,
                        item['price'],
                        self.settings.currency,
                        crypto.tx_hash if crypto else None,
                        self.settings.chain_id if crypto else None,
                        crypto.buyer_wallet_address if crypto else None,
                        seller_wallet,
                        crypto.amount_paid_crypto if crypto else None,
                        intent['id'] if intent else None
                    )
                except UniqueViolationError as e:
                    raise DuplicatePaymentError(f"Payment reference already used: {e.detail or e}")
                except ForeignKeyViolationError:
                    raise ValidationError(f"Unknown buyer {buyer_id}")

                result = await conn.execute(
                    '''
                    UPDATE items
                    SET status = 'reserved', updated_at = now()
                    WHERE id = $1 AND status = 'available'
                    ''',
                    request.item_id
                )
                if result != 'UPDATE 1':
                    raise ItemNotAvailableError(f"Item {request.item_id} was reserved concurrently")

        return {
            'order_id': order['id'],
            'status': order['status'],
            'payment_method': order['payment_method'],
            'amount_paid': order['amount_paid'],
            'currency': order['currency'],
            'payment_intent_id': order['payment_intent_id'],
            'tx_hash': order['tx_hash'],
        }

    async def get_order(self, order_id: UUID) -> Optional[Dict]:
        """Get order details by ID.

        Args:
            order_id: UUID of order to retrieve

        Returns:
            Dict containing order details or None if not found
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            order = await conn.fetchrow('SELECT * FROM orders WHERE id = $1', order_id)
            return dict(order) if order else None

    async def check_order_status(self, order_id: UUID, buyer_id: Optional[str] = None) -> Optional[str]:
        """Get just the status of an order.

        Args:
            order_id: Order to look up
            buyer_id: If given, only the buyer's own order is visible

        Returns:
            The status string, or None if the order does not exist (or is not the buyer's)
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                'SELECT status FROM orders WHERE id = $1 AND ($2::text IS NULL OR buyer_id = $2)',
                order_id,
                buyer_id
            )

    async def finalize_card_order(
        self,
        payment_intent_id: str,
        amount_received: Optional[int] = None
    ) -> FinalizeResult:
        """Complete the card order paid by a succeeded payment intent.

        Args:
            payment_intent_id: Stripe payment intent id from the verified event
            amount_received: Amount captured in minor units, if the event carries it

        Returns:
            FinalizeResult. Never raises for expected outcomes.
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    order = await conn.fetchrow(
                        '''
                        SELECT id, item_id, status, amount_paid
                        FROM orders
                        WHERE payment_intent_id = $1 AND payment_method = 'card'
                        FOR UPDATE
                        ''',
                        payment_intent_id
                    )
                    if not order:
                        logger.error(
                            f"Payment intent {payment_intent_id} succeeded but no order references it; "
                            "manual reconciliation required"
                        )
                        return FinalizeResult(
                            success=False,
                            status=FinalizeStatus.ORDER_NOT_FOUND,
                            detail=f"No card order for payment intent {payment_intent_id}"
                        )

                    replay = self._check_state(order, payment_intent_id)
                    if replay:
                        return replay

                    if amount_received is not None:
                        expected = to_minor_units(order['amount_paid'])
                        if amount_received != expected:
                            logger.error(
                                f"Amount mismatch for payment intent {payment_intent_id}: "
                                f"expected {expected}, received {amount_received}"
                            )
                            return FinalizeResult(
                                success=False,
                                status=FinalizeStatus.AMOUNT_MISMATCH,
                                order_id=order['id'],
                                detail=f"Expected {expected}, received {amount_received}"
                            )

                    await self._complete(conn, order)

        except _ItemNotReserved as e:
            return self._item_not_reserved(order['id'], e)
        except STORE_ERRORS as e:
            logger.error(f"Database error finalizing payment intent {payment_intent_id}: {e}")
            return FinalizeResult(success=False, status=FinalizeStatus.DB_ERROR, detail=str(e))

        logger.info(f"Order {order['id']} completed by payment intent {payment_intent_id}")
        return FinalizeResult(success=True, status=FinalizeStatus.COMPLETED, order_id=order['id'])

    async def finalize_crypto_order(self, transfer: CryptoTransfer) -> FinalizeResult:
        """Complete the crypto order paid by a successful on-chain transfer.

        Checks run in order: idempotency, order state, recipient, amount. The
        checks and the writes share one transaction and the order row lock.

        Args:
            transfer: Verified transfer reported by the indexer

        Returns:
            FinalizeResult. Never raises for expected outcomes.
        """
        await self.ensure_pool()
        amount_sent = Web3.from_wei(int(transfer.value_wei), 'ether')

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    order = await conn.fetchrow(
                        '''
                        SELECT id, item_id, status, seller_wallet_address, amount_paid_crypto
                        FROM orders
                        WHERE tx_hash = $1 AND payment_method = 'crypto'
                        FOR UPDATE
                        ''',
                        transfer.hash.lower()
                    )
                    if not order:
                        logger.info(f"No order for transaction {transfer.hash}; ignoring")
                        return FinalizeResult(
                            success=False,
                            status=FinalizeStatus.NO_PENDING_ORDER,
                            detail=f"No order for transaction {transfer.hash}"
                        )

                    replay = self._check_state(order, transfer.hash)
                    if replay:
                        return replay

                    expected_wallet = order['seller_wallet_address'] or ''
                    if expected_wallet.lower() != transfer.to_address.lower():
                        logger.error(
                            f"Recipient mismatch for transaction {transfer.hash}: "
                            f"expected {expected_wallet}, got {transfer.to_address}"
                        )
                        return FinalizeResult(
                            success=False,
                            status=FinalizeStatus.RECIPIENT_WALLET_MISMATCH,
                            order_id=order['id'],
                            detail=f"Expected {expected_wallet}, got {transfer.to_address}"
                        )

                    expected_amount = order['amount_paid_crypto']
                    if expected_amount is None or Decimal(amount_sent) != expected_amount:
                        logger.error(
                            f"Amount mismatch for transaction {transfer.hash}: "
                            f"expected {expected_amount} ETH, got {amount_sent} ETH"
                        )
                        return FinalizeResult(
                            success=False,
                            status=FinalizeStatus.AMOUNT_MISMATCH,
                            order_id=order['id'],
                            detail=f"Expected {expected_amount}, got {amount_sent}"
                        )

                    await self._complete(conn, order)

        except _ItemNotReserved as e:
            return self._item_not_reserved(order['id'], e)
        except STORE_ERRORS as e:
            logger.error(f"Database error finalizing transaction {transfer.hash}: {e}")
            return FinalizeResult(success=False, status=FinalizeStatus.DB_ERROR, detail=str(e))

        logger.info(f"Order {order['id']} completed by transaction {transfer.hash}")
        return FinalizeResult(success=True, status=FinalizeStatus.COMPLETED, order_id=order['id'])

    def _check_state(self, order, reference: str) -> Optional[FinalizeResult]:
        """Return the early result for an order that is no longer pending."""
        if order['status'] == OrderStatus.COMPLETED.value:
            logger.info(f"Payment {reference} already processed for order {order['id']}")
            return FinalizeResult(
                success=True,
                status=FinalizeStatus.ALREADY_PROCESSED,
                order_id=order['id']
            )
        if order['status'] != OrderStatus.PENDING.value:
            logger.error(
                f"Payment {reference} arrived for {order['status']} order {order['id']}; "
                "refund must be handled manually"
            )
            return FinalizeResult(
                success=False,
                status=FinalizeStatus.ORDER_NOT_PENDING,
                order_id=order['id'],
                detail=f"Order is {order['status']}"
            )
        return None

    async def _complete(self, conn, order) -> None:
        """Mark the order completed and its item sold. Caller owns the transaction."""
        try:
            await conn.execute(
                '''
                UPDATE orders
                SET status = 'completed', updated_at = now()
                WHERE id = $1 AND status = 'pending'
                ''',
                order['id']
            )
        except UniqueViolationError:
            # Another order for this item already completed
            raise _ItemNotReserved(order['item_id'])

        result = await conn.execute(
            '''
            UPDATE items
            SET status = 'sold', updated_at = now()
            WHERE id = $1 AND status = 'reserved'
            ''',
            order['item_id']
        )
        if result != 'UPDATE 1':
            raise _ItemNotReserved(order['item_id'])

    def _item_not_reserved(self, order_id: UUID, error: _ItemNotReserved) -> FinalizeResult:
        logger.error(f"Item {error} is no longer reserved; order {order_id} left pending")
        return FinalizeResult(
            success=False,
            status=FinalizeStatus.ITEM_NOT_RESERVED,
            order_id=order_id,
            detail=f"Item {error} is not reserved"
        )

    async def cancel_order(self, order_id: UUID, buyer_id: str) -> Dict:
        """Cancel a buyer's pending card order and release the item.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderPermissionError: If the order belongs to another buyer
            OrderStateError: If the order is not a pending card order
            DatabaseError: If the store fails
        """
        await self.ensure_pool()

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    order = await conn.fetchrow(
                        '''
                        SELECT id, item_id, buyer_id, status, payment_method, payment_intent_id
                        FROM orders WHERE id = $1 FOR UPDATE
                        ''',
                        order_id
                    )
                    if not order:
                        raise OrderNotFoundError(f"Order {order_id} not found")
                    if order['buyer_id'] != buyer_id:
                        raise OrderPermissionError(f"Order {order_id} belongs to another buyer")
                    if order['status'] != OrderStatus.PENDING.value:
                        raise OrderStateError(f"Order {order_id} is {order['status']}")
                    if order['payment_method'] == PaymentMethod.CRYPTO.value:
                        # The transfer is already broadcast and may still confirm
                        raise OrderStateError(f"Crypto order {order_id} cannot be cancelled")

                    await conn.execute(
                        '''
                        UPDATE orders SET status = 'cancelled', updated_at = now()
                        WHERE id = $1 AND status = 'pending'
                        ''',
                        order_id
                    )
                    await conn.execute(
                        '''
                        UPDATE items SET status = 'available', updated_at = now()
                        WHERE id = $1 AND status = 'reserved'
                        ''',
                        order['item_id']
                    )
        except STORE_ERRORS as e:
            logger.error(f"Database error cancelling order {order_id}: {e}")
            raise DatabaseError(f"Failed to cancel order: {e}")

        logger.info(f"Order {order_id} cancelled by buyer {buyer_id}")
        if order['payment_intent_id']:
            await self.card_gateway.cancel_payment_intent(order['payment_intent_id'])
        return {'order_id': order_id, 'status': OrderStatus.CANCELLED.value}

    async def expire_pending_orders(self) -> int:
        """Cancel pending orders older than their expiration window.

        Card orders expire after order_expiration_minutes. Crypto orders whose
        transfer reverted or was never reported expire after the longer
        crypto_order_expiration_minutes. Orders are cancelled and their items
        released in one statement.

        Returns:
            Number of orders expired
        """
        await self.ensure_pool()
        card_minutes = self.settings.order_expiration_minutes
        crypto_minutes = self.settings.crypto_order_expiration_minutes

        try:
            async with self.pool.acquire() as conn:
                expired = await conn.fetch(
                    '''
                    WITH expired AS (
                        UPDATE orders
                        SET status = 'cancelled', updated_at = now()
                        WHERE status = 'pending'
                            AND (
                                (payment_method = 'card'
                                    AND created_at < now() - make_interval(mins => $1))
                                OR (payment_method = 'crypto'
                                    AND created_at < now() - make_interval(mins => $2))
                            )
                        RETURNING id, item_id, payment_method, payment_intent_id, tx_hash
                    ), released AS (
                        UPDATE items
                        SET status = 'available', updated_at = now()
                        FROM expired
                        WHERE items.id = expired.item_id AND items.status = 'reserved'
                        RETURNING items.id
                    )
                    SELECT id, payment_method, payment_intent_id, tx_hash FROM expired
                    ''',
                    card_minutes,
                    crypto_minutes
                )
        except STORE_ERRORS as e:
            logger.error(f"Database error expiring orders: {e}")
            raise DatabaseError(f"Failed to expire orders: {e}")

        if expired:
            logger.info(f"Expired {len(expired)} pending orders")
        for row in expired:
            if row['payment_method'] == PaymentMethod.CRYPTO.value:
                # A late confirmation now finalizes as order_not_pending
                logger.warning(
                    f"Expired crypto order {row['id']} unconfirmed after {crypto_minutes} minutes "
                    f"(transaction {row['tx_hash']})"
                )
            elif row['payment_intent_id']:
                await self.card_gateway.cancel_payment_intent(row['payment_intent_id'])
        return len(expired)

__all__ = [
    'OrderManager',
    'OrderError',
    'ValidationError',
    'DuplicatePaymentError',
    'SellerWalletMissingError',
    'ItemNotFoundError',
    'ItemNotAvailableError',
    'OrderNotFoundError',
    'OrderPermissionError',
    'OrderStateError',
    'OrderStatus',
    'ItemStatus',
    'PaymentMethod',
    'FinalizeStatus',
    'FinalizeResult',
    'CryptoPaymentDetails',
    'CreateOrderRequest',
]
