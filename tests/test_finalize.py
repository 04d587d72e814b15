"""Tests for finalizing orders from verified payment events."""

from decimal import Decimal

import pytest
from asyncpg.exceptions import ConnectionDoesNotExistError, UniqueViolationError

from orders import OrderManager, FinalizeStatus
from payments import CryptoTransfer, TxStatus
from tests.fakes import (
    ITEM_ID,
    ORDER_ID,
    SELLER_WALLET,
    BUYER_WALLET,
    TX_HASH,
    PAYMENT_INTENT_ID,
)

ORDER_COMPLETED = "UPDATE orders SET status = 'completed', updated_at = now() WHERE id = $1 AND status = 'pending'"
ITEM_SOLD = "UPDATE items SET status = 'sold', updated_at = now() WHERE id = $1 AND status = 'reserved'"

def card_order(status='pending', amount_paid=Decimal('25.00')):
    return {'id': ORDER_ID, 'item_id': ITEM_ID, 'status': status, 'amount_paid': amount_paid}

def crypto_order(status='pending', wallet=SELLER_WALLET, amount=Decimal('0.020000000000000000')):
    return {
        'id': ORDER_ID,
        'item_id': ITEM_ID,
        'status': status,
        'seller_wallet_address': wallet,
        'amount_paid_crypto': amount,
    }

def transfer(to_address=SELLER_WALLET, value_wei='20000000000000000', tx_hash=TX_HASH):
    return CryptoTransfer(
        hash=tx_hash,
        from_address=BUYER_WALLET,
        to_address=to_address,
        value_wei=value_wei,
        status=TxStatus.SUCCESS
    )

@pytest.fixture
def manager_for(settings, gateway):
    def make(pool):
        return OrderManager(pool=pool, settings=settings, card_gateway=gateway)
    return make

# Card payments

@pytest.mark.asyncio
async def test_card_payment_completes_order(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[card_order()])

    result = await manager_for(pool).finalize_card_order(PAYMENT_INTENT_ID, amount_received=2500)

    assert result.success
    assert result.status == FinalizeStatus.COMPLETED
    assert result.order_id == ORDER_ID
    assert conn.writes() == [(ORDER_COMPLETED, (ORDER_ID,)), (ITEM_SOLD, (ITEM_ID,))]
    assert conn.committed == 1
    assert conn.calls[0][2] == (PAYMENT_INTENT_ID,)
    assert 'FOR UPDATE' in conn.calls[0][1]

@pytest.mark.asyncio
async def test_card_payment_without_amount_completes(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[card_order()])

    result = await manager_for(pool).finalize_card_order(PAYMENT_INTENT_ID)

    assert result.status == FinalizeStatus.COMPLETED
    assert len(conn.writes()) == 2

@pytest.mark.asyncio
async def test_card_replay_is_already_processed(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[card_order(status='completed')])

    result = await manager_for(pool).finalize_card_order(PAYMENT_INTENT_ID, amount_received=2500)

    assert result.success
    assert result.status == FinalizeStatus.ALREADY_PROCESSED
    assert conn.writes() == []

@pytest.mark.asyncio
async def test_card_unknown_intent(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[None])

    result = await manager_for(pool).finalize_card_order('pi_unknown')

    assert not result.success
    assert result.status == FinalizeStatus.ORDER_NOT_FOUND
    assert not result.retryable
    assert conn.writes() == []

@pytest.mark.parametrize('status', ['cancelled', 'refunded'])
@pytest.mark.asyncio
async def test_card_payment_for_closed_order(fake_db, manager_for, status):
    conn, pool = fake_db(fetchrow=[card_order(status=status)])

    result = await manager_for(pool).finalize_card_order(PAYMENT_INTENT_ID)

    assert result.status == FinalizeStatus.ORDER_NOT_PENDING
    assert conn.writes() == []

@pytest.mark.asyncio
async def test_card_amount_mismatch(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[card_order()])

    result = await manager_for(pool).finalize_card_order(PAYMENT_INTENT_ID, amount_received=2499)

    assert result.status == FinalizeStatus.AMOUNT_MISMATCH
    assert conn.writes() == []

@pytest.mark.asyncio
async def test_item_no_longer_reserved_rolls_back(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[card_order()], execute=['UPDATE 1', 'UPDATE 0'])

    result = await manager_for(pool).finalize_card_order(PAYMENT_INTENT_ID)

    assert not result.success
    assert result.status == FinalizeStatus.ITEM_NOT_RESERVED
    assert conn.rolled_back == 1
    assert conn.committed == 0

@pytest.mark.asyncio
async def test_second_completed_order_for_item_rolls_back(fake_db, manager_for):
    conn, pool = fake_db(
        fetchrow=[card_order()],
        execute=[UniqueViolationError('duplicate key value violates unique constraint')]
    )

    result = await manager_for(pool).finalize_card_order(PAYMENT_INTENT_ID)

    assert result.status == FinalizeStatus.ITEM_NOT_RESERVED
    assert conn.rolled_back == 1

@pytest.mark.asyncio
async def test_card_store_failure_is_db_error(fake_db, manager_for):
    conn, pool = fake_db(
        fetchrow=[card_order()],
        execute=['UPDATE 1', ConnectionDoesNotExistError('connection was closed')]
    )

    result = await manager_for(pool).finalize_card_order(PAYMENT_INTENT_ID)

    assert not result.success
    assert result.status == FinalizeStatus.DB_ERROR
    assert result.retryable
    assert conn.rolled_back == 1
    assert conn.committed == 0

# Crypto payments

@pytest.mark.asyncio
async def test_crypto_transfer_completes_order(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[crypto_order()])

    result = await manager_for(pool).finalize_crypto_order(transfer())

    assert result.success
    assert result.status == FinalizeStatus.COMPLETED
    assert conn.writes() == [(ORDER_COMPLETED, (ORDER_ID,)), (ITEM_SOLD, (ITEM_ID,))]
    assert conn.committed == 1

@pytest.mark.asyncio
async def test_recipient_compared_case_insensitively(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[crypto_order()])

    result = await manager_for(pool).finalize_crypto_order(
        transfer(to_address='0x' + SELLER_WALLET[2:].lower())
    )

    assert result.status == FinalizeStatus.COMPLETED

@pytest.mark.asyncio
async def test_hash_lookup_is_lowercase(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[None])

    await manager_for(pool).finalize_crypto_order(transfer(tx_hash='0x' + 'AB' * 32))

    assert conn.calls[0][2] == (TX_HASH,)

@pytest.mark.asyncio
async def test_unknown_hash_writes_nothing(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[None])

    result = await manager_for(pool).finalize_crypto_order(transfer())

    assert not result.success
    assert result.status == FinalizeStatus.NO_PENDING_ORDER
    assert conn.writes() == []

@pytest.mark.asyncio
async def test_crypto_replay_is_already_processed(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[crypto_order(status='completed')])

    result = await manager_for(pool).finalize_crypto_order(transfer())

    assert result.success
    assert result.status == FinalizeStatus.ALREADY_PROCESSED
    assert conn.writes() == []

@pytest.mark.asyncio
async def test_idempotency_checked_before_recipient(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[crypto_order(status='completed')])

    result = await manager_for(pool).finalize_crypto_order(
        transfer(to_address='0x0000000000000000000000000000000000000001')
    )

    assert result.status == FinalizeStatus.ALREADY_PROCESSED

@pytest.mark.asyncio
async def test_wrong_recipient(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[crypto_order()])

    result = await manager_for(pool).finalize_crypto_order(
        transfer(to_address='0x0000000000000000000000000000000000000001')
    )

    assert not result.success
    assert result.status == FinalizeStatus.RECIPIENT_WALLET_MISMATCH
    assert conn.writes() == []

@pytest.mark.asyncio
async def test_recipient_checked_before_amount(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[crypto_order()])

    result = await manager_for(pool).finalize_crypto_order(
        transfer(to_address='0x0000000000000000000000000000000000000001', value_wei='1')
    )

    assert result.status == FinalizeStatus.RECIPIENT_WALLET_MISMATCH

@pytest.mark.parametrize('value_wei', ['19999999999999999', '20000000000000001', '0'])
@pytest.mark.asyncio
async def test_amount_must_match_exactly(fake_db, manager_for, value_wei):
    conn, pool = fake_db(fetchrow=[crypto_order()])

    result = await manager_for(pool).finalize_crypto_order(transfer(value_wei=value_wei))

    assert result.status == FinalizeStatus.AMOUNT_MISMATCH
    assert conn.writes() == []

@pytest.mark.asyncio
async def test_crypto_payment_for_cancelled_order(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[crypto_order(status='cancelled')])

    result = await manager_for(pool).finalize_crypto_order(transfer())

    assert result.status == FinalizeStatus.ORDER_NOT_PENDING
    assert conn.writes() == []

@pytest.mark.asyncio
async def test_crypto_store_failure_is_db_error(fake_db, manager_for):
    conn, pool = fake_db(fetchrow=[ConnectionDoesNotExistError('connection was closed')])

    result = await manager_for(pool).finalize_crypto_order(transfer())

    assert result.status == FinalizeStatus.DB_ERROR
    assert conn.writes() == []
