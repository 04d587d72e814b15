"""Scripted asyncpg doubles and shared test data."""

import uuid
from decimal import Decimal

BUYER_ID = "user_buyer"
SELLER_ID = "user_seller"
ITEM_ID = uuid.UUID("5a4c1f7e-0d1b-4f0e-9a43-2f4f1f3a9b10")
ORDER_ID = uuid.UUID("b2e0c6d4-7a1f-4c55-8e2d-61f0a5c9d7e3")
SELLER_WALLET = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"
BUYER_WALLET = "0x71C7656EC7ab88b098defB751B7401B5f6d8976F"
TX_HASH = "0x" + "ab" * 32
PAYMENT_INTENT_ID = "pi_3OqTestIntent"

# Plain-string responses asyncpg returns from execute()
DEFAULT_RESULTS = {
    'fetchrow': None,
    'fetchval': None,
    'fetch': [],
    'execute': 'UPDATE 1',
}

class FakeTransaction:
    """Records whether a transaction block committed or rolled back."""

    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.transactions += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.conn.committed += 1
        else:
            self.conn.rolled_back += 1
        return False

class FakeConnection:
    """Connection double whose query results are scripted per method.

    Each method pops the next result from its queue; exceptions in the queue
    are raised instead of returned. Empty queues fall back to DEFAULT_RESULTS.
    """

    def __init__(self, **results):
        self.results = {method: list(results.get(method, [])) for method in DEFAULT_RESULTS}
        self.calls = []
        self.transactions = 0
        self.committed = 0
        self.rolled_back = 0

    async def _next(self, method, query, args):
        self.calls.append((method, ' '.join(query.split()), args))
        queue = self.results[method]
        result = queue.pop(0) if queue else DEFAULT_RESULTS[method]
        if isinstance(result, BaseException):
            raise result
        return result

    async def fetchrow(self, query, *args):
        return await self._next('fetchrow', query, args)

    async def fetchval(self, query, *args):
        return await self._next('fetchval', query, args)

    async def fetch(self, query, *args):
        return await self._next('fetch', query, args)

    async def execute(self, query, *args):
        return await self._next('execute', query, args)

    def transaction(self):
        return FakeTransaction(self)

    def queries(self, method=None):
        return [query for m, query, _ in self.calls if method is None or m == method]

    def writes(self):
        """UPDATE and INSERT statements issued, in order."""
        return [
            (query, args) for _, query, args in self.calls
            if query.startswith(('UPDATE', 'INSERT'))
        ]

class FakeAcquire:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, exc_type, exc, tb):
        return False

class FakePool:
    def __init__(self, conn):
        self.conn = conn

    def acquire(self):
        return FakeAcquire(self.conn)

def item_row(status='available', seller_id=SELLER_ID, price=Decimal('25.00')):
    return {'id': ITEM_ID, 'seller_id': seller_id, 'price': price, 'status': status}
