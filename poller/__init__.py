"""Client-side confirmation poller.

After a payment is submitted, the buyer's client polls the order status
until the webhook has finalized it, the order has failed, or the attempt
budget runs out.
"""

import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Awaitable, Callable, Optional

import requests
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 3.0
DEFAULT_MAX_ATTEMPTS = 30

FAILED_STATUSES = {'cancelled', 'refunded', 'failed'}

TIMEOUT_MESSAGE = (
    "Payment confirmation is taking longer than expected. "
    "Check your orders dashboard for the final status."
)

class PollOutcome(str, Enum):
    COMPLETED = 'completed'
    FAILED = 'failed'
    TIMED_OUT = 'timed_out'
    STOPPED = 'stopped'

class PollResult(BaseModel):
    """How a polling session ended."""
    outcome: PollOutcome
    status: Optional[str] = None  # Last status observed
    attempts: int
    message: Optional[str] = None

StatusFetcher = Callable[[str], Awaitable[Optional[str]]]

class OrderStatusPoller:
    """Polls an order's status at a fixed interval with a bounded attempt count."""

    def __init__(
        self,
        fetch_status: StatusFetcher,
        interval: float = DEFAULT_INTERVAL,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        """Initialize the poller.

        Args:
            fetch_status: Coroutine function returning the order status, or None
                          if the order does not exist
            interval: Seconds between attempts
            max_attempts: Attempts before giving up
            sleep: Sleep primitive, injectable for tests
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.fetch_status = fetch_status
        self.interval = interval
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._stop_requested = False

    def stop(self):
        """Signal the poller to stop before its next attempt."""
        self._stop_requested = True

    def reset(self):
        """Clear a previous stop so the poller can be reused."""
        self._stop_requested = False

    async def poll(self, order_id: str) -> PollResult:
        """Poll until the order reaches a terminal status.

        Fetch errors are logged and count as an attempt. Cancelling the task
        running this coroutine cancels the pending sleep as well. A stop
        requested before polling starts returns at once; call reset() to
        reuse a stopped poller.
        """
        last_status = None

        for attempt in range(1, self.max_attempts + 1):
            if self._stop_requested:
                return PollResult(outcome=PollOutcome.STOPPED, status=last_status, attempts=attempt - 1)

            try:
                order_status = await self.fetch_status(order_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Status check {attempt}/{self.max_attempts} for order {order_id} failed: {e}")
            else:
                if order_status is None:
                    return PollResult(
                        outcome=PollOutcome.FAILED,
                        attempts=attempt,
                        message=f"Order {order_id} not found"
                    )
                last_status = order_status
                if order_status == 'completed':
                    return PollResult(outcome=PollOutcome.COMPLETED, status=order_status, attempts=attempt)
                if order_status in FAILED_STATUSES:
                    return PollResult(
                        outcome=PollOutcome.FAILED,
                        status=order_status,
                        attempts=attempt,
                        message=f"Order {order_id} is {order_status}"
                    )

            if attempt < self.max_attempts:
                await self._sleep(self.interval)

        logger.info(f"Gave up waiting for order {order_id} after {self.max_attempts} attempts")
        return PollResult(
            outcome=PollOutcome.TIMED_OUT,
            status=last_status,
            attempts=self.max_attempts,
            message=TIMEOUT_MESSAGE
        )

class HttpStatusFetcher:
    """Fetches order status from the checkout API.

    requests is synchronous, so calls run in the default executor.
    """

    def __init__(self, base_url: str, token: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get(self, order_id: str) -> Optional[str]:
        response = self.session.get(
            f"{self.base_url}/orders/{order_id}/status",
            headers={'Authorization': f"Bearer {self.token}"},
            timeout=self.timeout
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()['status']

    async def __call__(self, order_id: str) -> Optional[str]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._get, order_id))

__all__ = [
    'OrderStatusPoller',
    'HttpStatusFetcher',
    'PollOutcome',
    'PollResult',
    'TIMEOUT_MESSAGE',
]
