"""Command line interface for waiting on an order's payment confirmation."""
import argparse
import asyncio
import logging
import signal
import sys

from . import OrderStatusPoller, HttpStatusFetcher, PollOutcome, DEFAULT_INTERVAL, DEFAULT_MAX_ATTEMPTS

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

EXIT_CODES = {
    PollOutcome.COMPLETED: 0,
    PollOutcome.FAILED: 1,
    PollOutcome.TIMED_OUT: 2,
    PollOutcome.STOPPED: 130,
}

async def run(args) -> int:
    poller = OrderStatusPoller(
        HttpStatusFetcher(args.base_url, args.token),
        interval=args.interval,
        max_attempts=args.max_attempts
    )

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received. Stopping...")
        poller.stop()

    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    result = await poller.poll(args.order_id)
    print(f"{result.outcome.value}: {result.message or result.status}")
    return EXIT_CODES[result.outcome]

def main():
    parser = argparse.ArgumentParser(description="Wait for an order's payment to be confirmed")
    parser.add_argument('order_id')
    parser.add_argument('--base-url', default='http://localhost:8000')
    parser.add_argument('--token', required=True, help="Bearer token from the session provider")
    parser.add_argument('--interval', type=float, default=DEFAULT_INTERVAL)
    parser.add_argument('--max-attempts', type=int, default=DEFAULT_MAX_ATTEMPTS)
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))

if __name__ == "__main__":
    main()
