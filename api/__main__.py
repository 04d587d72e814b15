"""Command line interface for running the API server."""
import argparse
import logging
import sys

import uvicorn

from config import load_config, set_settings, SettingsError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

def main():
    parser = argparse.ArgumentParser(description="Run the marketplace checkout API")
    parser.add_argument('--host', default='0.0.0.0')
    parser.add_argument('--port', type=int, default=8000)
    parser.add_argument('--settings-dir', default=None, help="Directory containing settings.conf")
    args = parser.parse_args()

    # Fail at startup, not on the first request
    try:
        set_settings(load_config(args.settings_dir))
    except SettingsError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info(f"Starting API server on {args.host}:{args.port}")
    uvicorn.run("api:app", host=args.host, port=args.port, log_level="info")

if __name__ == "__main__":
    main()
