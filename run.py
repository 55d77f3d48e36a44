"""
PostSync Payment API launcher.

Usage:
    python run.py
    python run.py --port 3000
"""
import argparse
import logging
import os
import sys

import uvicorn

from postsync_api.config import load_settings
from postsync_api.exceptions import ConfigurationError
from postsync_api.main import create_app

logger = logging.getLogger("postsync_api")


def main():
    parser = argparse.ArgumentParser(description="PostSync Payment API server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "3000")), help="Bind port (default: $PORT or 3000)")
    args = parser.parse_args()

    try:
        settings = load_settings()
    except ConfigurationError as exc:
        logging.basicConfig(level=logging.ERROR, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logger.critical("Refusing to start: %s", exc)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        app = create_app(settings)
    except ValueError as exc:
        # Malformed service-account credentials or plan catalog.
        logger.critical("Refusing to start: %s", exc)
        sys.exit(1)

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
