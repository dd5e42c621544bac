"""
Run the pet feed API under uvicorn.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from petfeed.config import get_settings

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Pet photo feed API server")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument(
        "--reload", action="store_true", help="Reload on source changes (development)"
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    logger.info("Pet photo feed API listening on http://%s:%d", args.host, args.port)
    uvicorn.run("petfeed.app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
