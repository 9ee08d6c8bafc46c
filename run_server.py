#!/usr/bin/env python3
"""
Run the launchpad live stream API.

Usage:
    python run_server.py
    python run_server.py --port 8080 --log-level debug
"""

import argparse

import uvicorn

from src.config.logging_setup import setup_logging
from src.config.settings import settings


def main():
    parser = argparse.ArgumentParser(description="Launchpad live coin stream server")
    parser.add_argument("--host", default=settings.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.port, help="Bind port")
    parser.add_argument("--log-level", default=settings.log_level.lower(), help="Log level")
    args = parser.parse_args()

    setup_logging(args.log_level)

    # Single worker: broker state is in-process
    uvicorn.run(
        "src.api.main:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        workers=1,
    )


if __name__ == "__main__":
    main()
