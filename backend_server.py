#!/usr/bin/env python3
"""
Standalone entry point for the reconciliation API server.
"""
import argparse

import uvicorn

from reco_engine.config import get_settings
from reco_engine.main import app


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Ledger reconciliation API")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to run the server on")
    args = parser.parse_args()

    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.app_log_level.lower())


if __name__ == "__main__":
    main()
