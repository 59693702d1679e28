#!/usr/bin/env python3
"""Milestone escrow server.

Administrator identity from ESCROW_ADMIN env var (never in code).
"""

import os, sys, logging
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import uvicorn
from protocol import ADMIN_PRINCIPAL, DISPUTE_WINDOW, DISPUTE_WINDOW_BLOCKS
from agreements.app import create_app
from agreements.clock import SystemClock
from agreements.db import Database
from agreements.service import AgreementService

DB_PATH = os.environ.get("ESCROW_DB", "/var/lib/escrow/escrow.db")
PORT = int(os.environ.get("ESCROW_PORT", "8000"))
LOG_LEVEL = os.environ.get("ESCROW_LOG_LEVEL", "INFO")


def main():
    if not ADMIN_PRINCIPAL:
        print("ESCROW_ADMIN env var required", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if DB_PATH != ":memory:":
        os.makedirs(os.path.dirname(DB_PATH) or ".", exist_ok=True)

    service = AgreementService(db=Database(DB_PATH), clock=SystemClock())
    app = create_app(service=service)

    print(f"[server] Database: {DB_PATH}")
    print(f"[server] Dispute window: {DISPUTE_WINDOW}s past end_time "
          f"(set ESCROW_DISPUTE_WINDOW={DISPUTE_WINDOW_BLOCKS} for a block-height clock)")
    print(f"[server] Listening on :{PORT}")

    uvicorn.run(app, host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
