#!/usr/bin/env python3
"""Launch the cadence FastAPI server.

Usage:
    # From the backend/ directory with the venv activated:
    python scripts/run_server.py

    # Or from the repo root:
    python backend/scripts/run_server.py

Rolls routines over to today once on startup, then serves the REST API
on SERVER_HOST:SERVER_PORT.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Ensure backend/ is on sys.path so `from cadence.…` imports work
_backend_dir = Path(__file__).resolve().parent.parent
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-7s  %(name)-22s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run_server")


def main():
    import redis
    import uvicorn

    from cadence.config.settings import SERVER_HOST, SERVER_PORT
    from cadence.engine.dates import today_key
    from cadence.engine.routine_streak import roll_over_day

    try:
        roll_over_day(today_key())
    except redis.RedisError as exc:
        logger.warning("Startup routine rollover skipped: %s", exc)

    logger.info("Starting cadence server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "cadence.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        log_level="info",
        reload=False,
    )


if __name__ == "__main__":
    main()
