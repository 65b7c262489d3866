"""
agora.api.__main__ — Entry point for ``python -m agora.api``
============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (soft settings, including the API port).
3. Serve :data:`agora.api.main.app` with uvicorn.

Run with::

    uv run python -m agora.api
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from dotenv import load_dotenv

from agora.config import load_config

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("agora")


def main() -> None:
    """Bootstrap and run the Agora API."""

    # 1. Environment variables (secrets).
    load_dotenv()

    # 2. Soft configuration.
    try:
        cfg = load_config()
    except (FileNotFoundError, KeyError) as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)

    logger.info("Starting %s API on port %d", cfg.community_name, cfg.api_port)

    # 3. Serve (blocking).
    uvicorn.run("agora.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
