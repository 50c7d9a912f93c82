"""
tally.api.__main__ — Entry point for ``python -m tally.api``
=============================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (port and reward policy).
3. Create the SQLAlchemy engine, ensure tables exist, seed conversion rates.
4. Serve the FastAPI app with uvicorn (blocking).
"""

from __future__ import annotations

import logging

import uvicorn
from dotenv import load_dotenv

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("tally")


def main() -> None:
    """Bootstrap and run the Tally API."""
    load_dotenv()

    from tally.api.deps import get_config, get_engine
    from tally.database.engine import init_db

    cfg = get_config()
    logger.info(
        "Config loaded — Community: %s (share reward %d, %s verification)",
        cfg.community_name, cfg.share_reward_points, cfg.share_verification,
    )

    init_db(get_engine())

    uvicorn.run("tally.api.main:app", host="0.0.0.0", port=cfg.api_port, log_config=None)


if __name__ == "__main__":
    main()
