"""
catalyst.bot.__main__ — Entry point for ``python -m catalyst.bot``
==================================================================

Wiring:
1. Load .env (secrets).
2. Load config.yaml (tuning).
3. Create the SQLAlchemy engine and ensure tables exist.
4. Create the CatalystBot and hand it config + engine.
5. Start the bot (blocking — runs the asyncio event loop).

Run with::

    python -m catalyst.bot
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv

from catalyst.bot.core import CatalystBot
from catalyst.config import ConfigError, load_config
from catalyst.database.engine import create_db_engine, init_db

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("catalyst")


def main() -> None:
    """Bootstrap and run the Catalyst bot."""

    # 1. Environment variables (secrets).
    load_dotenv()

    token = os.getenv("DISCORD_TOKEN")
    if not token or token == "your-discord-bot-token-here":
        logger.critical(
            "DISCORD_TOKEN is not set.  "
            "Copy .env.example → .env and paste your bot token."
        )
        sys.exit(1)

    # 2. Configuration.
    try:
        cfg = load_config(os.getenv("CATALYST_CONFIG", "config.yaml"))
    except (FileNotFoundError, ConfigError) as exc:
        logger.critical("Bad configuration: %s", exc)
        sys.exit(1)
    logger.info(
        "Config loaded — %s (threshold %d, cooldown %.0f min)",
        cfg.community_name, cfg.drama.score_threshold, cfg.drama.cooldown_minutes,
    )

    # 3. Database.
    engine = create_db_engine()
    init_db(engine)

    # 4. Bot.
    bot = CatalystBot(cfg=cfg, engine=engine)

    # 5. Run (blocks until Ctrl+C or SIGTERM).
    logger.info("Starting Catalyst bot…")
    try:
        bot.run(token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Shutting down gracefully…")


if __name__ == "__main__":
    main()
