"""
catalyst.bot.core — Bot Instance & Component Assembly
======================================================

**Why this file exists:**
This is where every Catalyst component is built, exactly once, and handed
to the others by reference.  There are no module-level singletons: the bus,
the world state store, the faction manager, the dispatcher and the notifier
all live on the :class:`CatalystBot` instance and share its lifecycle.

1. ``__init__`` constructs and wires the components.
2. ``setup_hook`` loads persisted state, starts the background tasks,
   goes live on the normalizer and loads the Cogs.
3. ``close`` stops the dispatcher, destroys the store (final save) and
   shuts the notifier down before disconnecting.
"""

from __future__ import annotations

import logging
import random

import discord
from discord.ext import commands
from sqlalchemy import Engine

from catalyst.config import CatalystConfig
from catalyst.engine.bus import EventBus
from catalyst.engine.normalizer import EventNormalizer
from catalyst.services.dispatcher import DramaDispatcher
from catalyst.services.factions import FactionManager
from catalyst.services.notifier import DiscordNotifier
from catalyst.services.persistence import SqlAlchemyAdapter
from catalyst.services.world_state import WorldStateStore

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "catalyst.bot.cogs.gateway",
    "catalyst.bot.cogs.factions",
]


class CatalystBot(commands.Bot):
    """Custom Bot subclass that owns every Catalyst component.

    Parameters
    ----------
    cfg:
        The parsed :class:`CatalystConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine` for the persistence adapter.
    rng:
        Shared random source for plot twists, suggestions and coups.
    """

    def __init__(
        self, cfg: CatalystConfig, engine: Engine, *, rng: random.Random | None = None
    ) -> None:
        # Privileged: MESSAGE_CONTENT (scoring) and GUILD_MEMBERS (display names)
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.presences = False

        super().__init__(
            command_prefix=cfg.bot_prefix,
            intents=intents,
            description=f"{cfg.community_name} — where every argument is canon",
        )

        self.cfg = cfg
        self.engine = engine
        rng = rng or random.Random()

        self.bus = EventBus()
        self.normalizer = EventNormalizer(self.bus)
        self.store = WorldStateStore(
            SqlAlchemyAdapter(engine), cfg.world, cfg.factions
        )
        self.factions = FactionManager(self.store, cfg.factions, rng=rng)
        self.notifier = DiscordNotifier(
            self,
            cfg.guild_id,
            cfg.announce_channel,
            vote_window_seconds=cfg.drama.vote_window_minutes * 60,
        )
        self.dispatcher = DramaDispatcher(
            self.store,
            self.factions,
            self.notifier,
            cfg.drama,
            cfg.signals,
            rng=rng,
            announce_channel=cfg.announce_channel,
        )

        # Subscription order is dispatch order: activity first, then drama.
        self.store.attach(self.bus)
        self.dispatcher.attach(self.bus)

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Called once before the bot connects to Discord."""
        await self.store.start()
        self.dispatcher.start()
        self.notifier.start()
        self.normalizer.init(self)

        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)
        if self.get_guild(self.cfg.guild_id) is None:
            logger.warning(
                "Primary guild %d not visible; drama notifications will be dropped",
                self.cfg.guild_id,
            )

    async def close(self) -> None:
        """Graceful shutdown: stop producing drama, save, disconnect."""
        logger.info("Bot shutting down…")
        self.dispatcher.detach(self.bus)
        try:
            await self.dispatcher.close()
            await self.store.destroy()
            await self.notifier.close()
        except Exception:
            logger.exception("Error during Catalyst shutdown")
        await super().close()
