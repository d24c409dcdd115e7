# config.py
"""
Process-wide settings for the ledger bot.

Values come from the environment (a `.env` next to this file is loaded first
by bot.py). Anything required that is missing raises ConfigError before the
bot touches the network or the database.
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from typing import FrozenSet, Mapping, Optional
import logging

# Child logger (parent configured in bot.py)
logger = logging.getLogger("kakera.config")

# ---- Fixed constants ----
MUDAE_ID = 432610292342587392       # default designated automated account
PENDING_TTL_SECONDS = 300           # unconfirmed triggers are dropped after this
EXPIRY_SWEEP_SECONDS = 60
ACCRUAL_SWEEP_HOURS = 1

CORRELATION_MODES = ("split", "unified")


class ConfigError(RuntimeError):
    """A required startup value is missing or malformed."""


@dataclass(frozen=True, slots=True)
class Settings:
    token: str
    database_path: str
    admin_ids: FrozenSet[int]
    confirmer_id: int = MUDAE_ID
    guild_id: Optional[int] = None
    correlation_mode: str = "split"
    keepalive_port: int = 3000

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids


def _parse_id(name: str, raw: str) -> int:
    try:
        value = int(raw.strip())
    except ValueError:
        raise ConfigError(f"{name} must be a numeric Discord id, got '{raw}'.") from None
    if value <= 0:
        raise ConfigError(f"{name} must be a positive Discord id, got '{raw}'.")
    return value


def parse_admin_ids(raw: str) -> FrozenSet[int]:
    """Parse a comma-separated allow-list, ignoring blanks."""
    return frozenset(_parse_id("ADMIN_IDS", part) for part in raw.split(",") if part.strip())


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env

    token = (env.get("DISCORD_TOKEN") or "").strip()
    # If someone pasted "Bot <token>", fix it:
    if token.lower().startswith("bot "):
        token = token.split(" ", 1)[1].strip()
    if not token:
        raise ConfigError("DISCORD_TOKEN is missing. Check your .env or environment.")

    database_path = (env.get("DATABASE_PATH") or "").strip()
    if not database_path:
        raise ConfigError("DATABASE_PATH is missing. Point it at the ledger database file.")

    admin_ids = parse_admin_ids(env.get("ADMIN_IDS") or "")
    if not admin_ids:
        raise ConfigError("ADMIN_IDS is empty. At least one administrator id is required.")

    raw_confirmer = (env.get("CONFIRMER_ID") or "").strip()
    confirmer_id = _parse_id("CONFIRMER_ID", raw_confirmer) if raw_confirmer else MUDAE_ID

    raw_guild = (env.get("GUILD_ID") or "").strip()
    guild_id = _parse_id("GUILD_ID", raw_guild) if raw_guild else None

    mode = (env.get("CORRELATION_MODE") or "split").strip().lower()
    if mode not in CORRELATION_MODES:
        raise ConfigError(f"CORRELATION_MODE must be one of {CORRELATION_MODES}, got '{mode}'.")

    # Hosting platforms inject PORT; KEEPALIVE_PORT wins when both are set
    raw_port = (env.get("KEEPALIVE_PORT") or env.get("PORT") or "3000").strip()
    try:
        port = int(raw_port)
    except ValueError:
        raise ConfigError(f"KEEPALIVE_PORT must be a number, got '{raw_port}'.") from None

    settings = Settings(
        token=token,
        database_path=database_path,
        admin_ids=admin_ids,
        confirmer_id=confirmer_id,
        guild_id=guild_id,
        correlation_mode=mode,
        keepalive_port=port,
    )
    logger.info(
        f"config:loaded admins={len(admin_ids)} confirmer_id={confirmer_id} "
        f"guild_id={guild_id} mode={mode} keepalive_port={port}"
    )
    return settings
