from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

from dotenv import load_dotenv


@dataclass
class Config:
    db_path: str = "data/grower.db"
    log_level: str = "INFO"
    # Transport token; the game core never reads it
    bot_token: str | None = None
    admin_ids: list[int] | None = None
    page_size: int = 10
    # Growth
    cooldown_hours: int = 12
    cooldown_minutes: int = 0
    grow_shrink_ratio: float = 0.6
    # Fights and duellos
    min_fight_size: float = 1.0
    duello_expiry_minutes: int = 30
    duello_min_wager: float = 0.5
    duello_max_wager: float = 10.0
    duello_rounds: int = 3

    @property
    def grow_cooldown(self) -> timedelta:
        return timedelta(hours=self.cooldown_hours, minutes=self.cooldown_minutes)

    @property
    def duello_expiry(self) -> timedelta:
        return timedelta(minutes=self.duello_expiry_minutes)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config() -> Config:
    load_dotenv(override=False)

    # Parse optional ADMIN_IDS as comma-separated list of ints
    raw_admins = os.getenv("ADMIN_IDS", "").strip()
    admin_ids: list[int] | None = None
    if raw_admins:
        parsed_ids: list[int] = []
        for part in raw_admins.replace(";", ",").split(","):
            p = part.strip()
            if not p:
                continue
            try:
                parsed_ids.append(int(p))
            except ValueError:
                # ignore malformed entries
                pass
        if parsed_ids:
            admin_ids = parsed_ids

    db_path = os.getenv("GROWER_DB_PATH", "").strip() or "data/grower.db"
    log_level = os.getenv("LOG_LEVEL", "").strip() or "INFO"

    return Config(
        db_path=db_path,
        log_level=log_level,
        bot_token=os.getenv("BOT_TOKEN", "").strip() or None,
        admin_ids=admin_ids,
        page_size=_env_int("PAGE_SIZE", 10),
        cooldown_hours=_env_int("COOLDOWN_HOURS", 12),
        cooldown_minutes=_env_int("COOLDOWN_MINUTES", 0),
        grow_shrink_ratio=_env_float("GROW_SHRINK_RATIO", 0.6),
        min_fight_size=_env_float("MIN_FIGHT_SIZE", 1.0),
        duello_expiry_minutes=_env_int("DUELLO_EXPIRY_MINUTES", 30),
        duello_min_wager=_env_float("DUELLO_MIN_WAGER", 0.5),
        duello_max_wager=_env_float("DUELLO_MAX_WAGER", 10.0),
        duello_rounds=_env_int("DUELLO_ROUNDS", 3),
    )
