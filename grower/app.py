"""Wires the database and game services together for the chat command layer."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from .config import Config, load_config
from .logging import setup_logging
from .models.duello import ActionKind, ActionOutcome, Duello, Style
from .models.game import Fight, FightResult, GrowthResult, UserIdentity, UserStat, utcnow
from .services.db import Database
from .services.duello import DuelloService
from .services.fights import FightService
from .services.growth import GrowthService
from .services.ledger import StatLedger
from .services.locks import EntityLockManager
from .services.random_draw import RandomDraw
from .services.ranks import RankService


log = logging.getLogger(__name__)


@dataclass
class GameServices:
    """Everything a command handler needs, sharing one database and one lock registry."""

    cfg: Config
    db: Database
    ledger: StatLedger
    ranks: RankService
    fights: FightService
    duellos: DuelloService
    growth: GrowthService
    locks: EntityLockManager = field(default_factory=EntityLockManager)

    async def close(self) -> None:
        await self.db.close()

    async def create_fight(self, initiator: UserIdentity, group_id: int, wager: float) -> Fight:
        return await self.fights.create_fight(initiator, group_id, wager)

    async def accept_fight(self, fight_id: int, accepter: UserIdentity) -> FightResult:
        return await self.fights.accept_fight(fight_id, accepter)

    async def create_duello(
        self,
        challenger: UserIdentity,
        group_id: int,
        style: str | Style,
        wager: float,
        opponent: UserIdentity | None = None,
    ) -> Duello:
        return await self.duellos.create_duello(challenger, group_id, style, wager, opponent)

    async def join_duello(self, duello_id: int, joiner: UserIdentity, style: str | Style) -> Duello:
        return await self.duellos.join_duello(duello_id, joiner, style)

    async def perform_duello_action(
        self, duello_id: int, actor: UserIdentity, kind: str | ActionKind
    ) -> ActionOutcome:
        return await self.duellos.perform_action(duello_id, actor, kind)

    async def decline_duello(self, duello_id: int, actor: UserIdentity) -> Duello:
        return await self.duellos.decline_duello(duello_id, actor)

    async def grow(self, identity: UserIdentity, group_id: int) -> GrowthResult:
        return await self.growth.grow(identity, group_id)

    async def daily_winner(self, group_id: int, fallback: UserIdentity | None = None) -> GrowthResult:
        return await self.growth.daily_winner(group_id, fallback)

    async def get_user_rank(self, user_id: int, group_id: int) -> int | None:
        return await self.ranks.get_user_rank(user_id, group_id)

    async def top(self, group_id: int, page: int = 1) -> list[UserStat]:
        """One page of the leaderboard, ``cfg.page_size`` players per page."""
        size = max(1, self.cfg.page_size)
        return await self.ranks.top(group_id, limit=size, offset=(max(1, page) - 1) * size)


async def build_services(
    cfg: Config | None = None,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> GameServices:
    """Open the database named by ``cfg.db_path`` and build every service on it."""
    cfg = cfg or load_config()
    db = await Database.init(cfg.db_path)
    draw = RandomDraw(rng)
    locks = EntityLockManager()
    ledger = StatLedger(db)
    ranks = RankService(db)
    services = GameServices(
        cfg=cfg,
        db=db,
        ledger=ledger,
        ranks=ranks,
        fights=FightService(db, ledger, ranks, draw, locks, cfg, clock),
        duellos=DuelloService(db, ledger, draw, locks, cfg, clock),
        growth=GrowthService(db, ledger, ranks, draw, cfg, clock),
        locks=locks,
    )
    log.info("Game services ready (db=%s)", cfg.db_path)
    return services


async def _init_database(cfg: Config) -> None:
    services = await build_services(cfg)
    await services.close()


def main() -> None:
    """Create or migrate the game database named by the environment."""
    cfg = load_config()
    setup_logging(cfg.log_level)
    asyncio.run(_init_database(cfg))


if __name__ == "__main__":
    main()
