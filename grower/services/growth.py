from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable

from grower.config import Config
from grower.errors import CooldownActive, CorruptRecord, NotFound
from grower.models.game import Growth, GrowthResult, UserIdentity, UserStat, from_db_time, to_db_time, utcnow

from .db import Database, Transaction
from .ledger import StatLedger
from .random_draw import RandomDraw
from .ranks import RankService


log = logging.getLogger(__name__)

DAILY_WINNER_REASON = "Daily Winner"
DAILY_WINNER_COOLDOWN = timedelta(hours=24)


def format_remaining(remaining: timedelta) -> str:
    """Render a cooldown as ``"3h 12m"`` (minutes rounded up)."""
    minutes = max(0, int(-(-remaining.total_seconds() // 60)))
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _check_daily_cooldown(last: datetime | None, now: datetime) -> None:
    if last is not None and now - last < DAILY_WINNER_COOLDOWN:
        remaining = last + DAILY_WINNER_COOLDOWN - now
        raise CooldownActive(
            f"The daily winner was already picked. Next pick in {format_remaining(remaining)}.", remaining
        )


class GrowthService:
    """The grow action and the group's once-a-day bonus."""

    def __init__(
        self,
        db: Database,
        ledger: StatLedger,
        ranks: RankService,
        draw: RandomDraw,
        cfg: Config | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.ranks = ranks
        self.draw = draw
        self.cfg = cfg or Config()
        self.clock = clock

    async def grow(self, identity: UserIdentity, group_id: int) -> GrowthResult:
        """Grow (or shrink) the player by a random amount, once per cooldown.

        Raises:
            CooldownActive: The player grew less than the cooldown ago.
        """
        user = await self.ledger.get_or_create(identity, group_id)
        now = self.clock()
        cooldown = self.cfg.grow_cooldown
        if user.last_grow_time is not None and now - user.last_grow_time < cooldown:
            remaining = user.last_grow_time + cooldown - now
            log.debug("Grow rejected for %s in group %s: %s left", user.user_id, group_id, remaining)
            raise CooldownActive(f"You can grow again in {format_remaining(remaining)}.", remaining)

        amount = self.draw.growth_amount(user.total_growths, self.cfg.grow_shrink_ratio)

        def apply(stat: UserStat) -> UserStat:
            return replace(
                stat,
                size=stat.size + amount,
                total_growths=stat.total_growths + 1,
                positive_growths=stat.positive_growths + (1 if amount > 0 else 0),
                negative_growths=stat.negative_growths + (1 if amount < 0 else 0),
                last_grow_time=now,
            )

        async with self.db.transaction() as tx:
            current = await self.ledger.get(user.user_id, group_id, tx)
            # Another grow may have committed since the cooldown check
            if current.last_grow_time is not None and now - current.last_grow_time < cooldown:
                remaining = current.last_grow_time + cooldown - now
                raise CooldownActive(f"You can grow again in {format_remaining(remaining)}.", remaining)
            result = await self._award(tx, current, amount, apply, now)

        log.info("User %s in group %s grew %+d (now %s)", user.user_id, group_id, amount, result.user.size)
        return result

    async def daily_winner(self, group_id: int, fallback: UserIdentity | None = None) -> GrowthResult:
        """Award the bonus growth to a random group member, once per 24 hours.

        When the group has no players yet, ``fallback`` (usually whoever asked)
        is registered and wins.
        """
        now = self.clock()
        _check_daily_cooldown(await self.last_daily_winner_time(group_id), now)

        count = await self.ranks.count_users(group_id)
        if count > 0:
            user = await self.ledger.member_at(group_id, self.draw.choice_index(count))
        elif fallback is not None:
            user = await self.ledger.get_or_create(fallback, group_id)
        else:
            user = None
        if user is None:
            raise NotFound("No users available in this group.")

        amount = self.draw.bonus_amount()

        def apply(stat: UserStat) -> UserStat:
            return replace(
                stat,
                size=stat.size + amount,
                total_growths=stat.total_growths + 1,
                positive_growths=stat.positive_growths + 1,
            )

        async with self.db.transaction() as tx:
            # Another pick may have committed since the cooldown check
            _check_daily_cooldown(await self.last_daily_winner_time(group_id, tx), now)
            current = await self.ledger.get(user.user_id, group_id, tx)
            result = await self._award(tx, current, amount, apply, now, special_reason=DAILY_WINNER_REASON)

        log.info("Daily winner in group %s: %s (+%d)", group_id, user.user_id, amount)
        return result

    async def last_daily_winner_time(self, group_id: int, tx: Transaction | None = None) -> datetime | None:
        ex = tx or self.db
        row = await ex.fetchone(
            "SELECT MAX(ts) FROM growths WHERE group_id = ? AND is_special = 1 AND special_reason = ?",
            (group_id, DAILY_WINNER_REASON),
        )
        return from_db_time(row[0]) if row else None

    async def history(self, user_id: int, group_id: int, limit: int = 10) -> list[Growth]:
        rows = await self.db.fetchall(
            "SELECT * FROM growths WHERE user_id = ? AND group_id = ? ORDER BY ts DESC, id DESC LIMIT ?",
            (user_id, group_id, limit),
        )
        result: list[Growth] = []
        for r in rows:
            ts = from_db_time(r["ts"])
            if ts is None:
                raise CorruptRecord(f"Growth {r['id']} has no timestamp")
            result.append(
                Growth(
                    id=int(r["id"]),
                    user_id=int(r["user_id"]),
                    group_id=int(r["group_id"]),
                    amount=float(r["amount"]),
                    timestamp=ts,
                    is_special=bool(r["is_special"]),
                    special_reason=r["special_reason"],
                )
            )
        return result

    async def _award(
        self,
        tx: Transaction,
        current: UserStat,
        amount: int,
        apply: Callable[[UserStat], UserStat],
        now: datetime,
        special_reason: str | None = None,
    ) -> GrowthResult:
        group_id = current.group_id
        old_rank = await self.ranks.get_user_rank(current.user_id, group_id, tx)
        updated = await self.ledger.apply_delta(current.user_id, group_id, apply, tx)
        growth = Growth(
            user_id=current.user_id,
            group_id=group_id,
            amount=float(amount),
            timestamp=now,
            is_special=special_reason is not None,
            special_reason=special_reason,
        )
        growth.id = await tx.execute(
            "INSERT INTO growths (user_id, group_id, amount, is_special, special_reason, ts) VALUES (?, ?, ?, ?, ?, ?)",
            (
                growth.user_id,
                growth.group_id,
                growth.amount,
                1 if growth.is_special else 0,
                growth.special_reason,
                to_db_time(now),
            ),
        )
        new_rank = await self.ranks.get_user_rank(current.user_id, group_id, tx)
        return GrowthResult(
            user=updated,
            amount=float(amount),
            old_size=current.size,
            old_rank=old_rank,
            new_rank=new_rank,
            growth=growth,
        )
