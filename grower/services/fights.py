from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Callable

from grower.config import Config
from grower.errors import InsufficientStat, InvalidInput, InvalidState, NotFound, NotParticipant
from grower.models.game import Fight, FightResult, FightStatus, UserIdentity, UserStat, to_db_time, utcnow

from .db import Database, Transaction
from .ledger import StatLedger, StatDelta
from .locks import EntityLockManager
from .random_draw import RandomDraw
from .ranks import RankService


log = logging.getLogger(__name__)

ROLL_MIN = 1
ROLL_MAX = 100


def decide_winner(initiator_id: int, target_id: int, initiator_roll: int, target_roll: int) -> tuple[int, int] | None:
    """Return (winner_id, loser_id) for the higher roll, None on a tie."""
    if initiator_roll > target_roll:
        return initiator_id, target_id
    if target_roll > initiator_roll:
        return target_id, initiator_id
    return None


def credit_win(wager: float) -> StatDelta:
    def apply(stat: UserStat) -> UserStat:
        return replace(stat, size=stat.size + wager, wins=stat.wins + 1)
    return apply


def debit_loss(wager: float, floor: float) -> StatDelta:
    def apply(stat: UserStat) -> UserStat:
        return replace(stat, size=max(floor, stat.size - wager), losses=stat.losses + 1)
    return apply


class FightService:
    """Single-round wager fights: an open challenge resolved by two d100 rolls."""

    def __init__(
        self,
        db: Database,
        ledger: StatLedger,
        ranks: RankService,
        draw: RandomDraw,
        locks: EntityLockManager,
        cfg: Config | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.ranks = ranks
        self.draw = draw
        self.locks = locks
        self.cfg = cfg or Config()
        self.clock = clock

    async def create_fight(self, initiator: UserIdentity, group_id: int, wager: float) -> Fight:
        """Open a challenge anyone in the group may accept.

        The whole current size may be wagered, but the sum of the player's
        pending wagers may not exceed it.
        """
        user = await self.ledger.get_or_create(initiator, group_id)
        min_size = self.cfg.min_fight_size
        if user.size < min_size:
            raise InsufficientStat(f"Your size is too small to fight! You need at least {min_size:g}cm.")
        if wager is None or not math.isfinite(wager) or wager < min_size:
            raise InvalidInput(f"The wager must be between {min_size:g} and {user.size:g}cm.")
        if wager > user.size:
            raise InsufficientStat(f"The wager must be between {min_size:g} and {user.size:g}cm.")

        now = self.clock()
        async with self.db.transaction() as tx:
            row = await tx.fetchone(
                "SELECT COALESCE(SUM(wager), 0) FROM fights "
                "WHERE group_id = ? AND status = 'pending' AND (initiator_id = ? OR target_id = ?)",
                (group_id, user.user_id, user.user_id),
            )
            active = float(row[0]) if row else 0.0
            if active + wager > user.size:
                raise InsufficientStat(
                    f"Your total active wagers ({active:g}cm) plus this wager ({wager:g}cm) "
                    f"would exceed your size ({user.size:g}cm)."
                )
            fight_id = await tx.execute(
                "INSERT INTO fights (group_id, initiator_id, wager, status, created_at) VALUES (?, ?, ?, 'pending', ?)",
                (group_id, user.user_id, float(wager), to_db_time(now)),
            )
        if fight_id is None:
            raise InvalidState("The fight could not be stored.")
        log.info("Fight %s opened by %s in group %s (wager %s)", fight_id, user.user_id, group_id, wager)
        return Fight(id=fight_id, group_id=group_id, initiator_id=user.user_id, wager=float(wager), created_at=now)

    async def get_fight(self, fight_id: int, tx: Transaction | None = None) -> Fight:
        ex = tx or self.db
        row = await ex.fetchone("SELECT * FROM fights WHERE id = ?", (fight_id,))
        if row is None:
            raise NotFound(f"Fight {fight_id} not found")
        return Fight.from_row(row)

    async def accept_fight(self, fight_id: int, accepter: UserIdentity) -> FightResult:
        """Bind the accepting player, roll for both sides and settle."""
        async with self.locks.for_entity("fight", fight_id):
            fight = await self.get_fight(fight_id)
            if fight.status is not FightStatus.PENDING:
                raise InvalidState("This fight has already ended!")
            if accepter.user_id == fight.initiator_id:
                raise NotParticipant("You can't accept your own challenge!")
            if fight.target_id is not None and fight.target_id != accepter.user_id:
                raise NotParticipant("This fight challenge was already accepted by someone else!")

            user = await self.ledger.get(accepter.user_id, fight.group_id)
            min_size = self.cfg.min_fight_size
            if user.size < min_size:
                raise InsufficientStat(f"Your size is too small to fight! You need at least {min_size:g}cm.")
            if fight.wager > user.size:
                log.debug("Fight %s: accepter %s too small for wager %s", fight_id, user.user_id, fight.wager)
                raise InsufficientStat(
                    f"The wager of {fight.wager:g}cm is too high for your {user.size:g}cm! "
                    f"Your max wager is {user.size:g}cm."
                )

            initiator_roll = self.draw.uniform_int(ROLL_MIN, ROLL_MAX)
            target_roll = self.draw.uniform_int(ROLL_MIN, ROLL_MAX)
            return await self._settle(replace(fight, target_id=user.user_id), initiator_roll, target_roll)

    async def resolve(self, fight_id: int, initiator_roll: int, target_roll: int) -> FightResult:
        """Settle a pending fight whose target is already bound, using the given rolls."""
        async with self.locks.for_entity("fight", fight_id):
            fight = await self.get_fight(fight_id)
            if fight.status is not FightStatus.PENDING:
                raise InvalidState(f"Fight {fight_id} is already {fight.status.value}")
            if fight.target_id is None:
                raise InvalidState(f"Fight {fight_id} has no target yet")
            return await self._settle(fight, initiator_roll, target_roll)

    async def _settle(self, fight: Fight, initiator_roll: int, target_roll: int) -> FightResult:
        for roll in (initiator_roll, target_roll):
            if not ROLL_MIN <= roll <= ROLL_MAX:
                raise InvalidInput(f"Roll {roll} outside [{ROLL_MIN}, {ROLL_MAX}]")
        if fight.target_id is None:
            raise InvalidState(f"Fight {fight.id} has no target yet")

        now = self.clock()
        outcome = decide_winner(fight.initiator_id, fight.target_id, initiator_roll, target_roll)
        settled = replace(
            fight,
            status=FightStatus.COMPLETED,
            initiator_roll=initiator_roll,
            target_roll=target_roll,
            completed_at=now,
        )

        async with self.db.transaction() as tx:
            current = await self.get_fight(fight.id, tx)
            if current.status is not FightStatus.PENDING:
                raise InvalidState("This fight has already ended!")

            if outcome is None:
                await self._write(tx, settled)
                log.info("Fight %s tied at %s", fight.id, initiator_roll)
                return FightResult(fight=settled, tie=True)

            winner_id, loser_id = outcome
            settled = replace(settled, winner_id=winner_id, loser_id=loser_id)
            old_winner_rank = await self.ranks.get_user_rank(winner_id, fight.group_id, tx)
            old_loser_rank = await self.ranks.get_user_rank(loser_id, fight.group_id, tx)
            winner = await self.ledger.apply_delta(winner_id, fight.group_id, credit_win(fight.wager), tx)
            loser = await self.ledger.apply_delta(loser_id, fight.group_id, debit_loss(fight.wager, 0.0), tx)
            await self._write(tx, settled)
            new_winner_rank = await self.ranks.get_user_rank(winner_id, fight.group_id, tx)
            new_loser_rank = await self.ranks.get_user_rank(loser_id, fight.group_id, tx)

        log.info(
            "Fight %s resolved: %s beat %s (%d vs %d, wager %s)",
            fight.id, winner_id, loser_id, initiator_roll, target_roll, fight.wager,
        )
        return FightResult(
            fight=settled,
            tie=False,
            winner=winner,
            loser=loser,
            old_winner_rank=old_winner_rank,
            new_winner_rank=new_winner_rank,
            old_loser_rank=old_loser_rank,
            new_loser_rank=new_loser_rank,
        )

    async def _write(self, tx: Transaction, fight: Fight) -> None:
        await tx.execute(
            "UPDATE fights SET target_id = ?, status = ?, initiator_roll = ?, target_roll = ?, "
            "winner_id = ?, loser_id = ?, completed_at = ? WHERE id = ?",
            (
                fight.target_id,
                fight.status.value,
                fight.initiator_roll,
                fight.target_roll,
                fight.winner_id,
                fight.loser_id,
                to_db_time(fight.completed_at),
                fight.id,
            ),
        )
