"""Multi-round duello engine: joining, per-turn resolution and settlement."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Callable, Sequence

from grower.config import Config
from grower.errors import (
    Expired,
    InsufficientStat,
    InvalidInput,
    InvalidState,
    NotFound,
    NotParticipant,
    NotYourTurn,
)
from grower.models.duello import (
    Action,
    ActionKind,
    ActionOutcome,
    AttackAction,
    DefendAction,
    Duello,
    DuelloStatus,
    EndAction,
    RecoilAction,
    SpecialAction,
    StartAction,
    Style,
    dump_history,
    has_advantage,
)
from grower.models.game import UserIdentity, to_db_time, utcnow

from .db import Database, Transaction
from .ledger import StatLedger
from .locks import EntityLockManager
from .random_draw import RandomDraw


log = logging.getLogger(__name__)

ROLL_MIN = 1
ROLL_MAX = 10
MIN_EFFECT = 0.1
MAX_EFFECT = 5.0
ADVANTAGE_MULTIPLIER = 1.3
# Lucky stance: high modifier with this chance, low otherwise
LUCKY_CHANCE = 0.3
LUCKY_HIGH = 2.0
LUCKY_LOW = 0.5
# Loser never drops below this after a duello
SIZE_FLOOR = 1.0

ATTACK_MODIFIERS: dict[Style, float] = {
    Style.AGGRESSIVE: 1.5,
    Style.DEFENSIVE: 0.7,
    Style.TECHNICAL: 1.2,
}

DEFEND_MODIFIERS: dict[Style, float] = {
    Style.AGGRESSIVE: 0.7,
    Style.DEFENSIVE: 1.8,
    Style.TECHNICAL: 1.2,
}

AGGRESSIVE_SPECIAL_MIN = 2
AGGRESSIVE_SPECIAL_MAX = 5
AGGRESSIVE_RECOIL = 1.0
COUNTER_FALLBACK = 1.0
TECHNICAL_SPECIAL = 3.0
# (upper bound of p, effect) checked in order
LUCKY_SPECIAL_TABLE: tuple[tuple[float, float], ...] = ((0.10, 7.0), (0.40, 4.0), (0.70, 2.0))


def other_turn(turn: int) -> int:
    return 2 if turn == 1 else 1


def clamp_effect(raw: float) -> float:
    """Round to one decimal and clamp into [0.1, 5]."""
    return max(MIN_EFFECT, min(MAX_EFFECT, round(raw, 1)))


def _style_modifier(table: dict[Style, float], style: Style, draw: RandomDraw) -> float:
    if style is Style.LUCKY:
        # Re-drawn on every call
        return LUCKY_HIGH if draw.uniform_float(0.0, 1.0) < LUCKY_CHANCE else LUCKY_LOW
    return table[style]


def resolve_attack(draw: RandomDraw, attacker: Style, defender: Style) -> tuple[int, float, float]:
    """Roll an attack.

    Args:
        draw: Random source; the roll is drawn before any lucky modifier.
        attacker: Stance of the acting side.
        defender: Stance of the other side.

    Returns:
        ``(roll, modifier, damage)`` with damage in [0.1, 5].
    """
    roll = draw.uniform_int(ROLL_MIN, ROLL_MAX)
    modifier = _style_modifier(ATTACK_MODIFIERS, attacker, draw)
    if has_advantage(attacker, defender):
        modifier *= ADVANTAGE_MULTIPLIER
    return roll, round(modifier, 2), clamp_effect(roll * modifier)


def resolve_defend(draw: RandomDraw, style: Style) -> tuple[int, float, float]:
    """Roll a defence; returns ``(roll, modifier, defense)``.

    The defence value is narrated and recorded only, it never reduces later
    incoming damage.
    """
    roll = draw.uniform_int(ROLL_MIN, ROLL_MAX)
    modifier = _style_modifier(DEFEND_MODIFIERS, style, draw)
    return roll, round(modifier, 2), clamp_effect(roll * modifier)


def last_attack_against(history: Sequence[Action], turn: int) -> float | None:
    """Damage of the most recent attack made by the side opposite ``turn``."""
    attacker = other_turn(turn)
    for action in reversed(history):
        if isinstance(action, AttackAction) and action.turn == attacker:
            return action.damage
    return None


def resolve_special(
    draw: RandomDraw, style: Style, history: Sequence[Action], turn: int
) -> tuple[float, float | None]:
    """Return ``(effect, recoil)`` for a stance's special move; recoil is None unless aggressive."""
    if style is Style.AGGRESSIVE:
        return float(draw.uniform_int(AGGRESSIVE_SPECIAL_MIN, AGGRESSIVE_SPECIAL_MAX)), AGGRESSIVE_RECOIL
    if style is Style.DEFENSIVE:
        reflected = last_attack_against(history, turn)
        return (reflected if reflected is not None else COUNTER_FALLBACK), None
    if style is Style.TECHNICAL:
        return TECHNICAL_SPECIAL, None
    p = draw.uniform_float(0.0, 1.0)
    for bound, effect in LUCKY_SPECIAL_TABLE:
        if p < bound:
            return effect, None
    return 0.0, None


def received_totals(history: Sequence[Action]) -> tuple[float, float]:
    """Damage received by ``(challenger, opponent)`` over the whole history.

    Attacks and specials land on the other side; recoil lands on the actor.
    """
    received = {1: 0.0, 2: 0.0}
    for action in history:
        if isinstance(action, AttackAction):
            received[other_turn(action.turn)] += action.damage
        elif isinstance(action, SpecialAction):
            received[other_turn(action.turn)] += action.effect
        elif isinstance(action, RecoilAction):
            received[action.turn] += action.effect
    return round(received[1], 1), round(received[2], 1)


def _fmt(value: float) -> str:
    return f"{value:g}"


def _special_message(name: str, style: Style, effect: float, countered: bool) -> str:
    if style is Style.AGGRESSIVE:
        return f"{name} uses Critical Strike for {_fmt(effect)}cm damage, but takes {_fmt(AGGRESSIVE_RECOIL)}cm recoil damage!"
    if style is Style.DEFENSIVE:
        if countered:
            return f"{name} uses Counterattack, returning {_fmt(effect)}cm damage!"
        return f"{name} uses Counterattack, but there's nothing to counter! Deals {_fmt(effect)}cm damage."
    if style is Style.TECHNICAL:
        return f"{name} uses Precision Strike for exactly {_fmt(effect)}cm damage!"
    if effect >= 7:
        return f"{name} uses Gamble and hits a SUPER CRITICAL for {_fmt(effect)}cm damage!"
    if effect > 0:
        return f"{name} uses Gamble for {_fmt(effect)}cm damage."
    return f"{name} uses Gamble and fails completely!"


class DuelloService:
    """Owns the duello lifecycle: pending -> active -> completed | declined | expired."""

    def __init__(
        self,
        db: Database,
        ledger: StatLedger,
        draw: RandomDraw,
        locks: EntityLockManager,
        cfg: Config | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.ledger = ledger
        self.draw = draw
        self.locks = locks
        self.cfg = cfg or Config()
        self.clock = clock

    async def get_duello(self, duello_id: int, tx: Transaction | None = None) -> Duello:
        ex = tx or self.db
        row = await ex.fetchone("SELECT * FROM duellos WHERE id = ?", (duello_id,))
        if row is None:
            raise NotFound(f"Duello {duello_id} not found")
        return Duello.from_row(row)

    async def create_duello(
        self,
        challenger: UserIdentity,
        group_id: int,
        style: str | Style,
        wager: float,
        opponent: UserIdentity | None = None,
    ) -> Duello:
        """Open a challenge, addressed to ``opponent`` or to anyone in the group.

        Raises:
            InvalidInput: Unknown style, wager out of range, or self-challenge.
            InsufficientStat: Challenger or target too small for the wager.
            NotFound: The addressed opponent has no record in the group.
        """
        chosen = Style.parse(style)
        cfg = self.cfg
        if wager is None or not math.isfinite(wager) or not cfg.duello_min_wager <= wager <= cfg.duello_max_wager:
            raise InvalidInput(
                f"Wager must be between {_fmt(cfg.duello_min_wager)} and {_fmt(cfg.duello_max_wager)}cm."
            )

        user = await self.ledger.get_or_create(challenger, group_id)
        if user.size < cfg.min_fight_size:
            raise InsufficientStat(
                f"Your size is too small for a duello! You need at least {_fmt(cfg.min_fight_size)}cm."
            )
        if user.size <= wager:
            raise InsufficientStat(
                f"You can't afford this wager with your current size of {_fmt(user.size)}cm."
            )

        opponent_id: int | None = None
        if opponent is not None:
            if opponent.user_id == user.user_id:
                raise InvalidInput("You can't challenge yourself to a duello!")
            target = await self.ledger.get(opponent.user_id, group_id)
            if target.size < cfg.min_fight_size:
                raise InsufficientStat(
                    f"{target.first_name}'s size is too small for a duello! "
                    f"They need at least {_fmt(cfg.min_fight_size)}cm."
                )
            opponent_id = target.user_id

        now = self.clock()
        duello = Duello(
            id=0,
            group_id=group_id,
            challenger_id=user.user_id,
            challenger_style=chosen,
            wager=float(wager),
            expires_at=now + cfg.duello_expiry,
            opponent_id=opponent_id,
            created_at=now,
        )
        duello_id = await self.db.execute(
            "INSERT INTO duellos (group_id, challenger_id, opponent_id, challenger_style, wager, current_turn, "
            "status, expires_at, history_json, created_at) VALUES (?, ?, ?, ?, ?, 1, 'pending', ?, '[]', ?)",
            (
                group_id,
                user.user_id,
                opponent_id,
                chosen.value,
                float(wager),
                to_db_time(duello.expires_at),
                to_db_time(now),
            ),
        )
        if duello_id is None:
            raise InvalidState("The duello could not be stored.")
        log.info(
            "Duello %s created by %s in group %s (style=%s wager=%s target=%s)",
            duello_id, user.user_id, group_id, chosen.value, wager, opponent_id,
        )
        return replace(duello, id=duello_id)

    async def join_duello(self, duello_id: int, joiner: UserIdentity, style: str | Style) -> Duello:
        """Accept a pending challenge with a chosen stance; the duello becomes active."""
        chosen = Style.parse(style)
        async with self.locks.for_entity("duello", duello_id):
            duello = await self.get_duello(duello_id)
            await self._ensure_pending(duello)
            if joiner.user_id == duello.challenger_id:
                raise NotParticipant("You can't accept your own challenge!")
            if duello.opponent_id is not None and duello.opponent_id != joiner.user_id:
                raise NotParticipant("This challenge was for another user.")

            user = await self.ledger.get(joiner.user_id, duello.group_id)
            if user.size < self.cfg.min_fight_size:
                raise InsufficientStat(
                    f"Your size is too small for a duello! You need at least {_fmt(self.cfg.min_fight_size)}cm."
                )
            # Must keep something after losing the wager
            if user.size <= duello.wager:
                raise InsufficientStat(
                    f"You can't afford this wager with your current size of {_fmt(user.size)}cm."
                )

            challenger = await self.ledger.get(duello.challenger_id, duello.group_id)
            start = StartAction(
                round=1,
                message=(
                    f"The duello has begun! {challenger.first_name} ({duello.challenger_style.value}) "
                    f"vs {user.first_name} ({chosen.value})"
                ),
            )
            active = replace(
                duello,
                opponent_id=user.user_id,
                opponent_style=chosen,
                current_turn=1,
                status=DuelloStatus.ACTIVE,
                history=[start],
            )
            async with self.db.transaction() as tx:
                await self._guard_status(tx, duello_id, DuelloStatus.PENDING)
                await self._write(tx, active)

        log.info(
            "Duello %s activated: %s (%s) vs %s (%s)",
            duello_id, active.challenger_id, active.challenger_style.value, user.user_id, chosen.value,
        )
        return active

    async def perform_action(self, duello_id: int, actor: UserIdentity, kind: str | ActionKind) -> ActionOutcome:
        """Resolve one player move and flip the turn; settles after the final round."""
        move = ActionKind.parse_player_action(kind)
        async with self.locks.for_entity("duello", duello_id):
            duello = await self.get_duello(duello_id)
            if duello.status is DuelloStatus.PENDING:
                await self._ensure_pending(duello)
                raise InvalidState("This duello has not started yet.")
            if duello.status is not DuelloStatus.ACTIVE:
                raise InvalidState(f"This duello is already {duello.status.value}.")

            turn = duello.role_of(actor.user_id)
            if turn is None:
                raise NotParticipant("You are not part of this duello.")
            if turn != duello.current_turn:
                log.debug("Duello %s: %s moved out of turn", duello_id, actor.user_id)
                raise NotYourTurn("It's not your turn!")

            appended = self._resolve_move(duello, move, turn, actor.first_name)
            history = [*duello.history, *appended]
            progressed = replace(duello, history=history, current_turn=other_turn(turn))

            if progressed.combat_actions() >= 2 * self.cfg.duello_rounds:
                return await self._settle(progressed, appended)

            async with self.db.transaction() as tx:
                await self._guard_status(tx, duello_id, DuelloStatus.ACTIVE)
                await self._write(tx, progressed)

        log.debug("Duello %s: turn %s played %s", duello_id, turn, move.value)
        return ActionOutcome(duello=progressed, narration_lines=[a.message for a in appended])

    async def decline_duello(self, duello_id: int, actor: UserIdentity) -> Duello:
        """Withdraw or refuse a pending challenge; only its two parties may do so."""
        async with self.locks.for_entity("duello", duello_id):
            duello = await self.get_duello(duello_id)
            await self._ensure_pending(duello)
            if duello.role_of(actor.user_id) is None:
                raise NotParticipant("Only the challenged user or the challenger can decline this duello.")
            declined = replace(duello, status=DuelloStatus.DECLINED, completed_at=self.clock())
            async with self.db.transaction() as tx:
                await self._guard_status(tx, duello_id, DuelloStatus.PENDING)
                await self._write(tx, declined)
        log.info("Duello %s declined by %s", duello_id, actor.user_id)
        return declined

    def _resolve_move(self, duello: Duello, move: ActionKind, turn: int, name: str) -> list[Action]:
        rnd = duello.current_round
        style = duello.style_of(turn)
        if move is ActionKind.ATTACK:
            roll, modifier, damage = resolve_attack(self.draw, style, duello.style_of(other_turn(turn)))
            return [
                AttackAction(
                    round=rnd, turn=turn, roll=roll, modifier=modifier, damage=damage,
                    message=f"{name} attacks for {_fmt(damage)}cm damage!",
                )
            ]
        if move is ActionKind.DEFEND:
            roll, modifier, defense = resolve_defend(self.draw, style)
            return [
                DefendAction(
                    round=rnd, turn=turn, roll=roll, modifier=modifier, defense=defense,
                    message=f"{name} gains {_fmt(defense)}cm defense boost!",
                )
            ]

        countered = style is Style.DEFENSIVE and last_attack_against(duello.history, turn) is not None
        effect, recoil = resolve_special(self.draw, style, duello.history, turn)
        actions: list[Action] = [
            SpecialAction(round=rnd, turn=turn, effect=effect, message=_special_message(name, style, effect, countered))
        ]
        if recoil is not None:
            actions.append(
                RecoilAction(round=rnd, turn=turn, effect=recoil, message=f"{name} takes {_fmt(recoil)}cm recoil damage!")
            )
        return actions

    async def _settle(self, duello: Duello, appended: list[Action]) -> ActionOutcome:
        """Compare received damage, move the wager and close the duello in one transaction."""
        challenger_received, opponent_received = received_totals(duello.history)
        if duello.opponent_id is None:
            raise InvalidState("This duello has no opponent yet.")
        last_round = appended[0].round

        winner_id: int | None = None
        loser_id: int | None = None
        if challenger_received < opponent_received:
            winner_id, loser_id = duello.challenger_id, duello.opponent_id
        elif opponent_received < challenger_received:
            winner_id, loser_id = duello.opponent_id, duello.challenger_id

        wager = duello.wager
        async with self.db.transaction() as tx:
            await self._guard_status(tx, duello.id, DuelloStatus.ACTIVE)
            if winner_id is not None and loser_id is not None:
                winner = await self.ledger.apply_delta(
                    winner_id, duello.group_id,
                    lambda s: replace(s, size=s.size + wager, wins=s.wins + 1), tx,
                )
                await self.ledger.apply_delta(
                    loser_id, duello.group_id,
                    lambda s: replace(s, size=max(SIZE_FLOOR, s.size - wager), losses=s.losses + 1), tx,
                )
                dealt, taken = (
                    (opponent_received, challenger_received)
                    if winner_id == duello.challenger_id
                    else (challenger_received, opponent_received)
                )
                message = f"{winner.first_name} wins the duello by dealing {_fmt(dealt)}cm vs {_fmt(taken)}cm!"
            else:
                message = f"The duello ends in a tie! Both players dealt {_fmt(challenger_received)}cm damage."

            end = EndAction(
                round=last_round,
                message=message,
                challenger_received=challenger_received,
                opponent_received=opponent_received,
                winner_id=winner_id,
            )
            settled = replace(
                duello,
                history=[*duello.history, end],
                status=DuelloStatus.COMPLETED,
                winner_id=winner_id,
                completed_at=self.clock(),
            )
            await self._write(tx, settled)
            challenger = await self.ledger.get(duello.challenger_id, duello.group_id, tx)
            opponent = await self.ledger.get(duello.opponent_id, duello.group_id, tx)

        log.info(
            "Duello %s settled: winner=%s received=(%s, %s) wager=%s",
            duello.id, winner_id, challenger_received, opponent_received, wager,
        )
        return ActionOutcome(
            duello=settled,
            narration_lines=[a.message for a in appended] + [end.message],
            is_settled=True,
            challenger=challenger,
            opponent=opponent,
        )

    async def _ensure_pending(self, duello: Duello) -> None:
        """Reject anything but a live pending challenge, expiring it when past due."""
        if duello.status is not DuelloStatus.PENDING:
            raise InvalidState("This challenge has already been accepted or cancelled.")
        if duello.is_past_expiry(self.clock()):
            expired = replace(duello, status=DuelloStatus.EXPIRED)
            async with self.db.transaction() as tx:
                await self._guard_status(tx, duello.id, DuelloStatus.PENDING)
                await self._write(tx, expired)
            log.info("Duello %s expired", duello.id)
            raise Expired("This challenge has expired.")

    async def _guard_status(self, tx: Transaction, duello_id: int, expected: DuelloStatus) -> None:
        row = await tx.fetchone("SELECT status FROM duellos WHERE id = ?", (duello_id,))
        if row is None:
            raise NotFound(f"Duello {duello_id} not found")
        if row["status"] != expected.value:
            raise InvalidState(f"Duello {duello_id} is already {row['status']}")

    async def _write(self, tx: Transaction, duello: Duello) -> None:
        await tx.execute(
            "UPDATE duellos SET opponent_id = ?, opponent_style = ?, current_turn = ?, status = ?, "
            "history_json = ?, winner_id = ?, completed_at = ? WHERE id = ?",
            (
                duello.opponent_id,
                duello.opponent_style.value if duello.opponent_style else None,
                duello.current_turn,
                duello.status.value,
                dump_history(duello.history),
                duello.winner_id,
                to_db_time(duello.completed_at),
                duello.id,
            ),
        )
