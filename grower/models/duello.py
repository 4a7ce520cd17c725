"""Duello records: fighting styles, lifecycle and the action history log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from grower.errors import CorruptRecord, InvalidInput, InvalidState
from grower.models.game import UserStat, from_db_time


class Style(Enum):
    """Duel stances. Each beats exactly one other stance."""

    AGGRESSIVE = "aggressive"
    DEFENSIVE = "defensive"
    TECHNICAL = "technical"
    LUCKY = "lucky"

    @classmethod
    def parse(cls, value: "str | Style") -> "Style":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            options = ", ".join(s.value for s in cls)
            raise InvalidInput(f"Invalid fighting style: {value}. Choose one of: {options}") from None

    @property
    def label(self) -> str:
        return self.value.capitalize()


# attacker -> the style it beats
STYLE_ADVANTAGES: dict[Style, Style] = {
    Style.AGGRESSIVE: Style.TECHNICAL,
    Style.DEFENSIVE: Style.AGGRESSIVE,
    Style.TECHNICAL: Style.LUCKY,
    Style.LUCKY: Style.DEFENSIVE,
}


def has_advantage(attacker: Style, defender: Style) -> bool:
    return STYLE_ADVANTAGES[attacker] is defender


class DuelloStatus(Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (DuelloStatus.COMPLETED, DuelloStatus.DECLINED, DuelloStatus.EXPIRED)


class ActionKind(Enum):
    START = "start"
    ATTACK = "attack"
    DEFEND = "defend"
    SPECIAL = "special"
    RECOIL = "recoil"
    END = "end"

    @classmethod
    def parse_player_action(cls, value: "str | ActionKind") -> "ActionKind":
        """Parse one of the moves a player may choose on their turn."""
        try:
            kind = value if isinstance(value, cls) else cls(str(value).strip().lower())
        except ValueError:
            kind = None
        if kind not in PLAYER_ACTIONS:
            raise InvalidInput(f"Unknown duello action: {value}")
        return kind


PLAYER_ACTIONS = frozenset({ActionKind.ATTACK, ActionKind.DEFEND, ActionKind.SPECIAL})


class _Entry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    round: int
    message: str


class StartAction(_Entry):
    kind: Literal["start"] = "start"
    turn: Literal[1, 2] = 1


class AttackAction(_Entry):
    kind: Literal["attack"] = "attack"
    turn: Literal[1, 2]
    roll: int
    modifier: float
    damage: float


class DefendAction(_Entry):
    kind: Literal["defend"] = "defend"
    turn: Literal[1, 2]
    roll: int
    modifier: float
    defense: float


class SpecialAction(_Entry):
    kind: Literal["special"] = "special"
    turn: Literal[1, 2]
    effect: float


class RecoilAction(_Entry):
    kind: Literal["recoil"] = "recoil"
    turn: Literal[1, 2]
    effect: float


class EndAction(_Entry):
    kind: Literal["end"] = "end"
    challenger_received: float
    opponent_received: float
    winner_id: int | None = None


Action = Annotated[
    Union[StartAction, AttackAction, DefendAction, SpecialAction, RecoilAction, EndAction],
    Field(discriminator="kind"),
]

COMBAT_KINDS = frozenset({"attack", "defend", "special"})

_history_adapter: TypeAdapter[list[Action]] = TypeAdapter(list[Action])


def load_history(raw: str | bytes) -> list[Action]:
    """Parse and validate a stored history log; raises pydantic.ValidationError."""
    return _history_adapter.validate_json(raw)


def dump_history(history: list[Action]) -> str:
    return _history_adapter.dump_json(history).decode("utf-8")


@dataclass
class Duello:
    """A multi-round duel between a challenger (turn 1) and an opponent (turn 2)."""

    id: int
    group_id: int
    challenger_id: int
    challenger_style: Style
    wager: float
    expires_at: datetime
    opponent_id: int | None = None
    opponent_style: Style | None = None
    current_turn: int = 1
    status: DuelloStatus = DuelloStatus.PENDING
    history: list[Action] = field(default_factory=list)
    winner_id: int | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Duello":
        expires_at = from_db_time(row["expires_at"])
        if expires_at is None:
            raise CorruptRecord(f"Duello {row['id']} has no expiry time")
        try:
            history = load_history(row["history_json"] or "[]")
        except ValidationError as exc:
            raise CorruptRecord(f"Duello {row['id']} has an unreadable history") from exc
        return cls(
            id=int(row["id"]),
            group_id=int(row["group_id"]),
            challenger_id=int(row["challenger_id"]),
            challenger_style=Style(row["challenger_style"]),
            wager=float(row["wager"]),
            expires_at=expires_at,
            opponent_id=row["opponent_id"],
            opponent_style=Style(row["opponent_style"]) if row["opponent_style"] else None,
            current_turn=int(row["current_turn"]),
            status=DuelloStatus(row["status"]),
            history=history,
            winner_id=row["winner_id"],
            created_at=from_db_time(row["created_at"]),
            completed_at=from_db_time(row["completed_at"]),
        )

    def role_of(self, user_id: int) -> int | None:
        """1 for the challenger, 2 for the bound opponent, None otherwise."""
        if user_id == self.challenger_id:
            return 1
        if self.opponent_id is not None and user_id == self.opponent_id:
            return 2
        return None

    def participant_id(self, turn: int) -> int | None:
        return self.challenger_id if turn == 1 else self.opponent_id

    def style_of(self, turn: int) -> Style:
        style = self.challenger_style if turn == 1 else self.opponent_style
        if style is None:
            raise InvalidState("This duello has no opponent yet.")
        return style

    def combat_actions(self) -> int:
        return sum(1 for action in self.history if action.kind in COMBAT_KINDS)

    @property
    def current_round(self) -> int:
        return self.combat_actions() // 2 + 1

    def is_past_expiry(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass
class ActionOutcome:
    """What a duello turn produced.

    Attributes:
        duello: The duello after the action (completed when settled)
        narration_lines: Messages of every history entry the action appended
        is_settled: True when the action ended the duello
        challenger: Challenger record after settlement, None otherwise
        opponent: Opponent record after settlement, None otherwise
    """

    duello: Duello
    narration_lines: list[str]
    is_settled: bool = False
    challenger: UserStat | None = None
    opponent: UserStat | None = None
