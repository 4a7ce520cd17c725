"""Player, growth and fight records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: datetime | None) -> str | None:
    """Serialize a timestamp for storage (ISO 8601, UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def from_db_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class UserIdentity:
    """Who the chat transport says is acting."""

    user_id: int
    first_name: str
    last_name: str | None = None
    username: str | None = None


@dataclass
class UserStat:
    """A player's record within one group.

    Attributes:
        user_id: Chat user ID
        group_id: Chat group ID
        size: The grown stat; may go negative, renderers clamp to 1
        total_growths: Number of grow actions taken
        positive_growths: Grow actions that increased size
        negative_growths: Grow actions that decreased size
        wins: Fights and duellos won
        losses: Fights and duellos lost
        last_grow_time: When the player last grew, None if never
    """

    user_id: int
    group_id: int
    first_name: str
    username: str | None = None
    last_name: str | None = None
    size: float = 0.0
    total_growths: int = 0
    positive_growths: int = 0
    negative_growths: int = 0
    wins: int = 0
    losses: int = 0
    last_grow_time: datetime | None = None
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> "UserStat":
        return cls(
            user_id=int(row["user_id"]),
            group_id=int(row["group_id"]),
            first_name=row["first_name"],
            username=row["username"],
            last_name=row["last_name"],
            size=float(row["size"]),
            total_growths=int(row["total_growths"]),
            positive_growths=int(row["positive_growths"]),
            negative_growths=int(row["negative_growths"]),
            wins=int(row["wins"]),
            losses=int(row["losses"]),
            last_grow_time=from_db_time(row["last_grow_time"]),
            created_at=row["created_at"],
        )

    def display_size(self) -> float:
        return max(1.0, self.size)


class FightStatus(Enum):
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass
class Fight:
    id: int
    group_id: int
    initiator_id: int
    wager: float
    target_id: int | None = None
    status: FightStatus = FightStatus.PENDING
    initiator_roll: int | None = None
    target_roll: int | None = None
    winner_id: int | None = None
    loser_id: int | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> "Fight":
        return cls(
            id=int(row["id"]),
            group_id=int(row["group_id"]),
            initiator_id=int(row["initiator_id"]),
            wager=float(row["wager"]),
            target_id=row["target_id"],
            status=FightStatus(row["status"]),
            initiator_roll=row["initiator_roll"],
            target_roll=row["target_roll"],
            winner_id=row["winner_id"],
            loser_id=row["loser_id"],
            created_at=from_db_time(row["created_at"]),
            completed_at=from_db_time(row["completed_at"]),
        )


@dataclass
class FightResult:
    """Outcome of a resolved fight, with rank movement for the renderer."""

    fight: Fight
    tie: bool
    winner: UserStat | None = None
    loser: UserStat | None = None
    old_winner_rank: int | None = None
    new_winner_rank: int | None = None
    old_loser_rank: int | None = None
    new_loser_rank: int | None = None

    @property
    def winner_id(self) -> int | None:
        return self.fight.winner_id

    @property
    def loser_id(self) -> int | None:
        return self.fight.loser_id


@dataclass
class Growth:
    user_id: int
    group_id: int
    amount: float
    timestamp: datetime
    is_special: bool = False
    special_reason: str | None = None
    id: int | None = None


@dataclass
class GrowthResult:
    """What a grow or daily-winner award did to the player."""

    user: UserStat
    amount: float
    old_size: float
    old_rank: int | None
    new_rank: int | None
    growth: Growth
