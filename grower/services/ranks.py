from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from grower.models.game import UserStat

from .db import Database, Transaction


Executor = Union[Database, Transaction]


@dataclass
class GroupStats:
    total_users: int
    total_growths: int
    average_size: float
    biggest_size: float


class RankService:
    """Leaderboard queries: ordinal position by size within a group."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_user_rank(self, user_id: int, group_id: int, tx: Transaction | None = None) -> int | None:
        """1-based position by size (largest first), None if the user is not in the group.

        Equal sizes are ordered by user ID so the ranking is stable.
        """
        ex: Executor = tx or self.db
        row = await ex.fetchone(
            "SELECT position FROM ("
            " SELECT user_id, ROW_NUMBER() OVER (ORDER BY size DESC, user_id ASC) AS position"
            " FROM users WHERE group_id = ?"
            ") ranked WHERE user_id = ?",
            (group_id, user_id),
        )
        return int(row[0]) if row else None

    async def top(self, group_id: int, limit: int = 10, offset: int = 0) -> list[UserStat]:
        rows = await self.db.fetchall(
            "SELECT * FROM users WHERE group_id = ? ORDER BY size DESC, user_id ASC LIMIT ? OFFSET ?",
            (group_id, limit, offset),
        )
        return [UserStat.from_row(r) for r in rows]

    async def count_users(self, group_id: int) -> int:
        row = await self.db.fetchone("SELECT COUNT(*) FROM users WHERE group_id = ?", (group_id,))
        return int(row[0]) if row else 0

    async def group_stats(self, group_id: int) -> GroupStats:
        row = await self.db.fetchone(
            "SELECT COUNT(*), COALESCE(AVG(size), 0), COALESCE(MAX(size), 0) FROM users WHERE group_id = ?",
            (group_id,),
        )
        growths = await self.db.fetchone("SELECT COUNT(*) FROM growths WHERE group_id = ?", (group_id,))
        return GroupStats(
            total_users=int(row[0]) if row else 0,
            total_growths=int(growths[0]) if growths else 0,
            average_size=float(row[1]) if row else 0.0,
            biggest_size=float(row[2]) if row else 0.0,
        )
