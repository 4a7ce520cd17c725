from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Union

from grower.errors import InvalidInput, NotFound
from grower.models.game import UserIdentity, UserStat, to_db_time

from .db import Database, Transaction


log = logging.getLogger(__name__)

Executor = Union[Database, Transaction]
StatDelta = Callable[[UserStat], UserStat]

_SELECT_USER = "SELECT * FROM users WHERE user_id = ? AND group_id = ?"

# Fields the explicit setter may touch, with their coercion
SETTABLE_FIELDS: dict[str, type] = {
    "size": float,
    "wins": int,
    "losses": int,
}


class StatLedger:
    """Owns every per-(user, group) record; all mutations go through here."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def get_or_create(self, identity: UserIdentity, group_id: int) -> UserStat:
        """Return the player's record in the group, creating it at size 0.

        Cached names are refreshed when the transport reports new ones.
        """
        if not identity.user_id or not (identity.first_name or "").strip():
            raise InvalidInput("User ID and first name are required")
        if not group_id:
            raise InvalidInput("Group ID is required")

        async with self.db.transaction() as tx:
            row = await tx.fetchone(_SELECT_USER, (identity.user_id, group_id))
            if row is None:
                await tx.execute(
                    "INSERT INTO users (user_id, group_id, username, first_name, last_name) VALUES (?, ?, ?, ?, ?)",
                    (identity.user_id, group_id, identity.username, identity.first_name, identity.last_name),
                )
                log.info("Created user %s (%s) in group %s", identity.first_name, identity.user_id, group_id)
            elif (
                row["first_name"] != identity.first_name
                or row["last_name"] != identity.last_name
                or row["username"] != identity.username
            ):
                await tx.execute(
                    "UPDATE users SET first_name = ?, last_name = ?, username = ? WHERE user_id = ? AND group_id = ?",
                    (identity.first_name, identity.last_name, identity.username, identity.user_id, group_id),
                )
                log.debug("Refreshed names for user %s in group %s", identity.user_id, group_id)
            row = await tx.fetchone(_SELECT_USER, (identity.user_id, group_id))
        if row is None:
            raise NotFound(f"User {identity.user_id} not found in group {group_id}")
        return UserStat.from_row(row)

    async def find(self, user_id: int, group_id: int, tx: Transaction | None = None) -> UserStat | None:
        ex: Executor = tx or self.db
        row = await ex.fetchone(_SELECT_USER, (user_id, group_id))
        return UserStat.from_row(row) if row else None

    async def get(self, user_id: int, group_id: int, tx: Transaction | None = None) -> UserStat:
        stat = await self.find(user_id, group_id, tx)
        if stat is None:
            raise NotFound(f"User {user_id} not found in group {group_id}")
        return stat

    async def find_by_identifier(self, identifier: str, group_id: int) -> UserStat | None:
        """Look a player up by numeric user ID or by username (``@`` optional)."""
        ident = (identifier or "").strip().lstrip("@")
        if not ident:
            return None
        if ident.lstrip("-").isdigit():
            stat = await self.find(int(ident), group_id)
            if stat:
                return stat
        row = await self.db.fetchone(
            "SELECT * FROM users WHERE group_id = ? AND username = ? COLLATE NOCASE",
            (group_id, ident),
        )
        return UserStat.from_row(row) if row else None

    async def member_at(self, group_id: int, index: int) -> UserStat | None:
        row = await self.db.fetchone(
            "SELECT * FROM users WHERE group_id = ? ORDER BY user_id LIMIT 1 OFFSET ?",
            (group_id, index),
        )
        return UserStat.from_row(row) if row else None

    async def apply_delta(
        self,
        user_id: int,
        group_id: int,
        delta_fn: StatDelta,
        tx: Transaction | None = None,
    ) -> UserStat:
        """Read the record, apply ``delta_fn`` to a copy and write it back atomically.

        Pass ``tx`` to join a wider transaction (e.g. both sides of a
        settlement); otherwise the update commits on its own.
        """
        if tx is not None:
            return await self._apply(tx, user_id, group_id, delta_fn)
        async with self.db.transaction() as own:
            return await self._apply(own, user_id, group_id, delta_fn)

    async def _apply(self, tx: Transaction, user_id: int, group_id: int, delta_fn: StatDelta) -> UserStat:
        current = await self.get(user_id, group_id, tx)
        updated = delta_fn(replace(current))
        # Keys are not part of the delta
        updated = replace(updated, user_id=current.user_id, group_id=current.group_id)
        await tx.execute(
            "UPDATE users SET size = ?, total_growths = ?, positive_growths = ?, negative_growths = ?, "
            "wins = ?, losses = ?, last_grow_time = ? WHERE user_id = ? AND group_id = ?",
            (
                float(updated.size),
                updated.total_growths,
                updated.positive_growths,
                updated.negative_growths,
                updated.wins,
                updated.losses,
                to_db_time(updated.last_grow_time),
                user_id,
                group_id,
            ),
        )
        return updated

    async def set_field(self, user_id: int, group_id: int, field_name: str, value: object) -> UserStat:
        """Overwrite one of the known mutable fields (``size``, ``wins``, ``losses``)."""
        name = (field_name or "").strip().lower()
        coerce = SETTABLE_FIELDS.get(name)
        if coerce is None:
            raise InvalidInput(
                f"Invalid attribute: {field_name}. Valid attributes are: {', '.join(SETTABLE_FIELDS)}"
            )
        try:
            parsed = coerce(value)
        except (TypeError, ValueError):
            raise InvalidInput(f"Invalid value: {value}. Must be a number.") from None

        if name == "size":
            delta: StatDelta = lambda s: replace(s, size=parsed)
        elif name == "wins":
            if parsed < 0:
                raise InvalidInput("wins cannot be negative")
            delta = lambda s: replace(s, wins=parsed)
        else:
            if parsed < 0:
                raise InvalidInput("losses cannot be negative")
            delta = lambda s: replace(s, losses=parsed)

        stat = await self.apply_delta(user_id, group_id, delta)
        log.info("Set %s=%s for user %s in group %s", name, parsed, user_id, group_id)
        return stat
