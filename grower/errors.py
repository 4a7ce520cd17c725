"""Typed failures raised by the game services.

Every failure the core reports is a ``GameError`` subclass. Callers branch
on ``category`` to pick the feedback they render:

- ``user``: the player asked for something the rules do not allow
- ``race``: the entity moved on (already resolved, expired) under the caller
- ``data``: a referenced record does not exist or cannot be read back
"""
from __future__ import annotations

from datetime import timedelta
from enum import Enum


class ErrorKind(Enum):
    INVALID_STATE = "invalid_state"
    NOT_YOUR_TURN = "not_your_turn"
    INSUFFICIENT_STAT = "insufficient_stat"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    INVALID_INPUT = "invalid_input"
    NOT_PARTICIPANT = "not_participant"
    COOLDOWN = "cooldown"
    CORRUPT_RECORD = "corrupt_record"


USER = "user"
RACE = "race"
DATA = "data"


class GameError(Exception):
    kind: ErrorKind
    category: str

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidState(GameError):
    kind = ErrorKind.INVALID_STATE
    category = RACE


class Expired(GameError):
    kind = ErrorKind.EXPIRED
    category = RACE


class NotYourTurn(GameError):
    kind = ErrorKind.NOT_YOUR_TURN
    category = USER


class InsufficientStat(GameError):
    kind = ErrorKind.INSUFFICIENT_STAT
    category = USER


class InvalidInput(GameError):
    kind = ErrorKind.INVALID_INPUT
    category = USER


class NotParticipant(GameError):
    kind = ErrorKind.NOT_PARTICIPANT
    category = USER


class NotFound(GameError):
    kind = ErrorKind.NOT_FOUND
    category = DATA


class CorruptRecord(GameError):
    kind = ErrorKind.CORRUPT_RECORD
    category = DATA


class CooldownActive(GameError):
    kind = ErrorKind.COOLDOWN
    category = USER

    def __init__(self, message: str, remaining: timedelta) -> None:
        super().__init__(message)
        self.remaining = remaining
