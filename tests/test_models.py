"""Tests for records, history log and error taxonomy."""
from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from grower import errors
from grower.models.duello import (
    AttackAction,
    Duello,
    DuelloStatus,
    EndAction,
    RecoilAction,
    SpecialAction,
    StartAction,
    Style,
    dump_history,
    load_history,
)
from grower.models.game import UserStat, from_db_time, to_db_time


def _duello(**overrides):
    base = dict(
        id=1,
        group_id=10,
        challenger_id=1,
        challenger_style=Style.AGGRESSIVE,
        wager=2.0,
        expires_at=datetime(2025, 1, 1, 12, 30, tzinfo=timezone.utc),
        opponent_id=2,
        opponent_style=Style.TECHNICAL,
        status=DuelloStatus.ACTIVE,
    )
    base.update(overrides)
    return Duello(**base)


class TestHistoryLog:
    """Tests for the tagged-union history encoding."""

    def test_history_survives_storage(self):
        history = [
            StartAction(round=1, message="go"),
            AttackAction(round=1, turn=1, roll=6, modifier=1.95, damage=5.0, message="hit"),
            SpecialAction(round=1, turn=2, effect=4.0, message="crit"),
            RecoilAction(round=1, turn=2, effect=1.0, message="ouch"),
            EndAction(round=3, message="done", challenger_received=5.0, opponent_received=5.0),
        ]
        loaded = load_history(dump_history(history))
        assert loaded == history
        assert [type(a) for a in loaded] == [type(a) for a in history]

    def test_unknown_kind_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            load_history('[{"kind": "taunt", "round": 1, "message": "x"}]')

    def test_missing_field_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            load_history('[{"kind": "attack", "round": 1, "turn": 1, "message": "x"}]')

    def test_bad_turn_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            load_history('[{"kind": "special", "round": 1, "turn": 3, "effect": 1.0, "message": "x"}]')

    def test_entries_are_immutable(self):
        action = SpecialAction(round=1, turn=1, effect=3.0, message="x")
        with pytest.raises(pydantic.ValidationError):
            action.effect = 4.0


class TestDuelloRecord:
    def test_roles(self):
        duello = _duello()
        assert duello.role_of(1) == 1
        assert duello.role_of(2) == 2
        assert duello.role_of(3) is None
        assert duello.participant_id(2) == 2
        assert duello.style_of(2) is Style.TECHNICAL

    def test_open_challenge_has_no_second_role(self):
        duello = _duello(opponent_id=None, opponent_style=None, status=DuelloStatus.PENDING)
        assert duello.role_of(2) is None

    def test_open_challenge_has_no_second_style(self):
        duello = _duello(opponent_id=None, opponent_style=None, status=DuelloStatus.PENDING)
        assert duello.style_of(1) is Style.AGGRESSIVE
        with pytest.raises(errors.InvalidState):
            duello.style_of(2)

    def test_round_counts_combat_actions_only(self):
        duello = _duello(history=[
            StartAction(round=1, message="go"),
            SpecialAction(round=1, turn=1, effect=4.0, message="crit"),
            RecoilAction(round=1, turn=1, effect=1.0, message="ouch"),
        ])
        assert duello.combat_actions() == 1
        assert duello.current_round == 1
        duello.history.append(AttackAction(round=1, turn=2, roll=1, modifier=1.2, damage=1.2, message="hit"))
        assert duello.current_round == 2

    def test_expiry_boundary(self):
        duello = _duello()
        assert not duello.is_past_expiry(duello.expires_at - timedelta(seconds=1))
        assert duello.is_past_expiry(duello.expires_at)

    def test_terminal_states(self):
        assert {s for s in DuelloStatus if s.is_terminal} == {
            DuelloStatus.COMPLETED, DuelloStatus.DECLINED, DuelloStatus.EXPIRED,
        }


class TestUserStat:
    def test_display_size_clamps_to_one(self):
        assert UserStat(user_id=1, group_id=1, first_name="A", size=-4.0).display_size() == 1.0
        assert UserStat(user_id=1, group_id=1, first_name="A", size=7.5).display_size() == 7.5


class TestDbTime:
    def test_naive_times_are_utc(self):
        naive = datetime(2025, 3, 1, 8, 0)
        assert from_db_time(to_db_time(naive)) == naive.replace(tzinfo=timezone.utc)

    def test_none_passthrough(self):
        assert to_db_time(None) is None
        assert from_db_time(None) is None
        assert from_db_time("") is None


class TestErrorTaxonomy:
    """Tests for the category each failure reports."""

    @pytest.mark.parametrize("cls,category", [
        (errors.InvalidState, "race"),
        (errors.Expired, "race"),
        (errors.NotYourTurn, "user"),
        (errors.InsufficientStat, "user"),
        (errors.InvalidInput, "user"),
        (errors.NotParticipant, "user"),
        (errors.NotFound, "data"),
        (errors.CorruptRecord, "data"),
    ])
    def test_categories(self, cls, category):
        err = cls("message")
        assert isinstance(err, errors.GameError)
        assert err.category == category
        assert err.message == "message"

    def test_cooldown_carries_remaining(self):
        err = errors.CooldownActive("wait", timedelta(minutes=5))
        assert err.remaining == timedelta(minutes=5)
        assert err.kind is errors.ErrorKind.COOLDOWN
