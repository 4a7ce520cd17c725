"""Tests for configuration loading."""
import os
from datetime import timedelta
from unittest.mock import patch

import pytest

from grower.config import Config, load_config


class TestConfigDataclass:
    """Tests for Config dataclass defaults."""

    def test_config_default_values(self):
        """Test that Config has expected default values."""
        config = Config()
        assert config.db_path == "data/grower.db"
        assert config.log_level == "INFO"
        assert config.bot_token is None
        assert config.admin_ids is None
        assert config.page_size == 10
        assert config.grow_shrink_ratio == 0.6
        assert config.min_fight_size == 1.0
        assert config.duello_min_wager == 0.5
        assert config.duello_max_wager == 10.0
        assert config.duello_rounds == 3

    def test_config_derived_durations(self):
        """Test the cooldown and expiry properties."""
        config = Config(cooldown_hours=2, cooldown_minutes=15, duello_expiry_minutes=5)
        assert config.grow_cooldown == timedelta(hours=2, minutes=15)
        assert config.duello_expiry == timedelta(minutes=5)

    def test_default_durations(self):
        config = Config()
        assert config.grow_cooldown == timedelta(hours=12)
        assert config.duello_expiry == timedelta(minutes=30)


class TestLoadConfig:
    """Tests for load_config function."""

    def test_load_config_minimal(self):
        """Test load_config with no environment set."""
        with patch.dict(os.environ, {}, clear=True):
            config = load_config()
            assert config == Config()

    def test_load_config_with_all_env_vars(self):
        """Test load_config reads every supported variable."""
        env = {
            "GROWER_DB_PATH": "/tmp/game.db",
            "LOG_LEVEL": "DEBUG",
            "BOT_TOKEN": "token-123",
            "ADMIN_IDS": "1,2",
            "PAGE_SIZE": "25",
            "COOLDOWN_HOURS": "6",
            "COOLDOWN_MINUTES": "30",
            "GROW_SHRINK_RATIO": "0.4",
            "MIN_FIGHT_SIZE": "2.5",
            "DUELLO_EXPIRY_MINUTES": "10",
            "DUELLO_MIN_WAGER": "1",
            "DUELLO_MAX_WAGER": "20",
            "DUELLO_ROUNDS": "5",
        }
        with patch.dict(os.environ, env, clear=True):
            config = load_config()
            assert config.db_path == "/tmp/game.db"
            assert config.log_level == "DEBUG"
            assert config.bot_token == "token-123"
            assert config.admin_ids == [1, 2]
            assert config.page_size == 25
            assert config.grow_cooldown == timedelta(hours=6, minutes=30)
            assert config.grow_shrink_ratio == 0.4
            assert config.min_fight_size == 2.5
            assert config.duello_expiry == timedelta(minutes=10)
            assert config.duello_min_wager == 1.0
            assert config.duello_max_wager == 20.0
            assert config.duello_rounds == 5

    def test_load_config_strips_whitespace(self):
        """Test that whitespace around values is stripped."""
        env = {"GROWER_DB_PATH": "  /tmp/x.db  ", "BOT_TOKEN": "   ", "PAGE_SIZE": " 7 "}
        with patch.dict(os.environ, env, clear=True):
            config = load_config()
            assert config.db_path == "/tmp/x.db"
            assert config.bot_token is None
            assert config.page_size == 7

    @pytest.mark.parametrize("name,value,attr,default", [
        ("PAGE_SIZE", "ten", "page_size", 10),
        ("MIN_FIGHT_SIZE", "big", "min_fight_size", 1.0),
        ("DUELLO_ROUNDS", "3.5", "duello_rounds", 3),
        ("GROW_SHRINK_RATIO", "", "grow_shrink_ratio", 0.6),
    ])
    def test_load_config_malformed_numbers_use_defaults(self, name, value, attr, default):
        """Test that unparsable numbers fall back to defaults."""
        with patch.dict(os.environ, {name: value}, clear=True):
            assert getattr(load_config(), attr) == default

    def test_load_config_admin_ids_with_semicolons(self):
        """Test ADMIN_IDS accepts semicolons as separators."""
        with patch.dict(os.environ, {"ADMIN_IDS": "10; 20,30"}, clear=True):
            assert load_config().admin_ids == [10, 20, 30]

    def test_load_config_admin_ids_ignores_invalid(self):
        """Test malformed ADMIN_IDS entries are skipped."""
        with patch.dict(os.environ, {"ADMIN_IDS": "abc,42,,x1"}, clear=True):
            assert load_config().admin_ids == [42]

    def test_load_config_admin_ids_all_invalid(self):
        """Test ADMIN_IDS with no valid entry becomes None."""
        with patch.dict(os.environ, {"ADMIN_IDS": "abc, ,"}, clear=True):
            assert load_config().admin_ids is None
