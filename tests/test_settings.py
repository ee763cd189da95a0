"""
Tests for runtime configuration and feature flags.
"""

import pytest

from terminal_core.config.settings import (
    SimulationSettings,
    get_all_flags,
    is_enabled,
    set_flag,
)


class TestFeatureFlags:

    def test_known_flag(self):
        assert isinstance(is_enabled('default_filter_sets'), bool)
        assert 'default_filter_sets' in get_all_flags()

    def test_unknown_flag_raises(self):
        with pytest.raises(KeyError, match="Unknown feature flag"):
            is_enabled('nonexistent')
        with pytest.raises(KeyError, match="Available flags: default_filter_sets"):
            set_flag('nonexistent', True)

    def test_get_all_flags_is_a_copy(self):
        flags = get_all_flags()
        flags['default_filter_sets'] = 'tampered'

        assert get_all_flags()['default_filter_sets'] != 'tampered'


class TestSimulationSettings:

    def test_defaults(self, monkeypatch):
        for name in ('TERMINAL_TICK_INTERVAL', 'TERMINAL_SETTLE_DELAY_MIN', 'TERMINAL_SETTLE_DELAY_MAX',
                     'TERMINAL_DEFAULT_CAPACITY', 'TERMINAL_RANDOM_SEED'):
            monkeypatch.delenv(name, raising=False)

        settings = SimulationSettings.from_env()

        assert settings == SimulationSettings()
        assert settings.tick_interval == 1.0
        assert (settings.settle_delay_min, settings.settle_delay_max) == (0.5, 1.5)
        assert settings.default_capacity == 1000.0
        assert settings.random_seed is None

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv('TERMINAL_TICK_INTERVAL', '0.25')
        monkeypatch.setenv('TERMINAL_RANDOM_SEED', '42')

        settings = SimulationSettings.from_env()

        assert settings.tick_interval == 0.25
        assert settings.random_seed == 42

    def test_bad_env_value_names_variable(self, monkeypatch):
        monkeypatch.setenv('TERMINAL_DEFAULT_CAPACITY', 'lots')

        with pytest.raises(ValueError, match='TERMINAL_DEFAULT_CAPACITY'):
            SimulationSettings.from_env()

    @pytest.mark.parametrize("kwargs", [
        {"tick_interval": 0},
        {"settle_delay_min": 2.0, "settle_delay_max": 1.0},
        {"settle_delay_min": -1.0},
        {"default_capacity": 0},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            SimulationSettings(**kwargs)
