"""
Configuration and Feature Flags for the Terminal Data Layer

Simulation timing and feature flags are controlled via environment
variables so a deployment can retune the simulator without code changes.

Usage:
    from terminal_core.config.settings import SimulationSettings, is_enabled

    settings = SimulationSettings.from_env()
    if is_enabled('default_filter_sets'):
        ...

Environment Variables:
    TERMINAL_TICK_INTERVAL=1.0          - Transfer tick length in seconds
    TERMINAL_SETTLE_DELAY_MIN=0.5       - Shortest valve actuation time
    TERMINAL_SETTLE_DELAY_MAX=1.5       - Longest valve actuation time
    TERMINAL_DEFAULT_CAPACITY=1000      - Capacity assumed for tanks without one
    TERMINAL_RANDOM_SEED=<int>          - Seed for settle delays (unset = random)
    TERMINAL_DEFAULT_FILTER_SETS=true   - Install the built-in filter sets
    TERMINAL_LOG_LEVEL=INFO             - Level used by configure_logging()
"""

import logging
import os
from dataclasses import dataclass
from typing import Dict, Optional


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == 'true'


# Feature flags with environment variable overrides
FEATURE_FLAGS: Dict[str, bool] = {
    'default_filter_sets': _env_flag('TERMINAL_DEFAULT_FILTER_SETS', 'true'),
}


def _check_flag(flag: str) -> None:
    if flag not in FEATURE_FLAGS:
        raise KeyError(
            f"Unknown feature flag: '{flag}'. "
            f"Available flags: {', '.join(FEATURE_FLAGS)}"
        )


def is_enabled(flag: str) -> bool:
    """
    Check if a feature flag is enabled.

    Raises:
        KeyError: If flag name is not recognized
    """
    _check_flag(flag)
    return FEATURE_FLAGS[flag]


def get_all_flags() -> Dict[str, bool]:
    return dict(FEATURE_FLAGS)


def set_flag(flag: str, enabled: bool) -> None:
    """Override a feature flag at runtime (tests, embedding applications)."""
    _check_flag(flag)
    FEATURE_FLAGS[flag] = enabled


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got '{raw}'") from None


@dataclass(frozen=True)
class SimulationSettings:
    """Timing parameters of the operation simulator.

    Attributes:
        tick_interval: Seconds between transfer ticks
        settle_delay_min: Shortest simulated valve actuator travel time
        settle_delay_max: Longest simulated valve actuator travel time
        default_capacity: Capacity assumed for tanks that declare none
        random_seed: Seed for settle delay randomness (None = nondeterministic)
    """
    tick_interval: float = 1.0
    settle_delay_min: float = 0.5
    settle_delay_max: float = 1.5
    default_capacity: float = 1000.0
    random_seed: Optional[int] = None

    def __post_init__(self):
        if self.tick_interval <= 0:
            raise ValueError(f"tick_interval must be positive, got {self.tick_interval}")
        if self.settle_delay_min < 0 or self.settle_delay_max < self.settle_delay_min:
            raise ValueError(
                f"Invalid settle delay range [{self.settle_delay_min}, {self.settle_delay_max}]"
            )
        if self.default_capacity <= 0:
            raise ValueError(f"default_capacity must be positive, got {self.default_capacity}")

    @classmethod
    def from_env(cls) -> "SimulationSettings":
        """Build settings from TERMINAL_* environment variables."""
        seed = os.getenv('TERMINAL_RANDOM_SEED')
        try:
            random_seed = int(seed) if seed else None
        except ValueError:
            raise ValueError(f"TERMINAL_RANDOM_SEED must be an integer, got '{seed}'") from None

        return cls(
            tick_interval=_env_float('TERMINAL_TICK_INTERVAL', 1.0),
            settle_delay_min=_env_float('TERMINAL_SETTLE_DELAY_MIN', 0.5),
            settle_delay_max=_env_float('TERMINAL_SETTLE_DELAY_MAX', 1.5),
            default_capacity=_env_float('TERMINAL_DEFAULT_CAPACITY', 1000.0),
            random_seed=random_seed,
        )


def configure_logging(level: Optional[str] = None) -> None:
    """Apply basic logging configuration for embedding applications."""
    level_name = (level or os.getenv('TERMINAL_LOG_LEVEL', 'INFO')).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO))
