"""Difficulty presets and tunable constants for the decision engine."""

import logging
import random
from dataclasses import dataclass, field, replace
from typing import Dict, Mapping, Optional

from .actions import Power

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PowerSpec:
    """Static rules of one ability: point cost and its own cooldown."""

    cost: int
    cooldown_ms: int = 0


DEFAULT_POWER_SPECS: Dict[Power, PowerSpec] = {
    Power.FREEZE: PowerSpec(cost=60),
    Power.SHIELD: PowerSpec(cost=50),
    Power.RADAR: PowerSpec(cost=30),
    Power.SAFEBURST: PowerSpec(cost=40),
}


@dataclass(frozen=True)
class RiskWeights:
    """Blend and nudge factors used by the risk estimator."""

    max_weight: float = 0.7
    average_weight: float = 0.3
    frontier_nudge: float = 0.95
    opening_nudge: float = 0.98
    opening_threshold: float = 0.3
    pattern_severity_scale: float = 0.2
    pattern_cap: float = 0.95
    tie_window: float = 0.05


@dataclass(frozen=True)
class MoodThresholds:
    """Score/speed thresholds driving the strategist's mood transitions."""

    desperate_deficit: int = 60
    aggressive_deficit: int = 30
    opponent_speed: float = 8.0
    defensive_lead: int = 40
    learned_mood_min_games: int = 3


@dataclass(frozen=True)
class DifficultyConfig:
    """
    Per-difficulty behaviour of the bot.

    Attributes:
        name: Preset name.
        think_time_min_ms: Lower bound of the delay between think cycles.
        think_time_max_ms: Upper bound of the delay between think cycles.
        accuracy: Probability of picking the best candidate each cycle.
        error_bias: Extra probability of a deliberately weak move. Kept for
            reference only; move selection reads ``accuracy``.
        power_cooldown_ms: Minimum time between any two power uses.
        power_limits: Per-game usage limit for each power.
        risk_tolerance: Highest mine probability the bot accepts for a guess.
        watch_opponent: Probability of processing an observed opponent move.
        use_learning: Whether the learned-pattern hook and learned moods apply.
    """

    name: str
    think_time_min_ms: int
    think_time_max_ms: int
    accuracy: float
    error_bias: float
    power_cooldown_ms: int
    power_limits: Mapping[Power, int]
    risk_tolerance: float
    watch_opponent: float
    use_learning: bool
    power_specs: Mapping[Power, PowerSpec] = field(
        default_factory=lambda: dict(DEFAULT_POWER_SPECS)
    )

    def __post_init__(self) -> None:
        if self.think_time_min_ms < 0 or self.think_time_max_ms < self.think_time_min_ms:
            raise ValueError("think time bounds must satisfy 0 <= min <= max.")
        for attr in ("accuracy", "error_bias", "risk_tolerance", "watch_opponent"):
            value = getattr(self, attr)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{attr} must be within [0, 1], got {value}.")
        if self.power_cooldown_ms < 0:
            raise ValueError("power_cooldown_ms must be non-negative.")
        if any(limit < 0 for limit in self.power_limits.values()):
            raise ValueError("power limits must be non-negative.")

    @classmethod
    def from_name(cls, name: str) -> "DifficultyConfig":
        """Return a preset by name, falling back to ``medium`` for unknown names."""
        preset = DIFFICULTY_PRESETS.get(name)
        if preset is None:
            logger.warning("Unknown difficulty %r; using 'medium'.", name)
            preset = DIFFICULTY_PRESETS["medium"]
        return preset

    def power_limit(self, power: Power) -> int:
        return self.power_limits.get(power, 0)

    def power_cost(self, power: Power) -> int:
        return self.power_specs[power].cost

    def think_delay_ms(self, rng: random.Random, speed_modifier: float = 1.0) -> float:
        """
        Sample a human-like delay before the next think cycle.

        The base delay is the mean of two uniforms over [min, max], so it
        clusters towards the middle; 10% of cycles take 1.5x longer and 15%
        of the rest are 0.7x quicker.
        """
        lo, hi = self.think_time_min_ms, self.think_time_max_ms
        base = lo + (rng.random() + rng.random()) / 2.0 * (hi - lo)
        if rng.random() < 0.1:
            base *= 1.5
        elif rng.random() < 0.15:
            base *= 0.7
        return base * speed_modifier

    def adjusted(self, win_rate: Optional[float]) -> "DifficultyConfig":
        """Nudge risk tolerance from a long-run win rate (learning presets only)."""
        if win_rate is None or not self.use_learning:
            return self
        tolerance = self.risk_tolerance
        if win_rate < 0.3:
            tolerance = max(0.15, tolerance - 0.05)
        elif win_rate > 0.7:
            tolerance = min(0.5, tolerance + 0.03)
        return replace(self, risk_tolerance=tolerance)


DIFFICULTY_PRESETS: Dict[str, DifficultyConfig] = {
    "easy": DifficultyConfig(
        name="easy",
        think_time_min_ms=1500,
        think_time_max_ms=2500,
        accuracy=0.70,
        error_bias=0.15,
        power_cooldown_ms=30000,
        power_limits={Power.FREEZE: 0, Power.SHIELD: 0, Power.RADAR: 1, Power.SAFEBURST: 0},
        risk_tolerance=0.25,
        watch_opponent=0.3,
        use_learning=False,
    ),
    "medium": DifficultyConfig(
        name="medium",
        think_time_min_ms=800,
        think_time_max_ms=1400,
        accuracy=0.85,
        error_bias=0.08,
        power_cooldown_ms=18000,
        power_limits={Power.FREEZE: 1, Power.SHIELD: 1, Power.RADAR: 2, Power.SAFEBURST: 1},
        risk_tolerance=0.32,
        watch_opponent=0.6,
        use_learning=True,
    ),
    "hard": DifficultyConfig(
        name="hard",
        think_time_min_ms=400,
        think_time_max_ms=700,
        accuracy=0.92,
        error_bias=0.03,
        power_cooldown_ms=12000,
        power_limits={Power.FREEZE: 2, Power.SHIELD: 2, Power.RADAR: 3, Power.SAFEBURST: 2},
        risk_tolerance=0.38,
        watch_opponent=0.9,
        use_learning=True,
    ),
    "expert": DifficultyConfig(
        name="expert",
        think_time_min_ms=150,
        think_time_max_ms=350,
        accuracy=0.98,
        error_bias=0.005,
        power_cooldown_ms=6000,
        power_limits={Power.FREEZE: 4, Power.SHIELD: 4, Power.RADAR: 5, Power.SAFEBURST: 4},
        risk_tolerance=0.50,
        watch_opponent=1.0,
        use_learning=True,
    ),
}
