"""Strategic layer: competitive posture and power (resource) usage."""

import enum
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Optional, Tuple

from .actions import Action, PRIORITY_PROVEN_FLAG, Power
from .config import DifficultyConfig, MoodThresholds
from .feedback import FeedbackHook, NullFeedback

logger = logging.getLogger(__name__)

MIN_POWER_SCORE = 40.0
RESOURCE_BASE_PRIORITY = 61.0
NO_REVEAL_BOOST = 18.0
LATE_BOOST = 10.0
DIRE_BOOST = 18.0


class Phase(str, enum.Enum):
    EARLY = "early"
    MID = "mid"
    LATE = "late"
    CRITICAL = "critical"


class Mood(str, enum.Enum):
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"
    DEFENSIVE = "defensive"
    DESPERATE = "desperate"


MOOD_RISK_TOLERANCE: Dict[Mood, float] = {
    Mood.DESPERATE: 0.55,
    Mood.AGGRESSIVE: 0.45,
    Mood.BALANCED: 0.35,
    Mood.DEFENSIVE: 0.25,
}


@dataclass(frozen=True)
class CompetitiveState:
    """Scores and clock as the host reports them, from the bot's point of view."""

    my_score: int = 0
    opponent_score: int = 0
    time_remaining_ms: float = 120000.0
    total_duration_ms: float = 120000.0

    @property
    def score_diff(self) -> int:
        return self.my_score - self.opponent_score

    @property
    def remaining_percent(self) -> float:
        if self.total_duration_ms <= 0:
            return 0.0
        return max(0.0, min(100.0, 100.0 * self.time_remaining_ms / self.total_duration_ms))

    @property
    def phase(self) -> Phase:
        remaining = self.remaining_percent
        if remaining > 70:
            return Phase.EARLY
        if remaining > 40:
            return Phase.MID
        if remaining > 15:
            return Phase.LATE
        return Phase.CRITICAL

    @property
    def urgency(self) -> float:
        """0-100 pressure from elapsed time and score deficit."""
        time_pressure = (100.0 - self.remaining_percent) / 2.0
        score_pressure = max(0, -self.score_diff) / 2.0
        return min(100.0, time_pressure + score_pressure)


@dataclass(frozen=True)
class OpponentMove:
    move_time_ms: Optional[float] = None
    hit_mine: bool = False
    cells_revealed: int = 0


class OpponentTracker:
    """Running estimate of how fast and how well the opponent is playing."""

    HISTORY = 20
    STREAK_GAIN = 20

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.history: Deque[Tuple[float, int]] = deque(maxlen=self.HISTORY)
        self.speed = 0.0
        self.on_streak = False
        self.aggressive = False
        self.last_score = 0
        self.skill_level = "unknown"

    def observe_score(self, score: int, now_ms: float) -> None:
        self.history.append((now_ms, score))
        if len(self.history) >= 2:
            elapsed = (self.history[-1][0] - self.history[0][0]) / 1000.0
            if elapsed > 0:
                self.speed = (self.history[-1][1] - self.history[0][1]) / elapsed
        self.on_streak = score - self.last_score > self.STREAK_GAIN
        self.last_score = score

    def observe_move(self, move: OpponentMove) -> None:
        if move.move_time_ms is not None and move.move_time_ms < 1000:
            self.aggressive = True
        if move.hit_mine:
            self.aggressive = True

        skill = 50
        if self.speed > 10:
            skill += 20
        elif self.speed > 5:
            skill += 10
        if move.cells_revealed > 5:
            skill += 10
        if move.hit_mine:
            skill -= 10

        if skill >= 70:
            self.skill_level = "expert"
        elif skill >= 55:
            self.skill_level = "advanced"
        elif skill >= 40:
            self.skill_level = "intermediate"
        else:
            self.skill_level = "beginner"

    def estimated_progress(self, safe_cells: int, points_per_cell: int = 5) -> float:
        """Percent of the board the opponent has likely cleared."""
        if safe_cells <= 0:
            return 100.0
        return min(100.0, 100.0 * (self.last_score / points_per_cell) / safe_cells)


@dataclass
class UsageRecord:
    used_count: int = 0
    last_use_ms: Optional[float] = None


@dataclass
class ResourceLedger:
    """Per-game power usage. Owned by the orchestrator and reset at game start."""

    records: Dict[Power, UsageRecord] = field(
        default_factory=lambda: {p: UsageRecord() for p in Power}
    )
    last_any_use_ms: Optional[float] = None

    def reset(self) -> None:
        self.records = {p: UsageRecord() for p in Power}
        self.last_any_use_ms = None

    def used(self, power: Power) -> int:
        return self.records[power].used_count

    def total_used(self) -> int:
        return sum(r.used_count for r in self.records.values())

    def record_use(self, power: Power, now_ms: float) -> None:
        rec = self.records[power]
        rec.used_count += 1
        rec.last_use_ms = now_ms
        self.last_any_use_ms = now_ms

    def usage(self) -> Dict[Power, int]:
        return {p: r.used_count for p, r in self.records.items()}

    def ineligibility(
        self, power: Power, now_ms: float, score: int, config: DifficultyConfig
    ) -> Optional[str]:
        """
        Explain why a power cannot be used right now.

        Returns:
            None when the power is usable, else a short reason.
        """
        rec = self.records[power]
        if rec.used_count >= config.power_limit(power):
            return "limit reached"
        if self.last_any_use_ms is not None and now_ms - self.last_any_use_ms < config.power_cooldown_ms:
            return "shared cooldown"
        spec = config.power_specs[power]
        if rec.last_use_ms is not None and now_ms - rec.last_use_ms < spec.cooldown_ms:
            return "cooldown"
        if score < spec.cost:
            return f"needs {spec.cost} points"
        return None

    def is_eligible(
        self, power: Power, now_ms: float, score: int, config: DifficultyConfig
    ) -> bool:
        return self.ineligibility(power, now_ms, score, config) is None


class ResourceStrategist:
    """
    Mood state machine plus additive power scoring.

    Mood is recomputed from scratch every cycle; the first matching rule wins:
    desperate, aggressive, defensive, learned best mood, balanced.
    """

    def __init__(
        self,
        thresholds: Optional[MoodThresholds] = None,
        feedback: Optional[FeedbackHook] = None,
    ) -> None:
        self.thresholds = thresholds or MoodThresholds()
        self.feedback: FeedbackHook = feedback if feedback is not None else NullFeedback()
        self.mood = Mood.BALANCED
        self.scores: Dict[Power, float] = {p: 0.0 for p in Power}

    def reset(self) -> None:
        self.mood = Mood.BALANCED
        self.scores = {p: 0.0 for p in Power}

    def update_mood(
        self,
        state: CompetitiveState,
        opponent: OpponentTracker,
        use_learning: bool = True,
    ) -> Mood:
        t = self.thresholds
        diff = state.score_diff
        phase = state.phase

        if diff < -t.desperate_deficit and phase in (Phase.LATE, Phase.CRITICAL):
            mood = Mood.DESPERATE
        elif diff < -t.aggressive_deficit or opponent.speed > t.opponent_speed or opponent.on_streak:
            mood = Mood.AGGRESSIVE
        elif diff > t.defensive_lead and phase is not Phase.EARLY:
            mood = Mood.DEFENSIVE
        else:
            mood = Mood.BALANCED
            learned = self.feedback.best_mood(t.learned_mood_min_games) if use_learning else None
            if learned is not None:
                mood = Mood(learned)

        if mood is not self.mood:
            logger.debug("Mood %s -> %s (diff %d, %s)", self.mood.value, mood.value, diff, phase.value)
        self.mood = mood
        return mood

    def risk_tolerance(self, base: float) -> float:
        """Difficulty tolerance shifted by the mood's offset from balanced."""
        offset = MOOD_RISK_TOLERANCE[self.mood] - MOOD_RISK_TOLERANCE[Mood.BALANCED]
        return min(0.95, max(0.05, base + offset))

    def speed_modifier(self, state: CompetitiveState) -> float:
        if self.mood is Mood.DESPERATE:
            return 0.6
        if self.mood is Mood.AGGRESSIVE:
            return 0.8
        if state.phase is Phase.CRITICAL and state.score_diff < 0:
            return 0.7
        if self.mood is Mood.DEFENSIVE:
            return 1.2
        return 1.0

    def score(
        self,
        state: CompetitiveState,
        ledger: ResourceLedger,
        opponent: OpponentTracker,
        has_safe_moves: bool,
    ) -> Dict[Power, float]:
        """Score every power in [0, 100] for the current situation."""
        diff = state.score_diff
        phase = state.phase
        late = phase in (Phase.LATE, Phase.CRITICAL)
        scores: Dict[Power, float] = {}

        freeze = 0.0
        if opponent.speed > 5:
            freeze += 40
        if diff < -20:
            freeze += 30
        if opponent.on_streak:
            freeze += 25
        if phase is Phase.CRITICAL and diff < 0:
            freeze += 25
        if self.mood is Mood.DESPERATE:
            freeze += 15
        scores[Power.FREEZE] = freeze

        radar = 0.0
        if not has_safe_moves:
            radar += 50
        if phase is Phase.EARLY:
            radar += 25
        elif phase is Phase.MID:
            radar += 15
        if ledger.used(Power.RADAR) >= 2:
            radar -= 20
        scores[Power.RADAR] = radar

        safeburst = 0.0
        if diff < -25:
            safeburst += 40
        if state.urgency > 50:
            safeburst += 30
        if late:
            safeburst += 20
        if self.mood is Mood.DESPERATE:
            safeburst += 15
        scores[Power.SAFEBURST] = safeburst

        shield = 0.0
        if diff > 20:
            shield += 35
        if late:
            shield += 30
        if self.mood is Mood.AGGRESSIVE:
            shield += 20
        elif self.mood is Mood.DEFENSIVE:
            shield += 10
        scores[Power.SHIELD] = shield

        for power in Power:
            learned = (self.feedback.power_effectiveness(power) - 0.5) * 40
            scores[power] = max(0.0, min(100.0, scores[power] + learned))

        self.scores = scores
        return scores

    def best_candidate(
        self,
        state: CompetitiveState,
        ledger: ResourceLedger,
        opponent: OpponentTracker,
        config: DifficultyConfig,
        now_ms: float,
        has_safe_moves: bool,
        has_good_reveal: bool,
    ) -> Optional[Action]:
        """
        Pick the best eligible power, if any clears the minimum score.

        Args:
            has_safe_moves: The solver proved at least one safe cell.
            has_good_reveal: A proven or within-tolerance reveal exists.

        Returns:
            A resource Action or None.
        """
        scores = self.score(state, ledger, opponent, has_safe_moves)

        best: Optional[Power] = None
        best_score = MIN_POWER_SCORE
        for power in Power:
            reason = ledger.ineligibility(power, now_ms, state.my_score, config)
            if reason is not None:
                continue
            if scores[power] > best_score:
                best, best_score = power, scores[power]

        if best is None:
            return None

        priority = RESOURCE_BASE_PRIORITY + best_score / 10.0
        if not has_good_reveal:
            priority += NO_REVEAL_BOOST
        if state.phase is Phase.CRITICAL or self.mood is Mood.DESPERATE:
            priority += DIRE_BOOST
        elif state.phase is Phase.LATE:
            priority += LATE_BOOST
        priority = min(priority, PRIORITY_PROVEN_FLAG - 1)

        return Action.use_resource(
            best,
            priority,
            f"Strategic: {best.value} (score {best_score:.0f}, mood {self.mood.value})",
        )
