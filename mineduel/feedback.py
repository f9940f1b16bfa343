"""Adaptive feedback hook: learned danger patterns and cross-game statistics."""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Protocol, Tuple

from .actions import Power
from .board import BoardSnapshot
from .utils import Position

logger = logging.getLogger(__name__)

MAX_PATTERNS = 20


@dataclass(frozen=True)
class NeighborState:
    """Coarse description of a cell's surroundings used for pattern matching."""

    revealed_count: int
    flagged_count: int
    hidden_count: int
    numbers: Tuple[int, ...]

    @classmethod
    def of(cls, snapshot: BoardSnapshot, pos: Position) -> "NeighborState":
        revealed = flagged = hidden = 0
        numbers: List[int] = []
        for n in snapshot.neighbors(pos):
            c = snapshot.cell(n)
            if c.revealed:
                revealed += 1
                if c.numbered:
                    numbers.append(c.neighbor_mine_count)
            elif c.flagged:
                flagged += 1
            else:
                hidden += 1
        return cls(revealed, flagged, hidden, tuple(sorted(numbers)))

    def matches(self, other: "NeighborState") -> bool:
        """Loose similarity: counts within one and at least one number in common."""
        return (
            abs(self.revealed_count - other.revealed_count) <= 1
            and abs(self.hidden_count - other.hidden_count) <= 1
            and bool(set(self.numbers) & set(other.numbers))
        )


@dataclass
class LearnedPattern:
    state: NeighborState
    count: int = 1
    severity: float = 0.3


@dataclass(frozen=True)
class GameSummary:
    """End-of-game figures handed to the feedback collaborator."""

    won: bool
    draw: bool
    my_score: int
    opponent_score: int
    moves: int
    mistakes: int
    mines_hit: int
    flags_placed: int
    wrong_flags: int
    power_usage: Mapping[Power, int]
    duration_ms: float
    difficulty: str
    mood: str


class FeedbackHook(Protocol):
    """What the decision layers need from the learning collaborator."""

    def record_mistake(self, state: NeighborState) -> None:
        ...

    def bias_for(self, state: NeighborState) -> float:
        ...

    def power_effectiveness(self, power: Power) -> float:
        ...

    def best_mood(self, min_games: int) -> Optional[str]:
        ...

    def win_rate(self) -> Optional[float]:
        ...

    def end_game(self, summary: GameSummary) -> None:
        ...


class NullFeedback:
    """Feedback hook that learns nothing; used for tests and learning-free presets."""

    def record_mistake(self, state: NeighborState) -> None:
        return None

    def bias_for(self, state: NeighborState) -> float:
        return 0.0

    def power_effectiveness(self, power: Power) -> float:
        return 0.5

    def best_mood(self, min_games: int) -> Optional[str]:
        return None

    def win_rate(self) -> Optional[float]:
        return None

    def end_game(self, summary: GameSummary) -> None:
        return None


@dataclass
class _PowerRecord:
    used: int = 0
    won_after: int = 0
    effectiveness: float = 0.5


@dataclass
class _MoodRecord:
    used: int = 0
    won: int = 0


class PatternMemory:
    """
    In-memory learning store shared across games.

    Keeps the neighbour configurations around past mine hits, plus per-power
    and per-mood win statistics. Durable storage is left to the caller, who
    can read and seed ``patterns``, ``powers`` and ``moods`` directly.
    """

    def __init__(self) -> None:
        self.patterns: List[LearnedPattern] = []
        self.powers: Dict[Power, _PowerRecord] = {p: _PowerRecord() for p in Power}
        self.moods: Dict[str, _MoodRecord] = {
            m: _MoodRecord() for m in ("aggressive", "defensive", "balanced")
        }
        self.games_played = 0
        self.wins = 0
        self.draws = 0

    def record_mistake(self, state: NeighborState) -> None:
        for pattern in self.patterns:
            if state.matches(pattern.state):
                pattern.count += 1
                pattern.severity = min(1.0, pattern.severity + 0.1)
                logger.debug("Reinforced danger pattern %s (severity %.1f)", pattern.state, pattern.severity)
                break
        else:
            self.patterns.append(LearnedPattern(state))
            logger.debug("Learned new danger pattern %s", state)

        if len(self.patterns) > MAX_PATTERNS:
            self.patterns.sort(key=lambda p: p.count, reverse=True)
            del self.patterns[MAX_PATTERNS:]

    def bias_for(self, state: NeighborState) -> float:
        """Summed severity of every learned pattern the state matches."""
        return sum(p.severity for p in self.patterns if state.matches(p.state))

    def power_effectiveness(self, power: Power) -> float:
        return self.powers[power].effectiveness

    def best_mood(self, min_games: int) -> Optional[str]:
        best: Optional[str] = None
        best_rate = 0.0
        for mood, rec in self.moods.items():
            if rec.used < min_games:
                continue
            rate = rec.won / rec.used
            if rate > best_rate:
                best, best_rate = mood, rate
        return best

    def win_rate(self) -> Optional[float]:
        if self.games_played == 0:
            return None
        return self.wins / self.games_played

    def end_game(self, summary: GameSummary) -> None:
        self.games_played += 1
        if summary.won:
            self.wins += 1
        elif summary.draw:
            self.draws += 1

        for power, used in summary.power_usage.items():
            if used <= 0:
                continue
            rec = self.powers[power]
            rec.used += used
            if summary.won:
                rec.won_after += used
            rec.effectiveness = max(0.2, min(0.8, rec.won_after / rec.used))

        mood = "aggressive" if summary.mood == "desperate" else summary.mood
        if mood in self.moods:
            self.moods[mood].used += 1
            if summary.won:
                self.moods[mood].won += 1

        logger.info(
            "Game recorded: %s %d-%d after %d moves (%d games, %d patterns)",
            "won" if summary.won else ("draw" if summary.draw else "lost"),
            summary.my_score,
            summary.opponent_score,
            summary.moves,
            self.games_played,
            len(self.patterns),
        )
