"""Bot core: owns the think/act cycle and merges the three decision layers."""

import enum
import logging
import random
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Protocol, Set, Tuple, Union

from .actions import (
    PRIORITY_DISCLOSED_FLAG,
    PRIORITY_FALLBACK,
    PRIORITY_PROBABILISTIC_MAX,
    PRIORITY_PROVEN_FLAG,
    PRIORITY_PROVEN_REVEAL,
    PRIORITY_UNFLAG,
    Action,
    ActionKind,
    ActionOutcome,
    Layer,
)
from .board import BoardSnapshot
from .config import DifficultyConfig
from .feedback import FeedbackHook, GameSummary, NeighborState, NullFeedback
from .risk import RiskEstimator
from .scheduling import VirtualScheduler
from .solver import ConstraintSolver, SolverResult
from .strategy import CompetitiveState, OpponentMove, OpponentTracker, ResourceLedger, ResourceStrategist
from .utils import Position, corner_cells, edge_cells

logger = logging.getLogger(__name__)

UNFLAG_COOLDOWN_MS = 10000.0
HISTORY_LIMIT = 100
SUBOPTIMAL_WINDOW = 3


class GameHost(Protocol):
    """Callbacks the bot needs from the game it plays in."""

    def get_board_snapshot(self) -> BoardSnapshot:
        ...

    def apply_action(self, action: Action) -> ActionOutcome:
        ...

    def get_competitive_state(self) -> CompetitiveState:
        ...


class Scheduler(Protocol):
    """Anything with an asyncio-loop style ``time``/``call_later``."""

    def time(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Any:
        ...


class BotState(str, enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    THINKING = "thinking"
    STOPPED = "stopped"


@dataclass(frozen=True)
class GameResult:
    won: bool
    draw: bool = False
    my_score: int = 0
    opponent_score: int = 0


@dataclass
class GameCounters:
    moves: int = 0
    mistakes: int = 0
    mines_hit: int = 0
    flags_placed: int = 0
    wrong_flags: int = 0
    failed_cycles: int = 0
    fallback_moves: int = 0
    suboptimal_choices: int = 0
    by_layer: Dict[str, int] = field(default_factory=dict)


class DecisionOrchestrator:
    """
    Automated duel opponent.

    Each think cycle rebuilds a board snapshot from the host, runs the
    constraint solver, the resource strategist and (when nothing is proven) the
    risk estimator, merges their candidate actions by priority, applies the
    difficulty's imperfection and sends one action to the host. Cycles are
    scheduled one at a time on ``scheduler``; nothing runs concurrently.

    The bot only looks at what a human opponent could see: revealed numbers,
    flags, and cells passed to ``disclose``.
    """

    def __init__(
        self,
        host: GameHost,
        difficulty: Union[str, DifficultyConfig] = "medium",
        *,
        scheduler: Optional[Scheduler] = None,
        feedback: Optional[FeedbackHook] = None,
        rng: Optional[random.Random] = None,
        solver: Optional[ConstraintSolver] = None,
        on_decision: Optional[Callable[[Action], None]] = None,
    ) -> None:
        self.host = host
        self.scheduler: Scheduler = scheduler if scheduler is not None else VirtualScheduler()
        self.feedback: FeedbackHook = feedback if feedback is not None else NullFeedback()
        self.rng = rng or random.Random()
        self.on_decision = on_decision

        self.solver = solver or ConstraintSolver()
        self.estimator = RiskEstimator(feedback=self.feedback)
        self.strategist = ResourceStrategist(feedback=self.feedback)
        self.opponent = OpponentTracker()
        self.ledger = ResourceLedger()

        self.config = DifficultyConfig.from_name("medium")
        self.set_difficulty(difficulty)

        self.state = BotState.IDLE
        self.frozen_until: Optional[float] = None
        self._thinking = False
        self._timer: Any = None

        self.disclosed: Set[Position] = set()
        self.classifications = SolverResult()
        self.risk_map: Dict[Position, float] = {}
        self.counters = GameCounters()
        self.history: Deque[Tuple[float, Action]] = deque(maxlen=HISTORY_LIMIT)
        self._unflagged_at: Dict[Position, float] = {}
        self.last_snapshot: Optional[BoardSnapshot] = None
        self._last_state = CompetitiveState()
        self._started_at = 0.0
        self.last_summary: Optional[GameSummary] = None

    # -------------------------------------------------------------------------
    # Host-facing lifecycle
    # -------------------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self.frozen_until is not None and self._now_ms() < self.frozen_until

    @property
    def active(self) -> bool:
        return self.state in (BotState.ACTIVE, BotState.THINKING)

    def set_difficulty(self, config: Union[str, DifficultyConfig]) -> None:
        """Swap the difficulty preset; learning presets adapt to the long-run win rate."""
        if isinstance(config, str):
            config = DifficultyConfig.from_name(config)
        self.config = config.adjusted(self.feedback.win_rate())
        logger.info(
            "Difficulty %s (accuracy %.2f, tolerance %.2f)",
            self.config.name,
            self.config.accuracy,
            self.config.risk_tolerance,
        )

    def start(self) -> None:
        """Begin a new game: reset per-game state and schedule the first cycle."""
        self._cancel_timer()
        self._reset_game_state()
        self.state = BotState.ACTIVE
        self._started_at = self._now_ms()
        logger.info("Bot started (%s)", self.config.name)
        self._schedule()

    def stop(self) -> None:
        """Cancel the pending cycle. Safe to call any number of times."""
        self._cancel_timer()
        if self.state is not BotState.STOPPED:
            logger.info("Bot stopped after %d moves", self.counters.moves)
        self.state = BotState.STOPPED

    def freeze(self, duration_ms: float) -> None:
        """Suspend acting until ``duration_ms`` from now; cycles keep ticking idly."""
        until = self._now_ms() + max(0.0, duration_ms)
        self.frozen_until = max(until, self.frozen_until or 0.0)
        logger.info("Bot frozen for %.0f ms", duration_ms)

    def disclose(self, cells: Iterable[Position]) -> None:
        """Record mines revealed to the bot by an in-game ability."""
        new = [tuple(c) for c in cells]
        self.disclosed.update(new)  # type: ignore[arg-type]
        if new:
            logger.info("Disclosed %d mine(s): %s", len(new), sorted(new))

    def observe_opponent_move(self, move: OpponentMove) -> None:
        """Feed an observed opponent move; the bot pays attention only some of the time."""
        if self.rng.random() < self.config.watch_opponent:
            self.opponent.observe_move(move)

    def end_game(self, result: GameResult) -> GameSummary:
        """Close the game's books and hand a summary to the feedback collaborator."""
        summary = GameSummary(
            won=result.won,
            draw=result.draw,
            my_score=result.my_score,
            opponent_score=result.opponent_score,
            moves=self.counters.moves,
            mistakes=self.counters.mistakes,
            mines_hit=self.counters.mines_hit,
            flags_placed=self.counters.flags_placed,
            wrong_flags=self.counters.wrong_flags,
            power_usage=self.ledger.usage(),
            duration_ms=self._now_ms() - self._started_at,
            difficulty=self.config.name,
            mood=self.strategist.mood.value,
        )
        try:
            self.feedback.end_game(summary)
        except Exception:
            logger.exception("Feedback collaborator failed to record the game.")
        logger.info("Game ended: %d vs %d", result.my_score, result.opponent_score)
        self.last_summary = summary
        return summary

    # -------------------------------------------------------------------------
    # Think cycle
    # -------------------------------------------------------------------------

    def think(self) -> None:
        """Run one cycle: perceive, analyse, decide, execute, reschedule."""
        self._timer = None
        if not self.active or self._thinking:
            return

        if self.frozen_until is not None:
            if self._now_ms() < self.frozen_until:
                self._schedule()
                return
            self.frozen_until = None
            logger.info("Bot unfrozen")

        self._thinking = True
        self.state = BotState.THINKING
        try:
            action = self.decide()
            if action is not None:
                self._execute(action)
        except Exception:
            logger.exception("Think cycle failed; falling back.")
            self.counters.failed_cycles += 1
            self._run_fallback()
        finally:
            self._thinking = False
            if self.state is BotState.THINKING:
                self.state = BotState.ACTIVE

        if self.state is BotState.ACTIVE:
            self._schedule()

    def decide(self) -> Optional[Action]:
        """
        Pick the action for this cycle without executing it.

        Returns:
            An action, or None only when the board has no hidden unflagged cell
            and nothing else is worth doing.
        """
        snapshot = self.host.get_board_snapshot()
        state = self.host.get_competitive_state()
        now = self._now_ms()
        self.last_snapshot = snapshot
        self._last_state = state

        self.opponent.observe_score(state.opponent_score, now)
        self._prune_disclosed(snapshot)
        self._expire_unflag_cooldowns(now)
        self.strategist.update_mood(state, self.opponent, self.config.use_learning)

        candidates = self.candidates(snapshot, state, now)
        if not candidates:
            return self.fallback_action(snapshot)
        return self.select(candidates)

    def candidates(
        self, snapshot: BoardSnapshot, state: CompetitiveState, now_ms: float
    ) -> List[Action]:
        """All candidate actions for one snapshot, best first (stable by layer order)."""
        result = self.solver.solve(snapshot, self.disclosed)
        self.classifications = result
        self.risk_map = {}

        out: List[Action] = []
        for pos in sorted(self.disclosed):
            if snapshot.in_bounds(pos) and snapshot.cell(pos).hidden:
                out.append(Action.flag(pos, PRIORITY_DISCLOSED_FLAG, "Disclosed mine", Layer.DISCLOSED))

        for pos in sorted(result.mine_cells):
            if now_ms - self._unflagged_at.get(pos, float("-inf")) <= UNFLAG_COOLDOWN_MS:
                continue
            out.append(Action.flag(pos, PRIORITY_PROVEN_FLAG, "Proven mine", Layer.DETERMINISTIC))

        for pos in sorted(result.safe_cells):
            out.append(Action.reveal(pos, PRIORITY_PROVEN_REVEAL, "Proven safe", Layer.DETERMINISTIC, risk=0.0))

        has_safe = bool(result.safe_cells)
        has_good_reveal = has_safe
        if not out:
            tolerance = self.strategist.risk_tolerance(self.config.risk_tolerance)
            self.risk_map = self.estimator.estimate(
                snapshot, result, self.disclosed, use_learning=self.config.use_learning
            )
            for rc in self.estimator.rank(snapshot, self.risk_map, tolerance):
                priority = 10.0 + (PRIORITY_PROBABILISTIC_MAX - 10.0) * (1.0 - rc.risk)
                out.append(
                    Action.reveal(
                        rc.position,
                        priority,
                        f"Probabilistic: {rc.risk * 100:.1f}% risk",
                        Layer.PROBABILISTIC,
                        risk=rc.risk,
                    )
                )
                if rc.risk <= tolerance:
                    has_good_reveal = True

            for pos in sorted(result.suspicious_flags - self.disclosed):
                out.append(Action.unflag(pos, PRIORITY_UNFLAG, "Over-flagged number", Layer.DETERMINISTIC))
                break

        resource = self.strategist.best_candidate(
            state,
            self.ledger,
            self.opponent,
            self.config,
            now_ms,
            has_safe_moves=has_safe,
            has_good_reveal=has_good_reveal,
        )
        if resource is not None:
            out.append(resource)

        out.sort(key=lambda a: a.priority, reverse=True)
        return out

    def fallback_action(self, snapshot: BoardSnapshot) -> Optional[Action]:
        """
        Corners, then edges, then any hidden cell.

        Known mines are never revealed; when nothing else is hidden the first
        of them is flagged instead.
        """
        if not snapshot.has_grid:
            return None
        avoid = self.disclosed | self.classifications.mine_cells
        order = (
            corner_cells(snapshot.width, snapshot.height)
            + edge_cells(snapshot.width, snapshot.height)
            + [c.position for c in snapshot]
        )
        hidden = [p for p in order if snapshot.cell(p).hidden]
        if not hidden:
            return None
        for pos in hidden:
            if pos not in avoid:
                return Action.reveal(pos, PRIORITY_FALLBACK, "Fallback move", Layer.FALLBACK)
        return Action.flag(hidden[0], PRIORITY_FALLBACK, "Fallback flag on known mine", Layer.FALLBACK)

    def select(self, candidates: List[Action]) -> Action:
        """Best candidate, or with probability 1 - accuracy one of the next few."""
        if self.rng.random() > self.config.accuracy and len(candidates) > 1:
            index = min(self.rng.randrange(SUBOPTIMAL_WINDOW), len(candidates) - 1)
            if index > 0:
                self.counters.suboptimal_choices += 1
                logger.debug("Suboptimal pick #%d: %s", index, candidates[index].describe())
            return candidates[index]
        return candidates[0]

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _execute(self, action: Action) -> Optional[ActionOutcome]:
        logger.debug("Executing %s", action.describe())
        if self.on_decision is not None:
            try:
                self.on_decision(action)
            except Exception:
                logger.exception("on_decision hook failed.")

        try:
            outcome = self.host.apply_action(action)
        except Exception:
            logger.exception("Host rejected %s; cycle skipped.", action.describe())
            self.counters.failed_cycles += 1
            return None
        if not isinstance(outcome, ActionOutcome):
            logger.warning("Host returned %r for %s; cycle skipped.", outcome, action.describe())
            self.counters.failed_cycles += 1
            return None

        now = self._now_ms()
        self.history.append((now, action))
        if not outcome.accepted:
            logger.debug("Host declined %s", action.describe())
            return outcome

        layer = action.layer.value
        self.counters.by_layer[layer] = self.counters.by_layer.get(layer, 0) + 1
        pos = action.position
        if action.kind is ActionKind.REVEAL:
            self.counters.moves += 1
            if action.layer is Layer.FALLBACK:
                self.counters.fallback_moves += 1
            if outcome.hit_mine:
                self.counters.mines_hit += 1
                self.counters.mistakes += 1
                if self.last_snapshot is not None and pos is not None:
                    self.feedback.record_mistake(NeighborState.of(self.last_snapshot, pos))
                logger.info("Hit a mine at %s (%s)", pos, action.reason)
        elif action.kind is ActionKind.FLAG:
            self.counters.flags_placed += 1
            self.disclosed.discard(pos)  # type: ignore[arg-type]
        elif action.kind is ActionKind.UNFLAG:
            self.counters.wrong_flags += 1
            self._unflagged_at[pos] = now  # type: ignore[index]
        elif action.kind is ActionKind.USE_RESOURCE and action.power is not None:
            self.ledger.record_use(action.power, now)
            logger.info("Used %s", action.power.value)
            if outcome.disclosed:
                self.disclose(outcome.disclosed)
        return outcome

    def _run_fallback(self) -> None:
        try:
            snapshot = self.host.get_board_snapshot()
            action = self.fallback_action(snapshot)
            if action is not None:
                self._execute(action)
        except Exception:
            logger.exception("Fallback move failed; waiting for the next cycle.")

    def _schedule(self) -> None:
        if self.state is not BotState.ACTIVE:
            return
        modifier = self.strategist.speed_modifier(self._last_state)
        delay_ms = self.config.think_delay_ms(self.rng, modifier)
        self._timer = self.scheduler.call_later(delay_ms / 1000.0, self.think)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _reset_game_state(self) -> None:
        self.ledger.reset()
        self.strategist.reset()
        self.opponent.reset()
        self.disclosed = set()
        self.classifications = SolverResult()
        self.risk_map = {}
        self.counters = GameCounters()
        self.history.clear()
        self._unflagged_at = {}
        self.last_snapshot = None
        self._last_state = CompetitiveState()
        self.frozen_until = None
        self._thinking = False

    def _prune_disclosed(self, snapshot: BoardSnapshot) -> None:
        self.disclosed = {
            p for p in self.disclosed if snapshot.in_bounds(p) and snapshot.cell(p).hidden
        }

    def _expire_unflag_cooldowns(self, now_ms: float) -> None:
        self._unflagged_at = {
            p: t for p, t in self._unflagged_at.items() if now_ms - t <= UNFLAG_COOLDOWN_MS
        }

    def _now_ms(self) -> float:
        return self.scheduler.time() * 1000.0
