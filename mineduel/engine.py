"""Reference duel host: private boards with first-click safety, scoring, powers and a match clock."""

import logging
import random
from collections import deque
from typing import Deque, Dict, List, Mapping, Optional, Set, Tuple

from .actions import Action, ActionKind, ActionOutcome, Power
from .board import BoardSnapshot, Cell
from .bot import DecisionOrchestrator, GameResult
from .config import DEFAULT_POWER_SPECS, PowerSpec
from .scheduling import VirtualScheduler
from .strategy import CompetitiveState, OpponentMove
from .utils import Position, get_neighborhoods

logger = logging.getLogger(__name__)

POINTS_PER_CELL = 5
MINE_PENALTY = 30
FREEZE_DURATION_MS = 5000.0
RADAR_MINES = 3
SAFEBURST_CELLS = 3
COMPLETION_TO_WIN = 85.0


class PlayerBoard:
    """One player's private Minesweeper board with first-click safety and constrained mine placement."""

    def __init__(
        self,
        width: int,
        height: int,
        mines_count: int,
        mines_generation_algorithm: str = "safe_neighborhood_rule",
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Initialize an empty board; mines are placed on the first reveal.

        Args:
            width: Board width (number of columns), must be > 0.
            height: Board height (number of rows), must be > 0.
            mines_count: Total number of mines to place, must be >= 0.
            mines_generation_algorithm: Mine placement rule; one of
                {"safe_first_action_rule", "safe_neighborhood_rule"}.
            rng: Random source for mine placement.

        Raises:
            ValueError: If dimensions are invalid or algorithm is unrecognized.
        """
        if width <= 0 or height <= 0:
            raise ValueError("Width and height must be positive.")
        if mines_count < 0:
            raise ValueError("mines_count must be non-negative.")
        if mines_generation_algorithm not in (
            "safe_first_action_rule",
            "safe_neighborhood_rule",
        ):
            raise ValueError(
                'mines_generation_algorithm must be "safe_first_action_rule" '
                'or "safe_neighborhood_rule".'
            )

        reserved = 1 if mines_generation_algorithm == "safe_first_action_rule" else 9
        if mines_count > width * height - reserved:
            raise ValueError(
                f"Cannot place enough safe cells to satisfy {mines_generation_algorithm}."
            )

        self.width: int = width
        self.height: int = height
        self.mines_count: int = mines_count
        self.mines_generation_algorithm: str = mines_generation_algorithm
        self.rng = rng or random.Random()

        self.mines: Set[Position] = set()
        self.counts: Dict[Position, int] = {}
        self.revealed: Set[Position] = set()
        self.flagged: Set[Position] = set()
        self.board_blank: bool = True

        self._neighborhoods: Dict[Position, Tuple[Position, ...]] = get_neighborhoods(
            width, height
        )

    @property
    def safe_total(self) -> int:
        return self.width * self.height - self.mines_count

    @property
    def safe_revealed(self) -> int:
        return len(self.revealed - self.mines)

    @property
    def completion(self) -> float:
        """Percent of safe cells revealed."""
        if self.safe_total <= 0:
            return 100.0
        return 100.0 * self.safe_revealed / self.safe_total

    def in_bounds(self, pos: Position) -> bool:
        x, y = pos
        return 0 <= x < self.width and 0 <= y < self.height

    def is_hidden(self, pos: Position) -> bool:
        return pos not in self.revealed and pos not in self.flagged

    def place_mines(self, first: Position) -> None:
        """
        Place mines once, keeping the first revealed cell (and, for
        ``safe_neighborhood_rule``, its neighbors) free of mines.

        Raises:
            ValueError: If the board already holds mines.
        """
        if not self.board_blank:
            raise ValueError("The board is not blank.")

        safe: Set[Position] = {first}
        if self.mines_generation_algorithm == "safe_neighborhood_rule":
            safe.update(self._neighborhoods[first])

        eligible: List[Position] = [
            (x, y)
            for y in range(self.height)
            for x in range(self.width)
            if (x, y) not in safe
        ]
        self.mines = set(self.rng.sample(eligible, self.mines_count))
        self.counts = {
            (x, y): sum(1 for n in self._neighborhoods[(x, y)] if n in self.mines)
            for y in range(self.height)
            for x in range(self.width)
        }
        self.board_blank = False

    def flood_fill(self, start: Position) -> List[Position]:
        """Reveal the connected zero-region from ``start``; returns newly revealed cells."""
        frontier: Deque[Position] = deque([start])
        visited: Set[Position] = {start}
        revealed_cells: List[Position] = []

        while frontier:
            pos = frontier.popleft()
            if pos in self.revealed or pos in self.flagged:
                continue
            self.revealed.add(pos)
            revealed_cells.append(pos)

            if self.counts[pos] == 0:
                for n in self._neighborhoods[pos]:
                    if n in visited or n in self.revealed or n in self.mines:
                        continue
                    visited.add(n)
                    frontier.append(n)

        return revealed_cells

    def reveal(self, pos: Position) -> Tuple[bool, List[Position]]:
        """
        Reveal a hidden cell.

        Returns:
            (hit_mine, revealed_cells). Stepping on a mine reveals just that
            cell; play goes on. Revealing a non-hidden cell is a no-op.

        Raises:
            ValueError: If coordinates are out of bounds.
        """
        if not self.in_bounds(pos):
            raise ValueError("Cell coordinates are outside the board.")
        if not self.is_hidden(pos):
            return False, []
        if self.board_blank:
            self.place_mines(pos)
        if pos in self.mines:
            self.revealed.add(pos)
            return True, [pos]
        return False, self.flood_fill(pos)

    def set_flag(self, pos: Position, flagged: bool) -> bool:
        """Place or remove a flag. Returns False if nothing changed."""
        if not self.in_bounds(pos) or pos in self.revealed:
            return False
        if flagged == (pos in self.flagged):
            return False
        if flagged:
            self.flagged.add(pos)
        else:
            self.flagged.discard(pos)
        return True

    def hidden_mines(self) -> List[Position]:
        return sorted(p for p in self.mines if self.is_hidden(p))

    def hidden_safe_cells(self) -> List[Position]:
        return [
            (x, y)
            for y in range(self.height)
            for x in range(self.width)
            if (x, y) not in self.mines and self.is_hidden((x, y))
        ]

    def snapshot(self) -> BoardSnapshot:
        """What the player can see. Mines are only marked on cells already revealed."""
        cells = [
            Cell(
                x,
                y,
                revealed=(x, y) in self.revealed,
                flagged=(x, y) in self.flagged,
                neighbor_mine_count=self.counts.get((x, y), 0) if (x, y) in self.revealed else 0,
                mine=(x, y) in self.revealed and (x, y) in self.mines,
            )
            for y in range(self.height)
            for x in range(self.width)
        ]
        return BoardSnapshot.from_cells(self.width, self.height, self.mines_count, cells)

    # -------------------------------------------------------------------------
    # Display methods
    # -------------------------------------------------------------------------

    _ANSI_RESET = "\033[0m"
    _ANSI_COORD = "\033[96m"
    _ANSI_MINE = "\033[91m"

    def _c(self, s: str) -> str:
        return f"{self._ANSI_COORD}{s}{self._ANSI_RESET}"

    def _m(self, s: str) -> str:
        return f"{self._ANSI_MINE}{s}{self._ANSI_RESET}"

    def format_board(self, reveal_all: bool = False, color: bool = True) -> str:
        """
        Render the board as a multi-line string for terminal display.

        Args:
            reveal_all: If True, show mines and all underlying values.
            color: If False, emit plain text without ANSI codes.

        Returns:
            A formatted multi-line string with coordinate labels and the board grid.
        """
        c = self._c if color else str
        m = self._m if color else str

        def cell_str(pos: Position) -> str:
            if pos in self.flagged and not reveal_all:
                return "F"
            if reveal_all or pos in self.revealed:
                if pos in self.mines:
                    return m("M")
                return str(self.counts.get(pos, 0))
            return "."

        header_cells = " ".join(f"{x:2d}" for x in range(self.width))
        out = [c("   ") + c(header_cells)]
        out.append(c("   " + "-" * (3 * self.width - 1)))
        for y in range(self.height):
            row_cells = " ".join(f" {cell_str((x, y))}" for x in range(self.width))
            out.append(c(f"{y:2d} ") + c("|") + row_cells)
        return "\n".join(out)


class PlayerSeat:
    """
    One side of a duel: private board, score and status effects.

    A seat is also the host object a bot talks to: it implements
    ``get_board_snapshot``, ``apply_action`` and ``get_competitive_state``.
    """

    def __init__(self, game: "DuelGame", name: str, board: PlayerBoard) -> None:
        self.game = game
        self.name = name
        self.board = board
        self.score = 0
        self.shield = False
        self.frozen_until = 0.0
        self.last_move_ms: Optional[float] = None
        self.bot: Optional[DecisionOrchestrator] = None

    @property
    def opponent(self) -> "PlayerSeat":
        return self.game.opponent_of(self)

    def is_frozen(self) -> bool:
        return self.game.now_ms() < self.frozen_until

    # -------------------------------------------------------------------------
    # Host protocol
    # -------------------------------------------------------------------------

    def get_board_snapshot(self) -> BoardSnapshot:
        return self.board.snapshot()

    def get_competitive_state(self) -> CompetitiveState:
        return CompetitiveState(
            my_score=self.score,
            opponent_score=self.opponent.score,
            time_remaining_ms=self.game.time_remaining_ms(),
            total_duration_ms=self.game.duration_ms,
        )

    def apply_action(self, action: Action) -> ActionOutcome:
        """Apply one action for this player; refused actions leave the game untouched."""
        if self.game.game_over or not self.game.started:
            return ActionOutcome(accepted=False)
        if self.is_frozen():
            logger.debug("%s is frozen; %s refused", self.name, action.describe())
            return ActionOutcome(accepted=False)

        if action.kind is ActionKind.USE_RESOURCE:
            if action.power is None:
                return ActionOutcome(accepted=False)
            outcome = self._use_power(action.power)
        else:
            pos = action.position
            if pos is None or not self.board.in_bounds(pos):
                return ActionOutcome(accepted=False)
            if action.kind is ActionKind.REVEAL:
                outcome = self._reveal(pos)
            elif action.kind is ActionKind.FLAG:
                outcome = ActionOutcome(accepted=self.board.set_flag(pos, True))
            else:
                outcome = ActionOutcome(accepted=self.board.set_flag(pos, False))

        self.game.after_action(self)
        return outcome

    # -------------------------------------------------------------------------
    # Effects
    # -------------------------------------------------------------------------

    def _reveal(self, pos: Position) -> ActionOutcome:
        if not self.board.is_hidden(pos):
            return ActionOutcome(accepted=False)
        hit_mine, cells = self.board.reveal(pos)
        if hit_mine:
            if self.shield:
                self.shield = False
                logger.info("%s: shield absorbed a mine at %s", self.name, pos)
            else:
                self.score = max(0, self.score - MINE_PENALTY)
        else:
            self.score += POINTS_PER_CELL * len(cells)
        self._notify_opponent(hit_mine, len(cells))
        return ActionOutcome(accepted=True, hit_mine=hit_mine, cells_revealed=len(cells))

    def _use_power(self, power: Power) -> ActionOutcome:
        spec = self.game.power_specs[power]
        if self.score < spec.cost:
            return ActionOutcome(accepted=False)
        self.score -= spec.cost
        logger.info("%s used %s (score now %d)", self.name, power.value, self.score)

        if power is Power.RADAR:
            mines = self.board.hidden_mines()
            shown = self.game.rng.sample(mines, min(RADAR_MINES, len(mines)))
            return ActionOutcome(accepted=True, disclosed=tuple(sorted(shown)))

        if power is Power.SAFEBURST:
            if self.board.board_blank:
                return ActionOutcome(accepted=True)
            safe = self.board.hidden_safe_cells()
            total = 0
            for pos in self.game.rng.sample(safe, min(SAFEBURST_CELLS, len(safe))):
                _, cells = self.board.reveal(pos)
                total += len(cells)
            self.score += POINTS_PER_CELL * total
            self._notify_opponent(False, total)
            return ActionOutcome(accepted=True, cells_revealed=total)

        if power is Power.SHIELD:
            self.shield = True
            return ActionOutcome(accepted=True)

        self.opponent.freeze(FREEZE_DURATION_MS)
        return ActionOutcome(accepted=True)

    def freeze(self, duration_ms: float) -> None:
        self.frozen_until = max(self.frozen_until, self.game.now_ms() + duration_ms)
        if self.bot is not None:
            self.bot.freeze(duration_ms)

    def _notify_opponent(self, hit_mine: bool, cells_revealed: int) -> None:
        now = self.game.now_ms()
        move_time = None if self.last_move_ms is None else now - self.last_move_ms
        self.last_move_ms = now
        watcher = self.opponent.bot
        if watcher is not None:
            watcher.observe_opponent_move(
                OpponentMove(move_time_ms=move_time, hit_mine=hit_mine, cells_revealed=cells_revealed)
            )


class DuelGame:
    """
    Two-player timed duel on private boards of equal size.

    Time comes from ``scheduler`` (a ``VirtualScheduler`` by default, or an
    asyncio loop); the match ends when the clock runs out or a player clears
    ``COMPLETION_TO_WIN`` percent of their safe cells.
    """

    def __init__(
        self,
        width: int,
        height: int,
        mines_count: int,
        *,
        duration_ms: float = 120000.0,
        mines_generation_algorithm: str = "safe_neighborhood_rule",
        power_specs: Optional[Mapping[Power, PowerSpec]] = None,
        scheduler: Optional[VirtualScheduler] = None,
        rng: Optional[random.Random] = None,
        players: Tuple[str, str] = ("bot", "opponent"),
    ) -> None:
        if duration_ms <= 0:
            raise ValueError("duration_ms must be positive.")
        self.rng = rng or random.Random()
        self.scheduler = scheduler if scheduler is not None else VirtualScheduler()
        self.duration_ms = duration_ms
        self.power_specs: Mapping[Power, PowerSpec] = power_specs or DEFAULT_POWER_SPECS

        self.seats: Dict[str, PlayerSeat] = {
            name: PlayerSeat(
                self,
                name,
                PlayerBoard(
                    width,
                    height,
                    mines_count,
                    mines_generation_algorithm,
                    rng=random.Random(self.rng.random()),
                ),
            )
            for name in players
        }
        if len(self.seats) != 2:
            raise ValueError("A duel needs two distinct player names.")

        self.started = False
        self.game_over = False
        self.end_reason: Optional[str] = None
        self.started_at_ms = 0.0
        self._clock_handle = None

    def seat(self, name: str) -> PlayerSeat:
        return self.seats[name]

    def opponent_of(self, seat: PlayerSeat) -> PlayerSeat:
        for other in self.seats.values():
            if other is not seat:
                return other
        raise KeyError(seat.name)

    def attach(self, name: str, bot: DecisionOrchestrator) -> None:
        """Route freezes and opponent moves for ``name`` to ``bot``."""
        self.seats[name].bot = bot

    def now_ms(self) -> float:
        return self.scheduler.time() * 1000.0

    def time_remaining_ms(self) -> float:
        if not self.started:
            return self.duration_ms
        return max(0.0, self.duration_ms - (self.now_ms() - self.started_at_ms))

    def start(self) -> None:
        """Start the clock and every attached bot."""
        self.started = True
        self.started_at_ms = self.now_ms()
        self._clock_handle = self.scheduler.call_later(self.duration_ms / 1000.0, self.finish, "time")
        logger.info("Duel started (%.0f s)", self.duration_ms / 1000.0)
        for seat in self.seats.values():
            if seat.bot is not None:
                seat.bot.start()

    def after_action(self, seat: PlayerSeat) -> None:
        if not self.game_over and seat.board.completion >= COMPLETION_TO_WIN:
            self.finish("completion")

    def finish(self, reason: str) -> None:
        """End the match once; stops bots and hands each one its result."""
        if self.game_over:
            return
        self.game_over = True
        self.end_reason = reason
        if self._clock_handle is not None:
            self._clock_handle.cancel()
        scores = {name: seat.score for name, seat in self.seats.items()}
        logger.info("Duel over (%s): %s", reason, scores)

        for seat in self.seats.values():
            if seat.bot is None:
                continue
            seat.bot.stop()
            mine, theirs = seat.score, seat.opponent.score
            seat.bot.end_game(
                GameResult(won=mine > theirs, draw=mine == theirs, my_score=mine, opponent_score=theirs)
            )

    def winner(self) -> Optional[str]:
        if not self.game_over:
            return None
        a, b = self.seats.values()
        if a.score == b.score:
            return None
        return a.name if a.score > b.score else b.name

    def run(self, max_steps: int = 100000) -> Optional[str]:
        """Drive a virtual-clock match to the end; returns the winner's name or None on a draw."""
        if not isinstance(self.scheduler, VirtualScheduler):
            raise RuntimeError("run() needs a VirtualScheduler; drive real loops yourself.")
        if not self.started:
            self.start()
        steps = 0
        while not self.game_over and steps < max_steps and self.scheduler.step():
            steps += 1
        if not self.game_over:
            self.finish("stalled")
        return self.winner()
