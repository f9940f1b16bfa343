"""Simulation and benchmarking tools for the duel bot."""

import random
from collections import defaultdict
from typing import Dict, List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

from .bot import DecisionOrchestrator
from .board import BoardSnapshot
from .engine import DuelGame
from .feedback import FeedbackHook
from .scheduling import VirtualScheduler


def format_bot_knowledge(
    bot: DecisionOrchestrator,
    snapshot: Optional[BoardSnapshot] = None,
    *,
    show_coords: bool = True,
) -> str:
    """
    Format what the bot currently knows about its board.

    Args:
        bot: Orchestrator whose last analysis will be displayed.
        snapshot: Board to draw on; defaults to the bot's last snapshot.
        show_coords: If True, include coordinate labels and a header.

    Returns:
        A text grid where revealed numbers and flags are shown as on the
        board, proven safe cells as 'S', proven mines as 'M', disclosed mines
        as 'D', cells with an estimated risk as a 0-9 decile prefixed with '~',
        and anything else as '.'.
    """
    snapshot = snapshot or bot.last_snapshot
    if snapshot is None:
        raise ValueError("The bot has not looked at a board yet.")

    result = bot.classifications
    w, h = snapshot.width, snapshot.height

    def cell_char(x: int, y: int) -> str:
        pos = (x, y)
        c = snapshot.cell(pos)
        if c.revealed:
            return "X" if c.mine else str(c.neighbor_mine_count)
        if c.flagged:
            return "F"
        if pos in bot.disclosed:
            return "D"
        if pos in result.mine_cells:
            return "M"
        if pos in result.safe_cells:
            return "S"
        if pos in bot.risk_map:
            return f"~{min(9, int(bot.risk_map[pos] * 10))}"
        return "."

    lines: List[str] = []
    if show_coords:
        header = " ".join(f"{x:2d}" for x in range(w))
        lines.append("   " + header)
        lines.append("   " + "-" * (3 * w - 1))

    for y in range(h):
        row = " ".join(f"{cell_char(x, y):>2}" for x in range(w))
        lines.append(f"{y:2d} |" + row if show_coords else row)

    return "\n".join(lines)


def run_bot_single_game(
    width: int,
    height: int,
    mines_count: int,
    difficulty: str = "medium",
    opponent_difficulty: Optional[str] = "medium",
    *,
    duration_ms: float = 120000.0,
    seed: Optional[int] = None,
    feedback: Optional[FeedbackHook] = None,
    show_boards: bool = False,
) -> Dict[str, object]:
    """
    Play one virtual-clock duel between the bot and an opponent.

    Args:
        width: Board width.
        height: Board height.
        mines_count: Total number of mines on each player's board.
        difficulty: Preset of the bot under test.
        opponent_difficulty: Preset of the opposing bot, or None for an idle
            opponent that never moves.
        duration_ms: Match length.
        seed: Seed for boards and both bots; None for a random game.
        feedback: Learning collaborator for the bot under test.
        show_boards: If True, print the bot's final board and knowledge.

    Returns:
        The bot's summary fields plus "winner", "end_reason", the counters
        collected by the orchestrator and per-layer move counts (prefixed
        with "layer_").
    """
    rng = random.Random(seed)
    scheduler = VirtualScheduler()
    game = DuelGame(
        width,
        height,
        mines_count,
        duration_ms=duration_ms,
        scheduler=scheduler,
        rng=random.Random(rng.random()),
    )
    bot = DecisionOrchestrator(
        game.seat("bot"),
        difficulty,
        scheduler=scheduler,
        feedback=feedback,
        rng=random.Random(rng.random()),
    )
    game.attach("bot", bot)
    if opponent_difficulty is not None:
        rival = DecisionOrchestrator(
            game.seat("opponent"),
            opponent_difficulty,
            scheduler=scheduler,
            rng=random.Random(rng.random()),
        )
        game.attach("opponent", rival)

    game.run()

    if show_boards:
        print(f"Difficulty: {difficulty} vs {opponent_difficulty}")
        print("Underlying board (mines visible):")
        print(game.seat("bot").board.format_board(reveal_all=True))
        print()
        print("Bot knowledge:")
        print(format_bot_knowledge(bot, game.seat("bot").get_board_snapshot()))
        print()
        print(f"Finished ({game.end_reason}); winner: {game.winner()}.")

    summary = bot.last_summary
    if summary is None:
        raise RuntimeError("The duel ended without reporting a result to the bot.")

    out: Dict[str, object] = {
        "won": summary.won,
        "draw": summary.draw,
        "my_score": summary.my_score,
        "opponent_score": summary.opponent_score,
        "moves": summary.moves,
        "mistakes": summary.mistakes,
        "mines_hit": summary.mines_hit,
        "flags_placed": summary.flags_placed,
        "wrong_flags": summary.wrong_flags,
        "powers_used": sum(summary.power_usage.values()),
        "duration_ms": summary.duration_ms,
        "completion": game.seat("bot").board.completion,
        "fallback_moves": bot.counters.fallback_moves,
        "failed_cycles": bot.counters.failed_cycles,
        "suboptimal_choices": bot.counters.suboptimal_choices,
        "winner": game.winner(),
        "end_reason": game.end_reason,
    }
    for layer, count in bot.counters.by_layer.items():
        out[f"layer_{layer}"] = count
    return out


def run_bot_many_games(
    width: int,
    height: int,
    mines_count: int,
    runs: int,
    difficulty: str = "medium",
    opponent_difficulty: Optional[str] = "medium",
    *,
    duration_ms: float = 120000.0,
    seed: Optional[int] = None,
    feedback: Optional[FeedbackHook] = None,
) -> Dict[str, float]:
    """
    Play many independent duels and return averaged metrics plus win rate.

    Returns:
        Averages of every numeric per-game metric (prefixed with "avg_"), plus:
        - win_rate
        - draw_rate
        - mine_hit_rate: mines hit per reveal
        - deterministic_share: share of moves backed by a proof
    """
    if runs <= 0:
        raise ValueError("runs must be positive.")

    rng = random.Random(seed)
    samples: Dict[str, List[float]] = defaultdict(list)
    wins = draws = 0

    for _ in range(runs):
        payload = run_bot_single_game(
            width,
            height,
            mines_count,
            difficulty,
            opponent_difficulty,
            duration_ms=duration_ms,
            seed=rng.randrange(2**31),
            feedback=feedback,
        )
        wins += bool(payload["won"])
        draws += bool(payload["draw"])
        for k, v in payload.items():
            if isinstance(v, (int, float)) and not isinstance(v, bool):
                samples[k].append(float(v))

    out: Dict[str, float] = {
        f"avg_{k}": float(np.sum(v)) / runs for k, v in samples.items()
    }
    out["win_rate"] = wins / runs
    out["draw_rate"] = draws / runs

    moves = float(np.sum(samples["moves"])) if samples["moves"] else 0.0
    out["mine_hit_rate"] = (
        float(np.sum(samples["mines_hit"])) / moves if moves > 0 else 0.0
    )

    proven = sum(
        float(np.sum(samples.get(f"layer_{layer}", [])))
        for layer in ("deterministic", "disclosed")
    )
    total = sum(float(np.sum(v)) for k, v in samples.items() if k.startswith("layer_"))
    out["deterministic_share"] = proven / total if total > 0 else 0.0
    return out


def run_difficulty_analysis(
    runs: int,
    *,
    board: Tuple[int, int, int] = (10, 10, 15),
    difficulties: Sequence[str] = ("easy", "medium", "hard", "expert"),
    opponent_difficulty: Optional[str] = "medium",
    seed: Optional[int] = None,
    show_plots: bool = True,
) -> Dict[str, Dict[str, float]]:
    """
    Benchmark each difficulty preset against a fixed opponent and plot summaries.

    Args:
        runs: Number of duels per difficulty.
        board: (width, height, mines) of each player's board.
        difficulties: Presets to compare.
        opponent_difficulty: Preset of the fixed opponent (None for idle).
        seed: Seed shared by every preset so each one faces the same boards.
        show_plots: If False, skip drawing the matplotlib charts.

    Returns:
        Mapping from difficulty name to the statistics dict returned by
        run_bot_many_games().
    """
    w, h, m = board
    results: Dict[str, Dict[str, float]] = {}
    for name in difficulties:
        results[name] = run_bot_many_games(
            w, h, m, runs, name, opponent_difficulty, seed=seed
        )

    if not show_plots:
        return results

    names = list(difficulties)
    x = np.arange(len(names))
    bar_w = 0.35

    # 1) Win rate by difficulty
    plt.figure()  # type: ignore[misc]
    plt.bar(x, [results[n]["win_rate"] for n in names])  # type: ignore[misc]
    plt.xticks(x, names)  # type: ignore[misc]
    plt.ylabel("Win rate")  # type: ignore[misc]
    plt.ylim(0.0, 1.0)  # type: ignore[misc]
    plt.title(f"Win rate against {opponent_difficulty}")  # type: ignore[misc]
    plt.tight_layout()
    plt.show()  # type: ignore[misc]

    # 2) Scores
    plt.figure()  # type: ignore[misc]
    plt.bar(x - bar_w / 2, [results[n]["avg_my_score"] for n in names], width=bar_w, label="bot")  # type: ignore[misc]
    plt.bar(x + bar_w / 2, [results[n]["avg_opponent_score"] for n in names], width=bar_w, label="opponent")  # type: ignore[misc]
    plt.xticks(x, names)  # type: ignore[misc]
    plt.ylabel("Average final score")  # type: ignore[misc]
    plt.title("Average scores (per game)")  # type: ignore[misc]
    plt.legend()  # type: ignore[misc]
    plt.tight_layout()
    plt.show()  # type: ignore[misc]

    # 3) Moves by decision layer
    layers = ("disclosed", "deterministic", "probabilistic", "strategic", "fallback")
    layer_w = 0.8 / len(layers)
    plt.figure()  # type: ignore[misc]
    for i, layer in enumerate(layers):
        heights = [results[n].get(f"avg_layer_{layer}", 0.0) for n in names]
        plt.bar(x + (i - (len(layers) - 1) / 2) * layer_w, heights, width=layer_w, label=layer)  # type: ignore[misc]
    plt.xticks(x, names)  # type: ignore[misc]
    plt.ylabel("Average actions")  # type: ignore[misc]
    plt.title("Actions by decision layer (per game)")  # type: ignore[misc]
    plt.legend()  # type: ignore[misc]
    plt.tight_layout()
    plt.show()  # type: ignore[misc]

    # 4) Mines hit
    plt.figure()  # type: ignore[misc]
    plt.bar(x, [results[n]["avg_mines_hit"] for n in names])  # type: ignore[misc]
    plt.xticks(x, names)  # type: ignore[misc]
    plt.ylabel("Average mines hit")  # type: ignore[misc]
    plt.title("Mines hit by difficulty (per game)")  # type: ignore[misc]
    plt.tight_layout()
    plt.show()  # type: ignore[misc]

    return results


def summarize_layer_mix(
    results: Dict[str, Dict[str, float]], *, difficulty: str = "medium"
) -> Dict[str, float]:
    """
    Fractions of actions per decision layer for one difficulty.

    Args:
        results: Dict[difficulty -> metrics_dict] from run_difficulty_analysis().
        difficulty: Which preset to summarize.

    Returns:
        "<layer>_frac" for every layer seen, plus "total_actions".

    Raises:
        KeyError: If the difficulty is missing.
        ZeroDivisionError: If no actions were recorded.
    """
    if difficulty not in results:
        raise KeyError(f"Difficulty {difficulty!r} not found in results.")
    m = results[difficulty]
    layers = {k[len("avg_layer_"):]: v for k, v in m.items() if k.startswith("avg_layer_")}
    total = float(sum(layers.values()))
    if total == 0.0:
        raise ZeroDivisionError("No actions recorded; cannot compute fractions.")
    out = {f"{layer}_frac": count / total for layer, count in layers.items()}
    out["total_actions"] = total
    return out
