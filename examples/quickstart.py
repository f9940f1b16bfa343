"""
Quickstart example for the Mine Duel bot.

This script demonstrates basic usage of the decision engine.
"""

import logging
import random

from mineduel import (
    BoardSnapshot,
    ConstraintSolver,
    DuelGame,
    DecisionOrchestrator,
    PatternMemory,
    VirtualScheduler,
    format_bot_knowledge,
    run_bot_many_games,
)


def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("Mine Duel Bot - Quickstart Example")
    print("=" * 60)

    # Example 1: Ask the solver about a hand-made position
    print("\n1. Solving a hand-made position...")
    print("-" * 60)

    snapshot = BoardSnapshot.from_ascii(
        [
            "1..",
            "1..",
            "11.",
        ],
        total_mines=1,
    )
    result = ConstraintSolver().solve(snapshot)
    print(f"Safe cells:  {sorted(result.safe_cells)}")
    print(f"Mine cells:  {sorted(result.mine_cells)}")
    print(f"Rule usage:  {dict(result.stats)}")

    # Example 2: Play one duel, hard bot against a medium bot
    print("\n2. One duel: hard vs medium (10x10, 15 mines)...")
    print("-" * 60)

    scheduler = VirtualScheduler()
    game = DuelGame(10, 10, 15, duration_ms=90000, scheduler=scheduler, rng=random.Random(7))
    memory = PatternMemory()
    bot = DecisionOrchestrator(
        game.seat("bot"), "hard", scheduler=scheduler, feedback=memory, rng=random.Random(1)
    )
    rival = DecisionOrchestrator(
        game.seat("opponent"), "medium", scheduler=scheduler, rng=random.Random(2)
    )
    game.attach("bot", bot)
    game.attach("opponent", rival)

    winner = game.run()
    print(f"Ended by {game.end_reason}; winner: {winner or 'draw'}")
    print(f"Scores: bot {game.seat('bot').score}, opponent {game.seat('opponent').score}")
    print(f"Moves: {bot.counters.moves}, mines hit: {bot.counters.mines_hit}")
    print(f"Actions by layer: {bot.counters.by_layer}")

    # Example 3: Show what the bot knew at the end
    print("\n3. Final bot knowledge:")
    print("-" * 60)
    print(format_bot_knowledge(bot))

    # Example 4: Statistics over several games
    print("\n4. Running 20 duels per difficulty against a medium bot...")
    print("-" * 60)

    for name in ("easy", "medium", "hard", "expert"):
        results = run_bot_many_games(10, 10, 15, runs=20, difficulty=name, seed=42)
        print(
            f"{name:8s} win rate {results['win_rate']*100:5.1f}%  "
            f"avg score {results['avg_my_score']:6.1f}  "
            f"mines hit {results['avg_mines_hit']:.2f}"
        )

    print("\n" + "=" * 60)
    print("Done!")
    print("=" * 60)


if __name__ == "__main__":
    main()
