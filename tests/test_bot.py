import logging
import random

import pytest

from conftest import ScriptedHost, board, played_board, precise
from mineduel.actions import Action, ActionKind, ActionOutcome, Layer, Power
from mineduel.board import BoardSnapshot, Cell
from mineduel.bot import BotState, DecisionOrchestrator, GameResult
from mineduel.feedback import PatternMemory
from mineduel.scheduling import VirtualScheduler
from mineduel.solver import ConstraintSolver
from mineduel.strategy import CompetitiveState, OpponentMove


def make_bot(snapshot, config=None, **kwargs):
    host = ScriptedHost(snapshot, kwargs.pop("state", None))
    scheduler = kwargs.pop("scheduler", VirtualScheduler())
    bot = DecisionOrchestrator(
        host,
        config or precise(),
        scheduler=scheduler,
        rng=kwargs.pop("rng", random.Random(0)),
        **kwargs,
    )
    return bot, host, scheduler


class BrokenSolver(ConstraintSolver):
    def solve(self, snapshot, disclosed=frozenset()):
        raise RuntimeError("boom")


# -----------------------------------------------------------------------------
# Candidate ordering
# -----------------------------------------------------------------------------


class TestCandidates:
    def test_disclosed_then_proven_flag_then_proven_reveal(self):
        snap = board("*.*", "121", total_mines=2)
        bot, _, _ = make_bot(snap)
        bot.disclose([(0, 0)])

        cands = bot.candidates(snap, CompetitiveState(), 0.0)

        assert [(a.kind, a.position, a.layer) for a in cands] == [
            (ActionKind.FLAG, (0, 0), Layer.DISCLOSED),
            (ActionKind.FLAG, (2, 0), Layer.DETERMINISTIC),
            (ActionKind.REVEAL, (1, 0), Layer.DETERMINISTIC),
        ]
        assert [a.priority for a in cands] == [110.0, 100.0, 88.0]

    def test_decide_prefers_disclosed_mine(self):
        snap = board("*.*", "121", total_mines=2)
        bot, _, _ = make_bot(snap)
        bot.disclose([(0, 0)])

        action = bot.decide()

        assert action.kind is ActionKind.FLAG
        assert action.position == (0, 0)
        assert action.layer is Layer.DISCLOSED

    def test_already_flagged_disclosure_is_dropped(self):
        snap = board("f.*", "121", total_mines=2)
        bot, _, _ = make_bot(snap)
        bot.disclose([(0, 0)])

        action = bot.decide()

        assert (0, 0) not in bot.disclosed
        assert action.kind is ActionKind.FLAG
        assert action.position == (2, 0)
        assert action.layer is Layer.DETERMINISTIC

    def test_guess_only_when_nothing_is_proven(self):
        bot, _, _ = make_bot(board("1*", ".."))

        action = bot.decide()

        assert action.kind is ActionKind.REVEAL
        assert action.layer is Layer.PROBABILISTIC
        assert action.position in {(1, 0), (0, 1), (1, 1)}
        assert 10.0 <= action.priority <= 60.0
        assert bot.risk_map

    def test_risk_map_is_skipped_when_a_proof_exists(self):
        bot, _, _ = make_bot(board("*.*", "121", total_mines=2))
        bot.decide()
        assert bot.risk_map == {}

    def test_over_flagged_number_suggests_unflag(self):
        snap = board("1F", "F.", total_mines=2)
        bot, _, _ = make_bot(snap)

        cands = bot.candidates(snap, CompetitiveState(), 0.0)

        assert cands[0].kind is ActionKind.UNFLAG
        assert cands[0].position == (0, 1)
        assert sum(1 for a in cands if a.kind is ActionKind.UNFLAG) == 1


# -----------------------------------------------------------------------------
# Liveness and fallback
# -----------------------------------------------------------------------------


class TestLiveness:
    @pytest.mark.parametrize("seed", range(20))
    def test_always_acts_on_a_playable_board(self, seed):
        snap = played_board(seed).snapshot()
        if not snap.hidden_cells():
            pytest.skip("board already cleared")
        bot, _, _ = make_bot(snap, precise("medium", accuracy=0.85), rng=random.Random(seed))

        action = bot.decide()

        assert action is not None
        if action.kind is ActionKind.REVEAL:
            assert snap.cell(action.position).hidden

    def test_blank_board_gets_a_move(self):
        bot, _, _ = make_bot(board("....", "....", "....", total_mines=3))
        action = bot.decide()
        assert action is not None
        assert action.kind is ActionKind.REVEAL

    def test_malformed_counts_fall_back_to_a_hidden_cell(self):
        cells = [
            Cell(0, 0, revealed=True, neighbor_mine_count=9),
            Cell(0, 1, revealed=True, neighbor_mine_count=1),
            Cell(1, 1, revealed=True, neighbor_mine_count=1),
        ]
        snap = BoardSnapshot.from_cells(2, 2, 1, cells)
        bot, _, _ = make_bot(snap)

        action = bot.decide()

        assert action.layer is Layer.FALLBACK
        assert action.position == (1, 0)

    def test_fallback_prefers_corners_away_from_known_mines(self):
        snap = board("...", "...", "...", total_mines=2)
        bot, _, _ = make_bot(snap)
        bot.disclose([(0, 0)])

        action = bot.fallback_action(snap)

        assert action.position == (2, 0)
        assert action.priority == 1.0

    def test_fallback_has_nothing_on_a_cleared_board(self):
        snap = board("11", "1f")
        bot, _, _ = make_bot(snap)
        assert bot.fallback_action(snap) is None

    def test_cooling_proven_mine_is_flagged_not_revealed(self):
        bot, _, _ = make_bot(board("11", "1.", total_mines=1))
        bot._unflagged_at[(1, 1)] = bot._now_ms() - 2000

        action = bot.decide()

        assert action.kind is ActionKind.FLAG
        assert action.position == (1, 1)
        assert action.layer is Layer.FALLBACK


# -----------------------------------------------------------------------------
# Think cycle and error boundary
# -----------------------------------------------------------------------------


class TestThinkCycle:
    def test_start_schedules_and_step_applies_one_action(self):
        bot, host, scheduler = make_bot(board("*.*", "121", total_mines=2))
        bot.start()
        assert bot.state is BotState.ACTIVE
        assert scheduler.pending() == 1

        scheduler.step()

        assert len(host.applied) == 1
        assert bot.counters.flags_placed == 1
        assert scheduler.pending() == 1

    def test_solver_failure_falls_back_without_raising(self, caplog):
        bot, host, scheduler = make_bot(board("...", "...", "..."), solver=BrokenSolver())
        bot.start()

        with caplog.at_level(logging.ERROR, logger="mineduel.bot"):
            scheduler.step()

        assert [a.layer for a in host.applied] == [Layer.FALLBACK]
        assert host.applied[0].position == (0, 0)
        assert bot.counters.failed_cycles == 1
        assert bot.state is BotState.ACTIVE
        assert scheduler.pending() == 1
        assert "Think cycle failed" in caplog.text

    def test_host_exception_skips_the_cycle(self):
        bot, host, scheduler = make_bot(board("*.*", "121", total_mines=2))
        host.raise_on_apply = True
        bot.start()

        scheduler.step()

        assert bot.counters.failed_cycles == 1
        assert len(bot.history) == 0
        assert bot.state is BotState.ACTIVE
        assert scheduler.pending() == 1

    def test_malformed_host_result_skips_the_cycle(self):
        bot, host, scheduler = make_bot(board("*.*", "121", total_mines=2))
        host.outcome = "ok"
        bot.start()

        scheduler.step()

        assert bot.counters.failed_cycles == 1
        assert bot.counters.flags_placed == 0
        assert scheduler.pending() == 1

    def test_reentrant_think_is_ignored(self):
        holder = {}
        bot, host, scheduler = make_bot(
            board("*.*", "121", total_mines=2),
            on_decision=lambda action: holder["bot"].think(),
        )
        holder["bot"] = bot
        bot.start()

        scheduler.step()

        assert len(host.applied) == 1

    def test_failing_decision_hook_does_not_block_the_move(self):
        def hook(action):
            raise ValueError("listener bug")

        bot, host, scheduler = make_bot(board("*.*", "121", total_mines=2), on_decision=hook)
        bot.start()
        scheduler.step()
        assert len(host.applied) == 1

    def test_decision_hook_sees_every_action(self):
        seen = []
        bot, host, scheduler = make_bot(board("*.*", "121", total_mines=2), on_decision=seen.append)
        bot.start()
        scheduler.step()
        scheduler.step()
        assert seen == host.applied

    def test_history_is_bounded(self):
        bot, _, scheduler = make_bot(board("*.*", "121", total_mines=2))
        bot.start()
        for _ in range(150):
            scheduler.step()
        assert len(bot.history) == 100


class TestLifecycle:
    def test_stop_is_idempotent_and_cancels_the_timer(self):
        bot, host, scheduler = make_bot(board("*.*", "121", total_mines=2))
        bot.stop()
        bot.start()
        bot.stop()
        bot.stop()

        assert bot.state is BotState.STOPPED
        assert scheduler.pending() == 0
        scheduler.advance(10.0)
        assert host.applied == []

    def test_restart_resets_per_game_state(self):
        bot, _, scheduler = make_bot(board("*.*", "121", total_mines=2))
        bot.start()
        bot.disclose([(2, 0)])
        scheduler.step()
        bot.start()

        assert bot.counters.moves == 0
        assert bot.counters.flags_placed == 0
        assert bot.disclosed == set()
        assert scheduler.pending() == 1

    def test_freeze_blocks_actions_until_expiry(self):
        bot, host, scheduler = make_bot(board("*.*", "121", total_mines=2))
        bot.start()
        bot.freeze(5000)

        scheduler.advance(4.9)
        assert host.applied == []
        assert bot.frozen

        scheduler.advance(1.0)
        assert host.applied
        assert not bot.frozen

    def test_freeze_extends_but_never_shortens(self):
        bot, _, _ = make_bot(board("..", ".."))
        bot.freeze(5000)
        bot.freeze(1000)
        assert bot.frozen_until == pytest.approx(5000.0)

    def test_opponent_moves_update_the_tracker(self):
        bot, _, _ = make_bot(board("..", ".."))
        bot.observe_opponent_move(OpponentMove(move_time_ms=400, cells_revealed=8))
        assert bot.opponent.aggressive
        assert bot.opponent.skill_level != "unknown"

    def test_learning_preset_adapts_to_win_rate(self):
        memory = PatternMemory()
        memory.games_played, memory.wins = 10, 1
        bot, _, _ = make_bot(board("..", ".."), config="medium", feedback=memory)
        assert bot.config.risk_tolerance == pytest.approx(0.27)

        bot.set_difficulty("easy")
        assert bot.config.risk_tolerance == pytest.approx(0.25)


# -----------------------------------------------------------------------------
# Imperfection
# -----------------------------------------------------------------------------


class TestSelection:
    @staticmethod
    def ranked():
        return [
            Action.reveal((i, 0), 50.0 - i, "guess", Layer.PROBABILISTIC) for i in range(5)
        ]

    def test_perfect_accuracy_always_takes_the_best(self):
        bot, _, _ = make_bot(board("..", ".."))
        cands = self.ranked()
        assert all(bot.select(cands) is cands[0] for _ in range(100))

    def test_mistakes_stay_within_the_top_three(self):
        bot, _, _ = make_bot(board("..", ".."), precise(accuracy=0.0), rng=random.Random(3))
        cands = self.ranked()

        picked = {cands.index(bot.select(cands)) for _ in range(200)}

        assert picked <= {0, 1, 2}
        assert picked & {1, 2}
        assert bot.counters.suboptimal_choices > 0

    def test_single_candidate_is_always_chosen(self):
        bot, _, _ = make_bot(board("..", ".."), precise(accuracy=0.0))
        only = self.ranked()[:1]
        assert bot.select(only) is only[0]

    def test_error_bias_does_not_change_the_pick(self):
        bot, _, _ = make_bot(board("..", ".."), precise(error_bias=0.99))
        cands = self.ranked()
        assert all(bot.select(cands) is cands[0] for _ in range(100))


# -----------------------------------------------------------------------------
# Outcome bookkeeping
# -----------------------------------------------------------------------------


class TestOutcomes:
    def test_mine_hit_is_learned(self):
        memory = PatternMemory()
        bot, host, scheduler = make_bot(board("1*", ".."), feedback=memory)
        host.outcome = ActionOutcome(hit_mine=True, cells_revealed=1)
        bot.start()

        scheduler.step()

        assert bot.counters.mines_hit == 1
        assert bot.counters.mistakes == 1
        assert len(memory.patterns) == 1

    def test_unflag_starts_a_cooldown_on_that_cell(self):
        bot, host, scheduler = make_bot(board("1F", "F.", total_mines=2))
        bot.start()
        scheduler.step()
        assert host.applied[-1].kind is ActionKind.UNFLAG
        assert bot.counters.wrong_flags == 1

        proven = board("3f", "*.", total_mines=3)
        now = bot._now_ms()

        def flags(at):
            return [
                a.position
                for a in bot.candidates(proven, CompetitiveState(), at)
                if a.kind is ActionKind.FLAG
            ]

        assert flags(now) == [(1, 1)]
        assert flags(now + 10001) == [(0, 1), (1, 1)]

    def test_declined_power_is_not_charged(self):
        state = CompetitiveState(
            my_score=70, opponent_score=100, time_remaining_ms=10000, total_duration_ms=100000
        )
        bot, host, scheduler = make_bot(
            board("...", "...", "...", total_mines=2), precise("medium"), state=state
        )
        host.outcome = ActionOutcome(accepted=False)
        bot.start()

        scheduler.step()
        assert host.applied[-1].kind is ActionKind.USE_RESOURCE
        assert host.applied[-1].power is Power.SAFEBURST
        assert bot.ledger.total_used() == 0

        host.outcome = ActionOutcome(cells_revealed=3)
        scheduler.step()
        assert host.applied[-1].power is Power.SAFEBURST
        assert bot.ledger.used(Power.SAFEBURST) == 1

        scheduler.step()
        assert host.applied[-1].kind is ActionKind.REVEAL

    def test_end_game_reports_to_feedback(self):
        memory = PatternMemory()
        bot, _, scheduler = make_bot(board("*.*", "121", total_mines=2), feedback=memory)
        bot.start()
        scheduler.step()
        scheduler.step()

        summary = bot.end_game(GameResult(won=True, my_score=50, opponent_score=10))

        assert memory.games_played == 1
        assert memory.wins == 1
        assert summary.moves == bot.counters.moves
        assert summary.flags_placed == bot.counters.flags_placed
        assert summary.difficulty == "expert"
        assert bot.last_summary is summary

    def test_feedback_failure_is_contained(self):
        class Exploding(PatternMemory):
            def end_game(self, summary):
                raise RuntimeError("disk full")

        bot, _, _ = make_bot(board("..", ".."), feedback=Exploding())
        summary = bot.end_game(GameResult(won=False))
        assert bot.last_summary is summary
