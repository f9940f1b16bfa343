"""Tests for competitive state, moods, the resource ledger and power scoring."""

import random
from dataclasses import replace

import pytest

from mineduel.actions import PRIORITY_PROVEN_FLAG, PRIORITY_PROVEN_REVEAL, ActionKind, Power
from mineduel.config import DEFAULT_POWER_SPECS, DIFFICULTY_PRESETS, DifficultyConfig, PowerSpec
from mineduel.feedback import NullFeedback
from mineduel.strategy import (
    CompetitiveState,
    Mood,
    OpponentMove,
    OpponentTracker,
    Phase,
    ResourceLedger,
    ResourceStrategist,
)

MEDIUM = DIFFICULTY_PRESETS["medium"]


def state(my: int, theirs: int, remaining_percent: float) -> CompetitiveState:
    return CompetitiveState(
        my_score=my,
        opponent_score=theirs,
        time_remaining_ms=remaining_percent * 1000.0,
        total_duration_ms=100000.0,
    )


class LearnedDefence(NullFeedback):
    def best_mood(self, min_games):
        return "defensive"


class Effectiveness(NullFeedback):
    def __init__(self, value):
        self.value = value

    def power_effectiveness(self, power):
        return self.value


class TestCompetitiveState:
    @pytest.mark.parametrize(
        "remaining, phase",
        [(80, Phase.EARLY), (50, Phase.MID), (20, Phase.LATE), (10, Phase.CRITICAL), (0, Phase.CRITICAL)],
    )
    def test_phase(self, remaining, phase):
        assert state(0, 0, remaining).phase is phase

    def test_urgency(self):
        assert state(0, 20, 50).urgency == pytest.approx(35.0)
        assert state(500, 0, 0).urgency == pytest.approx(50.0)
        assert state(0, 1000, 0).urgency == 100.0


class TestOpponentTracker:
    def test_speed_and_streak(self):
        tracker = OpponentTracker()
        tracker.observe_score(0, 0.0)
        tracker.observe_score(30, 1000.0)

        assert tracker.speed == pytest.approx(30.0)
        assert tracker.on_streak

        tracker.observe_score(35, 2000.0)
        assert not tracker.on_streak

    def test_skill_level(self):
        tracker = OpponentTracker()
        tracker.observe_move(OpponentMove(move_time_ms=2000, hit_mine=True))
        assert tracker.aggressive
        assert tracker.skill_level == "intermediate"

        tracker.speed = 12
        tracker.observe_move(OpponentMove(move_time_ms=2000, cells_revealed=8))
        assert tracker.skill_level == "expert"

    def test_estimated_progress(self):
        tracker = OpponentTracker()
        tracker.observe_score(100, 0.0)
        assert tracker.estimated_progress(safe_cells=40) == pytest.approx(50.0)


class TestMood:
    def test_desperate_when_far_behind_late(self):
        strategist = ResourceStrategist()
        assert strategist.update_mood(state(0, 100, 10), OpponentTracker()) is Mood.DESPERATE

    def test_far_behind_early_is_only_aggressive(self):
        strategist = ResourceStrategist()
        assert strategist.update_mood(state(0, 100, 90), OpponentTracker()) is Mood.AGGRESSIVE

    def test_opponent_streak_makes_aggressive(self):
        tracker = OpponentTracker()
        tracker.observe_score(0, 0.0)
        tracker.observe_score(30, 1000.0)
        strategist = ResourceStrategist()

        assert strategist.update_mood(state(30, 30, 90), tracker) is Mood.AGGRESSIVE

    def test_defensive_needs_a_lead_after_the_opening(self):
        strategist = ResourceStrategist()
        assert strategist.update_mood(state(100, 0, 50), OpponentTracker()) is Mood.DEFENSIVE
        assert strategist.update_mood(state(100, 0, 90), OpponentTracker()) is Mood.BALANCED

    def test_learned_mood_overrides_balanced(self):
        strategist = ResourceStrategist(feedback=LearnedDefence())
        even = state(10, 10, 50)

        assert strategist.update_mood(even, OpponentTracker()) is Mood.DEFENSIVE
        assert strategist.update_mood(even, OpponentTracker(), use_learning=False) is Mood.BALANCED

    def test_learned_mood_never_overrides_a_forced_one(self):
        strategist = ResourceStrategist(feedback=LearnedDefence())
        assert strategist.update_mood(state(0, 100, 10), OpponentTracker()) is Mood.DESPERATE

    def test_tolerance_follows_mood(self):
        strategist = ResourceStrategist()
        strategist.mood = Mood.DESPERATE
        assert strategist.risk_tolerance(0.32) == pytest.approx(0.52)
        assert strategist.risk_tolerance(0.9) == pytest.approx(0.95)

        strategist.mood = Mood.DEFENSIVE
        assert strategist.risk_tolerance(0.32) == pytest.approx(0.22)
        assert strategist.risk_tolerance(0.1) == pytest.approx(0.05)

        strategist.mood = Mood.BALANCED
        assert strategist.risk_tolerance(0.32) == pytest.approx(0.32)

    def test_speed_modifier(self):
        strategist = ResourceStrategist()
        strategist.mood = Mood.DESPERATE
        assert strategist.speed_modifier(state(0, 0, 50)) == 0.6
        strategist.mood = Mood.BALANCED
        assert strategist.speed_modifier(state(0, 10, 5)) == 0.7
        assert strategist.speed_modifier(state(0, 0, 50)) == 1.0


class TestResourceLedger:
    def test_cost(self):
        ledger = ResourceLedger()
        assert ledger.ineligibility(Power.RADAR, 0.0, 10, MEDIUM) == "needs 30 points"
        assert ledger.is_eligible(Power.RADAR, 0.0, 30, MEDIUM)

    def test_shared_cooldown(self):
        ledger = ResourceLedger()
        ledger.record_use(Power.RADAR, 0.0)

        assert ledger.ineligibility(Power.SHIELD, 1000.0, 100, MEDIUM) == "shared cooldown"
        assert ledger.is_eligible(Power.SHIELD, MEDIUM.power_cooldown_ms, 100, MEDIUM)

    def test_own_cooldown(self):
        specs = dict(DEFAULT_POWER_SPECS)
        specs[Power.RADAR] = PowerSpec(cost=30, cooldown_ms=5000)
        config = replace(MEDIUM, power_cooldown_ms=0, power_specs=specs)
        ledger = ResourceLedger()
        ledger.record_use(Power.RADAR, 0.0)

        assert ledger.ineligibility(Power.RADAR, 4999.0, 100, config) == "cooldown"
        assert ledger.is_eligible(Power.SHIELD, 1000.0, 100, config)
        assert ledger.is_eligible(Power.RADAR, 5000.0, 100, config)

    def test_limit(self):
        ledger = ResourceLedger()
        ledger.record_use(Power.RADAR, 0.0)
        ledger.record_use(Power.RADAR, 20000.0)

        assert ledger.ineligibility(Power.RADAR, 60000.0, 100, MEDIUM) == "limit reached"
        assert ledger.used(Power.RADAR) == 2
        assert ledger.total_used() == 2

    def test_disabled_power(self):
        easy = DIFFICULTY_PRESETS["easy"]
        assert ResourceLedger().ineligibility(Power.FREEZE, 0.0, 1000, easy) == "limit reached"

    def test_reset(self):
        ledger = ResourceLedger()
        ledger.record_use(Power.SHIELD, 5.0)
        ledger.reset()
        assert ledger.usage() == {p: 0 for p in Power}
        assert ledger.last_any_use_ms is None


class TestPowerScoring:
    def test_scores_are_clamped(self):
        for value in (0.0, 1.0):
            strategist = ResourceStrategist(feedback=Effectiveness(value))
            strategist.mood = Mood.DESPERATE
            tracker = OpponentTracker()
            tracker.speed = 20
            tracker.on_streak = True
            scores = strategist.score(state(0, 200, 5), ResourceLedger(), tracker, has_safe_moves=False)
            assert all(0.0 <= s <= 100.0 for s in scores.values())

    def test_no_safe_moves_boosts_radar(self):
        strategist = ResourceStrategist()
        with_safe = strategist.score(state(50, 50, 50), ResourceLedger(), OpponentTracker(), True)
        without = strategist.score(state(50, 50, 50), ResourceLedger(), OpponentTracker(), False)

        assert without[Power.RADAR] - with_safe[Power.RADAR] == pytest.approx(50.0)

    def test_dire_resource_outranks_safe_reveals(self):
        strategist = ResourceStrategist()
        dire = state(70, 100, 10)
        strategist.update_mood(dire, OpponentTracker())
        action = strategist.best_candidate(
            dire, ResourceLedger(), OpponentTracker(), MEDIUM, 0.0,
            has_safe_moves=False, has_good_reveal=False,
        )

        assert action is not None
        assert action.kind is ActionKind.USE_RESOURCE
        assert action.power is Power.SAFEBURST
        assert PRIORITY_PROVEN_REVEAL < action.priority < PRIORITY_PROVEN_FLAG

    def test_never_picks_an_ineligible_power(self):
        rng = random.Random(3)
        strategist = ResourceStrategist()
        ledger = ResourceLedger()
        now = 0.0
        for _ in range(300):
            now += rng.uniform(0, 8000)
            current = state(rng.randrange(0, 200), rng.randrange(0, 200), rng.uniform(0, 100))
            strategist.update_mood(current, OpponentTracker())
            action = strategist.best_candidate(
                current, ledger, OpponentTracker(), MEDIUM, now,
                has_safe_moves=rng.random() < 0.5, has_good_reveal=rng.random() < 0.5,
            )
            if action is None:
                continue
            assert ledger.is_eligible(action.power, now, current.my_score, MEDIUM)
            ledger.record_use(action.power, now)

        for power in Power:
            assert ledger.used(power) <= MEDIUM.power_limit(power)


class TestDifficultyConfig:
    def test_unknown_name_falls_back_to_medium(self, caplog):
        assert DifficultyConfig.from_name("nightmare") is MEDIUM
        assert "Unknown difficulty" in caplog.text

    def test_rejects_bad_accuracy(self):
        with pytest.raises(ValueError):
            DifficultyConfig(
                name="broken",
                think_time_min_ms=100,
                think_time_max_ms=200,
                accuracy=1.5,
                error_bias=0.0,
                power_cooldown_ms=0,
                power_limits={},
                risk_tolerance=0.3,
                watch_opponent=0.5,
                use_learning=False,
            )

    def test_think_delay_bounds(self):
        rng = random.Random(0)
        for _ in range(500):
            delay = MEDIUM.think_delay_ms(rng)
            assert MEDIUM.think_time_min_ms * 0.7 <= delay <= MEDIUM.think_time_max_ms * 1.5

    def test_adjusted_by_win_rate(self):
        assert MEDIUM.adjusted(None) is MEDIUM
        assert MEDIUM.adjusted(0.1).risk_tolerance == pytest.approx(0.27)
        assert MEDIUM.adjusted(0.9).risk_tolerance == pytest.approx(0.35)
        assert DIFFICULTY_PRESETS["easy"].adjusted(0.1).risk_tolerance == 0.25
