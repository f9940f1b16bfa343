"""
Mine Duel Bot

Decision engine for an automated opponent in timed, two-player Minesweeper:
- Constraint solver: provably safe cells and provable mines from visible numbers
- Risk estimator: blended mine probabilities when nothing can be proven
- Resource strategist: mood-driven spending of points on powers
- Decision orchestrator: the paced think/act cycle merging all three layers
- Feedback hook: danger patterns and win statistics learned across games
"""

from .actions import Action, ActionKind, ActionOutcome, Layer, Power
from .board import BoardSnapshot, Cell, Constraint
from .bot import BotState, DecisionOrchestrator, GameHost, GameResult
from .config import DIFFICULTY_PRESETS, DifficultyConfig, MoodThresholds, PowerSpec, RiskWeights
from .engine import DuelGame, PlayerBoard, PlayerSeat
from .feedback import FeedbackHook, GameSummary, NeighborState, NullFeedback, PatternMemory
from .risk import RiskCandidate, RiskEstimator
from .scheduling import VirtualScheduler
from .solver import ConstraintSolver, SolverResult
from .strategy import (
    CompetitiveState,
    Mood,
    OpponentMove,
    OpponentTracker,
    Phase,
    ResourceLedger,
    ResourceStrategist,
)
from .analysis import (
    format_bot_knowledge,
    run_bot_single_game,
    run_bot_many_games,
    run_difficulty_analysis,
    summarize_layer_mix,
)

__version__ = "1.0.0"

__all__ = [
    # Board and actions
    "Action",
    "ActionKind",
    "ActionOutcome",
    "BoardSnapshot",
    "Cell",
    "Constraint",
    "Layer",
    "Power",
    # Decision layers
    "ConstraintSolver",
    "SolverResult",
    "RiskCandidate",
    "RiskEstimator",
    "CompetitiveState",
    "Mood",
    "OpponentMove",
    "OpponentTracker",
    "Phase",
    "ResourceLedger",
    "ResourceStrategist",
    # Orchestration
    "BotState",
    "DecisionOrchestrator",
    "GameHost",
    "GameResult",
    "VirtualScheduler",
    # Configuration
    "DIFFICULTY_PRESETS",
    "DifficultyConfig",
    "MoodThresholds",
    "PowerSpec",
    "RiskWeights",
    # Learning
    "FeedbackHook",
    "GameSummary",
    "NeighborState",
    "NullFeedback",
    "PatternMemory",
    # Reference host
    "DuelGame",
    "PlayerBoard",
    "PlayerSeat",
    # Analysis functions
    "format_bot_knowledge",
    "run_bot_single_game",
    "run_bot_many_games",
    "run_difficulty_analysis",
    "summarize_layer_mix",
]
