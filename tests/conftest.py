"""Shared builders for board snapshots and scripted hosts."""

import random
from dataclasses import replace
from typing import List, Optional

import pytest

from mineduel.actions import Action, ActionOutcome
from mineduel.board import BoardSnapshot
from mineduel.config import DIFFICULTY_PRESETS, DifficultyConfig
from mineduel.engine import PlayerBoard
from mineduel.strategy import CompetitiveState


def board(*rows: str, total_mines: Optional[int] = None) -> BoardSnapshot:
    """Shorthand for ``BoardSnapshot.from_ascii`` with one argument per row."""
    return BoardSnapshot.from_ascii(rows, total_mines=total_mines)


def precise(name: str = "expert", **changes) -> DifficultyConfig:
    """A preset that always picks the best candidate unless told otherwise."""
    changes.setdefault("accuracy", 1.0)
    return replace(DIFFICULTY_PRESETS[name], **changes)


def played_board(seed: int, width: int = 9, height: int = 9, mines: int = 10, reveals: int = 4) -> PlayerBoard:
    """A board after a safe opening and a few more safe reveals."""
    rng = random.Random(seed)
    pb = PlayerBoard(width, height, mines, rng=rng)
    pb.reveal((width // 2, height // 2))
    for _ in range(reveals):
        safe = pb.hidden_safe_cells()
        if not safe:
            break
        pb.reveal(rng.choice(safe))
    return pb


class ScriptedHost:
    """Host double returning a fixed snapshot and recording applied actions."""

    def __init__(self, snapshot: BoardSnapshot, state: Optional[CompetitiveState] = None) -> None:
        self.snapshot = snapshot
        self.state = state or CompetitiveState()
        self.outcome: object = ActionOutcome()
        self.applied: List[Action] = []
        self.raise_on_apply = False

    def get_board_snapshot(self) -> BoardSnapshot:
        return self.snapshot

    def apply_action(self, action: Action) -> ActionOutcome:
        self.applied.append(action)
        if self.raise_on_apply:
            raise RuntimeError("host exploded")
        return self.outcome  # type: ignore[return-value]

    def get_competitive_state(self) -> CompetitiveState:
        return self.state


@pytest.fixture
def make_board():
    return board


@pytest.fixture
def make_host():
    return ScriptedHost
