"""Candidate actions produced by the decision layers."""

import enum
from dataclasses import dataclass
from typing import Optional

from .utils import Position

# Priority bands, highest wins. Resource actions and probabilistic reveals are
# scored inside their own bands by the strategist and the risk estimator.
PRIORITY_DISCLOSED_FLAG = 110.0
PRIORITY_PROVEN_FLAG = 100.0
PRIORITY_PROVEN_REVEAL = 88.0
PRIORITY_UNFLAG = 62.0
PRIORITY_PROBABILISTIC_MAX = 60.0
PRIORITY_FALLBACK = 1.0


class ActionKind(str, enum.Enum):
    REVEAL = "reveal"
    FLAG = "flag"
    UNFLAG = "unflag"
    USE_RESOURCE = "use_resource"


class Power(str, enum.Enum):
    """Abilities the bot may spend points on."""

    FREEZE = "freeze"
    SHIELD = "shield"
    RADAR = "radar"
    SAFEBURST = "safeburst"


class Layer(str, enum.Enum):
    DISCLOSED = "disclosed"
    DETERMINISTIC = "deterministic"
    PROBABILISTIC = "probabilistic"
    STRATEGIC = "strategic"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class Action:
    """
    One decision: a tagged variant over reveal/flag/unflag/use-resource.

    Cell actions carry ``position``; resource actions carry ``power``.
    ``reason`` is for humans and tests only.
    """

    kind: ActionKind
    priority: float
    reason: str
    layer: Layer
    position: Optional[Position] = None
    power: Optional[Power] = None
    risk: Optional[float] = None

    def __post_init__(self) -> None:
        if self.kind is ActionKind.USE_RESOURCE:
            if self.power is None:
                raise ValueError("Resource actions need a power.")
        elif self.position is None:
            raise ValueError(f"{self.kind.value} actions need a position.")

    @classmethod
    def reveal(
        cls,
        pos: Position,
        priority: float,
        reason: str,
        layer: Layer,
        risk: Optional[float] = None,
    ) -> "Action":
        return cls(ActionKind.REVEAL, priority, reason, layer, position=pos, risk=risk)

    @classmethod
    def flag(cls, pos: Position, priority: float, reason: str, layer: Layer) -> "Action":
        return cls(ActionKind.FLAG, priority, reason, layer, position=pos)

    @classmethod
    def unflag(cls, pos: Position, priority: float, reason: str, layer: Layer) -> "Action":
        return cls(ActionKind.UNFLAG, priority, reason, layer, position=pos)

    @classmethod
    def use_resource(cls, power: Power, priority: float, reason: str) -> "Action":
        return cls(ActionKind.USE_RESOURCE, priority, reason, Layer.STRATEGIC, power=power)

    @property
    def is_reveal(self) -> bool:
        return self.kind is ActionKind.REVEAL

    def describe(self) -> str:
        target = self.power.value if self.power is not None else str(self.position)
        return f"{self.kind.value} {target} (priority {self.priority:.1f}): {self.reason}"


@dataclass(frozen=True)
class ActionOutcome:
    """
    What the host reports back after applying an action.

    Attributes:
        accepted: False if the host refused the action (already revealed,
            not enough points, ...).
        hit_mine: True when a reveal stepped on a mine.
        cells_revealed: Number of cells opened by a reveal or safeburst.
        disclosed: Mines disclosed by a radar, if the host reports them inline.
    """

    accepted: bool = True
    hit_mine: bool = False
    cells_revealed: int = 0
    disclosed: tuple = ()
