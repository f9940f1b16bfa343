"""Probabilistic layer: heuristic mine probabilities for unproven cells."""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import AbstractSet, DefaultDict, Dict, List, Optional, Sequence, Tuple

from .board import BoardSnapshot, Constraint
from .config import RiskWeights
from .feedback import FeedbackHook, NeighborState, NullFeedback
from .solver import SolverResult, build_constraints
from .utils import Position, center_distance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskCandidate:
    position: Position
    risk: float
    value: float


class RiskEstimator:
    """
    Estimate the chance that each undetermined hidden cell holds a mine.

    The numbers are heuristic: local constraint densities blended towards the
    most pessimistic one, a global density prior for cells away from the
    numbers, small position nudges, and a bump for neighbourhoods that have
    burnt the bot before. They are not required to sum to the mine count.
    """

    def __init__(
        self,
        weights: Optional[RiskWeights] = None,
        feedback: Optional[FeedbackHook] = None,
    ) -> None:
        self.weights = weights or RiskWeights()
        self.feedback: FeedbackHook = feedback if feedback is not None else NullFeedback()

    # -------------------------------------------------------------------------
    # Probability map
    # -------------------------------------------------------------------------

    def blend(self, contributions: Sequence[Tuple[float, float]]) -> float:
        """
        Combine per-constraint probabilities touching one cell.

        Args:
            contributions: (probability, weight) pairs; weight is 1/|cells|.

        Returns:
            max_weight * max + average_weight * weighted average, in [0, 1].
        """
        if not contributions:
            return 0.0
        highest = max(p for p, _ in contributions)
        total_weight = sum(w for _, w in contributions)
        average = (
            sum(p * w for p, w in contributions) / total_weight if total_weight > 0 else highest
        )
        value = self.weights.max_weight * highest + self.weights.average_weight * average
        return min(1.0, max(0.0, value))

    def estimate(
        self,
        snapshot: BoardSnapshot,
        classifications: SolverResult,
        disclosed: AbstractSet[Position] = frozenset(),
        use_learning: bool = True,
    ) -> Dict[Position, float]:
        """
        Build the risk map for one snapshot.

        Args:
            snapshot: Current visible board.
            classifications: Solver output for the same snapshot; its proven
                cells are excluded from the map.
            disclosed: Cells disclosed as mines by an ability; excluded too.
            use_learning: Apply learned-pattern adjustments from the feedback hook.

        Returns:
            Mapping from each undetermined hidden cell to a probability in [0, 1].
            Empty when the snapshot is malformed.
        """
        if classifications.degraded or snapshot.validate():
            return {}

        known_mines = set(classifications.mine_cells)
        known_safe = set(classifications.safe_cells)
        disclosed_hidden = {p for p in disclosed if snapshot.cell(p).hidden}

        undetermined = [
            p
            for p in snapshot.hidden_cells()
            if p not in known_mines and p not in known_safe and p not in disclosed_hidden
        ]
        if not undetermined:
            return {}

        constraints = classifications.constraints
        if not constraints:
            constraints, _ = build_constraints(snapshot, disclosed_hidden)

        contributions: DefaultDict[Position, List[Tuple[float, float]]] = defaultdict(list)
        for c in constraints:
            reduced = self._reduce(c, known_mines, known_safe)
            if reduced is None:
                continue
            prob = reduced.mine_count / len(reduced.cells)
            weight = 1.0 / len(reduced.cells)
            for cell in reduced.cells:
                contributions[cell].append((prob, weight))

        remaining_mines = (
            snapshot.total_mines
            - snapshot.known_mine_count()
            - len(disclosed_hidden)
            - len(known_mines)
        )
        prior = min(1.0, max(0.0, remaining_mines / len(undetermined)))

        risk: Dict[Position, float] = {}
        for pos in undetermined:
            if pos in contributions:
                prob = self.blend(contributions[pos])
            else:
                prob = prior
            prob = self._position_adjustment(snapshot, pos, prob)
            if use_learning:
                prob = self._pattern_adjustment(snapshot, pos, prob)
            risk[pos] = min(1.0, max(0.0, prob))

        logger.debug(
            "Risk map: %d cells, prior %.3f, %d constrained",
            len(risk),
            prior,
            len(contributions),
        )
        return risk

    @staticmethod
    def _reduce(
        c: Constraint, mines: AbstractSet[Position], safe: AbstractSet[Position]
    ) -> Optional[Constraint]:
        cells = c.cells - mines - safe
        count = c.mine_count - len(c.cells & mines)
        if not cells or count < 0 or count > len(cells):
            return None
        return Constraint(frozenset(cells), count, c.source)

    def _position_adjustment(
        self, snapshot: BoardSnapshot, pos: Position, prob: float
    ) -> float:
        """Bounded multiplicative nudges; never more than 5% either way."""
        neighbors = [snapshot.cell(n) for n in snapshot.neighbors(pos)]
        if any(c.revealed for c in neighbors):
            numbers = [c.neighbor_mine_count for c in neighbors if c.numbered]
            if numbers and min(numbers) <= 2:
                prob *= self.weights.frontier_nudge
        elif prob > self.weights.opening_threshold:
            prob *= self.weights.opening_nudge
        return prob

    def _pattern_adjustment(
        self, snapshot: BoardSnapshot, pos: Position, prob: float
    ) -> float:
        severity = self.feedback.bias_for(NeighborState.of(snapshot, pos))
        if severity <= 0:
            return prob
        bumped = min(self.weights.pattern_cap, prob + severity * self.weights.pattern_severity_scale)
        return max(prob, bumped)

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    @staticmethod
    def strategic_value(snapshot: BoardSnapshot, pos: Position) -> float:
        """Favour cells that grow the revealed area or may cascade, near the centre."""
        revealed = hidden = 0
        for n in snapshot.neighbors(pos):
            c = snapshot.cell(n)
            if c.revealed:
                revealed += 1
            elif not c.flagged:
                hidden += 1
        return revealed * 10 + hidden * 5 - center_distance(pos, snapshot.width, snapshot.height)

    def _sort_key(self, candidate: RiskCandidate) -> Tuple[int, float, float, Position]:
        # Risks within the same tie window compare on strategic value.
        bucket = int(math.floor(candidate.risk / self.weights.tie_window + 1e-9))
        return bucket, -candidate.value, candidate.risk, candidate.position

    def rank(
        self,
        snapshot: BoardSnapshot,
        risk_map: Dict[Position, float],
        tolerance: float,
        limit: int = 5,
    ) -> List[RiskCandidate]:
        """
        Order reveal candidates by risk, keeping those within ``tolerance``.

        If nothing is within tolerance the single lowest-risk cell is returned
        anyway, so the bot is never stuck while hidden cells remain.
        """
        if not risk_map:
            return []

        candidates = [
            RiskCandidate(pos, r, self.strategic_value(snapshot, pos))
            for pos, r in risk_map.items()
        ]
        within = [c for c in candidates if c.risk <= tolerance]
        if not within:
            best = min(candidates, key=lambda c: (c.risk, -c.value, c.position))
            logger.debug(
                "No cell within tolerance %.2f; taking %s at %.3f",
                tolerance,
                best.position,
                best.risk,
            )
            return [best]

        within.sort(key=lambda c: (c.risk, -c.value, c.position))
        kept = within[:limit]
        kept.sort(key=self._sort_key)
        return kept
