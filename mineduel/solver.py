"""Deterministic layer: proves cells safe or mined from visible numbers and flags."""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import AbstractSet, DefaultDict, Dict, FrozenSet, List, Optional, Set, Tuple

from .board import BoardSnapshot, Constraint
from .utils import Position

logger = logging.getLogger(__name__)

# Cap on constraints derived by the subset rule within one solve call.
MAX_DERIVED_CONSTRAINTS = 2000


@dataclass
class SolverResult:
    """
    Classification sets for one board snapshot.

    Attributes:
        safe_cells: Hidden cells proven free of mines.
        mine_cells: Hidden cells proven to hold mines.
        suspicious_flags: Flags around a number that is over-satisfied.
        constraints: Constraints built from the snapshot (before reduction).
        contradictions: Cells that were deduced both ways; reconciled as mines.
        stats: Deductions per rule for this call.
        degraded: True when the snapshot was unusable and nothing was derived.
    """

    safe_cells: Set[Position] = field(default_factory=set)
    mine_cells: Set[Position] = field(default_factory=set)
    suspicious_flags: Set[Position] = field(default_factory=set)
    constraints: List[Constraint] = field(default_factory=list)
    contradictions: Set[Position] = field(default_factory=set)
    stats: Dict[str, int] = field(default_factory=dict)
    degraded: bool = False

    @property
    def has_moves(self) -> bool:
        return bool(self.safe_cells or self.mine_cells)


def build_constraints(
    snapshot: BoardSnapshot, known_mines: AbstractSet[Position] = frozenset()
) -> Tuple[List[Constraint], Set[Position]]:
    """
    Build one constraint per revealed number that still touches hidden cells.

    Flags, exploded mines and ``known_mines`` count towards the number and are
    not part of the constraint's cell set.

    Returns:
        Tuple of (constraints, suspicious_flags). A number whose flag-adjusted
        count drops below zero contributes its flagged neighbours to
        suspicious_flags and yields no constraint.
    """
    constraints: List[Constraint] = []
    suspicious: Set[Position] = set()

    for cell in snapshot:
        if not cell.revealed or cell.mine:
            continue

        hidden: Set[Position] = set()
        flagged: List[Position] = []
        accounted = 0
        for n in snapshot.neighbors(cell.position):
            nc = snapshot.cell(n)
            if nc.flagged:
                flagged.append(n)
                accounted += 1
            elif nc.exploded:
                accounted += 1
            elif not nc.revealed:
                if n in known_mines:
                    accounted += 1
                else:
                    hidden.add(n)

        remaining = cell.neighbor_mine_count - accounted
        if remaining < 0:
            logger.warning(
                "Over-flagged number at %s: count %d, %d accounted.",
                cell.position,
                cell.neighbor_mine_count,
                accounted,
            )
            suspicious.update(flagged)
            continue

        if not hidden:
            continue

        if remaining > len(hidden):
            logger.warning(
                "Unsatisfiable number at %s: needs %d mines among %d cells.",
                cell.position,
                remaining,
                len(hidden),
            )
            continue

        constraints.append(Constraint(frozenset(hidden), remaining, cell.position))

    return constraints, suspicious


class _Deductions:
    """Mutable bookkeeping for a single solve call."""

    def __init__(self) -> None:
        self.safe: Set[Position] = set()
        self.mines: Set[Position] = set()
        self.stats: DefaultDict[str, int] = defaultdict(int)
        self.changed = False

    def mark_safe(self, cells: AbstractSet[Position], rule: str) -> None:
        for c in cells:
            if c not in self.safe:
                self.safe.add(c)
                self.stats[rule] += 1
                self.changed = True

    def mark_mines(self, cells: AbstractSet[Position], rule: str) -> None:
        for c in cells:
            if c not in self.mines:
                self.mines.add(c)
                self.stats[rule] += 1
                self.changed = True


class ConstraintSolver:
    """
    Rule-based deduction engine over the constraints of one snapshot.

    Each call rebuilds everything from the snapshot; nothing is carried over
    between calls. Rules, applied in order and repeated to a fixpoint bounded
    by ``max_passes``:

    1. Simple elimination (count 0 or count == cell count).
    2. Local patterns between neighbouring numbers (1-1, 1-2, 1-2-1, border).
    3. Subset rule, adding the implied constraint on the difference.
    4. Cross-reference bounds on the intersection of overlapping constraints.
    5. Global mine budget.
    """

    RULES = ("simple", "pattern", "subset", "cross_reference", "global")

    def __init__(self, max_passes: int = 10) -> None:
        if max_passes < 1:
            raise ValueError("max_passes must be at least 1.")
        self.max_passes = max_passes

    def solve(
        self,
        snapshot: BoardSnapshot,
        disclosed: AbstractSet[Position] = frozenset(),
    ) -> SolverResult:
        """
        Classify hidden cells of a snapshot.

        Args:
            snapshot: Current visible board.
            disclosed: Cells revealed as mines by an in-game ability. They are
                counted as known mines but are not reported in ``mine_cells``.

        Returns:
            A SolverResult whose safe and mine sets are disjoint.
        """
        problems = snapshot.validate()
        if problems:
            logger.warning("Malformed snapshot, skipping deduction: %s", "; ".join(problems))
            return SolverResult(degraded=True)

        known = frozenset(p for p in disclosed if snapshot.cell(p).hidden)
        base_constraints, suspicious = build_constraints(snapshot, known)
        state = _Deductions()

        working: List[Constraint] = list(base_constraints)
        seen_keys: Set[Tuple[FrozenSet[Position], int]] = {c.key for c in working}
        derived_budget = MAX_DERIVED_CONSTRAINTS
        contradictions: Set[Position] = set()

        passes = 0
        while passes < self.max_passes:
            passes += 1
            state.changed = False

            working = self._reduce(working, state, contradictions)
            self._apply_simple(working, state)
            self._apply_patterns(snapshot, working, state)
            derived_budget = self._apply_subsets(working, seen_keys, state, derived_budget)
            working = self._reduce(working, state, contradictions)
            self._apply_cross_reference(working, state)
            if not suspicious:
                self._apply_global(snapshot, known, state)

            if not state.changed:
                break

        contradictions |= state.safe & state.mines
        if contradictions:
            logger.warning(
                "Contradictory deductions for %s; dropping their safe classification.",
                sorted(contradictions),
            )
            state.safe -= contradictions

        stats = {rule: state.stats.get(rule, 0) for rule in self.RULES}
        stats["passes"] = passes
        logger.debug(
            "Solver: %d safe, %d mines, %d constraints | %s",
            len(state.safe),
            len(state.mines),
            len(base_constraints),
            stats,
        )
        return SolverResult(
            safe_cells=set(state.safe),
            mine_cells=set(state.mines),
            suspicious_flags=suspicious,
            constraints=base_constraints,
            contradictions=contradictions,
            stats=stats,
        )

    # -------------------------------------------------------------------------
    # Constraint maintenance
    # -------------------------------------------------------------------------

    @staticmethod
    def _reduce(
        constraints: List[Constraint],
        state: _Deductions,
        contradictions: Set[Position],
    ) -> List[Constraint]:
        """Strip classified cells out of every constraint and drop empty ones."""
        reduced: List[Constraint] = []
        for c in constraints:
            mines_inside = c.cells & state.mines
            cells = c.cells - state.mines - state.safe
            count = c.mine_count - len(mines_inside)
            if count < 0 or count > len(cells):
                # The current deductions cannot satisfy this number.
                contradictions.update(c.cells & (state.mines | state.safe))
                continue
            if cells:
                reduced.append(Constraint(frozenset(cells), count, c.source))
        return reduced

    @staticmethod
    def _overlapping_pairs(
        constraints: List[Constraint],
    ) -> List[Tuple[int, int]]:
        """Index pairs (i < j) of constraints that share at least one cell."""
        by_cell: DefaultDict[Position, List[int]] = defaultdict(list)
        for i, c in enumerate(constraints):
            for cell in c.cells:
                by_cell[cell].append(i)

        pairs: Set[Tuple[int, int]] = set()
        for idxs in by_cell.values():
            for a in range(len(idxs)):
                for b in range(a + 1, len(idxs)):
                    pairs.add((idxs[a], idxs[b]))
        return sorted(pairs)

    # -------------------------------------------------------------------------
    # Rules
    # -------------------------------------------------------------------------

    @staticmethod
    def _classify_whole(c: Constraint, state: _Deductions, rule: str) -> None:
        if c.mine_count == 0:
            state.mark_safe(c.cells, rule)
        elif c.mine_count == len(c.cells):
            state.mark_mines(c.cells, rule)

    def _apply_simple(self, constraints: List[Constraint], state: _Deductions) -> None:
        for c in constraints:
            self._classify_whole(c, state, "simple")

    def _apply_patterns(
        self,
        snapshot: BoardSnapshot,
        constraints: List[Constraint],
        state: _Deductions,
    ) -> None:
        """
        Closed-form local patterns between numbers in a line.

        Every pattern below is an instance of the subset or cross-reference
        rule restricted to orthogonally adjacent numbers, so it only fires on
        configurations those rules would also resolve.
        """
        by_source: Dict[Position, Constraint] = {
            c.source: c for c in constraints if c.source is not None
        }

        for (x, y), c in by_source.items():
            # Border numbers see fewer cells and settle with the simple rule.
            if x in (0, snapshot.width - 1) or y in (0, snapshot.height - 1):
                self._classify_whole(c, state, "pattern")

            for dx, dy in ((1, 0), (0, 1)):
                nxt = by_source.get((x + dx, y + dy))
                if nxt is None:
                    continue
                counts = (c.mine_count, nxt.mine_count)
                if counts == (1, 1) or sorted(counts) == [1, 2]:
                    # 1-1 and 1-2 on adjacent numbers.
                    self._pair_bounds(c, nxt, state, "pattern")

                third = by_source.get((x + 2 * dx, y + 2 * dy))
                if third is not None:
                    self._line_triple(c, nxt, third, state)

    @staticmethod
    def _line_triple(
        left: Constraint, mid: Constraint, right: Constraint, state: _Deductions
    ) -> None:
        """
        The 1-2-1 family: a middle number fully covered by two disjoint outer
        numbers whose counts add up to its own.

        mines(mid) <= mines(left & mid) + mines(right & mid) <= left + right, so
        equality pushes every outer mine inside the middle set and the outer
        cells outside it are safe.
        """
        if left.cells & right.cells:
            return
        if not mid.cells <= (left.cells | right.cells):
            return
        if mid.mine_count != left.mine_count + right.mine_count:
            return
        state.mark_safe(left.cells - mid.cells, "pattern")
        state.mark_safe(right.cells - mid.cells, "pattern")

    def _apply_subsets(
        self,
        constraints: List[Constraint],
        seen_keys: Set[Tuple[FrozenSet[Position], int]],
        state: _Deductions,
        budget: int,
    ) -> int:
        """
        If A is a subset of B, B - A holds exactly B.count - A.count mines.

        Newly implied constraints are appended to ``constraints`` (bounded by
        ``budget``) so later passes can combine them further.

        Returns:
            The remaining budget for derived constraints.
        """
        additions: List[Constraint] = []
        for i, j in self._overlapping_pairs(constraints):
            for a, b in ((constraints[i], constraints[j]), (constraints[j], constraints[i])):
                if not a.cells < b.cells:
                    continue
                diff = b.cells - a.cells
                mines_in_diff = b.mine_count - a.mine_count
                if mines_in_diff == 0:
                    state.mark_safe(diff, "subset")
                elif mines_in_diff == len(diff):
                    state.mark_mines(diff, "subset")
                elif 0 < mines_in_diff < len(diff) and budget > 0:
                    derived = Constraint(frozenset(diff), mines_in_diff)
                    if derived.key not in seen_keys:
                        seen_keys.add(derived.key)
                        additions.append(derived)
                        budget -= 1
                        state.changed = True

        constraints.extend(additions)
        return budget

    def _apply_cross_reference(
        self, constraints: List[Constraint], state: _Deductions
    ) -> None:
        for i, j in self._overlapping_pairs(constraints):
            self._pair_bounds(constraints[i], constraints[j], state, "cross_reference")

    @staticmethod
    def _pair_bounds(
        a: Constraint, b: Constraint, state: _Deductions, rule: str
    ) -> None:
        """
        Bound the mines in A & B and settle A - B or B - A when forced.

        The intersection holds between
        max(0, A - |A-B|, B - |B-A|) and min(A, B, |A&B|) mines.
        """
        inter = a.cells & b.cells
        if not inter:
            return
        only_a = a.cells - inter
        only_b = b.cells - inter

        low = max(0, a.mine_count - len(only_a), b.mine_count - len(only_b))
        high = min(a.mine_count, b.mine_count, len(inter))
        if low > high:
            return

        for only, count in ((only_a, a.mine_count), (only_b, b.mine_count)):
            if not only:
                continue
            most = count - low
            least = count - high
            if most == 0:
                state.mark_safe(only, rule)
            elif least == len(only):
                state.mark_mines(only, rule)

    @staticmethod
    def _apply_global(
        snapshot: BoardSnapshot,
        known: AbstractSet[Position],
        state: _Deductions,
    ) -> None:
        """Settle every undetermined cell when the mine budget leaves no choice."""
        hidden = snapshot.hidden_cells()
        accounted = snapshot.known_mine_count() + len(known) + len(state.mines)
        remaining = snapshot.total_mines - accounted
        undetermined = {
            p for p in hidden if p not in known and p not in state.mines and p not in state.safe
        }
        if not undetermined:
            return
        if remaining < 0:
            logger.debug("Global budget exceeded by %d; skipping global rule.", -remaining)
            return
        if remaining == 0:
            state.mark_safe(undetermined, "global")
        elif remaining == len(undetermined):
            state.mark_mines(undetermined, "global")


def classify(
    snapshot: BoardSnapshot,
    disclosed: AbstractSet[Position] = frozenset(),
    max_passes: int = 10,
) -> SolverResult:
    """Convenience wrapper around ``ConstraintSolver(max_passes).solve``."""
    return ConstraintSolver(max_passes).solve(snapshot, disclosed)


def undetermined_cells(
    snapshot: BoardSnapshot,
    result: SolverResult,
    disclosed: Optional[AbstractSet[Position]] = None,
) -> List[Position]:
    """Hidden, unflagged cells absent from both classification sets."""
    skip = set(result.safe_cells) | set(result.mine_cells) | set(disclosed or ())
    return [p for p in snapshot.hidden_cells() if p not in skip]
