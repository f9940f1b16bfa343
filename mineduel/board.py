"""Read-only board view handed to the decision layers once per think cycle."""

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Sequence, Tuple

from .utils import Position, get_neighborhoods


@dataclass(frozen=True)
class Cell:
    """
    Visible state of one board cell.

    ``neighbor_mine_count`` is only meaningful when ``revealed`` is True.
    ``mine`` is ground truth owned by the host; the decision layers only look
    at it for cells that are already revealed (a mine that was stepped on).
    """

    x: int
    y: int
    revealed: bool = False
    flagged: bool = False
    neighbor_mine_count: int = 0
    mine: bool = False

    @property
    def position(self) -> Position:
        return (self.x, self.y)

    @property
    def hidden(self) -> bool:
        """True for cells that are neither revealed nor flagged."""
        return not self.revealed and not self.flagged

    @property
    def exploded(self) -> bool:
        return self.revealed and self.mine

    @property
    def numbered(self) -> bool:
        return self.revealed and not self.mine and self.neighbor_mine_count > 0


@dataclass(frozen=True)
class Constraint:
    """Exactly ``mine_count`` mines lie among ``cells``."""

    cells: FrozenSet[Position]
    mine_count: int
    source: Optional[Position] = None

    def __len__(self) -> int:
        return len(self.cells)

    @property
    def key(self) -> Tuple[FrozenSet[Position], int]:
        return self.cells, self.mine_count

    @property
    def density(self) -> float:
        return self.mine_count / len(self.cells) if self.cells else 0.0


@dataclass(frozen=True)
class BoardSnapshot:
    """
    Immutable per-cycle grid of cells.

    Build one with ``from_cells`` (host adapters) or ``from_ascii`` (tests and
    examples); never mutate one in place.
    """

    width: int
    height: int
    total_mines: int
    rows: Tuple[Tuple[Cell, ...], ...]
    _neighborhoods: Dict[Position, Tuple[Position, ...]] = field(
        default_factory=dict, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        if self.width > 0 and self.height > 0:
            object.__setattr__(
                self, "_neighborhoods", get_neighborhoods(self.width, self.height)
            )

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_cells(
        cls, width: int, height: int, total_mines: int, cells: Iterable[Cell]
    ) -> "BoardSnapshot":
        """Assemble a snapshot from an unordered iterable of cells."""
        by_pos = {c.position: c for c in cells}
        rows = tuple(
            tuple(by_pos.get((x, y), Cell(x, y)) for x in range(width))
            for y in range(height)
        )
        return cls(width, height, total_mines, rows)

    @classmethod
    def from_ascii(
        cls, lines: Sequence[str], total_mines: Optional[int] = None
    ) -> "BoardSnapshot":
        """
        Parse a compact text board.

        Symbols:
            ``.`` hidden cell, ``*`` hidden cell that holds a mine,
            ``F`` flag (``f`` flag over a mine), ``0``-``8`` revealed number,
            ``X`` revealed mine.

        Args:
            lines: One string per row, all of the same length.
            total_mines: Mine total; defaults to the number of ``*``/``f``/``X``
                symbols.

        Raises:
            ValueError: On ragged rows or unknown symbols.
        """
        rows = [line.strip() for line in lines if line.strip()]
        if not rows:
            raise ValueError("Board must contain at least one row.")
        width = len(rows[0])
        if any(len(r) != width for r in rows):
            raise ValueError("All board rows must have the same length.")

        cells: List[Cell] = []
        mines = 0
        for y, row in enumerate(rows):
            for x, ch in enumerate(row):
                if ch == ".":
                    cells.append(Cell(x, y))
                elif ch == "*":
                    cells.append(Cell(x, y, mine=True))
                    mines += 1
                elif ch == "F":
                    cells.append(Cell(x, y, flagged=True))
                elif ch == "f":
                    cells.append(Cell(x, y, flagged=True, mine=True))
                    mines += 1
                elif ch == "X":
                    cells.append(Cell(x, y, revealed=True, mine=True))
                    mines += 1
                elif ch.isdigit() and int(ch) <= 8:
                    cells.append(Cell(x, y, revealed=True, neighbor_mine_count=int(ch)))
                else:
                    raise ValueError(f"Unknown board symbol {ch!r} at ({x}, {y}).")

        return cls.from_cells(
            width, len(rows), mines if total_mines is None else total_mines, cells
        )

    def with_cell(self, cell: Cell) -> "BoardSnapshot":
        """Return a copy with one cell replaced."""
        rows = tuple(
            tuple(cell if (c.x, c.y) == (cell.x, cell.y) else c for c in row)
            for row in self.rows
        )
        return BoardSnapshot(self.width, self.height, self.total_mines, rows)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def cell(self, pos: Position) -> Cell:
        x, y = pos
        return self.rows[y][x]

    def __iter__(self) -> Iterator[Cell]:
        for row in self.rows:
            yield from row

    def in_bounds(self, pos: Position) -> bool:
        x, y = pos
        return 0 <= x < self.width and 0 <= y < self.height

    def neighbors(self, pos: Position) -> Tuple[Position, ...]:
        return self._neighborhoods[pos]

    def hidden_cells(self) -> List[Position]:
        """Hidden, unflagged positions in row-major order."""
        return [c.position for c in self if c.hidden]

    def flagged_cells(self) -> List[Position]:
        return [c.position for c in self if c.flagged]

    def numbered_cells(self) -> List[Cell]:
        return [c for c in self if c.numbered]

    def is_frontier(self, pos: Position) -> bool:
        """Hidden, unflagged and adjacent to at least one revealed cell."""
        if not self.cell(pos).hidden:
            return False
        return any(self.cell(n).revealed for n in self.neighbors(pos))

    @property
    def has_grid(self) -> bool:
        """True when ``rows`` is a full width x height grid."""
        return (
            self.width > 0
            and self.height > 0
            and len(self.rows) == self.height
            and all(len(row) == self.width for row in self.rows)
        )

    def known_mine_count(self) -> int:
        """Flags plus mines already exploded on the board."""
        return sum(1 for c in self if c.flagged or c.exploded)

    def validate(self) -> List[str]:
        """
        Check structural sanity.

        Returns:
            Human-readable problems; empty when the snapshot is well formed.
        """
        problems: List[str] = []
        if self.width <= 0 or self.height <= 0:
            return [f"invalid dimensions {self.width}x{self.height}"]
        if not self.has_grid:
            return ["grid shape does not match dimensions"]
        if self.total_mines < 0:
            problems.append(f"negative total_mines {self.total_mines}")
        for y, row in enumerate(self.rows):
            for x, c in enumerate(row):
                if (c.x, c.y) != (x, y):
                    problems.append(f"cell at ({x}, {y}) reports ({c.x}, {c.y})")
                if c.revealed and not 0 <= c.neighbor_mine_count <= 8:
                    problems.append(
                        f"cell ({x}, {y}) has count {c.neighbor_mine_count}"
                    )
        return problems
