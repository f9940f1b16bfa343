"""Grid geometry helpers shared by the decision layers."""

from typing import Dict, List, Tuple

Position = Tuple[int, int]
Neighborhoods = Dict[Position, Tuple[Position, ...]]

_OFFSETS: Tuple[Position, ...] = tuple(
    (dx, dy) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if (dx, dy) != (0, 0)
)

# (width, height) -> neighbourhood table; snapshots of one size share it.
_CACHE: Dict[Position, Neighborhoods] = {}


def get_neighborhoods(width: int, height: int) -> Neighborhoods:
    """
    Return the (cached) 8-connected neighbour table of a width x height grid.

    Raises:
        ValueError: If width or height is non-positive.
    """
    if width <= 0 or height <= 0:
        raise ValueError("Grid dimensions must be positive.")

    table = _CACHE.get((width, height))
    if table is None:
        table = {
            (x, y): tuple(
                (x + dx, y + dy)
                for dx, dy in _OFFSETS
                if 0 <= x + dx < width and 0 <= y + dy < height
            )
            for y in range(height)
            for x in range(width)
        }
        _CACHE[(width, height)] = table
    return table


def corner_cells(width: int, height: int) -> List[Position]:
    """Return the four corners in fallback order (duplicates removed for thin boards)."""
    corners = [(0, 0), (width - 1, 0), (0, height - 1), (width - 1, height - 1)]
    return list(dict.fromkeys(corners))


def edge_cells(width: int, height: int) -> List[Position]:
    """
    Return border cells in fallback order.

    Walks the index i along the longer side and yields the top, bottom, left
    and right border cells for that index, skipping out-of-range and repeated
    positions.
    """
    out: Dict[Position, None] = {}
    for i in range(max(width, height)):
        for pos in ((i, 0), (i, height - 1), (0, i), (width - 1, i)):
            x, y = pos
            if 0 <= x < width and 0 <= y < height:
                out.setdefault(pos, None)
    return list(out)


def center_distance(pos: Position, width: int, height: int) -> float:
    """Manhattan distance from a cell to the geometric board centre."""
    x, y = pos
    return abs(x - width / 2) + abs(y - height / 2)
