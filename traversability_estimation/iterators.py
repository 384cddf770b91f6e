# region Imports
from typing import Iterator, Tuple
import math
import numpy as np

from traversability_estimation.geometry import points_in_polygon
from traversability_estimation.grid import GridMap
from traversability_estimation.models import Index, Polygon, Position
# endregion

# Cell generators over a fixed grid. Each is finite and may be abandoned at
# any point; none of them mutate the grid.


# region Full Scan
def grid_cells(grid: GridMap) -> Iterator[Index]:
    nx, ny = grid.size
    for i in range(nx):
        for j in range(ny):
            yield (i, j)
# endregion


# region Line
def line_cells(grid: GridMap, start: Index, end: Index) -> Iterator[Index]:
    """Bresenham trace from `start` to `end`, both included, clipped to the grid."""
    i0, j0 = start
    i1, j1 = end
    di, dj = abs(i1 - i0), abs(j1 - j0)
    si = 1 if i1 >= i0 else -1
    sj = 1 if j1 >= j0 else -1
    err = di - dj
    nx, ny = grid.size
    while True:
        if 0 <= i0 < nx and 0 <= j0 < ny:
            yield (i0, j0)
        if i0 == i1 and j0 == j1:
            return
        e2 = 2 * err
        if e2 > -dj:
            err -= dj
            i0 += si
        if e2 < di:
            err += di
            j0 += sj
# endregion


# region Disc Helpers
def _window(grid: GridMap, center: Position, radius: float):
    """Index bounds [i0, i1) x [j0, j1) of the box enclosing the disc, clipped to the grid."""
    ox, oy = grid.origin
    res = grid.resolution
    i0 = max(0, int(math.floor((center[0] - radius - ox) / res)))
    i1 = min(grid.size[0], int(math.floor((center[0] + radius - ox) / res)) + 1)
    j0 = max(0, int(math.floor((center[1] - radius - oy) / res)))
    j1 = min(grid.size[1], int(math.floor((center[1] + radius - oy) / res)) + 1)
    return i0, i1, j0, j1


def _disc(grid: GridMap, center: Position, radius: float):
    i0, i1, j0, j1 = _window(grid, center, radius)
    if i0 >= i1 or j0 >= j1:
        return np.empty((0, 2), dtype=int), np.empty(0)
    xs, ys = grid.cell_centers((i0, i1), (j0, j1))
    dist = np.hypot(xs[:, None] - center[0], ys[None, :] - center[1])
    ii, jj = np.nonzero(dist <= radius)
    return np.stack([ii + i0, jj + j0], axis=1), dist[ii, jj]
# endregion


# region Circle
def circle_cells(grid: GridMap, center: Position, radius: float) -> Iterator[Index]:
    cells, _ = _disc(grid, center, radius)
    for i, j in cells:
        yield (int(i), int(j))
# endregion


# region Spiral
def spiral_cells(grid: GridMap, center: Position, radius: float) -> Iterator[Tuple[Index, float]]:
    """
    Cells of the disc ordered outward from `center`. Yields (index, r) where r
    is the distance from `center` to the cell centre; r never decreases, so a
    caller can stop as soon as the radius it cares about has been passed.
    """
    cells, dist = _disc(grid, center, radius)
    for k in np.argsort(dist, kind="stable"):
        i, j = cells[k]
        yield (int(i), int(j)), float(dist[k])
# endregion


# region Polygon
def polygon_cells(grid: GridMap, polygon: Polygon) -> Iterator[Index]:
    if polygon.n_vertices() < 3:
        return
    vx = [p[0] for p in polygon.vertices]
    vy = [p[1] for p in polygon.vertices]
    ox, oy = grid.origin
    res = grid.resolution
    i0 = max(0, int(math.floor((min(vx) - ox) / res)))
    i1 = min(grid.size[0], int(math.floor((max(vx) - ox) / res)) + 1)
    j0 = max(0, int(math.floor((min(vy) - oy) / res)))
    j1 = min(grid.size[1], int(math.floor((max(vy) - oy) / res)) + 1)
    if i0 >= i1 or j0 >= j1:
        return
    xs, ys = grid.cell_centers((i0, i1), (j0, j1))
    mask = points_in_polygon(xs[:, None], ys[None, :], polygon)
    for i, j in zip(*np.nonzero(mask)):
        yield (int(i) + i0, int(j) + j0)
# endregion
