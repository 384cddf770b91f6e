import math

import pytest

from traversability_estimation.grid import GridMap
from traversability_estimation.iterators import (
    circle_cells,
    grid_cells,
    line_cells,
    polygon_cells,
    spiral_cells,
)
from traversability_estimation.models import Polygon


@pytest.fixture
def grid():
    return GridMap((20, 20), 0.1)


def test_grid_cells_visits_every_cell_once(grid):
    cells = list(grid_cells(grid))
    assert len(cells) == 400
    assert len(set(cells)) == 400


def test_line_includes_both_ends(grid):
    cells = list(line_cells(grid, (0, 0), (5, 2)))

    assert cells[0] == (0, 0)
    assert cells[-1] == (5, 2)
    assert len(cells) == 6
    for (i0, j0), (i1, j1) in zip(cells, cells[1:]):
        assert max(abs(i1 - i0), abs(j1 - j0)) == 1


def test_line_single_cell(grid):
    assert list(line_cells(grid, (3, 4), (3, 4))) == [(3, 4)]


def test_line_is_clipped_to_the_grid(grid):
    cells = list(line_cells(grid, (-3, 0), (3, 0)))
    assert cells == [(0, 0), (1, 0), (2, 0), (3, 0)]


def test_circle_contains_cells_within_radius(grid):
    center = grid.position_of((10, 10))
    cells = set(circle_cells(grid, center, 0.12))

    assert cells == {(10, 10), (9, 10), (11, 10), (10, 9), (10, 11)}


def test_circle_is_clipped_at_map_border(grid):
    center = grid.position_of((0, 0))
    cells = list(circle_cells(grid, center, 0.12))

    assert set(cells) == {(0, 0), (1, 0), (0, 1)}


def test_spiral_orders_by_distance_and_matches_circle(grid):
    center = (0.03, 0.07)
    spiral = list(spiral_cells(grid, center, 0.35))
    radii = [r for _, r in spiral]

    assert radii == sorted(radii)
    assert {c for c, _ in spiral} == set(circle_cells(grid, center, 0.35))
    assert spiral[0][0] == grid.index_of(center)
    for cell, r in spiral:
        x, y = grid.position_of(cell)
        assert r == pytest.approx(math.hypot(x - center[0], y - center[1]))


def test_spiral_can_be_abandoned(grid):
    gen = spiral_cells(grid, (0.05, 0.05), 1.0)
    first = next(gen)
    gen.close()
    assert first[1] == pytest.approx(0.0)


def test_polygon_cells_inside_square(grid):
    square = Polygon([(-0.2, -0.2), (0.2, -0.2), (0.2, 0.2), (-0.2, 0.2)])
    cells = set(polygon_cells(grid, square))

    assert len(cells) == 16
    assert cells == {(i, j) for i in range(8, 12) for j in range(8, 12)}


def test_degenerate_polygon_has_no_cells(grid):
    assert list(polygon_cells(grid, Polygon([(0.0, 0.0), (0.5, 0.5)]))) == []


def test_polygon_outside_map_has_no_cells(grid):
    far = Polygon([(5.0, 5.0), (6.0, 5.0), (6.0, 6.0)])
    assert list(polygon_cells(grid, far)) == []
