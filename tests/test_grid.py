import math

import numpy as np
import pytest

from traversability_estimation import config as C
from traversability_estimation.grid import GridMap


def test_cell_centres_and_index_lookup():
    grid = GridMap((20, 20), 0.1)

    assert grid.length == pytest.approx((2.0, 2.0))
    assert grid.origin == pytest.approx((-1.0, -1.0))
    assert grid.position_of((0, 0)) == pytest.approx((-0.95, -0.95))
    assert grid.position_of((10, 10)) == pytest.approx((0.05, 0.05))
    assert grid.index_of((-0.95, -0.95)) == (0, 0)
    assert grid.index_of((0.05, 0.05)) == (10, 10)
    # i grows along +x, j along +y
    assert grid.index_of((0.55, -0.45)) == (15, 5)


def test_index_of_outside_is_none():
    grid = GridMap((20, 20), 0.1, position=(1.0, 2.0))

    assert grid.index_of((1.05 + 1.0, 2.0)) is None
    assert grid.index_of((1.0, 2.0 - 1.05)) is None
    assert not grid.is_inside((-5.0, 0.0))
    assert grid.is_inside((1.0, 2.0))


def test_edges_are_half_open():
    grid = GridMap((20, 20), 0.1)

    assert grid.index_of((-1.0, 0.0)) == (0, 10)
    assert grid.index_of((1.0, 0.0)) is None
    assert grid.index_of((0.0, 1.0)) is None


def test_clip_segment_to_map():
    grid = GridMap((20, 20), 0.1)

    start, end = grid.clip_segment((0.0, 0.05), (3.0, 0.05))
    assert start == pytest.approx((0.0, 0.05))
    assert end == pytest.approx((1.0, 0.05))
    assert grid.index_of(end) == (19, 10)

    start, end = grid.clip_segment((-3.0, -3.0), (3.0, 3.0))
    assert grid.index_of(start) == (0, 0)
    assert grid.index_of(end) == (19, 19)

    assert grid.clip_segment((0.0, 0.0), (0.5, 0.5)) == ((0.0, 0.0), (0.5, 0.5))
    assert grid.clip_segment((2.0, 0.0), (3.0, 0.0)) is None
    assert grid.clip_segment((2.0, -3.0), (2.0, 3.0)) is None


def test_invalid_resolution_rejected():
    with pytest.raises(ValueError):
        GridMap((4, 4), 0.0)


def test_layers_default_to_nan_and_shape_is_checked():
    grid = GridMap((4, 3), 0.5, layers=[C.TRAVERSABILITY])

    assert grid.get(C.TRAVERSABILITY).shape == (4, 3)
    assert grid.get(C.TRAVERSABILITY).dtype == np.float32
    assert not grid.is_valid((0, 0), C.TRAVERSABILITY)

    grid.set_at(C.TRAVERSABILITY, (1, 2), 0.25)
    assert grid.is_valid((1, 2), C.TRAVERSABILITY)
    assert grid.at(C.TRAVERSABILITY, (1, 2)) == 0.25

    grid.clear(C.TRAVERSABILITY)
    assert not grid.is_valid((1, 2), C.TRAVERSABILITY)

    with pytest.raises(ValueError):
        grid.add(C.SLOPE, np.zeros((3, 4)))


def test_at_position_outside_is_nan():
    grid = GridMap((4, 4), 1.0, layers=[C.ELEVATION])
    grid.get(C.ELEVATION)[:] = 3.0

    assert grid.at_position(C.ELEVATION, (0.5, 0.5)) == 3.0
    assert math.isnan(grid.at_position(C.ELEVATION, (10.0, 0.0)))


def test_copy_is_independent():
    grid = GridMap((4, 4), 1.0, layers=[C.ELEVATION])
    other = grid.copy()
    other.set_at(C.ELEVATION, (0, 0), 1.0)

    assert not grid.is_valid((0, 0), C.ELEVATION)
    assert other.at(C.ELEVATION, (0, 0)) == 1.0


def test_submap_inside_keeps_cell_positions_and_values():
    grid = GridMap((20, 20), 0.1)
    grid.add(C.ELEVATION, np.arange(400, dtype=np.float32).reshape(20, 20))

    sub, ok = grid.get_submap((0.05, 0.05), (0.4, 0.4))

    assert ok
    assert sub.size == (5, 5)
    assert sub.position_of((0, 0)) == pytest.approx(grid.position_of((8, 8)))
    assert sub.at(C.ELEVATION, (0, 0)) == grid.at(C.ELEVATION, (8, 8))
    assert sub.at(C.ELEVATION, (4, 4)) == grid.at(C.ELEVATION, (12, 12))


def test_submap_fails_when_window_does_not_fit():
    grid = GridMap((20, 20), 0.1, layers=[C.ELEVATION])

    sub, ok = grid.get_submap((0.95, 0.95), (0.5, 0.5))

    assert not ok
    assert sub.size == (0, 0)


def test_dict_round_trip_keeps_invalid_cells():
    grid = GridMap((3, 2), 0.2, position=(1.0, -1.0), frame_id="odom", timestamp=42)
    grid.add(C.ELEVATION, 0.5)
    grid.set_at(C.ELEVATION, (2, 1), np.nan)

    data = grid.to_dict()
    assert data["layers"][C.ELEVATION][2][1] is None

    restored = GridMap.from_dict(data)
    assert restored.size == (3, 2)
    assert restored.frame_id == "odom"
    assert restored.timestamp == 42
    assert restored.position == pytest.approx((1.0, -1.0))
    assert restored.at(C.ELEVATION, (0, 0)) == 0.5
    assert not restored.is_valid((2, 1), C.ELEVATION)
