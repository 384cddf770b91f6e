import numpy as np
import pytest

from traversability_estimation import config as C
from traversability_estimation.admissibility import AdmissibilityEvaluator, ensure_footprint_layers
from traversability_estimation.grid import GridMap
from traversability_estimation.queries import FootprintQueries


def make_grid(size=(20, 20), resolution=0.1, traversability=1.0, position=(0.0, 0.0)):
    """Flat, fully admissible traversability grid. `traversability` may be a scalar or an array."""
    grid = GridMap(size, resolution, position, "map")
    if isinstance(traversability, np.ndarray):
        grid.add(C.TRAVERSABILITY, traversability)
    else:
        grid.add(C.TRAVERSABILITY, float(traversability))
    for layer in (C.SLOPE, C.STEP, C.ROUGHNESS):
        grid.add(layer, 1.0)
    grid.add(C.ELEVATION, 0.0)
    ensure_footprint_layers(grid, check_roughness=False)
    return grid


def block_slope(grid, i_range, j_range):
    """Mark a rectangular block of cells as critical slope."""
    grid.get(C.SLOPE)[i_range[0]:i_range[1], j_range[0]:j_range[1]] = 0.0


@pytest.fixture
def evaluator():
    return AdmissibilityEvaluator(critical_step_height=0.12, max_gap_width=0.3)


@pytest.fixture
def queries(evaluator):
    return FootprintQueries(evaluator, default_traversability=0.5, frame_id="map")


@pytest.fixture
def flat_grid():
    return make_grid()


@pytest.fixture
def random_grid():
    rng = np.random.default_rng(7)
    return make_grid(traversability=rng.uniform(0.2, 1.0, (20, 20)).astype(np.float32))
