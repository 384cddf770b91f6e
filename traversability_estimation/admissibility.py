# admissibility.py
# ----------------
# Per-cell admissibility: a cell is admissible when it passes the slope, step
# and (optionally) roughness checks. The checks only dig into the
# neighbourhood of cells the filter pipeline marked as critical (base value
# 0); their verdict is memoized in the *_footprint layers of the grid.

from __future__ import annotations
from typing import Callable, List, Tuple
import logging
import math
import numpy as np

from traversability_estimation import config as C
from traversability_estimation.grid import GridMap
from traversability_estimation.iterators import circle_cells, grid_cells, line_cells
from traversability_estimation.models import Index

logger = logging.getLogger(__name__)

Stage = Tuple[str, Callable[[GridMap, Index], bool]]


def ensure_footprint_layers(grid: GridMap, check_roughness: bool) -> None:
    for layer in C.FOOTPRINT_LAYERS:
        if layer == C.ROUGHNESS_FOOTPRINT and not check_roughness:
            continue
        if not grid.exists(layer):
            grid.add(layer)


def reset_footprint_layers(grid: GridMap) -> None:
    for layer in C.FOOTPRINT_LAYERS:
        if grid.exists(layer):
            grid.clear(layer)


class AdmissibilityEvaluator:
    """
    Parameters:
      critical_step_height: height difference (m) above which a step is critical
      max_gap_width:        widest gap (m) the robot can bridge
      check_roughness:      include the roughness stage
    """

    def __init__(self, critical_step_height: float, max_gap_width: float, check_roughness: bool = False):
        self.critical_step_height = float(critical_step_height)
        self.max_gap_width = float(max_gap_width)
        self.check_roughness = bool(check_roughness)

    @property
    def stages(self) -> List[Stage]:
        stages: List[Stage] = [("slope", self.check_slope), ("step", self.check_step)]
        if self.check_roughness:
            stages.append(("roughness", self.check_roughness_at))
        return stages

    def is_admissible(self, grid: GridMap, index: Index) -> bool:
        for _, check in self.stages:
            if not check(grid, index):
                return False
        return True

    # region Neighbourhood counting (slope / roughness)
    def _count_check(self, grid: GridMap, index: Index, base: str, cache: str, critical_factor: float) -> bool:
        if grid.at(base, index) != 0.0:
            return True
        if grid.is_valid(index, cache):
            return grid.at(cache, index) != 0.0

        res = grid.resolution
        window_radius = C.SLOPE_WINDOW_FACTOR * res
        critical_length = self.max_gap_width / 3.0
        n_critical = math.floor(critical_factor * window_radius * critical_length / (res * res))

        center = grid.position_of(index)
        values = grid.get(base)
        n_bad = 0
        for i, j in circle_cells(grid, center, window_radius):
            if values[i, j] == 0.0:
                n_bad += 1
            if n_bad > n_critical:
                grid.set_at(cache, index, 0.0)
                return False
        grid.set_at(cache, index, 1.0)
        return True

    def check_slope(self, grid: GridMap, index: Index) -> bool:
        return self._count_check(grid, index, C.SLOPE, C.SLOPE_FOOTPRINT, C.SLOPE_CRITICAL_FACTOR)

    def check_roughness_at(self, grid: GridMap, index: Index) -> bool:
        return self._count_check(grid, index, C.ROUGHNESS, C.ROUGHNESS_FOOTPRINT, C.ROUGHNESS_CRITICAL_FACTOR)
    # endregion

    # region Step
    def check_step(self, grid: GridMap, index: Index) -> bool:
        if grid.at(C.STEP, index) != 0.0:
            return True
        if grid.is_valid(index, C.STEP_FOOTPRINT):
            return grid.at(C.STEP_FOOTPRINT, index) != 0.0

        ok = self._step_is_descendable(grid, index)
        grid.set_at(C.STEP_FOOTPRINT, index, 1.0 if ok else 0.0)
        return ok

    def _step_is_descendable(self, grid: GridMap, index: Index) -> bool:
        res = grid.resolution
        crit = self.critical_step_height
        window = C.STEP_WINDOW_FACTOR * res
        elevation = grid.get(C.ELEVATION)
        step = grid.get(C.STEP)

        center = np.array(grid.position_of(index))
        height = elevation[index]

        # Critical neighbours the query cell lies at the foot of.
        tops = [
            (i, j) for i, j in circle_cells(grid, tuple(center), window)
            if elevation[i, j] > height + crit and step[i, j] == 0.0
        ]
        if not tops:
            tops = [index]

        for top in tops:
            top_pos = np.array(grid.position_of(top))
            to_center = center - top_pos
            sub, ok = grid.get_submap(tuple(top_pos), (window, window))
            if not ok:
                logger.warning("Step check window could not retrieve submap at %s.", top)
                return False

            top_height = elevation[top]
            sub_step = sub.get(C.STEP)
            sub_elev = sub.get(C.ELEVATION)
            for si, sj in grid_cells(sub):
                if not (sub_step[si, sj] == 0.0 and sub_elev[si, sj] < top_height - crit):
                    continue
                vec = np.array(sub.position_of((si, sj))) - top_pos
                if np.linalg.norm(vec) < C.STEP_VECTOR_EPSILON:
                    continue
                if np.linalg.norm(to_center) > C.STEP_VECTOR_EPSILON and np.dot(to_center, vec) < 0.0:
                    continue
                if not self._line_is_bridged(grid, top, top_pos, vec, top_height):
                    return False
        return True

    def _line_is_bridged(self, grid: GridMap, top: Index, top_pos: np.ndarray, vec: np.ndarray, top_height: float) -> bool:
        """Walk from the step top along `vec` and look for a wall or an unclosed gap."""
        crit = self.critical_step_height
        pos = top_pos + vec
        while np.linalg.norm(pos - top_pos + vec) < self.max_gap_width and grid.is_inside(tuple(pos + vec)):
            pos = pos + vec
        end = grid.index_of(tuple(pos))
        if end is None:
            return False

        elevation = grid.get(C.ELEVATION)
        gap_start = False
        for i, j in line_cells(grid, top, end):
            h = elevation[i, j]
            if h > top_height + crit:
                return False
            if not np.isfinite(h) or h < top_height - crit:
                gap_start = True
            elif gap_start:
                return True
        return not gap_start
    # endregion
