# queries.py
# ----------
# Disc, polygon and path traversability queries over a grid snapshot.
#
# Exposes:
#   - FootprintQueries     (point/disc, polygon, inclination and path checks)
#   - weighted_update      (running weighted mean used to fuse path segments)
#
# Every query takes the grid it works on as an argument; the caller owns
# locking and decides whether cache writes made during the query are kept.

from __future__ import annotations
from typing import List, Sequence, Tuple
import logging
import math
import numpy as np

from traversability_estimation import config as C
from traversability_estimation.admissibility import AdmissibilityEvaluator
from traversability_estimation.geometry import (
    circle_to_polygon,
    convex_hull,
    convex_hull_of_points,
    polygon_area,
    transform_footprint,
    translate,
    yaw_quaternion,
)
from traversability_estimation.grid import GridMap
from traversability_estimation.iterators import grid_cells, line_cells, polygon_cells, spiral_cells
from traversability_estimation.models import (
    FootprintPath,
    Polygon,
    Pose,
    Position,
    TraversabilityResult,
)

logger = logging.getLogger(__name__)

QueryResult = Tuple[bool, float, Polygon]


def weighted_update(prior: float, prior_weight: float, value: float, weight: float) -> float:
    total = prior_weight + weight
    if total <= 0.0:
        return value
    return (weight * value + prior_weight * prior) / total


def _unsafe(result: TraversabilityResult) -> TraversabilityResult:
    result.is_safe = False
    result.traversability = 0.0
    result.area = 0.0
    return result


class FootprintQueries:
    def __init__(
        self,
        evaluator: AdmissibilityEvaluator,
        default_traversability: float = 0.5,
        frame_id: str = "map",
        check_robot_inclination: bool = False,
    ):
        self.evaluator = evaluator
        self.default_traversability = float(default_traversability)
        self.frame_id = frame_id
        self.check_robot_inclination = bool(check_robot_inclination)

    def _cell_value(self, values: np.ndarray, index) -> float:
        v = values[index]
        return float(v) if np.isfinite(v) else self.default_traversability

    def _remember(self, grid: GridMap, index, value: float) -> float:
        """Store a disc result in the footprint cache and return it as stored."""
        grid.set_at(C.TRAVERSABILITY_FOOTPRINT, index, value)
        return grid.at(C.TRAVERSABILITY_FOOTPRINT, index)

    def _untraversable(self, positions: List[Position], compute: bool) -> Polygon:
        if not compute:
            return Polygon()
        return convex_hull_of_points(positions).stamp(self.frame_id)

    # region Disc
    def is_traversable_circle(
        self,
        grid: GridMap,
        center: Position,
        radius_max: float,
        radius_min: float = 0.0,
        compute_untraversable_polygon: bool = False,
    ) -> QueryResult:
        """
        Traversability of the disc of `radius_max` around `center`.

        Inadmissible cells within `radius_min` (or anywhere, when `radius_min`
        is 0) make the disc untraversable. The first inadmissible cell beyond
        `radius_min` keeps the disc traversable but discounts the mean by
        ((r - radius_min) / (radius_max - radius_min) + 1) / 2 and ends the
        search. The result is cached in `traversability_footprint`.
        """
        compute = compute_untraversable_polygon
        default = self.default_traversability

        index = grid.index_of(center)
        if index is None:
            ok = default != 0.0
            polygon = circle_to_polygon(center, radius_max) if (compute and not ok) else Polygon()
            return ok, default, polygon.stamp(self.frame_id) if compute else polygon

        if grid.is_valid(index, C.TRAVERSABILITY_FOOTPRINT):
            value = grid.at(C.TRAVERSABILITY_FOOTPRINT, index)
            ok = value != 0.0
            polygon = circle_to_polygon(center, radius_max) if (compute and not ok) else Polygon()
            return ok, value, polygon.stamp(self.frame_id) if compute else polygon

        values = grid.get(C.TRAVERSABILITY)
        total, n_cells = 0.0, 0
        traversable = True
        positions: List[Position] = []

        for cell, radius in spiral_cells(grid, center, radius_max):
            if self.evaluator.is_admissible(grid, cell):
                n_cells += 1
                total += self._cell_value(values, cell)
                continue

            if radius_min == 0.0 or radius <= radius_min:
                traversable = False
                grid.set_at(C.TRAVERSABILITY_FOOTPRINT, index, 0.0)
                positions.append(grid.position_of(cell))
                if not compute:
                    return False, 0.0, Polygon()
            elif traversable:
                factor = ((radius - radius_min) / (radius_max - radius_min) + 1.0) / 2.0
                mean = total / n_cells if n_cells else default
                value = self._remember(grid, index, mean * factor)
                logger.debug("Obstruction at r=%.3f around %s, discount factor %.3f.", radius, center, factor)
                return True, value, self._untraversable([], compute)

        if not traversable:
            return False, 0.0, self._untraversable(positions, compute)
        if n_cells == 0:
            return default != 0.0, default, self._untraversable([], compute)

        return True, self._remember(grid, index, total / n_cells), self._untraversable([], compute)
    # endregion

    # region Polygon
    def is_traversable_polygon(
        self,
        grid: GridMap,
        polygon: Polygon,
        compute_untraversable_polygon: bool = False,
    ) -> QueryResult:
        compute = compute_untraversable_polygon
        values = grid.get(C.TRAVERSABILITY)
        total, n_cells = 0.0, 0
        traversable = True
        positions: List[Position] = []

        for cell in polygon_cells(grid, polygon):
            if not self.evaluator.is_admissible(grid, cell):
                traversable = False
                if not compute:
                    return False, 0.0, Polygon()
                positions.append(grid.position_of(cell))
            else:
                n_cells += 1
                total += self._cell_value(values, cell)

        if not traversable:
            return False, 0.0, self._untraversable(positions, compute)
        if n_cells == 0:
            logger.debug("No cells within polygon.")
            default = self.default_traversability
            return default != 0.0, default, self._untraversable([], compute)
        return True, total / n_cells, self._untraversable([], compute)
    # endregion

    # region Inclination
    def check_inclination(self, grid: GridMap, start: Position, end: Position) -> bool:
        """False as soon as a robot_slope sample on the segment is invalid or zero."""
        if not grid.exists(C.ROBOT_SLOPE):
            logger.warning("Inclination check requested but the map has no '%s' layer.", C.ROBOT_SLOPE)
            return False

        if start == end:
            value = grid.at_position(C.ROBOT_SLOPE, start)
            return bool(np.isfinite(value)) and value != 0.0

        i_start, i_end = grid.index_of(start), grid.index_of(end)
        if i_start is None or i_end is None:
            return False
        slope = grid.get(C.ROBOT_SLOPE)
        for cell in line_cells(grid, i_start, i_end):
            v = slope[cell]
            if not np.isfinite(v) or v == 0.0:
                return False
        return True
    # endregion

    # region Paths
    def check_footprint_path(self, grid: GridMap, path: FootprintPath, publish_polygons: bool = False) -> TraversabilityResult:
        if not path.footprint:
            return self.check_circular_footprint_path(grid, path, publish_polygons)
        return self.check_polygonal_footprint_path(grid, path, publish_polygons)

    def _sweep_circle(
        self,
        grid: GridMap,
        start: Position,
        end: Position,
        radius_max: float,
        radius_min: float,
        compute: bool,
        keep_going: bool,
    ) -> QueryResult:
        clipped = grid.clip_segment(start, end)
        if clipped is None:
            # Segment wholly outside the map.
            return self.is_traversable_circle(grid, end, radius_max, radius_min, compute)
        i_start, i_end = grid.index_of(clipped[0]), grid.index_of(clipped[1])
        if i_start is None or i_end is None:
            return self.is_traversable_circle(grid, end, radius_max, radius_min, compute)

        traversable = True
        total, n_samples = 0.0, 0
        merged = Polygon()
        for k, cell in enumerate(line_cells(grid, i_end, i_start)):
            if k % (C.LINE_SAMPLE_SKIP + 1):
                continue
            ok, value, aux = self.is_traversable_circle(grid, grid.position_of(cell), radius_max, radius_min, compute)
            traversable = traversable and ok
            if compute and aux.n_vertices() > 0:
                merged = convex_hull(merged, aux)
            if not traversable and not keep_going:
                return False, 0.0, merged
            total += value
            n_samples += 1

        if not traversable:
            return False, 0.0, merged.stamp(self.frame_id) if compute else merged
        return True, total / n_samples, merged

    def check_circular_footprint_path(self, grid: GridMap, path: FootprintPath, publish_polygons: bool = False) -> TraversabilityResult:
        result = TraversabilityResult()
        radius = path.radius
        radius_max = radius + C.CIRCLE_RADIUS_OFFSET
        compute = path.compute_untraversable_polygon
        positions = [p.position for p in path.poses]

        if len(positions) == 1:
            end = positions[0]
            if self.check_robot_inclination and not self.check_inclination(grid, end, end):
                return result
            ok, value, untraversable = self.is_traversable_circle(grid, end, radius_max, radius, compute)
            if publish_polygons:
                result.footprint_polygons.append(circle_to_polygon(end, radius_max).stamp(self.frame_id))
            result.untraversable_polygon = untraversable
            if not ok:
                return _unsafe(result)
            result.traversability = value
            result.is_safe = True
            return result

        length_path = 0.0
        for k in range(1, len(positions)):
            start, end = positions[k - 1], positions[k]
            if self.check_robot_inclination and not self.check_inclination(grid, start, end):
                return _unsafe(result)

            ok, value, swept = self._sweep_circle(
                grid, start, end, radius_max, radius, compute, keep_going=compute or publish_polygons
            )
            if publish_polygons:
                result.footprint_polygons.append(circle_to_polygon(end, radius_max).stamp(self.frame_id))
            if compute and swept.n_vertices() > 0:
                result.untraversable_polygon = convex_hull(result.untraversable_polygon, swept).stamp(self.frame_id)
            if not ok:
                return _unsafe(result)

            segment = math.hypot(end[0] - start[0], end[1] - start[1])
            if k > 1:
                result.traversability = weighted_update(result.traversability, length_path, value, segment)
            else:
                result.traversability = value
            length_path += segment

        result.is_safe = True
        return result

    def check_polygonal_footprint_path(self, grid: GridMap, path: FootprintPath, publish_polygons: bool = False) -> TraversabilityResult:
        result = TraversabilityResult()
        compute = path.compute_untraversable_polygon
        footprints = [transform_footprint(path.footprint, pose).stamp(self.frame_id) for pose in path.poses]
        positions = [p.position for p in path.poses]

        if len(footprints) == 1:
            polygon = footprints[0]
            end = positions[0]
            if self.check_robot_inclination and not self.check_inclination(grid, end, end):
                return result
            ok, value, untraversable = self.is_traversable_polygon(grid, polygon, compute)
            if publish_polygons:
                result.footprint_polygons.append(polygon)
            result.untraversable_polygon = untraversable
            if not ok:
                return _unsafe(result)
            result.is_safe = True
            result.traversability = value
            result.area = polygon_area(polygon)
            return result

        # In conservative mode the footprint carried to the next step keeps its extension.
        previous = footprints[0]
        for k in range(1, len(footprints)):
            start, end = positions[k - 1], positions[k]
            current = footprints[k]
            a, b = previous, current
            if path.conservative:
                d = (end[0] - start[0], end[1] - start[1])
                a = Polygon(previous.vertices + translate(current, (-d[0], -d[1])))
                b = Polygon(current.vertices + translate(previous, d))
            previous = b
            swept = convex_hull(a, b).stamp(self.frame_id)

            if self.check_robot_inclination and not self.check_inclination(grid, start, end):
                return _unsafe(result)

            ok, value, untraversable = self.is_traversable_polygon(grid, swept, compute)
            if publish_polygons:
                result.footprint_polygons.append(swept)
            if compute and untraversable.n_vertices() > 0:
                result.untraversable_polygon = convex_hull(result.untraversable_polygon, untraversable).stamp(self.frame_id)
            if not ok:
                return _unsafe(result)

            if k > 1:
                segment_area = polygon_area(swept) - polygon_area(convex_hull_of_points(a.vertices))
                result.traversability = weighted_update(result.traversability, result.area, value, segment_area)
                result.area += segment_area
            else:
                result.area = polygon_area(swept)
                result.traversability = value

        result.is_safe = True
        return result
    # endregion

    # region Whole-map footprints
    def footprint_layers(self, grid: GridMap, footprint: Sequence[Position], yaw: float) -> None:
        """Fill traversability_x (footprint along +x) and traversability_rot (rotated by yaw)."""
        for layer in (C.TRAVERSABILITY_X, C.TRAVERSABILITY_ROT):
            if not grid.exists(layer):
                grid.add(layer)
        qx, qy, qz, qw = yaw_quaternion(yaw)
        for cell in grid_cells(grid):
            x, y = grid.position_of(cell)
            for layer, pose in (
                (C.TRAVERSABILITY_X, Pose(x, y)),
                (C.TRAVERSABILITY_ROT, Pose(x, y, 0.0, qx, qy, qz, qw)),
            ):
                ok, value, _ = self.is_traversable_polygon(grid, transform_footprint(footprint, pose))
                grid.set_at(layer, cell, value if ok else 0.0)

    def circular_footprint_layer(self, grid: GridMap, radius: float, offset: float) -> None:
        for cell in grid_cells(grid):
            self.is_traversable_circle(grid, grid.position_of(cell), radius + offset, radius)
    # endregion
