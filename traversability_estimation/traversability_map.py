# traversability_map.py
# ---------------------
# Facade tying the stored maps, the filter pipeline and the footprint
# queries together.
#
# Exposes:
#   - TraversabilityMap   (set maps, compute traversability, check paths)
#   - Publisher           (no-op sink for maps and polygons)
#   - RecordingPublisher  (keeps what was published; used by the HTTP app and tests)

from __future__ import annotations
from typing import List, Optional, Tuple
import logging
import time
import numpy as np

from traversability_estimation import config as C
from traversability_estimation.admissibility import (
    AdmissibilityEvaluator,
    ensure_footprint_layers,
    reset_footprint_layers,
)
from traversability_estimation.config import TraversabilityParams
from traversability_estimation.filters import (
    DEFAULT_FILTER_CONFIG,
    FilterChain,
    FilterChainError,
    FilterConfigurationError,
)
from traversability_estimation.grid import GridMap
from traversability_estimation.models import FootprintPath, Polygon, Position, TraversabilityResult
from traversability_estimation.queries import FootprintQueries
from traversability_estimation.store import MapStore
from traversability_estimation.terrain import CameraModel, assign_terrain_cost, downsample_map

logger = logging.getLogger(__name__)


# region Publishing
class Publisher:
    """Sink for outgoing maps and polygons. Subclass to forward them somewhere."""

    def publish_traversability_map(self, grid: GridMap, z_position: float) -> None:
        pass

    def publish_terrain_map(self, grid: GridMap, z_position: float) -> None:
        pass

    def publish_footprint_polygon(self, polygon: Polygon, z_position: float) -> None:
        pass

    def publish_untraversable_polygon(self, polygon: Polygon, z_position: float) -> None:
        pass


class RecordingPublisher(Publisher):
    def __init__(self) -> None:
        self.traversability_map: Optional[GridMap] = None
        self.terrain_map: Optional[GridMap] = None
        self.footprint_polygons: List[Tuple[Polygon, float]] = []
        self.untraversable_polygons: List[Tuple[Polygon, float]] = []

    def publish_traversability_map(self, grid, z_position):
        self.traversability_map = grid

    def publish_terrain_map(self, grid, z_position):
        self.terrain_map = grid

    def publish_footprint_polygon(self, polygon, z_position):
        self.footprint_polygons.append((polygon, z_position))

    def publish_untraversable_polygon(self, polygon, z_position):
        self.untraversable_polygons.append((polygon, z_position))


def _with_uncertainty_range(grid: GridMap) -> GridMap:
    if grid.exists("upper_bound") and grid.exists("lower_bound"):
        grid.add("uncertainty_range", grid.get("upper_bound") - grid.get("lower_bound"))
    return grid
# endregion


class TraversabilityMap:
    def __init__(self, params: Optional[TraversabilityParams] = None, publisher: Optional[Publisher] = None):
        self.params = params or TraversabilityParams()
        self.publisher = publisher or Publisher()
        self.map_frame_id = self.params.map_frame_id
        self.footprint_points: List[Position] = list(self.params.footprint_points)

        self.elevation_layers = list(C.RAW_ELEVATION_LAYERS if self.params.use_raw_map else C.BOUND_ELEVATION_LAYERS)
        self.traversability_layers = list(C.TRAVERSABILITY_LAYERS)
        self.store = MapStore((C.ELEVATION_MAP, C.TRAVERSABILITY_MAP, C.TERRAIN_MAP))

        self._default_read_at_init = self._bound(self.params.traversability_default)
        self.evaluator = AdmissibilityEvaluator(
            self.params.critical_step_height,
            self.params.max_gap_width,
            self.params.check_roughness,
        )
        self.queries = FootprintQueries(
            self.evaluator,
            self._default_read_at_init,
            self.map_frame_id,
            self.params.check_robot_inclination,
        )
        self.filter_chain = FilterChain()
        self._configure_filters()

        self.elevation_map_initialized = False
        self._traversability_map_initialized = False
        self.z_position = 0.0

        self.robot_position: Position = (0.0, 0.0)
        self.camera: Optional[CameraModel] = None
        self.camera_from_map: Optional[np.ndarray] = None
        self.classified_image: Optional[np.ndarray] = None

    # region Configuration
    def _configure_filters(self) -> bool:
        filters = self.params.filters or DEFAULT_FILTER_CONFIG
        try:
            self.filter_chain.configure(filters)
        except FilterConfigurationError as e:
            logger.error("Could not configure the filter chain! %s", e)
            return False
        return True

    def update_filter(self) -> bool:
        self.filter_chain.clear()
        return self._configure_filters()

    @staticmethod
    def _bound(value: float) -> float:
        if value > C.TRAVERSABILITY_MAX:
            logger.warning(
                "Passed traversability value (%f) is higher than max allowed value (%f). It is set equal to the max.",
                value, C.TRAVERSABILITY_MAX,
            )
            return C.TRAVERSABILITY_MAX
        if value < C.TRAVERSABILITY_MIN:
            logger.warning(
                "Passed traversability value (%f) is lower than min allowed value (%f). It is set equal to the min.",
                value, C.TRAVERSABILITY_MIN,
            )
            return C.TRAVERSABILITY_MIN
        return float(value)

    @property
    def default_traversability(self) -> float:
        return self.queries.default_traversability

    @default_traversability.setter
    def default_traversability(self, value: float) -> None:
        self.queries.default_traversability = self._bound(value)

    def restore_default_traversability(self) -> None:
        self.default_traversability = self._default_read_at_init
    # endregion

    # region Inputs
    def set_elevation_map(self, grid: GridMap, z_position: float = 0.0) -> bool:
        if grid.frame_id != self.map_frame_id:
            logger.error(
                "Received elevation map has frame_id = '%s', but an elevation map with frame_id = '%s' is expected.",
                grid.frame_id, self.map_frame_id,
            )
            return False
        for layer in self.elevation_layers:
            if not grid.exists(layer):
                logger.warning("Can't set elevation map because there is no layer %s.", layer)
                return False
        with self.store.lock(C.ELEVATION_MAP):
            self.z_position = float(z_position)
            self.store.replace(C.ELEVATION_MAP, grid.copy())
            self.elevation_map_initialized = True
        return True

    def set_traversability_map(self, grid: GridMap, z_position: float = 0.0) -> bool:
        if grid.frame_id != self.map_frame_id:
            logger.error(
                "Received traversability map has frame_id = '%s', but a traversability map with frame_id = '%s' is expected.",
                grid.frame_id, self.map_frame_id,
            )
            return False
        for layer in self.traversability_layers:
            if not grid.exists(layer):
                logger.warning("Can't set traversability map because there exists no layer %s.", layer)
                return False
        grid = grid.copy()
        ensure_footprint_layers(grid, self.params.check_roughness)
        with self.store.lock(C.TRAVERSABILITY_MAP):
            self.z_position = float(z_position)
            self.store.replace(C.TRAVERSABILITY_MAP, grid)
            self._traversability_map_initialized = True
        return True

    def set_robot_position(self, x: float, y: float) -> None:
        self.robot_position = (float(x), float(y))

    def set_camera(self, camera: CameraModel, camera_from_map: np.ndarray) -> None:
        self.camera = camera
        self.camera_from_map = np.asarray(camera_from_map, dtype=np.float64)

    def set_classified_image(self, image: np.ndarray) -> None:
        self.classified_image = np.asarray(image)
    # endregion

    # region Accessors
    @property
    def traversability_map_initialized(self) -> bool:
        return self._traversability_map_initialized

    def get_traversability_map(self) -> Optional[GridMap]:
        return self.store.get(C.TRAVERSABILITY_MAP)

    def get_elevation_map(self) -> Optional[GridMap]:
        return self.store.get(C.ELEVATION_MAP)

    def get_terrain_map(self) -> Optional[GridMap]:
        return self.store.get(C.TERRAIN_MAP)

    def map_has_valid_traversability_at(self, x: float, y: float) -> bool:
        def check(grid: Optional[GridMap]) -> bool:
            if grid is None or not grid.exists(C.TRAVERSABILITY):
                return False
            index = grid.index_of((x, y))
            if index is None:
                logger.error(
                    "It was not possible to get index of the position (%f, %f) in the current traversability map.", x, y
                )
                return False
            return grid.is_valid(index, C.TRAVERSABILITY)

        return self.store.read(C.TRAVERSABILITY_MAP, check)
    # endregion

    # region Publishing
    def publish_traversability_map(self) -> None:
        grid = self.store.get(C.TRAVERSABILITY_MAP)
        if grid is None:
            return
        self.publisher.publish_traversability_map(_with_uncertainty_range(grid), self.z_position)
        logger.debug("Publishing the traversability map.")

    def publish_terrain_map(self) -> None:
        grid = self.store.get(C.TERRAIN_MAP)
        if grid is None:
            return
        self.publisher.publish_terrain_map(_with_uncertainty_range(grid), self.z_position)
        logger.debug("Publishing the terrain map.")
    # endregion

    # region Computation
    def compute_traversability(self) -> bool:
        start = time.perf_counter()
        if not self.elevation_map_initialized:
            logger.error("Elevation map is not initialized!")
            self._traversability_map_initialized = False
            return False

        elevation = self.store.get(C.ELEVATION_MAP)
        previous = self.store.get(C.TRAVERSABILITY_MAP)
        try:
            traversability = self.filter_chain.update(elevation, previous)
        except FilterChainError as e:
            logger.error("Could not update the filter chain! No traversability computed! (%s)", e)
            self._traversability_map_initialized = False
            return False

        ensure_footprint_layers(traversability, self.params.check_roughness)
        self.store.replace(C.TRAVERSABILITY_MAP, traversability)
        self._traversability_map_initialized = True

        terrain = downsample_map(traversability, self.robot_position)
        if self.camera is not None and self.camera_from_map is not None and self.classified_image is not None:
            terrain = assign_terrain_cost(terrain, self.camera, self.camera_from_map, self.classified_image)
        else:
            logger.debug("No camera or classified image set; terrain map left uncolored.")
        self.store.replace(C.TERRAIN_MAP, terrain)

        self.publish_traversability_map()
        self.publish_terrain_map()
        logger.info("Traversability map has been updated in %f s.", time.perf_counter() - start)
        return True

    def reset_footprint_layers(self) -> None:
        with self.store.lock(C.TRAVERSABILITY_MAP):
            grid = self.store.get(C.TRAVERSABILITY_MAP)
            if grid is None:
                return
            reset_footprint_layers(grid)
            # a new generation drops caches of snapshots still in flight
            self.store.replace(C.TRAVERSABILITY_MAP, grid)

    def traversability_footprint(self, footprint_yaw: float) -> bool:
        """Fill traversability_x / traversability_rot with the footprint placed at every cell."""
        if not self._traversability_map_initialized:
            return False
        if len(self.footprint_points) < 3:
            logger.warning("No valid footprint polygon configured; footprint layers not computed.")
            return False

        start = time.perf_counter()
        logger.debug("footprint yaw: %f", footprint_yaw)
        with self.store.snapshot(C.TRAVERSABILITY_MAP) as grid:
            ensure_footprint_layers(grid, self.params.check_roughness)
            self.queries.footprint_layers(grid, self.footprint_points, footprint_yaw)
        self.publish_traversability_map()
        logger.info("Traversability of footprint has been computed in %f s.", time.perf_counter() - start)
        return True

    def circular_traversability_footprint(self, radius: float, offset: float) -> bool:
        """Fill the traversability_footprint cache with the disc query at every cell."""
        if not self._traversability_map_initialized:
            return False
        with self.store.snapshot(C.TRAVERSABILITY_MAP) as grid:
            ensure_footprint_layers(grid, self.params.check_roughness)
            self.queries.circular_footprint_layer(grid, radius, offset)
        self.publish_traversability_map()
        return True

    def check_footprint_path(
        self, path: FootprintPath, publish_polygons: bool = False
    ) -> Tuple[bool, TraversabilityResult]:
        """
        Returns (checked, result). `checked` is False only when the path has
        no poses; an uninitialised map yields (True, unsafe result).
        """
        if not self._traversability_map_initialized:
            logger.warning("Check footprint path: traversability map not yet initialized.")
            return True, TraversabilityResult()
        if not path.poses:
            logger.warning("This path has no poses to check!")
            return False, TraversabilityResult()

        start = time.perf_counter()
        with self.store.snapshot(C.TRAVERSABILITY_MAP) as grid:
            ensure_footprint_layers(grid, self.params.check_roughness)
            result = self.queries.check_footprint_path(grid, path, publish_polygons)

        z = float(np.mean([p.z for p in path.poses]))
        if publish_polygons:
            for polygon in result.footprint_polygons:
                self.publisher.publish_footprint_polygon(polygon, z)
        if path.compute_untraversable_polygon and result.untraversable_polygon.n_vertices() > 0:
            self.publisher.publish_untraversable_polygon(result.untraversable_polygon, z)

        logger.debug(
            "Footprint path with %d poses checked in %f s: safe=%s traversability=%.3f.",
            len(path.poses), time.perf_counter() - start, result.is_safe, result.traversability,
        )
        return True, result
    # endregion
