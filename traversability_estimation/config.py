# config.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
import logging

logger = logging.getLogger(__name__)

# region Layer Names
TRAVERSABILITY = "traversability"
SLOPE = "slope"
STEP = "step"
ROUGHNESS = "roughness"
ELEVATION = "elevation"
ROBOT_SLOPE = "robot_slope"

SLOPE_FOOTPRINT = "slope_footprint"
STEP_FOOTPRINT = "step_footprint"
ROUGHNESS_FOOTPRINT = "roughness_footprint"
TRAVERSABILITY_FOOTPRINT = "traversability_footprint"
TRAVERSABILITY_X = "traversability_x"
TRAVERSABILITY_ROT = "traversability_rot"

TRAVERSABILITY_LAYERS = (TRAVERSABILITY, SLOPE, STEP, ROUGHNESS)
FOOTPRINT_LAYERS = (STEP_FOOTPRINT, SLOPE_FOOTPRINT, ROUGHNESS_FOOTPRINT, TRAVERSABILITY_FOOTPRINT)

BOUND_ELEVATION_LAYERS = (ELEVATION, "upper_bound", "lower_bound")
RAW_ELEVATION_LAYERS = (
    ELEVATION,
    "variance",
    "horizontal_variance_x",
    "horizontal_variance_y",
    "horizontal_variance_xy",
    "time",
)
# endregion

# region Map Names (store)
ELEVATION_MAP = "elevation"
TRAVERSABILITY_MAP = "traversability"
TERRAIN_MAP = "terrain"
# endregion

# region Tunables
TRAVERSABILITY_MIN = 0.0
TRAVERSABILITY_MAX = 1.0

SLOPE_WINDOW_FACTOR = 3.0       # disc radius in cells for slope/roughness neighbourhoods
STEP_WINDOW_FACTOR = 2.5        # disc radius and submap edge in cells for the step check
SLOPE_CRITICAL_FACTOR = 2.0
ROUGHNESS_CRITICAL_FACTOR = 1.5
STEP_VECTOR_EPSILON = 0.025     # m, direction vectors shorter than this are ignored

CIRCLE_RADIUS_OFFSET = 0.15     # m, added to the footprint radius for the outer search disc
LINE_SAMPLE_SKIP = 3            # cells skipped between disc samples along a path segment
CIRCLE_POLYGON_VERTICES = 20

TERRAIN_SUBMAP_LENGTH = (2.5, 1.5)  # m
# endregion


# region Parameters
@dataclass
class TraversabilityParams:
    map_frame_id: str = "map"
    footprint_points: List[Tuple[float, float]] = field(default_factory=list)
    traversability_default: float = 0.5
    check_roughness: bool = False
    check_robot_inclination: bool = False
    max_gap_width: float = 0.3
    critical_step_height: float = 0.12
    use_raw_map: bool = False
    filters: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TraversabilityParams":
        """
        Build parameters from the nested layout used on disk:

            map_frame_id: map
            max_gap_width: 0.3
            footprint:
              footprint_polygon: [[x, y], ...]
              traversability_default: 0.5
              verify_roughness_footprint: false
              check_robot_inclination: false
            traversability_map_filters:
              - {name: stepFilter, type: step, params: {critical_value: 0.12}}

        A footprint with fewer than 3 points is dropped with a warning.
        """
        data = data or {}
        footprint = data.get("footprint") or {}
        params = cls(
            map_frame_id=str(data.get("map_frame_id", "map")),
            traversability_default=float(footprint.get("traversability_default", 0.5)),
            check_roughness=bool(footprint.get("verify_roughness_footprint", False)),
            check_robot_inclination=bool(footprint.get("check_robot_inclination", False)),
            max_gap_width=float(data.get("max_gap_width", 0.3)),
            use_raw_map=bool(data.get("use_raw_map", False)),
            filters=list(data.get("traversability_map_filters") or []),
        )

        points = footprint.get("footprint_polygon")
        if points is None:
            logger.warning("No footprint polygon defined.")
        elif len(points) < 3:
            logger.warning("Footprint polygon must consist of at least 3 points. Only %d points found.", len(points))
        else:
            params.footprint_points = [(float(p[0]), float(p[1])) for p in points]

        for f in params.filters:
            if f.get("name") == "stepFilter" and "critical_value" in (f.get("params") or {}):
                params.critical_step_height = float(f["params"]["critical_value"])
        return params


def load_params(path: str) -> TraversabilityParams:
    import yaml

    with open(path, "r") as f:
        return TraversabilityParams.from_dict(yaml.safe_load(f))
# endregion
