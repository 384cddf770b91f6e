# filters.py
# ----------
# Default filter pipeline that turns an elevation map into the base layers the
# traversability checks consume.
#
# Exposes:
#   - FilterChain               (configure from a list of filter dicts, update maps)
#   - FilterConfigurationError  (bad filter list)
#   - FilterChainError          (update failed)
#
# Every base layer is a score in [0..1]: 1 - value / critical_value, and
# exactly 0 where the value reaches the critical value. A 0 marks the cell
# as critical for the corresponding admissibility check.
#
# Dependencies: numpy

from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional
import logging
import warnings
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from traversability_estimation import config as C
from traversability_estimation.grid import GridMap

logger = logging.getLogger(__name__)


class FilterConfigurationError(ValueError):
    pass


class FilterChainError(RuntimeError):
    pass


# -----------------------------
# Utilities
# -----------------------------

def _window_cells(radius_m: float, resolution: float) -> int:
    """Odd window edge (cells) covering a radius in meters, at least 3."""
    half = max(1, int(round(radius_m / resolution)))
    return 2 * half + 1


def _windowed(height: np.ndarray, size: int) -> np.ndarray:
    """(H, W, size, size) view of NaN-padded neighbourhoods."""
    pad = size // 2
    padded = np.pad(height.astype(np.float64), pad, mode="constant", constant_values=np.nan)
    return sliding_window_view(padded, (size, size))


def _score(value: np.ndarray, critical: float) -> np.ndarray:
    """1 - value / critical, clamped to 0 at and beyond the critical value."""
    with np.errstate(invalid="ignore"):
        score = np.where(value < critical, 1.0 - value / critical, 0.0)
    score = np.where(np.isfinite(value), score, np.nan)
    return score.astype(np.float32)


def _compute_slope_rad(height: np.ndarray, meters_per_cell: float) -> np.ndarray:
    """
    Slope from the DEM using central differences.
      slope = arctan( sqrt( (dz/dx)^2 + (dz/dy)^2 ) )  [radians]
    """
    gx, gy = np.gradient(height.astype(np.float64), meters_per_cell, meters_per_cell)
    return np.arctan(np.hypot(gx, gy))


def _local_mean(height: np.ndarray, size: int) -> np.ndarray:
    win = _windowed(height, size)
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        return np.nanmean(win, axis=(-2, -1))


# -----------------------------
# Filters
# -----------------------------

def slope_filter(elevation: GridMap, out: GridMap, critical_value: float = 0.6, **_) -> None:
    """critical_value: slope in radians."""
    slope = _compute_slope_rad(elevation.get(C.ELEVATION), elevation.resolution)
    out.add(C.SLOPE, _score(slope, float(critical_value)))


def step_filter(elevation: GridMap, out: GridMap, critical_value: float = 0.12, window_radius: float = 0.05, **_) -> None:
    """critical_value: height difference in meters within window_radius."""
    height = elevation.get(C.ELEVATION)
    win = _windowed(height, _window_cells(window_radius, elevation.resolution))
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        step = np.nanmax(win, axis=(-2, -1)) - np.nanmin(win, axis=(-2, -1))
    step = np.where(np.isfinite(height), step, np.nan)
    out.add(C.STEP, _score(step, float(critical_value)))


def roughness_filter(elevation: GridMap, out: GridMap, critical_value: float = 0.05, window_radius: float = 0.1, **_) -> None:
    """Standard deviation of the height within window_radius, in meters."""
    height = elevation.get(C.ELEVATION)
    win = _windowed(height, _window_cells(window_radius, elevation.resolution))
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", RuntimeWarning)
        rough = np.nanstd(win, axis=(-2, -1))
    rough = np.where(np.isfinite(height), rough, np.nan)
    out.add(C.ROUGHNESS, _score(rough, float(critical_value)))


def robot_slope_filter(elevation: GridMap, out: GridMap, critical_value: float = 0.4, robot_radius: float = 0.3, **_) -> None:
    """Inclination the robot body would take: slope of the surface averaged over the robot radius."""
    height = elevation.get(C.ELEVATION)
    smooth = _local_mean(height, _window_cells(robot_radius, elevation.resolution))
    slope = _compute_slope_rad(smooth, elevation.resolution)
    slope = np.where(np.isfinite(height), slope, np.nan)
    out.add(C.ROBOT_SLOPE, _score(slope, float(critical_value)))


def weighted_sum_filter(elevation: GridMap, out: GridMap, weights: Optional[Dict[str, float]] = None, **_) -> None:
    """traversability = sum(w * layer) / sum(w); 0 wherever any weighted layer is 0."""
    weights = weights or {C.SLOPE: 0.3, C.STEP: 0.4, C.ROUGHNESS: 0.3}
    missing = [name for name in weights if not out.exists(name)]
    if missing:
        raise FilterChainError(f"Weighted sum needs layers {missing} computed by an earlier filter.")
    total = sum(float(w) for w in weights.values())
    acc = np.zeros(out.size, dtype=np.float64)
    blocked = np.zeros(out.size, dtype=bool)
    for name, w in weights.items():
        layer = out.get(name).astype(np.float64)
        acc += float(w) * layer
        blocked |= layer == 0.0
    trav = np.where(blocked, 0.0, acc / max(total, 1e-12))
    out.add(C.TRAVERSABILITY, trav.astype(np.float32))


FILTER_TYPES: Dict[str, Callable[..., None]] = {
    "slope": slope_filter,
    "step": step_filter,
    "roughness": roughness_filter,
    "robot_slope": robot_slope_filter,
    "weighted_sum": weighted_sum_filter,
}

# Layers the filters (or the footprint queries) derive; never carried over from a previous map.
_DERIVED_LAYERS = set(C.TRAVERSABILITY_LAYERS) | set(C.FOOTPRINT_LAYERS) | {
    C.ROBOT_SLOPE, C.TRAVERSABILITY_X, C.TRAVERSABILITY_ROT,
}

DEFAULT_FILTER_CONFIG: List[Dict[str, Any]] = [
    {"name": "slopeFilter", "type": "slope", "params": {"critical_value": 0.6}},
    {"name": "stepFilter", "type": "step", "params": {"critical_value": 0.12, "window_radius": 0.05}},
    {"name": "roughnessFilter", "type": "roughness", "params": {"critical_value": 0.05, "window_radius": 0.1}},
    {"name": "robotSlopeFilter", "type": "robot_slope", "params": {"critical_value": 0.4, "robot_radius": 0.3}},
    {"name": "traversabilityFilter", "type": "weighted_sum",
     "params": {"weights": {"slope": 0.3, "step": 0.4, "roughness": 0.3}}},
]


# -----------------------------
# Chain
# -----------------------------

class FilterChain:
    """
    Ordered list of filters. Configured from dicts of the form
        {"name": "stepFilter", "type": "step", "params": {"critical_value": 0.12}}
    """

    def __init__(self) -> None:
        self.filters: List[Dict[str, Any]] = []
        self.configured = False

    def clear(self) -> None:
        self.filters = []
        self.configured = False

    def configure(self, filter_configs: List[Dict[str, Any]]) -> None:
        if not isinstance(filter_configs, (list, tuple)) or not filter_configs:
            raise FilterConfigurationError("Filter configuration must be a non-empty list.")
        filters = []
        for k, cfg in enumerate(filter_configs):
            kind = (cfg or {}).get("type")
            if kind not in FILTER_TYPES:
                raise FilterConfigurationError(f"Filter {k} ({(cfg or {}).get('name')}) has unknown type '{kind}'.")
            filters.append({"name": cfg.get("name", kind), "type": kind, "params": dict(cfg.get("params") or {})})
        self.filters = filters
        self.configured = True

    def update(self, elevation_map: GridMap, previous: Optional[GridMap] = None) -> GridMap:
        """
        Run all filters on `elevation_map`. Returns a new grid holding the
        elevation layers plus every layer the filters produced. `previous`
        contributes layers nothing here derives (e.g. terrain overlays).
        """
        if not self.configured:
            raise FilterChainError("Filter chain is not configured.")
        if not elevation_map.exists(C.ELEVATION):
            raise FilterChainError("Elevation map has no 'elevation' layer.")

        out = GridMap(
            elevation_map.size,
            elevation_map.resolution,
            elevation_map.position,
            elevation_map.frame_id,
            timestamp=elevation_map.timestamp,
        )
        for name in elevation_map.layers:
            out.add(name, elevation_map.get(name))
        if previous is not None and previous.size == out.size:
            for name in previous.layers:
                if name not in _DERIVED_LAYERS and not out.exists(name):
                    out.add(name, previous.get(name))

        for f in self.filters:
            try:
                FILTER_TYPES[f["type"]](elevation_map, out, **f["params"])
            except FilterChainError:
                raise
            except (TypeError, ValueError) as e:
                raise FilterChainError(f"Filter '{f['name']}' failed: {e}") from e
            logger.debug("Filter '%s' applied.", f["name"])
        return out
