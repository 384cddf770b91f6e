# dem.py
# ------
# Elevation maps for the traversability pipeline: from a GeoTIFF DEM (local
# file or remote COG) or a synthetic height field.
#
# Dependencies: numpy, rasterio, requests

from __future__ import annotations
from typing import Optional, Tuple
import logging
import numpy as np
import rasterio
import requests
from rasterio.enums import Resampling

from traversability_estimation import config as C
from traversability_estimation.grid import GridMap
from traversability_estimation.models import Position

logger = logging.getLogger(__name__)


def elevation_grid(
    height: np.ndarray,
    resolution: float,
    position: Position = (0.0, 0.0),
    frame_id: str = "map",
    use_raw_map: bool = False,
) -> GridMap:
    """
    Wrap a (nx, ny) height array into a GridMap carrying every layer an
    elevation map must provide. Bound layers equal the height (no
    uncertainty); raw-map variance layers are zero.
    """
    grid = GridMap(height.shape, resolution, position, frame_id)
    grid.add(C.ELEVATION, height)
    extra = C.RAW_ELEVATION_LAYERS if use_raw_map else C.BOUND_ELEVATION_LAYERS
    for name in extra:
        if name == C.ELEVATION:
            continue
        if name in ("upper_bound", "lower_bound"):
            grid.add(name, height)
        else:
            grid.add(name, np.where(np.isfinite(height), 0.0, np.nan).astype(np.float32))
    return grid


def _check_remote(url: str) -> None:
    try:
        r = requests.head(url, timeout=5)
    except requests.RequestException as e:
        raise IOError(f"DEM check failed: {e}") from e
    if r.status_code != 200:
        raise IOError(f"Remote DEM not reachable (HTTP {r.status_code}).")


def read_elevation_geotiff(
    path_or_url: str,
    frame_id: str = "map",
    resolution: Optional[float] = None,
    use_raw_map: bool = False,
) -> GridMap:
    """
    Load band 1 of a GeoTIFF into an elevation GridMap.

    Args:
      path_or_url: local path or http(s) URL of a (cloud optimized) GeoTIFF
      frame_id:    frame the map is expressed in
      resolution:  output cell size in raster units; None keeps the native size
      use_raw_map: emit the raw-map variance layers instead of the bounds

    The map is centred on the raster bounds; raster rows (north first) are
    flipped so that cell j grows along +y.
    """
    if str(path_or_url).startswith(("http://", "https://")):
        _check_remote(path_or_url)

    with rasterio.open(path_or_url) as ds:
        native = abs(ds.transform.a)
        if resolution is None or resolution <= 0.0:
            resolution = native
            out_shape = (ds.height, ds.width)
        else:
            scale = native / float(resolution)
            out_shape = (max(1, int(round(ds.height * scale))), max(1, int(round(ds.width * scale))))

        arr = ds.read(1, out_shape=out_shape, resampling=Resampling.bilinear).astype(np.float64)

        nodata = ds.nodata
        if nodata is not None:
            arr = np.where(np.isclose(arr, nodata), np.nan, arr)

        band_scale = (ds.scales or [None])[0]
        band_off = (ds.offsets or [None])[0]
        bounds = ds.bounds

    if band_scale not in (None, 1.0) or band_off not in (None, 0.0):
        s = 1.0 if band_scale is None else float(band_scale)
        o = 0.0 if band_off is None else float(band_off)
        arr = arr * s + o

    position = (0.5 * (bounds.left + bounds.right), 0.5 * (bounds.bottom + bounds.top))
    height = np.flipud(arr).T.astype(np.float32)
    logger.info(
        "Loaded DEM %s: %d x %d cells at %.3f per cell.", path_or_url, height.shape[0], height.shape[1], resolution
    )
    return elevation_grid(height, float(resolution), position, frame_id, use_raw_map)


def make_synthetic_elevation(
    size: Tuple[int, int] = (60, 60),
    resolution: float = 0.05,
    seed: int = 0,
    n_rocks: int = 4,
    step_height: float = 0.0,
    frame_id: str = "map",
    use_raw_map: bool = False,
) -> GridMap:
    """
    Gentle undulations with a few rocks and an optional ledge of
    `step_height` across the middle of the map. Good for quick tests without
    a GeoTIFF.
    """
    rng = np.random.default_rng(seed)
    nx, ny = size
    xx, yy = np.meshgrid(np.linspace(0, 2 * np.pi, nx), np.linspace(0, 2 * np.pi, ny), indexing="ij")

    height = 0.02 * np.sin(0.5 * xx) * np.cos(0.4 * yy)
    height += rng.normal(0.0, 0.002, (nx, ny))

    # rocks
    ii, jj = np.ogrid[:nx, :ny]
    for _ in range(n_rocks):
        i0 = rng.integers(0, nx)
        j0 = rng.integers(0, ny)
        dist = np.hypot(ii - i0, jj - j0)
        height += 0.1 * np.exp(-(dist ** 2) / (2 * rng.uniform(1.0, 2.5) ** 2))

    if step_height:
        height[nx // 2:, :] += step_height

    return elevation_grid(height.astype(np.float32), resolution, (0.0, 0.0), frame_id, use_raw_map)
