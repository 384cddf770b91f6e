# terrain.py
# ----------
# Terrain map: a small window of the traversability map around the robot,
# optionally colored with terrain classes read from a classified camera image.
#
# Exposes:
#   - CameraModel            (pinhole intrinsics + image size)
#   - project_points         (map-frame points -> pixels)
#   - assign_terrain_cost    (adds terrain_traversability and color layers)
#   - load_classified_image  (RGB image from disk)
#   - downsample_map         (submap around the robot)
#
# Dependencies: numpy, pillow

from __future__ import annotations
from dataclasses import dataclass
from typing import Sequence, Tuple
import logging
import numpy as np
from PIL import Image

from traversability_estimation import config as C
from traversability_estimation.grid import GridMap
from traversability_estimation.models import Position

logger = logging.getLogger(__name__)

TERRAIN_TRAVERSABILITY = "terrain_traversability"
COLOR = "color"

# Classified image colors (RGB) and the traversability of each class.
FLOOR_COLOR = (155, 155, 155)
DEBRIS_COLOR = (0, 0, 255)
OBSTACLE_COLOR = (255, 0, 0)   # display color of unknown classes

FLOOR_TRAVERSABILITY = 1.0
DEBRIS_TRAVERSABILITY = 0.5
OTHER_TRAVERSABILITY = 0.35


@dataclass
class CameraModel:
    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int
    tx: float = 0.0
    ty: float = 0.0


def color_to_value(rgb: Sequence[int]) -> float:
    """Pack an RGB triple into the bits of a float32, as grid map viewers expect."""
    packed = np.array([(int(rgb[0]) << 16) | (int(rgb[1]) << 8) | int(rgb[2])], dtype=np.uint32)
    return float(packed.view(np.float32)[0])


def value_to_color(value: float) -> Tuple[int, int, int]:
    packed = int(np.array([value], dtype=np.float32).view(np.uint32)[0])
    return ((packed >> 16) & 0xFF, (packed >> 8) & 0xFF, packed & 0xFF)


def project_points(camera: CameraModel, camera_from_map: np.ndarray, points: np.ndarray):
    """
    Project (N, 3) map-frame points into the image.

    Returns (pixels, visible): pixels is (N, 2) as (u, v); visible marks
    points in front of the camera whose pixel lies inside the image.
    """
    points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    T = np.asarray(camera_from_map, dtype=np.float64)
    cam = points @ T[:3, :3].T + T[:3, 3]

    z = cam[:, 2]
    front = z > 0.0
    safe_z = np.where(front, z, 1.0)
    u = (camera.fx * cam[:, 0] + camera.tx) / safe_z + camera.cx
    v = (camera.fy * cam[:, 1] + camera.ty) / safe_z + camera.cy

    visible = front & (u >= 0) & (v >= 0) & (u < camera.width) & (v < camera.height)
    return np.stack([u, v], axis=1), visible


def assign_terrain_cost(
    grid: GridMap,
    camera: CameraModel,
    camera_from_map: np.ndarray,
    classified_image: np.ndarray,
) -> GridMap:
    """
    Copy of `grid` with `terrain_traversability` and `color` layers filled
    for every cell whose 3D position (cell centre at its elevation) projects
    into the classified image. Other cells stay invalid.
    """
    out = grid.copy()
    out.add(TERRAIN_TRAVERSABILITY)
    out.add(COLOR)
    if not out.exists(C.ELEVATION):
        logger.warning("Terrain map has no '%s' layer; terrain cost not assigned.", C.ELEVATION)
        return out

    nx, ny = out.size
    xs, ys = out.cell_centers((0, nx), (0, ny))
    X, Y = np.meshgrid(xs, ys, indexing="ij")
    Z = out.get(C.ELEVATION).astype(np.float64)
    valid = np.isfinite(Z)
    points = np.stack([X[valid], Y[valid], Z[valid]], axis=1)
    cells = np.argwhere(valid)

    pixels, visible = project_points(camera, camera_from_map, points)
    image = np.asarray(classified_image)
    rows, cols = image.shape[:2]

    terrain = out.get(TERRAIN_TRAVERSABILITY)
    color = out.get(COLOR)
    floor_value = color_to_value(FLOOR_COLOR)
    obstacle_value = color_to_value(OBSTACLE_COLOR)
    n_assigned = 0
    for (i, j), (u, v), seen in zip(cells, pixels, visible):
        if not seen or int(v) >= rows or int(u) >= cols:
            continue
        pixel = tuple(int(c) for c in image[int(v), int(u)][:3])
        if pixel == FLOOR_COLOR:
            terrain[i, j] = FLOOR_TRAVERSABILITY
            color[i, j] = floor_value
        elif pixel == DEBRIS_COLOR:
            terrain[i, j] = DEBRIS_TRAVERSABILITY
            color[i, j] = floor_value
        else:
            terrain[i, j] = OTHER_TRAVERSABILITY
            color[i, j] = obstacle_value
        n_assigned += 1

    logger.debug("Terrain cost assigned to %d of %d cells.", n_assigned, len(cells))
    return out


def load_classified_image(path: str) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGB"))


def downsample_map(grid: GridMap, robot_position: Position, length=C.TERRAIN_SUBMAP_LENGTH) -> GridMap:
    sub, ok = grid.get_submap(robot_position, length)
    if not ok:
        logger.warning(
            "Terrain submap of %.2f x %.2f m around %s does not fit the map; using the full map.",
            length[0], length[1], robot_position,
        )
        return grid.copy()
    logger.info(
        "Terrain submap created with size %.2f x %.2f m (%d x %d cells).",
        sub.length[0], sub.length[1], sub.size[0], sub.size[1],
    )
    return sub
