# region Imports
from typing import Iterable, List, Sequence
import math
import numpy as np

from traversability_estimation.config import CIRCLE_POLYGON_VERTICES
from traversability_estimation.models import Polygon, Pose, Position
# endregion

# region Construction
def circle_to_polygon(center: Position, radius: float, n_vertices: int = CIRCLE_POLYGON_VERTICES) -> Polygon:
    cx, cy = center
    step = 2.0 * math.pi / n_vertices
    return Polygon([
        (cx + radius * math.cos(k * step), cy + radius * math.sin(k * step))
        for k in range(n_vertices)
    ])


def _cross(o: Position, a: Position, b: Position) -> float:
    return (a[0] - o[0]) * (b[1] - o[1]) - (a[1] - o[1]) * (b[0] - o[0])


def convex_hull_of_points(points: Iterable[Position]) -> Polygon:
    """Andrew's monotone chain. Counter-clockwise, no repeated end vertex."""
    pts = sorted(set((float(p[0]), float(p[1])) for p in points))
    if len(pts) < 3:
        return Polygon(pts)

    lower: List[Position] = []
    for p in pts:
        while len(lower) >= 2 and _cross(lower[-2], lower[-1], p) <= 0.0:
            lower.pop()
        lower.append(p)
    upper: List[Position] = []
    for p in reversed(pts):
        while len(upper) >= 2 and _cross(upper[-2], upper[-1], p) <= 0.0:
            upper.pop()
        upper.append(p)
    return Polygon(lower[:-1] + upper[:-1])


def convex_hull(polygon_a: Polygon, polygon_b: Polygon) -> Polygon:
    return convex_hull_of_points(list(polygon_a.vertices) + list(polygon_b.vertices))
# endregion

# region Measures
def polygon_area(polygon: Polygon) -> float:
    v = polygon.vertices
    if len(v) < 3:
        return 0.0
    xs = np.array([p[0] for p in v])
    ys = np.array([p[1] for p in v])
    return 0.5 * abs(float(np.dot(xs, np.roll(ys, -1)) - np.dot(ys, np.roll(xs, -1))))


def points_in_polygon(xs: np.ndarray, ys: np.ndarray, polygon: Polygon) -> np.ndarray:
    """
    Even-odd test, vectorized over points. An edge counts when exactly one of
    its endpoints lies strictly above the test point, and the crossing must be
    strictly right of it, so cells on a shared edge fall into one polygon only.
    """
    inside = np.zeros(np.broadcast(xs, ys).shape, dtype=bool)
    v = polygon.vertices
    n = len(v)
    if n < 3:
        return inside
    for k in range(n):
        x1, y1 = v[k]
        x2, y2 = v[(k + 1) % n]
        if y1 == y2:
            continue
        straddles = (y1 > ys) != (y2 > ys)
        x_cross = x1 + (ys - y1) * (x2 - x1) / (y2 - y1)
        inside ^= straddles & (xs < x_cross)
    return inside
# endregion

# region Transforms
def rotate_by_quaternion(vec: Sequence[float], qx: float, qy: float, qz: float, qw: float) -> np.ndarray:
    q = np.array([qx, qy, qz], dtype=np.float64)
    norm = math.sqrt(qx * qx + qy * qy + qz * qz + qw * qw)
    if norm == 0.0:
        return np.asarray(vec, dtype=np.float64)
    q /= norm
    w = qw / norm
    v = np.asarray(vec, dtype=np.float64)
    t = 2.0 * np.cross(q, v)
    return v + w * t + np.cross(q, t)


def transform_footprint(points: Sequence[Position], pose: Pose) -> Polygon:
    """Footprint points (robot frame) placed at `pose` in the map plane."""
    out = []
    for px, py in points:
        r = rotate_by_quaternion((px, py, 0.0), pose.qx, pose.qy, pose.qz, pose.qw)
        out.append((pose.x + float(r[0]), pose.y + float(r[1])))
    return Polygon(out)


def yaw_quaternion(yaw: float):
    return (0.0, 0.0, math.sin(0.5 * yaw), math.cos(0.5 * yaw))


def translate(polygon: Polygon, offset: Position) -> List[Position]:
    return [(x + offset[0], y + offset[1]) for x, y in polygon.vertices]
# endregion
