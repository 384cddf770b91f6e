# region Imports
from __future__ import annotations
from typing import Dict, Iterable, Optional, Tuple, Any
import math
import numpy as np

from traversability_estimation.models import Index, Position
# endregion


class GridMap:
    """
    Layered 2D grid over a rectangular planar region.

    Cell (i, j) has its centre at
        x = x_min + (i + 0.5) * resolution
        y = y_min + (j + 0.5) * resolution
    where (x_min, y_min) is the minimum corner of the map. Every layer is a
    float32 array of shape (nx, ny); NaN marks an invalid/unknown value.
    """

    def __init__(
        self,
        size: Tuple[int, int],
        resolution: float,
        position: Position = (0.0, 0.0),
        frame_id: str = "map",
        layers: Iterable[str] = (),
        timestamp: int = 0,
    ):
        if resolution <= 0.0:
            raise ValueError(f"Resolution must be positive, got {resolution}.")
        self.size = (int(size[0]), int(size[1]))
        self.resolution = float(resolution)
        self.position = (float(position[0]), float(position[1]))
        self.frame_id = frame_id
        self.timestamp = timestamp
        self.data: Dict[str, np.ndarray] = {}
        for name in layers:
            self.add(name)

    @classmethod
    def from_length(cls, length: Tuple[float, float], resolution: float, **kwargs) -> "GridMap":
        nx = int(round(length[0] / resolution))
        ny = int(round(length[1] / resolution))
        return cls((nx, ny), resolution, **kwargs)

    # region Geometry
    @property
    def length(self) -> Tuple[float, float]:
        return (self.size[0] * self.resolution, self.size[1] * self.resolution)

    @property
    def origin(self) -> Position:
        lx, ly = self.length
        return (self.position[0] - 0.5 * lx, self.position[1] - 0.5 * ly)

    def position_of(self, index: Index) -> Position:
        ox, oy = self.origin
        return (ox + (index[0] + 0.5) * self.resolution, oy + (index[1] + 0.5) * self.resolution)

    def index_of(self, position: Position) -> Optional[Index]:
        ox, oy = self.origin
        i = int(math.floor((position[0] - ox) / self.resolution))
        j = int(math.floor((position[1] - oy) / self.resolution))
        if 0 <= i < self.size[0] and 0 <= j < self.size[1]:
            return (i, j)
        return None

    def is_inside(self, position: Position) -> bool:
        return self.index_of(position) is not None

    def clip_segment(self, start: Position, end: Position) -> Optional[Tuple[Position, Position]]:
        """
        Part of the segment start -> end that lies inside the map, pulled in
        by a tiny margin so both ends map to a cell. None when the segment
        misses the map entirely.
        """
        eps = 1e-6 * self.resolution
        ox, oy = self.origin
        lx, ly = self.length
        x0, y0 = start
        dx, dy = end[0] - x0, end[1] - y0

        t0, t1 = 0.0, 1.0
        for p, q in (
            (-dx, x0 - (ox + eps)),
            (dx, (ox + lx - eps) - x0),
            (-dy, y0 - (oy + eps)),
            (dy, (oy + ly - eps) - y0),
        ):
            if p == 0.0:
                if q < 0.0:
                    return None
                continue
            r = q / p
            if p < 0.0:
                t0 = max(t0, r)
            else:
                t1 = min(t1, r)
            if t0 > t1:
                return None
        return (x0 + t0 * dx, y0 + t0 * dy), (x0 + t1 * dx, y0 + t1 * dy)

    def cell_centers(self, i_range: Tuple[int, int], j_range: Tuple[int, int]):
        """Centre coordinates of the cells [i0, i1) x [j0, j1) as two 1D arrays."""
        ox, oy = self.origin
        xs = ox + (np.arange(i_range[0], i_range[1]) + 0.5) * self.resolution
        ys = oy + (np.arange(j_range[0], j_range[1]) + 0.5) * self.resolution
        return xs, ys
    # endregion

    # region Layers
    @property
    def layers(self):
        return list(self.data.keys())

    def exists(self, layer: str) -> bool:
        return layer in self.data

    def add(self, layer: str, value: Any = np.nan) -> None:
        if isinstance(value, np.ndarray):
            if value.shape != self.size:
                raise ValueError(f"Layer '{layer}' has shape {value.shape}, grid is {self.size}.")
            self.data[layer] = value.astype(np.float32, copy=True)
        else:
            self.data[layer] = np.full(self.size, value, dtype=np.float32)

    def clear(self, layer: str) -> None:
        self.data[layer].fill(np.nan)

    def get(self, layer: str) -> np.ndarray:
        return self.data[layer]

    def at(self, layer: str, index: Index) -> float:
        return float(self.data[layer][index[0], index[1]])

    def set_at(self, layer: str, index: Index, value: float) -> None:
        self.data[layer][index[0], index[1]] = value

    def is_valid(self, index: Index, layer: str) -> bool:
        return bool(np.isfinite(self.data[layer][index[0], index[1]]))

    def at_position(self, layer: str, position: Position) -> float:
        index = self.index_of(position)
        if index is None:
            return float("nan")
        return self.at(layer, index)
    # endregion

    # region Copy / Submap
    def copy(self) -> "GridMap":
        out = GridMap(self.size, self.resolution, self.position, self.frame_id, timestamp=self.timestamp)
        out.data = {name: arr.copy() for name, arr in self.data.items()}
        return out

    def get_submap(self, position: Position, length: Tuple[float, float]) -> Tuple["GridMap", bool]:
        """
        Extract the cells covering a window of `length` centred at `position`.
        Fails (returns an empty grid and False) when the window does not fully
        fit inside the map.
        """
        hx, hy = 0.5 * length[0], 0.5 * length[1]
        lo = self.index_of((position[0] - hx, position[1] - hy))
        hi = self.index_of((position[0] + hx, position[1] + hy))
        if lo is None or hi is None:
            return GridMap((0, 0), self.resolution, position, self.frame_id), False

        (i0, j0), (i1, j1) = lo, hi
        lo_pos = self.position_of(lo)
        hi_pos = self.position_of(hi)
        center = (0.5 * (lo_pos[0] + hi_pos[0]), 0.5 * (lo_pos[1] + hi_pos[1]))
        sub = GridMap((i1 - i0 + 1, j1 - j0 + 1), self.resolution, center, self.frame_id, timestamp=self.timestamp)
        sub.data = {name: arr[i0:i1 + 1, j0:j1 + 1].copy() for name, arr in self.data.items()}
        return sub, True
    # endregion

    # region Serialization
    def to_dict(self) -> Dict[str, Any]:
        return {
            "frame_id": self.frame_id,
            "timestamp": self.timestamp,
            "resolution": self.resolution,
            "size": list(self.size),
            "position": list(self.position),
            "layers": {
                name: [[None if not np.isfinite(v) else float(v) for v in row] for row in arr]
                for name, arr in self.data.items()
            },
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "GridMap":
        grid = cls(
            size=tuple(d["size"]),
            resolution=float(d["resolution"]),
            position=tuple(d.get("position", (0.0, 0.0))),
            frame_id=d.get("frame_id", "map"),
            timestamp=int(d.get("timestamp", 0)),
        )
        for name, rows in (d.get("layers") or {}).items():
            arr = np.array(
                [[np.nan if v is None else v for v in row] for row in rows],
                dtype=np.float32,
            ).reshape(grid.size)
            grid.add(name, arr)
        return grid
    # endregion
