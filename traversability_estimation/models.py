# models.py
from dataclasses import dataclass, field
from typing import List, Tuple
import time

Position = Tuple[float, float]
Index = Tuple[int, int]


@dataclass
class Polygon:
    vertices: List[Position] = field(default_factory=list)
    frame_id: str = ""
    timestamp: int = 0   # ns

    def n_vertices(self) -> int:
        return len(self.vertices)

    def stamp(self, frame_id: str) -> "Polygon":
        self.frame_id = frame_id
        self.timestamp = time.time_ns()
        return self


@dataclass
class Pose:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    qx: float = 0.0
    qy: float = 0.0
    qz: float = 0.0
    qw: float = 1.0

    @property
    def position(self) -> Position:
        return (self.x, self.y)


@dataclass
class FootprintPath:
    poses: List[Pose] = field(default_factory=list)
    radius: float = 0.0
    footprint: List[Position] = field(default_factory=list)   # robot frame, empty -> circular
    conservative: bool = False
    compute_untraversable_polygon: bool = False


@dataclass
class TraversabilityResult:
    is_safe: bool = False
    traversability: float = 0.0
    area: float = 0.0
    untraversable_polygon: Polygon = field(default_factory=Polygon)
    footprint_polygons: List[Polygon] = field(default_factory=list)
