from traversability_estimation.config import TraversabilityParams, load_params
from traversability_estimation.grid import GridMap
from traversability_estimation.models import FootprintPath, Polygon, Pose, TraversabilityResult
from traversability_estimation.traversability_map import Publisher, RecordingPublisher, TraversabilityMap

__all__ = [
    "FootprintPath",
    "GridMap",
    "Polygon",
    "Pose",
    "Publisher",
    "RecordingPublisher",
    "TraversabilityMap",
    "TraversabilityParams",
    "TraversabilityResult",
    "load_params",
]
