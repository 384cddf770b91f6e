import logging
import threading

import numpy as np
import pytest

from traversability_estimation import config as C
from traversability_estimation.config import TraversabilityParams
from traversability_estimation.dem import make_synthetic_elevation
from traversability_estimation.models import FootprintPath, Pose
from traversability_estimation.terrain import FLOOR_COLOR, TERRAIN_TRAVERSABILITY, CameraModel
from traversability_estimation.traversability_map import RecordingPublisher, TraversabilityMap

from conftest import block_slope, make_grid

SQUARE = [(-0.1, -0.1), (0.1, -0.1), (0.1, 0.1), (-0.1, 0.1)]


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def tmap(publisher):
    return TraversabilityMap(TraversabilityParams(footprint_points=SQUARE), publisher)


@pytest.fixture
def computed(tmap):
    assert tmap.set_elevation_map(make_synthetic_elevation(size=(60, 60), resolution=0.05, n_rocks=0), 0.4)
    assert tmap.compute_traversability()
    return tmap


def test_elevation_map_with_wrong_frame_is_rejected(tmap):
    assert not tmap.set_elevation_map(make_synthetic_elevation(frame_id="odom"))
    assert not tmap.elevation_map_initialized
    assert tmap.get_elevation_map() is None


def test_elevation_map_missing_layer_is_rejected(tmap):
    grid = make_synthetic_elevation()
    del grid.data["upper_bound"]

    assert not tmap.set_elevation_map(grid)
    assert not tmap.elevation_map_initialized


def test_raw_map_requires_variance_layers():
    tmap = TraversabilityMap(TraversabilityParams(use_raw_map=True))

    assert not tmap.set_elevation_map(make_synthetic_elevation())
    assert tmap.set_elevation_map(make_synthetic_elevation(use_raw_map=True))


def test_compute_without_elevation_fails(tmap):
    assert not tmap.compute_traversability()
    assert not tmap.traversability_map_initialized


def test_compute_publishes_maps(computed, publisher):
    grid = computed.get_traversability_map()

    assert computed.traversability_map_initialized
    for layer in C.TRAVERSABILITY_LAYERS + (C.STEP_FOOTPRINT, C.SLOPE_FOOTPRINT, C.TRAVERSABILITY_FOOTPRINT):
        assert grid.exists(layer)
    assert not grid.exists(C.ROUGHNESS_FOOTPRINT)
    assert publisher.traversability_map is not None
    assert np.allclose(publisher.traversability_map.get("uncertainty_range"), 0.0)
    assert publisher.terrain_map is not None
    assert computed.get_terrain_map().size[0] < grid.size[0]


def test_compute_colors_terrain_when_camera_is_set(tmap):
    tmap.set_elevation_map(make_synthetic_elevation(size=(60, 60), resolution=0.05, n_rocks=0))
    camera_from_map = np.eye(4)
    camera_from_map[2, 3] = 1.0
    tmap.set_camera(CameraModel(fx=20.0, fy=20.0, cx=50.0, cy=50.0, width=100, height=100), camera_from_map)
    image = np.zeros((100, 100, 3), dtype=np.uint8)
    image[:, :] = FLOOR_COLOR
    tmap.set_classified_image(image)

    assert tmap.compute_traversability()
    terrain = tmap.get_terrain_map().get(TERRAIN_TRAVERSABILITY)
    assert np.nanmax(terrain) == pytest.approx(1.0)


def test_pipeline_failure_marks_map_uninitialised(computed):
    computed.params.filters = [{"name": "slopeFilter", "type": "slope", "params": {"critical_value": "steep"}}]
    assert computed.update_filter()

    assert not computed.compute_traversability()
    assert not computed.traversability_map_initialized


def test_bad_filter_configuration_is_logged(caplog):
    params = TraversabilityParams(filters=[{"name": "x", "type": "unknown"}])
    with caplog.at_level(logging.ERROR):
        tmap = TraversabilityMap(params)
    assert "filter chain" in caplog.text

    tmap.set_elevation_map(make_synthetic_elevation())
    assert not tmap.compute_traversability()


def test_check_path_on_uninitialised_map(tmap):
    checked, result = tmap.check_footprint_path(FootprintPath(poses=[Pose()], radius=0.2))

    assert checked
    assert not result.is_safe


def test_check_path_without_poses(computed):
    checked, result = computed.check_footprint_path(FootprintPath(radius=0.2))

    assert not checked
    assert not result.is_safe


def test_check_path_publishes_polygons_at_mean_height(computed, publisher):
    path = FootprintPath(poses=[Pose(-0.5, 0.0, 1.0), Pose(0.5, 0.0, 2.0)], footprint=SQUARE)

    checked, result = computed.check_footprint_path(path, publish_polygons=True)

    assert checked
    assert result.is_safe
    assert 0.0 < result.traversability <= 1.0
    assert len(publisher.footprint_polygons) == 1
    assert publisher.footprint_polygons[0][1] == pytest.approx(1.5)


def test_check_path_writes_caches_back(computed):
    computed.check_footprint_path(FootprintPath(poses=[Pose(0.0, 0.0)], radius=0.2))

    grid = computed.get_traversability_map()
    assert np.isfinite(grid.get(C.TRAVERSABILITY_FOOTPRINT)).any()

    computed.reset_footprint_layers()
    assert np.isnan(computed.get_traversability_map().get(C.TRAVERSABILITY_FOOTPRINT)).all()


def test_untraversable_polygon_is_published(tmap, publisher):
    grid = make_grid(size=(60, 20), traversability=0.8)
    block_slope(grid, (25, 30), (8, 13))
    assert tmap.set_traversability_map(grid)

    path = FootprintPath(poses=[Pose(-1.0, 0.05), Pose(0.5, 0.05)], compute_untraversable_polygon=True)
    checked, result = tmap.check_footprint_path(path)

    assert checked
    assert not result.is_safe
    assert len(publisher.untraversable_polygons) == 1


def test_set_traversability_map_requires_layers(tmap):
    grid = make_grid()
    del grid.data[C.ROUGHNESS]

    assert not tmap.set_traversability_map(grid)
    assert not tmap.traversability_map_initialized


def test_set_traversability_map_rejects_other_frame(tmap):
    assert tmap.set_traversability_map(make_grid(traversability=0.7))

    other = make_grid(traversability=0.2)
    other.frame_id = "odom"
    assert not tmap.set_traversability_map(other)

    assert tmap.traversability_map_initialized
    assert tmap.get_traversability_map().at(C.TRAVERSABILITY, (0, 0)) == pytest.approx(0.7)


def test_default_traversability_is_clamped_and_restorable(tmap, caplog):
    with caplog.at_level(logging.WARNING):
        tmap.default_traversability = 1.5
    assert tmap.default_traversability == 1.0
    assert "max allowed value" in caplog.text

    tmap.default_traversability = -0.2
    assert tmap.default_traversability == 0.0

    tmap.restore_default_traversability()
    assert tmap.default_traversability == 0.5


def test_default_read_at_init_is_clamped():
    tmap = TraversabilityMap(TraversabilityParams(traversability_default=3.0))
    assert tmap.default_traversability == 1.0


def test_valid_traversability_lookup(tmap):
    assert not tmap.map_has_valid_traversability_at(0.0, 0.0)

    grid = make_grid()
    grid.set_at(C.TRAVERSABILITY, (0, 0), np.nan)
    tmap.set_traversability_map(grid)

    assert tmap.map_has_valid_traversability_at(0.05, 0.05)
    assert not tmap.map_has_valid_traversability_at(-0.95, -0.95)
    assert not tmap.map_has_valid_traversability_at(5.0, 5.0)


def test_whole_map_footprints(tmap):
    assert tmap.set_traversability_map(make_grid(size=(10, 10), traversability=0.7))
    assert tmap.traversability_footprint(0.3)
    grid = tmap.get_traversability_map()
    assert np.isfinite(grid.get(C.TRAVERSABILITY_X)).all()
    assert np.isfinite(grid.get(C.TRAVERSABILITY_ROT)).all()

    assert tmap.circular_traversability_footprint(0.1, 0.05)
    assert np.isfinite(tmap.get_traversability_map().get(C.TRAVERSABILITY_FOOTPRINT)).all()


def test_whole_map_footprint_needs_polygon_and_map():
    tmap = TraversabilityMap()
    assert not tmap.traversability_footprint(0.0)
    assert not tmap.circular_traversability_footprint(0.1, 0.05)

    tmap.set_traversability_map(make_grid(size=(6, 6)))
    assert not tmap.traversability_footprint(0.0)
    assert tmap.circular_traversability_footprint(0.1, 0.05)


def _lock_free_during(tmap, method):
    """Run `method` of tmap.queries and report whether another thread could take the map lock meanwhile."""
    seen = []
    original = getattr(tmap.queries, method)

    def wrapper(*args, **kwargs):
        def other():
            lock = tmap.store.lock(C.TRAVERSABILITY_MAP)
            acquired = lock.acquire(timeout=0.5)
            seen.append(acquired)
            if acquired:
                lock.release()

        t = threading.Thread(target=other)
        t.start()
        t.join()
        return original(*args, **kwargs)

    setattr(tmap.queries, method, wrapper)
    return seen


def test_whole_map_footprint_does_not_hold_the_lock(tmap):
    tmap.set_traversability_map(make_grid(size=(6, 6)))
    seen = _lock_free_during(tmap, "footprint_layers")

    assert tmap.traversability_footprint(0.0)
    assert seen == [True]


def test_circular_footprint_does_not_hold_the_lock(tmap):
    tmap.set_traversability_map(make_grid(size=(6, 6)))
    seen = _lock_free_during(tmap, "circular_footprint_layer")

    assert tmap.circular_traversability_footprint(0.1, 0.05)
    assert seen == [True]
    assert np.isfinite(tmap.get_traversability_map().get(C.TRAVERSABILITY_FOOTPRINT)).all()
