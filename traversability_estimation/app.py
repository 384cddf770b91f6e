# app.py: Flask API around a TraversabilityMap
# deps: pip install flask numpy pillow pyyaml

from __future__ import annotations
from typing import Any, Dict, Optional
import io
import logging
import numpy as np
from flask import Flask, request, jsonify, make_response
from PIL import Image

from traversability_estimation import config as C
from traversability_estimation.config import load_params
from traversability_estimation.grid import GridMap
from traversability_estimation.models import FootprintPath, Polygon, Pose
from traversability_estimation.traversability_map import RecordingPublisher, TraversabilityMap

logger = logging.getLogger(__name__)


def _polygon_json(polygon: Polygon) -> Dict[str, Any]:
    return {
        "frame_id": polygon.frame_id,
        "timestamp": polygon.timestamp,
        "points": [[float(x), float(y)] for x, y in polygon.vertices],
    }


def _path_from_json(data: Dict[str, Any]) -> FootprintPath:
    poses = []
    for p in data.get("poses") or []:
        poses.append(Pose(
            float(p.get("x", 0.0)), float(p.get("y", 0.0)), float(p.get("z", 0.0)),
            float(p.get("qx", 0.0)), float(p.get("qy", 0.0)), float(p.get("qz", 0.0)), float(p.get("qw", 1.0)),
        ))
    return FootprintPath(
        poses=poses,
        radius=float(data.get("radius", 0.0)),
        footprint=[(float(x), float(y)) for x, y in (data.get("footprint") or [])],
        conservative=bool(data.get("conservative", False)),
        compute_untraversable_polygon=bool(data.get("compute_untraversable_polygon", False)),
    )


def create_app(traversability_map: Optional[TraversabilityMap] = None) -> Flask:
    app = Flask(__name__)
    tmap = traversability_map or TraversabilityMap(publisher=RecordingPublisher())
    app.config["TRAVERSABILITY_MAP"] = tmap

    # ======= CORS =======
    @app.after_request
    def _cors(resp):
        resp.headers["Access-Control-Allow-Origin"] = "*"
        resp.headers["Access-Control-Allow-Headers"] = "*"
        resp.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        return resp

    def _grid_from_request():
        data = request.get_json(force=True, silent=True) or {}
        try:
            grid = GridMap.from_dict(data["map"])
        except (KeyError, TypeError, ValueError) as e:
            return None, 0.0, (jsonify({"error": f"invalid map: {e}"}), 400)
        return grid, float(data.get("z_position", 0.0)), None

    # ======= status =======
    @app.route("/", methods=["GET"])
    def root():
        return {
            "ok": True,
            "map_frame_id": tmap.map_frame_id,
            "elevation_map_initialized": tmap.elevation_map_initialized,
            "traversability_map_initialized": tmap.traversability_map_initialized,
            "default_traversability": tmap.default_traversability,
        }

    # ======= map input =======
    @app.route("/elevation_map", methods=["POST"])
    def set_elevation_map():
        """JSON body: {"map": GridMap.to_dict(), "z_position": 0.0}"""
        grid, z, err = _grid_from_request()
        if err:
            return err
        if not tmap.set_elevation_map(grid, z):
            return jsonify({"error": "elevation map rejected (frame or layers)"}), 400
        return jsonify({"ok": True})

    @app.route("/traversability_map", methods=["POST"])
    def set_traversability_map():
        grid, z, err = _grid_from_request()
        if err:
            return err
        if not tmap.set_traversability_map(grid, z):
            return jsonify({"error": "traversability map rejected (layers)"}), 400
        return jsonify({"ok": True})

    @app.route("/traversability_map", methods=["GET"])
    def get_traversability_map():
        grid = tmap.get_traversability_map()
        if grid is None:
            return jsonify({"error": "traversability map not initialized"}), 404
        return jsonify(grid.to_dict())

    # ======= computation =======
    @app.route("/traversability/compute", methods=["POST"])
    def compute():
        ok = tmap.compute_traversability()
        return jsonify({"ok": ok}), (200 if ok else 409)

    @app.route("/footprint_path/check", methods=["POST"])
    def check_footprint_path():
        """
        JSON body:
        {
          "poses": [{"x":..,"y":..,"z":..,"qx":..,"qy":..,"qz":..,"qw":..}, ...],
          "radius": 0.3,                       // used when footprint is empty
          "footprint": [[x, y], ...],          // robot frame, optional
          "conservative": false,
          "compute_untraversable_polygon": false,
          "publish_polygons": false
        }
        """
        data = request.get_json(force=True, silent=True) or {}
        try:
            path = _path_from_json(data)
        except (TypeError, ValueError) as e:
            return jsonify({"error": f"invalid path: {e}"}), 400

        checked, result = tmap.check_footprint_path(path, bool(data.get("publish_polygons", False)))
        return jsonify({
            "checked": checked,
            "is_safe": bool(result.is_safe),
            "traversability": float(result.traversability),
            "area": float(result.area),
            "untraversable_polygon": _polygon_json(result.untraversable_polygon),
            "footprint_polygons": [_polygon_json(p) for p in result.footprint_polygons],
        }), (200 if checked else 400)

    @app.route("/traversability/default", methods=["GET", "POST"])
    def default_traversability():
        if request.method == "POST":
            data = request.get_json(force=True, silent=True) or {}
            if data.get("restore"):
                tmap.restore_default_traversability()
            elif "value" in data:
                try:
                    tmap.default_traversability = float(data["value"])
                except (TypeError, ValueError):
                    return jsonify({"error": "value must be a number"}), 400
        return jsonify({"default_traversability": tmap.default_traversability})

    @app.route("/footprint_layers/reset", methods=["POST"])
    def reset_footprint_layers():
        tmap.reset_footprint_layers()
        return jsonify({"ok": True})

    @app.route("/traversability/footprint", methods=["POST"])
    def traversability_footprint():
        """JSON body: {"yaw": 0.0} or {"radius": 0.3, "offset": 0.15}"""
        data = request.get_json(force=True, silent=True) or {}
        if "radius" in data:
            ok = tmap.circular_traversability_footprint(float(data["radius"]), float(data.get("offset", C.CIRCLE_RADIUS_OFFSET)))
        else:
            ok = tmap.traversability_footprint(float(data.get("yaw", 0.0)))
        return jsonify({"ok": ok}), (200 if ok else 409)

    # ======= preview =======
    @app.route("/traversability_map.png", methods=["GET"])
    def traversability_png():
        layer = request.args.get("layer", C.TRAVERSABILITY)
        grid = tmap.get_traversability_map()
        if grid is None or not grid.exists(layer):
            return jsonify({"error": f"layer '{layer}' not available"}), 404

        arr = grid.get(layer).astype(np.float64)
        scaled = np.clip(np.nan_to_num(arr, nan=0.0), 0, 1)
        # rows of the image run from +y (top) to -y
        img = np.flipud(scaled.T)
        buf = io.BytesIO()
        Image.fromarray((img * 255).astype("uint8"), "L").save(buf, "PNG")
        buf.seek(0)
        resp = make_response(buf.read())
        resp.headers["Content-Type"] = "image/png"
        return resp

    return app


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Traversability estimation HTTP service")
    parser.add_argument("--params", help="YAML parameter file")
    parser.add_argument("--port", type=int, default=8081)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    params = load_params(args.params) if args.params else None
    create_app(TraversabilityMap(params, RecordingPublisher())).run(host="0.0.0.0", port=args.port, threaded=True)
