# region Imports
from typing import Iterable, Optional
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Patch
from matplotlib.lines import Line2D

from traversability_estimation import config as C
from traversability_estimation.grid import GridMap
from traversability_estimation.models import Polygon
# endregion


def _closed(polygon: Polygon):
    xs = [p[0] for p in polygon.vertices]
    ys = [p[1] for p in polygon.vertices]
    return xs + xs[:1], ys + ys[:1]


# region Visualization Function
def plot_traversability(
    grid: GridMap,
    layer: str = C.TRAVERSABILITY,
    footprints: Optional[Iterable[Polygon]] = None,
    untraversable: Optional[Polygon] = None,
    title: str = "Traversability",
    show: bool = False,
):
    """
    Render a map layer in map coordinates with footprint polygons and the
    untraversable polygon on top. Invalid cells are drawn white.
    Returns the figure.
    """
    # region Base Image
    values = grid.get(layer).astype(np.float64)
    ox, oy = grid.origin
    lx, ly = grid.length
    extent = (ox, ox + lx, oy, oy + ly)
    cmap = plt.get_cmap("RdYlGn" if layer != C.ELEVATION else "terrain").copy()
    cmap.set_bad("white")
    # endregion

    fig, ax = plt.subplots(figsize=(8, 8))
    im = ax.imshow(
        np.ma.masked_invalid(values.T),
        origin="lower",
        cmap=cmap,
        vmin=None if layer == C.ELEVATION else 0.0,
        vmax=None if layer == C.ELEVATION else 1.0,
        extent=extent,
    )
    cbar = fig.colorbar(im, ax=ax, fraction=0.046, pad=0.04)
    cbar.set_label(layer)

    # region Polygon Overlay
    n_footprints = 0
    for polygon in footprints or []:
        if polygon.n_vertices() == 0:
            continue
        xs, ys = _closed(polygon)
        ax.plot(xs, ys, color="cyan", linewidth=1.5)
        n_footprints += 1

    if untraversable is not None and untraversable.n_vertices() > 0:
        xs, ys = _closed(untraversable)
        ax.fill(xs, ys, facecolor="black", alpha=0.4, edgecolor="black")
    # endregion

    # region Legend / Layout
    legend_elements = [
        Line2D([0], [0], color="cyan", lw=2, label=f"Footprints ({n_footprints})"),
        Patch(facecolor="black", alpha=0.4, label="Untraversable"),
        Patch(facecolor="white", edgecolor="black", label="Unknown"),
    ]
    ax.legend(handles=legend_elements, loc="lower right", fontsize=8, framealpha=0.85)
    ax.set_title(title)
    ax.set_xlabel("x [m]")
    ax.set_ylabel("y [m]")
    ax.set_aspect("equal")
    plt.tight_layout()
    if show:
        plt.show()
    return fig
    # endregion
# endregion
