import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402

from traversability_estimation import config as C  # noqa: E402
from traversability_estimation.models import Polygon  # noqa: E402
from traversability_estimation.viz import plot_traversability  # noqa: E402

from conftest import make_grid  # noqa: E402


def test_plot_traversability_with_overlays():
    grid = make_grid(traversability=0.6)
    footprint = Polygon([(-0.2, -0.2), (0.2, -0.2), (0.2, 0.2), (-0.2, 0.2)])
    blocked = Polygon([(0.5, 0.5), (0.7, 0.5), (0.6, 0.7)])

    fig = plot_traversability(grid, footprints=[footprint, Polygon()], untraversable=blocked)

    ax = fig.axes[0]
    assert ax.get_title() == "Traversability"
    assert len(ax.lines) == 1
    assert len(ax.images) == 1
    plt.close(fig)


def test_plot_elevation_layer():
    grid = make_grid()
    fig = plot_traversability(grid, layer=C.ELEVATION, title="Elevation")
    assert fig.axes[0].get_title() == "Elevation"
    plt.close(fig)
