"""Static maps for reports and publications.

Thin helpers over ``GeoDataFrame.plot`` and matplotlib: layered maps,
classified choropleths, north arrow, scale bar, labels and figure export.
"""

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import geopandas as gpd
import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.axes import Axes
from matplotlib.colors import BoundaryNorm
from matplotlib.figure import Figure
from matplotlib.lines import Line2D
from matplotlib.patches import Patch
from pyproj import CRS

from mapflow.crs.manager import CRSManager
from mapflow.errors import CRSError, ParameterError, format_parameter_error

logger = logging.getLogger(__name__)

SCHEMES = ("quantiles", "equal_interval")
MAP_FORMATS = (".png", ".pdf", ".svg")
DEFAULT_FIGSIZE = (8, 8)

_crs_manager = CRSManager()


@dataclass
class MapLayer:
    """One layer of a multi-layer map.

    Attributes:
        data: Features to draw.
        label: Legend label; unlabelled layers are left out of the legend.
        column: Attribute to colour by (optional).
        style: Extra keyword arguments for ``GeoDataFrame.plot``.
    """

    data: gpd.GeoDataFrame
    label: Optional[str] = None
    column: Optional[str] = None
    style: dict[str, Any] = field(default_factory=dict)


def classify(values: Sequence[float], scheme: str = "quantiles", k: int = 5) -> np.ndarray:
    """Class break edges for ``values``.

    Returns an increasing array of at most ``k + 1`` edges spanning the data.
    Repeated quantiles are merged, so skewed data may yield fewer classes.
    """
    if scheme not in SCHEMES:
        raise ParameterError(format_parameter_error("scheme", scheme, list(SCHEMES)))
    if k < 1:
        raise ParameterError(f"Number of classes must be positive, got {k}")

    values = np.asarray(values, dtype=float)
    values = values[~np.isnan(values)]
    if values.size == 0:
        raise ParameterError("Cannot classify an empty or all-NaN column")

    if scheme == "quantiles":
        edges = np.quantile(values, np.linspace(0, 1, k + 1))
    else:
        edges = np.linspace(values.min(), values.max(), k + 1)
    edges = np.unique(edges)
    if edges.size == 1:
        edges = np.array([edges[0], edges[0] + 1])
    return edges


def _new_axes(ax: Optional[Axes], figsize) -> tuple[Figure, Axes]:
    if ax is not None:
        return ax.figure, ax
    fig, ax = plt.subplots(figsize=figsize)
    return fig, ax


def plot_map(
    gdf: gpd.GeoDataFrame,
    column: Optional[str] = None,
    ax: Optional[Axes] = None,
    title: Optional[str] = None,
    cmap: str = "viridis",
    legend: bool = True,
    scheme: Optional[str] = None,
    k: int = 5,
    figsize: tuple[float, float] = DEFAULT_FIGSIZE,
    **style,
) -> tuple[Figure, Axes]:
    """Draw ``gdf``, optionally as a choropleth of ``column``.

    Numeric columns get a continuous colour bar, or a stepped one when
    ``scheme`` is set. Other columns are drawn as categories.
    """
    fig, ax = _new_axes(ax, figsize)
    kwargs: dict[str, Any] = {"ax": ax, "edgecolor": "white", "linewidth": 0.5}
    kwargs.update(style)

    if column is not None:
        if column not in gdf.columns:
            raise ParameterError(f"Column '{column}' not found")
        kwargs.update(
            column=column,
            cmap=cmap,
            legend=legend,
            missing_kwds={"color": "lightgrey", "label": "No data"},
        )
        if pd.api.types.is_numeric_dtype(gdf[column]):
            if scheme is not None:
                edges = classify(gdf[column], scheme=scheme, k=k)
                kwargs["norm"] = BoundaryNorm(edges, matplotlib.colormaps[cmap].N)
            if legend:
                kwargs["legend_kwds"] = {"label": column, "shrink": 0.6}
        else:
            kwargs["categorical"] = True

    gdf.plot(**kwargs)
    _finish_axes(ax, title)
    return fig, ax


def plot_layers(
    layers: Sequence[MapLayer],
    title: Optional[str] = None,
    ax: Optional[Axes] = None,
    figsize: tuple[float, float] = DEFAULT_FIGSIZE,
) -> tuple[Figure, Axes]:
    """Draw layers bottom to top on one axes. All must share a CRS."""
    if not layers:
        raise ParameterError("plot_layers needs at least one layer")
    _crs_manager.ensure_common_crs(*(layer.data for layer in layers))

    fig, ax = _new_axes(ax, figsize)
    handles = []
    for layer in layers:
        kwargs = dict(layer.style)
        if layer.column is not None:
            kwargs["column"] = layer.column
        layer.data.plot(ax=ax, **kwargs)
        if layer.label is not None:
            handles.append(_legend_handle(layer))

    if handles:
        ax.legend(handles=handles, loc="lower right", fontsize="small", frameon=True)
    _finish_axes(ax, title)
    return fig, ax


def _legend_handle(layer: MapLayer):
    """Proxy artist for a layer, since geopandas collections have no legend handler."""
    style = layer.style
    color = style.get("color", style.get("facecolor", "C0"))
    geom_types = set(layer.data.geom_type.dropna())
    if geom_types <= {"Point", "MultiPoint"}:
        return Line2D(
            [], [], marker=style.get("marker", "o"), linestyle="", color=color,
            markersize=6, label=layer.label,
        )
    if geom_types <= {"LineString", "MultiLineString"}:
        return Line2D([], [], color=color, label=layer.label)
    return Patch(
        facecolor=color, edgecolor=style.get("edgecolor", "black"), label=layer.label
    )


def _finish_axes(ax: Axes, title: Optional[str]) -> None:
    if title:
        ax.set_title(title)
    ax.set_axis_off()
    ax.set_aspect("equal")


def add_north_arrow(ax: Axes, x: float = 0.95, y: float = 0.95, size: float = 0.08) -> None:
    """North arrow in axes coordinates; assumes north is up."""
    ax.annotate(
        "N",
        xy=(x, y),
        xytext=(x, y - size),
        xycoords="axes fraction",
        ha="center",
        va="center",
        fontsize=12,
        fontweight="bold",
        arrowprops={"facecolor": "black", "width": 4, "headwidth": 12},
    )


def _nice_length(target: float) -> float:
    """Largest 1, 2 or 5 times a power of ten not above ``target``."""
    exponent = math.floor(math.log10(target))
    base = 10 ** exponent
    for step in (5, 2, 1):
        if step * base <= target:
            return step * base
    return base


def add_scale_bar(
    ax: Axes,
    crs: Any,
    length: Optional[float] = None,
    location: tuple[float, float] = (0.05, 0.05),
    color: str = "black",
) -> float:
    """Draw a scale bar and return its length in metres.

    Args:
        ax: Axes holding data in ``crs``.
        crs: CRS of the plotted data; must be projected.
        length: Bar length in metres. Chosen from a 1-2-5 sequence near a
            fifth of the map width when omitted.
        location: Left end of the bar in axes coordinates.
        color: Bar and label colour.
    """
    crs = CRS.from_user_input(crs) if crs is not None else None
    if crs is None or not crs.is_projected:
        raise CRSError(
            "A scale bar needs data in a projected CRS",
            suggestion="Reproject the layers before plotting.",
        )
    metres_per_unit = crs.axis_info[0].unit_conversion_factor

    xmin, xmax = ax.get_xlim()
    ymin, ymax = ax.get_ylim()
    if length is None:
        length = _nice_length((xmax - xmin) * metres_per_unit / 5)
    length_units = length / metres_per_unit

    x0 = xmin + location[0] * (xmax - xmin)
    y0 = ymin + location[1] * (ymax - ymin)
    ax.plot([x0, x0 + length_units], [y0, y0], color=color, linewidth=3, solid_capstyle="butt")
    ax.set_xlim(xmin, xmax)
    ax.set_ylim(ymin, ymax)
    label = f"{length / 1000:g} km" if length >= 1000 else f"{length:g} m"
    ax.text(
        x0 + length_units / 2,
        y0 + 0.015 * (ymax - ymin),
        label,
        ha="center",
        va="bottom",
        fontsize=9,
        color=color,
    )
    return float(length)


def label_features(ax: Axes, gdf: gpd.GeoDataFrame, column: str, **text_kw) -> list:
    """Write ``column`` values at a point inside each feature."""
    options = {"fontsize": 7, "ha": "center", "va": "center"}
    options.update(text_kw)
    texts = []
    for point, value in zip(gdf.geometry.representative_point(), gdf[column]):
        if point is None or point.is_empty:
            continue
        texts.append(ax.text(point.x, point.y, str(value), **options))
    return texts


def save_map(
    fig: Figure,
    path: Union[str, Path],
    dpi: int = 300,
    close: bool = False,
) -> Path:
    """Export a figure as PNG, PDF or SVG."""
    path = Path(path)
    if path.suffix.lower() not in MAP_FORMATS:
        raise ParameterError(
            f"Unsupported map format: {path.suffix or '(no suffix)'}",
            suggestion=f"Use one of {', '.join(MAP_FORMATS)}.",
        )
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    logger.info("Map written to %s", path)
    if close:
        plt.close(fig)
    return path
