"""Building geometries and GeoDataFrames from coordinates."""

from typing import Any, Optional, Sequence

import geopandas as gpd
import pandas as pd
from shapely.geometry import (
    LineString,
    MultiLineString,
    MultiPoint,
    MultiPolygon,
    Point,
    Polygon,
    box,
)
from shapely.geometry.base import BaseGeometry

from mapflow.errors import ParameterError


Coordinates = Sequence[Sequence[float]]


def make_point(x: float, y: float) -> Point:
    return Point(x, y)


def make_line(coords: Coordinates) -> LineString:
    if len(coords) < 2:
        raise ParameterError(f"A line needs at least 2 vertices, got {len(coords)}")
    return LineString(coords)


def make_polygon(shell: Coordinates, holes: Optional[list[Coordinates]] = None) -> Polygon:
    """Polygon from an exterior ring, closing the ring if needed."""
    shell = [tuple(c) for c in shell]
    distinct = list(dict.fromkeys(shell))
    if len(distinct) < 3:
        raise ParameterError(
            f"A polygon needs at least 3 distinct vertices, got {len(distinct)}"
        )
    if shell[0] != shell[-1]:
        shell.append(shell[0])
    return Polygon(shell, holes=holes)


_MULTI_TYPES = {
    "Point": MultiPoint,
    "LineString": MultiLineString,
    "Polygon": MultiPolygon,
}


def make_multi(geoms: Sequence[BaseGeometry]) -> BaseGeometry:
    """Combine same-typed single geometries into their Multi* counterpart."""
    if not geoms:
        raise ParameterError("Cannot build a multi-geometry from an empty list")
    types = {g.geom_type for g in geoms}
    if len(types) != 1 or next(iter(types)) not in _MULTI_TYPES:
        raise ParameterError(
            f"Multi-geometries need one of {sorted(_MULTI_TYPES)}, got {sorted(types)}"
        )
    return _MULTI_TYPES[types.pop()](list(geoms))


def points_from_xy(
    df: pd.DataFrame, x: str, y: str, crs: Any = "EPSG:4326"
) -> gpd.GeoDataFrame:
    """Point GeoDataFrame from a table with coordinate columns.

    The coordinate columns are kept as attributes.
    """
    for column in (x, y):
        if column not in df.columns:
            raise ParameterError(f"Coordinate column '{column}' not found")
    geometry = gpd.points_from_xy(df[x], df[y])
    return gpd.GeoDataFrame(df.copy(), geometry=geometry, crs=crs)


def to_geodataframe(
    records: Sequence[dict[str, Any]],
    geometries: Sequence[BaseGeometry],
    crs: Any = None,
) -> gpd.GeoDataFrame:
    if len(records) != len(geometries):
        raise ParameterError(
            f"Got {len(records)} records but {len(geometries)} geometries"
        )
    return gpd.GeoDataFrame(list(records), geometry=list(geometries), crs=crs)


def bounding_box(gdf: gpd.GeoDataFrame, buffer: float = 0) -> gpd.GeoDataFrame:
    """Extent of ``gdf`` as a one-row polygon layer in the same CRS."""
    minx, miny, maxx, maxy = gdf.total_bounds
    extent = box(minx - buffer, miny - buffer, maxx + buffer, maxy + buffer)
    return gpd.GeoDataFrame({"name": ["extent"]}, geometry=[extent], crs=gdf.crs)
