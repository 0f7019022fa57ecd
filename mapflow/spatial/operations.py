"""Spatial operations with explicit CRS handling.

Every function that combines two layers refuses to guess a CRS: inputs must
already match, or ``target_crs`` says where both go.
"""

import logging
from typing import Any

import geopandas as gpd
import numpy as np
import pandas as pd

from mapflow.crs.manager import CRSManager
from mapflow.errors import CRSError, ParameterError, format_parameter_error
from mapflow.validation.geometry import GeometryValidator

logger = logging.getLogger(__name__)

OVERLAY_METHODS = ("intersection", "union", "difference", "symmetric_difference", "identity")
AREA_UNITS = {"m2": 1.0, "km2": 1e6, "ha": 1e4}

_crs_manager = CRSManager()
_validator = GeometryValidator()


def buffer(
    gdf: gpd.GeoDataFrame,
    distance: float,
    resolution: int = 16,
    strict_crs: bool = False,
) -> gpd.GeoDataFrame:
    """Buffer every geometry, keeping attributes.

    ``distance`` is in CRS units. For geographic data that means degrees, so
    a warning is logged (or ``CRSError`` raised with ``strict_crs``).
    """
    if strict_crs and _crs_manager.is_geographic(gdf.crs):
        raise CRSError(
            f"Cannot buffer data in a geographic CRS ({gdf.crs.to_string()})",
            suggestion="Reproject to a projected CRS so distance is in metres.",
        )
    _crs_manager.warn_if_geographic(gdf, "buffer")

    result = gdf.copy()
    result[gdf.geometry.name] = gdf.geometry.buffer(distance, resolution=resolution)
    logger.debug("Buffered %d features by %s", len(result), distance)
    return result


def spatial_join(
    left: gpd.GeoDataFrame,
    right: gpd.GeoDataFrame,
    how: str = "inner",
    predicate: str = "intersects",
    target_crs: Any = None,
    **kwargs,
) -> gpd.GeoDataFrame:
    """Attach attributes of ``right`` to ``left`` features by location."""
    left, right = _crs_manager.ensure_common_crs(left, right, target_crs=target_crs)
    result = gpd.sjoin(left, right, how=how, predicate=predicate, **kwargs)
    logger.info(
        "Spatial join (%s, %s): %d left x %d right -> %d rows",
        how, predicate, len(left), len(right), len(result),
    )
    return result


def overlay(
    df1: gpd.GeoDataFrame,
    df2: gpd.GeoDataFrame,
    how: str = "intersection",
    target_crs: Any = None,
    **kwargs,
) -> gpd.GeoDataFrame:
    """Geometric set operation between two polygon layers.

    Invalid input geometries are repaired first so GEOS does not fail halfway.
    """
    if how not in OVERLAY_METHODS:
        raise ParameterError(format_parameter_error("how", how, list(OVERLAY_METHODS)))
    df1, df2 = _crs_manager.ensure_common_crs(df1, df2, target_crs=target_crs)
    df1 = _validator.fix_invalid(df1)
    df2 = _validator.fix_invalid(df2)

    result = gpd.overlay(df1, df2, how=how, **kwargs)
    result = _validator.fix_invalid(result)
    logger.info("Overlay (%s): %d features", how, len(result))
    return result


def clip(
    gdf: gpd.GeoDataFrame,
    mask: gpd.GeoDataFrame,
    target_crs: Any = None,
) -> gpd.GeoDataFrame:
    """Cut ``gdf`` to the area covered by ``mask``, keeping row order."""
    gdf, mask = _crs_manager.ensure_common_crs(gdf, mask, target_crs=target_crs)
    clipped = gpd.clip(gdf.reset_index(drop=True), mask).sort_index()
    result = clipped.set_axis(gdf.index[clipped.index])
    logger.info("Clipped %d features to %d", len(gdf), len(result))
    return result


def count_points_in_polygons(
    points: gpd.GeoDataFrame,
    polygons: gpd.GeoDataFrame,
    column: str = "count",
    predicate: str = "within",
    target_crs: Any = None,
) -> gpd.GeoDataFrame:
    """Number of ``points`` falling in each polygon.

    Returns a copy of ``polygons`` (in the common CRS) with an integer
    ``column``; polygons with no points get 0.
    """
    points, polygons = _crs_manager.ensure_common_crs(points, polygons, target_crs=target_crs)
    # positional labels keep the sjoin column name independent of the index name
    areas = polygons[[polygons.geometry.name]].reset_index(drop=True)
    joined = gpd.sjoin(
        points[[points.geometry.name]], areas, how="inner", predicate=predicate
    )
    counts = joined.groupby("index_right").size()

    result = polygons.copy()
    result[column] = counts.reindex(range(len(result)), fill_value=0).astype(int).to_numpy()
    return result


def summarize_by_polygon(
    points: gpd.GeoDataFrame,
    polygons: gpd.GeoDataFrame,
    by: str,
    aggregations: dict[str, tuple[str, Any]],
    target_crs: Any = None,
    predicate: str = "within",
) -> gpd.GeoDataFrame:
    """Aggregate point attributes per polygon.

    Args:
        points: Features to aggregate.
        polygons: Areas to aggregate into; ``by`` must identify each row.
        by: Key column of ``polygons``.
        aggregations: pandas named aggregations, e.g.
            ``{"fatal": ("FATAL_NO", "count")}``.
        target_crs: CRS to align both inputs to.
        predicate: Spatial predicate for assigning points to polygons.

    Returns:
        ``polygons`` with one column per aggregation. Count-like results for
        empty polygons are 0; other statistics are NaN.
    """
    if by not in polygons.columns:
        raise ParameterError(f"Key column '{by}' not found in polygons")
    points, polygons = _crs_manager.ensure_common_crs(points, polygons, target_crs=target_crs)

    joined = gpd.sjoin(
        points, polygons[[by, polygons.geometry.name]], how="inner", predicate=predicate
    )
    # sjoin suffixes the key when points carry a column of the same name
    key = f"{by}_right" if by in points.columns else by
    stats = pd.DataFrame(joined).groupby(key).agg(**aggregations)
    stats.index.name = by

    result = polygons.merge(stats, how="left", left_on=by, right_index=True)
    for out_column, (_, func) in aggregations.items():
        if func in ("count", "size", "nunique", "sum"):
            result[out_column] = result[out_column].fillna(0)
            if func != "sum":
                result[out_column] = result[out_column].astype(int)
    return result


def add_area(
    gdf: gpd.GeoDataFrame, column: str = "area_km2", unit: str = "km2"
) -> gpd.GeoDataFrame:
    """Add polygon areas in ``unit`` (m2, km2 or ha)."""
    if unit not in AREA_UNITS:
        raise ParameterError(format_parameter_error("unit", unit, list(AREA_UNITS)))
    if not _crs_manager.is_projected(gdf.crs):
        raise CRSError(
            "Areas need a projected CRS",
            suggestion="Reproject with to_crs() to an equal-area or local UTM CRS.",
        )
    result = gdf.copy()
    result[column] = gdf.geometry.area / AREA_UNITS[unit]
    return result


def add_density(
    gdf: gpd.GeoDataFrame,
    count_column: str,
    area_column: str = "area_km2",
    column: str = "density",
) -> gpd.GeoDataFrame:
    """``count_column`` per unit of ``area_column``; zero area gives NaN."""
    result = gdf.copy()
    area = result[area_column].replace(0, np.nan)
    result[column] = result[count_column] / area
    return result


def within_distance(
    points: gpd.GeoDataFrame,
    target: gpd.GeoDataFrame,
    distance: float,
) -> gpd.GeoDataFrame:
    """Features of ``points`` no further than ``distance`` from ``target``."""
    points, target = _crs_manager.ensure_common_crs(points, target)
    if _crs_manager.is_geographic(points.crs):
        raise CRSError(
            "Distance selection needs a projected CRS",
            suggestion="Reproject both layers so distance is in metres.",
        )
    zone = target.geometry.buffer(distance).union_all()
    return points[points.geometry.intersects(zone)].copy()
