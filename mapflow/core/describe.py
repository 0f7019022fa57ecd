"""Dataset summaries used for inspection and provenance."""

from typing import Any

import geopandas as gpd

from mapflow.crs.manager import CRSManager


def describe(gdf: gpd.GeoDataFrame) -> dict[str, Any]:
    """Summarize a GeoDataFrame.

    Returns a JSON-serializable dict with feature count, attribute columns,
    geometry type counts, CRS details, bounds and null/empty counts.
    """
    geometry = gdf.geometry
    crs_info = CRSManager().describe_crs(gdf.crs)
    present = geometry[~geometry.isna() & ~geometry.is_empty]

    bounds = None
    if len(present):
        bounds = [float(v) for v in present.total_bounds]

    summary = {
        "feature_count": int(len(gdf)),
        "columns": [str(c) for c in gdf.columns if c != geometry.name],
        "geometry_types": {
            str(k): int(v) for k, v in geometry.geom_type.dropna().value_counts().items()
        },
        "crs": gdf.crs.to_string() if gdf.crs is not None else None,
        "crs_units": crs_info["units"],
        "is_geographic": crs_info["is_geographic"],
        "bounds": bounds,
        "null_geometries": int(geometry.isna().sum()),
        "empty_geometries": int((geometry.is_empty & ~geometry.isna()).sum()),
    }
    if "source_file" in gdf.attrs:
        summary["source_file"] = gdf.attrs["source_file"]
    return summary


def format_summary(gdf: gpd.GeoDataFrame) -> str:
    info = describe(gdf)
    types = ", ".join(f"{k} ({v})" for k, v in info["geometry_types"].items()) or "none"
    bounds = info["bounds"]
    lines = [
        f"Features:   {info['feature_count']}",
        f"Geometry:   {types}",
        f"CRS:        {info['crs'] or 'undefined'} (units: {info['crs_units']})",
        "Bounds:     "
        + ("empty" if bounds is None else ", ".join(f"{v:.6g}" for v in bounds)),
        f"Columns:    {', '.join(info['columns']) or 'none'}",
    ]
    if info["null_geometries"] or info["empty_geometries"]:
        lines.append(
            f"Missing:    {info['null_geometries']} null, "
            f"{info['empty_geometries']} empty geometries"
        )
    if "source_file" in info:
        lines.insert(0, f"Source:     {info['source_file']}")
    return "\n".join(lines)
