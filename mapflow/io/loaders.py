"""Reading vector data and coordinate tables into GeoDataFrames."""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import geopandas as gpd
import pandas as pd
from shapely import wkt

from mapflow.core.describe import describe
from mapflow.core.pipeline import get_active_tracker
from mapflow.crs.manager import CRSManager
from mapflow.errors import ParameterError, UnsupportedFormatError
from mapflow.spatial.construct import points_from_xy
from mapflow.validation.geometry import validate_geometry

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# lower-cased (x, y) column pairs tried in order
COORDINATE_COLUMNS = [
    ("longitude", "latitude"),
    ("lon", "lat"),
    ("long", "lat"),
    ("lng", "lat"),
    ("x", "y"),
]
WKT_COLUMNS = ("geometry", "wkt", "geom")


class DataLoader:
    """Dispatches files to a reader by suffix."""

    FORMATS = {
        ".geojson": "GeoJSON",
        ".json": "GeoJSON",
        ".shp": "ESRI Shapefile",
        ".gpkg": "GPKG",
        ".csv": "CSV",
    }

    def __init__(self):
        self.crs_manager = CRSManager()

    def detect_format(self, path: Path) -> str:
        suffix = path.suffix.lower()
        if suffix not in self.FORMATS:
            raise UnsupportedFormatError(
                f"Unsupported format: {suffix or '(no suffix)'}",
                suggestion=f"Supported suffixes: {', '.join(sorted(self.FORMATS))}",
            )
        return self.FORMATS[suffix]

    def load(
        self,
        path: PathLike,
        layer: Optional[str] = None,
        crs: Any = None,
        x: Optional[str] = None,
        y: Optional[str] = None,
        **kwargs,
    ) -> gpd.GeoDataFrame:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"File not found: {path}")
        fmt = self.detect_format(path)

        if fmt == "CSV":
            gdf = self._read_csv(path, crs=crs, x=x, y=y, **kwargs)
        else:
            if layer is not None:
                kwargs["layer"] = layer
            gdf = gpd.read_file(path, **kwargs)
            if crs is not None:
                gdf = self.crs_manager.set_crs(gdf, crs)

        if gdf.crs is None:
            logger.warning("%s has no CRS defined", path.name)

        gdf.attrs.update(
            {
                "source_file": str(path.resolve()),
                "source_format": fmt,
                "loaded_at": datetime.now().isoformat(),
                "feature_count": len(gdf),
                "crs": gdf.crs.to_string() if gdf.crs is not None else None,
            }
        )
        logger.info("Loaded %d features from %s", len(gdf), path.name)
        return gdf

    def _read_csv(
        self,
        path: Path,
        crs: Any = None,
        x: Optional[str] = None,
        y: Optional[str] = None,
        **kwargs,
    ) -> gpd.GeoDataFrame:
        if (x is None) != (y is None):
            raise ParameterError(
                "Pass both x= and y=, or neither to detect them",
                details={"x": x, "y": y},
            )
        df = pd.read_csv(path, **kwargs)

        if x is not None:
            missing_columns = [c for c in (x, y) if c not in df.columns]
            if missing_columns:
                raise ParameterError(
                    f"Coordinate columns not found in {path.name}: "
                    f"{', '.join(missing_columns)}",
                    suggestion=f"Available columns: {', '.join(map(str, df.columns))}",
                )
        else:
            lowered = {c.lower(): c for c in df.columns}
            for x_name, y_name in COORDINATE_COLUMNS:
                if x_name in lowered and y_name in lowered:
                    x, y = lowered[x_name], lowered[y_name]
                    break

        if x is not None and y is not None:
            missing = df[x].isna() | df[y].isna()
            if missing.any():
                logger.warning(
                    "Dropping %d rows of %s with missing coordinates",
                    int(missing.sum()), path.name,
                )
                df = df[~missing]
            return points_from_xy(df, x, y, crs=crs or "EPSG:4326")

        for column in df.columns:
            if column.lower() in WKT_COLUMNS:
                geometry = df[column].map(lambda s: wkt.loads(s) if isinstance(s, str) else None)
                return gpd.GeoDataFrame(df.drop(columns=column), geometry=list(geometry), crs=crs)

        raise ParameterError(
            f"No coordinate or WKT geometry columns found in {path.name}",
            suggestion="Pass x= and y= to name the coordinate columns.",
        )


def load(
    path: PathLike,
    layer: Optional[str] = None,
    crs: Any = None,
    x: Optional[str] = None,
    y: Optional[str] = None,
    validate: bool = False,
    auto_fix: bool = False,
    **kwargs,
) -> gpd.GeoDataFrame:
    """Read a GeoJSON, Shapefile, GeoPackage or CSV file.

    Args:
        path: File to read.
        layer: Layer name for multi-layer sources (GeoPackage).
        crs: CRS to declare for data stored without one. For CSV
            coordinates this defaults to EPSG:4326.
        x: Name of the CSV x/longitude column (auto-detected if omitted).
        y: Name of the CSV y/latitude column (auto-detected if omitted).
        validate: Check geometry validity after reading.
        auto_fix: Repair invalid geometries (implies ``validate``).
        **kwargs: Passed to ``geopandas.read_file`` or ``pandas.read_csv``.

    Returns:
        GeoDataFrame with source metadata in ``attrs``.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        UnsupportedFormatError: For unknown file suffixes.
    """
    tracker = get_active_tracker()
    record = None
    if tracker is not None:
        record = tracker.start_operation(
            f"load:{Path(path).name}", "io", {"path": path, "layer": layer, "crs": crs}
        )

    start = time.perf_counter()
    try:
        gdf = DataLoader().load(path, layer=layer, crs=crs, x=x, y=y, **kwargs)
        if validate or auto_fix:
            attrs = dict(gdf.attrs)
            gdf = validate_geometry(gdf, auto_fix=auto_fix)
            gdf.attrs.update(attrs)
    except Exception as exc:
        if record is not None:
            tracker.record_error(record, exc)
            tracker.complete_operation(record, time.perf_counter() - start)
        raise

    if record is not None:
        tracker.complete_operation(record, time.perf_counter() - start, outputs=[describe(gdf)])
    return gdf
