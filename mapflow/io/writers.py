"""Writing GeoDataFrames with their provenance.

GeoPackages carry provenance inside the file, in a ``mapflow_provenance``
table. Every other format gets a ``<file>.provenance.json`` sidecar.
"""

import json
import logging
import sqlite3
import time
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import geopandas as gpd
import pandas as pd

from mapflow.core.describe import describe
from mapflow.core.pipeline import get_active_tracker
from mapflow.errors import UnsupportedFormatError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

DRIVERS = {
    ".geojson": "GeoJSON",
    ".json": "GeoJSON",
    ".gpkg": "GPKG",
    ".shp": "ESRI Shapefile",
    ".csv": "CSV",
}
PROVENANCE_TABLE = "mapflow_provenance"


def _sidecar_path(path: Path) -> Path:
    return path.with_name(path.name + ".provenance.json")


def _embed_provenance(path: Path, provenance: dict[str, Any]) -> None:
    with closing(sqlite3.connect(str(path))) as conn:
        with conn:
            conn.execute(
                f"CREATE TABLE IF NOT EXISTS {PROVENANCE_TABLE} ("
                "id INTEGER PRIMARY KEY AUTOINCREMENT, "
                "timestamp TEXT NOT NULL, "
                "provenance_json TEXT NOT NULL)"
            )
            conn.execute(
                f"INSERT INTO {PROVENANCE_TABLE} (timestamp, provenance_json) VALUES (?, ?)",
                (datetime.now().isoformat(), json.dumps(provenance)),
            )


def _write_sidecar(path: Path, provenance: dict[str, Any]) -> Path:
    sidecar = _sidecar_path(path)
    with open(sidecar, "w") as f:
        json.dump(
            {
                "data_file": path.name,
                "saved_at": datetime.now().isoformat(),
                "provenance": provenance,
            },
            f,
            indent=2,
        )
    return sidecar


def _write_csv(gdf: gpd.GeoDataFrame, path: Path) -> None:
    table = pd.DataFrame(gdf.drop(columns=gdf.geometry.name))
    table["geometry"] = gdf.geometry.to_wkt()
    table.to_csv(path, index=False)


def save(
    gdf: gpd.GeoDataFrame,
    path: PathLike,
    provenance: Optional[dict[str, Any]] = None,
    driver: Optional[str] = None,
    layer: Optional[str] = None,
) -> Path:
    """Write ``gdf`` to disk, optionally with provenance metadata.

    Args:
        gdf: Data to write.
        path: Output file; the suffix picks the format unless ``driver`` is
            given.
        provenance: Provenance dict, e.g. ``result.provenance.to_dict()``.
        driver: Explicit OGR driver name.
        layer: Layer name for GeoPackage output.

    Returns:
        Path of the written data file.

    Raises:
        UnsupportedFormatError: When the suffix has no known driver.
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if driver is None:
        if suffix not in DRIVERS:
            raise UnsupportedFormatError(
                f"Unsupported format: {suffix or '(no suffix)'}",
                suggestion=f"Supported suffixes: {', '.join(sorted(DRIVERS))}",
            )
        driver = DRIVERS[suffix]

    tracker = get_active_tracker()
    record = None
    if tracker is not None:
        record = tracker.start_operation(
            f"save:{path.name}", "io", {"path": path, "driver": driver}
        )
        record.inputs.append(describe(gdf))

    start = time.perf_counter()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if driver == "CSV":
            _write_csv(gdf, path)
        else:
            kwargs = {"driver": driver}
            if layer is not None:
                kwargs["layer"] = layer
            gdf.to_file(path, **kwargs)

        if provenance is not None:
            if driver == "GPKG":
                _embed_provenance(path, provenance)
            else:
                _write_sidecar(path, provenance)
    except Exception as exc:
        if record is not None:
            tracker.record_error(record, exc)
            tracker.complete_operation(record, time.perf_counter() - start)
        raise

    if record is not None:
        tracker.complete_operation(record, time.perf_counter() - start)
    logger.info("Saved %d features to %s (%s)", len(gdf), path, driver)
    return path


def read_provenance(path: PathLike) -> list[dict[str, Any]]:
    """Provenance stored with a data file, oldest first."""
    path = Path(path)
    if path.suffix.lower() == ".gpkg" and path.exists():
        with closing(sqlite3.connect(str(path))) as conn:
            exists = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name=?",
                (PROVENANCE_TABLE,),
            ).fetchone()
            if exists is None:
                return []
            rows = conn.execute(
                f"SELECT provenance_json FROM {PROVENANCE_TABLE} ORDER BY id"
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    sidecar = _sidecar_path(path)
    if not sidecar.exists():
        return []
    with open(sidecar) as f:
        return [json.load(f)["provenance"]]
