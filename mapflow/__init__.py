"""mapflow: reproducible spatial data workflows with geopandas.

Read vector data, get the CRS right, run overlays and joins, aggregate,
map the result and keep a provenance trail of every step.
"""

import logging

from mapflow.config import MapflowConfig, load_config
from mapflow.core.describe import describe, format_summary
from mapflow.core.pipeline import GeoPipeline, PipelineResult, geo_pipeline
from mapflow.core.provenance import ProvenanceRecord, ProvenanceTracker
from mapflow.core.task import spatial_task
from mapflow.crs.manager import CRSManager
from mapflow.errors import (
    ConfigError,
    CRSError,
    GeometryValidationError,
    MapflowError,
    ParameterError,
    UnsupportedFormatError,
)
from mapflow.io.loaders import DataLoader, load
from mapflow.io.writers import read_provenance, save
from mapflow.report.html import ReportSection, render_report
from mapflow.spatial.construct import (
    bounding_box,
    make_line,
    make_multi,
    make_point,
    make_polygon,
    points_from_xy,
    to_geodataframe,
)
from mapflow.spatial.operations import (
    add_area,
    add_density,
    buffer,
    clip,
    count_points_in_polygons,
    overlay,
    spatial_join,
    summarize_by_polygon,
    within_distance,
)
from mapflow.validation.geometry import GeometryValidator, validate_geometry
from mapflow.viz.maps import (
    MapLayer,
    add_north_arrow,
    add_scale_bar,
    label_features,
    plot_layers,
    plot_map,
    save_map,
)

__version__ = "0.3.0"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.getLogger(__name__).addHandler(logging.NullHandler())


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Send mapflow log records to stderr. Safe to call more than once."""
    logger = logging.getLogger(__name__)
    logger.setLevel(level)
    if not any(getattr(h, "_mapflow", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._mapflow = True
        logger.addHandler(handler)
    return logger


__all__ = [
    "add_area",
    "add_density",
    "add_north_arrow",
    "add_scale_bar",
    "bounding_box",
    "buffer",
    "clip",
    "configure_logging",
    "ConfigError",
    "count_points_in_polygons",
    "CRSError",
    "CRSManager",
    "DataLoader",
    "describe",
    "format_summary",
    "geo_pipeline",
    "GeoPipeline",
    "GeometryValidationError",
    "GeometryValidator",
    "label_features",
    "load",
    "load_config",
    "make_line",
    "make_multi",
    "make_point",
    "make_polygon",
    "MapflowConfig",
    "MapflowError",
    "MapLayer",
    "overlay",
    "ParameterError",
    "PipelineResult",
    "plot_layers",
    "plot_map",
    "points_from_xy",
    "ProvenanceRecord",
    "ProvenanceTracker",
    "read_provenance",
    "render_report",
    "ReportSection",
    "save",
    "save_map",
    "spatial_join",
    "spatial_task",
    "summarize_by_polygon",
    "to_geodataframe",
    "UnsupportedFormatError",
    "validate_geometry",
    "within_distance",
]
