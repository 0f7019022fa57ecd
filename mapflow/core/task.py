"""The ``@spatial_task`` decorator: CRS and geometry checks around a step."""

import functools
import logging
import time
from typing import Any, Callable, Iterable, Optional

import geopandas as gpd

from mapflow.core.describe import describe
from mapflow.core.pipeline import get_active_tracker
from mapflow.crs.manager import CRSManager
from mapflow.errors import CRSError
from mapflow.validation.geometry import GeometryValidator

logger = logging.getLogger(__name__)


def _geodataframes(values: Iterable[Any]) -> list[gpd.GeoDataFrame]:
    """GeoDataFrames among ``values``, looking one level into tuples/lists."""
    found = []
    for value in values:
        if isinstance(value, gpd.GeoDataFrame):
            found.append(value)
        elif isinstance(value, (tuple, list)):
            found.extend(v for v in value if isinstance(v, gpd.GeoDataFrame))
    return found


def _plain_parameters(args, kwargs) -> dict[str, Any]:
    params = {f"arg{i}": a for i, a in enumerate(args) if not isinstance(a, gpd.GeoDataFrame)}
    params.update({k: v for k, v in kwargs.items() if not isinstance(v, gpd.GeoDataFrame)})
    return params


def spatial_task(
    name: Optional[str] = None,
    validate_geometries: bool = False,
    warn_geographic: bool = False,
    strict_crs: bool = False,
    validate_crs: bool = False,
) -> Callable[[Callable], Callable]:
    """Wrap one pipeline step with checks on its GeoDataFrame arguments.

    Args:
        name: Step name for logs and provenance. Defaults to the function name.
        validate_geometries: Log a warning when inputs or outputs hold
            invalid geometries.
        warn_geographic: Log a warning when an input is in a geographic CRS.
        strict_crs: Raise instead of warning for geographic inputs.
        validate_crs: Require every input to share one CRS.

    When the step runs inside ``GeoPipeline.run`` it appends a provenance
    record with its parameters, input/output summaries and timing.
    """
    crs_manager = CRSManager()
    validator = GeometryValidator()

    def decorator(func: Callable) -> Callable:
        task_name = name or func.__name__

        def check_geometries(gdfs: list[gpd.GeoDataFrame], stage: str) -> None:
            for gdf in gdfs:
                report = validator.get_validation_report(gdf)
                if report["invalid_count"] or report["null_count"]:
                    logger.warning(
                        "Task '%s' %s: %d invalid, %d null geometries of %d (%s)",
                        task_name, stage, report["invalid_count"], report["null_count"],
                        report["total_features"], report["issues"],
                    )

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            inputs = _geodataframes(list(args) + list(kwargs.values()))

            if strict_crs:
                for gdf in inputs:
                    if crs_manager.is_geographic(gdf.crs):
                        raise CRSError(
                            f"Cannot perform '{task_name}' on data in a geographic "
                            f"CRS ({gdf.crs.to_string()})",
                            suggestion="Reproject to a projected CRS before this step.",
                        )
            elif warn_geographic:
                for gdf in inputs:
                    crs_manager.warn_if_geographic(gdf, task_name)

            if validate_crs and inputs:
                crs_manager.ensure_common_crs(*inputs)

            if validate_geometries:
                check_geometries(inputs, "input")

            tracker = get_active_tracker()
            record = None
            if tracker is not None:
                record = tracker.start_operation(
                    task_name, "task", _plain_parameters(args, kwargs)
                )
                record.inputs.extend(describe(gdf) for gdf in inputs)

            start = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                if record is not None:
                    tracker.record_error(record, exc)
                    tracker.complete_operation(record, time.perf_counter() - start)
                raise
            elapsed = time.perf_counter() - start

            outputs = _geodataframes([result])
            if validate_geometries:
                check_geometries(outputs, "output")
            if record is not None:
                tracker.complete_operation(
                    record, elapsed, outputs=[describe(gdf) for gdf in outputs]
                )
            logger.debug("Task '%s' finished in %.3fs", task_name, elapsed)
            return result

        return wrapper

    return decorator
