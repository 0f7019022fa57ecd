"""The ``@geo_pipeline`` decorator.

Decorated functions behave exactly as before when called directly. Calling
``.run(...)`` executes them under a :class:`ProvenanceTracker` and returns a
:class:`PipelineResult` carrying both the return value and the provenance.
"""

import contextvars
import functools
import inspect
import logging
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Union

from mapflow.core.provenance import ProvenanceTracker

logger = logging.getLogger(__name__)

_active_tracker: contextvars.ContextVar[Optional[ProvenanceTracker]] = contextvars.ContextVar(
    "mapflow_active_tracker", default=None
)


def get_active_tracker() -> Optional[ProvenanceTracker]:
    """Tracker of the pipeline currently running via ``.run()``, if any."""
    return _active_tracker.get()


@contextmanager
def tracking(tracker: ProvenanceTracker) -> Iterator[ProvenanceTracker]:
    token = _active_tracker.set(tracker)
    try:
        yield tracker
    finally:
        _active_tracker.reset(token)


class PipelineResult:
    """Return value of a tracked pipeline run."""

    def __init__(self, result: Any, provenance: ProvenanceTracker):
        self.result = result
        self.provenance = provenance

    def save_provenance(self, path: Union[str, Path]) -> Path:
        return self.provenance.save(path)

    def get_summary(self) -> dict[str, Any]:
        return self.provenance.get_summary()

    def __repr__(self) -> str:
        summary = self.get_summary()
        return (
            f"PipelineResult(pipeline={summary['pipeline_name']!r}, "
            f"operations={summary['total_operations']}, "
            f"failed={summary['failed_operations']}, "
            f"time={summary['total_execution_time']:.3f}s)"
        )


class GeoPipeline:
    """Callable wrapper produced by :func:`geo_pipeline`."""

    def __init__(
        self,
        func: Callable,
        name: Optional[str] = None,
        description: Optional[str] = None,
        track_provenance: bool = True,
        auto_save_provenance: bool = False,
        provenance_dir: Union[str, Path] = "provenance",
    ):
        self.func = func
        self.name = name or func.__name__
        self.description = description or inspect.getdoc(func)
        self.track_provenance = track_provenance
        self.auto_save_provenance = auto_save_provenance
        self.provenance_dir = Path(provenance_dir)
        functools.update_wrapper(self, func)

    def __call__(self, *args, **kwargs):
        return self.func(*args, **kwargs)

    def _bound_arguments(self, args, kwargs) -> dict[str, Any]:
        try:
            bound = inspect.signature(self.func).bind(*args, **kwargs)
        except TypeError:
            return {"args": list(args), **kwargs}
        bound.apply_defaults()
        return dict(bound.arguments)

    def run(self, *args, **kwargs) -> PipelineResult:
        """Execute with provenance tracking."""
        tracker = ProvenanceTracker(self.name, description=self.description)
        if not self.track_provenance:
            result = self.func(*args, **kwargs)
            tracker.finalize()
            return PipelineResult(result, tracker)

        record = tracker.start_operation(
            self.name, "pipeline", self._bound_arguments(args, kwargs)
        )
        logger.info("Running pipeline '%s'", self.name)
        start = time.perf_counter()
        with tracking(tracker):
            try:
                result = self.func(*args, **kwargs)
            except Exception as exc:
                tracker.record_error(record, exc)
                tracker.complete_operation(record, time.perf_counter() - start)
                tracker.finalize()
                if self.auto_save_provenance:
                    self._save(tracker)
                raise

        tracker.complete_operation(record, time.perf_counter() - start)
        tracker.finalize()
        logger.info(
            "Pipeline '%s' finished in %.3fs (%d operations)",
            self.name, record.execution_time, len(tracker.records),
        )
        if self.auto_save_provenance:
            self._save(tracker)
        return PipelineResult(result, tracker)

    def _save(self, tracker: ProvenanceTracker) -> Path:
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return tracker.save(self.provenance_dir / f"{self.name}_{stamp}_provenance.json")


def geo_pipeline(
    name: Optional[str] = None,
    description: Optional[str] = None,
    track_provenance: bool = True,
    auto_save_provenance: bool = False,
    provenance_dir: Union[str, Path] = "provenance",
) -> Callable[[Callable], GeoPipeline]:
    """Turn a function into a trackable pipeline.

    Args:
        name: Pipeline name used in provenance records and file names.
        description: Free text stored with the provenance. Defaults to the
            function docstring.
        track_provenance: Record operations when run via ``.run()``.
        auto_save_provenance: Write provenance JSON after every ``.run()``.
        provenance_dir: Directory for auto-saved provenance.

    Example:
        >>> @geo_pipeline(name="ksi_counts")
        ... def count_ksi(collisions_path, neighbourhoods_path):
        ...     ...
        >>> result = count_ksi.run("ksi.csv", "neighbourhoods.geojson")
        >>> result.save_provenance("ksi_counts.json")
    """

    def decorator(func: Callable) -> GeoPipeline:
        return GeoPipeline(
            func,
            name=name,
            description=description,
            track_provenance=track_provenance,
            auto_save_provenance=auto_save_provenance,
            provenance_dir=provenance_dir,
        )

    return decorator
