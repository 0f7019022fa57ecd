"""Provenance tracking for pipeline runs.

A :class:`ProvenanceTracker` collects one :class:`ProvenanceRecord` per
operation (the pipeline itself, each task, each file read or written) along
with the software environment, so a result can be traced back to its inputs.
"""

import json
import logging
import platform
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import geopandas as gpd
import matplotlib
import pandas as pd
import pyproj
import shapely

logger = logging.getLogger(__name__)


def capture_environment() -> dict[str, str]:
    return {
        "python_version": platform.python_version(),
        "geopandas_version": gpd.__version__,
        "shapely_version": shapely.__version__,
        "pyproj_version": pyproj.__version__,
        "pandas_version": pd.__version__,
        "matplotlib_version": matplotlib.__version__,
        "platform": platform.platform(),
    }


def _jsonable(value: Any) -> Any:
    """Reduce parameter values to something json can write."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, gpd.GeoDataFrame):
        return f"<GeoDataFrame: {len(value)} features>"
    return repr(value)


@dataclass
class ProvenanceRecord:
    operation_name: str
    operation_type: str = "task"
    parameters: dict[str, Any] = field(default_factory=dict)
    inputs: list[dict[str, Any]] = field(default_factory=list)
    outputs: list[dict[str, Any]] = field(default_factory=list)
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())
    execution_time: Optional[float] = None
    error: Optional[str] = None

    @property
    def status(self) -> str:
        return "success" if self.error is None else "failed"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProvenanceRecord":
        data = {k: v for k, v in data.items() if k != "status"}
        return cls(**data)


class ProvenanceTracker:
    """Collects operation records for one pipeline run."""

    def __init__(self, pipeline_name: str, description: Optional[str] = None):
        self.pipeline_name = pipeline_name
        self.description = description
        self.records: list[ProvenanceRecord] = []
        self.start_time = datetime.now()
        self.end_time: Optional[datetime] = None
        self.environment = capture_environment()

    def start_operation(
        self,
        operation_name: str,
        operation_type: str = "task",
        parameters: Optional[dict[str, Any]] = None,
    ) -> ProvenanceRecord:
        record = ProvenanceRecord(
            operation_name=operation_name,
            operation_type=operation_type,
            parameters=_jsonable(parameters or {}),
        )
        self.records.append(record)
        logger.debug("Started %s '%s'", operation_type, operation_name)
        return record

    def complete_operation(
        self,
        record: ProvenanceRecord,
        execution_time: float,
        outputs: Optional[list[dict[str, Any]]] = None,
    ) -> None:
        record.execution_time = execution_time
        if outputs:
            record.outputs.extend(outputs)

    def record_error(self, record: ProvenanceRecord, error: BaseException) -> None:
        record.error = str(error)
        logger.error("Operation '%s' failed: %s", record.operation_name, error)

    def finalize(self) -> None:
        self.end_time = datetime.now()

    @property
    def total_execution_time(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "pipeline_name": self.pipeline_name,
            "description": self.description,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "total_execution_time": self.total_execution_time,
            "environment": self.environment,
            "operations": [record.to_dict() for record in self.records],
        }

    def save(self, path: Union[str, Path]) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info("Provenance written to %s", path)
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ProvenanceTracker":
        with open(path) as f:
            data = json.load(f)

        tracker = cls(data["pipeline_name"], description=data.get("description"))
        tracker.start_time = datetime.fromisoformat(data["start_time"])
        if data.get("end_time"):
            tracker.end_time = datetime.fromisoformat(data["end_time"])
        tracker.environment = data.get("environment", {})
        tracker.records = [ProvenanceRecord.from_dict(op) for op in data.get("operations", [])]
        return tracker

    def get_summary(self) -> dict[str, Any]:
        return {
            "pipeline_name": self.pipeline_name,
            "total_operations": len(self.records),
            "failed_operations": sum(1 for r in self.records if r.error is not None),
            "total_execution_time": self.total_execution_time,
            "operations": [
                {
                    "name": r.operation_name,
                    "type": r.operation_type,
                    "time": r.execution_time or 0.0,
                    "status": r.status,
                }
                for r in self.records
            ],
        }
