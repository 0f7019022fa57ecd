from mapflow.core.describe import describe, format_summary
from mapflow.core.pipeline import GeoPipeline, PipelineResult, geo_pipeline
from mapflow.core.provenance import ProvenanceRecord, ProvenanceTracker
from mapflow.core.task import spatial_task

__all__ = [
    "describe",
    "format_summary",
    "geo_pipeline",
    "GeoPipeline",
    "PipelineResult",
    "ProvenanceRecord",
    "ProvenanceTracker",
    "spatial_task",
]
