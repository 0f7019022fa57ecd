"""Tests for tracked pipelines, tasks and provenance records"""

import json
import logging
from pathlib import Path

import pytest
import geopandas as gpd
from shapely.geometry import Point, Polygon, box

from mapflow import geo_pipeline, spatial_task, load
from mapflow.core.pipeline import PipelineResult, get_active_tracker
from mapflow.core.provenance import ProvenanceRecord, ProvenanceTracker
from mapflow.errors import CRSError
from mapflow.spatial.operations import add_area, buffer


@pytest.fixture
def neighbourhoods_file(tmp_path):
    neighbourhoods = gpd.GeoDataFrame(
        {'AREA_NAME': ['Moss Park', 'Regent Park']},
        geometry=[
            box(630000, 4833000, 631000, 4834000),
            box(631000, 4833000, 632000, 4834000),
        ],
        crs='EPSG:26917'
    )
    path = tmp_path / "neighbourhoods.gpkg"
    neighbourhoods.to_file(path)
    return path


@pytest.fixture
def collisions_lonlat():
    return gpd.GeoDataFrame(
        {'ACCNUM': [7001, 7002]},
        geometry=[Point(-79.3841, 43.6535), Point(-79.3700, 43.6560)],
        crs='EPSG:4326'
    )


class TestGeoPipeline:

    def test_plain_call_is_untracked(self, neighbourhoods_file):
        seen = []

        @geo_pipeline(name="ksi_counts")
        def pipeline(path):
            seen.append(get_active_tracker())
            return load(path)

        result = pipeline(neighbourhoods_file)

        assert isinstance(result, gpd.GeoDataFrame)
        assert seen == [None]

    def test_run_binds_arguments(self, neighbourhoods_file):

        @geo_pipeline(name="ksi_counts")
        def pipeline(neighbourhoods_path, min_area=0.5):
            return load(neighbourhoods_path)

        result = pipeline.run(str(neighbourhoods_file))

        assert isinstance(result, PipelineResult)
        assert len(result.result) == 2
        first = result.provenance.records[0]
        assert first.operation_type == 'pipeline'
        assert first.parameters == {
            'neighbourhoods_path': str(neighbourhoods_file), 'min_area': 0.5,
        }

    def test_name_and_description_defaults(self):

        @geo_pipeline()
        def count_collisions():
            """Count KSI collisions per neighbourhood."""
            return 0

        result = count_collisions.run()

        assert count_collisions.name == 'count_collisions'
        assert count_collisions.__name__ == 'count_collisions'
        assert result.provenance.description == 'Count KSI collisions per neighbourhood.'

    def test_explicit_description(self):

        @geo_pipeline(name="documented", description="Density by ward")
        def pipeline():
            """Ignored."""

        assert pipeline.run().provenance.to_dict()['description'] == 'Density by ward'

    def test_environment_captured(self):

        @geo_pipeline(name="env")
        def pipeline():
            return None

        env = pipeline.run().provenance.to_dict()['environment']

        for key in ('python_version', 'geopandas_version', 'pyproj_version',
                    'matplotlib_version', 'platform'):
            assert key in env

    def test_tracking_disabled(self, neighbourhoods_file):
        seen = []

        @geo_pipeline(name="quiet", track_provenance=False)
        def pipeline(path):
            seen.append(get_active_tracker())
            return load(path)

        result = pipeline.run(neighbourhoods_file)

        assert len(result.result) == 2
        assert result.provenance.records == []
        assert result.provenance.end_time is not None
        assert seen == [None]

    def test_auto_save(self, neighbourhoods_file, tmp_path):
        provenance_dir = tmp_path / "provenance"

        @geo_pipeline(name="ksi_counts", auto_save_provenance=True, provenance_dir=provenance_dir)
        def pipeline(path):
            return load(path)

        pipeline.run(neighbourhoods_file)

        saved = list(provenance_dir.glob("ksi_counts_*_provenance.json"))
        assert len(saved) == 1
        data = json.loads(saved[0].read_text())
        assert [op['operation_name'] for op in data['operations']] == [
            'ksi_counts', 'load:neighbourhoods.gpkg'
        ]

    def test_failure_logged_and_raised(self, caplog):

        @geo_pipeline(name="empty_city")
        def pipeline():
            raise ValueError("no neighbourhoods to count")

        with caplog.at_level(logging.ERROR, logger='mapflow'):
            with pytest.raises(ValueError, match="no neighbourhoods"):
                pipeline.run()

        assert "Operation 'empty_city' failed" in caplog.text

    def test_failed_run_still_auto_saves(self, neighbourhoods_file, tmp_path):
        provenance_dir = tmp_path / "prov"

        @geo_pipeline(name="broken", auto_save_provenance=True, provenance_dir=provenance_dir)
        def pipeline(path):
            load(path)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            pipeline.run(neighbourhoods_file)

        data = json.loads(next(provenance_dir.glob("broken_*_provenance.json")).read_text())
        assert data['operations'][0]['error'] == 'boom'
        assert data['operations'][0]['status'] == 'failed'
        assert data['operations'][1]['status'] == 'success'

    def test_summary_and_repr(self, neighbourhoods_file):

        @geo_pipeline(name="ksi_counts")
        def pipeline(path):
            return load(path)

        result = pipeline.run(neighbourhoods_file)
        summary = result.get_summary()

        assert summary['total_operations'] == 2
        assert summary['failed_operations'] == 0
        assert [op['type'] for op in summary['operations']] == ['pipeline', 'io']
        assert repr(result).startswith(
            "PipelineResult(pipeline='ksi_counts', operations=2, failed=0"
        )


class TestSpatialTask:

    def test_outside_pipeline(self, collisions_lonlat):

        @spatial_task(name="first_collision")
        def first_collision(gdf):
            """Keep the first row."""
            return gdf.head(1)

        result = first_collision(collisions_lonlat)

        assert result['ACCNUM'].tolist() == [7001]
        assert first_collision.__name__ == 'first_collision'
        assert first_collision.__doc__ == 'Keep the first row.'

    def test_warn_geographic(self, collisions_lonlat, caplog):

        @spatial_task(name="buffer_collisions", warn_geographic=True)
        def buffer_collisions(gdf, distance):
            return gdf.buffer(distance)

        with caplog.at_level(logging.WARNING, logger='mapflow'):
            buffer_collisions(collisions_lonlat, 0.001)

        assert "'buffer_collisions'" in caplog.text
        assert "geographic CRS (EPSG:4326)" in caplog.text

    def test_strict_crs_rejects_degrees(self, collisions_lonlat):

        @spatial_task(name="buffer_collisions", strict_crs=True)
        def buffer_collisions(gdf, distance):
            return buffer(gdf, distance)

        with pytest.raises(CRSError, match="Cannot perform 'buffer_collisions'") as excinfo:
            buffer_collisions(collisions_lonlat, 100)

        assert 'projected' in excinfo.value.suggestion

    def test_strict_crs_accepts_metres(self, collisions_lonlat):

        @spatial_task(name="buffer_collisions", strict_crs=True)
        def buffer_collisions(gdf, distance):
            return buffer(gdf, distance)

        result = buffer_collisions(collisions_lonlat.to_crs('EPSG:26917'), 100)

        assert result.area.iloc[0] == pytest.approx(31416, rel=0.01)

    def test_validate_crs_looks_inside_lists(self, collisions_lonlat):

        @spatial_task(name="stack", validate_crs=True)
        def stack(layers):
            return layers[0]

        utm = collisions_lonlat.to_crs('EPSG:26917')

        with pytest.raises(CRSError, match="CRS mismatch"):
            stack([collisions_lonlat, utm])
        assert stack([utm, utm]) is utm

    def test_validate_geometries_checks_both_ends(self, caplog):
        bowtie = Polygon([(0, 0), (10, 10), (10, 0), (0, 10)])
        gdf = gpd.GeoDataFrame({'AREA_NAME': ['Bowtie']}, geometry=[bowtie], crs='EPSG:26917')

        @spatial_task(name="passthrough", validate_geometries=True)
        def passthrough(layer):
            return layer.copy()

        with caplog.at_level(logging.WARNING, logger='mapflow'):
            passthrough(gdf)

        assert "Task 'passthrough' input: 1 invalid, 0 null" in caplog.text
        assert "Task 'passthrough' output: 1 invalid, 0 null" in caplog.text

    def test_null_geometries_reported(self, collisions_lonlat, caplog):
        gaps = collisions_lonlat.copy()
        gaps.loc[1, 'geometry'] = None

        @spatial_task(name="count_rows", validate_geometries=True)
        def count_rows(gdf):
            return len(gdf)

        with caplog.at_level(logging.WARNING, logger='mapflow'):
            assert count_rows(gaps) == 2

        assert "0 invalid, 1 null geometries of 2" in caplog.text

    def test_failing_task_recorded(self, tmp_path):
        provenance_dir = tmp_path / "prov"

        @spatial_task(name="shrink")
        def shrink(distance):
            raise ValueError("negative distance")

        @geo_pipeline(name="shrinking", auto_save_provenance=True, provenance_dir=provenance_dir)
        def pipeline():
            return shrink(-5)

        with pytest.raises(ValueError):
            pipeline.run()

        data = json.loads(next(provenance_dir.glob("shrinking_*_provenance.json")).read_text())
        task = data['operations'][1]
        assert task['operation_name'] == 'shrink'
        assert task['error'] == 'negative distance'
        assert task['parameters'] == {'arg0': -5}


class TestTrackedSteps:
    """Steps inside .run() land in the pipeline's provenance"""

    def test_records_in_call_order(self, neighbourhoods_file):

        @spatial_task(name="add_km2")
        def add_km2(gdf):
            return add_area(gdf)

        @geo_pipeline(name="ksi_density")
        def pipeline(path):
            return add_km2(load(path))

        records = pipeline.run(neighbourhoods_file).provenance.records

        assert [r.operation_name for r in records] == [
            'ksi_density', 'load:neighbourhoods.gpkg', 'add_km2'
        ]
        assert records[2].inputs[0]['crs'] == 'EPSG:26917'
        assert 'area_km2' in records[2].outputs[0]['columns']
        assert records[1].outputs[0]['feature_count'] == 2

    def test_parameters_exclude_geodataframes(self, neighbourhoods_file):

        @spatial_task(name="area")
        def area(gdf, unit, column="area"):
            return add_area(gdf, column=column, unit=unit)

        @geo_pipeline(name="params")
        def pipeline(path):
            return area(load(path), 'ha', column='size')

        record = pipeline.run(neighbourhoods_file).provenance.records[-1]

        assert record.parameters == {'arg1': 'ha', 'column': 'size'}

    def test_tracker_scoped_to_run(self):
        seen = []

        @geo_pipeline(name="scoped")
        def pipeline():
            seen.append(get_active_tracker())

        pipeline.run()
        pipeline()

        assert seen[0].pipeline_name == 'scoped'
        assert seen[1] is None
        assert get_active_tracker() is None

    def test_saved_run_reloads(self, neighbourhoods_file, tmp_path):

        @geo_pipeline(name="roundtrip")
        def pipeline(path):
            return load(path)

        path = pipeline.run(neighbourhoods_file).save_provenance(tmp_path / "prov.json")
        loaded = ProvenanceTracker.load(path)

        assert [r.operation_name for r in loaded.records] == [
            'roundtrip', 'load:neighbourhoods.gpkg'
        ]
        assert loaded.records[1].outputs[0]['bounds'] == [630000, 4833000, 632000, 4834000]


class TestProvenanceTracker:

    def test_new_tracker(self):
        tracker = ProvenanceTracker("ksi_counts", description="Toronto KSI")

        assert tracker.records == []
        assert tracker.end_time is None
        assert tracker.to_dict()['description'] == 'Toronto KSI'

    def test_complete_adds_outputs(self):
        tracker = ProvenanceTracker("ksi_counts")
        record = tracker.start_operation("join", "task")

        tracker.complete_operation(record, 0.25, outputs=[{'feature_count': 6}])

        assert record.execution_time == 0.25
        assert record.outputs == [{'feature_count': 6}]
        assert record.status == 'success'

    def test_parameters_made_serializable(self, collisions_lonlat):
        tracker = ProvenanceTracker("ksi_counts")

        record = tracker.start_operation("load", "io", {
            'path': Path('data') / 'ksi.csv',
            'bbox': (1, 2, 3, 4),
            'layer': collisions_lonlat,
            'classes': {'Fatal'},
        })

        assert record.parameters == {
            'path': str(Path('data') / 'ksi.csv'),
            'bbox': [1, 2, 3, 4],
            'layer': '<GeoDataFrame: 2 features>',
            'classes': "{'Fatal'}",
        }
        json.dumps(record.to_dict())

    def test_error_marks_failed(self):
        tracker = ProvenanceTracker("ksi_counts")
        record = tracker.start_operation("join")

        tracker.record_error(record, ValueError("CRS mismatch"))

        assert record.to_dict()['status'] == 'failed'
        assert record.to_dict()['error'] == 'CRS mismatch'

    def test_record_from_dict_ignores_status(self):
        record = ProvenanceRecord.from_dict({
            'operation_name': 'join', 'operation_type': 'task', 'status': 'failed',
            'error': 'boom',
        })

        assert record.status == 'failed'
        assert record.parameters == {}

    def test_save_and_load(self, tmp_path):
        tracker = ProvenanceTracker("ksi_counts", description="Toronto KSI")
        record = tracker.start_operation("join")
        tracker.record_error(record, ValueError("boom"))
        tracker.complete_operation(record, 1.0)
        tracker.finalize()

        loaded = ProvenanceTracker.load(tracker.save(tmp_path / "nested" / "prov.json"))

        assert loaded.description == 'Toronto KSI'
        assert loaded.end_time == tracker.end_time
        assert loaded.records[0].error == 'boom'
        assert loaded.get_summary()['failed_operations'] == 1

    def test_summary(self):
        tracker = ProvenanceTracker("ksi_counts")
        tracker.complete_operation(tracker.start_operation("read"), 1.0)
        failing = tracker.start_operation("join")
        tracker.record_error(failing, ValueError("Error"))
        tracker.finalize()

        summary = tracker.get_summary()

        assert summary['total_operations'] == 2
        assert summary['failed_operations'] == 1
        assert summary['operations'][1] == {
            'name': 'join', 'type': 'task', 'time': 0.0, 'status': 'failed',
        }
