"""End-to-end run of the Toronto KSI walkthrough on the bundled sample data"""

import json
import sqlite3

import pytest

from mapflow.config import load_config
from mapflow.io.loaders import load
from mapflow.io.writers import read_provenance
from mapflow.tutorial import COLLISIONS_FILE, NEIGHBOURHOODS_FILE, run_toronto_walkthrough


EXPECTED_KSI = {
    'Bay Street Corridor': 6,
    'Kensington-Chinatown': 3,
    'Moss Park': 5,
    'Annex': 2,
    'University': 3,
    'Church-Yonge Corridor': 5,
}


@pytest.fixture
def fast_config():
    return load_config(overrides={'maps': {'dpi': 40}})


@pytest.fixture(scope="module")
def tracked_run(tmp_path_factory):
    output_dir = tmp_path_factory.mktemp("toronto")
    config = load_config(overrides={'maps': {'dpi': 40}})
    result = run_toronto_walkthrough.run(output_dir=output_dir, config=config)
    return result, output_dir


@pytest.mark.integration
class TestBundledData:

    def test_collisions_loaded_as_points(self):
        collisions = load(COLLISIONS_FILE)

        # one record has no coordinates
        assert len(collisions) == 29
        assert collisions.crs.to_string() == 'EPSG:4326'
        assert set(collisions.geom_type) == {'Point'}

    def test_neighbourhoods_loaded_as_polygons(self):
        neighbourhoods = load(NEIGHBOURHOODS_FILE)

        assert len(neighbourhoods) == 6
        assert neighbourhoods.crs.to_epsg() == 4326
        assert set(neighbourhoods['AREA_NAME']) == set(EXPECTED_KSI)


@pytest.mark.integration
class TestWalkthroughResults:

    def test_counts_per_neighbourhood(self, tracked_run):
        result, _ = tracked_run
        summary = result.result.neighbourhoods

        assert summary.set_index('AREA_NAME')['ksi_count'].to_dict() == EXPECTED_KSI

    def test_fatal_counts(self, tracked_run):
        result, _ = tracked_run
        fatal = result.result.neighbourhoods.set_index('AREA_NAME')['fatal']

        assert fatal.sum() == 5
        assert fatal['University'] == 0

    def test_summary_is_projected(self, tracked_run):
        result, _ = tracked_run

        assert result.result.neighbourhoods.crs.to_epsg() == 26917

    def test_area_and_density(self, tracked_run):
        result, _ = tracked_run
        summary = result.result.neighbourhoods.set_index('AREA_NAME')

        # 0.02 degree squares at 43.65N are roughly 1.6 km x 2.2 km
        assert summary['area_km2'].between(3.4, 3.8).all()
        assert summary['ksi_km2'].idxmax() == 'Bay Street Corridor'
        assert summary.loc['Annex', 'ksi_km2'] == pytest.approx(
            2 / summary.loc['Annex', 'area_km2']
        )

    def test_collisions_near_city_hall(self, tracked_run):
        result, _ = tracked_run
        nearby = result.result.collisions_near_poi

        assert sorted(nearby['ACCNUM']) == [7000101, 7000102, 7000103, 7000129, 7000130]
        assert set(nearby['name']) == {'Toronto City Hall'}

    def test_operations_recorded(self, tracked_run):
        result, _ = tracked_run
        names = [r.operation_name for r in result.provenance.records]

        assert names[:8] == [
            'toronto_ksi',
            'read_data',
            'load:ksi_collisions.csv',
            'load:toronto_neighbourhoods.geojson',
            'transform_crs',
            'select_ksi',
            'buffer_point_of_interest',
            'join_and_aggregate',
        ]
        assert 'save:ksi_near_poi.gpkg' in names
        assert result.get_summary()['failed_operations'] == 0


@pytest.mark.integration
class TestWalkthroughOutputs:

    def test_maps_written(self, tracked_run):
        result, output_dir = tracked_run
        maps = {p.name for p in result.result.map_files}

        assert maps == {
            'ksi_overview.png', 'ksi_overview.pdf',
            'ksi_density.png', 'ksi_density.pdf',
        }
        for path in result.result.map_files:
            assert path.exists()
            assert path.parent == output_dir / 'maps'

    def test_data_files_written(self, tracked_run):
        result, _ = tracked_run
        files = result.result.data_files

        assert {p.suffix for p in files.values()} == {'.geojson', '.shp', '.gpkg', '.csv'}
        for path in files.values():
            assert path.exists()

    def test_written_geojson_reloads(self, tracked_run):
        result, _ = tracked_run

        reloaded = load(result.result.data_files['neighbourhoods_geojson'])

        assert len(reloaded) == 6
        assert reloaded['ksi_count'].sum() == 24

    def test_sidecar_provenance(self, tracked_run):
        result, _ = tracked_run
        path = result.result.data_files['neighbourhoods_shapefile']

        sidecar = path.with_name(path.name + '.provenance.json')
        content = json.loads(sidecar.read_text())

        assert content['data_file'] == 'neighbourhood_ksi.shp'
        assert content['provenance']['pipeline_name'] == 'toronto_ksi'

    def test_geopackage_provenance(self, tracked_run):
        result, _ = tracked_run
        path = result.result.data_files['collisions_near_poi']

        records = read_provenance(path)

        assert len(records) == 1
        operations = [op['operation_name'] for op in records[0]['operations']]
        assert 'join_and_aggregate' in operations

        with sqlite3.connect(str(path)) as conn:
            count = conn.execute("SELECT COUNT(*) FROM mapflow_provenance").fetchone()[0]
        assert count == 1

    def test_csv_has_neighbourhood_column(self, tracked_run):
        result, _ = tracked_run
        text = result.result.data_files['collisions_by_neighbourhood'].read_text()

        header = text.splitlines()[0].split(',')
        assert 'AREA_NAME' in header
        assert header[-1] == 'geometry'
        # 25 KSI collisions, one of them outside every neighbourhood
        assert len(text.splitlines()) == 26

    def test_report(self, tracked_run):
        result, _ = tracked_run
        html = result.result.report.read_text(encoding='utf-8')

        assert result.result.report.name == 'toronto_ksi_report.html'
        assert html.count('data:image/png;base64,') == 2
        assert 'Bay Street Corridor' in html
        assert '5 of 25 KSI collisions lie within 500 m of Toronto City Hall' in html
        outputs = html.split('<h2>Outputs</h2>')[1]
        assert outputs.lstrip().startswith('<pre>')
        assert 'ksi_near_poi.gpkg' in outputs.split('</pre>')[0]


@pytest.mark.integration
class TestWalkthroughOptions:

    def test_untracked_call_skips_provenance(self, tmp_path, fast_config):
        outputs = run_toronto_walkthrough(output_dir=tmp_path, config=fast_config)

        geojson = outputs.data_files['neighbourhoods_geojson']
        assert geojson.exists()
        assert read_provenance(geojson) == []

    def test_config_changes_buffer(self, tmp_path):
        config = load_config(overrides={
            'analysis': {'buffer_distance': 150},
            'maps': {'dpi': 40, 'formats': ['png']},
        })

        outputs = run_toronto_walkthrough(output_dir=tmp_path, config=config)

        assert sorted(outputs.collisions_near_poi['ACCNUM']) == [7000101, 7000129]
        assert [p.suffix for p in outputs.map_files] == ['.png', '.png']

    def test_provenance_disabled_in_config(self, tmp_path):
        config = load_config(overrides={'output': {'provenance': False}, 'maps': {'dpi': 40}})

        result = run_toronto_walkthrough.run(output_dir=tmp_path, config=config)

        assert read_provenance(result.result.data_files['collisions_near_poi']) == []
