import pytest
import geopandas as gpd
import pandas as pd
from shapely.geometry import box

from mapflow import geo_pipeline, spatial_task
from mapflow.io.loaders import load
from mapflow.io.writers import read_provenance, save
from mapflow.spatial.operations import buffer, count_points_in_polygons, spatial_join


@pytest.fixture
def collisions_csv(tmp_path):
    """Four collisions in lon/lat, one with no coordinates"""
    path = tmp_path / "collisions.csv"
    pd.DataFrame({
        'ACCNUM': [11, 12, 13, 14],
        'ACCLASS': ['Fatal', 'Non-Fatal Injury', 'Non-Fatal Injury', 'Fatal'],
        'LONGITUDE': [-79.3840, -79.3845, -79.3700, None],
        'LATITUDE': [43.6535, 43.6540, 43.6500, 43.6500],
    }).to_csv(path, index=False)
    return path


@pytest.fixture
def wards_file(tmp_path):
    """A ward around City Hall and one further east, stored in UTM 17N"""
    path = tmp_path / "wards.gpkg"
    gpd.GeoDataFrame(
        {'ward': ['Spadina-Fort York', 'Toronto Centre']},
        geometry=[
            box(-79.395, 43.640, -79.378, 43.665),
            box(-79.378, 43.640, -79.360, 43.665),
        ],
        crs='EPSG:4326'
    ).to_crs('EPSG:26917').to_file(path, driver='GPKG')
    return path


@pytest.mark.integration
class TestEndToEndWorkflow:

    def test_csv_to_counts(self, collisions_csv, wards_file):
        collisions = load(collisions_csv)
        wards = load(wards_file)

        assert len(collisions) == 3
        assert collisions.crs.to_epsg() == 4326

        counts = count_points_in_polygons(
            collisions, wards, column='collisions', target_crs='EPSG:26917'
        )

        assert counts.set_index('ward')['collisions'].to_dict() == {
            'Spadina-Fort York': 2, 'Toronto Centre': 1,
        }

    def test_join_refuses_mixed_crs(self, collisions_csv, wards_file):
        with pytest.raises(ValueError, match="CRS mismatch"):
            spatial_join(load(collisions_csv), load(wards_file))

    def test_buffer_then_save(self, collisions_csv, tmp_path):
        collisions = load(collisions_csv).to_crs('EPSG:26917')

        zones = buffer(collisions, 50, strict_crs=True)
        out = save(zones, tmp_path / "zones.gpkg")

        reloaded = gpd.read_file(out)
        assert reloaded['ACCNUM'].tolist() == [11, 12, 13]
        assert (reloaded.geometry.geom_type == 'Polygon').all()
        assert reloaded.area.iloc[0] == pytest.approx(3.1416 * 50 ** 2, rel=0.01)

    def test_tracked_pipeline_writes_lineage(self, collisions_csv, wards_file, tmp_path):

        @spatial_task(name="count_by_ward", validate_crs=True)
        def count_by_ward(points, polygons):
            return count_points_in_polygons(points, polygons, column='collisions')

        @geo_pipeline(name="ward_counts")
        def ward_counts(points_path, polygons_path, out):
            points = load(points_path).to_crs('EPSG:26917')
            counted = count_by_ward(points, load(polygons_path))
            return save(counted, out)

        result = ward_counts.run(collisions_csv, wards_file, tmp_path / "counts.gpkg")

        records = read_provenance(result.result)
        assert len(records) == 1
        names = [op['operation_name'] for op in records[0]['operations']]
        assert names[:3] == ['load:collisions.csv', 'load:wards.gpkg', 'count_by_ward']
