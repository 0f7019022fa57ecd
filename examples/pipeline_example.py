"""
Building your own tracked pipeline.

Shows how @spatial_task guards each step: distance-based steps refuse
geographic data, joins refuse mismatched CRSs, and every step lands in the
provenance record when the pipeline is started with .run().
"""

import geopandas as gpd
from shapely.geometry import Point

from mapflow import (
    CRSError,
    buffer,
    count_points_in_polygons,
    geo_pipeline,
    read_provenance,
    save,
    spatial_task,
)


@spatial_task(name="reproject", warn_geographic=True)
def reproject(gdf, crs):
    return gdf.to_crs(crs)


@spatial_task(name="buffer_sites", strict_crs=True)
def buffer_sites(sites, distance):
    return buffer(sites, distance)


@spatial_task(name="count_in_zones", validate_crs=True)
def count_in_zones(points, zones):
    return count_points_in_polygons(points, zones, column="n_points")


@geo_pipeline(
    name="site_catchments",
    description="Count points within 250 m of each site",
    auto_save_provenance=True,
    provenance_dir="outputs/provenance",
)
def site_catchments(sites, points):
    sites = reproject(sites, "EPSG:26917")
    points = reproject(points, "EPSG:26917")
    zones = buffer_sites(sites, 250)
    return count_in_zones(points, zones)


def make_data():
    sites = gpd.GeoDataFrame(
        {"site": ["Union Station", "City Hall"]},
        geometry=[Point(-79.3806, 43.6453), Point(-79.3841, 43.6534)],
        crs="EPSG:4326",
    )
    points = gpd.GeoDataFrame(
        {"id": range(4)},
        geometry=[
            Point(-79.3810, 43.6460),
            Point(-79.3800, 43.6450),
            Point(-79.3845, 43.6530),
            Point(-79.3700, 43.6600),
        ],
        crs="EPSG:4326",
    )
    return sites, points


def main():
    sites, points = make_data()

    print("1. Buffering in degrees is refused:")
    try:
        buffer_sites(sites, 250)
    except CRSError as exc:
        print(f"   {exc}\n")

    print("2. Running the tracked pipeline...")
    result = site_catchments.run(sites, points)
    print(result.result[["site", "n_points"]].to_string(index=False))

    print("\n3. Provenance:")
    for op in result.get_summary()["operations"]:
        print(f"   {op['type']:<8} {op['name']:<32} {op['status']}")

    print("\n4. Saving with embedded provenance...")
    path = save(result.result, "outputs/site_catchments.gpkg",
                provenance=result.provenance.to_dict())
    print(f"   {path} holds {len(read_provenance(path))} provenance record(s)")


if __name__ == "__main__":
    main()
