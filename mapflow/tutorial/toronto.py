"""Toronto KSI walkthrough.

Reads Killed or Seriously Injured (KSI) traffic collisions and neighbourhood
boundaries, then carries them through the usual sequence of a mapping
project:

    read -> inspect -> transform CRS -> filter -> buffer -> join
         -> aggregate -> plot -> write -> report

Run it with the bundled sample data::

    from mapflow.tutorial import run_toronto_walkthrough
    result = run_toronto_walkthrough.run(output_dir="outputs")
    print(result.result.report)
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import geopandas as gpd
import matplotlib.pyplot as plt
import pandas as pd

from mapflow.config import MapflowConfig, load_config
from mapflow.core.describe import format_summary
from mapflow.core.pipeline import geo_pipeline, get_active_tracker
from mapflow.core.task import spatial_task
from mapflow.crs.manager import CRSManager
from mapflow.io.loaders import load
from mapflow.io.writers import save
from mapflow.report.html import ReportSection, render_report
from mapflow.spatial.construct import make_point, to_geodataframe
from mapflow.spatial.operations import (
    add_area,
    add_density,
    buffer,
    spatial_join,
    summarize_by_polygon,
)
from mapflow.viz.maps import (
    MapLayer,
    add_north_arrow,
    add_scale_bar,
    label_features,
    plot_layers,
    plot_map,
    save_map,
)

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).parent / "data"
COLLISIONS_FILE = DATA_DIR / "ksi_collisions.csv"
NEIGHBOURHOODS_FILE = DATA_DIR / "toronto_neighbourhoods.geojson"

NAME_COLUMN = "AREA_NAME"

_crs_manager = CRSManager()


@dataclass
class TutorialOutputs:
    """Everything the walkthrough produced."""

    neighbourhoods: gpd.GeoDataFrame
    collisions_near_poi: gpd.GeoDataFrame
    data_files: dict[str, Path] = field(default_factory=dict)
    map_files: list[Path] = field(default_factory=list)
    report: Optional[Path] = None


@spatial_task(name="read_data", validate_geometries=True)
def read_data(
    collisions_path: Union[str, Path],
    neighbourhoods_path: Union[str, Path],
    source_crs: Any = "EPSG:4326",
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    collisions = load(collisions_path, crs=source_crs, x="LONGITUDE", y="LATITUDE")
    neighbourhoods = load(neighbourhoods_path, validate=True, auto_fix=True)
    return collisions, neighbourhoods


@spatial_task(name="transform_crs")
def transform_layers(target_crs: Any, *layers: gpd.GeoDataFrame) -> tuple[gpd.GeoDataFrame, ...]:
    return tuple(_crs_manager.to_crs(layer, target_crs) for layer in layers)


@spatial_task(name="select_ksi")
def select_ksi(collisions: gpd.GeoDataFrame, classes: list[str]) -> gpd.GeoDataFrame:
    """Keep collisions whose ACCLASS marks a death or serious injury."""
    ksi = collisions[collisions["ACCLASS"].isin(classes)].copy()
    ksi["fatal"] = (ksi["ACCLASS"] == "Fatal").astype(int)
    logger.info("%d of %d collisions are KSI", len(ksi), len(collisions))
    return ksi


@spatial_task(name="buffer_point_of_interest", strict_crs=True)
def collisions_near(
    ksi: gpd.GeoDataFrame,
    point_of_interest: dict[str, Any],
    distance: float,
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """Buffer zone around the point of interest and the KSI collisions inside it."""
    poi = to_geodataframe(
        [{"name": point_of_interest["name"]}],
        [make_point(point_of_interest["lon"], point_of_interest["lat"])],
        crs="EPSG:4326",
    )
    poi = _crs_manager.to_crs(poi, ksi.crs)
    zone = buffer(poi, distance=distance, strict_crs=True)
    nearby = spatial_join(ksi, zone, predicate="within").drop(columns="index_right")
    return zone, nearby


@spatial_task(name="join_and_aggregate", strict_crs=True, validate_crs=True)
def neighbourhood_summary(
    ksi: gpd.GeoDataFrame, neighbourhoods: gpd.GeoDataFrame
) -> tuple[gpd.GeoDataFrame, gpd.GeoDataFrame]:
    """KSI collisions tagged with their neighbourhood, and per-neighbourhood totals."""
    tagged = spatial_join(
        ksi, neighbourhoods[[NAME_COLUMN, neighbourhoods.geometry.name]],
        how="left", predicate="within",
    ).drop(columns="index_right")

    summary = summarize_by_polygon(
        ksi,
        neighbourhoods,
        by=NAME_COLUMN,
        aggregations={
            "ksi_count": ("ACCNUM", "count"),
            "fatal": ("fatal", "sum"),
        },
    )
    summary["fatal"] = summary["fatal"].astype(int)
    summary = add_area(summary, column="area_km2", unit="km2")
    summary = add_density(summary, count_column="ksi_count", column="ksi_km2")
    return tagged, summary


def draw_maps(
    neighbourhoods: gpd.GeoDataFrame,
    ksi: gpd.GeoDataFrame,
    zone: gpd.GeoDataFrame,
    nearby: gpd.GeoDataFrame,
    config: MapflowConfig,
) -> dict[str, plt.Figure]:
    maps = config.maps
    figsize = tuple(maps["figsize"])
    poi_name = config.analysis["point_of_interest"]["name"]
    distance = config.analysis["buffer_distance"]

    overview, ax = plot_layers(
        [
            MapLayer(neighbourhoods, label="Neighbourhoods",
                     style={"color": "whitesmoke", "edgecolor": "grey"}),
            MapLayer(zone, label=f"{distance:g} m around {poi_name}",
                     style={"facecolor": "none", "edgecolor": "navy", "linewidth": 1.5}),
            MapLayer(ksi, label="KSI collisions",
                     style={"color": "firebrick", "markersize": 14}),
            MapLayer(nearby, label=f"KSI near {poi_name}",
                     style={"color": "gold", "markersize": 24, "edgecolor": "black"}),
        ],
        title="KSI collisions, downtown Toronto",
        figsize=figsize,
    )
    add_north_arrow(ax)
    add_scale_bar(ax, neighbourhoods.crs)

    choropleth, ax = plot_map(
        neighbourhoods,
        column="ksi_km2",
        title="KSI collisions per km² by neighbourhood",
        cmap=maps["cmap"],
        scheme=maps["scheme"],
        k=maps["k"],
        figsize=figsize,
        edgecolor="grey",
    )
    label_features(ax, neighbourhoods, NAME_COLUMN, fontsize=6)
    add_north_arrow(ax)
    add_scale_bar(ax, neighbourhoods.crs)

    return {"ksi_overview": overview, "ksi_density": choropleth}


def _current_provenance(config: MapflowConfig) -> Optional[dict[str, Any]]:
    tracker = get_active_tracker()
    if tracker is None or not config.output["provenance"]:
        return None
    return tracker.to_dict()


def _summary_table(summary: gpd.GeoDataFrame) -> pd.DataFrame:
    columns = [NAME_COLUMN, "ksi_count", "fatal", "area_km2", "ksi_km2"]
    return (
        pd.DataFrame(summary[columns])
        .sort_values("ksi_km2", ascending=False)
        .rename(columns={
            NAME_COLUMN: "Neighbourhood",
            "ksi_count": "KSI collisions",
            "fatal": "Fatal",
            "area_km2": "Area (km²)",
            "ksi_km2": "KSI per km²",
        })
    )


def _indent(text: str) -> str:
    return "\n".join("    " + line for line in text.splitlines())


@geo_pipeline(
    name="toronto_ksi",
    description="KSI collisions by Toronto neighbourhood: read, reproject, "
    "buffer, join, aggregate, map and report",
)
def run_toronto_walkthrough(
    collisions_path: Optional[Union[str, Path]] = None,
    neighbourhoods_path: Optional[Union[str, Path]] = None,
    output_dir: Optional[Union[str, Path]] = None,
    config: Optional[MapflowConfig] = None,
) -> TutorialOutputs:
    config = config or load_config()
    collisions_path = collisions_path or config.data["collisions"] or COLLISIONS_FILE
    neighbourhoods_path = neighbourhoods_path or config.data["neighbourhoods"] or NEIGHBOURHOODS_FILE
    output_dir = Path(output_dir or config.output["dir"])
    target_crs = config.crs["target"]
    analysis = config.analysis

    collisions, neighbourhoods = read_data(
        collisions_path, neighbourhoods_path, source_crs=config.crs["source"]
    )
    raw_summaries = (format_summary(collisions), format_summary(neighbourhoods))

    collisions, neighbourhoods = transform_layers(target_crs, collisions, neighbourhoods)
    ksi = select_ksi(collisions, analysis["ksi_classes"])
    zone, nearby = collisions_near(ksi, analysis["point_of_interest"], analysis["buffer_distance"])
    tagged, summary = neighbourhood_summary(ksi, neighbourhoods)

    figures = draw_maps(summary, ksi, zone, nearby, config)
    map_files = []
    for stem, fig in figures.items():
        for fmt in config.maps["formats"]:
            map_files.append(
                save_map(fig, output_dir / "maps" / f"{stem}.{fmt}", dpi=config.maps["dpi"])
            )

    provenance = _current_provenance(config)
    data_dir = output_dir / "data"
    data_files = {
        "neighbourhoods_geojson": save(summary, data_dir / "neighbourhood_ksi.geojson", provenance=provenance),
        "neighbourhoods_shapefile": save(summary, data_dir / "neighbourhood_ksi.shp", provenance=provenance),
        "collisions_near_poi": save(nearby, data_dir / "ksi_near_poi.gpkg", provenance=provenance),
        "collisions_by_neighbourhood": save(tagged, data_dir / "ksi_by_neighbourhood.csv", provenance=provenance),
    }

    poi = analysis["point_of_interest"]
    sections = [
        ReportSection(
            "Reading the data",
            "Collisions come as a table with LONGITUDE and LATITUDE columns, "
            "turned into points in WGS84. Neighbourhoods are polygons read from "
            "GeoJSON.\n\n"
            + _indent(raw_summaries[0]) + "\n\n" + _indent(raw_summaries[1]),
        ),
        ReportSection(
            "Choosing a projected CRS",
            f"Both layers are transformed to {target_crs} so that distances "
            "and areas are measured in metres rather than degrees.",
        ),
        ReportSection(
            "Collisions near a point of interest",
            f"{len(nearby)} of {len(ksi)} KSI collisions lie within "
            f"{analysis['buffer_distance']:g} m of {poi['name']}.",
            figure=figures["ksi_overview"],
            caption=f"KSI collisions and the {analysis['buffer_distance']:g} m buffer around {poi['name']}",
        ),
        ReportSection(
            "KSI collisions by neighbourhood",
            "Each collision is joined to the neighbourhood containing it; counts "
            "are divided by neighbourhood area to give a density.",
            figure=figures["ksi_density"],
            table=_summary_table(summary),
            caption="KSI collisions per square kilometre",
        ),
        ReportSection(
            "Outputs",
            _indent("\n".join(str(p) for p in list(data_files.values()) + map_files)),
        ),
    ]
    report_path = output_dir / "toronto_ksi_report.html"
    render_report(
        "KSI collisions in downtown Toronto",
        sections,
        path=report_path,
        subtitle="Reading, transforming, joining and mapping spatial data",
    )

    for fig in figures.values():
        plt.close(fig)

    return TutorialOutputs(
        neighbourhoods=summary,
        collisions_near_poi=nearby,
        data_files=data_files,
        map_files=map_files,
        report=report_path,
    )
