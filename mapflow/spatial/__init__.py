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

__all__ = [
    "add_area",
    "add_density",
    "bounding_box",
    "buffer",
    "clip",
    "count_points_in_polygons",
    "make_line",
    "make_multi",
    "make_point",
    "make_polygon",
    "overlay",
    "points_from_xy",
    "spatial_join",
    "summarize_by_polygon",
    "to_geodataframe",
    "within_distance",
]
