from mapflow.viz.maps import (
    MapLayer,
    add_north_arrow,
    add_scale_bar,
    classify,
    label_features,
    plot_layers,
    plot_map,
    save_map,
)

__all__ = [
    "MapLayer",
    "add_north_arrow",
    "add_scale_bar",
    "classify",
    "label_features",
    "plot_layers",
    "plot_map",
    "save_map",
]
