"""
Simple mapflow Example
======================

Read the bundled Toronto sample data, move it to a projected CRS and count
KSI collisions per neighbourhood, one function call at a time.
"""

from mapflow import (
    CRSManager,
    add_area,
    add_density,
    format_summary,
    load,
    summarize_by_polygon,
)
from mapflow.tutorial import COLLISIONS_FILE, NEIGHBOURHOODS_FILE


def main():
    print("=" * 60)
    print("mapflow Simple Example")
    print("=" * 60)

    print("\n1. Reading data...")
    collisions = load(COLLISIONS_FILE)
    neighbourhoods = load(NEIGHBOURHOODS_FILE)
    print(format_summary(collisions))

    print("\n2. Transforming to NAD83 / UTM zone 17N...")
    crs = CRSManager()
    collisions = crs.to_crs(collisions, "EPSG:26917")
    neighbourhoods = crs.to_crs(neighbourhoods, "EPSG:26917")
    print(f"   Units are now {crs.describe_crs(collisions.crs)['units']}")

    print("\n3. Keeping killed or seriously injured (KSI) collisions...")
    ksi = collisions[collisions["ACCLASS"].isin(["Fatal", "Non-Fatal Injury"])]
    print(f"   {len(ksi)} of {len(collisions)} collisions")

    print("\n4. Counting per neighbourhood...")
    summary = summarize_by_polygon(
        ksi, neighbourhoods, by="AREA_NAME",
        aggregations={"ksi_count": ("ACCNUM", "count")},
    )
    summary = add_density(add_area(summary), count_column="ksi_count", column="ksi_km2")
    print(
        summary[["AREA_NAME", "ksi_count", "area_km2", "ksi_km2"]]
        .sort_values("ksi_km2", ascending=False)
        .to_string(index=False, float_format="%.2f")
    )

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    main()
