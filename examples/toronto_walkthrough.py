"""
Toronto KSI walkthrough with provenance.

Runs the full read -> reproject -> buffer -> join -> aggregate -> map ->
report sequence on the bundled data and keeps a record of every step.
Maps, data files and an HTML report are written to ``outputs/``.
"""

import logging

from mapflow import configure_logging, load_config
from mapflow.tutorial import run_toronto_walkthrough


def main():
    configure_logging(logging.INFO)

    # settings can also come from a YAML file: load_config("mapflow.yaml")
    config = load_config(overrides={"analysis": {"buffer_distance": 500}})

    result = run_toronto_walkthrough.run(output_dir="outputs", config=config)
    outputs = result.result

    print("\nKSI collisions per neighbourhood:")
    print(
        outputs.neighbourhoods[["AREA_NAME", "ksi_count", "fatal", "ksi_km2"]]
        .sort_values("ksi_km2", ascending=False)
        .to_string(index=False, float_format="%.2f")
    )

    print(f"\n{len(outputs.collisions_near_poi)} KSI collisions near "
          f"{config.analysis['point_of_interest']['name']}")

    print("\nWritten:")
    for path in list(outputs.data_files.values()) + outputs.map_files:
        print(f"  {path}")
    print(f"  {outputs.report}")

    provenance_path = result.save_provenance("outputs/toronto_ksi_provenance.json")
    print(f"  {provenance_path}")

    print("\nSteps:")
    for op in result.get_summary()["operations"]:
        print(f"  {op['status']:<8} {op['time']:7.3f}s  {op['name']}")


if __name__ == "__main__":
    main()
