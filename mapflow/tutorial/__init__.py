from mapflow.tutorial.toronto import (
    COLLISIONS_FILE,
    NEIGHBOURHOODS_FILE,
    TutorialOutputs,
    run_toronto_walkthrough,
)

__all__ = [
    "COLLISIONS_FILE",
    "NEIGHBOURHOODS_FILE",
    "TutorialOutputs",
    "run_toronto_walkthrough",
]
