from mapflow.io.loaders import DataLoader, load
from mapflow.io.writers import read_provenance, save

__all__ = ["DataLoader", "load", "read_provenance", "save"]
