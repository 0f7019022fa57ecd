from mapflow.crs.manager import CRSManager

__all__ = ["CRSManager"]
