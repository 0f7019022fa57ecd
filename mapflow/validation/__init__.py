from mapflow.validation.geometry import GeometryValidator, validate_geometry

__all__ = ["GeometryValidator", "validate_geometry"]
