"""Geometry validity checks and repair."""

import logging
from collections import Counter

import geopandas as gpd
import pandas as pd
from shapely.validation import explain_validity

from mapflow.errors import GeometryValidationError, ParameterError

logger = logging.getLogger(__name__)

REPAIR_METHODS = ("make_valid", "buffer")


class GeometryValidator:
    """Finds, reports and repairs invalid geometries."""

    def check_null_geometries(self, gdf: gpd.GeoDataFrame) -> pd.Series:
        return gdf.geometry.isna()

    def check_empty_geometries(self, gdf: gpd.GeoDataFrame) -> pd.Series:
        return gdf.geometry.is_empty & ~gdf.geometry.isna()

    def _invalid_mask(self, gdf: gpd.GeoDataFrame) -> pd.Series:
        # is_valid reports None as invalid; nulls are counted separately
        return ~gdf.geometry.is_valid & ~gdf.geometry.isna()

    def find_invalid(self, gdf: gpd.GeoDataFrame) -> gpd.GeoDataFrame:
        """Rows with invalid geometry, with a ``validity_issue`` column."""
        invalid = gdf[self._invalid_mask(gdf)].copy()
        invalid["validity_issue"] = [explain_validity(geom) for geom in invalid.geometry]
        return invalid

    def fix_invalid(
        self, gdf: gpd.GeoDataFrame, method: str = "make_valid"
    ) -> gpd.GeoDataFrame:
        """Repair invalid geometries in a copy of ``gdf``.

        Args:
            gdf: Data to repair.
            method: ``make_valid`` keeps all parts of the input (may change
                geometry type); ``buffer`` applies a zero-width buffer.

        Raises:
            ParameterError: For an unknown method.
        """
        if method not in REPAIR_METHODS:
            raise ParameterError(
                f"Unknown repair method: {method!r}",
                suggestion=f"Use one of {', '.join(REPAIR_METHODS)}.",
            )

        fixed = gdf.copy()
        mask = self._invalid_mask(fixed)
        if not mask.any():
            return fixed

        geom_col = fixed.geometry.name
        if method == "make_valid":
            repaired = fixed.geometry[mask].make_valid()
        else:
            repaired = fixed.geometry[mask].buffer(0)
        fixed.loc[mask, geom_col] = repaired
        logger.info("Repaired %d invalid geometries using %s", int(mask.sum()), method)
        return fixed

    def validate_or_raise(self, gdf: gpd.GeoDataFrame) -> None:
        invalid = self.find_invalid(gdf)
        if len(invalid):
            raise GeometryValidationError(
                f"Found {len(invalid)} invalid geometries",
                suggestion="Repair them with validate_geometry(auto_fix=True).",
                details={"issues": invalid["validity_issue"].tolist()},
            )

    def get_validation_report(self, gdf: gpd.GeoDataFrame) -> dict:
        """Counts of valid, invalid, empty and null geometries.

        ``issues`` maps the reason reported by GEOS (without coordinates) to
        the number of geometries affected.
        """
        total = len(gdf)
        invalid = self.find_invalid(gdf)
        reasons = Counter(issue.split("[")[0].strip() for issue in invalid["validity_issue"])
        return {
            "total_features": total,
            "valid_count": total - len(invalid),
            "invalid_count": len(invalid),
            "invalid_percentage": (len(invalid) / total * 100) if total else 0,
            "empty_count": int(self.check_empty_geometries(gdf).sum()),
            "null_count": int(self.check_null_geometries(gdf).sum()),
            "issues": dict(reasons),
        }


def validate_geometry(
    gdf: gpd.GeoDataFrame,
    auto_fix: bool = False,
    method: str = "make_valid",
    raise_on_invalid: bool = False,
) -> gpd.GeoDataFrame:
    """Check geometries and optionally repair them.

    Args:
        gdf: Data to check.
        auto_fix: Repair invalid geometries with ``method``.
        method: Repair method, see :meth:`GeometryValidator.fix_invalid`.
        raise_on_invalid: Raise instead of warning or repairing.

    Returns:
        ``gdf`` unchanged, or a repaired copy when ``auto_fix`` is set.
    """
    validator = GeometryValidator()
    if raise_on_invalid:
        validator.validate_or_raise(gdf)
        return gdf

    report = validator.get_validation_report(gdf)
    if report["invalid_count"] == 0:
        return gdf

    if auto_fix:
        return validator.fix_invalid(gdf, method=method)

    logger.warning(
        "%d of %d geometries are invalid (%s)",
        report["invalid_count"], report["total_features"], report["issues"],
    )
    return gdf
