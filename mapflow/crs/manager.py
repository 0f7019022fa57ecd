"""Coordinate reference system checks and conversions."""

import logging
from typing import Any, Optional, Union

import geopandas as gpd
from pyproj import CRS

from mapflow.errors import CRSError

logger = logging.getLogger(__name__)

CRSLike = Union[str, int, CRS]


class CRSManager:
    """Keeps CRS handling explicit.

    Datasets are never silently reprojected: operations that combine layers
    either find matching CRS or are told which one to use.
    """

    @staticmethod
    def _as_crs(crs: Any) -> Optional[CRS]:
        if crs is None:
            return None
        return CRS.from_user_input(crs)

    def is_geographic(self, crs: Any) -> bool:
        """True when coordinates are angular (degrees)."""
        crs = self._as_crs(crs)
        return bool(crs is not None and crs.is_geographic)

    def is_projected(self, crs: Any) -> bool:
        crs = self._as_crs(crs)
        return bool(crs is not None and crs.is_projected)

    def warn_if_geographic(self, gdf: gpd.GeoDataFrame, operation: str) -> bool:
        """Log a warning if ``gdf`` is in a geographic CRS.

        Distances and areas computed in degrees are almost never what the
        caller intended.

        Returns:
            True if a warning was emitted.
        """
        if self.is_geographic(gdf.crs):
            logger.warning(
                "Running '%s' on data in a geographic CRS (%s); distances and "
                "areas will be in degrees. Reproject to a projected CRS first.",
                operation,
                gdf.crs.to_string(),
            )
            return True
        return False

    def ensure_common_crs(
        self,
        *gdfs: gpd.GeoDataFrame,
        target_crs: Optional[CRSLike] = None,
    ) -> tuple[gpd.GeoDataFrame, ...]:
        """Return ``gdfs`` in one shared CRS.

        Args:
            *gdfs: GeoDataFrames to align.
            target_crs: CRS to transform every input to. Without it the
                inputs must already agree.

        Raises:
            CRSError: If an input has no CRS, or the inputs disagree and no
                target was given.
        """
        for i, gdf in enumerate(gdfs):
            if gdf.crs is None:
                raise CRSError(
                    f"Input {i} has no CRS defined",
                    suggestion="Assign one with set_crs() before combining layers.",
                )

        if target_crs is not None:
            target = self._as_crs(target_crs)
            aligned = []
            for gdf in gdfs:
                if gdf.crs != target:
                    logger.info(
                        "Reprojecting %d features from %s to %s",
                        len(gdf), gdf.crs.to_string(), target.to_string(),
                    )
                    gdf = gdf.to_crs(target)
                aligned.append(gdf)
            return tuple(aligned)

        first = gdfs[0].crs
        mismatched = [gdf.crs.to_string() for gdf in gdfs[1:] if gdf.crs != first]
        if mismatched:
            raise CRSError(
                f"CRS mismatch: {first.to_string()} vs {', '.join(mismatched)}",
                suggestion="Pass target_crs to choose the CRS all layers are "
                "transformed to.",
            )
        return tuple(gdfs)

    def set_crs(
        self,
        gdf: gpd.GeoDataFrame,
        crs: CRSLike,
        allow_override: bool = False,
    ) -> gpd.GeoDataFrame:
        """Declare the CRS of ``gdf`` without touching coordinates."""
        crs = self._as_crs(crs)
        if gdf.crs is not None and gdf.crs != crs and not allow_override:
            raise CRSError(
                f"Data already has CRS {gdf.crs.to_string()}; refusing to "
                f"relabel it as {crs.to_string()}",
                suggestion="Use to_crs() to transform, or allow_override=True "
                "if the stored CRS is wrong.",
            )
        return gdf.set_crs(crs, allow_override=True)

    def to_crs(self, gdf: gpd.GeoDataFrame, crs: CRSLike) -> gpd.GeoDataFrame:
        """Transform coordinates of ``gdf`` into ``crs``."""
        if gdf.crs is None:
            raise CRSError(
                "Cannot transform data with no CRS defined",
                suggestion="Declare the source CRS with set_crs() first.",
            )
        result = gdf.to_crs(crs)
        result.attrs = dict(gdf.attrs)
        result.attrs["crs"] = result.crs.to_string()
        logger.debug("Transformed %s -> %s", gdf.crs.to_string(), result.crs.to_string())
        return result

    def estimate_projected_crs(self, gdf: gpd.GeoDataFrame) -> CRS:
        """Local UTM zone for the data extent."""
        if gdf.crs is None:
            raise CRSError("Cannot estimate a projected CRS for data with no CRS")
        return gdf.estimate_utm_crs()

    def describe_crs(self, crs: Any) -> dict[str, Any]:
        crs = self._as_crs(crs)
        if crs is None:
            return {
                "name": None,
                "epsg": None,
                "units": "unknown",
                "is_geographic": False,
                "is_projected": False,
            }
        units = crs.axis_info[0].unit_name if crs.axis_info else "unknown"
        return {
            "name": crs.name,
            "epsg": crs.to_epsg(),
            "units": units,
            "is_geographic": crs.is_geographic,
            "is_projected": crs.is_projected,
        }
