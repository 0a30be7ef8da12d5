"""Region of interest loading and area."""

import logging
from typing import Optional

import geopandas as gpd
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union


logger = logging.getLogger(__name__)

EQUAL_AREA_CRS = 'EPSG:6933'


def load_region(
    path: Optional[str],
    crs,
    name: Optional[str] = None,
    name_field: str = 'country_na'
) -> BaseGeometry:
    """
    Load the region of interest as a single geometry in ``crs``.

    Args:
        path: Vector file with the boundary; None loads the LSIB country
            boundary through Earth Engine
        crs: Working CRS
        name: Feature to keep when the file holds several
        name_field: Attribute matched against ``name``
    """
    if path is None:
        from urbangrowth.data.gee_download import load_country_boundary

        boundary = load_country_boundary(name, name_field)
        gdf = gpd.GeoDataFrame(geometry=[boundary], crs='EPSG:4326')
    else:
        gdf = gpd.read_file(path)
        if name and name_field in gdf.columns:
            gdf = gdf[gdf[name_field] == name]

    if gdf.empty:
        raise ValueError(f"Region {name!r} not found in {path or 'LSIB'}")

    gdf = gdf.to_crs(crs)
    region = unary_union(gdf.geometry.values)
    logger.info(f"Loaded region {name or path} ({region.geom_type})")
    return region


def region_area_km2(region: BaseGeometry, crs) -> float:
    """Area of ``region`` in km², measured in an equal-area projection."""
    series = gpd.GeoSeries([region], crs=crs).to_crs(EQUAL_AREA_CRS)
    return float(series.area.iloc[0]) / 1e6
