"""
Google Earth Engine Data Acquisition
====================================

Raster source backed by the COPERNICUS/S2_SR collection and the LSIB
country boundaries. Each acquisition is downloaded once as a GeoTIFF into a
cache directory and then read window by window like a local tile. Earth
Engine caps direct downloads, so large regions need a tile directory
prepared in advance (see LocalRasterSource).

Requirements:
    pip install earthengine-api requests

Setup:
    1. Create GEE account: https://earthengine.google.com/
    2. Authenticate: earthengine authenticate
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import ee
import geopandas as gpd
import rasterio
import requests
from rasterio.crs import CRS
from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry

from urbangrowth.data.raster import RasterTile
from urbangrowth.data.sources import DEFAULT_BAND_ORDER, RasterSource, open_tile


logger = logging.getLogger(__name__)

COUNTRIES_TABLE = 'USDOS/LSIB_SIMPLE/2017'


def initialize_earth_engine(project: Optional[str] = None):
    """Initialize Earth Engine, authenticating on first use."""
    try:
        ee.Initialize(project=project)
    except Exception:
        ee.Authenticate()
        ee.Initialize(project=project)


def load_country_boundary(name: str, name_field: str = 'country_na') -> BaseGeometry:
    """
    Country boundary from the LSIB table as a shapely geometry (EPSG:4326).

    Args:
        name: Country name, e.g. 'United Arab Emirates'
        name_field: LSIB attribute holding the country name
    """
    countries = ee.FeatureCollection(COUNTRIES_TABLE)
    country = countries.filter(ee.Filter.eq(name_field, name))

    if country.size().getInfo() == 0:
        raise ValueError(f"Country not found in {COUNTRIES_TABLE}: {name}")

    return shape(country.geometry().getInfo())


class EarthEngineRasterSource(RasterSource):
    """Download Sentinel-2 L2A acquisitions from Google Earth Engine."""

    def __init__(
        self,
        crs,
        scale: int = 10,
        collection: str = 'COPERNICUS/S2_SR',
        bands: List[str] = None,
        timeout: int = 300,
        cache_dir: str = 'data/raw/ee_cache'
    ):
        """
        Args:
            crs: CRS of region geometries and of the downloaded tiles
            scale: Download resolution in meters
            collection: Earth Engine image collection id
            bands: Bands to download (must include SCL)
            timeout: HTTP timeout per download in seconds
            cache_dir: Directory keeping one GeoTIFF per downloaded image
        """
        self.crs = CRS.from_user_input(crs)
        self.scale = scale
        self.collection = collection
        self.bands = bands or list(DEFAULT_BAND_ORDER)
        self.timeout = timeout
        self.cache_dir = Path(cache_dir)

    def _ee_geometry(self, region: BaseGeometry) -> ee.Geometry:
        geographic = gpd.GeoSeries([region], crs=self.crs).to_crs('EPSG:4326').iloc[0]
        return ee.Geometry(mapping(geographic))

    def _download(self, image: ee.Image, aoi: ee.Geometry, path: Path) -> Path:
        url = image.getDownloadURL({
            'bands': self.bands,
            'region': aoi,
            'scale': self.scale,
            'crs': self.crs.to_string(),
            'format': 'GEO_TIFF'
        })

        response = requests.get(url, timeout=self.timeout)
        response.raise_for_status()

        partial = path.with_suffix('.part')
        partial.write_bytes(response.content)
        partial.replace(path)
        return path

    def tiles(
        self,
        region: BaseGeometry,
        start: datetime,
        end: datetime
    ) -> List[RasterTile]:
        aoi = self._ee_geometry(region)
        collection = (ee.ImageCollection(self.collection)
                      .filterBounds(aoi)
                      .filterDate(start.strftime('%Y-%m-%d'), end.strftime('%Y-%m-%d')))

        ids = collection.aggregate_array('system:index').getInfo()
        times = collection.aggregate_array('system:time_start').getInfo()
        logger.info(f"Found {len(ids)} images for {start:%Y-%m-%d} to {end:%Y-%m-%d}")

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        tiles = []
        for image_id, time_start in zip(ids, times):
            path = self.cache_dir / f"{image_id}.tif"
            if path.exists():
                logger.debug(f"Using cached {path}")
            else:
                image = ee.Image(f"{self.collection}/{image_id}").select(self.bands)
                self._download(image, aoi, path)
                logger.debug(f"Downloaded {image_id} to {path}")

            acquired = datetime.fromtimestamp(time_start / 1000, tz=timezone.utc).replace(tzinfo=None)
            with rasterio.open(path) as src:
                tile = open_tile(src, path, acquired, tile_id=image_id)
            tiles.append(tile)

        return tiles
