"""
Raster sources.

A raster source answers one question: which tiles intersect a region
within a date range. The result may be empty.
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import rasterio
from rasterio.crs import CRS
from rasterio.warp import transform_bounds
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry

from urbangrowth.data.raster import RasterTile


logger = logging.getLogger(__name__)

# Band order assumed for files without band descriptions
DEFAULT_BAND_ORDER = ['B2', 'B3', 'B4', 'B8', 'B11', 'SCL']

DATE_TAG = 'ACQUISITION_DATE'
DATE_PATTERN = re.compile(r'(?<!\d)(\d{8})(?!\d)')


class RasterSource(ABC):
    """Supplies Sentinel-2 L2A tiles for a region and date range."""

    @abstractmethod
    def tiles(
        self,
        region: BaseGeometry,
        start: datetime,
        end: datetime
    ) -> List[RasterTile]:
        """Return all tiles intersecting ``region`` acquired in [start, end)."""


def parse_acquisition_date(path: Path, tags: dict) -> Optional[datetime]:
    """Acquisition date from the file tags, else a YYYYMMDD filename token."""
    value = tags.get(DATE_TAG)
    if value:
        return datetime.fromisoformat(value[:10])

    match = DATE_PATTERN.search(path.stem)
    if match:
        return datetime.strptime(match.group(1), '%Y%m%d')
    return None


def read_band_names(src) -> List[str]:
    """Band names from the descriptions, else the default six-band order."""
    descriptions = list(src.descriptions or [])
    if descriptions and all(descriptions):
        return descriptions
    if src.count == len(DEFAULT_BAND_ORDER):
        return list(DEFAULT_BAND_ORDER)
    raise ValueError(
        f"{src.name}: {src.count} unnamed bands, expected {DEFAULT_BAND_ORDER}"
    )


def open_tile(src, path: Path, acquired: datetime, tile_id: str = None) -> RasterTile:
    """File-backed tile for an open dataset; pixels are read later, per window."""
    return RasterTile(
        data=None,
        band_names=read_band_names(src),
        transform=src.transform,
        crs=src.crs,
        acquired=acquired,
        tile_id=tile_id or path.stem,
        path=str(path),
        shape=(src.height, src.width),
        nodata=src.nodata
    )


class LocalRasterSource(RasterSource):
    """
    Tiles stored as GeoTIFFs in a directory.

    Each file holds one acquisition with bands B2, B3, B4, B8, B11 and SCL,
    named through band descriptions or stored in that order. Only metadata
    is read here.
    """

    def __init__(self, tile_dir: str, crs):
        """
        Args:
            tile_dir: Directory containing *.tif tiles
            crs: CRS of the region geometries passed to ``tiles``
        """
        self.tile_dir = Path(tile_dir)
        self.crs = CRS.from_user_input(crs)

        if not self.tile_dir.is_dir():
            raise FileNotFoundError(f"Tile directory not found: {tile_dir}")

    def tiles(
        self,
        region: BaseGeometry,
        start: datetime,
        end: datetime
    ) -> List[RasterTile]:
        found = []

        for path in sorted(self.tile_dir.glob('*.tif')):
            with rasterio.open(path) as src:
                acquired = parse_acquisition_date(path, src.tags())
                if acquired is None:
                    logger.warning(f"Skipping {path.name}: no acquisition date")
                    continue
                if not start <= acquired < end:
                    continue

                footprint = box(*transform_bounds(src.crs, self.crs, *src.bounds))
                if not footprint.intersects(region):
                    continue

                found.append(open_tile(src, path, acquired))

        logger.debug(f"Found {len(found)} tiles in {self.tile_dir} for "
                     f"{start:%Y-%m-%d} to {end:%Y-%m-%d}")
        return found
