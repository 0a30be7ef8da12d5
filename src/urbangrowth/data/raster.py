"""
Raster containers
=================

    - RasterGrid: target pixel grid shared by every composite of a run
    - Block: one processing window of a grid, with its halo
    - RasterTile: one acquisition as delivered by a raster source
    - Composite: annual multi-band composite on a RasterGrid (or a window of it)
    - ClassifiedRaster: single-band class map on a RasterGrid

Arrays are stored band-first (bands, height, width) like rasterio reads them.
Invalid pixels are NaN in float rasters and NODATA_CLASS in class maps.

Full-region rasters are never held in memory: work is done window by
window (see RasterGrid.blocks) and class maps are streamed to GeoTIFF.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np
import rasterio
from rasterio.crs import CRS
from rasterio.features import geometry_mask
from rasterio.transform import Affine, array_bounds, from_origin
from rasterio.warp import Resampling, reproject, transform_bounds
from rasterio.windows import Window
from rasterio.windows import transform as window_transform
from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry

from urbangrowth import NODATA_CLASS


EARTH_RADIUS_M = 6371008.8
METERS_PER_DEGREE = 111320.0


@dataclass(frozen=True)
class Block:
    """
    Processing window.

    ``core`` is the part of the grid the block is responsible for;
    ``window`` is ``core`` grown by the halo and clipped to the grid.
    """

    core: Window
    window: Window

    @property
    def trim(self) -> Tuple[slice, slice]:
        """Slices selecting ``core`` inside an array read for ``window``."""
        row = self.core.row_off - self.window.row_off
        col = self.core.col_off - self.window.col_off
        return (
            slice(row, row + self.core.height),
            slice(col, col + self.core.width)
        )


@dataclass(frozen=True)
class RasterGrid:
    """Pixel grid: north-up affine transform, size and CRS."""

    transform: Affine
    width: int
    height: int
    crs: CRS

    @classmethod
    def from_bounds(
        cls,
        bounds: Tuple[float, float, float, float],
        resolution: float,
        crs
    ) -> 'RasterGrid':
        """
        Create a grid covering ``bounds`` (minx, miny, maxx, maxy).

        Args:
            bounds: Bounding box in ``crs`` units
            resolution: Pixel size in ``crs`` units
            crs: Anything CRS.from_user_input accepts
        """
        minx, miny, maxx, maxy = bounds
        width = max(1, int(math.ceil((maxx - minx) / resolution)))
        height = max(1, int(math.ceil((maxy - miny) / resolution)))
        transform = from_origin(minx, maxy, resolution, resolution)
        return cls(transform, width, height, CRS.from_user_input(crs))

    @classmethod
    def for_region(cls, region: BaseGeometry, resolution: float, crs) -> 'RasterGrid':
        return cls.from_bounds(region.bounds, resolution, crs)

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.height, self.width)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(west, south, east, north)"""
        return array_bounds(self.height, self.width, self.transform)

    @property
    def resolution(self) -> float:
        return abs(self.transform.a)

    @property
    def resolution_m(self) -> float:
        """Nominal pixel size in meters."""
        if self.crs.is_geographic:
            return self.resolution * METERS_PER_DEGREE
        return self.resolution

    def window_grid(self, window: Window) -> 'RasterGrid':
        """Sub-grid covering ``window``."""
        return RasterGrid(
            transform=window_transform(window, self.transform),
            width=int(window.width),
            height=int(window.height),
            crs=self.crs
        )

    def decimated(self, max_size: int) -> 'RasterGrid':
        """Same extent with pixels enlarged so neither side exceeds ``max_size``."""
        factor = max(1, int(math.ceil(max(self.height, self.width) / max_size)))
        height = int(math.ceil(self.height / factor))
        width = int(math.ceil(self.width / factor))
        return RasterGrid(
            transform=self.transform @ Affine.scale(self.width / width, self.height / height),
            width=width,
            height=height,
            crs=self.crs
        )

    def window_for(self, bounds: Tuple[float, float, float, float]) -> Window:
        """Smallest window containing ``bounds``, clipped to the grid."""
        minx, miny, maxx, maxy = bounds
        t = self.transform
        # Snap edges within 1e-6 pixel onto the pixel boundary
        col0 = math.floor((minx - t.c) / t.a + 1e-6)
        row0 = math.floor((maxy - t.f) / t.e + 1e-6)
        col1 = math.ceil((maxx - t.c) / t.a - 1e-6)
        row1 = math.ceil((miny - t.f) / t.e - 1e-6)

        col0 = min(max(col0, 0), self.width)
        row0 = min(max(row0, 0), self.height)
        col1 = min(max(col1, col0), self.width)
        row1 = min(max(row1, row0), self.height)
        return Window(col0, row0, col1 - col0, row1 - row0)

    def blocks(self, size: int, halo: int = 0) -> Iterator[Block]:
        """
        Tile the grid into ``size`` x ``size`` blocks, row-major.

        Args:
            size: Core block edge in pixels
            halo: Extra pixels read around each core for neighbourhood filters
        """
        for row in range(0, self.height, size):
            for col in range(0, self.width, size):
                core = Window(col, row, min(size, self.width - col), min(size, self.height - row))
                row0 = max(0, row - halo)
                col0 = max(0, col - halo)
                row1 = min(self.height, row + core.height + halo)
                col1 = min(self.width, col + core.width + halo)
                yield Block(core=core, window=Window(col0, row0, col1 - col0, row1 - row0))

    def region_mask(self, region: BaseGeometry) -> np.ndarray:
        """Boolean mask, True for pixels whose center falls inside ``region``."""
        if self.width == 0 or self.height == 0:
            return np.zeros(self.shape, dtype=bool)
        return geometry_mask(
            [mapping(region)],
            out_shape=self.shape,
            transform=self.transform,
            invert=True,
            all_touched=False
        )

    def pixel_area(self) -> np.ndarray:
        """
        Ground area of each pixel in square meters.

        Returns an array of shape (height, 1) that broadcasts against
        (height, width) rasters. Geographic grids use the spherical cell
        area, which varies with latitude.
        """
        if not self.crs.is_geographic:
            area = abs(self.transform.a * self.transform.e)
            return np.full((self.height, 1), area, dtype=np.float64)

        rows = np.arange(self.height + 1, dtype=np.float64)
        lat_edges = np.radians(self.transform.f + rows * self.transform.e)
        band = np.abs(np.sin(lat_edges[:-1]) - np.sin(lat_edges[1:]))
        dlon = math.radians(abs(self.transform.a))
        return (EARTH_RADIUS_M ** 2 * dlon * band).reshape(-1, 1)


@dataclass(frozen=True)
class RasterTile:
    """
    One multispectral acquisition with its scene classification band.

    A tile either carries its pixels (``data``) or points at a GeoTIFF
    (``path``) that is read window by window on demand.
    """

    data: Optional[np.ndarray]
    band_names: List[str]
    transform: Affine
    crs: CRS
    acquired: datetime
    tile_id: str = ''
    path: Optional[str] = None
    shape: Optional[Tuple[int, int]] = None
    nodata: Optional[float] = None

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        height, width = self.data.shape[1:] if self.data is not None else self.shape
        return array_bounds(height, width, self.transform)

    def footprint(self, crs) -> Tuple[float, float, float, float]:
        """Bounds of the tile in ``crs``."""
        return transform_bounds(self.crs, crs, *self.bounds)

    def overlaps(self, grid: RasterGrid) -> bool:
        west, south, east, north = self.footprint(grid.crs)
        grid_west, grid_south, grid_east, grid_north = grid.bounds
        return west < grid_east and east > grid_west and south < grid_north and north > grid_south

    def _indexes(self, names: Sequence[str]) -> List[int]:
        missing = [n for n in names if n not in self.band_names]
        if missing:
            raise KeyError(f"Tile {self.tile_id or '?'} is missing bands {missing}")
        return [self.band_names.index(n) for n in names]

    def read(self, names: Sequence[str], grid: RasterGrid) -> np.ndarray:
        """
        Resample the named bands onto ``grid`` (nearest neighbour).

        Returns a float32 array (len(names), height, width); pixels outside
        the tile or at its nodata value are NaN.
        """
        indexes = self._indexes(names)
        destination = np.full((len(indexes),) + grid.shape, np.nan, dtype=np.float32)

        if self.data is not None:
            source = self.data[indexes].astype(np.float32, copy=False)
            if self.crs == grid.crs and self.transform == grid.transform and source.shape[1:] == grid.shape:
                return source.copy()

            reproject(
                source=source,
                destination=destination,
                src_transform=self.transform,
                src_crs=self.crs,
                src_nodata=np.nan,
                dst_transform=grid.transform,
                dst_crs=grid.crs,
                dst_nodata=np.nan,
                resampling=Resampling.nearest
            )
            return destination

        with rasterio.open(self.path) as src:
            for i, index in enumerate(indexes):
                reproject(
                    source=rasterio.band(src, index + 1),
                    destination=destination[i],
                    src_nodata=self.nodata,
                    dst_transform=grid.transform,
                    dst_crs=grid.crs,
                    dst_nodata=np.nan,
                    resampling=Resampling.nearest
                )
        return destination


@dataclass
class Composite:
    """Annual multi-band composite."""

    data: np.ndarray
    band_names: List[str]
    grid: RasterGrid
    year: Optional[int] = None
    properties: Dict = field(default_factory=dict)

    def band(self, name: str) -> np.ndarray:
        try:
            return self.data[self.band_names.index(name)]
        except ValueError:
            raise KeyError(f"Composite has no band {name!r}") from None

    def select(self, names: Sequence[str]) -> np.ndarray:
        """Stack of the named bands, shape (len(names), height, width)."""
        return np.stack([self.band(n) for n in names], axis=0)

    def sample(self, rows: np.ndarray, cols: np.ndarray, names: Sequence[str]) -> np.ndarray:
        """Band values at pixel positions, shape (len(rows), len(names))."""
        return np.stack([self.band(n)[rows, cols] for n in names], axis=1)

    def add_bands(self, bands: Dict[str, np.ndarray]) -> 'Composite':
        """Return a new composite with ``bands`` appended."""
        extra = np.stack([b.astype(self.data.dtype) for b in bands.values()], axis=0)
        return Composite(
            data=np.concatenate([self.data, extra], axis=0),
            band_names=self.band_names + list(bands.keys()),
            grid=self.grid,
            year=self.year,
            properties=dict(self.properties)
        )


@dataclass
class ClassifiedRaster:
    """Single-band map of class ids, NODATA_CLASS outside valid data."""

    data: np.ndarray
    grid: RasterGrid
    year: Optional[int] = None

    @property
    def valid(self) -> np.ndarray:
        return self.data != NODATA_CLASS

    def eq(self, class_id: int) -> np.ndarray:
        return self.data == class_id

    @classmethod
    def from_file(cls, path: str, year: int = None, max_size: int = None) -> 'ClassifiedRaster':
        """
        Read a class map GeoTIFF.

        Args:
            path: GeoTIFF written by the pipeline
            year: Year tag
            max_size: Decimate (nearest) so neither side exceeds this many pixels
        """
        with rasterio.open(path) as src:
            grid = RasterGrid(src.transform, src.width, src.height, src.crs)
            if max_size:
                grid = grid.decimated(max_size)

            data = src.read(1, out_shape=grid.shape)
            return cls(data=data, grid=grid, year=year)
