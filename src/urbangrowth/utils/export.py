"""
Export sinks for tables (CSV) and rasters (GeoTIFF).

Rasters are written window by window, so maps of any size can be
exported from the GeoTIFFs the pipeline streams into its work directory.
"""

import logging
import math
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import rasterio
from rasterio.transform import Affine
from rasterio.warp import Resampling, reproject

from urbangrowth import NODATA_CLASS
from urbangrowth.data.raster import RasterGrid


logger = logging.getLogger(__name__)

EXPORT_BLOCK_SIZE = 1024


def geotiff_profile(grid: RasterGrid, dtype: str = 'uint8', nodata: int = NODATA_CLASS) -> dict:
    """LZW compressed single-band GeoTIFF profile, tiled when ``grid`` spans a full tile."""
    profile = {
        'driver': 'GTiff',
        'dtype': dtype,
        'width': grid.width,
        'height': grid.height,
        'count': 1,
        'crs': grid.crs,
        'transform': grid.transform,
        'nodata': nodata,
        'compress': 'lzw',
    }
    if grid.width >= 256 and grid.height >= 256:
        profile.update(tiled=True, blockxsize=256, blockysize=256)
    return profile


def scaled_grid(grid: RasterGrid, scale: float) -> RasterGrid:
    """Grid with the same origin as ``grid`` and ``scale``-meter pixels."""
    factor = scale / grid.resolution_m
    if math.isclose(factor, 1.0):
        return grid

    return RasterGrid(
        transform=grid.transform @ Affine.scale(factor),
        width=max(1, int(math.ceil(grid.width / factor))),
        height=max(1, int(math.ceil(grid.height / factor))),
        crs=grid.crs
    )


class ExportSink(ABC):
    """Persistent storage for result tables and rasters."""

    @abstractmethod
    def export_table(self, table: pd.DataFrame, description: str) -> Path:
        """Write ``table`` under the name ``description``."""

    @abstractmethod
    def export_image(
        self,
        data: np.ndarray,
        grid: RasterGrid,
        description: str,
        scale: Optional[float] = None,
        nodata: int = NODATA_CLASS
    ) -> Path:
        """Write a single-band array at ``scale`` meters."""

    @abstractmethod
    def export_raster(
        self,
        path: str,
        description: str,
        scale: Optional[float] = None,
        nodata: int = NODATA_CLASS
    ) -> Path:
        """Copy the single-band GeoTIFF at ``path``, resampled to ``scale`` meters."""


def resample_to_scale(
    data: np.ndarray,
    grid: RasterGrid,
    scale: float,
    nodata: int = NODATA_CLASS
):
    """
    Nearest-neighbour resampling of a single-band raster to ``scale`` meters.

    Returns the resampled array and its grid.
    """
    target = scaled_grid(grid, scale)
    if target is grid:
        return data, grid

    destination = np.full(target.shape, nodata, dtype=data.dtype)
    reproject(
        source=data,
        destination=destination,
        src_transform=grid.transform,
        src_crs=grid.crs,
        src_nodata=nodata,
        dst_transform=target.transform,
        dst_crs=target.crs,
        dst_nodata=nodata,
        resampling=Resampling.nearest
    )
    return destination, target


class LocalExportSink(ExportSink):
    """Write exports into a local directory."""

    def __init__(self, output_dir: str, block_size: int = EXPORT_BLOCK_SIZE):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.block_size = block_size

    def export_table(self, table: pd.DataFrame, description: str) -> Path:
        path = self.output_dir / f"{description}.csv"
        table.to_csv(path, index=False)
        logger.info(f"Export created: {path}")
        return path

    def export_image(
        self,
        data: np.ndarray,
        grid: RasterGrid,
        description: str,
        scale: Optional[float] = None,
        nodata: int = NODATA_CLASS
    ) -> Path:
        if scale is not None:
            data, grid = resample_to_scale(data, grid, scale, nodata)

        path = self.output_dir / f"{description}.tif"
        with rasterio.open(path, 'w', **geotiff_profile(grid, data.dtype.name, nodata)) as dst:
            dst.write(data, 1)
            dst.update_tags(DESCRIPTION=description)

        logger.info(f"Export created: {path}")
        return path

    def export_raster(
        self,
        path: str,
        description: str,
        scale: Optional[float] = None,
        nodata: int = NODATA_CLASS
    ) -> Path:
        destination_path = self.output_dir / f"{description}.tif"

        with rasterio.open(path) as src:
            grid = RasterGrid(src.transform, src.width, src.height, src.crs)
            target = grid if scale is None else scaled_grid(grid, scale)
            dtype = src.dtypes[0]

            with rasterio.open(destination_path, 'w', **geotiff_profile(target, dtype, nodata)) as dst:
                for block in target.blocks(self.block_size):
                    if target is grid:
                        data = src.read(1, window=block.core)
                    else:
                        data = np.full((block.core.height, block.core.width), nodata, dtype=dtype)
                        reproject(
                            source=rasterio.band(src, 1),
                            destination=data,
                            src_nodata=nodata,
                            dst_transform=target.window_grid(block.core).transform,
                            dst_crs=target.crs,
                            dst_nodata=nodata,
                            resampling=Resampling.nearest
                        )
                    dst.write(data, 1, window=block.core)
                dst.update_tags(DESCRIPTION=description)

        logger.info(f"Export created: {destination_path}")
        return destination_path
