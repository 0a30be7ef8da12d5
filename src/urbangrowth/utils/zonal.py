"""
Zonal Statistics
================

Sum of a per-pixel quantity over a region at a coarsened computation scale,
either in one pass or accumulated over the blocks of a grid.
Calls return a ZonalResult carrying either a value or the reason there is
none.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from urbangrowth import URBAN
from urbangrowth.data.raster import ClassifiedRaster, RasterGrid


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ZonalResult:
    """Outcome of a zonal reduction."""

    value: Optional[float] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.value is not None

    @classmethod
    def no_data(cls, reason: str) -> 'ZonalResult':
        return cls(value=None, reason=reason)


def coarsen_factor(grid: RasterGrid, scale: float) -> int:
    """Number of grid pixels per side of one ``scale``-meter cell."""
    return max(1, int(round(scale / grid.resolution_m)))


class ZonalSum:
    """
    Area-weighted sum accumulated block by block.

    The raster is sampled at the center pixel of every ``scale`` cell
    (nearest neighbour) and each sample stands for the whole cell. Cells
    are anchored on the full grid, so summing the blocks of a grid gives
    the same result as a single pass over it. Blocks must not overlap.
    """

    def __init__(self, grid: RasterGrid, scale: float = 100, max_pixels: float = 1e13):
        """
        Args:
            grid: Full grid the blocks belong to
            scale: Computation scale in meters
            max_pixels: Maximum number of cells to reduce
        """
        self.factor = coarsen_factor(grid, scale)
        self.offset = self.factor // 2
        self.max_pixels = max_pixels
        self.cells = 0
        self.valid_cells = 0
        self.total = 0.0

    def add(
        self,
        values: np.ndarray,
        valid: np.ndarray,
        region_mask: np.ndarray,
        grid: RasterGrid,
        row_off: int = 0,
        col_off: int = 0
    ):
        """
        Add one block.

        Args:
            values: Per-pixel quantity (h, w), e.g. 1 for urban pixels
            valid: Pixels carrying data
            region_mask: Pixels inside the region
            grid: Grid of the block arrays
            row_off: Row of the block in the full grid
            col_off: Column of the block in the full grid
        """
        f = self.factor
        row0 = (self.offset - row_off) % f
        col0 = (self.offset - col_off) % f

        sampled_region = region_mask[row0::f, col0::f]
        sampled_valid = valid[row0::f, col0::f] & sampled_region
        self.cells += int(sampled_region.sum())
        self.valid_cells += int(sampled_valid.sum())

        if sampled_valid.any():
            cell_area = grid.pixel_area()[row0::f] * f ** 2
            sampled_values = values[row0::f, col0::f]
            self.total += float(np.sum(np.where(sampled_valid, sampled_values * cell_area, 0.0)))

    def result(self) -> ZonalResult:
        """Area-weighted sum in square meters."""
        if self.cells > self.max_pixels:
            return ZonalResult.no_data(f"{self.cells} cells exceed max_pixels={self.max_pixels:g}")
        if not self.valid_cells:
            return ZonalResult.no_data("no valid pixels in region")
        return ZonalResult(value=self.total)


def reduce_region_sum(
    values: np.ndarray,
    valid: np.ndarray,
    region_mask: np.ndarray,
    grid: RasterGrid,
    scale: float = 100,
    max_pixels: float = 1e13
) -> ZonalResult:
    """Sum ``values`` weighted by cell area over the region in one pass (see ZonalSum)."""
    zonal = ZonalSum(grid, scale=scale, max_pixels=max_pixels)
    zonal.add(values, valid, region_mask, grid)
    return zonal.result()


class UrbanAreaSum:
    """Urban (class 0) area of a class map streamed block by block, in km²."""

    def __init__(self, grid: RasterGrid, scale: float = 100, max_pixels: float = 1e13):
        self.zonal = ZonalSum(grid, scale=scale, max_pixels=max_pixels)
        self.year = None

    def add(self, classified: ClassifiedRaster, region_mask: np.ndarray, row_off: int = 0, col_off: int = 0):
        self.year = classified.year
        self.zonal.add(
            classified.eq(URBAN).astype(np.float64),
            classified.valid,
            region_mask,
            classified.grid,
            row_off=row_off,
            col_off=col_off
        )

    def result(self) -> ZonalResult:
        result = self.zonal.result()
        if not result.ok:
            return result

        logger.debug(f"Raw urban area {self.year}: {result.value:.1f} m²")
        return ZonalResult(value=result.value / 1e6)


def urban_area_km2(
    classified: ClassifiedRaster,
    region_mask: np.ndarray,
    scale: float = 100,
    max_pixels: float = 1e13
) -> ZonalResult:
    """Urban (class 0) area of ``classified`` within the region, in km²."""
    area = UrbanAreaSum(classified.grid, scale=scale, max_pixels=max_pixels)
    area.add(classified, region_mask)
    return area.result()
