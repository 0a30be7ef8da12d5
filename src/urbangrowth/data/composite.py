"""
Annual Sentinel-2 Composites
============================

Builds one cloud-free median composite per year:

    1. Fetch every tile intersecting the region in [Oct 1 Y, Apr 30 Y+1)
    2. Mask cloud shadow, medium/high probability cloud and cirrus (SCL)
    3. Keep exactly B2, B3, B4, B8, B11 and SCL
    4. Warp onto the shared grid and take the per-pixel median
    5. Clip to the region, cast to float32, append the spectral indices

Steps 2-5 run per window: a BlockComposite only reads the tiles that
overlap the block being processed.
"""

import logging
import warnings
from datetime import datetime
from typing import Iterator, List, Sequence, Tuple

import numpy as np
from rasterio.windows import Window
from shapely.geometry.base import BaseGeometry

from urbangrowth.data.indices import add_indices
from urbangrowth.data.raster import Block, Composite, RasterGrid, RasterTile
from urbangrowth.data.sources import RasterSource


logger = logging.getLogger(__name__)

COMPOSITE_BANDS = ['B2', 'B3', 'B4', 'B8', 'B11', 'SCL']

# SCL classes removed before compositing:
#   3: Cloud Shadows
#   8: Cloud Medium Probability
#   9: Cloud High Probability
#   10: Thin Cirrus
SCL_MASK_CODES = (3, 8, 9, 10)

DEFAULT_BLOCK_SIZE = 512


class MissingImageryError(RuntimeError):
    """No tile contributed to a composite window."""


def mask_clouds(
    data: np.ndarray,
    band_names: Sequence[str],
    codes: Sequence[int] = SCL_MASK_CODES
) -> np.ndarray:
    """
    Mask clouds and shadows using the SCL band.

    Every band of a pixel whose SCL code is in ``codes`` becomes NaN; all
    other codes pass through unchanged. ``data`` is modified in place when
    it is already float32.
    """
    data = data.astype(np.float32, copy=False)
    invalid = np.isin(data[list(band_names).index('SCL')], codes)
    data[:, invalid] = np.nan
    return data


def composite_window(
    year: int,
    start_month: int = 10,
    start_day: int = 1,
    end_month: int = 4,
    end_day: int = 30
) -> Tuple[datetime, datetime]:
    """Date window [start, end) spanning ``year`` -> ``year + 1``."""
    return (
        datetime(year, start_month, start_day),
        datetime(year + 1, end_month, end_day)
    )


class CompositeBuilder:
    """Median compositing of masked tiles on a fixed grid."""

    def __init__(
        self,
        source: RasterSource,
        region: BaseGeometry,
        grid: RasterGrid,
        config: dict = None,
        block_size: int = DEFAULT_BLOCK_SIZE
    ):
        """
        Initialize builder.

        Args:
            source: Raster source delivering tiles
            region: Region of interest in the grid CRS
            grid: Target grid shared by every composite
            config: ``composite`` section of the configuration
            block_size: Edge of the processing windows in pixels
        """
        self.source = source
        self.region = region
        self.grid = grid
        self.config = config or {}
        self.block_size = block_size
        self.bands = list(COMPOSITE_BANDS)
        self.mask_codes = tuple(self.config.get('mask_codes', SCL_MASK_CODES))

    def window(self, year: int) -> Tuple[datetime, datetime]:
        return composite_window(
            year,
            start_month=self.config.get('start_month', 10),
            start_day=self.config.get('start_day', 1),
            end_month=self.config.get('end_month', 4),
            end_day=self.config.get('end_day', 30)
        )

    def fetch(self, year: int) -> List[RasterTile]:
        """
        Tiles of the composite window for ``year``.

        Raises:
            MissingImageryError: no tile intersects the region and window
        """
        start, end = self.window(year)
        tiles = self.source.tiles(self.region, start, end)
        logger.info(f"{year} - Total images before filtering: {len(tiles)}")

        if not tiles:
            raise MissingImageryError(
                f"No imagery for {year} ({start:%Y-%m-%d} to {end:%Y-%m-%d})"
            )
        return tiles

    def median(self, tiles: Sequence[RasterTile], grid: RasterGrid = None) -> np.ndarray:
        """Per-band, per-pixel median of the masked stack on ``grid``."""
        grid = grid or self.grid
        if not tiles:
            return np.full((len(self.bands),) + grid.shape, np.nan, dtype=np.float32)

        stack = np.empty((len(tiles), len(self.bands)) + grid.shape, dtype=np.float32)
        for i, tile in enumerate(tiles):
            stack[i] = mask_clouds(tile.read(self.bands, grid), self.bands, self.mask_codes)

        with warnings.catch_warnings():
            # All-NaN pixels (never observed clear) stay NaN
            warnings.simplefilter('ignore', category=RuntimeWarning)
            return np.nanmedian(stack, axis=0).astype(np.float32)

    def composite_on(
        self,
        year: int,
        grid: RasterGrid,
        tiles: Sequence[RasterTile],
        tile_count: int = None
    ) -> Composite:
        """Composite of ``tiles`` on ``grid``, clipped to the region, with indices."""
        inside = grid.region_mask(self.region)
        if inside.any():
            data = self.median(tiles, grid)
            data[:, ~inside] = np.nan
        else:
            data = self.median([], grid)

        composite = Composite(
            data=data,
            band_names=list(self.bands),
            grid=grid,
            year=year,
            properties={'tile_count': len(tiles) if tile_count is None else tile_count}
        )
        return add_indices(composite)

    def build(self, year: int, window: Window = None) -> Composite:
        """
        Create the annual composite for ``year`` in memory.

        Args:
            year: Composite year
            window: Restrict to this window of the grid (whole grid if None)

        Raises:
            MissingImageryError: no tile intersects the region and window
        """
        composite = self.composite(year)
        if window is None:
            window = Window(0, 0, self.grid.width, self.grid.height)
        return composite.read(window)

    def composite(self, year: int) -> 'BlockComposite':
        """Lazy composite for ``year``, computed window by window."""
        return BlockComposite(self, year, self.fetch(year))


class BlockComposite:
    """
    Annual composite computed on demand, one window at a time.

    Tile footprints are resolved once; each window only reads the tiles
    overlapping it, so memory scales with the block size rather than the
    region.
    """

    def __init__(self, builder: CompositeBuilder, year: int, tiles: Sequence[RasterTile]):
        self.builder = builder
        self.year = year
        self.tiles = list(tiles)
        self.grid = builder.grid
        self._footprints = np.array(
            [t.footprint(self.grid.crs) for t in self.tiles], dtype=np.float64
        ).reshape(-1, 4)

    @property
    def tile_count(self) -> int:
        return len(self.tiles)

    def overlapping(self, grid: RasterGrid) -> List[RasterTile]:
        west, south, east, north = grid.bounds
        fp = self._footprints
        hits = (fp[:, 0] < east) & (fp[:, 2] > west) & (fp[:, 1] < north) & (fp[:, 3] > south)
        return [tile for tile, hit in zip(self.tiles, hits) if hit]

    def read(self, window: Window) -> Composite:
        """Composite bands and indices for ``window``."""
        grid = self.grid.window_grid(window)
        return self.builder.composite_on(self.year, grid, self.overlapping(grid), self.tile_count)

    def blocks(self, halo: int = 0) -> Iterator[Tuple[Block, Composite]]:
        """Yield every block of the grid with its composite (halo included)."""
        for block in self.grid.blocks(self.builder.block_size, halo):
            yield block, self.read(block.window)

    def sample(self, rows: np.ndarray, cols: np.ndarray, names: Sequence[str]) -> np.ndarray:
        """
        Band values at grid pixel positions, shape (len(rows), len(names)).

        Only the blocks containing a requested pixel are composited.
        """
        size = self.builder.block_size
        values = np.full((len(rows), len(names)), np.nan, dtype=np.float32)
        keys = (rows // size) * self.grid.width + cols // size

        for key in np.unique(keys):
            idx = np.nonzero(keys == key)[0]
            row0 = int(rows[idx[0]] // size) * size
            col0 = int(cols[idx[0]] // size) * size
            window = Window(
                col0, row0,
                min(size, self.grid.width - col0),
                min(size, self.grid.height - row0)
            )
            values[idx] = self.read(window).sample(rows[idx] - row0, cols[idx] - col0, names)

        return values

    def preview(self, max_size: int = 2048) -> Composite:
        """Whole-region composite on a coarse grid, for quicklooks."""
        grid = self.grid.decimated(max_size)
        return self.builder.composite_on(self.year, grid, self.overlapping(grid), self.tile_count)
