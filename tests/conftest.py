"""Synthetic Sentinel-2 scenes shared by the tests."""

from datetime import datetime

import numpy as np
import pytest
import rasterio
from shapely.geometry import box

from urbangrowth import BARE_SOIL, URBAN, VEGETATION, WATER
from urbangrowth.data.composite import COMPOSITE_BANDS
from urbangrowth.data.indices import add_indices
from urbangrowth.data.raster import Composite, RasterGrid, RasterTile
from urbangrowth.data.sources import RasterSource


CRS = 'EPSG:32640'
BOUNDS = (300000.0, 2700000.0, 300600.0, 2700600.0)

# Surface reflectance for B2, B3, B4, B8, B11
SIGNATURES = {
    URBAN: (0.15, 0.16, 0.18, 0.22, 0.30),
    VEGETATION: (0.03, 0.06, 0.04, 0.40, 0.20),
    BARE_SOIL: (0.20, 0.25, 0.30, 0.35, 0.45),
    WATER: (0.08, 0.10, 0.06, 0.03, 0.01),
}

# SCL "vegetation" / "not vegetated" codes are kept, 9 is masked
SCL_CLEAR = 4
SCL_CLOUD = 9


class StaticSource(RasterSource):
    """Returns fixed tiles filtered by acquisition date."""

    def __init__(self, tiles):
        self._tiles = tiles
        self.requests = []

    def tiles(self, region, start, end):
        self.requests.append((start, end))
        return [t for t in self._tiles if start <= t.acquired < end]


def quadrant_layout(size: int = 60) -> np.ndarray:
    """Urban top-left, vegetation top-right, bare soil bottom-left, water bottom-right."""
    half = size // 2
    layout = np.empty((size, size), dtype=np.uint8)
    layout[:half, :half] = URBAN
    layout[:half, half:] = VEGETATION
    layout[half:, :half] = BARE_SOIL
    layout[half:, half:] = WATER
    return layout


def quadrant_polygons(bounds=BOUNDS, margin: float = 20.0) -> dict:
    """Training polygons slightly inside each quadrant of ``quadrant_layout``."""
    minx, miny, maxx, maxy = bounds
    midx, midy = (minx + maxx) / 2, (miny + maxy) / 2
    return {
        'Urban': box(minx + margin, midy + margin, midx - margin, maxy - margin),
        'Vegetation': box(midx + margin, midy + margin, maxx - margin, maxy - margin),
        'BareSoil': box(minx + margin, miny + margin, midx - margin, midy - margin),
        'Water': box(midx + margin, miny + margin, maxx - margin, midy - margin),
    }


def scene(layout: np.ndarray, scl: int = SCL_CLEAR, seed: int = 0) -> np.ndarray:
    """Six-band (B2, B3, B4, B8, B11, SCL) array for a class layout."""
    rng = np.random.default_rng(seed)
    data = np.empty((len(COMPOSITE_BANDS),) + layout.shape, dtype=np.float32)
    for class_id, signature in SIGNATURES.items():
        for b, value in enumerate(signature):
            data[b][layout == class_id] = value
    data[:5] += rng.normal(0, 0.005, size=data[:5].shape).astype(np.float32)
    data[5] = scl
    return data


def make_tile(grid: RasterGrid, layout: np.ndarray, acquired: datetime, scl: int = SCL_CLEAR, seed: int = 0):
    return RasterTile(
        data=scene(layout, scl=scl, seed=seed),
        band_names=list(COMPOSITE_BANDS),
        transform=grid.transform,
        crs=grid.crs,
        acquired=acquired,
        tile_id=f"S2_{acquired:%Y%m%d}"
    )


def make_composite(grid: RasterGrid, layout: np.ndarray, year: int = 2018) -> Composite:
    composite = Composite(
        data=scene(layout),
        band_names=list(COMPOSITE_BANDS),
        grid=grid,
        year=year
    )
    return add_indices(composite)


def write_tile(path, grid: RasterGrid, layout: np.ndarray, acquired: datetime = None, describe: bool = True):
    """Write a scene as a GeoTIFF with band descriptions and a date tag."""
    data = scene(layout)
    profile = {
        'driver': 'GTiff',
        'dtype': 'float32',
        'width': grid.width,
        'height': grid.height,
        'count': data.shape[0],
        'crs': grid.crs,
        'transform': grid.transform,
    }
    with rasterio.open(path, 'w', **profile) as dst:
        dst.write(data)
        if describe:
            for i, name in enumerate(COMPOSITE_BANDS, start=1):
                dst.set_band_description(i, name)
        if acquired is not None:
            dst.update_tags(ACQUISITION_DATE=acquired.strftime('%Y-%m-%d'))
    return path


@pytest.fixture
def grid():
    return RasterGrid.from_bounds(BOUNDS, 10, CRS)


@pytest.fixture
def region():
    return box(*BOUNDS)


@pytest.fixture
def layout():
    return quadrant_layout()


@pytest.fixture
def polygons():
    return quadrant_polygons()


@pytest.fixture
def composite(grid, layout):
    return make_composite(grid, layout)
