from datetime import datetime

import numpy as np
import pytest
from rasterio.transform import Affine
from rasterio.windows import Window
from shapely.geometry import box

from conftest import SCL_CLOUD, StaticSource, make_tile
from urbangrowth.data.composite import (
    COMPOSITE_BANDS, CompositeBuilder, MissingImageryError, composite_window, mask_clouds
)
from urbangrowth.data.indices import INDEX_BANDS
from urbangrowth.data.raster import RasterGrid, RasterTile


def test_composite_window_spans_winter():
    start, end = composite_window(2018)
    assert start == datetime(2018, 10, 1)
    assert end == datetime(2019, 4, 30)


def test_mask_clouds_removes_every_band(grid, layout):
    tile = make_tile(grid, layout, datetime(2018, 11, 1))
    data = tile.data.copy()
    data[5, 0, 0] = SCL_CLOUD
    data[5, 0, 1] = 8
    data[5, 0, 2] = 3
    data[5, 0, 3] = 10

    masked = mask_clouds(data.copy(), COMPOSITE_BANDS)

    assert np.isnan(masked[:, 0, :4]).all()
    np.testing.assert_array_equal(masked[:, 1, :], data[:, 1, :])


def test_mask_clouds_keeps_other_codes(grid, layout):
    tile = make_tile(grid, layout, datetime(2018, 11, 1), scl=5)
    masked = mask_clouds(tile.data.copy(), COMPOSITE_BANDS)
    assert np.isfinite(masked).all()


def test_median_ignores_masked_observations(grid, region, layout):
    tiles = []
    for i, value in enumerate([0.1, 0.2, 0.9]):
        tile = make_tile(grid, layout, datetime(2018, 11, 1 + i))
        tile.data[:5] = value
        tiles.append(tile)
    # Cloud over the darkest observation at one pixel
    tiles[0].data[5, 3, 3] = SCL_CLOUD

    builder = CompositeBuilder(StaticSource(tiles), region, grid)
    median = builder.median(tiles)

    assert median[0, 0, 0] == pytest.approx(0.2)
    assert median[0, 3, 3] == pytest.approx(0.55)


def test_build_adds_indices_and_tile_count(grid, region, layout):
    tiles = [
        make_tile(grid, layout, datetime(2018, 10, 15)),
        make_tile(grid, layout, datetime(2019, 2, 1), seed=1),
        make_tile(grid, layout, datetime(2019, 6, 1), seed=2),
    ]
    source = StaticSource(tiles)
    builder = CompositeBuilder(source, region, grid)

    composite = builder.build(2018)

    assert composite.year == 2018
    assert composite.properties['tile_count'] == 2
    assert composite.band_names[-len(INDEX_BANDS):] == INDEX_BANDS
    assert composite.data.dtype == np.float32
    assert source.requests == [(datetime(2018, 10, 1), datetime(2019, 4, 30))]


def test_build_clips_to_region(grid, layout):
    region = box(300000, 2700000, 300300, 2700600)
    tiles = [make_tile(grid, layout, datetime(2018, 12, 1))]

    composite = CompositeBuilder(StaticSource(tiles), region, grid).build(2018)

    assert np.isfinite(composite.band('B2')[:, :30]).all()
    assert np.isnan(composite.band('B2')[:, 30:]).all()


def test_build_without_tiles_raises(grid, region):
    builder = CompositeBuilder(StaticSource([]), region, grid)
    with pytest.raises(MissingImageryError):
        builder.build(2020)


def test_fully_clouded_year_composite_is_empty(grid, region, layout):
    tiles = [make_tile(grid, layout, datetime(2021, 11, 1), scl=SCL_CLOUD)]
    composite = CompositeBuilder(StaticSource(tiles), region, grid).build(2021)
    assert np.isnan(composite.band('B8')).all()


def test_tile_read_resamples_coarser_tile(grid):
    coarse = RasterGrid.from_bounds((300000.0, 2700000.0, 300600.0, 2700600.0), 20, grid.crs)
    tile = RasterTile(
        data=np.full((6,) + coarse.shape, 5.0, dtype=np.float32),
        band_names=list(COMPOSITE_BANDS),
        transform=coarse.transform,
        crs=coarse.crs,
        acquired=datetime(2018, 11, 1)
    )

    warped = tile.read(COMPOSITE_BANDS, grid)

    assert warped.shape == (6,) + grid.shape
    assert np.all(warped == 5.0)


def test_tile_read_window_outside_tile_is_nan(grid, layout):
    tile = make_tile(grid, layout, datetime(2018, 11, 1))
    beyond = RasterGrid.from_bounds((300600.0, 2700000.0, 300700.0, 2700100.0), 10, grid.crs)

    data = tile.read(['B2'], beyond)

    assert data.shape == (1, 10, 10)
    assert np.isnan(data).all()


def test_tile_read_missing_band_raises(grid, layout):
    tile = make_tile(grid, layout, datetime(2018, 11, 1))
    with pytest.raises(KeyError):
        tile.read(['B2', 'B5'], grid)


def test_blocks_match_whole_grid_composite(grid, layout):
    region = box(300000, 2700000, 300300, 2700600)
    tiles = [
        make_tile(grid, layout, datetime(2018, 11, 1)),
        make_tile(grid, layout, datetime(2019, 1, 1), seed=1),
        make_tile(grid, layout, datetime(2019, 3, 1), seed=2),
    ]
    tiles[1].data[5, 10:20, 10:20] = SCL_CLOUD

    full = CompositeBuilder(StaticSource(tiles), region, grid).build(2018)
    composite = CompositeBuilder(StaticSource(tiles), region, grid, block_size=16).composite(2018)

    blocks = list(composite.blocks())
    assert len(blocks) == 16
    for block, part in blocks:
        assert part.band_names == full.band_names
        assert part.properties['tile_count'] == 3
        np.testing.assert_array_equal(part.data, full.data[(slice(None),) + block.window.toslices()])


def test_block_halo_is_trimmed_back_to_core(grid, region, layout):
    tiles = [make_tile(grid, layout, datetime(2018, 11, 1))]
    full = CompositeBuilder(StaticSource(tiles), region, grid).build(2018)
    composite = CompositeBuilder(StaticSource(tiles), region, grid, block_size=16).composite(2018)

    for block, part in composite.blocks(halo=2):
        assert part.grid.shape == (block.window.height, block.window.width)
        np.testing.assert_array_equal(
            part.band('NDVI')[block.trim],
            full.band('NDVI')[block.core.toslices()]
        )


def test_block_reads_only_overlapping_tiles(grid, region, layout):
    west = RasterTile(
        data=make_tile(grid, layout, datetime(2018, 11, 1)).data[:, :, :30],
        band_names=list(COMPOSITE_BANDS),
        transform=grid.transform,
        crs=grid.crs,
        acquired=datetime(2018, 11, 1),
        tile_id='west'
    )
    east = RasterTile(
        data=make_tile(grid, layout, datetime(2018, 11, 2)).data[:, :, 30:],
        band_names=list(COMPOSITE_BANDS),
        transform=grid.transform @ Affine.translation(30, 0),
        crs=grid.crs,
        acquired=datetime(2018, 11, 2),
        tile_id='east'
    )

    composite = CompositeBuilder(StaticSource([west, east]), region, grid, block_size=16).composite(2018)

    assert [t.tile_id for t in composite.overlapping(grid.window_grid(Window(0, 0, 16, 16)))] == ['west']
    assert [t.tile_id for t in composite.overlapping(grid.window_grid(Window(48, 0, 12, 16)))] == ['east']
    assert len(composite.overlapping(grid)) == 2
    assert np.isfinite(composite.read(Window(0, 0, 60, 60)).band('B2')).all()


def test_sample_matches_whole_grid_composite(grid, region, layout):
    tiles = [make_tile(grid, layout, datetime(2018, 11, 1))]
    full = CompositeBuilder(StaticSource(tiles), region, grid).build(2018)
    composite = CompositeBuilder(StaticSource(tiles), region, grid, block_size=16).composite(2018)

    rng = np.random.default_rng(0)
    rows = rng.integers(0, 60, size=200)
    cols = rng.integers(0, 60, size=200)

    np.testing.assert_array_equal(
        composite.sample(rows, cols, ['B2', 'NDVI']),
        full.sample(rows, cols, ['B2', 'NDVI'])
    )


def test_preview_covers_region_on_coarse_grid(grid, region, layout):
    tiles = [make_tile(grid, layout, datetime(2018, 11, 1))]
    composite = CompositeBuilder(StaticSource(tiles), region, grid).composite(2018)

    preview = composite.preview(max_size=20)

    assert preview.grid.shape == (20, 20)
    assert preview.grid.bounds == pytest.approx(grid.bounds)
    assert np.isfinite(preview.band('NDVI')).all()
