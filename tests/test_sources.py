from datetime import datetime
from pathlib import Path

import numpy as np
import pytest
import rasterio
from rasterio.windows import Window
from shapely.geometry import box

from conftest import write_tile
from urbangrowth.data.sources import LocalRasterSource, parse_acquisition_date


def test_parse_acquisition_date_prefers_tag():
    date = parse_acquisition_date(Path('S2_20190101.tif'), {'ACQUISITION_DATE': '2018-11-05'})
    assert date == datetime(2018, 11, 5)


def test_parse_acquisition_date_from_filename():
    assert parse_acquisition_date(Path('S2A_20181105_T40RCN.tif'), {}) == datetime(2018, 11, 5)
    assert parse_acquisition_date(Path('tile.tif'), {}) is None


def test_missing_tile_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        LocalRasterSource(tmp_path / 'missing', 'EPSG:32640')


def test_tiles_filtered_by_window(tmp_path, grid, region, layout):
    write_tile(tmp_path / 'a.tif', grid, layout, datetime(2018, 11, 1))
    write_tile(tmp_path / 'b.tif', grid, layout, datetime(2019, 4, 30))
    write_tile(tmp_path / 'S2_20190115.tif', grid, layout, describe=False)
    write_tile(tmp_path / 'undated.tif', grid, layout)

    source = LocalRasterSource(tmp_path, 'EPSG:32640')
    tiles = source.tiles(region, datetime(2018, 10, 1), datetime(2019, 4, 30))

    assert [t.tile_id for t in tiles] == ['S2_20190115', 'a']
    assert tiles[0].band_names == ['B2', 'B3', 'B4', 'B8', 'B11', 'SCL']
    assert tiles[1].data is None
    assert tiles[1].shape == grid.shape

    data = tiles[1].read(['B2', 'SCL'], grid)
    assert data.shape == (2,) + grid.shape
    assert data.dtype == np.float32


def test_tiles_outside_region_are_skipped(tmp_path, grid, layout):
    write_tile(tmp_path / 'a.tif', grid, layout, datetime(2018, 11, 1))
    far_away = box(400000, 2800000, 401000, 2801000)

    source = LocalRasterSource(tmp_path, 'EPSG:32640')
    assert source.tiles(far_away, datetime(2018, 10, 1), datetime(2019, 4, 30)) == []


def test_file_tile_reads_window(tmp_path, grid, region, layout):
    write_tile(tmp_path / 'a.tif', grid, layout, datetime(2018, 11, 1))
    tile = LocalRasterSource(tmp_path, 'EPSG:32640').tiles(region, datetime(2018, 10, 1), datetime(2019, 4, 30))[0]
    with rasterio.open(tmp_path / 'a.tif') as src:
        expected = src.read(1, window=Window(10, 20, 16, 8))

    data = tile.read(['B2'], grid.window_grid(Window(10, 20, 16, 8)))

    np.testing.assert_array_equal(data[0], expected)
    assert tile.overlaps(grid.window_grid(Window(10, 20, 16, 8)))
