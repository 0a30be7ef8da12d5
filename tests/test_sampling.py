from datetime import datetime

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

from conftest import CRS, StaticSource, make_composite, make_tile, quadrant_layout, quadrant_polygons
from urbangrowth import URBAN
from urbangrowth.config import DEFAULT_CONFIG
from urbangrowth.data.composite import CompositeBuilder
from urbangrowth.data.raster import RasterGrid
from urbangrowth.data.sampling import (
    DEFAULT_SAMPLE_COUNTS, FEATURE_BANDS, collect_samples, load_training_polygons,
    sample_positions, sample_training, split_samples
)


def test_sample_training_columns_and_labels(composite, polygons):
    samples = sample_training(composite, polygons['Urban'], URBAN, 'Urban', 20)

    assert list(samples.columns) == FEATURE_BANDS + ['class', 'label']
    assert len(samples) == 20
    assert (samples['class'] == URBAN).all()
    assert (samples['label'] == 'Urban').all()
    # Urban signature from the synthetic scene
    assert samples['B11'].mean() == pytest.approx(0.30, abs=0.01)


def test_sample_training_is_deterministic(composite, polygons):
    first = sample_training(composite, polygons['Water'], 3, 'Water', 30, seed=7)
    second = sample_training(composite, polygons['Water'], 3, 'Water', 30, seed=7)
    pd.testing.assert_frame_equal(first, second)


def test_sample_training_limited_by_available_pixels(composite, polygons):
    # 8 x 8 sampling positions fit inside each quadrant polygon at 30 m
    samples = sample_training(composite, polygons['Water'], 3, 'Water', 1000)
    assert len(samples) == 64


def test_sample_training_drops_invalid_pixels(composite, polygons):
    composite.band('NDVI')[:30, :30] = np.nan
    samples = sample_training(composite, polygons['Urban'], URBAN, 'Urban', 10)
    assert samples.empty


def test_collect_samples_counts(composite, polygons):
    counts = {'Urban': 40, 'Vegetation': 30, 'BareSoil': 50, 'Water': 20}
    samples = collect_samples(composite, polygons, counts=counts)

    assert samples['class'].value_counts().sort_index().tolist() == [40, 30, 50, 20]
    assert samples['class'].is_monotonic_increasing


def test_collect_samples_without_polygons(composite):
    with pytest.raises(ValueError):
        collect_samples(composite, {})


def test_split_samples_fraction():
    samples = pd.DataFrame({'B2': np.arange(1000, dtype=float), 'class': 0})
    training, validation = split_samples(samples, fraction=0.7, seed=42)

    assert len(training) + len(validation) == 1000
    assert 0.65 < len(training) / 1000 < 0.75
    assert (training['random'] < 0.7).all()
    assert (validation['random'] >= 0.7).all()

    again, _ = split_samples(samples, fraction=0.7, seed=42)
    pd.testing.assert_frame_equal(training, again)


def test_load_training_polygons_dissolves(tmp_path):
    shapes = quadrant_polygons()
    gdf = gpd.GeoDataFrame(
        {'label': ['Urban', 'Urban', 'Water']},
        geometry=[shapes['Urban'], shapes['Vegetation'], shapes['Water']],
        crs='EPSG:32640'
    )
    path = tmp_path / 'polygons.geojson'
    gdf.to_file(path, driver='GeoJSON')

    polygons = load_training_polygons(str(path), 'label', 'EPSG:32640')

    assert set(polygons) == {'Urban', 'Water'}
    assert polygons['Urban'].area == pytest.approx(shapes['Urban'].area * 2)


def test_load_training_polygons_unknown_class(tmp_path):
    gdf = gpd.GeoDataFrame(
        {'label': ['Forest']},
        geometry=[quadrant_polygons()['Urban']],
        crs='EPSG:32640'
    )
    path = tmp_path / 'polygons.geojson'
    gdf.to_file(path, driver='GeoJSON')

    with pytest.raises(ValueError):
        load_training_polygons(str(path), 'label', 'EPSG:32640')


def test_sample_positions_follow_30m_lattice(grid, polygons):
    rows, cols = sample_positions(grid, polygons['Vegetation'])

    inside = grid.region_mask(polygons['Vegetation'])[1::3, 1::3]
    expected_rows, expected_cols = np.nonzero(inside)
    np.testing.assert_array_equal(rows, expected_rows * 3 + 1)
    np.testing.assert_array_equal(cols, expected_cols * 3 + 1)


def test_sample_training_on_block_composite(grid, region, layout, polygons):
    tiles = [make_tile(grid, layout, datetime(2018, 11, 1))]
    builder = CompositeBuilder(StaticSource(tiles), region, grid, block_size=16)

    in_memory = sample_training(builder.build(2018), polygons['BareSoil'], 2, 'BareSoil', 40)
    by_block = sample_training(builder.composite(2018), polygons['BareSoil'], 2, 'BareSoil', 40)

    pd.testing.assert_frame_equal(in_memory, by_block)


def test_default_counts_follow_config():
    assert DEFAULT_SAMPLE_COUNTS == DEFAULT_CONFIG['training']['samples']
    assert FEATURE_BANDS == DEFAULT_CONFIG['training']['bands']


def test_default_counts_on_large_quadrants():
    bounds = (300000.0, 2700000.0, 302000.0, 2702000.0)
    grid = RasterGrid.from_bounds(bounds, 10, CRS)
    composite = make_composite(grid, quadrant_layout(200))
    # At least 33 x 33 sampling positions per 100 x 100 pixel quadrant
    polygons = quadrant_polygons(bounds, margin=2.0)

    samples = collect_samples(composite, polygons)

    assert samples['class'].value_counts().sort_index().tolist() == [800, 600, 1000, 400]

    training, validation = split_samples(samples, seed=42)
    again_training, again_validation = split_samples(collect_samples(composite, polygons), seed=42)
    pd.testing.assert_frame_equal(training, again_training)
    pd.testing.assert_frame_equal(validation, again_validation)
    assert len(training) + len(validation) == 2800
