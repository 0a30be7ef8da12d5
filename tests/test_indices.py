import numpy as np

from urbangrowth.data.indices import INDEX_BANDS, compute_indices, normalized_difference
from urbangrowth.data.composite import COMPOSITE_BANDS


def test_normalized_difference_values():
    result = normalized_difference(np.array([0.4, 0.2]), np.array([0.1, 0.2]))
    np.testing.assert_allclose(result, [0.6, 0.0], rtol=1e-6)


def test_normalized_difference_zero_denominator_is_nan():
    result = normalized_difference(np.array([0.0, 0.3]), np.array([0.0, 0.1]))
    assert np.isnan(result[0])
    assert np.isfinite(result[1])


def test_normalized_difference_propagates_nan():
    result = normalized_difference(np.array([np.nan]), np.array([0.2]))
    assert np.isnan(result[0])


def test_indices_within_unit_range(composite):
    for name in ('NDVI', 'NDBI', 'MNDWI'):
        values = composite.band(name)
        assert np.nanmin(values) >= -1
        assert np.nanmax(values) <= 1


def test_composite_band_order(composite):
    assert composite.band_names == COMPOSITE_BANDS + INDEX_BANDS


def test_derived_indices(composite):
    indices = compute_indices(composite)
    np.testing.assert_allclose(indices['BUI'], indices['NDBI'] - indices['NDVI'], atol=1e-6)
    np.testing.assert_allclose(
        indices['DUI'],
        1.5 * indices['NDBI'] - indices['NDVI'] - 0.5 * indices['MNDWI'],
        atol=1e-6
    )
