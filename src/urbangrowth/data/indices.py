"""
Spectral indices for desert urban mapping.

    NDVI  = (B8 - B4) / (B8 + B4)
    NDBI  = (B11 - B8) / (B11 + B8)
    MNDWI = (B3 - B11) / (B3 + B11)
    BUI   = NDBI - NDVI
    DUI   = 1.5 * NDBI - NDVI - 0.5 * MNDWI
"""

import numpy as np

from urbangrowth.data.raster import Composite


INDEX_BANDS = ['NDVI', 'NDBI', 'MNDWI', 'BUI', 'DUI']


def normalized_difference(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Compute (a - b) / (a + b).

    Pixels where the denominator is zero, or either operand is NaN, are
    returned as NaN so they stay invalid downstream.
    """
    a = np.asarray(a, dtype=np.float32)
    b = np.asarray(b, dtype=np.float32)
    denominator = a + b

    result = np.full(np.broadcast(a, b).shape, np.nan, dtype=np.float32)
    valid = np.isfinite(denominator) & (denominator != 0)
    np.divide(a - b, denominator, out=result, where=valid)
    return result


def compute_indices(composite: Composite) -> dict:
    """Return the five index bands for ``composite`` keyed by name."""
    ndvi = normalized_difference(composite.band('B8'), composite.band('B4'))
    ndbi = normalized_difference(composite.band('B11'), composite.band('B8'))
    mndwi = normalized_difference(composite.band('B3'), composite.band('B11'))

    bui = ndbi - ndvi
    # Desert Urban Index
    dui = ndbi * 1.5 - ndvi - mndwi * 0.5

    return {
        'NDVI': ndvi,
        'NDBI': ndbi,
        'MNDWI': mndwi,
        'BUI': bui,
        'DUI': dui,
    }


def add_indices(composite: Composite) -> Composite:
    """Append NDVI, NDBI, MNDWI, BUI and DUI as bands of ``composite``."""
    return composite.add_bands(compute_indices(composite))
