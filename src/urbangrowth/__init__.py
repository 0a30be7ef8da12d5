"""
Urban Growth Analysis from Sentinel-2 Composites
================================================

Annual cloud-free composites, Random Forest land cover classification and
urban-area growth statistics for a fixed region of interest.
"""

__version__ = "1.0.0"

CLASS_NAMES = {
    0: 'Urban',
    1: 'Vegetation',
    2: 'BareSoil',
    3: 'Water',
}

URBAN = 0
VEGETATION = 1
BARE_SOIL = 2
WATER = 3

NODATA_CLASS = 255
