"""
Configuration loading.

Defaults live in DEFAULT_CONFIG; a YAML file only needs to carry the keys
it overrides.
"""

import copy
from pathlib import Path
from typing import Optional

import yaml


DEFAULT_CONFIG = {
    'region': {
        'name': 'United Arab Emirates',
        'code': 'UAE',
        # Vector file with the boundary; when empty the LSIB table is used
        'path': None,
        'name_field': 'country_na',
        'crs': 'EPSG:32640',
    },
    'imagery': {
        'source': 'local',
        'tile_dir': 'data/raw/tiles',
        'collection': 'COPERNICUS/S2_SR',
        'bands': ['B2', 'B3', 'B4', 'B8', 'B11', 'SCL'],
        'resolution': 10,
        # Earth Engine downloads, one GeoTIFF per image
        'cache_dir': 'data/raw/ee_cache',
    },
    'composite': {
        'start_month': 10,
        'start_day': 1,
        'end_month': 4,
        'end_day': 30,
        'mask_codes': [3, 8, 9, 10],
    },
    'training': {
        'reference_year': 2018,
        'polygons': 'data/training/polygons.geojson',
        'class_field': 'label',
        'scale': 30,
        'seed': 42,
        'split': 0.7,
        'bands': ['B2', 'B3', 'B4', 'B8', 'B11', 'NDVI', 'NDBI', 'MNDWI', 'BUI', 'DUI'],
        'samples': {
            'Urban': 800,
            'Vegetation': 600,
            'BareSoil': 1000,
            'Water': 400,
        },
    },
    'classifier': {
        'n_trees': 100,
        'min_leaf_population': 5,
        'bag_fraction': 0.7,
        'seed': 42,
    },
    'corrections': {
        'water_mndwi': 0.1,
        'vegetation_ndvi': 0.35,
        'smoothing_radius': 1,
        'smoothing_iterations': 1,
    },
    'processing': {
        # Edge of the square windows composites and class maps are computed in
        'block_size': 512,
    },
    'aggregation': {
        'scale': 100,
        'max_pixels': 1e13,
    },
    'years': [2018, 2019, 2020, 2021, 2022, 2023, 2024],
    'output': {
        'dir': 'outputs',
        'map_scale': 10,
        'export_maps': True,
        # Per-year class maps; defaults to <dir>/work
        'work_dir': None,
    },
}


def _merge(base: dict, override: dict) -> dict:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to a YAML file, or None for the defaults

    Returns:
        Configuration dictionary
    """
    if config_path is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, 'r') as f:
        user_config = yaml.safe_load(f) or {}

    if not isinstance(user_config, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    return _merge(DEFAULT_CONFIG, user_config)
