"""
Training Sample Collection
==========================

Draws labeled pixel samples from hand-digitized polygons against the
reference-year composite, then splits them into training and validation
sets with a seeded random column.
"""

import logging
from typing import Dict, List, Sequence, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio.transform import Affine
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from urbangrowth import CLASS_NAMES
from urbangrowth.config import DEFAULT_CONFIG
from urbangrowth.data.composite import BlockComposite
from urbangrowth.data.raster import Composite, RasterGrid


logger = logging.getLogger(__name__)

FEATURE_BANDS = list(DEFAULT_CONFIG['training']['bands'])

CLASS_IDS = {name: class_id for class_id, name in CLASS_NAMES.items()}

# BareSoil oversampled for desert-dominated terrain
DEFAULT_SAMPLE_COUNTS = dict(DEFAULT_CONFIG['training']['samples'])


def load_training_polygons(
    path: str,
    class_field: str,
    crs
) -> Dict[str, BaseGeometry]:
    """
    Load training polygons and dissolve them per class.

    Args:
        path: Vector file (GeoJSON, shapefile, GeoPackage)
        class_field: Attribute holding the class name (Urban, Vegetation, ...)
        crs: Working CRS

    Returns:
        Mapping of class name to a single (multi)polygon
    """
    gdf = gpd.read_file(path).to_crs(crs)

    if class_field not in gdf.columns:
        raise ValueError(f"{path} has no column {class_field!r}")

    unknown = set(gdf[class_field]) - set(CLASS_IDS)
    if unknown:
        raise ValueError(f"Unknown training classes in {path}: {sorted(unknown)}")

    return {
        name: unary_union(group.geometry.values)
        for name, group in gdf.groupby(class_field)
    }


def sampling_grid(grid: RasterGrid, step: int) -> RasterGrid:
    """
    Grid whose pixel centers are every ``step``-th pixel center of ``grid``,
    starting at pixel ``step // 2``.
    """
    offset = step // 2
    shift = offset + 0.5 - 0.5 * step
    return RasterGrid(
        transform=grid.transform @ Affine.translation(shift, shift) @ Affine.scale(step),
        width=len(range(offset, grid.width, step)),
        height=len(range(offset, grid.height, step)),
        crs=grid.crs
    )


def sample_positions(grid: RasterGrid, polygon: BaseGeometry, scale: float = 30) -> Tuple[np.ndarray, np.ndarray]:
    """
    Row and column of every sampling-grid pixel inside ``polygon``.

    Only the window of the sampling grid covering the polygon bounds is
    rasterized. Positions are returned in row-major order.
    """
    step = max(1, int(round(scale / grid.resolution_m)))
    offset = step // 2
    lattice = sampling_grid(grid, step)

    window = lattice.window_for(polygon.bounds)
    inside = lattice.window_grid(window).region_mask(polygon)
    rows, cols = np.nonzero(inside)

    rows = (rows + window.row_off) * step + offset
    cols = (cols + window.col_off) * step + offset
    return rows, cols


def sample_training(
    composite: Union[Composite, BlockComposite],
    polygon: BaseGeometry,
    class_id: int,
    class_name: str,
    n_samples: int,
    bands: Sequence[str] = FEATURE_BANDS,
    scale: float = 30,
    seed: int = 42
) -> pd.DataFrame:
    """
    Collect training samples inside one polygon.

    Pixels are taken on a sampling grid of ``scale`` meters (nearest
    neighbour on the composite); pixels with any invalid band are dropped.

    Args:
        composite: Reference composite, in memory or computed per block
        polygon: Training geometry in the composite CRS
        class_id: Numeric class
        class_name: Class label
        n_samples: Number of samples to draw
        bands: Feature bands to extract
        scale: Sampling resolution in meters
        seed: Random seed

    Returns:
        DataFrame with one column per band plus 'class' and 'label'
    """
    rows, cols = sample_positions(composite.grid, polygon, scale)

    features = composite.sample(rows, cols, bands)
    features = features[np.isfinite(features).all(axis=1)]

    count = min(n_samples, len(features))
    if count < n_samples:
        logger.warning(f"{class_name}: only {count} valid pixels for {n_samples} samples")

    rng = np.random.default_rng(seed)
    chosen = np.sort(rng.choice(len(features), size=count, replace=False))

    samples = pd.DataFrame(features[chosen].astype(np.float64), columns=list(bands))
    samples['class'] = class_id
    samples['label'] = class_name
    return samples


def collect_samples(
    composite: Union[Composite, BlockComposite],
    polygons: Dict[str, BaseGeometry],
    counts: Dict[str, int] = None,
    bands: Sequence[str] = FEATURE_BANDS,
    scale: float = 30,
    seed: int = 42
) -> pd.DataFrame:
    """Sample every class and merge into one pool (class order Urban..Water)."""
    counts = counts or DEFAULT_SAMPLE_COUNTS
    parts: List[pd.DataFrame] = []

    for class_id in sorted(CLASS_NAMES):
        class_name = CLASS_NAMES[class_id]
        if class_name not in polygons:
            logger.warning(f"No training polygons for {class_name}")
            continue

        parts.append(sample_training(
            composite,
            polygons[class_name],
            class_id,
            class_name,
            counts.get(class_name, 0),
            bands=bands,
            scale=scale,
            seed=seed
        ))

    if not parts:
        raise ValueError("No training polygons matched any class")

    samples = pd.concat(parts, ignore_index=True)
    logger.info(f"Total training samples: {len(samples)}")
    logger.info(f"Class distribution: {samples['class'].value_counts().sort_index().to_dict()}")
    return samples


def split_samples(
    samples: pd.DataFrame,
    fraction: float = 0.7,
    seed: int = 42
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Split samples into training and validation sets.

    A uniform 'random' column is drawn with ``seed``; rows below
    ``fraction`` go to training, the rest to validation.
    """
    rng = np.random.default_rng(seed)
    split = samples.assign(random=rng.random(len(samples)))

    training = split[split['random'] < fraction].reset_index(drop=True)
    validation = split[split['random'] >= fraction].reset_index(drop=True)

    logger.info(f"Training set: {len(training)}")
    logger.info(f"Validation set: {len(validation)}")
    return training, validation
