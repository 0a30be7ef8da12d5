"""
Per-Year Land Cover Classification
==================================

composite -> Random Forest -> vegetation override -> water override
-> 3x3 mode filter -> clip to region

Large regions are classified block by block (see classify_blocks).

Only two corrections are applied on top of the model output, both based on
highly reliable spectral signatures:
    - NDVI > 0.35   -> Vegetation
    - MNDWI > 0.1   -> Water (applied last, so water wins)
"""

import logging
from typing import Iterator, Tuple

import numpy as np
from scipy import ndimage
from shapely.geometry.base import BaseGeometry

from urbangrowth import CLASS_NAMES, NODATA_CLASS, VEGETATION, WATER
from urbangrowth.data.composite import BlockComposite, CompositeBuilder
from urbangrowth.data.raster import Block, ClassifiedRaster, Composite
from urbangrowth.models.classifier import LandCoverClassifier


logger = logging.getLogger(__name__)


def apply_threshold_override(
    classes: np.ndarray,
    index: np.ndarray,
    threshold: float,
    class_id: int
) -> np.ndarray:
    """Force ``class_id`` on valid pixels where ``index > threshold``."""
    valid = classes != NODATA_CLASS
    with np.errstate(invalid='ignore'):
        override = valid & (index > threshold)
    return np.where(override, np.uint8(class_id), classes).astype(np.uint8)


def apply_water_override(classes: np.ndarray, mndwi: np.ndarray, threshold: float = 0.1) -> np.ndarray:
    return apply_threshold_override(classes, mndwi, threshold, WATER)


def apply_vegetation_override(classes: np.ndarray, ndvi: np.ndarray, threshold: float = 0.35) -> np.ndarray:
    return apply_threshold_override(classes, ndvi, threshold, VEGETATION)


def mode_filter(
    classes: np.ndarray,
    radius: int = 1,
    iterations: int = 1,
    num_classes: int = len(CLASS_NAMES)
) -> np.ndarray:
    """
    Majority filter over a square (2 * radius + 1) neighbourhood.

    No-data pixels neither vote nor change. Ties resolve to the lowest
    class id.
    """
    kernel = np.ones((2 * radius + 1, 2 * radius + 1), dtype=np.int32)
    result = classes.astype(np.uint8, copy=True)

    for _ in range(iterations):
        valid = result != NODATA_CLASS
        counts = np.stack([
            ndimage.convolve((result == c).astype(np.int32), kernel, mode='constant', cval=0)
            for c in range(num_classes)
        ])
        result = np.where(valid, counts.argmax(axis=0), NODATA_CLASS).astype(np.uint8)

    return result


class YearClassifier:
    """Classify annual composites with a trained model and fixed corrections."""

    def __init__(
        self,
        builder: CompositeBuilder,
        classifier: LandCoverClassifier,
        region: BaseGeometry,
        config: dict = None
    ):
        """
        Args:
            builder: Composite builder for the region
            classifier: Trained classifier
            region: Region of interest
            config: ``corrections`` section of the configuration
        """
        config = config or {}
        self.builder = builder
        self.classifier = classifier
        self.region = region
        self.water_threshold = config.get('water_mndwi', 0.1)
        self.vegetation_threshold = config.get('vegetation_ndvi', 0.35)
        self.smoothing_radius = config.get('smoothing_radius', 1)
        self.smoothing_iterations = config.get('smoothing_iterations', 1)

    @property
    def halo(self) -> int:
        """Pixels of context the mode filter needs around a block."""
        return self.smoothing_radius * self.smoothing_iterations

    def classify(self, composite: Composite) -> ClassifiedRaster:
        raw = self.classifier.classify(composite)

        classes = apply_vegetation_override(raw.data, composite.band('NDVI'), self.vegetation_threshold)
        classes = apply_water_override(classes, composite.band('MNDWI'), self.water_threshold)

        classes = mode_filter(
            classes,
            radius=self.smoothing_radius,
            iterations=self.smoothing_iterations
        )
        classes[~composite.grid.region_mask(self.region)] = NODATA_CLASS

        return ClassifiedRaster(data=classes, grid=composite.grid, year=composite.year)

    def classify_blocks(self, composite: BlockComposite) -> Iterator[Tuple[Block, ClassifiedRaster]]:
        """
        Classify ``composite`` block by block.

        Each block is composited and classified with a halo wide enough for
        the mode filter, then cropped to its core, so the tiles match a
        single pass over the whole grid.
        """
        for block, part in composite.blocks(halo=self.halo):
            classified = self.classify(part)
            yield block, ClassifiedRaster(
                data=classified.data[block.trim],
                grid=composite.grid.window_grid(block.core),
                year=composite.year
            )

    def classify_year(self, year: int) -> ClassifiedRaster:
        """Build and classify the composite for ``year``, assembled in memory."""
        composite = self.builder.composite(year)
        classes = np.full(composite.grid.shape, NODATA_CLASS, dtype=np.uint8)

        for block, classified in self.classify_blocks(composite):
            classes[block.core.toslices()] = classified.data

        return ClassifiedRaster(data=classes, grid=composite.grid, year=year)
