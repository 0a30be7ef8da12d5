"""
Random Forest Land Cover Classifier
===================================

Pixel classifier over the ten composite features. Trained once on the
reference-year samples and reused unchanged for every year.
"""

import logging
from typing import List, Sequence

import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestClassifier

from urbangrowth import NODATA_CLASS
from urbangrowth.data.raster import ClassifiedRaster, Composite


logger = logging.getLogger(__name__)


class TrainingError(RuntimeError):
    """The classifier could not be trained or validated."""


class LandCoverClassifier:
    """
    Random Forest pixel classifier over composite bands.

    Args:
        n_trees: Number of decision trees
        min_leaf_population: Minimum samples per leaf
        bag_fraction: Fraction of the training set drawn for each tree
        seed: Random seed
    """

    def __init__(
        self,
        n_trees: int = 100,
        min_leaf_population: int = 5,
        bag_fraction: float = 0.7,
        seed: int = 42
    ):
        self.model = RandomForestClassifier(
            n_estimators=n_trees,
            min_samples_leaf=min_leaf_population,
            bootstrap=True,
            max_samples=bag_fraction,
            random_state=seed,
            n_jobs=-1
        )
        self.input_properties: List[str] = []
        self.class_property = 'class'

    @classmethod
    def from_config(cls, config: dict) -> 'LandCoverClassifier':
        return cls(
            n_trees=config.get('n_trees', 100),
            min_leaf_population=config.get('min_leaf_population', 5),
            bag_fraction=config.get('bag_fraction', 0.7),
            seed=config.get('seed', 42)
        )

    @property
    def is_trained(self) -> bool:
        return bool(self.input_properties)

    def train(
        self,
        features: pd.DataFrame,
        class_property: str,
        input_properties: Sequence[str]
    ) -> 'LandCoverClassifier':
        """
        Fit the forest.

        Args:
            features: Training samples
            class_property: Column with the numeric class
            input_properties: Feature columns, in band order

        Raises:
            TrainingError: empty training set or a single class
        """
        if self.is_trained:
            raise TrainingError("Classifier is already trained")
        if features.empty:
            raise TrainingError("Training set is empty")
        if features[class_property].nunique() < 2:
            raise TrainingError("Training set needs at least two classes")

        self.model.fit(
            features[list(input_properties)].to_numpy(dtype=np.float64),
            features[class_property].to_numpy()
        )
        self.input_properties = list(input_properties)
        self.class_property = class_property

        logger.info(f"Trained Random Forest on {len(features)} samples, "
                    f"{len(self.input_properties)} features")
        return self

    def predict(self, features: pd.DataFrame) -> np.ndarray:
        """Class ids for a table of samples."""
        if not self.is_trained:
            raise TrainingError("Classifier is not trained")
        return self.model.predict(features[self.input_properties].to_numpy(dtype=np.float64))

    def classify(self, composite: Composite) -> ClassifiedRaster:
        """
        Classify every pixel of ``composite``.

        Pixels with any invalid input band are set to NODATA_CLASS.
        """
        if not self.is_trained:
            raise TrainingError("Classifier is not trained")

        stack = composite.select(self.input_properties)
        n_bands, height, width = stack.shape
        pixels = stack.reshape(n_bands, -1).T
        valid = np.isfinite(pixels).all(axis=1)

        classes = np.full(height * width, NODATA_CLASS, dtype=np.uint8)
        if valid.any():
            classes[valid] = self.model.predict(pixels[valid].astype(np.float64))

        return ClassifiedRaster(
            data=classes.reshape(height, width),
            grid=composite.grid,
            year=composite.year
        )
