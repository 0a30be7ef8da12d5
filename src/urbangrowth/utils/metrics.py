"""
Evaluation Metrics for Land Cover Classification
================================================

Error matrix over held-out samples:
    - Overall accuracy
    - Cohen's kappa
    - Producer's accuracy (recall) per class
    - Consumer's accuracy (precision) per class

Rows are reference classes, columns are predicted classes.
"""

import logging
from typing import Dict, List, Optional

import numpy as np

from urbangrowth import CLASS_NAMES


logger = logging.getLogger(__name__)

NOT_APPLICABLE = 'N/A'


def format_accuracy(value: Optional[float]) -> str:
    """Three-decimal accuracy, or N/A when the class was absent."""
    return NOT_APPLICABLE if value is None else f"{value:.3f}"


class ErrorMatrix:
    """
    Confusion matrix accumulator.

    Tracks reference/predicted pairs and computes aggregate metrics.
    """

    def __init__(
        self,
        num_classes: int = len(CLASS_NAMES),
        class_names: Optional[List[str]] = None
    ):
        """
        Args:
            num_classes: Number of classes
            class_names: Optional class names for reporting
        """
        self.num_classes = num_classes
        self.class_names = class_names or [
            CLASS_NAMES.get(i, f'class_{i}') for i in range(num_classes)
        ]
        self.reset()

    def reset(self):
        self.matrix = np.zeros((self.num_classes, self.num_classes), dtype=np.int64)

    def update(self, actual: np.ndarray, predicted: np.ndarray):
        """
        Add samples to the matrix.

        Args:
            actual: Reference class ids
            predicted: Predicted class ids
        """
        actual = np.asarray(actual).astype(np.int64).ravel()
        predicted = np.asarray(predicted).astype(np.int64).ravel()

        in_range = ((actual >= 0) & (actual < self.num_classes)
                    & (predicted >= 0) & (predicted < self.num_classes))
        np.add.at(self.matrix, (actual[in_range], predicted[in_range]), 1)

    def accuracy(self) -> float:
        total = self.matrix.sum()
        return float(np.trace(self.matrix) / total) if total else 0.0

    def kappa(self) -> float:
        """Cohen's kappa coefficient."""
        total = self.matrix.sum()
        if total == 0:
            return 0.0

        po = np.trace(self.matrix) / total
        pe = float((self.matrix.sum(axis=1) * self.matrix.sum(axis=0)).sum()) / total ** 2
        if pe == 1:
            return 0.0
        return float((po - pe) / (1 - pe))

    def producers_accuracy(self) -> List[Optional[float]]:
        """Per-class recall; None where the class has no reference samples."""
        support = self.matrix.sum(axis=1)
        return [
            float(self.matrix[i, i] / support[i]) if support[i] else None
            for i in range(self.num_classes)
        ]

    def consumers_accuracy(self) -> List[Optional[float]]:
        """Per-class precision; None where the class was never predicted."""
        predicted = self.matrix.sum(axis=0)
        return [
            float(self.matrix[i, i] / predicted[i]) if predicted[i] else None
            for i in range(self.num_classes)
        ]

    def compute(self) -> Dict:
        return {
            'accuracy': self.accuracy(),
            'kappa': self.kappa(),
            'producers_accuracy': self.producers_accuracy(),
            'consumers_accuracy': self.consumers_accuracy(),
        }

    def get_confusion_matrix(self) -> np.ndarray:
        return self.matrix.copy()

    def report(self) -> str:
        """Formatted validation report."""
        metrics = self.compute()

        lines = [
            "=" * 55,
            "VALIDATION RESULTS",
            "=" * 55,
            f"Overall Accuracy: {metrics['accuracy']:.4f}",
            f"Kappa: {metrics['kappa']:.4f}",
            "",
            f"{'Class':<12} {'Producer':>10} {'Consumer':>10} {'Support':>9}",
            "-" * 45,
        ]

        for i, name in enumerate(self.class_names):
            lines.append(
                f"{name:<12} {format_accuracy(metrics['producers_accuracy'][i]):>10} "
                f"{format_accuracy(metrics['consumers_accuracy'][i]):>10} "
                f"{self.matrix[i, :].sum():>9}"
            )

        lines.append("=" * 55)
        return "\n".join(lines)


if __name__ == '__main__':
    rng = np.random.default_rng(42)
    actual = rng.integers(0, 4, 500)
    predicted = np.where(rng.random(500) < 0.8, actual, rng.integers(0, 4, 500))

    matrix = ErrorMatrix()
    matrix.update(actual, predicted)
    print(matrix.report())
