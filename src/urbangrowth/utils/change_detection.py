"""
Change Detection Utilities
==========================

Post-classification comparison between two classified years:
    - New urban map (urban after, not urban before)
    - Class transition matrix
    - Text report of the major transitions
"""

from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np

from urbangrowth import CLASS_NAMES, NODATA_CLASS, URBAN
from urbangrowth.data.raster import ClassifiedRaster


@dataclass
class ChangeStatistics:
    """Area statistics (km²) for a pair of classified maps."""
    year_before: int
    year_after: int
    transition_matrix: np.ndarray
    new_urban_km2: float
    class_transitions: Dict[Tuple[int, int], float]
    net_change: Dict[int, float]


class PostClassificationComparison:
    """Compare two classified land cover maps on the same grid."""

    def __init__(self, num_classes: int = len(CLASS_NAMES), class_names: Dict[int, str] = None):
        self.num_classes = num_classes
        self.class_names = class_names or CLASS_NAMES

    def new_urban(self, before: ClassifiedRaster, after: ClassifiedRaster) -> np.ndarray:
        """
        Binary map of new urban pixels: urban in ``after`` and valid
        non-urban in ``before``. No data is encoded as NODATA_CLASS.
        """
        both_valid = before.valid & after.valid
        growth = after.eq(URBAN) & ~before.eq(URBAN)
        return np.where(both_valid, growth.astype(np.uint8), NODATA_CLASS).astype(np.uint8)

    def compute_transition_matrix(
        self,
        before: ClassifiedRaster,
        after: ClassifiedRaster
    ) -> np.ndarray:
        """Pixel counts, rows = class before, columns = class after."""
        both_valid = before.valid & after.valid
        codes = before.data[both_valid].astype(np.int64) * self.num_classes + after.data[both_valid]
        counts = np.bincount(codes, minlength=self.num_classes ** 2)
        return counts[:self.num_classes ** 2].reshape(self.num_classes, self.num_classes)

    def compute_statistics(
        self,
        before: ClassifiedRaster,
        after: ClassifiedRaster
    ) -> ChangeStatistics:
        if before.grid != after.grid:
            raise ValueError("Classified maps must share the same grid")

        matrix = self.compute_transition_matrix(before, after)
        # Mean pixel area is exact on projected grids
        pixel_km2 = float(before.grid.pixel_area().mean()) / 1e6
        return self.statistics_from_matrix(matrix, pixel_km2, before.year, after.year)

    def statistics_from_matrix(
        self,
        matrix: np.ndarray,
        pixel_km2: float,
        year_before: int,
        year_after: int
    ) -> ChangeStatistics:
        """Area statistics from a transition matrix, e.g. one summed over blocks."""
        transitions = {
            (i, j): matrix[i, j] * pixel_km2
            for i in range(self.num_classes)
            for j in range(self.num_classes)
            if i != j and matrix[i, j] > 0
        }
        net_change = {
            c: (matrix[:, c].sum() - matrix[c, :].sum()) * pixel_km2
            for c in range(self.num_classes)
        }
        new_urban = matrix[:, URBAN].sum() - matrix[URBAN, URBAN]

        return ChangeStatistics(
            year_before=year_before,
            year_after=year_after,
            transition_matrix=matrix,
            new_urban_km2=new_urban * pixel_km2,
            class_transitions=transitions,
            net_change=net_change
        )

    def generate_report(self, statistics: ChangeStatistics, min_area_km2: float = 1.0) -> str:
        """Text report of net change per class and major transitions."""
        report = []
        report.append("=" * 55)
        report.append(f"LAND COVER CHANGE: {statistics.year_before} - {statistics.year_after}")
        report.append("=" * 55)
        report.append(f"New urban area: {statistics.new_urban_km2:,.2f} km²")
        report.append("")

        report.append("NET CHANGE BY CLASS (km²)")
        report.append("-" * 35)
        for class_id, change in statistics.net_change.items():
            sign = "+" if change > 0 else ""
            report.append(f"  {self.class_names.get(class_id, class_id)}: {sign}{change:,.2f}")
        report.append("")

        report.append(f"MAJOR TRANSITIONS (>{min_area_km2:g} km²)")
        report.append("-" * 35)
        for (from_c, to_c), area in sorted(statistics.class_transitions.items(), key=lambda x: -x[1]):
            if area > min_area_km2:
                report.append(f"  {self.class_names[from_c]} → {self.class_names[to_c]}: {area:,.2f} km²")

        report.append("=" * 55)
        return "\n".join(report)
