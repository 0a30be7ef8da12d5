"""
Urban Growth Pipeline
=====================

    1. Reference-year composite -> training samples -> 70/30 split
    2. Random Forest training and validation
    3. For each year, in order: composite -> classify -> urban area
       (a year without imagery or without an area result is skipped)
    4. Growth report, CSV export, final maps and new-urban map

Composites and class maps are processed block by block. Each classified
year is streamed into a GeoTIFF in the work directory; only the maps of
the first and the latest year are kept, the others are removed as soon
as a later year succeeds.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
import rasterio
from shapely.geometry.base import BaseGeometry
from tqdm import tqdm

from urbangrowth.data.composite import BlockComposite, CompositeBuilder, MissingImageryError
from urbangrowth.data.raster import ClassifiedRaster, Composite, RasterGrid
from urbangrowth.data.region import region_area_km2
from urbangrowth.data.sampling import collect_samples, split_samples
from urbangrowth.data.sources import RasterSource
from urbangrowth.models.classifier import LandCoverClassifier, TrainingError
from urbangrowth.models.year_classifier import YearClassifier
from urbangrowth.utils.change_detection import ChangeStatistics, PostClassificationComparison
from urbangrowth.utils.export import ExportSink, geotiff_profile
from urbangrowth.utils.metrics import ErrorMatrix
from urbangrowth.utils.report import GrowthReport, YearResult
from urbangrowth.utils.zonal import UrbanAreaSum


logger = logging.getLogger(__name__)


@dataclass
class YearOutcome:
    """Result of processing one year: a YearResult or the reason it was skipped."""
    year: int
    result: Optional[YearResult] = None
    reason: Optional[str] = None


@dataclass
class PipelineResult:
    report: GrowthReport
    validation: ErrorMatrix
    skipped: Dict[int, str] = field(default_factory=dict)
    change: Optional[ChangeStatistics] = None
    new_urban_path: Optional[str] = None


class UrbanGrowthPipeline:
    """
    End-to-end urban growth analysis for one region.

    Args:
        config: Full configuration dictionary
        source: Raster source for Sentinel-2 tiles
        region: Region of interest in the working CRS
        polygons: Training polygons keyed by class name
        sink: Optional export sink
    """

    def __init__(
        self,
        config: dict,
        source: RasterSource,
        region: BaseGeometry,
        polygons: Dict[str, BaseGeometry],
        sink: Optional[ExportSink] = None
    ):
        self.config = config
        self.region = region
        self.polygons = polygons
        self.sink = sink

        self.crs = config['region']['crs']
        self.block_size = config['processing']['block_size']
        self.grid = RasterGrid.for_region(region, config['imagery']['resolution'], self.crs)
        self.builder = CompositeBuilder(
            source, region, self.grid, config['composite'], block_size=self.block_size
        )

        output_config = config['output']
        self.work_dir = Path(output_config.get('work_dir') or Path(output_config['dir']) / 'work')

    def train(self, reference: Union[Composite, BlockComposite]) -> tuple:
        """
        Train and validate the classifier on the reference composite.

        Returns:
            (classifier, error matrix)

        Raises:
            TrainingError: no validation samples or an untrainable set
        """
        training_config = self.config['training']
        bands = training_config['bands']
        seed = training_config['seed']

        samples = collect_samples(
            reference,
            self.polygons,
            counts=training_config['samples'],
            bands=bands,
            scale=training_config['scale'],
            seed=seed
        )
        training, validation = split_samples(samples, fraction=training_config['split'], seed=seed)

        classifier = LandCoverClassifier.from_config(self.config['classifier'])
        classifier.train(training, class_property='class', input_properties=bands)

        if validation.empty:
            raise TrainingError("Validation set is empty")

        matrix = ErrorMatrix()
        matrix.update(validation['class'].to_numpy(), classifier.predict(validation))
        logger.info(f"Overall Accuracy: {matrix.accuracy():.4f}")
        logger.info(f"Kappa: {matrix.kappa():.4f}")

        return classifier, matrix

    def process_year(
        self,
        year_classifier: YearClassifier,
        year: int,
        composite: Optional[BlockComposite] = None
    ) -> YearOutcome:
        """Classify one year into the work directory and measure its urban area."""
        logger.info(f"Processing {year}...")

        try:
            if composite is None:
                composite = self.builder.composite(year)
        except MissingImageryError as e:
            logger.warning(f"{year} has no imagery, skipping year: {e}")
            return YearOutcome(year, reason=str(e))

        aggregation = self.config['aggregation']
        area = UrbanAreaSum(self.grid, scale=aggregation['scale'], max_pixels=aggregation['max_pixels'])

        self.work_dir.mkdir(parents=True, exist_ok=True)
        path = self.work_dir / f"LC_{year}.tif"
        with rasterio.open(path, 'w', **geotiff_profile(self.grid)) as dst:
            for block, classified in year_classifier.classify_blocks(composite):
                dst.write(classified.data, 1, window=block.core)
                area.add(
                    classified,
                    classified.grid.region_mask(self.region),
                    row_off=block.core.row_off,
                    col_off=block.core.col_off
                )

        result = area.result()
        if not result.ok:
            path.unlink()
            logger.warning(f"{year} area is null ({result.reason}), skipping year")
            return YearOutcome(year, reason=result.reason)

        logger.info(f"{year} urban area: {result.value:.2f} km²")
        return YearOutcome(year, result=YearResult(year, result.value, path=str(path)))

    def compare(self, before: YearResult, after: YearResult) -> Tuple[ChangeStatistics, str]:
        """
        Transition statistics and new-urban map for two kept years.

        Returns:
            (statistics, path of the new-urban GeoTIFF in the work directory)
        """
        comparison = PostClassificationComparison()
        matrix = np.zeros((comparison.num_classes, comparison.num_classes), dtype=np.int64)
        path = self.work_dir / f"Urban_Growth_{before.year}_{after.year}.tif"

        with rasterio.open(before.path) as src_before, rasterio.open(after.path) as src_after, \
                rasterio.open(path, 'w', **geotiff_profile(self.grid)) as dst:
            for block in self.grid.blocks(self.block_size):
                grid = self.grid.window_grid(block.core)
                first = ClassifiedRaster(src_before.read(1, window=block.core), grid, before.year)
                last = ClassifiedRaster(src_after.read(1, window=block.core), grid, after.year)

                matrix += comparison.compute_transition_matrix(first, last)
                dst.write(comparison.new_urban(first, last), 1, window=block.core)

        # Mean pixel area is exact on projected grids
        pixel_km2 = float(self.grid.pixel_area().mean()) / 1e6
        statistics = comparison.statistics_from_matrix(matrix, pixel_km2, before.year, after.year)
        return statistics, str(path)

    def _release(self, result: YearResult):
        """Delete the class map of a year that is no longer first or latest."""
        if result.path is not None:
            Path(result.path).unlink(missing_ok=True)
            result.path = None

    def run(self, years: Optional[List[int]] = None) -> PipelineResult:
        years = sorted(years or self.config['years'])
        reference_year = self.config['training']['reference_year']

        logger.info(f"=== TRAINING DATA PREPARATION ({reference_year} REFERENCE) ===")
        reference = self.builder.composite(reference_year)
        classifier, validation = self.train(reference)

        year_classifier = YearClassifier(
            self.builder, classifier, self.region, self.config['corrections']
        )

        logger.info(f"=== PROCESSING YEARS {years[0]}-{years[-1]} ===")
        results: List[YearResult] = []
        skipped: Dict[int, str] = {}

        for year in tqdm(years, desc="Processing years"):
            composite = reference if year == reference_year else None
            outcome = self.process_year(year_classifier, year, composite)
            if outcome.result is None:
                skipped[year] = outcome.reason
                continue

            if len(results) >= 2:
                self._release(results[-1])
            results.append(outcome.result)

        report = GrowthReport(
            results,
            region_area_km2(self.region, self.crs),
            self.config['region'].get('code', 'UAE')
        )

        change, new_urban_path = None, None
        if len(report.results) >= 2:
            change, new_urban_path = self.compare(report.base, report.final)

        if self.sink is not None:
            self.export(report, new_urban_path)

        return PipelineResult(
            report=report,
            validation=validation,
            skipped=skipped,
            change=change,
            new_urban_path=new_urban_path
        )

    def export(self, report: GrowthReport, new_urban_path: Optional[str] = None):
        """Export the growth table and, if enabled, the final maps."""
        code = self.config['region'].get('code', 'UAE')
        first, last = report.base, report.final

        self.sink.export_table(report.to_dataframe(), f"{code}_Urban_Growth_{first.year}_{last.year}")

        output_config = self.config['output']
        if not output_config.get('export_maps', True):
            return

        scale = output_config.get('map_scale', 10)
        for result in (first, last):
            self.sink.export_raster(result.path, f"LC_{result.year}_Final", scale=scale)

        if new_urban_path is not None:
            self.sink.export_raster(new_urban_path, f"Urban_Growth_{first.year}_{last.year}", scale=scale)
