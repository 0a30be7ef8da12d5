"""
Urban growth analysis command line.

Usage:
    urban-growth --config configs/config.yaml
    urban-growth --config configs/config.yaml --years 2018,2021,2024 --figures
    urban-growth --source gee --project my-ee-project
"""

import argparse
import logging
import sys
from pathlib import Path

from urbangrowth.config import load_config
from urbangrowth.data.composite import MissingImageryError
from urbangrowth.data.region import load_region
from urbangrowth.data.sampling import load_training_polygons
from urbangrowth.data.sources import LocalRasterSource
from urbangrowth.models.classifier import TrainingError
from urbangrowth.pipeline import UrbanGrowthPipeline
from urbangrowth.utils.change_detection import PostClassificationComparison
from urbangrowth.utils.export import LocalExportSink


logger = logging.getLogger(__name__)


def create_source(config: dict, project: str = None):
    """Raster source selected by ``imagery.source``."""
    imagery = config['imagery']
    crs = config['region']['crs']

    if imagery['source'] == 'local':
        return LocalRasterSource(imagery['tile_dir'], crs)

    if imagery['source'] == 'gee':
        from urbangrowth.data.gee_download import EarthEngineRasterSource, initialize_earth_engine

        initialize_earth_engine(project)
        return EarthEngineRasterSource(
            crs,
            scale=imagery['resolution'],
            collection=imagery['collection'],
            bands=imagery['bands'],
            cache_dir=imagery['cache_dir']
        )

    raise ValueError(f"Unknown imagery source: {imagery['source']}")


def save_figures(result, pipeline: UrbanGrowthPipeline, output_dir: Path, max_size: int = 2048):
    """PNG quicklooks of the first and last year, decimated to ``max_size`` pixels."""
    from urbangrowth.data.raster import ClassifiedRaster
    from urbangrowth.utils.visualization import (
        INDEX_STYLES, plot_confusion_matrix, plot_urban_growth, save_index_map,
        save_landcover_map, save_rgb_map, save_urban_mask
    )

    report = result.report
    plot_urban_growth(report, str(output_dir / 'urban_growth.png'))
    plot_confusion_matrix(
        result.validation.get_confusion_matrix(),
        result.validation.class_names,
        str(output_dir / 'confusion_matrix.png')
    )

    for year_result in (report.base, report.final):
        year = year_result.year
        classified = ClassifiedRaster.from_file(year_result.path, year=year, max_size=max_size)
        save_landcover_map(classified, str(output_dir / f'landcover_{year}.png'))

        composite = pipeline.builder.composite(year).preview(max_size)
        save_rgb_map(composite, str(output_dir / f'rgb_{year}.png'))
        for band, (vmin, vmax, palette) in INDEX_STYLES.items():
            save_index_map(composite, band, vmin, vmax, palette, str(output_dir / f'{band.lower()}_{year}.png'))

    if result.new_urban_path is not None:
        new_urban = ClassifiedRaster.from_file(result.new_urban_path, max_size=max_size)
        save_urban_mask(
            new_urban.data,
            str(output_dir / f'urban_growth_{report.base.year}_{report.final.year}.png'),
            title=f"Urban Growth {report.base.year}-{report.final.year}"
        )


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description='Urban growth analysis from Sentinel-2 composites')
    parser.add_argument('--config', type=str, default=None, help='Path to config file')
    parser.add_argument('--years', type=str, default=None, help='Years to analyze (comma-separated)')
    parser.add_argument('--source', choices=['local', 'gee'], default=None, help='Imagery source')
    parser.add_argument('--tile-dir', type=str, default=None, help='Directory of local tiles')
    parser.add_argument('--project', type=str, default=None, help='Earth Engine cloud project')
    parser.add_argument('--output-dir', type=str, default=None, help='Output directory')
    parser.add_argument('--no-maps', action='store_true', help='Skip GeoTIFF map exports')
    parser.add_argument('--figures', action='store_true', help='Save PNG quicklooks')
    parser.add_argument('--verbose', action='store_true', help='Debug logging')
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    config = load_config(args.config)
    if args.years:
        config['years'] = [int(y.strip()) for y in args.years.split(',')]
    if args.source:
        config['imagery']['source'] = args.source
    if args.tile_dir:
        config['imagery']['tile_dir'] = args.tile_dir
    if args.output_dir:
        config['output']['dir'] = args.output_dir
    if args.no_maps:
        config['output']['export_maps'] = False

    region_config = config['region']
    crs = region_config['crs']
    output_dir = Path(config['output']['dir'])

    try:
        source = create_source(config, args.project)
        region = load_region(region_config['path'], crs, region_config['name'], region_config['name_field'])
        polygons = load_training_polygons(
            config['training']['polygons'], config['training']['class_field'], crs
        )

        pipeline = UrbanGrowthPipeline(config, source, region, polygons, LocalExportSink(output_dir))
        result = pipeline.run()
    except (TrainingError, MissingImageryError, ValueError, FileNotFoundError) as e:
        logger.error(f"Analysis failed: {e}")
        return 1

    print(result.validation.report())
    print()
    print(result.report.format())

    if result.skipped:
        print()
        for year, reason in sorted(result.skipped.items()):
            print(f"Skipped {year}: {reason}")

    if result.change is not None:
        print()
        print(PostClassificationComparison().generate_report(result.change))

    if args.figures:
        save_figures(result, pipeline, output_dir)

    logger.info(f"Results saved to: {output_dir}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
