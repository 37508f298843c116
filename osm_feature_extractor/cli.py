"""Command line entry point."""

import argparse
import json
import logging
import os
import sys
import traceback

from .config import Config
from .converter import STAGES, FeatureConverter
from .join import JoinedGroup, join_files
from .output import FeatureWriter

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format='%(asctime)s - %(levelname)s - %(message)s')


def group_to_json(group: JoinedGroup) -> str:
    """Serialize a joined group as one JSON line."""
    return json.dumps({
        'key': group.key,
        'left': [entry.value for entry in group.left],
        'right': [entry.value for entry in group.right],
    }, separators=(',', ':'), ensure_ascii=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert sorted OpenStreetMap extracts into categorized GeoJSON features",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  osm-feature-extractor convert --input-dir ./work --output-dir ./out
  osm-feature-extractor --config custom_config.yaml convert --workers 8
  osm-feature-extractor join nodeid2way.gz nodeid2rawnodejson.gz joined.gz --strict

Configuration:
  Uses config.yaml by default. Command line options override config file settings.

Attribution:
  © OpenStreetMap contributors. Data licensed under ODbL.
        """
    )
    parser.add_argument('--config', default='config.yaml',
                        help='Path to YAML configuration file (default: config.yaml)')
    parser.add_argument('--log-level', help='Log level (overrides config)')

    subparsers = parser.add_subparsers(dest='command')

    convert = subparsers.add_parser('convert', help='Convert node, way and relation files to features')
    convert.add_argument('--input-dir', help='Directory with the sorted input files (overrides config)')
    convert.add_argument('--output-dir', help='Directory for the feature files (overrides config)')
    convert.add_argument('--workers', type=int, help='Number of worker threads (overrides config)')
    convert.add_argument('--batch-size', type=int, help='Items per batch (overrides config)')
    convert.add_argument('--queue-capacity', type=int, help='Maximum outstanding batches (overrides config)')
    convert.add_argument('--stages', default=','.join(STAGES),
                         help=f'Comma separated stages to run (default: {",".join(STAGES)})')

    join = subparsers.add_parser('join', help='Inner join two sorted key;value files')
    join.add_argument('left', help='Left sorted gzip file')
    join.add_argument('right', help='Right sorted gzip file')
    join.add_argument('output', help='Gzip file for the joined groups')
    join.add_argument('--strict', action='store_true', help='Fail on out of order keys')
    join.add_argument('--workers', type=int, help='Number of worker threads (overrides config)')

    return parser


def load_config(args: argparse.Namespace) -> Config:
    if os.path.exists(args.config):
        config = Config.from_yaml(args.config)
        logger.info(f"Loaded configuration from {args.config}")
    else:
        config = Config()
        logger.info(f"Using default configuration ({args.config} not found)")

    # Apply command line overrides
    if args.log_level:
        config.log_level = args.log_level
    if getattr(args, 'input_dir', None):
        config.input_directory = args.input_dir
    if getattr(args, 'output_dir', None):
        config.output_directory = args.output_dir
    if getattr(args, 'workers', None) is not None:
        config.worker_count = args.workers
    if getattr(args, 'batch_size', None) is not None:
        config.batch_size = args.batch_size
    if getattr(args, 'queue_capacity', None) is not None:
        config.queue_capacity = args.queue_capacity
    if getattr(args, 'strict', False):
        config.strict_key_order = True

    config.validate()
    return config


def run_convert(args: argparse.Namespace, config: Config):
    stages = [stage.strip() for stage in args.stages.split(',') if stage.strip()]
    unknown = [stage for stage in stages if stage not in STAGES]
    if unknown:
        raise ValueError(f"Unknown stages: {', '.join(unknown)}")

    logger.info(f"Configuration: workers={config.worker_count}, batch_size={config.batch_size}, "
                f"queue_capacity={config.queue_capacity}, input={config.input_directory}, "
                f"output={config.output_directory}")

    converter = FeatureConverter(config)
    reports = converter.run(stages)

    # Print summary
    print("\n" + "=" * 60)
    print("OSM FEATURE EXTRACTION SUMMARY")
    print("=" * 60)
    for stage, report in reports.items():
        print(f"{stage}:")
        print(f"  Read: {report.read:,}")
        print(f"  Written: {report.written:,} -> {converter.output_file(stage)}")
        print(f"  Filtered: {report.filtered:,}, suppressed: {report.suppressed:,}")
        for name, count in sorted(report.diagnostics.items()):
            print(f"    {name}: {count:,}")
        if config.validate_geometries:
            print(f"  Invalid geometries: {report.invalid_geometries:,}")
        print(f"  Processing time: {report.elapsed_seconds:.2f}s")
    print("=" * 60)
    print("© OpenStreetMap contributors. Data licensed under ODbL.")


def run_join(args: argparse.Namespace, config: Config):
    with FeatureWriter(args.output) as writer:
        joined = join_files(args.left, args.right, group_to_json, config, sink=writer.write_line)

    stats = joined.stats()
    print("\n" + "=" * 60)
    print("JOIN SUMMARY")
    print("=" * 60)
    for name, count in stats.items():
        print(f"  {name}: {count:,}")
    print("=" * 60)


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    setup_logging(args.log_level or "INFO")

    try:
        config = load_config(args)
        logging.getLogger().setLevel(getattr(logging, config.log_level.upper(), logging.INFO))

        if args.command == 'convert':
            run_convert(args, config)
        elif args.command == 'join':
            run_join(args, config)
    except Exception as e:
        logger.error(f"Error processing {args.command}: {e}")
        traceback.print_exc()
        sys.exit(1)
    return 0


if __name__ == "__main__":
    sys.exit(main())
