"""
Command-line entry point: enrichcorr CONFIG.yaml [--force-recompute]
"""

import argparse
import logging
import sys
from typing import List, Optional

from . import __version__
from .config import PipelineConfig
from .errors import EnrichCorrError
from .pipeline import CorrelationPipeline

logger = logging.getLogger("EnrichCorr.CLI")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='enrichcorr',
        description="Correlate GSVA pathway scores with a reference gene across samples",
    )
    parser.add_argument('config', help="YAML configuration file")
    parser.add_argument('--force-recompute', action='store_true',
                        help="Ignore cached score matrices (results are still cached)")
    return parser


def setup_logging(level: str = 'INFO'):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = PipelineConfig.from_yaml(args.config)
    except (OSError, ValueError, TypeError) as e:
        setup_logging()
        logger.error(f"Invalid configuration {args.config}: {e}")
        return 1

    if args.force_recompute:
        config = config.with_overrides(force_recompute=True)

    setup_logging(config.log_level)
    logger.info(f"=== EnrichCorr {__version__} ===")
    logger.info(f"Reference gene: {config.reference_gene}")

    try:
        result = CorrelationPipeline(config).run()
    except EnrichCorrError as e:
        logger.error(f"Pipeline aborted: {e}")
        return 1
    except (ValueError, OSError, RuntimeError) as e:
        logger.exception(f"Pipeline failed: {e}")
        return 1

    for name, path in result.artifacts.items():
        logger.info(f"{name}: {path}")
    logger.info(
        f"Done: {len(result.table)} gene sets scored, {len(result.top_table)} reported, "
        f"{len(result.warnings)} warning(s)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
