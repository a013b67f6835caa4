"""
EnrichCorr: pathway activity correlation for cell-line expression data

This package scores gene sets per sample with GSVA and ranks them by their
Spearman correlation with a single reference gene:
- Gene ID Mapping (DepMap labels / Symbol / Entrez)
- Gene set catalogs (MSigDB, Enrichr, local GMT)
- Cached GSVA score matrices
- BH-corrected correlation tables and bar-chart reports
- Reproducibility Metadata
"""

__version__ = "1.0.0"

from .errors import (
    EnrichCorrError,
    EmptyInputError,
    NoScorableGeneSetsError,
    DimensionMismatchError,
    IdentifierMappingError,
)
from .id_mapper import GeneIdMapper, MappingReport
from .sources import GeneSetCatalog, GeneSetSourceManager
from .gsva import run_gsva
from .correlation import CorrelationRecord, correlate, correlate_scores, fdr_correction
from .cache import ScoreCache, score_cache_key
from .config import PipelineConfig
from .repro import ReproducibilityLogger, PipelineMetadata
from .pipeline import CorrelationPipeline, PipelineResult

__all__ = [
    "EnrichCorrError",
    "EmptyInputError",
    "NoScorableGeneSetsError",
    "DimensionMismatchError",
    "IdentifierMappingError",
    "GeneIdMapper",
    "MappingReport",
    "GeneSetCatalog",
    "GeneSetSourceManager",
    "run_gsva",
    "CorrelationRecord",
    "correlate",
    "correlate_scores",
    "fdr_correction",
    "ScoreCache",
    "score_cache_key",
    "PipelineConfig",
    "ReproducibilityLogger",
    "PipelineMetadata",
    "CorrelationPipeline",
    "PipelineResult",
]
