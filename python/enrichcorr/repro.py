"""
Reproducibility Logger for EnrichCorr

Tracks and logs all metadata required for scientific reproducibility:
- Software versions
- Gene set catalog versions and hashes
- Analysis parameters
- Input/output summaries and the warning summary
"""

import importlib
import json
import logging
import platform
import sys
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict, field
from pathlib import Path

import yaml

from . import __version__

logger = logging.getLogger("EnrichCorr.Repro")

# Distributions whose versions are recorded in every run
TRACKED_PACKAGES = (
    'numpy', 'pandas', 'scipy', 'statsmodels', 'gseapy', 'mygene', 'matplotlib', 'yaml',
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def package_versions(names=TRACKED_PACKAGES) -> Dict[str, str]:
    """Version string of each importable package; missing ones are skipped"""
    versions = {}
    for name in names:
        try:
            module = importlib.import_module(name)
        except ImportError:
            continue
        versions[name] = str(getattr(module, '__version__', 'unknown'))
    return versions


@dataclass
class PipelineMetadata:
    """Complete metadata for a single correlation run"""

    # Unique identifiers
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=_utc_now)

    # Software versions
    software_version: str = __version__
    python_version: str = ""
    platform: str = ""
    dependencies: Dict[str, str] = field(default_factory=dict)

    # Gene set information
    gene_set_source: str = ""
    gene_set_version: str = ""
    gene_set_hash: str = ""
    gene_set_count: int = 0

    # Analysis parameters
    parameters: Dict[str, Any] = field(default_factory=dict)

    # Input summary
    input_summary: Dict[str, Any] = field(default_factory=dict)

    # Mapping and filtering
    mapping_report: Dict[str, Any] = field(default_factory=dict)
    filter_report: Dict[str, Any] = field(default_factory=dict)

    # Output summary
    output_summary: Dict[str, Any] = field(default_factory=dict)

    # Warnings/Notes
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), indent=2, default=str)

    def save(self, output_path: Path):
        """Save metadata to JSON file"""
        with open(output_path, 'w') as f:
            f.write(self.to_json())
        logger.info(f"Saved pipeline metadata to {output_path}")


class ReproducibilityLogger:
    """
    Logger for tracking reproducibility metadata during a correlation run.
    """

    def __init__(self):
        self.metadata = PipelineMetadata()
        self._initialize_versions()

    def _initialize_versions(self):
        """Detect and record software versions"""
        self.metadata.python_version = platform.python_version()
        self.metadata.platform = platform.platform()
        self.metadata.dependencies = package_versions()

    def set_gene_set_info(self, source: str, version: str, catalog_hash: str, count: int):
        """
        Record gene set catalog information.

        Args:
            source: Catalog source ('msigdb', 'enrichr', 'gmt')
            version: Version identifier (e.g., 'h.all@2023.2.Hs')
            catalog_hash: GeneSetCatalog.hash
            count: Number of gene sets in the catalog
        """
        self.metadata.gene_set_source = source
        self.metadata.gene_set_version = version
        self.metadata.gene_set_hash = catalog_hash
        self.metadata.gene_set_count = count

    def set_parameters(self, **params):
        """Set analysis parameters (kcdf, min_size, alpha, ...)"""
        self.metadata.parameters.update(params)

    def set_input_summary(self, **summary):
        """
        Set input data summary.

        Common fields:
        - genes / samples: matrix shape after filtering
        - reference_gene: gene the scores are correlated with
        - selected_samples: samples passing metadata filters
        """
        self.metadata.input_summary.update(summary)

    def set_mapping_report(self, mapping_report: Dict):
        """Set gene ID mapping report"""
        self.metadata.mapping_report = mapping_report

    def set_filter_report(self, filter_report: Dict):
        """Set expression filtering report"""
        self.metadata.filter_report = filter_report

    def set_output_summary(self, **summary):
        """
        Set output summary.

        Common fields:
        - scored_gene_sets: rows in the score matrix
        - significant_gene_sets: p < alpha
        - top_positive / top_negative: strongest correlations
        """
        self.metadata.output_summary.update(summary)

    def add_warning(self, warning: str):
        """Add a warning message"""
        self.metadata.warnings.append(warning)
        logger.warning(f"Pipeline warning: {warning}")

    def get_metadata(self) -> PipelineMetadata:
        """Get current metadata"""
        return self.metadata

    def session_text(self) -> str:
        """Plain-text environment and run summary"""
        meta = self.metadata
        lines = [
            f"EnrichCorr {meta.software_version} session",
            f"Run ID: {meta.run_id}",
            f"Timestamp: {meta.timestamp}",
            f"Python: {meta.python_version} ({sys.executable})",
            f"Platform: {meta.platform}",
            "",
            "Packages:",
        ]
        lines += [f"  {name} {version}" for name, version in sorted(meta.dependencies.items())]
        lines += [
            "",
            f"Gene sets: {meta.gene_set_source} {meta.gene_set_version} "
            f"({meta.gene_set_count} sets, hash {meta.gene_set_hash})",
            "",
            "Parameters:",
        ]
        lines += [f"  {key}: {value}" for key, value in sorted(meta.parameters.items())]
        lines += ["", "Warnings:"]
        lines += [f"  - {w}" for w in meta.warnings] or ["  (none)"]
        return "\n".join(lines) + "\n"

    def write_session_log(self, output_path: Path):
        """Write the plain-text session log"""
        Path(output_path).write_text(self.session_text(), encoding='utf-8')
        logger.info(f"Saved session log to {output_path}")

    def export_yaml(self, output_path: Path):
        """Export pipeline metadata as YAML (for maximum readability)"""
        with open(output_path, 'w') as f:
            yaml.safe_dump(json.loads(self.metadata.to_json()), f, default_flow_style=False)
        logger.info(f"Saved pipeline metadata (YAML) to {output_path}")

    def export_json(self, output_path: Path):
        """Export pipeline metadata as JSON"""
        self.metadata.save(output_path)
