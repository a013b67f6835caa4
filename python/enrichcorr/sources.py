"""
Gene Set Source Manager for EnrichCorr

Loads the gene set catalog used for scoring:
- MSigDB collections (category/subcategory selectable) via gseapy
- Enrichr libraries via gseapy
- Local GMT files

Downloaded collections are cached as GMT files with version tracking.
"""

import logging
import hashlib
import json
from collections import abc
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from pathlib import Path
from datetime import datetime, timedelta

import gseapy as gp

from gene_set_utils import load_gmt, save_gmt, get_gene_set_stats, validate_gene_sets
from .id_mapper import GeneIdMapper

logger = logging.getLogger("EnrichCorr.Sources")


def msigdb_collection(category: str, subcategory: Optional[str] = None) -> str:
    """
    MSigDB collection name as used in the GMT release files.

    ('h', None) -> 'h.all', ('c2', 'cp.reactome') -> 'c2.cp.reactome'
    """
    category = category.strip().lower()
    if '.' in category:
        return category
    return f"{category}.{subcategory.strip().lower()}" if subcategory else f"{category}.all"


def catalog_hash(gene_sets: Mapping[str, Iterable[str]]) -> str:
    """
    SHA256 hash of gene sets for reproducibility tracking.

    Hash is based on sorted gene set names and their sorted gene lists.
    """
    sorted_items = []
    for name in sorted(gene_sets):
        sorted_items.append(f"{name}::{','.join(sorted(gene_sets[name]))}")
    return hashlib.sha256("||".join(sorted_items).encode()).hexdigest()[:16]


class GeneSetCatalog(abc.Mapping):
    """
    Immutable collection of named gene sets.

    Behaves as a read-only mapping of name -> frozenset of gene identifiers.
    """

    def __init__(
        self,
        gene_sets: Mapping[str, Iterable[str]],
        source: str = 'custom',
        version: str = 'unknown',
        namespace: str = 'symbol'
    ):
        frozen = {str(name): frozenset(genes) for name, genes in gene_sets.items()}
        self._sets = MappingProxyType(frozen)
        self.source = source
        self.version = version
        self.namespace = namespace
        self.hash = catalog_hash(frozen)

    def __getitem__(self, name: str) -> frozenset:
        return self._sets[name]

    def __iter__(self):
        return iter(self._sets)

    def __len__(self) -> int:
        return len(self._sets)

    def __repr__(self) -> str:
        return f"GeneSetCatalog(source={self.source!r}, version={self.version!r}, sets={len(self)})"

    def _derive(self, gene_sets: Mapping[str, Iterable[str]], namespace: Optional[str] = None) -> 'GeneSetCatalog':
        return GeneSetCatalog(gene_sets, self.source, self.version, namespace or self.namespace)

    def filter(self, keywords: Iterable[str]) -> 'GeneSetCatalog':
        """Keep gene sets whose name contains any keyword (case-insensitive)"""
        keywords = [k.lower() for k in keywords if k]
        if not keywords:
            return self
        return self._derive({
            name: genes for name, genes in self._sets.items()
            if any(k in name.lower() for k in keywords)
        })

    def restrict_to(
        self,
        universe: Iterable[str],
        min_size: int = 1,
        max_size: Optional[int] = None
    ) -> Tuple['GeneSetCatalog', List[str]]:
        """Restrict members to a gene universe, dropping sets outside the size limits"""
        valid, warnings = validate_gene_sets(self._sets, universe, min_size, max_size)
        return self._derive(valid), warnings

    def map_members(self, mapper: GeneIdMapper) -> 'GeneSetCatalog':
        """Translate member genes into the mapper's namespace; unmapped members are dropped"""
        all_genes = sorted(set().union(*self._sets.values())) if self._sets else []
        mapping, report = mapper.map_genes(all_genes)
        logger.info(f"Gene set members: {report.summary()}")
        mapped = {
            name: {mapping[g] for g in genes if mapping.get(g)}
            for name, genes in self._sets.items()
        }
        return self._derive(mapped, namespace=mapper.target)

    def stats(self) -> Dict[str, float]:
        return get_gene_set_stats(self._sets)

    def to_dict(self) -> Dict[str, List[str]]:
        return {name: sorted(genes) for name, genes in self._sets.items()}


class GeneSetSourceManager:
    """
    Manages gene set downloads and caching.

    Uses simple file-based cache with version tracking.
    """

    # Source configurations
    SOURCES = {
        'msigdb': {
            'display_name': 'MSigDB Collections',
            'cache_days': 90,
            'auto_download': True,
        },
        'enrichr': {
            'display_name': 'Enrichr Libraries',
            'cache_days': 30,
            'auto_download': True,
        },
        'gmt': {
            'display_name': 'Local GMT File',
            'cache_days': None,
            'auto_download': False,
        },
    }

    def __init__(self, cache_dir: Optional[Path] = None):
        """
        Initialize source manager.

        Args:
            cache_dir: Directory for caching gene sets
        """
        self.cache_dir = Path(cache_dir) if cache_dir else Path.home() / '.enrichcorr' / 'cache' / 'genesets'
        self.cache_dir.mkdir(parents=True, exist_ok=True)

        self.metadata_file = self.cache_dir / 'metadata.json'
        self.metadata = self._load_metadata()

    def _load_metadata(self) -> Dict:
        """Load cache metadata"""
        if self.metadata_file.exists():
            try:
                with open(self.metadata_file, 'r') as f:
                    return json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to load metadata: {e}")
        return {}

    def _save_metadata(self):
        """Save cache metadata"""
        with open(self.metadata_file, 'w') as f:
            json.dump(self.metadata, f, indent=2)

    def _calculate_hash(self, file_path: Path) -> str:
        """Calculate SHA256 hash of a file"""
        sha256 = hashlib.sha256()
        with open(file_path, 'rb') as f:
            for chunk in iter(lambda: f.read(8192), b''):
                sha256.update(chunk)
        return sha256.hexdigest()[:16]  # Short hash

    def _is_cache_valid(self, cache_key: str, source: str) -> bool:
        """Check if cached gene set is still valid"""
        if cache_key not in self.metadata:
            return False

        meta = self.metadata[cache_key]
        cache_file = Path(meta.get('cache_file', ''))

        if not cache_file.exists():
            return False

        cached_date = datetime.fromisoformat(meta.get('download_date', '2000-01-01'))
        cache_days = self.SOURCES[source]['cache_days']

        if cache_days is not None and datetime.now() - cached_date > timedelta(days=cache_days):
            logger.info(f"Cache expired for {cache_key}")
            return False

        return True

    def load_catalog(
        self,
        source: str,
        category: str = 'h',
        subcategory: Optional[str] = None,
        version: Optional[str] = None,
        gmt_path: Optional[Path] = None,
        library: Optional[str] = None
    ) -> GeneSetCatalog:
        """
        Load a gene set catalog.

        Args:
            source: 'msigdb', 'enrichr' or 'gmt'
            category: MSigDB category (e.g. 'h', 'c2')
            subcategory: MSigDB subcategory (e.g. 'cp.reactome')
            version: MSigDB release (e.g. '2023.2.Hs'); None uses gseapy's default
            gmt_path: Path to a local GMT file (source 'gmt')
            library: Enrichr library name (source 'enrichr')

        Returns:
            GeneSetCatalog
        """
        if source not in self.SOURCES:
            raise ValueError(f"Unknown gene set source '{source}'. Expected one of {list(self.SOURCES)}")

        if source == 'gmt':
            if gmt_path is None:
                raise ValueError("Source 'gmt' requires gmt_path")
            gene_sets = load_gmt(str(gmt_path))
            return GeneSetCatalog(gene_sets, source='gmt', version=self._calculate_hash(Path(gmt_path)))

        if source == 'msigdb':
            collection = msigdb_collection(category, subcategory)
            cache_key = f"msigdb_{collection}_{version or 'default'}"
        else:
            if not library:
                raise ValueError("Source 'enrichr' requires a library name")
            collection = library
            cache_key = f"enrichr_{library}"

        if self._is_cache_valid(cache_key, source):
            logger.info(f"Loading {cache_key} from cache")
            meta = self.metadata[cache_key]
            gene_sets = load_gmt(meta['cache_file'])
            return GeneSetCatalog(gene_sets, source=source, version=meta.get('version', 'unknown'))

        logger.info(f"Downloading {collection} via gseapy")
        if source == 'msigdb':
            gene_sets = self._download_msigdb(collection, version)
            label = f"{collection}@{version or 'default'}"
        else:
            gene_sets = gp.get_library(name=library, organism='Human')
            label = library

        gene_sets = {
            name: [g.strip() for g in genes if g and g.strip()]
            for name, genes in gene_sets.items()
        }
        gene_sets = {name: genes for name, genes in gene_sets.items() if genes}
        if not gene_sets:
            raise RuntimeError(f"No gene sets returned for {collection}")

        cache_file = self.cache_dir / f"{cache_key}.gmt"
        save_gmt(gene_sets, str(cache_file))
        self.metadata[cache_key] = {
            'cache_file': str(cache_file),
            'download_date': datetime.now().isoformat(),
            'hash': self._calculate_hash(cache_file),
            'version': label,
            'stats': get_gene_set_stats(gene_sets),
        }
        self._save_metadata()

        logger.info(f"Downloaded {len(gene_sets)} gene sets from {label}")
        return GeneSetCatalog(gene_sets, source=source, version=label)

    def _download_msigdb(self, collection: str, version: Optional[str]) -> Dict[str, List[str]]:
        msig = gp.Msigdb()
        if version:
            gene_sets = msig.get_gmt(category=collection, dbver=version)
        else:
            gene_sets = msig.get_gmt(category=collection)
        if gene_sets is None:
            raise RuntimeError(f"MSigDB collection '{collection}' not available (version {version})")
        return gene_sets

    def clear_cache(self, cache_key: Optional[str] = None):
        """
        Clear cached gene sets.

        Args:
            cache_key: Specific entry to clear, or None for all
        """
        if cache_key:
            if cache_key in self.metadata:
                Path(self.metadata[cache_key]['cache_file']).unlink(missing_ok=True)
                del self.metadata[cache_key]
                self._save_metadata()
                logger.info(f"Cleared cache for {cache_key}")
        else:
            for file in self.cache_dir.glob("*.gmt"):
                file.unlink()
            self.metadata = {}
            self._save_metadata()
            logger.info("Cleared all gene set cache")
