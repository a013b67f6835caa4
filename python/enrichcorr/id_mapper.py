"""
Gene ID Mapping Layer for EnrichCorr

Maps expression-table gene labels into the identifier namespace used by the
gene set catalog (approved symbols or Entrez IDs).

Resolution order for each label:
1. Explicit lookup table supplied by the caller
2. DepMap/CCLE style headers, e.g. "TP53 (7157)", which carry both IDs
3. Identity, when the label already looks like the target namespace
4. mygene.info batch query, cached locally as JSON
"""

import re
import logging
import json
import hashlib
import time
from typing import List, Dict, Tuple, Optional, Mapping
from dataclasses import dataclass, asdict
from pathlib import Path

import mygene
import pandas as pd

from .errors import IdentifierMappingError

logger = logging.getLogger("EnrichCorr.IdMapper")

TARGET_TYPES = ('symbol', 'entrez')


@dataclass
class MappingReport:
    """Report on gene ID mapping results"""
    input_count: int
    mapped_count: int
    unmapped_count: int
    duplicated_count: int
    unmapped_ids: List[str]
    duplicated_ids: List[str]
    source_type: str
    target_type: str
    species: str

    def to_dict(self) -> Dict:
        return asdict(self)

    def summary(self) -> str:
        return (
            f"{self.mapped_count}/{self.input_count} genes mapped to {self.target_type}, "
            f"{self.unmapped_count} unmapped, {self.duplicated_count} duplicated targets"
        )


def parse_depmap_label(label: str) -> Optional[Tuple[str, str]]:
    """
    Split a DepMap expression header into (symbol, entrez).

    Returns None when the label is not in "SYMBOL (ENTREZ)" form.
    """
    match = GeneIdMapper.PATTERNS['depmap'].match(str(label).strip())
    if not match:
        return None
    return match.group(1), match.group(2)


class GeneIdMapper:
    """
    Gene ID Mapper with automatic type detection and conversion.

    Supports:
    - "SYMBOL (ENTREZ)" DepMap headers
    - ENSG* / ENSMUSG* / ENSRNOG* Ensembl genes
    - Gene Symbols (HGNC)
    - Entrez IDs (numeric)
    - UniProt IDs
    """

    # ID type detection patterns
    PATTERNS = {
        'depmap': re.compile(r'^(\S+)\s+\((\d+)\)$'),
        'ensembl_human': re.compile(r'^ENSG\d{11}(\.\d+)?$'),
        'ensembl_mouse': re.compile(r'^ENSMUSG\d{11}(\.\d+)?$'),
        'ensembl_rat': re.compile(r'^ENSRNOG\d{11}(\.\d+)?$'),
        'entrez': re.compile(r'^\d+$'),
        'uniprot': re.compile(r'^[OPQ][0-9][A-Z0-9]{3}[0-9]$|^[A-NR-Z][0-9]([A-Z][A-Z0-9]{2}[0-9]){1,2}$'),
        'symbol': re.compile(r'^[A-Za-z][A-Za-z0-9\-\.]*$'),
    }

    # mygene query scopes per detected source type
    SCOPES = {
        'ensembl_human': 'ensembl.gene',
        'ensembl_mouse': 'ensembl.gene',
        'ensembl_rat': 'ensembl.gene',
        'entrez': 'entrezgene',
        'uniprot': 'uniprot',
        'symbol': 'symbol,alias',
    }

    TAXON = {'human': 9606, 'mouse': 10090, 'rat': 10116}

    def __init__(
        self,
        target: str = 'symbol',
        lookup: Optional[Mapping[str, str]] = None,
        use_mygene: bool = True,
        species: str = 'human',
        cache_dir: Optional[Path] = None
    ):
        """
        Initialize mapper.

        Args:
            target: Target namespace ('symbol' or 'entrez')
            lookup: Explicit label -> identifier table, consulted first
            use_mygene: Query mygene.info for labels nothing else resolves
            species: Species for mygene queries
            cache_dir: Directory for caching mygene results (simple JSON cache)
        """
        if target not in TARGET_TYPES:
            raise ValueError(f"Unknown target namespace '{target}'. Expected one of {TARGET_TYPES}")
        self.target = target
        self.lookup = dict(lookup or {})
        self.use_mygene = use_mygene
        self.species = species
        self.cache_dir = Path(cache_dir) if cache_dir else Path.home() / '.enrichcorr' / 'cache' / 'geneid'
        self.report: Optional[MappingReport] = None
        self._mg = None

    def detect_id_type(self, gene_ids: List[str]) -> Tuple[str, str]:
        """
        Detect the most likely ID type from a list of gene IDs.

        Args:
            gene_ids: List of gene identifiers

        Returns:
            Tuple of (id_type, species) e.g., ('ensembl_human', 'human')
        """
        counts = {id_type: 0 for id_type in self.PATTERNS}

        for gene_id in gene_ids[:100]:  # Sample first 100 for performance
            gene_id = str(gene_id).strip()
            for id_type, pattern in self.PATTERNS.items():
                if pattern.match(gene_id):
                    counts[id_type] += 1
                    break

        detected_type = max(counts, key=counts.get)
        species = {
            'ensembl_mouse': 'mouse',
            'ensembl_rat': 'rat',
        }.get(detected_type, 'human')

        logger.info(f"Detected ID type: {detected_type}, Species: {species}")
        return detected_type, species

    def _local_resolve(self, label: str) -> Optional[str]:
        """Resolve a label without touching the network"""
        if label in self.lookup:
            return self.lookup[label]

        parsed = parse_depmap_label(label)
        if parsed:
            symbol, entrez = parsed
            return symbol if self.target == 'symbol' else entrez

        if self.target == 'entrez' and self.PATTERNS['entrez'].match(label):
            return label
        if self.target == 'symbol' and not self.use_mygene and self._is_valid_symbol(label):
            return label
        return None

    def resolve(self, label: str) -> str:
        """
        Map a single label.

        Raises:
            IdentifierMappingError: label has no identifier in the target namespace
        """
        label = str(label).strip()
        mapped = self._local_resolve(label)
        if mapped is None and self.use_mygene:
            mapped = self._query_mygene([label]).get(label)
        if not mapped:
            raise IdentifierMappingError(label, self.target)
        return mapped

    def _cache_key(self, gene_ids: List[str]) -> str:
        digest = hashlib.sha256('\n'.join(sorted(gene_ids)).encode()).hexdigest()[:16]
        return f"{self.target}_{self.species}_{digest}"

    def _load_from_cache(self, cache_key: str) -> Optional[Dict]:
        """Load mapping result from local JSON cache"""
        cache_file = self.cache_dir / f"{cache_key}.json"
        if not cache_file.exists():
            return None
        try:
            with open(cache_file, 'r') as f:
                cached = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Cache read error: {e}")
            return None
        # Entries older than 30 days are refreshed
        if time.time() - cached.get('timestamp', 0) < 30 * 24 * 3600:
            logger.info(f"Cache hit: {cache_key}")
            return cached.get('data')
        return None

    def _save_to_cache(self, cache_key: str, data: Dict):
        """Save mapping result to local JSON cache"""
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        cache_file = self.cache_dir / f"{cache_key}.json"
        try:
            with open(cache_file, 'w') as f:
                json.dump({'timestamp': time.time(), 'data': data}, f)
        except OSError as e:
            logger.warning(f"Cache write error: {e}")

    def _query_mygene(self, gene_ids: List[str]) -> Dict[str, Optional[str]]:
        """
        Map labels via mygene.info.

        Returns:
            Dictionary of input label -> identifier (None when not found)
        """
        if not gene_ids:
            return {}

        cache_key = self._cache_key(gene_ids)
        cached = self._load_from_cache(cache_key)
        if cached is not None:
            return cached

        source_type, _ = self.detect_id_type(gene_ids)
        scopes = self.SCOPES.get(source_type, 'symbol,alias')
        field = 'symbol' if self.target == 'symbol' else 'entrezgene'

        if self._mg is None:
            self._mg = mygene.MyGeneInfo()

        logger.info(f"Querying mygene.info for {len(gene_ids)} genes (scopes={scopes})")
        results = self._mg.querymany(
            gene_ids,
            scopes=scopes,
            fields='symbol,entrezgene',
            species=self.TAXON.get(self.species, 9606),
            returnall=True,
            verbose=False
        )

        mapping: Dict[str, Optional[str]] = {gid: None for gid in gene_ids}
        for hit in results.get('out', []):
            query = hit.get('query')
            if query not in mapping or mapping[query] or hit.get('notfound'):
                continue
            value = hit.get(field)
            mapping[query] = str(value) if value is not None else None

        self._save_to_cache(cache_key, mapping)
        return mapping

    def map_genes(self, gene_ids: List[str]) -> Tuple[Dict[str, Optional[str]], MappingReport]:
        """
        Map gene labels with detailed reporting.

        Unmapped labels map to None; they are counted, never raised.

        Args:
            gene_ids: Input gene labels

        Returns:
            Tuple of (mapping_dict, mapping_report)
        """
        gene_ids = [str(gid).strip() for gid in gene_ids if str(gid).strip()]
        unique_ids = list(dict.fromkeys(gene_ids))  # Preserve order, remove duplicates

        source_type, _ = self.detect_id_type(unique_ids) if unique_ids else ('unknown', self.species)

        mapping = {gid: self._local_resolve(gid) for gid in unique_ids}
        pending = [gid for gid, value in mapping.items() if value is None]
        if pending and self.use_mygene:
            mapping.update(self._query_mygene(pending))

        unmapped = [gid for gid in unique_ids if not mapping.get(gid)]
        targets = pd.Series([v for v in mapping.values() if v])
        duplicated = sorted(set(targets[targets.duplicated()]))

        self.report = MappingReport(
            input_count=len(unique_ids),
            mapped_count=len(unique_ids) - len(unmapped),
            unmapped_count=len(unmapped),
            duplicated_count=len(duplicated),
            unmapped_ids=unmapped[:10],  # Show first 10
            duplicated_ids=duplicated[:10],
            source_type=source_type,
            target_type=self.target,
            species=self.species
        )
        if unmapped:
            logger.warning(
                f"{len(unmapped)}/{len(unique_ids)} genes have no {self.target} identifier "
                f"and will be dropped. First few: {', '.join(unmapped[:5])}"
            )
        return mapping, self.report

    def map_index(self, frame: pd.DataFrame) -> Tuple[pd.DataFrame, MappingReport]:
        """
        Re-index a gene-indexed frame into the target namespace.

        Unmapped rows are dropped. When several labels map to the same
        identifier, the row with the highest mean is kept.

        Returns:
            Tuple of (re-indexed frame, mapping_report)
        """
        mapping, report = self.map_genes(list(frame.index))
        targets = pd.Series([mapping.get(str(label).strip()) for label in frame.index], index=frame.index)
        keep = targets.notna().to_numpy()

        mapped = frame.loc[keep].copy()
        mapped.index = pd.Index(targets[keep].to_numpy(), name=frame.index.name)
        if mapped.index.has_duplicates:
            means = mapped.mean(axis=1).fillna(float('-inf')).to_numpy()
            order = sorted(range(len(mapped)), key=lambda i: -means[i])
            mapped = mapped.iloc[order]
            mapped = mapped[~mapped.index.duplicated(keep='first')]
        return mapped, report

    def _is_valid_symbol(self, symbol: str) -> bool:
        """Heuristic check if a string looks like a valid gene symbol"""
        return bool(self.PATTERNS['symbol'].match(symbol))

    def get_mapping_report(self) -> Optional[MappingReport]:
        """Get the last mapping report"""
        return self.report
