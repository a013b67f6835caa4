"""
Score Cache for EnrichCorr

File-based cache of enrichment score matrices. Entries are keyed by a
fingerprint of the input matrix, the gene set catalog and the scoring
parameters, so a change to any of them produces a new key instead of a
stale hit.
"""

import hashlib
import json
import logging
import pickle
from pathlib import Path
from typing import Any, Optional

import pandas as pd

logger = logging.getLogger("EnrichCorr.Cache")


def score_cache_key(expression: pd.DataFrame, catalog_hash: str, **params: Any) -> str:
    """
    Fingerprint for a score matrix computation.

    Args:
        expression: genes x samples matrix fed to the engine
        catalog_hash: GeneSetCatalog.hash
        **params: scoring parameters (kcdf, min_size, ...)

    Returns:
        Hex digest usable as a file name
    """
    sha256 = hashlib.sha256()
    sha256.update(pd.util.hash_pandas_object(expression, index=True).to_numpy().tobytes())
    sha256.update('\x1f'.join(map(str, expression.columns)).encode())
    sha256.update(catalog_hash.encode())
    sha256.update(json.dumps(params, sort_keys=True, default=str).encode())
    return sha256.hexdigest()[:32]


class ScoreCache:
    """
    Pickle-backed cache of score matrices.

    Interface: get(key) -> Optional[DataFrame], put(key, DataFrame).
    """

    def __init__(self, cache_dir: Optional[Path] = None):
        """
        Initialize cache.

        Args:
            cache_dir: Directory for cache files
        """
        self.cache_dir = Path(cache_dir) if cache_dir else Path.home() / '.enrichcorr' / 'cache' / 'scores'
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        return self.cache_dir / f"scores_{key}.pkl"

    def get(self, key: str) -> Optional[pd.DataFrame]:
        """
        Get cached score matrix.

        Returns:
            Cached DataFrame or None on a miss; unreadable entries are removed
        """
        path = self.path_for(key)
        if not path.exists():
            logger.info(f"Score cache miss: {key}")
            return None
        try:
            scores = pd.read_pickle(path)
        except (OSError, EOFError, pickle.UnpicklingError, AttributeError, ImportError, TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable cache entry {path.name}: {e}")
            path.unlink(missing_ok=True)
            return None
        if not isinstance(scores, pd.DataFrame):
            logger.warning(f"Discarding cache entry {path.name}: not a DataFrame")
            path.unlink(missing_ok=True)
            return None
        logger.info(f"Score cache hit: {key}")
        return scores

    def put(self, key: str, scores: pd.DataFrame) -> Path:
        """Store a score matrix; returns the cache file path"""
        path = self.path_for(key)
        tmp = path.with_suffix('.tmp')
        scores.to_pickle(tmp)
        tmp.replace(path)
        logger.info(f"Cached score matrix {scores.shape} as {path.name}")
        return path

    def delete(self, key: str):
        """Delete cached item"""
        self.path_for(key).unlink(missing_ok=True)

    def clear(self):
        """Clear all cache"""
        for file in self.cache_dir.glob("scores_*.pkl"):
            file.unlink()
