"""
Gene Set Utilities for EnrichCorr
Handles GMT file reading/writing and gene set bookkeeping.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple
from pathlib import Path


def load_gmt(file_path: str) -> Dict[str, List[str]]:
    """
    Load gene sets from GMT (Gene Matrix Transposed) format file.

    GMT Format: Each line is tab-separated:
    <gene_set_name> <description> <gene1> <gene2> ... <geneN>

    Args:
        file_path: Path to GMT file

    Returns:
        Dictionary mapping gene set names to sorted, de-duplicated gene lists

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If file is not valid UTF-8
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"GMT file not found: {file_path}")

    gene_sets: Dict[str, Set[str]] = {}

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.rstrip('\n').rstrip('\r')

                # Skip empty lines and comments
                if not line.strip() or line.startswith('#'):
                    continue

                parts = line.split('\t')

                if len(parts) < 3:
                    logging.warning(
                        f"Line {line_num}: Expected at least 3 fields (name, description, genes), "
                        f"got {len(parts)}. Skipping."
                    )
                    continue

                name = parts[0].strip()
                genes = {g.strip() for g in parts[2:] if g.strip()}

                if not genes:
                    logging.warning(f"Line {line_num}: Gene set '{name}' has no genes. Skipping.")
                    continue

                if name in gene_sets:
                    logging.warning(f"Line {line_num}: Duplicate gene set name '{name}'. Merging genes.")
                    gene_sets[name] |= genes
                else:
                    gene_sets[name] = genes
    except UnicodeDecodeError as e:
        raise ValueError(f"Invalid file encoding. Expected UTF-8: {e}")

    logging.info(f"Loaded {len(gene_sets)} gene sets from {file_path}")
    return {name: sorted(genes) for name, genes in gene_sets.items()}


def save_gmt(gene_sets: Dict[str, Iterable[str]], file_path: str, description: str = "") -> None:
    """
    Save gene sets to GMT format file.

    Args:
        gene_sets: Dictionary mapping gene set names to genes
        file_path: Output file path
        description: Optional description for all gene sets (default: empty)
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding='utf-8') as f:
        for name in sorted(gene_sets):
            line = f"{name}\t{description}\t" + "\t".join(sorted(gene_sets[name]))
            f.write(line + "\n")

    logging.info(f"Saved {len(gene_sets)} gene sets to {file_path}")


def validate_gene_sets(gene_sets: Dict[str, Iterable[str]],
                       universe: Optional[Iterable[str]] = None,
                       min_size: int = 5,
                       max_size: Optional[int] = None) -> Tuple[Dict[str, List[str]], List[str]]:
    """
    Restrict gene sets to a gene universe and filter by size.

    Args:
        gene_sets: Dictionary of gene set name -> genes
        universe: Genes available for scoring (None keeps all members)
        min_size: Minimum number of genes after restriction (default: 5)
        max_size: Maximum number of genes after restriction (None for no limit)

    Returns:
        Tuple of (valid_gene_sets, warnings)
    """
    available = set(universe) if universe is not None else None
    valid_sets = {}
    warnings = []

    for name, genes in gene_sets.items():
        members = set(genes)
        if available is not None:
            members &= available

        if len(members) < min_size:
            warnings.append(f"'{name}': Too few genes ({len(members)} < {min_size}). Excluded.")
            continue

        if max_size is not None and len(members) > max_size:
            warnings.append(f"'{name}': Too many genes ({len(members)} > {max_size}). Excluded.")
            continue

        valid_sets[name] = sorted(members)

    logging.info(
        f"Validated gene sets: {len(valid_sets)}/{len(gene_sets)} kept, "
        f"{len(warnings)} excluded"
    )

    return valid_sets, warnings


def get_gene_set_stats(gene_sets: Dict[str, Iterable[str]]) -> Dict[str, float]:
    """
    Get statistics about gene sets.

    Returns:
        Dictionary with stats: total_sets, total_genes, unique_genes, avg_size, min_size, max_size
    """
    if not gene_sets:
        return {
            "total_sets": 0,
            "total_genes": 0,
            "unique_genes": 0,
            "avg_size": 0,
            "min_size": 0,
            "max_size": 0
        }

    sizes = [len(set(genes)) for genes in gene_sets.values()]
    all_genes = set()
    for genes in gene_sets.values():
        all_genes.update(genes)

    return {
        "total_sets": len(gene_sets),
        "total_genes": sum(sizes),
        "unique_genes": len(all_genes),
        "avg_size": sum(sizes) / len(sizes),
        "min_size": min(sizes),
        "max_size": max(sizes)
    }
