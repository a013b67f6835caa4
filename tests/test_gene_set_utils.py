"""
Unit tests for gene_set_utils module.
"""

import pytest
import tempfile
from pathlib import Path
from gene_set_utils import (
    load_gmt,
    save_gmt,
    validate_gene_sets,
    get_gene_set_stats
)


class TestGMTLoading:
    """Test GMT file loading functionality."""

    def test_load_valid_gmt(self):
        """Test loading a valid GMT file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.gmt', delete=False) as f:
            f.write("HALLMARK_APOPTOSIS\tDescription1\tBAX\tBCL2\tCASP3\n")
            f.write("HALLMARK_HYPOXIA\tDescription2\tHIF1A\tVEGFA\n")
            temp_path = f.name

        try:
            gene_sets = load_gmt(temp_path)

            assert len(gene_sets) == 2
            assert gene_sets["HALLMARK_APOPTOSIS"] == ["BAX", "BCL2", "CASP3"]
            assert gene_sets["HALLMARK_HYPOXIA"] == ["HIF1A", "VEGFA"]
        finally:
            Path(temp_path).unlink()

    def test_load_with_duplicates(self):
        """Duplicate gene set names are merged into one set."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.gmt', delete=False) as f:
            f.write("PATHWAY1\tDesc\tGENE1\tGENE2\n")
            f.write("PATHWAY1\tDesc\tGENE2\tGENE3\tGENE4\n")
            temp_path = f.name

        try:
            gene_sets = load_gmt(temp_path)

            assert len(gene_sets) == 1
            assert gene_sets["PATHWAY1"] == ["GENE1", "GENE2", "GENE3", "GENE4"]
        finally:
            Path(temp_path).unlink()

    def test_load_strips_blank_members(self, tmp_path):
        """Trailing tabs and blank fields do not become genes."""
        path = tmp_path / "sets.gmt"
        path.write_text("PATHWAY1\tDesc\tGENE1\t\t GENE2 \t\n", encoding='utf-8')

        gene_sets = load_gmt(str(path))

        assert gene_sets["PATHWAY1"] == ["GENE1", "GENE2"]

    def test_load_empty_file(self):
        """Test loading an empty GMT file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.gmt', delete=False) as f:
            temp_path = f.name

        try:
            gene_sets = load_gmt(temp_path)
            assert len(gene_sets) == 0
        finally:
            Path(temp_path).unlink()

    def test_load_with_comments_and_short_lines(self, tmp_path):
        """Comment lines and lines without genes are skipped."""
        path = tmp_path / "sets.gmt"
        path.write_text(
            "# This is a comment\n"
            "PATHWAY1\tDesc\tGENE1\tGENE2\n"
            "BROKEN\tDesc\n",
            encoding='utf-8'
        )

        gene_sets = load_gmt(str(path))
        assert list(gene_sets) == ["PATHWAY1"]

    def test_load_nonexistent_file(self):
        """Test loading a file that doesn't exist."""
        with pytest.raises(FileNotFoundError):
            load_gmt("/nonexistent/path/file.gmt")

    def test_load_invalid_encoding(self, tmp_path):
        """Non UTF-8 content is reported as ValueError."""
        path = tmp_path / "latin1.gmt"
        path.write_bytes("PATHWAY1\tD\xe9sc\tGENE1\n".encode('latin-1'))

        with pytest.raises(ValueError):
            load_gmt(str(path))


class TestGMTSaving:
    """Test GMT file saving functionality."""

    def test_save_gmt(self):
        """Test saving gene sets to GMT file."""
        gene_sets = {
            "PATHWAY2": ["GENE5", "GENE4"],
            "PATHWAY1": ["GENE3", "GENE1", "GENE2"]
        }

        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = Path(tmpdir) / "nested" / "test.gmt"
            save_gmt(gene_sets, str(output_path))

            lines = output_path.read_text(encoding='utf-8').splitlines()
            assert lines[0] == "PATHWAY1\t\tGENE1\tGENE2\tGENE3"
            assert lines[1] == "PATHWAY2\t\tGENE4\tGENE5"

            loaded = load_gmt(str(output_path))
            assert set(loaded["PATHWAY1"]) == {"GENE1", "GENE2", "GENE3"}


class TestGeneSetValidation:
    """Test gene set validation."""

    def test_validate_size_filtering(self):
        """Test filtering by gene set size."""
        gene_sets = {
            "SMALL": ["G1", "G2"],
            "VALID": ["G1", "G2", "G3", "G4", "G5", "G6"],
            "LARGE": ["G" + str(i) for i in range(600)]
        }

        valid, warnings = validate_gene_sets(gene_sets, min_size=5, max_size=500)

        assert list(valid) == ["VALID"]
        assert len(warnings) == 2
        assert any("SMALL" in w for w in warnings)
        assert any("LARGE" in w for w in warnings)

    def test_validate_duplicates(self):
        """Duplicate members are counted once."""
        gene_sets = {
            "PATHWAY1": ["GENE1", "GENE2", "GENE1", "GENE3"]
        }

        valid, warnings = validate_gene_sets(gene_sets, min_size=3)

        assert valid["PATHWAY1"] == ["GENE1", "GENE2", "GENE3"]
        assert warnings == []

    def test_validate_against_universe(self):
        """Members outside the universe do not count towards the size."""
        gene_sets = {
            "PATHWAY1": ["A", "B", "C", "X", "Y"],
            "PATHWAY2": ["A", "B", "C", "D"],
        }

        valid, warnings = validate_gene_sets(gene_sets, universe=["A", "B", "C", "D"], min_size=4)

        assert valid == {"PATHWAY2": ["A", "B", "C", "D"]}
        assert "(3 < 4)" in warnings[0]


class TestGeneSetStats:
    """Test gene set statistics."""

    def test_stats_calculation(self):
        """Test statistics calculation."""
        gene_sets = {
            "PATHWAY1": ["G1", "G2", "G3"],
            "PATHWAY2": ["G3", "G4", "G5", "G6"]
        }

        stats = get_gene_set_stats(gene_sets)

        assert stats["total_sets"] == 2
        assert stats["total_genes"] == 7
        assert stats["unique_genes"] == 6
        assert stats["min_size"] == 3
        assert stats["max_size"] == 4
        assert stats["avg_size"] == 3.5

    def test_stats_empty(self):
        """Test stats for empty gene sets."""
        stats = get_gene_set_stats({})

        assert stats["total_sets"] == 0
        assert stats["total_genes"] == 0
