"""
Tests for GeneMANIA query export.
"""

import numpy as np
import pandas as pd
import pytest

from fcsflow.exceptions import DataValidationError
from fcsflow.network import (export_query, organism_slug, query_url,
                             select_query_genes)


class TestQueryUrl:
    """Test GeneMANIA search links."""

    def test_organism_slug(self):
        """Test KEGG codes and slugs are accepted."""
        assert organism_slug("hsa") == "homo-sapiens"
        assert organism_slug("mus-musculus") == "mus-musculus"
        with pytest.raises(ValueError):
            organism_slug("xyz")

    def test_url(self):
        """Test genes are joined into the search path."""
        url = query_url(["TP53", "MDM2"], organism="hsa")
        assert url == "https://genemania.org/search/homo-sapiens/TP53/MDM2"

    def test_empty(self):
        """Test an empty gene list is rejected."""
        with pytest.raises(DataValidationError):
            query_url([])


class TestSelectQueryGenes:
    """Test query gene selection."""

    def test_from_de_table(self):
        """Test DE rows are ranked by padj then absolute fold change."""
        df = pd.DataFrame(
            {
                "symbol": ["A", "B", "C", "D", np.nan, "A"],
                "log2FoldChange": [1.0, -4.0, 2.0, 5.0, 3.0, 0.5],
                "padj": [0.01, 0.001, 0.001, 0.5, 0.0001, 0.02],
            }
        )
        assert select_query_genes(df) == ["B", "C", "A"]
        assert select_query_genes(df, top_n=2) == ["B", "C"]

    def test_from_series(self):
        """Test a symbol-indexed Series is ranked by absolute value."""
        values = pd.Series({"TP53": 1.0, "MDM2": -3.0, "PTEN": 2.0})
        assert select_query_genes(values) == ["MDM2", "PTEN", "TP53"]

    def test_missing_symbol_column(self):
        """Test a table without symbols is rejected."""
        with pytest.raises(DataValidationError):
            select_query_genes(pd.DataFrame({"gene_id": ["A"]}))


class TestExportQuery:
    """Test the written query file."""

    def test_export(self, de_table, temp_output_dir):
        """Test one symbol per line and the returned link."""
        result = export_query(de_table, temp_output_dir / "genemania.txt", top_n=20)

        lines = result["path"].read_text().splitlines()
        assert lines == result["genes"]
        assert len(lines) == 20
        assert result["url"].startswith("https://genemania.org/search/homo-sapiens/")

    def test_no_genes(self, de_table, temp_output_dir):
        """Test an error when nothing passes the cutoff."""
        with pytest.raises(DataValidationError):
            export_query(de_table, temp_output_dir / "genemania.txt", padj_cutoff=1e-12)
