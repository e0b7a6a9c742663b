"""
Tests for Signaling Pathway Impact Analysis.
"""

import numpy as np
import pandas as pd
import pytest

from fcsflow.exceptions import DataValidationError
from fcsflow.topology import (DEFAULT_BETA, combine_evidence, parse_kgml,
                              perturbation_matrix, plot_two_way_evidence,
                              run_spia)
from fcsflow.topology.spia import SPIA_COLUMNS

ALL_GENES = [str(i) for i in range(1001, 1501)]


@pytest.fixture
def de_genes():
    """Three DE genes inside the test pathway."""
    return pd.Series({"1001": 3.0, "1002": 2.5, "1004": 2.0})


class TestPerturbationMatrix:
    """Test the normalised interaction matrix."""

    def test_weights(self, pathway_graph):
        """Test entries are beta weights divided by downstream counts."""
        genes, b = perturbation_matrix(pathway_graph, DEFAULT_BETA)
        i = {g: k for k, g in enumerate(genes)}

        assert genes == ["1001", "1002", "1003", "1004", "1010"]
        assert b[i["1002"], i["1001"]] == pytest.approx(0.5)
        assert b[i["1003"], i["1001"]] == pytest.approx(0.5)
        assert b[i["1004"], i["1002"]] == pytest.approx(0.5)
        assert b[i["1001"], i["1004"]] == pytest.approx(-1.0)
        assert np.all(np.diag(b) == 0)

    def test_zero_beta(self, pathway_graph):
        """Test relations with zero weight are ignored."""
        beta = {name: 0 for name in DEFAULT_BETA}
        _, b = perturbation_matrix(pathway_graph, beta)
        assert not np.any(b)


class TestCombineEvidence:
    """Test combination of pNDE and pPERT."""

    def test_fisher(self):
        """Test c - c * ln(c) with c = pNDE * pPERT."""
        c = 0.01 * 0.02
        combined = combine_evidence(np.array([0.01]), np.array([0.02]), "fisher")
        assert combined[0] == pytest.approx(c - c * np.log(c))

    def test_norminv(self):
        """Test normal inversion of two p-values of 0.5."""
        combined = combine_evidence(np.array([0.5]), np.array([0.5]), "norminv")
        assert combined[0] == pytest.approx(0.5)

    def test_bounds(self):
        """Test combined values stay within [0, 1]."""
        combined = combine_evidence(np.array([1.0, 1e-300]), np.array([1.0, 1e-300]))
        assert np.all((combined >= 0) & (combined <= 1))

    def test_unknown_method(self):
        """Test unknown methods raise ValueError."""
        with pytest.raises(ValueError):
            combine_evidence([0.1], [0.1], "stouffer")


class TestRunSPIA:
    """Test SPIA on the test pathway."""

    def test_single_pathway(self, pathway_graph, de_genes):
        """Test the result table for one pathway."""
        result = run_spia(de_genes, ALL_GENES, [pathway_graph], n_boot=200)
        table = result.full_table

        assert result.method == "spia"
        assert list(table.columns) == SPIA_COLUMNS
        assert len(table) == 1

        row = table.iloc[0]
        assert row["ID"] == "hsa04999"
        assert row["Name"] == "Test signaling pathway"
        assert row["pSize"] == 5
        assert row["NDE"] == 3
        assert 0 < row["pNDE"] <= 1
        assert 0 < row["pPERT"] <= 1
        assert row["pGFdr"] == pytest.approx(row["pG"])
        assert row["pGFWER"] == pytest.approx(row["pG"])
        assert row["Status"] == ("Activated" if row["tA"] > 0 else "Inhibited")
        assert "hsa04999" in row["KEGGLINK"]

    def test_pnde_is_hypergeometric(self, pathway_graph, de_genes):
        """Test pNDE is the hypergeometric upper tail."""
        from scipy import stats

        result = run_spia(de_genes, ALL_GENES, {"hsa04999": pathway_graph}, n_boot=50)
        expected = stats.hypergeom.sf(2, len(ALL_GENES), 5, len(de_genes))
        assert result.full_table.loc[0, "pNDE"] == pytest.approx(expected)

    def test_reproducible(self, pathway_graph, de_genes):
        """Test the same seed gives the same pPERT."""
        first = run_spia(de_genes, ALL_GENES, [pathway_graph], n_boot=100, seed=3)
        second = run_spia(de_genes, ALL_GENES, [pathway_graph], n_boot=100, seed=3)
        pd.testing.assert_frame_equal(first.full_table, second.full_table)

    def test_pathway_without_interactions(self, de_genes):
        """Test pathways without gene relations give an empty table."""
        graph = parse_kgml(
            '<pathway name="path:hsa00001" org="hsa" number="00001" title="Flat">'
            '<entry id="1" name="hsa:1001" type="gene"/></pathway>'
        )
        result = run_spia(de_genes, ALL_GENES, [graph], n_boot=10)

        assert result.full_table.empty
        assert list(result.full_table.columns) == SPIA_COLUMNS
        assert result.significant_pathways == 0

    def test_de_gene_outside_reference(self, pathway_graph):
        """Test DE genes must be part of the reference list."""
        with pytest.raises(DataValidationError):
            run_spia(pd.Series({"99999": 1.0}), ALL_GENES, [pathway_graph])

    def test_invalid_de(self, pathway_graph):
        """Test duplicated or missing values are rejected."""
        with pytest.raises(DataValidationError):
            run_spia(pd.Series([1.0, 2.0], index=["1001", "1001"]), ALL_GENES, [pathway_graph])
        with pytest.raises(DataValidationError):
            run_spia(pd.Series({"1001": np.nan}), ALL_GENES, [pathway_graph])

    def test_unknown_combine(self, pathway_graph, de_genes):
        """Test unknown combination methods raise ValueError."""
        with pytest.raises(ValueError):
            run_spia(de_genes, ALL_GENES, [pathway_graph], combine="mean")


class TestTwoWayPlot:
    """Test the two-way evidence plot."""

    def test_plot_written(self, pathway_graph, de_genes, temp_output_dir):
        """Test the plot file is created."""
        result = run_spia(de_genes, ALL_GENES, [pathway_graph], n_boot=50)
        path = plot_two_way_evidence(result.full_table, temp_output_dir / "two_way.pdf")
        assert path.exists()
