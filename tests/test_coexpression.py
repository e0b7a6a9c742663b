"""
Tests for WGCNA-style co-expression modules.
"""

import numpy as np
import pandas as pd
import pytest

from fcsflow.exceptions import DataValidationError
from fcsflow.network import CoexpressionNetwork, module_color, scale_free_fit


@pytest.fixture
def latent_factors():
    """Two independent sample-level factors over 30 samples."""
    np.random.seed(42)
    samples = [f"S{i}" for i in range(1, 31)]
    return pd.DataFrame(
        {"A": np.random.normal(0, 1, 30), "B": np.random.normal(0, 1, 30)}, index=samples
    )


@pytest.fixture
def expression(latent_factors):
    """
    Samples x genes matrix: 40 genes driven by factor A, 40 by factor B and
    10 pure noise genes.
    """
    np.random.seed(0)
    columns = {}
    for i in range(40):
        columns[f"a{i}"] = latent_factors["A"] + np.random.normal(0, 0.3, 30)
    for i in range(40):
        columns[f"b{i}"] = latent_factors["B"] + np.random.normal(0, 0.3, 30)
    for i in range(10):
        columns[f"n{i}"] = np.random.normal(0, 1, 30)
    return pd.DataFrame(columns, index=latent_factors.index)


@pytest.fixture
def network(expression):
    """Network with modules detected at a fixed cut height."""
    net = CoexpressionNetwork(expression)
    net.adjacency(6)
    net.tom()
    net.detect_modules(min_module_size=10, cut_height=0.8)
    return net


class TestModuleColors:
    """Test module colour labels."""

    def test_standard_colors(self):
        """Test the first colours and the unassigned label."""
        assert module_color(0) == "grey"
        assert module_color(1) == "turquoise"
        assert module_color(2) == "blue"

    def test_overflow(self):
        """Test labels beyond the palette are numbered."""
        assert module_color(500) == "module500"


class TestNetworkConstruction:
    """Test input handling."""

    def test_drops_constant_genes(self, expression):
        """Test zero variance and missing genes are removed."""
        data = expression.copy()
        data["flat"] = 1.0
        data.loc["S1", "a0"] = np.nan
        net = CoexpressionNetwork(data)

        assert "flat" not in net.genes
        assert "a0" not in net.genes
        assert len(net.genes) == 89

    def test_genes_in_rows(self, expression):
        """Test a genes x samples table is transposed."""
        net = CoexpressionNetwork(expression.T, genes_in_rows=True)
        assert len(net.genes) == 90

    def test_invalid_inputs(self, expression):
        """Test network type and minimum size checks."""
        with pytest.raises(ValueError):
            CoexpressionNetwork(expression, network_type="weighted")
        with pytest.raises(DataValidationError):
            CoexpressionNetwork(expression.iloc[:2])
        with pytest.raises(DataValidationError):
            CoexpressionNetwork(expression.iloc[:, :1])


class TestSoftThreshold:
    """Test scale-free topology fitting."""

    def test_fit_table(self, expression):
        """Test one row per power with WGCNA column names."""
        net = CoexpressionNetwork(expression)
        estimate, table = net.pick_soft_threshold(powers=[1, 2, 4, 6, 8])

        assert table["Power"].tolist() == [1, 2, 4, 6, 8]
        for col in ("SFT.R.sq", "slope", "signed.R.sq", "mean.k.", "median.k.", "max.k."):
            assert col in table.columns
        assert table["mean.k."].is_monotonic_decreasing
        assert estimate is None or estimate in [1, 2, 4, 6, 8]

    def test_scale_free_fit(self):
        """Test a power-law degree distribution fits with negative slope."""
        np.random.seed(42)
        k = np.random.pareto(2.0, 2000) + 1
        fit = scale_free_fit(k)
        assert fit["slope"] < 0
        assert 0 <= fit["r_squared"] <= 1


class TestModules:
    """Test module detection and downstream summaries."""

    def test_two_modules(self, network):
        """Test each latent factor gives one module."""
        modules = network.modules
        a_colors = set(modules[[f"a{i}" for i in range(40)]])
        b_colors = set(modules[[f"b{i}" for i in range(40)]])

        assert len(a_colors) == 1 and len(b_colors) == 1
        assert a_colors | b_colors == {"turquoise", "blue"}
        assert set(modules[[f"n{i}" for i in range(10)]]) == {"grey"}

    def test_tom_properties(self, network):
        """Test TOM is symmetric with values in [0, 1]."""
        tom = network.tom().to_numpy()
        np.testing.assert_allclose(tom, tom.T)
        assert tom.min() >= 0 and tom.max() <= 1 + 1e-12

    def test_eigengenes(self, network, latent_factors):
        """Test eigengenes track the latent factors."""
        eigengenes = network.module_eigengenes()
        a_module = network.modules["a0"]

        assert sorted(eigengenes.columns) == ["MEblue", "MEturquoise"]
        r = np.corrcoef(eigengenes[f"ME{a_module}"], latent_factors["A"])[0, 1]
        assert r > 0.95
        assert eigengenes.std().round(6).tolist() == [1.0, 1.0]

    def test_module_membership(self, network):
        """Test kME columns and module labels."""
        membership = network.module_membership()
        a_module = network.modules["a0"]

        assert membership.loc["a0", "module"] == a_module
        assert membership.loc["a0", f"kME{a_module}"] > 0.9

    def test_module_trait_correlation(self, network, latent_factors):
        """Test eigengene-trait correlations and p-values."""
        traits = pd.DataFrame({"score": latent_factors["A"] * 2 + 1})
        cor, pvalues = network.module_trait_correlation(traits)
        a_module = network.modules["a0"]

        assert cor.loc[f"ME{a_module}", "score"] > 0.95
        assert pvalues.loc[f"ME{a_module}", "score"] < 1e-6

    def test_trait_sample_overlap(self, network):
        """Test traits sharing too few samples are rejected."""
        traits = pd.DataFrame({"score": [1.0, 2.0]}, index=["S1", "X"])
        with pytest.raises(DataValidationError):
            network.module_trait_correlation(traits)

    def test_default_cut_height(self, expression):
        """Test the default cut separates the two factors."""
        net = CoexpressionNetwork(expression)
        net.adjacency(6)
        modules = net.detect_modules(min_module_size=10)
        assert modules["a0"] != modules["b0"]

    def test_requires_modules(self, expression, temp_output_dir):
        """Test eigengenes and dendrogram need detected modules."""
        net = CoexpressionNetwork(expression)
        with pytest.raises(RuntimeError):
            net.module_eigengenes()
        with pytest.raises(RuntimeError):
            net.plot_dendrogram(temp_output_dir / "tree.pdf")

    def test_outputs(self, network, temp_output_dir):
        """Test tables and plots are written."""
        network.pick_soft_threshold(powers=[1, 2, 4, 6])
        files = network.save_results(temp_output_dir)

        assert set(files) == {"soft_threshold", "modules", "eigengenes"}
        assert all(path.exists() for path in files.values())
        assert network.plot_dendrogram(temp_output_dir / "tree.pdf").exists()
        assert network.plot_soft_threshold(temp_output_dir / "sft.pdf").exists()
