"""
Tests for pathway rendering coloured by fold change.
"""

import io

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from fcsflow.topology import node_values, render_pathway, render_pathways


class TestNodeValues:
    """Test fold change per drawn node."""

    def test_mean_of_members(self, pathway_graph):
        """Test multi-gene nodes average their measured members."""
        fold_changes = pd.Series({"1001": 2.0, "1002": 1.0, "1003": -3.0})
        values = node_values(pathway_graph, fold_changes)

        assert values["1"] == 2.0
        assert values["2"] == -1.0
        assert np.isnan(values["3"])
        assert set(values) == {"1", "2", "3", "4"}

    def test_integer_index(self, pathway_graph):
        """Test integer Entrez ids are matched as strings."""
        values = node_values(pathway_graph, pd.Series({1010: 0.5}))
        assert values["4"] == 0.5


class TestRenderPathway:
    """Test rendered diagram files."""

    def test_file_name(self, pathway_graph, temp_output_dir):
        """Test output is written as <pathway>.<suffix>.png."""
        fold_changes = pd.Series({"1001": 2.0, "1002": -1.5})
        path = render_pathway(pathway_graph, fold_changes, temp_output_dir)

        assert path == temp_output_dir / "hsa04999.fcsflow.png"
        assert path.exists()

    def test_custom_suffix_and_scale(self, pathway_graph, temp_output_dir):
        """Test custom suffix, colours and limit."""
        path = render_pathway(
            pathway_graph,
            pd.Series({"1001": 10.0}),
            temp_output_dir,
            limit=2.0,
            low="blue",
            mid="white",
            high="orange",
            bins=5,
            suffix="ko",
        )
        assert path.name == "hsa04999.ko.png"

    def test_background_image(self, pathway_graph, temp_output_dir):
        """Test a PNG background passed as bytes."""
        buffer = io.BytesIO()
        plt.imsave(buffer, np.ones((300, 400, 3)), format="png")

        path = render_pathway(
            pathway_graph,
            pd.Series({"1001": 1.0}),
            temp_output_dir,
            background=buffer.getvalue(),
        )
        assert path.exists()

    def test_render_pathways_skips_missing(self, pathway_graph, temp_output_dir):
        """Test pathways without graphs are skipped."""
        paths = render_pathways(
            {"hsa04999": pathway_graph},
            pd.Series({"1001": 1.0}),
            temp_output_dir,
            pathway_ids=["hsa04999", "hsa04110"],
        )
        assert [p.name for p in paths] == ["hsa04999.fcsflow.png"]
