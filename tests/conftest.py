"""
Pytest configuration and shared fixtures for fcsflow tests.
"""

import tempfile
from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from fcsflow.genesets import GeneSetCollection
from fcsflow.topology import parse_kgml

N_GENES = 500
N_UP = 30
N_DOWN = 30

KGML_TEXT = """<pathway name="path:hsa04999" org="hsa" number="04999"
         title="Test signaling pathway"
         image="https://www.kegg.jp/kegg/pathway/hsa/hsa04999.png">
    <entry id="1" name="hsa:1001" type="gene">
        <graphics name="GENEA, ALIAS1" x="100" y="100" width="46" height="17"/>
    </entry>
    <entry id="2" name="hsa:1002 hsa:1003" type="gene">
        <graphics name="GENEB..." x="200" y="100" width="46" height="17"/>
    </entry>
    <entry id="3" name="hsa:1004" type="gene">
        <graphics name="GENED" x="300" y="100" width="46" height="17"/>
    </entry>
    <entry id="4" name="hsa:1010" type="gene">
        <graphics name="GENEJ" x="300" y="200" width="46" height="17"/>
    </entry>
    <entry id="5" name="cpd:C00076" type="compound">
        <graphics name="C00076" x="150" y="250" width="8" height="8"/>
    </entry>
    <entry id="6" name="undefined" type="group">
        <component id="3"/>
        <component id="4"/>
    </entry>
    <relation entry1="1" entry2="2" type="PPrel">
        <subtype name="phosphorylation" value="+p"/>
        <subtype name="activation" value="--&gt;"/>
    </relation>
    <relation entry1="2" entry2="6" type="PPrel">
        <subtype name="activation" value="--&gt;"/>
    </relation>
    <relation entry1="3" entry2="1" type="PPrel">
        <subtype name="inhibition" value="--|"/>
    </relation>
    <relation entry1="1" entry2="5" type="PCrel"/>
</pathway>
"""


@pytest.fixture
def temp_output_dir():
    """Create a temporary output directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def de_table():
    """
    Synthetic DESeq2-style result table.

    Entrez ids run from 1001; the first N_UP genes are strongly up-regulated
    and the next N_DOWN strongly down-regulated.
    """
    np.random.seed(42)
    entrez = [str(1001 + i) for i in range(N_GENES)]

    lfc = np.random.normal(0, 0.4, N_GENES)
    lfc[:N_UP] = np.random.uniform(2.0, 4.0, N_UP)
    lfc[N_UP:N_UP + N_DOWN] = -np.random.uniform(2.0, 4.0, N_DOWN)

    padj = np.random.uniform(0.2, 1.0, N_GENES)
    padj[:N_UP + N_DOWN] = np.random.uniform(1e-8, 1e-3, N_UP + N_DOWN)

    return pd.DataFrame(
        {
            "gene_id": [f"ENSG{i:011d}" for i in range(1, N_GENES + 1)],
            "symbol": [f"GENE{i}" for i in range(1, N_GENES + 1)],
            "entrez": entrez,
            "baseMean": np.random.uniform(10, 1000, N_GENES),
            "log2FoldChange": lfc,
            "pvalue": padj / 10,
            "padj": padj,
        }
    )


@pytest.fixture
def de_file(de_table, temp_output_dir):
    """DE table written as CSV."""
    path = temp_output_dir / "deseq2_results.csv"
    de_table.to_csv(path, index=False)
    return path


@pytest.fixture
def fold_changes(de_table):
    """Named fold-change vector sorted decreasing."""
    values = pd.Series(
        de_table["log2FoldChange"].to_numpy(), index=de_table["entrez"], name="log2FoldChange"
    )
    return values.sort_values(ascending=False)


@pytest.fixture
def gene_sets(de_table):
    """Up, down and random gene sets over the synthetic genes."""
    entrez = de_table["entrez"].tolist()
    rng = np.random.RandomState(7)
    background = entrez[N_UP + N_DOWN:]
    return GeneSetCollection(
        "TEST",
        {
            "UP_SET": entrez[:25],
            "DOWN_SET": entrez[N_UP:N_UP + 25],
            "RANDOM_SET": list(rng.choice(background, 25, replace=False)),
        },
        {
            "UP_SET": "Up-regulated pathway",
            "DOWN_SET": "Down-regulated pathway",
            "RANDOM_SET": "Unrelated pathway",
        },
    )


@pytest.fixture
def gmt_file(gene_sets, temp_output_dir):
    """Gene sets written as GMT."""
    return gene_sets.to_gmt(temp_output_dir / "test_sets.gmt")


@pytest.fixture
def kgml_text():
    """Small KGML document with a group, a compound and three relations."""
    return KGML_TEXT


@pytest.fixture
def pathway_graph(kgml_text):
    """Parsed test pathway."""
    return parse_kgml(kgml_text)


@pytest.fixture
def kgml_dir(kgml_text, temp_output_dir):
    """Directory holding the test KGML file."""
    directory = temp_output_dir / "kgml"
    directory.mkdir()
    (directory / "hsa04999.xml").write_text(kgml_text)
    return directory
