"""
Tests for gene set collections and KEGG REST retrieval.
"""

import json
from unittest.mock import MagicMock

import pandas as pd
import pytest

from fcsflow.exceptions import AnnotationServiceError, DataValidationError
from fcsflow.genesets import (GeneSetCollection, KEGGClient,
                              as_gene_set_collection, kegg_category,
                              kegg_gene_sets)
from fcsflow.genesets.kegg import strip_organism_suffix

KEGG_RESPONSES = {
    "list/pathway/hsa": (
        "path:hsa04110\tCell cycle - Homo sapiens (human)\n"
        "path:hsa00010\tGlycolysis / Gluconeogenesis - Homo sapiens (human)\n"
        "path:hsa05200\tPathways in cancer - Homo sapiens (human)\n"
    ),
    "conv/ncbi-geneid/hsa": (
        "hsa:7157\tncbi-geneid:7157\n"
        "hsa:1029\tncbi-geneid:1029\n"
        "hsa:2597\tncbi-geneid:2597\n"
    ),
    "link/hsa/pathway": (
        "path:hsa04110\thsa:7157\n"
        "path:hsa04110\thsa:1029\n"
        "path:hsa00010\thsa:2597\n"
        "path:hsa05200\thsa:7157\n"
        "path:hsa05200\thsa:9999\n"
    ),
    "get/hsa04110/kgml": '<pathway name="path:hsa04110" org="hsa" number="04110"/>',
}


def _fake_get(url, timeout=None):
    operation = url.split("rest.kegg.jp/", 1)[1]
    response = MagicMock()
    if operation in KEGG_RESPONSES:
        response.status_code = 200
        response.text = KEGG_RESPONSES[operation]
        response.content = KEGG_RESPONSES[operation].encode()
    elif operation.endswith("/image"):
        response.status_code = 200
        response.text = ""
        response.content = b"\x89PNG fake image"
    else:
        response.status_code = 404
        response.text = ""
        response.content = b""
    return response


@pytest.fixture
def kegg_client(monkeypatch):
    """KEGG client answering from canned REST responses."""
    monkeypatch.setattr(KEGGClient, "RATE_LIMIT_SECONDS", 0)
    client = KEGGClient("hsa")
    client.session = MagicMock()
    client.session.get.side_effect = _fake_get
    return client


class TestGeneSetCollection:
    """Test gene set collection operations."""

    def test_gmt_round_trip(self, gene_sets, temp_output_dir):
        """Test GMT save then load keeps sets and descriptions."""
        path = gene_sets.to_gmt(temp_output_dir / "sets.gmt")
        loaded = GeneSetCollection.from_gmt(path)

        assert loaded.name == "sets"
        assert set(loaded) == {"UP_SET", "DOWN_SET", "RANDOM_SET"}
        assert loaded.get("UP_SET") == gene_sets.get("UP_SET")
        assert loaded.describe("DOWN_SET") == "Down-regulated pathway"

    def test_gmt_bad_line(self, temp_output_dir):
        """Test GMT lines without genes are rejected."""
        path = temp_output_dir / "bad.gmt"
        path.write_text("SET1\tdescription\n")
        with pytest.raises(DataValidationError):
            GeneSetCollection.from_gmt(path)

    def test_gmt_missing_file(self, temp_output_dir):
        """Test a missing GMT file raises."""
        with pytest.raises(FileNotFoundError):
            GeneSetCollection.from_gmt(temp_output_dir / "absent.gmt")

    def test_restrict_and_filter(self):
        """Test universe restriction drops empty sets before size filtering."""
        collection = GeneSetCollection(
            "test", {"A": ["1", "2", "3"], "B": ["4", "5"], "C": ["9"]}
        )
        restricted = collection.restrict_to_universe(["1", "2", "4"])

        assert set(restricted) == {"A", "B"}
        assert restricted.get("A") == {"1", "2"}
        assert set(restricted.filter_by_size(2, 5)) == {"A"}

    def test_overlap_table(self, gene_sets):
        """Test overlap rows are sorted by overlap count."""
        query = list(gene_sets.get("UP_SET"))[:10] + list(gene_sets.get("DOWN_SET"))[:3]
        table = gene_sets.overlap_table(query)

        assert table["pathway"].tolist()[:2] == ["UP_SET", "DOWN_SET"]
        assert table["overlap_count"].tolist()[:2] == [10, 3]
        assert table.loc[0, "overlap_fraction"] == pytest.approx(10 / 25)

    def test_from_dataframe(self):
        """Test TERM2GENE tables build a collection."""
        df = pd.DataFrame(
            {
                "term": ["T1", "T1", "T2"],
                "gene": [1, 2, 3],
                "name": ["Term one", "Term one", "Term two"],
            }
        )
        collection = GeneSetCollection.from_dataframe(df, description_col="name")

        assert collection.get("T1") == {"1", "2"}
        assert collection.describe("T2") == "Term two"

    def test_search_and_subset(self, gene_sets):
        """Test keyword search and subsetting."""
        assert gene_sets.search("down") == ["DOWN_SET"]
        assert set(gene_sets.subset(["UP_SET", "MISSING"])) == {"UP_SET"}

    def test_to_json(self, gene_sets, temp_output_dir):
        """Test JSON export writes sorted gene lists."""
        path = gene_sets.to_json(temp_output_dir / "sets.json")
        with open(path) as f:
            data = json.load(f)
        assert data["UP_SET"] == sorted(gene_sets.get("UP_SET"))

    def test_as_gene_set_collection(self, gene_sets):
        """Test dicts are wrapped and other types rejected."""
        assert as_gene_set_collection(gene_sets) is gene_sets
        assert len(as_gene_set_collection({"A": ["1"]})) == 1
        with pytest.raises(DataValidationError):
            as_gene_set_collection(["1", "2"])


class TestKEGG:
    """Test KEGG REST retrieval with canned responses."""

    def test_kegg_category(self):
        """Test map number ranges."""
        assert kegg_category("hsa04110") == "signaling"
        assert kegg_category("hsa00010") == "metabolism"
        assert kegg_category("hsa05200") == "disease"
        assert kegg_category("custom") == "other"

    def test_strip_organism_suffix(self):
        """Test organism suffix removal from pathway names."""
        assert strip_organism_suffix("Cell cycle - Homo sapiens (human)") == "Cell cycle"

    def test_list_pathways(self, kegg_client):
        """Test pathway listing."""
        pathways = kegg_client.list_pathways()

        assert pathways["ID"].tolist() == ["hsa04110", "hsa00010", "hsa05200"]
        assert pathways.loc[0, "Description"] == "Cell cycle"
        assert pathways.loc[1, "category"] == "metabolism"

    def test_gene_sets(self, kegg_client):
        """Test pathway gene sets use Entrez ids and skip unmapped genes."""
        sets = kegg_client.gene_sets()

        assert sets["hsa04110"] == ["7157", "1029"]
        assert sets["hsa05200"] == ["7157"]

    def test_kegg_gene_sets_subsets(self, kegg_client):
        """Test subset selection by pathway category."""
        everything = kegg_gene_sets(client=kegg_client)
        assert everything.name == "KEGG_hsa"
        assert set(everything) == {"hsa04110", "hsa00010", "hsa05200"}
        assert everything.describe("hsa04110") == "Cell cycle"

        assert set(kegg_gene_sets(client=kegg_client, subset="sigmet")) == {
            "hsa04110",
            "hsa00010",
        }
        assert set(kegg_gene_sets(client=kegg_client, signaling_only=True)) == {"hsa04110"}

        with pytest.raises(ValueError):
            kegg_gene_sets(client=kegg_client, subset="everything")

    def test_get_image(self, kegg_client):
        """Test binary image retrieval."""
        assert kegg_client.get_image("hsa04110").startswith(b"\x89PNG")

    def test_http_error(self, kegg_client):
        """Test non-200 responses raise AnnotationServiceError."""
        with pytest.raises(AnnotationServiceError):
            kegg_client.get_kgml("hsa09999")

    def test_download_kgml_skips_failures(self, kegg_client, temp_output_dir):
        """Test failed downloads are skipped."""
        written = kegg_client.download_kgml(["hsa04110", "hsa09999"], temp_output_dir)

        assert [p.name for p in written] == ["hsa04110.xml"]
        assert "hsa04110" in written[0].read_text()

    def test_responses_are_cached(self, monkeypatch, temp_output_dir):
        """Test a second client reads the cache instead of the network."""
        monkeypatch.setattr(KEGGClient, "RATE_LIMIT_SECONDS", 0)
        first = KEGGClient("hsa", cache_dir=temp_output_dir)
        first.session = MagicMock()
        first.session.get.side_effect = _fake_get
        first.list_pathways()

        second = KEGGClient("hsa", cache_dir=temp_output_dir)
        second.session = MagicMock()
        pathways = second.list_pathways()

        assert len(pathways) == 3
        second.session.get.assert_not_called()
