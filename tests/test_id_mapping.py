"""
Tests for identifier detection and BioMart mapping.
"""

from unittest.mock import MagicMock, patch

import pandas as pd
import pytest
import requests

from fcsflow.exceptions import DataValidationError, IdentifierMappingError
from fcsflow.expression import IdentifierMapper, detect_id_type
from fcsflow.expression.id_mapping import build_biomart_query

BIOMART_TSV = (
    "ENSG00000141510\tTP53\t7157\tprotein_coding\ttumor protein p53\n"
    "ENSG00000171862\tPTEN\t5728\tprotein_coding\tphosphatase and tensin homolog\n"
    "ENSG00000135679\tMDM2\t4193\tprotein_coding\tMDM2 proto-oncogene\n"
    "ENSG00000230000\t\t\tlncRNA\tnovel transcript\n"
)


def _response(text, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return response


class TestDetectIdType:
    """Test identifier type detection."""

    def test_ensembl(self):
        """Test Ensembl gene ids with and without versions."""
        assert detect_id_type(["ENSG00000141510", "ENSG00000171862.12"]) == "ensembl"

    def test_entrez(self):
        """Test numeric Entrez ids."""
        assert detect_id_type(["7157", "5728", "4193"]) == "entrez"

    def test_symbol(self):
        """Test gene symbols."""
        assert detect_id_type(["TP53", "PTEN", "HLA-A"]) == "symbol"

    def test_empty(self):
        """Test empty input raises."""
        with pytest.raises(DataValidationError):
            detect_id_type([None, float("nan")])


class TestBioMartQuery:
    """Test the BioMart XML query."""

    def test_query_content(self):
        """Test dataset and attributes appear in the query."""
        query = build_biomart_query("hsapiens_gene_ensembl", ["ensembl_gene_id", "entrezgene_id"])
        assert 'Dataset name = "hsapiens_gene_ensembl"' in query
        assert 'Attribute name = "entrezgene_id"' in query
        assert 'header = "0"' in query


class TestIdentifierMapper:
    """Test mapping through a mocked BioMart service."""

    @patch("fcsflow.expression.id_mapping.requests.post")
    def test_annotate_ensembl(self, mock_post):
        """Test Ensembl ids gain symbol and Entrez columns."""
        mock_post.return_value = _response(BIOMART_TSV)
        df = pd.DataFrame(
            {
                "gene_id": ["ENSG00000141510.5", "ENSG00000171862", "ENSG00000999999"],
                "log2FoldChange": [1.0, -1.0, 0.5],
            }
        )

        mapper = IdentifierMapper()
        result = mapper.annotate(df)

        assert result["entrez"].tolist()[:2] == ["7157", "5728"]
        assert pd.isna(result["entrez"].iloc[2])
        assert result["symbol"].tolist()[:2] == ["TP53", "PTEN"]
        assert mapper.report.mapped_count == 2
        assert mapper.report.unmapped_count == 1
        assert mapper.report.source_type == "ensembl"
        assert mapper.report.unmapped_ids == ["ENSG00000999999"]
        mock_post.assert_called_once()

    @patch("fcsflow.expression.id_mapping.requests.post")
    def test_annotate_symbols_case_insensitive(self, mock_post):
        """Test symbol lookups ignore case."""
        mock_post.return_value = _response(BIOMART_TSV)
        df = pd.DataFrame({"gene_id": ["tp53", "Mdm2"]})

        result = IdentifierMapper().annotate(df, id_type="symbol")

        assert result["entrez"].tolist() == ["7157", "4193"]
        assert result["ensembl_gene_id"].tolist() == ["ENSG00000141510", "ENSG00000135679"]

    @patch("fcsflow.expression.id_mapping.requests.post")
    def test_http_error(self, mock_post):
        """Test non-200 responses raise IdentifierMappingError."""
        mock_post.return_value = _response("", status_code=500)
        with pytest.raises(IdentifierMappingError):
            IdentifierMapper().fetch_mapping_table()

    @patch("fcsflow.expression.id_mapping.requests.post")
    def test_query_error(self, mock_post):
        """Test BioMart error bodies raise IdentifierMappingError."""
        mock_post.return_value = _response("Query ERROR: caught BioMart::Exception")
        with pytest.raises(IdentifierMappingError):
            IdentifierMapper().fetch_mapping_table()

    @patch("fcsflow.expression.id_mapping.requests.post")
    def test_connection_error(self, mock_post):
        """Test connection failures raise IdentifierMappingError."""
        mock_post.side_effect = requests.ConnectionError("unreachable")
        with pytest.raises(IdentifierMappingError):
            IdentifierMapper().fetch_mapping_table()

    @patch("fcsflow.expression.id_mapping.requests.post")
    def test_cached_mapping(self, mock_post, temp_output_dir):
        """Test a second mapper reuses the cached table."""
        mock_post.return_value = _response(BIOMART_TSV)
        first = IdentifierMapper(cache_dir=temp_output_dir).fetch_mapping_table()

        mock_post.side_effect = requests.ConnectionError("offline")
        second = IdentifierMapper(cache_dir=temp_output_dir).fetch_mapping_table()

        assert mock_post.call_count == 1
        pd.testing.assert_frame_equal(first, second)

    @patch("fcsflow.expression.id_mapping.requests.post")
    def test_missing_column(self, mock_post):
        """Test annotate rejects an unknown id column."""
        with pytest.raises(DataValidationError):
            IdentifierMapper().annotate(pd.DataFrame({"x": [1]}), id_column="gene_id")
        mock_post.assert_not_called()
