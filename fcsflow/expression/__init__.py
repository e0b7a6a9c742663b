"""
Differential expression input module for FCSFlow

This module provides functionality for:
- Loading DE result tables from DESeq2, edgeR and limma
- Gene identifier conversion (Ensembl / symbol to Entrez) via BioMart
- Building the named fold-change vector used by every enrichment method
"""

from .de_results import (DEResults, background_genes, build_fold_change_vector,
                         classify_genes, load_de_results, normalize_columns,
                         significant_genes)
from .id_mapping import IdentifierMapper, MappingReport, detect_id_type

__all__ = [
    "DEResults",
    "load_de_results",
    "normalize_columns",
    "classify_genes",
    "build_fold_change_vector",
    "significant_genes",
    "background_genes",
    "IdentifierMapper",
    "MappingReport",
    "detect_id_type",
]
