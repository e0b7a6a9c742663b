"""
Functional class scoring module for FCSFlow

This module provides:
- Pre-ranked GSEA with a gene-label permutation null (clusterProfiler semantics)
- GAGE group-on-group t tests over samples or a fold-change vector
- Result containers, dotplots, barplots, GSEA running score plots
- An R backend reproducing the gseKEGG, gage, SPIA and pathview calls
"""

from .gage import GageResult, essential_genes, run_gage, significant_sets
from .gsea import run_gsea, running_enrichment_score
from .r_interface import RPathwayInterface, validate_r_environment
from .results import PathwayEnrichmentResult
from .statistics import adjust_pvalues, storey_qvalues
from .visualization import PathwayPlotter, create_pathway_plots

__all__ = [
    "PathwayEnrichmentResult",
    "run_gsea",
    "running_enrichment_score",
    "run_gage",
    "GageResult",
    "significant_sets",
    "essential_genes",
    "adjust_pvalues",
    "storey_qvalues",
    "PathwayPlotter",
    "create_pathway_plots",
    "RPathwayInterface",
    "validate_r_environment",
]
