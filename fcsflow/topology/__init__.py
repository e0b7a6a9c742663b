"""
Pathway topology module for FCSFlow

- KGML parsing into gene-level pathway graphs (networkx)
- Signaling Pathway Impact Analysis (SPIA)
- Pathway diagrams coloured by fold change
"""

from .kgml import (KGMLEntry, KGMLRelation, PathwayGraph, load_pathway_graph,
                   load_pathway_graphs, parse_kgml)
from .pathview import node_values, render_pathway, render_pathways
from .spia import (DEFAULT_BETA, combine_evidence, perturbation_matrix,
                   plot_two_way_evidence, run_spia)

__all__ = [
    "KGMLEntry",
    "KGMLRelation",
    "PathwayGraph",
    "parse_kgml",
    "load_pathway_graph",
    "load_pathway_graphs",
    "run_spia",
    "perturbation_matrix",
    "combine_evidence",
    "plot_two_way_evidence",
    "DEFAULT_BETA",
    "render_pathway",
    "render_pathways",
    "node_values",
]
