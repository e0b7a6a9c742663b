"""
Network module for FCSFlow

- WGCNA-style weighted co-expression modules
- GeneMANIA query export for functional interaction networks
"""

from .coexpression import (MODULE_COLORS, CoexpressionNetwork, module_color,
                           scale_free_fit)
from .genemania import (ORGANISM_SLUGS, export_query, organism_slug, query_url,
                        select_query_genes)

__all__ = [
    "CoexpressionNetwork",
    "scale_free_fit",
    "module_color",
    "MODULE_COLORS",
    "export_query",
    "query_url",
    "select_query_genes",
    "organism_slug",
    "ORGANISM_SLUGS",
]
