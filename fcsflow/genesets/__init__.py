"""
Gene set collections for FCSFlow

- GMT and TERM2GENE gene set collections
- KEGG REST retrieval of pathway gene sets, KGML and pathway images
"""

from .collection import GeneSetCollection, as_gene_set_collection
from .kegg import KEGGClient, kegg_category, kegg_gene_sets, resolve_subset

__all__ = [
    "GeneSetCollection",
    "as_gene_set_collection",
    "KEGGClient",
    "kegg_category",
    "kegg_gene_sets",
    "resolve_subset",
]
