"""
GeneMANIA query export

GeneMANIA takes a list of gene symbols and an organism; this module selects
the query genes from DE results and writes them in a form ready to paste
into the web interface or Cytoscape app, together with the search link.
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Union
from urllib.parse import quote

import pandas as pd

from ..exceptions import DataValidationError
from ..utils import get_logger

logger = get_logger(__name__)

GENEMANIA_URL = "https://genemania.org/search"

ORGANISM_SLUGS = {
    "hsa": "homo-sapiens",
    "mmu": "mus-musculus",
    "rno": "rattus-norvegicus",
    "dre": "danio-rerio",
    "dme": "drosophila-melanogaster",
    "cel": "caenorhabditis-elegans",
    "sce": "saccharomyces-cerevisiae",
    "ath": "arabidopsis-thaliana",
    "eco": "escherichia-coli",
}


def organism_slug(organism: str) -> str:
    """GeneMANIA organism path segment for a KEGG code or a slug"""
    if organism in ORGANISM_SLUGS:
        return ORGANISM_SLUGS[organism]
    if organism in ORGANISM_SLUGS.values():
        return organism
    raise ValueError(
        f"Unsupported GeneMANIA organism '{organism}'. "
        f"Use one of: {', '.join(ORGANISM_SLUGS)}"
    )


def query_url(genes: Iterable[str], organism: str = "hsa") -> str:
    """Web search link, e.g. https://genemania.org/search/homo-sapiens/TP53/MDM2"""
    genes = [str(g) for g in genes]
    if not genes:
        raise DataValidationError("A GeneMANIA query needs at least one gene")
    path = "/".join(quote(g, safe="") for g in genes)
    return f"{GENEMANIA_URL}/{organism_slug(organism)}/{path}"


def select_query_genes(
    data: Union[pd.Series, pd.DataFrame],
    top_n: int = 100,
    symbol_column: str = "symbol",
    padj_cutoff: float = 0.05,
) -> List[str]:
    """
    Pick the query genes

    A Series (indexed by symbol) is ranked by absolute value. A DE table keeps
    rows with padj below padj_cutoff, ranked by padj then absolute fold change.
    """
    if isinstance(data, pd.Series):
        ranked = data.dropna().abs().sort_values(ascending=False)
        genes = [str(g) for g in ranked.index]
    else:
        if symbol_column not in data.columns:
            raise DataValidationError(f"DE table has no '{symbol_column}' column")
        table = data.dropna(subset=[symbol_column])
        if "padj" in table.columns:
            table = table[table["padj"] < padj_cutoff]
            table = table.assign(_abs_lfc=table["log2FoldChange"].abs())
            table = table.sort_values(["padj", "_abs_lfc"], ascending=[True, False])
        genes = [str(g) for g in table[symbol_column]]

    genes = list(dict.fromkeys(g for g in genes if g and g != "nan"))
    return genes[:top_n]


def export_query(
    data: Union[pd.Series, pd.DataFrame],
    output_file: Union[str, Path],
    top_n: int = 100,
    organism: str = "hsa",
    symbol_column: str = "symbol",
    padj_cutoff: float = 0.05,
) -> Dict[str, Any]:
    """
    Write a GeneMANIA gene list (one symbol per line)

    Returns:
        Dict with 'path', 'genes' and 'url'
    """
    genes = select_query_genes(data, top_n, symbol_column, padj_cutoff)
    if not genes:
        raise DataValidationError("No genes selected for the GeneMANIA query")

    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    with open(output_file, "w") as f:
        f.write("\n".join(genes) + "\n")

    url = query_url(genes, organism)
    logger.info(f"Wrote {len(genes)} GeneMANIA query genes to {output_file}")
    return {"path": output_file, "genes": genes, "url": url}
