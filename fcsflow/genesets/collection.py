"""
Gene set collections

Pathway id -> member gene id mappings with GMT input/output, size
filtering and universe restriction, shared by the GSEA and GAGE engines.
"""

import json
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Union

import pandas as pd

from ..exceptions import DataValidationError
from ..utils import get_logger

logger = get_logger(__name__)


class GeneSetCollection:
    """Named collection of gene sets"""

    def __init__(
        self,
        name: str,
        gene_sets: Dict[str, Iterable[str]],
        descriptions: Optional[Dict[str, str]] = None,
    ):
        self.name = name
        self.gene_sets: Dict[str, Set[str]] = {
            set_id: {str(g) for g in genes} for set_id, genes in gene_sets.items()
        }
        self.descriptions = dict(descriptions or {})

    def __len__(self) -> int:
        return len(self.gene_sets)

    def __iter__(self) -> Iterator[str]:
        return iter(self.gene_sets)

    def __contains__(self, set_id: str) -> bool:
        return set_id in self.gene_sets

    def __repr__(self) -> str:
        return f"GeneSetCollection(name={self.name!r}, n_sets={len(self)})"

    def items(self):
        return self.gene_sets.items()

    def get(self, set_id: str) -> Set[str]:
        """Get genes for a specific gene set (empty set if unknown)"""
        return self.gene_sets.get(set_id, set())

    def describe(self, set_id: str) -> str:
        return self.descriptions.get(set_id, set_id)

    @property
    def all_genes(self) -> Set[str]:
        genes: Set[str] = set()
        for members in self.gene_sets.values():
            genes |= members
        return genes

    @classmethod
    def from_gmt(cls, gmt_file: Union[str, Path], name: Optional[str] = None):
        """
        Load gene sets from a GMT file

        Parameters:
        -----------
        gmt_file : str or Path
            Tab separated file: set id, description, gene1, gene2, ...
        name : str, optional
            Collection name (file stem if None)

        Returns:
        --------
        GeneSetCollection
        """
        path = Path(gmt_file)
        if not path.exists():
            raise FileNotFoundError(f"GMT file not found: {path}")

        gene_sets = {}
        descriptions = {}
        with open(path, "r") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.rstrip("\n\r")
                if not line.strip():
                    continue
                parts = line.split("\t")
                if len(parts) < 3:
                    raise DataValidationError(
                        f"{path}:{line_number}: GMT lines need an id, a description and genes"
                    )
                set_id = parts[0]
                descriptions[set_id] = parts[1] or set_id
                gene_sets[set_id] = [g for g in parts[2:] if g]

        logger.info(f"Loaded {len(gene_sets)} gene sets from {path}")
        return cls(name or path.stem, gene_sets, descriptions)

    def to_gmt(self, output_file: Union[str, Path]) -> Path:
        """Save gene sets in GMT format"""
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w") as f:
            for set_id, genes in self.gene_sets.items():
                genes_str = "\t".join(sorted(genes))
                f.write(f"{set_id}\t{self.describe(set_id)}\t{genes_str}\n")

        logger.info(f"Gene sets saved to {output_path}")
        return output_path

    def to_json(self, output_file: Union[str, Path]) -> Path:
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        json_data = {k: sorted(v) for k, v in self.gene_sets.items()}
        with open(output_path, "w") as f:
            json.dump(json_data, f, indent=2)
        return output_path

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        term_col: str = "term",
        gene_col: str = "gene",
        description_col: Optional[str] = None,
        name: str = "custom",
    ):
        """
        Build a collection from a long TERM2GENE table

        Parameters:
        -----------
        df : pd.DataFrame
            One row per (term, gene) pair
        term_col, gene_col : str
            Column names for the set id and the member gene
        description_col : str, optional
            Column holding set descriptions
        """
        for col in (term_col, gene_col):
            if col not in df.columns:
                raise DataValidationError(f"Column '{col}' not in TERM2GENE table")

        pairs = df.dropna(subset=[term_col, gene_col])
        gene_sets = {
            str(term): group[gene_col].astype(str).tolist()
            for term, group in pairs.groupby(term_col, sort=False)
        }

        descriptions = None
        if description_col is not None:
            descriptions = (
                pairs.drop_duplicates(subset=[term_col])
                .set_index(term_col)[description_col]
                .astype(str)
                .to_dict()
            )

        return cls(name, gene_sets, descriptions)

    def filter_by_size(self, min_size: int = 10, max_size: int = 500):
        """Return a new collection with min_size <= |set| <= max_size"""
        kept = {
            k: v for k, v in self.gene_sets.items() if min_size <= len(v) <= max_size
        }
        logger.debug(
            f"Size filter [{min_size}, {max_size}]: kept {len(kept)}/{len(self)} sets"
        )
        return GeneSetCollection(self.name, kept, self.descriptions)

    def restrict_to_universe(self, genes: Iterable[str]):
        """Intersect every set with the measured genes, dropping empty sets"""
        universe = {str(g) for g in genes}
        restricted = {}
        for set_id, members in self.gene_sets.items():
            overlap = members & universe
            if overlap:
                restricted[set_id] = overlap
        return GeneSetCollection(self.name, restricted, self.descriptions)

    def subset(self, set_ids: Iterable[str]):
        wanted = [s for s in set_ids if s in self.gene_sets]
        return GeneSetCollection(
            self.name, {s: self.gene_sets[s] for s in wanted}, self.descriptions
        )

    def search(self, keyword: str) -> List[str]:
        """Search for gene sets whose id or description contains a keyword"""
        keyword_upper = keyword.upper()
        return [
            set_id
            for set_id in self.gene_sets
            if keyword_upper in set_id.upper()
            or keyword_upper in self.describe(set_id).upper()
        ]

    def overlap_table(self, query_genes: Iterable[str]) -> pd.DataFrame:
        """
        Analyze overlap between query genes and every gene set

        Parameters:
        -----------
        query_genes : iterable of str
            Query gene ids

        Returns:
        --------
        pd.DataFrame
            One row per set with at least one overlapping gene, sorted by
            overlap count
        """
        query_set = {str(g) for g in query_genes}
        overlap_results = []

        for set_id, members in self.gene_sets.items():
            overlap_genes = query_set & members
            if not overlap_genes:
                continue
            overlap_results.append(
                {
                    "pathway": set_id,
                    "description": self.describe(set_id),
                    "pathway_size": len(members),
                    "query_size": len(query_set),
                    "overlap_count": len(overlap_genes),
                    "overlap_genes": ",".join(sorted(overlap_genes)),
                    "overlap_fraction": len(overlap_genes) / len(members),
                    "query_fraction": len(overlap_genes) / len(query_set),
                }
            )

        results_df = pd.DataFrame(overlap_results)
        if not results_df.empty:
            results_df = results_df.sort_values(
                "overlap_count", ascending=False
            ).reset_index(drop=True)
        return results_df


def as_gene_set_collection(
    gene_sets: Union[GeneSetCollection, Dict[str, Iterable[str]]], name: str = "custom"
) -> GeneSetCollection:
    """Accept either a collection or a plain dict of sets"""
    if isinstance(gene_sets, GeneSetCollection):
        return gene_sets
    if isinstance(gene_sets, dict):
        return GeneSetCollection(name, gene_sets)
    raise DataValidationError(
        f"Gene sets must be a GeneSetCollection or dict, got {type(gene_sets).__name__}"
    )
