"""
Differential expression result handling

Loads DE tables produced upstream (DESeq2, edgeR, limma), normalises their
column names, and derives the named fold-change vector that every
functional class scoring method takes as input.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import pandas as pd

from ..exceptions import DataValidationError
from ..utils import get_logger

logger = get_logger(__name__)

COLUMN_ALIASES = {
    "log2FoldChange": ["log2FoldChange", "logFC", "log2FC", "log2_fold_change", "lfc"],
    "padj": ["padj", "FDR", "adj.P.Val", "p.adjust", "qvalue", "q_value", "adj_pvalue"],
    "pvalue": ["pvalue", "PValue", "P.Value", "p_value", "pval"],
    "baseMean": ["baseMean", "AveExpr", "logCPM"],
    "gene_id": ["gene_id", "gene", "ensgene", "ensembl_gene_id", "Unnamed: 0", "row", "id"],
    "symbol": ["symbol", "gene_symbol", "external_gene_name", "name", "SYMBOL"],
    "entrez": ["entrez", "entrezid", "ENTREZID", "entrezgene_id", "entrez_id"],
}

NUMERIC_COLUMNS = ["log2FoldChange", "padj", "pvalue", "baseMean"]


@dataclass
class DEResults:
    """Normalised differential expression result table"""

    table: pd.DataFrame
    comparison_name: str = "comparison"
    source_file: Optional[Path] = None

    @property
    def n_genes(self) -> int:
        return len(self.table)

    @property
    def n_significant(self) -> int:
        if "significant" not in self.table.columns:
            return 0
        return int(self.table["significant"].sum())


def _read_table(path: Path, sep: Optional[str]) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if path.name.endswith(".gz"):
        suffix = Path(path.stem).suffix.lower()

    if suffix in (".xlsx", ".xls"):
        return pd.read_excel(path)

    if sep is None:
        sep = "\t" if suffix in (".tsv", ".txt", ".tab") else ","

    return pd.read_csv(path, sep=sep)


def normalize_columns(df: pd.DataFrame, gene_column: Optional[str] = None) -> pd.DataFrame:
    """
    Rename known column aliases to the canonical FCSFlow names

    Args:
        df: Raw DE table
        gene_column: Explicit gene identifier column (overrides detection)

    Returns:
        Copy of the table with canonical column names
    """
    df = df.copy()
    renames = {}

    if gene_column is not None:
        if gene_column not in df.columns:
            raise DataValidationError(f"Gene column '{gene_column}' not in DE table")
        renames[gene_column] = "gene_id"

    for canonical, aliases in COLUMN_ALIASES.items():
        if canonical in renames.values() or canonical in df.columns:
            continue
        for alias in aliases:
            if alias in df.columns and alias not in renames:
                renames[alias] = canonical
                break

    df = df.rename(columns=renames)

    # Symbol-only tables use the symbol as the identifier
    if "gene_id" not in df.columns and "symbol" in df.columns:
        df["gene_id"] = df["symbol"]

    for col in NUMERIC_COLUMNS:
        if col in df.columns and not pd.api.types.is_numeric_dtype(df[col]):
            # European decimal format
            df[col] = pd.to_numeric(
                df[col].astype(str).str.replace(",", ".", regex=False),
                errors="coerce",
            )

    return df


def load_de_results(
    de_file: Union[str, Path],
    gene_column: Optional[str] = None,
    sep: Optional[str] = None,
    comparison_name: Optional[str] = None,
) -> DEResults:
    """
    Load a differential expression result table

    Args:
        de_file: CSV, TSV or Excel file with DE results
        gene_column: Column holding gene identifiers (auto-detected if None)
        sep: Field separator (derived from the suffix if None)
        comparison_name: Label used for outputs (file stem if None)

    Returns:
        DEResults with canonical columns gene_id, log2FoldChange, padj
    """
    path = Path(de_file)
    if not path.exists():
        raise FileNotFoundError(f"DE results file not found: {path}")

    logger.info(f"Loading differential expression results from {path}")
    raw = _read_table(path, sep)
    logger.info(f"Initial load: {len(raw)} genes")

    df = normalize_columns(raw, gene_column=gene_column)

    missing = [c for c in ("gene_id", "log2FoldChange", "padj") if c not in df.columns]
    if missing:
        raise DataValidationError(
            f"DE table is missing required columns {missing}; found {list(raw.columns)}"
        )

    df["gene_id"] = df["gene_id"].astype("string").str.strip()
    # Ensembl version suffixes (ENSG00000141510.16) break identifier lookups
    df["gene_id"] = df["gene_id"].str.replace(r"^(ENS[A-Z]*G\d+)\.\d+$", r"\1", regex=True)

    return DEResults(
        table=df,
        comparison_name=comparison_name or path.stem,
        source_file=path,
    )


def classify_genes(
    df: pd.DataFrame, padj_cutoff: float = 0.05, lfc_cutoff: float = 1.0
) -> pd.DataFrame:
    """Add 'significant' and 'direction' columns"""
    df = df.copy()

    df["significant"] = (df["padj"] < padj_cutoff) & (
        np.abs(df["log2FoldChange"]) > lfc_cutoff
    )
    df["significant"] = df["significant"].fillna(False).astype(bool)

    df["direction"] = "NS"
    df.loc[df["significant"] & (df["log2FoldChange"] > 0), "direction"] = "up"
    df.loc[df["significant"] & (df["log2FoldChange"] < 0), "direction"] = "down"

    logger.info(
        f"Classified {len(df)} genes: {(df['direction'] == 'up').sum()} up, "
        f"{(df['direction'] == 'down').sum()} down "
        f"(padj < {padj_cutoff}, |log2FC| > {lfc_cutoff})"
    )
    return df


def build_fold_change_vector(
    df: pd.DataFrame, id_column: str = "entrez", value_column: str = "log2FoldChange"
) -> pd.Series:
    """
    Build the named fold-change vector used by GSEA, GAGE, SPIA and pathview

    NA identifiers and values are dropped; duplicated identifiers keep the
    entry with the largest absolute fold change. Sorted decreasing.

    Args:
        df: DE table with identifier and fold change columns
        id_column: Identifier column used as the vector names
        value_column: Column holding the statistic

    Returns:
        pd.Series indexed by identifier (str), named by value_column
    """
    if id_column not in df.columns:
        raise DataValidationError(f"Identifier column '{id_column}' not in DE table")
    if value_column not in df.columns:
        raise DataValidationError(f"Value column '{value_column}' not in DE table")

    subset = df[[id_column, value_column]].copy()
    n_input = len(subset)

    subset = subset.dropna(subset=[id_column])
    n_na_ids = n_input - len(subset)

    before = len(subset)
    subset = subset.dropna(subset=[value_column])
    n_na_values = before - len(subset)

    subset[id_column] = subset[id_column].astype(str).str.replace(
        r"\.0$", "", regex=True
    )

    before = len(subset)
    subset = (
        subset.assign(_abs=subset[value_column].abs())
        .sort_values("_abs", ascending=False, kind="mergesort")
        .drop_duplicates(subset=[id_column], keep="first")
    )
    n_duplicates = before - len(subset)

    fold_changes = pd.Series(
        subset[value_column].astype(float).values,
        index=pd.Index(subset[id_column].values, name=id_column),
        name=value_column,
    ).sort_values(ascending=False, kind="mergesort")

    logger.info(
        f"Fold-change vector: {len(fold_changes)} genes "
        f"(dropped {n_na_ids} NA ids, {n_na_values} NA values, {n_duplicates} duplicates)"
    )
    return fold_changes


def significant_genes(
    df: pd.DataFrame,
    padj_cutoff: float = 0.05,
    lfc_cutoff: float = 0.0,
    id_column: str = "entrez",
) -> pd.Series:
    """Fold-change vector restricted to differentially expressed genes"""
    mask = (df["padj"] < padj_cutoff) & (np.abs(df["log2FoldChange"]) > lfc_cutoff)
    de = build_fold_change_vector(df[mask.fillna(False)], id_column=id_column)
    logger.info(f"{len(de)} significant genes (padj < {padj_cutoff})")
    return de


def background_genes(df: pd.DataFrame, id_column: str = "entrez") -> List[str]:
    """All tested identifiers (non-NA padj), used as the reference universe"""
    tested = df.dropna(subset=["padj", id_column])
    ids = tested[id_column].astype(str).str.replace(r"\.0$", "", regex=True)
    return list(dict.fromkeys(ids))
