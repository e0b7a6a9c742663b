"""
Generally Applicable Gene-set Enrichment (GAGE)

Each sample column (or a single fold-change vector) is scored with the
group-on-group t statistic comparing the gene set mean to the mean of all
genes; per-sample p-values are combined into one global p-value per set.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from ..exceptions import DataValidationError
from ..genesets.collection import GeneSetCollection, as_gene_set_collection
from ..utils import get_logger
from .results import PathwayEnrichmentResult
from .statistics import adjust_pvalues

logger = get_logger(__name__)

COMPARE_MODES = ("paired", "unpaired", "1ongroup")
SUMMARY_COLUMNS = ["p.geomean", "stat.mean", "p.val", "q.val", "set.size"]


@dataclass
class GageResult:
    """GAGE output: one table per test direction plus the per-sample statistics"""

    greater: pd.DataFrame
    less: pd.DataFrame
    stats: pd.DataFrame
    same_dir: bool = True
    parameters: Dict = field(default_factory=dict)

    def to_enrichment_result(
        self,
        direction: str = "greater",
        cutoff: float = 0.1,
        qpval: str = "q.val",
        descriptions: Optional[Dict[str, str]] = None,
        database: str = "KEGG",
    ) -> PathwayEnrichmentResult:
        """Wrap one direction as a PathwayEnrichmentResult"""
        if direction not in ("greater", "less"):
            raise ValueError("direction must be 'greater' or 'less'")

        table = getattr(self, direction).copy()
        descriptions = descriptions or {}
        table.insert(0, "Description", [descriptions.get(i, i) for i in table.index])
        table = table.rename_axis("ID").reset_index()

        significant = table[table[qpval] < cutoff].reset_index(drop=True)
        params = dict(self.parameters, cutoff=cutoff, qpval=qpval, direction=direction)

        return PathwayEnrichmentResult(
            method=f"gage_{direction}",
            database=database,
            gene_count=int(self.parameters.get("n_genes", 0)),
            significant_pathways=len(significant),
            results_df=significant,
            parameters=params,
            all_results_df=table,
        )


def prepare_comparison(
    expression: Union[pd.Series, pd.DataFrame],
    ref: Optional[Sequence] = None,
    samp: Optional[Sequence] = None,
    compare: str = "paired",
) -> pd.DataFrame:
    """
    Turn the input into a genes x comparisons matrix of log ratios

    Parameters:
    -----------
    expression : pd.Series or pd.DataFrame
        Fold-change vector, or log-scale expression matrix (genes x samples)
    ref, samp : sequence of column names or positions, optional
        Reference and sample columns; when omitted the columns are used as-is
    compare : str
        'paired' (samp[i] - ref[i]), 'unpaired' (every samp - every ref) or
        '1ongroup' (each samp - mean of ref)

    Returns:
    --------
    pd.DataFrame
        One column per comparison, indexed by gene id (str)
    """
    if isinstance(expression, pd.Series):
        matrix = expression.to_frame(name="exp1")
    elif isinstance(expression, pd.DataFrame):
        matrix = expression
    else:
        raise DataValidationError("expression must be a pandas Series or DataFrame")

    matrix = matrix.apply(pd.to_numeric, errors="coerce").astype(float)
    matrix.index = matrix.index.astype(str)
    if not matrix.index.is_unique:
        raise DataValidationError("expression contains duplicated gene ids")

    if ref is None and samp is None:
        return matrix

    if ref is None or samp is None:
        raise DataValidationError("ref and samp must be given together")
    if compare not in COMPARE_MODES:
        raise ValueError(f"compare must be one of {', '.join(COMPARE_MODES)}")

    def _columns(selection) -> List[str]:
        return [
            matrix.columns[c] if isinstance(c, (int, np.integer)) else c
            for c in selection
        ]

    ref_cols, samp_cols = _columns(ref), _columns(samp)
    missing = [c for c in ref_cols + samp_cols if c not in matrix.columns]
    if missing:
        raise DataValidationError(f"Columns not in expression matrix: {missing}")

    if compare == "paired":
        if len(ref_cols) != len(samp_cols):
            raise DataValidationError("paired comparison needs as many ref as samp columns")
        ratios = {s: matrix[s] - matrix[r] for r, s in zip(ref_cols, samp_cols)}
    elif compare == "unpaired":
        ratios = {
            f"{s}_vs_{r}": matrix[s] - matrix[r] for s in samp_cols for r in ref_cols
        }
    else:
        ref_mean = matrix[ref_cols].mean(axis=1)
        ratios = {s: matrix[s] - ref_mean for s in samp_cols}

    return pd.DataFrame(ratios, index=matrix.index)


def _group_t_statistics(
    matrix: pd.DataFrame, gene_sets: GeneSetCollection
) -> pd.DataFrame:
    """Sets x columns matrix of (mean(set) - mean(all)) / (sd(all) / sqrt(n))"""
    values = matrix.to_numpy(dtype=float)
    mean_all = np.nanmean(values, axis=0)
    sd_all = np.nanstd(values, axis=0, ddof=1)

    position_of = pd.Series(np.arange(len(matrix)), index=matrix.index)
    rows = {}
    for set_id, members in gene_sets.items():
        idx = position_of[list(members)].to_numpy()
        n = len(idx)
        mean_set = np.nanmean(values[idx], axis=0)
        rows[set_id] = (mean_set - mean_all) / (sd_all / np.sqrt(n))

    return pd.DataFrame.from_dict(rows, orient="index", columns=matrix.columns)


def _direction_table(
    t_stats: pd.DataFrame, set_sizes: pd.Series, upper: bool
) -> pd.DataFrame:
    dof = (set_sizes - 1).clip(lower=1).to_numpy()[:, None]
    if upper:
        pvals = stats.t.sf(t_stats.to_numpy(), df=dof)
    else:
        pvals = stats.t.cdf(t_stats.to_numpy(), df=dof)
    pvals = np.clip(pvals, np.finfo(float).tiny, 1.0)

    per_sample = pd.DataFrame(pvals, index=t_stats.index, columns=t_stats.columns)

    # Fisher's method over comparisons
    n_cols = pvals.shape[1]
    if n_cols == 1:
        global_p = pvals[:, 0]
    else:
        global_p = np.array(
            [stats.combine_pvalues(row, method="fisher")[1] for row in pvals]
        )

    table = pd.DataFrame(
        {
            "p.geomean": np.exp(np.log(pvals).mean(axis=1)),
            "stat.mean": t_stats.mean(axis=1).to_numpy(),
            "p.val": global_p,
            "q.val": adjust_pvalues(global_p, "fdr_bh"),
            "set.size": set_sizes.to_numpy(),
        },
        index=t_stats.index,
    )
    table = pd.concat([table, per_sample], axis=1)
    return table.sort_values(
        ["p.val", "stat.mean"], ascending=[True, not upper], kind="mergesort"
    )


def run_gage(
    expression: Union[pd.Series, pd.DataFrame],
    gene_sets: Union[GeneSetCollection, Dict[str, Iterable[str]]],
    same_dir: bool = True,
    min_size: int = 10,
    max_size: int = 500,
    ref: Optional[Sequence] = None,
    samp: Optional[Sequence] = None,
    compare: str = "paired",
) -> GageResult:
    """
    Run GAGE on a fold-change vector or an expression matrix

    Args:
        expression: Fold-change Series or genes x samples DataFrame
        gene_sets: Gene set collection or dict of sets
        same_dir: Test coordinated up/down changes; False tests absolute
            changes (both directions within a set)
        min_size: Minimum set size among measured genes
        max_size: Maximum set size among measured genes
        ref: Reference columns (expression matrix input)
        samp: Sample columns (expression matrix input)
        compare: 'paired', 'unpaired' or '1ongroup'

    Returns:
        GageResult with greater, less and stats tables
    """
    matrix = prepare_comparison(expression, ref=ref, samp=samp, compare=compare)
    matrix = matrix.dropna(how="all")
    if matrix.empty:
        raise DataValidationError("No measured genes in expression input")

    collection = as_gene_set_collection(gene_sets)
    tested = collection.restrict_to_universe(matrix.index).filter_by_size(min_size, max_size)

    logger.info(
        f"GAGE: {len(matrix)} genes x {matrix.shape[1]} comparisons, "
        f"{len(tested)}/{len(collection)} gene sets, same_dir={same_dir}"
    )

    parameters = {
        "same_dir": same_dir,
        "min_size": min_size,
        "max_size": max_size,
        "compare": compare,
        "n_genes": len(matrix),
    }

    if len(tested) == 0:
        logger.warning("No gene sets passed the size filter")
        empty = pd.DataFrame(columns=SUMMARY_COLUMNS + list(matrix.columns))
        stats_empty = pd.DataFrame(columns=["stat.mean"] + list(matrix.columns))
        return GageResult(empty, empty.copy(), stats_empty, same_dir, parameters)

    scored = matrix if same_dir else matrix.abs()
    t_stats = _group_t_statistics(scored, tested)
    set_sizes = pd.Series({set_id: len(members) for set_id, members in tested.items()})
    set_sizes = set_sizes.loc[t_stats.index]

    greater = _direction_table(t_stats, set_sizes, upper=True)
    if same_dir:
        less = _direction_table(t_stats, set_sizes, upper=False)
    else:
        less = greater.copy()

    stats_table = pd.concat(
        [t_stats.mean(axis=1).rename("stat.mean"), t_stats], axis=1
    ).loc[greater.index]

    n_up = int((greater["q.val"] < 0.1).sum())
    n_down = int((less["q.val"] < 0.1).sum()) if same_dir else 0
    logger.info(f"GAGE: {n_up} greater and {n_down} less gene sets with q.val < 0.1")

    return GageResult(greater, less, stats_table, same_dir, parameters)


def significant_sets(
    gage_result: GageResult, cutoff: float = 0.1, qpval: str = "q.val"
) -> GageResult:
    """
    Keep gene sets passing the cutoff in each direction

    Two-directional results (same_dir=False) have no separate 'less' list.
    """
    if qpval not in ("q.val", "p.val"):
        raise ValueError("qpval must be 'q.val' or 'p.val'")

    greater = gage_result.greater[gage_result.greater[qpval] < cutoff]
    if gage_result.same_dir:
        less = gage_result.less[gage_result.less[qpval] < cutoff]
    else:
        less = gage_result.less.iloc[0:0]

    keep = greater.index.union(less.index)
    stats_table = gage_result.stats.loc[gage_result.stats.index.isin(keep)]

    logger.info(
        f"{len(greater)} greater and {len(less)} less gene sets pass {qpval} < {cutoff}"
    )
    params = dict(gage_result.parameters, cutoff=cutoff, qpval=qpval)
    return GageResult(greater, less, stats_table, gage_result.same_dir, params)


def essential_genes(
    gage_result: GageResult,
    expression: Union[pd.Series, pd.DataFrame],
    gene_sets: Union[GeneSetCollection, Dict[str, Iterable[str]]],
    set_name: str,
    direction: str = "greater",
) -> pd.DataFrame:
    """
    Member genes driving a gene set's signal

    Genes are kept when their mean log ratio lies beyond the mean of all genes
    in the test direction, and ranked by that contribution.

    Args:
        gage_result: Result from run_gage on the same input
        expression: Fold-change Series or comparison matrix used for run_gage
        gene_sets: Gene sets used for run_gage
        set_name: Gene set id
        direction: 'greater' or 'less'

    Returns:
        DataFrame indexed by gene id with per-comparison values and 'mean'
    """
    collection = as_gene_set_collection(gene_sets)
    if set_name not in collection:
        raise KeyError(f"Unknown gene set: {set_name}")
    if direction not in ("greater", "less"):
        raise ValueError("direction must be 'greater' or 'less'")

    matrix = prepare_comparison(expression)

    scored = matrix if gage_result.same_dir else matrix.abs()
    members = [g for g in collection.get(set_name) if g in scored.index]
    values = scored.loc[members].copy()
    values["mean"] = values.mean(axis=1)

    overall = scored.mean(axis=1).mean()
    if direction == "greater" or not gage_result.same_dir:
        essential = values[values["mean"] > overall].sort_values("mean", ascending=False)
    else:
        essential = values[values["mean"] < overall].sort_values("mean", ascending=True)

    logger.info(f"{len(essential)}/{len(members)} essential genes in {set_name}")
    return essential
