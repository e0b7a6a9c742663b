"""
Gene Set Enrichment Analysis on a pre-ranked fold-change vector

Weighted Kolmogorov-Smirnov running sum with a gene-label permutation null,
reporting the same table as clusterProfiler's GSEA/gseKEGG.
"""

from typing import Dict, Iterable, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from ..exceptions import DataValidationError
from ..genesets.collection import GeneSetCollection, as_gene_set_collection
from ..utils import get_logger, log_execution_time
from .results import PathwayEnrichmentResult
from .statistics import adjust_pvalues, storey_qvalues

logger = get_logger(__name__)

GSEA_COLUMNS = [
    "ID",
    "Description",
    "setSize",
    "enrichmentScore",
    "NES",
    "pvalue",
    "p.adjust",
    "qvalue",
    "rank",
    "leading_edge",
    "core_enrichment",
]


def _validate_ranking(fold_changes: pd.Series) -> pd.Series:
    if not isinstance(fold_changes, pd.Series):
        raise DataValidationError("fold_changes must be a pandas Series indexed by gene id")
    if fold_changes.empty:
        raise DataValidationError("fold_changes is empty")
    if fold_changes.index.hasnans:
        raise DataValidationError("fold_changes contains NA gene ids")
    if fold_changes.isna().any():
        raise DataValidationError("fold_changes contains NA values")
    if not fold_changes.index.is_unique:
        raise DataValidationError("fold_changes contains duplicated gene ids")

    ranking = fold_changes.astype(float).copy()
    ranking.index = ranking.index.astype(str)
    ranking = ranking.sort_values(ascending=False, kind="mergesort")

    tie_fraction = ranking.duplicated().mean()
    if tie_fraction > 0.05:
        logger.warning(
            f"{tie_fraction:.1%} of the ranked list are ties; results may depend on gene order"
        )
    return ranking


def running_enrichment_score(
    fold_changes: pd.Series, gene_set: Iterable[str], exponent: float = 1.0
) -> np.ndarray:
    """
    Running enrichment score along the ranked list

    Args:
        fold_changes: Ranked statistic indexed by gene id (sorted decreasing)
        gene_set: Member gene ids
        exponent: Weight exponent p on |statistic|

    Returns:
        Array with the running sum at every position of the list
    """
    members = {str(g) for g in gene_set}
    hits = np.asarray(fold_changes.index.astype(str).isin(members))
    n_genes, n_hits = len(hits), int(hits.sum())
    if n_hits == 0 or n_hits == n_genes:
        return np.zeros(n_genes)

    weights = np.abs(fold_changes.to_numpy(dtype=float)) ** exponent
    hit_weights = np.where(hits, weights, 0.0)
    total = hit_weights.sum()
    if total == 0:
        hit_weights = hits.astype(float)
        total = float(n_hits)

    step = np.where(hits, hit_weights / total, -1.0 / (n_genes - n_hits))
    return np.cumsum(step)


def _enrichment_scores(
    positions: np.ndarray, abs_weights: np.ndarray, n_genes: int
) -> np.ndarray:
    """
    ES for one or many hit-position vectors

    positions is (n_sets, k) of sorted 0-based list positions; the running sum
    only changes direction at hits, so its extremes sit just after a hit
    (maximum) or just before one (minimum).
    """
    positions = np.atleast_2d(positions)
    k = positions.shape[1]
    w = abs_weights[positions]
    total = w.sum(axis=1, keepdims=True)
    zero = total[:, 0] == 0
    if zero.any():
        w[zero] = 1.0
        total[zero] = k

    cum = np.cumsum(w, axis=1) / total
    miss_norm = 1.0 / (n_genes - k)
    hit_index = np.arange(1, k + 1)

    misses_through = (positions + 1 - hit_index) * miss_norm
    after_hit = cum - misses_through
    before_hit = (cum - w / total) - misses_through

    es_max = after_hit.max(axis=1)
    es_min = np.minimum(before_hit.min(axis=1), 0.0)
    return np.where(np.abs(es_max) >= np.abs(es_min), es_max, es_min)


def _null_distribution(
    size: int, n_genes: int, abs_weights: np.ndarray, n_perm: int, seed: int
) -> Tuple[int, np.ndarray]:
    rng = np.random.default_rng([seed, size])
    positions = np.empty((n_perm, size), dtype=np.int64)
    for i in range(n_perm):
        positions[i] = np.sort(rng.choice(n_genes, size=size, replace=False))
    return size, _enrichment_scores(positions, abs_weights, n_genes)


def _normalize(es: float, null: np.ndarray) -> Tuple[float, float]:
    """NES and nominal p-value from the same-sign part of the null"""
    if es >= 0:
        tail = null[null >= 0]
        if len(tail) == 0 or tail.mean() == 0:
            return np.nan, np.nan
        nes = es / tail.mean()
        pvalue = (np.sum(tail >= es) + 1) / (len(tail) + 1)
    else:
        tail = null[null < 0]
        if len(tail) == 0:
            return np.nan, np.nan
        nes = es / abs(tail.mean())
        pvalue = (np.sum(tail <= es) + 1) / (len(tail) + 1)
    return float(nes), float(pvalue)


def _leading_edge(
    ranking: pd.Series, positions: np.ndarray, es: float, running: np.ndarray
) -> Tuple[int, List[str], str]:
    n_genes = len(ranking)
    set_size = len(positions)
    peak = int(np.argmax(np.abs(running)))

    # rank counts from the top for positive ES, from the bottom for negative
    if es >= 0:
        rank = peak + 1
        core_pos = positions[positions <= peak]
    else:
        rank = n_genes - peak - 1
        core_pos = positions[positions > peak]
    list_fraction = rank / n_genes

    tags = len(core_pos) / set_size
    signal = tags * (1 - list_fraction) * n_genes / (n_genes - set_size)
    leading_edge = (
        f"tags={round(tags * 100)}%, list={round(list_fraction * 100)}%, "
        f"signal={round(signal * 100)}%"
    )
    core = ranking.index[np.sort(core_pos)].tolist()
    return rank, core, leading_edge


@log_execution_time
def run_gsea(
    fold_changes: pd.Series,
    gene_sets: Union[GeneSetCollection, Dict[str, Iterable[str]]],
    n_perm: int = 1000,
    min_size: int = 10,
    max_size: int = 500,
    exponent: float = 1.0,
    pvalue_cutoff: float = 0.05,
    p_adjust_method: str = "fdr_bh",
    seed: int = 42,
    n_jobs: int = 1,
    verbose: bool = False,
) -> PathwayEnrichmentResult:
    """
    Run pre-ranked GSEA

    Args:
        fold_changes: Named statistic vector (gene id -> log2 fold change)
        gene_sets: Gene set collection or dict of sets
        n_perm: Number of gene-label permutations per set size
        min_size: Minimum set size after restriction to the ranked genes
        max_size: Maximum set size after restriction to the ranked genes
        exponent: Weight exponent for the running sum
        pvalue_cutoff: Adjusted p-value cutoff for results_df
        p_adjust_method: statsmodels multipletests method
        seed: Random seed for the permutation null
        n_jobs: joblib workers across set sizes
        verbose: Show a progress bar

    Returns:
        PathwayEnrichmentResult with method 'gsea'
    """
    ranking = _validate_ranking(fold_changes)
    collection = as_gene_set_collection(gene_sets)
    n_genes = len(ranking)

    tested = collection.restrict_to_universe(ranking.index).filter_by_size(
        min_size, max_size
    )
    logger.info(
        f"GSEA: {n_genes} ranked genes, {len(tested)}/{len(collection)} gene sets "
        f"within size [{min_size}, {max_size}], {n_perm} permutations"
    )

    parameters = {
        "n_perm": n_perm,
        "min_size": min_size,
        "max_size": max_size,
        "exponent": exponent,
        "pvalue_cutoff": pvalue_cutoff,
        "p_adjust_method": p_adjust_method,
        "seed": seed,
    }

    abs_weights = np.abs(ranking.to_numpy()) ** exponent
    position_of = pd.Series(np.arange(n_genes), index=ranking.index)

    set_positions = {
        set_id: np.sort(position_of[list(members)].to_numpy())
        for set_id, members in tested.items()
        if len(members) < n_genes
    }

    if not set_positions:
        logger.warning("No gene sets passed the size filter")
        empty = pd.DataFrame(columns=GSEA_COLUMNS)
        return PathwayEnrichmentResult(
            method="gsea",
            database=collection.name,
            gene_count=n_genes,
            significant_pathways=0,
            results_df=empty,
            parameters=parameters,
            all_results_df=empty.copy(),
        )

    observed = {
        set_id: float(_enrichment_scores(pos, abs_weights, n_genes)[0])
        for set_id, pos in set_positions.items()
    }

    sizes = sorted({len(pos) for pos in set_positions.values()})
    if n_jobs == 1:
        iterator = tqdm(sizes, desc="GSEA null", disable=not verbose)
        nulls = dict(
            _null_distribution(size, n_genes, abs_weights, n_perm, seed)
            for size in iterator
        )
    else:
        nulls = dict(
            Parallel(n_jobs=n_jobs)(
                delayed(_null_distribution)(size, n_genes, abs_weights, n_perm, seed)
                for size in sizes
            )
        )

    rows = []
    for set_id, positions in set_positions.items():
        es = observed[set_id]
        nes, pvalue = _normalize(es, nulls[len(positions)])
        running = running_enrichment_score(ranking, tested.get(set_id), exponent)
        rank, core, leading_edge = _leading_edge(ranking, positions, es, running)
        rows.append(
            {
                "ID": set_id,
                "Description": tested.describe(set_id),
                "setSize": len(positions),
                "enrichmentScore": es,
                "NES": nes,
                "pvalue": pvalue,
                "rank": rank,
                "leading_edge": leading_edge,
                "core_enrichment": "/".join(core),
            }
        )

    all_results = pd.DataFrame(rows)
    all_results["p.adjust"] = adjust_pvalues(all_results["pvalue"], p_adjust_method)
    all_results["qvalue"] = storey_qvalues(all_results["pvalue"])
    all_results = (
        all_results[GSEA_COLUMNS]
        .sort_values(["pvalue", "NES"], ascending=[True, False], kind="mergesort")
        .reset_index(drop=True)
    )

    significant = all_results[all_results["p.adjust"] <= pvalue_cutoff].reset_index(drop=True)
    logger.info(
        f"GSEA found {len(significant)} enriched gene sets (p.adjust <= {pvalue_cutoff})"
    )

    return PathwayEnrichmentResult(
        method="gsea",
        database=collection.name,
        gene_count=n_genes,
        significant_pathways=len(significant),
        results_df=significant,
        parameters=parameters,
        all_results_df=all_results,
    )
