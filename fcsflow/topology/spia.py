"""
Signaling Pathway Impact Analysis (SPIA)

Combines the over-representation evidence (pNDE) with the perturbation
evidence (pPERT) obtained by propagating fold changes through the pathway
topology.
"""

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy import stats
from tqdm import tqdm

from ..config.config import SPIA_COMBINE_METHODS
from ..enrichment.results import PathwayEnrichmentResult
from ..enrichment.statistics import adjust_pvalues
from ..exceptions import DataValidationError
from ..utils import get_logger, log_execution_time
from .kgml import PathwayGraph

logger = get_logger(__name__)

SPIA_COLUMNS = [
    "Name",
    "ID",
    "pSize",
    "NDE",
    "pNDE",
    "tA",
    "pPERT",
    "pG",
    "pGFdr",
    "pGFWER",
    "Status",
    "KEGGLINK",
]

# Relation weights (1 activating, -1 inhibiting, 0 neutral)
DEFAULT_BETA = {
    "activation": 1,
    "compound": 0,
    "binding/association": 0,
    "expression": 1,
    "inhibition": -1,
    "activation_phosphorylation": 1,
    "phosphorylation": 0,
    "inhibition_phosphorylation": -1,
    "dephosphorylation_inhibition": -1,
    "dissociation": 0,
    "dephosphorylation": 0,
    "activation_dephosphorylation": 1,
    "state change": 0,
    "activation_indirect effect": 1,
    "inhibition_ubiquitination": -1,
    "ubiquitination": 0,
    "expression_indirect effect": 1,
    "indirect effect_inhibition": -1,
    "repression": -1,
    "dissociation_phosphorylation": 0,
    "indirect effect_phosphorylation": 0,
    "activation_binding/association": 1,
    "indirect effect": 0,
    "activation_compound": 1,
    "activation_ubiquitination": 1,
}

KEGG_LINK = "http://www.genome.jp/dbget-bin/show_pathway?{pathway}+{genes}"


def _validate_inputs(de: pd.Series, all_genes: Iterable[str]) -> List[str]:
    if not isinstance(de, pd.Series):
        raise DataValidationError(
            "de must be a pandas Series of fold changes named by gene id"
        )
    if de.empty:
        raise DataValidationError("de is empty")
    if de.index.hasnans or de.isna().any():
        raise DataValidationError("de contains NA ids or values")
    if not de.index.astype(str).is_unique:
        raise DataValidationError("de contains duplicated gene ids")

    reference = list(dict.fromkeys(str(g) for g in all_genes))
    missing = set(de.index.astype(str)) - set(reference)
    if missing:
        raise DataValidationError(
            f"{len(missing)} DE genes are not in the reference gene list "
            f"(e.g. {sorted(missing)[:5]})"
        )
    return reference


def perturbation_matrix(
    pathway: PathwayGraph, beta: Dict[str, float]
) -> Tuple[List[str], np.ndarray]:
    """
    Weighted, normalised interaction matrix B of a pathway

    B[i, j] = sum_r beta_r * M_r[i, j] / N_ds(j), where N_ds(j) counts the
    downstream genes of gene j.

    Returns:
        (genes, B)
    """
    genes, matrices = pathway.relation_matrices()
    n = len(genes)
    weighted = np.zeros((n, n))
    for name, matrix in matrices.items():
        weight = beta.get(name, 0)
        if weight:
            weighted += weight * matrix
    np.fill_diagonal(weighted, 0.0)

    n_downstream = np.abs(weighted).sum(axis=0)
    n_downstream[n_downstream == 0] = 1.0
    return genes, weighted / n_downstream[None, :]


def _accumulation(system: np.ndarray, delta: np.ndarray) -> float:
    """Total net accumulated perturbation: sum(PF - dE) with (I - B) PF = dE"""
    try:
        pf = np.linalg.solve(system, delta)
    except np.linalg.LinAlgError:
        pf = np.linalg.lstsq(system, delta, rcond=None)[0]
    return float(np.sum(pf - delta))


def _bootstrap_accumulation(
    system: np.ndarray,
    measured: np.ndarray,
    de_values: np.ndarray,
    n_de: int,
    n_boot: int,
    seed: int,
) -> np.ndarray:
    rng = np.random.default_rng(seed)
    null = np.empty(n_boot)
    candidates = np.flatnonzero(measured)
    for k in range(n_boot):
        delta = np.zeros(system.shape[0])
        positions = rng.choice(candidates, size=n_de, replace=False)
        delta[positions] = rng.choice(de_values, size=n_de, replace=False)
        null[k] = _accumulation(system, delta)
    return null


def combine_evidence(
    p_nde: np.ndarray, p_pert: np.ndarray, method: str = "fisher"
) -> np.ndarray:
    """
    Combine the two independent p-values into pG

    'fisher' uses c - c * ln(c) with c = pNDE * pPERT; 'norminv' uses
    Stouffer's normal inversion.
    """
    if method not in SPIA_COMBINE_METHODS:
        raise ValueError(f"combine must be one of {', '.join(SPIA_COMBINE_METHODS)}")
    p_nde = np.asarray(p_nde, dtype=float)
    p_pert = np.asarray(p_pert, dtype=float)

    if method == "fisher":
        c = p_nde * p_pert
        with np.errstate(divide="ignore", invalid="ignore"):
            combined = np.where(c > 0, c - c * np.log(c), 0.0)
    else:
        combined = stats.norm.cdf(
            (stats.norm.ppf(p_nde) + stats.norm.ppf(p_pert)) / np.sqrt(2)
        )
    return np.clip(combined, 0.0, 1.0)


def _score_pathway(
    pathway: PathwayGraph,
    de: pd.Series,
    reference: set,
    n_reference: int,
    n_boot: int,
    beta: Dict[str, float],
    seed: int,
) -> Optional[Dict]:
    genes, b_matrix = perturbation_matrix(pathway, beta)
    if not np.any(b_matrix):
        return None

    measured = np.array([g in reference for g in genes])
    p_size = int(measured.sum())
    de_in_pathway = [g for g in genes if g in de.index]
    n_de = len(de_in_pathway)
    if n_de == 0 or p_size == 0:
        return None

    system = np.eye(len(genes)) - b_matrix
    delta = np.array([de.get(g, 0.0) for g in genes], dtype=float)
    observed = _accumulation(system, delta)

    p_nde = float(stats.hypergeom.sf(n_de - 1, n_reference, p_size, len(de)))

    null = _bootstrap_accumulation(
        system, measured, de.to_numpy(dtype=float), n_de, n_boot, seed
    )
    median = np.median(null)
    centred = null - median
    t_a = observed - median

    if t_a > 0:
        p_pert = np.sum(centred >= t_a) / n_boot * 2
    else:
        p_pert = np.sum(centred <= t_a) / n_boot * 2
    p_pert = min(max(p_pert, 1.0 / n_boot / 100), 1.0)

    return {
        "Name": pathway.title,
        "ID": pathway.pathway_id,
        "pSize": p_size,
        "NDE": n_de,
        "pNDE": p_nde,
        "tA": t_a,
        "pPERT": p_pert,
        "Status": "Activated" if t_a > 0 else "Inhibited",
        "KEGGLINK": KEGG_LINK.format(
            pathway=pathway.pathway_id, genes="+".join(de_in_pathway)
        ),
    }


@log_execution_time
def run_spia(
    de: pd.Series,
    all_genes: Iterable[str],
    pathways: Union[Dict[str, PathwayGraph], Iterable[PathwayGraph]],
    n_boot: int = 2000,
    beta: Optional[Dict[str, float]] = None,
    combine: str = "fisher",
    seed: int = 42,
    n_jobs: int = 1,
    verbose: bool = False,
    fdr_cutoff: float = 0.05,
) -> PathwayEnrichmentResult:
    """
    Run SPIA over a set of KGML pathway graphs

    Args:
        de: Fold changes of differentially expressed genes, named by Entrez id
        all_genes: Reference list of every measured gene
        pathways: Parsed pathway graphs
        n_boot: Bootstrap iterations for pPERT
        beta: Relation weights (DEFAULT_BETA if None)
        combine: 'fisher' or 'norminv'
        seed: Random seed for the bootstrap
        n_jobs: joblib workers across pathways
        verbose: Show a progress bar
        fdr_cutoff: pGFdr cutoff for results_df

    Returns:
        PathwayEnrichmentResult with method 'spia'
    """
    reference_list = _validate_inputs(de, all_genes)
    if combine not in SPIA_COMBINE_METHODS:
        raise ValueError(f"combine must be one of {', '.join(SPIA_COMBINE_METHODS)}")

    de = de.astype(float).copy()
    de.index = de.index.astype(str)
    reference = set(reference_list)
    beta = dict(DEFAULT_BETA, **(beta or {}))

    graphs = list(pathways.values()) if isinstance(pathways, dict) else list(pathways)
    logger.info(
        f"SPIA: {len(de)} DE genes, {len(reference)} reference genes, "
        f"{len(graphs)} pathways, {n_boot} bootstrap iterations"
    )

    seeds = [seed + i for i in range(len(graphs))]
    if n_jobs == 1:
        rows = [
            _score_pathway(g, de, reference, len(reference), n_boot, beta, s)
            for g, s in tqdm(list(zip(graphs, seeds)), desc="SPIA", disable=not verbose)
        ]
    else:
        rows = Parallel(n_jobs=n_jobs)(
            delayed(_score_pathway)(g, de, reference, len(reference), n_boot, beta, s)
            for g, s in zip(graphs, seeds)
        )
    rows = [r for r in rows if r is not None]

    parameters = {
        "n_boot": n_boot,
        "combine": combine,
        "seed": seed,
        "pvalue_cutoff": fdr_cutoff,
    }
    if not rows:
        logger.warning("No pathway had both interactions and DE genes")
        empty = pd.DataFrame(columns=SPIA_COLUMNS)
        return PathwayEnrichmentResult(
            method="spia",
            database="KEGG",
            gene_count=len(de),
            significant_pathways=0,
            results_df=empty,
            parameters=parameters,
            all_results_df=empty.copy(),
        )

    table = pd.DataFrame(rows)
    table["pG"] = combine_evidence(table["pNDE"], table["pPERT"], combine)
    table["pGFdr"] = adjust_pvalues(table["pG"], "fdr_bh")
    table["pGFWER"] = adjust_pvalues(table["pG"], "bonferroni")
    table = (
        table[SPIA_COLUMNS]
        .sort_values("pG", kind="mergesort")
        .reset_index(drop=True)
    )

    significant = table[table["pGFdr"] <= fdr_cutoff].reset_index(drop=True)
    logger.info(
        f"SPIA: {len(table)} pathways analysed, {len(significant)} with pGFdr <= {fdr_cutoff}"
    )

    return PathwayEnrichmentResult(
        method="spia",
        database="KEGG",
        gene_count=len(de),
        significant_pathways=len(significant),
        results_df=significant,
        parameters=parameters,
        all_results_df=table,
    )


def plot_two_way_evidence(
    spia_table: pd.DataFrame,
    output_path: Union[str, Path],
    threshold: float = 0.05,
) -> Path:
    """
    Two-way evidence plot: -log(pNDE) against -log(pPERT)

    Lines mark where the combined p-value reaches the threshold after FDR
    (red) and Bonferroni (blue) correction.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    p_nde = spia_table["pNDE"].astype(float).clip(lower=1e-300)
    p_pert = spia_table["pPERT"].astype(float).clip(lower=1e-300)
    x, y = -np.log(p_nde), -np.log(p_pert)

    fig, ax = plt.subplots(figsize=(7, 7))
    ax.scatter(x, y, c="black", s=15)
    for label, px, py in zip(spia_table["ID"], x, y):
        ax.annotate(str(label), (px, py), fontsize=6, alpha=0.7)

    limit = max([1.0] + [float(v) for v in np.concatenate([x, y])])
    grid = np.linspace(1e-6, 1.0, 2000)

    passing = spia_table.loc[spia_table["pGFdr"] <= threshold, "pG"]
    fdr_cut = float(passing.max()) if len(passing) else threshold / max(len(spia_table), 1)
    bonferroni_cut = threshold / max(len(spia_table), 1)

    for cut, color in ((fdr_cut, "red"), (bonferroni_cut, "blue")):
        # Curve where c - c*ln(c) == cut, with c = pNDE * pPERT
        c_values = grid[grid - grid * np.log(grid) <= cut]
        if len(c_values) == 0:
            continue
        c = c_values.max()
        xs = np.linspace(0, -np.log(c), 200)
        ax.plot(xs, -np.log(c) - xs, color=color, linewidth=1)

    ax.set_xlim(0, limit * 1.05)
    ax.set_ylim(0, limit * 1.05)
    ax.set_xlabel("-log(P NDE)")
    ax.set_ylabel("-log(P PERT)")
    ax.set_title("SPIA two-way evidence plot", fontweight="bold")

    plt.tight_layout()
    plt.savefig(output_path, dpi=300, bbox_inches="tight")
    plt.close(fig)

    logger.info(f"Two-way evidence plot saved to {output_path}")
    return output_path
