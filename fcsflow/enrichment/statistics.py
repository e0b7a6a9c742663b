"""
Multiple testing helpers shared by GSEA, GAGE and SPIA
"""

import numpy as np
from statsmodels.stats.multitest import multipletests

from ..config.config import P_ADJUST_METHODS
from ..utils import get_logger

logger = get_logger(__name__)


def adjust_pvalues(pvalues, method: str = "fdr_bh") -> np.ndarray:
    """
    Adjust p-values with statsmodels, keeping NaN entries in place

    Args:
        pvalues: Array-like of raw p-values
        method: statsmodels method name or 'none'

    Returns:
        Adjusted p-values as a float array
    """
    if method not in P_ADJUST_METHODS:
        raise ValueError(f"Unknown p-value adjustment method: {method}")

    pvalues = np.asarray(pvalues, dtype=float)
    adjusted = np.full_like(pvalues, np.nan)
    finite = ~np.isnan(pvalues)

    if not finite.any():
        return adjusted
    if method == "none":
        adjusted[finite] = pvalues[finite]
        return adjusted

    adjusted[finite] = multipletests(pvalues[finite], method=method)[1]
    return adjusted


def estimate_pi0(pvalues, lambda_: float = 0.5) -> float:
    """Storey's estimate of the proportion of true null hypotheses"""
    pvalues = np.asarray(pvalues, dtype=float)
    pvalues = pvalues[~np.isnan(pvalues)]
    if len(pvalues) == 0:
        return 1.0

    pi0 = np.mean(pvalues > lambda_) / (1.0 - lambda_)
    if pi0 <= 0:
        logger.debug("pi0 estimate is zero; using pi0 = 1 (Benjamini-Hochberg)")
        return 1.0
    return float(min(pi0, 1.0))


def storey_qvalues(pvalues, lambda_: float = 0.5) -> np.ndarray:
    """q-values: pi0-scaled Benjamini-Hochberg, capped at 1"""
    pi0 = estimate_pi0(pvalues, lambda_)
    bh = adjust_pvalues(pvalues, "fdr_bh")
    return np.minimum(bh * pi0, 1.0)
