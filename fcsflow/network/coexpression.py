"""
Weighted gene co-expression network analysis

Soft-threshold selection, adjacency and topological overlap, module
detection on the TOM dissimilarity tree, module eigengenes and
module-trait correlations, following the WGCNA definitions.
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from scipy import stats
from scipy.cluster.hierarchy import dendrogram, fcluster, linkage
from scipy.spatial.distance import squareform
from sklearn.decomposition import PCA

from ..exceptions import DataValidationError
from ..utils import get_logger

logger = get_logger(__name__)

NETWORK_TYPES = ("unsigned", "signed", "signed hybrid")

MODULE_COLORS = [
    "turquoise", "blue", "brown", "yellow", "green", "red", "black", "pink",
    "magenta", "purple", "greenyellow", "tan", "salmon", "cyan",
    "midnightblue", "lightcyan", "grey60", "lightgreen", "lightyellow",
    "royalblue",
]
UNASSIGNED = "grey"


def module_color(label: int) -> str:
    """Colour for a 1-based module number ordered by module size"""
    if label < 1:
        return UNASSIGNED
    if label <= len(MODULE_COLORS):
        return MODULE_COLORS[label - 1]
    return f"module{label}"


def scale_free_fit(connectivity: np.ndarray, n_breaks: int = 10) -> Dict[str, float]:
    """
    Scale-free topology fit of a connectivity distribution

    Connectivities are binned into n_breaks equal-width bins and
    log10(p(k)) is regressed on log10(mean k) of each bin.

    Returns:
        Dict with 'r_squared' and 'slope'
    """
    k = np.asarray(connectivity, dtype=float)
    edges = np.linspace(k.min(), k.max(), n_breaks + 1)
    bins = np.clip(np.digitize(k, edges[1:-1]), 0, n_breaks - 1)

    midpoints = (edges[:-1] + edges[1:]) / 2
    dk = np.array([k[bins == b].mean() if np.any(bins == b) else midpoints[b]
                   for b in range(n_breaks)])
    p_dk = np.bincount(bins, minlength=n_breaks) / len(k)

    valid = dk > 0
    x = np.log10(dk[valid])
    y = np.log10(p_dk[valid] + 1e-9)
    if len(x) < 3 or np.ptp(x) == 0:
        return {"r_squared": np.nan, "slope": np.nan}

    fit = stats.linregress(x, y)
    return {"r_squared": float(fit.rvalue ** 2), "slope": float(fit.slope)}


class CoexpressionNetwork:
    """
    Co-expression network over a samples x genes expression matrix

    Parameters:
    -----------
    expression : pd.DataFrame
        Normalised expression, samples in rows and genes in columns
        (set genes_in_rows=True for a genes x samples table)
    network_type : str
        'unsigned', 'signed' or 'signed hybrid'
    """

    def __init__(
        self,
        expression: pd.DataFrame,
        network_type: str = "unsigned",
        genes_in_rows: bool = False,
    ):
        if network_type not in NETWORK_TYPES:
            raise ValueError(f"network_type must be one of {NETWORK_TYPES}")

        data = expression.T if genes_in_rows else expression
        data = data.apply(pd.to_numeric, errors="coerce")

        keep = data.notna().all(axis=0) & (data.std(axis=0) > 0)
        n_dropped = int((~keep).sum())
        if n_dropped:
            logger.warning(f"Removed {n_dropped} genes with missing values or zero variance")
        data = data.loc[:, keep]

        if data.shape[0] < 3:
            raise DataValidationError("At least 3 samples are required for co-expression")
        if data.shape[1] < 2:
            raise DataValidationError("At least 2 variable genes are required for co-expression")

        self.expression = data
        self.network_type = network_type
        self.power: Optional[int] = None
        self.soft_threshold_table: Optional[pd.DataFrame] = None
        self.modules: Optional[pd.Series] = None
        self.linkage_matrix: Optional[np.ndarray] = None
        self._adjacency: Optional[np.ndarray] = None
        self._tom: Optional[np.ndarray] = None

        logger.info(
            f"Co-expression network: {data.shape[0]} samples x {data.shape[1]} genes "
            f"({network_type})"
        )

    @property
    def genes(self) -> List[str]:
        return [str(g) for g in self.expression.columns]

    def correlation(self) -> np.ndarray:
        return np.corrcoef(self.expression.to_numpy(dtype=float), rowvar=False)

    def _adjacency_from_correlation(self, cor: np.ndarray, power: float) -> np.ndarray:
        if self.network_type == "unsigned":
            adj = np.abs(cor) ** power
        elif self.network_type == "signed":
            adj = ((1 + cor) / 2) ** power
        else:
            adj = np.where(cor > 0, cor, 0.0) ** power
        np.fill_diagonal(adj, 1.0)
        return adj

    def pick_soft_threshold(
        self,
        powers: Optional[List[int]] = None,
        r2_cutoff: float = 0.85,
        n_breaks: int = 10,
    ) -> Tuple[Optional[int], pd.DataFrame]:
        """
        Scale-free topology fit for each candidate power

        Returns:
            (lowest power whose signed fit exceeds r2_cutoff or None, fit table
            with Power, SFT.R.sq, slope, signed.R.sq, mean.k., median.k., max.k.)
        """
        powers = powers or list(range(1, 11)) + list(range(12, 21, 2))
        cor = self.correlation()

        rows = []
        for power in powers:
            adj = self._adjacency_from_correlation(cor, power)
            k = adj.sum(axis=0) - 1
            fit = scale_free_fit(k, n_breaks)
            rows.append(
                {
                    "Power": power,
                    "SFT.R.sq": fit["r_squared"],
                    "slope": fit["slope"],
                    "signed.R.sq": -np.sign(fit["slope"]) * fit["r_squared"],
                    "mean.k.": float(k.mean()),
                    "median.k.": float(np.median(k)),
                    "max.k.": float(k.max()),
                }
            )
        table = pd.DataFrame(rows)

        passing = table[table["signed.R.sq"] > r2_cutoff]
        estimate = int(passing["Power"].iloc[0]) if len(passing) else None
        if estimate is None:
            logger.warning(f"No power reached a scale-free fit of {r2_cutoff}")
        else:
            logger.info(f"Soft-threshold power estimate: {estimate}")

        self.soft_threshold_table = table
        return estimate, table

    def adjacency(self, power: Optional[int] = None) -> pd.DataFrame:
        """Soft-thresholded adjacency matrix"""
        if power is None:
            power = self.power or 6
        self.power = power
        self._adjacency = self._adjacency_from_correlation(self.correlation(), power)
        self._tom = None
        return pd.DataFrame(self._adjacency, index=self.genes, columns=self.genes)

    def tom(self) -> pd.DataFrame:
        """
        Topological overlap matrix

        TOM_ij = (sum_u a_iu a_uj + a_ij) / (min(k_i, k_j) + 1 - a_ij)
        """
        if self._adjacency is None:
            self.adjacency()

        adj = self._adjacency.copy()
        np.fill_diagonal(adj, 0.0)
        k = adj.sum(axis=0)
        shared = adj @ adj

        tom = (shared + adj) / (np.minimum.outer(k, k) + 1 - adj)
        np.fill_diagonal(tom, 1.0)
        self._tom = tom
        return pd.DataFrame(tom, index=self.genes, columns=self.genes)

    def detect_modules(
        self,
        min_module_size: int = 30,
        cut_height: Optional[float] = None,
    ) -> pd.Series:
        """
        Average-linkage clustering of 1 - TOM cut at a fixed height

        Clusters smaller than min_module_size are left unassigned ('grey');
        the rest are coloured by decreasing size.

        Args:
            min_module_size: Minimum genes per module
            cut_height: Dendrogram cut height (midpoint of the merge heights if None)

        Returns:
            Series gene -> module colour
        """
        if self._tom is None:
            self.tom()

        dissimilarity = 1 - self._tom
        np.fill_diagonal(dissimilarity, 0.0)
        self.linkage_matrix = linkage(
            squareform(dissimilarity, checks=False), method="average"
        )

        heights = self.linkage_matrix[:, 2]
        if cut_height is None:
            cut_height = float((heights.min() + heights.max()) / 2)

        clusters = fcluster(self.linkage_matrix, t=cut_height, criterion="distance")
        sizes = pd.Series(clusters).value_counts()
        kept = [c for c in sizes.index if sizes[c] >= min_module_size]
        numbering = {cluster: i + 1 for i, cluster in enumerate(kept)}

        colors = [module_color(numbering.get(c, 0)) for c in clusters]
        self.modules = pd.Series(colors, index=self.genes, name="module")

        n_grey = int((self.modules == UNASSIGNED).sum())
        logger.info(
            f"Detected {len(kept)} modules at cut height {cut_height:.3f} "
            f"({n_grey} genes unassigned)"
        )
        return self.modules

    def module_eigengenes(self, include_grey: bool = False) -> pd.DataFrame:
        """
        First principal component of each module's scaled expression

        Signs are aligned with the module's average scaled expression.

        Returns:
            DataFrame samples x 'ME<colour>'
        """
        if self.modules is None:
            raise RuntimeError("detect_modules must be run before module_eigengenes")

        scaled = (self.expression - self.expression.mean()) / self.expression.std()
        eigengenes = {}
        for color in sorted(self.modules.unique()):
            if color == UNASSIGNED and not include_grey:
                continue
            members = self.modules.index[self.modules == color]
            values = scaled.loc[:, members].to_numpy()

            component = PCA(n_components=1).fit_transform(values)[:, 0]
            average = values.mean(axis=1)
            if np.corrcoef(component, average)[0, 1] < 0:
                component = -component
            eigengenes[f"ME{color}"] = component / np.std(component, ddof=1)

        return pd.DataFrame(eigengenes, index=self.expression.index)

    def module_membership(self) -> pd.DataFrame:
        """Correlation of every gene with every module eigengene (kME)"""
        eigengenes = self.module_eigengenes()
        membership = {
            f"k{name}": self.expression.corrwith(eigengenes[name])
            for name in eigengenes.columns
        }
        table = pd.DataFrame(membership)
        table.insert(0, "module", self.modules)
        return table

    def module_trait_correlation(
        self, traits: pd.DataFrame
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Pearson correlation of module eigengenes with sample traits

        Args:
            traits: Numeric traits, samples in rows

        Returns:
            (correlations, p-values) with modules in rows and traits in columns
        """
        eigengenes = self.module_eigengenes()
        shared = eigengenes.index.intersection(traits.index)
        if len(shared) < 3:
            raise DataValidationError(
                "Traits and expression share fewer than 3 samples"
            )

        traits = traits.loc[shared].apply(pd.to_numeric, errors="coerce")
        eigengenes = eigengenes.loc[shared]

        cor = pd.DataFrame(index=eigengenes.columns, columns=traits.columns, dtype=float)
        pvalues = cor.copy()
        for module in eigengenes.columns:
            for trait in traits.columns:
                mask = traits[trait].notna()
                if mask.sum() < 3:
                    continue
                r, p = stats.pearsonr(eigengenes.loc[mask, module], traits.loc[mask, trait])
                cor.loc[module, trait] = r
                pvalues.loc[module, trait] = p

        return cor, pvalues

    def plot_soft_threshold(self, output_file: Union[str, Path]) -> Path:
        """Scale-free fit and mean connectivity against power"""
        if self.soft_threshold_table is None:
            self.pick_soft_threshold()
        table = self.soft_threshold_table

        plt.style.use("seaborn-v0_8-whitegrid")
        fig, (ax1, ax2) = plt.subplots(1, 2, figsize=(12, 5))

        ax1.plot(table["Power"], table["signed.R.sq"], "o-", color="steelblue")
        for _, row in table.iterrows():
            ax1.annotate(str(row["Power"]), (row["Power"], row["signed.R.sq"]),
                         textcoords="offset points", xytext=(0, 6), ha="center", fontsize=8)
        ax1.axhline(0.85, color="red", linestyle="--", linewidth=1)
        ax1.set_xlabel("Soft threshold (power)")
        ax1.set_ylabel("Scale free topology fit, signed R²")
        ax1.set_title("Scale independence", fontweight="bold")

        ax2.plot(table["Power"], table["mean.k."], "o-", color="darkorange")
        ax2.set_xlabel("Soft threshold (power)")
        ax2.set_ylabel("Mean connectivity")
        ax2.set_title("Mean connectivity", fontweight="bold")

        plt.tight_layout()
        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        plt.savefig(output_file, dpi=300, bbox_inches="tight")
        plt.close()
        return output_file

    def plot_dendrogram(self, output_file: Union[str, Path]) -> Path:
        """Gene dendrogram with the module colour bar underneath"""
        if self.linkage_matrix is None:
            raise RuntimeError("detect_modules must be run before plot_dendrogram")

        fig, (ax_tree, ax_colors) = plt.subplots(
            2, 1, figsize=(12, 6), gridspec_kw={"height_ratios": [5, 1]}, sharex=False
        )
        tree = dendrogram(
            self.linkage_matrix, ax=ax_tree, no_labels=True,
            color_threshold=0, above_threshold_color="black",
        )
        ax_tree.set_ylabel("1 - TOM")
        ax_tree.set_title("Gene dendrogram and module colours", fontweight="bold")

        ordered = [self.modules.iloc[i] for i in tree["leaves"]]
        colors = [c if not c.startswith("module") else "lightgray" for c in ordered]
        ax_colors.bar(range(len(colors)), 1, width=1.0, color=colors)
        ax_colors.set_xlim(-0.5, len(colors) - 0.5)
        ax_colors.set_axis_off()

        plt.tight_layout()
        output_file = Path(output_file)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        plt.savefig(output_file, dpi=300, bbox_inches="tight")
        plt.close(fig)
        return output_file

    def save_results(self, output_dir: Union[str, Path]) -> Dict[str, Path]:
        """Write module assignments, eigengenes and the soft-threshold table"""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        files = {}

        if self.soft_threshold_table is not None:
            files["soft_threshold"] = output_dir / "soft_threshold.csv"
            self.soft_threshold_table.to_csv(files["soft_threshold"], index=False)

        if self.modules is not None:
            files["modules"] = output_dir / "module_assignments.csv"
            self.module_membership().to_csv(files["modules"], index_label="gene")

            files["eigengenes"] = output_dir / "module_eigengenes.csv"
            self.module_eigengenes().to_csv(files["eigengenes"], index_label="sample")

        logger.info(f"Co-expression results saved to {output_dir}")
        return files
