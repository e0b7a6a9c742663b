"""
Visualization functions for pathway enrichment analysis

Dotplots and barplots of enrichment tables, the GSEA running score plot and
GAGE per-comparison statistic heatmaps.
"""

from pathlib import Path
from typing import Dict, Iterable, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from ..utils import get_logger
from .gage import GageResult
from .gsea import running_enrichment_score
from .results import PathwayEnrichmentResult

logger = get_logger(__name__)

# Preferred significance / score columns per engine
PVALUE_COLUMNS = ["p.adjust", "q.val", "pGFdr", "pvalue", "p.val", "pG"]
SCORE_COLUMNS = ["NES", "stat.mean", "tA", "enrichmentScore"]


def _first_column(df: pd.DataFrame, candidates) -> Optional[str]:
    for col in candidates:
        if col in df.columns:
            return col
    return None


def _label(row: pd.Series, width: int = 50) -> str:
    name = str(row.get("Description", row.get("Name", row.get("ID", "Unknown"))))
    return f"{name[:width]}..." if len(name) > width else name


class PathwayPlotter:
    """Plotting for pathway enrichment results"""

    def __init__(self, output_dir: Union[str, Path]):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        plt.style.use("seaborn-v0_8-whitegrid")
        sns.set_palette("husl")

        self.method_colors = {
            "gsea": "#1f77b4",
            "gage_greater": "#d62728",
            "gage_less": "#2ca02c",
            "spia": "#9467bd",
        }

    def plot_enrichment_dotplot(
        self,
        result: PathwayEnrichmentResult,
        top_n: int = 20,
        output_file: Optional[str] = None,
    ) -> Optional[Path]:
        """
        Dotplot of the top pathways

        Parameters:
        -----------
        result : PathwayEnrichmentResult
            GSEA, GAGE or SPIA result
        top_n : int
            Number of top pathways to show
        output_file : Optional[str]
            Output filename

        Returns:
        --------
        Path or None
            Path to saved plot, None when there is nothing to plot
        """
        df = result.results_df
        pcol = _first_column(df, PVALUE_COLUMNS)
        scol = _first_column(df, SCORE_COLUMNS)
        if df.empty or pcol is None or scol is None:
            logger.warning(f"No data available for {result.method} dotplot")
            return None

        if output_file is None:
            output_file = f"{result.method}_{result.database}_dotplot.pdf"
        plot_path = self.output_dir / output_file

        top = df.nsmallest(top_n, pcol).iloc[::-1]
        size_col = _first_column(top, ["setSize", "set.size", "pSize", "NDE"])
        sizes = top[size_col].astype(float) if size_col else pd.Series(20.0, index=top.index)

        fig, ax = plt.subplots(figsize=(10, max(4, len(top) * 0.35)))
        scatter = ax.scatter(
            top[scol],
            np.arange(len(top)),
            s=20 + sizes / sizes.max() * 200,
            c=top[pcol],
            cmap="RdBu",
            edgecolors="black",
            linewidth=0.5,
        )
        ax.axvline(0, color="grey", linestyle="--", linewidth=0.8)
        ax.set_yticks(np.arange(len(top)))
        ax.set_yticklabels([_label(row) for _, row in top.iterrows()], fontsize=8)
        ax.set_xlabel(scol, fontsize=12)
        ax.set_title(
            f"{result.method.upper()} ({result.database})", fontsize=14, fontweight="bold"
        )
        cbar = fig.colorbar(scatter, ax=ax)
        cbar.set_label(pcol)

        plt.tight_layout()
        plt.savefig(plot_path, dpi=300, bbox_inches="tight")
        plt.close(fig)

        logger.info(f"Dotplot saved to {plot_path}")
        return plot_path

    def plot_enrichment_barplot(
        self,
        results: Dict[str, PathwayEnrichmentResult],
        top_n: int = 10,
        output_file: Optional[str] = None,
    ) -> Optional[Path]:
        """
        Barplot of -log10 adjusted p-values, one panel per method
        """
        if output_file is None:
            output_file = "enrichment_barplot.pdf"
        plot_path = self.output_dir / output_file

        panels = {}
        for name, result in results.items():
            df = result.results_df
            pcol = _first_column(df, PVALUE_COLUMNS)
            if df.empty or pcol is None:
                continue
            top = df.nsmallest(top_n, pcol)
            panels[name] = pd.DataFrame(
                {
                    "pathway": [_label(row) for _, row in top.iterrows()],
                    "score": -np.log10(top[pcol].astype(float).clip(lower=1e-300)),
                    "pcol": pcol,
                    "method": result.method,
                }
            )

        if not panels:
            logger.warning("No data available for barplot")
            return None

        fig, axes = plt.subplots(
            len(panels), 1, figsize=(12, 4 * len(panels)), constrained_layout=True
        )
        if len(panels) == 1:
            axes = [axes]

        for ax, (name, panel) in zip(axes, panels.items()):
            panel = panel.sort_values("score")
            ax.barh(
                panel["pathway"],
                panel["score"],
                color=self.method_colors.get(panel["method"].iloc[0], "#666666"),
                alpha=0.7,
                edgecolor="black",
                linewidth=0.5,
            )
            ax.set_xlabel(f"-log10({panel['pcol'].iloc[0]})")
            ax.set_title(name, fontweight="bold")

        fig.suptitle("Pathway Enrichment Results", fontsize=16, fontweight="bold")
        plt.savefig(plot_path, dpi=300, bbox_inches="tight")
        plt.close(fig)

        logger.info(f"Barplot saved to {plot_path}")
        return plot_path

    def plot_gsea_running_score(
        self,
        fold_changes: pd.Series,
        gene_set: Iterable[str],
        set_id: str,
        title: Optional[str] = None,
        exponent: float = 1.0,
        output_file: Optional[str] = None,
    ) -> Path:
        """
        GSEA plot: running score, hit positions and the ranked statistic
        """
        ranking = fold_changes.sort_values(ascending=False)
        running = running_enrichment_score(ranking, gene_set, exponent)
        members = {str(g) for g in gene_set}
        hits = np.where(ranking.index.astype(str).isin(members))[0]

        if output_file is None:
            safe_id = "".join(c if c.isalnum() else "_" for c in set_id)
            output_file = f"gseaplot_{safe_id}.pdf"
        plot_path = self.output_dir / output_file

        fig, (ax_es, ax_hits, ax_rank) = plt.subplots(
            3, 1, figsize=(8, 6), sharex=True,
            gridspec_kw={"height_ratios": [3, 0.6, 1.5]},
        )

        x = np.arange(1, len(ranking) + 1)
        ax_es.plot(x, running, color="#2ca02c", linewidth=1.5)
        ax_es.axhline(0, color="grey", linewidth=0.8)
        peak = int(np.argmax(np.abs(running)))
        ax_es.axvline(peak + 1, color="red", linestyle="--", linewidth=0.8)
        ax_es.set_ylabel("Running ES")
        ax_es.set_title(title or set_id, fontsize=12, fontweight="bold")

        ax_hits.vlines(hits + 1, 0, 1, color="black", linewidth=0.5)
        ax_hits.set_yticks([])

        ax_rank.fill_between(x, ranking.to_numpy(), color="grey", alpha=0.6)
        ax_rank.axhline(0, color="black", linewidth=0.5)
        ax_rank.set_ylabel("Ranked metric")
        ax_rank.set_xlabel("Position in ranked list")

        plt.tight_layout()
        plt.savefig(plot_path, dpi=300, bbox_inches="tight")
        plt.close(fig)

        logger.info(f"GSEA plot saved to {plot_path}")
        return plot_path

    def plot_gage_heatmap(
        self,
        gage_result: GageResult,
        top_n: int = 20,
        descriptions: Optional[Dict[str, str]] = None,
        output_file: Optional[str] = None,
    ) -> Optional[Path]:
        """
        Heatmap of per-comparison GAGE statistics for the top gene sets
        """
        sets = list(gage_result.greater.index[:top_n])
        if gage_result.same_dir:
            sets += [s for s in gage_result.less.index[:top_n] if s not in sets]
        stats_table = gage_result.stats.drop(columns="stat.mean", errors="ignore")
        stats_table = stats_table.loc[[s for s in sets if s in stats_table.index]]

        if stats_table.empty:
            logger.warning("No data available for GAGE heatmap")
            return None

        if output_file is None:
            output_file = "gage_heatmap.pdf"
        plot_path = self.output_dir / output_file

        descriptions = descriptions or {}
        stats_table.index = [
            f"{s} {descriptions[s]}" if s in descriptions else s for s in stats_table.index
        ]
        limit = float(np.nanmax(np.abs(stats_table.to_numpy()))) or 1.0

        width = max(6, stats_table.shape[1] * 0.8 + 4)
        plt.figure(figsize=(width, max(4, len(stats_table) * 0.3)))
        sns.heatmap(
            stats_table,
            cmap="RdBu_r",
            vmin=-limit,
            vmax=limit,
            annot=stats_table.shape[1] <= 12,
            fmt=".1f",
            cbar_kws={"label": "t statistic"},
            linewidths=0.5,
        )
        plt.title("GAGE gene set statistics", fontsize=14, fontweight="bold")
        plt.yticks(rotation=0)

        plt.tight_layout()
        plt.savefig(plot_path, dpi=300, bbox_inches="tight")
        plt.close()

        logger.info(f"Heatmap saved to {plot_path}")
        return plot_path


def create_pathway_plots(
    results: Dict[str, PathwayEnrichmentResult],
    output_dir: Union[str, Path],
    top_n: int = 20,
) -> Dict[str, Path]:
    """
    Dotplot per result plus a combined barplot

    Returns:
        Mapping of plot name to file path (plots with no data are omitted)
    """
    plotter = PathwayPlotter(output_dir)
    plot_paths = {}

    for name, result in results.items():
        path = plotter.plot_enrichment_dotplot(result, top_n=top_n)
        if path is not None:
            plot_paths[f"{name}_dotplot"] = path
            result.plot_paths["dotplot"] = path

    barplot = plotter.plot_enrichment_barplot(results, top_n=min(top_n, 10))
    if barplot is not None:
        plot_paths["barplot"] = barplot

    return plot_paths
