"""
Pathway diagrams coloured by fold change

Gene boxes are drawn at their KGML coordinates, optionally over the KEGG
PNG diagram, coloured on a low/mid/high scale clipped to [-limit, limit].
"""

import io
from pathlib import Path
from typing import Dict, List, Optional, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib import patches
from matplotlib.colors import LinearSegmentedColormap, Normalize

from ..utils import get_logger
from .kgml import PathwayGraph

logger = get_logger(__name__)

NO_DATA_COLOR = "white"
ARROW_STYLES = {1: "-|>", -1: "-["}


def node_values(graph: PathwayGraph, fold_changes: pd.Series) -> Dict[str, float]:
    """Mean fold change of each gene node's measured members (NaN when none)"""
    values = fold_changes.copy()
    values.index = values.index.astype(str)
    result = {}
    for node in graph.node_layout():
        measured = [values[g] for g in node["genes"] if g in values.index]
        result[node["entry_id"]] = float(np.mean(measured)) if measured else np.nan
    return result


def _load_background(background: Union[str, Path, bytes]) -> np.ndarray:
    if isinstance(background, bytes):
        return plt.imread(io.BytesIO(background), format="png")
    return plt.imread(str(background))


def render_pathway(
    graph: PathwayGraph,
    fold_changes: pd.Series,
    output_dir: Union[str, Path],
    limit: float = 1.0,
    low: str = "green",
    mid: str = "gray",
    high: str = "red",
    bins: int = 10,
    background: Optional[Union[str, Path, bytes]] = None,
    title: Optional[str] = None,
    suffix: str = "fcsflow",
) -> Path:
    """
    Render one pathway with gene nodes coloured by fold change

    Args:
        graph: Parsed KGML pathway
        fold_changes: Fold changes named by Entrez id
        output_dir: Directory for '<pathway_id>.<suffix>.png'
        limit: Colour scale limit; values are clipped to [-limit, limit]
        low, mid, high: Colours for -limit, 0 and +limit
        bins: Number of discrete colour bins
        background: KEGG PNG (path or bytes) to draw under the nodes
        title: Plot title (pathway title if None)
        suffix: Output file suffix

    Returns:
        Path to the PNG
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"{graph.pathway_id}.{suffix}.png"

    nodes = graph.node_layout()
    values = node_values(graph, fold_changes)
    cmap = LinearSegmentedColormap.from_list("fold_change", [low, mid, high], N=bins)
    norm = Normalize(vmin=-limit, vmax=limit)

    if background is not None:
        image = _load_background(background)
        height, width = image.shape[0], image.shape[1]
        fig, ax = plt.subplots(figsize=(width / 100, height / 100))
        ax.imshow(image, extent=(0, width, height, 0))
        alpha = 0.85
    else:
        xs = [n["x"] + n["width"] / 2 for n in nodes] or [100.0]
        ys = [n["y"] + n["height"] / 2 for n in nodes] or [100.0]
        width, height = max(xs) + 40, max(ys) + 40
        fig, ax = plt.subplots(figsize=(max(6, width / 100), max(4, height / 100)))
        alpha = 1.0
        _draw_relations(ax, graph)

    for node in nodes:
        value = values[node["entry_id"]]
        if np.isnan(value):
            color = NO_DATA_COLOR
        else:
            color = cmap(norm(np.clip(value, -limit, limit)))
        ax.add_patch(
            patches.Rectangle(
                (node["x"] - node["width"] / 2, node["y"] - node["height"] / 2),
                node["width"],
                node["height"],
                facecolor=color,
                edgecolor="black",
                linewidth=0.5,
                alpha=alpha,
                zorder=2,
            )
        )
        ax.text(
            node["x"], node["y"], node["label"],
            ha="center", va="center", fontsize=4, zorder=3,
        )

    ax.set_xlim(0, width)
    ax.set_ylim(height, 0)
    ax.set_axis_off()
    ax.set_title(title or graph.title, fontsize=10, fontweight="bold")

    scalar = plt.cm.ScalarMappable(norm=norm, cmap=cmap)
    scalar.set_array([])
    cbar = fig.colorbar(scalar, ax=ax, fraction=0.025, pad=0.01)
    cbar.set_label("log2 fold change")

    plt.savefig(output_path, dpi=150, bbox_inches="tight")
    plt.close(fig)

    n_colored = sum(1 for v in values.values() if not np.isnan(v))
    logger.info(
        f"Rendered {graph.pathway_id}: {n_colored}/{len(nodes)} nodes with data -> {output_path}"
    )
    return output_path


def _draw_relations(ax, graph: PathwayGraph) -> None:
    positions = {
        n["entry_id"]: (n["x"], n["y"]) for n in graph.node_layout()
    }
    for relation in graph.relations:
        if relation.entry1 not in positions or relation.entry2 not in positions:
            continue
        if "inhibition" in relation.subtypes or "repression" in relation.subtypes:
            style = ARROW_STYLES[-1]
        else:
            style = ARROW_STYLES[1]
        ax.annotate(
            "",
            xy=positions[relation.entry2],
            xytext=positions[relation.entry1],
            arrowprops={"arrowstyle": style, "color": "#555555", "linewidth": 0.5},
            zorder=1,
        )


def render_pathways(
    graphs: Dict[str, PathwayGraph],
    fold_changes: pd.Series,
    output_dir: Union[str, Path],
    pathway_ids: Optional[List[str]] = None,
    backgrounds: Optional[Dict[str, Union[str, Path, bytes]]] = None,
    **kwargs,
) -> List[Path]:
    """
    Render several pathways (e.g. the top GAGE or SPIA hits)

    Pathway ids without a parsed graph are skipped with a warning.
    """
    pathway_ids = pathway_ids if pathway_ids is not None else list(graphs)
    backgrounds = backgrounds or {}

    rendered = []
    for pathway_id in pathway_ids:
        graph = graphs.get(pathway_id)
        if graph is None:
            logger.warning(f"No KGML graph for {pathway_id}; skipping")
            continue
        rendered.append(
            render_pathway(
                graph,
                fold_changes,
                output_dir,
                background=backgrounds.get(pathway_id),
                **kwargs,
            )
        )
    return rendered
