"""
KEGG KGML parsing into gene-level pathway graphs
"""

import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

import networkx as nx
import numpy as np

from ..exceptions import DataValidationError
from ..utils import get_logger

logger = get_logger(__name__)


@dataclass
class KGMLEntry:
    """One <entry> element: gene product, compound, group or map link"""

    entry_id: str
    names: List[str]
    entry_type: str
    graphics: Dict[str, Union[str, float]] = field(default_factory=dict)
    components: List[str] = field(default_factory=list)

    @property
    def gene_ids(self) -> List[str]:
        """Entrez ids for organism-specific gene entries ('hsa:1029' -> '1029')"""
        if self.entry_type != "gene":
            return []
        return [name.split(":", 1)[1] for name in self.names if ":" in name]

    @property
    def label(self) -> str:
        return str(self.graphics.get("name", "")).split(",")[0].rstrip(".")


@dataclass
class KGMLRelation:
    """One <relation> element with its combined subtype name"""

    entry1: str
    entry2: str
    relation_type: str
    subtypes: List[str] = field(default_factory=list)

    @property
    def name(self) -> str:
        """Subtypes sorted and joined with '_' ('activation_phosphorylation')"""
        return "_".join(sorted(self.subtypes))


@dataclass
class PathwayGraph:
    """Parsed KEGG pathway"""

    pathway_id: str
    title: str
    organism: str
    entries: Dict[str, KGMLEntry]
    relations: List[KGMLRelation]
    image_url: Optional[str] = None
    _graph: Optional[nx.DiGraph] = field(default=None, repr=False)

    @property
    def number(self) -> str:
        return self.pathway_id[len(self.organism):]

    def entry_genes(self, entry_id: str) -> List[str]:
        """Genes of an entry; groups expand to their components' genes"""
        entry = self.entries.get(entry_id)
        if entry is None:
            return []
        if entry.entry_type == "group":
            genes: List[str] = []
            for component in entry.components:
                genes.extend(self.entry_genes(component))
            return list(dict.fromkeys(genes))
        return entry.gene_ids

    @property
    def genes(self) -> List[str]:
        """Sorted unique Entrez ids of all gene entries"""
        found: Set[str] = set()
        for entry in self.entries.values():
            found.update(entry.gene_ids)
        return sorted(found, key=lambda g: (len(g), g))

    def gene_interactions(self) -> List[Tuple[str, str, str]]:
        """(upstream gene, downstream gene, relation name) triples"""
        triples = []
        for relation in self.relations:
            if not relation.subtypes:
                continue
            upstream = self.entry_genes(relation.entry1)
            downstream = self.entry_genes(relation.entry2)
            for source in upstream:
                for target in downstream:
                    if source != target:
                        triples.append((source, target, relation.name))
        return list(dict.fromkeys(triples))

    @property
    def graph(self) -> nx.DiGraph:
        """Gene-level directed graph; edges carry the set of relation names"""
        if self._graph is None:
            graph = nx.DiGraph(pathway_id=self.pathway_id, title=self.title)
            graph.add_nodes_from(self.genes)
            for source, target, name in self.gene_interactions():
                if graph.has_edge(source, target):
                    graph[source][target]["types"].add(name)
                else:
                    graph.add_edge(source, target, types={name})
            self._graph = graph
        return self._graph

    @property
    def n_interactions(self) -> int:
        return self.graph.number_of_edges()

    def relation_matrices(
        self, genes: Optional[List[str]] = None
    ) -> Tuple[List[str], Dict[str, np.ndarray]]:
        """
        One square adjacency matrix per relation name

        Args:
            genes: Node order (defaults to all pathway genes)

        Returns:
            (genes, {relation name: matrix}) where matrix[i, j] = 1 when gene j
            acts on gene i (rows downstream, columns upstream)
        """
        genes = list(genes) if genes is not None else self.genes
        index = {g: i for i, g in enumerate(genes)}
        matrices: Dict[str, np.ndarray] = {}

        for source, target, name in self.gene_interactions():
            if source not in index or target not in index:
                continue
            if name not in matrices:
                matrices[name] = np.zeros((len(genes), len(genes)))
            matrices[name][index[target], index[source]] = 1.0

        return genes, matrices

    def node_layout(self) -> List[Dict]:
        """Drawable gene nodes with KGML coordinates"""
        nodes = []
        for entry in self.entries.values():
            if entry.entry_type != "gene" or "x" not in entry.graphics:
                continue
            nodes.append(
                {
                    "entry_id": entry.entry_id,
                    "genes": entry.gene_ids,
                    "label": entry.label,
                    "x": float(entry.graphics["x"]),
                    "y": float(entry.graphics["y"]),
                    "width": float(entry.graphics.get("width", 46)),
                    "height": float(entry.graphics.get("height", 17)),
                }
            )
        return nodes


def _parse_graphics(element: Optional[ET.Element]) -> Dict[str, Union[str, float]]:
    if element is None:
        return {}
    graphics: Dict[str, Union[str, float]] = {}
    for key, value in element.attrib.items():
        if key in ("x", "y", "width", "height"):
            graphics[key] = float(value)
        else:
            graphics[key] = value
    return graphics


def parse_kgml(kgml: Union[str, bytes]) -> PathwayGraph:
    """
    Parse a KGML document

    Args:
        kgml: KGML text

    Returns:
        PathwayGraph
    """
    try:
        root = ET.fromstring(kgml)
    except ET.ParseError as e:
        raise DataValidationError(f"Invalid KGML document: {e}") from e

    if root.tag != "pathway":
        raise DataValidationError(f"Expected <pathway> root element, found <{root.tag}>")

    organism = root.get("org", "")
    pathway_id = root.get("name", "").replace("path:", "")
    if not pathway_id:
        pathway_id = f"{organism}{root.get('number', '')}"

    entries = {}
    for element in root.findall("entry"):
        entry = KGMLEntry(
            entry_id=element.get("id"),
            names=element.get("name", "").split(),
            entry_type=element.get("type", ""),
            graphics=_parse_graphics(element.find("graphics")),
            components=[c.get("id") for c in element.findall("component")],
        )
        entries[entry.entry_id] = entry

    relations = [
        KGMLRelation(
            entry1=element.get("entry1"),
            entry2=element.get("entry2"),
            relation_type=element.get("type", ""),
            subtypes=[s.get("name") for s in element.findall("subtype") if s.get("name")],
        )
        for element in root.findall("relation")
    ]

    graph = PathwayGraph(
        pathway_id=pathway_id,
        title=root.get("title", pathway_id),
        organism=organism,
        entries=entries,
        relations=relations,
        image_url=root.get("image"),
    )
    logger.debug(
        f"Parsed {pathway_id}: {len(graph.genes)} genes, {len(relations)} relations"
    )
    return graph


def load_pathway_graph(kgml_file: Union[str, Path]) -> PathwayGraph:
    path = Path(kgml_file)
    return parse_kgml(path.read_text())


def load_pathway_graphs(directory: Union[str, Path]) -> Dict[str, PathwayGraph]:
    """Parse every *.xml KGML file in a directory, skipping invalid files"""
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"KGML directory not found: {directory}")

    graphs = {}
    for kgml_file in sorted(directory.glob("*.xml")):
        try:
            graph = load_pathway_graph(kgml_file)
        except DataValidationError as e:
            logger.warning(f"Skipping {kgml_file.name}: {e}")
            continue
        graphs[graph.pathway_id] = graph

    logger.info(f"Loaded {len(graphs)} pathway graphs from {directory}")
    return graphs
