"""
KEGG REST retrieval of pathway gene sets, KGML documents and images
"""

import re
import time
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd
import requests

from ..exceptions import AnnotationServiceError
from ..utils import ResultCache, get_logger
from .collection import GeneSetCollection

logger = get_logger(__name__)

KEGG_REST_URL = "https://rest.kegg.jp"

# KEGG map number ranges
KEGG_CATEGORIES = {
    "metabolism": (0, 1999),
    "signaling": (2000, 4999),
    "disease": (5000, 5999),
    "drug": (7000, 7999),
}

KEGG_SUBSETS = ("all", "sigmet", "signaling", "metabolism", "disease")


def kegg_category(pathway_id: str) -> str:
    """Classify a KEGG pathway id (hsa04110) by its map number"""
    match = re.search(r"(\d{5})$", pathway_id)
    if not match:
        return "other"
    number = int(match.group(1))
    for category, (low, high) in KEGG_CATEGORIES.items():
        if low <= number <= high:
            return category
    return "other"


def strip_organism_suffix(name: str) -> str:
    """'Cell cycle - Homo sapiens (human)' -> 'Cell cycle'"""
    return re.sub(r" - [A-Z][a-z]+ [a-z]+.*\)$", "", name).strip()


class KEGGClient:
    """Minimal KEGG REST client with on-disk caching"""

    RATE_LIMIT_SECONDS = 0.35  # ~3 req/sec max

    def __init__(
        self,
        organism: str = "hsa",
        cache_dir: Optional[Union[str, Path]] = None,
        base_url: str = KEGG_REST_URL,
        timeout: int = 60,
        cache_max_age_days: Optional[float] = None,
    ):
        self.organism = organism
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cache = (
            ResultCache(cache_dir, max_age_days=cache_max_age_days) if cache_dir else None
        )
        self.session = requests.Session()
        self._last_request = 0.0

    def _get(self, operation: str, binary: bool = False) -> Union[str, bytes]:
        params = {"operation": operation, "base_url": self.base_url}
        namespace = "kegg_" + re.sub(r"[^A-Za-z0-9]+", "_", operation).strip("_")

        if self.cache is not None:
            cached = self.cache.load(namespace, params)
            if cached is not None:
                return cached

        wait = self.RATE_LIMIT_SECONDS - (time.time() - self._last_request)
        if wait > 0:
            time.sleep(wait)

        url = f"{self.base_url}/{operation}"
        logger.debug(f"KEGG request: {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise AnnotationServiceError(f"KEGG request failed for {operation}: {e}") from e
        finally:
            self._last_request = time.time()

        if response.status_code != 200:
            raise AnnotationServiceError(
                f"KEGG request {operation} failed with status {response.status_code}"
            )

        content = response.content if binary else response.text
        if not content:
            raise AnnotationServiceError(f"KEGG returned empty response for {operation}")

        if self.cache is not None:
            self.cache.save(namespace, content, params)
        return content

    @staticmethod
    def _parse_pairs(text: str) -> List[List[str]]:
        return [line.split("\t") for line in text.strip().split("\n") if "\t" in line]

    def list_pathways(self) -> pd.DataFrame:
        """
        List the organism's pathways

        Returns:
            DataFrame with columns ID, Description, category
        """
        rows = []
        for parts in self._parse_pairs(self._get(f"list/pathway/{self.organism}")):
            pathway_id = parts[0].replace("path:", "")
            rows.append(
                {
                    "ID": pathway_id,
                    "Description": strip_organism_suffix(parts[1]),
                    "category": kegg_category(pathway_id),
                }
            )
        logger.info(f"KEGG lists {len(rows)} pathways for {self.organism}")
        return pd.DataFrame(rows, columns=["ID", "Description", "category"])

    def gene_to_entrez(self) -> Dict[str, str]:
        """Map KEGG gene ids (hsa:7157) to Entrez ids"""
        mapping = {}
        for parts in self._parse_pairs(self._get(f"conv/ncbi-geneid/{self.organism}")):
            left, right = parts[0], parts[1]
            if left.startswith("ncbi-geneid:"):
                left, right = right, left
            mapping[left] = right.replace("ncbi-geneid:", "")
        return mapping

    def gene_sets(self) -> Dict[str, List[str]]:
        """Pathway id -> member Entrez ids"""
        to_entrez = self.gene_to_entrez()
        sets: Dict[str, List[str]] = {}

        for parts in self._parse_pairs(self._get(f"link/{self.organism}/pathway")):
            first, second = parts[0], parts[1]
            if first.startswith("path:"):
                pathway, gene = first, second
            else:
                pathway, gene = second, first
            entrez = to_entrez.get(gene)
            if entrez is None:
                continue
            sets.setdefault(pathway.replace("path:", ""), []).append(entrez)

        return sets

    def get_kgml(self, pathway_id: str) -> str:
        """KGML document for a pathway (hsa04110)"""
        return self._get(f"get/{pathway_id}/kgml")

    def get_image(self, pathway_id: str) -> bytes:
        """PNG diagram for a pathway"""
        return self._get(f"get/{pathway_id}/image", binary=True)

    def download_kgml(self, pathway_ids: List[str], output_dir: Union[str, Path]) -> List[Path]:
        """Write KGML files for the given pathways, skipping failures"""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        written = []
        for pathway_id in pathway_ids:
            try:
                kgml = self.get_kgml(pathway_id)
            except AnnotationServiceError as e:
                logger.warning(f"Skipping {pathway_id}: {e}")
                continue
            path = output_dir / f"{pathway_id}.xml"
            path.write_text(kgml)
            written.append(path)

        logger.info(f"Downloaded {len(written)}/{len(pathway_ids)} KGML files to {output_dir}")
        return written


def resolve_subset(subset: str, signaling_only: bool = False) -> str:
    """KEGG subset name, with signaling_only taking precedence"""
    if signaling_only:
        return "signaling"
    if subset not in KEGG_SUBSETS:
        raise ValueError(f"subset must be one of {', '.join(KEGG_SUBSETS)}")
    return subset


def kegg_gene_sets(
    organism: str = "hsa",
    subset: str = "all",
    signaling_only: bool = False,
    cache_dir: Optional[Union[str, Path]] = None,
    client: Optional[KEGGClient] = None,
) -> GeneSetCollection:
    """
    Build a KEGG gene set collection

    Args:
        organism: KEGG organism code
        subset: 'all', 'sigmet' (signaling + metabolism), 'signaling',
            'metabolism' or 'disease'
        signaling_only: Shortcut for subset='signaling'
        cache_dir: Cache directory for REST responses
        client: Existing client (overrides organism/cache_dir)

    Returns:
        GeneSetCollection keyed by pathway id with pathway names as descriptions
    """
    subset = resolve_subset(subset, signaling_only)

    client = client or KEGGClient(organism=organism, cache_dir=cache_dir)
    pathways = client.list_pathways()
    sets = client.gene_sets()

    if subset == "sigmet":
        keep = pathways[pathways["category"].isin(["signaling", "metabolism"])]
    elif subset != "all":
        keep = pathways[pathways["category"] == subset]
    else:
        keep = pathways

    descriptions = dict(zip(keep["ID"], keep["Description"]))
    selected = {pid: sets[pid] for pid in keep["ID"] if pid in sets}

    logger.info(f"Built {len(selected)} KEGG gene sets ({subset}) for {client.organism}")
    return GeneSetCollection(f"KEGG_{client.organism}", selected, descriptions)
