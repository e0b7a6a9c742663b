"""
Gene identifier mapping through Ensembl BioMart

Converts Ensembl gene ids and gene symbols to Entrez ids, the key every
KEGG-based method expects.
"""

import io
import re
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import pandas as pd
import requests

from ..exceptions import DataValidationError, IdentifierMappingError
from ..utils import ResultCache, get_logger

logger = get_logger(__name__)

BIOMART_URL = "https://www.ensembl.org/biomart/martservice"

BIOMART_ATTRIBUTES = [
    "ensembl_gene_id",
    "external_gene_name",
    "entrezgene_id",
    "gene_biotype",
    "description",
]

MAPPING_COLUMNS = ["ensembl_gene_id", "symbol", "entrez", "gene_biotype", "description"]

ID_PATTERNS = {
    "ensembl": re.compile(r"^ENS[A-Z]*G\d{11}(\.\d+)?$"),
    "entrez": re.compile(r"^\d+(\.0)?$"),
    "symbol": re.compile(r"^[A-Za-z][A-Za-z0-9\-\.]*$"),
}

ID_TYPE_COLUMNS = {"ensembl": "ensembl_gene_id", "symbol": "symbol", "entrez": "entrez"}


@dataclass
class MappingReport:
    """Report on gene ID mapping results"""

    input_count: int
    mapped_count: int
    unmapped_count: int
    duplicated_count: int
    source_type: str
    unmapped_ids: List[str] = field(default_factory=list)

    @property
    def mapping_rate(self) -> float:
        if self.input_count == 0:
            return 0.0
        return self.mapped_count / self.input_count

    def to_dict(self) -> Dict:
        report = asdict(self)
        report["mapping_rate"] = self.mapping_rate
        return report


def detect_id_type(gene_ids: Iterable) -> str:
    """
    Detect the most likely identifier type from a sample of ids

    Args:
        gene_ids: Gene identifiers

    Returns:
        One of 'ensembl', 'entrez', 'symbol'
    """
    counts = {id_type: 0 for id_type in ID_PATTERNS}

    sample = [str(g).strip() for g in gene_ids if pd.notna(g)][:200]
    if not sample:
        raise DataValidationError("Cannot detect identifier type from an empty list")

    for gene_id in sample:
        for id_type, pattern in ID_PATTERNS.items():
            if pattern.match(gene_id):
                counts[id_type] += 1
                break

    detected = max(counts, key=counts.get)
    logger.info(f"Detected identifier type: {detected} ({counts[detected]}/{len(sample)})")
    return detected


def build_biomart_query(dataset: str, attributes: List[str]) -> str:
    """Build a BioMart XML query returning TSV without header"""
    attribute_xml = "\n".join(
        f'        <Attribute name = "{name}" />' for name in attributes
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE Query>
<Query virtualSchemaName = "default" formatter = "TSV" header = "0" uniqueRows = "1" count = "" datasetConfigVersion = "0.6" >
    <Dataset name = "{dataset}" interface = "default" >
{attribute_xml}
    </Dataset>
</Query>"""


class IdentifierMapper:
    """Map Ensembl ids and gene symbols to Entrez ids using BioMart"""

    def __init__(
        self,
        dataset: str = "hsapiens_gene_ensembl",
        cache_dir: Optional[Union[str, Path]] = None,
        biomart_url: str = BIOMART_URL,
        timeout: int = 120,
    ):
        self.dataset = dataset
        self.biomart_url = biomart_url
        self.timeout = timeout
        self.cache = ResultCache(cache_dir) if cache_dir else None
        self.report: Optional[MappingReport] = None
        self._mapping: Optional[pd.DataFrame] = None

    @property
    def _cache_params(self) -> Dict[str, str]:
        return {"dataset": self.dataset, "biomart_url": self.biomart_url}

    def _query_biomart(self) -> pd.DataFrame:
        query = build_biomart_query(self.dataset, BIOMART_ATTRIBUTES)

        logger.info(f"Fetching identifier mapping for {self.dataset} from BioMart...")
        try:
            response = requests.post(
                self.biomart_url, data={"query": query}, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise IdentifierMappingError(f"BioMart request failed: {e}") from e

        if response.status_code != 200:
            raise IdentifierMappingError(
                f"BioMart HTTP request failed with status {response.status_code}"
            )

        text = response.text.strip()
        if not text:
            raise IdentifierMappingError("BioMart returned empty response")
        if text.startswith("Query ERROR") or "ERROR" in text[:200]:
            raise IdentifierMappingError(f"BioMart query error: {text[:200]}")

        mapping = pd.read_csv(
            io.StringIO(text),
            sep="\t",
            header=None,
            names=MAPPING_COLUMNS,
            dtype=str,
            keep_default_na=True,
        )
        return self._clean_mapping(mapping)

    @staticmethod
    def _clean_mapping(mapping: pd.DataFrame) -> pd.DataFrame:
        mapping = mapping.copy()
        mapping["entrez"] = mapping["entrez"].str.replace(r"\.0$", "", regex=True)
        mapping["symbol"] = mapping["symbol"].replace("", pd.NA)
        mapping = mapping.dropna(subset=["ensembl_gene_id"])

        if mapping.empty:
            raise IdentifierMappingError("No valid gene mappings found in BioMart response")

        logger.info(f"Retrieved {len(mapping)} gene mappings from BioMart")
        return mapping.reset_index(drop=True)

    def fetch_mapping_table(self, force_refresh: bool = False) -> pd.DataFrame:
        """
        Get the Ensembl / symbol / Entrez mapping table

        Args:
            force_refresh: Ignore any cached table and query BioMart

        Returns:
            DataFrame with ensembl_gene_id, symbol, entrez, gene_biotype, description
        """
        if self._mapping is not None and not force_refresh:
            return self._mapping

        cached = None
        if self.cache is not None:
            cached = self.cache.load("biomart", self._cache_params)
            if cached is not None and not force_refresh:
                logger.info(f"Using cached BioMart mapping ({len(cached)} rows)")
                self._mapping = cached
                return cached

        try:
            mapping = self._query_biomart()
        except IdentifierMappingError as e:
            if cached is None:
                raise
            logger.warning(f"{e}; falling back to cached mapping table")
            mapping = cached
        else:
            if self.cache is not None:
                self.cache.save("biomart", mapping, self._cache_params)

        self._mapping = mapping
        return mapping

    def annotate(
        self,
        df: pd.DataFrame,
        id_column: str = "gene_id",
        id_type: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        Add symbol and Entrez columns to a DE table

        Args:
            df: DE table
            id_column: Column holding the source identifiers
            id_type: 'ensembl', 'symbol' or 'entrez' (detected if None)

        Returns:
            Copy of df with 'symbol' and 'entrez' columns; unmapped ids get NA
        """
        if id_column not in df.columns:
            raise DataValidationError(f"Identifier column '{id_column}' not in table")

        if id_type is None:
            id_type = detect_id_type(df[id_column])
        if id_type not in ID_TYPE_COLUMNS:
            raise DataValidationError(f"Unsupported identifier type: {id_type}")

        key = ID_TYPE_COLUMNS[id_type]
        mapping = self.fetch_mapping_table()

        add_columns = [c for c in ("ensembl_gene_id", "symbol", "entrez") if c != key]

        lookup = mapping.dropna(subset=[key]).copy()
        lookup["_key"] = lookup[key].str.upper() if id_type == "symbol" else lookup[key]
        n_duplicated = int(
            lookup.drop_duplicates(subset=["_key", "entrez"])["_key"].duplicated().sum()
        )
        # One-to-many: keep the first Entrez id per source id
        lookup = lookup.drop_duplicates(subset=["_key"], keep="first")[["_key"] + add_columns]

        source = df[id_column].astype("string").str.strip()
        if id_type == "ensembl":
            source = source.str.replace(r"\.\d+$", "", regex=True)
        keys = source.str.upper() if id_type == "symbol" else source

        merged = pd.DataFrame({"_key": keys.astype(object)}).merge(
            lookup, on="_key", how="left"
        )
        merged.index = df.index

        result = df.copy()
        for col in add_columns:
            if col in result.columns:
                # Existing annotation is kept where the lookup has nothing
                result[col] = merged[col].fillna(result[col])
            else:
                result[col] = merged[col]
        if key not in result.columns:
            result[key] = source.astype(object)

        mapped = result["entrez"].notna()
        unmapped_ids = df.loc[~mapped.values, id_column].astype(str).tolist()
        self.report = MappingReport(
            input_count=len(df),
            mapped_count=int(mapped.sum()),
            unmapped_count=int((~mapped).sum()),
            duplicated_count=n_duplicated,
            source_type=id_type,
            unmapped_ids=unmapped_ids[:100],
        )

        logger.info(
            f"Mapped {self.report.mapped_count}/{self.report.input_count} identifiers "
            f"to Entrez ({self.report.mapping_rate:.1%})"
        )
        return result
