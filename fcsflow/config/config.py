"""
Core configuration management for FCSFlow
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..exceptions import ConfigurationError
from ..genesets.kegg import KEGG_SUBSETS

logger = logging.getLogger(__name__)

SPIA_COMBINE_METHODS = ("fisher", "norminv")
P_ADJUST_METHODS = ("fdr_bh", "bonferroni", "holm", "fdr_by", "none")


@dataclass
class Config:
    """Main configuration class for FCSFlow analysis"""

    # General settings
    project_name: str = "FCSFlow_Analysis"
    comparison_name: str = "treatment_vs_control"
    organism: str = "hsa"
    random_seed: int = 42
    n_jobs: int = 1

    # Input/Output paths
    output_dir: Optional[str] = "fcsflow_results"
    cache_dir: Optional[str] = None

    # Analysis parameters
    expression: Dict[str, Any] = field(default_factory=dict)
    id_mapping: Dict[str, Any] = field(default_factory=dict)
    gene_sets: Dict[str, Any] = field(default_factory=dict)
    gsea: Dict[str, Any] = field(default_factory=dict)
    gage: Dict[str, Any] = field(default_factory=dict)
    spia: Dict[str, Any] = field(default_factory=dict)
    pathview: Dict[str, Any] = field(default_factory=dict)
    coexpression: Dict[str, Any] = field(default_factory=dict)

    # R configuration
    r_config: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        """Fill missing sections and keys with defaults"""
        for section in (
            "expression",
            "id_mapping",
            "gene_sets",
            "gsea",
            "gage",
            "spia",
            "pathview",
            "coexpression",
            "r_config",
        ):
            defaults = getattr(self, f"_get_default_{section}")()
            defaults.update(getattr(self, section) or {})
            setattr(self, section, defaults)

    @property
    def cache_path(self) -> Path:
        """Directory for cached remote queries"""
        if self.cache_dir:
            return Path(self.cache_dir)
        return Path(self.output_dir or ".") / "cache"

    def _get_default_expression(self) -> Dict[str, Any]:
        """Default DE table handling"""
        return {
            "gene_column": None,
            "padj_cutoff": 0.05,
            "lfc_cutoff": 0.0,
            "id_column": "entrez",
        }

    def _get_default_id_mapping(self) -> Dict[str, Any]:
        """Default identifier mapping configuration"""
        return {
            "biomart_url": "https://www.ensembl.org/biomart/martservice",
            "dataset": "hsapiens_gene_ensembl",
            "source_id_type": None,  # Auto-detect
            "timeout": 120,
            "use_cache": True,
        }

    def _get_default_gene_sets(self) -> Dict[str, Any]:
        """Default gene set collection configuration"""
        return {
            "source": "kegg",
            "gmt_file": None,
            "kegg_base_url": "https://rest.kegg.jp",
            "cache_max_age_days": 30,
            "subset": "sigmet",
            "signaling_only": False,
            "min_size": 10,
            "max_size": 500,
        }

    def _get_default_gsea(self) -> Dict[str, Any]:
        """Default GSEA configuration (gseKEGG settings)"""
        return {
            "n_perm": 1000,
            "min_size": 20,
            "max_size": 500,
            "exponent": 1.0,
            "pvalue_cutoff": 0.05,
            "p_adjust_method": "fdr_bh",
        }

    def _get_default_gage(self) -> Dict[str, Any]:
        """Default GAGE configuration"""
        return {
            "same_dir": True,
            "min_size": 10,
            "max_size": 500,
            "cutoff": 0.1,
            "qpval": "q.val",
        }

    def _get_default_spia(self) -> Dict[str, Any]:
        """Default SPIA configuration"""
        return {
            "n_boot": 2000,
            "combine": "fisher",
            "kgml_dir": None,
            "fdr_cutoff": 0.05,
            "pathway_ids": None,  # Defaults to every pathway with a gene set
        }

    def _get_default_pathview(self) -> Dict[str, Any]:
        """Default pathway rendering configuration"""
        return {
            "top_n": 3,
            "limit": 1.0,
            "low": "green",
            "mid": "gray",
            "high": "red",
            "bins": 10,
            "suffix": "fcsflow",
            "use_kegg_image": True,
        }

    def _get_default_coexpression(self) -> Dict[str, Any]:
        """Default WGCNA-style co-expression configuration"""
        return {
            "powers": list(range(1, 11)) + list(range(12, 21, 2)),
            "network_type": "unsigned",
            "r2_cutoff": 0.85,
            "min_module_size": 30,
            "cut_height": None,
        }

    def _get_default_r_config(self) -> Dict[str, Any]:
        """Default R configuration"""
        return {
            "r_executable": "R",
            "r_home": None,  # Auto-detect
            "timeout": 3600,
            "cran_repo": "https://cloud.r-project.org",
            "required_packages": [
                "clusterProfiler",
                "org.Hs.eg.db",
                "gage",
                "gageData",
                "SPIA",
                "pathview",
            ],
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_file: Union[str, Path]) -> Config:
    """Load configuration from YAML or JSON file"""
    config_path = Path(config_file)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    logger.info(f"Loading configuration from {config_path}")

    with open(config_path, "r") as f:
        if config_path.suffix.lower() in [".yaml", ".yml"]:
            config_dict = yaml.safe_load(f) or {}
        elif config_path.suffix.lower() == ".json":
            config_dict = json.load(f)
        else:
            raise ConfigurationError(
                f"Unsupported config file format: {config_path.suffix}"
            )

    try:
        return Config(**config_dict)
    except TypeError as e:
        raise ConfigurationError(f"Invalid configuration in {config_path}: {e}") from e


def save_config(config: Config, output_file: Union[str, Path]) -> None:
    """Save configuration to YAML or JSON file (chosen by suffix)"""
    output_path = Path(output_file)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.to_dict()

    with open(output_path, "w") as f:
        if output_path.suffix.lower() == ".json":
            json.dump(config_dict, f, indent=2)
        else:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    logger.info(f"Configuration saved to {output_path}")


def validate_config(config: Config) -> List[str]:
    """Validate configuration and return list of issues"""
    issues = []

    if config.output_dir:
        try:
            Path(config.output_dir).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            issues.append(f"Cannot create output directory {config.output_dir}: {e}")
    else:
        issues.append("An output directory must be specified")

    if config.n_jobs == 0:
        issues.append("n_jobs must be non-zero (-1 uses all cores)")

    padj_cutoff = config.expression.get("padj_cutoff")
    if padj_cutoff is None or not 0 < padj_cutoff <= 1:
        issues.append("expression.padj_cutoff must be in (0, 1]")

    if config.expression.get("lfc_cutoff", 0) < 0:
        issues.append("expression.lfc_cutoff must be non-negative")

    for section in ("gene_sets", "gsea", "gage"):
        params = getattr(config, section)
        if params["min_size"] < 1 or params["max_size"] < params["min_size"]:
            issues.append(f"{section}: require 1 <= min_size <= max_size")

    if config.gsea["n_perm"] < 1:
        issues.append("gsea.n_perm must be positive")

    if config.gsea["p_adjust_method"] not in P_ADJUST_METHODS:
        issues.append(
            f"gsea.p_adjust_method must be one of {', '.join(P_ADJUST_METHODS)}"
        )

    if config.spia["n_boot"] < 1:
        issues.append("spia.n_boot must be positive")

    if config.spia["combine"] not in SPIA_COMBINE_METHODS:
        issues.append(
            f"spia.combine must be one of {', '.join(SPIA_COMBINE_METHODS)}"
        )

    if config.pathview["limit"] <= 0:
        issues.append("pathview.limit must be positive")

    gmt_file = config.gene_sets.get("gmt_file")
    if config.gene_sets["source"] == "gmt":
        if not gmt_file:
            issues.append("gene_sets.gmt_file is required when source is 'gmt'")
        elif not Path(gmt_file).exists():
            issues.append(f"GMT file does not exist: {gmt_file}")
    elif config.gene_sets["source"] != "kegg":
        issues.append("gene_sets.source must be 'kegg' or 'gmt'")

    if config.gene_sets.get("subset") not in KEGG_SUBSETS:
        issues.append(f"gene_sets.subset must be one of {', '.join(KEGG_SUBSETS)}")

    kgml_dir = config.spia.get("kgml_dir")
    if kgml_dir and not Path(kgml_dir).is_dir():
        issues.append(f"KGML directory does not exist: {kgml_dir}")

    return issues


def get_default_config() -> Config:
    """Get default configuration object"""
    return Config()
