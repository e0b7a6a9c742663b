"""
FCSFlow: functional class scoring of differential expression results

FCSFlow is a Python package for pathway analysis of RNA-seq differential
expression results. It takes a DESeq2/edgeR/limma result table through
identifier conversion to a ranked fold-change vector and scores pathways
with several complementary methods.

Main Components:
- Identifier conversion (Ensembl / symbol to Entrez) via BioMart
- KEGG and GMT gene set collections
- Pre-ranked GSEA (clusterProfiler gseKEGG semantics)
- GAGE generally applicable gene-set enrichment
- SPIA signaling pathway impact analysis on KEGG topology
- Pathway diagrams coloured by fold change (pathview)
- WGCNA-style co-expression modules and GeneMANIA queries

Example:
    >>> from fcsflow import FCSFlowAnalysis
    >>> analysis = FCSFlowAnalysis(config="config.yaml")
    >>> results = analysis.run_full_pipeline("deseq2_results.csv")
"""

import logging
import sys
from importlib import metadata
from typing import Any, Dict

try:
    __version__ = metadata.version("fcsflow")
except metadata.PackageNotFoundError:
    __version__ = "0.1.0-dev"

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
)

# Module imports
from . import enrichment, expression, genesets, network, topology, utils
from .config import Config, load_config
# Main imports
from .core import FCSFlowAnalysis
from .utils import setup_logging, validate_environment

__all__ = [
    "__version__",
    "FCSFlowAnalysis",
    "Config",
    "load_config",
    "setup_logging",
    "validate_environment",
    "expression",
    "genesets",
    "enrichment",
    "topology",
    "network",
    "utils",
]


def get_info() -> Dict[str, Any]:
    """Get package information."""
    return {
        "name": "FCSFlow",
        "version": __version__,
        "description": "Functional class scoring pipeline for differential expression results",
        "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        "modules": __all__[6:],
    }


def check_dependencies() -> Dict[str, bool]:
    """Check if key dependencies are available."""
    dependencies = {}

    for module_name in ("numpy", "pandas", "scipy", "statsmodels", "networkx", "sklearn"):
        try:
            __import__(module_name)
            dependencies[module_name] = True
        except ImportError:
            dependencies[module_name] = False

    return dependencies


# Initialize package
logger = logging.getLogger(__name__)
logger.info(f"FCSFlow v{__version__} initialized")

deps = check_dependencies()
missing_deps = [dep for dep, available in deps.items() if not available]
if missing_deps:
    logger.warning(f"Missing dependencies: {missing_deps}")
    logger.info("Run 'pip install fcsflow' to install all dependencies")
