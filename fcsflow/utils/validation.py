"""
Environment and input checks for FCSFlow
"""

import importlib
import logging
import os
import platform
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .r_utils import RInterface

logger = logging.getLogger(__name__)

# Import names, not distribution names
CORE_PYTHON_PACKAGES = [
    "numpy",
    "pandas",
    "scipy",
    "statsmodels",
    "matplotlib",
    "seaborn",
    "networkx",
    "requests",
    "sklearn",
    "joblib",
]

R_PACKAGES = ["clusterProfiler", "org.Hs.eg.db", "gage", "gageData", "SPIA", "pathview"]

DE_SUFFIXES = {".csv", ".tsv", ".txt", ".tab", ".xlsx", ".xls", ".gz"}


def validate_python_packages(packages: List[str]) -> Dict[str, bool]:
    """
    Check if Python packages are importable

    Args:
        packages: List of import names

    Returns:
        Dictionary mapping package names to availability status
    """
    results = {}

    for package in packages:
        try:
            importlib.import_module(package)
            results[package] = True
        except ImportError:
            results[package] = False
        logger.debug(f"Package {package}: {'available' if results[package] else 'missing'}")

    return results


def validate_r_environment(
    packages: Optional[List[str]] = None, r_config: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """
    Status of R and of the Bioconductor packages used by the R backend

    Returns:
        Dictionary with r_available, r_version and per-package status
    """
    packages = packages or R_PACKAGES
    r_interface = RInterface(r_config)

    results = {"r_available": False, "r_version": None, "packages": {}}

    if not r_interface.check_r_available():
        logger.debug("R not found")
        return results

    results["r_available"] = True
    results["r_version"] = r_interface.get_r_version()
    results["packages"] = r_interface.check_packages(packages)

    return results


def validate_environment(check_r: bool = False) -> List[str]:
    """
    Environment validation

    Args:
        check_r: Also check the optional R backend

    Returns:
        List of validation issues found
    """
    issues = []

    logger.info("Validating FCSFlow environment...")

    if sys.version_info < (3, 8):
        issues.append(
            f"Python 3.8+ required, found {sys.version_info.major}.{sys.version_info.minor}"
        )

    package_status = validate_python_packages(CORE_PYTHON_PACKAGES)
    missing_packages = [pkg for pkg, ok in package_status.items() if not ok]
    if missing_packages:
        issues.append(f"Missing Python packages: {', '.join(missing_packages)}")

    if check_r:
        r_results = validate_r_environment()
        if not r_results["r_available"]:
            issues.append("R not available")
        else:
            missing_r = [pkg for pkg, ok in r_results["packages"].items() if not ok]
            if missing_r:
                issues.append(f"Missing R packages: {', '.join(missing_r)}")

    if issues:
        logger.warning(f"Environment validation found {len(issues)} issues")
        for issue in issues:
            logger.warning(f"  - {issue}")
    else:
        logger.info("Environment validation passed")

    return issues


def validate_output_permissions(output_dir: Union[str, Path]) -> bool:
    """Check if output directory is writable"""
    try:
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        test_file = output_path / ".write_test"
        test_file.write_text("test")
        test_file.unlink()

        return True

    except OSError as e:
        logger.error(f"Output directory not writable: {e}")
        return False


def validate_inputs(config, de_file: Optional[Union[str, Path]] = None) -> List[str]:
    """
    Check the files a pipeline run will read before any step starts

    Covers the DE table, the GMT file when gene sets come from GMT, the
    KGML directory when one is configured, and the output directory.

    Args:
        config: FCSFlow Config
        de_file: DE result table, if already known

    Returns:
        List of problems (empty when every input is usable)
    """
    issues = []

    if de_file is not None:
        path = Path(de_file)
        if not path.is_file():
            issues.append(f"DE results file not found: {path}")
        elif path.suffix.lower() not in DE_SUFFIXES:
            issues.append(f"Unrecognised DE table format: {path.suffix}")

    if config.gene_sets.get("source") == "gmt":
        gmt_file = config.gene_sets.get("gmt_file")
        if not gmt_file:
            issues.append("gene_sets.source is 'gmt' but gene_sets.gmt_file is not set")
        elif not Path(gmt_file).is_file():
            issues.append(f"GMT file not found: {gmt_file}")

    kgml_dir = config.spia.get("kgml_dir")
    if kgml_dir:
        kgml_path = Path(kgml_dir)
        if not kgml_path.is_dir():
            issues.append(f"KGML directory not found: {kgml_dir}")
        elif not any(kgml_path.glob("*.xml")):
            logger.warning(f"No KGML files in {kgml_dir}; pathways will be downloaded")

    if config.output_dir and not validate_output_permissions(config.output_dir):
        issues.append(f"Output directory not writable: {config.output_dir}")

    for issue in issues:
        logger.warning(f"  - {issue}")
    return issues


def get_system_info() -> Dict[str, Any]:
    """Platform, interpreter and R-related environment variables"""
    info = {
        "platform": platform.platform(),
        "python_version": platform.python_version(),
        "python_executable": sys.executable,
        "working_directory": os.getcwd(),
    }

    relevant_env_vars = ["R_HOME", "R_LIBS", "R_LIBS_USER", "VIRTUAL_ENV", "CONDA_PREFIX"]
    info["environment_variables"] = {
        var: os.environ[var] for var in relevant_env_vars if var in os.environ
    }

    return info
