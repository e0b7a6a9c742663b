"""
R integration utilities for FCSFlow

R is driven through the command line (``R --slave``); nothing is embedded
in the Python process.
"""

import logging
import os
import re
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

BIOCONDUCTOR_PACKAGES = {
    "clusterProfiler",
    "org.Hs.eg.db",
    "org.Mm.eg.db",
    "DOSE",
    "enrichplot",
    "gage",
    "gageData",
    "SPIA",
    "pathview",
    "AnnotationDbi",
    "WGCNA",
}

PACKAGE_STATUS_RE = re.compile(r"^([A-Za-z][\w.]*):(TRUE|FALSE)$")


def _r_vector(values: List[str]) -> str:
    return "c(" + ", ".join(f'"{v}"' for v in values) + ")"


class RInterface:
    """Interface for running R code from Python"""

    def __init__(self, r_config: Optional[Dict[str, Any]] = None):
        """
        Initialize R interface

        Args:
            r_config: R configuration dictionary (r_executable, r_home,
                timeout, cran_repo)
        """
        self.r_config = r_config or {}
        self.r_executable = self.r_config.get("r_executable") or "R"
        self.timeout = self.r_config.get("timeout", 3600)
        self.cran_repo = self.r_config.get("cran_repo", "https://cloud.r-project.org")
        self.r_home = self.r_config.get("r_home")

        if self.r_home:
            os.environ["R_HOME"] = self.r_home

    def _call(
        self, args: List[str], timeout: int, cwd: Optional[Path] = None
    ) -> Optional[subprocess.CompletedProcess]:
        """Run R with args; None when R is missing or the call times out"""
        try:
            return subprocess.run(
                [self.r_executable] + args,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError:
            logger.warning(f"R executable '{self.r_executable}' not found in PATH")
        except subprocess.TimeoutExpired:
            logger.error(f"R call timed out after {timeout} seconds: {' '.join(args[:2])}")
        return None

    def check_r_available(self) -> bool:
        """Check if R is available"""
        result = self._call(["--version"], timeout=10)
        return result is not None and result.returncode == 0

    def get_r_version(self) -> Optional[str]:
        """Return the 'R version ...' line, or None when R is missing"""
        result = self._call(["--version"], timeout=10)
        if result is None:
            return None

        for line in result.stdout.splitlines():
            if line.startswith("R version"):
                return line.strip()
        return None

    def check_packages(self, packages: List[str]) -> Dict[str, bool]:
        """
        Check which R packages can be loaded

        Args:
            packages: Package names

        Returns:
            Dictionary of package name -> installed status
        """
        status = {pkg: False for pkg in packages}
        if not packages or not self.check_r_available():
            return status

        check_script = (
            f"pkgs <- {_r_vector(packages)}; "
            "ok <- vapply(pkgs, requireNamespace, logical(1), quietly = TRUE); "
            "cat(paste(pkgs, ok, sep = ':'), sep = '\\n')"
        )
        result = self._call(["--slave", "-e", check_script], timeout=120)
        if result is None or result.returncode != 0:
            logger.error(
                f"Error checking R packages: {result.stderr if result else 'no response'}"
            )
            return status

        for line in result.stdout.splitlines():
            match = PACKAGE_STATUS_RE.match(line.strip())
            if match:
                status[match.group(1)] = match.group(2) == "TRUE"
        return status

    def install_packages(self, packages: List[str]) -> List[str]:
        """
        Install R packages, Bioconductor ones through BiocManager

        Args:
            packages: Package names to install

        Returns:
            Packages that failed to install
        """
        if not self.check_r_available():
            logger.error("R not available for package installation")
            return list(packages)

        bioc = [pkg for pkg in packages if pkg in BIOCONDUCTOR_PACKAGES]
        cran = [pkg for pkg in packages if pkg not in BIOCONDUCTOR_PACKAGES]
        failed = []

        if cran:
            script = f'install.packages({_r_vector(cran)}, repos = "{self.cran_repo}")'
            if not self._install(script, timeout=600):
                failed.extend(cran)

        if bioc:
            script = (
                'if (!requireNamespace("BiocManager", quietly = TRUE)) '
                f'install.packages("BiocManager", repos = "{self.cran_repo}"); '
                f"BiocManager::install({_r_vector(bioc)}, ask = FALSE, update = FALSE)"
            )
            if not self._install(script, timeout=1800):
                failed.extend(bioc)

        # install.packages exits 0 on failure, so confirm by loading
        still_missing = [p for p, ok in self.check_packages(packages).items() if not ok]
        return sorted(set(failed) | set(still_missing))

    def _install(self, script: str, timeout: int) -> bool:
        logger.info(f"Installing R packages: {script}")
        result = self._call(["--slave", "-e", script], timeout=timeout)
        if result is None:
            return False
        if result.returncode != 0:
            logger.error(f"Error installing R packages: {result.stderr}")
            return False
        return True

    def run_script(
        self, r_code: str, working_dir: Optional[Union[str, Path]] = None
    ) -> Dict[str, Any]:
        """
        Write R code to a temporary .R file and run it

        Args:
            r_code: R code to execute
            working_dir: Working directory for R script

        Returns:
            Dictionary with execution results
        """
        if working_dir is None:
            working_dir = tempfile.mkdtemp(prefix="fcsflow_r_")

        working_dir = Path(working_dir)
        working_dir.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            mode="w", suffix=".R", delete=False, dir=working_dir
        ) as f:
            f.write(r_code)
            script_path = f.name

        return self.run_script_file(script_path, working_dir)

    def run_script_file(
        self, script_path: Union[str, Path], working_dir: Optional[Union[str, Path]] = None
    ) -> Dict[str, Any]:
        """Run an existing R script file with R --slave --vanilla -f"""
        script_path = str(script_path)
        working_dir = Path(working_dir) if working_dir else Path(script_path).parent
        outcome = {
            "success": False,
            "output": None,
            "error": None,
            "working_dir": str(working_dir),
            "script_path": script_path,
        }

        try:
            result = subprocess.run(
                [self.r_executable, "--slave", "--vanilla", "-f", script_path],
                cwd=str(working_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            outcome["error"] = "R script execution timed out"
            return outcome
        except FileNotFoundError:
            outcome["error"] = "R not available"
            return outcome

        outcome["success"] = result.returncode == 0
        outcome["output"] = result.stdout
        if result.returncode != 0:
            outcome["error"] = result.stderr
        return outcome
