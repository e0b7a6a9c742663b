"""
R backend for pathway analysis

Generates R scripts that call clusterProfiler (gseKEGG), gage, SPIA and
pathview on the fold-change vector, runs them with R, and reads the
exported tables back into FCSFlow result objects.
"""

import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import pandas as pd

from ..config import Config
from ..exceptions import RIntegrationError
from ..genesets.kegg import resolve_subset
from ..utils import RInterface, get_logger
from .gsea import GSEA_COLUMNS
from .results import PathwayEnrichmentResult

logger = get_logger(__name__)

PACKAGES_BY_METHOD = {
    "gsea": ["clusterProfiler"],
    "gage": ["gage"],
    "spia": ["SPIA"],
    "pathview": ["pathview"],
}

# kegg.gsets index vector for each KEGG subset
GAGE_SUBSET_INDEX = {
    "all": "seq_along(kg$kg.sets)",
    "sigmet": "kg$sigmet.idx",
    "signaling": "kg$sig.idx",
    "metabolism": "kg$met.idx",
    "disease": "kg$dise.idx",
}


def _r_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def _r_path(path: Union[str, Path]) -> str:
    return Path(path).absolute().as_posix()


class RPathwayInterface:
    """Interface for R-based pathway analysis"""

    def __init__(self, config: Config):
        """
        Initialize R pathway interface

        Args:
            config: FCSFlow configuration object
        """
        self.config = config
        self.r_config = config.r_config
        self.r = RInterface(self.r_config)
        self.required_packages = list(self.r_config.get("required_packages", []))

        self.output_dir = Path(config.output_dir or ".") / "r_backend"
        self.data_dir = self.output_dir / "data"
        self.r_scripts_dir = self.output_dir / "r_scripts"

        for directory in (self.output_dir, self.data_dir, self.r_scripts_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def validate_r_environment(self, packages: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Validate R environment and required packages

        Returns:
            Dictionary with validation results
        """
        packages = packages or self.required_packages
        logger.info("Validating R environment for pathway analysis...")

        validation_results = {
            "r_available": self.r.check_r_available(),
            "r_version": None,
            "missing_packages": [],
            "available_packages": [],
            "validation_passed": False,
        }

        if not validation_results["r_available"]:
            logger.error("R not found or not accessible")
            validation_results["missing_packages"] = list(packages)
            return validation_results

        validation_results["r_version"] = self.r.get_r_version()
        status = self.r.check_packages(packages)
        validation_results["available_packages"] = [p for p, ok in status.items() if ok]
        validation_results["missing_packages"] = [p for p, ok in status.items() if not ok]
        validation_results["validation_passed"] = not validation_results["missing_packages"]

        if validation_results["validation_passed"]:
            logger.info("R environment validation passed")
        else:
            logger.warning(
                f"R environment validation failed. Missing packages: "
                f"{validation_results['missing_packages']}"
            )
        return validation_results

    def _require(self, method: str) -> None:
        validation = self.validate_r_environment(PACKAGES_BY_METHOD[method])
        if not validation["validation_passed"]:
            raise RIntegrationError(
                f"R backend for {method} unavailable; missing: {validation['missing_packages']}"
            )

    def _write_vector(self, values: pd.Series, name: str) -> Path:
        path = self.data_dir / f"{name}.csv"
        pd.DataFrame(
            {"entrez": values.index.astype(str), "log2FoldChange": values.to_numpy()}
        ).to_csv(path, index=False)
        return path

    def _run(self, script: str, name: str) -> Dict[str, Any]:
        script_file = self.r_scripts_dir / f"{self.config.comparison_name}_{name}.R"
        with open(script_file, "w") as f:
            f.write(script)

        logger.info(f"Running R analysis script: {script_file}")
        result = self.r.run_script_file(script_file, working_dir=self.output_dir)
        if not result["success"]:
            raise RIntegrationError(f"R {name} analysis failed: {result['error']}")
        return result

    def _fold_change_loader(self, fc_file: Path) -> str:
        return f"""
        fc <- read.csv("{_r_path(fc_file)}", colClasses = c("character", "numeric"))
        foldchanges <- fc$log2FoldChange
        names(foldchanges) <- fc$entrez
        foldchanges <- sort(foldchanges, decreasing = TRUE)
        """

    def generate_gsekegg_script(self, fc_file: Path, output_csv: Path) -> str:
        """gseKEGG on the ranked fold-change vector"""
        params = self.config.gsea
        return f"""
        suppressPackageStartupMessages(library(clusterProfiler))
        {self._fold_change_loader(fc_file)}
        set.seed({self.config.random_seed})
        gseaKEGG <- gseKEGG(geneList = foldchanges,
                            organism = "{self.config.organism}",
                            by = "DOSE",
                            nPerm = {params['n_perm']},
                            minGSSize = {params['min_size']},
                            maxGSSize = {params['max_size']},
                            exponent = {params['exponent']},
                            pvalueCutoff = {params['pvalue_cutoff']},
                            verbose = FALSE)
        write.csv(as.data.frame(gseaKEGG@result), "{_r_path(output_csv)}", row.names = FALSE)
        cat("GSEA_DONE:", nrow(gseaKEGG@result), "\\n")
        """

    def generate_gage_script(self, fc_file: Path, output_prefix: Path) -> str:
        """gage on the configured KEGG subset (signaling and metabolic by default)"""
        params = self.config.gage
        subset = resolve_subset(
            self.config.gene_sets["subset"], self.config.gene_sets["signaling_only"]
        )
        return f"""
        suppressPackageStartupMessages(library(gage))
        {self._fold_change_loader(fc_file)}
        kg <- kegg.gsets(species = "{self.config.organism}", id.type = "kegg")
        kegg.sets <- kg$kg.sets[{GAGE_SUBSET_INDEX[subset]}]
        keggres <- gage(foldchanges, gsets = kegg.sets,
                        same.dir = {_r_bool(params['same_dir'])},
                        set.size = c({params['min_size']}, {params['max_size']}))
        write.csv(keggres$greater, "{_r_path(output_prefix)}_greater.csv")
        write.csv(keggres$less, "{_r_path(output_prefix)}_less.csv")
        cat("GAGE_DONE\\n")
        """

    def generate_spia_script(self, de_file: Path, all_file: Path, output_csv: Path) -> str:
        """spia on DE genes against the tested background"""
        params = self.config.spia
        return f"""
        suppressPackageStartupMessages(library(SPIA))
        de <- read.csv("{_r_path(de_file)}", colClasses = c("character", "numeric"))
        sig_genes <- de$log2FoldChange
        names(sig_genes) <- de$entrez
        background <- read.csv("{_r_path(all_file)}", colClasses = c("character", "numeric"))$entrez
        set.seed({self.config.random_seed})
        spia_result <- spia(de = sig_genes, all = background,
                            organism = "{self.config.organism}",
                            nB = {params['n_boot']}, plots = FALSE,
                            beta = NULL, combine = "{params['combine']}",
                            verbose = FALSE)
        write.csv(spia_result, "{_r_path(output_csv)}", row.names = FALSE)
        cat("SPIA_DONE:", nrow(spia_result), "\\n")
        """

    def generate_pathview_script(
        self, fc_file: Path, pathway_ids: Iterable[str], output_dir: Path
    ) -> str:
        """pathview for each pathway, rendered into output_dir"""
        params = self.config.pathview
        numbers = [re.sub(r"^[a-z]+", "", pid) for pid in pathway_ids]
        id_vector = ", ".join(f'"{n}"' for n in numbers)
        return f"""
        suppressPackageStartupMessages(library(pathview))
        {self._fold_change_loader(fc_file)}
        dir.create("{_r_path(output_dir)}", recursive = TRUE, showWarnings = FALSE)
        setwd("{_r_path(output_dir)}")
        for (pid in c({id_vector})) {{
            pathview(gene.data = foldchanges, pathway.id = pid,
                     species = "{self.config.organism}",
                     limit = list(gene = {params['limit']}, cpd = 1),
                     low = list(gene = "{params['low']}"),
                     mid = list(gene = "{params['mid']}"),
                     high = list(gene = "{params['high']}"),
                     bins = list(gene = {params['bins']}),
                     out.suffix = "{params['suffix']}")
        }}
        cat("PATHVIEW_DONE\\n")
        """

    def run_gsekegg(self, fold_changes: pd.Series) -> PathwayEnrichmentResult:
        """Run clusterProfiler::gseKEGG and read back the result table"""
        self._require("gsea")
        fc_file = self._write_vector(fold_changes, "foldchanges")
        output_csv = self.output_dir / "gseKEGG_results.csv"

        self._run(self.generate_gsekegg_script(fc_file, output_csv), "gseKEGG")

        table = pd.read_csv(output_csv).rename(columns={"qvalues": "qvalue"})
        table = table[[c for c in GSEA_COLUMNS if c in table.columns]]
        cutoff = self.config.gsea["pvalue_cutoff"]
        significant = table[table["p.adjust"] <= cutoff].reset_index(drop=True)

        return PathwayEnrichmentResult(
            method="gsea_r",
            database="KEGG",
            gene_count=len(fold_changes),
            significant_pathways=len(significant),
            results_df=significant,
            parameters=dict(self.config.gsea),
            all_results_df=table,
        )

    def run_gage(self, fold_changes: pd.Series) -> Dict[str, pd.DataFrame]:
        """Run gage::gage; returns the greater and less tables indexed by pathway id"""
        self._require("gage")
        fc_file = self._write_vector(fold_changes, "foldchanges")
        prefix = self.output_dir / "gage_kegg"

        self._run(self.generate_gage_script(fc_file, prefix), "gage")

        tables = {}
        for direction in ("greater", "less"):
            table = pd.read_csv(f"{prefix}_{direction}.csv", index_col=0)
            labels = table.index.astype(str)
            table.index = labels.str.split(" ", n=1).str[0]
            table.insert(0, "Description", labels.str.split(" ", n=1).str[1].fillna(""))
            tables[direction] = table
        return tables

    def run_spia(self, de: pd.Series, all_genes: Iterable[str]) -> PathwayEnrichmentResult:
        """Run SPIA::spia and read back the result table"""
        self._require("spia")
        de_file = self._write_vector(de, "de_genes")
        background = pd.Series(0.0, index=pd.Index([str(g) for g in all_genes]))
        all_file = self._write_vector(background, "all_genes")
        output_csv = self.output_dir / "spia_results.csv"

        self._run(self.generate_spia_script(de_file, all_file, output_csv), "spia")

        table = pd.read_csv(output_csv, dtype={"ID": str})
        table["ID"] = self.config.organism + table["ID"].str.zfill(5)
        cutoff = self.config.spia["fdr_cutoff"]
        significant = table[table["pGFdr"] <= cutoff].reset_index(drop=True)

        return PathwayEnrichmentResult(
            method="spia_r",
            database="KEGG",
            gene_count=len(de),
            significant_pathways=len(significant),
            results_df=significant,
            parameters=dict(self.config.spia),
            all_results_df=table,
        )

    def run_pathview(self, fold_changes: pd.Series, pathway_ids: List[str]) -> List[Path]:
        """Run pathview; returns the rendered PNG files"""
        self._require("pathview")
        fc_file = self._write_vector(fold_changes, "foldchanges")
        output_dir = self.output_dir / "pathview"

        self._run(self.generate_pathview_script(fc_file, pathway_ids, output_dir), "pathview")

        suffix = self.config.pathview["suffix"]
        images = sorted(output_dir.glob(f"*.{suffix}.png"))
        logger.info(f"pathview rendered {len(images)} diagrams in {output_dir}")
        return images


def validate_r_environment(config: Optional[Config] = None) -> Dict[str, Any]:
    """
    Validate R environment for pathway analysis

    Args:
        config: Optional configuration object

    Returns:
        Dictionary with validation results
    """
    if config is None:
        from ..config import get_default_config

        config = get_default_config()

    interface = RPathwayInterface(config)
    return interface.validate_r_environment()
