"""
Core FCSFlow analysis orchestrator
"""

import json
import pickle
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from .config import Config, load_config, validate_config
from .enrichment import (PathwayEnrichmentResult, PathwayPlotter,
                         create_pathway_plots, run_gage, run_gsea)
from .exceptions import AnnotationServiceError, DataValidationError
from .expression import (IdentifierMapper, background_genes,
                         build_fold_change_vector, classify_genes,
                         load_de_results, significant_genes)
from .genesets import GeneSetCollection, KEGGClient, kegg_gene_sets
from .network import CoexpressionNetwork, export_query
from .topology import (PathwayGraph, load_pathway_graphs, parse_kgml,
                       plot_two_way_evidence, render_pathways, run_spia)
from .utils import (get_logger, setup_logging, validate_environment,
                    validate_inputs)

logger = get_logger(__name__)

DEFAULT_STEPS = ["load", "id_mapping", "gsea", "gage", "spia", "pathview", "summary"]
OPTIONAL_STEPS = ["genemania"]


class FCSFlowAnalysis:
    """
    Main orchestrator for the FCSFlow functional class scoring pipeline

    Runs the workflow from a differential expression table through
    identifier mapping, GSEA, GAGE, SPIA and pathway rendering.
    """

    def __init__(
        self,
        config: Optional[Union[str, Path, Config, Dict[str, Any]]] = None,
        log_level: str = "INFO",
        log_file: Optional[Union[str, Path]] = None,
    ):
        """
        Initialize FCSFlow analysis

        Args:
            config: Configuration file path, Config object, config dict, or
                None for the defaults
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path
        """
        setup_logging(level=log_level, log_file=log_file)
        logger.info("Initializing FCSFlow analysis pipeline")

        if config is None:
            self.config = Config()
        elif isinstance(config, (str, Path)):
            self.config = load_config(config)
        elif isinstance(config, dict):
            self.config = Config(**config)
        elif isinstance(config, Config):
            self.config = config
        else:
            raise ValueError(
                "Invalid config type. Expected str, Path, dict, or Config object"
            )

        self._validate_environment()
        self._initialize_components()

        # Pipeline state
        self.de_table: Optional[pd.DataFrame] = None
        self.fold_changes: Optional[pd.Series] = None
        self.gene_sets: Optional[GeneSetCollection] = None
        self.pathway_graphs: Dict[str, PathwayGraph] = {}
        self.enrichment_results: Dict[str, PathwayEnrichmentResult] = {}
        self.gage_result = None

        self.results: Dict[str, Any] = {}
        self.execution_times: Dict[str, float] = {}

        logger.info("FCSFlow pipeline initialized successfully")

    @property
    def output_dir(self) -> Path:
        """Per-comparison results directory"""
        return Path(self.config.output_dir or ".") / self.config.comparison_name

    def _validate_environment(self) -> None:
        logger.info("Validating environment...")

        issues = validate_config(self.config)
        if issues:
            logger.warning("Configuration issues found:")
            for issue in issues:
                logger.warning(f"  - {issue}")

        env_issues = validate_environment()
        if env_issues:
            logger.warning("Environment issues found:")
            for issue in env_issues:
                logger.warning(f"  - {issue}")

    def _initialize_components(self) -> None:
        cache_dir = self.config.cache_path if self.config.id_mapping["use_cache"] else None

        self.mapper = IdentifierMapper(
            dataset=self.config.id_mapping["dataset"],
            cache_dir=cache_dir,
            biomart_url=self.config.id_mapping["biomart_url"],
            timeout=self.config.id_mapping["timeout"],
        )
        self.kegg = KEGGClient(
            organism=self.config.organism,
            cache_dir=cache_dir,
            base_url=self.config.gene_sets["kegg_base_url"],
            cache_max_age_days=self.config.gene_sets["cache_max_age_days"],
        )

    def run_full_pipeline(
        self,
        de_file: Union[str, Path],
        steps: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Run the FCSFlow analysis pipeline

        Args:
            de_file: Differential expression results (CSV/TSV/XLSX)
            steps: Pipeline steps to run (all default steps if None)

        Returns:
            Dictionary of step results; failed steps hold
            {"success": False, "error": ...}
        """
        logger.info("=" * 60)
        logger.info("Starting FCSFlow analysis pipeline")
        logger.info("=" * 60)

        start_time = time.time()
        steps = steps or list(DEFAULT_STEPS)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        input_issues = validate_inputs(self.config, de_file)
        if input_issues:
            logger.warning(f"{len(input_issues)} input problems; affected steps will fail")

        for step in steps:
            try:
                step_start = time.time()
                logger.info(f"{'=' * 20} STEP: {step.upper()} {'=' * 20}")

                if step == "load":
                    self.results["load"] = self.run_load(de_file)
                elif step == "id_mapping":
                    self.results["id_mapping"] = self.run_id_mapping()
                elif step == "gsea":
                    self.results["gsea"] = self.run_gsea()
                elif step == "gage":
                    self.results["gage"] = self.run_gage()
                elif step == "spia":
                    self.results["spia"] = self.run_spia()
                elif step == "pathview":
                    self.results["pathview"] = self.run_pathview()
                elif step == "genemania":
                    self.results["genemania"] = self.run_genemania()
                elif step == "summary":
                    self.results["summary"] = self.run_summary()
                else:
                    logger.warning(f"Unknown pipeline step: {step}")
                    continue

                step_time = time.time() - step_start
                self.execution_times[step] = step_time
                logger.info(f"Step {step} completed in {step_time:.2f} seconds")

            except Exception as e:
                logger.error(f"Step {step} failed: {e}", exc_info=True)
                self.results[step] = {"success": False, "error": str(e)}

        total_time = time.time() - start_time
        self.execution_times["total"] = total_time

        self._create_pipeline_summary()

        logger.info("=" * 60)
        logger.info(f"FCSFlow pipeline completed in {total_time:.2f} seconds")
        logger.info("=" * 60)

        return self.results

    def _require_fold_changes(self) -> pd.Series:
        if self.fold_changes is None:
            raise RuntimeError("id_mapping must be run before enrichment steps")
        if self.fold_changes.empty:
            raise DataValidationError("Fold-change vector is empty")
        return self.fold_changes

    def run_load(self, de_file: Union[str, Path]) -> Dict[str, Any]:
        """Load and classify the DE table"""
        params = self.config.expression
        de_results = load_de_results(
            de_file,
            gene_column=params["gene_column"],
            comparison_name=self.config.comparison_name,
        )
        self.de_table = classify_genes(
            de_results.table,
            padj_cutoff=params["padj_cutoff"],
            lfc_cutoff=params["lfc_cutoff"],
        )
        counts = self.de_table["direction"].value_counts()

        return {
            "success": True,
            "n_genes": len(self.de_table),
            "n_up": int(counts.get("up", 0)),
            "n_down": int(counts.get("down", 0)),
            "source_file": str(de_results.source_file),
        }

    def run_id_mapping(self) -> Dict[str, Any]:
        """Add Entrez ids and build the fold-change vector"""
        if self.de_table is None:
            raise RuntimeError("load must be run before id_mapping")

        id_column = self.config.expression["id_column"]
        if id_column in self.de_table.columns and self.de_table[id_column].notna().any():
            logger.info(f"DE table already carries '{id_column}' identifiers")
            report = None
        else:
            self.de_table = self.mapper.annotate(
                self.de_table, id_type=self.config.id_mapping["source_id_type"]
            )
            report = self.mapper.report

        self.fold_changes = build_fold_change_vector(self.de_table, id_column=id_column)

        self.output_dir.mkdir(parents=True, exist_ok=True)
        annotated_file = self.output_dir / "annotated_de_results.csv"
        self.de_table.to_csv(annotated_file, index=False)
        fc_file = self.output_dir / "fold_changes.csv"
        self.fold_changes.to_csv(fc_file, header=True)

        return {
            "success": True,
            "n_genes": len(self.fold_changes),
            "report": report.to_dict() if report else None,
            "files": {"annotated": annotated_file, "fold_changes": fc_file},
        }

    def load_gene_sets(self) -> GeneSetCollection:
        """Gene sets from the configured GMT file or KEGG subset, size filtered"""
        if self.gene_sets is not None:
            return self.gene_sets

        params = self.config.gene_sets
        if params["source"] == "gmt":
            gene_sets = GeneSetCollection.from_gmt(params["gmt_file"])
        else:
            gene_sets = kegg_gene_sets(
                subset=params["subset"],
                signaling_only=params["signaling_only"],
                client=self.kegg,
            )

        self.gene_sets = gene_sets.filter_by_size(params["min_size"], params["max_size"])
        return self.gene_sets

    def run_gsea(self) -> Dict[str, Any]:
        """Pre-ranked GSEA over the fold-change vector"""
        fold_changes = self._require_fold_changes()
        gene_sets = self.load_gene_sets()
        params = self.config.gsea

        result = run_gsea(
            fold_changes,
            gene_sets,
            n_perm=params["n_perm"],
            min_size=params["min_size"],
            max_size=params["max_size"],
            exponent=params["exponent"],
            pvalue_cutoff=params["pvalue_cutoff"],
            p_adjust_method=params["p_adjust_method"],
            seed=self.config.random_seed,
            n_jobs=self.config.n_jobs,
        )
        self.enrichment_results["gsea"] = result

        output_dir = self.output_dir / "gsea"
        files = result.save_results(output_dir)

        if not result.results_df.empty:
            top = result.results_df.iloc[0]
            plotter = PathwayPlotter(output_dir)
            result.plot_paths["gseaplot"] = plotter.plot_gsea_running_score(
                fold_changes,
                gene_sets.get(top["ID"]),
                top["ID"],
                title=top["Description"],
                exponent=params["exponent"],
            )

        return {"success": True, "result": result, "files": files}

    def run_gage(self) -> Dict[str, Any]:
        """GAGE on the fold-change vector, both directions"""
        fold_changes = self._require_fold_changes()
        gene_sets = self.load_gene_sets()
        params = self.config.gage

        self.gage_result = run_gage(
            fold_changes,
            gene_sets,
            same_dir=params["same_dir"],
            min_size=params["min_size"],
            max_size=params["max_size"],
        )

        output_dir = self.output_dir / "gage"
        files = {}
        directions = ["greater", "less"] if params["same_dir"] else ["greater"]
        for direction in directions:
            result = self.gage_result.to_enrichment_result(
                direction,
                cutoff=params["cutoff"],
                qpval=params["qpval"],
                descriptions=gene_sets.descriptions,
            )
            self.enrichment_results[result.method] = result
            files[direction] = result.save_results(output_dir)

        heatmap = PathwayPlotter(output_dir).plot_gage_heatmap(
            self.gage_result, descriptions=gene_sets.descriptions
        )

        return {
            "success": True,
            "result": self.gage_result,
            "files": files,
            "heatmap": heatmap,
        }

    def load_pathway_graphs(
        self, pathway_ids: Optional[List[str]] = None
    ) -> Dict[str, PathwayGraph]:
        """
        KGML graphs from the configured directory, downloading missing ones

        Args:
            pathway_ids: Pathways required (all in kgml_dir if None)
        """
        kgml_dir = self.config.spia.get("kgml_dir")
        if kgml_dir and not self.pathway_graphs:
            self.pathway_graphs.update(load_pathway_graphs(kgml_dir))

        if pathway_ids is None:
            if self.pathway_graphs:
                return dict(self.pathway_graphs)
            pathways = self.kegg.list_pathways()
            pathway_ids = list(pathways.loc[pathways["category"] != "metabolism", "ID"])

        missing = [pid for pid in pathway_ids if pid not in self.pathway_graphs]
        if missing:
            download_dir = self.output_dir / "kgml"
            for path in self.kegg.download_kgml(missing, download_dir):
                try:
                    graph = parse_kgml(path.read_text())
                except DataValidationError as e:
                    logger.warning(f"Skipping {path.name}: {e}")
                    continue
                self.pathway_graphs[graph.pathway_id] = graph

        return {
            pid: self.pathway_graphs[pid]
            for pid in pathway_ids
            if pid in self.pathway_graphs
        }

    def run_spia(self) -> Dict[str, Any]:
        """SPIA on the DE genes against all tested genes"""
        if self.de_table is None:
            raise RuntimeError("load and id_mapping must be run before spia")

        expression = self.config.expression
        params = self.config.spia
        de = significant_genes(
            self.de_table,
            padj_cutoff=expression["padj_cutoff"],
            lfc_cutoff=expression["lfc_cutoff"],
            id_column=expression["id_column"],
        )
        all_genes = background_genes(self.de_table, id_column=expression["id_column"])
        graphs = self.load_pathway_graphs(params.get("pathway_ids"))

        result = run_spia(
            de,
            all_genes,
            graphs,
            n_boot=params["n_boot"],
            combine=params["combine"],
            seed=self.config.random_seed,
            n_jobs=self.config.n_jobs,
            fdr_cutoff=params["fdr_cutoff"],
        )
        self.enrichment_results["spia"] = result

        output_dir = self.output_dir / "spia"
        files = result.save_results(output_dir)
        if not result.full_table.empty:
            result.plot_paths["two_way"] = plot_two_way_evidence(
                result.full_table,
                output_dir / "spia_two_way_evidence.pdf",
                threshold=params["fdr_cutoff"],
            )

        return {"success": True, "result": result, "files": files}

    def select_pathview_pathways(self) -> List[str]:
        """Top pathways to render: GAGE hits first, then GSEA hits"""
        top_n = self.config.pathview["top_n"]
        selected: List[str] = []

        for key in ("gage_greater", "gage_less", "gsea", "spia"):
            result = self.enrichment_results.get(key)
            if result is None or result.results_df.empty:
                continue
            for pathway_id in result.results_df["ID"].head(top_n):
                if pathway_id not in selected:
                    selected.append(pathway_id)
        return selected

    def run_pathview(self, pathway_ids: Optional[List[str]] = None) -> Dict[str, Any]:
        """Render the selected pathways coloured by fold change"""
        fold_changes = self._require_fold_changes()
        params = self.config.pathview

        pathway_ids = pathway_ids or self.select_pathview_pathways()
        if not pathway_ids:
            logger.warning("No significant pathways to render")
            return {"success": True, "images": []}

        graphs = self.load_pathway_graphs(pathway_ids)

        backgrounds = {}
        if params["use_kegg_image"]:
            for pathway_id in graphs:
                try:
                    backgrounds[pathway_id] = self.kegg.get_image(pathway_id)
                except AnnotationServiceError as e:
                    logger.warning(f"No KEGG image for {pathway_id}: {e}")

        images = render_pathways(
            graphs,
            fold_changes,
            self.output_dir / "pathview",
            pathway_ids=pathway_ids,
            backgrounds=backgrounds,
            limit=params["limit"],
            low=params["low"],
            mid=params["mid"],
            high=params["high"],
            bins=params["bins"],
            suffix=params["suffix"],
        )
        return {"success": True, "images": images}

    def run_genemania(self, top_n: int = 100) -> Dict[str, Any]:
        """Write the GeneMANIA query list for the top DE genes"""
        if self.de_table is None:
            raise RuntimeError("load must be run before genemania")

        query = export_query(
            self.de_table,
            self.output_dir / "genemania_query.txt",
            top_n=top_n,
            organism=self.config.organism,
            padj_cutoff=self.config.expression["padj_cutoff"],
        )
        return {"success": True, **query}

    def run_coexpression(
        self,
        expression: pd.DataFrame,
        traits: Optional[pd.DataFrame] = None,
        genes_in_rows: bool = True,
    ) -> Dict[str, Any]:
        """
        Co-expression modules from a normalised expression matrix

        Args:
            expression: Expression matrix (genes x samples by default)
            traits: Optional sample traits for module-trait correlation
            genes_in_rows: Orientation of the expression matrix
        """
        params = self.config.coexpression
        network = CoexpressionNetwork(
            expression, network_type=params["network_type"], genes_in_rows=genes_in_rows
        )

        power, _ = network.pick_soft_threshold(params["powers"], r2_cutoff=params["r2_cutoff"])
        network.adjacency(power or 6)
        network.tom()
        modules = network.detect_modules(
            min_module_size=params["min_module_size"], cut_height=params["cut_height"]
        )

        output_dir = self.output_dir / "coexpression"
        files = network.save_results(output_dir)
        files["soft_threshold_plot"] = network.plot_soft_threshold(
            output_dir / "soft_threshold.pdf"
        )
        files["dendrogram"] = network.plot_dendrogram(output_dir / "module_dendrogram.pdf")

        module_traits = None
        if traits is not None:
            cor, pvalues = network.module_trait_correlation(traits)
            cor.to_csv(output_dir / "module_trait_correlation.csv")
            pvalues.to_csv(output_dir / "module_trait_pvalues.csv")
            module_traits = {"correlation": cor, "pvalues": pvalues}

        result = {
            "success": True,
            "power": network.power,
            "modules": modules,
            "module_sizes": modules.value_counts().to_dict(),
            "module_traits": module_traits,
            "files": files,
        }
        self.results["coexpression"] = result
        return result

    def run_summary(self) -> Dict[str, Any]:
        """Comparison plots across all enrichment results"""
        if not self.enrichment_results:
            return {"success": True, "plots": {}}

        plots = create_pathway_plots(
            self.enrichment_results, self.output_dir / "plots", top_n=20
        )

        rows = []
        for name, result in self.enrichment_results.items():
            rows.append(
                {
                    "method": name,
                    "gene_count": result.gene_count,
                    "tested": len(result.full_table),
                    "significant": result.significant_pathways,
                }
            )
        overview = pd.DataFrame(rows)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        overview_file = self.output_dir / "enrichment_overview.csv"
        overview.to_csv(overview_file, index=False)

        return {"success": True, "plots": plots, "overview": overview_file}

    def _create_pipeline_summary(self) -> None:
        """Log and write the pipeline summary"""
        logger.info("=" * 50)
        logger.info("FCSFLOW PIPELINE SUMMARY")
        logger.info("=" * 50)

        logger.info("EXECUTION TIMES:")
        for step, exec_time in self.execution_times.items():
            if step != "total":
                logger.info(f"  {step}: {exec_time:.2f} seconds")
        logger.info(f"  TOTAL: {self.execution_times.get('total', 0):.2f} seconds")

        logger.info("RESULTS SUMMARY:")
        for step, result in self.results.items():
            if isinstance(result, dict) and "success" in result:
                status = "SUCCESS" if result["success"] else "FAILED"
                logger.info(f"  {step}: {status}")
                if not result["success"] and "error" in result:
                    logger.info(f"    Error: {result['error']}")

        self.output_dir.mkdir(parents=True, exist_ok=True)
        summary_file = self.output_dir / "pipeline_summary.txt"
        with open(summary_file, "w") as f:
            f.write("FCSFlow Pipeline Summary\n")
            f.write("=" * 30 + "\n\n")

            f.write("Configuration:\n")
            f.write(f"  Project: {self.config.project_name}\n")
            f.write(f"  Comparison: {self.config.comparison_name}\n")
            f.write(f"  Organism: {self.config.organism}\n")
            f.write(f"  Output directory: {self.output_dir}\n\n")

            f.write("Execution Times:\n")
            for step, exec_time in self.execution_times.items():
                f.write(f"  {step}: {exec_time:.2f} seconds\n")

            f.write("\nResults:\n")
            for step, result in self.results.items():
                if isinstance(result, dict) and "success" in result:
                    status = "SUCCESS" if result["success"] else "FAILED"
                    f.write(f"  {step}: {status}\n")
                    if not result["success"]:
                        f.write(f"    Error: {result.get('error')}\n")

            for name, result in self.enrichment_results.items():
                f.write(f"\n{name}: {result.significant_pathways} significant pathways\n")

        logger.info(f"Pipeline summary saved to: {summary_file}")

    def get_results(self) -> Dict[str, Any]:
        return self.results

    def get_execution_times(self) -> Dict[str, float]:
        return self.execution_times

    def save_results(
        self, output_file: Union[str, Path], format: str = "pickle"
    ) -> None:
        """
        Save results to file

        Args:
            output_file: Path to output file
            format: Format ('pickle', 'json')
        """
        output_path = Path(output_file)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        if format == "pickle":
            with open(output_path, "wb") as f:
                pickle.dump(self.results, f)
        elif format == "json":
            with open(output_path, "w") as f:
                json.dump(self._results_to_json(), f, indent=2, default=str)
        else:
            raise ValueError(f"Unsupported format: {format}")

        logger.info(f"Results saved to {output_path}")

    def _results_to_json(self) -> Dict[str, Any]:
        """Convert results to JSON-serializable format"""
        json_results = {}

        for key, value in self.results.items():
            if not isinstance(value, dict):
                json_results[key] = str(value)
                continue
            json_results[key] = {}
            for subkey, subvalue in value.items():
                if isinstance(subvalue, PathwayEnrichmentResult):
                    json_results[key][subkey] = subvalue.to_dict()
                elif isinstance(subvalue, pd.DataFrame):
                    json_results[key][subkey] = subvalue.to_dict("records")
                elif isinstance(subvalue, pd.Series):
                    json_results[key][subkey] = subvalue.to_dict()
                else:
                    json_results[key][subkey] = subvalue

        return json_results
