"""
Command-line interface for FCSFlow
"""

import sys
from pathlib import Path
from typing import List, Optional

import click
import pandas as pd

from . import __version__, check_dependencies, get_info
from .config import Config, get_default_config, save_config
from .core import DEFAULT_STEPS, OPTIONAL_STEPS, FCSFlowAnalysis
from .utils import setup_logging


# Global context for CLI
class CLIContext:
    def __init__(self):
        self.config_file: Optional[Path] = None
        self.config: Optional[Config] = None
        self.verbose: bool = False
        self.quiet: bool = False

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.verbose else "WARNING" if self.quiet else "INFO"

    def get_config(self, output: Optional[str] = None) -> Config:
        if self.config is None:
            self.config = get_default_config()
        if output:
            self.config.output_dir = str(output)
        return self.config


def _fail(cli_ctx: CLIContext, message: str, error: Exception) -> None:
    click.echo(f"{message}: {error}", err=True)
    if cli_ctx.verbose:
        import traceback

        traceback.print_exc()
    sys.exit(1)


def _report_steps(results: dict, steps: List[str]) -> int:
    success_count = 0
    for step in steps:
        result = results.get(step)
        if isinstance(result, dict) and result.get("success", False):
            success_count += 1
            click.echo(f"  ✓ {step}")
        else:
            error = result.get("error") if isinstance(result, dict) else "not run"
            click.echo(f"  ✗ {step}: {error}")
    click.echo(f"Successfully completed {success_count}/{len(steps)} pipeline steps")
    return len(steps) - success_count


def _run_method(ctx, de_file: str, method: str, output: Optional[str]) -> FCSFlowAnalysis:
    """Load, map identifiers, then run one method; exits 1 on any failure"""
    cli_ctx = ctx.obj
    analysis = FCSFlowAnalysis(cli_ctx.get_config(output), log_level=cli_ctx.log_level)
    steps = ["load", "id_mapping", method]
    results = analysis.run_full_pipeline(de_file, steps=steps)
    if _report_steps(results, steps):
        sys.exit(1)
    return analysis


@click.group()
@click.version_option(__version__)
@click.option(
    "--config", "-c", type=click.Path(exists=True), help="Configuration file path"
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True, help="Enable quiet mode (minimal output)")
@click.pass_context
def main(ctx, config, verbose, quiet):
    """
    FCSFlow: functional class scoring of differential expression results

    FCSFlow converts a DE result table into a ranked Entrez fold-change
    vector and scores KEGG pathways with GSEA, GAGE and SPIA, rendering
    the top pathways coloured by fold change.
    """
    cli_ctx = CLIContext()
    cli_ctx.verbose = verbose
    cli_ctx.quiet = quiet

    setup_logging(level=cli_ctx.log_level)

    if config:
        cli_ctx.config_file = Path(config)
        from .config import load_config

        try:
            cli_ctx.config = load_config(cli_ctx.config_file)
        except Exception as e:
            click.echo(f"Error loading configuration: {e}", err=True)
            sys.exit(1)

    ctx.obj = cli_ctx


@main.command()
def info():
    """Show FCSFlow package information"""

    info_data = get_info()

    click.echo("=" * 50)
    click.echo(f"FCSFlow v{info_data['version']}")
    click.echo("=" * 50)
    click.echo(f"Description: {info_data['description']}")
    click.echo(f"Python version: {info_data['python_version']}")
    click.echo()

    click.echo("Available modules:")
    for module in info_data["modules"]:
        click.echo(f"  - {module}")
    click.echo()

    deps = check_dependencies()
    click.echo("Dependency status:")
    for dep, available in deps.items():
        status = "✓" if available else "✗"
        click.echo(f"  {status} {dep}")


@main.command()
@click.argument("output_file", type=click.Path())
@click.option(
    "--format",
    type=click.Choice(["yaml", "json"]),
    default="yaml",
    help="Output format for configuration file",
)
def init_config(output_file, format):
    """Initialize a new FCSFlow configuration file"""

    output_path = Path(output_file)
    if format == "json" and output_path.suffix.lower() != ".json":
        output_path = output_path.with_suffix(".json")

    if output_path.exists():
        if not click.confirm(f"File {output_path} already exists. Overwrite?"):
            click.echo("Configuration initialization cancelled.")
            return

    try:
        save_config(get_default_config(), output_path)
        click.echo(f"Configuration file created: {output_path}")
        click.echo("Edit this file to customize your analysis parameters.")
    except OSError as e:
        click.echo(f"Error creating configuration file: {e}", err=True)
        sys.exit(1)


@main.command()
@click.argument("config_file", type=click.Path(exists=True))
def validate_config(config_file):
    """Validate an FCSFlow configuration file"""

    try:
        from .config import load_config
        from .config import validate_config as validate_config_func

        config = load_config(config_file)
        click.echo(f"Configuration loaded successfully: {config_file}")

        issues = validate_config_func(config)

    except Exception as e:
        click.echo(f"Configuration validation failed: {e}", err=True)
        sys.exit(1)

    if not issues:
        click.echo("✓ Configuration is valid")
    else:
        click.echo("Configuration issues found:")
        for issue in issues:
            click.echo(f"  ✗ {issue}")
        sys.exit(1)


@main.command()
@click.option("--r/--no-r", "check_r", default=True, help="Also check the R backend")
@click.option("--install-missing", is_flag=True, help="Install missing R packages")
@click.pass_context
def check_env(ctx, check_r, install_missing):
    """Check FCSFlow environment and dependencies"""
    from .utils import get_system_info

    click.echo("Checking FCSFlow environment...")
    system = get_system_info()
    click.echo(f"Platform: {system['platform']} (Python {system['python_version']})")
    click.echo()

    deps = check_dependencies()
    click.echo("Python dependencies:")
    all_good = True
    for dep, available in deps.items():
        status = "✓" if available else "✗"
        click.echo(f"  {status} {dep}")
        if not available:
            all_good = False
    click.echo()

    if check_r:
        from .utils import RInterface

        config = ctx.obj.get_config()
        r_interface = RInterface(config.r_config)

        click.echo("R environment (optional backend):")
        if r_interface.check_r_available():
            click.echo(f"  ✓ R is available ({r_interface.get_r_version()})")
            r_packages = config.r_config["required_packages"]
            package_status = r_interface.check_packages(r_packages)
            missing = [pkg for pkg in r_packages if not package_status.get(pkg, False)]
            if missing and install_missing:
                click.echo(f"  Installing: {', '.join(missing)}")
                failed = r_interface.install_packages(missing)
                package_status.update({pkg: pkg not in failed for pkg in missing})
            for pkg in r_packages:
                status = "✓" if package_status.get(pkg, False) else "✗"
                click.echo(f"  {status} R package: {pkg}")
                if not package_status.get(pkg, False):
                    all_good = False
        else:
            click.echo("  ✗ R is not available")
            all_good = False
        click.echo()

    if all_good:
        click.echo("✓ Environment check passed!")
    else:
        click.echo("✗ Environment check failed. Please install missing dependencies.")
        click.echo()
        click.echo("Installation suggestions:")
        click.echo("  - Python packages: pip install fcsflow")
        click.echo(
            "  - R packages: BiocManager::install(c('clusterProfiler', 'gage', 'SPIA', 'pathview'))"
        )
        sys.exit(1)


@main.command()
@click.argument("de_file", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Path(), help="Output directory")
@click.option(
    "--steps",
    multiple=True,
    type=click.Choice(DEFAULT_STEPS + OPTIONAL_STEPS),
    help="Pipeline steps to run (default: all)",
)
@click.option(
    "--format",
    type=click.Choice(["pickle", "json"]),
    default="pickle",
    help="Format of the saved results",
)
@click.pass_context
def run(ctx, de_file, output, steps, format):
    """Run the complete FCSFlow pipeline on DE_FILE"""

    cli_ctx = ctx.obj
    steps = list(steps) or list(DEFAULT_STEPS)

    try:
        analysis = FCSFlowAnalysis(
            config=cli_ctx.get_config(output), log_level=cli_ctx.log_level
        )

        click.echo("Starting FCSFlow analysis pipeline...")
        results = analysis.run_full_pipeline(de_file, steps=steps)

        suffix = "pkl" if format == "pickle" else "json"
        results_file = analysis.output_dir / f"fcsflow_results.{suffix}"
        analysis.save_results(results_file, format=format)
    except Exception as e:
        _fail(cli_ctx, "Pipeline execution failed", e)

    click.echo(f"Analysis completed. Results saved to: {results_file}")
    total_time = analysis.get_execution_times().get("total", 0)
    click.echo(f"Total execution time: {total_time:.2f} seconds")

    if _report_steps(results, steps):
        sys.exit(1)


@main.command()
@click.argument("de_file", type=click.Path(exists=True))
@click.option("--gmt", type=click.Path(exists=True), help="GMT gene set file (KEGG if omitted)")
@click.option("--nperm", type=int, help="Number of permutations")
@click.option(
    "--backend",
    type=click.Choice(["python", "r"]),
    default="python",
    help="Scoring engine (r runs clusterProfiler::gseKEGG)",
)
@click.option("--output", "-o", type=click.Path(), help="Output directory")
@click.pass_context
def gsea(ctx, de_file, gmt, nperm, backend, output):
    """Pre-ranked GSEA on the fold changes of DE_FILE"""

    config = ctx.obj.get_config(output)
    if gmt:
        config.gene_sets.update(source="gmt", gmt_file=gmt)
    if nperm:
        config.gsea["n_perm"] = nperm

    if backend == "r":
        _run_r_backend(ctx, de_file, "gsea")
        return

    analysis = _run_method(ctx, de_file, "gsea", output)
    result = analysis.enrichment_results["gsea"]
    click.echo(
        f"GSEA: {len(result.full_table)} gene sets tested, "
        f"{result.significant_pathways} significant"
    )
    for _, row in result.results_df.head(10).iterrows():
        click.echo(
            f"  {row['ID']}  NES={row['NES']:.2f}  "
            f"p.adjust={row['p.adjust']:.3g}  {row['Description']}"
        )


@main.command()
@click.argument("de_file", type=click.Path(exists=True))
@click.option("--gmt", type=click.Path(exists=True), help="GMT gene set file (KEGG if omitted)")
@click.option("--both-directions", is_flag=True, help="Test absolute changes (same.dir = FALSE)")
@click.option(
    "--backend",
    type=click.Choice(["python", "r"]),
    default="python",
    help="Scoring engine (r runs gage::gage)",
)
@click.option("--output", "-o", type=click.Path(), help="Output directory")
@click.pass_context
def gage(ctx, de_file, gmt, both_directions, backend, output):
    """GAGE on the fold changes of DE_FILE"""

    config = ctx.obj.get_config(output)
    if gmt:
        config.gene_sets.update(source="gmt", gmt_file=gmt)
    if both_directions:
        config.gage["same_dir"] = False

    if backend == "r":
        _run_r_backend(ctx, de_file, "gage")
        return

    analysis = _run_method(ctx, de_file, "gage", output)
    for key in ("gage_greater", "gage_less"):
        if key in analysis.enrichment_results:
            result = analysis.enrichment_results[key]
            click.echo(f"{key}: {result.significant_pathways} significant gene sets")
            for _, row in result.results_df.head(5).iterrows():
                click.echo(f"  {row['ID']}  q.val={row['q.val']:.3g}  {row['Description']}")


@main.command()
@click.argument("de_file", type=click.Path(exists=True))
@click.option("--kgml-dir", type=click.Path(exists=True), help="Directory of KGML files")
@click.option("--nboot", type=int, help="Bootstrap iterations")
@click.option(
    "--combine",
    type=click.Choice(["fisher", "norminv"]),
    help="Method for combining pNDE and pPERT",
)
@click.option(
    "--backend",
    type=click.Choice(["python", "r"]),
    default="python",
    help="Scoring engine (r runs SPIA::spia)",
)
@click.option("--output", "-o", type=click.Path(), help="Output directory")
@click.pass_context
def spia(ctx, de_file, kgml_dir, nboot, combine, backend, output):
    """SPIA on the DE genes of DE_FILE"""

    config = ctx.obj.get_config(output)
    if kgml_dir:
        config.spia["kgml_dir"] = kgml_dir
    if nboot:
        config.spia["n_boot"] = nboot
    if combine:
        config.spia["combine"] = combine

    if backend == "r":
        _run_r_backend(ctx, de_file, "spia")
        return

    analysis = _run_method(ctx, de_file, "spia", output)
    result = analysis.enrichment_results["spia"]
    click.echo(
        f"SPIA: {len(result.full_table)} pathways analysed, "
        f"{result.significant_pathways} with pGFdr <= {config.spia['fdr_cutoff']}"
    )
    for _, row in result.results_df.head(10).iterrows():
        click.echo(f"  {row['ID']}  {row['Status']}  pGFdr={row['pGFdr']:.3g}  {row['Name']}")


@main.command()
@click.argument("de_file", type=click.Path(exists=True))
@click.argument("pathway_ids", nargs=-1, required=True)
@click.option("--kgml-dir", type=click.Path(exists=True), help="Directory of KGML files")
@click.option("--no-image", is_flag=True, help="Do not draw the KEGG diagram underneath")
@click.option(
    "--backend",
    type=click.Choice(["python", "r"]),
    default="python",
    help="Renderer (r runs pathview::pathview)",
)
@click.option("--output", "-o", type=click.Path(), help="Output directory")
@click.pass_context
def pathview(ctx, de_file, pathway_ids, kgml_dir, no_image, backend, output):
    """Render PATHWAY_IDS coloured by the fold changes of DE_FILE"""

    cli_ctx = ctx.obj
    config = cli_ctx.get_config(output)
    if kgml_dir:
        config.spia["kgml_dir"] = kgml_dir
    if no_image:
        config.pathview["use_kegg_image"] = False

    if backend == "r":
        _run_r_backend(ctx, de_file, "pathview", list(pathway_ids))
        return

    try:
        analysis = FCSFlowAnalysis(config, log_level=cli_ctx.log_level)
        analysis.run_load(de_file)
        analysis.run_id_mapping()
        result = analysis.run_pathview(list(pathway_ids))
    except Exception as e:
        _fail(cli_ctx, "Pathway rendering failed", e)

    click.echo(f"Rendered {len(result['images'])}/{len(pathway_ids)} pathways:")
    for image in result["images"]:
        click.echo(f"  {image}")
    if len(result["images"]) < len(pathway_ids):
        sys.exit(1)


def _run_r_backend(ctx, de_file: str, method: str, pathway_ids: Optional[List[str]] = None):
    """Run one method through the R scripts on the mapped fold changes"""
    from .enrichment import RPathwayInterface
    from .expression import background_genes, significant_genes

    cli_ctx = ctx.obj
    config = cli_ctx.get_config()

    try:
        analysis = FCSFlowAnalysis(config, log_level=cli_ctx.log_level)
        analysis.run_load(de_file)
        analysis.run_id_mapping()
        r_interface = RPathwayInterface(config)

        if method == "gsea":
            result = r_interface.run_gsekegg(analysis.fold_changes)
            files = result.save_results(analysis.output_dir / "gsea_r")
            click.echo(f"gseKEGG: {result.significant_pathways} significant pathways")
        elif method == "gage":
            tables = r_interface.run_gage(analysis.fold_changes)
            files = {}
            for direction, table in tables.items():
                files[direction] = analysis.output_dir / "gage_r" / f"gage_{direction}.csv"
                files[direction].parent.mkdir(parents=True, exist_ok=True)
                table.to_csv(files[direction])
            click.echo(f"gage: {len(tables['greater'])} gene sets scored")
        elif method == "spia":
            params = config.expression
            de = significant_genes(
                analysis.de_table, params["padj_cutoff"], params["lfc_cutoff"], params["id_column"]
            )
            all_genes = background_genes(analysis.de_table, params["id_column"])
            result = r_interface.run_spia(de, all_genes)
            files = result.save_results(analysis.output_dir / "spia_r")
            click.echo(f"spia: {result.significant_pathways} significant pathways")
        else:
            images = r_interface.run_pathview(analysis.fold_changes, pathway_ids or [])
            files = {str(i): i for i in images}
            click.echo(f"pathview rendered {len(images)} diagrams")
    except Exception as e:
        _fail(cli_ctx, f"R {method} analysis failed", e)

    for path in files.values():
        click.echo(f"  {path}")


@main.command()
@click.argument("expression_file", type=click.Path(exists=True))
@click.option("--traits", type=click.Path(exists=True), help="Sample traits CSV (samples in rows)")
@click.option(
    "--samples-in-rows",
    is_flag=True,
    help="Expression matrix has samples in rows (default: genes in rows)",
)
@click.option("--min-module-size", type=int, help="Minimum genes per module")
@click.option("--output", "-o", type=click.Path(), help="Output directory")
@click.pass_context
def modules(ctx, expression_file, traits, samples_in_rows, min_module_size, output):
    """Co-expression modules from a normalised EXPRESSION_FILE"""

    cli_ctx = ctx.obj
    config = cli_ctx.get_config(output)
    if min_module_size:
        config.coexpression["min_module_size"] = min_module_size

    try:
        sep = "\t" if Path(expression_file).suffix.lower() in (".tsv", ".txt") else ","
        expression = pd.read_csv(expression_file, sep=sep, index_col=0)
        trait_table = pd.read_csv(traits, index_col=0) if traits else None

        analysis = FCSFlowAnalysis(config, log_level=cli_ctx.log_level)
        result = analysis.run_coexpression(
            expression, traits=trait_table, genes_in_rows=not samples_in_rows
        )
    except Exception as e:
        _fail(cli_ctx, "Co-expression analysis failed", e)

    click.echo(f"Soft-threshold power: {result['power']}")
    click.echo("Module sizes:")
    for module, size in sorted(result["module_sizes"].items(), key=lambda x: -x[1]):
        click.echo(f"  {module}: {size}")


@main.command()
@click.argument("de_file", type=click.Path(exists=True))
@click.option("--top-n", type=int, default=100, show_default=True, help="Number of genes")
@click.option("--output", "-o", type=click.Path(), help="Output directory")
@click.pass_context
def genemania(ctx, de_file, top_n, output):
    """Write a GeneMANIA query list for the top DE genes in DE_FILE"""

    cli_ctx = ctx.obj
    try:
        analysis = FCSFlowAnalysis(cli_ctx.get_config(output), log_level=cli_ctx.log_level)
        analysis.run_load(de_file)
        if "symbol" not in analysis.de_table.columns:
            analysis.run_id_mapping()
        result = analysis.run_genemania(top_n=top_n)
    except Exception as e:
        _fail(cli_ctx, "GeneMANIA export failed", e)

    click.echo(f"Wrote {len(result['genes'])} genes to {result['path']}")
    click.echo(f"GeneMANIA query: {result['url']}")


if __name__ == "__main__":
    main()
