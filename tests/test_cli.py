"""
Tests for the fcsflow command-line interface.
"""

from pathlib import Path

import yaml
from click.testing import CliRunner

from fcsflow.cli import main


class TestConfigCommands:
    """Test configuration commands."""

    def test_info(self):
        """Test package information is printed."""
        result = CliRunner().invoke(main, ["info"])
        assert result.exit_code == 0
        assert "FCSFlow v" in result.output
        assert "Dependency status:" in result.output

    def test_init_and_validate(self):
        """Test a generated config validates."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["init-config", "fcsflow.yaml"])
            assert result.exit_code == 0
            assert Path("fcsflow.yaml").exists()

            result = runner.invoke(main, ["validate-config", "fcsflow.yaml"])
            assert result.exit_code == 0
            assert "Configuration is valid" in result.output

    def test_init_json_suffix(self):
        """Test JSON output gets a .json suffix."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            result = runner.invoke(main, ["init-config", "settings.cfg", "--format", "json"])
            assert result.exit_code == 0
            assert Path("settings.json").exists()

    def test_invalid_config(self):
        """Test configuration issues exit with status 1."""
        runner = CliRunner()
        with runner.isolated_filesystem():
            with open("bad.yaml", "w") as f:
                yaml.safe_dump({"gsea": {"n_perm": 0}, "spia": {"combine": "mean"}}, f)

            result = runner.invoke(main, ["validate-config", "bad.yaml"])
            assert result.exit_code == 1
            assert "gsea.n_perm must be positive" in result.output


class TestAnalysisCommands:
    """Test analysis commands on the synthetic DE table."""

    def test_gsea(self, de_file, gmt_file, temp_output_dir):
        """Test pre-ranked GSEA from a GMT file."""
        output = temp_output_dir / "cli_results"
        result = CliRunner().invoke(
            main,
            ["gsea", str(de_file), "--gmt", str(gmt_file), "--nperm", "100", "-o", str(output)],
        )

        assert result.exit_code == 0, result.output
        assert "GSEA: 3 gene sets tested" in result.output
        assert "UP_SET" in result.output
        assert (output / "treatment_vs_control" / "gsea").is_dir()

    def test_genemania(self, de_file, temp_output_dir):
        """Test the query file is written."""
        output = temp_output_dir / "cli_results"
        result = CliRunner().invoke(
            main, ["genemania", str(de_file), "--top-n", "5", "-o", str(output)]
        )

        assert result.exit_code == 0, result.output
        assert "Wrote 5 genes" in result.output
        assert "https://genemania.org/search/homo-sapiens/" in result.output

    def test_pathview_into_new_directory(self, de_file, kgml_dir, temp_output_dir):
        """Test rendering creates an output directory that does not exist yet."""
        output = temp_output_dir / "fresh" / "results"
        result = CliRunner().invoke(
            main,
            [
                "pathview",
                str(de_file),
                "hsa04999",
                "--kgml-dir",
                str(kgml_dir),
                "--no-image",
                "-o",
                str(output),
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Rendered 1/1 pathways" in result.output
        comparison_dir = output / "treatment_vs_control"
        assert (comparison_dir / "annotated_de_results.csv").exists()
        assert (comparison_dir / "pathview" / "hsa04999.fcsflow.png").exists()

    def test_missing_file(self):
        """Test a missing DE file is a usage error."""
        result = CliRunner().invoke(main, ["gsea", "does_not_exist.csv"])
        assert result.exit_code == 2
