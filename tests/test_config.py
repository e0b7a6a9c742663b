"""
Tests for configuration loading, saving and validation.
"""

import json

import pytest
import yaml

from fcsflow.config import (Config, get_default_config, load_config,
                            save_config, validate_config)
from fcsflow.exceptions import ConfigurationError


class TestConfigDefaults:
    """Test default configuration values."""

    def test_default_sections(self):
        """Test that every analysis section is filled with defaults."""
        config = get_default_config()

        assert config.organism == "hsa"
        assert config.expression["id_column"] == "entrez"
        assert config.gsea["n_perm"] == 1000
        assert config.gsea["min_size"] == 20
        assert config.gage["same_dir"] is True
        assert config.spia["combine"] == "fisher"
        assert config.pathview["low"] == "green"
        assert config.pathview["high"] == "red"
        assert config.gene_sets["subset"] == "sigmet"
        assert "SPIA" in config.r_config["required_packages"]

    def test_partial_section_is_merged(self):
        """Test that user values override only the keys they name."""
        config = Config(gsea={"n_perm": 100})

        assert config.gsea["n_perm"] == 100
        assert config.gsea["min_size"] == 20
        assert config.gsea["p_adjust_method"] == "fdr_bh"

    def test_cache_path(self, temp_output_dir):
        """Test cache directory defaults to output_dir/cache."""
        config = Config(output_dir=str(temp_output_dir))
        assert config.cache_path == temp_output_dir / "cache"

        config = Config(output_dir=str(temp_output_dir), cache_dir="/tmp/fcs_cache")
        assert str(config.cache_path) == "/tmp/fcs_cache"


class TestConfigValidation:
    """Test configuration validation."""

    def test_valid_default(self, temp_output_dir):
        """Test default configuration has no issues."""
        config = Config(output_dir=str(temp_output_dir))
        assert validate_config(config) == []

    def test_invalid_values(self, temp_output_dir):
        """Test invalid parameter values are reported."""
        config = Config(
            output_dir=str(temp_output_dir),
            gsea={"n_perm": 0, "p_adjust_method": "magic"},
            spia={"combine": "sum"},
            expression={"padj_cutoff": 1.5},
            pathview={"limit": 0},
        )
        issues = validate_config(config)

        assert any("n_perm" in issue for issue in issues)
        assert any("p_adjust_method" in issue for issue in issues)
        assert any("spia.combine" in issue for issue in issues)
        assert any("padj_cutoff" in issue for issue in issues)
        assert any("pathview.limit" in issue for issue in issues)

    def test_size_bounds(self, temp_output_dir):
        """Test min_size above max_size is reported."""
        config = Config(output_dir=str(temp_output_dir), gage={"min_size": 50, "max_size": 10})
        issues = validate_config(config)
        assert any(issue.startswith("gage") for issue in issues)

    def test_gmt_source_requires_file(self, temp_output_dir):
        """Test GMT source without a file is reported."""
        config = Config(output_dir=str(temp_output_dir), gene_sets={"source": "gmt"})
        issues = validate_config(config)
        assert any("gmt_file" in issue for issue in issues)

        config.gene_sets["gmt_file"] = str(temp_output_dir / "missing.gmt")
        issues = validate_config(config)
        assert any("does not exist" in issue for issue in issues)

    def test_unknown_kegg_subset(self, temp_output_dir):
        """Test KEGG subsets outside the known categories are reported."""
        config = Config(output_dir=str(temp_output_dir), gene_sets={"subset": "drugs"})
        assert any("gene_sets.subset" in issue for issue in validate_config(config))

    def test_missing_kgml_dir(self, temp_output_dir):
        """Test a missing KGML directory is reported."""
        config = Config(
            output_dir=str(temp_output_dir), spia={"kgml_dir": str(temp_output_dir / "nope")}
        )
        assert any("KGML" in issue for issue in validate_config(config))


class TestConfigIO:
    """Test saving and loading configuration files."""

    def test_yaml_round_trip(self, temp_output_dir):
        """Test YAML save then load keeps values."""
        config = Config(comparison_name="KO_vs_WT", gsea={"n_perm": 250})
        path = temp_output_dir / "config.yaml"
        save_config(config, path)

        with open(path) as f:
            raw = yaml.safe_load(f)
        assert raw["comparison_name"] == "KO_vs_WT"

        loaded = load_config(path)
        assert loaded.comparison_name == "KO_vs_WT"
        assert loaded.gsea["n_perm"] == 250

    def test_json_round_trip(self, temp_output_dir):
        """Test JSON save then load keeps values."""
        config = Config(organism="mmu")
        path = temp_output_dir / "config.json"
        save_config(config, path)

        with open(path) as f:
            assert json.load(f)["organism"] == "mmu"
        assert load_config(path).organism == "mmu"

    def test_missing_file(self, temp_output_dir):
        """Test loading a missing file raises."""
        with pytest.raises(FileNotFoundError):
            load_config(temp_output_dir / "absent.yaml")

    def test_unsupported_format(self, temp_output_dir):
        """Test unsupported suffixes raise ConfigurationError."""
        path = temp_output_dir / "config.ini"
        path.write_text("[fcsflow]\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_unknown_key(self, temp_output_dir):
        """Test unknown top-level keys raise ConfigurationError."""
        path = temp_output_dir / "config.yaml"
        path.write_text("not_a_setting: 1\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_every_documented_field_loads(self, temp_output_dir):
        """Test a file naming every top-level field loads."""
        path = temp_output_dir / "config.yaml"
        settings = {
            "project_name": "FCS",
            "comparison_name": "KO_vs_WT",
            "organism": "mmu",
            "random_seed": 1,
            "n_jobs": 2,
            "output_dir": str(temp_output_dir / "out"),
            "cache_dir": str(temp_output_dir / "cache"),
        }
        sections = ["expression", "id_mapping", "gene_sets", "gsea", "gage", "spia",
                    "pathview", "coexpression", "r_config"]
        settings.update({section: {} for section in sections})
        settings["gene_sets"] = {"subset": "signaling"}
        path.write_text(yaml.safe_dump(settings))

        config = load_config(path)
        assert config.organism == "mmu"
        assert config.gene_sets["subset"] == "signaling"
        assert config.gsea["n_perm"] == 1000

        path.write_text("species: human\n")
        with pytest.raises(ConfigurationError, match="species"):
            load_config(path)
