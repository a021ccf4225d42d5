"""Tests for configuration loading."""

from pathlib import Path

import pydantic
import pytest
import yaml

from deseq_report.config import CONFIG_TEMPLATE, Config, get_config, set_config


class TestConfig:
    """Tests for Config."""

    def test_defaults(self):
        config = Config()

        assert config.inputs.counts_file == Path("counts.tsv.gz")
        assert config.inputs.design_file == Path("design.csv")
        assert config.defaults.fdr_threshold == 0.01
        assert config.defaults.engine == "pydeseq2"
        assert config.report.output == Path("deseq_report.html")

    def test_template_matches_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_TEMPLATE)

        assert Config.from_yaml(path) == Config()

    def test_yaml_round_trip(self, tmp_path):
        config = Config()
        config.inputs.condition_column = "disease_state"
        config.defaults.top_n_var = 30
        path = tmp_path / "config.yaml"

        config.to_yaml(path)
        loaded = Config.from_yaml(path)

        assert loaded.inputs.condition_column == "disease_state"
        assert loaded.defaults.top_n_var == 30
        assert yaml.safe_load(path.read_text())["inputs"]["counts_file"] == "counts.tsv.gz"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("DESEQ_REPORT_DEFAULTS__FDR_THRESHOLD", "0.05")
        monkeypatch.setenv("DESEQ_REPORT_INPUTS__CONDITION_COLUMN", "genotype")

        config = Config()

        assert config.defaults.fdr_threshold == 0.05
        assert config.inputs.condition_column == "genotype"

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        path = tmp_path / "config.yaml"
        path.write_text(CONFIG_TEMPLATE)
        monkeypatch.setenv("DESEQ_REPORT_DEFAULTS__FDR_THRESHOLD", "0.05")

        config = Config.from_yaml(path)

        assert config.defaults.fdr_threshold == 0.05
        # Keys not set in the environment keep their file values
        assert config.defaults.min_count == 10
        assert config.inputs.counts_file == Path("counts.tsv.gz")

    def test_invalid_threshold(self):
        with pytest.raises(pydantic.ValidationError):
            Config(defaults={"fdr_threshold": 1.5})

    def test_invalid_engine(self):
        with pytest.raises(pydantic.ValidationError):
            Config(defaults={"engine": "edgeR"})


class TestGlobalConfig:
    """Tests for the module-level config."""

    def test_reads_file_in_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / "deseq_report.yaml").write_text("inputs:\n  condition_column: tissue\n")
        monkeypatch.chdir(tmp_path)

        assert get_config().inputs.condition_column == "tissue"

    def test_set_config(self):
        config = Config(report={"title": "Mine"})
        set_config(config)

        assert get_config() is config
