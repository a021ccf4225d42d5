"""Tests for the command-line interface."""

from click.testing import CliRunner
import pytest

from deseq_report import __version__
from deseq_report.cli import main
from deseq_report.config import CONFIG_TEMPLATE, Config, get_config


@pytest.fixture
def runner():
    return CliRunner()


def test_version(runner):
    result = runner.invoke(main, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_config(runner, tmp_path):
    path = tmp_path / "deseq_report.yaml"

    result = runner.invoke(main, ["init-config", str(path)])

    assert result.exit_code == 0
    assert path.read_text() == CONFIG_TEMPLATE
    assert Config.from_yaml(path) == Config()


def test_init_config_refuses_overwrite(runner, tmp_path):
    path = tmp_path / "deseq_report.yaml"
    path.write_text("keep me")

    result = runner.invoke(main, ["init-config", str(path)])

    assert result.exit_code == 1
    assert path.read_text() == "keep me"


def test_example_data(runner, tmp_path):
    result = runner.invoke(main, ["example-data", str(tmp_path), "--genes", "100", "--de-genes", "10"])

    assert result.exit_code == 0
    assert (tmp_path / "counts.tsv.gz").exists()
    assert (tmp_path / "design.csv").exists()


def test_run(runner, tmp_path, example_files):
    counts_path, design_path = example_files
    output = tmp_path / "report.html"

    result = runner.invoke(main, [
        "run",
        "--counts", str(counts_path),
        "--design", str(design_path),
        "--condition", "disease_state",
        "--test", "disease",
        "--reference", "healthy",
        "--output", str(output),
    ])

    assert result.exit_code == 0, result.output
    assert "disease vs healthy" in result.output
    assert output.exists()


def test_run_missing_counts_file(runner, tmp_path, example_files):
    _, design_path = example_files

    result = runner.invoke(main, [
        "run",
        "--counts", str(tmp_path / "absent.tsv.gz"),
        "--design", str(design_path),
        "--condition", "disease_state",
    ])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_run_bad_level(runner, tmp_path, example_files):
    counts_path, design_path = example_files

    result = runner.invoke(main, [
        "run",
        "--counts", str(counts_path),
        "--design", str(design_path),
        "--condition", "disease_state",
        "--test", "placebo",
        "--output", str(tmp_path / "report.html"),
    ])

    assert result.exit_code == 1
    assert "placebo" in result.output


def test_run_leaves_global_config_untouched(runner, tmp_path, example_files):
    counts_path, design_path = example_files
    before = get_config().model_dump()

    runner.invoke(main, [
        "run",
        "--counts", str(counts_path),
        "--design", str(design_path),
        "--condition", "disease_state",
        "--test", "placebo",
        "--fdr", "0.2",
        "--output", str(tmp_path / "report.html"),
    ])

    assert get_config().model_dump() == before
    assert get_config().defaults.fdr_threshold == 0.01
