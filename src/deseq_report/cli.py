"""
Command-line interface for deseq-report.

Usage examples
--------------
# Write synthetic inputs to try things out
deseq-report example-data ./demo

# Run with defaults (counts.tsv.gz and design.csv in the working directory)
deseq-report run --condition disease_state

# Explicit files and contrast
deseq-report run \\
    --counts GSE000_raw_counts.tsv.gz \\
    --design design.csv \\
    --condition disease_state \\
    --test disease --reference healthy \\
    --output report.html

# Start from a config file
deseq-report init-config deseq_report.yaml
deseq-report run --config deseq_report.yaml
"""

import logging
from pathlib import Path
from typing import Optional

import click

from . import __version__
from .config import CONFIG_TEMPLATE, Config, get_config
from .deseq2 import DESeq2Error
from .example_data import write_example_data
from .pipeline import run_report
from .validation import ValidationError


def _setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@click.group()
@click.version_option(__version__, prog_name="deseq-report")
def main():
    """Differential expression report from a count matrix and a design table."""


@main.command()
@click.option("--config", "config_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              default=None, help="YAML configuration file.")
@click.option("--counts", type=click.Path(path_type=Path), default=None,
              help="Count matrix (genes x samples, .tsv.gz/.tsv/.csv).")
@click.option("--design", type=click.Path(path_type=Path), default=None,
              help="Sample design table (.csv).")
@click.option("--sample-column", default=None, help="Sample ID column of the design table.")
@click.option("--condition", default=None, help="Condition column used in the design formula.")
@click.option("--test", "test_level", default=None, help="Condition level in the numerator.")
@click.option("--reference", "reference_level", default=None, help="Condition level in the denominator.")
@click.option("--engine", type=click.Choice(["pydeseq2", "rpy2"]), default=None,
              help="DESeq2 implementation.")
@click.option("--fdr", type=click.FloatRange(0, 1, min_open=True), default=None,
              help="Adjusted p-value threshold for highlighting.")
@click.option("--threads", type=click.IntRange(min=1), default=None, help="Worker processes.")
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Report HTML file.")
@click.option("--results-csv", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Also write the full results table.")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging.")
def run(
    config_file: Optional[Path],
    counts: Optional[Path],
    design: Optional[Path],
    sample_column: Optional[str],
    condition: Optional[str],
    test_level: Optional[str],
    reference_level: Optional[str],
    engine: Optional[str],
    fdr: Optional[float],
    threads: Optional[int],
    output: Optional[Path],
    results_csv: Optional[Path],
    verbose: bool,
):
    """Fit the model and write the report."""
    _setup_logging(verbose)

    # Overrides go on a copy so the process-wide config stays untouched
    config = Config.from_yaml(config_file) if config_file else get_config().model_copy(deep=True)

    overrides = [
        (config.inputs, "counts_file", counts),
        (config.inputs, "design_file", design),
        (config.inputs, "sample_column", sample_column),
        (config.inputs, "condition_column", condition),
        (config.inputs, "test_level", test_level),
        (config.inputs, "reference_level", reference_level),
        (config.defaults, "engine", engine),
        (config.defaults, "fdr_threshold", fdr),
        (config.defaults, "threads", threads),
        (config.report, "output", output),
        (config.report, "results_csv", results_csv),
    ]
    for section, name, value in overrides:
        if value is not None:
            setattr(section, name, value)

    try:
        outcome = run_report(config)
    except FileNotFoundError as e:
        raise click.ClickException(f"Input file not found: {e.filename or e}")
    except (ValidationError, DESeq2Error) as e:
        raise click.ClickException(str(e))

    test, reference = outcome.contrast
    click.echo(
        f"{test} vs {reference}: {outcome.n_up} up, {outcome.n_down} down "
        f"of {outcome.n_genes_tested} genes (padj < {config.defaults.fdr_threshold})"
    )
    click.echo(f"Report: {outcome.report_path}")
    if outcome.results_csv:
        click.echo(f"Results: {outcome.results_csv}")


@main.command("init-config")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path), default="deseq_report.yaml")
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
def init_config(path: Path, force: bool):
    """Write a commented configuration template."""
    if path.exists() and not force:
        raise click.ClickException(f"{path} already exists (use --force to overwrite)")
    path.write_text(CONFIG_TEMPLATE)
    click.echo(f"Wrote {path}")


@main.command("example-data")
@click.argument("output_dir", type=click.Path(file_okay=False, path_type=Path), default=".")
@click.option("--genes", type=click.IntRange(min=10), default=2000, show_default=True)
@click.option("--replicates", type=click.IntRange(min=2), default=4, show_default=True,
              help="Samples per condition.")
@click.option("--de-genes", type=click.IntRange(min=0), default=200, show_default=True)
@click.option("--seed", type=int, default=42, show_default=True)
def example_data(output_dir: Path, genes: int, replicates: int, de_genes: int, seed: int):
    """Write a synthetic counts.tsv.gz and design.csv."""
    _setup_logging(False)
    counts_path, design_path = write_example_data(
        output_dir,
        n_genes=genes,
        n_per_condition=replicates,
        n_de_genes=min(de_genes, genes),
        seed=seed
    )
    click.echo(f"Wrote {counts_path} and {design_path}")
    click.echo("Run: deseq-report run --counts {} --design {} --condition disease_state".format(
        counts_path, design_path))


if __name__ == "__main__":
    main()
