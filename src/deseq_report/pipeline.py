"""The report run: load, fit, transform, plot, write."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd
import plotly.graph_objects as go

from .config import Config, get_config
from .deseq2 import run_deseq2
from .report import ReportGenerator, write_results_csv
from .validation import (
    ValidationError,
    align_samples,
    check_input_files,
    prefilter_counts,
    read_count_matrix,
    read_metadata,
    resolve_contrast,
    validate_analysis_inputs,
)
from .visualizations import (
    create_count_heatmap,
    create_ma_plot,
    create_pca_plot,
    create_pvalue_histogram,
    create_sample_distance_heatmap,
    create_variance_heatmap,
    create_volcano_plot,
)


logger = logging.getLogger(__name__)


@dataclass
class ReportRun:
    """Outcome of a report run."""

    report_path: Path
    contrast: Tuple[str, str]
    n_genes_tested: int
    n_up: int
    n_down: int
    results: pd.DataFrame
    figures: List[Tuple[str, go.Figure]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    results_csv: Optional[Path] = None


def load_inputs(config: Config) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Read both input files and align count columns to the metadata rows."""
    inputs = config.inputs
    check_input_files(inputs.counts_file, inputs.design_file)

    counts = read_count_matrix(inputs.counts_file)
    metadata = read_metadata(inputs.design_file, sample_col=inputs.sample_column)
    return counts, metadata


def build_figures(
    de: Dict,
    metadata: pd.DataFrame,
    config: Config
) -> List[Tuple[str, go.Figure]]:
    """Create the report plots in display order."""
    defaults = config.defaults
    condition_col = config.inputs.condition_column
    test, reference = de['contrast']
    results = de['results']
    vst_counts = de['vst_counts']

    return [
        ("Expression heatmap", create_count_heatmap(
            de['normalized_counts'], metadata, condition_col, top_n=defaults.top_n_mean,
            title=f"Top {defaults.top_n_mean} genes by mean normalized count"
        )),
        ("Sample distances", create_sample_distance_heatmap(vst_counts, metadata, condition_col)),
        ("PCA", create_pca_plot(vst_counts, metadata, condition_col, ntop=defaults.pca_ntop)),
        ("P-value histogram", create_pvalue_histogram(
            results, min_base_mean=defaults.pvalue_min_base_mean, bins=defaults.pvalue_bins
        )),
        ("MA plot", create_ma_plot(
            results, fdr_threshold=defaults.fdr_threshold, lfc_threshold=defaults.lfc_threshold,
            title=f"MA Plot: {test} vs {reference}"
        )),
        ("Volcano plot", create_volcano_plot(
            results, fdr_threshold=defaults.fdr_threshold, lfc_threshold=defaults.lfc_threshold,
            title=f"Volcano Plot: {test} vs {reference}"
        )),
        ("High-variance genes", create_variance_heatmap(
            vst_counts, metadata, condition_col, top_n=defaults.top_n_var,
            title=f"Top {defaults.top_n_var} most variable genes"
        )),
    ]


def run_report(config: Optional[Config] = None) -> ReportRun:
    """
    Run the whole analysis and write the report.

    Args:
        config: Configuration; the global one if None

    Returns:
        ReportRun with the results table, figures and output path

    Raises:
        ValidationError: inputs fail validation
        DESeq2Error: the engine fails
    """
    config = config or get_config()
    inputs = config.inputs
    defaults = config.defaults
    condition_col = inputs.condition_column

    logger.info("Loading inputs...")
    counts, metadata = load_inputs(config)

    validation = validate_analysis_inputs(counts, metadata, condition_col)
    for warning in validation.warnings:
        logger.warning(warning.message)
    if not validation.valid:
        raise ValidationError("Input validation failed:\n  - " + "\n  - ".join(validation.errors))

    counts, metadata = align_samples(counts, metadata)
    n_genes_input = counts.shape[0]
    counts = prefilter_counts(counts, defaults.min_count)
    if counts.empty:
        raise ValidationError(f"No genes left with at least {defaults.min_count} total reads")

    contrast = resolve_contrast(metadata, condition_col, inputs.test_level, inputs.reference_level)
    logger.info(f"Testing {contrast[0]} vs {contrast[1]} on {counts.shape[0]} genes, {counts.shape[1]} samples")

    de = run_deseq2(
        counts,
        metadata,
        condition_col,
        contrast=contrast,
        fdr_threshold=defaults.fdr_threshold,
        lfc_threshold=defaults.lfc_threshold,
        n_threads=defaults.threads,
        engine=defaults.engine,
        vst_blind=defaults.vst_blind
    )
    results = de['results']

    logger.info("Rendering plots...")
    figures = build_figures(de, metadata, config)

    n_up = int((results['direction'] == 'up').sum())
    n_down = int((results['direction'] == 'down').sum())

    summary = {
        "Genes in count matrix": n_genes_input,
        "Genes after prefilter": counts.shape[0],
        "Samples": counts.shape[1],
        "Genes with adjusted p-value": int(results['padj'].notna().sum()),
        f"Up-regulated (padj < {defaults.fdr_threshold})": n_up,
        f"Down-regulated (padj < {defaults.fdr_threshold})": n_down,
    }
    parameters = {
        "Count matrix": str(inputs.counts_file),
        "Design table": str(inputs.design_file),
        "Design": f"~{condition_col}",
        "Contrast": f"{contrast[0]} vs {contrast[1]}",
        "Engine": defaults.engine,
        "FDR threshold": defaults.fdr_threshold,
        "log2FC threshold": defaults.lfc_threshold,
        "Minimum total count": defaults.min_count,
        "VST blind": defaults.vst_blind,
    }
    warnings = [w.message for w in validation.warnings]

    generator = ReportGenerator(config.report.output, plotlyjs=config.report.plotlyjs)
    report_path = generator.write(
        config.report.title,
        figures,
        results,
        metadata,
        parameters,
        summary,
        warnings=warnings,
        top_results=config.report.top_results
    )

    results_csv = None
    if config.report.results_csv is not None:
        results_csv = write_results_csv(results, config.report.results_csv)

    return ReportRun(
        report_path=report_path,
        contrast=contrast,
        n_genes_tested=counts.shape[0],
        n_up=n_up,
        n_down=n_down,
        results=results,
        figures=figures,
        warnings=warnings,
        results_csv=results_csv
    )
