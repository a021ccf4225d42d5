"""Shared fixtures."""

import numpy as np
import pandas as pd
import pytest

from deseq_report.config import Config, set_config
from deseq_report.example_data import generate_example_data, write_example_data


@pytest.fixture(autouse=True)
def reset_global_config():
    """Keep the module-level config from leaking between tests."""
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def valid_counts():
    """Create valid count matrix."""
    np.random.seed(42)
    return pd.DataFrame(
        np.random.poisson(100, (1000, 6)),
        index=[f"Gene_{i}" for i in range(1000)],
        columns=[f"Sample_{i}" for i in range(6)]
    )


@pytest.fixture
def valid_metadata():
    """Create valid metadata."""
    return pd.DataFrame({
        'condition': ['control'] * 3 + ['treatment'] * 3,
        'batch': [1, 2, 1, 2, 1, 2]
    }, index=[f"Sample_{i}" for i in range(6)])


@pytest.fixture
def de_results():
    """DESeq2-shaped results table with a handful of strong hits."""
    rng = np.random.default_rng(7)
    n_genes = 500
    lfc = rng.normal(0, 0.5, n_genes)
    pvalue = rng.uniform(0, 1, n_genes)
    lfc[:10] = 3.0
    lfc[10:20] = -3.0
    pvalue[:20] = 1e-8
    # only the planted genes pass any reasonable FDR cutoff
    padj = np.clip(pvalue * 20 + 0.02, 0.0, 1.0)
    padj[:20] = 2e-7
    padj[-5:] = np.nan
    return pd.DataFrame({
        'gene': [f'Gene_{i}' for i in range(n_genes)],
        'baseMean': rng.lognormal(4, 1.5, n_genes),
        'log2FoldChange': lfc,
        'lfcSE': rng.uniform(0.1, 0.5, n_genes),
        'stat': lfc / 0.3,
        'pvalue': pvalue,
        'padj': padj
    })


@pytest.fixture
def synthetic_dataset():
    """Small simulated experiment: counts, metadata, ground truth."""
    return generate_example_data(n_genes=500, n_per_condition=4, n_de_genes=50, fold_change_range=(3, 6))


@pytest.fixture
def example_files(tmp_path):
    """counts.tsv.gz and design.csv written to a temporary directory."""
    return write_example_data(
        tmp_path / "inputs", n_genes=500, n_per_condition=4, n_de_genes=50, fold_change_range=(3, 6)
    )


@pytest.fixture
def report_config(tmp_path, example_files):
    """Config pointing at the example files."""
    counts_path, design_path = example_files
    config = Config()
    config.inputs.counts_file = counts_path
    config.inputs.design_file = design_path
    config.inputs.condition_column = "disease_state"
    config.report.output = tmp_path / "out" / "report.html"
    config.defaults.pca_ntop = 200
    return config
