"""Generate synthetic input files for trying out the report."""

import logging
from pathlib import Path
from typing import Tuple, Union

import numpy as np
import pandas as pd


logger = logging.getLogger(__name__)


def generate_example_data(
    n_genes: int = 2000,
    n_per_condition: int = 4,
    n_de_genes: int = 200,
    fold_change_range: tuple = (2, 5),
    conditions: Tuple[str, str] = ("healthy", "disease"),
    condition_col: str = "disease_state",
    seed: int = 42
) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """
    Generate synthetic RNA-seq count data with differential expression.

    Args:
        n_genes: Total number of genes
        n_per_condition: Number of samples in each condition
        n_de_genes: Number of differentially expressed genes
        fold_change_range: (min, max) fold change for DE genes
        conditions: (reference, test) condition labels
        condition_col: Name of the condition column in the metadata
        seed: Random seed for reproducibility

    Returns:
        Tuple of (counts genes x samples, metadata, ground truth)
    """
    rng = np.random.default_rng(seed)

    reference, test = conditions
    n_samples = 2 * n_per_condition

    gene_names = [f"Gene_{i:05d}" for i in range(n_genes)]
    sample_names = [f"S{i + 1:02d}" for i in range(n_samples)]
    labels = [reference] * n_per_condition + [test] * n_per_condition

    # Base expression levels (log-normal), one dispersion per gene
    base_expression = rng.lognormal(mean=4, sigma=1.5, size=n_genes)
    dispersion = rng.uniform(0.05, 0.2, n_genes)

    de_indices = rng.choice(n_genes, n_de_genes, replace=False)
    n_up = n_de_genes // 2
    up_indices = de_indices[:n_up]
    down_indices = de_indices[n_up:]

    fc_up = rng.uniform(fold_change_range[0], fold_change_range[1], len(up_indices))
    fc_down = 1 / rng.uniform(fold_change_range[0], fold_change_range[1], len(down_indices))

    test_expression = base_expression.copy()
    test_expression[up_indices] *= fc_up
    test_expression[down_indices] *= fc_down

    counts = np.zeros((n_genes, n_samples), dtype=int)
    for j, label in enumerate(labels):
        mean = test_expression if label == test else base_expression
        # Library size differences between samples
        mean = mean * rng.uniform(0.7, 1.3)
        counts[:, j] = rng.negative_binomial(n=1 / dispersion, p=1 / (1 + mean * dispersion))

    counts_df = pd.DataFrame(counts, index=pd.Index(gene_names, name="GeneID"), columns=sample_names)

    metadata_df = pd.DataFrame({
        'sample': sample_names,
        condition_col: labels,
        'replicate': list(range(1, n_per_condition + 1)) * 2
    }).set_index('sample')

    ground_truth = pd.DataFrame({
        'gene': gene_names,
        'is_de': False,
        'true_fc': 1.0,
        'direction': 'none'
    })
    ground_truth.loc[up_indices, 'is_de'] = True
    ground_truth.loc[up_indices, 'true_fc'] = fc_up
    ground_truth.loc[up_indices, 'direction'] = 'up'
    ground_truth.loc[down_indices, 'is_de'] = True
    ground_truth.loc[down_indices, 'true_fc'] = fc_down
    ground_truth.loc[down_indices, 'direction'] = 'down'

    return counts_df, metadata_df, ground_truth


def write_example_data(
    output_dir: Union[str, Path],
    counts_name: str = "counts.tsv.gz",
    design_name: str = "design.csv",
    **kwargs
) -> Tuple[Path, Path]:
    """
    Write a synthetic count matrix (gzipped TSV) and design table (CSV).

    Extra keyword arguments go to generate_example_data.

    Returns:
        Tuple of (counts path, design path)
    """
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    counts_df, metadata_df, _ = generate_example_data(**kwargs)

    counts_path = output_path / counts_name
    design_path = output_path / design_name
    counts_df.to_csv(counts_path, sep='\t')
    metadata_df.to_csv(design_path)

    logger.info(
        f"Wrote {counts_df.shape[0]} genes x {counts_df.shape[1]} samples to {counts_path} "
        f"and design to {design_path}"
    )
    return counts_path, design_path
