"""Tests for the DESeq2 engines."""

import numpy as np
import pandas as pd
import pytest

from deseq_report.deseq2 import (
    DESeq2Error,
    PyDESeq2Engine,
    RDESeq2Engine,
    RESULT_COLUMNS,
    RPY2_AVAILABLE,
    finalize_results,
    formula_safe,
    get_engine,
    run_deseq2,
)
from deseq_report.validation import prefilter_counts


@pytest.fixture
def engine_results():
    """Raw engine output: genes as index, unsorted."""
    return pd.DataFrame({
        'baseMean': [100.0, 50.0, 0.0, 300.0, 20.0],
        'log2FoldChange': [2.0, -1.5, np.nan, 0.1, 0.8],
        'lfcSE': [0.2, 0.3, np.nan, 0.1, 0.4],
        'stat': [10.0, -5.0, np.nan, 1.0, 2.0],
        'pvalue': [1e-10, 1e-5, np.nan, 0.3, 0.04],
        'padj': [1e-9, 1e-4, np.nan, 0.4, 0.06],
    }, index=['g_up', 'g_down', 'g_zero', 'g_flat', 'g_weak'])


class TestHelpers:
    """Tests for engine-independent helpers."""

    @pytest.mark.parametrize("name,expected", [
        ("condition", "condition"),
        ("disease state", "disease_state"),
        ("characteristics: disease", "characteristics__disease"),
        ("1st_group", "x1st_group"),
    ])
    def test_formula_safe(self, name, expected):
        assert formula_safe(name) == expected

    def test_finalize_sorts_by_padj_nan_last(self, engine_results):
        res = finalize_results(engine_results, alpha=0.01, lfc_threshold=0)

        assert list(res['gene']) == ['g_up', 'g_down', 'g_weak', 'g_flat', 'g_zero']
        assert list(res.columns) == RESULT_COLUMNS + ['significant', 'direction']

    def test_finalize_direction(self, engine_results):
        res = finalize_results(engine_results, alpha=0.01, lfc_threshold=0).set_index('gene')

        assert res.loc['g_up', 'direction'] == 'up'
        assert res.loc['g_down', 'direction'] == 'down'
        assert res.loc['g_zero', 'direction'] == 'not_sig'
        assert not res.loc['g_weak', 'significant']

    def test_finalize_lfc_threshold(self, engine_results):
        res = finalize_results(engine_results, alpha=0.01, lfc_threshold=1.8).set_index('gene')

        assert res.loc['g_up', 'direction'] == 'up'
        assert res.loc['g_down', 'direction'] == 'not_sig'

    def test_unknown_engine(self):
        with pytest.raises(DESeq2Error, match='Unknown engine'):
            get_engine('edgeR')

    @pytest.mark.skipif(RPY2_AVAILABLE, reason="rpy2 is installed")
    def test_r_engine_without_rpy2(self):
        with pytest.raises(DESeq2Error, match='rpy2 is not installed'):
            RDESeq2Engine()


class TestPyDESeq2Engine:
    """End-to-end runs with PyDESeq2 on simulated counts."""

    @pytest.fixture
    def analysis(self, synthetic_dataset):
        counts, metadata, truth = synthetic_dataset
        counts = prefilter_counts(counts, 10)
        de = run_deseq2(
            counts,
            metadata,
            'disease_state',
            contrast=('disease', 'healthy'),
            fdr_threshold=0.01
        )
        return counts, de, truth.set_index('gene')

    def test_output_shapes(self, analysis):
        counts, de, _ = analysis

        assert set(de) >= {'results', 'normalized_counts', 'vst_counts', 'contrast', 'dds'}
        assert de['contrast'] == ('disease', 'healthy')
        assert len(de['results']) == counts.shape[0]
        assert de['normalized_counts'].shape == counts.shape
        assert de['vst_counts'].shape == counts.shape
        assert list(de['vst_counts'].columns) == list(counts.columns)

    def test_results_sorted_by_padj(self, analysis):
        _, de, _ = analysis
        padj = de['results']['padj']

        non_missing = padj.dropna()
        assert non_missing.is_monotonic_increasing
        # Missing values only at the end
        assert padj.iloc[len(non_missing):].isna().all()

    def test_recovers_planted_genes(self, analysis):
        _, de, truth = analysis
        sig = de['results'][de['results']['significant']].set_index('gene')

        assert len(sig) > 10
        assert truth.loc[sig.index, 'is_de'].mean() > 0.8

        planted = sig[truth.loc[sig.index, 'is_de'].values]
        agree = (planted['direction'] == truth.loc[planted.index, 'direction']).mean()
        assert agree > 0.9

    def test_default_contrast_uses_sorted_levels(self, synthetic_dataset):
        counts, metadata, _ = synthetic_dataset
        counts = prefilter_counts(counts.iloc[:200], 10)

        de = run_deseq2(counts, metadata, 'disease_state')

        assert de['contrast'] == ('healthy', 'disease')

    def test_condition_column_with_spaces(self, synthetic_dataset):
        counts, metadata, _ = synthetic_dataset
        metadata = metadata.rename(columns={'disease_state': 'disease state'})

        dds = PyDESeq2Engine().create_dataset(counts.iloc[:100], metadata, 'disease state')

        assert 'disease_state' in dds.obs.columns
        assert list(dds.obs_names) == list(counts.columns)


@pytest.mark.skipif(not RPY2_AVAILABLE, reason="rpy2 not installed")
class TestRDESeq2Engine:
    """Runs against R DESeq2 when it is available."""

    @pytest.fixture
    def engine(self):
        try:
            return RDESeq2Engine()
        except DESeq2Error as e:
            pytest.skip(str(e))

    def test_matches_result_layout(self, engine, synthetic_dataset):
        counts, metadata, _ = synthetic_dataset
        counts = prefilter_counts(counts, 10)

        dds = engine.fit(engine.create_dataset(counts, metadata, 'disease_state'))
        res = engine.get_results(dds, 'disease_state', 'disease', 'healthy')

        assert list(res.columns) == RESULT_COLUMNS + ['significant', 'direction']
        assert set(res['gene']) == set(counts.index)
        assert engine.get_vst_counts(dds).shape == counts.shape
