"""DESeq2 engines for differential expression analysis.

Two interchangeable engines are provided: PyDESeq2 (default, pure Python)
and R DESeq2 through rpy2 (needs R with DESeq2 and BiocParallel).
"""

import logging
import re
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats

from .validation import resolve_contrast

try:
    import rpy2.robjects as ro
    from rpy2.robjects import pandas2ri
    from rpy2.robjects.packages import importr
    from rpy2.robjects.conversion import localconverter
    RPY2_AVAILABLE = True
except ImportError:
    RPY2_AVAILABLE = False


logger = logging.getLogger(__name__)

RESULT_COLUMNS = ['gene', 'baseMean', 'log2FoldChange', 'lfcSE', 'stat', 'pvalue', 'padj']


class DESeq2Error(Exception):
    """Exception for DESeq2-related errors."""
    pass


def formula_safe(name: str) -> str:
    """Turn a metadata column name into a valid design formula term."""
    safe = re.sub(r'\W', '_', str(name).strip())
    if not safe or safe[0].isdigit():
        safe = f"x{safe}"
    return safe


def _explain_failure(stage: str, error: Exception) -> DESeq2Error:
    error_msg = str(error)
    if "rank deficient" in error_msg.lower() or "full rank" in error_msg.lower():
        return DESeq2Error(
            "Design matrix is rank deficient. This usually means:\n"
            "  - Too few replicates per condition\n"
            "  - Perfect correlation between variables\n"
            "  - All samples have identical values for a variable"
        )
    return DESeq2Error(f"{stage} failed: {error_msg}")


def finalize_results(res_df: pd.DataFrame, alpha: float, lfc_threshold: float) -> pd.DataFrame:
    """
    Standardize a results table, sort it by padj and add significance flags.

    Args:
        res_df: Engine results with genes as index
        alpha: FDR threshold
        lfc_threshold: Log2 fold change threshold

    Returns:
        DataFrame with RESULT_COLUMNS plus 'significant' and 'direction'
    """
    res_df = res_df.copy()
    res_df.insert(0, 'gene', [str(g) for g in res_df.index])
    res_df = res_df.reset_index(drop=True)
    res_df = res_df[RESULT_COLUMNS]

    # Sort by adjusted p-value, genes without one (filtered/outliers) last
    res_df = res_df.sort_values('padj', na_position='last', kind='mergesort').reset_index(drop=True)

    significant = (res_df['padj'] < alpha) & (res_df['log2FoldChange'].abs() > lfc_threshold)
    res_df['significant'] = significant

    res_df['direction'] = 'not_sig'
    res_df.loc[significant & (res_df['log2FoldChange'] > 0), 'direction'] = 'up'
    res_df.loc[significant & (res_df['log2FoldChange'] < 0), 'direction'] = 'down'

    n_up = int((res_df['direction'] == 'up').sum())
    n_down = int((res_df['direction'] == 'down').sum())
    logger.info(f"Found {n_up} up-regulated and {n_down} down-regulated genes (padj < {alpha})")

    return res_df


class PyDESeq2Engine:
    """DESeq2 analysis with PyDESeq2."""

    name = "pydeseq2"

    def __init__(self, n_threads: int = 1):
        self.inference = DefaultInference(n_cpus=n_threads)

    def create_dataset(
        self,
        counts: pd.DataFrame,
        metadata: pd.DataFrame,
        condition_col: str
    ) -> DeseqDataSet:
        """
        Create DeseqDataSet object.

        Args:
            counts: Count matrix (genes x samples)
            metadata: Sample metadata, rows in the same order as count columns
            condition_col: Explanatory variable of the design

        Returns:
            DeseqDataSet
        """
        factor = formula_safe(condition_col)
        design = f"~{factor}"
        logger.info(f"Creating DeseqDataSet with design: {design}")

        col_data = metadata.loc[counts.columns, [condition_col]].astype(str)
        col_data.columns = [factor]

        try:
            dds = DeseqDataSet(
                counts=counts.T.astype(int),
                metadata=col_data,
                design=design,
                refit_cooks=True,
                inference=self.inference,
                quiet=True
            )
        except Exception as e:
            raise _explain_failure("Creating DeseqDataSet", e) from e

        logger.info(f"Created DeseqDataSet with {counts.shape[0]} genes and {counts.shape[1]} samples")
        return dds

    def fit(self, dds: DeseqDataSet) -> DeseqDataSet:
        """Estimate size factors, dispersions and LFCs."""
        logger.info("Running DESeq2 (PyDESeq2)...")
        try:
            dds.deseq2()
        except Exception as e:
            raise _explain_failure("DESeq2 analysis", e) from e
        logger.info("DESeq2 analysis completed successfully")
        return dds

    def get_results(
        self,
        dds: DeseqDataSet,
        condition_col: str,
        test: str,
        reference: str,
        alpha: float = 0.01,
        lfc_threshold: float = 0
    ) -> pd.DataFrame:
        """
        Extract results for ``test`` vs ``reference``.

        Returns:
            DataFrame with DE results sorted by padj
        """
        logger.info(f"Extracting results {test} vs {reference} (alpha={alpha}, lfcThreshold={lfc_threshold})")

        kwargs = {}
        if lfc_threshold > 0:
            kwargs = {'lfc_null': lfc_threshold, 'alt_hypothesis': 'greaterAbs'}

        try:
            stat_res = DeseqStats(
                dds,
                contrast=[formula_safe(condition_col), test, reference],
                alpha=alpha,
                inference=self.inference,
                quiet=True,
                **kwargs
            )
            stat_res.summary()
        except Exception as e:
            raise _explain_failure("Extracting results", e) from e

        return finalize_results(stat_res.results_df, alpha, lfc_threshold)

    def get_normalized_counts(self, dds: DeseqDataSet) -> pd.DataFrame:
        """Size-factor normalized counts (genes x samples)."""
        return pd.DataFrame(
            np.asarray(dds.layers["normed_counts"]),
            index=dds.obs_names,
            columns=dds.var_names
        ).T

    def get_vst_counts(self, dds: DeseqDataSet, blind: bool = True) -> pd.DataFrame:
        """Variance-stabilized counts (genes x samples)."""
        try:
            dds.vst(use_design=not blind)
        except Exception as e:
            raise _explain_failure("Variance stabilizing transformation", e) from e
        return pd.DataFrame(
            np.asarray(dds.layers["vst_counts"]),
            index=dds.obs_names,
            columns=dds.var_names
        ).T


class RDESeq2Engine:
    """DESeq2 analysis with the R package through rpy2."""

    name = "rpy2"

    def __init__(self, n_threads: int = 1):
        """Check the R environment and load packages."""
        if not RPY2_AVAILABLE:
            raise DESeq2Error("rpy2 is not installed. Please install it with: pip install rpy2")

        self.n_threads = n_threads
        self._check_r_packages()
        self._load_r_packages()

    def _check_r_packages(self):
        """Check if required R packages are installed."""
        required_packages = ['DESeq2', 'BiocParallel', 'SummarizedExperiment']

        utils = importr('utils')
        base = importr('base')

        installed = set(base.rownames(utils.installed_packages()))
        missing = [pkg for pkg in required_packages if pkg not in installed]

        if missing:
            quoted = ', '.join(f"'{p}'" for p in missing)
            raise DESeq2Error(
                f"Required R packages not found: {', '.join(missing)}\n"
                "Please install them in R using:\n"
                "  if (!require('BiocManager', quietly = TRUE))\n"
                "      install.packages('BiocManager')\n"
                f"  BiocManager::install(c({quoted}))"
            )

    def _load_r_packages(self):
        try:
            self.deseq2 = importr('DESeq2')
            self.biocparallel = importr('BiocParallel')
            self.summarized_experiment = importr('SummarizedExperiment')
            self.base = importr('base')
            logger.info("Loaded DESeq2 and dependencies")
        except Exception as e:
            raise DESeq2Error(f"Failed to load R packages: {e}") from e

    def _to_r(self, df: pd.DataFrame):
        with localconverter(ro.default_converter + pandas2ri.converter):
            return ro.conversion.py2rpy(df)

    def _to_pandas(self, r_obj, rownames) -> pd.DataFrame:
        with localconverter(ro.default_converter + pandas2ri.converter):
            df = ro.conversion.rpy2py(self.base.as_data_frame(r_obj))
        df.index = [str(g) for g in rownames]
        return df

    def create_dataset(self, counts: pd.DataFrame, metadata: pd.DataFrame, condition_col: str):
        """Create a DESeqDataSet R object (see PyDESeq2Engine.create_dataset)."""
        factor = formula_safe(condition_col)
        design = f"~{factor}"
        logger.info(f"Creating DESeqDataSet with design: {design}")

        col_data = metadata.loc[counts.columns, [condition_col]].astype(str)
        col_data.columns = [factor]

        count_matrix = self.base.as_matrix(self._to_r(counts.astype('int32')))
        count_matrix.rownames = ro.StrVector([str(g) for g in counts.index])
        count_matrix.colnames = ro.StrVector([str(s) for s in counts.columns])

        try:
            dds = self.deseq2.DESeqDataSetFromMatrix(
                countData=count_matrix,
                colData=self._to_r(col_data),
                design=ro.Formula(design)
            )
        except Exception as e:
            raise _explain_failure("Creating DESeqDataSet", e) from e

        logger.info(f"Created DESeqDataSet with {counts.shape[0]} genes and {counts.shape[1]} samples")
        return dds

    def fit(self, dds):
        logger.info("Running DESeq2 (R)...")
        try:
            if self.n_threads > 1:
                self.biocparallel.register(
                    self.biocparallel.MulticoreParam(workers=self.n_threads)
                )
                dds = self.deseq2.DESeq(dds, parallel=True)
            else:
                dds = self.deseq2.DESeq(dds)
        except Exception as e:
            raise _explain_failure("DESeq2 analysis", e) from e
        logger.info("DESeq2 analysis completed successfully")
        return dds

    def get_results(
        self,
        dds,
        condition_col: str,
        test: str,
        reference: str,
        alpha: float = 0.01,
        lfc_threshold: float = 0
    ) -> pd.DataFrame:
        logger.info(f"Extracting results {test} vs {reference} (alpha={alpha}, lfcThreshold={lfc_threshold})")
        try:
            res = self.deseq2.results(
                dds,
                contrast=ro.StrVector([formula_safe(condition_col), test, reference]),
                alpha=alpha,
                lfcThreshold=lfc_threshold
            )
            res_df = self._to_pandas(res, self.base.rownames(res))
        except Exception as e:
            raise _explain_failure("Extracting results", e) from e

        return finalize_results(res_df, alpha, lfc_threshold)

    def get_normalized_counts(self, dds) -> pd.DataFrame:
        try:
            norm_counts = self.deseq2.counts(dds, normalized=True)
            norm_df = self._to_pandas(norm_counts, self.base.rownames(norm_counts))
        except Exception as e:
            raise DESeq2Error(f"Failed to get normalized counts: {e}") from e
        norm_df.columns = [str(c) for c in self.base.colnames(norm_counts)]
        return norm_df

    def get_vst_counts(self, dds, blind: bool = True) -> pd.DataFrame:
        try:
            n_genes = int(self.base.nrow(dds)[0])
            # vst() subsamples 1000 genes for the trend fit
            if n_genes < 1000:
                vsd = self.deseq2.varianceStabilizingTransformation(dds, blind=blind)
            else:
                vsd = self.deseq2.vst(dds, blind=blind)
            vst_matrix = self.summarized_experiment.assay(vsd)
            vst_df = self._to_pandas(vst_matrix, self.base.rownames(vst_matrix))
        except Exception as e:
            raise DESeq2Error(f"Failed to get VST counts: {e}") from e
        vst_df.columns = [str(c) for c in self.base.colnames(vst_matrix)]
        return vst_df


ENGINES = {
    PyDESeq2Engine.name: PyDESeq2Engine,
    RDESeq2Engine.name: RDESeq2Engine,
}


def get_engine(name: str = "pydeseq2", n_threads: int = 1):
    """Instantiate a DESeq2 engine by name."""
    try:
        engine_cls = ENGINES[name]
    except KeyError:
        raise DESeq2Error(f"Unknown engine '{name}'. Choose one of: {', '.join(ENGINES)}")
    return engine_cls(n_threads=n_threads)


def run_deseq2(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_col: str,
    contrast: Optional[Tuple[str, str]] = None,
    fdr_threshold: float = 0.01,
    lfc_threshold: float = 0,
    n_threads: int = 1,
    engine: str = "pydeseq2",
    vst_blind: bool = True
) -> Dict:
    """
    Run complete DESeq2 analysis.

    Args:
        counts: Count matrix (genes x samples), columns aligned to metadata
        metadata: Sample metadata with condition column
        condition_col: Name of condition column in metadata
        contrast: Tuple of (test_condition, reference_condition); resolved
            from the condition levels if None
        fdr_threshold: FDR threshold
        lfc_threshold: Log2 fold change threshold
        n_threads: Number of threads
        engine: 'pydeseq2' or 'rpy2'
        vst_blind: Whether the VST ignores the design

    Returns:
        Dictionary containing:
            - results: DE results DataFrame sorted by padj
            - normalized_counts: Normalized count matrix
            - vst_counts: VST-transformed counts
            - contrast: (test, reference) actually used
            - dds: fitted dataset object (for further analysis)
    """
    if contrast is None:
        contrast = resolve_contrast(metadata, condition_col)
    test, reference = contrast

    backend = get_engine(engine, n_threads=n_threads)

    dds = backend.create_dataset(counts, metadata, condition_col)
    dds = backend.fit(dds)

    results = backend.get_results(
        dds,
        condition_col,
        test,
        reference,
        alpha=fdr_threshold,
        lfc_threshold=lfc_threshold
    )

    normalized_counts = backend.get_normalized_counts(dds)
    vst_counts = backend.get_vst_counts(dds, blind=vst_blind)

    return {
        'results': results,
        'normalized_counts': normalized_counts,
        'vst_counts': vst_counts,
        'contrast': (test, reference),
        'dds': dds
    }
