"""Loading, validation and alignment of count matrices and sample metadata."""

import gzip
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


class ValidationError(Exception):
    """Custom exception for validation errors."""
    pass


class ValidationWarning(BaseModel):
    """Warning message from validation."""
    message: str
    severity: str = Field(default="warning")  # warning, info


class ValidationResult(BaseModel):
    """Result of data validation."""
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[ValidationWarning] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)


class CountMatrixSchema(BaseModel):
    """Schema for count matrix validation."""
    n_genes: int
    n_samples: int
    sample_ids: List[str]
    has_negative: bool
    has_non_integer: bool
    has_missing: bool
    library_sizes: Dict[str, float]


class MetadataSchema(BaseModel):
    """Schema for metadata validation."""
    n_samples: int
    sample_ids: List[str]
    columns: List[str]
    condition_column: Optional[str] = None
    n_conditions: Optional[int] = None
    replicates_per_condition: Optional[Dict[str, int]] = None


_DELIMITERS = {'.tsv': '\t', '.txt': '\t', '.tab': '\t', '.csv': ','}


def check_input_files(*paths: Union[str, Path]) -> List[Path]:
    """
    Check that input files exist.

    Missing files are reported with a warning only; reading them later
    raises the usual FileNotFoundError.

    Returns:
        List of paths that do not exist
    """
    missing = []
    for path in paths:
        path = Path(path)
        if not path.exists():
            logger.warning(f"Input file not found: {path}")
            missing.append(path)
    return missing


def _sniff_delimiter(filepath: Path) -> Optional[str]:
    """Guess the delimiter from the file suffix, then from the first line."""
    suffixes = [s.lower() for s in filepath.suffixes]
    compressed = bool(suffixes) and suffixes[-1] == '.gz'
    if compressed:
        suffixes = suffixes[:-1]

    if suffixes and suffixes[-1] in _DELIMITERS:
        return _DELIMITERS[suffixes[-1]]

    opener = gzip.open if compressed else open
    with opener(filepath, 'rt') as f:
        first_line = f.readline()
    if '\t' in first_line:
        return '\t'
    if ',' in first_line:
        return ','
    return None  # pandas will try to detect


def _read_table(filepath: Path, delimiter: Optional[str], index_col, header: int) -> pd.DataFrame:
    if filepath.suffix.lower() in ['.xlsx', '.xls']:
        return pd.read_excel(filepath, index_col=index_col, header=header)

    if delimiter is None:
        delimiter = _sniff_delimiter(filepath)
    engine = 'python' if delimiter is None else 'c'
    # compression is inferred from the .gz suffix
    return pd.read_csv(filepath, sep=delimiter, index_col=index_col, header=header, engine=engine)


def read_count_matrix(
    filepath: Union[str, Path],
    delimiter: Optional[str] = None,
    gene_col: int = 0,
    header: int = 0
) -> pd.DataFrame:
    """
    Read count matrix from file.

    Args:
        filepath: Path to count matrix file (.tsv/.csv/.txt, optionally .gz, or Excel)
        delimiter: Column delimiter (auto-detected if None)
        gene_col: Column index for gene IDs
        header: Row index for column names

    Returns:
        DataFrame with genes as rows, samples as columns
    """
    filepath = Path(filepath)
    df = _read_table(filepath, delimiter, gene_col, header)

    # Clean up gene IDs (remove whitespace)
    df.index = df.index.astype(str).str.strip()
    df.columns = df.columns.astype(str).str.strip()

    logger.info(f"Read count matrix {filepath.name}: {df.shape[0]} genes x {df.shape[1]} samples")
    return df


def read_metadata(
    filepath: Union[str, Path],
    delimiter: Optional[str] = None,
    sample_col: Optional[str] = None,
    header: int = 0
) -> pd.DataFrame:
    """
    Read metadata (sample design) file.

    Args:
        filepath: Path to metadata file
        delimiter: Column delimiter (auto-detected if None)
        sample_col: Name of the sample ID column (first column if None)
        header: Row index for column names

    Returns:
        DataFrame with samples as rows, conditions/metadata as columns
    """
    filepath = Path(filepath)
    df = _read_table(filepath, delimiter, None, header)
    df.columns = df.columns.astype(str).str.strip()

    if sample_col is None:
        sample_col = df.columns[0]
    elif sample_col not in df.columns:
        raise ValidationError(
            f"Sample column '{sample_col}' not found in {filepath.name}. "
            f"Available columns: {', '.join(df.columns)}"
        )

    df = df.set_index(sample_col)

    # Clean up sample IDs
    df.index = df.index.astype(str).str.strip()
    for col in df.columns:
        if df[col].dtype == object:
            df[col] = df[col].map(lambda v: v.strip() if isinstance(v, str) else v)

    logger.info(f"Read metadata {filepath.name}: {len(df)} samples, columns {list(df.columns)}")
    return df


def validate_count_matrix(counts: pd.DataFrame) -> Tuple[ValidationResult, Optional[CountMatrixSchema]]:
    """
    Validate count matrix.

    Args:
        counts: Count matrix DataFrame

    Returns:
        Tuple of (ValidationResult, CountMatrixSchema)
    """
    errors = []
    warnings = []

    if counts.empty:
        errors.append("Count matrix is empty")
        return ValidationResult(valid=False, errors=errors), None

    n_genes, n_samples = counts.shape

    non_numeric = [c for c in counts.columns if not pd.api.types.is_numeric_dtype(counts[c])]
    if non_numeric:
        errors.append(f"Count matrix has non-numeric columns: {', '.join(non_numeric)}")
        return ValidationResult(valid=False, errors=errors), None

    has_negative = bool((counts < 0).any().any())
    if has_negative:
        errors.append("Count matrix contains negative values")

    values = counts.values.astype(float)
    has_non_integer = not np.allclose(values, np.round(values), equal_nan=True)
    if has_non_integer:
        warnings.append(ValidationWarning(
            message="Count matrix contains non-integer values. They will be rounded.",
            severity="warning"
        ))

    has_missing = bool(counts.isna().any().any())
    if has_missing:
        n_missing = counts.isna().sum().sum()
        errors.append(f"Count matrix contains {n_missing} missing values")

    if n_genes < 1000:
        warnings.append(ValidationWarning(
            message=f"Low number of genes ({n_genes}). Dispersion trend estimates may be unstable.",
            severity="warning"
        ))

    library_sizes = {str(k): float(v) for k, v in counts.sum(axis=0).items()}
    for sample, size in library_sizes.items():
        if size < 1e6:
            warnings.append(ValidationWarning(
                message=f"Sample '{sample}' has low library size: {size:,.0f} reads",
                severity="info"
            ))

    if counts.index.duplicated().any():
        n_duplicates = counts.index.duplicated().sum()
        errors.append(f"Count matrix contains {n_duplicates} duplicate gene IDs")

    if counts.columns.duplicated().any():
        n_duplicates = counts.columns.duplicated().sum()
        errors.append(f"Count matrix contains {n_duplicates} duplicate sample IDs")

    schema = CountMatrixSchema(
        n_genes=n_genes,
        n_samples=n_samples,
        sample_ids=[str(c) for c in counts.columns],
        has_negative=has_negative,
        has_non_integer=has_non_integer,
        has_missing=has_missing,
        library_sizes=library_sizes
    )

    summary = {
        "n_genes": n_genes,
        "n_samples": n_samples,
        "total_counts": int(np.nansum(values)),
        "mean_library_size": float(np.mean(list(library_sizes.values()))),
        "median_library_size": float(np.median(list(library_sizes.values())))
    }

    result = ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )

    return result, schema


def validate_metadata(
    metadata: pd.DataFrame,
    count_samples: Optional[List[str]] = None,
    condition_column: Optional[str] = None
) -> Tuple[ValidationResult, Optional[MetadataSchema]]:
    """
    Validate metadata.

    Args:
        metadata: Metadata DataFrame
        count_samples: List of sample IDs from count matrix (for matching check)
        condition_column: Name of condition column to validate

    Returns:
        Tuple of (ValidationResult, MetadataSchema)
    """
    errors = []
    warnings = []

    if metadata.empty:
        errors.append("Metadata is empty")
        return ValidationResult(valid=False, errors=errors), None

    n_samples = len(metadata)
    sample_ids = [str(s) for s in metadata.index]
    columns = metadata.columns.tolist()

    replicates_per_condition = None
    n_conditions = None

    if condition_column:
        if condition_column not in metadata.columns:
            errors.append(f"Condition column '{condition_column}' not found in metadata")
        else:
            # Only samples that will be fitted count towards the replicate rules
            design = metadata
            if count_samples is not None:
                design = metadata[metadata.index.astype(str).isin(set(count_samples))]

            if design[condition_column].isna().any():
                errors.append(f"Condition column '{condition_column}' contains missing values")

            condition_counts = design[condition_column].dropna().astype(str).value_counts()
            replicates_per_condition = {str(k): int(v) for k, v in condition_counts.items()}
            n_conditions = len(condition_counts)

            if n_conditions < 2:
                errors.append(
                    f"Condition column '{condition_column}' needs at least 2 levels, found {n_conditions}"
                )

            for condition, count in replicates_per_condition.items():
                if count < 2:
                    errors.append(
                        f"Condition '{condition}' has only {count} replicate(s). "
                        "At least 2 replicates per condition are required."
                    )
                elif count < 3:
                    warnings.append(ValidationWarning(
                        message=f"Condition '{condition}' has only {count} replicates. "
                                "3+ replicates recommended for robust analysis.",
                        severity="warning"
                    ))

    if count_samples is not None:
        count_set = set(count_samples)
        meta_set = set(sample_ids)

        missing_in_meta = count_set - meta_set
        missing_in_counts = meta_set - count_set

        if missing_in_meta:
            errors.append(
                f"Samples in count matrix but not in metadata: {', '.join(sorted(missing_in_meta))}"
            )

        if missing_in_counts:
            warnings.append(ValidationWarning(
                message=f"Samples in metadata but not in count matrix: {', '.join(sorted(missing_in_counts))}",
                severity="info"
            ))

    if metadata.index.duplicated().any():
        n_duplicates = metadata.index.duplicated().sum()
        errors.append(f"Metadata contains {n_duplicates} duplicate sample IDs")

    schema = MetadataSchema(
        n_samples=n_samples,
        sample_ids=sample_ids,
        columns=columns,
        condition_column=condition_column,
        n_conditions=n_conditions,
        replicates_per_condition=replicates_per_condition
    )

    summary = {
        "n_samples": n_samples,
        "n_columns": len(columns),
        "columns": columns
    }

    if condition_column and replicates_per_condition:
        summary["conditions"] = replicates_per_condition

    result = ValidationResult(
        valid=len(errors) == 0,
        errors=errors,
        warnings=warnings,
        summary=summary
    )

    return result, schema


def validate_analysis_inputs(
    counts: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_column: str
) -> ValidationResult:
    """
    Validate complete analysis inputs.

    Args:
        counts: Count matrix
        metadata: Sample metadata
        condition_column: Column name for experimental conditions

    Returns:
        ValidationResult with combined validation from both inputs
    """
    all_errors = []
    all_warnings = []

    counts_result, _ = validate_count_matrix(counts)
    all_errors.extend(counts_result.errors)
    all_warnings.extend(counts_result.warnings)

    meta_result, _ = validate_metadata(
        metadata,
        count_samples=[str(c) for c in counts.columns],
        condition_column=condition_column
    )
    all_errors.extend(meta_result.errors)
    all_warnings.extend(meta_result.warnings)

    summary = {
        "counts": counts_result.summary,
        "metadata": meta_result.summary
    }

    return ValidationResult(
        valid=len(all_errors) == 0,
        errors=all_errors,
        warnings=all_warnings,
        summary=summary
    )


def align_samples(counts: pd.DataFrame, metadata: pd.DataFrame) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Reorder count columns to follow the metadata rows.

    Count columns without a metadata row are an error. Metadata rows
    without a count column are dropped.

    Returns:
        Tuple of (counts, metadata) with identical sample order
    """
    missing_in_meta = [s for s in counts.columns if s not in metadata.index]
    if missing_in_meta:
        raise ValidationError(
            f"Samples in count matrix but not in metadata: {', '.join(missing_in_meta)}"
        )

    extra = [s for s in metadata.index if s not in counts.columns]
    if extra:
        logger.warning(f"Dropping {len(extra)} metadata rows without counts: {', '.join(extra)}")
        metadata = metadata.drop(index=extra)

    counts = counts.loc[:, list(metadata.index)]
    return counts, metadata


def prefilter_counts(counts: pd.DataFrame, min_count: int = 10) -> pd.DataFrame:
    """
    Round counts to integers and drop genes with fewer than ``min_count`` reads in total.
    """
    counts = counts.round().astype(int)
    keep = counts.sum(axis=1) >= min_count
    n_dropped = int((~keep).sum())
    if n_dropped:
        logger.info(f"Prefilter removed {n_dropped} genes with < {min_count} total reads")
    return counts.loc[keep]


def resolve_contrast(
    metadata: pd.DataFrame,
    condition_col: str,
    test: Optional[str] = None,
    reference: Optional[str] = None
) -> Tuple[str, str]:
    """
    Work out the (test, reference) pair for the contrast.

    Without explicit levels the condition must have exactly two levels and
    the first in sorted order is the reference.
    """
    levels = sorted(metadata[condition_col].astype(str).unique())

    for level in (test, reference):
        if level is not None and level not in levels:
            raise ValidationError(
                f"Level '{level}' not found in '{condition_col}'. Available levels: {', '.join(levels)}"
            )

    if test is not None and reference is not None:
        if test == reference:
            raise ValidationError("Test and reference levels must differ")
        return test, reference

    if len(levels) != 2:
        raise ValidationError(
            f"Condition '{condition_col}' has {len(levels)} levels ({', '.join(levels)}); "
            "set the test and reference levels explicitly"
        )

    if reference is None and test is None:
        reference, test = levels
    elif reference is None:
        reference = levels[0] if levels[1] == test else levels[1]
    else:
        test = levels[0] if levels[1] == reference else levels[1]

    return test, reference
