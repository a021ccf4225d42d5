"""DESeq2 Report - differential expression report from a count matrix."""

__version__ = "0.1.0"

from .config import get_config, Config
from .validation import validate_count_matrix, validate_metadata, align_samples, ValidationError
from .deseq2 import run_deseq2, DESeq2Error
from .pipeline import run_report, ReportRun

__all__ = [
    'get_config',
    'Config',
    'validate_count_matrix',
    'validate_metadata',
    'align_samples',
    'ValidationError',
    'run_deseq2',
    'DESeq2Error',
    'run_report',
    'ReportRun'
]
