"""Configuration management for the DESeq2 report."""

from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import yaml


DEFAULT_CONFIG_FILE = "deseq_report.yaml"


class InputConfig(BaseModel):
    """Locations and layout of the two input tables."""

    counts_file: Path = Path("counts.tsv.gz")
    design_file: Path = Path("design.csv")
    sample_column: Optional[str] = None  # None means first column
    condition_column: str = "condition"
    reference_level: Optional[str] = None
    test_level: Optional[str] = None


class AnalysisDefaults(BaseModel):
    """Default analysis parameters."""

    fdr_threshold: float = Field(default=0.01, gt=0.0, le=1.0)
    lfc_threshold: float = Field(default=0.0, ge=0.0)
    min_count: int = Field(default=10, ge=0)
    top_n_mean: int = Field(default=20, ge=1)
    top_n_var: int = Field(default=20, ge=1)
    pca_ntop: int = Field(default=500, ge=2)
    pvalue_min_base_mean: float = Field(default=1.0, ge=0.0)
    pvalue_bins: int = Field(default=20, ge=5)
    vst_blind: bool = True
    engine: Literal["pydeseq2", "rpy2"] = "pydeseq2"
    threads: int = Field(default=1, ge=1)


class ReportConfig(BaseModel):
    """Report output settings."""

    output: Path = Path("deseq_report.html")
    title: str = "Differential Expression Report"
    plotlyjs: Literal["cdn", "inline"] = "cdn"
    top_results: int = Field(default=25, ge=0)
    results_csv: Optional[Path] = None


class Config(BaseSettings):
    """Main configuration class."""

    model_config = SettingsConfigDict(
        env_prefix="DESEQ_REPORT_",
        env_nested_delimiter="__",
    )

    inputs: InputConfig = Field(default_factory=InputConfig)
    defaults: AnalysisDefaults = Field(default_factory=AnalysisDefaults)
    report: ReportConfig = Field(default_factory=ReportConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Environment variables win over values loaded from a YAML file
        return env_settings, init_settings, dotenv_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path):
        """Save configuration to YAML file."""
        data = self.model_dump(mode="json")

        with open(path, 'w') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        # Pick up a config file sitting next to the input files
        default_config_path = Path.cwd() / DEFAULT_CONFIG_FILE
        if default_config_path.exists():
            _config = Config.from_yaml(default_config_path)
        else:
            _config = Config()
    return _config


def set_config(config: Optional[Config]):
    """Set (or with None, reset) the global configuration instance."""
    global _config
    _config = config


# Example deseq_report.yaml template
CONFIG_TEMPLATE = """\
# DESeq2 Report Configuration
# Values here can be overridden with DESEQ_REPORT_* environment variables,
# e.g. DESEQ_REPORT_DEFAULTS__FDR_THRESHOLD=0.05

inputs:
  counts_file: counts.tsv.gz       # genes x samples, first column = gene id
  design_file: design.csv          # one row per sample
  sample_column: null              # null = first column of the design file
  condition_column: condition      # explanatory variable of the model
  reference_level: null            # null = first level in sorted order
  test_level: null                 # null = the other level

defaults:
  fdr_threshold: 0.01        # Adjusted p-value cutoff for highlighting
  lfc_threshold: 0.0         # Absolute log2 fold change cutoff
  min_count: 10              # Drop genes with fewer total reads
  top_n_mean: 20             # Genes in the expression heatmap
  top_n_var: 20              # Genes in the high-variance heatmap
  pca_ntop: 500              # Most variable genes used for PCA
  pvalue_min_base_mean: 1.0  # baseMean filter for the p-value histogram
  pvalue_bins: 20
  vst_blind: true            # VST ignores the design
  engine: pydeseq2           # pydeseq2 or rpy2 (needs R + DESeq2)
  threads: 1

report:
  output: deseq_report.html
  title: Differential Expression Report
  plotlyjs: cdn              # cdn or inline
  top_results: 25            # Rows of the results table in the report
  results_csv: null          # Optional path for the full results table
"""
