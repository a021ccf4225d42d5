"""HTML report rendering.

The report is a single self-contained HTML document built from a Jinja2
template shipped with the package. Plotly figures are embedded as HTML
fragments; the plotly.js bundle is either referenced from the CDN or
inlined once, in the first figure.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd
import plotly.graph_objects as go
from jinja2 import Environment, PackageLoader, select_autoescape

from . import __version__


logger = logging.getLogger(__name__)

TABLE_COLUMNS = ['gene', 'baseMean', 'log2FoldChange', 'lfcSE', 'pvalue', 'padj', 'direction']


def _format_number(value: Any, digits: int = 3) -> str:
    """Jinja2 filter: compact numbers, scientific notation for small values."""
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return "NA"
    if isinstance(value, (bool, str)):
        return str(value)
    try:
        value = float(value)
    except (TypeError, ValueError):
        return str(value)
    if value != 0 and abs(value) < 10 ** -digits:
        return f"{value:.{digits - 1}e}"
    if value.is_integer():
        return f"{value:,.0f}"
    return f"{value:.{digits}g}" if abs(value) < 1 else f"{value:,.{digits - 1}f}"


class ReportGenerator:
    """Render the differential expression report."""

    def __init__(self, output: Union[str, Path], plotlyjs: str = "cdn"):
        """
        Args:
            output: Path of the HTML file to write
            plotlyjs: 'cdn' to load plotly.js from the CDN, 'inline' to embed it
        """
        self.output = Path(output)
        self.plotlyjs = plotlyjs

        self.env = Environment(
            loader=PackageLoader("deseq_report", "templates"),
            autoescape=select_autoescape(['html', 'xml', 'j2'])
        )
        self.env.filters['num'] = _format_number

    def figure_fragments(self, figures: Sequence[Tuple[str, go.Figure]]) -> List[Dict[str, str]]:
        """Convert (title, figure) pairs into embeddable HTML fragments."""
        fragments = []
        for i, (title, fig) in enumerate(figures):
            if i == 0:
                include_js = 'cdn' if self.plotlyjs == 'cdn' else True
            else:
                include_js = False
            fragments.append({
                'title': title,
                'anchor': f"fig-{i + 1}",
                'html': fig.to_html(full_html=False, include_plotlyjs=include_js),
            })
        return fragments

    def render(
        self,
        title: str,
        figures: Sequence[Tuple[str, go.Figure]],
        results: pd.DataFrame,
        metadata: pd.DataFrame,
        parameters: Dict[str, Any],
        summary: Dict[str, Any],
        warnings: Optional[List[str]] = None,
        top_results: int = 25
    ) -> str:
        """Render the report to a string."""
        template = self.env.get_template("report.html.j2")

        columns = [c for c in TABLE_COLUMNS if c in results.columns]
        top_table = results[columns].head(top_results).to_dict(orient='records')

        sample_table = metadata.reset_index()
        sample_table.columns = [str(c) for c in sample_table.columns]

        return template.render(
            title=title,
            generated=datetime.now().strftime("%Y-%m-%d %H:%M"),
            version=__version__,
            figures=self.figure_fragments(figures),
            parameters=parameters,
            summary=summary,
            warnings=warnings or [],
            result_columns=columns,
            top_results=top_table,
            sample_columns=list(sample_table.columns),
            samples=sample_table.to_dict(orient='records'),
        )

    def write(self, *args, **kwargs) -> Path:
        """Render the report and write it to ``self.output``."""
        html = self.render(*args, **kwargs)
        self.output.parent.mkdir(parents=True, exist_ok=True)
        self.output.write_text(html, encoding='utf-8')
        logger.info(f"Report written to {self.output}")
        return self.output


def write_results_csv(results: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Write the full results table."""
    path = Path(path)
    results.to_csv(path, index=False)
    logger.info(f"Results table written to {path}")
    return path
