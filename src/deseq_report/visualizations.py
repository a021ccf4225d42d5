"""Diagnostic plots for the DESeq2 report."""

from typing import List, Optional

import numpy as np
import pandas as pd
import plotly.express as px
import plotly.graph_objects as go
from scipy.cluster.hierarchy import leaves_list, linkage
from scipy.spatial.distance import pdist, squareform
from sklearn.decomposition import PCA


COLOR_MAP = {
    'up': '#E74C3C',      # Red
    'down': '#3498DB',    # Blue
    'not_sig': '#95A5A6'  # Gray
}


def classify_significance(
    results: pd.DataFrame,
    fdr_threshold: float = 0.01,
    lfc_threshold: float = 0.0
) -> pd.Series:
    """Label each gene 'up', 'down' or 'not_sig'."""
    significant = (results['padj'] < fdr_threshold) & (results['log2FoldChange'].abs() > lfc_threshold)
    labels = pd.Series('not_sig', index=results.index)
    labels[significant & (results['log2FoldChange'] > 0)] = 'up'
    labels[significant & (results['log2FoldChange'] < 0)] = 'down'
    return labels


def select_top_mean_genes(counts: pd.DataFrame, top_n: int = 20) -> List[str]:
    """Genes with the highest mean across samples, highest first."""
    means = counts.mean(axis=1).sort_values(ascending=False, kind='mergesort')
    return means.head(top_n).index.tolist()


def select_top_variance_genes(counts: pd.DataFrame, top_n: int = 20) -> List[str]:
    """Genes with the highest variance across samples, highest first."""
    variances = counts.var(axis=1).sort_values(ascending=False, kind='mergesort')
    return variances.head(top_n).index.tolist()


def _sample_labels(columns, metadata: pd.DataFrame, condition_col: str) -> List[str]:
    return [f"{s} ({metadata.loc[s, condition_col]})" for s in columns]


def _cluster_order(values: np.ndarray) -> List[int]:
    """Leaf order of an average-linkage Euclidean clustering."""
    if values.shape[0] < 2:
        return list(range(values.shape[0]))
    return leaves_list(linkage(values, method='average', metric='euclidean')).tolist()


def create_count_heatmap(
    normalized_counts: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_col: str,
    top_n: int = 20,
    title: str = "Most Highly Expressed Genes"
) -> go.Figure:
    """
    Heatmap of the top genes by mean normalized count.

    Args:
        normalized_counts: Size-factor normalized counts (genes x samples)
        metadata: Sample metadata
        condition_col: Column shown next to sample names
        top_n: Number of genes
        title: Plot title

    Returns:
        Plotly Figure object
    """
    genes = select_top_mean_genes(normalized_counts, top_n)
    heatmap_data = np.log2(normalized_counts.loc[genes] + 1)

    fig = go.Figure(data=go.Heatmap(
        z=heatmap_data.values,
        x=_sample_labels(heatmap_data.columns, metadata, condition_col),
        y=heatmap_data.index,
        colorscale='Viridis',
        colorbar=dict(title="log<sub>2</sub>(count + 1)"),
        hovertemplate='Gene: %{y}<br>Sample: %{x}<br>log2 count: %{z:.2f}<extra></extra>'
    ))

    fig.update_layout(
        title=title,
        xaxis_title="Samples",
        yaxis_title="Genes",
        template='plotly_white',
        width=800,
        height=max(400, len(genes) * 20),
        xaxis=dict(tickangle=-45),
        yaxis=dict(autorange='reversed', tickfont=dict(size=9))
    )

    return fig


def create_sample_distance_heatmap(
    vst_counts: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_col: str,
    title: str = "Sample-to-Sample Distances"
) -> go.Figure:
    """
    Heatmap of Euclidean distances between samples on the VST scale.

    Samples are ordered by hierarchical clustering of the distances.
    """
    data = vst_counts.T
    distances = squareform(pdist(data.values, metric='euclidean'))

    if len(data) > 1:
        order = leaves_list(linkage(pdist(data.values, metric='euclidean'), method='complete')).tolist()
    else:
        order = [0]

    distances = distances[np.ix_(order, order)]
    labels = _sample_labels(data.index[order], metadata, condition_col)

    fig = go.Figure(data=go.Heatmap(
        z=distances,
        x=labels,
        y=labels,
        colorscale='Blues_r',
        colorbar=dict(title="Distance"),
        hovertemplate='%{x}<br>%{y}<br>Distance: %{z:.2f}<extra></extra>'
    ))

    size = max(500, 40 * len(labels) + 250)
    fig.update_layout(
        title=title,
        template='plotly_white',
        width=size,
        height=size,
        xaxis=dict(tickangle=-45),
        yaxis=dict(autorange='reversed')
    )

    return fig


def create_pca_plot(
    vst_counts: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_col: str,
    ntop: int = 500,
    title: str = "PCA Plot"
) -> go.Figure:
    """
    Create PCA plot of samples.

    Args:
        vst_counts: VST-transformed counts
        metadata: Sample metadata
        condition_col: Column for coloring samples
        ntop: Number of most variable genes used
        title: Plot title

    Returns:
        Plotly Figure object
    """
    genes = select_top_variance_genes(vst_counts, ntop)

    # Transpose (samples as rows)
    data = vst_counts.loc[genes].T

    # Remove genes with zero variance
    data = data.loc[:, data.var() > 0]

    pca = PCA(n_components=min(10, data.shape[0], data.shape[1]))
    pca_coords = pca.fit_transform(data.values)
    if pca_coords.shape[1] < 2:
        pca_coords = np.column_stack([pca_coords, np.zeros(len(pca_coords))])

    pca_df = pd.DataFrame(
        pca_coords[:, :2],
        index=data.index,
        columns=['PC1', 'PC2']
    )
    pca_df = pca_df.join(metadata[[condition_col]].astype(str))

    var_exp = np.zeros(2)
    n_ratios = min(2, len(pca.explained_variance_ratio_))
    var_exp[:n_ratios] = pca.explained_variance_ratio_[:n_ratios] * 100

    fig = px.scatter(
        pca_df,
        x='PC1',
        y='PC2',
        color=condition_col,
        text=pca_df.index,
        title=title,
        labels={
            'PC1': f'PC1 ({var_exp[0]:.1f}%)',
            'PC2': f'PC2 ({var_exp[1]:.1f}%)'
        }
    )

    fig.update_traces(
        marker=dict(size=12, line=dict(width=1, color='white')),
        textposition='top center'
    )

    fig.update_layout(
        template='plotly_white',
        width=800,
        height=600,
        showlegend=True
    )

    return fig


def create_pvalue_histogram(
    results: pd.DataFrame,
    min_base_mean: float = 1.0,
    bins: int = 20,
    title: str = "P-value Distribution"
) -> go.Figure:
    """
    Histogram of raw p-values for genes with baseMean above ``min_base_mean``.
    """
    pvalues = results.loc[results['baseMean'] > min_base_mean, 'pvalue'].dropna()

    fig = go.Figure(data=go.Histogram(
        x=pvalues,
        xbins=dict(start=0.0, end=1.0, size=1.0 / bins),
        marker=dict(color='#7F8C8D', line=dict(color='white', width=1)),
        hovertemplate='p-value: %{x}<br>Genes: %{y}<extra></extra>'
    ))

    fig.update_layout(
        title=f"{title} (baseMean > {min_base_mean:g}, n = {len(pvalues)})",
        xaxis_title="p-value",
        yaxis_title="Number of genes",
        template='plotly_white',
        width=800,
        height=500,
        bargap=0.02,
        xaxis=dict(range=[0, 1])
    )

    return fig


def create_ma_plot(
    results: pd.DataFrame,
    fdr_threshold: float = 0.01,
    lfc_threshold: float = 0.0,
    title: str = "MA Plot"
) -> go.Figure:
    """
    Create MA plot (mean expression vs log2 fold change).

    Args:
        results: DESeq2 results DataFrame
        fdr_threshold: FDR cutoff for significance
        lfc_threshold: Log2 fold change threshold
        title: Plot title

    Returns:
        Plotly Figure object
    """
    plot_data = results.dropna(subset=['log2FoldChange', 'baseMean']).copy()
    plot_data = plot_data[plot_data['baseMean'] > 0]
    plot_data['color'] = classify_significance(plot_data, fdr_threshold, lfc_threshold)

    fig = go.Figure()

    for category, color in COLOR_MAP.items():
        data_subset = plot_data[plot_data['color'] == category]

        fig.add_trace(go.Scatter(
            x=data_subset['baseMean'],
            y=data_subset['log2FoldChange'],
            mode='markers',
            name=category.replace('_', ' ').title(),
            marker=dict(
                color=color,
                size=4,
                opacity=0.5 if category == 'not_sig' else 0.8,
                line=dict(width=0)
            ),
            text=data_subset['gene'],
            customdata=data_subset[['padj']],
            hovertemplate=(
                '<b>%{text}</b><br>' +
                'baseMean: %{x:.1f}<br>' +
                'log2FC: %{y:.2f}<br>' +
                'Padj: %{customdata[0]:.2e}<br>' +
                '<extra></extra>'
            )
        ))

    if lfc_threshold > 0:
        fig.add_hline(y=lfc_threshold, line_dash="dash", line_color="gray")
        fig.add_hline(y=-lfc_threshold, line_dash="dash", line_color="gray")
    fig.add_hline(y=0, line_color="black", line_width=1)

    fig.update_layout(
        title=title,
        xaxis_title="Mean of normalized counts",
        yaxis_title="log<sub>2</sub> Fold Change",
        xaxis_type='log',
        hovermode='closest',
        template='plotly_white',
        width=900,
        height=600,
        showlegend=True
    )

    return fig


def create_volcano_plot(
    results: pd.DataFrame,
    fdr_threshold: float = 0.01,
    lfc_threshold: float = 0.0,
    top_n_labels: int = 10,
    highlight_genes: Optional[List[str]] = None,
    title: str = "Volcano Plot"
) -> go.Figure:
    """
    Create interactive volcano plot.

    Args:
        results: DESeq2 results DataFrame
        fdr_threshold: FDR cutoff for significance
        lfc_threshold: Log2 fold change threshold
        top_n_labels: Number of top up and down genes to label
        highlight_genes: Genes to label regardless of significance
        title: Plot title

    Returns:
        Plotly Figure object
    """
    plot_data = results.dropna(subset=['padj', 'log2FoldChange']).copy()
    plot_data['-log10padj'] = -np.log10(plot_data['padj'].astype(float))

    # padj == 0 gives inf; pin those just above the highest finite value
    finite = plot_data['-log10padj'].replace([np.inf, -np.inf], np.nan)
    max_log10p = finite.max() if finite.notna().any() else 1.0
    plot_data['-log10padj'] = plot_data['-log10padj'].replace([np.inf], max_log10p * 1.1)

    plot_data['color'] = classify_significance(plot_data, fdr_threshold, lfc_threshold)

    fig = go.Figure()

    for category, color in COLOR_MAP.items():
        data_subset = plot_data[plot_data['color'] == category]

        # Size by baseMean (expression level), scaled to 3-13
        sizes = np.log10(data_subset['baseMean'] + 1)
        if len(sizes) and sizes.max() > 0:
            sizes = (sizes / sizes.max() * 10) + 3
        else:
            sizes = 5

        fig.add_trace(go.Scatter(
            x=data_subset['log2FoldChange'],
            y=data_subset['-log10padj'],
            mode='markers',
            name=category.replace('_', ' ').title(),
            marker=dict(
                color=color,
                size=sizes,
                opacity=0.6 if category == 'not_sig' else 0.8,
                line=dict(width=0)
            ),
            text=data_subset['gene'],
            customdata=data_subset[['baseMean', 'pvalue', 'padj']],
            hovertemplate=(
                '<b>%{text}</b><br>' +
                'log2FC: %{x:.2f}<br>' +
                '-log10(padj): %{y:.2f}<br>' +
                'Padj: %{customdata[2]:.2e}<br>' +
                'BaseMean: %{customdata[0]:.0f}<br>' +
                '<extra></extra>'
            )
        ))

    fig.add_hline(
        y=-np.log10(fdr_threshold),
        line_dash="dash",
        line_color="gray",
        annotation_text=f"FDR = {fdr_threshold}",
        annotation_position="right"
    )

    if lfc_threshold > 0:
        fig.add_vline(x=lfc_threshold, line_dash="dash", line_color="gray")
        fig.add_vline(x=-lfc_threshold, line_dash="dash", line_color="gray")

    labelled = []
    if top_n_labels > 0:
        sig_genes = plot_data[plot_data['color'] != 'not_sig']
        sig_genes = sig_genes.sort_values('-log10padj', ascending=False)
        labelled.append(sig_genes[sig_genes['color'] == 'up'].head(top_n_labels))
        labelled.append(sig_genes[sig_genes['color'] == 'down'].head(top_n_labels))
    if highlight_genes:
        labelled.append(plot_data[plot_data['gene'].isin(highlight_genes)])

    if labelled:
        top_genes = pd.concat(labelled).drop_duplicates(subset='gene')
        for _, gene in top_genes.iterrows():
            fig.add_annotation(
                x=gene['log2FoldChange'],
                y=gene['-log10padj'],
                text=gene['gene'],
                showarrow=True,
                arrowhead=2,
                arrowsize=1,
                arrowwidth=1,
                arrowcolor='black',
                ax=20 if gene['log2FoldChange'] > 0 else -20,
                ay=-20,
                font=dict(size=9),
                bgcolor='rgba(255, 255, 255, 0.8)',
                borderpad=2
            )

    fig.update_layout(
        title=title,
        xaxis_title="log<sub>2</sub> Fold Change",
        yaxis_title="-log<sub>10</sub> (adjusted p-value)",
        hovermode='closest',
        template='plotly_white',
        width=900,
        height=600,
        showlegend=True,
        legend=dict(
            x=0.02,
            y=0.98,
            bgcolor='rgba(255, 255, 255, 0.8)',
            bordercolor='black',
            borderwidth=1
        )
    )

    return fig


def create_variance_heatmap(
    vst_counts: pd.DataFrame,
    metadata: pd.DataFrame,
    condition_col: str,
    top_n: int = 20,
    cluster_genes: bool = True,
    cluster_samples: bool = True,
    title: str = "Most Variable Genes"
) -> go.Figure:
    """
    Heatmap of the most variable genes, centered by each gene's mean.

    Args:
        vst_counts: VST-transformed counts
        metadata: Sample metadata
        condition_col: Column shown next to sample names
        top_n: Number of genes
        cluster_genes: Whether to cluster genes
        cluster_samples: Whether to cluster samples
        title: Plot title

    Returns:
        Plotly Figure object
    """
    genes = select_top_variance_genes(vst_counts, top_n)
    heatmap_data = vst_counts.loc[genes]
    heatmap_data = heatmap_data.sub(heatmap_data.mean(axis=1), axis=0)

    gene_order = list(range(len(genes)))
    sample_order = list(range(heatmap_data.shape[1]))

    if cluster_genes:
        gene_order = _cluster_order(heatmap_data.values)
    if cluster_samples:
        sample_order = _cluster_order(heatmap_data.T.values)

    heatmap_data = heatmap_data.iloc[gene_order, sample_order]
    limit = float(np.abs(heatmap_data.values).max()) if heatmap_data.size else 1.0

    fig = go.Figure(data=go.Heatmap(
        z=heatmap_data.values,
        x=_sample_labels(heatmap_data.columns, metadata, condition_col),
        y=heatmap_data.index,
        colorscale='RdBu_r',
        zmid=0,
        zmin=-limit,
        zmax=limit,
        colorbar=dict(title="VST - mean"),
        hovertemplate='Gene: %{y}<br>Sample: %{x}<br>Deviation: %{z:.2f}<extra></extra>'
    ))

    fig.update_layout(
        title=title,
        xaxis_title="Samples",
        yaxis_title="Genes",
        template='plotly_white',
        width=800,
        height=max(400, len(genes) * 20),
        xaxis=dict(tickangle=-45),
        yaxis=dict(autorange='reversed', tickfont=dict(size=9))
    )

    return fig
