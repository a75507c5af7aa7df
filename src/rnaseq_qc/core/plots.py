"""
Plotting functions for count data quality control.

Every function takes already computed views and returns a matplotlib
figure; nothing is written to disk here (see services.plots_io).
"""

import numpy as np
import pandas as pd  # type: ignore
import matplotlib.pyplot as plt  # type: ignore
import seaborn as sns  # type: ignore
from typing import Optional, Tuple
from pandas import DataFrame, Series  # type: ignore
from matplotlib.figure import Figure  # type: ignore
from matplotlib.lines import Line2D  # type: ignore
from matplotlib.patches import Patch  # type: ignore

from .counts import LIBRARY_SIZE_REFERENCE
from .metadata import category_colors, category_markers
from .qc import PCAResult, cluster_matrix, pca_axes, scale_rows


def _sample_colors(
    samples, metadata: Optional[DataFrame], color_by: Optional[str]
):
    if metadata is None or color_by is None:
        return None, {}
    values = metadata.loc[list(samples), color_by]
    color_map = category_colors(values)
    return [color_map[v] for v in values], color_map


def plot_library_sizes(
    sizes: Series,
    metadata: Optional[DataFrame] = None,
    color_by: Optional[str] = None,
    reference: Optional[float] = LIBRARY_SIZE_REFERENCE,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (10, 5),
) -> Figure:
    """
    Bar chart of library sizes with a dashed reference line.

    Parameters
    ----------
    sizes : Series
        Library size per sample (see counts.library_sizes).
    metadata : DataFrame, optional
        Sample metadata used to colour bars.
    color_by : str, optional
        Metadata column to colour by.
    reference : float, optional
        Height of the reference line, None to omit it.
    title : str, optional
        Plot title.
    figsize : tuple
        Figure size.

    Returns
    -------
    Figure
        Matplotlib figure
    """
    fig, ax = plt.subplots(figsize=figsize)
    colors, color_map = _sample_colors(sizes.index, metadata, color_by)
    ax.bar(
        range(len(sizes)),
        sizes.to_numpy(),
        color=colors if colors is not None else "steelblue",
        edgecolor="black",
        linewidth=0.5,
    )
    ax.set_xticks(range(len(sizes)))
    ax.set_xticklabels(sizes.index, rotation=90)
    ax.set_ylabel("Library size (reads)")

    if reference is not None:
        ax.axhline(reference, linestyle="--", color="black", linewidth=1)

    if color_map:
        handles = [Patch(facecolor=c, label=str(k)) for k, c in color_map.items()]
        ax.legend(handles=handles, title=color_by, loc="best", fontsize=8)

    ax.set_title(title or "Library sizes", fontsize=14, pad=10)
    plt.tight_layout()
    return fig


def plot_count_distributions(
    log_counts: DataFrame,
    metadata: Optional[DataFrame] = None,
    color_by: Optional[str] = None,
    ylabel: str = "log2(count + 1)",
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (10, 5),
) -> Figure:
    """
    One boxplot per sample with a line at the overall median.

    Used for log2 counts as well as rlog/VST matrices.
    """
    fig, ax = plt.subplots(figsize=figsize)
    colors, color_map = _sample_colors(log_counts.columns, metadata, color_by)

    long_df = log_counts.melt(var_name="sample", value_name="value")
    palette = None
    if colors is not None:
        palette = dict(zip(log_counts.columns, colors))
    sns.boxplot(
        data=long_df,
        x="sample",
        y="value",
        hue="sample" if palette is not None else None,
        palette=palette,
        legend=False,
        order=list(log_counts.columns),
        fliersize=1,
        ax=ax,
    )
    ax.axhline(
        float(np.median(log_counts.to_numpy())), color="blue", linewidth=1
    )
    ax.set_xlabel("")
    ax.set_ylabel(ylabel)
    ax.tick_params(axis="x", rotation=90)

    if color_map:
        handles = [Patch(facecolor=c, label=str(k)) for k, c in color_map.items()]
        ax.legend(handles=handles, title=color_by, loc="best", fontsize=8)

    ax.set_title(title or "Count distributions", fontsize=14, pad=10)
    plt.tight_layout()
    return fig


def plot_pca(
    pca_result: PCAResult,
    metadata: DataFrame,
    x: int = 1,
    y: int = 2,
    color_by: Optional[str] = "CellType",
    shape_by: Optional[str] = "Status",
    label_samples: bool = False,
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (7, 6),
) -> Figure:
    """
    Scatter plot of two principal components.

    Parameters
    ----------
    pca_result : PCAResult
        Output of qc.compute_pca.
    metadata : DataFrame
        Sample metadata indexed like the PCA scores.
    x, y : int
        1-based components to plot, e.g. x=2, y=3.
    color_by : str, optional
        Metadata column mapped to colour.
    shape_by : str, optional
        Metadata column mapped to marker shape.
    label_samples : bool
        Annotate points with sample names.

    Returns
    -------
    Figure
        Matplotlib figure
    """
    coords = pca_axes(pca_result, x, y)
    meta = metadata.loc[coords.index]

    color_map = category_colors(meta[color_by]) if color_by else {}
    marker_map = category_markers(meta[shape_by]) if shape_by else {}

    fig, ax = plt.subplots(figsize=figsize)
    for sample, (px, py) in coords.iterrows():
        color = color_map.get(meta.loc[sample, color_by]) if color_by else "steelblue"
        marker = marker_map.get(meta.loc[sample, shape_by]) if shape_by else "o"
        ax.scatter(px, py, color=color, marker=marker, s=60, edgecolor="black")
        if label_samples:
            ax.annotate(
                sample, (px, py), fontsize=7, xytext=(3, 3),
                textcoords="offset points",
            )

    handles = []
    for level, color in color_map.items():
        handles.append(
            Line2D([], [], marker="o", linestyle="", color=color, label=str(level))
        )
    for level, marker in marker_map.items():
        handles.append(
            Line2D(
                [], [], marker=marker, linestyle="", color="grey", label=str(level)
            )
        )
    if handles:
        ax.legend(handles=handles, loc="best", fontsize=8)

    ax.set_xlabel(pca_result.axis_label(x))
    ax.set_ylabel(pca_result.axis_label(y))
    ax.set_title(title or f"PCA: PC{x} vs PC{y}", fontsize=14, pad=10)
    plt.tight_layout()
    return fig


def plot_variable_gene_heatmap(
    subset: DataFrame,
    metadata: Optional[DataFrame] = None,
    color_by: Optional[str] = "CellType",
    scale_by_row: bool = True,
    method: str = "complete",
    metric: str = "euclidean",
    cmap: str = "RdYlBu_r",
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (8, 10),
) -> Figure:
    """
    Clustered heatmap of a gene subset (usually the top variable genes).

    Rows and columns are ordered by the dendrograms from qc.cluster_matrix,
    computed on the row-scaled values when `scale_by_row` is set.
    """
    data = scale_rows(subset) if scale_by_row else subset
    row_clust = cluster_matrix(data, axis="rows", method=method, metric=metric)
    col_clust = cluster_matrix(data, axis="columns", method=method, metric=metric)

    col_colors = None
    color_map = {}
    if metadata is not None and color_by is not None:
        colors, color_map = _sample_colors(subset.columns, metadata, color_by)
        col_colors = pd.Series(colors, index=subset.columns, name=color_by)

    grid = sns.clustermap(
        data,
        row_linkage=row_clust.linkage,
        col_linkage=col_clust.linkage,
        col_colors=col_colors,
        cmap=cmap,
        center=0 if scale_by_row else None,
        yticklabels=len(subset) <= 60,
        xticklabels=True,
        figsize=figsize,
    )
    if color_map:
        handles = [Patch(facecolor=c, label=str(k)) for k, c in color_map.items()]
        grid.ax_heatmap.legend(
            handles=handles,
            title=color_by,
            bbox_to_anchor=(1.25, 1.0),
            loc="upper left",
            fontsize=8,
        )
    grid.fig.suptitle(
        title or f"Top {len(subset)} variable genes", fontsize=14, y=1.02
    )
    return grid.fig


def plot_sample_distance_heatmap(
    distances: DataFrame,
    metadata: Optional[DataFrame] = None,
    color_by: Optional[str] = "Group",
    cmap: str = "Blues_r",
    title: Optional[str] = None,
    figsize: Tuple[float, float] = (8, 7),
) -> Figure:
    """
    Heatmap of pairwise sample distances (see qc.distance_matrix with
    axis="columns").
    """
    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        distances,
        ax=ax,
        cmap=cmap,
        square=True,
        xticklabels=True,
        yticklabels=True,
        cbar_kws={"label": "Euclidean distance"},
        linewidths=0.5,
    )
    if metadata is not None and color_by is not None:
        labels = [
            f"{sample} ({metadata.loc[sample, color_by]})"
            for sample in distances.index
        ]
        ax.set_yticklabels(labels, rotation=0)
    ax.set_title(title or "Sample distances", fontsize=14, pad=10)
    plt.tight_layout()
    return fig
