from pathlib import Path
from typing import Optional, Tuple, Union
from pandas import DataFrame

import matplotlib.pyplot as plt

from rnaseq_qc.core.counts import LIBRARY_SIZE_REFERENCE, library_sizes
from rnaseq_qc.core.plots import (
    plot_library_sizes,
    plot_pca,
    plot_variable_gene_heatmap,
)
from rnaseq_qc.core.qc import TOP_N_GENES, compute_pca, select_variable_genes
from .io import save_figure, read_dataframe


def _as_frame(df: Union[Path, str, DataFrame], name: str) -> DataFrame:
    if isinstance(df, str) or isinstance(df, Path):
        return read_dataframe(df, index_col=0)
    elif isinstance(df, DataFrame):
        return df
    raise TypeError(f"{name} must be a DataFrame or a path to a file")


def write_library_size_plot(
    filename: str,
    folder: Union[Path, str],
    counts: Union[Path, str, DataFrame],
    metadata: Optional[Union[Path, str, DataFrame]] = None,
    color_by: Optional[str] = None,
    reference: Optional[float] = LIBRARY_SIZE_REFERENCE,
    formats=None,
):
    counts = _as_frame(counts, "counts")
    if metadata is not None:
        metadata = _as_frame(metadata, "metadata")
    fig = plot_library_sizes(
        library_sizes(counts),
        metadata=metadata,
        color_by=color_by,
        reference=reference,
    )
    written = save_figure(fig, Path(folder), str(filename), formats=formats)
    plt.close(fig)
    return written


def write_pca_plot(
    filename: str,
    folder: Union[Path, str],
    stabilized: Union[Path, str, DataFrame],
    metadata: Union[Path, str, DataFrame],
    components: Tuple[int, int] = (1, 2),
    color_by: Optional[str] = "CellType",
    shape_by: Optional[str] = "Status",
    label_samples: bool = False,
    formats=None,
):
    stabilized = _as_frame(stabilized, "stabilized")
    metadata = _as_frame(metadata, "metadata")
    pca_result = compute_pca(stabilized)
    fig = plot_pca(
        pca_result,
        metadata,
        x=components[0],
        y=components[1],
        color_by=color_by,
        shape_by=shape_by,
        label_samples=label_samples,
    )
    written = save_figure(fig, Path(folder), str(filename), formats=formats)
    plt.close(fig)
    return written


def write_variable_gene_heatmap(
    filename: str,
    folder: Union[Path, str],
    stabilized: Union[Path, str, DataFrame],
    metadata: Optional[Union[Path, str, DataFrame]] = None,
    n: int = TOP_N_GENES,
    mode: str = "top",
    color_by: Optional[str] = "CellType",
    scale_by_row: bool = True,
    formats=None,
):
    stabilized = _as_frame(stabilized, "stabilized")
    if metadata is not None:
        metadata = _as_frame(metadata, "metadata")
    subset = select_variable_genes(stabilized, n=n, mode=mode)
    fig = plot_variable_gene_heatmap(
        subset,
        metadata,
        color_by=color_by,
        scale_by_row=scale_by_row,
        title=f"{mode.capitalize()} {len(subset)} variable genes",
    )
    written = save_figure(fig, Path(folder), str(filename), formats=formats)
    plt.close(fig)
    return written
