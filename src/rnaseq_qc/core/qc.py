"""
Quality assessment views computed from a stabilized expression matrix.

All functions return new objects, the input matrix is never modified.
"""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from pandas import DataFrame, Series
from scipy.cluster.hierarchy import leaves_list, linkage
from scipy.spatial.distance import pdist, squareform
from sklearn.decomposition import PCA


# Number of genes used for clustering heatmaps.
TOP_N_GENES = 500


@dataclass
class PCAResult:
    """Principal components of the samples."""

    scores: DataFrame
    explained_variance_ratio: Series
    loadings: DataFrame
    components: List[str] = field(default_factory=list)

    def axis_label(self, component: int) -> str:
        name = f"PC{component}"
        ratio = self.explained_variance_ratio[name] * 100
        return f"{name} ({ratio:.1f}%)"


@dataclass
class ClusteringResult:
    """Agglomerative clustering of one axis of a matrix."""

    linkage: np.ndarray
    order: np.ndarray
    labels: List[str]
    distances: DataFrame

    @property
    def ordered_labels(self) -> List[str]:
        return [self.labels[i] for i in self.order]


def compute_pca(
    stabilized: DataFrame, n_components: Optional[int] = None
) -> PCAResult:
    """
    PCA over samples.

    The genes x samples matrix is transposed so that samples are the
    observations. Data are centered, not scaled.

    Parameters
    ----------
    stabilized : DataFrame
        Genes x samples matrix, typically rlog or VST values.
    n_components : int, optional
        Defaults to min(n_samples, n_genes).

    Returns
    -------
    PCAResult
    """
    data = stabilized.T
    max_components = min(data.shape)
    if n_components is None:
        n_components = max_components
    if not 1 <= n_components <= max_components:
        raise ValueError(
            f"n_components must be between 1 and {max_components}, "
            f"got {n_components}"
        )

    pca = PCA(n_components=n_components, svd_solver="full")
    scores = pca.fit_transform(data.to_numpy(dtype=float))
    names = [f"PC{i + 1}" for i in range(n_components)]

    # Fix the sign of each component so repeated runs agree.
    for i in range(n_components):
        loading = pca.components_[i]
        if loading[np.argmax(np.abs(loading))] < 0:
            pca.components_[i] = -loading
            scores[:, i] = -scores[:, i]

    return PCAResult(
        scores=pd.DataFrame(scores, index=data.index, columns=names),
        explained_variance_ratio=pd.Series(
            pca.explained_variance_ratio_, index=names
        ),
        loadings=pd.DataFrame(
            pca.components_.T, index=stabilized.index, columns=names
        ),
        components=names,
    )


def pca_axes(result: PCAResult, x: int = 1, y: int = 2) -> DataFrame:
    """
    Two PCA score columns for a 2-D projection.

    Components are 1-based, so `pca_axes(result, 2, 3)` gives PC2 vs PC3.
    """
    n = len(result.components)
    for comp in (x, y):
        if not 1 <= comp <= n:
            raise ValueError(f"Component {comp} out of range 1..{n}")
    return result.scores[[f"PC{x}", f"PC{y}"]].copy()


def gene_variances(matrix: DataFrame) -> Series:
    """Sample variance (ddof=1) of each gene across samples."""
    return matrix.var(axis=1, ddof=1)


def select_variable_genes(
    matrix: DataFrame, n: int = TOP_N_GENES, mode: str = "top"
) -> DataFrame:
    """
    Subset the `n` most (mode="top") or least (mode="bottom") variable genes.

    Genes are fully sorted by variance with a stable sort, so ties keep
    their original row order. When `n` exceeds the number of genes all
    genes are returned in sorted order.
    """
    if n < 0:
        raise ValueError("n must be non-negative")
    variances = gene_variances(matrix).to_numpy()
    if mode == "top":
        order = np.argsort(-variances, kind="stable")
    elif mode == "bottom":
        order = np.argsort(variances, kind="stable")
    else:
        raise ValueError(f"Unknown mode '{mode}', expected 'top' or 'bottom'")
    return matrix.iloc[order[:n]].copy()


def scale_rows(matrix: DataFrame) -> DataFrame:
    """Row-wise z-scores. Rows without variance become all zeros."""
    means = matrix.mean(axis=1)
    sds = matrix.std(axis=1, ddof=1)
    centered = matrix.sub(means, axis=0)
    scaled = centered.div(sds.where(sds > 0, 1.0), axis=0)
    scaled.loc[sds.fillna(0) == 0] = 0.0
    return scaled


def distance_matrix(
    matrix: DataFrame, axis: str = "rows", metric: str = "euclidean"
) -> DataFrame:
    """
    Pairwise distances between rows (genes) or columns (samples).
    """
    if axis == "rows":
        data = matrix
    elif axis == "columns":
        data = matrix.T
    else:
        raise ValueError(f"Unknown axis '{axis}', expected 'rows' or 'columns'")
    dist = squareform(pdist(data.to_numpy(dtype=float), metric=metric))
    return pd.DataFrame(dist, index=data.index, columns=data.index)


def cluster_matrix(
    matrix: DataFrame,
    axis: str = "rows",
    method: str = "complete",
    metric: str = "euclidean",
    scale_by_row: bool = False,
) -> ClusteringResult:
    """
    Hierarchical clustering of genes (axis="rows") or samples.

    Parameters
    ----------
    matrix : DataFrame
        Genes x samples matrix, usually the top variable genes.
    axis : str
        "rows" or "columns".
    method : str
        Linkage method passed to scipy.
    metric : str
        Distance metric passed to scipy.
    scale_by_row : bool
        Z-score each row before computing distances.

    Returns
    -------
    ClusteringResult
    """
    if len(matrix) < 2 and axis == "rows":
        raise ValueError("Need at least two rows to cluster")
    if scale_by_row:
        matrix = scale_rows(matrix)
    distances = distance_matrix(matrix, axis=axis, metric=metric)
    z = linkage(
        squareform(distances.to_numpy(), checks=False), method=method
    )
    return ClusteringResult(
        linkage=z,
        order=leaves_list(z),
        labels=[str(label) for label in distances.index],
        distances=distances,
    )


def heatmap_input(
    stabilized: DataFrame,
    n: int = TOP_N_GENES,
    mode: str = "top",
    scale_by_row: bool = True,
) -> Tuple[DataFrame, ClusteringResult]:
    """
    Variable-gene subset plus its row clustering, ready for a heatmap.
    """
    subset = select_variable_genes(stabilized, n=n, mode=mode)
    clustering = cluster_matrix(subset, axis="rows", scale_by_row=scale_by_row)
    return subset, clustering
