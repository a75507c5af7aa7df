"""
The preprocessing pipeline as an explicit sequence of stages.

    ingestion -> shaping -> filtering -> metadata correction
        -> dataset construction -> quality views

Metadata correction runs before any view that reads sample annotations,
so plots rendered from the result always show corrected labels.
"""

import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Union

from pandas import DataFrame, Series

from .counts import (
    COUNT_THRESHOLD,
    filter_low_counts,
    library_sizes,
    log2_counts,
    shape_count_matrix,
)
from .dataset import CountDataSet
from .ingest import load_count_data
from .metadata import SAMPLE_CORRECTIONS, correct_sample_metadata
from .qc import (
    TOP_N_GENES,
    ClusteringResult,
    PCAResult,
    compute_pca,
    distance_matrix,
    heatmap_input,
    select_variable_genes,
)
from .transform import stabilize_counts


@dataclass
class PreprocessingResult:
    """Everything the pipeline produces; views are independent copies."""

    metadata: DataFrame
    raw_metadata: DataFrame
    counts: DataFrame
    n_genes_raw: int
    dataset: CountDataSet
    library_sizes: Series
    log_counts: DataFrame
    stabilized: DataFrame
    pca: Optional[PCAResult]
    variable_genes: DataFrame
    gene_clustering: Optional[ClusteringResult]
    sample_distances: Optional[DataFrame]


def run_preprocessing(
    metadata_path: Union[Path, str],
    counts_path: Union[Path, str],
    sample_col: str = "SampleName",
    cell_type_col: str = "CellType",
    status_col: str = "Status",
    group_col: str = "Group",
    gene_col: str = "Geneid",
    suffix: str = ".bam",
    threshold: int = COUNT_THRESHOLD,
    corrections: Optional[Mapping[str, str]] = SAMPLE_CORRECTIONS,
    design: Optional[str] = None,
    stabilize_method: str = "rlog",
    top_n: int = TOP_N_GENES,
    scale_by_row: bool = True,
) -> PreprocessingResult:
    """
    Run all stages and return the filtered counts, corrected metadata and
    quality views.

    Parameters
    ----------
    metadata_path, counts_path : Path or str
        Sample sheet and featureCounts table.
    sample_col, cell_type_col, status_col, group_col : str
        Metadata column names.
    gene_col : str
        Gene identifier column of the count table.
    suffix : str
        Decoration stripped from count column names.
    threshold : int
        Genes with total count <= threshold are dropped.
    corrections : mapping, optional
        sample id -> corrected cell type. None skips the correction stage;
        group labels are still derived.
    design : str, optional
        Design formula of the dataset, defaults to "~ <cell_type_col>".
    stabilize_method : str
        "rlog" or "vst".
    top_n : int
        Number of most variable genes used for clustering.
    scale_by_row : bool
        Z-score genes before clustering.

    Returns
    -------
    PreprocessingResult
        PCA, gene clustering and sample distances are None when fewer than
        two genes pass the filter, gene clustering also when top_n < 2.
        Exports do not depend on them.
    """
    print("[1/6] Loading sample metadata and counts...")
    raw_metadata, raw_counts = load_count_data(
        metadata_path,
        counts_path,
        sample_col=sample_col,
        gene_col=gene_col,
        suffix=suffix,
        required_cols=(cell_type_col, status_col),
    )
    print(
        f"  Loaded {len(raw_metadata)} samples, {len(raw_counts)} genes"
    )

    print("[2/6] Shaping count matrix...")
    counts = shape_count_matrix(
        raw_counts, raw_metadata.index, gene_col=gene_col, suffix=suffix
    )
    n_genes_raw = len(counts)

    print("[3/6] Filtering lowly expressed genes...")
    counts = filter_low_counts(counts, threshold=threshold)

    print("[4/6] Correcting sample metadata...")
    corrections = dict(corrections or {})
    absent = [s for s in corrections if s not in raw_metadata.index]
    if absent:
        warnings.warn(f"Samples to correct not in metadata, skipped: {absent}")
    for sample in absent:
        del corrections[sample]
    metadata = correct_sample_metadata(
        raw_metadata,
        overrides=corrections,
        cell_type_col=cell_type_col,
        status_col=status_col,
        group_col=group_col,
    )
    for sample, value in corrections.items():
        before = raw_metadata.loc[sample, cell_type_col]
        print(f"  {sample}: {cell_type_col} {before} -> {value}")

    print("[5/6] Building count dataset...")
    dataset = CountDataSet(
        counts=counts,
        metadata=metadata,
        design=design or f"~ {cell_type_col}",
    )
    size_factors = dataset.estimate_size_factors()
    print(
        f"  Size factors: median = {size_factors.median():.3f}, "
        f"range = [{size_factors.min():.3f}, {size_factors.max():.3f}]"
    )

    print(f"[6/6] Computing quality views ({stabilize_method})...")
    stabilized = stabilize_counts(
        counts, method=stabilize_method, size_factors=size_factors
    )
    if len(counts) < 2:
        warnings.warn(
            f"Only {len(counts)} genes left after filtering, skipping PCA "
            "and clustering"
        )
        pca = sample_distances = None
    else:
        pca = compute_pca(stabilized)
        sample_distances = distance_matrix(stabilized, axis="columns")

    if min(len(counts), top_n) < 2:
        variable_genes = select_variable_genes(stabilized, n=top_n, mode="top")
        gene_clustering = None
    else:
        variable_genes, gene_clustering = heatmap_input(
            stabilized, n=top_n, mode="top", scale_by_row=scale_by_row
        )

    return PreprocessingResult(
        metadata=metadata,
        raw_metadata=raw_metadata,
        counts=counts,
        n_genes_raw=n_genes_raw,
        dataset=dataset,
        library_sizes=library_sizes(counts),
        log_counts=log2_counts(counts),
        stabilized=stabilized,
        pca=pca,
        variable_genes=variable_genes,
        gene_clustering=gene_clustering,
        sample_distances=sample_distances,
    )
