"""
Count matrix shaping, filtering and simple per-sample statistics.
"""

import numpy as np
import pandas as pd
from typing import List, Optional, Sequence
from pandas import DataFrame, Series

from .ingest import SampleMismatchError, count_sample_columns


# Genes with a total count at or below this are dropped.
COUNT_THRESHOLD = 5

# Drawn on library size plots for visual inspection only.
LIBRARY_SIZE_REFERENCE = 20_000_000


def strip_sample_suffix(columns: Sequence[str], suffix: str = ".bam") -> List[str]:
    """
    Remove a trailing file suffix (e.g. ".bam") from sample column names.

    Parameters
    ----------
    columns : sequence of str
        Column names as written by the counting tool.
    suffix : str
        Suffix to remove. Names without it are returned unchanged.

    Returns
    -------
    list of str
        Cleaned names in the same order.
    """
    if not suffix:
        return [str(col) for col in columns]
    return [
        str(col)[: -len(suffix)] if str(col).endswith(suffix) else str(col)
        for col in columns
    ]


def _validate_counts(counts: DataFrame) -> DataFrame:
    for col in counts.columns:
        if not pd.api.types.is_numeric_dtype(counts[col]):
            raise ValueError(f"Sample column '{col}' contains non-numeric values")
    if counts.isna().any().any():
        bad = counts.columns[counts.isna().any()].tolist()
        raise ValueError(f"Missing count values in sample columns: {bad}")
    if (counts < 0).any().any():
        bad = counts.columns[(counts < 0).any()].tolist()
        raise ValueError(f"Negative counts in sample columns: {bad}")
    values = counts.to_numpy(dtype=float)
    if not np.all(np.equal(np.mod(values, 1), 0)):
        raise ValueError("Count table contains non-integer values")
    return counts.astype(np.int64)


def shape_count_matrix(
    raw_counts: DataFrame,
    sample_ids: Sequence[str],
    gene_col: str = "Geneid",
    suffix: str = ".bam",
) -> DataFrame:
    """
    Turn a raw featureCounts table into a genes x samples count matrix.

    The gene column becomes the index, annotation columns (Chr, Start, ...)
    are dropped, the suffix is stripped from sample columns and the columns
    are selected in `sample_ids` order.

    Parameters
    ----------
    raw_counts : DataFrame
        Table as returned by `ingest.read_feature_counts`.
    sample_ids : sequence of str
        Sample order of the metadata table.
    gene_col : str
        Column holding gene identifiers.
    suffix : str
        Decoration to strip from sample column names.

    Returns
    -------
    DataFrame
        Integer count matrix, index = gene ids, columns = sample_ids.
    """
    if gene_col not in raw_counts.columns:
        raise ValueError(f"Gene column '{gene_col}' not found in count table")

    sample_cols = count_sample_columns(raw_counts, gene_col)
    counts = raw_counts.set_index(gene_col)[sample_cols]
    counts.columns = strip_sample_suffix(sample_cols, suffix)
    counts.index = counts.index.astype(str)
    counts.index.name = gene_col

    if counts.index.has_duplicates:
        dups = counts.index[counts.index.duplicated()].unique().tolist()
        raise ValueError(f"Duplicate gene identifiers: {dups[:10]}")
    if counts.columns.has_duplicates:
        dups = counts.columns[counts.columns.duplicated()].unique().tolist()
        raise ValueError(f"Duplicate sample columns after stripping: {dups}")

    sample_ids = [str(s) for s in sample_ids]
    missing = [s for s in sample_ids if s not in counts.columns]
    if missing:
        raise SampleMismatchError(missing)

    counts = counts.loc[:, sample_ids].copy()
    counts.columns.name = None
    return _validate_counts(counts)


def filter_low_counts(
    counts: DataFrame, threshold: int = COUNT_THRESHOLD
) -> DataFrame:
    """
    Drop genes whose total count across samples is <= threshold.

    Retained rows keep their order. Row counts before and after are printed.
    """
    if not isinstance(counts, DataFrame):
        raise TypeError("counts must be a pandas DataFrame")
    non_numeric = [
        col
        for col in counts.columns
        if not pd.api.types.is_numeric_dtype(counts[col])
    ]
    if non_numeric:
        raise TypeError(f"Non-numeric count columns: {non_numeric}")

    keep = counts.sum(axis=1) > threshold
    filtered = counts.loc[keep].copy()
    print(
        f"  Filtering genes with total count <= {threshold}: "
        f"{len(counts)} -> {len(filtered)} genes"
    )
    return filtered


def library_sizes(counts: DataFrame) -> Series:
    """Total read count per sample."""
    sizes = counts.sum(axis=0)
    sizes.name = "library_size"
    return sizes


def compute_library_stats(counts: DataFrame) -> DataFrame:
    """
    Compute per-sample library statistics.

    Parameters
    ----------
    counts : DataFrame
        Genes x samples count matrix.

    Returns
    -------
    DataFrame
        One row per sample with columns:
        - library_size: Total counts per sample
        - n_genes: Number of genes
        - n_zeros: Number of zero-count genes
        - zero_fraction: Fraction of zero-count genes
        - top1pct_fraction: Fraction of counts in the top 1% genes
        - n_expressed: Number of genes with at least 1 count per million
    """
    cpm = calculate_cpm(counts)
    stats_records = []

    for col in counts.columns:
        sample_counts = counts[col]
        n_genes = len(sample_counts)
        library_size = sample_counts.sum()
        n_zeros = (sample_counts == 0).sum()
        zero_fraction = n_zeros / n_genes if n_genes > 0 else 0.0

        n_top = max(1, int(n_genes * 0.01))
        top_counts = sample_counts.nlargest(n_top).sum()
        top1pct_fraction = top_counts / library_size if library_size > 0 else 0

        stats_records.append(
            {
                "sample": col,
                "library_size": library_size,
                "n_genes": n_genes,
                "n_zeros": n_zeros,
                "zero_fraction": zero_fraction,
                "top1pct_fraction": top1pct_fraction,
                "n_expressed": int((cpm[col] >= 1).sum()),
            }
        )

    return pd.DataFrame(stats_records).set_index("sample")


def log2_counts(counts: DataFrame, pseudocount: float = 1.0) -> DataFrame:
    """
    log2(count + pseudocount) for display.

    The pseudocount must be positive, zero counts would otherwise give -inf.
    """
    if pseudocount <= 0:
        raise ValueError("pseudocount must be > 0 to avoid log2(0)")
    return np.log2(counts.astype(float) + pseudocount)


def calculate_cpm(counts: DataFrame) -> DataFrame:
    """Counts per million."""
    totals = counts.sum(axis=0)
    return counts.div(totals.where(totals > 0, 1), axis=1) * 1e6


def estimate_size_factors(
    counts: DataFrame, method: str = "auto"
) -> Series:
    """
    Median-of-ratios size factors.

    For each gene the geometric mean across samples is the reference; each
    sample's size factor is the median ratio of its counts to the reference.

    Parameters
    ----------
    counts : DataFrame
        Genes x samples raw counts.
    method : str
        "auto": "ratio" when at least one gene has no zero count, else
        "poscounts".
        "ratio": only genes without any zero count contribute.
        "poscounts": geometric means over positive counts only, and the
        factors are rescaled to a geometric mean of 1. Use when every gene
        has a zero somewhere.

    Returns
    -------
    Series
        Size factors indexed by sample name.
    """
    values = counts.to_numpy(dtype=float)

    if method == "auto":
        method = "ratio" if (values > 0).all(axis=1).any() else "poscounts"

    if method == "ratio":
        with np.errstate(divide="ignore"):
            log_counts = np.log(values)
        log_geo_means = log_counts.mean(axis=1)
        usable = np.isfinite(log_geo_means)
        if not usable.any():
            raise ValueError(
                "Every gene contains at least one zero; "
                "use method='poscounts'"
            )
        size_factors = []
        for i in range(values.shape[1]):
            col = log_counts[usable, i]
            ref = log_geo_means[usable]
            ok = values[usable, i] > 0
            size_factors.append(np.exp(np.median(col[ok] - ref[ok])))
        size_factors = np.asarray(size_factors)
    elif method == "poscounts":
        with np.errstate(divide="ignore"):
            log_counts = np.where(values > 0, np.log(values), 0.0)
        n = values.shape[1]
        log_geo_means = log_counts.sum(axis=1) / n
        usable = values.sum(axis=1) > 0
        size_factors = []
        for i in range(n):
            ok = usable & (values[:, i] > 0)
            if not ok.any():
                size_factors.append(1.0)
                continue
            size_factors.append(
                np.exp(np.median(log_counts[ok, i] - log_geo_means[ok]))
            )
        size_factors = np.asarray(size_factors)
        size_factors = size_factors / np.exp(np.mean(np.log(size_factors)))
    else:
        raise ValueError(f"Unknown size factor method: {method}")

    return pd.Series(size_factors, index=counts.columns, name="size_factor")


def normalized_counts(
    counts: DataFrame, size_factors: Optional[Series] = None
) -> DataFrame:
    """
    Divide each sample's counts by its size factor.

    Size factors are estimated when not given.
    """
    if size_factors is None:
        size_factors = estimate_size_factors(counts)
    missing = [col for col in counts.columns if col not in size_factors.index]
    if missing:
        raise ValueError(f"No size factor for samples: {missing}")
    return counts.astype(float).div(size_factors.loc[counts.columns], axis=1)
