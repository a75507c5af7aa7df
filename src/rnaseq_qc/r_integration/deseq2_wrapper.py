import numpy as np
import pandas as pd
import rpy2.robjects as ro

from rpy2.robjects import Formula
from rpy2.robjects.packages import isinstalled
from rpy2.robjects.vectors import FloatVector, StrVector
from typing import Literal, Optional

from pandas import DataFrame, Series


def _load_deseq2():
    """
    Attach DESeq2 and SummarizedExperiment in the embedded R session.
    """
    for package in ("DESeq2", "SummarizedExperiment"):
        if not isinstalled(package):
            raise RuntimeError(
                f"R package '{package}' is not installed in the R library"
            )
        ro.r(f"suppressPackageStartupMessages(library({package}))")


def _count_matrix_to_r(counts: DataFrame):
    values = counts.to_numpy(dtype=float)
    matrix = ro.r["matrix"](
        FloatVector(values.flatten(order="F")),
        nrow=values.shape[0],
        ncol=values.shape[1],
    )
    matrix = ro.r["round"](matrix)
    matrix = ro.r["storage.mode<-"](matrix, "integer")
    matrix = ro.r["dimnames<-"](
        matrix,
        ro.r["list"](
            StrVector([str(g) for g in counts.index]),
            StrVector([str(s) for s in counts.columns]),
        ),
    )
    return matrix


def _metadata_to_r(metadata: DataFrame, terms):
    columns = {}
    for term in terms:
        columns[term] = ro.r["factor"](StrVector(metadata[term].astype(str)))
    col_data = ro.r["data.frame"](**columns)
    col_data = ro.r["rownames<-"](
        col_data, StrVector([str(s) for s in metadata.index])
    )
    return col_data


def _design_terms(design: str):
    formula = design.strip().lstrip("~")
    return [
        t.strip() for t in formula.split("+") if t.strip() and t.strip() not in ("0", "1")
    ]


def deseq2_stabilize(
    counts: DataFrame,
    metadata: DataFrame,
    design: str = "~ CellType",
    method: Literal["rlog", "vst"] = "rlog",
    blind: bool = True,
    size_factors: Optional[Series] = None,
) -> DataFrame:
    """
    Run DESeq2's rlog or vst through rpy2.

    Use this to cross-check the native transformations in
    rnaseq_qc.core.transform against the R implementation. Returns a
    genes x samples DataFrame with the same labels as counts.
    """
    if method not in ("rlog", "vst"):
        raise ValueError(f"Unknown method '{method}', use 'rlog' or 'vst'")
    if list(metadata.index) != list(counts.columns):
        raise ValueError("metadata index must match count columns in order")

    _load_deseq2()
    terms = _design_terms(design)
    missing = [t for t in terms if t not in metadata.columns]
    if missing:
        raise ValueError(f"Design terms not found in metadata: {missing}")

    dds = ro.r["DESeqDataSetFromMatrix"](
        countData=_count_matrix_to_r(counts),
        colData=_metadata_to_r(metadata, terms),
        design=Formula(design if terms else "~ 1"),
    )
    if size_factors is not None:
        dds = ro.r["sizeFactors<-"](
            dds, FloatVector(size_factors.loc[counts.columns].to_numpy(dtype=float))
        )
    else:
        dds = ro.r["estimateSizeFactors"](dds)

    if method == "rlog":
        transformed = ro.r["rlog"](dds, blind=blind)
    else:
        # vst() subsamples 1000 genes for the trend, too many for small sets
        transformed = ro.r["varianceStabilizingTransformation"](dds, blind=blind)

    values = np.asarray(ro.r["assay"](transformed))
    return pd.DataFrame(values, index=counts.index, columns=counts.columns)


def deseq2_size_factors(counts: DataFrame) -> Series:
    """
    DESeq2 median-of-ratios size factors for counts (design ~ 1).
    """
    _load_deseq2()
    col_data = ro.r["data.frame"](
        sample=StrVector([str(s) for s in counts.columns])
    )
    dds = ro.r["DESeqDataSetFromMatrix"](
        countData=_count_matrix_to_r(counts),
        colData=col_data,
        design=Formula("~ 1"),
    )
    dds = ro.r["estimateSizeFactors"](dds)
    values = np.asarray(ro.r["sizeFactors"](dds), dtype=float)
    return pd.Series(values, index=counts.columns, name="size_factor")
