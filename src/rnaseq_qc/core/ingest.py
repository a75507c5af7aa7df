"""
Reading and validating the two inputs of the preprocessing pipeline.

- sample metadata: one row per sample (SampleName, CellType, Status, ...)
- feature counts: featureCounts output, one row per gene, leading "#"
  comment lines, one column per BAM file
"""

import pandas as pd
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union
from pandas import DataFrame


class SampleMismatchError(ValueError):
    """Sample identifiers of metadata and count table do not agree."""

    def __init__(
        self,
        missing: Sequence[str],
        extra: Sequence[str] = (),
        source: Optional[Union[Path, str]] = None,
    ):
        self.missing = list(missing)
        self.extra = list(extra)
        self.source = source
        msg = "Sample identifiers of metadata and count table differ"
        if source is not None:
            msg += f" ({source})"
        if self.missing:
            msg += f"; missing from counts: {self.missing}"
        if self.extra:
            msg += f"; not in metadata: {self.extra}"
        super().__init__(msg)


def read_dataframe(path: Union[str, Path], **kwargs) -> DataFrame:
    """
    Read a tabular file into a pandas DataFrame based on file extension.

    Rules:
    - .csv        -> read as CSV
    - .tsv        -> read as TSV
    - .txt        -> treated as TSV
    - .xls/.xlsx  -> read as Excel
    - other       -> try TSV, raise error if that fails

    Additional keyword arguments are forwarded to the pandas reader.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"File does not exist: {path}")

    suffix = path.suffix.lower()

    try:
        if suffix == ".csv":
            return pd.read_csv(path, **kwargs)

        if suffix in {".tsv", ".txt"}:
            return pd.read_csv(path, sep="\t", **kwargs)

        if suffix in {".xls", ".xlsx"}:
            return pd.read_excel(path, **kwargs)

        try:
            return pd.read_csv(path, sep="\t", **kwargs)
        except Exception as exc:
            raise ValueError(
                f"Unsupported file extension '{suffix}'. "
                "Tried to read as TSV but failed."
            ) from exc

    except Exception as exc:
        raise RuntimeError(f"Failed to read file '{path}': {exc}") from exc


def read_sample_metadata(
    metadata_path: Union[Path, str],
    sample_col: str = "SampleName",
    required_cols: Iterable[str] = ("CellType", "Status"),
) -> DataFrame:
    """
    Load and validate the sample metadata table.

    Parameters
    ----------
    metadata_path : Path or str
        Tab-delimited file (comma-delimited for .csv) with one row per sample.
    sample_col : str
        Column holding the sample identifiers. Becomes the index.
    required_cols : iterable of str
        Columns that must be present besides the sample column.

    Returns
    -------
    DataFrame
        Metadata indexed by sample identifier, in file order.
    """
    metadata_path = Path(metadata_path)
    if not metadata_path.exists():
        raise FileNotFoundError(f"Metadata file not found: {metadata_path}")

    metadata_df = read_dataframe(metadata_path, dtype=str)

    required = [sample_col] + list(required_cols)
    missing_cols = [col for col in required if col not in metadata_df.columns]
    if missing_cols:
        raise ValueError(
            f"Metadata file {metadata_path} missing required columns: "
            f"{missing_cols}. Found: {list(metadata_df.columns)}"
        )

    duplicated = metadata_df[sample_col][metadata_df[sample_col].duplicated()]
    if len(duplicated) > 0:
        raise ValueError(
            f"Duplicate sample identifiers in {metadata_path}: "
            f"{sorted(set(duplicated))}"
        )

    return metadata_df.set_index(sample_col)


def read_feature_counts(
    counts_path: Union[Path, str], comment: str = "#"
) -> DataFrame:
    """
    Load a raw featureCounts table.

    Lines starting with `comment` (the featureCounts command line header) are
    skipped. No reshaping happens here, see `counts.shape_count_matrix`.
    """
    counts_path = Path(counts_path)
    if not counts_path.exists():
        raise FileNotFoundError(f"Count file not found: {counts_path}")
    return read_dataframe(counts_path, comment=comment)


def validate_sample_ids(
    expected: Iterable[str],
    observed: Iterable[str],
    source: Optional[Union[Path, str]] = None,
    allow_extra: bool = False,
) -> None:
    """
    Check that every expected sample id is observed.

    Extra observed ids are an error unless `allow_extra` is set.
    """
    expected = list(expected)
    observed = list(observed)
    observed_set = set(observed)
    expected_set = set(expected)
    missing = [s for s in expected if s not in observed_set]
    extra = [s for s in observed if s not in expected_set]
    if missing or (extra and not allow_extra):
        raise SampleMismatchError(
            missing, [] if allow_extra else extra, source=source
        )


def count_sample_columns(
    raw_counts: DataFrame,
    gene_col: str = "Geneid",
    annotation_cols: Sequence[str] = (
        "Chr",
        "Start",
        "End",
        "Strand",
        "Length",
    ),
) -> List[str]:
    """Columns of a featureCounts table that hold per-sample counts."""
    skip = set(annotation_cols) | {gene_col}
    return [col for col in raw_counts.columns if col not in skip]


def load_count_data(
    metadata_path: Union[Path, str],
    counts_path: Union[Path, str],
    sample_col: str = "SampleName",
    gene_col: str = "Geneid",
    suffix: str = ".bam",
    required_cols: Iterable[str] = ("CellType", "Status"),
    allow_extra: bool = False,
) -> Tuple[DataFrame, DataFrame]:
    """
    Read metadata and count table and check that their samples agree.

    Validation runs before anything else touches the counts, so a mismatch
    aborts the pipeline right at ingestion.

    Returns
    -------
    tuple
        (metadata_df, raw_counts) where raw_counts is the unshaped
        featureCounts table.
    """
    from .counts import strip_sample_suffix

    metadata_df = read_sample_metadata(
        metadata_path, sample_col=sample_col, required_cols=required_cols
    )
    raw_counts = read_feature_counts(counts_path)
    if gene_col not in raw_counts.columns:
        raise ValueError(
            f"Gene column '{gene_col}' not found in count table {counts_path}"
        )

    count_samples = strip_sample_suffix(
        count_sample_columns(raw_counts, gene_col), suffix
    )
    validate_sample_ids(
        metadata_df.index,
        count_samples,
        source=counts_path,
        allow_extra=allow_extra,
    )
    return metadata_df, raw_counts
