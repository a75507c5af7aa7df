"""
Sample metadata corrections and visual encodings of sample annotations.
"""

from typing import Dict, Iterable, Mapping, Optional

import seaborn as sns  # type: ignore
from pandas import DataFrame


# Two samples whose cell type was swapped in the original sample sheet.
SAMPLE_CORRECTIONS = {
    "MCL1.DG": "basal",
    "MCL1.LA": "luminal",
}

MARKERS = ["o", "s", "^", "D", "v", "P", "X", "*", "<", ">"]


class MetadataCorrectionError(ValueError):
    """Metadata were already corrected; deriving group labels again would
    concatenate onto the existing labels."""


def apply_sample_overrides(
    metadata: DataFrame,
    overrides: Mapping[str, str] = SAMPLE_CORRECTIONS,
    field: str = "CellType",
) -> DataFrame:
    """
    Set `field` for the given samples.

    Returns a copy. Running it twice gives the same result.

    Parameters
    ----------
    metadata : DataFrame
        Metadata indexed by sample identifier.
    overrides : mapping
        sample id -> new value.
    field : str
        Column to overwrite.
    """
    if field not in metadata.columns:
        raise KeyError(f"Column '{field}' not in metadata")
    unknown = [sample for sample in overrides if sample not in metadata.index]
    if unknown:
        raise KeyError(f"Samples not in metadata: {unknown}")

    corrected = metadata.copy()
    for sample, value in overrides.items():
        corrected.loc[sample, field] = value
    return corrected


def derive_group_labels(
    metadata: DataFrame,
    left: str = "CellType",
    right: str = "Status",
    target: str = "Group",
    sep: str = ".",
) -> DataFrame:
    """
    Set `target` to `left + sep + right` for every sample.

    Plain concatenation: with `right == target` a second call appends to
    its own output ("basal.virgin" -> "basal.basal.virgin").
    """
    for col in (left, right):
        if col not in metadata.columns:
            raise KeyError(f"Column '{col}' not in metadata")
    labelled = metadata.copy()
    labelled[target] = (
        labelled[left].astype(str) + sep + labelled[right].astype(str)
    )
    return labelled


def correct_sample_metadata(
    metadata: DataFrame,
    overrides: Mapping[str, str] = SAMPLE_CORRECTIONS,
    cell_type_col: str = "CellType",
    status_col: str = "Status",
    group_col: str = "Group",
    sep: str = ".",
) -> DataFrame:
    """
    Fix mislabeled cell types and recompute the group labels.

    Runs once per metadata table. The returned frame is marked in
    `attrs["corrected"]`, and passing a marked frame again raises
    MetadataCorrectionError.
    """
    if metadata.attrs.get("corrected", False):
        raise MetadataCorrectionError(
            "Sample metadata were already corrected; group labels are "
            "derived once from the original fields"
        )
    corrected = apply_sample_overrides(metadata, overrides, field=cell_type_col)
    corrected = derive_group_labels(
        corrected,
        left=cell_type_col,
        right=status_col,
        target=group_col,
        sep=sep,
    )
    corrected.attrs["corrected"] = True
    return corrected


def _levels(values: Iterable) -> list:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def category_colors(
    values: Iterable, palette: str = "Set1", order: Optional[Iterable] = None
) -> Dict:
    """
    Map each distinct value to a colour.

    Levels are taken in `order` if given, else in order of appearance.
    A new mapping is built on every call.
    """
    levels = _levels(order if order is not None else values)
    colors = sns.color_palette(palette, n_colors=max(len(levels), 1))
    return {level: colors[i] for i, level in enumerate(levels)}


def category_markers(values: Iterable, order: Optional[Iterable] = None) -> Dict:
    """Map each distinct value to a matplotlib marker."""
    levels = _levels(order if order is not None else values)
    return {level: MARKERS[i % len(MARKERS)] for i, level in enumerate(levels)}
