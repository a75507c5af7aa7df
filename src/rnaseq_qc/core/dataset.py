"""
Container for a filtered count matrix together with its sample metadata.
"""

from dataclasses import dataclass
from typing import Optional

from pandas import DataFrame, Series

from .counts import estimate_size_factors, normalized_counts
from .ingest import validate_sample_ids


@dataclass
class CountDataSet:
    """
    Counts, metadata and design, the input of a differential expression run.

    Attributes
    ----------
    counts : DataFrame
        Genes x samples integer counts.
    metadata : DataFrame
        Sample metadata indexed by sample id, same order as counts columns.
    design : str
        Model formula for the downstream analysis, e.g. "~ CellType".
    size_factors : Series, optional
        Set by `estimate_size_factors`.
    """

    counts: DataFrame
    metadata: DataFrame
    design: str = "~ CellType"
    size_factors: Optional[Series] = None

    def __post_init__(self):
        validate_sample_ids(self.metadata.index, self.counts.columns)
        if list(self.metadata.index) != list(self.counts.columns):
            raise ValueError(
                "Count columns must be in metadata sample order: "
                f"{list(self.metadata.index)} vs {list(self.counts.columns)}"
            )
        for term in self.design_terms:
            if term not in self.metadata.columns:
                raise ValueError(
                    f"Design term '{term}' is not a metadata column. "
                    f"Available: {list(self.metadata.columns)}"
                )

    @property
    def design_terms(self):
        formula = self.design.strip()
        if formula.startswith("~"):
            formula = formula[1:]
        terms = [term.strip() for term in formula.split("+")]
        return [term for term in terms if term and term not in ("0", "1")]

    @property
    def shape(self):
        return self.counts.shape

    def estimate_size_factors(self, method: str = "auto") -> Series:
        self.size_factors = estimate_size_factors(self.counts, method=method)
        return self.size_factors

    def normalized_counts(self) -> DataFrame:
        if self.size_factors is None:
            raise ValueError(
                "Size factors not estimated; call estimate_size_factors()"
            )
        return normalized_counts(self.counts, self.size_factors)
