"""
Tests for r_integration/deseq2_wrapper.py.

Skipped unless rpy2 and the R packages DESeq2 and SummarizedExperiment are
available.
"""

import pytest
import numpy as np

pytest.importorskip("rpy2")

from rpy2.robjects.packages import isinstalled

if not (isinstalled("DESeq2") and isinstalled("SummarizedExperiment")):
    pytest.skip("DESeq2 not installed in R", allow_module_level=True)

from rnaseq_qc.core.counts import estimate_size_factors, filter_low_counts
from rnaseq_qc.core.metadata import correct_sample_metadata
from rnaseq_qc.r_integration.deseq2_wrapper import (
    deseq2_size_factors,
    deseq2_stabilize,
)


@pytest.fixture
def filtered(count_matrix):
    return filter_low_counts(count_matrix)


@pytest.fixture
def metadata(sample_sheet):
    return correct_sample_metadata(sample_sheet.set_index("SampleName"))


class TestDeseq2:
    def test_size_factors_agree(self, filtered):
        ours = estimate_size_factors(filtered, method="ratio")
        theirs = deseq2_size_factors(filtered)
        assert np.allclose(ours, theirs, rtol=1e-6)

    @pytest.mark.parametrize("method", ["rlog", "vst"])
    def test_stabilize_labels(self, filtered, metadata, method):
        result = deseq2_stabilize(filtered, metadata, method=method)
        assert list(result.index) == list(filtered.index)
        assert list(result.columns) == list(filtered.columns)
        assert np.isfinite(result.to_numpy()).all()

    def test_order_mismatch(self, filtered, metadata):
        with pytest.raises(ValueError):
            deseq2_stabilize(filtered, metadata.iloc[::-1])
