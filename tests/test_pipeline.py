"""
Tests for core/pipeline.py module.

Runs the whole stage sequence on small files written to tmp_path.
"""

import pytest
import numpy as np
from rnaseq_qc.core.ingest import SampleMismatchError
from rnaseq_qc.core.pipeline import PreprocessingResult, run_preprocessing
from conftest import SAMPLES, write_two_sample_inputs


@pytest.fixture
def result(input_files):
    metadata_file, counts_file = input_files
    return run_preprocessing(metadata_file, counts_file)


class TestRunPreprocessing:
    """Test run_preprocessing function."""

    def test_result_type(self, result):
        assert isinstance(result, PreprocessingResult)

    def test_counts_filtered_and_ordered(self, result):
        assert list(result.counts.columns) == SAMPLES
        assert (result.counts.sum(axis=1) > 5).all()
        assert result.n_genes_raw == 80
        assert len(result.counts) < result.n_genes_raw

    def test_metadata_corrected(self, result):
        assert result.raw_metadata.loc["MCL1.DG", "CellType"] == "luminal"
        assert result.metadata.loc["MCL1.DG", "CellType"] == "basal"
        assert result.metadata.loc["MCL1.LA", "CellType"] == "luminal"
        assert result.metadata.loc["MCL1.DG", "Group"] == "basal.virgin"

    def test_dataset_uses_corrected_metadata(self, result):
        assert result.dataset.metadata is result.metadata
        assert result.dataset.design == "~ CellType"
        assert result.dataset.size_factors is not None

    def test_views_share_labels(self, result):
        assert list(result.log_counts.columns) == SAMPLES
        assert list(result.stabilized.index) == list(result.counts.index)
        assert list(result.pca.scores.index) == SAMPLES
        assert list(result.sample_distances.index) == SAMPLES
        assert result.library_sizes.sum() == result.counts.to_numpy().sum()

    def test_variable_genes(self, result):
        # fewer genes than the default of 500, so all are kept
        assert len(result.variable_genes) == len(result.counts)
        assert len(result.gene_clustering.order) == len(result.counts)

    def test_progress_printed(self, input_files, capsys):
        metadata_file, counts_file = input_files
        run_preprocessing(metadata_file, counts_file, stabilize_method="vst")
        out = capsys.readouterr().out
        assert "[1/6]" in out
        assert "[6/6]" in out
        assert "MCL1.DG: CellType luminal -> basal" in out

    def test_without_corrections(self, input_files):
        metadata_file, counts_file = input_files
        result = run_preprocessing(
            metadata_file, counts_file, corrections=None, stabilize_method="vst"
        )
        assert result.metadata.loc["MCL1.DG", "CellType"] == "luminal"
        assert result.metadata.loc["MCL1.DG", "Group"] == "luminal.virgin"

    def test_top_n(self, input_files):
        metadata_file, counts_file = input_files
        result = run_preprocessing(
            metadata_file, counts_file, stabilize_method="vst", top_n=20
        )
        assert len(result.variable_genes) == 20
        variances = result.stabilized.var(axis=1, ddof=1)
        excluded = result.stabilized.index.difference(result.variable_genes.index)
        assert (
            variances.loc[result.variable_genes.index].min()
            >= variances.loc[excluded].max()
        )

    def test_sample_mismatch(self, tmp_path, input_files, sample_sheet):
        _, counts_file = input_files
        metadata_file = tmp_path / "partial.txt"
        sample_sheet.iloc[:-1].to_csv(metadata_file, sep="\t", index=False)
        with pytest.raises(SampleMismatchError) as excinfo:
            run_preprocessing(metadata_file, counts_file)
        assert excinfo.value.extra == ["MCL1.LF"]


class TestSmallExample:
    """Two samples and three genes with totals 2, 10 and 6."""

    def test_filtering(self, small_input_files):
        metadata_file, counts_file = small_input_files
        result = run_preprocessing(
            metadata_file, counts_file, corrections=None, stabilize_method="vst"
        )

        assert result.counts.shape == (2, 2)
        assert list(result.counts.columns) == ["S1", "S2"]
        assert list(result.counts.index) == ["g2", "g3"]
        assert result.n_genes_raw == 3
        assert np.isfinite(result.stabilized.to_numpy()).all()

    def test_default_corrections_skipped_with_warning(self, small_input_files):
        metadata_file, counts_file = small_input_files
        with pytest.warns(UserWarning, match="not in metadata"):
            result = run_preprocessing(
                metadata_file, counts_file, stabilize_method="vst"
            )
        assert list(result.metadata["Group"]) == ["basal.virgin", "luminal.virgin"]


class TestFewGenesLeft:
    """Filtering that leaves fewer than two genes still yields exports."""

    @pytest.mark.parametrize("method", ["vst", "rlog"])
    def test_single_gene(self, tmp_path, method):
        metadata_file, counts_file = write_two_sample_inputs(
            tmp_path, [1, 6, 0], [1, 4, 2]
        )
        with pytest.warns(UserWarning, match="skipping PCA"):
            result = run_preprocessing(
                metadata_file, counts_file, corrections=None, stabilize_method=method
            )

        assert list(result.counts.index) == ["g2"]
        assert result.pca is None
        assert result.gene_clustering is None
        assert result.sample_distances is None
        assert list(result.variable_genes.index) == ["g2"]
        assert result.stabilized.shape == (1, 2)

    def test_no_gene(self, tmp_path, capsys):
        metadata_file, counts_file = write_two_sample_inputs(
            tmp_path, [1, 2, 0], [1, 3, 2]
        )
        with pytest.warns(UserWarning, match="skipping PCA"):
            result = run_preprocessing(
                metadata_file, counts_file, corrections=None, stabilize_method="vst"
            )

        assert "3 -> 0 genes" in capsys.readouterr().out
        assert result.counts.shape == (0, 2)
        assert result.pca is None
        assert result.gene_clustering is None
        assert list(result.metadata["Group"]) == ["basal.virgin", "luminal.virgin"]

    def test_single_variable_gene(self, input_files):
        metadata_file, counts_file = input_files
        result = run_preprocessing(
            metadata_file, counts_file, stabilize_method="vst", top_n=1
        )
        assert len(result.variable_genes) == 1
        assert result.gene_clustering is None
        assert result.pca is not None
