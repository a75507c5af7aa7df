"""
Tests for jobs/preprocessing_jobs.py module.

Each test builds a fresh graph inside tmp_path and runs it, output paths
are relative to the graph's working directory.
"""

import pytest
from pathlib import Path
import matplotlib

matplotlib.use("Agg")

ppg = pytest.importorskip("pypipegraph2")

from rnaseq_qc.jobs.preprocessing_jobs import preprocessing_job, export_bundle_job
from rnaseq_qc.services.io import load_count_bundle
from conftest import SAMPLES


@pytest.fixture
def new_graph(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    ppg.new(cores=1)
    yield tmp_path


class TestPreprocessingJob:
    def test_output_files(self, new_graph, input_files):
        metadata_file, counts_file = input_files
        job = preprocessing_job(
            metadata_file,
            counts_file,
            Path("results"),
            prefix="mm",
            stabilize_method="vst",
            save_formats=["png"],
        )
        assert isinstance(job, ppg.MultiFileGeneratingJob)
        ppg.run()

        expected = [
            "mm_SampleInfo_Corrected.txt",
            "mm_filtered_counts.tsv",
            "mm_preprocessing.pkl",
            "mm_library_stats.tsv",
            "mm_vst_counts.tsv",
        ]
        assert sorted(Path(f).name for f in job.files) == sorted(expected)
        for name in expected:
            assert (new_graph / "results" / name).exists()
        assert (new_graph / "results" / "mm_library_sizes.png").exists()

        bundle = load_count_bundle(Path("results") / "mm_preprocessing.pkl")
        assert list(bundle.counts.columns) == SAMPLES
        assert bundle.metadata.loc["MCL1.DG", "CellType"] == "basal"

    def test_default_output_names(self, new_graph, input_files):
        metadata_file, counts_file = input_files
        job = preprocessing_job(metadata_file, counts_file, Path("results"))
        names = [Path(f).name for f in job.files]
        assert "rlog_counts.tsv" in names
        assert "SampleInfo_Corrected.txt" in names


class TestExportBundleJob:
    def test_bundle_from_exported_tables(self, new_graph, input_files):
        metadata_file, counts_file = input_files
        preprocess = preprocessing_job(
            metadata_file,
            counts_file,
            Path("results"),
            stabilize_method="vst",
            save_formats=["png"],
        )
        job = export_bundle_job(
            Path("results") / "bundle_celltype_status.pkl",
            Path("results") / "filtered_counts.tsv",
            Path("results") / "SampleInfo_Corrected.txt",
            design="~ CellType + Status",
            dependencies=[preprocess],
        )
        assert isinstance(job, ppg.FileGeneratingJob)
        ppg.run()

        bundle = load_count_bundle(new_graph / "results" / "bundle_celltype_status.pkl")
        assert bundle.design == "~ CellType + Status"
        assert list(bundle.counts.columns) == SAMPLES
        assert bundle.size_factors is not None
        assert list(bundle.size_factors.index) == SAMPLES
        assert bundle.metadata.loc["MCL1.LA", "Group"] == "luminal.virgin"
