"""
Tests for core/plots.py module.

Since plotting functions create figures, we focus on testing that they:
1. Accept correct input formats
2. Return expected figure objects
3. Draw the annotations the QC review relies on
"""
import pytest
import pandas as pd
import numpy as np
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend for tests
import matplotlib.pyplot as plt
from matplotlib.figure import Figure
from rnaseq_qc.core.counts import library_sizes, log2_counts
from rnaseq_qc.core.metadata import correct_sample_metadata
from rnaseq_qc.core.qc import compute_pca, distance_matrix, select_variable_genes
from rnaseq_qc.core.plots import (
    plot_library_sizes,
    plot_count_distributions,
    plot_pca,
    plot_variable_gene_heatmap,
    plot_sample_distance_heatmap,
)
from conftest import SAMPLES


@pytest.fixture
def metadata(sample_sheet):
    return correct_sample_metadata(sample_sheet.set_index("SampleName"))


@pytest.fixture
def log_counts(count_matrix):
    return log2_counts(count_matrix)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


class TestLibrarySizePlot:
    """Test plot_library_sizes function."""

    def test_basic(self, count_matrix):
        fig = plot_library_sizes(library_sizes(count_matrix))
        assert isinstance(fig, Figure)
        ax = fig.axes[0]
        assert len(ax.patches) == len(SAMPLES)

    def test_reference_line(self, count_matrix):
        fig = plot_library_sizes(library_sizes(count_matrix), reference=20_000_000)
        ax = fig.axes[0]
        hlines = [line for line in ax.get_lines() if line.get_linestyle() == "--"]
        assert len(hlines) == 1
        assert hlines[0].get_ydata()[0] == 20_000_000

    def test_no_reference_line(self, count_matrix):
        fig = plot_library_sizes(library_sizes(count_matrix), reference=None)
        assert len(fig.axes[0].get_lines()) == 0

    def test_colored_by_metadata(self, count_matrix, metadata):
        fig = plot_library_sizes(
            library_sizes(count_matrix), metadata, color_by="CellType"
        )
        legend = fig.axes[0].get_legend()
        assert legend is not None
        labels = [t.get_text() for t in legend.get_texts()]
        assert labels == ["basal", "luminal"]


class TestCountDistributionPlot:
    """Test plot_count_distributions function."""

    def test_basic(self, log_counts):
        fig = plot_count_distributions(log_counts)
        assert isinstance(fig, Figure)
        assert fig.axes[0].get_ylabel() == "log2(count + 1)"

    def test_median_line(self, log_counts):
        fig = plot_count_distributions(log_counts)
        ax = fig.axes[0]
        median = float(np.median(log_counts.to_numpy()))
        blue = [
            line for line in ax.get_lines()
            if line.get_color() == "blue" and np.allclose(line.get_ydata(), median)
        ]
        assert len(blue) == 1

    def test_colored(self, log_counts, metadata):
        fig = plot_count_distributions(log_counts, metadata, color_by="Group")
        assert fig.axes[0].get_legend() is not None


class TestPCAPlot:
    """Test plot_pca function."""

    def test_pc1_pc2(self, log_counts, metadata):
        result = compute_pca(log_counts)
        fig = plot_pca(result, metadata)
        ax = fig.axes[0]
        assert ax.get_xlabel().startswith("PC1")
        assert ax.get_ylabel().startswith("PC2")

    def test_pc2_pc3(self, log_counts, metadata):
        result = compute_pca(log_counts)
        fig = plot_pca(result, metadata, x=2, y=3, label_samples=True)
        ax = fig.axes[0]
        assert ax.get_xlabel().startswith("PC2")
        assert ax.get_ylabel().startswith("PC3")
        assert len(ax.texts) == len(SAMPLES)

    def test_legend_levels(self, log_counts, metadata):
        fig = plot_pca(compute_pca(log_counts), metadata)
        labels = [t.get_text() for t in fig.axes[0].get_legend().get_texts()]
        assert "basal" in labels
        assert "lactate" in labels

    def test_invalid_component(self, log_counts, metadata):
        result = compute_pca(log_counts, n_components=2)
        with pytest.raises(ValueError):
            plot_pca(result, metadata, x=2, y=3)


class TestHeatmaps:
    """Test plot_variable_gene_heatmap and plot_sample_distance_heatmap."""

    def test_variable_gene_heatmap(self, log_counts, metadata):
        subset = select_variable_genes(log_counts, n=30)
        fig = plot_variable_gene_heatmap(subset, metadata)
        assert isinstance(fig, Figure)

    def test_variable_gene_heatmap_unscaled(self, log_counts):
        subset = select_variable_genes(log_counts, n=30, mode="bottom")
        fig = plot_variable_gene_heatmap(
            subset, None, color_by=None, scale_by_row=False
        )
        assert isinstance(fig, Figure)

    def test_sample_distance_heatmap(self, log_counts, metadata):
        dist = distance_matrix(log_counts, axis="columns")
        fig = plot_sample_distance_heatmap(dist, metadata)
        ax = fig.axes[0]
        labels = [t.get_text() for t in ax.get_yticklabels()]
        assert labels[0] == "MCL1.DG (basal.virgin)"
