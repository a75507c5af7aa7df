import warnings
import pandas as pd
import matplotlib.pyplot as plt
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union
from pandas import DataFrame

from rnaseq_qc.core.counts import (
    COUNT_THRESHOLD,
    LIBRARY_SIZE_REFERENCE,
    compute_library_stats,
)
from rnaseq_qc.core.dataset import CountDataSet
from rnaseq_qc.core.ingest import read_dataframe
from rnaseq_qc.core.metadata import SAMPLE_CORRECTIONS
from rnaseq_qc.core.pipeline import PreprocessingResult, run_preprocessing
from rnaseq_qc.core.plots import (
    plot_count_distributions,
    plot_library_sizes,
    plot_pca,
    plot_sample_distance_heatmap,
    plot_variable_gene_heatmap,
)
from rnaseq_qc.core.qc import TOP_N_GENES


BUNDLE_KEYS = ("counts", "metadata", "size_factors", "design")


def save_figure(f, folder, name, bbox_inches="tight", formats=None):
    """
    Save a figure in several formats.

    Returns the list of written paths.
    """
    folder = Path(folder)
    folder.mkdir(exist_ok=True, parents=True)
    if formats is None:
        formats = ["png", "svg", "pdf"]
    written = []
    for fmt in formats:
        outfile = folder / f"{name}.{fmt.lstrip('.')}"
        f.savefig(outfile, bbox_inches=bbox_inches, dpi=300)
        written.append(outfile)
    return written


def export_sample_metadata(
    metadata: DataFrame, output_file: Union[Path, str]
) -> Path:
    """Write metadata as TSV with the sample id as first column."""
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    metadata.to_csv(output_file, sep="\t", index=True)
    return output_file


def export_count_matrix(
    counts: DataFrame, output_file: Union[Path, str]
) -> Path:
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    counts.to_csv(output_file, sep="\t", index=True)
    return output_file


def export_count_bundle(
    dataset: CountDataSet, output_file: Union[Path, str]
) -> Path:
    """
    Pickle counts, metadata, size factors and design into one file.

    An existing file is overwritten as a whole.
    """
    output_file = Path(output_file)
    output_file.parent.mkdir(parents=True, exist_ok=True)
    metadata = dataset.metadata.copy()
    metadata.attrs = {}
    bundle = {
        "counts": dataset.counts,
        "metadata": metadata,
        "size_factors": dataset.size_factors,
        "design": dataset.design,
    }
    pd.to_pickle(bundle, output_file)
    return output_file


def load_count_bundle(bundle_file: Union[Path, str]) -> CountDataSet:
    """Load a bundle written by `export_count_bundle`."""
    bundle_file = Path(bundle_file)
    if not bundle_file.exists():
        raise FileNotFoundError(f"Bundle file not found: {bundle_file}")
    bundle = pd.read_pickle(bundle_file)
    if not isinstance(bundle, dict):
        raise ValueError(f"{bundle_file} does not contain a count bundle")
    missing = [key for key in BUNDLE_KEYS if key not in bundle]
    if missing:
        raise ValueError(f"Bundle {bundle_file} missing entries: {missing}")
    return CountDataSet(
        counts=bundle["counts"],
        metadata=bundle["metadata"],
        design=bundle["design"],
        size_factors=bundle["size_factors"],
    )


def write_qc_plots(
    result: PreprocessingResult,
    output_dir: Union[Path, str],
    prefix: str = "",
    cell_type_col: str = "CellType",
    status_col: str = "Status",
    group_col: str = "Group",
    library_size_reference: Optional[float] = LIBRARY_SIZE_REFERENCE,
    save_formats: Optional[List[str]] = None,
) -> Dict[str, Path]:
    """
    Render every QC figure of a pipeline result.

    A failing plot is reported with a warning and skipped.
    """
    output_dir = Path(output_dir)
    if save_formats is None:
        save_formats = ["png", "pdf"]
    name = f"{prefix}_" if prefix else ""
    meta = result.metadata

    plots_to_generate = [
        (
            "library_sizes",
            lambda: plot_library_sizes(
                result.library_sizes,
                meta,
                color_by=cell_type_col,
                reference=library_size_reference,
            ),
        ),
        (
            "log_counts_boxplot",
            lambda: plot_count_distributions(
                result.log_counts,
                meta,
                color_by=cell_type_col,
                title="Unnormalised log2 counts",
            ),
        ),
        (
            "stabilized_boxplot",
            lambda: plot_count_distributions(
                result.stabilized,
                meta,
                color_by=cell_type_col,
                ylabel="Stabilized log2 counts",
                title="Variance stabilized counts",
            ),
        ),
    ]
    if result.pca is not None:
        plots_to_generate.append(
            (
                "pca_pc1_pc2",
                lambda: plot_pca(
                    result.pca,
                    meta,
                    1,
                    2,
                    color_by=cell_type_col,
                    shape_by=status_col,
                ),
            )
        )
        if len(result.pca.components) >= 3:
            plots_to_generate.append(
                (
                    "pca_pc2_pc3",
                    lambda: plot_pca(
                        result.pca,
                        meta,
                        2,
                        3,
                        color_by=cell_type_col,
                        shape_by=status_col,
                    ),
                )
            )
    if result.gene_clustering is not None:
        plots_to_generate.append(
            (
                "variable_genes_heatmap",
                lambda: plot_variable_gene_heatmap(
                    result.variable_genes, meta, color_by=cell_type_col
                ),
            )
        )
    if result.sample_distances is not None:
        plots_to_generate.append(
            (
                "sample_distances",
                lambda: plot_sample_distance_heatmap(
                    result.sample_distances, meta, color_by=group_col
                ),
            )
        )

    saved_files = {}
    for plot_name, plot_func in plots_to_generate:
        print(f"Generating {plot_name} plot...")
        try:
            fig = plot_func()
            for path in save_figure(
                fig, output_dir, f"{name}{plot_name}", formats=save_formats
            ):
                saved_files[f"{plot_name}_{path.suffix.lstrip('.')}"] = path
            plt.close(fig)
            print(f"  Saved {plot_name}")
        except Exception as e:
            warnings.warn(f"Failed to generate {plot_name}: {e}")
    return saved_files


def generate_preprocessing_report(
    metadata_path: Union[Path, str],
    counts_path: Union[Path, str],
    output_dir: Union[Path, str],
    prefix: str = "",
    sample_col: str = "SampleName",
    cell_type_col: str = "CellType",
    status_col: str = "Status",
    group_col: str = "Group",
    gene_col: str = "Geneid",
    suffix: str = ".bam",
    threshold: int = COUNT_THRESHOLD,
    corrections: Optional[Mapping[str, str]] = SAMPLE_CORRECTIONS,
    stabilize_method: str = "rlog",
    top_n: int = TOP_N_GENES,
    library_size_reference: Optional[float] = LIBRARY_SIZE_REFERENCE,
    save_formats: Optional[List[str]] = None,
    make_plots: bool = True,
) -> Dict:
    """
    Run the preprocessing pipeline and write all outputs.

    Parameters
    ----------
    metadata_path : Path or str
        Sample sheet.
    counts_path : Path or str
        featureCounts table.
    output_dir : Path or str
        Output directory.
    prefix : str
        Filename prefix.
    threshold : int
        Low-count filter threshold.
    corrections : mapping, optional
        Cell type overrides, None to skip.
    stabilize_method : str
        "rlog" or "vst".
    top_n : int
        Number of variable genes for the heatmap.
    library_size_reference : float, optional
        Dashed line on the library size plot, None to omit.
    save_formats : list
        Plot formats ("png", "pdf", "svg").
    make_plots : bool
        Skip all figures when False.

    Returns
    -------
    dict
        {"result": PreprocessingResult, "files": dict name -> path}
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)
    name = f"{prefix}_" if prefix else ""

    result = run_preprocessing(
        metadata_path,
        counts_path,
        sample_col=sample_col,
        cell_type_col=cell_type_col,
        status_col=status_col,
        group_col=group_col,
        gene_col=gene_col,
        suffix=suffix,
        threshold=threshold,
        corrections=corrections,
        stabilize_method=stabilize_method,
        top_n=top_n,
    )

    saved_files = {
        "metadata": export_sample_metadata(
            result.metadata, output_dir / f"{name}SampleInfo_Corrected.txt"
        ),
        "counts": export_count_matrix(
            result.counts, output_dir / f"{name}filtered_counts.tsv"
        ),
        "bundle": export_count_bundle(
            result.dataset, output_dir / f"{name}preprocessing.pkl"
        ),
    }
    library_stats_file = output_dir / f"{name}library_stats.tsv"
    compute_library_stats(result.counts).to_csv(library_stats_file, sep="\t")
    saved_files["library_stats"] = library_stats_file

    stabilized_file = output_dir / f"{name}{stabilize_method}_counts.tsv"
    result.stabilized.to_csv(stabilized_file, sep="\t")
    saved_files["stabilized"] = stabilized_file

    for key, path in saved_files.items():
        print(f"Saved {key} to {path}")

    if make_plots:
        saved_files.update(
            write_qc_plots(
                result,
                output_dir,
                prefix=prefix,
                cell_type_col=cell_type_col,
                status_col=status_col,
                group_col=group_col,
                library_size_reference=library_size_reference,
                save_formats=save_formats,
            )
        )

    print(f"\nPreprocessing complete. Files saved to {output_dir}")
    return {"result": result, "files": saved_files}
