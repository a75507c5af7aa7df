"""
PyPipeGraph2 job wrappers for count preprocessing.
"""

from pypipegraph2 import (
    Job,
    FileGeneratingJob,
    MultiFileGeneratingJob,
    FunctionInvariant,
    ParameterInvariant,
)
from pathlib import Path
from typing import Dict, List, Optional, Union
from rnaseq_qc.core.metadata import SAMPLE_CORRECTIONS
from rnaseq_qc.core.dataset import CountDataSet
from rnaseq_qc.services.io import (
    export_count_bundle,
    generate_preprocessing_report,
    read_dataframe,
)


def preprocessing_job(
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
    threshold: int = 5,
    corrections: Optional[Dict[str, str]] = SAMPLE_CORRECTIONS,
    stabilize_method: str = "rlog",
    top_n: int = 500,
    save_formats: List[str] = ["png", "pdf"],
    dependencies: List[Job] = [],
) -> MultiFileGeneratingJob:
    """
    Create pypipegraph job for the full preprocessing report.

    Parameters
    ----------
    metadata_path : Path or str
        Sample sheet.
    counts_path : Path or str
        featureCounts table.
    output_dir : Path or str
        Output directory.
    prefix : str
        Filename prefix for output files.
    threshold : int
        Low-count filter threshold.
    corrections : dict, optional
        Cell type overrides.
    stabilize_method : str
        "rlog" or "vst".
    top_n : int
        Variable genes in the heatmap.
    save_formats : list
        List of formats to save ("png", "pdf", "svg").
    dependencies : list
        List of pypipegraph Jobs to depend on.

    Returns
    -------
    MultiFileGeneratingJob
        Job that writes the exported tables and the bundle.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)
    name = f"{prefix}_" if prefix else ""
    corrections = dict(corrections) if corrections is not None else None

    # plots are written too, but may be skipped on failure
    outfiles = [
        output_dir / f"{name}SampleInfo_Corrected.txt",
        output_dir / f"{name}filtered_counts.tsv",
        output_dir / f"{name}preprocessing.pkl",
        output_dir / f"{name}library_stats.tsv",
        output_dir / f"{name}{stabilize_method}_counts.tsv",
    ]

    def __dump(
        outfiles,
        metadata_path=metadata_path,
        counts_path=counts_path,
        output_dir=output_dir,
        prefix=prefix,
    ):
        generate_preprocessing_report(
            metadata_path=metadata_path,
            counts_path=counts_path,
            output_dir=output_dir,
            prefix=prefix,
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
            save_formats=save_formats,
        )

    job = MultiFileGeneratingJob(outfiles, __dump).depends_on(dependencies)

    job.depends_on(
        FunctionInvariant(generate_preprocessing_report)
    )
    job.depends_on(
        ParameterInvariant(
            f"{name}preprocessing_params",
            (
                str(metadata_path),
                str(counts_path),
                sample_col,
                cell_type_col,
                status_col,
                group_col,
                gene_col,
                suffix,
                threshold,
                tuple(sorted((corrections or {}).items())),
                stabilize_method,
                top_n,
                tuple(save_formats),
            ),
        )
    )

    return job


def export_bundle_job(
    output_file: Union[Path, str],
    counts_tsv: Union[Path, str],
    metadata_tsv: Union[Path, str],
    design: str = "~ CellType",
    dependencies: List[Job] = [],
) -> FileGeneratingJob:
    """
    Create pypipegraph job that bundles exported counts and metadata.

    Reads a filtered count TSV and a corrected sample sheet (both as written
    by the preprocessing report) and pickles them together.
    """
    output_file = Path(output_file)

    def __dump(
        output_file,
        counts_tsv=counts_tsv,
        metadata_tsv=metadata_tsv,
        design=design,
    ):
        counts = read_dataframe(counts_tsv, index_col=0)
        metadata = read_dataframe(metadata_tsv, index_col=0, dtype=str)
        dataset = CountDataSet(counts=counts, metadata=metadata, design=design)
        dataset.estimate_size_factors()
        export_count_bundle(dataset, output_file)

    job = FileGeneratingJob(output_file, __dump).depends_on(dependencies)
    job.depends_on(
        ParameterInvariant(
            f"{output_file}_bundle_params",
            (str(counts_tsv), str(metadata_tsv), design),
        )
    )
    return job
