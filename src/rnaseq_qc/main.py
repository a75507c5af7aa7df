from pathlib import Path
from typing import Optional

import typer

from .config import settings
from .core.counts import filter_low_counts, shape_count_matrix, strip_sample_suffix
from .core.ingest import count_sample_columns, read_feature_counts
from .models.preprocessing_report import PreprocessingConfig, PreprocessingReport
from .services.io import export_count_matrix

app = typer.Typer(help="Preprocessing and quality control of RNA-seq count tables")


@app.command()
def info() -> None:
    """Show basic environment info."""
    typer.echo(f"Environment: {settings.environment}")
    typer.echo(f"Count threshold: {settings.count_threshold}")
    typer.echo(f"Stabilizing method: {settings.stabilize_method}")
    typer.echo(f"Apply corrections: {settings.apply_corrections}")
    typer.echo(f"Output dir: {settings.output_dir!r}")


@app.command()
def run(
    metadata: Path = typer.Argument(..., help="Sample sheet (tab-delimited)"),
    counts: Path = typer.Argument(..., help="featureCounts table"),
    out_dir: Path = typer.Option(Path(settings.output_dir), help="Output directory"),
    project: str = typer.Option("rnaseq", help="Project name used in the report"),
    threshold: int = typer.Option(settings.count_threshold),
    method: str = typer.Option(settings.stabilize_method, help="rlog or vst"),
    top_n: int = typer.Option(settings.top_n_genes),
    corrections: bool = typer.Option(
        settings.apply_corrections, help="Apply known sample annotation fixes"
    ),
    plots: bool = typer.Option(True, help="Render QC figures"),
) -> None:
    """Run the full preprocessing report."""
    config = PreprocessingConfig.from_settings(project, settings)
    config.out_dir = out_dir
    config.count_threshold = threshold
    config.stabilize_method = method
    config.top_n_genes = top_n
    if not corrections:
        config.corrections = None

    report = PreprocessingReport(config, metadata, counts)
    files = report.build(make_plots=plots)
    typer.echo(f"Wrote {len(files)} files to {out_dir}")


@app.command("filter")
def filter_counts(
    counts: Path = typer.Argument(..., help="featureCounts table"),
    output: Path = typer.Argument(..., help="Filtered count matrix (TSV)"),
    threshold: int = typer.Option(settings.count_threshold),
    samples: Optional[str] = typer.Option(
        None, help="Comma separated sample order, defaults to table order"
    ),
) -> None:
    """Filter lowly expressed genes from a count table."""
    raw = read_feature_counts(counts)
    if samples:
        sample_ids = [s.strip() for s in samples.split(",") if s.strip()]
    else:
        sample_ids = strip_sample_suffix(
            count_sample_columns(raw, settings.gene_col), settings.count_suffix
        )
    try:
        matrix = shape_count_matrix(
            raw,
            sample_ids,
            gene_col=settings.gene_col,
            suffix=settings.count_suffix,
        )
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    filtered = filter_low_counts(matrix, threshold=threshold)
    export_count_matrix(filtered, output)
    typer.echo(f"Kept {len(filtered)} of {len(matrix)} genes")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
