"""
Preprocessing Report Module

Runs the count preprocessing pipeline for one project and writes tables,
plots, the exported bundle and a markdown summary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union
from datetime import datetime

import json

from ..config import Settings
from ..core.metadata import SAMPLE_CORRECTIONS
from ..core.pipeline import PreprocessingResult
from ..services.io import generate_preprocessing_report


@dataclass
class PreprocessingConfig:
    """
    Configuration for a preprocessing report.

    Attributes
    ----------
    project_name : str
        Name for the project (appears in the report).
    out_dir : Union[str, Path]
        Root directory for all outputs.
    sample_col, cell_type_col, status_col, group_col : str
        Metadata column names.
    gene_col : str
        Gene identifier column of the count table.
    count_suffix : str
        Suffix stripped from count column names.
    count_threshold : int
        Genes with total count <= threshold are removed.
    top_n_genes : int
        Number of most variable genes in the heatmap.
    library_size_reference : float, optional
        Reference line on the library size plot.
    stabilize_method : str
        "rlog" or "vst".
    corrections : dict, optional
        Cell type overrides; None disables the correction stage.
    save_formats : list of str
        Plot formats.
    """

    project_name: str
    out_dir: Union[str, Path] = "results"

    # Column names
    sample_col: str = "SampleName"
    cell_type_col: str = "CellType"
    status_col: str = "Status"
    group_col: str = "Group"
    gene_col: str = "Geneid"
    count_suffix: str = ".bam"

    # Analysis parameters
    count_threshold: int = 5
    top_n_genes: int = 500
    library_size_reference: Optional[float] = 20_000_000
    stabilize_method: str = "rlog"
    corrections: Optional[Dict[str, str]] = field(
        default_factory=lambda: dict(SAMPLE_CORRECTIONS)
    )

    save_formats: List[str] = field(default_factory=lambda: ["png", "pdf"])

    @classmethod
    def from_settings(
        cls, project_name: str, settings: Settings
    ) -> "PreprocessingConfig":
        return cls(
            project_name=project_name,
            out_dir=settings.output_dir,
            sample_col=settings.sample_col,
            cell_type_col=settings.cell_type_col,
            status_col=settings.status_col,
            group_col=settings.group_col,
            gene_col=settings.gene_col,
            count_suffix=settings.count_suffix,
            count_threshold=settings.count_threshold,
            library_size_reference=settings.library_size_reference,
            top_n_genes=settings.top_n_genes,
            stabilize_method=settings.stabilize_method,
            corrections=(
                dict(SAMPLE_CORRECTIONS) if settings.apply_corrections else None
            ),
            save_formats=list(settings.save_formats),
        )


class PreprocessingReport:
    """
    Report generator for the count preprocessing pipeline.

    Inputs:
      - sample sheet (SampleName, CellType, Status, ...)
      - featureCounts table

    Outputs:
      - corrected sample sheet, filtered counts, bundle (.pkl)
      - QC plots
      - summary.json and report.md
    """

    def __init__(
        self,
        config: PreprocessingConfig,
        metadata_path: Union[str, Path],
        counts_path: Union[str, Path],
    ):
        self.cfg = config
        self.metadata_path = Path(metadata_path)
        self.counts_path = Path(counts_path)
        self.out_dir = Path(self.cfg.out_dir)
        self.plots_dir = self.out_dir / "plots"
        self.result: Optional[PreprocessingResult] = None
        self.files: Dict[str, Path] = {}

    def build(self, make_plots: bool = True) -> Dict[str, Path]:
        """
        Run the pipeline and write every output.

        Returns
        -------
        dict
            Output name -> path.
        """
        report = generate_preprocessing_report(
            metadata_path=self.metadata_path,
            counts_path=self.counts_path,
            output_dir=self.out_dir,
            sample_col=self.cfg.sample_col,
            cell_type_col=self.cfg.cell_type_col,
            status_col=self.cfg.status_col,
            group_col=self.cfg.group_col,
            gene_col=self.cfg.gene_col,
            suffix=self.cfg.count_suffix,
            threshold=self.cfg.count_threshold,
            corrections=self.cfg.corrections,
            stabilize_method=self.cfg.stabilize_method,
            top_n=self.cfg.top_n_genes,
            library_size_reference=self.cfg.library_size_reference,
            save_formats=self.cfg.save_formats,
            make_plots=make_plots,
        )
        self.result = report["result"]
        self.files = dict(report["files"])

        summary = self._make_summary()
        summary_file = self.out_dir / "summary.json"
        summary_file.write_text(json.dumps(summary, indent=2))
        self.files["summary"] = summary_file

        report_md = self.out_dir / "report.md"
        report_md.write_text(self._render_markdown(summary), encoding="utf-8")
        self.files["report"] = report_md
        return self.files

    # -----------------------
    # Summary
    # -----------------------
    def _make_summary(self) -> dict:
        if self.result is None:
            raise ValueError("Report has not been built yet")
        result = self.result
        sizes = result.library_sizes
        explained = {}
        if result.pca is not None:
            ratios = result.pca.explained_variance_ratio
            explained = {str(k): float(v) for k, v in ratios.head(3).items()}
        corrected = {}
        for sample in (self.cfg.corrections or {}):
            if sample not in result.metadata.index:
                continue
            corrected[sample] = {
                "before": str(result.raw_metadata.loc[sample, self.cfg.cell_type_col]),
                "after": str(result.metadata.loc[sample, self.cfg.cell_type_col]),
            }
        return {
            "project_name": self.cfg.project_name,
            "generated_at": datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "n_samples": int(result.counts.shape[1]),
            "n_genes_raw": int(result.n_genes_raw),
            "n_genes_filtered": int(result.counts.shape[0]),
            "count_threshold": self.cfg.count_threshold,
            "library_size_min": int(sizes.min()),
            "library_size_max": int(sizes.max()),
            "size_factors": {
                str(k): float(v) for k, v in result.dataset.size_factors.items()
            },
            "stabilize_method": self.cfg.stabilize_method,
            "explained_variance": explained,
            "corrections": corrected,
            "design": result.dataset.design,
        }

    def _render_markdown(self, summary: dict) -> str:
        lines = [
            f"# {summary['project_name']}: count preprocessing",
            "",
            f"Generated: {summary['generated_at']}",
            "",
            "## Filtering",
            "",
            f"- Samples: {summary['n_samples']}",
            f"- Genes before filtering: {summary['n_genes_raw']}",
            f"- Genes with total count > {summary['count_threshold']}: "
            f"{summary['n_genes_filtered']}",
            f"- Library sizes: {summary['library_size_min']:,} - "
            f"{summary['library_size_max']:,} reads",
            "",
            "## Metadata corrections",
            "",
        ]
        if summary["corrections"]:
            lines += ["| Sample | Before | After |", "|---|---|---|"]
            for sample, change in summary["corrections"].items():
                lines.append(f"| {sample} | {change['before']} | {change['after']} |")
        else:
            lines.append("None applied.")
        lines += [
            "",
            f"## Principal components ({summary['stabilize_method']})",
            "",
        ]
        for pc, ratio in summary["explained_variance"].items():
            lines.append(f"- {pc}: {ratio * 100:.1f}% of variance")
        if not summary["explained_variance"]:
            lines.append("Skipped, fewer than two genes passed the filter.")
        lines += ["", f"Design for downstream analysis: `{summary['design']}`", ""]
        return "\n".join(lines)
