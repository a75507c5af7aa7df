"""
RNA-seq count preprocessing and quality control.

This package provides:
- core
- models
- services
- jobs
"""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("rnaseq-qc")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.1.0"


from .core.pipeline import PreprocessingResult, run_preprocessing
from .services.io import (
    export_count_bundle,
    export_sample_metadata,
    generate_preprocessing_report,
    load_count_bundle,
)

__all__ = [
    "PreprocessingResult",
    "run_preprocessing",
    "export_count_bundle",
    "export_sample_metadata",
    "generate_preprocessing_report",
    "load_count_bundle",
]
