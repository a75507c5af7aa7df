"""
Data models and report generators for count preprocessing.

This includes:
- PreprocessingReport: runs the pipeline and writes tables, plots and summary
- PreprocessingConfig: Configuration for preprocessing reports
"""

from .preprocessing_report import PreprocessingReport, PreprocessingConfig

__all__ = [
    "PreprocessingReport",
    "PreprocessingConfig",
]
