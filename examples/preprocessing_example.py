"""
Example: Count preprocessing as part of a pypipegraph2 workflow.

The script builds two jobs:
1. preprocessing_job: filtering, metadata correction, QC plots and bundle
2. export_bundle_job: re-bundles the exported tables, e.g. after the corrected
   sample sheet was edited by hand

Input layout (adapt the paths):
    incoming/SampleInfo.txt        SampleName, CellType, Status, ...
    incoming/GenewiseCounts.txt    featureCounts output
"""

import pypipegraph2 as ppg
from pathlib import Path
from rnaseq_qc.jobs.preprocessing_jobs import preprocessing_job, export_bundle_job

ppg.new()

###############################################################################
# Configuration
###############################################################################

metadata_file = Path("incoming/SampleInfo.txt")
counts_file = Path("incoming/GenewiseCounts.txt")
output_dir = Path("results/preprocessing")

###############################################################################
# Jobs
###############################################################################

preprocess = preprocessing_job(
    metadata_path=metadata_file,
    counts_path=counts_file,
    output_dir=output_dir,
    prefix="mammary",
    threshold=5,
    stabilize_method="rlog",
    top_n=500,
    save_formats=["png", "pdf"],
)

bundle = export_bundle_job(
    output_file=output_dir / "mammary_bundle_celltype_status.pkl",
    counts_tsv=output_dir / "mammary_filtered_counts.tsv",
    metadata_tsv=output_dir / "mammary_SampleInfo_Corrected.txt",
    design="~ CellType + Status",
    dependencies=[preprocess],
)

ppg.run()

print("\n" + "=" * 80)
print("PREPROCESSING COMPLETE")
print("=" * 80)
print(f"Corrected sample sheet: {output_dir / 'mammary_SampleInfo_Corrected.txt'}")
print(f"Bundle for downstream analysis: {output_dir / 'mammary_bundle_celltype_status.pkl'}")
