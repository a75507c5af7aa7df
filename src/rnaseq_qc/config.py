from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    environment: str = "development"

    # Column names
    sample_col: str = "SampleName"
    cell_type_col: str = "CellType"
    status_col: str = "Status"
    group_col: str = "Group"
    gene_col: str = "Geneid"
    count_suffix: str = ".bam"

    # Analysis parameters
    count_threshold: int = 5
    library_size_reference: int = 20_000_000
    top_n_genes: int = 500
    stabilize_method: str = "rlog"
    apply_corrections: bool = True

    # Outputs
    output_dir: str = "results"
    save_formats: List[str] = ["png", "pdf"]

    class Config:
        env_file = ".env"
        env_prefix = "RNASEQ_QC_"


settings = Settings()
