import pytest
import pandas as pd
import numpy as np


SAMPLES = [
    "MCL1.DG",
    "MCL1.DH",
    "MCL1.DI",
    "MCL1.DJ",
    "MCL1.DK",
    "MCL1.DL",
    "MCL1.LA",
    "MCL1.LB",
    "MCL1.LC",
    "MCL1.LD",
    "MCL1.LE",
    "MCL1.LF",
]

# MCL1.DG and MCL1.LA carry swapped cell types, as in the public sample sheet
CELL_TYPES = ["luminal"] + ["basal"] * 5 + ["basal"] + ["luminal"] * 5
STATUS = ["virgin", "virgin", "pregnant", "pregnant", "lactate", "lactate"] * 2


def make_sample_sheet():
    return pd.DataFrame(
        {
            "FileName": [f"{s}.bam" for s in SAMPLES],
            "SampleName": SAMPLES,
            "CellType": CELL_TYPES,
            "Status": STATUS,
        }
    )


def make_count_matrix(n_genes=80, seed=0):
    """Negative binomial counts, a third of the genes differ by cell type."""
    rng = np.random.RandomState(seed)
    base = np.exp(rng.uniform(1, 7, n_genes))
    effect = np.ones((n_genes, len(SAMPLES)))
    de = rng.rand(n_genes) < 0.3
    true_luminal = np.array([s.startswith("MCL1.L") for s in SAMPLES])
    effect[np.ix_(de, true_luminal)] = 6.0
    depth = rng.uniform(0.7, 1.4, len(SAMPLES))
    mu = base[:, None] * effect * depth[None, :]
    dispersion = 0.05
    size = 1.0 / dispersion
    counts = rng.negative_binomial(size, size / (size + mu))
    # a few genes that the low-count filter has to remove
    counts[:6] = 0
    counts[5, 0] = 3
    counts = pd.DataFrame(
        counts,
        index=[f"Gene{i}" for i in range(n_genes)],
        columns=SAMPLES,
    )
    counts.index.name = "Geneid"
    return counts


def make_feature_counts(counts):
    """featureCounts layout: annotation columns plus one column per BAM."""
    table = counts.copy()
    table.columns = [f"{c}.bam" for c in table.columns]
    table = table.reset_index()
    table.insert(1, "Chr", "chr1")
    table.insert(2, "Start", np.arange(len(table)) * 1000 + 1)
    table.insert(3, "End", np.arange(len(table)) * 1000 + 900)
    table.insert(4, "Strand", "+")
    table.insert(5, "Length", 900)
    return table


def write_feature_counts(table, path):
    with open(path, "w") as handle:
        handle.write(
            '# Program:featureCounts v2.0.1; Command:"featureCounts" "-a" "genes.gtf"\n'
        )
        table.to_csv(handle, sep="\t", index=False)
    return path


@pytest.fixture
def sample_sheet():
    return make_sample_sheet()


@pytest.fixture
def count_matrix():
    return make_count_matrix()


@pytest.fixture
def input_files(tmp_path, sample_sheet, count_matrix):
    """Sample sheet and featureCounts table written to disk."""
    metadata_file = tmp_path / "SampleInfo.txt"
    sample_sheet.to_csv(metadata_file, sep="\t", index=False)
    counts_file = write_feature_counts(
        make_feature_counts(count_matrix), tmp_path / "GenewiseCounts.txt"
    )
    return metadata_file, counts_file


@pytest.fixture
def small_input_files(tmp_path):
    """Two samples, three genes with totals 2, 10 and 6."""
    metadata_file = tmp_path / "small_meta.txt"
    pd.DataFrame(
        {
            "SampleName": ["S1", "S2"],
            "CellType": ["basal", "luminal"],
            "Status": ["virgin", "virgin"],
        }
    ).to_csv(metadata_file, sep="\t", index=False)

    counts_file = tmp_path / "small_counts.txt"
    table = pd.DataFrame(
        {
            "Geneid": ["g1", "g2", "g3"],
            "Chr": ["chr1"] * 3,
            "Start": [1, 100, 200],
            "End": [50, 150, 250],
            "Strand": ["+"] * 3,
            "Length": [50, 50, 50],
            # columns deliberately in reverse order
            "S2.bam": [1, 4, 6],
            "S1.bam": [1, 6, 0],
        }
    )
    write_feature_counts(table, counts_file)
    return metadata_file, counts_file


def write_two_sample_inputs(folder, s1_counts, s2_counts):
    """Two-sample sheet and featureCounts table with the given gene counts."""
    metadata_file = folder / "two_meta.txt"
    pd.DataFrame(
        {
            "SampleName": ["S1", "S2"],
            "CellType": ["basal", "luminal"],
            "Status": ["virgin", "virgin"],
        }
    ).to_csv(metadata_file, sep="\t", index=False)
    counts = pd.DataFrame(
        {"S1": s1_counts, "S2": s2_counts},
        index=[f"g{i + 1}" for i in range(len(s1_counts))],
    )
    counts.index.name = "Geneid"
    counts_file = write_feature_counts(
        make_feature_counts(counts), folder / "two_counts.txt"
    )
    return metadata_file, counts_file
