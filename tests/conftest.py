"""
Shared test fixtures for MethylMatrix test suite.
"""

import tempfile
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from methylmatrix.core.design import MethylationDataset
from methylmatrix.core.intervals import GenomicInterval, IntervalSet
from methylmatrix.core.tracks import SignalTrack

# ============================================================================
# Interval fixtures
# ============================================================================


@pytest.fixture
def overlapping_peaks():
    """Two sets of intervals with known overlaps for testing overlap detection."""
    query = pd.DataFrame({
        "chr": ["chr1", "chr1", "chr2"],
        "start": [100, 500, 200],
        "end": [300, 700, 400],
    })
    subject = pd.DataFrame({
        "chr": ["chr1", "chr1", "chr3"],
        "start": [250, 800, 100],
        "end": [350, 900, 300],
    })
    return query, subject


@pytest.fixture
def gene_table():
    """Gene table with one gene on each strand plus one on another chromosome."""
    return pd.DataFrame({
        "chr": ["chr1", "chr1", "chr2"],
        "start": [9000, 15000, 5000],
        "end": [12000, 16000, 7000],
        "strand": ["+", "-", "+"],
        "gene_name": ["GENE_A", "GENE_B", "GENE_C"],
    })


@pytest.fixture
def gene_intervals(gene_table):
    return IntervalSet.from_frame(gene_table)


# ============================================================================
# Signal tracks
# ============================================================================


@pytest.fixture
def step_track():
    """Track on chr1 whose value equals the 50bp block index around 1000.

    Positions 900..1099 are sampled; position p has value (p - 900) // 50,
    so a 50bp-binned window starting at 900 reads 0, 1, 2, 3.
    """
    positions = np.arange(900, 1100)
    values = ((positions - 900) // 50).astype(float)
    return SignalTrack("step", {"chr1": (positions, values)})


@pytest.fixture
def sparse_track():
    """Track sampled every 10bp between 1 and 20000 on chr1 with random values."""
    rng = np.random.default_rng(42)
    positions = np.arange(1, 20001, 10)
    return SignalTrack("sparse", {"chr1": (positions, rng.uniform(0, 1, len(positions)))})


@pytest.fixture
def point_anchors():
    """Three single-base anchors at 1000 on both strands."""
    return IntervalSet([
        GenomicInterval("chr1", 1000, 1000, "+"),
        GenomicInterval("chr1", 1000, 1000, "-"),
        GenomicInterval("chr1", 1000, 1001, "*", {"name": "wide"}),
    ])


# ============================================================================
# Methylation data
# ============================================================================

SAMPLES = ["N1", "C1", "N2", "C2", "N3", "C3"]
COVERAGE = 40


def _block(start, n, normal, cancer, spacing=50):
    """Sites for one block: per-pair normal and cancer methylated counts."""
    rows = []
    for i in range(n):
        meth = []
        for pair in range(3):
            meth.extend([normal[pair], cancer[pair]])
        rows.append((start + i * spacing, meth, [COVERAGE] * 6))
    return rows


@pytest.fixture
def phenotype():
    """Paired normal/cancer design over three individuals."""
    return pd.DataFrame({
        "sample": SAMPLES,
        "Type": ["normal", "cancer"] * 3,
        "Pair": [1, 1, 2, 2, 3, 3],
    }).set_index("sample")


@pytest.fixture
def methylation_dataset():
    """Synthetic paired dataset with known region structure on chr1.

    - 10000..10950: 20 sites, strong hypermethylation in cancer (kept)
    - 20000..20950: 20 sites, pair effects cancel, coefficient 0 (absent)
    - 30000..30150: 4 strongly changed sites (too few CpGs)
    - 40000..40200: 5 changed sites, smaller effect (kept at the boundary)
    - 50000: one sample without coverage (insufficient coverage)
    - 60000: identical counts everywhere (undefined statistic)
    """
    rows = []
    rows += _block(10000, 20, normal=[8, 8, 8], cancer=[34, 30, 32])
    rows += _block(20000, 20, normal=[18, 22, 20], cancer=[22, 18, 20])
    rows += _block(30000, 4, normal=[8, 8, 8], cancer=[28, 24, 26])
    rows += _block(40000, 5, normal=[8, 8, 8], cancer=[28, 24, 26])
    rows.append((50000, [8, 30, 8, 30, 6, 32], [COVERAGE, COVERAGE, 0, COVERAGE, COVERAGE, COVERAGE]))
    rows.append((60000, [20] * 6, [COVERAGE] * 6))

    # shuffle site order so the tester has to sort
    order = np.random.default_rng(7).permutation(len(rows))
    rows = [rows[i] for i in order]

    pos = [r[0] for r in rows]
    meth = np.array([r[1] for r in rows], dtype=float)
    cov = np.array([r[2] for r in rows], dtype=float)
    meth[:, 2][cov[:, 2] == 0] = 0
    return MethylationDataset(["chr1"] * len(rows), pos, meth, cov, SAMPLES)


# ============================================================================
# Temporary files
# ============================================================================


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that gets cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_gtf_file(temp_dir):
    """Create a temporary GTF file with two genes and one transcript line."""
    gtf_path = temp_dir / "genes.gtf"
    gtf_content = "\n".join([
        "#!genome-build test",
        '1\ttest\tgene\t9000\t12000\t.\t+\t.\tgene_id "G1"; gene_name "GENE_A";',
        '1\ttest\ttranscript\t9000\t12000\t.\t+\t.\tgene_id "G1"; transcript_id "T1";',
        '1\ttest\tgene\t15000\t16000\t.\t-\t.\tgene_id "G2"; gene_name "GENE_B";',
    ])
    gtf_path.write_text(gtf_content + "\n")
    return gtf_path
