"""
Shared genomic utilities for MethylMatrix.

Provides interval overlap detection over DataFrames using an NCLS (Nested
Containment List) index, plus column-name detection and chromosome naming
helpers shared by the interval store, the signal tracks and the region
annotator.

All coordinates handled here are 1-based and closed: an interval
``[start, end]`` covers ``end - start + 1`` bases.
"""

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from ncls import NCLS

from .exceptions import MissingColumnError

logger = logging.getLogger(__name__)


# ============================================================================
# Core overlap functions
# ============================================================================


def _build_ncls_index(
    starts: np.ndarray, ends: np.ndarray
) -> NCLS:
    """Build an NCLS index from closed start/end arrays.

    NCLS works on half-open intervals, so ends are shifted by one.
    """
    ids = np.arange(len(starts), dtype=np.int64)
    return NCLS(
        starts.astype(np.int64),
        ends.astype(np.int64) + 1,
        ids,
    )


def find_overlaps(
    query_df: pd.DataFrame,
    subject_df: pd.DataFrame,
    chrom_col: str = "chr",
    start_col: str = "start",
    end_col: str = "end",
) -> pd.DataFrame:
    """Find overlapping intervals between two DataFrames.

    Parameters
    ----------
    query_df : pd.DataFrame
        Query intervals (the "left" set).
    subject_df : pd.DataFrame
        Subject intervals (the "right" set to search against).
    chrom_col : str
        Column name for chromosome in both DataFrames.
    start_col, end_col : str
        Column names for the closed interval boundaries.

    Returns
    -------
    pd.DataFrame
        Columns [query_idx, subject_idx, overlap_bp], sorted by query then
        subject position in the input frames.
    """
    if query_df.empty or subject_df.empty:
        return pd.DataFrame(columns=["query_idx", "subject_idx", "overlap_bp"])

    results: List[Tuple[int, int, int]] = []

    subject_groups = {name: grp for name, grp in subject_df.groupby(chrom_col, sort=False)}

    for chrom, q_grp in query_df.groupby(chrom_col, sort=False):
        if chrom not in subject_groups:
            continue
        s_grp = subject_groups[chrom]

        q_starts = q_grp[start_col].values
        q_ends = q_grp[end_col].values
        q_indices = q_grp.index.values

        s_starts = s_grp[start_col].values
        s_ends = s_grp[end_col].values
        s_indices = s_grp.index.values

        index = _build_ncls_index(s_starts, s_ends)
        for i in range(len(q_starts)):
            qs, qe = int(q_starts[i]), int(q_ends[i])
            hits = sorted(int(h[2]) for h in index.find_overlap(qs, qe + 1))
            for s_local_idx in hits:
                ovlp = min(qe, int(s_ends[s_local_idx])) - max(qs, int(s_starts[s_local_idx])) + 1
                results.append((q_indices[i], s_indices[s_local_idx], ovlp))

    if not results:
        return pd.DataFrame(columns=["query_idx", "subject_idx", "overlap_bp"])

    hits_df = pd.DataFrame(results, columns=["query_idx", "subject_idx", "overlap_bp"])
    order = pd.Index(query_df.index).get_indexer(hits_df["query_idx"])
    hits_df = hits_df.assign(_order=order).sort_values("_order", kind="mergesort")
    return hits_df.drop(columns="_order").reset_index(drop=True)


# ============================================================================
# Column utilities
# ============================================================================

CHROM_COLS = ["chr", "chrom", "chromosome", "seqnames", "#chr"]
START_COLS = ["start", "chromStart"]
END_COLS = ["end", "chromEnd"]
POS_COLS = ["pos", "position", "start"]
STRAND_COLS = ["strand"]
GENE_NAME_COLS = ["gene_name", "symbol", "gene_symbol", "name"]


def detect_column(df: pd.DataFrame, candidates: List[str], required: bool = False) -> Optional[str]:
    """Find the first matching column name from a list of candidates.

    Parameters
    ----------
    df : pd.DataFrame
    candidates : list of str
        Column names to search for (case-insensitive).
    required : bool
        If True, raise MissingColumnError when not found.

    Returns
    -------
    str or None
    """
    cols_lower = {c.lower(): c for c in df.columns}
    for cand in candidates:
        if cand.lower() in cols_lower:
            return cols_lower[cand.lower()]
    if required:
        raise MissingColumnError(" or ".join(candidates), available=list(df.columns))
    return None


def standardize_interval_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename common interval column variants to chr, start, end, strand."""
    mapping = {}
    for std_name, candidates in [
        ("chr", CHROM_COLS),
        ("start", START_COLS),
        ("end", END_COLS),
        ("strand", STRAND_COLS),
    ]:
        col = detect_column(df, candidates)
        if col and col != std_name:
            mapping[col] = std_name
    return df.rename(columns=mapping)


# ============================================================================
# Chromosome utilities
# ============================================================================

_CHROM_ORDER = {f"chr{i}": i for i in range(1, 23)}
_CHROM_ORDER.update({"chrX": 23, "chrY": 24, "chrM": 25, "chrMT": 25})

# Identifiers that do not follow the plain "chr" prefix rule
_UCSC_TO_NCBI_SPECIAL = {"chrM": "MT"}
_NCBI_TO_UCSC_SPECIAL = {"MT": "chrM"}

CHROMOSOME_STYLES = ("UCSC", "NCBI")


def sort_chromosomes(chroms: List[str]) -> List[str]:
    """Sort chromosome names in natural order (1,2,...,22,X,Y,M)."""
    def _sort_key(c: str) -> Tuple[int, str]:
        c_stripped = c.replace("chr", "") if c.startswith("chr") else c
        if c in _CHROM_ORDER:
            return (_CHROM_ORDER[c], c)
        if c_stripped in ("X", "Y"):
            return (23 if c_stripped == "X" else 24, c)
        if c_stripped in ("M", "MT"):
            return (25, c)
        try:
            return (int(c_stripped), c)
        except ValueError:
            return (100, c)
    return sorted(chroms, key=_sort_key)


def chromosome_style(chrom: str) -> str:
    """Return "UCSC" for chr-prefixed identifiers, "NCBI" otherwise."""
    return "UCSC" if chrom.startswith("chr") else "NCBI"


def convert_chromosome_name(chrom: str, target_style: str) -> Optional[str]:
    """Translate one chromosome identifier into ``target_style``.

    Returns None when the identifier has no counterpart in the target
    style (unplaced contigs such as ``chrUn_gl000220``).
    """
    if chromosome_style(chrom) == target_style:
        return chrom
    if target_style == "NCBI":
        if chrom in _UCSC_TO_NCBI_SPECIAL:
            return _UCSC_TO_NCBI_SPECIAL[chrom]
        bare = chrom[3:]
        if "_" in bare or not bare:
            return None
        return bare
    if target_style == "UCSC":
        if chrom in _NCBI_TO_UCSC_SPECIAL:
            return _NCBI_TO_UCSC_SPECIAL[chrom]
        if "." in chrom or "_" in chrom:
            return None
        return f"chr{chrom}"
    return None


def build_chromosome_mapping(
    chroms: List[str],
    target_style: str,
    overrides: Optional[Dict[str, str]] = None,
) -> Dict[str, Optional[str]]:
    """Map each identifier in ``chroms`` to ``target_style``.

    Entries in ``overrides`` win over the prefix rule.
    """
    overrides = overrides or {}
    mapping = {}
    for chrom in chroms:
        if chrom in overrides:
            mapping[chrom] = overrides[chrom]
        else:
            mapping[chrom] = convert_chromosome_name(chrom, target_style)
    return mapping
