"""
Signal Tracks

A SignalTrack holds one named genome-positioned scalar signal (ATAC
coverage, a histone mark, CpG methylation fraction) as sorted per-base
samples per chromosome. Positions that were never sampled are reported as
absent; whether an absent base counts as NA or as zero is an explicit
property of the track.
"""

import logging
from typing import Dict, Mapping, Tuple

import numpy as np
import pandas as pd

from .exceptions import InvalidParameterError, ValidationError, validate_dataframe
from .genomic_utils import CHROM_COLS, POS_COLS, detect_column

logger = logging.getLogger(__name__)

MISSING_POLICIES = ("na", "zero")


class SignalTrack:
    """
    Per-base signal for one named source.

    Args:
        name: Track name (e.g. "ATAC")
        data: Mapping chromosome -> (positions, values)
        missing: "na" to leave unsampled bases missing, "zero" to count
            them as zero signal when binning
    """

    def __init__(
        self,
        name: str,
        data: Mapping[str, Tuple[np.ndarray, np.ndarray]],
        missing: str = "na",
    ):
        if missing not in MISSING_POLICIES:
            raise InvalidParameterError("missing", missing, f"one of {MISSING_POLICIES}")

        self.name = name
        self.missing = missing
        self._data: Dict[str, Tuple[np.ndarray, np.ndarray]] = {}

        for chrom, (positions, values) in data.items():
            positions = np.asarray(positions, dtype=np.int64)
            values = np.asarray(values, dtype=float)
            if positions.shape != values.shape:
                raise ValidationError(
                    f"Track '{name}' on {chrom}: {len(positions)} positions but {len(values)} values"
                )
            if len(positions) > 1 and np.any(np.diff(positions) < 0):
                order = np.argsort(positions, kind="mergesort")
                positions, values = positions[order], values[order]
            if len(positions) > 1 and np.any(np.diff(positions) == 0):
                raise ValidationError(f"Track '{name}' has duplicate positions on {chrom}")
            self._data[chrom] = (positions, values)

    def __repr__(self) -> str:
        return f"SignalTrack(name={self.name!r}, chromosomes={len(self._data)}, samples={self.n_samples})"

    @property
    def chromosomes(self):
        return list(self._data)

    @property
    def n_samples(self) -> int:
        return int(sum(len(p) for p, _ in self._data.values()))

    def query(self, chrom: str, start: int, end: int) -> Tuple[np.ndarray, np.ndarray]:
        """Samples with ``start <= position <= end`` (1-based, closed)."""
        if chrom not in self._data:
            return np.empty(0, dtype=np.int64), np.empty(0, dtype=float)
        positions, values = self._data[chrom]
        lo = np.searchsorted(positions, start, side="left")
        hi = np.searchsorted(positions, end, side="right")
        return positions[lo:hi], values[lo:hi]

    def chromosome_arrays(self, chrom: str) -> Tuple[np.ndarray, np.ndarray]:
        """Full sorted (positions, values) arrays for one chromosome."""
        if chrom not in self._data:
            return np.empty(0, dtype=np.int64), np.empty(0, dtype=float)
        return self._data[chrom]

    @classmethod
    def from_frame(
        cls,
        name: str,
        df: pd.DataFrame,
        value_col: str = "value",
        missing: str = "na",
    ) -> "SignalTrack":
        """Build from per-base rows with chromosome, position and value columns."""
        chrom_col = detect_column(df, CHROM_COLS, required=True)
        pos_col = detect_column(df, POS_COLS, required=True)
        validate_dataframe(df, f"track '{name}'", required_columns=[value_col])

        data = {}
        for chrom, grp in df.groupby(chrom_col, sort=False):
            data[str(chrom)] = (grp[pos_col].to_numpy(), grp[value_col].to_numpy(dtype=float))
        return cls(name, data, missing=missing)

    @classmethod
    def from_intervals(
        cls,
        name: str,
        df: pd.DataFrame,
        value_col: str = "value",
        missing: str = "na",
    ) -> "SignalTrack":
        """Build from bedGraph-like step intervals (chr, start, end, value).

        Each interval is expanded to one sample per covered base
        (1-based, closed).
        """
        validate_dataframe(df, f"track '{name}'", required_columns=["chr", "start", "end", value_col])

        data = {}
        for chrom, grp in df.groupby("chr", sort=False):
            starts = grp["start"].to_numpy(dtype=np.int64)
            ends = grp["end"].to_numpy(dtype=np.int64)
            widths = ends - starts + 1
            if np.any(widths <= 0):
                raise ValidationError(f"Track '{name}' has an interval with start > end on {chrom}")
            offsets = np.arange(widths.sum()) - np.repeat(np.cumsum(widths) - widths, widths)
            positions = np.repeat(starts, widths) + offsets
            values = np.repeat(grp[value_col].to_numpy(dtype=float), widths)
            data[str(chrom)] = (positions, values)
        return cls(name, data, missing=missing)


def track_from_methylation(
    name: str,
    chrom: np.ndarray,
    pos: np.ndarray,
    meth: np.ndarray,
    cov: np.ndarray,
) -> SignalTrack:
    """Methylation fraction track from pooled counts; uncovered sites are skipped."""
    meth = np.asarray(meth, dtype=float)
    cov = np.asarray(cov, dtype=float)
    if meth.ndim == 2:
        meth = meth.sum(axis=1)
        cov = cov.sum(axis=1)
    keep = cov > 0
    df = pd.DataFrame({
        "chr": np.asarray(chrom)[keep],
        "pos": np.asarray(pos)[keep],
        "value": meth[keep] / cov[keep],
    })
    return SignalTrack.from_frame(name, df)
