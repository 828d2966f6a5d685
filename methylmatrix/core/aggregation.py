"""
Signal Aggregation Module

Turns named per-base signal tracks and a list of anchor intervals
(promoters, TF binding sites, peaks, gene bodies) into fixed-width profile
matrices, one (anchors x bins) matrix per track:

1. Map each anchor to a window (center mode) or to its own span (scale mode)
2. Assign the track samples in that window to bins
3. Summarize each bin (mean by default); empty bins are NaN
4. Reverse the bin axis for minus-strand anchors
5. Optionally smooth each row with a running mean

Row i of every output matrix corresponds to anchor i of the input.
"""

import logging
import warnings
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy import ndimage

from .exceptions import (
    AggregationError,
    EmptyAnchorSetError,
    InvalidParameterError,
    InvalidWindowError,
)
from .intervals import GenomicInterval, IntervalSet, Strand
from .tracks import SignalTrack

logger = logging.getLogger(__name__)

SUMMARIES = ("mean", "median", "max", "sum")


# ============================================================================
# Anchor modes
# ============================================================================


class AnchorMode(ABC):
    """How an anchor interval is turned into bins."""

    name: str = ""

    @property
    @abstractmethod
    def n_bins(self) -> int:
        """Number of bins per anchor."""

    @abstractmethod
    def axis(self) -> np.ndarray:
        """Coordinate of each bin, in upstream-to-downstream order."""

    @abstractmethod
    def window(self, anchor: GenomicInterval) -> Tuple[int, int]:
        """Genomic span (closed) whose samples feed this anchor's bins."""

    @abstractmethod
    def bin_index(self, anchor: GenomicInterval, positions: np.ndarray) -> np.ndarray:
        """Bin of each position inside ``window(anchor)``, in genomic order."""


class CenterMode(AnchorMode):
    """Fixed window of +/- extend around the anchor midpoint.

    The window covers ``[mid - extend, mid + extend)`` split into bins of
    ``bin_width`` bases, independent of the anchor length. When
    ``bin_width`` does not divide ``2 * extend`` the last bin is partial.
    """

    name = "center"

    def __init__(self, extend: int, bin_width: int):
        _validate_window(extend, bin_width)
        self.extend = extend
        self.bin_width = bin_width

    @property
    def n_bins(self) -> int:
        return (2 * self.extend + self.bin_width - 1) // self.bin_width

    def axis(self) -> np.ndarray:
        # offset of each bin start relative to the anchor midpoint
        return np.arange(self.n_bins) * self.bin_width - self.extend

    def window(self, anchor: GenomicInterval) -> Tuple[int, int]:
        lo = anchor.midpoint - self.extend
        return lo, anchor.midpoint + self.extend - 1

    def bin_index(self, anchor: GenomicInterval, positions: np.ndarray) -> np.ndarray:
        lo, _ = self.window(anchor)
        return (positions - lo) // self.bin_width


class ScaleMode(AnchorMode):
    """Anchor span linearly rescaled to a fixed number of bins.

    Used when anchors differ in length (peak start to peak end, gene
    bodies). The axis is the fractional position of each bin center in
    [0, 1].
    """

    name = "scale"

    def __init__(self, target_bins: int):
        if target_bins is None or target_bins < 1:
            raise InvalidWindowError("target_bins", target_bins, "must be >= 1")
        self.target_bins = int(target_bins)

    @property
    def n_bins(self) -> int:
        return self.target_bins

    def axis(self) -> np.ndarray:
        return (np.arange(self.target_bins) + 0.5) / self.target_bins

    def window(self, anchor: GenomicInterval) -> Tuple[int, int]:
        return anchor.start, anchor.end

    def bin_index(self, anchor: GenomicInterval, positions: np.ndarray) -> np.ndarray:
        idx = ((positions - anchor.start) * self.target_bins) // anchor.width
        return np.minimum(idx, self.target_bins - 1)


def _validate_window(extend: int, bin_width: int) -> None:
    if extend is None or extend <= 0:
        raise InvalidWindowError("extend", extend, "must be > 0")
    if bin_width is None or bin_width <= 0:
        raise InvalidWindowError("bin_width", bin_width, "must be > 0")
    if bin_width > 2 * extend:
        raise InvalidWindowError("bin_width", bin_width, f"must be <= 2 * extend ({2 * extend})")


def make_anchor_mode(
    anchor_mode: Union[str, AnchorMode],
    extend: int,
    bin_width: int,
    target_bins: Optional[int] = None,
) -> AnchorMode:
    """Resolve a mode name ("center"/"scale") or pass an AnchorMode through."""
    if isinstance(anchor_mode, AnchorMode):
        return anchor_mode
    if anchor_mode == "center":
        return CenterMode(extend, bin_width)
    if anchor_mode == "scale":
        if target_bins is not None:
            return ScaleMode(target_bins)
        return ScaleMode(CenterMode(extend, bin_width).n_bins)
    raise InvalidParameterError("anchor_mode", anchor_mode, "'center' or 'scale'")


# ============================================================================
# Result container
# ============================================================================


@dataclass
class AggregationConfig:
    """Configuration for signal aggregation."""
    extend: int = 5000
    bin_width: int = 50
    anchor_mode: str = "center"
    target_bins: Optional[int] = None
    summary: str = "mean"
    smooth: bool = False
    smooth_kernel: int = 3
    n_workers: int = 1

    @classmethod
    def from_settings(cls, settings) -> "AggregationConfig":
        return cls(
            extend=settings.extend,
            bin_width=settings.bin_width,
            anchor_mode=settings.anchor_mode,
            target_bins=settings.target_bins,
            summary=settings.summary,
            smooth=settings.smooth,
            smooth_kernel=settings.smooth_kernel,
            n_workers=settings.n_workers,
        )


@dataclass
class AggregatedMatrix:
    """Per-track (anchors x bins) signal matrices over a shared anchor set."""
    tracks: Dict[str, np.ndarray]
    axis: np.ndarray
    anchors: IntervalSet
    mode: str
    extend: Optional[int] = None
    bin_width: Optional[int] = None
    smoothed: bool = False
    metadata: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self):
        for name, mat in self.tracks.items():
            if mat.shape != (len(self.anchors), len(self.axis)):
                raise AggregationError(
                    f"Track '{name}' matrix has shape {mat.shape}, "
                    f"expected {(len(self.anchors), len(self.axis))}"
                )

    @property
    def track_names(self) -> List[str]:
        return list(self.tracks)

    @property
    def n_anchors(self) -> int:
        return len(self.anchors)

    @property
    def n_bins(self) -> int:
        return len(self.axis)

    def track(self, name: str) -> np.ndarray:
        if name not in self.tracks:
            raise InvalidParameterError("track", name, f"one of {self.track_names}")
        return self.tracks[name]

    def to_array(self) -> np.ndarray:
        """Stack all tracks into a (tracks x anchors x bins) array."""
        return np.stack([self.tracks[name] for name in self.track_names])

    def profile(self, name: str, rows: Optional[np.ndarray] = None) -> np.ndarray:
        """Column-wise mean over anchors, ignoring NaN; all-NaN bins stay NaN."""
        mat = self.track(name)
        if rows is not None:
            mat = mat[rows]
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=RuntimeWarning)
            return np.nanmean(mat, axis=0)

    def fraction_missing(self, name: str) -> np.ndarray:
        """Fraction of NaN bins per anchor."""
        return np.isnan(self.track(name)).mean(axis=1)

    def to_frame(self, name: str) -> pd.DataFrame:
        """Wide DataFrame for one track: one row per anchor, one column per bin."""
        index = [str(a) for a in self.anchors]
        return pd.DataFrame(self.track(name), index=index, columns=self.axis)

    def to_dict(self) -> Dict:
        return {
            "tracks": self.track_names,
            "n_anchors": self.n_anchors,
            "n_bins": self.n_bins,
            "mode": self.mode,
            "extend": self.extend,
            "bin_width": self.bin_width,
            "smoothed": self.smoothed,
        }


# ============================================================================
# Binning
# ============================================================================


def _summarize_bins(
    idx: np.ndarray,
    values: np.ndarray,
    n_bins: int,
    summary: str,
    base_counts: Optional[np.ndarray] = None,
) -> np.ndarray:
    """Summarize values per bin; bins without samples are NaN.

    When ``base_counts`` is given, unsampled bases count as zero signal and
    every bin with at least one base gets a value.
    """
    counts = np.bincount(idx, minlength=n_bins)
    out = np.full(n_bins, np.nan)

    if summary in ("mean", "sum"):
        sums = np.bincount(idx, weights=values, minlength=n_bins)
        denom = counts if summary == "mean" else np.ones(n_bins)
        if base_counts is not None:
            if summary == "mean":
                denom = base_counts
            filled = base_counts > 0
        else:
            filled = counts > 0
        out[filled] = sums[filled] / denom[filled]
        return out

    if summary == "max":
        if len(idx):
            np.fmax.at(out, idx, values)
        if base_counts is not None:
            partial = base_counts > counts
            out[partial] = np.fmax(out[partial], 0.0)
        return out

    # median
    for b in np.unique(idx):
        vals = values[idx == b]
        if base_counts is not None and base_counts[b] > len(vals):
            vals = np.concatenate([vals, np.zeros(base_counts[b] - len(vals))])
        out[b] = np.median(vals)
    if base_counts is not None:
        out[(counts == 0) & (base_counts > 0)] = 0.0
    return out


def _aggregate_track(
    track: SignalTrack,
    anchors: IntervalSet,
    mode: AnchorMode,
    summary: str,
) -> np.ndarray:
    """Fill one (anchors x bins) matrix for a single track."""
    n_bins = mode.n_bins
    mat = np.full((len(anchors), n_bins), np.nan)
    zero_fill = track.missing == "zero"

    for i, anchor in enumerate(anchors):
        lo, hi = mode.window(anchor)
        positions, values = track.query(anchor.chromosome, lo, hi)
        keep = ~np.isnan(values)
        positions, values = positions[keep], values[keep]
        idx = mode.bin_index(anchor, positions).astype(np.int64)

        base_counts = None
        if zero_fill:
            bases = np.arange(max(lo, 1), hi + 1)
            base_counts = np.bincount(mode.bin_index(anchor, bases).astype(np.int64), minlength=n_bins)

        row = _summarize_bins(idx, values, n_bins, summary, base_counts)
        if anchor.strand == Strand.MINUS:
            row = row[::-1]
        mat[i] = row

    return mat


def smooth_rows(mat: np.ndarray, kernel_width: int = 3) -> np.ndarray:
    """Running-mean smoothing along the bin axis of each row.

    NaN bins are ignored inside the window and stay NaN in the output.
    Rows never mix. A kernel width of 1 returns an unchanged copy.
    """
    if kernel_width < 1 or kernel_width % 2 == 0:
        raise InvalidParameterError("smooth_kernel", kernel_width, "odd integer >= 1")
    mat = np.asarray(mat, dtype=float)
    if kernel_width == 1:
        return mat.copy()

    missing = np.isnan(mat)
    filled = np.where(missing, 0.0, mat)
    weights = np.ones(kernel_width)
    sums = ndimage.convolve1d(filled, weights, axis=-1, mode="constant", cval=0.0)
    counts = ndimage.convolve1d((~missing).astype(float), weights, axis=-1, mode="constant", cval=0.0)

    with np.errstate(invalid="ignore", divide="ignore"):
        smoothed = sums / counts
    smoothed[missing] = np.nan
    return smoothed


def aggregate(
    tracks: Mapping[str, SignalTrack],
    anchors: Union[IntervalSet, Sequence[GenomicInterval]],
    extend: int,
    bin_width: int,
    anchor_mode: Union[str, AnchorMode] = "center",
    smooth: bool = False,
    summary: str = "mean",
    smooth_kernel: int = 3,
    target_bins: Optional[int] = None,
    n_workers: int = 1,
) -> AggregatedMatrix:
    """
    Aggregate signal tracks around anchors into profile matrices.

    Args:
        tracks: Mapping of track name to SignalTrack
        anchors: Anchor intervals; row order of the output follows them
        extend: Half-width of the window (center) / default bin source (scale)
        bin_width: Bin size in bases
        anchor_mode: "center", "scale" or an AnchorMode instance
        smooth: Apply a running mean of ``smooth_kernel`` bins to each row
        summary: Per-bin statistic: mean, median, max or sum
        smooth_kernel: Running-mean width (odd)
        target_bins: Bins per anchor in scale mode (default: the center-mode bin count)
        n_workers: Threads used to process tracks in parallel

    Returns:
        AggregatedMatrix

    Raises:
        EmptyAnchorSetError: no anchors
        InvalidWindowError: extend/bin_width out of range
    """
    anchors = anchors if isinstance(anchors, IntervalSet) else IntervalSet(anchors)
    if len(anchors) == 0:
        raise EmptyAnchorSetError()
    if not tracks:
        raise InvalidParameterError("tracks", "{}", "at least one signal track")
    if summary not in SUMMARIES:
        raise InvalidParameterError("summary", summary, f"one of {SUMMARIES}")

    mode = make_anchor_mode(anchor_mode, extend, bin_width, target_bins)
    names = list(tracks)

    logger.info(
        f"Aggregating {len(names)} track(s) over {len(anchors)} anchors "
        f"({mode.name} mode, {mode.n_bins} bins)"
    )

    if n_workers > 1 and len(names) > 1:
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [
                executor.submit(_aggregate_track, tracks[name], anchors, mode, summary)
                for name in names
            ]
            matrices = [future.result() for future in futures]
    else:
        matrices = [_aggregate_track(tracks[name], anchors, mode, summary) for name in names]

    result = {}
    for name, mat in zip(names, matrices):
        if smooth:
            mat = smooth_rows(mat, smooth_kernel)
        n_missing = int(np.isnan(mat).all(axis=1).sum())
        if n_missing:
            logger.warning(f"Track '{name}': {n_missing} anchors have no signal in any bin")
        result[name] = mat

    return AggregatedMatrix(
        tracks=result,
        axis=mode.axis(),
        anchors=anchors,
        mode=mode.name,
        extend=extend,
        bin_width=bin_width,
        smoothed=smooth,
    )


def aggregate_with_config(
    tracks: Mapping[str, SignalTrack],
    anchors: Union[IntervalSet, Sequence[GenomicInterval]],
    config: AggregationConfig,
) -> AggregatedMatrix:
    """Run :func:`aggregate` with parameters taken from an AggregationConfig."""
    return aggregate(
        tracks,
        anchors,
        extend=config.extend,
        bin_width=config.bin_width,
        anchor_mode=config.anchor_mode,
        smooth=config.smooth,
        summary=config.summary,
        smooth_kernel=config.smooth_kernel,
        target_bins=config.target_bins,
        n_workers=config.n_workers,
    )
