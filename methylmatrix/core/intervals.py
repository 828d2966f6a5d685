"""
Interval Store

Typed genomic intervals (1-based, closed coordinates) and the operations
shared by the aggregation and differential-methylation paths:
- filtering by chromosome
- relabeling chromosome identifiers between naming styles
- overlap tests and overlap queries
- conversion to and from pandas DataFrames
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Union

import pandas as pd

from ..config import settings
from .exceptions import InvalidIntervalError, UnknownChromosomeError, InvalidParameterError
from .genomic_utils import (
    CHROMOSOME_STYLES,
    build_chromosome_mapping,
    find_overlaps,
    standardize_interval_columns,
)

logger = logging.getLogger(__name__)


class Strand(Enum):
    """Strand of a genomic interval."""

    PLUS = "+"
    MINUS = "-"
    UNKNOWN = "*"

    @classmethod
    def parse(cls, value) -> "Strand":
        if isinstance(value, Strand):
            return value
        if value is None or (isinstance(value, float) and value != value):
            return cls.UNKNOWN
        value = str(value).strip()
        if value in ("+", "1", "+1"):
            return cls.PLUS
        if value in ("-", "-1"):
            return cls.MINUS
        return cls.UNKNOWN


@dataclass(frozen=True)
class GenomicInterval:
    """A genomic interval with 1-based inclusive coordinates."""

    chromosome: str
    start: int
    end: int
    strand: Strand = Strand.UNKNOWN
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self):
        if not self.chromosome:
            raise InvalidIntervalError(self.chromosome, self.start, self.end, "empty chromosome")
        if self.start > self.end:
            raise InvalidIntervalError(self.chromosome, self.start, self.end)
        object.__setattr__(self, "strand", Strand.parse(self.strand))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata or {})))

    @property
    def width(self) -> int:
        return self.end - self.start + 1

    @property
    def midpoint(self) -> int:
        return (self.start + self.end) // 2

    @property
    def name(self) -> Optional[str]:
        return self.metadata.get("gene_name", self.metadata.get("name"))

    def with_chromosome(self, chromosome: str) -> "GenomicInterval":
        """Return a copy on another chromosome identifier, same coordinates."""
        return GenomicInterval(chromosome, self.start, self.end, self.strand, dict(self.metadata))

    def overlaps(self, other: "GenomicInterval") -> bool:
        return overlaps(self, other)

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "chr": self.chromosome,
            "start": self.start,
            "end": self.end,
            "strand": self.strand.value,
        }
        d.update(self.metadata)
        return d

    def __str__(self) -> str:
        return f"{self.chromosome}:{self.start}-{self.end}({self.strand.value})"


class IntervalSet(Sequence):
    """Ordered, immutable collection of GenomicInterval objects.

    Order is kept exactly as given; it is what the aggregated matrix rows
    and ranked outputs follow.
    """

    def __init__(self, intervals: Iterable[GenomicInterval] = ()):
        self._intervals = tuple(intervals)

    def __getitem__(self, idx):
        if isinstance(idx, slice):
            return IntervalSet(self._intervals[idx])
        return self._intervals[idx]

    def __len__(self) -> int:
        return len(self._intervals)

    def __iter__(self) -> Iterator[GenomicInterval]:
        return iter(self._intervals)

    def __eq__(self, other) -> bool:
        if isinstance(other, IntervalSet):
            return self._intervals == other._intervals
        return NotImplemented

    def __repr__(self) -> str:
        return f"IntervalSet(n={len(self)})"

    @property
    def chromosomes(self) -> List[str]:
        seen = dict.fromkeys(iv.chromosome for iv in self._intervals)
        return list(seen)

    def to_frame(self) -> pd.DataFrame:
        """Convert to a DataFrame with chr, start, end, strand and metadata columns."""
        if not self._intervals:
            return pd.DataFrame(columns=["chr", "start", "end", "strand"])
        return pd.DataFrame([iv.to_dict() for iv in self._intervals])

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "IntervalSet":
        """Build from a DataFrame; extra columns become metadata.

        Column name variants (chrom, chromStart, seqnames, ...) are
        recognised.
        """
        df = standardize_interval_columns(df)
        for col in ("chr", "start", "end"):
            if col not in df.columns:
                raise InvalidParameterError("columns", list(df.columns), "chr, start and end columns")
        meta_cols = [c for c in df.columns if c not in ("chr", "start", "end", "strand")]
        intervals = []
        for row in df.to_dict("records"):
            intervals.append(GenomicInterval(
                chromosome=str(row["chr"]),
                start=int(row["start"]),
                end=int(row["end"]),
                strand=Strand.parse(row.get("strand")),
                metadata={c: row[c] for c in meta_cols},
            ))
        return cls(intervals)


IntervalsLike = Union[IntervalSet, Sequence[GenomicInterval]]


def _as_set(intervals: IntervalsLike) -> IntervalSet:
    return intervals if isinstance(intervals, IntervalSet) else IntervalSet(intervals)


def overlaps(a: GenomicInterval, b: GenomicInterval) -> bool:
    """Closed-interval overlap test; intervals on different chromosomes never overlap."""
    return a.chromosome == b.chromosome and a.start <= b.end and b.start <= a.end


def filter_by_chromosome(intervals: IntervalsLike, chrom: str) -> IntervalSet:
    """Keep only intervals on ``chrom``, preserving order."""
    return IntervalSet(iv for iv in intervals if iv.chromosome == chrom)


def relabel_coordinate_system(
    intervals: IntervalsLike,
    target_style: str,
    mapping: Optional[Dict[str, str]] = None,
) -> IntervalSet:
    """Rename chromosome identifiers into ``target_style`` ("UCSC" or "NCBI").

    Coordinates are never touched. ``mapping`` entries, then
    ``settings.extra_chromosome_aliases``, override the default prefix rule
    (e.g. for scaffold names).

    Raises
    ------
    UnknownChromosomeError
        If an identifier has no counterpart in the target style.
    """
    if target_style not in CHROMOSOME_STYLES and not mapping:
        raise InvalidParameterError("target_style", target_style, f"one of {CHROMOSOME_STYLES}")

    intervals = _as_set(intervals)
    overrides = {**settings.extra_chromosome_aliases, **(mapping or {})}
    chrom_map = build_chromosome_mapping(intervals.chromosomes, target_style, overrides)

    relabeled = []
    for iv in intervals:
        new_chrom = chrom_map[iv.chromosome]
        if new_chrom is None:
            raise UnknownChromosomeError(iv.chromosome, target_style)
        relabeled.append(iv if new_chrom == iv.chromosome else iv.with_chromosome(new_chrom))

    logger.debug(f"Relabeled {len(relabeled)} intervals to {target_style} style")
    return IntervalSet(relabeled)


def find_overlapping(intervals: IntervalsLike, query: GenomicInterval) -> IntervalSet:
    """Return the intervals overlapping ``query``, in input order."""
    return IntervalSet(iv for iv in intervals if overlaps(iv, query))


def overlap_pairs(query: IntervalsLike, subject: IntervalsLike) -> pd.DataFrame:
    """All (query_idx, subject_idx, overlap_bp) pairs between two interval sets.

    Positional indices into ``query`` and ``subject`` are returned.
    """
    q_df = _as_set(query).to_frame()[["chr", "start", "end"]].reset_index(drop=True)
    s_df = _as_set(subject).to_frame()[["chr", "start", "end"]].reset_index(drop=True)
    return find_overlaps(q_df, s_df)
