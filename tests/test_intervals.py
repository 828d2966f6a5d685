"""
Unit tests for the interval store.
"""

import pandas as pd
import pytest

from methylmatrix.config import settings
from methylmatrix.core.exceptions import (
    InvalidIntervalError,
    InvalidParameterError,
    UnknownChromosomeError,
)
from methylmatrix.core.intervals import (
    GenomicInterval,
    IntervalSet,
    Strand,
    filter_by_chromosome,
    find_overlapping,
    overlap_pairs,
    overlaps,
    relabel_coordinate_system,
)


class TestGenomicInterval:
    """Construction and derived properties."""

    def test_width_is_inclusive(self):
        assert GenomicInterval("chr1", 100, 100).width == 1
        assert GenomicInterval("chr1", 100, 199).width == 100

    def test_midpoint(self):
        assert GenomicInterval("chr1", 100, 200).midpoint == 150
        assert GenomicInterval("chr1", 100, 101).midpoint == 100

    def test_start_after_end_raises(self):
        with pytest.raises(InvalidIntervalError, match="chr3:500-100"):
            GenomicInterval("chr3", 500, 100)

    def test_empty_chromosome_raises(self):
        with pytest.raises(InvalidIntervalError):
            GenomicInterval("", 1, 2)

    def test_strand_parsed(self):
        assert GenomicInterval("chr1", 1, 2, "-").strand is Strand.MINUS
        assert GenomicInterval("chr1", 1, 2, ".").strand is Strand.UNKNOWN
        assert GenomicInterval("chr1", 1, 2).strand is Strand.UNKNOWN

    def test_metadata_read_only(self):
        iv = GenomicInterval("chr1", 1, 2, metadata={"gene_name": "TP53"})
        assert iv.name == "TP53"
        with pytest.raises(TypeError):
            iv.metadata["gene_name"] = "BRCA1"

    def test_metadata_ignored_in_equality(self):
        a = GenomicInterval("chr1", 1, 2, "+", {"name": "a"})
        b = GenomicInterval("chr1", 1, 2, "+", {"name": "b"})
        assert a == b

    def test_str(self):
        assert str(GenomicInterval("chr1", 10, 20, "+")) == "chr1:10-20(+)"


class TestOverlaps:
    """Closed-interval overlap semantics."""

    def test_shared_endpoint(self):
        assert overlaps(GenomicInterval("chr1", 1, 100), GenomicInterval("chr1", 100, 200))

    def test_adjacent(self):
        assert not overlaps(GenomicInterval("chr1", 1, 99), GenomicInterval("chr1", 100, 200))

    def test_other_chromosome(self):
        assert not overlaps(GenomicInterval("chr1", 1, 100), GenomicInterval("chr2", 1, 100))

    def test_containment(self):
        outer = GenomicInterval("chr1", 1, 1000)
        assert outer.overlaps(GenomicInterval("chr1", 500, 501))

    def test_find_overlapping_keeps_order(self):
        ivs = [
            GenomicInterval("chr1", 300, 400),
            GenomicInterval("chr1", 1, 50),
            GenomicInterval("chr1", 100, 350),
        ]
        hits = find_overlapping(ivs, GenomicInterval("chr1", 320, 330))
        assert [iv.start for iv in hits] == [300, 100]

    def test_overlap_pairs(self, gene_intervals):
        query = [GenomicInterval("chr1", 11000, 15500)]
        pairs = overlap_pairs(query, gene_intervals)
        assert list(pairs["subject_idx"]) == [0, 1]


class TestFilterByChromosome:
    """Chromosome filtering."""

    def test_keeps_order(self, gene_intervals):
        out = filter_by_chromosome(gene_intervals, "chr1")
        assert [iv.name for iv in out] == ["GENE_A", "GENE_B"]

    def test_no_match(self, gene_intervals):
        assert len(filter_by_chromosome(gene_intervals, "chrX")) == 0


class TestRelabelCoordinateSystem:
    """Renaming between UCSC and NCBI styles."""

    def test_coordinates_unchanged(self, gene_intervals):
        out = relabel_coordinate_system(gene_intervals, "NCBI")
        assert [iv.chromosome for iv in out] == ["1", "1", "2"]
        for before, after in zip(gene_intervals, out):
            assert (before.start, before.end, before.strand) == (after.start, after.end, after.strand)
            assert dict(before.metadata) == dict(after.metadata)

    def test_mitochondrial(self):
        out = relabel_coordinate_system([GenomicInterval("MT", 1, 10)], "UCSC")
        assert out[0].chromosome == "chrM"

    def test_unmapped_raises(self):
        with pytest.raises(UnknownChromosomeError, match="chrUn_gl000220"):
            relabel_coordinate_system([GenomicInterval("chrUn_gl000220", 1, 10)], "NCBI")

    def test_explicit_mapping(self):
        out = relabel_coordinate_system(
            [GenomicInterval("chrUn_gl000220", 1, 10)], "NCBI", mapping={"chrUn_gl000220": "GL000220.1"}
        )
        assert out[0].chromosome == "GL000220.1"

    def test_configured_aliases(self, monkeypatch):
        """Aliases from settings apply; an explicit mapping wins over them."""
        monkeypatch.setattr(settings, "extra_chromosome_aliases", {"chrUn_gl000220": "GL000220.1", "chrM": "M"})
        out = relabel_coordinate_system(
            [GenomicInterval("chrUn_gl000220", 1, 10), GenomicInterval("chrM", 1, 10)],
            "NCBI",
            mapping={"chrM": "MT"},
        )
        assert [iv.chromosome for iv in out] == ["GL000220.1", "MT"]

    def test_unknown_style(self, gene_intervals):
        with pytest.raises(InvalidParameterError):
            relabel_coordinate_system(gene_intervals, "Ensembl99")


class TestIntervalSet:
    """DataFrame conversion and sequence behaviour."""

    def test_from_frame_metadata(self, gene_table):
        ivs = IntervalSet.from_frame(gene_table)
        assert len(ivs) == 3
        assert ivs[1].strand is Strand.MINUS
        assert ivs[1].metadata["gene_name"] == "GENE_B"
        assert ivs.chromosomes == ["chr1", "chr2"]

    def test_to_frame_round_trip_columns(self, gene_table):
        df = IntervalSet.from_frame(gene_table).to_frame()
        pd.testing.assert_frame_equal(df[gene_table.columns.tolist()], gene_table, check_dtype=False)

    def test_from_frame_column_variants(self):
        df = pd.DataFrame({"chrom": ["chr1"], "chromStart": [5], "chromEnd": [10]})
        ivs = IntervalSet.from_frame(df)
        assert ivs[0] == GenomicInterval("chr1", 5, 10)

    def test_from_frame_invalid_row(self):
        df = pd.DataFrame({"chr": ["chr1"], "start": [10], "end": [5]})
        with pytest.raises(InvalidIntervalError):
            IntervalSet.from_frame(df)

    def test_slice_returns_set(self, gene_intervals):
        assert isinstance(gene_intervals[:2], IntervalSet)

    def test_empty_to_frame(self):
        assert list(IntervalSet().to_frame().columns) == ["chr", "start", "end", "strand"]
