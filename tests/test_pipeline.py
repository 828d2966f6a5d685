"""
Integration tests for the end-to-end entry points.
"""

import numpy as np
import pytest

from methylmatrix.config import settings
from methylmatrix.core.aggregation import AggregationConfig
from methylmatrix.core.annotation import GeneTableProvider
from methylmatrix.core.clustering import ClusterConfig
from methylmatrix.core.differential import DMRConfig
from methylmatrix.core.exceptions import MismatchedSampleOrderError, UnknownCoefficientError
from methylmatrix.core.intervals import GenomicInterval
from methylmatrix.core.pipeline import (
    genes_for_regions,
    promoter_profile,
    run_dmr_analysis,
    run_signal_profile,
)
from methylmatrix.core.tracks import SignalTrack, track_from_methylation


class TestSignalProfile:
    """Aggregation plus optional clustering."""

    def test_matrix_only(self, step_track, point_anchors):
        result = run_signal_profile({"step": step_track}, point_anchors,
                                    AggregationConfig(extend=100, bin_width=50))
        assert result.labels is None
        assert result.matrix.track("step").shape == (3, 4)
        assert "cluster_sizes" not in result.to_dict()

    def test_with_clustering(self):
        positions = np.arange(1, 30001)
        track = SignalTrack("atac", {"chr1": (positions, np.where(positions < 15000, 5.0, 0.5))})
        anchors = [GenomicInterval("chr1", 2000 * (i + 1), 2000 * (i + 1)) for i in range(12)]
        result = run_signal_profile(
            {"atac": track},
            anchors,
            AggregationConfig(extend=500, bin_width=100),
            cluster_config=ClusterConfig(n_clusters=2),
        )
        assert result.cluster_track == "atac"
        assert list(result.labels) == [1] * 7 + [2] * 5
        assert result.to_dict()["cluster_sizes"] == {1: 7, 2: 5}

    def test_promoter_profile(self, gene_table):
        provider = GeneTableProvider(gene_table)
        positions = np.arange(1, 20001)
        track = SignalTrack("H3K4me3", {"chr1": (positions, np.ones(len(positions)))})
        result = promoter_profile({"H3K4me3": track}, provider, "chr1",
                                  AggregationConfig(extend=1000, bin_width=100))
        assert result.matrix.n_anchors == 2
        assert result.matrix.n_bins == 20
        assert np.allclose(result.matrix.track("H3K4me3"), 1.0)

    def test_promoter_profile_non_dividing_bins(self, gene_table):
        provider = GeneTableProvider(gene_table)
        positions = np.arange(1, 20001)
        track = SignalTrack("H3K4me3", {"chr1": (positions, np.ones(len(positions)))})
        result = promoter_profile({"H3K4me3": track}, provider, "chr1",
                                  AggregationConfig(extend=1000, bin_width=300))
        assert result.matrix.n_bins == 7
        assert np.allclose(result.matrix.track("H3K4me3"), 1.0)


class TestDMRAnalysis:
    """Design construction, region calling and annotation in one call."""

    def test_annotated_regions(self, methylation_dataset, phenotype, gene_intervals):
        result = run_dmr_analysis(
            methylation_dataset,
            phenotype,
            factors=["Type", "Pair"],
            config=DMRConfig(coef="Typecancer"),
            reference_levels={"Type": "normal"},
            genes=gene_intervals,
            top_n=5,
        )
        regions = result.regions
        assert list(regions["start"]) == [10000, 40000]
        assert regions["overlapping_genes"].iloc[0] == "GENE_A"
        assert regions["overlapping_genes"].isna().iloc[1]
        assert [g.name for g in result.top_genes] == ["GENE_A"]

        summary = result.to_dict()
        assert summary["n_regions"] == 2
        assert summary["top_genes"] == ["GENE_A"]
        assert summary["dropped"]["too_few_cpgs"] == 1
        assert "overlappingGenes" in result.results.to_report().columns

    def test_without_genes(self, methylation_dataset, phenotype):
        result = run_dmr_analysis(
            methylation_dataset, phenotype, ["Type", "Pair"], DMRConfig(coef="Typecancer"),
            reference_levels={"Type": "normal"},
        )
        assert len(result.top_genes) == 0
        assert result.regions["overlapping_genes"].isna().all()
        assert list(result.results.to_report()["overlappingGenes"].isna()) == [True, True]

    def test_top_n_from_settings(self, methylation_dataset, phenotype, gene_intervals, monkeypatch):
        monkeypatch.setattr(settings, "top_n", 0)
        result = run_dmr_analysis(
            methylation_dataset, phenotype, ["Type", "Pair"], DMRConfig(coef="Typecancer"),
            reference_levels={"Type": "normal"}, genes=gene_intervals,
        )
        assert result.regions["overlapping_genes"].iloc[0] == "GENE_A"
        assert len(result.top_genes) == 0

    def test_phenotype_join_key(self, methylation_dataset, phenotype):
        pheno = phenotype.reset_index().iloc[::-1]
        result = run_dmr_analysis(
            methylation_dataset, pheno, ["Type", "Pair"], DMRConfig(coef="Typecancer"),
            reference_levels={"Type": "normal"}, sample_key="sample",
        )
        assert result.results.n_regions == 2

    def test_mismatched_phenotype(self, methylation_dataset, phenotype):
        with pytest.raises(MismatchedSampleOrderError):
            run_dmr_analysis(methylation_dataset, phenotype.iloc[:4], ["Type", "Pair"],
                             DMRConfig(coef="Typecancer"))

    def test_unknown_coefficient(self, methylation_dataset, phenotype):
        with pytest.raises(UnknownCoefficientError):
            run_dmr_analysis(methylation_dataset, phenotype, ["Type", "Pair"], DMRConfig(coef="Typenormal"),
                             reference_levels={"Type": "normal"})

    def test_genes_for_regions(self, gene_table, methylation_dataset, phenotype):
        provider = GeneTableProvider(gene_table)
        result = run_dmr_analysis(methylation_dataset, phenotype, ["Type", "Pair"],
                                  DMRConfig(coef="Typecancer"), reference_levels={"Type": "normal"})
        genes = genes_for_regions(provider, result.regions)
        assert [g.name for g in genes] == ["GENE_A", "GENE_B"]

    def test_methylation_track_profile(self, methylation_dataset):
        """Pooled methylation fractions can be profiled like any other track."""
        track = track_from_methylation("meth", methylation_dataset.chrom, methylation_dataset.pos,
                                       methylation_dataset.meth, methylation_dataset.cov)
        result = run_signal_profile({"meth": track}, [GenomicInterval("chr1", 10475, 10475)],
                                    AggregationConfig(extend=500, bin_width=100))
        row = result.matrix.track("meth")[0]
        assert np.allclose(row, (8 * 3 + 34 + 30 + 32) / 240)
