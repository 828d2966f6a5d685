"""
End-to-end entry points.

- run_signal_profile: tracks + anchors -> aggregated matrix (+ cluster labels)
- run_dmr_analysis: counts + phenotype -> ranked, gene-annotated DMRs
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..config import settings
from .aggregation import AggregatedMatrix, AggregationConfig, aggregate_with_config
from .annotation import AnnotationProvider
from .clustering import ClusterConfig, cluster_matrix
from .design import DesignMatrix, MethylationDataset, align_phenotype
from .differential import DifferentialMethylationTester, DMRConfig, DMRResults
from .intervals import GenomicInterval, IntervalSet
from .region_annotation import annotate, top_genes
from .tracks import SignalTrack

logger = logging.getLogger(__name__)


@dataclass
class ProfileResults:
    """Aggregated matrix with optional cluster labels."""
    matrix: AggregatedMatrix
    labels: Optional[np.ndarray] = None
    cluster_track: Optional[str] = None

    def to_dict(self) -> Dict:
        d = self.matrix.to_dict()
        if self.labels is not None:
            d["cluster_track"] = self.cluster_track
            d["cluster_sizes"] = {
                int(lab): int((self.labels == lab).sum()) for lab in np.unique(self.labels)
            }
        return d


@dataclass
class AnnotatedDMRResults:
    """DMR results plus gene annotation of the regions."""
    results: DMRResults
    top_genes: IntervalSet = field(default_factory=IntervalSet)

    @property
    def regions(self) -> pd.DataFrame:
        return self.results.regions

    def to_dict(self) -> Dict:
        d = self.results.to_dict()
        d["top_genes"] = [g.name for g in self.top_genes]
        return d


def run_signal_profile(
    tracks: Mapping[str, SignalTrack],
    anchors: Union[IntervalSet, Sequence[GenomicInterval]],
    config: Optional[AggregationConfig] = None,
    cluster_config: Optional[ClusterConfig] = None,
    cluster_track: Optional[str] = None,
) -> ProfileResults:
    """
    Aggregate tracks around anchors and optionally cluster the anchors.

    Args:
        tracks: Named signal tracks
        anchors: Anchor intervals (promoters, peaks, ...)
        config: Aggregation parameters
        cluster_config: When given, anchors are clustered by ``cluster_track``
        cluster_track: Track used for clustering (first track by default)
    """
    config = config or AggregationConfig()
    matrix = aggregate_with_config(tracks, anchors, config)

    if cluster_config is None:
        return ProfileResults(matrix=matrix)

    cluster_track = cluster_track or matrix.track_names[0]
    labels = cluster_matrix(
        matrix,
        cluster_track,
        k=cluster_config.n_clusters,
        seed=cluster_config.random_seed,
        na_policy=cluster_config.na_policy,
    )
    return ProfileResults(matrix=matrix, labels=labels, cluster_track=cluster_track)


def promoter_profile(
    tracks: Mapping[str, SignalTrack],
    provider: AnnotationProvider,
    chrom: str,
    config: Optional[AggregationConfig] = None,
    upstream: Optional[int] = None,
    downstream: Optional[int] = None,
) -> ProfileResults:
    """Aggregate tracks around the promoters of one chromosome.

    Promoter window sizes default to the provider's settings-based defaults.
    """
    promoters = provider.promoters(chrom, upstream=upstream, downstream=downstream)
    logger.info(f"Profiling {len(promoters)} promoters on {chrom}")
    return run_signal_profile(tracks, promoters, config)


def run_dmr_analysis(
    dataset: MethylationDataset,
    phenotype: pd.DataFrame,
    factors: Sequence[str],
    config: DMRConfig,
    reference_levels: Optional[Dict[str, str]] = None,
    sample_key: Optional[str] = None,
    genes: Optional[Union[IntervalSet, Sequence[GenomicInterval]]] = None,
    top_n: Optional[int] = None,
) -> AnnotatedDMRResults:
    """
    Call DMRs for one coefficient and annotate them with genes.

    Args:
        dataset: Per-site counts
        phenotype: Sample table (condition, pairing, ...)
        factors: Phenotype columns encoded into the design, in order
        config: DMR parameters; ``config.coef`` names the tested column
        reference_levels: Reference level per factor
        sample_key: Phenotype column holding sample names (index if None)
        genes: Gene intervals for annotation
        top_n: Number of most significant regions used for top_genes
            (``settings.top_n`` by default)
    """
    pheno = align_phenotype(dataset, phenotype, key=sample_key)
    design = DesignMatrix.from_phenotype(pheno, factors, reference_levels=reference_levels)

    results = DifferentialMethylationTester(config).run(dataset, design)

    selected = IntervalSet()
    if genes is not None:
        results.regions = annotate(results.regions, genes)
        top_n = settings.top_n if top_n is None else top_n
        selected = top_genes(results.regions, genes, n=top_n)
    else:
        results.regions = results.regions.assign(
            overlapping_genes=np.nan,
            gene_set=[frozenset()] * len(results.regions),
        )

    return AnnotatedDMRResults(results=results, top_genes=selected)


def genes_for_regions(provider: AnnotationProvider, regions: pd.DataFrame) -> IntervalSet:
    """Gene intervals from a provider for every chromosome present in ``regions``."""
    genes = []
    for chrom in pd.unique(regions["chr"]):
        genes.extend(provider.genes(chrom))
    return IntervalSet(genes)
