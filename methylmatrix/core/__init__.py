"""
Core analysis modules for MethylMatrix.

Includes:
- Interval store and gene annotation providers
- Signal aggregation into profile matrices
- Profile clustering
- Differential methylation region calling
- Region annotation
"""

# Interval store
from .intervals import (
    GenomicInterval,
    IntervalSet,
    Strand,
    filter_by_chromosome,
    relabel_coordinate_system,
    overlaps,
    find_overlapping,
    overlap_pairs,
)
from .annotation import AnnotationProvider, GeneTableProvider

# Signal aggregation
from .tracks import SignalTrack, track_from_methylation
from .aggregation import (
    AggregatedMatrix,
    AggregationConfig,
    AnchorMode,
    CenterMode,
    ScaleMode,
    aggregate,
    aggregate_with_config,
    smooth_rows,
)

# Clustering
from .clustering import ClusterConfig, cluster, cluster_matrix, cluster_profiles

# Differential methylation
from .design import DesignMatrix, MethylationDataset, align_phenotype
from .differential import (
    DifferentialMethylationTester,
    DMRConfig,
    DMRResults,
    rank_regions,
)

# Region annotation
from .region_annotation import annotate, top_genes, regions_for_gene

# Pipelines
from .pipeline import run_signal_profile, run_dmr_analysis, promoter_profile

# Shared genomic utilities
from .genomic_utils import find_overlaps, sort_chromosomes

__all__ = [
    # Interval store
    "GenomicInterval",
    "IntervalSet",
    "Strand",
    "filter_by_chromosome",
    "relabel_coordinate_system",
    "overlaps",
    "find_overlapping",
    "overlap_pairs",
    "AnnotationProvider",
    "GeneTableProvider",

    # Aggregation
    "SignalTrack",
    "track_from_methylation",
    "AggregatedMatrix",
    "AggregationConfig",
    "AnchorMode",
    "CenterMode",
    "ScaleMode",
    "aggregate",
    "aggregate_with_config",
    "smooth_rows",

    # Clustering
    "ClusterConfig",
    "cluster",
    "cluster_matrix",
    "cluster_profiles",

    # Differential methylation
    "DesignMatrix",
    "MethylationDataset",
    "align_phenotype",
    "DifferentialMethylationTester",
    "DMRConfig",
    "DMRResults",
    "rank_regions",

    # Region annotation
    "annotate",
    "top_genes",
    "regions_for_gene",

    # Pipelines
    "run_signal_profile",
    "run_dmr_analysis",
    "promoter_profile",

    # Utilities
    "find_overlaps",
    "sort_chromosomes",
]
