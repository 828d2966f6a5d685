"""
Region Annotation Module

Attaches overlapping gene names to called regions and pulls out the gene
intervals behind the most significant regions.
"""

import logging
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .differential import rank_regions
from .exceptions import validate_dataframe
from .genomic_utils import find_overlaps
from .intervals import GenomicInterval, IntervalSet

logger = logging.getLogger(__name__)

GENE_SEPARATOR = ","


def _gene_frame(genes: Union[IntervalSet, Sequence[GenomicInterval]]) -> pd.DataFrame:
    genes = genes if isinstance(genes, IntervalSet) else IntervalSet(genes)
    df = genes.to_frame().reset_index(drop=True)
    if "gene_name" not in df.columns:
        df["gene_name"] = None
    return df


def annotate(
    regions: pd.DataFrame,
    genes: Union[IntervalSet, Sequence[GenomicInterval]],
) -> pd.DataFrame:
    """
    Add the genes overlapping each region.

    Args:
        regions: Region table with chr, start, end
        genes: Gene intervals carrying ``gene_name`` metadata

    Returns:
        Copy of ``regions`` with ``overlapping_genes`` (comma-joined names,
        NA when no gene overlaps) and ``gene_set`` (frozenset of names)
    """
    validate_dataframe(regions, "regions", required_columns=["chr", "start", "end"])
    regions = regions.copy()
    gene_df = _gene_frame(genes)

    names: List[List[str]] = [[] for _ in range(len(regions))]
    if len(regions) and len(gene_df):
        hits = find_overlaps(
            regions.reset_index(drop=True)[["chr", "start", "end"]],
            gene_df[["chr", "start", "end"]],
        )
        for q_idx, s_idx in zip(hits["query_idx"], hits["subject_idx"]):
            name = gene_df.at[s_idx, "gene_name"]
            if _is_missing(name):
                continue
            if name not in names[q_idx]:
                names[q_idx].append(str(name))

    regions["overlapping_genes"] = [GENE_SEPARATOR.join(n) if n else np.nan for n in names]
    regions["gene_set"] = [frozenset(n) for n in names]
    n_annotated = sum(1 for n in names if n)
    logger.info(f"Annotated {n_annotated} of {len(regions)} regions with overlapping genes")
    return regions


def regions_for_gene(regions: pd.DataFrame, gene_name: str) -> pd.DataFrame:
    """Regions whose overlapping genes include ``gene_name``."""
    if "gene_set" in regions.columns:
        mask = regions["gene_set"].apply(lambda s: gene_name in s)
    else:
        mask = regions["overlapping_genes"].apply(lambda s: gene_name in split_gene_names(s))
    return regions[mask]


def split_gene_names(value) -> List[str]:
    """Split a comma-joined gene list, dropping NA and empty entries."""
    if _is_missing(value):
        return []
    return [name.strip() for name in str(value).split(GENE_SEPARATOR) if name.strip() and name.strip() != "NA"]


def top_genes(
    regions: pd.DataFrame,
    genes: Union[IntervalSet, Sequence[GenomicInterval]],
    n: int = 10,
) -> IntervalSet:
    """
    Gene intervals behind the n most significant regions.

    Regions are ranked by ascending minimum smoothed FDR; their gene lists
    are split into names (NA and empty entries skipped) and matched back to
    the reference gene intervals, deduplicated in first-seen order.
    """
    genes = genes if isinstance(genes, IntervalSet) else IntervalSet(genes)
    if regions.empty or n <= 0:
        return IntervalSet()
    if "overlapping_genes" not in regions.columns:
        regions = annotate(regions, genes)

    top = rank_regions(regions, by="fdr").head(n)

    wanted: List[str] = []
    for value in top["overlapping_genes"]:
        for name in split_gene_names(value):
            if name not in wanted:
                wanted.append(name)

    by_name = {}
    for gene in genes:
        if not _is_missing(gene.name):
            by_name.setdefault(str(gene.name), []).append(gene)

    # interval equality ignores metadata, so distinct genes sharing
    # coordinates are told apart by name
    selected = []
    seen = set()
    for name in wanted:
        for gene in by_name.get(name, []):
            if (name, gene) not in seen:
                seen.add((name, gene))
                selected.append(gene)
    logger.info(f"Selected {len(selected)} genes from the top {len(top)} regions")
    return IntervalSet(selected)


def _is_missing(value: Optional[object]) -> bool:
    if value is None:
        return True
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return True
    return isinstance(value, str) and value.strip() in ("", "NA")
