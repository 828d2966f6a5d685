"""
Gene Annotation Providers

Supplies gene and promoter intervals to the aggregation and region
annotation steps. A provider is constructed once and passed explicitly to
the functions that need it; there is no module-level annotation cache.

Providers:
- GeneTableProvider: built from a gene DataFrame or a GTF/GFF file
"""

import gzip
import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

import numpy as np
import pandas as pd

from ..config import GenomeConfig, settings
from .exceptions import MissingColumnError, validate_dataframe
from .genomic_utils import GENE_NAME_COLS, detect_column, standardize_interval_columns
from .intervals import IntervalSet, filter_by_chromosome, relabel_coordinate_system

logger = logging.getLogger(__name__)


class AnnotationProvider(ABC):
    """Source of gene and promoter intervals for one genome build."""

    genome: str = "unknown"

    @abstractmethod
    def genes(self, chrom: Optional[str] = None) -> IntervalSet:
        """Gene intervals with ``gene_name`` metadata, optionally for one chromosome."""

    def promoters(
        self,
        chrom: Optional[str] = None,
        upstream: Optional[int] = None,
        downstream: Optional[int] = None,
    ) -> IntervalSet:
        """Strand-aware promoter windows around each gene's TSS.

        Window sizes default to ``settings.promoter_upstream`` and
        ``settings.promoter_downstream``.
        """
        upstream = settings.promoter_upstream if upstream is None else upstream
        downstream = settings.promoter_downstream if downstream is None else downstream
        genes = self.genes(chrom).to_frame()
        if genes.empty:
            return IntervalSet()

        tss = np.where(genes["strand"] == "-", genes["end"], genes["start"])
        minus = (genes["strand"] == "-").values
        prom_start = np.where(minus, tss - downstream, tss - upstream).clip(min=1)
        prom_end = np.where(minus, tss + upstream, tss + downstream)

        promoters = genes.copy()
        promoters["start"] = prom_start
        promoters["end"] = prom_end
        promoters["tss"] = tss
        return IntervalSet.from_frame(promoters)


class GeneTableProvider(AnnotationProvider):
    """
    Gene annotation held in memory as a DataFrame.

    The table needs chromosome, start, end, strand and a gene-name column
    (gene_name, symbol, gene_symbol or name).
    """

    def __init__(self, genes: pd.DataFrame, genome: str = "unknown", style: Optional[str] = None):
        """
        Initialize the provider.

        Args:
            genes: Gene table
            genome: Genome identifier; a supported genome sets the default style
            style: If given, relabel chromosomes into this naming style
        """
        genes = standardize_interval_columns(genes)
        validate_dataframe(genes, "gene table", required_columns=["chr", "start", "end"])

        name_col = detect_column(genes, GENE_NAME_COLS)
        if name_col is None:
            raise MissingColumnError("gene_name", "gene table", available=list(genes.columns))
        if name_col != "gene_name":
            genes = genes.rename(columns={name_col: "gene_name"})
        if "strand" not in genes.columns:
            genes = genes.assign(strand="*")

        if style is None and genome in GenomeConfig.SUPPORTED_GENOMES:
            style = settings.get_genome_config(genome)["style"]

        self.genome = genome
        self._genes = IntervalSet.from_frame(genes.reset_index(drop=True))
        if style is not None:
            self._genes = relabel_coordinate_system(self._genes, style)

        self._by_chrom: Dict[str, IntervalSet] = {}
        for chrom in self._genes.chromosomes:
            self._by_chrom[chrom] = filter_by_chromosome(self._genes, chrom)

        logger.info(f"Loaded {len(self._genes)} genes on {len(self._by_chrom)} chromosomes ({genome})")

    def genes(self, chrom: Optional[str] = None) -> IntervalSet:
        if chrom is None:
            return self._genes
        return self._by_chrom.get(chrom, IntervalSet())

    @classmethod
    def from_gtf(cls, gtf_file: str, genome: str = "unknown", style: Optional[str] = None) -> "GeneTableProvider":
        """
        Load gene records from a GTF/GFF file (optionally gzipped).

        Args:
            gtf_file: Path to GTF/GFF file
            genome: Genome identifier
            style: Optional chromosome naming style to relabel into
        """
        logger.info(f"Loading GTF: {gtf_file}")
        df = _parse_gtf(str(gtf_file), features=("gene",))
        if df.empty:
            raise MissingColumnError("gene", f"GTF {gtf_file}")
        df = _standardize_gene_columns(df)
        return cls(df[["chrom", "start", "end", "strand", "gene_id", "gene_name"]], genome=genome, style=style)


def _parse_gtf(gtf_file: str, features=("gene",)) -> pd.DataFrame:
    """Parse GTF records of the requested feature types into a DataFrame."""
    records = []
    opener = gzip.open if gtf_file.endswith('.gz') else open

    with opener(gtf_file, 'rt') as f:
        for line in f:
            if line.startswith('#'):
                continue

            fields = line.strip().split('\t')
            if len(fields) < 9:
                continue

            chrom, source, feature, start, end, score, strand, frame, attributes = fields
            if feature not in features:
                continue

            records.append({
                'chrom': chrom,
                'feature': feature,
                'start': int(start),
                'end': int(end),
                'strand': strand,
                **_parse_attributes(attributes)
            })

    return pd.DataFrame(records)


def _parse_attributes(attr_string: str) -> Dict[str, str]:
    """Parse a GTF (key "value";) or GFF3 (key=value;) attribute string."""
    attrs = {}
    for item in attr_string.strip().split(';'):
        item = item.strip()
        if not item:
            continue

        if '=' in item:  # GFF3
            key, value = item.split('=', 1)
        elif ' ' in item:  # GTF
            key, value = item.split(' ', 1)
        else:
            continue

        attrs[key] = value.strip().strip('"')

    return attrs


def _standardize_gene_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Fill gene_id / gene_name from the attribute variants used across GTF versions."""
    df = df.copy()

    if 'gene_id' not in df.columns:
        for col in ['ID', 'Name', 'gene']:
            if col in df.columns:
                df['gene_id'] = df[col]
                break
        else:
            df['gene_id'] = [f"gene_{i}" for i in range(len(df))]

    if 'gene_name' not in df.columns:
        for col in ['gene_symbol', 'Name', 'gene_id']:
            if col in df.columns:
                df['gene_name'] = df[col]
                break

    return df
