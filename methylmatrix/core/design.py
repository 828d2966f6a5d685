"""
Methylation datasets and design matrices.

- MethylationDataset: per-site methylated / total counts for a set of samples
- align_phenotype: join a phenotype table to the dataset's sample order
- DesignMatrix: treatment-coded model matrix built from phenotype factors
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .exceptions import (
    DesignMatrixError,
    EmptyDataError,
    MismatchedSampleOrderError,
    MissingColumnError,
    UnknownCoefficientError,
    ValidationError,
    validate_dataframe,
)
from .genomic_utils import CHROM_COLS, POS_COLS, detect_column, sort_chromosomes

logger = logging.getLogger(__name__)

INTERCEPT = "(Intercept)"


class MethylationDataset:
    """
    Per-site methylation counts.

    Args:
        chrom: Chromosome of each site
        pos: 1-based position of each site
        meth: Methylated read counts, sites x samples
        cov: Total read counts, sites x samples
        samples: Sample names, one per column
    """

    def __init__(
        self,
        chrom: Sequence[str],
        pos: Sequence[int],
        meth: np.ndarray,
        cov: np.ndarray,
        samples: Sequence[str],
    ):
        self.chrom = np.asarray(chrom, dtype=object).astype(str)
        self.pos = np.asarray(pos, dtype=np.int64)
        self.meth = np.asarray(meth, dtype=float)
        self.cov = np.asarray(cov, dtype=float)
        self.samples = [str(s) for s in samples]
        self._validate()

    def _validate(self):
        n_sites = len(self.chrom)
        if n_sites == 0:
            raise EmptyDataError("methylation dataset")
        if len(self.pos) != n_sites:
            raise ValidationError(f"{n_sites} chromosomes but {len(self.pos)} positions")
        expected = (n_sites, len(self.samples))
        for label, mat in (("meth", self.meth), ("cov", self.cov)):
            if mat.shape != expected:
                raise ValidationError(f"'{label}' matrix has shape {mat.shape}, expected {expected}")
        if len(set(self.samples)) != len(self.samples):
            raise ValidationError(f"Duplicate sample names: {self.samples}")
        if np.any(self.meth < 0) or np.any(self.cov < 0):
            raise ValidationError("Negative methylation or coverage counts")
        if np.any(self.meth > self.cov):
            bad = int(np.argmax((self.meth > self.cov).any(axis=1)))
            raise ValidationError(
                f"Methylated count exceeds coverage at {self.chrom[bad]}:{self.pos[bad]}"
            )

    def __len__(self) -> int:
        return len(self.chrom)

    def __repr__(self) -> str:
        return f"MethylationDataset(sites={len(self)}, samples={self.n_samples})"

    @property
    def n_samples(self) -> int:
        return len(self.samples)

    @property
    def beta(self) -> np.ndarray:
        """Methylation fraction; NaN where coverage is zero."""
        with np.errstate(invalid="ignore", divide="ignore"):
            return np.where(self.cov > 0, self.meth / np.where(self.cov > 0, self.cov, 1), np.nan)

    def subset(self, mask: np.ndarray) -> "MethylationDataset":
        return MethylationDataset(
            self.chrom[mask], self.pos[mask], self.meth[mask], self.cov[mask], self.samples
        )

    def sorted(self) -> "MethylationDataset":
        """Copy sorted by natural chromosome order, then position."""
        chrom_rank = {c: i for i, c in enumerate(sort_chromosomes(list(dict.fromkeys(self.chrom))))}
        ranks = np.array([chrom_rank[c] for c in self.chrom])
        order = np.lexsort((self.pos, ranks))
        return MethylationDataset(
            self.chrom[order], self.pos[order], self.meth[order], self.cov[order], self.samples
        )

    def select_samples(self, samples: Sequence[str]) -> "MethylationDataset":
        idx = [self.samples.index(s) for s in samples]
        return MethylationDataset(self.chrom, self.pos, self.meth[:, idx], self.cov[:, idx], list(samples))

    @classmethod
    def from_frames(cls, meth: pd.DataFrame, cov: pd.DataFrame) -> "MethylationDataset":
        """
        Build from two wide frames sharing site columns.

        Both frames need chromosome and position columns; every other column
        is a sample, and the two frames must list the same samples.
        """
        chrom_col = detect_column(meth, CHROM_COLS, required=True)
        pos_col = detect_column(meth, POS_COLS, required=True)
        validate_dataframe(cov, "coverage table", required_columns=[chrom_col, pos_col], min_rows=1)

        samples = [c for c in meth.columns if c not in (chrom_col, pos_col)]
        cov_samples = [c for c in cov.columns if c not in (chrom_col, pos_col)]
        if set(samples) != set(cov_samples):
            raise MismatchedSampleOrderError(
                missing=sorted(set(samples) - set(cov_samples)),
                extra=sorted(set(cov_samples) - set(samples)),
            )

        merged = meth.merge(cov, on=[chrom_col, pos_col], suffixes=("", "__cov"), how="inner")
        if len(merged) != len(meth) or len(merged) != len(cov):
            raise ValidationError(
                f"Methylation ({len(meth)}) and coverage ({len(cov)}) tables do not list the same sites"
            )
        return cls(
            merged[chrom_col].to_numpy(),
            merged[pos_col].to_numpy(),
            merged[samples].to_numpy(dtype=float),
            merged[[f"{s}__cov" for s in samples]].to_numpy(dtype=float),
            samples,
        )

    @classmethod
    def from_long(cls, df: pd.DataFrame, sample_col: str = "sample") -> "MethylationDataset":
        """Build from long rows of (chr, pos, sample, meth, cov); absent pairs get zero coverage."""
        validate_dataframe(df, "methylation table", required_columns=["chr", "pos", sample_col, "meth", "cov"], min_rows=1)
        samples = list(dict.fromkeys(df[sample_col].astype(str)))
        df = df.assign(**{sample_col: df[sample_col].astype(str)})
        meth = df.pivot_table(index=["chr", "pos"], columns=sample_col, values="meth", aggfunc="sum", fill_value=0)
        cov = df.pivot_table(index=["chr", "pos"], columns=sample_col, values="cov", aggfunc="sum", fill_value=0)
        meth = meth.reindex(columns=samples, fill_value=0)
        cov = cov.reindex(columns=samples, fill_value=0)
        sites = meth.index.to_frame(index=False)
        return cls(sites["chr"].to_numpy(), sites["pos"].to_numpy(), meth.to_numpy(), cov.to_numpy(), samples)


def align_phenotype(
    dataset: MethylationDataset,
    phenotype: pd.DataFrame,
    key: Optional[str] = None,
) -> pd.DataFrame:
    """
    Reorder phenotype rows to match the dataset's sample columns.

    Args:
        dataset: Methylation dataset
        phenotype: One row per sample
        key: Column holding sample names; the index is used when None

    Returns:
        Phenotype table indexed by sample name, in dataset order

    Raises:
        MismatchedSampleOrderError: samples missing on either side
    """
    pheno = phenotype.copy()
    if key is not None:
        if key not in pheno.columns:
            raise MissingColumnError(key, "phenotype table", available=list(pheno.columns))
        pheno = pheno.set_index(key)
    pheno.index = pheno.index.astype(str)

    if pheno.index.has_duplicates:
        dups = pheno.index[pheno.index.duplicated()].unique().tolist()
        raise ValidationError(f"Phenotype table lists samples more than once: {dups}")

    missing = [s for s in dataset.samples if s not in pheno.index]
    extra = [s for s in pheno.index if s not in set(dataset.samples)]
    if missing or extra:
        raise MismatchedSampleOrderError(missing=missing, extra=extra)

    return pheno.loc[dataset.samples]


@dataclass
class DesignMatrix:
    """Model matrix: rows are samples, columns are named model terms."""
    values: np.ndarray
    columns: List[str]
    samples: List[str]

    def __post_init__(self):
        self.values = np.asarray(self.values, dtype=float)
        self.columns = list(self.columns)
        self.samples = [str(s) for s in self.samples]
        if self.values.shape != (len(self.samples), len(self.columns)):
            raise DesignMatrixError(
                f"Design matrix values have shape {self.values.shape}, "
                f"expected {(len(self.samples), len(self.columns))}"
            )
        if len(set(self.columns)) != len(self.columns):
            raise DesignMatrixError(f"Duplicate design matrix columns: {self.columns}")

    @property
    def n_samples(self) -> int:
        return len(self.samples)

    @property
    def rank(self) -> int:
        return int(np.linalg.matrix_rank(self.values))

    def coefficient_index(self, name: str) -> int:
        """Column position of a coefficient; UnknownCoefficientError if absent."""
        if name not in self.columns:
            raise UnknownCoefficientError(name, available=self.columns)
        return self.columns.index(name)

    def column(self, name: str) -> np.ndarray:
        return self.values[:, self.coefficient_index(name)]

    def validate_for(self, dataset: MethylationDataset) -> None:
        """Check sample alignment with a dataset and full column rank."""
        if self.n_samples != dataset.n_samples:
            raise DesignMatrixError(
                f"Design matrix has {self.n_samples} rows but dataset has {dataset.n_samples} samples"
            )
        if set(self.samples) != set(dataset.samples):
            raise MismatchedSampleOrderError(
                missing=[s for s in dataset.samples if s not in self.samples],
                extra=[s for s in self.samples if s not in dataset.samples],
            )
        if self.samples != dataset.samples:
            raise MismatchedSampleOrderError(
                detail=f"design order {self.samples} differs from dataset order {dataset.samples}"
            )
        if self.rank < len(self.columns):
            raise DesignMatrixError(
                f"Design matrix is rank deficient (rank {self.rank} < {len(self.columns)} columns: {self.columns})"
            )
        if self.n_samples <= len(self.columns):
            raise DesignMatrixError(
                f"Design matrix leaves no residual degrees of freedom "
                f"({self.n_samples} samples, {len(self.columns)} columns)"
            )

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.values, index=self.samples, columns=self.columns)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "DesignMatrix":
        return cls(df.to_numpy(dtype=float), list(df.columns), list(df.index.astype(str)))

    @classmethod
    def from_phenotype(
        cls,
        phenotype: pd.DataFrame,
        factors: Sequence[str],
        reference_levels: Optional[Dict[str, str]] = None,
        intercept: bool = True,
    ) -> "DesignMatrix":
        """
        Treatment-coded design matrix from phenotype factors.

        Each factor contributes one indicator column per non-reference
        level, named factor + level (e.g. "Typecancer", "Pair2"). The
        reference level is the one given in ``reference_levels`` or the
        first level in sorted order.

        Args:
            phenotype: Phenotype table indexed by sample, in dataset order
            factors: Columns to encode, in column order
            reference_levels: Optional reference level per factor
            intercept: Include an "(Intercept)" column
        """
        reference_levels = reference_levels or {}
        columns: Dict[str, np.ndarray] = {}
        if intercept:
            columns[INTERCEPT] = np.ones(len(phenotype))

        for factor in factors:
            if factor not in phenotype.columns:
                raise MissingColumnError(factor, "phenotype table", available=list(phenotype.columns))
            values = phenotype[factor].astype(str)
            levels = sorted(values.unique(), key=_level_sort_key)
            ref = str(reference_levels.get(factor, levels[0]))
            if ref not in levels:
                raise DesignMatrixError(f"Reference level '{ref}' not found for factor '{factor}' (levels: {levels})")
            for level in levels:
                if level == ref:
                    continue
                columns[f"{factor}{level}"] = (values == level).to_numpy(dtype=float)

        design = cls(np.column_stack(list(columns.values())), list(columns), list(phenotype.index.astype(str)))
        logger.info(f"Built design matrix with columns {design.columns}")
        return design


def _level_sort_key(level: str):
    try:
        return (0, float(level), level)
    except ValueError:
        return (1, 0.0, level)
