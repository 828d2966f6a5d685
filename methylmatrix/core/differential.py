"""
Differential Methylation Module

Calls differentially methylated regions (DMRs) between two conditions from
per-site bisulfite counts, with paired-sample structure carried by the
design matrix.

Workflow:
1. Annotate: per-site linear model of methylation log-odds (M-values)
   against the design matrix; t statistic, p-value and methylation
   difference for one coefficient
2. Smooth: Gaussian kernel smoothing of the per-site chi-square statistics
   along each chromosome, Satterthwaite-approximated p-values, BH FDR
3. Threshold and group: significant sites within lambda bases of each other
   form regions; regions need at least min_cpgs sites
4. Rank: by absolute mean difference, or by smoothed FDR

Sites lacking coverage and sites whose statistic is undefined are
excluded and counted in the run's DropReport, never treated as zero.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd
from scipy import stats

from .design import DesignMatrix, MethylationDataset
from .exceptions import (
    INSUFFICIENT_COVERAGE,
    TOO_FEW_CPGS,
    UNDEFINED_STATISTIC,
    DropReport,
    InvalidParameterError,
    validate_numeric_param,
)

logger = logging.getLogger(__name__)

SITE_COLUMNS = ["chr", "pos", "stat", "pvalue", "diff", "ind_fdr", "is_diff"]
REGION_COLUMNS = [
    "chr", "start", "end", "width", "num_cpgs", "min_smoothed_fdr",
    "stouffer", "hmfdr", "fisher", "max_diff", "mean_diff",
]

# Field names expected by the reporting/plotting side
REPORT_COLUMNS = {
    "chr": "chromosome",
    "start": "start",
    "end": "end",
    "num_cpgs": "numCpGs",
    "mean_diff": "meanDiff",
    "min_smoothed_fdr": "minSmoothedFDR",
    "overlapping_genes": "overlappingGenes",
}

RANK_ORDERS = ("meandiff", "fdr")


@dataclass
class DMRConfig:
    """Configuration for differential methylation region calling."""
    coef: str

    # Site annotation
    fdr: float = 0.05
    all_cov: bool = True
    pseudocount: float = 0.5

    # Kernel smoothing: bandwidth lambda_bp, kernel sd = lambda_bp / C
    lambda_bp: int = 1000
    C: float = 2.0

    # Region calling
    min_cpgs: int = 5
    pcutoff: float = 0.05
    rank_by: str = "meandiff"

    def __post_init__(self):
        validate_numeric_param(self.lambda_bp, "lambda_bp", min_val=1)
        validate_numeric_param(self.C, "C", min_val=1e-9)
        validate_numeric_param(self.min_cpgs, "min_cpgs", min_val=1)
        validate_numeric_param(self.pcutoff, "pcutoff", min_val=0, max_val=1)
        validate_numeric_param(self.fdr, "fdr", min_val=0, max_val=1)
        if self.rank_by not in RANK_ORDERS:
            raise InvalidParameterError("rank_by", self.rank_by, f"one of {RANK_ORDERS}")

    @classmethod
    def from_settings(cls, settings, coef: str, **overrides) -> "DMRConfig":
        params = dict(
            coef=coef,
            fdr=settings.fdr,
            all_cov=settings.all_cov,
            pseudocount=settings.pseudocount,
            lambda_bp=settings.lambda_bp,
            C=settings.C,
            min_cpgs=settings.min_cpgs,
            pcutoff=settings.pcutoff,
        )
        params.update(overrides)
        return cls(**params)


@dataclass
class DMRResults:
    """Results from a differential methylation run."""
    coefficient: str
    total_sites: int
    tested_sites: int
    significant_sites: int
    n_regions: int

    sites: pd.DataFrame = field(default_factory=pd.DataFrame)
    regions: pd.DataFrame = field(default_factory=pd.DataFrame)
    drop_report: DropReport = field(default_factory=DropReport)

    def to_dict(self) -> Dict:
        return {
            "coefficient": self.coefficient,
            "total_sites": self.total_sites,
            "tested_sites": self.tested_sites,
            "significant_sites": self.significant_sites,
            "n_regions": self.n_regions,
            "dropped": self.drop_report.to_dict(),
        }

    def to_report(self) -> pd.DataFrame:
        """Regions with the reporting field names (chromosome, numCpGs, meanDiff, ...)."""
        cols = [c for c in REPORT_COLUMNS if c in self.regions.columns]
        return self.regions[cols].rename(columns=REPORT_COLUMNS).reset_index(drop=True)


# ============================================================================
# Multiple testing helpers
# ============================================================================


def benjamini_hochberg(pvalues: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg adjusted p-values."""
    pvalues = np.asarray(pvalues, dtype=float)
    if len(pvalues) == 0:
        return pvalues.copy()
    return stats.false_discovery_control(pvalues, method="bh")


def satterthwaite_pvalue(weighted_sum: np.ndarray, k_sum: np.ndarray, k_sq_sum: np.ndarray) -> np.ndarray:
    """P-value of a kernel-weighted sum of independent chi-square(1) variables.

    The sum is approximated by a scaled chi-square a * chi2(b) with matching
    mean and variance: a = sum(K^2) / sum(K), b = sum(K)^2 / sum(K^2).
    """
    scale = k_sq_sum / k_sum
    dof = k_sum ** 2 / k_sq_sum
    return stats.chi2.sf(weighted_sum / scale, dof)


# ============================================================================
# Tester
# ============================================================================


class DifferentialMethylationTester:
    """
    Kernel-smoothed DMR caller over a linear model fit per site.

    The tester keeps no state between runs; each call to ``run`` builds a
    fresh DropReport.
    """

    def __init__(self, config: DMRConfig):
        self.config = config

    # ------------------------------------------------------------------
    # Step 1: per-site statistics
    # ------------------------------------------------------------------

    def annotate(
        self,
        dataset: MethylationDataset,
        design: DesignMatrix,
        drop_report: Optional[DropReport] = None,
    ) -> pd.DataFrame:
        """
        Fit the per-site model and extract the coefficient of interest.

        Args:
            dataset: Methylation counts; sites are sorted here
            design: Design matrix aligned with ``dataset.samples``
            drop_report: Collects excluded-site counts

        Returns:
            DataFrame with columns chr, pos, stat, pvalue, diff, ind_fdr, is_diff

        Raises:
            UnknownCoefficientError: coefficient not in the design
            DesignMatrixError: design misaligned or rank deficient
        """
        cfg = self.config
        drop_report = drop_report if drop_report is not None else DropReport()
        coef_idx = design.coefficient_index(cfg.coef)
        design.validate_for(dataset)

        # sites must be in genomic order before smoothing
        dataset = dataset.sorted()
        n_sites = len(dataset)
        logger.info(f"Annotating {n_sites} sites across {dataset.n_samples} samples (coef={cfg.coef})")

        covered = dataset.cov > 0
        if cfg.all_cov:
            usable = covered.all(axis=1)
        else:
            usable = covered.any(axis=1)
        n_uncovered = int((~usable).sum())
        if n_uncovered:
            logger.warning(f"Dropping {n_uncovered} sites with insufficient coverage")
            drop_report.record(INSUFFICIENT_COVERAGE, n_uncovered)

        stat = np.full(n_sites, np.nan)
        diff = np.full(n_sites, np.nan)
        dof = np.full(n_sites, np.nan)

        m_values = np.log2((dataset.meth + cfg.pseudocount) / (dataset.cov - dataset.meth + cfg.pseudocount))
        beta = dataset.beta
        X = design.values

        # one least-squares fit per distinct pattern of covered samples
        usable_idx = np.nonzero(usable)[0]
        if len(usable_idx):
            patterns, pattern_ids = np.unique(covered[usable], axis=0, return_inverse=True)
        else:
            patterns, pattern_ids = [], np.empty(0, dtype=int)
        for p_i, pattern in enumerate(patterns):
            rows = usable_idx[np.asarray(pattern_ids).ravel() == p_i]
            Xs = X[pattern]
            if Xs.shape[0] <= Xs.shape[1] or np.linalg.matrix_rank(Xs) < Xs.shape[1]:
                continue
            t_vals, d_vals = _fit_sites(m_values[np.ix_(rows, pattern)], beta[np.ix_(rows, pattern)], Xs, coef_idx)
            stat[rows] = t_vals
            diff[rows] = d_vals
            dof[rows] = Xs.shape[0] - Xs.shape[1]

        tested = usable & np.isfinite(stat)
        n_undefined = int((usable & ~tested).sum())
        if n_undefined:
            logger.warning(f"Excluding {n_undefined} sites with undefined test statistic")
            drop_report.record(UNDEFINED_STATISTIC, n_undefined)

        pvalue = np.full(n_sites, np.nan)
        pvalue[tested] = 2 * stats.t.sf(np.abs(stat[tested]), dof[tested])

        sites = pd.DataFrame({
            "chr": dataset.chrom[tested],
            "pos": dataset.pos[tested],
            "stat": stat[tested],
            "pvalue": pvalue[tested],
            "diff": diff[tested],
        })
        sites["ind_fdr"] = benjamini_hochberg(sites["pvalue"].to_numpy())
        sites["is_diff"] = sites["ind_fdr"] <= cfg.fdr

        logger.info(f"Tested {len(sites)} sites, {int(sites['is_diff'].sum())} individually significant")
        return sites[SITE_COLUMNS].reset_index(drop=True)

    # ------------------------------------------------------------------
    # Step 2: kernel smoothing
    # ------------------------------------------------------------------

    def smooth(self, sites: pd.DataFrame) -> pd.DataFrame:
        """
        Add ``smoothed_pvalue`` and ``smoothed_fdr`` columns.

        Each site's chi-square statistic (from its two-sided p-value) is
        combined with those of neighbours within lambda bases using a
        Gaussian kernel of sd lambda / C. Neighbourhoods never cross
        chromosomes.
        """
        cfg = self.config
        sigma = cfg.lambda_bp / cfg.C
        sites = sites.copy()
        chisq = stats.norm.isf(sites["pvalue"].to_numpy() / 2) ** 2
        smoothed_p = np.full(len(sites), np.nan)

        for _, idx in sites.groupby("chr", sort=False).indices.items():
            pos = sites["pos"].to_numpy()[idx]
            if len(pos) > 1 and np.any(np.diff(pos) < 0):
                raise InvalidParameterError("sites", "unsorted positions", "sites sorted by position within chromosome")
            x = chisq[idx]
            lo = np.searchsorted(pos, pos - cfg.lambda_bp, side="left")
            hi = np.searchsorted(pos, pos + cfg.lambda_bp, side="right")
            w_sum = np.empty(len(pos))
            k_sum = np.empty(len(pos))
            k_sq = np.empty(len(pos))
            for i in range(len(pos)):
                d = pos[lo[i]:hi[i]] - pos[i]
                k = np.exp(-0.5 * (d / sigma) ** 2)
                w_sum[i] = np.dot(k, x[lo[i]:hi[i]])
                k_sum[i] = k.sum()
                k_sq[i] = np.dot(k, k)
            smoothed_p[idx] = satterthwaite_pvalue(w_sum, k_sum, k_sq)

        sites["smoothed_pvalue"] = smoothed_p
        sites["smoothed_fdr"] = benjamini_hochberg(smoothed_p)
        return sites

    # ------------------------------------------------------------------
    # Step 3: region calling
    # ------------------------------------------------------------------

    def call_regions(self, sites: pd.DataFrame, drop_report: Optional[DropReport] = None) -> pd.DataFrame:
        """
        Group significant sites into regions and summarize them.

        Sites with smoothed FDR <= pcutoff are joined while consecutive
        sites on a chromosome are at most lambda bases apart. Regions with
        fewer than min_cpgs sites are discarded and counted.
        """
        cfg = self.config
        drop_report = drop_report if drop_report is not None else DropReport()
        sig = sites[sites["smoothed_fdr"] <= cfg.pcutoff]

        regions = []
        n_small = 0
        for chrom, grp in sig.groupby("chr", sort=False):
            pos = grp["pos"].to_numpy()
            breaks = np.nonzero(np.diff(pos) > cfg.lambda_bp)[0] + 1
            for chunk in np.split(np.arange(len(grp)), breaks):
                if len(chunk) < cfg.min_cpgs:
                    n_small += 1
                    continue
                regions.append(_summarize_region(chrom, grp.iloc[chunk]))

        if n_small:
            logger.info(f"Discarded {n_small} candidate regions with fewer than {cfg.min_cpgs} sites")
            drop_report.record(TOO_FEW_CPGS, n_small)

        if not regions:
            return pd.DataFrame(columns=REGION_COLUMNS)
        result = pd.DataFrame(regions, columns=REGION_COLUMNS)
        return result[result["min_smoothed_fdr"] <= cfg.pcutoff].reset_index(drop=True)

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    def run(self, dataset: MethylationDataset, design: DesignMatrix) -> DMRResults:
        """Annotate, smooth, call and rank regions for one coefficient."""
        cfg = self.config
        logger.info(f"Starting DMR calling: coef={cfg.coef}, lambda={cfg.lambda_bp}, C={cfg.C}")
        drop_report = DropReport()

        sites = self.annotate(dataset, design, drop_report)
        if sites.empty:
            logger.warning("No sites left to test")
            sites = sites.assign(smoothed_pvalue=pd.Series(dtype=float), smoothed_fdr=pd.Series(dtype=float))
            regions = pd.DataFrame(columns=REGION_COLUMNS)
        else:
            sites = self.smooth(sites)
            regions = rank_regions(self.call_regions(sites, drop_report), by=cfg.rank_by)

        n_sig = int((sites["smoothed_fdr"] <= cfg.pcutoff).sum()) if len(sites) else 0
        logger.info(f"Called {len(regions)} regions from {n_sig} significant sites; dropped {drop_report.to_dict()}")

        return DMRResults(
            coefficient=cfg.coef,
            total_sites=len(dataset),
            tested_sites=len(sites),
            significant_sites=n_sig,
            n_regions=len(regions),
            sites=sites,
            regions=regions,
            drop_report=drop_report,
        )


def _fit_sites(m_values: np.ndarray, beta: np.ndarray, X: np.ndarray, coef_idx: int) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorised OLS for many sites sharing one design.

    Returns the t statistic of the coefficient on the M-value scale and the
    same coefficient fitted on the beta scale (methylation difference).
    Sites with zero residual variance get a NaN statistic.
    """
    n, p = X.shape
    xtx_inv = np.linalg.inv(X.T @ X)
    proj = X @ xtx_inv  # n x p

    coefs = m_values @ proj
    resid = m_values - coefs @ X.T
    sigma2 = (resid ** 2).sum(axis=1) / (n - p)
    se = np.sqrt(sigma2 * xtx_inv[coef_idx, coef_idx])

    with np.errstate(divide="ignore", invalid="ignore"):
        t_vals = np.where(se > 1e-12, coefs[:, coef_idx] / se, np.nan)
    diff = (beta @ proj)[:, coef_idx]
    return t_vals, diff


def _summarize_region(chrom: str, grp: pd.DataFrame) -> Dict:
    n = len(grp)
    diffs = grp["diff"].to_numpy()
    ind_fdr = np.clip(grp["ind_fdr"].to_numpy(), 1e-300, 1.0)
    pvals = np.clip(grp["pvalue"].to_numpy(), 1e-300, 1.0)
    start, end = int(grp["pos"].iloc[0]), int(grp["pos"].iloc[-1])
    return {
        "chr": chrom,
        "start": start,
        "end": end,
        "width": end - start + 1,
        "num_cpgs": n,
        "min_smoothed_fdr": float(grp["smoothed_fdr"].min()),
        "stouffer": float(stats.norm.sf(stats.norm.isf(ind_fdr).sum() / np.sqrt(n))),
        "hmfdr": float(n / (1.0 / ind_fdr).sum()),
        "fisher": float(stats.chi2.sf(-2 * np.log(pvals).sum(), 2 * n)),
        "max_diff": float(diffs[np.argmax(np.abs(diffs))]),
        "mean_diff": float(diffs.mean()),
    }


def rank_regions(regions: pd.DataFrame, by: str = "meandiff") -> pd.DataFrame:
    """
    Order regions for reporting.

    Args:
        regions: Region table
        by: "meandiff" for descending absolute mean difference, "fdr" for
            ascending minimum smoothed FDR; ties keep their input order

    Returns:
        Reordered copy with a fresh index
    """
    if by not in RANK_ORDERS:
        raise InvalidParameterError("by", by, f"one of {RANK_ORDERS}")
    if regions.empty:
        return regions.reset_index(drop=True)
    if by == "meandiff":
        key = -regions["mean_diff"].abs()
    else:
        key = regions["min_smoothed_fdr"]
    order = np.argsort(key.to_numpy(dtype=float), kind="mergesort")
    return regions.iloc[order].reset_index(drop=True)
