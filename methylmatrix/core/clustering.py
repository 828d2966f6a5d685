"""
Matrix Clustering

Groups anchors (matrix rows) by their aggregated signal profile with
k-means, so heatmaps can be split into profile classes.

NA handling is explicit:
- "impute": a NaN bin takes the mean of that bin over all rows (0 when
  the whole bin is NaN); every row takes part in the fit.
- "exclude": centroids are fitted on rows without NaN only; each
  incomplete row is then assigned to the closest centroid over the bins
  it does have (rows with no signal at all join the lowest-signal
  cluster).

Labels run from 1 to k and are ordered so that cluster 1 has the highest
mean signal.
"""

import logging
import warnings
from dataclasses import dataclass
import numpy as np
from scipy.cluster.vq import kmeans2

from .aggregation import AggregatedMatrix
from .exceptions import InsufficientRowsError, InvalidParameterError

logger = logging.getLogger(__name__)

NA_POLICIES = ("impute", "exclude")


@dataclass
class ClusterConfig:
    """Configuration for profile clustering."""
    n_clusters: int = 3
    random_seed: int = 123
    na_policy: str = "impute"
    n_init: int = 10
    max_iter: int = 50

    @classmethod
    def from_settings(cls, settings) -> "ClusterConfig":
        return cls(
            n_clusters=settings.n_clusters,
            random_seed=settings.random_seed,
            na_policy=settings.na_policy,
        )


def impute_column_means(mat: np.ndarray) -> np.ndarray:
    """Replace NaN entries by their column mean (0 for all-NaN columns)."""
    mat = np.array(mat, dtype=float)
    missing = np.isnan(mat)
    if not missing.any():
        return mat
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        col_means = np.nanmean(mat, axis=0)
    col_means = np.where(np.isnan(col_means), 0.0, col_means)
    rows, cols = np.nonzero(missing)
    mat[rows, cols] = col_means[cols]
    return mat


def _kmeans(data: np.ndarray, k: int, rng: np.random.Generator, n_init: int, max_iter: int):
    """Best-of-n_init k-means++ runs by within-cluster sum of squares."""
    if not np.ptp(data, axis=0).any():
        # identical rows: one cluster holds every row
        return np.repeat(data[:1], k, axis=0), np.zeros(len(data), dtype=int)

    best = None
    for _ in range(n_init):
        with warnings.catch_warnings():
            # empty clusters are tolerated, a later restart usually fills them;
            # fewer distinct rows than k makes the ++ seeding divide by zero
            warnings.simplefilter("ignore", category=UserWarning)
            warnings.simplefilter("ignore", category=RuntimeWarning)
            centroids, labels = kmeans2(data, k, iter=max_iter, minit="++", seed=rng)
        inertia = float(((data - centroids[labels]) ** 2).sum())
        if best is None or inertia < best[0]:
            best = (inertia, centroids, labels)
    return best[1], best[2]


def _order_by_signal(centroids: np.ndarray) -> np.ndarray:
    """Map raw cluster ids to 1..k, highest centroid mean first."""
    order = np.argsort(-centroids.mean(axis=1), kind="mergesort")
    relabel = np.empty(len(order), dtype=int)
    relabel[order] = np.arange(1, len(order) + 1)
    return relabel


def cluster(
    matrix_slice: np.ndarray,
    k: int,
    seed: int = 123,
    na_policy: str = "impute",
    n_init: int = 10,
    max_iter: int = 50,
) -> np.ndarray:
    """
    Cluster matrix rows into k groups.

    Args:
        matrix_slice: 2-D array, one row per anchor
        k: Number of clusters
        seed: Random seed; identical input and seed give identical labels
        na_policy: "impute" or "exclude" (see module docstring)
        n_init: Number of k-means restarts
        max_iter: Iterations per restart

    Returns:
        Integer labels in [1, k], one per row

    Raises:
        InsufficientRowsError: fewer rows than clusters
    """
    mat = np.asarray(matrix_slice, dtype=float)
    if mat.ndim != 2:
        raise InvalidParameterError("matrix_slice", f"{mat.ndim}-D array", "2-D array")
    if k < 1:
        raise InvalidParameterError("k", k, ">= 1")
    if na_policy not in NA_POLICIES:
        raise InvalidParameterError("na_policy", na_policy, f"one of {NA_POLICIES}")

    n_rows = mat.shape[0]
    if n_rows < k:
        raise InsufficientRowsError(n_rows, k)
    if k == 1:
        return np.ones(n_rows, dtype=int)

    rng = np.random.default_rng(seed)
    incomplete = np.isnan(mat).any(axis=1)

    if na_policy == "impute":
        if incomplete.any():
            logger.info(f"Imputing NaN bins in {int(incomplete.sum())} of {n_rows} rows")
        data = impute_column_means(mat)
        centroids, raw = _kmeans(data, k, rng, n_init, max_iter)
        return _order_by_signal(centroids)[raw]

    complete = ~incomplete
    n_complete = int(complete.sum())
    if n_complete < k:
        raise InsufficientRowsError(n_complete, k)
    logger.info(f"Fitting clusters on {n_complete} complete rows, assigning {int(incomplete.sum())} incomplete rows")

    centroids, raw_complete = _kmeans(mat[complete], k, rng, n_init, max_iter)
    relabel = _order_by_signal(centroids)

    labels = np.empty(n_rows, dtype=int)
    labels[complete] = relabel[raw_complete]
    for i in np.nonzero(incomplete)[0]:
        observed = ~np.isnan(mat[i])
        if not observed.any():
            labels[i] = k
            continue
        dist = ((centroids[:, observed] - mat[i, observed]) ** 2).mean(axis=1)
        labels[i] = relabel[int(np.argmin(dist))]
    return labels


def cluster_matrix(
    matrix: AggregatedMatrix,
    track: str,
    k: int,
    seed: int = 123,
    na_policy: str = "impute",
) -> np.ndarray:
    """Cluster the anchors of an AggregatedMatrix by one track's profile."""
    labels = cluster(matrix.track(track), k, seed=seed, na_policy=na_policy)
    sizes = np.bincount(labels, minlength=k + 1)[1:]
    logger.info(f"Clustered {matrix.n_anchors} anchors on '{track}' into sizes {sizes.tolist()}")
    return labels


def cluster_profiles(matrix: AggregatedMatrix, track: str, labels: np.ndarray) -> dict:
    """Mean profile of each cluster, keyed by label."""
    return {int(lab): matrix.profile(track, rows=labels == lab) for lab in np.unique(labels)}
