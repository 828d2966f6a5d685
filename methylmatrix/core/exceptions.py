"""
Custom exception classes for MethylMatrix.

Malformed input (bad coordinates, unknown coefficients, bad parameters)
raises one of these and aborts the run. Per-site and per-region data
insufficiency is not an exception: it is counted in a DropReport and the
affected items are excluded.
"""

from collections import OrderedDict
from typing import Dict


class MethylMatrixError(Exception):
    """Base exception for all MethylMatrix errors."""
    pass


# ============================================================================
# Data validation errors
# ============================================================================

class ValidationError(MethylMatrixError):
    """Raised when input data fails validation checks."""
    pass


class InvalidIntervalError(ValidationError):
    """Raised when an interval has start > end or no chromosome."""

    def __init__(self, chromosome: str, start: int, end: int, reason: str = "start > end"):
        super().__init__(
            f"Invalid interval {chromosome or '<empty>'}:{start}-{end} ({reason})"
        )
        self.chromosome = chromosome
        self.start = start
        self.end = end


class UnknownChromosomeError(ValidationError):
    """Raised when a chromosome has no mapping in the target naming style."""

    def __init__(self, chromosome: str, target_style: str):
        super().__init__(
            f"Chromosome '{chromosome}' has no mapping in the '{target_style}' naming style"
        )
        self.chromosome = chromosome
        self.target_style = target_style


class UnknownCoefficientError(ValidationError):
    """Raised when a coefficient name is not a design matrix column."""

    def __init__(self, coefficient: str, available: list = None):
        available_str = f" Available coefficients: {available}" if available else ""
        super().__init__(
            f"Coefficient '{coefficient}' not found in design matrix.{available_str}"
        )
        self.coefficient = coefficient
        self.available = available


class MismatchedSampleOrderError(ValidationError):
    """Raised when phenotype rows cannot be joined to the dataset samples."""

    def __init__(self, missing: list = None, extra: list = None, detail: str = None):
        parts = [detail] if detail else []
        if missing:
            parts.append(f"samples without phenotype: {missing}")
        if extra:
            parts.append(f"phenotype rows without samples: {extra}")
        super().__init__("Phenotype table does not match dataset samples (" + "; ".join(parts) + ")")
        self.missing = missing or []
        self.extra = extra or []


class EmptyAnchorSetError(ValidationError):
    """Raised when an aggregation is requested over zero anchors."""

    def __init__(self):
        super().__init__("Empty anchor set provided; at least one anchor interval is required")


class InvalidWindowError(ValidationError):
    """Raised when the aggregation window parameters are inconsistent."""

    def __init__(self, param: str, value, reason: str):
        super().__init__(f"Invalid aggregation window: {param}={value} ({reason})")
        self.param = param
        self.value = value


class InsufficientRowsError(ValidationError):
    """Raised when a matrix has fewer rows than requested clusters."""

    def __init__(self, rows: int, k: int):
        super().__init__(f"Cannot form {k} clusters from {rows} rows")
        self.rows = rows
        self.k = k


class MissingColumnError(ValidationError):
    """Raised when a required column is missing from a DataFrame."""

    def __init__(self, column: str, dataframe_name: str = "DataFrame", available: list = None):
        available_str = f" Available columns: {available}" if available else ""
        super().__init__(
            f"Required column '{column}' not found in {dataframe_name}.{available_str}"
        )
        self.column = column
        self.available = available


class EmptyDataError(ValidationError):
    """Raised when data is empty where it should not be."""

    def __init__(self, data_name: str = "data"):
        super().__init__(f"Empty {data_name} provided where non-empty data is required")
        self.data_name = data_name


class InvalidParameterError(ValidationError):
    """Raised when a parameter value is out of valid range."""

    def __init__(self, param: str, value, valid_range: str = ""):
        msg = f"Invalid value for '{param}': {value}"
        if valid_range:
            msg += f". Expected: {valid_range}"
        super().__init__(msg)
        self.param = param
        self.value = value


# ============================================================================
# Analysis errors
# ============================================================================

class AnalysisError(MethylMatrixError):
    """Base class for analysis-specific errors."""
    pass


class DesignMatrixError(AnalysisError):
    """Raised when a design matrix is rank deficient or has the wrong shape."""
    pass


class AggregationError(AnalysisError):
    """Raised when aggregated track matrices disagree with the anchors or bins."""
    pass


# ============================================================================
# Recoverable drops
# ============================================================================

INSUFFICIENT_COVERAGE = "insufficient_coverage"
UNDEFINED_STATISTIC = "undefined_statistic"
TOO_FEW_CPGS = "too_few_cpgs"


class DropReport:
    """Counts of items excluded from a run, keyed by reason."""

    def __init__(self):
        self._counts: Dict[str, int] = OrderedDict()

    def record(self, reason: str, count: int = 1) -> None:
        if count <= 0:
            return
        self._counts[reason] = self._counts.get(reason, 0) + int(count)

    def count(self, reason: str) -> int:
        return self._counts.get(reason, 0)

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def to_dict(self) -> Dict[str, int]:
        return dict(self._counts)

    def __repr__(self) -> str:
        return f"DropReport({self.to_dict()})"


# ============================================================================
# Validation helpers
# ============================================================================

def validate_dataframe(
    df,
    name: str = "DataFrame",
    required_columns: list = None,
    min_rows: int = 0,
) -> None:
    """Validate a DataFrame has expected shape and columns.

    Parameters
    ----------
    df : pd.DataFrame
        The DataFrame to validate.
    name : str
        Human-readable name for error messages.
    required_columns : list, optional
        Columns that must be present.
    min_rows : int
        Minimum number of rows required.

    Raises
    ------
    EmptyDataError
        If df is None or empty and min_rows > 0.
    MissingColumnError
        If a required column is missing.
    """
    import pandas as pd

    if df is None:
        raise EmptyDataError(name)

    if not isinstance(df, pd.DataFrame):
        raise ValidationError(f"Expected DataFrame for {name}, got {type(df).__name__}")

    if min_rows > 0 and len(df) < min_rows:
        if len(df) == 0:
            raise EmptyDataError(name)
        raise ValidationError(
            f"{name} has {len(df)} rows but at least {min_rows} are required"
        )

    if required_columns:
        for col in required_columns:
            if col not in df.columns:
                raise MissingColumnError(col, name, available=list(df.columns))


def validate_numeric_param(value, name: str, min_val=None, max_val=None) -> None:
    """Validate a numeric parameter is within acceptable bounds.

    Raises
    ------
    InvalidParameterError
        If the value is out of range.
    """
    if min_val is not None and value < min_val:
        raise InvalidParameterError(name, value, f">= {min_val}")
    if max_val is not None and value > max_val:
        raise InvalidParameterError(name, value, f"<= {max_val}")
