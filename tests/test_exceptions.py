"""
Unit tests for custom exception classes, the drop report and validation helpers.
"""

import pandas as pd
import pytest

from methylmatrix.core.exceptions import (
    MethylMatrixError,
    ValidationError,
    InvalidIntervalError,
    UnknownChromosomeError,
    UnknownCoefficientError,
    MismatchedSampleOrderError,
    EmptyAnchorSetError,
    InvalidWindowError,
    InsufficientRowsError,
    MissingColumnError,
    EmptyDataError,
    InvalidParameterError,
    AnalysisError,
    DesignMatrixError,
    AggregationError,
    DropReport,
    INSUFFICIENT_COVERAGE,
    TOO_FEW_CPGS,
    validate_dataframe,
    validate_numeric_param,
)


# ============================================================================
# Exception hierarchy
# ============================================================================


class TestExceptionHierarchy:
    """Verify the exception inheritance chain."""

    def test_validation_is_base(self):
        with pytest.raises(MethylMatrixError):
            raise ValidationError("invalid")

    def test_analysis_is_base(self):
        with pytest.raises(MethylMatrixError):
            raise AnalysisError("failed")

    @pytest.mark.parametrize("exc", [
        InvalidIntervalError("chr1", 10, 5),
        UnknownChromosomeError("chrUn_gl000220", "NCBI"),
        UnknownCoefficientError("Typetumor"),
        MismatchedSampleOrderError(missing=["S1"]),
        EmptyAnchorSetError(),
        InvalidWindowError("bin_width", 0, "must be > 0"),
        InsufficientRowsError(2, 3),
    ])
    def test_input_errors_are_validation_errors(self, exc):
        with pytest.raises(ValidationError):
            raise exc

    @pytest.mark.parametrize("exc_cls", [DesignMatrixError, AggregationError])
    def test_analysis_subclasses(self, exc_cls):
        with pytest.raises(AnalysisError):
            raise exc_cls("failed")


# ============================================================================
# Rich exception attributes
# ============================================================================


class TestInvalidIntervalError:
    """Message names chromosome and coordinates."""

    def test_message(self):
        err = InvalidIntervalError("chr7", 500, 100)
        assert "chr7:500-100" in str(err)
        assert err.chromosome == "chr7"
        assert err.start == 500
        assert err.end == 100

    def test_empty_chromosome(self):
        err = InvalidIntervalError("", 1, 2, "empty chromosome")
        assert "<empty>" in str(err)
        assert "empty chromosome" in str(err)


class TestUnknownCoefficientError:
    """Tests for UnknownCoefficientError attributes."""

    def test_lists_available(self):
        err = UnknownCoefficientError("Typetumor", available=["(Intercept)", "Typecancer"])
        assert "Typetumor" in str(err)
        assert "Typecancer" in str(err)
        assert err.coefficient == "Typetumor"


class TestMismatchedSampleOrderError:
    """Tests for MismatchedSampleOrderError message parts."""

    def test_missing_and_extra(self):
        err = MismatchedSampleOrderError(missing=["S1"], extra=["S9"])
        assert "S1" in str(err)
        assert "S9" in str(err)
        assert err.missing == ["S1"]
        assert err.extra == ["S9"]

    def test_detail_only(self):
        err = MismatchedSampleOrderError(detail="order differs")
        assert "order differs" in str(err)
        assert err.missing == []


class TestMissingColumnError:
    """Tests for MissingColumnError with custom attributes."""

    def test_message_includes_column(self):
        err = MissingColumnError("pos", "methylation table")
        assert "pos" in str(err)
        assert "methylation table" in str(err)

    def test_available_columns_shown(self):
        err = MissingColumnError("pos", available=["chr", "start", "end"])
        assert "chr" in str(err)
        assert err.column == "pos"
        assert err.available == ["chr", "start", "end"]


class TestInvalidParameterError:
    """Tests for InvalidParameterError attributes."""

    def test_with_range(self):
        err = InvalidParameterError("pcutoff", -0.5, ">= 0")
        assert "pcutoff" in str(err)
        assert "-0.5" in str(err)
        assert err.param == "pcutoff"
        assert err.value == -0.5

    def test_without_range(self):
        err = InvalidParameterError("summary", "mode")
        assert "mode" in str(err)
        assert "Expected" not in str(err)


# ============================================================================
# Drop report
# ============================================================================


class TestDropReport:
    """Counting of excluded items by reason."""

    def test_empty(self):
        report = DropReport()
        assert report.total == 0
        assert report.count(INSUFFICIENT_COVERAGE) == 0
        assert report.to_dict() == {}

    def test_accumulates(self):
        report = DropReport()
        report.record(INSUFFICIENT_COVERAGE, 3)
        report.record(INSUFFICIENT_COVERAGE)
        report.record(TOO_FEW_CPGS, 2)
        assert report.count(INSUFFICIENT_COVERAGE) == 4
        assert report.total == 6
        assert report.to_dict() == {INSUFFICIENT_COVERAGE: 4, TOO_FEW_CPGS: 2}

    def test_zero_count_not_recorded(self):
        report = DropReport()
        report.record(TOO_FEW_CPGS, 0)
        assert TOO_FEW_CPGS not in report.to_dict()


# ============================================================================
# Validation helpers
# ============================================================================


class TestValidateDataframe:
    """Tests for validate_dataframe helper."""

    def test_none_raises(self):
        with pytest.raises(EmptyDataError):
            validate_dataframe(None, "test_df")

    def test_non_dataframe_raises(self):
        with pytest.raises(ValidationError, match="Expected DataFrame"):
            validate_dataframe([1, 2, 3], "test_list")

    def test_empty_with_min_rows(self):
        df = pd.DataFrame(columns=["a", "b"])
        with pytest.raises(EmptyDataError):
            validate_dataframe(df, "empty_df", min_rows=1)

    def test_too_few_rows(self):
        df = pd.DataFrame({"a": [1], "b": [2]})
        with pytest.raises(ValidationError, match="at least 5"):
            validate_dataframe(df, "small_df", min_rows=5)

    def test_missing_column(self):
        df = pd.DataFrame({"chr": ["chr1"], "start": [100]})
        with pytest.raises(MissingColumnError):
            validate_dataframe(df, "regions", required_columns=["chr", "start", "end"])

    def test_valid_passes(self):
        df = pd.DataFrame({"chr": ["chr1"], "start": [100], "end": [200]})
        validate_dataframe(df, "regions", required_columns=["chr", "start", "end"], min_rows=1)


class TestValidateNumericParam:
    """Tests for validate_numeric_param helper."""

    def test_below_min(self):
        with pytest.raises(InvalidParameterError):
            validate_numeric_param(-1, "fdr", min_val=0)

    def test_above_max(self):
        with pytest.raises(InvalidParameterError):
            validate_numeric_param(2.0, "fdr", max_val=1.0)

    def test_valid_range(self):
        validate_numeric_param(0.05, "fdr", min_val=0, max_val=1)
