"""Tests for tcheater.errors module."""

from datetime import datetime

import pytest

from tcheater.errors import (
    INVALID_INTERVAL,
    NOT_FOUND,
    OVERLAP,
    SYNC_FAILED,
    Err,
    Ok,
    TcheaterError,
    err,
    format_error,
    invalid_interval,
    not_found,
    ok,
    overlap,
    remote_overlap,
    sync_error,
)


class TestResult:
    """Tests for Ok / Err."""

    def test_ok(self):
        result = ok(42)

        assert isinstance(result, Ok)
        assert result.ok
        assert result.is_ok()
        assert not result.is_err()
        assert result.value == 42
        assert result.error is None
        assert result.unwrap() == 42

    def test_err(self):
        error = TcheaterError(code="X", message="broken")
        result = err(error)

        assert isinstance(result, Err)
        assert not result.ok
        assert result.is_err()
        assert result.value is None
        assert result.unwrap_err() is error

    def test_unwrap_on_wrong_variant_raises(self):
        with pytest.raises(ValueError):
            err(TcheaterError(code="X", message="broken")).unwrap()
        with pytest.raises(ValueError):
            ok(1).unwrap_err()


class TestTcheaterError:
    """Tests for TcheaterError and its constructors."""

    def test_is_frozen(self):
        error = not_found(3)
        with pytest.raises(AttributeError):
            error.code = "OTHER"

    def test_overlap_context(self):
        start = datetime(2026, 1, 12, 9, 0)
        end = datetime(2026, 1, 12, 10, 0)

        error = overlap(7, "doc-7", start, end)

        assert error.code == OVERLAP
        assert error.context == {
            "local_id": 7,
            "id": "doc-7",
            "start": start.isoformat(),
            "end": end.isoformat(),
        }
        assert "#7" in error.message
        assert "09:00 - 10:00" in error.message

    def test_remote_overlap_names_the_document(self):
        start = datetime(2026, 1, 12, 9, 0)
        end = datetime(2026, 1, 12, 10, 0)

        error = remote_overlap("doc-x", 7, "doc-7", start, end)

        assert error.code == OVERLAP
        assert error.message == "Remote checkpoint doc-x: Overlaps checkpoint #7 (09:00 - 10:00)"
        assert error.context["remote_id"] == "doc-x"
        assert error.context["local_id"] == 7

    def test_invalid_interval_and_not_found_codes(self):
        moment = datetime(2026, 1, 12, 9, 0)
        assert invalid_interval(moment, moment).code == INVALID_INTERVAL
        assert not_found(5).code == NOT_FOUND
        assert not_found(5).context == {"local_id": 5}

    def test_sync_error_defaults(self):
        error = sync_error("push failed", local_id=4)
        assert error.code == SYNC_FAILED
        assert error.context == {"local_id": 4}


class TestFormatError:
    """Tests for format_error()."""

    def test_includes_code(self):
        assert format_error(not_found(2)) == "Checkpoint #2 not found (NOT_FOUND)"

    def test_none(self):
        assert format_error(None) == "Unknown error"
