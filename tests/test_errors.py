"""Tests for errors.py - error kinds and status reconstruction."""

import pytest

from rcopy.errors import (
    FileOpenError,
    ReadError,
    SizeMismatchError,
    TransferError,
    WriteError,
    error_from_status,
)


class TestErrorFromStatus:
    """Tests for error_from_status."""

    @pytest.mark.parametrize("cls", [FileOpenError, ReadError, WriteError, TransferError])
    def test_same_class(self, cls):
        error = error_from_status(cls.code, "boom")
        assert type(error) is cls
        assert str(error) == "boom"

    def test_size_mismatch_details(self):
        original = SizeMismatchError(10, 3)
        error = error_from_status(original.code, str(original), original.details())

        assert isinstance(error, SizeMismatchError)
        assert error.expected == 10
        assert error.actual == 3
        assert str(error) == str(original)

    def test_unknown_code(self):
        error = error_from_status("SomethingNew", "odd")
        assert type(error) is TransferError
        assert error.message == "odd"

    def test_missing_details(self):
        error = error_from_status("SizeMismatchError", "", None)
        assert (error.expected, error.actual) == (-1, -1)

    @pytest.mark.parametrize("details,sizes", [
        ({'expected': None, 'actual': 0}, (-1, 0)),
        ({'expected': 'ten', 'actual': [3]}, (-1, -1)),
        ({'expected': True, 'actual': '7'}, (-1, 7)),
        ("not a mapping", (-1, -1)),
    ])
    def test_unusable_size_details(self, details, sizes):
        error = error_from_status("SizeMismatchError", "file size mismatch", details)

        assert isinstance(error, SizeMismatchError)
        assert (error.expected, error.actual) == sizes
        assert str(error) == "file size mismatch"
