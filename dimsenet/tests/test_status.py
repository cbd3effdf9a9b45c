"""Tests for the status module."""

import logging

import pytest

from dimsenet.status import (
    GENERAL_STATUS,
    QR_SERVICE_CLASS_STATUS,
    STORAGE_SERVICE_CLASS_STATUS,
    Status,
    code_to_category,
    is_pending,
)


LOGGER = logging.getLogger("dimsenet")
LOGGER.setLevel(logging.CRITICAL)


REFERENCE_CATEGORIES = [
    (0x0000, "Success"),
    (0x0001, "Warning"),
    (0x0107, "Warning"),
    (0x0110, "Failure"),
    (0x0116, "Warning"),
    (0x0122, "Failure"),
    (0xA700, "Failure"),
    (0xA801, "Failure"),
    (0xAFFF, "Failure"),
    (0xB000, "Warning"),
    (0xBFFF, "Warning"),
    (0xC000, "Failure"),
    (0xC211, "Failure"),
    (0xCFFF, "Failure"),
    (0xFE00, "Cancel"),
    (0xFF00, "Pending"),
    (0xFF01, "Pending"),
    (0x0002, "Unknown"),
    (0xD000, "Unknown"),
    (0xFFFF, "Unknown"),
]


class TestStatus:
    """Tests for the status codes and categories."""

    @pytest.mark.parametrize("code, category", REFERENCE_CATEGORIES)
    def test_code_to_category(self, code, category):
        """Test the category of each status code."""
        assert code_to_category(code) == category

    @pytest.mark.parametrize("code", [-1, "0x0000", 1.0, None])
    def test_code_to_category_invalid(self, code):
        """Test invalid codes raise."""
        with pytest.raises(ValueError, match="'code' must be a positive integer"):
            code_to_category(code)

    def test_is_pending(self):
        """Test the pending status codes."""
        assert is_pending(0xFF00)
        assert is_pending(0xFF01)
        assert is_pending(Status.PENDING)
        for code in (0x0000, 0xFE00, 0xB000, 0xC211):
            assert not is_pending(code)

    def test_enum(self):
        """Test the Status constants."""
        assert Status.SUCCESS == 0x0000
        assert Status.CANCEL == 0xFE00
        assert Status.PENDING == 0xFF00
        assert Status.PENDING_WARNING == 0xFF01
        assert Status.MOVE_DESTINATION_UNKNOWN == 0xA801
        assert Status.UNABLE_TO_PROCESS == 0xC000
        assert Status.UNHANDLED_EXCEPTION == 0xC211
        assert Status.SOP_CLASS_NOT_SUPPORTED == 0x0122
        assert code_to_category(Status.UNHANDLED_EXCEPTION) == "Failure"

    def test_tables(self):
        """Test the status tables agree with the categories."""
        tables = (GENERAL_STATUS, STORAGE_SERVICE_CLASS_STATUS, QR_SERVICE_CLASS_STATUS)
        for table in tables:
            for code, (category, _) in table.items():
                assert code_to_category(code) == category
