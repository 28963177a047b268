"""Tests for card number normalization."""

import pytest

from cardkeeper.services.normalizer import (
    MAX_CARD_NUMBER_LENGTH,
    is_valid_card_number,
    normalize_card_number,
)


class TestNormalizeCardNumber:
    def test_strips_separators_and_uppercases(self) -> None:
        """Spaces, dashes and case do not distinguish cards."""
        assert normalize_card_number(" 6035-1234 ab ") == "60351234AB"

    def test_none_is_blank(self) -> None:
        assert normalize_card_number(None) == ""

    def test_blank_string_is_blank(self) -> None:
        assert normalize_card_number("   ") == ""

    def test_integer_input(self) -> None:
        """Spreadsheet exports may hand over numeric cells."""
        assert normalize_card_number(60351234) == "60351234"

    def test_integral_float_drops_fraction(self) -> None:
        assert normalize_card_number(1234.0) == "1234"

    def test_non_finite_float_is_blank(self) -> None:
        assert normalize_card_number(float("nan")) == ""
        assert normalize_card_number(float("inf")) == ""

    def test_bool_is_blank(self) -> None:
        assert normalize_card_number(True) == ""

    def test_non_ascii_letters_dropped(self) -> None:
        assert normalize_card_number("abéc") == "ABC"

    @pytest.mark.parametrize(
        "raw",
        ["a-1 2", "  X9  ", "6035.1234", 42, 42.0, None, "", "---", "Walmart #77"],
    )
    def test_idempotent(self, raw: object) -> None:
        """Normalizing twice gives the same result as once."""
        once = normalize_card_number(raw)
        assert normalize_card_number(once) == once

    def test_equivalent_spellings_collide(self) -> None:
        """Two spellings of the same physical card normalize identically."""
        assert normalize_card_number("abc-123") == normalize_card_number("ABC 123")


class TestIsValidCardNumber:
    def test_accepts_normal_number(self) -> None:
        assert is_valid_card_number("6035-1234")

    def test_rejects_blank(self) -> None:
        assert not is_valid_card_number("  -- ")

    def test_rejects_too_long(self) -> None:
        assert not is_valid_card_number("9" * (MAX_CARD_NUMBER_LENGTH + 1))

    def test_accepts_max_length(self) -> None:
        assert is_valid_card_number("9" * MAX_CARD_NUMBER_LENGTH)
