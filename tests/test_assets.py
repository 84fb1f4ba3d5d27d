"""
Unit tests for asset values and checked arithmetic
"""

import pytest

from core.assets import (
    DEFAULT_WATERMARK,
    MAX_AMOUNT,
    Receipt,
    Token,
    add,
    asset_from_dict,
    compatible,
    greater_or_equal,
    less_than,
    new_asset,
    subtract,
)
from core.errors import IncompatibleAssets, Overflow, Underflow


class TestCompatibility:
    """Which assets may be combined."""

    def test_tokens_are_compatible(self):
        assert compatible(Token(1), Token(2))

    def test_token_and_receipt_are_not(self):
        assert not compatible(Token(1), Receipt(1))

    def test_default_watermark_matches_any_receipt(self):
        assert compatible(Receipt(1), Receipt(1, "drs_a"))
        assert compatible(Receipt(1, "drs_a"), Receipt(1))

    def test_different_watermarks_do_not_match(self):
        assert not compatible(Receipt(1, "drs_a"), Receipt(1, "drs_b"))


class TestArithmetic:
    """Checked add, subtract and comparisons."""

    def test_add_tokens(self):
        assert add(Token(2), Token(3)).unwrap() == Token(5)

    def test_add_receipts_keeps_specific_watermark(self):
        total = add(Receipt(1), Receipt(2, "drs_a")).unwrap()
        assert total == Receipt(3, "drs_a")

    def test_add_incompatible(self):
        result = add(Token(1), Receipt(1))
        assert not result.is_ok()
        assert isinstance(result.error, IncompatibleAssets)

    def test_add_overflow(self):
        result = add(Token(MAX_AMOUNT), Token(1))
        assert isinstance(result.error, Overflow)

    def test_subtract(self):
        assert subtract(Token(10), Token(4)).unwrap() == Token(6)

    def test_subtract_underflow(self):
        result = subtract(Token(1), Token(2))
        assert isinstance(result.error, Underflow)
        with pytest.raises(Underflow):
            result.unwrap()

    @pytest.mark.parametrize("a, b", [
        (Token(0), Token(0)),
        (Token(7), Token(3)),
        (Receipt(2, "drs_a"), Receipt(5, "drs_a")),
    ])
    def test_subtract_undoes_add(self, a, b):
        assert subtract(add(a, b).unwrap(), b).unwrap() == a

    def test_mismatched_watermarks_fail_every_operation(self):
        a, b = Receipt(1, "drs_a"), Receipt(1, "drs_b")
        for operation in (add, subtract, less_than, greater_or_equal):
            assert isinstance(operation(a, b).error, IncompatibleAssets)

    def test_comparisons(self):
        assert less_than(Token(1), Token(2)).unwrap()
        assert greater_or_equal(Receipt(2), Receipt(2)).unwrap()
        assert not less_than(Token(1), Receipt(2)).is_ok()


class TestConstruction:
    """Creating and parsing assets."""

    def test_negative_amount_rejected(self):
        with pytest.raises(ValueError):
            Token(-1)

    def test_non_integer_rejected(self):
        with pytest.raises(TypeError):
            Token(1.5)

    def test_new_asset_unknown_type(self):
        with pytest.raises(ValueError):
            new_asset("Coin", 1)

    def test_parse_receipt_forms(self):
        assert asset_from_dict({"Receipt": 4}) == Receipt(4)
        assert asset_from_dict({"Receipt": {"amount": 4, "drs_tx_hash": "drs_a"}}) == Receipt(4, "drs_a")
        assert asset_from_dict({"Receipt": {"amount": 4, "drs_tx_hash": None}}) == Receipt(4, DEFAULT_WATERMARK)

    def test_to_dict(self):
        assert Token(7).to_dict() == {"Token": 7}
        assert Receipt(1).to_dict() == {"Receipt": {"amount": 1, "drs_tx_hash": DEFAULT_WATERMARK}}
