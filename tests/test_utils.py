"""Tests for utility functions."""

from decimal import Decimal

import pytest

from bridge_engine.exceptions import ValidationError
from bridge_engine.utils import (
    from_base_units,
    gwei,
    is_truncated,
    is_valid_private_key,
    normalize_address,
    parse_amount,
    to_base_units,
)


class TestAmountParsing:
    """Test decimal amount parsing."""

    def test_parse_decimal_string(self):
        assert parse_amount("0.1") == Decimal("0.1")

    def test_parse_strips_whitespace(self):
        assert parse_amount(" 10 ") == Decimal("10")

    def test_parse_int(self):
        assert parse_amount(10) == Decimal("10")

    @pytest.mark.parametrize("value", ["-1", "0", "abc", "", "NaN", "Infinity", "1e"])
    def test_parse_rejects_invalid(self, value):
        with pytest.raises(ValidationError) as excinfo:
            parse_amount(value)
        assert excinfo.value.field == "amount"

    def test_parse_rejects_float(self):
        """Binary floats are rejected in favour of decimal strings."""
        with pytest.raises(ValidationError):
            parse_amount(0.1)  # type: ignore[arg-type]

    def test_parse_rejects_bool(self):
        with pytest.raises(ValidationError):
            parse_amount(True)  # type: ignore[arg-type]


class TestUnitConversion:
    """Test smallest-unit conversion."""

    def test_native_amount(self):
        assert to_base_units(Decimal("0.1"), 18) == 10**17

    def test_six_decimal_token(self):
        assert to_base_units(Decimal("10"), 6) == 10_000000

    def test_truncates_excess_precision(self):
        assert to_base_units(Decimal("1.23456789"), 6) == 1_234567
        assert is_truncated(Decimal("1.23456789"), 6)
        assert not is_truncated(Decimal("1.5"), 6)

    def test_below_smallest_unit_is_zero(self):
        assert to_base_units(Decimal("0.0000001"), 6) == 0

    def test_negative_decimals_rejected(self):
        with pytest.raises(ValidationError):
            to_base_units(Decimal("1"), -1)

    @pytest.mark.parametrize("decimals", [0, 2, 6, 8, 18])
    @pytest.mark.parametrize(
        "amount", ["0.1", "10", "1.000000000000000001", "123456.789", "0.333333333"]
    )
    def test_round_trip_within_one_unit(self, amount, decimals):
        value = Decimal(amount)
        back = from_base_units(to_base_units(value, decimals), decimals)
        assert back <= value
        assert value - back < Decimal(1).scaleb(-decimals)

    def test_gwei(self):
        assert gwei(10) == 10_000_000_000
        assert gwei("9.5") == 9_500_000_000


class TestAddressNormalisation:
    """Test normalize-or-passthrough address handling."""

    def test_lowercase_address_checksummed(self):
        result = normalize_address("0x94373a4919b3240d86ea41593d5eba789fef3848")
        assert result.normalized is True
        assert result.value.lower() == "0x94373a4919b3240d86ea41593d5eba789fef3848"
        assert result.value != result.value.lower()

    def test_bech32_passthrough(self):
        result = normalize_address("xion1qyqszqgpqyqszqgpqyqszqgpqyqszqgpjnp7du")
        assert result.normalized is False
        assert result.value == "xion1qyqszqgpqyqszqgpqyqszqgpqyqszqgpjnp7du"

    def test_short_hex_passthrough(self):
        result = normalize_address("0x1234")
        assert result.normalized is False


class TestPrivateKeyFormat:
    def test_valid_key(self):
        assert is_valid_private_key("0x" + "ab" * 32)

    @pytest.mark.parametrize("key", ["", "ab" * 32, "0x" + "ab" * 31, "0x" + "zz" * 32])
    def test_invalid_key(self, key):
        assert not is_valid_private_key(key)
