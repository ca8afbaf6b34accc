"""Utility functions for the bridge transfer engine."""

import re
from decimal import ROUND_DOWN, Decimal, InvalidOperation

from web3 import Web3

from .exceptions import ValidationError
from .types import NormalizedAddress

_PRIVATE_KEY_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")

MAX_UINT256 = 2**256 - 1


def parse_amount(value: str | int | Decimal) -> Decimal:
    """Parse user input into a positive, finite Decimal."""
    if isinstance(value, bool) or not isinstance(value, str | int | Decimal):
        raise ValidationError(
            "Amount must be a decimal string", field="amount", value=value
        )

    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (ValueError, InvalidOperation) as exc:
        raise ValidationError(
            "Invalid amount", field="amount", value=value, details={"error": str(exc)}
        ) from exc

    if not quantity.is_finite():
        raise ValidationError("Amount must be finite", field="amount", value=value)

    if quantity <= 0:
        raise ValidationError("Amount must be positive", field="amount", value=value)

    return quantity


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a decimal amount to the asset's smallest unit, truncating."""
    if decimals < 0:
        raise ValidationError("Decimals cannot be negative", field="decimals", value=decimals)

    scaled = amount.scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(units: int, decimals: int) -> Decimal:
    """Convert smallest-unit integers back to a Decimal amount."""
    return Decimal(units).scaleb(-decimals)


def is_truncated(amount: Decimal, decimals: int) -> bool:
    return from_base_units(to_base_units(amount, decimals), decimals) != amount


def normalize_address(value: str) -> NormalizedAddress:
    """Checksum an EVM address, passing the raw input through when that fails.

    Callers decide whether an unnormalised value is acceptable (non-EVM
    destinations use bech32 and similar formats).
    """
    try:
        return NormalizedAddress(Web3.to_checksum_address(value), True)
    except (ValueError, TypeError):
        return NormalizedAddress(value, False)


def is_valid_private_key(key: str) -> bool:
    return isinstance(key, str) and bool(_PRIVATE_KEY_PATTERN.match(key.strip()))


def gwei(value: int | float | str | Decimal) -> int:
    """Convert a gwei amount to wei."""
    return int(Web3.to_wei(Decimal(str(value)), "gwei"))


def format_gwei(wei: int) -> str:
    return f"{Web3.from_wei(wei, 'gwei'):f}"
