"""Fee quote derivation with floors, buffers and a guaranteed tip headroom."""

from __future__ import annotations

import logging
from decimal import ROUND_CEILING, Decimal

from ..config import ChainConfig, FeeMode, FeePolicy
from ..types import FeeQuote, FeeSuggestion, minimum_max_fee
from ..utils import format_gwei
from .client import ChainClient

logger = logging.getLogger(__name__)


class FeeEstimator:
    """Derive bounded fee quotes from live chain data and a chain's FeePolicy."""

    def quote(
        self,
        client: ChainClient,
        chain: ChainConfig,
        override: FeeQuote | None = None,
    ) -> FeeQuote:
        if override is not None:
            logger.info(
                "Using caller fee override on %s (maxFee=%s gwei, priority=%s gwei, gas=%s)",
                chain.id,
                format_gwei(override.max_fee_per_gas),
                format_gwei(override.max_priority_fee_per_gas),
                override.gas_limit,
            )
            return override

        policy = chain.fee_policy
        suggestion: FeeSuggestion | None = None
        if policy.mode is FeeMode.LIVE_WITH_FLOOR:
            try:
                suggestion = client.fee_suggestion()
            except Exception as exc:
                logger.warning(
                    "Fee query failed on %s via %s, using floors of policy %s: %s",
                    chain.id,
                    client.endpoint,
                    policy.name,
                    exc,
                )

        quote = derive_quote(policy, suggestion, chain.default_gas_limit)
        logger.info(
            "Fee quote for %s (policy=%s, live=%s): maxFee=%s gwei, priority=%s gwei, gas=%s",
            chain.id,
            policy.name,
            suggestion is not None,
            format_gwei(quote.max_fee_per_gas),
            format_gwei(quote.max_priority_fee_per_gas),
            quote.gas_limit,
        )
        return quote


def derive_quote(policy: FeePolicy, suggestion: FeeSuggestion | None, gas_limit: int) -> FeeQuote:
    """Apply ``policy`` to ``suggestion`` (floors only when it is None)."""

    priority_fee = policy.priority_fee_floor
    max_fee = policy.max_fee_floor

    if suggestion is not None:
        priority_fee = max(
            _scale(suggestion.max_priority_fee_per_gas, policy.priority_fee_multiplier),
            policy.priority_fee_floor,
        )
        max_fee = max(
            _scale(suggestion.max_fee_per_gas, policy.max_fee_multiplier),
            policy.max_fee_floor,
        )

    required = minimum_max_fee(priority_fee, policy.min_buffer)
    if max_fee < required:
        logger.debug(
            "Raising max fee from %s to %s wei to keep %s headroom over priority fee",
            max_fee,
            required,
            policy.min_buffer,
        )
        max_fee = required

    return FeeQuote(
        max_fee_per_gas=max_fee,
        max_priority_fee_per_gas=priority_fee,
        gas_limit=gas_limit,
    )


def _scale(value: int, multiplier: Decimal) -> int:
    scaled = Decimal(max(int(value), 0)) * multiplier
    return int(scaled.to_integral_value(rounding=ROUND_CEILING))
