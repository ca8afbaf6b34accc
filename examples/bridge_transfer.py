"""Example: Bridge native ETH or a token from Sepolia to another chain."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from bridge_engine import (
    ApprovalMode,
    CancellationToken,
    ChainRegistry,
    Confirmed,
    EngineConfig,
    Failed,
    Submitted,
    TransferEngine,
    TransferRequest,
)

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOGLEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger("bridge_transfer")

DEFAULT_CHAINS_FILE = Path(__file__).with_name("chains.json")


def main() -> None:
    """Run one transfer described by environment variables."""
    private_key = os.getenv("PRIVATE_KEY")
    if not private_key:
        raise ValueError("PRIVATE_KEY not found in environment variables")

    registry = ChainRegistry.from_json(os.getenv("CHAINS_FILE", DEFAULT_CHAINS_FILE))
    config = EngineConfig(
        approval_mode=ApprovalMode(os.getenv("APPROVAL_MODE", "exact")),
        wait_for_confirmation=os.getenv("WAIT_FOR_CONFIRMATION", "1") != "0",
    )
    engine = TransferEngine(registry, config)

    request = TransferRequest(
        source_chain=os.getenv("SOURCE_CHAIN", "SEPOLIA"),
        dest_chain=os.getenv("DEST_CHAIN", "HOLESKY"),
        asset=os.getenv("ASSET", "native"),
        amount=os.getenv("AMOUNT", "0.001"),
        signing_key=private_key,
        recipient=os.getenv("RECIPIENT"),
    )

    timeout = float(os.getenv("TRANSFER_TIMEOUT", "600"))
    logger.info(
        "Bridging %s %s from %s to %s (timeout %.0fs)",
        request.amount,
        request.asset,
        request.source_chain,
        request.dest_chain,
        timeout,
    )
    outcome = engine.execute(request, cancel=CancellationToken.with_timeout(timeout))

    if isinstance(outcome, Confirmed):
        logger.info("Deposit confirmed: %s (block %s)", outcome.tx_id, outcome.block_number)
    elif isinstance(outcome, Submitted):
        logger.info("Deposit submitted: %s", outcome.tx_id)
    elif isinstance(outcome, Failed):
        logger.error("Transfer failed [%s]: %s", outcome.kind.value, outcome.message)
        if outcome.tx_id:
            logger.error("Deposit %s may still land, check it before retrying", outcome.tx_id)
        if outcome.context.get("resume_from") == "deposit":
            logger.info("Approval %s is confirmed; a rerun will skip it", outcome.approval_tx_id)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
