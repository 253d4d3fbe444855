#!/usr/bin/env python3
"""Command-line interface for payment maintenance tasks.

Usage:
    python -m hostel_payments.payments.cli cleanup-expired
    python -m hostel_payments.payments.cli cleanup-expired --timeout-minutes 45
    python -m hostel_payments.payments.cli verify --order-id HF_1718000000000_k3j9x2a7b
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import timedelta
from typing import Optional

from ..database import standalone_session
from ..exceptions import PaymentError
from ..gateway import GatewayBase, get_gateway
from ..notifier import get_notifier
from .models import ProcessingOutcome
from .sweeper import ExpirySweeper
from .verification import PaymentVerifier

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def cleanup_expired_async(timeout_minutes: int = 30, database_url: Optional[str] = None) -> int:
    """Sweep expired pending payments.

    Returns:
        Exit code (0 for success, 2 for failure).
    """
    try:
        async with standalone_session(database_url) as session:
            sweeper = ExpirySweeper(session, timeout=timedelta(minutes=timeout_minutes))
            result = await sweeper.sweep()
    except Exception:
        logger.exception("Expired payment cleanup failed")
        return 2

    print(json.dumps(result.to_dict(), indent=2))
    return 0


async def verify_order_async(
    order_id: str,
    database_url: Optional[str] = None,
    gateway: Optional[GatewayBase] = None,
) -> int:
    """Re-query the gateway for one order and apply its status.

    Returns:
        Exit code (0 when the order reached a settled or closed state, 1 when it
        is still pending or could not be allocated, 2 on error).
    """
    try:
        async with standalone_session(database_url) as session:
            verifier = PaymentVerifier(session, gateway or get_gateway(), get_notifier())
            report = await verifier.verify(order_id)
    except PaymentError as e:
        logger.error(f"Verification of {order_id} failed: {e.message}")
        return 2

    print(json.dumps(report, indent=2, default=str))
    if report["outcome"] in (ProcessingOutcome.PENDING.value, ProcessingOutcome.ALLOCATION_FAILED.value):
        logger.warning(f"Order {order_id} not settled: {report['outcome']}")
        return 1
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI.

    Returns:
        Configured ArgumentParser.
    """
    parser = argparse.ArgumentParser(
        prog="hostel-payments",
        description="Maintenance tools for pending gateway payments.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    cleanup_parser = subparsers.add_parser(
        "cleanup-expired",
        help="Delete pending payments older than the timeout",
    )
    cleanup_parser.add_argument(
        "--timeout-minutes", "-t",
        type=int,
        default=30,
        help="Age after which a pending payment is expired (default: 30)",
    )

    verify_parser = subparsers.add_parser(
        "verify",
        help="Re-query the gateway for an order and apply its status",
    )
    verify_parser.add_argument(
        "--order-id",
        required=True,
        help="Gateway order id (ELEC_... or HF_...)",
    )

    return parser


def main(args: Optional[list] = None) -> int:
    """Main entry point for the CLI.

    Args:
        args: Optional list of command-line arguments (for testing).

    Returns:
        Exit code.
    """
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    if parsed_args.command == "cleanup-expired":
        if parsed_args.timeout_minutes < 1:
            logger.error("--timeout-minutes must be at least 1")
            return 1
        return asyncio.run(cleanup_expired_async(parsed_args.timeout_minutes))

    if parsed_args.command == "verify":
        return asyncio.run(verify_order_async(parsed_args.order_id))

    return 0


if __name__ == "__main__":
    sys.exit(main())
