#!/usr/bin/env python3
"""
Exercise the fee reconciler against a checkout from the terminal:
- fetch the checkout and print its fees
- add / remove / toggle the shipping insurance fee

Uses BIGCOMMERCE_* credentials from .env; pass --mock to run against the
in-memory checkout instead.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from src.error_handler import ServiceError
from src.integrations.clients.mocks.checkout import MockCheckoutClient
from src.integrations.clients.real_http.checkout import RealCheckoutClient
from src.integrations.policy.fee_reconciler import FeeReconciler
from src.integrations.policy.response_wrappers import IntegrationResponseError
from src.utils.config_loader import load_checkout_config


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")


def print_json(label: str, payload) -> None:
    print(f"\n### {label}\n")
    print(json.dumps(payload, indent=2, default=str))


async def run(args: argparse.Namespace) -> int:
    cfg = load_checkout_config(Path(args.config) if args.config else None)
    if args.mock:
        client = MockCheckoutClient(auto_create=True, default_subtotal=args.subtotal or 100.0)
    else:
        client = RealCheckoutClient(cfg.upstream)
    reconciler = FeeReconciler(client, fee=cfg.fee, removal=cfg.removal)

    snapshot = await reconciler.fetch_checkout(args.checkout_id)
    print_json("Checkout", snapshot.model_dump(mode="json"))

    if args.action == "show":
        return 0
    if args.action == "add":
        if args.subtotal is None:
            snapshot, result = await reconciler.sync_from_checkout(args.checkout_id)
        else:
            result = await reconciler.ensure_fee_present(args.checkout_id, args.subtotal)
    elif args.action == "remove":
        result = await reconciler.ensure_fee_absent(args.checkout_id)
    else:
        result = await reconciler.toggle(args.checkout_id, args.action == "enable", args.subtotal)

    print_json("Result", result.model_dump(mode="json"))
    return 0 if result.status.value != "failed" else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Add or remove the shipping insurance fee on a checkout")
    parser.add_argument("checkout_id", help="Checkout identifier")
    parser.add_argument(
        "action",
        nargs="?",
        default="add",
        choices=["show", "add", "remove", "enable", "disable"],
        help="What to do with the fee (default: add, using the cart base amount)",
    )
    parser.add_argument("--subtotal", type=float, default=None, help="Subtotal used to compute the fee")
    parser.add_argument("--config", default=None, help="Path to checkout_config.yml")
    parser.add_argument("--mock", action="store_true", help="Use the in-memory checkout client")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    setup_logging(args.verbose)
    try:
        return asyncio.run(run(args))
    except (ServiceError, IntegrationResponseError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
