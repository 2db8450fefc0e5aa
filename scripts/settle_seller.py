#!/usr/bin/env python3
"""
Seller Settlement Script

Computes a seller's payout statement for an auction, optionally saving it
and marking it sent.

Usage:
    python settle_seller.py <seller-id> <auction-id> --preview
    python settle_seller.py <seller-id> <auction-id> --commission 15 \
        --adjustment "Shipping handling fee=12.50"
    python settle_seller.py <seller-id> <auction-id> --send
"""

from __future__ import annotations

import argparse
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import UUID

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import load_settings
from domain.errors import ValidationError
from domain.money import format_money, to_minor_units
from domain.settlement import Adjustment, FlatCommission, SettlementStatement
from services.wiring import build_services


def parse_adjustment(raw: str) -> Adjustment:
    """Parse "Name=12.50" into an Adjustment."""
    name, sep, amount = raw.rpartition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"Expected NAME=AMOUNT, got {raw!r}")
    try:
        return Adjustment(name=name.strip(), amount=to_minor_units(Decimal(amount.strip())))
    except (InvalidOperation, ValidationError) as exc:
        raise argparse.ArgumentTypeError(f"Invalid adjustment {raw!r}: {exc}")


def print_statement(statement: SettlementStatement, currency: str) -> None:
    print()
    print("=" * 60)
    print(f"SETTLEMENT {statement.reference} ({statement.status.value})")
    print("=" * 60)
    print("Sold:")
    for line in statement.sold_items:
        print(f"  {line.lot_number or '-':>6}  {line.name:<36} {format_money(line.hammer_price, currency)}")
    print("Unsold:")
    for line in statement.unsold_items:
        detail = line.disposition.value
        if line.high_bid is not None:
            detail += f", high bid {format_money(line.high_bid, currency)}"
        print(f"  {line.lot_number or '-':>6}  {line.name:<36} {detail}")
    print()
    print(f"Total sales: {format_money(statement.total_sales, currency)}")
    print(f"Commission:  {format_money(statement.commission, currency)} ({statement.commission_description})")
    for adj in statement.adjustments:
        print(f"  - {adj.name}: {format_money(adj.amount, currency)}")
    print(f"Net payout:  {format_money(statement.net_payout, currency)}")
    print("=" * 60)


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Compute a seller's settlement for an auction",
    )

    parser.add_argument("seller_id", type=UUID, help="Seller user ID")
    parser.add_argument("auction_id", type=UUID, help="Auction ID")
    parser.add_argument(
        "--adjustment",
        "-a",
        action="append",
        type=parse_adjustment,
        default=[],
        help="Named deduction as NAME=AMOUNT (repeatable)"
    )
    parser.add_argument("--commission", type=Decimal, help="Flat commission percent override")
    parser.add_argument("--vat", type=Decimal, help="VAT percent charged on commission")
    parser.add_argument("--preview", action="store_true", help="Compute without saving")
    parser.add_argument("--send", action="store_true", help="Save and mark the statement sent")

    args = parser.parse_args()

    services = None
    try:
        settings = load_settings()
        logging.basicConfig(level=settings.log_level)
        services = build_services(settings)
        calculator = services.settlements
        policy = FlatCommission(args.commission) if args.commission is not None else None

        if args.preview:
            statement = calculator.preview_settlement(
                args.seller_id,
                args.auction_id,
                args.adjustment,
                commission_policy=policy,
                commission_vat_percent=args.vat,
            )
        else:
            statement = calculator.compute_settlement(
                args.seller_id,
                args.auction_id,
                args.adjustment,
                commission_policy=policy,
                commission_vat_percent=args.vat,
            )
            if args.send:
                statement, _ = calculator.mark_sent(statement.settlement_id)

        print_statement(statement, settings.currency)
        return 0

    except KeyboardInterrupt:
        print("\n\nSettlement interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        return 1

    finally:
        if services is not None:
            services.close()


if __name__ == "__main__":
    sys.exit(main())
