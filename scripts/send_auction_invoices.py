#!/usr/bin/env python3
"""
Auction Invoice Sending Script

Invoices the winners of a closed auction (optional) and sends every Unpaid,
never-sent invoice: stored cards are charged, everyone else gets a pay link.

Usage:
    python send_auction_invoices.py <auction-id>
    python send_auction_invoices.py <auction-id> --close
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from uuid import UUID

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import load_settings
from services.invoice_dispatch_service import BatchDispatchResult
from services.wiring import build_services


def print_summary(result: BatchDispatchResult) -> None:
    print()
    print("=" * 60)
    print("DISPATCH SUMMARY")
    print("=" * 60)
    print(f"Sent:    {result.sent_count}")
    for sent in result.sent:
        suffix = f" -> {sent.payment_link_url}" if sent.payment_link_url else ""
        print(f"  {sent.invoice_number}: {sent.outcome.value}{suffix}")
    print(f"Failed:  {result.failed_count}")
    for failed in result.failed:
        print(f"  {failed.invoice_number}: {failed.reason}")
    print(f"Skipped: {len(result.skipped)}")
    print("=" * 60)


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Send all unsent invoices for an auction",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Send invoices that already exist
  python send_auction_invoices.py 123e4567-e89b-12d3-a456-426614174002

  # Invoice the winners first, then send
  python send_auction_invoices.py 123e4567-e89b-12d3-a456-426614174002 --close
        """
    )

    parser.add_argument("auction_id", type=UUID, help="Auction ID")
    parser.add_argument(
        "--close",
        action="store_true",
        help="Create invoices for the auction's winners before sending"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args()

    services = None
    try:
        settings = load_settings()
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else settings.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
        services = build_services(settings)

        if args.close:
            print(f"Invoicing winners of auction {args.auction_id}...")
            created = services.invoices.invoice_auction_winners(args.auction_id)
            print(f"  Invoices created:      {created.invoices_created}")
            print(f"  Buyers already billed: {len(created.skipped_buyer_ids)}")
            print(f"  Unsold items:          {len(created.unsold_item_ids)}")

        print(f"Sending invoices for auction {args.auction_id}...")
        result = services.dispatcher.send_all_for_auction(args.auction_id)
        print_summary(result)

        return 1 if result.failed else 0

    except KeyboardInterrupt:
        print("\n\nDispatch interrupted by user")
        return 130

    except Exception as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1

    finally:
        if services is not None:
            services.close()


if __name__ == "__main__":
    sys.exit(main())
