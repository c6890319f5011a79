#!/usr/bin/env python3
"""
Run the daily payout sweep by hand.

DO NOT ADD BUSINESS LOGIC HERE.
This script only orchestrates API calls.
All rules live in the backend.

Usage:
    python scripts/run_payout_sweep.py --cron-secret <SECRET>
    CRON_SECRET=... python scripts/run_payout_sweep.py --base-url https://payouts.internal
    python scripts/run_payout_sweep.py --cron-secret <SECRET> --status <BOOKING_UUID> --internal-key <KEY>

Flow:
    1. Trigger the sweep (auto-confirm overdue bookings, release due holds)
    2. Print per-booking results and a summary
    3. Optionally show the payout phase of one booking
"""

import argparse
import json
import os
import sys

import httpx

BASE_URL = "http://localhost:8000"


def print_step(step: int, title: str):
    """Print step header."""
    print(f"\n{'='*60}")
    print(f"STEP {step}: {title}")
    print("="*60)


def print_items(label: str, items: list[dict]) -> int:
    """Print sweep entries and return the number of failures."""
    failed = 0
    print(f"\n{label}: {len(items)}")
    for item in items:
        result = item.get("result") or {}
        if item["success"]:
            print(f"  OK    {item['booking_id']}  {result.get('status')}  {result.get('transfer_id') or ''}")
        else:
            failed += 1
            print(f"  FAIL  {item['booking_id']}  {item.get('error')}")
    return failed


def run_sweep(base_url: str, cron_secret: str) -> dict:
    """Trigger the sweep endpoint."""
    response = httpx.post(
        f"{base_url}/api/v1/internal/payouts/run",
        headers={"Authorization": f"Bearer {cron_secret}"},
        timeout=600.0,
    )
    if response.status_code != 200:
        print(f"ERROR: Sweep failed: {response.status_code}")
        print(response.text)
        sys.exit(1)
    return response.json()


def show_status(base_url: str, internal_key: str, booking_id: str) -> None:
    """Print the payout phase of one booking."""
    response = httpx.get(
        f"{base_url}/api/v1/bookings/{booking_id}/payout",
        headers={"X-Internal-Key": internal_key},
        timeout=10.0,
    )
    print(f"Status: {response.status_code}")
    print(json.dumps(response.json(), indent=2))


def main():
    parser = argparse.ArgumentParser(description="Run the payout sweep")
    parser.add_argument("--base-url", default=os.getenv("PAYOUTS_BASE_URL", BASE_URL))
    parser.add_argument("--cron-secret", default=os.getenv("CRON_SECRET"), help="Scheduler bearer secret")
    parser.add_argument("--internal-key", default=os.getenv("INTERNAL_API_KEY"), help="Key for booking routes")
    parser.add_argument("--status", metavar="BOOKING_ID", help="Show payout phase of a booking afterwards")
    args = parser.parse_args()

    if not args.cron_secret:
        print("ERROR: --cron-secret or CRON_SECRET is required")
        sys.exit(1)

    print_step(1, "Run payout sweep")
    report = run_sweep(args.base_url, args.cron_secret)

    print_step(2, "Results")
    failed = print_items("Auto-confirmed", report["auto_confirmed"])
    failed += print_items("Released holds", report["released"])
    print(f"\nProcessed at {report['processed_at']}, {failed} failed")

    if args.status:
        if not args.internal_key:
            print("ERROR: --internal-key or INTERNAL_API_KEY is required for --status")
            sys.exit(1)
        print_step(3, f"Payout phase of {args.status}")
        show_status(args.base_url, args.internal_key, args.status)

    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()
