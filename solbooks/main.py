#!/usr/bin/env python3
"""
SolBooks - Solana bookkeeping ledger

Keeps a local, classifiable ledger of SOL and SPL token movements for a set
of monitored wallets.

Usage:
    solbooks refresh                      # Fetch new movements for all wallets
    solbooks list --token native          # Show stored records
    solbooks classify <id> Salary --note "March payroll"
    solbooks wallets add <address> "Treasury"
    solbooks watch                        # Auto-refresh loop (needs the flag enabled)
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .config import LedgerConfig
from .core.context import RefreshContext
from .core.errors import InvalidAddressError
from .core.log_redaction import configure_logging
from .core.models import TokenFilter
from .core.refresh import LedgerService

# Long-running or fetching commands expose Prometheus metrics
METRICS_COMMANDS = ("refresh", "watch")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="SolBooks - Solana bookkeeping ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--connected-address",
        default=LedgerConfig.get_connected_address(),
        help="Wallet that is always monitored (env: SOLBOOKS_CONNECTED_ADDRESS)",
    )
    parser.add_argument(
        "--log-level",
        default=LedgerConfig.get_log_level(),
        help="Logging level (default: WARNING, env: SOLBOOKS_LOG_LEVEL)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("refresh", help="Fetch new movements and reconcile them into the ledger")

    list_parser = sub.add_parser("list", help="List stored records")
    list_parser.add_argument(
        "--token",
        action="append",
        dest="tokens",
        help="Only show these mints ('native' for SOL); repeatable",
    )
    list_parser.add_argument("--limit", type=int, default=50, help="Maximum rows to print")

    classify_parser = sub.add_parser("classify", help="Set category and notes for a record")
    classify_parser.add_argument("record_id")
    classify_parser.add_argument("category")
    classify_parser.add_argument("--note", default=None)

    rates_parser = sub.add_parser("rates", help="Show exchange rates")
    rates_parser.add_argument("--base", choices=["SOL", "USD"], help="Also set the base currency")

    sub.add_parser("balances", help="Fetch SOL balances for monitored wallets")

    wallets_parser = sub.add_parser("wallets", help="Manage monitored wallets")
    wallets_sub = wallets_parser.add_subparsers(dest="wallets_command", required=True)
    add_parser = wallets_sub.add_parser("add")
    add_parser.add_argument("address")
    add_parser.add_argument("name")
    add_parser.add_argument("--inactive", action="store_true")
    remove_parser = wallets_sub.add_parser("remove")
    remove_parser.add_argument("address")
    wallets_sub.add_parser("list")

    export_parser = sub.add_parser("export", help="Export all data as JSON")
    export_parser.add_argument("--output", "-o", default="-", help="File path ('-' for stdout)")

    import_parser = sub.add_parser("import", help="Replace data from an exported JSON file")
    import_parser.add_argument("path")

    reset_parser = sub.add_parser("reset", help="Delete all stored data")
    reset_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    sub.add_parser("config", help="Print configuration summary and warnings")

    watch_parser = sub.add_parser("watch", help="Run the auto-refresh loop")
    watch_parser.add_argument("--interval", type=float, default=None, help="Seconds between refreshes")
    watch_parser.add_argument("--enable", action="store_true", help="Turn the auto-refresh flag on first")
    watch_parser.add_argument("--disable", action="store_true", help="Turn the auto-refresh flag off and exit")

    return parser.parse_args(argv)


async def _refresh(service: LedgerService) -> int:
    records = await service.refresh()
    stats = service.last_stats
    print(f"[SolBooks] Refresh complete: {len(records)} records")
    if stats:
        print(f"  Wallets queued: {stats.wallets_queued} (skipped: {stats.wallets_skipped})")
        print(f"  Tasks ok/failed: {stats.tasks_processed}/{stats.tasks_failed}")
        print(f"  New candidates: {stats.candidates}")
        if stats.price_fallback:
            print("  [!] Price oracle unavailable, using static rates")
    return 0


def _list(service: LedgerService, tokens: Optional[List[str]], limit: int) -> int:
    token_filter = TokenFilter(enabled=True, selected_tokens=tokens) if tokens else None
    records = service.records(token_filter)
    for record in records[:limit]:
        sign = "+" if record.signed_amount >= 0 else "-"
        print(
            f"{record.timestamp:%Y-%m-%d %H:%M} {sign} {service.display_amount(record):<32} "
            f"{record.category:<16} {record.status.value:<9} {record.id}"
        )
    print(f"[SolBooks] {min(len(records), limit)} of {len(records)} records")
    return 0


async def _rates(service: LedgerService, base: Optional[str]) -> int:
    store = service.ctx.store
    if base:
        preference = store.load_currency_preference()
        preference.base_currency = base
        store.save_currency_preference(preference)

    rates = await service.ctx.price_fetcher.get_rates()
    if service.ctx.price_fetcher.last_used_fallback:
        print("[SolBooks] Price oracle unavailable, showing static rates")
    print(f"Base currency: {store.load_currency_preference().base_currency}")
    for symbol, price in sorted(rates.items()):
        print(f"  {symbol:<6} ${price}")
    return 0


def _wallets(service: LedgerService, args: argparse.Namespace) -> int:
    if args.wallets_command == "add":
        try:
            wallet = service.add_wallet(args.address, args.name, is_active=not args.inactive)
        except (InvalidAddressError, ValueError) as e:
            print(f"[SolBooks] ERROR: {e}")
            return 1
        print(f"[SolBooks] Added {wallet.name} ({wallet.address})")
        return 0

    if args.wallets_command == "remove":
        if not service.remove_wallet(args.address):
            print(f"[SolBooks] No wallet {args.address}")
            return 1
        print(f"[SolBooks] Removed {args.address}")
        return 0

    for wallet in service.ctx.store.load_wallet_list():
        state = "active" if wallet.is_active else "inactive"
        print(f"  {wallet.name:<24} {wallet.address} {state:<8} {wallet.balance} SOL")
    return 0


async def _watch(service: LedgerService, interval: Optional[float]):
    task = service.start(interval)
    try:
        await task
    finally:
        await service.stop()


async def _run(args: argparse.Namespace, service: LedgerService) -> int:
    try:
        if args.command == "refresh":
            return await _refresh(service)
        if args.command == "balances":
            balances = await service.fetch_balances()
            total = sum(balances.values())
            for address, balance in balances.items():
                print(f"  {address} {balance} SOL")
            print(f"[SolBooks] Total: {total} SOL")
            return 0
        if args.command == "rates":
            return await _rates(service, args.base)
        if args.command == "watch":
            await _watch(service, args.interval)
            return 0
    finally:
        await service.ctx.close()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the SolBooks CLI."""
    args = parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "config":
        LedgerConfig.print_config_summary()
        is_valid, _ = LedgerConfig.validate_config()
        return 0 if is_valid else 1

    ctx = RefreshContext.from_env(start_metrics=args.command in METRICS_COMMANDS)
    service = LedgerService(ctx, connected_address=args.connected_address)
    store = ctx.store

    if args.command in ("refresh", "balances", "rates"):
        return asyncio.run(_run(args, service))

    if args.command == "watch":
        if args.disable:
            store.save_auto_refresh_flag(False)
            print("[SolBooks] Auto refresh disabled")
            return 0
        if args.enable:
            store.save_auto_refresh_flag(True)
        if not store.load_auto_refresh_flag():
            print("[SolBooks] Auto refresh is disabled; run with --enable to turn it on")
            return 1
        print(f"[SolBooks] Watching (started at {datetime.now(timezone.utc).isoformat()}), Ctrl-C to stop")
        try:
            return asyncio.run(_run(args, service))
        except KeyboardInterrupt:
            print("\n[SolBooks] Stopped")
            return 0

    if args.command == "list":
        return _list(service, args.tokens, args.limit)

    if args.command == "classify":
        try:
            record = service.classify(args.record_id, args.category, args.note)
        except ValueError as e:
            print(f"[SolBooks] ERROR: {e}")
            return 1
        if record is None:
            print(f"[SolBooks] No record with id {args.record_id}")
            return 1
        print(f"[SolBooks] {record.id} -> {record.category}")
        return 0

    if args.command == "wallets":
        return _wallets(service, args)

    if args.command == "export":
        data = store.export_data()
        if args.output == "-":
            print(data)
        else:
            with open(args.output, "w") as f:
                f.write(data)
            print(f"[SolBooks] Exported to {args.output}")
        return 0

    if args.command == "import":
        with open(args.path) as f:
            result = store.import_data(f.read())
        if not result["success"]:
            print(f"[SolBooks] ERROR: {result['error']}")
            return 1
        print("[SolBooks] Import complete")
        return 0

    if args.command == "reset":
        if not args.yes:
            answer = input("Delete all stored records, wallets and settings? [y/N] ")
            if answer.strip().lower() != "y":
                print("[SolBooks] Aborted")
                return 1
        store.clear_all_data()
        ctx.signature_cache.clear()
        ctx.price_cache.clear()
        print("[SolBooks] All data cleared")
        return 0

    return 0


if __name__ == "__main__":
    sys.exit(main())
