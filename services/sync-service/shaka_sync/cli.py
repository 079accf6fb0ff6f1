"""
Offline maintenance commands.

  shaka-sync backfill --dry-run        estimate writes and cost, change nothing
  shaka-sync backfill                  warn, wait 5s (Ctrl+C cancels), rewrite
                                       every stale cached displayName
  shaka-sync backfill --verify         ... then re-plan and report what is left
  shaka-sync update-stats [--dry-run]  reconcile users/{uid}.stats counters

Exit code 0 on success, 1 on fatal error, cancellation, or recorded failures.
"""
import argparse
import asyncio
import logging
import sys
from typing import Awaitable, Callable, Optional

from shaka_sync.batch_writer import BatchWriter
from shaka_sync.clients.firestore_client import FirestoreStore
from shaka_sync.clients.notifier import ReportNotifier
from shaka_sync.config import Settings, settings
from shaka_sync.countdown import Countdown
from shaka_sync.errors import CountdownCancelled
from shaka_sync.models import BackfillStats, DryRunReport
from shaka_sync.orchestrator import SyncOrchestrator
from shaka_sync.stats import StatsReconciler
from shaka_sync.store import DocumentStore

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shaka-sync",
        description="Keep cached displayName / stats fields consistent with users/{uid}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    backfill = sub.add_parser("backfill", help="Backfill cached displayNames on posts")
    backfill.add_argument("--dry-run", action="store_true", help="Preview changes only")
    backfill.add_argument(
        "--grace-seconds",
        type=float,
        default=None,
        help="Countdown before writing (default: BACKFILL_GRACE_SECONDS)",
    )
    backfill.add_argument(
        "--continue-on-error",
        action="store_true",
        help="Record per-user failures and keep going instead of aborting",
    )
    backfill.add_argument(
        "--verify",
        action="store_true",
        help="After writing, re-plan and report posts still out of date",
    )

    stats = sub.add_parser("update-stats", help="Recount works / questions per user")
    stats.add_argument("--dry-run", action="store_true", help="Report mismatches only")

    for command in (backfill, stats):
        command.add_argument(
            "--credentials",
            default=None,
            help="Service account JSON (defaults to FIREBASE_CREDENTIALS_PATH / ADC)",
        )
    return parser


# ─────────────────────────── Reports ─────────────────────────────────────

def print_dry_run(report: DryRunReport) -> None:
    print("\n📊 DRY RUN RESULTS:")
    print(f"Users: {report.users}")
    for collection, count in report.scanned.items():
        print(f"Total {collection}: {count}")
    print(f"Posts needing update: {report.needs_update}")
    print(f"Estimated Firestore writes: {report.estimated_writes}")
    print(f"Estimated cost: ${report.estimated_cost_usd:.4f} USD")


def print_backfill(stats: BackfillStats) -> None:
    print("\n" + "=" * 50)
    print("📊 BACKFILL COMPLETED")
    print("=" * 50)
    print(f"Total users processed: {stats.users}")
    for collection, count in stats.updated.items():
        print(f"{collection.capitalize()} updated: {count}")
    print(f"Total posts updated: {stats.total_updated}")
    print(f"Batches committed: {stats.batches}")
    if stats.errors:
        print("\n⚠️ Errors encountered:")
        for failure in stats.errors:
            print(f"  - {failure.user_id}: {failure.error}")


# ─────────────────────────── Commands ────────────────────────────────────

async def run_backfill(
    args: argparse.Namespace,
    orchestrator: SyncOrchestrator,
    cfg: Settings,
    notifier: ReportNotifier,
    sleep: SleepFn = asyncio.sleep,
) -> int:
    if args.dry_run:
        print("🔍 DRY RUN MODE - No changes will be made")
        report = await orchestrator.dry_run(cfg.write_unit_cost_usd)
        print_dry_run(report)
        return 0

    grace = cfg.backfill_grace_seconds if args.grace_seconds is None else args.grace_seconds
    print("⚠️  This will update all posts in your Firestore database.")
    print("   Run with --dry-run flag to preview changes.")
    print(f"   Press Ctrl+C to cancel, or wait {grace:g} seconds to continue...\n")
    countdown = Countdown(
        grace,
        sleep=sleep,
        on_tick=lambda remaining: print(f"   {remaining:.0f}...", flush=True),
    )
    await countdown.run()

    stats = await orchestrator.backfill(continue_on_error=args.continue_on_error)
    print_backfill(stats)

    summary = stats.to_dict()
    if args.verify:
        remaining = await orchestrator.dry_run(cfg.write_unit_cost_usd)
        summary["remaining"] = remaining.needs_update
        print(f"\n🔍 Verification: {remaining.needs_update} posts still out of date")

    await notifier.send("backfill", summary)
    return 1 if stats.errors else 0


async def run_update_stats(
    args: argparse.Namespace,
    store: DocumentStore,
    cfg: Settings,
    notifier: ReportNotifier,
) -> int:
    print("📊 Checking and updating user stats...\n")
    reconciler = StatsReconciler(
        store,
        BatchWriter(store, cfg.batch_size),
        stats_fields=cfg.stats_fields,
        users_collection=cfg.users_collection,
        owner_field=cfg.owner_field,
    )
    report = await reconciler.run(dry_run=args.dry_run)
    print(f"Users checked: {report.users}")
    print(f"Mismatched: {report.mismatched}")
    if args.dry_run:
        print("\n⚠️  DRY RUN COMPLETE - No changes were made")
    else:
        print(f"Corrected: {report.corrected} ({report.batches} batches)")
    await notifier.send("update-stats", report.to_dict())
    return 0


async def _run(
    args: argparse.Namespace,
    cfg: Settings,
    store: Optional[DocumentStore],
    notifier: Optional[ReportNotifier],
    sleep: SleepFn,
) -> int:
    owned_store = None
    if store is None:
        owned_store = FirestoreStore.from_settings(cfg)
        owned_store.start()
        store = owned_store
    notifier = notifier or ReportNotifier(cfg.report_webhook_url)
    await notifier.start()

    try:
        if args.command == "backfill":
            orchestrator = SyncOrchestrator.from_settings(store, cfg)
            return await run_backfill(args, orchestrator, cfg, notifier, sleep)
        return await run_update_stats(args, store, cfg, notifier)
    finally:
        await notifier.stop()
        if owned_store is not None:
            owned_store.stop()


def main(
    argv: Optional[list[str]] = None,
    store: Optional[DocumentStore] = None,
    notifier: Optional[ReportNotifier] = None,
    sleep: SleepFn = asyncio.sleep,
    cfg: Optional[Settings] = None,
) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    cfg = cfg or settings
    if args.credentials:
        cfg = cfg.model_copy(update={"firebase_credentials_path": args.credentials})

    try:
        return asyncio.run(_run(args, cfg, store, notifier, sleep))
    except CountdownCancelled:
        print("\nCancelled — no changes were made.")
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted. Committed batches stay applied; re-run to converge the rest.")
        return 1
    except Exception as exc:
        logger.exception("Fatal error during %s", args.command)
        print(f"❌ Fatal error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
