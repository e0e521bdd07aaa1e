"""
CLI entrypoint for the claimsync service.

Usage:
    python -m claimsync.control_plane serve
    python -m claimsync.control_plane sync --once
    python -m claimsync.control_plane sync
    python -m claimsync.control_plane register <address> [<address> ...]
    python -m claimsync.control_plane stuck
"""
import argparse
import asyncio
import logging
import os
import sys

from claimsync.control_plane.config import SyncConfig, get_config
from claimsync.control_plane.controller import build_synchronizer
from claimsync.control_plane.scheduler import PollingScheduler, RetryPolicy


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def build_scheduler(config: SyncConfig) -> PollingScheduler:
    """Wire a scheduler and its synchronizer from configuration."""
    return PollingScheduler(
        synchronizer=build_synchronizer(config),
        interval_seconds=config.download_interval_seconds,
        retry_policy=RetryPolicy(
            retry_delay_ms=config.retry_delay_ms,
            max_attempts=config.download_max_attempts
        )
    )


async def run_forever(scheduler: PollingScheduler) -> None:
    """Run the polling scheduler until cancelled."""
    scheduler.start()
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
        await scheduler.wait_idle()


def cmd_serve(config: SyncConfig, args) -> int:
    import uvicorn

    if not config.token:
        print("❌ Error: CLAIMSYNC_API_TOKEN environment variable required", file=sys.stderr)
        return 1

    # The app loads its own config on startup
    if args.config:
        os.environ["CLAIMSYNC_CONFIG"] = args.config

    uvicorn.run(
        "claimsync.control_plane.api:app",
        host=config.host,
        port=config.port,
        reload=False
    )
    return 0


def cmd_sync(config: SyncConfig, args) -> int:
    scheduler = build_scheduler(config)

    print("claimsync scheduler")
    print(f"Index: {config.index_backend}")
    print(f"Content store: {config.content_backend}")
    print(f"Publisher: {config.publisher_backend}")
    print(f"Interval: {config.download_interval_seconds}s")
    print(f"Retry delay: {config.download_retry_delay_minutes}min")
    print(f"Max attempts: {config.download_max_attempts}")
    print()

    try:
        if args.once:
            result = scheduler.run_once()
            if result is None:
                print("⚠️  No downloadable entries")
            elif result.resolved:
                print(f"✅ Resolved {result.address} -> {result.claim.id}")
            else:
                print(f"❌ Attempt for {result.address} failed at {result.stage}: {result.error}")
            return 0

        try:
            asyncio.run(run_forever(scheduler))
        except KeyboardInterrupt:
            print("\nStopped")
        return 0
    finally:
        scheduler.synchronizer.close()


def cmd_register(config: SyncConfig, args) -> int:
    synchronizer = build_synchronizer(config)
    try:
        registered = synchronizer.register_addresses(args.addresses)
    finally:
        synchronizer.close()

    print(f"Registered {registered} new of {len(args.addresses)} address(es)")
    return 0


def cmd_stuck(config: SyncConfig, args) -> int:
    synchronizer = build_synchronizer(config)
    try:
        entries = synchronizer.entry_store.find_stuck(config.download_max_attempts, limit=args.limit)
    finally:
        synchronizer.close()

    if not entries:
        print("No stuck entries.")
        return 0

    print(f"Stuck entries (attempts > {config.download_max_attempts})")
    print("=" * 80)
    for entry in entries:
        print(f"{entry.address}  attempts={entry.attempt_count}  last_attempt_at={entry.last_attempt_at}")
    return 1 if args.fail_if_any else 0


def main(argv=None):
    """Run claimsync CLI."""
    parser = argparse.ArgumentParser(description="claimsync service")
    parser.add_argument("--config", help="YAML config file (environment variables take precedence)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the HTTP API with the polling scheduler")

    sync_parser = subparsers.add_parser("sync", help="Run the polling scheduler without the API")
    sync_parser.add_argument("--once", action="store_true", help="Resolve at most one entry and exit")

    register_parser = subparsers.add_parser("register", help="Register discovered addresses")
    register_parser.add_argument("addresses", nargs="+", help="Content addresses")

    stuck_parser = subparsers.add_parser("stuck", help="List entries that exhausted their attempts")
    stuck_parser.add_argument("--limit", type=int, default=100, help="Maximum entries to list")
    stuck_parser.add_argument("--fail-if-any", action="store_true", help="Exit 1 when stuck entries exist (alerting)")

    args = parser.parse_args(argv)

    try:
        config = get_config(path=args.config)
    except (ValueError, OSError) as e:
        print(f"❌ Error loading config: {e}", file=sys.stderr)
        return 1

    configure_logging(config.log_level)

    commands = {
        "serve": cmd_serve,
        "sync": cmd_sync,
        "register": cmd_register,
        "stuck": cmd_stuck,
    }
    return commands[args.command](config, args)


if __name__ == "__main__":
    sys.exit(main())
