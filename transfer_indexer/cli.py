#!/usr/bin/env python3
"""
Command-line interface for the transfer indexer.

Usage:
    transfer-indexer run
    transfer-indexer backfill --max-count 1000
    transfer-indexer backfill --max-count 1000 --before <last_cursor>
    transfer-indexer check
    transfer-indexer init-db
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from .config import ConfigError, ConfigManager, get_config
from .core.indexer import StartupError, TransferIndexer
from .core.storage import StorageError, create_storage
from .ledger import LedgerError
from .utils import HealthServer

logger = logging.getLogger(__name__)


async def _startup_backfill(indexer: TransferIndexer) -> None:
    try:
        result = await indexer.catch_up()
    except Exception as e:
        logger.error(f"Startup backfill failed (non-fatal): {e}")
        return
    if result is not None:
        logger.info(f"Startup backfill: {result.scanned} scanned, {result.inserted} inserted")


async def run_indexer(config: ConfigManager, stop_event: Optional[asyncio.Event] = None) -> int:
    """Long-running realtime indexer with startup catch-up."""
    logger.info("=" * 60)
    logger.info("Transfer indexer starting")
    logger.info(f"Token mint: {config.ledger.TOKEN_MINT}")
    logger.info(f"RPC: {config.ledger.SOLANA_RPC_URL}")
    logger.info("=" * 60)

    indexer = TransferIndexer.from_config(config)
    health = HealthServer(indexer, port=config.indexer.HEALTH_PORT)

    try:
        checkpoint = await indexer.initialize()
    except StartupError as e:
        logger.error(f"❌ Startup failed: {e}")
        await indexer.stop()
        await indexer.storage.disconnect()
        return 1

    if checkpoint is None:
        logger.info("No previous indexer state found, starting fresh")
    else:
        logger.info(f"Resuming from slot {checkpoint}")

    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    catch_up_task: Optional[asyncio.Task] = None
    try:
        await health.start()
        await indexer.start_realtime_indexing()
        logger.info("✅ Indexer is running")

        if config.indexer.BACKFILL_ON_START:
            catch_up_task = asyncio.create_task(_startup_backfill(indexer))

        await stop_event.wait()
        logger.info("Shutdown signal received, stopping gracefully...")
        return 0

    except StartupError as e:
        logger.error(f"❌ Startup failed: {e}")
        return 1

    finally:
        if catch_up_task is not None and not catch_up_task.done():
            catch_up_task.cancel()
            try:
                await catch_up_task
            except asyncio.CancelledError:
                pass
            logger.info("Startup backfill cancelled")
        await indexer.stop_indexing()
        await health.stop()
        await indexer.storage.disconnect()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        logger.info("Shutdown complete")


async def run_backfill(
    config: ConfigManager,
    max_count: int,
    before: Optional[str] = None,
    until_slot: Optional[int] = None,
) -> int:
    """One-shot historical scan."""
    indexer = TransferIndexer.from_config(config)
    try:
        await indexer.initialize()
        result = await indexer.run_backfill(max_count, before=before, until_slot=until_slot)
    except StartupError as e:
        logger.error(f"❌ Startup failed: {e}")
        return 1
    finally:
        await indexer.stop()
        await indexer.storage.disconnect()

    logger.info(f"📊 Scanned {result.scanned} signatures, inserted {result.inserted} transfers")
    if result.failed_pages:
        logger.warning(f"⚠️  {result.failed_pages} page(s) could not be persisted")
    if result.last_cursor:
        logger.info(f"Continue with: --before {result.last_cursor}")
    return 0 if result.completed and not result.failed_pages else 1


async def run_check(config: ConfigManager) -> int:
    """Connectivity test: store, node, fetch and parse a few recent transactions."""
    indexer = TransferIndexer.from_config(config)
    storage = indexer.storage
    ok = True

    logger.info("--- Test 1: Storage ---")
    try:
        await storage.connect()
        healthy = await storage.health_check()
        logger.info(f"Result: {'PASS' if healthy else 'FAIL'}")
        if healthy:
            logger.info(f"Current transfer count: {await storage.count_transfers()}")
        ok = ok and healthy
    except StorageError as e:
        logger.info(f"Result: FAIL - {e}")
        ok = False

    logger.info("--- Test 2: Ledger node ---")
    client = None
    try:
        client = await indexer.connection.connect()
        slot = await indexer.connection.health_check()
        logger.info(f"Result: PASS (slot {slot})")
    except LedgerError as e:
        logger.info(f"Result: FAIL - {e}")
        ok = False

    logger.info("--- Test 3: Transfer parsing ---")
    if client is None:
        logger.info("Result: SKIP (node not connected)")
    else:
        try:
            signatures = await client.get_signatures_for_address(indexer.mention, limit=5)
            logger.info(f"Found {len(signatures)} recent signatures")
            parsed = None
            for info in signatures:
                if info.failed:
                    continue
                tx = await client.get_parsed_transaction(info.signature)
                records = indexer.parser.parse(info.signature, tx) if tx else []
                if records:
                    parsed = records[0]
                    break
            if parsed:
                logger.info(
                    f"Parsed {parsed.signature[:16]}...: {parsed.from_address} -> "
                    f"{parsed.to_address} {parsed.amount_display} at slot {parsed.slot}"
                )
                logger.info("Result: PASS")
            else:
                logger.info("Result: PARTIAL (no plain transfers in sample)")
        except LedgerError as e:
            logger.info(f"Result: FAIL - {e}")
            ok = False

    await indexer.connection.close()
    await storage.disconnect()
    return 0 if ok else 1


async def run_init_db(config: ConfigManager) -> int:
    storage = create_storage(config)
    try:
        async with storage:
            await storage.ensure_schema()
    except StorageError as e:
        logger.error(f"❌ Schema creation failed: {e}")
        return 1
    logger.info("✅ Schema ready")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="transfer-indexer",
        description="Realtime and historical indexer for one SPL token's transfers",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Realtime indexing with startup catch-up
  transfer-indexer run

  # Historical scan, then continue from the printed cursor
  transfer-indexer backfill --max-count 1000
  transfer-indexer backfill --max-count 1000 --before <cursor>
        """,
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("run", help="Run the realtime indexer")

    backfill = commands.add_parser("backfill", help="Scan historical transfers")
    backfill.add_argument("--max-count", type=int, default=1000, help="Signatures to scan")
    backfill.add_argument("--before", help="Cursor: scan signatures older than this one")
    backfill.add_argument("--until-slot", type=int, help="Stop at signatures at or below this slot")

    commands.add_parser("check", help="Test storage and node connectivity")
    commands.add_parser("init-db", help="Create the database schema")
    return parser


async def _dispatch(args: argparse.Namespace) -> int:
    try:
        config = get_config()
    except ConfigError as e:
        logger.error(f"❌ Invalid configuration: {e}")
        return 1

    if args.command == "run":
        return await run_indexer(config)
    if args.command == "backfill":
        return await run_backfill(config, args.max_count, args.before, args.until_slot)
    if args.command == "check":
        return await run_check(config)
    return await run_init_db(config)


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point."""
    args = build_parser().parse_args(argv)
    if args.command == "backfill" and args.max_count <= 0:
        logger.error("--max-count must be positive")
        return 2

    try:
        return asyncio.run(_dispatch(args))
    except KeyboardInterrupt:
        logger.info("⏹️  Interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"💥 Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
