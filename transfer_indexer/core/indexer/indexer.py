"""
Transfer indexer orchestrator.

Ties the realtime subscription path and the backfill path to one store:

    subscription callback -> decode queue -> decode workers --+
                                                              +--> dispatcher -> parser -> storage
    backfill scanner -----------------------------------------+

All mutable state lives on the instance.
"""

import asyncio
import logging
import time
from typing import List, Optional

from ...config import ConfigManager
from ...ledger.backfill import BackfillResult, BackfillScanner
from ...ledger.base import LedgerError
from ...ledger.base import ConnectionError as LedgerConnectionError
from ...ledger.connection import ConnectionState, LedgerConnectionManager
from ...ledger.dispatcher import RateLimitedDispatcher
from ...ledger.rpc_client import SolanaRpcClient
from ...ledger.subscriber import EventSubscriber
from ...processors.base import TransferRecord
from ...processors.transfer_parser import TransferParser
from ..storage.base import ConnectionError as StorageConnectionError
from ..storage.base import DataError, IndexerStorage, StorageError
from ..storage.manager import create_storage
from .base import IndexerStats, StartupError
from .buffer import PendingBuffer
from .dedup import DedupWindow

logger = logging.getLogger(__name__)


class TransferIndexer:
    """
    Realtime plus backfill indexer for one token mint.

    Usage:
        indexer = TransferIndexer.from_config(get_config())
        await indexer.initialize()
        await indexer.start()
        ...
        await indexer.stop()
    """

    def __init__(
        self,
        storage: IndexerStorage,
        connection: LedgerConnectionManager,
        dispatcher: RateLimitedDispatcher,
        parser: TransferParser,
        mention: Optional[str] = None,
        backfill_batch_size: int = 20,
        backfill_page_delay: float = 2.0,
        backfill_retry_delay: float = 4.0,
        backfill_max_retries: int = 5,
        startup_backfill_count: int = 100,
        dedup_window_size: int = 10000,
        pending_buffer_size: int = 1000,
        decode_queue_size: int = 5000,
        decode_workers: int = 3,
        flush_interval: float = 30.0,
        drain_timeout: float = 10.0,
    ):
        self.storage = storage
        self.connection = connection
        self.dispatcher = dispatcher
        self.parser = parser
        self.mention = mention or parser.token_mint
        self.startup_backfill_count = startup_backfill_count
        self.decode_queue_size = decode_queue_size
        self.decode_workers = decode_workers
        self.flush_interval = flush_interval
        self.drain_timeout = drain_timeout

        self.dedup = DedupWindow(dedup_window_size)
        self.pending = PendingBuffer(pending_buffer_size)
        self.scanner = BackfillScanner(
            connection,
            dispatcher,
            parser,
            storage,
            self.mention,
            batch_size=backfill_batch_size,
            page_delay=backfill_page_delay,
            retry_delay=backfill_retry_delay,
            max_retries=backfill_max_retries,
            dedup=self.dedup,
        )

        self.running = False
        self.initialized = False
        self.started_at: Optional[float] = None
        self.startup_checkpoint: Optional[int] = None
        self.last_checkpoint: Optional[int] = None
        self.session_inserted_count = 0

        self.queue: Optional[asyncio.Queue] = None
        self.subscriber: Optional[EventSubscriber] = None
        self._workers: List[asyncio.Task] = []
        self._flush_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: ConfigManager, storage: Optional[IndexerStorage] = None) -> "TransferIndexer":
        """Build every collaborator from configuration."""
        ledger = config.ledger
        tuning = config.indexer

        def client_factory() -> SolanaRpcClient:
            return SolanaRpcClient(
                ledger.SOLANA_RPC_URL,
                ledger.ws_url,
                commitment=ledger.COMMITMENT,
                timeout=ledger.RPC_TIMEOUT,
                heartbeat=ledger.WS_HEARTBEAT,
            )

        connection = LedgerConnectionManager(
            client_factory,
            health_interval=tuning.HEALTH_CHECK_INTERVAL,
            health_timeout=tuning.HEALTH_CHECK_TIMEOUT,
            base_delay=tuning.RECONNECT_BASE_DELAY,
            max_delay=tuning.RECONNECT_MAX_DELAY,
        )
        dispatcher = RateLimitedDispatcher(
            tuning.MAX_CONCURRENT_RPC, tuning.RPC_DELAY, timeout=ledger.RPC_TIMEOUT
        )
        parser = TransferParser(ledger.TOKEN_MINT, ledger.TOKEN_DECIMALS)

        return cls(
            storage or create_storage(config),
            connection,
            dispatcher,
            parser,
            backfill_batch_size=tuning.BACKFILL_BATCH_SIZE,
            backfill_page_delay=tuning.BACKFILL_PAGE_DELAY,
            backfill_retry_delay=tuning.BACKFILL_RETRY_DELAY,
            backfill_max_retries=tuning.BACKFILL_MAX_RETRIES,
            startup_backfill_count=tuning.STARTUP_BACKFILL_COUNT,
            dedup_window_size=tuning.DEDUP_WINDOW_SIZE,
            pending_buffer_size=tuning.PENDING_BUFFER_SIZE,
            decode_queue_size=tuning.DECODE_QUEUE_SIZE,
            decode_workers=tuning.DECODE_WORKERS,
            flush_interval=tuning.HEALTH_CHECK_INTERVAL,
            drain_timeout=tuning.SHUTDOWN_DRAIN_TIMEOUT,
        )

    # Lifecycle

    async def initialize(self) -> Optional[int]:
        """
        Fatal-startup checks: store reachable, node reachable, checkpoint read.

        Returns:
            The checkpoint stored before this run (None on a fresh store)

        Raises:
            StartupError: If the store or the node cannot be used
        """
        try:
            await self.storage.connect()
            if not await self.storage.health_check():
                raise StartupError("Storage health check failed")
            await self.storage.ensure_schema()
        except StorageError as e:
            raise StartupError(f"Storage unavailable: {e}")

        try:
            await self.connection.connect()
            slot = await self.connection.health_check()
        except LedgerError as e:
            raise StartupError(f"Ledger node unavailable: {e}")

        try:
            checkpoint = await self.storage.get_checkpoint()
            self.startup_checkpoint = checkpoint
            if checkpoint is None:
                await self.storage.set_checkpoint(slot)
                self.last_checkpoint = slot
                logger.info(f"No checkpoint found, starting fresh at slot {slot}")
            else:
                self.last_checkpoint = checkpoint
                logger.info(f"Resuming from checkpoint slot {checkpoint} (node at {slot})")
        except StorageError as e:
            raise StartupError(f"Cannot read checkpoint: {e}")

        self.initialized = True
        return self.startup_checkpoint

    async def start(self) -> None:
        """Start realtime indexing. Calling it while running is a no-op."""
        if self.running:
            logger.warning("Indexer already running")
            return
        if not self.initialized:
            await self.initialize()

        self.queue = asyncio.Queue(maxsize=self.decode_queue_size)
        self.subscriber = EventSubscriber(self.connection, self.mention, self.queue)
        self.connection.on_disconnect(self.subscriber.detach)
        self.connection.on_reconnect(self.subscriber.resubscribe)

        self._workers = [
            asyncio.create_task(self._decode_worker(i)) for i in range(self.decode_workers)
        ]
        try:
            await self.subscriber.subscribe()
        except Exception as e:
            await self._cancel_workers()
            raise StartupError(f"Subscription failed: {e}")

        self.connection.start_monitoring()
        self._flush_task = asyncio.create_task(self._flush_loop())
        self.running = True
        self.started_at = time.time()
        logger.info(f"Realtime indexing started with {self.decode_workers} decode workers")

    async def stop(self) -> None:
        """Graceful shutdown; safe to call more than once."""
        if not self.running:
            if self.connection.state != ConnectionState.CLOSED:
                await self.connection.close()
            return

        logger.info("Stopping indexer...")
        self.running = False

        if self.subscriber is not None:
            self.subscriber.pause()
            await self.subscriber.unsubscribe()

        await self.connection.stop_monitoring()

        if self.queue is not None:
            try:
                await asyncio.wait_for(self.queue.join(), timeout=self.drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Drain timed out after {self.drain_timeout}s, abandoning in-flight decodes "
                    f"and {self.queue.qsize()} queued signature(s)"
                )
        await self._cancel_workers()

        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        if self.pending and await self.storage.health_check():
            try:
                await self.flush_pending()
            except StorageError as e:
                logger.warning(f"Final flush failed, {len(self.pending)} record(s) lost: {e}")
        elif self.pending:
            logger.warning(f"Store unreachable at shutdown, {len(self.pending)} buffered record(s) lost")

        await self.connection.close()
        logger.info(f"Indexer stopped. Session inserts: {self.session_inserted_count}")

    async def start_realtime_indexing(self) -> None:
        await self.start()

    async def stop_indexing(self) -> None:
        await self.stop()

    async def _cancel_workers(self) -> None:
        for task in self._workers:
            task.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    # Realtime path

    async def _decode_worker(self, worker_id: int) -> None:
        while True:
            signature = await self.queue.get()
            try:
                await self.process_signature(signature)
            except asyncio.CancelledError:
                self.dedup.discard(signature)
                raise
            except Exception as e:
                self.dedup.discard(signature)
                logger.error(f"Worker {worker_id} failed on {signature[:16]}...: {e}")
            finally:
                self.queue.task_done()

    async def process_signature(self, signature: str) -> int:
        """
        Fetch, decode and persist one transaction.

        Returns:
            int: Number of newly stored transfers
        """
        if not self.dedup.add(signature):
            return 0

        try:
            client = self.connection.client
            if client is None:
                raise LedgerConnectionError("No ledger client available")
            tx = await self.dispatcher.call(client.get_parsed_transaction, signature)
            records = self.parser.parse(signature, tx) if tx else []
        except Exception:
            self.dedup.discard(signature)
            raise

        if not records:
            return 0
        inserted = await self.persist(records)
        if inserted:
            logger.info(f"Indexed {inserted} transfer(s) from {signature[:16]}...")
        return inserted

    async def persist(self, records: List[TransferRecord]) -> int:
        """
        Store records; buffer them while the store is unreachable.

        Records that reach neither the store nor the buffer release their
        signatures from the dedup window so backfill can fetch them again.

        Returns:
            int: Number of newly stored transfers
        """
        try:
            await self.flush_pending()
        except StorageConnectionError:
            self._buffer(records)
            return 0
        except StorageError as e:
            logger.error(f"Flushing pending records failed: {e}")

        try:
            inserted = await self.storage.insert_batch(records)
        except StorageConnectionError as e:
            accepted = self._buffer(records)
            logger.warning(f"Store unreachable, buffered {accepted}/{len(records)} record(s): {e}")
            return 0
        except DataError as e:
            logger.error(f"Dropping {len(records)} record(s) after failed insert: {e}")
            self._release(records)
            return 0

        self.session_inserted_count += inserted
        await self._advance_checkpoint(records)
        return inserted

    async def flush_pending(self) -> int:
        """
        Re-insert buffered records.

        Raises:
            ConnectionError: Store still unreachable; records stay buffered
        """
        if not self.pending:
            return 0

        records = self.pending.drain()
        try:
            inserted = await self.storage.insert_batch(records)
        except StorageConnectionError:
            self._release(self.pending.restore(records))
            raise
        except DataError as e:
            logger.error(f"Dropping {len(records)} buffered record(s) after failed insert: {e}")
            self._release(records)
            return 0

        self.session_inserted_count += inserted
        logger.info(f"Flushed {len(records)} buffered record(s), {inserted} new")
        await self._advance_checkpoint(records)
        return inserted

    def _buffer(self, records: List[TransferRecord]) -> int:
        accepted = self.pending.extend(records)
        self._release(records[accepted:])
        return accepted

    def _release(self, records: List[TransferRecord]) -> None:
        for signature in {record.signature for record in records}:
            self.dedup.discard(signature)

    async def _advance_checkpoint(self, records: List[TransferRecord]) -> None:
        slot = max(record.slot for record in records)
        if self.last_checkpoint is not None and slot <= self.last_checkpoint:
            return
        try:
            if await self.storage.set_checkpoint(slot):
                self.last_checkpoint = slot
        except StorageError as e:
            logger.warning(f"Checkpoint not advanced to {slot}: {e}")

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            if not self.pending:
                continue
            try:
                if await self.storage.health_check():
                    await self.flush_pending()
            except StorageError as e:
                logger.warning(f"Pending flush failed, {len(self.pending)} record(s) still buffered: {e}")
            except Exception:
                logger.exception("Unexpected error in pending flush loop")

    # Backfill path

    async def run_backfill(
        self,
        max_count: int,
        before: Optional[str] = None,
        until_slot: Optional[int] = None,
    ) -> BackfillResult:
        """
        Scan history older than ``before``; chain runs by passing back ``last_cursor``.
        """
        result = await self.scanner.scan(max_count, before=before, until_slot=until_slot)
        self.session_inserted_count += result.inserted
        try:
            checkpoint = await self.storage.get_checkpoint()
            if checkpoint is not None:
                self.last_checkpoint = max(checkpoint, self.last_checkpoint or checkpoint)
        except StorageError as e:
            logger.debug(f"Checkpoint refresh after backfill failed: {e}")
        return result

    async def catch_up(self) -> Optional[BackfillResult]:
        """Startup backfill, bounded by count and stopped at the prior checkpoint."""
        if self.startup_backfill_count <= 0:
            return None
        logger.info(
            f"Catching up: up to {self.startup_backfill_count} signatures"
            + (f" back to slot {self.startup_checkpoint}" if self.startup_checkpoint is not None else "")
        )
        return await self.run_backfill(self.startup_backfill_count, until_slot=self.startup_checkpoint)

    # Introspection

    def get_stats(self) -> IndexerStats:
        return IndexerStats(
            running=self.running,
            last_checkpoint=self.last_checkpoint,
            session_inserted_count=self.session_inserted_count,
            pending_buffer_size=len(self.pending),
            reconnect_attempts=self.connection.reconnect_attempts,
            connection_state=self.connection.state.value,
            dedup_window_size=len(self.dedup),
            decode_queue_size=self.queue.qsize() if self.queue is not None else 0,
            dropped_records=self.pending.dropped,
            dropped_signatures=self.subscriber.dropped if self.subscriber is not None else 0,
            last_slot=self.connection.slot,
        )

    @property
    def uptime(self) -> float:
        return time.time() - self.started_at if self.started_at else 0.0
