"""
Backfill scanner.

Pages backward through the signatures mentioning the tracked mint,
decodes each page through the shared dispatcher and persists it as one
batch. Chainable: the returned ``last_cursor`` is the ``before`` of the
next scan.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from ..core.storage.base import IndexerStorage, StorageError
from ..processors.base import TransferRecord
from ..processors.transfer_parser import TransferParser
from .base import ConnectionError, LedgerClientBase, SignatureInfo
from .connection import LedgerConnectionManager
from .dispatcher import RateLimitedDispatcher

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    """Outcome of one backfill scan."""
    scanned: int = 0
    inserted: int = 0
    last_cursor: Optional[str] = None
    pages: int = 0
    failed_pages: int = 0
    skipped_failed: int = 0
    skipped_in_flight: int = 0
    fetch_errors: int = 0
    completed: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class BackfillScanner:
    """
    Sequential, paced historical scan.

    Shares the dispatcher with the realtime path so both stay under one
    concurrency bound, and the dedup window so a signature being decoded
    live is not fetched twice.
    """

    def __init__(
        self,
        connection: LedgerConnectionManager,
        dispatcher: RateLimitedDispatcher,
        parser: TransferParser,
        storage: IndexerStorage,
        address: str,
        batch_size: int = 20,
        page_delay: float = 2.0,
        retry_delay: float = 4.0,
        max_retries: int = 5,
        dedup=None,
    ):
        self.connection = connection
        self.dispatcher = dispatcher
        self.parser = parser
        self.storage = storage
        self.address = address
        self.batch_size = batch_size
        self.page_delay = page_delay
        self.retry_delay = retry_delay
        self.max_retries = max_retries
        self.dedup = dedup

    def _client(self) -> LedgerClientBase:
        client = self.connection.client
        if client is None:
            raise ConnectionError("No ledger client available")
        return client

    async def _list_page(self, before: Optional[str], limit: int) -> Optional[List[SignatureInfo]]:
        """List one page, retrying listing errors; None once retries run out."""
        attempt = 0
        while True:
            try:
                client = self._client()
                return await self.dispatcher.call(
                    client.get_signatures_for_address, self.address, before=before, limit=limit
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                attempt += 1
                if attempt > self.max_retries:
                    logger.error(f"Giving up listing signatures after {self.max_retries} retries: {e}")
                    return None
                logger.warning(
                    f"Error listing signatures (attempt {attempt}/{self.max_retries}), "
                    f"retrying in {self.retry_delay}s: {e}"
                )
                await asyncio.sleep(self.retry_delay)

    async def _decode(self, info: SignatureInfo, result: BackfillResult) -> List[TransferRecord]:
        signature = info.signature
        try:
            client = self._client()
            tx = await self.dispatcher.call(client.get_parsed_transaction, signature)
            return self.parser.parse(signature, tx) if tx else []
        except asyncio.CancelledError:
            raise
        except Exception as e:
            result.fetch_errors += 1
            if self.dedup is not None:
                self.dedup.discard(signature)
            logger.error(f"Error processing {signature[:16]}...: {e}")
            return []

    async def scan(
        self,
        max_count: int,
        before: Optional[str] = None,
        until_slot: Optional[int] = None,
    ) -> BackfillResult:
        """
        Scan up to ``max_count`` signatures older than ``before``.

        Args:
            max_count: Maximum number of signatures to scan
            before: Cursor; start below this signature (newest when None)
            until_slot: Stop once signatures at or below this slot show up

        Returns:
            BackfillResult: Counters and the cursor for the next scan
        """
        result = BackfillResult(last_cursor=before)
        cursor = before
        logger.info(f"Backfill starting: target {max_count} signatures")

        while result.scanned < max_count:
            limit = min(self.batch_size, max_count - result.scanned)
            page = await self._list_page(cursor, limit)
            if page is None:
                result.completed = False
                break
            if not page:
                logger.info("Backfill reached the end of history")
                break

            reached_boundary = False
            infos = page
            if until_slot is not None:
                infos = [info for info in page if info.slot > until_slot]
                reached_boundary = len(infos) < len(page)

            records: List[TransferRecord] = []
            claimed: List[str] = []
            for info in infos:
                if info.failed:
                    result.skipped_failed += 1
                    continue
                if self.dedup is not None:
                    if not self.dedup.add(info.signature):
                        result.skipped_in_flight += 1
                        continue
                    claimed.append(info.signature)
                records.extend(await self._decode(info, result))

            await self._persist_page(records, claimed, result)

            result.pages += 1
            result.scanned += len(infos)
            cursor = page[-1].signature
            result.last_cursor = cursor
            logger.info(f"Backfill progress: {result.scanned}/{max_count} signatures scanned")

            if reached_boundary:
                logger.info(f"Backfill reached checkpoint slot {until_slot}")
                break
            if result.scanned < max_count:
                await asyncio.sleep(self.page_delay)

        logger.info(
            f"Backfill complete: scanned {result.scanned} signatures, "
            f"inserted {result.inserted} transfers over {result.pages} pages"
        )
        return result

    async def _persist_page(
        self,
        records: List[TransferRecord],
        claimed: List[str],
        result: BackfillResult,
    ) -> None:
        if not records:
            return
        try:
            inserted = await self.storage.insert_batch(records)
        except StorageError as e:
            result.failed_pages += 1
            if self.dedup is not None:
                for signature in claimed:
                    self.dedup.discard(signature)
            logger.error(f"Backfill page of {len(records)} transfers not persisted: {e}")
            return

        result.inserted += inserted
        logger.info(f"Backfill batch: {len(records)} transfers found, {inserted} new inserted")

        try:
            await self.storage.set_checkpoint(max(record.slot for record in records))
        except StorageError as e:
            logger.warning(f"Checkpoint not advanced after backfill page: {e}")
