"""
PostgreSQL storage implementation for the transfer indexer.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import asyncpg
from asyncpg.pool import Pool

from ...processors.base import TransferRecord
from .base import (
    CHECKPOINT_KEY,
    ConnectionError,
    DataError,
    IndexerStorage,
    StorageError,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS transfers (
        signature       TEXT NOT NULL,
        transfer_index  INTEGER NOT NULL,
        from_address    TEXT NOT NULL,
        to_address      TEXT NOT NULL,
        amount_raw      NUMERIC(39, 0) NOT NULL,
        amount_display  NUMERIC(38, 12) NOT NULL,
        token_mint      TEXT NOT NULL,
        block_time      TIMESTAMPTZ NOT NULL,
        slot            BIGINT NOT NULL,
        created_at      TIMESTAMPTZ DEFAULT NOW(),
        PRIMARY KEY (signature, transfer_index)
    );
    CREATE INDEX IF NOT EXISTS idx_transfers_from ON transfers(from_address, block_time DESC);
    CREATE INDEX IF NOT EXISTS idx_transfers_to ON transfers(to_address, block_time DESC);
    CREATE INDEX IF NOT EXISTS idx_transfers_slot ON transfers(slot DESC);

    CREATE TABLE IF NOT EXISTS indexer_state (
        key         TEXT PRIMARY KEY,
        value       TEXT NOT NULL,
        updated_at  TIMESTAMPTZ DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS wallet_stats (
        address                   TEXT PRIMARY KEY,
        total_transactions        BIGINT NOT NULL DEFAULT 0,
        transactions_as_sender    BIGINT NOT NULL DEFAULT 0,
        transactions_as_receiver  BIGINT NOT NULL DEFAULT 0,
        total_volume_usd          NUMERIC(38, 12) NOT NULL DEFAULT 0,
        volume_sent_usd           NUMERIC(38, 12) NOT NULL DEFAULT 0,
        volume_received_usd       NUMERIC(38, 12) NOT NULL DEFAULT 0,
        unique_counterparties     BIGINT NOT NULL DEFAULT 0,
        first_seen                TIMESTAMPTZ,
        last_seen                 TIMESTAMPTZ,
        updated_at                TIMESTAMPTZ DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS wallet_counterparties (
        address       TEXT NOT NULL,
        counterparty  TEXT NOT NULL,
        PRIMARY KEY (address, counterparty)
    );
"""

INSERT_TRANSFER_SQL = """
    INSERT INTO transfers (signature, transfer_index, from_address, to_address,
                           amount_raw, amount_display, token_mint, block_time, slot)
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
    ON CONFLICT (signature, transfer_index) DO NOTHING
    RETURNING 1
"""

UPSERT_WALLET_STATS_SQL = """
    INSERT INTO wallet_stats (address, total_transactions, transactions_as_sender,
                              transactions_as_receiver, total_volume_usd, volume_sent_usd,
                              volume_received_usd, first_seen, last_seen, updated_at)
    VALUES ($1, 1, $2, $3, $4, $5, $6, $7, $7, NOW())
    ON CONFLICT (address) DO UPDATE SET
        total_transactions = wallet_stats.total_transactions + 1,
        transactions_as_sender = wallet_stats.transactions_as_sender + EXCLUDED.transactions_as_sender,
        transactions_as_receiver = wallet_stats.transactions_as_receiver + EXCLUDED.transactions_as_receiver,
        total_volume_usd = wallet_stats.total_volume_usd + EXCLUDED.total_volume_usd,
        volume_sent_usd = wallet_stats.volume_sent_usd + EXCLUDED.volume_sent_usd,
        volume_received_usd = wallet_stats.volume_received_usd + EXCLUDED.volume_received_usd,
        first_seen = LEAST(wallet_stats.first_seen, EXCLUDED.first_seen),
        last_seen = GREATEST(wallet_stats.last_seen, EXCLUDED.last_seen),
        updated_at = NOW()
"""

INSERT_COUNTERPARTIES_SQL = """
    INSERT INTO wallet_counterparties (address, counterparty)
    VALUES ($1, $2), ($2, $1)
    ON CONFLICT (address, counterparty) DO NOTHING
    RETURNING address
"""

BUMP_COUNTERPARTIES_SQL = """
    UPDATE wallet_stats
    SET unique_counterparties = unique_counterparties + 1
    WHERE address = ANY($1::text[])
"""

GET_CHECKPOINT_SQL = "SELECT value FROM indexer_state WHERE key = $1 LIMIT 1"

SET_CHECKPOINT_SQL = """
    INSERT INTO indexer_state (key, value, updated_at)
    VALUES ($1, $2, NOW())
    ON CONFLICT (key) DO UPDATE
        SET value = EXCLUDED.value, updated_at = NOW()
        WHERE indexer_state.value::BIGINT < EXCLUDED.value::BIGINT
    RETURNING value
"""

# Failures meaning "the store is not reachable" rather than "the statement is bad"
_UNREACHABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.InterfaceError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
)


def _wrap_error(action: str, e: Exception) -> StorageError:
    # asyncpg's client-side DataError is an InterfaceError and a ValueError
    if isinstance(e, _UNREACHABLE_ERRORS) and not isinstance(e, ValueError):
        return ConnectionError(f"{action} failed, PostgreSQL unreachable: {e}")
    return DataError(f"{action} failed: {e}")


class PostgresStorage(IndexerStorage):
    """
    PostgreSQL storage implementation supporting async operations.

    Schema:
    - transfers: one row per (signature, transfer_index)
    - indexer_state: key/value rows, holds the slot checkpoint
    - wallet_stats / wallet_counterparties: per-party running totals
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize PostgreSQL storage.

        Args:
            config: Configuration with keys:
                - dsn: PostgreSQL connection URL
                - pool_size: Connection pool size (default: 10)
                - pool_timeout: Pool/connect timeout in seconds (default: 10)
                - command_timeout: Statement timeout in seconds (default: 60)
        """
        super().__init__(config)
        self.pool: Optional[Pool] = None
        self.pool_size = config.get("pool_size", 10)
        self.pool_timeout = config.get("pool_timeout", 10)
        self.command_timeout = config.get("command_timeout", 60)

    async def connect(self) -> None:
        """Establish connection pool to PostgreSQL."""
        try:
            self.pool = await asyncpg.create_pool(
                self.config["dsn"],
                min_size=1,
                max_size=self.pool_size,
                timeout=self.pool_timeout,
                command_timeout=self.command_timeout,
            )
            self.is_connected = True
            logger.info("PostgreSQL connection pool established")

        except Exception as e:
            logger.error(f"Failed to connect to PostgreSQL: {e}")
            raise ConnectionError(f"PostgreSQL connection failed: {e}")

    async def disconnect(self) -> None:
        """Close connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.is_connected = False
            logger.info("PostgreSQL connection pool closed")

    async def health_check(self) -> bool:
        """Check PostgreSQL connection health."""
        if not self.pool:
            return False

        try:
            async with self.pool.acquire(timeout=self.pool_timeout) as conn:
                result = await conn.fetchval("SELECT 1")
                return result == 1
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    def _require_pool(self) -> Pool:
        if not self.pool:
            raise ConnectionError("Not connected to PostgreSQL")
        return self.pool

    async def ensure_schema(self) -> None:
        """Create indexer tables and indexes if they do not exist."""
        pool = self._require_pool()
        try:
            async with pool.acquire(timeout=self.pool_timeout) as conn:
                await conn.execute(SCHEMA_SQL)
            logger.info("PostgreSQL schema verified")
        except Exception as e:
            logger.error(f"Failed to create schema: {e}")
            raise _wrap_error("Schema creation", e)

    # Transfer storage

    async def insert_batch(self, records: Sequence[TransferRecord]) -> int:
        """
        Insert transfers and update wallet aggregates in one transaction.

        Args:
            records: Transfer records to insert

        Returns:
            int: Number of newly created transfer rows
        """
        if not records:
            return 0

        pool = self._require_pool()
        inserted = 0
        try:
            async with pool.acquire(timeout=self.pool_timeout) as conn:
                async with conn.transaction():
                    for record in records:
                        created = await conn.fetchval(INSERT_TRANSFER_SQL, *record.to_row())
                        if not created:
                            continue
                        await self._apply_aggregates(conn, record)
                        inserted += 1
        except Exception as e:
            logger.error(f"Batch insert of {len(records)} transfers rolled back: {e}")
            raise _wrap_error("Batch insert", e)

        return inserted

    async def _apply_aggregates(self, conn, record: TransferRecord) -> None:
        """Per-party running totals for one newly created transfer row."""
        amount = record.amount_display
        if record.from_address == record.to_address:
            await conn.execute(
                UPSERT_WALLET_STATS_SQL,
                record.from_address, 1, 1, amount, amount, amount, record.block_time,
            )
            return

        await conn.execute(
            UPSERT_WALLET_STATS_SQL,
            record.from_address, 1, 0, amount, amount, 0, record.block_time,
        )
        await conn.execute(
            UPSERT_WALLET_STATS_SQL,
            record.to_address, 0, 1, amount, 0, amount, record.block_time,
        )

        rows = await conn.fetch(INSERT_COUNTERPARTIES_SQL, record.from_address, record.to_address)
        new_pairs: List[str] = [row["address"] for row in rows]
        if new_pairs:
            await conn.execute(BUMP_COUNTERPARTIES_SQL, new_pairs)

    async def count_transfers(self) -> int:
        """Total number of stored transfer rows."""
        pool = self._require_pool()
        try:
            async with pool.acquire(timeout=self.pool_timeout) as conn:
                return int(await conn.fetchval("SELECT COUNT(*) FROM transfers"))
        except Exception as e:
            logger.error(f"Failed to count transfers: {e}")
            raise _wrap_error("Transfer count", e)

    # Checkpoint

    async def get_checkpoint(self) -> Optional[int]:
        """Get the stored slot checkpoint."""
        pool = self._require_pool()
        try:
            async with pool.acquire(timeout=self.pool_timeout) as conn:
                value = await conn.fetchval(GET_CHECKPOINT_SQL, CHECKPOINT_KEY)
        except Exception as e:
            logger.error(f"Failed to get checkpoint: {e}")
            raise _wrap_error("Checkpoint read", e)

        return int(value) if value else None

    async def set_checkpoint(self, slot: int) -> bool:
        """Advance the checkpoint; lower or equal slots are ignored."""
        pool = self._require_pool()
        try:
            async with pool.acquire(timeout=self.pool_timeout) as conn:
                value = await conn.fetchval(SET_CHECKPOINT_SQL, CHECKPOINT_KEY, str(int(slot)))
        except Exception as e:
            logger.error(f"Failed to update checkpoint to {slot}: {e}")
            raise _wrap_error("Checkpoint update", e)

        return value is not None
