"""
Tests for the command line entry point.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from transfer_indexer import cli
from transfer_indexer.config import ConfigError, ConfigManager
from transfer_indexer.ledger.tests.fakes import signature_history
from transfer_indexer.processors.tests.fixtures import simple_transfer_tx


@pytest.fixture
def config():
    manager = ConfigManager()
    manager.database.STORAGE_BACKEND = "memory"
    return manager


class TestArgumentParsing:
    """Test subcommands and options."""

    def test_backfill_options(self):
        args = cli.build_parser().parse_args(
            ["backfill", "--max-count", "45", "--before", "abc", "--until-slot", "7"]
        )
        assert (args.command, args.max_count, args.before, args.until_slot) == ("backfill", 45, "abc", 7)

    @pytest.mark.parametrize("command", ["run", "check", "init-db"])
    def test_commands(self, command):
        assert cli.build_parser().parse_args([command]).command == command

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])

    def test_non_positive_max_count(self):
        assert cli.main(["backfill", "--max-count", "0"]) == 2

    def test_invalid_configuration_exits_1(self):
        with patch("transfer_indexer.cli.get_config", side_effect=ConfigError("bad")):
            assert cli.main(["init-db"]) == 1


class TestCommands:
    """Run commands against the in-memory store and a scripted node."""

    @pytest.mark.asyncio
    async def test_init_db(self, config):
        assert await cli.run_init_db(config) == 0

    @pytest.mark.asyncio
    async def test_backfill(self, config, indexer, ledger_client):
        ledger_client.history = signature_history(30, newest_slot=5_000)
        ledger_client.transactions = {
            i.signature: simple_transfer_tx(slot=i.slot) for i in ledger_client.history
        }

        with patch("transfer_indexer.cli.TransferIndexer.from_config", return_value=indexer):
            assert await cli.run_backfill(config, 25) == 0

        assert len(indexer.storage.transfers) == 25

    @pytest.mark.asyncio
    async def test_backfill_startup_failure(self, config, indexer, ledger_client):
        ledger_client.fail_connect = True

        with patch("transfer_indexer.cli.TransferIndexer.from_config", return_value=indexer):
            assert await cli.run_backfill(config, 25) == 1

    @pytest.mark.asyncio
    async def test_check(self, config, indexer, ledger_client):
        ledger_client.history = signature_history(3)
        ledger_client.transactions = {"sig0001": simple_transfer_tx()}

        with patch("transfer_indexer.cli.TransferIndexer.from_config", return_value=indexer):
            assert await cli.run_check(config) == 0

    @pytest.mark.asyncio
    async def test_run_fails_fast_on_startup_error(self, config, indexer):
        indexer.initialize = AsyncMock(side_effect=cli.StartupError("no node"))

        with patch("transfer_indexer.cli.TransferIndexer.from_config", return_value=indexer):
            assert await cli.run_indexer(config) == 1

    @pytest.mark.asyncio
    async def test_stop_signal_cancels_startup_backfill(self, config, indexer, ledger_client):
        ledger_client.history = signature_history(100, newest_slot=5_000)
        ledger_client.transactions = {
            i.signature: simple_transfer_tx(slot=i.slot) for i in ledger_client.history
        }
        indexer.scanner.page_delay = 30
        config.indexer.BACKFILL_ON_START = True
        health = MagicMock(start=AsyncMock(), stop=AsyncMock())
        stop = asyncio.Event()
        asyncio.get_running_loop().call_later(0.1, stop.set)

        with patch("transfer_indexer.cli.TransferIndexer.from_config", return_value=indexer), \
                patch("transfer_indexer.cli.HealthServer", return_value=health):
            assert await asyncio.wait_for(cli.run_indexer(config, stop_event=stop), timeout=5) == 0

        assert len(indexer.storage.transfers) == 20
        assert indexer.running is False
        health.stop.assert_awaited_once()
