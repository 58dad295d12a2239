# -*- encoding: utf-8 -*-
"""
Tests for the CLI commands that do not need a chain: configuration errors,
info output and the prune maintenance command against a SQLite store file.
"""

import pytest

from superbridge_relayer.cli import main
from superbridge_relayer.events import TransferRecord
from superbridge_relayer.service import DEFAULTS
from superbridge_relayer.store import SQLiteRecordStore
from tests.conftest import L1_CONTRACT_ADDRESS, L2_CONTRACT_ADDRESS, PAYOUT_KEY


@pytest.fixture
def sqlite_env(monkeypatch, tmp_path):
    for key in DEFAULTS:
        monkeypatch.delenv(key, raising=False)
    db_path = tmp_path / "bridged_events.db"
    env = {
        "PRIVATE_KEY": PAYOUT_KEY,
        "ETHEREUM_RPC_URL": "http://127.0.0.1:8545",
        "L2_RPC_URL": "http://127.0.0.1:9545",
        "SUPERBRIDGE_L2_ADDRESS": L2_CONTRACT_ADDRESS,
        "SUPERBRIDGE_L1_ADDRESS": L1_CONTRACT_ADDRESS,
        "RECORD_STORE": "sqlite",
        "SQLITE_PATH": str(db_path),
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return db_path


def _populate(db_path, count):
    store = SQLiteRecordStore(db_path)
    for i in range(count):
        store.insert(TransferRecord(
            tx_id=f"0x{i:064x}",
            address="0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
            bridged_amount=100,
            status="pending",
            block_number=100 + i,
            timestamp=1,
        ))
    store.close()


class TestConfigErrors:

    def test_missing_config_exits_non_zero(self, monkeypatch, capsys, tmp_path):
        monkeypatch.chdir(tmp_path)
        for key in DEFAULTS:
            monkeypatch.delenv(key, raising=False)
        with pytest.raises(SystemExit) as excinfo:
            main(["info"])
        assert excinfo.value.code == 1
        assert "PRIVATE_KEY is required" in capsys.readouterr().err


class TestInfo:

    def test_prints_payout_address(self, sqlite_env, capsys):
        main(["info"])
        out = capsys.readouterr().out
        assert "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266" in out
        assert "(completion disabled)" in out


class TestPrune:

    def test_dry_run_deletes_nothing(self, sqlite_env, capsys):
        _populate(sqlite_env, 3)
        main(["prune", "--count", "2"])
        out = capsys.readouterr().out
        assert "Found 2 rows to delete" in out
        assert "Dry run" in out
        store = SQLiteRecordStore(sqlite_env)
        assert len(store.select_oldest(10)) == 3
        store.close()

    def test_yes_deletes_oldest_rows(self, sqlite_env, capsys):
        _populate(sqlite_env, 3)
        main(["prune", "--count", "2", "--yes"])
        assert "Deleted 2 rows" in capsys.readouterr().out
        store = SQLiteRecordStore(sqlite_env)
        remaining = store.select_oldest(10)
        store.close()
        assert [r.block_number for r in remaining] == [102]

    def test_empty_store(self, sqlite_env, capsys):
        main(["prune"])
        assert "Found 0 rows to delete" in capsys.readouterr().out
