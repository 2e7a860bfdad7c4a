"""Tests for the operational CLI."""

import json
from decimal import Decimal
from uuid import uuid4

import pytest

from engagement_engine.cli import EngineCli
from engagement_engine.config import Settings


@pytest.fixture
def cli(tmp_path):
    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        gateway_backend="stub",
        gateway_api_key=None,
        gateway_timeout_seconds=10.0,
        gateway_max_retries=2,
        webhook_secret=None,
        platform_fee_rate=Decimal("0"),
    )
    return EngineCli(settings)


def output(capsys):
    return json.loads(capsys.readouterr().out)


class TestEngineCli:
    def test_no_command_prints_help(self, cli, capsys):
        assert cli.run([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_init_db_then_sweeps(self, cli, capsys):
        assert cli.run(["init-db"]) == 0
        assert output(capsys) == {"status": "ok", "command": "init-db"}

        for command in ("reconcile", "retry-unpaid", "replay-bookkeeping"):
            assert cli.run([command, "--limit", "10"]) == 0
            result = output(capsys)
            assert result["records_processed"] == 0
            assert result["errors"] == []

    def test_engine_errors_exit_nonzero(self, cli, capsys):
        cli.run(["init-db"])
        capsys.readouterr()

        work_item_id = uuid4()
        assert cli.run(["payment-status", "--work-item-id", str(work_item_id)]) == 1
        assert output(capsys)["code"] == "NOT_FOUND"

        assert cli.run(["release-hold", "--payment-record-id", str(uuid4())]) == 1
        assert output(capsys)["code"] == "NOT_FOUND"

    def test_invalid_uuid_is_rejected(self, cli):
        with pytest.raises(SystemExit):
            cli.run(["payment-status", "--work-item-id", "not-a-uuid"])
