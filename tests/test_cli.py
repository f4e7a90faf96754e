"""
Tests for the command line interface.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from coinforward.cli import app
from coinforward.constants import USAGE
from coinforward.network import NetworkType


@pytest.fixture
def runner():
    return CliRunner()


class TestArguments:
    def test_no_arguments(self, runner):
        result = runner.invoke(app, [])
        assert result.exit_code == 1
        assert USAGE in result.output

    def test_too_many_arguments(self, runner, regtest_destination):
        result = runner.invoke(app, [regtest_destination, "regtest", "extra"])
        assert result.exit_code == 1
        assert USAGE in result.output

    def test_unknown_network(self, runner, regtest_destination):
        result = runner.invoke(app, [regtest_destination, "dogecoin"])
        assert result.exit_code == 1
        assert USAGE in result.output

    def test_network_mismatch(self, runner, regtest_destination):
        result = runner.invoke(app, [regtest_destination, "mainnet"])
        assert result.exit_code == 1

    def test_malformed_address(self, runner):
        result = runner.invoke(app, ["garbage"])
        assert result.exit_code == 1
        assert USAGE in result.output

    def test_invalid_confirmations(self, runner, regtest_destination):
        result = runner.invoke(app, [regtest_destination, "--confirmations", "0"])
        assert result.exit_code == 1
        assert USAGE in result.output

    def test_invalid_fee_rate(self, runner, regtest_destination):
        result = runner.invoke(app, [regtest_destination, "--fee-rate", "0"])
        assert result.exit_code == 1
        assert USAGE in result.output


class TestStart:
    @pytest.fixture
    def service_cls(self):
        with patch("coinforward.cli.ForwardingService") as service_cls:
            service = service_cls.return_value
            # Stop as if interrupted right after start-up
            service.run = AsyncMock(side_effect=KeyboardInterrupt)
            service.close = AsyncMock()
            yield service_cls

    def test_starts_service_with_options(self, runner, service_cls, regtest_destination, tmp_path):
        result = runner.invoke(
            app,
            [
                regtest_destination,
                "regtest",
                "--data-dir",
                str(tmp_path),
                "--confirmations",
                "3",
                "--fee-rate",
                "5",
            ],
        )

        assert result.exit_code == 0
        destination, network, config = service_cls.call_args.args
        assert destination == regtest_destination
        assert network == "regtest"
        assert config.data_dir == tmp_path
        assert config.required_confirmations == 3
        assert config.fee_rate == 5
        service_cls.return_value.run.assert_awaited_once()

    def test_rpc_settings_from_environment(self, runner, service_cls, regtest_destination):
        result = runner.invoke(
            app,
            [regtest_destination],
            env={
                "BITCOIN_RPC_URL": "http://node:18443",
                "BITCOIN_RPC_USER": "alice",
                "BITCOIN_RPC_PASSWORD": "secret",
            },
        )

        assert result.exit_code == 0
        _, network, config = service_cls.call_args.args
        assert network is None
        assert config.rpc_url == "http://node:18443"
        assert config.rpc_user == "alice"
        assert config.rpc_password == "secret"

    def test_backend_failure_exits_nonzero(self, runner, service_cls, regtest_destination):
        service_cls.return_value.run = AsyncMock(side_effect=ValueError("connection refused"))
        result = runner.invoke(app, [regtest_destination])
        assert result.exit_code == 1
        service_cls.return_value.close.assert_awaited_once()


def test_network_names_in_usage():
    for network in NetworkType:
        assert network.value in USAGE
