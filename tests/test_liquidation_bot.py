"""Tests for startup wiring and exit codes."""
from __future__ import annotations

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import liquidation_bot
from errors import ConfigError
from settings import load_config
from tests.conftest import LIQUIDATOR


def env(**overrides) -> dict:
    values = {"LIQUIDATOR_ADDRESS": LIQUIDATOR, "DEPLOYMENT": "usdc", "RPC_URL": "http://localhost:8545"}
    values.update(overrides)
    return values


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch("liquidation_bot.configure_logging"):
        yield


class TestMain:
    def test_missing_env_exits_before_network(self) -> None:
        with patch("liquidation_bot.AsyncRPCManager") as manager:
            assert liquidation_bot.main({"DEPLOYMENT": "usdc"}) == 1
        manager.assert_not_called()

    def test_unsupported_relay_network_exits_before_network(self) -> None:
        bad = env(USE_FLASHBOTS="true", ETH_PK="0x" + "11" * 32, NETWORK="polygon")

        with patch("liquidation_bot.AsyncRPCManager") as manager:
            assert liquidation_bot.main(bad) == 1
        manager.assert_not_called()

    def test_unknown_deployment_exits(self) -> None:
        with patch("liquidation_bot.AsyncRPCManager") as manager:
            assert liquidation_bot.main(env(DEPLOYMENT="doge")) == 1
        manager.assert_not_called()

    def test_runtime_crash_is_not_reported_as_startup(self, caplog) -> None:
        scheduler = MagicMock(alerter=None)
        scheduler.run_forever = AsyncMock(side_effect=RuntimeError("event loop wedged"))

        with patch("liquidation_bot.build_bot", new=AsyncMock(return_value=scheduler)):
            with caplog.at_level(logging.ERROR, logger="LiquidationBot"):
                assert liquidation_bot.main(env()) == 1

        assert "crashed while running" in caplog.text
        assert "Fatal startup error" not in caplog.text


class TestBuildContext:
    @pytest.mark.asyncio
    async def test_chain_id_mismatch(self, rpc, deployment) -> None:
        rpc.chain_id = AsyncMock(return_value=137)

        with pytest.raises(ConfigError, match="chain id 137"):
            await liquidation_bot.build_context(rpc, load_config(env()), deployment)

    @pytest.mark.asyncio
    async def test_relay_mode_uses_fresh_auth_identity(self, rpc, deployment) -> None:
        rpc.chain_id = AsyncMock(return_value=1)
        pk = "0x" + "11" * 32

        context = await liquidation_bot.build_context(rpc, load_config(env(USE_FLASHBOTS="true", ETH_PK=pk)), deployment)

        assert context.uses_relay
        assert context.relay.url == "https://relay.flashbots.net"
        assert context.relay.auth_address != context.sender
        assert context.sender == context.signer.address

    @pytest.mark.asyncio
    async def test_node_account_fallback(self, rpc, deployment) -> None:
        rpc.chain_id = AsyncMock(return_value=1)
        rpc.w3.eth.accounts = AsyncMock(return_value=[LIQUIDATOR])()

        context = await liquidation_bot.build_context(rpc, load_config(env()), deployment)

        assert context.signer is None
        assert context.relay is None
        assert context.sender == LIQUIDATOR
