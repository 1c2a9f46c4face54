"""Tests for environment configuration loading."""
from __future__ import annotations

from decimal import Decimal

import pytest

from errors import ConfigError
from settings import RELAY_ENDPOINTS, load_config
from tests.conftest import LIQUIDATOR


def base_env(**overrides) -> dict:
    env = {
        "LIQUIDATOR_ADDRESS": LIQUIDATOR,
        "DEPLOYMENT": "usdc",
        "RPC_URL": "http://localhost:8545",
    }
    env.update(overrides)
    return env


class TestRequiredVariables:
    @pytest.mark.parametrize("missing", ["LIQUIDATOR_ADDRESS", "DEPLOYMENT", "RPC_URL"])
    def test_missing_variable_raises(self, missing: str) -> None:
        env = base_env()
        del env[missing]

        with pytest.raises(ConfigError, match=missing):
            load_config(env)

    def test_flashbots_requires_private_key(self) -> None:
        with pytest.raises(ConfigError, match="ETH_PK"):
            load_config(base_env(USE_FLASHBOTS="true"))

    def test_invalid_liquidator_address(self) -> None:
        with pytest.raises(ConfigError, match="LIQUIDATOR_ADDRESS"):
            load_config(base_env(LIQUIDATOR_ADDRESS="0x1234"))


class TestRelaySelection:
    def test_unsupported_network_with_flashbots(self) -> None:
        env = base_env(USE_FLASHBOTS="true", ETH_PK="0x" + "11" * 32, NETWORK="polygon")

        with pytest.raises(ConfigError, match="Unsupported network: polygon"):
            load_config(env)

    def test_mainnet_relay(self) -> None:
        config = load_config(base_env(USE_FLASHBOTS="TRUE", ETH_PK="0x" + "11" * 32))

        assert config.use_flashbots is True
        assert config.relay_url == RELAY_ENDPOINTS["mainnet"]

    def test_direct_mode_on_any_network(self) -> None:
        config = load_config(base_env(NETWORK="Polygon"))

        assert config.network == "polygon"
        assert config.use_flashbots is False
        assert config.relay_url is None
        assert config.expected_chain_id == 137

    @pytest.mark.parametrize("value", ["1", "yes", "", "false"])
    def test_only_true_enables_flashbots(self, value: str) -> None:
        assert load_config(base_env(USE_FLASHBOTS=value)).use_flashbots is False


class TestDefaults:
    def test_defaults(self) -> None:
        config = load_config(base_env())

        assert config.network == "mainnet"
        assert config.loop_delay == 5.0
        assert config.loops_until_update_assets == 1000
        assert config.multicall_batch_size == 500
        assert config.fallback_rpcs == ()
        assert config.arb_min_profit_base == Decimal("5")
        assert config.log_format == "text"

    def test_overrides(self) -> None:
        config = load_config(base_env(
            LOOP_DELAY_MS="250",
            LOOPS_UNTIL_UPDATE_ASSETS="10",
            FALLBACK_RPCS="'http://a', http://b ,",
            MAX_GAS_PRICE_GWEI="55.5",
            LOG_LEVEL="debug",
        ))

        assert config.loop_delay == 0.25
        assert config.loops_until_update_assets == 10
        assert config.fallback_rpcs == ("http://a", "http://b")
        assert config.max_gas_price_gwei == Decimal("55.5")
        assert config.log_level == "DEBUG"

    def test_invalid_number(self) -> None:
        with pytest.raises(ConfigError, match="LOOP_DELAY_MS"):
            load_config(base_env(LOOP_DELAY_MS="soon"))

    def test_invalid_log_format(self) -> None:
        with pytest.raises(ConfigError, match="LOG_FORMAT"):
            load_config(base_env(LOG_FORMAT="xml"))

    def test_private_key_hidden_from_repr(self) -> None:
        pk = "0x" + "11" * 32
        config = load_config(base_env(ETH_PK=pk))

        assert pk not in repr(config)
