"""Tests for deployment resolution."""
from __future__ import annotations

import pytest
from web3 import Web3

from deployments import DEPLOYMENTS, resolve
from errors import ConfigError
from tests.conftest import COMET, PAIR_TOKEN


class TestResolve:
    def test_known_deployment(self) -> None:
        deployment = resolve("mainnet", "usdc")
        comet, start_block, pair_token, pool_fee = DEPLOYMENTS[("mainnet", "usdc")]

        assert deployment.comet == Web3.to_checksum_address(comet)
        assert deployment.start_block == start_block
        assert deployment.flash_loan_pair_token == Web3.to_checksum_address(pair_token)
        assert deployment.flash_loan_pool_fee == pool_fee

    def test_unknown_deployment(self) -> None:
        with pytest.raises(ConfigError, match="no deployed Comet found for mainnet/doge"):
            resolve("mainnet", "doge")

    def test_override_requires_flash_loan_settings(self) -> None:
        with pytest.raises(ConfigError, match="FLASH_LOAN_PAIR_TOKEN"):
            resolve("base", "usdbc", comet_override=COMET)

    def test_full_override(self) -> None:
        deployment = resolve("base", "usdbc", comet_override=COMET.lower(),
                             pair_token_override=PAIR_TOKEN, pool_fee_override=3000, start_block_override=7)

        assert deployment.comet == COMET
        assert deployment.flash_loan_pool_fee == 3000
        assert deployment.start_block == 7

    def test_override_keeps_known_flash_loan_settings(self) -> None:
        deployment = resolve("mainnet", "usdc", comet_override=COMET)

        assert deployment.comet == COMET
        assert deployment.flash_loan_pool_fee == DEPLOYMENTS[("mainnet", "usdc")][3]

    def test_invalid_override_address(self) -> None:
        with pytest.raises(ConfigError, match="COMET_ADDRESS"):
            resolve("base", "usdbc", comet_override="0xnope", pair_token_override=PAIR_TOKEN, pool_fee_override=1)
