"""Shared test fixtures and sample data."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from models import Asset, BaseMarket, BorrowerSnapshot, Deployment, PurchasableCollateral, ScanResult, SubmissionContext
from rpc_manager import AsyncRPCManager

# Digit-only addresses are valid EIP-55 checksums as-is
COMET = "0x" + "1" * 40
LIQUIDATOR = "0x" + "2" * 40
ALICE = "0x" + "3" * 40
BOB = "0x" + "4" * 40
CAROL = "0x" + "5" * 40
WETH = "0x" + "6" * 40
WBTC = "0x" + "7" * 40
USDC = "0x" + "8" * 40
WETH_FEED = "0x" + "9" * 40
WBTC_FEED = "0x" + "0" * 39 + "1"
USDC_FEED = "0x" + "0" * 39 + "2"
PAIR_TOKEN = "0x" + "0" * 39 + "3"

BASE_SCALE = 10 ** 6
BASE_PRICE = 10 ** 8            # $1.00, 8 decimals
PROBE = 1000 * BASE_SCALE


@pytest.fixture()
def weth() -> Asset:
    return Asset(address=WETH, decimals=18, price_feed=WETH_FEED, liquidation_factor=93 * 10 ** 16, offset=0)


@pytest.fixture()
def wbtc() -> Asset:
    return Asset(address=WBTC, decimals=8, price_feed=WBTC_FEED, liquidation_factor=90 * 10 ** 16, offset=1)


@pytest.fixture()
def assets(weth: Asset, wbtc: Asset) -> tuple[Asset, ...]:
    return (weth, wbtc)


@pytest.fixture()
def base_market() -> BaseMarket:
    return BaseMarket(token=USDC, scale=BASE_SCALE, price_feed=USDC_FEED)


@pytest.fixture()
def deployment() -> Deployment:
    return Deployment(
        network="mainnet",
        name="usdc",
        comet=COMET,
        start_block=100,
        flash_loan_pair_token=PAIR_TOKEN,
        flash_loan_pool_fee=100,
    )


@pytest.fixture()
def direct_context(deployment: Deployment) -> SubmissionContext:
    return SubmissionContext(sender=ALICE, chain_id=1, deployment=deployment)


@pytest.fixture()
def rpc() -> AsyncRPCManager:
    """RPC manager whose provider is a mock; with_timeout stays real."""
    manager = AsyncRPCManager(["http://rpc1.example.com", "http://rpc2.example.com"], timeout=5)
    manager.w3 = MagicMock()
    manager.block_number = AsyncMock()
    manager.handle_error = AsyncMock(return_value=False)
    return manager


def purchasable(asset: Asset, reserves: int, oracle_price: int, discount_bps: int) -> PurchasableCollateral:
    """A purchasable entry whose probe quote sits `discount_bps` below the oracle price."""
    quote_amount = (PROBE * asset.scale * 10000 * BASE_PRICE) // (oracle_price * BASE_SCALE * (10000 - discount_bps))
    return PurchasableCollateral(
        asset=asset.address,
        quantity=reserves,
        quoted_price=PROBE * asset.scale // quote_amount,
        quote_amount=quote_amount,
        oracle_price=oracle_price,
    )


def scan_result(block_number: int = 100, accounts=(), entries=(), reserves: int = 0,
                target_reserves: int = 5_000_000 * BASE_SCALE, balance: int = 10_000 * BASE_SCALE) -> ScanResult:
    return ScanResult(
        block_number=block_number,
        underwater_accounts=tuple(accounts),
        purchasable=tuple(entries),
        protocol_reserves=reserves,
        target_reserves=target_reserves,
        base_price=BASE_PRICE,
        liquidator_balance=balance,
        probe_amount=PROBE,
        base_scale=BASE_SCALE,
    )


def borrower(account: str, liquidatable: bool, debt: int = 0, seizable=()) -> BorrowerSnapshot:
    return BorrowerSnapshot(account=account, is_liquidatable=liquidatable, seizable_assets=tuple(seizable), debt=debt)
