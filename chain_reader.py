import json
import logging
import os
import time
from typing import List, Sequence, Tuple

import aiofiles
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from hexbytes import HexBytes
from web3 import Web3

from abis import COMET_ABI, ERC20_ABI, MULTICALL3_ABI, MULTICALL3_ADDRESS, OUTPUT_TYPES
from errors import ChainReadError
from models import Asset, BaseMarket, BorrowerSnapshot, PurchasableCollateral, ScanResult

logger = logging.getLogger("ChainStateReader")

# Comet emits Withdraw(src, to, amount) for every base withdrawal, which includes every borrow
WITHDRAW_TOPIC = Web3.to_hex(Web3.keccak(text="Withdraw(address,address,uint256)"))

GLOBAL_CALLS = 4     # getReserves, targetReserves, base price, liquidator balance
CALLS_PER_ACCOUNT = 2
CALLS_PER_ASSET = 3


class BorrowerIndex:
    """Accounts that have ever borrowed from the market, discovered from Withdraw logs.

    Persisted to a JSON file so a restart resumes from the last synced block
    instead of rescanning the market's whole history.
    """

    def __init__(self, rpc, comet_address, start_block=0, path="borrowers.json", chunk_size=2000):
        self.rpc = rpc
        self.comet_address = comet_address
        self.path = path
        self.chunk_size = max(1, int(chunk_size))
        self.last_block = start_block - 1
        self.borrowers: List[str] = []
        self._known = set()

    def add(self, account):
        account = Web3.to_checksum_address(account)
        if account in self._known:
            return False
        self._known.add(account)
        self.borrowers.append(account)
        return True

    async def load(self):
        """Loads the cache file. Missing or unreadable files start fresh."""
        if not self.path or not os.path.exists(self.path):
            return
        try:
            async with aiofiles.open(self.path, mode="r") as f:
                content = await f.read()
            data = json.loads(content)
            for account in data.get("borrowers", []):
                self.add(account)
            self.last_block = max(self.last_block, int(data.get("last_block", self.last_block)))
            logger.info(f"📂 Loaded {len(self.borrowers)} borrowers (synced to block {self.last_block})")
        except (OSError, ValueError, TypeError, AttributeError) as e:
            logger.warning(f"⚠️ Failed to load borrowers from {self.path}: {e}")

    async def save(self):
        if not self.path:
            return
        tmp_path = f"{self.path}.tmp"
        payload = json.dumps({"last_block": self.last_block, "borrowers": self.borrowers})
        async with aiofiles.open(tmp_path, mode="w") as f:
            await f.write(payload)
        os.replace(tmp_path, self.path)

    async def sync(self, to_block):
        """Scans Withdraw logs from the last synced block up to to_block. Returns new borrower count."""
        if to_block <= self.last_block:
            return 0

        new = 0
        start = self.last_block + 1
        try:
            while start <= to_block:
                end = min(start + self.chunk_size - 1, to_block)
                logs = await self.rpc.with_timeout(self.rpc.w3.eth.get_logs({
                    "address": self.comet_address,
                    "fromBlock": start,
                    "toBlock": end,
                    "topics": [WITHDRAW_TOPIC],
                }))
                for log in logs:
                    topics = log["topics"]
                    if len(topics) < 2:
                        continue
                    src = "0x" + Web3.to_hex(topics[1])[-40:]
                    if self.add(src):
                        new += 1
                self.last_block = end
                start = end + 1
        except Exception as e:
            raise ChainReadError(f"borrower discovery failed at block {start}: {e}") from e

        try:
            await self.save()
        except OSError as e:
            logger.warning(f"⚠️ Failed to persist borrowers: {e}")

        if new:
            logger.info(f"👤 Discovered {new} new borrowers (total {len(self.borrowers)})")
        return new


def _decode(kind, success, raw):
    """Decodes one Multicall3 sub-result. Returns None for a failed or empty sub-call."""
    if not success or not raw:
        return None
    try:
        return decode(OUTPUT_TYPES[kind], bytes(raw))
    except DecodingError:
        return None


class ChainStateReader:
    """Reads everything one decision needs, pinned to a single block."""

    def __init__(self, rpc, comet_address, base: BaseMarket, liquidator_address, registry,
                 borrowers: BorrowerIndex, probe_amount, batch_size=500,
                 multicall_address=MULTICALL3_ADDRESS):
        self.rpc = rpc
        self.comet_address = comet_address
        self.base = base
        self.liquidator_address = liquidator_address
        self.registry = registry
        self.borrowers = borrowers
        self.probe_amount = int(probe_amount)
        self.batch_size = max(1, int(batch_size))
        self.multicall_address = Web3.to_checksum_address(multicall_address)
        self._contracts_w3 = None
        self._contracts = None

    def contracts(self):
        """Contract handles bound to the RPC manager's current provider."""
        w3 = self.rpc.w3
        if self._contracts is None or self._contracts_w3 is not w3:
            self._contracts = (
                w3.eth.contract(address=self.comet_address, abi=COMET_ABI),
                w3.eth.contract(address=self.multicall_address, abi=MULTICALL3_ABI),
                w3.eth.contract(address=self.base.token, abi=ERC20_ABI),
            )
            self._contracts_w3 = w3
        return self._contracts

    def build_calls(self, accounts: Sequence[str], assets: Sequence[Asset]) -> List[Tuple[str, str, bytes]]:
        comet, _, base_token = self.contracts()
        fns = comet.functions

        def encoded(kind, target, fn):
            return kind, target, HexBytes(fn._encode_transaction_data())

        calls = [
            encoded("getReserves", comet.address, fns.getReserves()),
            encoded("targetReserves", comet.address, fns.targetReserves()),
            encoded("getPrice", comet.address, fns.getPrice(self.base.price_feed)),
            encoded("balanceOf", base_token.address, base_token.functions.balanceOf(self.liquidator_address)),
        ]
        for account in accounts:
            calls.append(encoded("isLiquidatable", comet.address, fns.isLiquidatable(account)))
            calls.append(encoded("userBasic", comet.address, fns.userBasic(account)))
        for asset in assets:
            calls.append(encoded("getCollateralReserves", comet.address, fns.getCollateralReserves(asset.address)))
            calls.append(encoded("quoteCollateral", comet.address, fns.quoteCollateral(asset.address, self.probe_amount)))
            calls.append(encoded("getPrice", comet.address, fns.getPrice(asset.price_feed)))
        return calls

    async def read_snapshot(self, block_number, accounts, assets):
        """Raw (kind, success, returnData) for every call, all evaluated at block_number.

        Calls are split into Multicall3 batches to stay under the node's eth_call
        gas cap; every batch is pinned to the same block so results stay consistent.
        """
        calls = self.build_calls(accounts, assets)
        _, multicall, _ = self.contracts()
        results = []
        for i in range(0, len(calls), self.batch_size):
            batch = calls[i:i + self.batch_size]
            returned = await self.rpc.with_timeout(
                multicall.functions.tryAggregate(False, [(target, data) for _, target, data in batch])
                .call(block_identifier=block_number)
            )
            if len(returned) != len(batch):
                raise ChainReadError(
                    f"multicall returned {len(returned)} results for {len(batch)} calls at block {block_number}"
                )
            results.extend((kind, success, raw) for (kind, _, _), (success, raw) in zip(batch, returned))
        return results

    async def scan(self, block_number) -> ScanResult:
        start_time = time.time()
        assets = self.registry.assets
        try:
            await self.borrowers.sync(block_number)
            accounts = list(self.borrowers.borrowers)
            raw = await self.read_snapshot(block_number, accounts, assets)
        except ChainReadError:
            raise
        except Exception as e:
            raise ChainReadError(f"snapshot read failed at block {block_number}: {e}") from e

        result = self.parse(block_number, accounts, assets, raw)
        elapsed = (time.time() - start_time) * 1000
        logger.info(
            f"🔎 Block {block_number} | {len(accounts)} accounts | "
            f"{len(result.liquidatable)} liquidatable | {len(result.purchasable)} purchasable | {elapsed:.0f}ms"
        )
        return result

    def parse(self, block_number, accounts, assets, raw) -> ScanResult:
        expected = GLOBAL_CALLS + CALLS_PER_ACCOUNT * len(accounts) + CALLS_PER_ASSET * len(assets)
        if len(raw) != expected:
            raise ChainReadError(f"expected {expected} results at block {block_number}, got {len(raw)}")

        globals_ = [_decode(kind, success, data) for kind, success, data in raw[:GLOBAL_CALLS]]
        if any(g is None for g in globals_):
            raise ChainReadError(f"malformed market state in batched response at block {block_number}")
        (reserves,), (target_reserves,), (base_price,), (balance,) = globals_

        snapshots = []
        pos = GLOBAL_CALLS
        for account in accounts:
            liquidatable = _decode(*raw[pos])
            basic = _decode(*raw[pos + 1])
            pos += CALLS_PER_ACCOUNT

            is_liquidatable = bool(liquidatable and liquidatable[0])
            seizable: Tuple[str, ...] = ()
            debt = 0
            if basic is not None:
                principal, _, _, assets_in, _ = basic
                debt = max(-int(principal), 0)
                seizable = tuple(a.address for a in assets if assets_in & (1 << a.offset))
            if is_liquidatable or debt > 0:
                snapshots.append(BorrowerSnapshot(
                    account=account,
                    is_liquidatable=is_liquidatable,
                    seizable_assets=seizable,
                    debt=debt,
                ))

        purchasable = []
        for asset in assets:
            collateral_reserves = _decode(*raw[pos])
            quote = _decode(*raw[pos + 1])
            price = _decode(*raw[pos + 2])
            pos += CALLS_PER_ASSET
            if collateral_reserves is None or quote is None or price is None:
                logger.debug(f"Skipping {asset.address}: sub-call failed at block {block_number}")
                continue
            quantity, quote_amount, oracle_price = collateral_reserves[0], quote[0], price[0]
            if quantity <= 0 or quote_amount <= 0:
                continue
            purchasable.append(PurchasableCollateral(
                asset=asset.address,
                quantity=quantity,
                quoted_price=self.probe_amount * asset.scale // quote_amount,
                quote_amount=quote_amount,
                oracle_price=oracle_price,
            ))

        return ScanResult(
            block_number=block_number,
            underwater_accounts=tuple(snapshots),
            purchasable=tuple(purchasable),
            protocol_reserves=int(reserves),
            target_reserves=int(target_reserves),
            base_price=int(base_price),
            liquidator_balance=int(balance),
            probe_amount=self.probe_amount,
            base_scale=self.base.scale,
        )


async def load_base_market(rpc, comet_address) -> BaseMarket:
    """Reads the market's base token, scale and price feed once at startup."""
    comet = rpc.w3.eth.contract(address=comet_address, abi=COMET_ABI)
    token = await rpc.with_timeout(comet.functions.baseToken().call())
    scale = await rpc.with_timeout(comet.functions.baseScale().call())
    price_feed = await rpc.with_timeout(comet.functions.baseTokenPriceFeed().call())
    return BaseMarket(token=token, scale=int(scale), price_feed=price_feed)

