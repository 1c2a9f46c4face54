import asyncio
import json
import logging
from decimal import Decimal
from typing import Sequence

import aiohttp
from eth_account.messages import encode_defunct
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from abis import LIQUIDATOR_ABI
from errors import SubmissionError
from models import (
    Arbitrage,
    Liquidate,
    NoAction,
    Receipt,
    SubmissionContext,
    SubmissionFailure,
    SubmissionResult,
)

logger = logging.getLogger("Submitter")

MAX_UINT256 = 2 ** 256 - 1


class RelayRejected(SubmissionError):
    """The private relay answered with an error."""


class RelayClient:
    """
    Minimal private-relay client: one eth_sendBundle per call.

    Requests are signed by an auth identity that holds no funds; the relay
    uses it only to build reputation for the searcher.
    """

    def __init__(self, url, auth_account, timeout=10.0):
        self.url = url
        self.auth_account = auth_account
        self.timeout = timeout

    @property
    def auth_address(self):
        return self.auth_account.address

    def sign_body(self, body: str) -> str:
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        signed = self.auth_account.sign_message(message)
        return f"{self.auth_account.address}:{Web3.to_hex(signed.signature)}"

    def bundle_payload(self, signed_txs: Sequence[str], target_block: int) -> str:
        return json.dumps({
            "jsonrpc": "2.0",
            "id": 1,
            "method": "eth_sendBundle",
            "params": [{"txs": list(signed_txs), "blockNumber": hex(target_block)}],
        })

    async def send_bundle(self, signed_txs: Sequence[str], target_block: int):
        body = self.bundle_payload(signed_txs, target_block)
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self.sign_body(body),
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.url, data=body, headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    status = response.status
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SubmissionError(f"relay request failed: {e}") from e

        if status != 200 or not isinstance(data, dict) or "error" in data:
            error = data.get("error") if isinstance(data, dict) else data
            raise RelayRejected(f"relay rejected bundle for block {target_block} (HTTP {status}): {error}")
        result = data.get("result") or {}
        return result.get("bundleHash") if isinstance(result, dict) else result


def build_call_args(action, context: SubmissionContext, liquidation_threshold: int):
    """Arguments for the liquidator's absorbAndArbitrage call."""
    deployment = context.deployment
    if isinstance(action, Liquidate):
        accounts = [action.account]
        assets = list(action.seized_assets)
        max_amounts = [MAX_UINT256] * len(assets)
    elif isinstance(action, Arbitrage):
        accounts = []
        assets = [action.asset]
        max_amounts = [int(action.quantity)]
    else:
        raise SubmissionError(f"nothing to submit for {action!r}")

    return (
        deployment.comet,
        accounts,
        assets,
        max_amounts,
        deployment.flash_loan_pair_token,
        deployment.flash_loan_pool_fee,
        int(liquidation_threshold),
    )


class TransactionSubmitter:
    """Turns a decided action into a signed transaction and delivers it.

    The mode (direct broadcast or private-relay bundle) comes from the
    SubmissionContext built at startup and never changes afterwards.
    Bundles target only the block after the scanned one; a bundle that
    misses it is reported as a lost opportunity and never resubmitted here.
    """

    def __init__(self, rpc, liquidator_address, liquidation_threshold=0, gas_limit=3_000_000,
                 max_gas_price_gwei=Decimal("200"), priority_fee_gwei=Decimal("2"),
                 receipt_timeout=120.0, block_poll_interval=1.0):
        self.rpc = rpc
        self.liquidator_address = liquidator_address
        self.liquidation_threshold = liquidation_threshold
        self.gas_limit = gas_limit
        self.max_fee_cap = Web3.to_wei(max_gas_price_gwei, "gwei")
        self.priority_fee = Web3.to_wei(priority_fee_gwei, "gwei")
        self.receipt_timeout = receipt_timeout
        self.block_poll_interval = block_poll_interval

    def liquidator(self):
        return self.rpc.w3.eth.contract(address=self.liquidator_address, abi=LIQUIDATOR_ABI)

    async def submit(self, action, context: SubmissionContext, block_number) -> SubmissionResult:
        if isinstance(action, NoAction):
            return SubmissionFailure(reason="no action")

        args = build_call_args(action, context, self.liquidation_threshold)
        tx_func = self.liquidator().functions.absorbAndArbitrage(*args)

        try:
            # Pre-flight: never broadcast something that reverts
            try:
                await self.rpc.with_timeout(tx_func.call({"from": context.sender}, block_identifier="pending"))
            except ContractLogicError as e:
                logger.warning(f"🚫 Pre-flight FAIL for {action.kind}: {e}")
                return SubmissionFailure(reason=f"simulation reverted: {e}")

            tx = await self.build_transaction(tx_func, context)
            if context.uses_relay:
                return await self.submit_bundle(tx, context, block_number)
            return await self.submit_direct(tx, context)
        except SubmissionError:
            raise
        except Exception as e:
            raise SubmissionError(f"{action.kind} submission failed: {e}") from e

    async def build_transaction(self, tx_func, context: SubmissionContext):
        w3 = self.rpc.w3
        nonce = await self.rpc.with_timeout(w3.eth.get_transaction_count(context.sender, "pending"))
        block = await self.rpc.with_timeout(w3.eth.get_block("latest"))
        base_fee = block["baseFeePerGas"]

        if base_fee + self.priority_fee > self.max_fee_cap:
            raise SubmissionError(f"base fee {base_fee} wei is above the configured cap {self.max_fee_cap} wei")
        max_fee = min(base_fee * 2 + self.priority_fee, self.max_fee_cap)

        return await self.rpc.with_timeout(tx_func.build_transaction({
            "from": context.sender,
            "nonce": nonce,
            "gas": self.gas_limit,
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": self.priority_fee,
            "chainId": context.chain_id,
        }))

    async def submit_direct(self, tx, context: SubmissionContext) -> SubmissionResult:
        w3 = self.rpc.w3
        if context.signer is not None:
            signed = context.signer.sign_transaction(tx)
            tx_hash = await self.rpc.with_timeout(w3.eth.send_raw_transaction(signed.raw_transaction))
        else:
            # Node-managed account
            tx_hash = await self.rpc.with_timeout(w3.eth.send_transaction(tx))

        tx_hex = Web3.to_hex(tx_hash)
        logger.info(f"🔥 TX SENT: {tx_hex}")

        try:
            receipt = await w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted:
            logger.warning(f"⏳ No receipt for {tx_hex} after {self.receipt_timeout}s")
            return SubmissionFailure(reason="receipt timeout", tx_hash=tx_hex)
        return self._to_result(tx_hex, receipt)

    async def submit_bundle(self, tx, context: SubmissionContext, block_number) -> SubmissionResult:
        if context.signer is None:
            raise SubmissionError("private relay mode needs a local signer")

        signed = context.signer.sign_transaction(tx)
        tx_hex = Web3.to_hex(signed.hash)
        target_block = block_number + 1

        try:
            bundle_hash = await context.relay.send_bundle([Web3.to_hex(signed.raw_transaction)], target_block)
        except RelayRejected as e:
            logger.warning(f"🚫 {e}")
            return SubmissionFailure(reason=str(e), tx_hash=tx_hex)

        logger.info(f"📦 Bundle {bundle_hash} submitted for block {target_block} (tx {tx_hex})")

        if not await self.wait_for_block(target_block):
            return SubmissionFailure(reason=f"block {target_block} not reached", tx_hash=tx_hex,
                                     opportunity_lost=True)

        try:
            receipt = await self.rpc.with_timeout(self.rpc.w3.eth.get_transaction_receipt(signed.hash))
        except TransactionNotFound:
            logger.info(f"🕳️ Bundle not included in block {target_block}")
            return SubmissionFailure(reason="bundle not included", tx_hash=tx_hex, opportunity_lost=True)
        return self._to_result(tx_hex, receipt)

    async def wait_for_block(self, target_block):
        """Polls until the chain has produced target_block. False if the receipt timeout passes first."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.receipt_timeout
        while True:
            if await self.rpc.block_number() >= target_block:
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.block_poll_interval)

    @staticmethod
    def _to_result(tx_hex, receipt) -> SubmissionResult:
        if receipt["status"] == 1:
            logger.info(f"✅ TX CONFIRMED: {tx_hex} in block {receipt['blockNumber']}")
            return Receipt(
                tx_hash=tx_hex,
                block_number=receipt["blockNumber"],
                status=1,
                gas_used=receipt.get("gasUsed", 0),
            )
        logger.warning(f"❌ TX REVERTED: {tx_hex}")
        return SubmissionFailure(reason="reverted", tx_hash=tx_hex)
