"""
Compound III liquidation bot.

Polls the chain for new blocks, reads a block-pinned snapshot of the market,
liquidates underwater accounts first and otherwise buys discounted protocol
collateral, submitting either directly or as a private-relay bundle.

Configuration is environment-only (see settings.py). Exit code 1 means a
startup failure: missing configuration, unresolved contract, unsupported
network.
"""
import asyncio
import json
import logging
import sys

from eth_account import Account

from alerts import TelegramAlerter
from asset_registry import AssetRegistry
from chain_reader import BorrowerIndex, ChainStateReader, load_base_market
from db_manager import Ledger
from deployments import resolve
from errors import ConfigError
from evaluator import ArbitragePolicy
from logging_setup import configure_logging
from models import SubmissionContext
from rpc_manager import AsyncRPCManager
from scheduler import PollScheduler, ScanAndAct
from settings import BotConfig, load_config
from submitter import RelayClient, TransactionSubmitter

logger = logging.getLogger("LiquidationBot")


async def build_context(rpc, config: BotConfig, deployment) -> SubmissionContext:
    chain_id = await rpc.chain_id()
    expected = config.expected_chain_id
    if expected is not None and chain_id != expected:
        raise ConfigError(f"RPC chain id {chain_id} does not match network {config.network} ({expected})")

    relay = None
    if config.use_flashbots:
        # Reputation identity: holds no funds, regenerated every start
        auth_signer = Account.create()
        relay = RelayClient(config.relay_url, auth_signer)
        logger.info(f"🛡️ Private relay {config.relay_url} | auth {auth_signer.address}")

    if config.eth_pk:
        signer = Account.from_key(config.eth_pk)
        sender = signer.address
    else:
        signer = None
        accounts = await rpc.with_timeout(rpc.w3.eth.accounts)
        if not accounts:
            raise ConfigError("no ETH_PK configured and the node exposes no accounts")
        sender = accounts[0]
    logger.info(f"🔑 Signer: {sender}")

    return SubmissionContext(
        sender=sender,
        chain_id=chain_id,
        deployment=deployment,
        signer=signer,
        relay=relay,
    )


async def build_bot(config: BotConfig) -> PollScheduler:
    deployment = resolve(
        config.network,
        config.deployment,
        comet_override=config.comet_address,
        pair_token_override=config.flash_loan_pair_token,
        pool_fee_override=config.flash_loan_pool_fee,
        start_block_override=config.borrower_start_block,
    )
    logger.info(f"🏦 Comet {deployment.comet} ({deployment.network}/{deployment.name})")

    rpc = AsyncRPCManager([config.rpc_url, *config.fallback_rpcs], timeout=config.rpc_timeout)
    await rpc.connect()

    context = await build_context(rpc, config, deployment)
    base = await load_base_market(rpc, deployment.comet)
    logger.info(f"💵 Base token {base.token} (scale {base.scale})")

    registry = AssetRegistry(rpc, deployment.comet)

    borrowers = BorrowerIndex(
        rpc,
        deployment.comet,
        start_block=deployment.start_block,
        path=config.borrowers_file,
        chunk_size=config.log_chunk_size,
    )
    await borrowers.load()

    reader = ChainStateReader(
        rpc,
        deployment.comet,
        base,
        config.liquidator_address,
        registry,
        borrowers,
        probe_amount=int(config.arb_probe_base_amount * base.scale),
        batch_size=config.multicall_batch_size,
    )

    submitter = TransactionSubmitter(
        rpc,
        config.liquidator_address,
        liquidation_threshold=int(config.liquidation_threshold_base * base.scale),
        gas_limit=config.gas_limit,
        max_gas_price_gwei=config.max_gas_price_gwei,
        priority_fee_gwei=config.priority_fee_gwei,
        receipt_timeout=config.receipt_timeout,
    )

    ledger = None
    if config.db_file:
        ledger = Ledger(config.db_file)
        ledger.init_db()

    alerter = TelegramAlerter(config.telegram_bot_token, config.telegram_chat_id)
    if not alerter.enabled:
        alerter = None

    policy = ArbitragePolicy.from_whole_units(
        config.arb_min_profit_base, config.arb_estimated_cost_base, base.scale
    )
    pipeline = ScanAndAct(rpc, reader, registry, submitter, context, policy=policy, ledger=ledger, alerter=alerter)

    return PollScheduler(
        rpc,
        registry,
        pipeline,
        loop_delay=config.loop_delay,
        loops_until_update_assets=config.loops_until_update_assets,
        alerter=alerter,
    )


async def run(config: BotConfig) -> int:
    scheduler = await build_bot(config)
    if scheduler.alerter is not None:
        await scheduler.alerter.send_async(
            f"🟢 <b>Liquidation Bot Started</b> ({config.network}/{config.deployment})"
        )
    try:
        await scheduler.run_forever()
    except Exception:
        logger.exception("💥 Liquidation Bot crashed while running")
        return 1
    return 0


def main(env=None) -> int:
    configure_logging()
    try:
        config = load_config(env)
    except ConfigError as e:
        logger.critical(f"❌ {e}")
        return 1

    configure_logging(config.log_level, config.log_format)
    logger.info("Liquidation Bot started " + json.dumps({
        "network": config.network,
        "deployment": config.deployment,
        "liquidatorAddress": config.liquidator_address,
        "useFlashbots": config.use_flashbots,
    }))

    try:
        code = asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("🛑 Liquidation Bot Stopped.")
        return 0
    except ConfigError as e:
        logger.critical(f"❌ {e}")
        return 1
    except Exception:
        logger.exception("💥 Fatal startup error")
        return 1
    return code


if __name__ == "__main__":
    sys.exit(main())
