"""Environment-driven configuration for the liquidation bot."""
import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv
from web3 import Web3

from errors import ConfigError

# Private relay endpoints. No default: an unknown network must never fall back to one of these.
RELAY_ENDPOINTS: Dict[str, str] = {
    "mainnet": "https://relay.flashbots.net",
    "goerli": "https://relay-goerli.flashbots.net",
    "sepolia": "https://relay-sepolia.flashbots.net",
}

NETWORK_CHAIN_IDS: Dict[str, int] = {
    "mainnet": 1,
    "goerli": 5,
    "sepolia": 11155111,
    "polygon": 137,
    "arbitrum": 42161,
    "base": 8453,
    "optimism": 10,
}


@dataclass(frozen=True)
class BotConfig:
    rpc_url: str
    liquidator_address: str
    deployment: str
    network: str = "mainnet"
    fallback_rpcs: Tuple[str, ...] = ()
    use_flashbots: bool = False
    eth_pk: Optional[str] = field(default=None, repr=False)
    relay_url: Optional[str] = None
    comet_address: Optional[str] = None
    flash_loan_pair_token: Optional[str] = None
    flash_loan_pool_fee: Optional[int] = None
    borrower_start_block: Optional[int] = None

    # Loop timing
    loop_delay: float = 5.0                # seconds
    loops_until_update_assets: int = 1000
    rpc_timeout: float = 30.0
    receipt_timeout: float = 120.0

    # Arbitrage policy, whole base-token units
    arb_probe_base_amount: Decimal = Decimal("1000")
    arb_min_profit_base: Decimal = Decimal("5")
    arb_estimated_cost_base: Decimal = Decimal("10")
    liquidation_threshold_base: Decimal = Decimal("10")

    # Fees
    max_gas_price_gwei: Decimal = Decimal("200")
    priority_fee_gwei: Decimal = Decimal("2")
    gas_limit: int = 3_000_000

    # Borrower discovery
    borrowers_file: str = "borrowers.json"
    log_chunk_size: int = 2000
    multicall_batch_size: int = 500

    # Observability
    db_file: Optional[str] = None
    telegram_bot_token: Optional[str] = field(default=None, repr=False)
    telegram_chat_id: Optional[str] = None
    log_level: str = "INFO"
    log_format: str = "text"

    @property
    def expected_chain_id(self) -> Optional[int]:
        return NETWORK_CHAIN_IDS.get(self.network)


def _flag(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() == "true"


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw.strip())
    except (ValueError, ArithmeticError):
        raise ConfigError(f"invalid value for {name}: {raw!r}")


def load_config(env: Optional[Mapping[str, str]] = None, env_path: Optional[str] = None) -> BotConfig:
    """Build a BotConfig from the environment.

    Every check here happens before any provider is constructed, so a bad
    configuration exits the process without touching the network.
    """
    if env is None:
        load_dotenv(env_path or os.getenv("ENV_PATH", ".env"))
        env = os.environ

    liquidator_address = env.get("LIQUIDATOR_ADDRESS")
    deployment = env.get("DEPLOYMENT")
    rpc_url = env.get("RPC_URL")
    use_flashbots = _flag(env.get("USE_FLASHBOTS"))
    eth_pk = env.get("ETH_PK") or None

    if not liquidator_address:
        raise ConfigError("missing required env variable: LIQUIDATOR_ADDRESS")
    if not deployment:
        raise ConfigError("missing required env variable: DEPLOYMENT")
    if not rpc_url:
        raise ConfigError("missing required env variable: RPC_URL")
    if use_flashbots and not eth_pk:
        raise ConfigError("missing required env variable: ETH_PK")
    if not Web3.is_address(liquidator_address.lower()):
        raise ConfigError(f"LIQUIDATOR_ADDRESS is not a valid address: {liquidator_address}")

    network = (env.get("NETWORK") or "mainnet").strip().lower()

    relay_url = None
    if use_flashbots:
        relay_url = RELAY_ENDPOINTS.get(network)
        if relay_url is None:
            raise ConfigError(f"Unsupported network: {network}")

    fallback_rpcs = tuple(
        r.strip().strip("'").strip('"') for r in env.get("FALLBACK_RPCS", "").split(",") if r.strip()
    )

    log_format = (env.get("LOG_FORMAT") or "text").strip().lower()
    if log_format not in ("text", "json"):
        raise ConfigError(f"invalid value for LOG_FORMAT: {log_format!r}")

    return BotConfig(
        rpc_url=rpc_url,
        liquidator_address=Web3.to_checksum_address(liquidator_address),
        deployment=deployment.strip(),
        network=network,
        fallback_rpcs=fallback_rpcs,
        use_flashbots=use_flashbots,
        eth_pk=eth_pk,
        relay_url=relay_url,
        comet_address=env.get("COMET_ADDRESS") or None,
        flash_loan_pair_token=env.get("FLASH_LOAN_PAIR_TOKEN") or None,
        flash_loan_pool_fee=_number(env, "FLASH_LOAN_POOL_FEE", None, int),
        borrower_start_block=_number(env, "BORROWER_START_BLOCK", None, int),
        loop_delay=_number(env, "LOOP_DELAY_MS", 5000, int) / 1000,
        loops_until_update_assets=_number(env, "LOOPS_UNTIL_UPDATE_ASSETS", 1000, int),
        rpc_timeout=_number(env, "RPC_TIMEOUT", 30.0, float),
        receipt_timeout=_number(env, "RECEIPT_TIMEOUT", 120.0, float),
        arb_probe_base_amount=_number(env, "ARB_PROBE_BASE_AMOUNT", Decimal("1000"), Decimal),
        arb_min_profit_base=_number(env, "ARB_MIN_PROFIT_BASE", Decimal("5"), Decimal),
        arb_estimated_cost_base=_number(env, "ARB_ESTIMATED_COST_BASE", Decimal("10"), Decimal),
        liquidation_threshold_base=_number(env, "LIQUIDATION_THRESHOLD", Decimal("10"), Decimal),
        max_gas_price_gwei=_number(env, "MAX_GAS_PRICE_GWEI", Decimal("200"), Decimal),
        priority_fee_gwei=_number(env, "PRIORITY_FEE_GWEI", Decimal("2"), Decimal),
        gas_limit=_number(env, "GAS_LIMIT", 3_000_000, int),
        borrowers_file=env.get("BORROWERS_FILE") or "borrowers.json",
        log_chunk_size=_number(env, "LOG_CHUNK_SIZE", 2000, int),
        multicall_batch_size=_number(env, "MULTICALL_BATCH_SIZE", 500, int),
        db_file=env.get("DB_FILE") or None,
        telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN") or None,
        telegram_chat_id=env.get("TELEGRAM_CHAT_ID") or None,
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        log_format=log_format,
    )
