"""Known Comet deployments per (network, deployment) pair."""
from typing import Dict, Optional, Tuple

from web3 import Web3

from errors import ConfigError
from models import Deployment

# comet proxy, first block, flash loan pair token, pair pool fee
DEPLOYMENTS: Dict[Tuple[str, str], Tuple[str, int, str, int]] = {
    ("mainnet", "usdc"): (
        "0xc3d688B66703497DAA19211EEdff47f25384cdc3", 15331586,
        "0x6B175474E89094C44Da98b954EedeAC495271d0F", 100,   # DAI
    ),
    ("mainnet", "weth"): (
        "0xA17581A9E3356d9A858b789D68B4d866e593aE94", 16400710,
        "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 500,   # USDC
    ),
    ("polygon", "usdc"): (
        "0xF25212E676D1F7F89Cd72fFEe66158f541246445", 39412367,
        "0x8f3Cf7ad23Cd3CaDbD9735AFf958023239c6A063", 100,   # DAI
    ),
    ("arbitrum", "usdc.e"): (
        "0xA5EDBDD9646f8dFF606d7448e414884C7d905dCA", 87335278,
        "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", 100,   # USDT
    ),
}


def resolve(network: str, deployment: str, comet_override: Optional[str] = None,
            pair_token_override: Optional[str] = None, pool_fee_override: Optional[int] = None,
            start_block_override: Optional[int] = None) -> Deployment:
    """Resolve the Comet proxy and liquidator flash-loan settings for a network/deployment."""
    known = DEPLOYMENTS.get((network, deployment))

    if comet_override:
        pair_token = pair_token_override or (known[2] if known else None)
        pool_fee = pool_fee_override if pool_fee_override is not None else (known[3] if known else None)
        if not pair_token or pool_fee is None:
            raise ConfigError(
                f"COMET_ADDRESS override for {network}/{deployment} also needs "
                f"FLASH_LOAN_PAIR_TOKEN and FLASH_LOAN_POOL_FEE"
            )
        start_block = start_block_override if start_block_override is not None else (known[1] if known else 0)
        return Deployment(
            network=network,
            name=deployment,
            comet=_checksum(comet_override, "COMET_ADDRESS"),
            start_block=start_block,
            flash_loan_pair_token=_checksum(pair_token, "FLASH_LOAN_PAIR_TOKEN"),
            flash_loan_pool_fee=int(pool_fee),
        )

    if known is None:
        raise ConfigError(f"no deployed Comet found for {network}/{deployment}")

    comet, start_block, pair_token, pool_fee = known
    return Deployment(
        network=network,
        name=deployment,
        comet=Web3.to_checksum_address(comet),
        start_block=start_block if start_block_override is None else start_block_override,
        flash_loan_pair_token=_checksum(pair_token_override or pair_token, "FLASH_LOAN_PAIR_TOKEN"),
        flash_loan_pool_fee=pool_fee if pool_fee_override is None else pool_fee_override,
    )


def _checksum(address: str, name: str) -> str:
    if not address or not Web3.is_address(address.lower()):
        raise ConfigError(f"{name} is not a valid address: {address}")
    return Web3.to_checksum_address(address)
