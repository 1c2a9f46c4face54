from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union


# --- Chain state ---

@dataclass(frozen=True)
class Asset:
    """A collateral asset supported by the market. Replaced as a whole set on refresh."""
    address: str
    decimals: int
    price_feed: str
    liquidation_factor: int   # 1e18-scaled
    offset: int = 0           # bit position in userBasic.assetsIn
    scale: int = 0

    def __post_init__(self):
        if not self.scale:
            object.__setattr__(self, "scale", 10 ** self.decimals)


@dataclass(frozen=True)
class BaseMarket:
    token: str
    scale: int
    price_feed: str


@dataclass(frozen=True)
class BorrowerSnapshot:
    account: str
    is_liquidatable: bool
    seizable_assets: Tuple[str, ...] = ()
    debt: int = 0             # outstanding base principal, base units


@dataclass(frozen=True)
class PurchasableCollateral:
    asset: str
    quantity: int             # collateral reserves held by the protocol
    quoted_price: int         # base units paid per whole collateral unit
    quote_amount: int = 0     # collateral received for the probe amount
    oracle_price: int = 0     # 8-decimal USD price of the asset


@dataclass(frozen=True)
class ScanResult:
    block_number: int
    underwater_accounts: Tuple[BorrowerSnapshot, ...] = ()
    purchasable: Tuple[PurchasableCollateral, ...] = ()
    protocol_reserves: int = 0
    target_reserves: int = 0
    base_price: int = 0
    liquidator_balance: int = 0
    probe_amount: int = 0
    base_scale: int = 10 ** 6

    @property
    def liquidatable(self) -> Tuple[BorrowerSnapshot, ...]:
        return tuple(b for b in self.underwater_accounts if b.is_liquidatable)


# --- Actions ---

@dataclass(frozen=True)
class Liquidate:
    account: str
    seized_assets: Tuple[str, ...] = ()

    kind = "liquidate"


@dataclass(frozen=True)
class Arbitrage:
    asset: str
    quantity: int
    expected_profit: int = 0

    kind = "arbitrage"


@dataclass(frozen=True)
class NoAction:
    reason: str = ""

    kind = "none"


Action = Union[Liquidate, Arbitrage, NoAction]


# --- Submission ---

@dataclass(frozen=True)
class Deployment:
    network: str
    name: str
    comet: str
    start_block: int
    flash_loan_pair_token: str
    flash_loan_pool_fee: int


@dataclass(frozen=True)
class SubmissionContext:
    """Long-lived, built once at startup."""
    sender: str
    chain_id: int
    deployment: Deployment
    signer: Any = None        # eth_account LocalAccount, None -> node-managed account
    relay: Any = None         # RelayClient when private-relay mode is on

    @property
    def uses_relay(self) -> bool:
        return self.relay is not None


@dataclass(frozen=True)
class Receipt:
    tx_hash: str
    block_number: int
    status: int
    gas_used: int = 0


@dataclass(frozen=True)
class SubmissionFailure:
    reason: str
    tx_hash: Optional[str] = None
    opportunity_lost: bool = False


SubmissionResult = Union[Receipt, SubmissionFailure]


@dataclass
class CycleOutcome:
    """What one scan-and-act pass produced. Errors are carried, not raised."""
    block_number: int
    action: Action = field(default_factory=NoAction)
    result: Optional[SubmissionResult] = None
    error: Optional[BaseException] = None
    stale: bool = False
    scan: Optional[ScanResult] = None

    @property
    def ok(self) -> bool:
        return self.error is None
