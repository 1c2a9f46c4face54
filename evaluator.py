"""
Opportunity evaluator: turns one ScanResult into at most one action.

Liquidation strictly dominates arbitrage. When any scanned account is
liquidatable, arbitrage is not evaluated at all for that block; it is
opportunistic and can wait a cycle, liquidations protect the protocol.

Selection is a pure function of (scan, assets, policy), so the same
snapshot always yields the same action:
  - Liquidation: largest outstanding debt first, ties in snapshot order.
  - Arbitrage: highest net profit first, ties in registry order.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from errors import EvaluationError
from models import Action, Arbitrage, Asset, BorrowerSnapshot, Liquidate, NoAction, PurchasableCollateral, ScanResult

logger = logging.getLogger("Evaluator")


@dataclass(frozen=True)
class ArbitragePolicy:
    """Profitability thresholds, in base-token units (smallest denomination)."""
    min_profit: int = 0
    estimated_cost: int = 0

    @classmethod
    def from_whole_units(cls, min_profit, estimated_cost, base_scale):
        return cls(
            min_profit=int(Decimal(min_profit) * base_scale),
            estimated_cost=int(Decimal(estimated_cost) * base_scale),
        )


@dataclass(frozen=True)
class ArbitrageQuote:
    asset: str
    quantity: int
    cost: int
    value: int
    profit: int


def select_liquidation(scan: ScanResult) -> Optional[BorrowerSnapshot]:
    """The liquidatable account with the largest debt; earlier snapshot entries win ties."""
    best = None
    for snapshot in scan.underwater_accounts:
        if not snapshot.is_liquidatable:
            continue
        if best is None or snapshot.debt > best.debt:
            best = snapshot
    return best


def quote_purchase(entry: PurchasableCollateral, asset: Asset, scan: ScanResult,
                   policy: ArbitragePolicy) -> ArbitrageQuote:
    """Prices buying as much of the protocol's reserves as one probe quote covers."""
    if entry.quote_amount <= 0 or scan.base_price <= 0 or scan.probe_amount <= 0:
        raise EvaluationError(f"cannot price {entry.asset}: empty quote or price")

    quantity = min(entry.quantity, entry.quote_amount)
    # Base spent for `quantity` at the quoted (discounted) rate
    cost = scan.probe_amount * quantity // entry.quote_amount
    # Market value of `quantity` at the oracle price, in base units
    value = quantity * entry.oracle_price * scan.base_scale // (asset.scale * scan.base_price)
    profit = value - cost - policy.estimated_cost
    return ArbitrageQuote(asset=entry.asset, quantity=quantity, cost=cost, value=value, profit=profit)


def rank_arbitrage(scan: ScanResult, assets: Sequence[Asset], policy: ArbitragePolicy) -> List[ArbitrageQuote]:
    """Profitable purchases, best first. Unprofitable entries are dropped for this cycle."""
    if scan.protocol_reserves >= scan.target_reserves:
        # The protocol only sells collateral while its reserves are below target
        return []

    by_address: Dict[str, Tuple[int, Asset]] = {a.address.lower(): (i, a) for i, a in enumerate(assets)}
    ranked = []
    for entry in scan.purchasable:
        known = by_address.get(entry.asset.lower())
        if known is None:
            logger.debug(f"Skipping {entry.asset}: not in the current asset set")
            continue
        order, asset = known
        try:
            quote = quote_purchase(entry, asset, scan, policy)
        except EvaluationError as e:
            logger.debug(f"Skipping {entry.asset}: {e}")
            continue

        if quote.profit < policy.min_profit:
            logger.debug(f"Skipping {entry.asset}: profit {quote.profit} below {policy.min_profit}")
            continue
        if quote.cost > scan.liquidator_balance:
            logger.debug(f"Skipping {entry.asset}: cost {quote.cost} exceeds balance {scan.liquidator_balance}")
            continue
        ranked.append((-quote.profit, order, quote))

    ranked.sort(key=lambda item: (item[0], item[1]))
    return [quote for _, _, quote in ranked]


def decide(scan: ScanResult, assets: Sequence[Asset], policy: Optional[ArbitragePolicy] = None) -> Action:
    policy = policy or ArbitragePolicy()

    target = select_liquidation(scan)
    if target is not None:
        return Liquidate(account=target.account, seized_assets=tuple(target.seizable_assets))

    ranked = rank_arbitrage(scan, assets, policy)
    if ranked:
        best = ranked[0]
        return Arbitrage(asset=best.asset, quantity=best.quantity, expected_profit=best.profit)

    if scan.purchasable and scan.protocol_reserves >= scan.target_reserves:
        return NoAction(reason="protocol reserves at target")
    return NoAction(reason="no opportunity")
