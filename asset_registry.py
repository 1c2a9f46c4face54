import logging
from typing import Optional, Tuple

from abis import COMET_ABI
from models import Asset

logger = logging.getLogger("AssetRegistry")


def _decimals_from_scale(scale):
    return len(str(int(scale))) - 1


class AssetRegistry:
    """Current set of collateral assets supported by the market.

    The set is swapped whole on a successful refresh; a failed refresh keeps
    the previous set and is logged. Only the scheduler calls refresh(), from
    the single control task, so the swap needs no lock.
    """

    def __init__(self, rpc, comet_address, assets: Tuple[Asset, ...] = ()):
        self.rpc = rpc
        self.comet_address = comet_address
        self.assets: Tuple[Asset, ...] = tuple(assets)
        self.last_error: Optional[BaseException] = None
        self._loaded = bool(self.assets)

    @property
    def populated(self) -> bool:
        """True once any refresh has succeeded, even for a market with no collateral."""
        return self._loaded

    async def fetch(self) -> Tuple[Asset, ...]:
        """Full re-enumeration. Raises on any failure."""
        comet = self.rpc.w3.eth.contract(address=self.comet_address, abi=COMET_ABI)
        count = await self.rpc.with_timeout(comet.functions.numAssets().call())
        assets = []
        for i in range(count):
            info = await self.rpc.with_timeout(comet.functions.getAssetInfo(i).call())
            offset, asset, price_feed, scale, _, _, liquidation_factor, _ = info
            assets.append(Asset(
                address=asset,
                decimals=_decimals_from_scale(scale),
                price_feed=price_feed,
                liquidation_factor=int(liquidation_factor),
                offset=int(offset),
                scale=int(scale),
            ))
        return tuple(assets)

    async def refresh(self) -> Tuple[Asset, ...]:
        try:
            fresh = await self.fetch()
        except Exception as e:
            # Keep whatever set we had; the next scheduled refresh will try again
            self.last_error = e
            logger.warning(f"⚠️ Asset refresh failed, keeping {len(self.assets)} assets: {e}")
            return self.assets

        self.assets = fresh
        self.last_error = None
        self._loaded = True
        logger.info(f"📚 Loaded {len(fresh)} collateral assets: {', '.join(a.address for a in fresh)}")
        return self.assets
