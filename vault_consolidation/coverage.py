"""
Asset Coverage

Per-asset view of how well the inventory is priced:
1. Holdings: wallets, rows, available and total sums
2. Mapping: CoinGecko id and basis symbol configured for the asset
3. Price: winning method, USD price and the USD it covers
4. Top wallets holding the asset, by amount

An asset priced 'unknown' is closed by adding it to asset_to_coingecko.json,
asset_price_basis.json or price_overrides_usd.json and re-running.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .config import ConsolidationConfig, load_json_mapping
from .inventory_loader import InventoryPosition, vault_names
from .price_resolver import PriceRecord


TOP_WALLETS = 10


@dataclass(frozen=True)
class WalletHolding:
    vault_id: str
    vault_name: str
    amount: float
    usd: Optional[float]

    def to_dict(self) -> Dict:
        return {
            'vaultId': self.vault_id,
            'vaultName': self.vault_name,
            'amountTotal': self.amount,
            'usdValue': self.usd,
        }


@dataclass
class AssetCoverage:
    """Coverage record for one asset"""
    asset_id: str
    vault_count: int
    row_count: int
    sum_available: float
    sum_total: float
    coingecko_id: str
    basis_symbol: str
    price_method: str
    price_usd: Optional[float]
    usd_known: Optional[float]
    unknown_price_rows: int
    top_wallets: List[WalletHolding] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'assetId': self.asset_id,
            'vaultCount': self.vault_count,
            'rowCount': self.row_count,
            'sumAvailable': self.sum_available,
            'sumTotal': self.sum_total,
            'coingeckoId': self.coingecko_id,
            'basisSymbol': self.basis_symbol,
            'priceUsdMethod': self.price_method,
            'priceUsd': self.price_usd,
            'usdTotalKnownPrices': self.usd_known,
            'unknownPriceRows': self.unknown_price_rows,
        }


class CoverageAnalyzer:
    """
    Asset coverage over inventory

    Features:
    - Focused asset list or every inventory asset
    - Mapping lookup against the CoinGecko and basis tables
    - Top-N wallets per asset with names and USD value
    """

    def __init__(self, coingecko_map: Dict[str, str], basis_map: Dict[str, str], top_n: int = TOP_WALLETS):
        self.coingecko_map = {str(k): str(v) for k, v in coingecko_map.items() if v}
        self.basis_map = {str(k): str(v) for k, v in basis_map.items() if v}
        self.top_n = top_n

    @classmethod
    def from_config(cls, config: ConsolidationConfig) -> 'CoverageAnalyzer':
        return cls(
            load_json_mapping(config.execute_file('coingecko_map')),
            load_json_mapping(config.execute_file('basis')),
        )

    def analyze(
        self,
        inventory: Sequence[InventoryPosition],
        prices: Dict[str, PriceRecord],
        assets: Sequence[str]
    ) -> List[AssetCoverage]:
        """
        Build coverage records

        Args:
            inventory: Nonzero inventory positions
            prices: Resolved prices keyed by asset
            assets: Assets to report (absent ones get empty holdings)

        Returns:
            AssetCoverage per asset, sorted by asset id
        """
        names = vault_names(list(inventory))
        held: Dict[str, List[InventoryPosition]] = {a: [] for a in assets}
        for p in inventory:
            if p.asset_id in held:
                held[p.asset_id].append(p)

        results = []
        for asset_id in sorted(held):
            positions = held[asset_id]
            record = prices.get(asset_id) or PriceRecord.unknown(asset_id)
            price = record.usd if record.known else None

            per_wallet: Dict[str, float] = {}
            for p in positions:
                per_wallet[p.vault_id] = per_wallet.get(p.vault_id, 0.0) + p.balance

            top = sorted(per_wallet.items(), key=lambda kv: (-kv[1], kv[0]))[:self.top_n]
            balance = sum(per_wallet.values())

            results.append(AssetCoverage(
                asset_id=asset_id,
                vault_count=len(per_wallet),
                row_count=len(positions),
                sum_available=sum(p.available_amount for p in positions),
                sum_total=sum(p.total_amount for p in positions),
                coingecko_id=self.coingecko_map.get(asset_id, ""),
                basis_symbol=self.basis_map.get(asset_id, ""),
                price_method=record.method.value,
                price_usd=price,
                usd_known=balance * price if price is not None else None,
                unknown_price_rows=len(positions) if price is None else 0,
                top_wallets=[
                    WalletHolding(vault_id, names.get(vault_id, ""), amount,
                                  amount * price if price is not None else None)
                    for vault_id, amount in top
                ],
            ))

        unpriced = [c.asset_id for c in results if c.price_usd is None]
        logger.info(f"🔎 Coverage: {len(results)} assets, {len(unpriced)} without a price")
        if unpriced:
            logger.debug(f"Unpriced: {', '.join(unpriced[:20])}")
        return results
