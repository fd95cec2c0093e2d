"""
Breakeven Analysis

Per-asset view of whether moving an asset is worth its gas.

For each asset held in inventory: distribution of per-position USD values
(median / p90 / max), the gas fee in USD when the plan says the asset needs
gas, the breakeven value and how much value sits at or above it.
"""

from collections import defaultdict
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .aggregator import percentile
from .config import ConsolidationConfig
from .inventory_loader import InventoryPosition, PlanRow
from .price_resolver import PriceResolver, positive_price


LOW_AVG_USD = 1.0


@dataclass(frozen=True)
class BreakevenRow:
    """Breakeven summary for one asset"""
    asset_id: str
    vault_count: int
    row_count: int
    total_usd_known: float
    avg_usd: float
    median_usd: float
    p90_usd: float
    max_usd: float
    requires_gas: bool
    gas_asset_id: str
    fee_usd: Optional[float]
    breakeven_usd: Optional[float]
    count_above: int
    usd_above: float
    unknown_price_rows: int
    recommendation: str

    @property
    def avg_per_vault(self) -> float:
        return self.total_usd_known / self.vault_count if self.vault_count else 0.0

    def to_dict(self) -> Dict:
        return asdict(self)


def gas_asset_map(plan: Sequence[PlanRow]) -> Dict[str, str]:
    """asset -> gas asset for plan rows that require gas (last row wins)"""
    mapping = {}
    for row in plan:
        if row.requires_gas and row.gas_asset_id:
            mapping[row.asset_id] = row.gas_asset_id
    return mapping


class BreakevenAnalyzer:
    """
    Gas-fee breakeven per asset

    Policy:
    - breakeven = max(MIN_GROSS_USD, MIN_TX_POLICY_USD, fee_usd + MIN_NET_USD) for gas assets
    - breakeven = max(MIN_GROSS_USD, MIN_TX_POLICY_USD) otherwise
    - fee_usd = gas_fee_native[gas_asset] * price(gas_asset) * FEE_MULT
    """

    def __init__(self, config: ConsolidationConfig, resolver: PriceResolver,
                 gas_fee_native: Dict[str, float]):
        self.config = config
        self.resolver = resolver
        self.gas_fee_native = gas_fee_native or {}

    def _fee_usd(self, gas_asset: Optional[str]) -> Optional[float]:
        if not gas_asset:
            return None
        fee_native = self.gas_fee_native.get(gas_asset)
        if fee_native is None or isinstance(fee_native, bool):
            return None
        try:
            fee_native = float(fee_native)
        except (TypeError, ValueError):
            return None
        gas_price = self.resolver.resolve(gas_asset)
        if not gas_price.known:
            return None
        return fee_native * gas_price.usd * self.config.fee_mult

    def analyze(self, inventory: Sequence[InventoryPosition], plan: Sequence[PlanRow]) -> List[BreakevenRow]:
        """
        Build breakeven rows

        Args:
            inventory: Nonzero inventory positions
            plan: Plan rows (for gas requirements)

        Returns:
            Rows sorted low-average first, then by known USD desc
        """
        gas_map = gas_asset_map(plan)
        assets = {p.asset_id for p in inventory} | set(gas_map.values())
        prices = self.resolver.resolve_all(assets)

        per_asset = defaultdict(lambda: {'vaults': set(), 'usd': [], 'unknown': 0})
        for p in inventory:
            g = per_asset[p.asset_id]
            g['vaults'].add(p.vault_id)
            price = prices[p.asset_id]
            if price.known:
                g['usd'].append(p.balance * price.usd)
            else:
                g['unknown'] += 1

        cfg = self.config
        rows = []
        for asset_id, g in per_asset.items():
            values = sorted(g['usd'])
            total = sum(values)
            vault_count = len(g['vaults'])
            gas_asset = gas_map.get(asset_id)
            requires_gas = gas_asset is not None
            fee_usd = self._fee_usd(gas_asset)

            breakeven = None
            if requires_gas and fee_usd is not None:
                breakeven = max(cfg.min_gross_usd, cfg.min_tx_policy_usd, fee_usd + cfg.min_net_usd)
            elif not requires_gas:
                breakeven = max(cfg.min_gross_usd, cfg.min_tx_policy_usd)

            above = [v for v in values if breakeven is not None and v >= breakeven]

            if requires_gas:
                if fee_usd is None:
                    recommendation = "NEEDS_FEE_ASSUMPTION_OR_PRICE"
                elif total == 0:
                    recommendation = "SKIP"
                elif not above:
                    recommendation = "SKIP_ALL_BELOW_BREAKEVEN"
                elif (total / vault_count if vault_count else 0) <= LOW_AVG_USD:
                    recommendation = "REVIEW_DISTRIBUTION_LOW_AVG"
                else:
                    recommendation = "EXECUTE_TOP_DOWN"
            else:
                recommendation = "EXECUTE" if above else "SKIP_ALL_BELOW_POLICY"

            rows.append(BreakevenRow(
                asset_id=asset_id,
                vault_count=vault_count,
                row_count=len(values) + g['unknown'],
                total_usd_known=total,
                avg_usd=total / len(values) if values else 0.0,
                median_usd=percentile(values, 0.5),
                p90_usd=percentile(values, 0.9),
                max_usd=values[-1] if values else 0.0,
                requires_gas=requires_gas,
                gas_asset_id=gas_asset or "",
                fee_usd=fee_usd,
                breakeven_usd=breakeven,
                count_above=len(above),
                usd_above=sum(above),
                unknown_price_rows=g['unknown'],
                recommendation=recommendation,
            ))

        rows.sort(key=lambda r: (0 if r.avg_per_vault <= LOW_AVG_USD else 1, -r.total_usd_known, r.asset_id))
        logger.info(f"⚖️  Breakeven: {len(rows)} assets analysed, {sum(1 for r in rows if r.requires_gas)} need gas")
        return rows


def load_gas_fee_native(raw: Dict) -> Dict[str, float]:
    """Keep numeric, non-negative native fees"""
    fees = {}
    for gas_asset, value in (raw if isinstance(raw, dict) else {}).items():
        if value == 0 and not isinstance(value, bool):
            fees[str(gas_asset)] = 0.0
            continue
        fee = positive_price(value)
        if fee is not None:
            fees[str(gas_asset)] = fee
    return fees
