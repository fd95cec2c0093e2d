"""
Wallet Materiality

Classifies wallets (vaults) by how much known USD value they still hold for
remaining plan work.

Scope:
- use_plan_scope=True: only (vault, asset) pairs present in a non-completed plan row
- use_plan_scope=False: every nonzero inventory position

Wallet categories:
- UNKNOWN     any item without a known price
- MATERIAL    known USD >= MIN_USD_PER_WALLET
- IMMATERIAL  otherwise
"""

from collections import OrderedDict
from dataclasses import dataclass, asdict, field
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .config import ConsolidationConfig
from .inventory_loader import InventoryPosition, PlanRow, remaining_scope
from .price_resolver import PriceRecord, is_stable_asset


# label, lower bound (inclusive), upper bound (exclusive)
VALUE_BUCKETS = [
    ('>=100', 100.0, None),
    ('50-99.99', 50.0, 100.0),
    ('10-49.99', 10.0, 50.0),
    ('1-9.99', 1.0, 10.0),
    ('<1', None, 1.0),
]


def bucket_for(usd: float) -> str:
    for label, lo, hi in VALUE_BUCKETS:
        if (lo is None or usd >= lo) and (hi is None or usd < hi):
            return label
    return VALUE_BUCKETS[-1][0]


@dataclass(frozen=True)
class MaterialityItem:
    """One in-scope position with its valuation"""
    vault_id: str
    asset_id: str
    amount: float
    price_usd: Optional[float]
    usd: Optional[float]
    below_min_by_policy: bool

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class WalletMateriality:
    """Per-wallet rollup"""
    vault_id: str
    vault_name: str = ""
    known_usd: float = 0.0
    item_count: int = 0
    unknown_count: int = 0
    items: List[MaterialityItem] = field(default_factory=list)

    def category(self, min_usd_per_wallet: float) -> str:
        if self.unknown_count > 0:
            return 'UNKNOWN'
        if self.known_usd >= min_usd_per_wallet:
            return 'MATERIAL'
        return 'IMMATERIAL'

    def to_dict(self, min_usd_per_wallet: float) -> Dict:
        return {
            'vaultId': self.vault_id,
            'vaultName': self.vault_name,
            'knownUSD': self.known_usd,
            'items': self.item_count,
            'unknownItems': self.unknown_count,
            'category': self.category(min_usd_per_wallet),
        }


@dataclass
class MaterialityReport:
    wallets: List[WalletMateriality]
    buckets: Dict[str, Dict[str, float]]
    min_usd_per_wallet: float

    def category_counts(self) -> Dict[str, int]:
        counts = {'MATERIAL': 0, 'IMMATERIAL': 0, 'UNKNOWN': 0}
        for w in self.wallets:
            counts[w.category(self.min_usd_per_wallet)] += 1
        return counts

    def items(self) -> List[MaterialityItem]:
        return [item for w in self.wallets for item in w.items]


class MaterialityAnalyzer:
    """
    Wallet materiality over inventory

    Features:
    - Plan-scoped or full-inventory view
    - Value buckets with wallet counts and USD sums
    - Per-item "below minimum by policy" flag (unknown price never flagged)
    """

    def __init__(self, config: ConsolidationConfig):
        self.config = config

    def _below_min(self, asset_id: str, usd: Optional[float]) -> bool:
        if usd is None:
            return False
        if is_stable_asset(asset_id, self.config.stable_tickers):
            return usd < self.config.stablecoin_min_usd
        return usd < self.config.min_usd_per_tx

    def in_scope(self, inventory: Sequence[InventoryPosition],
                 remaining: Optional[Sequence[PlanRow]]) -> List[InventoryPosition]:
        if not self.config.use_plan_scope or remaining is None:
            return list(inventory)
        _, _, pairs = remaining_scope(list(remaining))
        return [p for p in inventory if (p.vault_id, p.asset_id) in pairs]

    def analyze(
        self,
        inventory: Sequence[InventoryPosition],
        prices: Dict[str, PriceRecord],
        remaining: Optional[Sequence[PlanRow]] = None
    ) -> MaterialityReport:
        """
        Build the materiality report

        Args:
            inventory: Nonzero inventory positions
            prices: Resolved prices keyed by asset
            remaining: Non-completed plan rows (scope)

        Returns:
            MaterialityReport with wallets sorted by known USD desc, then vault id
        """
        positions = self.in_scope(inventory, remaining)
        wallets: Dict[str, WalletMateriality] = {}

        for p in positions:
            wallet = wallets.get(p.vault_id)
            if wallet is None:
                wallet = wallets[p.vault_id] = WalletMateriality(p.vault_id, p.vault_name)

            record = prices.get(p.asset_id)
            price = record.usd if record is not None and record.known else None
            usd = p.balance * price if price is not None else None

            wallet.item_count += 1
            if usd is None:
                wallet.unknown_count += 1
            else:
                wallet.known_usd += usd
            wallet.items.append(MaterialityItem(
                vault_id=p.vault_id,
                asset_id=p.asset_id,
                amount=p.balance,
                price_usd=price,
                usd=usd,
                below_min_by_policy=self._below_min(p.asset_id, usd),
            ))

        ordered = sorted(wallets.values(), key=lambda w: (-w.known_usd, w.vault_id))

        buckets: Dict[str, Dict[str, float]] = OrderedDict(
            (label, {'wallets': 0, 'usd': 0.0}) for label, _, _ in VALUE_BUCKETS
        )
        for w in ordered:
            b = buckets[bucket_for(w.known_usd)]
            b['wallets'] += 1
            b['usd'] += w.known_usd

        report = MaterialityReport(ordered, dict(buckets), self.config.min_usd_per_wallet)
        counts = report.category_counts()
        logger.info(
            f"🏦 Materiality: {len(ordered)} wallets in scope "
            f"(MATERIAL={counts['MATERIAL']}, IMMATERIAL={counts['IMMATERIAL']}, UNKNOWN={counts['UNKNOWN']})"
        )
        return report
