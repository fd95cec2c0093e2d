"""
Minimum Table Generator

Derives the per-asset minimum transfer table (min_by_asset.json) from a rule
set (min_rules.json) and the plan's asset set.

Precedence per asset:
1. SELF_GAS_WITH_MINIMUM  fixed native amount          -> self_gas_minimum
2. FORCE_MIN_USD          fixed amount                 -> forced_min_usd
3. Stable asset           USD floor read as units      -> stablecoin
4. Priced asset           USD floor / price            -> usd_based
5. No price               no entry                     -> no_price_mapping

USD floor: DEFAULT_MIN_USD, replaced by SELF_GAS_MIN_USD for SELF_GAS_CHEAP
assets and EXPENSIVE_SELF_GAS_MIN_USD for EXPENSIVE_SELF_GAS assets.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Optional

from loguru import logger

from .config import DEFAULT_STABLE_TICKERS
from .price_resolver import PriceRecord, is_stable_asset, positive_price


@dataclass
class MinRuleSet:
    """Parsed min_rules.json"""
    self_gas_with_minimum: Dict[str, float] = field(default_factory=dict)
    force_min_usd: Dict[str, float] = field(default_factory=dict)
    self_gas_cheap: set = field(default_factory=set)
    expensive_self_gas: set = field(default_factory=set)
    default_min_usd: float = 0.01
    self_gas_min_usd: Optional[float] = None
    expensive_self_gas_min_usd: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict, default_min_usd: float = 0.01) -> 'MinRuleSet':
        data = data if isinstance(data, dict) else {}

        def section(key, kind):
            value = data.get(key)
            if value is None:
                return kind()
            if not isinstance(value, kind):
                logger.warning(f"Ignoring {key}: expected {kind.__name__}, got {type(value).__name__}")
                return kind()
            return value

        def amounts(key):
            table = {}
            for asset_id, value in section(key, dict).items():
                amount = positive_price(value)
                if amount is None:
                    logger.warning(f"Ignoring {key}[{asset_id}] = {value!r}")
                    continue
                table[str(asset_id)] = amount
            return table

        return cls(
            self_gas_with_minimum=amounts('SELF_GAS_WITH_MINIMUM'),
            force_min_usd=amounts('FORCE_MIN_USD'),
            self_gas_cheap={str(a) for a in section('SELF_GAS_CHEAP', list)},
            expensive_self_gas={str(a) for a in section('EXPENSIVE_SELF_GAS', list)},
            default_min_usd=positive_price(data.get('DEFAULT_MIN_USD')) or default_min_usd,
            self_gas_min_usd=positive_price(data.get('SELF_GAS_MIN_USD')),
            expensive_self_gas_min_usd=positive_price(data.get('EXPENSIVE_SELF_GAS_MIN_USD')),
        )

    def usd_floor(self, asset_id: str) -> float:
        usd_min = self.default_min_usd
        if asset_id in self.self_gas_cheap and self.self_gas_min_usd is not None:
            usd_min = self.self_gas_min_usd
        if asset_id in self.expensive_self_gas and self.expensive_self_gas_min_usd is not None:
            usd_min = self.expensive_self_gas_min_usd
        return usd_min


@dataclass
class MinTable:
    min_by_asset: Dict[str, float]
    reason_by_asset: Dict[str, str]
    min_usd_default: float

    def to_dict(self) -> Dict:
        return {
            'generatedAt': datetime.now(timezone.utc).isoformat(),
            'minUsdDefault': self.min_usd_default,
            'minByAsset': self.min_by_asset,
            'reasonByAsset': self.reason_by_asset,
        }

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"💾 Wrote {path.name}: {len(self.min_by_asset)} minimums")
        return path


def build_min_table(
    asset_ids: Iterable[str],
    rules: MinRuleSet,
    prices: Dict[str, PriceRecord],
    stable_tickers=DEFAULT_STABLE_TICKERS
) -> MinTable:
    """
    Build minByAsset / reasonByAsset

    Args:
        asset_ids: Assets appearing in the plan
        rules: Parsed rule set
        prices: Resolved prices keyed by asset
        stable_tickers: Stable ticker substrings

    Returns:
        MinTable (assets without a price get no minimum)
    """
    min_by_asset: Dict[str, float] = {}
    reason_by_asset: Dict[str, str] = {}

    for asset_id in sorted(set(asset_ids)):
        if asset_id in rules.self_gas_with_minimum:
            min_by_asset[asset_id] = rules.self_gas_with_minimum[asset_id]
            reason_by_asset[asset_id] = 'self_gas_minimum'
            continue

        if asset_id in rules.force_min_usd:
            min_by_asset[asset_id] = round(rules.force_min_usd[asset_id], 12)
            reason_by_asset[asset_id] = 'forced_min_usd'
            continue

        usd_min = rules.usd_floor(asset_id)

        if is_stable_asset(asset_id, stable_tickers):
            min_by_asset[asset_id] = round(usd_min, 12)
            reason_by_asset[asset_id] = 'stablecoin'
            continue

        record = prices.get(asset_id)
        if record is None or not record.known:
            reason_by_asset[asset_id] = 'no_price_mapping'
            continue

        min_by_asset[asset_id] = round(usd_min / record.usd, 12)
        reason_by_asset[asset_id] = 'usd_based'

    missing = sum(1 for r in reason_by_asset.values() if r == 'no_price_mapping')
    logger.info(f"📏 Min table: {len(min_by_asset)} assets with minimums, {missing} without price")
    return MinTable(min_by_asset, reason_by_asset, rules.default_min_usd)
