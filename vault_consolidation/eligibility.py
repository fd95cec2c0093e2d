"""
Eligibility Classifier

Assigns every remaining plan row exactly one execution-readiness reason.

Minimum transfer amount precedence:
1. Per-asset table (min_by_asset.json)
2. Stable asset: STABLECOIN_MIN_USD read as token units at $1
3. Known price: MIN_USD_PER_TX / price
4. Otherwise no floor - an unknown price never produces BELOW_MIN by itself

Reason priority:
1. NEEDS_GAS        requiresGas and not gasReady (wins over everything)
2. BELOW_MIN        amount < minAmount (equality is not below)
3. UNKNOWN_PRICE    no other disqualifier and price unknown
4. READY_TO_EXECUTE
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from loguru import logger

from .completion_ledger import CompletedSet
from .config import ConsolidationConfig, DEFAULT_STABLE_TICKERS
from .inventory_loader import PlanRow
from .price_resolver import PriceRecord, is_stable_asset


class Reason(str, Enum):
    """Execution readiness"""
    READY_TO_EXECUTE = 'READY_TO_EXECUTE'
    NEEDS_GAS = 'NEEDS_GAS'
    BELOW_MIN = 'BELOW_MIN'
    UNKNOWN_PRICE = 'UNKNOWN_PRICE'


REASON_ORDER = [Reason.READY_TO_EXECUTE, Reason.NEEDS_GAS, Reason.BELOW_MIN, Reason.UNKNOWN_PRICE]


@dataclass(frozen=True)
class MinRules:
    """Minimum-transfer policy"""
    min_usd_per_tx: float = 0.01
    stablecoin_min_usd: float = 0.25
    min_by_asset: Dict[str, float] = field(default_factory=dict)
    stable_tickers: Tuple[str, ...] = tuple(DEFAULT_STABLE_TICKERS)

    @classmethod
    def from_config(cls, config: ConsolidationConfig, min_by_asset: Optional[Dict[str, float]] = None) -> 'MinRules':
        return cls(
            min_usd_per_tx=config.min_usd_per_tx,
            stablecoin_min_usd=config.stablecoin_min_usd,
            min_by_asset=dict(min_by_asset or {}),
            stable_tickers=tuple(config.stable_tickers),
        )


@dataclass(frozen=True)
class ClassifiedRow:
    """Plan row with valuation and readiness reason"""
    row: PlanRow
    price_usd: Optional[float]
    price_method: str
    estimated_usd: Optional[float]
    min_amount: Optional[float]
    min_basis: str
    reason: Reason

    @property
    def row_id(self) -> str:
        return self.row.row_id

    @property
    def asset_id(self) -> str:
        return self.row.asset_id

    @property
    def source_vault_id(self) -> str:
        return self.row.source_vault_id

    @property
    def amount(self) -> float:
        return self.row.amount

    def to_dict(self) -> Dict:
        """Flat record in report column order"""
        r = self.row
        return {
            'rowId': r.row_id,
            'sourceVaultId': r.source_vault_id,
            'assetId': r.asset_id,
            'amount': r.amount,
            'destinationVaultId': r.destination_vault_id,
            'requiresGas': r.requires_gas,
            'gasAssetId': r.gas_asset_id,
            'gasReady': r.gas_ready,
            'priceUSD': self.price_usd,
            'priceSource': self.price_method,
            'estUSD': self.estimated_usd,
            'minAmt': self.min_amount,
            'minBasis': self.min_basis,
            'reason': self.reason.value,
        }


def _fmt_usd(value: float) -> str:
    return f"{value:g}"


def min_amount_for(asset_id: str, price: PriceRecord, rules: MinRules) -> Tuple[Optional[float], str]:
    """
    Minimum transfer amount in token units

    Args:
        asset_id: Asset being moved
        price: Resolved price for the asset
        rules: Minimum policy

    Returns:
        Tuple of (min_amount or None, basis description)
    """
    if asset_id in rules.min_by_asset:
        return rules.min_by_asset[asset_id], "min_by_asset"

    if is_stable_asset(asset_id, rules.stable_tickers):
        return rules.stablecoin_min_usd, f"stable_usd_floor_${_fmt_usd(rules.stablecoin_min_usd)}"

    if price.known:
        return rules.min_usd_per_tx / price.usd, f"usd_floor_${_fmt_usd(rules.min_usd_per_tx)}"

    return None, "no_price_no_floor"


def classify(row: PlanRow, price: PriceRecord, rules: MinRules) -> ClassifiedRow:
    """
    Classify one remaining plan row

    Never raises; every row gets exactly one reason.
    """
    price_known = price.known
    estimated_usd = row.amount * price.usd if price_known else None
    min_amount, min_basis = min_amount_for(row.asset_id, price, rules)

    if row.gas_blocked:
        reason = Reason.NEEDS_GAS
    elif min_amount is not None and row.amount < min_amount:
        reason = Reason.BELOW_MIN
    elif not price_known:
        reason = Reason.UNKNOWN_PRICE
    else:
        reason = Reason.READY_TO_EXECUTE

    return ClassifiedRow(
        row=row,
        price_usd=price.usd if price_known else None,
        price_method=price.method.value,
        estimated_usd=estimated_usd,
        min_amount=min_amount,
        min_basis=min_basis,
        reason=reason,
    )


@dataclass
class ClassificationResult:
    """Output of one classification pass"""
    rows: List[ClassifiedRow]
    completed_count: int
    plan_count: int

    def by_reason(self, reason: Reason) -> List[ClassifiedRow]:
        return [r for r in self.rows if r.reason == reason]


def split_remaining(plan: Sequence[PlanRow], completed: CompletedSet) -> Tuple[List[PlanRow], int]:
    """Plan rows whose RowId is not completed, plus the completed count"""
    remaining = [r for r in plan if r.row_id not in completed]
    return remaining, len(plan) - len(remaining)


class EligibilityClassifier:
    """
    Classify remaining plan rows against resolved prices

    Features:
    - Completed RowIds excluded before classification
    - Deterministic output order (plan order)
    - Reason counts logged per run
    """

    def __init__(self, rules: MinRules):
        self.rules = rules

    def classify_rows(self, rows: Iterable[PlanRow], prices: Dict[str, PriceRecord]) -> List[ClassifiedRow]:
        classified = []
        for row in rows:
            price = prices.get(row.asset_id) or PriceRecord.unknown(row.asset_id)
            classified.append(classify(row, price, self.rules))
        return classified

    def run(self, plan: Sequence[PlanRow], completed: CompletedSet,
            prices: Dict[str, PriceRecord]) -> ClassificationResult:
        """
        Exclude completed rows and classify the rest

        Args:
            plan: All plan rows
            completed: Completed RowIds
            prices: Resolved prices keyed by asset

        Returns:
            ClassificationResult
        """
        remaining, completed_count = split_remaining(plan, completed)
        classified = self.classify_rows(remaining, prices)

        counts = {reason.value: 0 for reason in REASON_ORDER}
        for c in classified:
            counts[c.reason.value] += 1

        logger.info(
            f"🧮 Classified {len(classified)} remaining rows ({completed_count} completed): "
            + ", ".join(f"{k}={v}" for k, v in counts.items())
        )
        return ClassificationResult(rows=classified, completed_count=completed_count, plan_count=len(plan))
