"""
Aggregator

Rolls classified rows up by asset and by reason.

Per group: row count, distinct source wallets, native amount sum, known-USD
sum (unknown-priced rows excluded from the sum and counted separately), and
median / p90 / max of per-row known USD.

Report order: known USD desc, then row count desc, then key asc.
"""

import math
from collections import defaultdict
from dataclasses import dataclass, asdict, field
from typing import Callable, Dict, Iterable, List, Sequence

from .eligibility import ClassifiedRow, Reason, REASON_ORDER


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """
    Linear interpolation between order statistics

    index = (n - 1) * p, blended between floor and ceil values.
    Empty input gives 0.

    Args:
        sorted_values: Ascending values
        p: Fraction in [0, 1]
    """
    if not sorted_values:
        return 0.0
    idx = (len(sorted_values) - 1) * p
    lo = math.floor(idx)
    hi = math.ceil(idx)
    if lo == hi:
        return float(sorted_values[lo])
    w = idx - lo
    return sorted_values[lo] * (1 - w) + sorted_values[hi] * w


@dataclass(frozen=True)
class GroupSummary:
    """Aggregate for one asset or one reason"""
    key: str
    row_count: int
    wallet_count: int
    native_sum: float
    known_usd_sum: float
    unknown_count: int
    median_usd: float
    p90_usd: float
    max_usd: float

    def to_dict(self) -> Dict:
        return asdict(self)


def report_sort_key(summary: GroupSummary):
    return (-summary.known_usd_sum, -summary.row_count, summary.key)


def summarize_group(key: str, rows: Iterable[ClassifiedRow]) -> GroupSummary:
    rows = list(rows)
    usd_values = sorted(r.estimated_usd for r in rows if r.estimated_usd is not None)
    return GroupSummary(
        key=key,
        row_count=len(rows),
        wallet_count=len({r.source_vault_id for r in rows}),
        native_sum=sum(r.amount for r in rows),
        known_usd_sum=sum(usd_values),
        unknown_count=sum(1 for r in rows if r.estimated_usd is None),
        median_usd=percentile(usd_values, 0.5),
        p90_usd=percentile(usd_values, 0.9),
        max_usd=usd_values[-1] if usd_values else 0.0,
    )


def _group(rows: Iterable[ClassifiedRow], key_fn: Callable[[ClassifiedRow], str]) -> Dict[str, List[ClassifiedRow]]:
    groups: Dict[str, List[ClassifiedRow]] = defaultdict(list)
    for r in rows:
        groups[key_fn(r)].append(r)
    return groups


def summarize_by_asset(rows: Iterable[ClassifiedRow]) -> List[GroupSummary]:
    groups = _group(rows, lambda r: r.asset_id)
    summaries = [summarize_group(k, v) for k, v in groups.items()]
    return sorted(summaries, key=report_sort_key)


def summarize_by_reason(rows: Iterable[ClassifiedRow]) -> List[GroupSummary]:
    """Every reason is present, including empty ones"""
    groups = _group(rows, lambda r: r.reason.value)
    summaries = [summarize_group(reason.value, groups.get(reason.value, [])) for reason in REASON_ORDER]
    return sorted(summaries, key=report_sort_key)


@dataclass(frozen=True)
class RunTotals:
    """Headline numbers for the summary report"""
    remaining_rows: int
    unique_wallets: int
    total_known_usd: float
    actionable_now_usd: float
    actionable_after_funding_usd: float
    below_min_usd: float
    unknown_price_rows: int
    ready_rows: int
    approval_hours: float

    def to_dict(self) -> Dict:
        return asdict(self)


def _known_usd(rows: Iterable[ClassifiedRow], reasons) -> float:
    return sum(r.estimated_usd for r in rows if r.reason in reasons and r.estimated_usd is not None)


def compute_totals(rows: Sequence[ClassifiedRow], approvals_per_min: float = 8.0) -> RunTotals:
    """
    Totals over known prices

    approval_hours = READY rows / (approvals_per_min * 60)
    """
    ready_rows = sum(1 for r in rows if r.reason == Reason.READY_TO_EXECUTE)
    approvals_per_hour = approvals_per_min * 60
    return RunTotals(
        remaining_rows=len(rows),
        unique_wallets=len({r.source_vault_id for r in rows}),
        total_known_usd=sum(r.estimated_usd for r in rows if r.estimated_usd is not None),
        actionable_now_usd=_known_usd(rows, {Reason.READY_TO_EXECUTE}),
        actionable_after_funding_usd=_known_usd(rows, {Reason.READY_TO_EXECUTE, Reason.NEEDS_GAS}),
        below_min_usd=_known_usd(rows, {Reason.BELOW_MIN}),
        unknown_price_rows=sum(1 for r in rows if r.reason == Reason.UNKNOWN_PRICE),
        ready_rows=ready_rows,
        approval_hours=(ready_rows / approvals_per_hour) if approvals_per_hour > 0 else 0.0,
    )


@dataclass
class GasNeed:
    """Source wallet holding gas-blocked rows"""
    vault_id: str
    vault_name: str = ""
    gas_assets: List[str] = field(default_factory=list)
    dependent_assets: List[str] = field(default_factory=list)
    dependent_usd: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'vaultId': self.vault_id,
            'vaultName': self.vault_name,
            'gasAssetsNeeded': '|'.join(self.gas_assets),
            'dependentAssetsCount': len(self.dependent_assets),
            'dependentUsdKnownPrices': round(self.dependent_usd, 6),
        }


def summarize_gas_needs(rows: Iterable[ClassifiedRow], names: Dict[str, str]) -> List[GasNeed]:
    """
    NEEDS_GAS rows rolled up per source wallet

    Args:
        rows: Classified remaining rows
        names: vault id -> display name

    Returns:
        One GasNeed per wallet, dependent USD desc, then vault id
    """
    groups = _group((r for r in rows if r.reason == Reason.NEEDS_GAS), lambda r: r.source_vault_id)
    needs = []
    for vault_id, group in groups.items():
        needs.append(GasNeed(
            vault_id=vault_id,
            vault_name=names.get(vault_id, ""),
            gas_assets=sorted({r.row.gas_asset_id for r in group if r.row.gas_asset_id}),
            dependent_assets=sorted({r.asset_id for r in group}),
            dependent_usd=sum(r.estimated_usd for r in group if r.estimated_usd is not None),
        ))
    return sorted(needs, key=lambda g: (-g.dependent_usd, g.vault_id))
