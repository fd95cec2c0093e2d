"""
Report Writer

Writes one run's results into the analysis directory:
- remaining_rows_v2.csv / remaining_rows.jsonl   every remaining row, classified
- by_reason_detailed.csv                          per-reason summary
- by_asset.csv                                    per-asset summary
- prices_used.csv                                 price and method per asset
- policy_used.txt                                 effective policy values
- report_summary_v2.txt                           human-readable summary
- gas_needs_wallets_with_names.csv                wallets holding NEEDS_GAS rows

Plus the writers for the breakeven, materiality, coverage and price-assumption
views, and unmapped_assets.txt from a price refresh.
"""

import json
from pathlib import Path
from typing import Dict, List, Sequence

import pandas as pd
from loguru import logger

from .aggregator import GasNeed, GroupSummary, RunTotals
from .breakeven import BreakevenRow
from .config import ConsolidationConfig
from .coverage import AssetCoverage
from .eligibility import ClassifiedRow, REASON_ORDER
from .materiality import MaterialityReport
from .price_resolver import PriceRecord


ROW_COLUMNS = [
    'rowId', 'sourceVaultId', 'assetId', 'amount', 'destinationVaultId', 'requiresGas',
    'gasAssetId', 'gasReady', 'priceUSD', 'priceSource', 'estUSD', 'minAmt', 'minBasis', 'reason',
]

COVERAGE_COLUMNS = ['assetId', 'vaultCount', 'rowCount', 'sumAvailable', 'sumTotal', 'coingeckoId', 'basisSymbol',
                    'priceUsdMethod', 'priceUsd', 'usdTotalKnownPrices', 'unknownPriceRows']

SUMMARY_COLUMNS = ['key', 'rows', 'wallets', 'nativeSum', 'knownUSD', 'unknownPriceRows',
                   'medianUSD', 'p90USD', 'maxUSD']


def _summary_frame(summaries: Sequence[GroupSummary], key_name: str) -> pd.DataFrame:
    records = [{
        'key': s.key,
        'rows': s.row_count,
        'wallets': s.wallet_count,
        'nativeSum': s.native_sum,
        'knownUSD': s.known_usd_sum,
        'unknownPriceRows': s.unknown_count,
        'medianUSD': s.median_usd,
        'p90USD': s.p90_usd,
        'maxUSD': s.max_usd,
    } for s in summaries]
    df = pd.DataFrame.from_records(records, columns=SUMMARY_COLUMNS)
    return df.rename(columns={'key': key_name})


def _usd(value: float) -> str:
    return f"${value:,.2f}"


class ReportWriter:
    """
    Analysis directory writer

    Features:
    - pandas CSV output with stable column order
    - JSON lines mirror of the row table
    - Plain-text policy and summary reports
    """

    def __init__(self, analysis_dir: Path):
        self.analysis_dir = Path(analysis_dir)

    def _path(self, name: str) -> Path:
        self.analysis_dir.mkdir(parents=True, exist_ok=True)
        return self.analysis_dir / name

    def write_rows(self, rows: Sequence[ClassifiedRow]) -> List[Path]:
        records = [r.to_dict() for r in rows]
        csv_path = self._path('remaining_rows_v2.csv')
        pd.DataFrame.from_records(records, columns=ROW_COLUMNS).to_csv(csv_path, index=False)

        jsonl_path = self._path('remaining_rows.jsonl')
        with open(jsonl_path, 'w', encoding='utf-8') as f:
            for record in records:
                f.write(json.dumps(record) + "\n")
        return [csv_path, jsonl_path]

    def write_summaries(self, by_reason: Sequence[GroupSummary], by_asset: Sequence[GroupSummary]) -> List[Path]:
        reason_path = self._path('by_reason_detailed.csv')
        _summary_frame(by_reason, 'reason').to_csv(reason_path, index=False)

        asset_path = self._path('by_asset.csv')
        _summary_frame(by_asset, 'assetId').to_csv(asset_path, index=False)
        return [reason_path, asset_path]

    def write_prices(self, records: Dict[str, PriceRecord], name: str = 'prices_used.csv') -> Path:
        path = self._path(name)
        df = pd.DataFrame.from_records(
            [r.to_dict() for r in records.values()],
            columns=['assetId', 'usd', 'method', 'reference'],
        )
        df.to_csv(path, index=False)
        return path

    def write_policy(self, config: ConsolidationConfig, ledger_files: Sequence[str]) -> Path:
        path = self._path('policy_used.txt')
        lines = [
            f"MIN_USD_PER_TX={config.min_usd_per_tx}",
            f"STABLECOIN_MIN_USD={config.stablecoin_min_usd}",
            f"MIN_USD_PER_WALLET={config.min_usd_per_wallet}",
            f"APPROVALS_PER_MIN={config.approvals_per_min}",
            f"STRICT_PRICING={int(config.strict_pricing)}",
            f"OFFLINE={int(config.offline)}",
            f"STABLE_TICKERS={','.join(config.stable_tickers)}",
            f"COMPLETED_LEDGERS={','.join(ledger_files) or '(none)'}",
        ]
        path.write_text("\n".join(lines) + "\n", encoding='utf-8')
        return path

    def write_summary(
        self,
        totals: RunTotals,
        by_reason: Sequence[GroupSummary],
        ledger_files: Sequence[str],
        completed_count: int,
        plan_count: int,
        method_counts: Dict[str, int]
    ) -> Path:
        path = self._path('report_summary_v2.txt')
        reason_lookup = {s.key: s for s in by_reason}

        lines = [
            "VAULT CONSOLIDATION - REMAINING WORK",
            "=" * 40,
            f"Plan rows: {plan_count}",
            f"Completed rows: {completed_count}",
            f"Ledgers: {', '.join(ledger_files) or '(none)'}",
            "",
            f"Remaining rows: {totals.remaining_rows}",
            f"Unique source wallets: {totals.unique_wallets}",
            f"Total known USD: {_usd(totals.total_known_usd)}",
            f"Actionable now (READY): {_usd(totals.actionable_now_usd)}",
            f"Actionable after funding gas (READY + NEEDS_GAS): {_usd(totals.actionable_after_funding_usd)}",
            f"Below minimum USD: {_usd(totals.below_min_usd)}",
            f"Unknown-price rows: {totals.unknown_price_rows}",
            "",
            "By reason:",
        ]
        for reason in REASON_ORDER:
            s = reason_lookup.get(reason.value)
            if s is None:
                continue
            lines.append(
                f"  {reason.value:<18} rows={s.row_count:<6} wallets={s.wallet_count:<6} "
                f"knownUSD={_usd(s.known_usd_sum)} unknown={s.unknown_count}"
            )

        lines += [
            "",
            "Price methods: " + ", ".join(f"{k}={v}" for k, v in method_counts.items() if v),
            "",
            f"READY rows: {totals.ready_rows}",
            f"Estimated approval time: {totals.approval_hours:.2f} hours",
        ]
        path.write_text("\n".join(lines) + "\n", encoding='utf-8')
        return path

    def write_breakeven(self, rows: Sequence[BreakevenRow]) -> Path:
        path = self._path('breakeven_by_asset.csv')
        columns = list(BreakevenRow.__dataclass_fields__)
        pd.DataFrame.from_records([r.to_dict() for r in rows], columns=columns).to_csv(path, index=False)
        logger.info(f"💾 Wrote {path.name} ({len(rows)} assets)")
        return path

    def write_materiality(self, report: MaterialityReport) -> List[Path]:
        wallets_path = self._path('wallet_materiality.csv')
        pd.DataFrame.from_records(
            [w.to_dict(report.min_usd_per_wallet) for w in report.wallets],
            columns=['vaultId', 'vaultName', 'knownUSD', 'items', 'unknownItems', 'category'],
        ).to_csv(wallets_path, index=False)

        items_path = self._path('materiality_items.csv')
        pd.DataFrame.from_records(
            [i.to_dict() for i in report.items()],
            columns=['vault_id', 'asset_id', 'amount', 'price_usd', 'usd', 'below_min_by_policy'],
        ).to_csv(items_path, index=False)

        buckets_path = self._path('materiality_buckets.csv')
        pd.DataFrame.from_records(
            [{'bucket': label, 'wallets': b['wallets'], 'usd': b['usd']} for label, b in report.buckets.items()],
            columns=['bucket', 'wallets', 'usd'],
        ).to_csv(buckets_path, index=False)

        logger.info(f"💾 Wrote materiality reports ({len(report.wallets)} wallets)")
        return [wallets_path, items_path, buckets_path]

    def write_gas_needs(self, needs: Sequence[GasNeed]) -> Path:
        path = self._path('gas_needs_wallets_with_names.csv')
        pd.DataFrame.from_records(
            [g.to_dict() for g in needs],
            columns=['vaultId', 'vaultName', 'gasAssetsNeeded', 'dependentAssetsCount', 'dependentUsdKnownPrices'],
        ).to_csv(path, index=False)
        return path

    def write_unmapped(self, asset_ids: Sequence[str]) -> Path:
        """One unpriced asset per line; empty file when everything is priced"""
        path = self._path('unmapped_assets.txt')
        path.write_text("".join(f"{a}\n" for a in asset_ids), encoding='utf-8')
        return path

    def write_coverage(self, coverage: Sequence[AssetCoverage]) -> List[Path]:
        csv_path = self._path('asset_coverage.csv')
        pd.DataFrame.from_records(
            [c.to_dict() for c in coverage],
            columns=COVERAGE_COLUMNS,
        ).to_csv(csv_path, index=False)

        top_path = self._path('asset_coverage_top_wallets.json')
        with open(top_path, 'w', encoding='utf-8') as f:
            json.dump({c.asset_id: [w.to_dict() for w in c.top_wallets] for c in coverage}, f, indent=2)

        logger.info(f"💾 Wrote coverage reports ({len(coverage)} assets)")
        return [csv_path, top_path]
