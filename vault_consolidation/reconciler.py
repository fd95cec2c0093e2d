"""
Consolidation Reconciler

Runs the pipeline for one workspace:

    ledger -> completed set
    inventory + plan -> remaining rows (plan minus completed)
    remaining assets -> PriceResolver -> prices
    prices + rows -> EligibilityClassifier -> classified rows
    classified rows -> Aggregator -> summaries
    summaries -> ReportWriter, new live prices -> price cache

Every required input is loaded and validated before any price is resolved
or any file is written, so a fatal error leaves no partial output.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from loguru import logger

from .aggregator import (
    GasNeed, GroupSummary, RunTotals, compute_totals, summarize_by_asset, summarize_by_reason, summarize_gas_needs,
)
from .batch_executor import BatchExecutor, BatchResult, Submitter
from .breakeven import BreakevenAnalyzer, BreakevenRow, load_gas_fee_native
from .coingecko_client import CoinGeckoClient
from .completion_ledger import CompletedSet, CompletionLedger
from .config import ConsolidationConfig, load_json_mapping, load_min_by_asset
from .coverage import AssetCoverage, CoverageAnalyzer
from .eligibility import ClassifiedRow, EligibilityClassifier, MinRules, split_remaining
from .inventory_loader import InventoryPosition, PlanRow, load_inventory, load_plan, vault_names
from .materiality import MaterialityAnalyzer, MaterialityReport
from .min_table import MinRuleSet, MinTable, build_min_table
from .price_resolver import PriceCache, PriceRecord, PriceResolver
from .report_writer import ReportWriter


@dataclass
class RunInputs:
    """Validated inputs for one run"""
    completed: CompletedSet
    inventory: List[InventoryPosition]
    plan: List[PlanRow]

    @property
    def remaining(self) -> List[PlanRow]:
        return split_remaining(self.plan, self.completed)[0]


@dataclass
class ReconciliationReport:
    """Everything one analysis run produced"""
    rows: List[ClassifiedRow]
    by_asset: List[GroupSummary]
    by_reason: List[GroupSummary]
    totals: RunTotals
    prices: Dict[str, PriceRecord]
    completed_count: int
    plan_count: int
    ledger_files: List[str]
    method_counts: Dict[str, int]
    gas_needs: List[GasNeed] = field(default_factory=list)
    cache_updated: bool = False
    outputs: List[Path] = field(default_factory=list)


class Reconciler:
    """
    Pipeline orchestration for one workspace

    Features:
    - Fail-fast input loading (ledger dir, inventory, plan, columns)
    - One PriceResolver per run (shared memo across views)
    - Report writing and cache persistence at the end of a run
    - Breakeven, materiality, coverage, min-table and READY batch views
    """

    def __init__(
        self,
        config: ConsolidationConfig,
        client: Optional[CoinGeckoClient] = None,
        cache: Optional[PriceCache] = None,
        writer: Optional[ReportWriter] = None
    ):
        """
        Initialize reconciler

        Args:
            config: Validated run configuration
            client: Live price client override (tests inject a fake)
            cache: Price store override (default: execute/last_prices_usd.json)
            writer: Report writer (default: analysis directory from config)
        """
        self.config = config
        self.client = client
        self.cache = cache
        self.writer = writer or ReportWriter(config.analysis_dir)
        self.ledger = CompletionLedger(config.execute_dir)
        self._resolver: Optional[PriceResolver] = None

    @property
    def resolver(self) -> PriceResolver:
        if self._resolver is None:
            self._resolver = PriceResolver.from_config(self.config, client=self.client, cache=self.cache)
        return self._resolver

    def load_inputs(self) -> RunInputs:
        """
        Load ledger, inventory and plan

        Raises:
            MissingInputError / MissingColumnError on any fatal input problem
        """
        completed = self.ledger.load_completed()
        inventory = load_inventory(self.config.inventory_path)
        plan = load_plan(self.config.plan_path)
        return RunInputs(completed=completed, inventory=inventory, plan=plan)

    def min_rules(self) -> MinRules:
        return MinRules.from_config(self.config, load_min_by_asset(self.config.execute_file('min_by_asset')))

    def classify(self, inputs: RunInputs) -> ReconciliationReport:
        """Resolve, classify and aggregate (no file output)"""
        remaining = inputs.remaining
        prices = self.resolver.resolve_all(r.asset_id for r in remaining)

        classifier = EligibilityClassifier(self.min_rules())
        result = classifier.run(inputs.plan, inputs.completed, prices)

        return ReconciliationReport(
            rows=result.rows,
            by_asset=summarize_by_asset(result.rows),
            by_reason=summarize_by_reason(result.rows),
            totals=compute_totals(result.rows, self.config.approvals_per_min),
            prices=prices,
            completed_count=result.completed_count,
            plan_count=result.plan_count,
            ledger_files=list(inputs.completed.files),
            method_counts=self.resolver.method_counts(),
            gas_needs=summarize_gas_needs(result.rows, vault_names(inputs.inventory)),
        )

    def analyze(self, write: bool = True) -> ReconciliationReport:
        """
        Full analysis run

        Args:
            write: Write reports into the analysis directory

        Returns:
            ReconciliationReport
        """
        inputs = self.load_inputs()
        report = self.classify(inputs)

        if write:
            w = self.writer
            report.outputs += w.write_rows(report.rows)
            report.outputs += w.write_summaries(report.by_reason, report.by_asset)
            report.outputs.append(w.write_prices(report.prices))
            report.outputs.append(w.write_policy(self.config, report.ledger_files))
            report.outputs.append(w.write_summary(
                report.totals, report.by_reason, report.ledger_files,
                report.completed_count, report.plan_count, report.method_counts,
            ))
            report.outputs.append(w.write_gas_needs(report.gas_needs))
            logger.info(f"💾 Wrote {len(report.outputs)} reports to {self.config.analysis_dir}")

        report.cache_updated = self.resolver.persist()

        t = report.totals
        logger.info(
            f"✓ Remaining {t.remaining_rows} rows / {t.unique_wallets} wallets | "
            f"known ${t.total_known_usd:,.2f} | READY ${t.actionable_now_usd:,.2f} | "
            f"approvals ~{t.approval_hours:.2f}h"
        )
        return report

    def update_prices(self) -> Dict[str, PriceRecord]:
        """Resolve every inventory and plan asset, persist the cache, write assumptions and unmapped list"""
        inputs = self.load_inputs()
        assets = {p.asset_id for p in inputs.inventory} | {r.asset_id for r in inputs.plan}
        prices = self.resolver.resolve_all(assets)

        self.resolver.persist()
        self.writer.write_prices(prices, name='price_assumptions.csv')
        self.writer.write_unmapped([a for a, p in prices.items() if not p.known])

        counts = self.resolver.method_counts()
        logger.info("💰 Prices: " + ", ".join(f"{k}={v}" for k, v in counts.items() if v))
        return prices

    def breakeven(self, write: bool = True) -> List[BreakevenRow]:
        inputs = self.load_inputs()
        gas_fees = load_gas_fee_native(load_json_mapping(self.config.execute_file('gas_fee_native')))
        rows = BreakevenAnalyzer(self.config, self.resolver, gas_fees).analyze(inputs.inventory, inputs.plan)
        if write:
            self.writer.write_breakeven(rows)
        self.resolver.persist()
        return rows

    def materiality(self, write: bool = True) -> MaterialityReport:
        inputs = self.load_inputs()
        analyzer = MaterialityAnalyzer(self.config)
        positions = analyzer.in_scope(inputs.inventory, inputs.remaining)
        prices = self.resolver.resolve_all(p.asset_id for p in positions)
        report = analyzer.analyze(inputs.inventory, prices, inputs.remaining)
        if write:
            self.writer.write_materiality(report)
        self.resolver.persist()
        return report

    def coverage(self, assets: Optional[Sequence[str]] = None, write: bool = True) -> List[AssetCoverage]:
        """
        Per-asset coverage over the inventory

        Args:
            assets: Assets to report (default: every inventory asset)
            write: Write asset_coverage.csv and the top-wallets JSON
        """
        inventory = load_inventory(self.config.inventory_path)
        wanted = sorted(set(assets)) if assets else sorted({p.asset_id for p in inventory})
        prices = self.resolver.resolve_all(wanted)
        coverage = CoverageAnalyzer.from_config(self.config).analyze(inventory, prices, wanted)
        if write:
            self.writer.write_coverage(coverage)
        self.resolver.persist()
        return coverage

    def build_min_table(self, write: bool = True) -> MinTable:
        """Derive min_by_asset.json from min_rules.json and the plan's assets"""
        inputs = self.load_inputs()
        rules = MinRuleSet.from_dict(
            load_json_mapping(self.config.execute_file('min_rules')),
            default_min_usd=self.config.min_usd_per_tx,
        )
        assets = {r.asset_id for r in inputs.plan}
        prices = self.resolver.resolve_all(assets)
        table = build_min_table(assets, rules, prices, self.config.stable_tickers)
        if write:
            table.save(self.config.execute_file('min_by_asset'))
        self.resolver.persist()
        return table

    def execute_ready(self, submitter: Optional[Submitter] = None, execute: bool = False,
                      run_id: Optional[str] = None) -> BatchResult:
        """
        Classify, then preview or submit the next READY batch

        Args:
            submitter: Transfer submitter (required when execute=True)
            execute: Submit for real
            run_id: Fixed run id (default: generated)
        """
        report = self.analyze(write=False)
        executor = BatchExecutor(
            ledger=self.ledger,
            journal_dir=self.config.execute_dir,
            submitter=submitter,
            batch_size=self.config.batch_size,
            run_id=run_id,
        )
        completed = self.ledger.load_completed()
        return executor.run(report.rows, completed, execute=execute)
