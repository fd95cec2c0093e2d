"""
Vault Consolidation

Reconciles a custodial wallet inventory against a transfer plan and classifies
every remaining transfer by execution readiness, with USD valuation.

Components:
- completion_ledger: append-only completed-row ledgers
- price_resolver: ordered price strategy chain with persistent cache
- eligibility: minimum thresholds and readiness reasons
- aggregator: per-asset / per-reason rollups and percentiles
- reconciler: one-run pipeline orchestration
- breakeven / materiality / coverage / min_table: supplementary analysis views
- batch_executor: READY batch preview and submission journal

Readiness reasons (priority order):
1. NEEDS_GAS - gas required and not funded
2. BELOW_MIN - amount below the asset's minimum transfer
3. UNKNOWN_PRICE - nothing else wrong, but no price
4. READY_TO_EXECUTE
"""

from .exceptions import (
    ConsolidationError,
    MissingInputError,
    MissingColumnError,
    InvalidPolicyError,
)
from .config import (
    ConfigLoader,
    ConsolidationConfig,
)
from .inventory_loader import (
    InventoryPosition,
    PlanRow,
    load_inventory,
    load_plan,
)
from .completion_ledger import (
    CompletionLedger,
    CompletedSet,
)
from .price_resolver import (
    PriceCache,
    PriceMethod,
    PriceRecord,
    PriceResolver,
)
from .eligibility import (
    ClassifiedRow,
    EligibilityClassifier,
    MinRules,
    Reason,
)
from .aggregator import (
    GasNeed,
    GroupSummary,
    RunTotals,
    percentile,
)
from .coverage import (
    AssetCoverage,
    CoverageAnalyzer,
)
from .reconciler import (
    Reconciler,
    ReconciliationReport,
)

__all__ = [
    # Errors
    'ConsolidationError',
    'MissingInputError',
    'MissingColumnError',
    'InvalidPolicyError',

    # Configuration
    'ConfigLoader',
    'ConsolidationConfig',

    # Inputs
    'InventoryPosition',
    'PlanRow',
    'load_inventory',
    'load_plan',
    'CompletionLedger',
    'CompletedSet',

    # Pricing
    'PriceCache',
    'PriceMethod',
    'PriceRecord',
    'PriceResolver',

    # Classification
    'ClassifiedRow',
    'EligibilityClassifier',
    'MinRules',
    'Reason',

    # Aggregation
    'GasNeed',
    'GroupSummary',
    'RunTotals',
    'percentile',

    # Views
    'AssetCoverage',
    'CoverageAnalyzer',

    # Pipeline
    'Reconciler',
    'ReconciliationReport',
]

__version__ = '1.0.0'
__description__ = 'Wallet inventory reconciliation against a transfer plan'
