import pytest

from vault_consolidation.aggregator import (
    compute_totals,
    percentile,
    summarize_by_asset,
    summarize_by_reason,
    summarize_gas_needs,
)
from vault_consolidation.eligibility import MinRules, Reason, classify
from vault_consolidation.inventory_loader import PlanRow
from vault_consolidation.price_resolver import PriceMethod, PriceRecord


RULES = MinRules()


def _classified(source, asset, amount, usd, requires_gas=False, gas_ready=False):
    row = PlanRow(source, asset, amount, "99", requires_gas, "ETH" if requires_gas else "", gas_ready)
    price = PriceRecord(asset, usd, PriceMethod.CACHED) if usd else PriceRecord.unknown(asset)
    return classify(row, price, RULES)


def test_percentile_interpolates():
    values = [1, 2, 3, 4]
    assert percentile(values, 0.5) == pytest.approx(2.5)
    assert percentile(values, 0.9) == pytest.approx(3.7)
    assert percentile(values, 0.0) == 1
    assert percentile(values, 1.0) == 4


def test_percentile_edge_cases():
    assert percentile([], 0.5) == 0.0
    assert percentile([7.0], 0.9) == 7.0


def test_group_summaries_and_sort_order():
    rows = [
        _classified("1", "ETH", 1.0, 2000),
        _classified("2", "ETH", 0.5, 2000),
        _classified("1", "USDC", 10.0, 1.0),
        _classified("3", "MYSTERY", 5.0, None),
        _classified("4", "MYSTERY", 5.0, None),
        _classified("5", "ZED", 1.0, None),
    ]

    by_asset = summarize_by_asset(rows)

    assert [s.key for s in by_asset] == ["ETH", "USDC", "MYSTERY", "ZED"]
    eth = by_asset[0]
    assert eth.row_count == 2
    assert eth.wallet_count == 2
    assert eth.native_sum == pytest.approx(1.5)
    assert eth.known_usd_sum == pytest.approx(3000.0)
    assert eth.median_usd == pytest.approx(1500.0)
    assert eth.max_usd == pytest.approx(2000.0)
    mystery = by_asset[2]
    assert mystery.known_usd_sum == 0
    assert mystery.unknown_count == 2
    assert mystery.wallet_count == 2


def test_by_reason_has_every_reason():
    rows = [_classified("1", "ETH", 1.0, 2000), _classified("2", "ETH", 1.0, 2000, requires_gas=True)]

    by_reason = summarize_by_reason(rows)

    assert {s.key for s in by_reason} == {r.value for r in Reason}
    assert by_reason[0].key in ("READY_TO_EXECUTE", "NEEDS_GAS")
    empty = [s for s in by_reason if s.key == "BELOW_MIN"][0]
    assert empty.row_count == 0
    assert empty.known_usd_sum == 0
    assert [s.key for s in by_reason][2:] == ["BELOW_MIN", "UNKNOWN_PRICE"]


def test_run_totals():
    rows = [
        _classified("1", "ETH", 1.0, 2000),
        _classified("1", "USDC", 10.0, 1.0),
        _classified("2", "ETH", 0.5, 2000, requires_gas=True),
        _classified("3", "ETH", 0.000001, 2000),
        _classified("3", "MYSTERY", 5.0, None),
    ]

    totals = compute_totals(rows, approvals_per_min=8)

    assert totals.remaining_rows == 5
    assert totals.unique_wallets == 3
    assert totals.ready_rows == 2
    assert totals.total_known_usd == pytest.approx(3010.002)
    assert totals.actionable_now_usd == pytest.approx(2010.0)
    assert totals.actionable_after_funding_usd == pytest.approx(3010.0)
    assert totals.below_min_usd == pytest.approx(0.002)
    assert totals.unknown_price_rows == 1
    assert totals.approval_hours == pytest.approx(2 / 480)


def test_totals_with_zero_approval_rate():
    totals = compute_totals([_classified("1", "ETH", 1.0, 2000)], approvals_per_min=0)
    assert totals.approval_hours == 0.0


def test_gas_needs_per_wallet():
    rows = [
        _classified("A", "TOKEN", 10, 2.0, requires_gas=True),
        _classified("A", "DOT", 1, None, requires_gas=True),
        _classified("B", "LINK", 1, 50.0, requires_gas=True),
        _classified("C", "LINK", 1, 50.0),
        _classified("D", "LINK", 1, 50.0, requires_gas=True, gas_ready=True),
    ]

    needs = summarize_gas_needs(rows, {"A": "Alpha", "C": "Gamma"})

    assert [g.vault_id for g in needs] == ["B", "A"]
    alpha = needs[1]
    assert alpha.vault_name == "Alpha"
    assert alpha.dependent_usd == pytest.approx(20.0)
    assert alpha.to_dict() == {
        "vaultId": "A",
        "vaultName": "Alpha",
        "gasAssetsNeeded": "ETH",
        "dependentAssetsCount": 2,
        "dependentUsdKnownPrices": 20.0,
    }
    assert needs[0].vault_name == ""
