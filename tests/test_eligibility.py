import pytest

from vault_consolidation.completion_ledger import CompletedSet
from vault_consolidation.eligibility import (
    EligibilityClassifier,
    MinRules,
    Reason,
    classify,
    min_amount_for,
)
from vault_consolidation.inventory_loader import PlanRow
from vault_consolidation.price_resolver import PriceMethod, PriceRecord


RULES = MinRules(min_usd_per_tx=0.01, stablecoin_min_usd=0.25)


def _row(asset="USDC", amount=50.0, requires_gas=False, gas_ready=False, source="1", dest="2"):
    return PlanRow(
        source_vault_id=source,
        asset_id=asset,
        amount=amount,
        destination_vault_id=dest,
        requires_gas=requires_gas,
        gas_asset_id="ETH" if requires_gas else "",
        gas_ready=gas_ready,
    )


def _price(asset, usd, method=PriceMethod.CACHED):
    if usd is None:
        return PriceRecord.unknown(asset)
    return PriceRecord(asset, usd, method)


def test_stable_row_is_ready():
    stable = _price("USDC", 1.0, PriceMethod.STABLE_FALLBACK)
    result = classify(_row("USDC", 50.0), stable, RULES)

    assert result.reason == Reason.READY_TO_EXECUTE
    assert result.price_usd == 1.0
    assert result.price_method == "stable_fallback"
    assert result.estimated_usd == 50.0
    assert result.min_amount == 0.25
    assert result.min_basis == "stable_usd_floor_$0.25"


def test_gas_blocked_row_needs_gas_regardless_of_value():
    stable = _price("USDC", 1.0, PriceMethod.STABLE_FALLBACK)
    result = classify(_row("USDC", 50.0, requires_gas=True, gas_ready=False), stable, RULES)

    assert result.reason == Reason.NEEDS_GAS
    assert result.estimated_usd == 50.0


def test_gas_ready_row_is_not_blocked():
    result = classify(_row("ETH", 1.0, requires_gas=True, gas_ready=True), _price("ETH", 2000), RULES)
    assert result.reason == Reason.READY_TO_EXECUTE


def test_minimum_boundary_is_inclusive():
    result = classify(_row("SOL", 0.001), _price("SOL", 10.0), RULES)

    assert result.min_amount == pytest.approx(0.001)
    assert not result.amount < result.min_amount
    assert result.reason == Reason.READY_TO_EXECUTE
    assert result.min_basis == "usd_floor_$0.01"


def test_below_minimum():
    result = classify(_row("SOL", 0.0005), _price("SOL", 10.0), RULES)
    assert result.reason == Reason.BELOW_MIN
    assert result.estimated_usd == pytest.approx(0.005)


def test_unknown_price_is_never_silently_below_min():
    result = classify(_row("MYSTERY", 0.0000001), _price("MYSTERY", None), RULES)

    assert result.reason == Reason.UNKNOWN_PRICE
    assert result.min_amount is None
    assert result.min_basis == "no_price_no_floor"
    assert result.estimated_usd is None
    assert result.price_usd is None


def test_unknown_price_does_not_override_earlier_reasons():
    rules = MinRules(min_by_asset={"MYSTERY": 5.0})

    gas = classify(_row("MYSTERY", 1.0, requires_gas=True), _price("MYSTERY", None), rules)
    below = classify(_row("MYSTERY", 1.0), _price("MYSTERY", None), rules)
    unknown = classify(_row("MYSTERY", 5.0), _price("MYSTERY", None), rules)

    assert gas.reason == Reason.NEEDS_GAS
    assert below.reason == Reason.BELOW_MIN
    assert unknown.reason == Reason.UNKNOWN_PRICE


def test_min_by_asset_beats_stable_floor():
    rules = MinRules(stablecoin_min_usd=0.25, min_by_asset={"USDC": 10.0})
    assert min_amount_for("USDC", _price("USDC", 1.0), rules) == (10.0, "min_by_asset")


def test_stable_floor_applies_without_price():
    amount, basis = min_amount_for("USDT_ERC20", _price("USDT_ERC20", None), RULES)
    assert amount == 0.25
    assert basis.startswith("stable_usd_floor")


def test_classifier_run_excludes_completed():
    plan = [_row("USDC", 50.0, source="1"), _row("USDC", 20.0, source="2"), _row("ETH", 1.0, source="3")]
    completed = CompletedSet(row_ids=frozenset({"2|USDC|2"}))
    prices = {"USDC": _price("USDC", 1.0, PriceMethod.STABLE_FALLBACK)}

    result = EligibilityClassifier(RULES).run(plan, completed, prices)

    assert [r.row_id for r in result.rows] == ["1|USDC|2", "3|ETH|2"]
    assert result.completed_count == 1
    assert result.plan_count == 3
    assert result.rows[1].reason == Reason.UNKNOWN_PRICE
    assert [r.row_id for r in result.by_reason(Reason.READY_TO_EXECUTE)] == ["1|USDC|2"]


def test_classified_row_record_shape():
    result = classify(_row("USDC", 50.0), _price("USDC", 1.0, PriceMethod.STABLE_FALLBACK), RULES)
    record = result.to_dict()

    assert list(record) == [
        "rowId", "sourceVaultId", "assetId", "amount", "destinationVaultId", "requiresGas",
        "gasAssetId", "gasReady", "priceUSD", "priceSource", "estUSD", "minAmt", "minBasis", "reason",
    ]
    assert record["reason"] == "READY_TO_EXECUTE"
    assert record["rowId"] == "1|USDC|2"
