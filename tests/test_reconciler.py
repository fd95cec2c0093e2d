import json

import pandas as pd
import pytest

from vault_consolidation.eligibility import Reason
from vault_consolidation.exceptions import MissingColumnError, MissingInputError
from vault_consolidation.reconciler import Reconciler

from fakes import FakePriceClient, Workspace


REPORT_FILES = [
    "remaining_rows_v2.csv",
    "remaining_rows.jsonl",
    "by_reason_detailed.csv",
    "by_asset.csv",
    "prices_used.csv",
    "policy_used.txt",
    "report_summary_v2.txt",
    "gas_needs_wallets_with_names.csv",
]


def _reasons(report):
    return {r.row_id: r.reason for r in report.rows}


def test_offline_analysis(sample_workspace):
    report = Reconciler(sample_workspace.config(offline=True)).analyze()

    assert _reasons(report) == {
        "1|USDC|99": Reason.READY_TO_EXECUTE,
        "1|ETH|99": Reason.READY_TO_EXECUTE,
        "2|ETH|99": Reason.NEEDS_GAS,
        "2|MYSTERY|99": Reason.UNKNOWN_PRICE,
        "3|ETH|99": Reason.BELOW_MIN,
    }
    assert report.completed_count == 1
    assert report.plan_count == 6
    assert report.ledger_files == ["completed_ready.txt"]

    t = report.totals
    assert t.remaining_rows == 5
    assert t.unique_wallets == 3
    assert t.total_known_usd == pytest.approx(5050.002)
    assert t.actionable_now_usd == pytest.approx(4050.0)
    assert t.actionable_after_funding_usd == pytest.approx(5050.0)
    assert t.below_min_usd == pytest.approx(0.002)
    assert t.unknown_price_rows == 1

    assert [s.key for s in report.by_asset] == ["ETH", "USDC", "MYSTERY"]
    assert [s.key for s in report.by_reason] == ["READY_TO_EXECUTE", "NEEDS_GAS", "BELOW_MIN", "UNKNOWN_PRICE"]
    assert report.prices["USDC"].method.value == "stable_fallback"
    assert report.prices["ETH"].method.value == "cached"
    assert report.cache_updated is False

    for name in REPORT_FILES:
        assert (sample_workspace.analysis_dir / name).exists(), name


def test_completed_rows_never_reported(sample_workspace):
    Reconciler(sample_workspace.config(offline=True)).analyze()

    df = pd.read_csv(sample_workspace.analysis_dir / "remaining_rows_v2.csv", dtype=str, keep_default_na=False)
    assert "9|ETH|99" not in set(df["rowId"])
    assert len(df) == 5

    lines = (sample_workspace.analysis_dir / "remaining_rows.jsonl").read_text().splitlines()
    assert all(json.loads(line)["rowId"] != "9|ETH|99" for line in lines)


def test_runs_are_idempotent(sample_workspace):
    config = sample_workspace.config(offline=True)
    Reconciler(config).analyze()
    first = {n: (sample_workspace.analysis_dir / n).read_bytes() for n in REPORT_FILES}

    Reconciler(sample_workspace.config(offline=True)).analyze()
    second = {n: (sample_workspace.analysis_dir / n).read_bytes() for n in REPORT_FILES}

    assert first == second


def test_live_prices_update_cache(sample_workspace):
    sample_workspace.write_json("asset_to_coingecko.json", {"MYSTERY": "mystery-coin", "ETH": "ethereum"})
    client = FakePriceClient({"mystery-coin": 0.5, "ethereum": 9999})

    report = Reconciler(sample_workspace.config(), client=client).analyze()

    assert report.prices["MYSTERY"].usd == 0.5
    assert report.prices["ETH"].usd == 2000
    assert client.calls == [["mystery-coin"]]
    assert _reasons(report)["2|MYSTERY|99"] == Reason.READY_TO_EXECUTE
    assert report.cache_updated is True
    assert sample_workspace.read_json("last_prices_usd.json") == {"ETH": 2000, "MYSTERY": 0.5}


def test_strict_pricing_leaves_stables_unknown(sample_workspace):
    report = Reconciler(sample_workspace.config(offline=True, strict_pricing=True)).analyze(write=False)
    assert _reasons(report)["1|USDC|99"] == Reason.UNKNOWN_PRICE


def test_missing_plan_is_fatal_and_writes_nothing(workspace):
    workspace.write_inventory([("1", "Alpha", "ETH", 1, 1)])

    with pytest.raises(MissingInputError):
        Reconciler(workspace.config(offline=True)).analyze()
    assert not workspace.analysis_dir.exists()


def test_missing_execute_dir_is_fatal(tmp_path):
    ws = Workspace(tmp_path)
    ws.write_inventory([("1", "Alpha", "ETH", 1, 1)])
    ws.write_plan([("1", "ETH", 1, "99", False, "", False)])
    ws.execute_dir.rmdir()

    with pytest.raises(MissingInputError):
        Reconciler(ws.config(offline=True)).analyze()


def test_missing_plan_column_is_fatal(sample_workspace):
    sample_workspace.write_plan(
        [("1", "ETH", 1, "99", False, "")],
        header="sourceVaultId,assetId,amount,destinationVaultId,requiresGas,gasAssetId",
    )
    with pytest.raises(MissingColumnError):
        Reconciler(sample_workspace.config(offline=True)).analyze()
    assert not sample_workspace.analysis_dir.exists()


def test_update_prices_covers_inventory_assets(sample_workspace):
    prices = Reconciler(sample_workspace.config(offline=True)).update_prices()

    assert set(prices) == {"USDC", "ETH", "MYSTERY"}
    assert (sample_workspace.analysis_dir / "price_assumptions.csv").exists()


def test_min_table_feeds_classification(sample_workspace):
    sample_workspace.write_json("min_rules.json", {"SELF_GAS_WITH_MINIMUM": {"MYSTERY": 20}})
    config = sample_workspace.config(offline=True)

    table = Reconciler(config).build_min_table()
    assert table.reason_by_asset["MYSTERY"] == "self_gas_minimum"
    assert sample_workspace.read_json("min_by_asset.json")["minByAsset"]["MYSTERY"] == 20

    report = Reconciler(config).analyze(write=False)
    assert _reasons(report)["2|MYSTERY|99"] == Reason.BELOW_MIN


def test_breakeven_and_materiality_views(sample_workspace):
    sample_workspace.write_json("gas_fee_native.json", {"ETH": 0.0001})
    reconciler = Reconciler(sample_workspace.config(offline=True))

    rows = {r.asset_id: r for r in reconciler.breakeven()}
    assert rows["ETH"].fee_usd == pytest.approx(0.2)
    assert rows["MYSTERY"].recommendation == "SKIP_ALL_BELOW_POLICY"
    assert (sample_workspace.analysis_dir / "breakeven_by_asset.csv").exists()

    report = reconciler.materiality()
    assert [w.vault_id for w in report.wallets] == ["1", "2", "3"]
    assert (sample_workspace.analysis_dir / "wallet_materiality.csv").exists()


def test_execute_ready_dry_run(sample_workspace):
    result = Reconciler(sample_workspace.config(offline=True)).execute_ready(run_id="t1")

    assert result.dry_run is True
    assert result.attempted == 2
    journal = (sample_workspace.execute_dir / "journal_t1.jsonl").read_text().splitlines()
    assert [json.loads(line)["rowId"] for line in journal] == ["1|ETH|99", "1|USDC|99"]
    assert sample_workspace.execute_dir.joinpath("completed_ready.txt").read_text().split() == ["9|ETH|99"]


def test_gas_needs_report_names_wallets(sample_workspace):
    report = Reconciler(sample_workspace.config(offline=True)).analyze()

    assert [(g.vault_id, g.vault_name, g.gas_assets) for g in report.gas_needs] == [("2", "Beta", ["ETH"])]
    df = pd.read_csv(sample_workspace.analysis_dir / "gas_needs_wallets_with_names.csv")
    assert list(df.columns) == [
        "vaultId", "vaultName", "gasAssetsNeeded", "dependentAssetsCount", "dependentUsdKnownPrices",
    ]
    assert df.iloc[0]["vaultName"] == "Beta"
    assert df.iloc[0]["dependentUsdKnownPrices"] == pytest.approx(1000.0)


def test_update_prices_lists_unmapped_assets(sample_workspace):
    reconciler = Reconciler(sample_workspace.config(offline=True))
    reconciler.update_prices()
    assert (sample_workspace.analysis_dir / "unmapped_assets.txt").read_text() == "MYSTERY\n"

    sample_workspace.write_json("price_overrides_usd.json", {"MYSTERY": 0.25})
    Reconciler(sample_workspace.config(offline=True)).update_prices()
    assert (sample_workspace.analysis_dir / "unmapped_assets.txt").read_text() == ""


@pytest.mark.parametrize("name, payload", [
    ("price_overrides_usd.json", ["ETH"]),
    ("asset_price_basis.json", "ETH"),
    ("asset_to_coingecko.json", 42),
    ("gas_fee_native.json", [0.001]),
    ("min_rules.json", ["DOT"]),
    ("min_by_asset.json", "0.5"),
])
def test_side_table_with_wrong_shape_is_ignored(sample_workspace, name, payload):
    sample_workspace.write_json(name, payload)
    client = FakePriceClient({})
    reconciler = Reconciler(sample_workspace.config(), client=client)

    report = reconciler.analyze(write=False)
    assert _reasons(report)["1|ETH|99"] == Reason.READY_TO_EXECUTE
    assert report.prices["ETH"].method.value == "cached"
    assert client.calls == []

    assert {r.asset_id for r in reconciler.breakeven(write=False)} == {"USDC", "ETH", "MYSTERY"}
    assert reconciler.build_min_table(write=False).reason_by_asset["ETH"] == "usd_based"
    assert len(reconciler.coverage(write=False)) == 3
