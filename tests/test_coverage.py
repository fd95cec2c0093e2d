import json

import pandas as pd
import pytest

from vault_consolidation.coverage import CoverageAnalyzer
from vault_consolidation.inventory_loader import InventoryPosition
from vault_consolidation.price_resolver import PriceMethod, PriceRecord
from vault_consolidation.reconciler import Reconciler


def _pos(vault, asset, amount, name=""):
    return InventoryPosition(vault_id=vault, asset_id=asset, available_amount=amount,
                             total_amount=amount, vault_name=name)


INVENTORY = [
    _pos("A", "WETH", 1.0, "Alpha"),
    _pos("B", "WETH", 3.0, "Beta"),
    _pos("B", "WETH", 1.0, "Beta"),
    _pos("C", "WETH", 0.5),
    _pos("A", "ODD", 7.0, "Alpha"),
]

PRICES = {
    "WETH": PriceRecord("WETH", 2000.0, PriceMethod.BASIS_SYMBOL, "ETH"),
    "ODD": PriceRecord.unknown("ODD"),
}


def test_coverage_per_asset():
    analyzer = CoverageAnalyzer({"ODD": "odd-coin"}, {"WETH": "ETH"})

    coverage = {c.asset_id: c for c in analyzer.analyze(INVENTORY, PRICES, ["WETH", "ODD"])}

    weth = coverage["WETH"]
    assert weth.vault_count == 3
    assert weth.row_count == 4
    assert weth.sum_total == pytest.approx(5.5)
    assert weth.basis_symbol == "ETH"
    assert weth.coingecko_id == ""
    assert weth.price_method == "basis_symbol"
    assert weth.usd_known == pytest.approx(11000.0)
    assert weth.unknown_price_rows == 0
    assert [(w.vault_id, w.vault_name, w.amount) for w in weth.top_wallets] == [
        ("B", "Beta", 4.0), ("A", "Alpha", 1.0), ("C", "", 0.5),
    ]
    assert weth.top_wallets[0].usd == pytest.approx(8000.0)

    odd = coverage["ODD"]
    assert odd.coingecko_id == "odd-coin"
    assert odd.price_method == "unknown"
    assert odd.price_usd is None
    assert odd.usd_known is None
    assert odd.unknown_price_rows == 1
    assert odd.top_wallets[0].usd is None


def test_top_wallets_are_capped():
    analyzer = CoverageAnalyzer({}, {}, top_n=1)
    weth = analyzer.analyze(INVENTORY, PRICES, ["WETH"])[0]
    assert [w.vault_id for w in weth.top_wallets] == ["B"]


def test_requested_asset_not_held():
    coverage = CoverageAnalyzer({}, {}).analyze(INVENTORY, {}, ["NOPE"])

    assert len(coverage) == 1
    assert coverage[0].row_count == 0
    assert coverage[0].top_wallets == []
    assert coverage[0].price_method == "unknown"


def test_reconciler_coverage_writes_reports(sample_workspace):
    sample_workspace.write_json("asset_to_coingecko.json", {"MYSTERY": "mystery-coin"})

    coverage = Reconciler(sample_workspace.config(offline=True)).coverage()

    assert [c.asset_id for c in coverage] == ["ETH", "MYSTERY", "USDC"]
    eth = coverage[0]
    assert eth.price_method == "cached"
    assert eth.usd_known == pytest.approx(5000.002)
    assert [w.vault_id for w in eth.top_wallets] == ["1", "2", "3"]

    df = pd.read_csv(sample_workspace.analysis_dir / "asset_coverage.csv", dtype=str, keep_default_na=False)
    assert list(df["assetId"]) == ["ETH", "MYSTERY", "USDC"]
    assert df.set_index("assetId").loc["MYSTERY", "coingeckoId"] == "mystery-coin"

    top = json.loads((sample_workspace.analysis_dir / "asset_coverage_top_wallets.json").read_text())
    assert top["ETH"][0] == {"vaultId": "1", "vaultName": "Alpha", "amountTotal": 2.0, "usdValue": 4000.0}


def test_reconciler_coverage_focused_list(sample_workspace):
    coverage = Reconciler(sample_workspace.config(offline=True)).coverage(["USDC"], write=False)

    assert [c.asset_id for c in coverage] == ["USDC"]
    assert coverage[0].price_method == "stable_fallback"
    assert not (sample_workspace.analysis_dir / "asset_coverage.csv").exists()
