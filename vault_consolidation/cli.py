"""Command line entry point for vault consolidation."""

import argparse
import json
import sys
from typing import List, Optional

from loguru import logger

from .config import ConfigLoader, ConsolidationConfig
from .exceptions import ConsolidationError
from .reconciler import Reconciler


def main(argv: Optional[List[str]] = None) -> int:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--root", default=".", help="workspace root (inventory/, plan/, execute/, analysis/)")
    common.add_argument("--config", default=None, help="policy YAML (default: <root>/consolidation_config.yaml)")
    common.add_argument("--offline", action="store_true", help="no live price fetch")
    common.add_argument("--strict-pricing", action="store_true", help="disable the $1 stable fallback")
    common.add_argument("--verbose", "-v", action="store_true", help="debug logging")

    parser = argparse.ArgumentParser(prog="vault-consolidation")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", parents=[common], help="classify remaining plan rows")
    analyze.set_defaults(func=_analyze)

    update_prices = subparsers.add_parser("update-prices", parents=[common], help="refresh the price cache")
    update_prices.set_defaults(func=_update_prices)

    breakeven = subparsers.add_parser("breakeven", parents=[common], help="per-asset gas breakeven")
    breakeven.set_defaults(func=_breakeven)

    materiality = subparsers.add_parser("materiality", parents=[common], help="wallet materiality")
    materiality.set_defaults(func=_materiality)

    coverage = subparsers.add_parser("coverage", parents=[common], help="per-asset price coverage")
    coverage.add_argument("--assets", default=None, help="comma-separated asset ids (default: all held assets)")
    coverage.set_defaults(func=_coverage)

    min_table = subparsers.add_parser("min-table", parents=[common], help="generate min_by_asset.json")
    min_table.set_defaults(func=_min_table)

    init_config = subparsers.add_parser("init-config", parents=[common], help="write the effective policy as YAML")
    init_config.add_argument("--output", default=None, help="target file (default: the --config path)")
    init_config.set_defaults(func=_init_config)

    execute_ready = subparsers.add_parser("execute-ready", parents=[common], help="preview the next READY batch")
    execute_ready.add_argument("--batch", type=int, default=None, help="rows per batch (1..500)")
    execute_ready.add_argument("--run-id", default=None)
    execute_ready.set_defaults(func=_execute_ready)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        return args.func(args)
    except ConsolidationError as exc:
        logger.error(f"❌ {exc}")
        return 2


def _configure_logging(verbose: bool):
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _load_config(args: argparse.Namespace) -> ConsolidationConfig:
    config = ConfigLoader(root=args.root, config_path=args.config).load()
    if args.offline:
        config.offline = True
    if args.strict_pricing:
        config.strict_pricing = True
    return config


def _analyze(args: argparse.Namespace) -> int:
    report = Reconciler(_load_config(args)).analyze()
    print(json.dumps(report.totals.to_dict(), indent=2))
    return 0


def _update_prices(args: argparse.Namespace) -> int:
    reconciler = Reconciler(_load_config(args))
    prices = reconciler.update_prices()
    unknown = sorted(a for a, p in prices.items() if not p.known)
    print(f"resolved={len(prices) - len(unknown)} unknown={len(unknown)}")
    for asset_id in unknown:
        print(f"  unknown: {asset_id}")
    return 0


def _breakeven(args: argparse.Namespace) -> int:
    rows = Reconciler(_load_config(args)).breakeven()
    for row in rows:
        fee = "?" if row.fee_usd is None else f"{row.fee_usd:.4f}"
        print(f"{row.asset_id:<24} usd={row.total_usd_known:>12,.2f} fee={fee:<10} {row.recommendation}")
    return 0


def _materiality(args: argparse.Namespace) -> int:
    report = Reconciler(_load_config(args)).materiality()
    print(json.dumps(report.category_counts(), indent=2))
    return 0


def _coverage(args: argparse.Namespace) -> int:
    assets = [a.strip() for a in args.assets.split(",") if a.strip()] if args.assets else None
    coverage = Reconciler(_load_config(args)).coverage(assets)
    for c in coverage:
        price = "?" if c.price_usd is None else f"{c.price_usd:.6g}"
        print(f"{c.asset_id:<24} wallets={c.vault_count:<5} price={price:<12} {c.price_method}")
    return 0


def _init_config(args: argparse.Namespace) -> int:
    path = ConfigLoader(root=args.root, config_path=args.config).generate_yaml(args.output)
    print(path)
    return 0


def _min_table(args: argparse.Namespace) -> int:
    table = Reconciler(_load_config(args)).build_min_table()
    print(f"minimums={len(table.min_by_asset)} assets={len(table.reason_by_asset)}")
    return 0


def _execute_ready(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if args.batch is not None:
        config.batch_size = max(1, min(500, args.batch))
    result = Reconciler(config).execute_ready(run_id=args.run_id)
    print(json.dumps(result.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
