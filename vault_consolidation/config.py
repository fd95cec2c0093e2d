"""
Consolidation Config

Loads the policy configuration (consolidation_config.yaml), applies environment
overrides and reads the optional JSON side tables from the execute directory.

Precedence for every policy value:
1. Environment variable (historical names, e.g. MIN_USD_PER_TX)
2. consolidation_config.yaml
3. Built-in default
"""

import json
import math
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from loguru import logger

from .exceptions import InvalidPolicyError


DEFAULT_STABLE_TICKERS = ['USDC', 'USDT', 'TUSD', 'BUSD']

DEFAULT_PATHS = {
    'inventory': 'inventory/inventory.csv',
    'plan': 'plan/plan.csv',
    'execute_dir': 'execute',
    'analysis_dir': 'analysis',
    'price_cache': 'last_prices_usd.json',
    'overrides': 'price_overrides_usd.json',
    'basis': 'asset_price_basis.json',
    'coingecko_map': 'asset_to_coingecko.json',
    'min_by_asset': 'min_by_asset.json',
    'gas_fee_native': 'gas_fee_native.json',
    'min_rules': 'min_rules.json',
}

# env name -> (config attribute, kind)
ENV_OVERRIDES = {
    'MIN_USD_PER_TX': ('min_usd_per_tx', 'usd'),
    'STABLECOIN_MIN_USD': ('stablecoin_min_usd', 'usd'),
    'MIN_USD_PER_WALLET': ('min_usd_per_wallet', 'usd'),
    'APPROVALS_PER_MIN': ('approvals_per_min', 'usd'),
    'FEE_MULT': ('fee_mult', 'usd'),
    'MIN_NET_USD': ('min_net_usd', 'usd'),
    'MIN_GROSS_USD': ('min_gross_usd', 'usd'),
    'MIN_TX_POLICY_USD': ('min_tx_policy_usd', 'usd'),
    'BATCH': ('batch_size', 'int'),
    'STRICT_PRICING': ('strict_pricing', 'flag_on'),
    'OFFLINE': ('offline', 'flag_on'),
    'USE_PLAN_SCOPE': ('use_plan_scope', 'flag_off'),
}

USD_SETTINGS = [
    'min_usd_per_tx', 'stablecoin_min_usd', 'min_usd_per_wallet', 'approvals_per_min',
    'fee_mult', 'min_net_usd', 'min_gross_usd', 'min_tx_policy_usd',
]


def _as_int(setting: str, value) -> int:
    if isinstance(value, bool):
        raise InvalidPolicyError(setting, value, expected="an integer")
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        raise InvalidPolicyError(setting, value, expected="an integer")


def _ticker_list(value) -> List[str]:
    """Stable tickers from a list, or from one comma-separated string"""
    if isinstance(value, str):
        value = value.split(',')
    if not isinstance(value, (list, tuple)):
        raise InvalidPolicyError('STABLE_TICKERS', value, expected="a list of tickers")
    return [str(t).strip().upper() for t in value if str(t).strip()]


@dataclass
class ConsolidationConfig:
    """Run policy and file layout"""
    root: Path = field(default_factory=Path.cwd)
    min_usd_per_tx: float = 0.01
    stablecoin_min_usd: float = 0.25
    min_usd_per_wallet: float = 1.0
    approvals_per_min: float = 8.0
    strict_pricing: bool = False
    offline: bool = False
    use_plan_scope: bool = True
    stable_tickers: List[str] = field(default_factory=lambda: list(DEFAULT_STABLE_TICKERS))
    price_chunk_size: int = 150
    fee_mult: float = 1.0
    min_net_usd: float = 0.0
    min_gross_usd: float = 0.0
    min_tx_policy_usd: float = 0.0
    batch_size: int = 50
    coingecko_url: str = "https://api.coingecko.com/api/v3/simple/price"
    request_timeout_seconds: float = 30.0
    paths: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_PATHS))

    def __post_init__(self):
        self.root = Path(self.root)
        self.price_chunk_size = max(1, min(250, _as_int('PRICE_CHUNK_SIZE', self.price_chunk_size)))
        self.batch_size = max(1, min(500, _as_int('BATCH_SIZE', self.batch_size)))
        self.stable_tickers = _ticker_list(self.stable_tickers)

    def validate(self) -> 'ConsolidationConfig':
        """Reject negative or non-finite thresholds"""
        for name in USD_SETTINGS:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                raise InvalidPolicyError(name.upper(), value)
            if not math.isfinite(value) or value < 0:
                raise InvalidPolicyError(name.upper(), value)
        return self

    # Paths

    def path(self, key: str) -> Path:
        return self.root / self.paths.get(key, DEFAULT_PATHS[key])

    @property
    def inventory_path(self) -> Path:
        return self.path('inventory')

    @property
    def plan_path(self) -> Path:
        return self.path('plan')

    @property
    def execute_dir(self) -> Path:
        return self.path('execute_dir')

    @property
    def analysis_dir(self) -> Path:
        return self.path('analysis_dir')

    def execute_file(self, key: str) -> Path:
        """Side table path inside the execute directory"""
        return self.execute_dir / self.paths.get(key, DEFAULT_PATHS[key])

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['root'] = str(self.root)
        return data


def _coerce(raw: str, kind: str, env_name: str):
    if kind == 'flag_on':
        return raw.strip() == '1'
    if kind == 'flag_off':
        return raw.strip() != '0'
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise InvalidPolicyError(env_name, raw)
    if kind == 'int':
        return int(value)
    return value


class ConfigLoader:
    """
    Build ConsolidationConfig from YAML + environment

    Features:
    - Optional YAML file (missing file means defaults)
    - Historical environment variable overrides
    - Threshold validation (fatal on bad values)
    - Lenient JSON side-table loading
    """

    def __init__(self, root: Optional[str] = None, config_path: Optional[str] = None,
                 environ: Optional[Dict[str, str]] = None):
        """
        Initialize loader

        Args:
            root: Workspace root holding inventory/, plan/, execute/, analysis/
            config_path: YAML policy file (default: <root>/consolidation_config.yaml)
            environ: Environment mapping (default: os.environ)
        """
        self.root = Path(root) if root else Path.cwd()
        self.config_path = Path(config_path) if config_path else self.root / "consolidation_config.yaml"
        self.environ = os.environ if environ is None else environ

    def _load_yaml(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            logger.debug(f"No config file at {self.config_path}, using defaults")
            return {}

        with open(self.config_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise InvalidPolicyError(str(self.config_path), data)

        logger.info(f"📚 Loaded config from {self.config_path}")
        return data

    def load(self) -> ConsolidationConfig:
        """Load, override and validate"""
        data = self._load_yaml()

        paths = dict(DEFAULT_PATHS)
        paths.update(data.pop('paths', None) or {})

        known = set(ConsolidationConfig.__dataclass_fields__) - {'root', 'paths'}
        unknown_keys = sorted(set(data) - known)
        if unknown_keys:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown_keys)}")

        values = {k: v for k, v in data.items() if k in known}

        for env_name, (attr, kind) in ENV_OVERRIDES.items():
            raw = self.environ.get(env_name)
            if raw is None or str(raw).strip() == '':
                continue
            values[attr] = _coerce(str(raw), kind, env_name)
            logger.debug(f"Env override {env_name}={raw}")

        config = ConsolidationConfig(root=self.root, paths=paths, **values)
        return config.validate()

    def generate_yaml(self, output_path: Optional[str] = None) -> Path:
        """
        Write a config file with the current effective values

        Args:
            output_path: Output file path (default: self.config_path)

        Returns:
            Path written
        """
        config = self.load()
        data = config.to_dict()
        data.pop('root', None)

        output = Path(output_path) if output_path else self.config_path
        with open(output, 'w', encoding='utf-8') as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

        logger.info(f"✓ Generated {output}")
        return output


def load_json_table(path: Path, default: Optional[Any] = None) -> Any:
    """
    Read an optional JSON side table

    Missing or unreadable files yield the default (an empty dict unless given).
    """
    fallback = {} if default is None else default
    path = Path(path)
    if not path.exists():
        logger.debug(f"Optional table {path.name} not found, treating as empty")
        return fallback

    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read {path.name}: {e}")
        return fallback


def load_json_mapping(path: Path) -> Dict[str, Any]:
    """Optional JSON object table; any other JSON shape is treated as empty"""
    data = load_json_table(path)
    if not isinstance(data, dict):
        logger.warning(f"⚠️  {Path(path).name} is not a JSON object ({type(data).__name__}), ignoring")
        return {}
    return data


def load_min_by_asset(path: Path) -> Dict[str, float]:
    """Per-asset minimum table, flat or wrapped in 'minByAsset'"""
    data = load_json_table(path)
    if isinstance(data, dict) and isinstance(data.get('minByAsset'), dict):
        data = data['minByAsset']
    if not isinstance(data, dict):
        return {}

    table = {}
    for asset_id, value in data.items():
        try:
            amount = float(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric minimum for {asset_id}: {value!r}")
            continue
        if math.isfinite(amount):
            table[str(asset_id)] = amount
    return table
