"""
Price Resolver

Resolves a USD price per asset through an ordered strategy chain:

1. Override        - manual USD price (price_overrides_usd.json), must be > 0
2. Stable fallback - stable-ticker heuristic fixes price at 1.0 (off in strict mode)
3. Basis symbol    - asset mapped to an underlying symbol with a cached price
4. Cache           - price persisted by a previous run for this asset
5. Live fetch      - CoinGecko batch lookup for mapped assets (skipped offline)
6. Unknown         - usd=None, a valid terminal state

The first strategy that answers wins. An asset resolved by an earlier strategy
is never offered to a later one, so a live price can never replace an
override, stable, basis or cached price.

The price cache is a file-backed key/value store injected into the resolver:
load everything at start, upsert only newly fetched prices, rewrite merged.
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from loguru import logger

from .coingecko_client import CoinGeckoClient
from .config import ConsolidationConfig, DEFAULT_STABLE_TICKERS, load_json_mapping, load_json_table


class PriceMethod(str, Enum):
    """How a price was obtained"""
    OVERRIDE = 'override'
    STABLE_FALLBACK = 'stable_fallback'
    BASIS_SYMBOL = 'basis_symbol'
    CACHED = 'cached'
    COINGECKO = 'coingecko'
    UNKNOWN = 'unknown'


@dataclass(frozen=True)
class PriceRecord:
    """Resolved price for one asset"""
    asset_id: str
    usd: Optional[float]
    method: PriceMethod
    reference: str = ""

    @property
    def known(self) -> bool:
        return self.usd is not None and self.usd > 0

    def to_dict(self) -> Dict:
        return {
            'assetId': self.asset_id,
            'usd': self.usd,
            'method': self.method.value,
            'reference': self.reference,
        }

    @classmethod
    def unknown(cls, asset_id: str) -> 'PriceRecord':
        return cls(asset_id=asset_id, usd=None, method=PriceMethod.UNKNOWN, reference="")


def positive_price(value) -> Optional[float]:
    """Finite price > 0, otherwise None"""
    if value is None or isinstance(value, bool):
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(price) or price <= 0:
        return None
    return price


def is_stable_asset(asset_id: str, tickers: Sequence[str] = DEFAULT_STABLE_TICKERS) -> bool:
    """Case-insensitive substring match against stable tickers"""
    upper = str(asset_id or "").upper()
    return any(t.upper() in upper for t in tickers)


class PriceCache:
    """
    Persistent assetId/symbol -> USD store

    Features:
    - Reads flat {"ETH": 3000} or wrapped {"prices": {...}} files
    - Ignores non-positive / non-numeric entries on read
    - Additive merge on persist (untouched keys preserved)
    - path=None gives an in-memory store
    """

    def __init__(self, path: Optional[Path] = None):
        """
        Initialize cache

        Args:
            path: JSON file (None for in-memory)
        """
        self.path = Path(path) if path else None
        self._wrapped = False
        self._meta: Dict = {}
        self._raw: Dict = {}
        self._entries: Dict[str, float] = {}
        self._pending: Dict[str, float] = {}
        self._load()

    def _load(self):
        if self.path is None or not self.path.exists():
            return

        data = load_json_table(self.path)
        if not isinstance(data, dict):
            logger.warning(f"Price cache {self.path.name} is not an object, ignoring")
            return

        if isinstance(data.get('prices'), dict):
            self._wrapped = True
            self._meta = {k: v for k, v in data.items() if k != 'prices'}
            data = data['prices']

        self._raw = dict(data)
        for key, value in data.items():
            price = positive_price(value)
            if price is not None:
                self._entries[str(key)] = price

        logger.info(f"📚 Price cache: {len(self._entries)} usable entries from {self.path.name}")

    def get(self, key: str) -> Optional[float]:
        if key in self._pending:
            return self._pending[key]
        return self._entries.get(key)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(set(self._entries) | set(self._pending))

    def upsert(self, prices: Dict[str, float]) -> int:
        """Stage prices for the next persist; returns count staged"""
        staged = 0
        for key, value in prices.items():
            price = positive_price(value)
            if price is None:
                continue
            self._pending[key] = price
            staged += 1
        return staged

    @property
    def dirty(self) -> bool:
        return bool(self._pending)

    def persist(self) -> bool:
        """
        Rewrite the cache file with existing entries plus staged upserts

        Returns:
            True if the file was written
        """
        if not self._pending:
            return False

        if self.path is None:
            self._entries.update(self._pending)
            self._pending = {}
            return False

        merged = dict(self._raw)
        merged.update(self._pending)
        merged = {k: merged[k] for k in sorted(merged)}

        if self._wrapped:
            payload = dict(self._meta)
            payload['asOf'] = datetime.now(timezone.utc).isoformat()
            payload['prices'] = merged
        else:
            payload = merged

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2)

        logger.info(f"💾 Price cache updated: +{len(self._pending)} prices -> {self.path.name}")
        self._raw = merged
        self._entries.update(self._pending)
        self._pending = {}
        return True


class PriceStrategy:
    """One step of the resolution chain"""

    method: PriceMethod = PriceMethod.UNKNOWN
    batched = False

    def prepare(self, asset_ids: List[str]):
        """Batch hook called with assets no earlier strategy resolved"""

    def try_resolve(self, asset_id: str) -> Optional[PriceRecord]:
        raise NotImplementedError


class OverrideStrategy(PriceStrategy):
    """Manual USD prices; entries <= 0 are rejected as absent"""

    method = PriceMethod.OVERRIDE

    def __init__(self, overrides: Dict[str, object], reference: str = "price_overrides_usd"):
        self.reference = reference
        self.overrides: Dict[str, float] = {}
        self.rejected: List[str] = []

        for asset_id, value in (overrides or {}).items():
            price = positive_price(value)
            if price is None:
                self.rejected.append(str(asset_id))
                logger.warning(f"⚠️  Rejected override for {asset_id}: {value!r} (price must be > 0)")
                continue
            self.overrides[str(asset_id)] = price

    def try_resolve(self, asset_id: str) -> Optional[PriceRecord]:
        price = self.overrides.get(asset_id)
        if price is None:
            return None
        return PriceRecord(asset_id, price, self.method, self.reference)


class StableFallbackStrategy(PriceStrategy):
    """Stable tickers priced at exactly $1"""

    method = PriceMethod.STABLE_FALLBACK

    def __init__(self, tickers: Sequence[str] = DEFAULT_STABLE_TICKERS):
        self.tickers = [t.upper() for t in tickers]

    def try_resolve(self, asset_id: str) -> Optional[PriceRecord]:
        if not is_stable_asset(asset_id, self.tickers):
            return None
        return PriceRecord(asset_id, 1.0, self.method, "$1.00")


class BasisSymbolStrategy(PriceStrategy):
    """Wrapped/derivative asset priced from its basis symbol's cached price"""

    method = PriceMethod.BASIS_SYMBOL

    def __init__(self, basis_map: Dict[str, str], cache: PriceCache):
        self.basis_map = {str(k): str(v) for k, v in (basis_map or {}).items() if v}
        self.cache = cache

    def try_resolve(self, asset_id: str) -> Optional[PriceRecord]:
        symbol = self.basis_map.get(asset_id)
        if not symbol:
            return None
        price = self.cache.get(symbol)
        if price is None:
            logger.debug(f"Basis {asset_id} -> {symbol}: no cached price")
            return None
        return PriceRecord(asset_id, price, self.method, symbol)


class CachedPriceStrategy(PriceStrategy):
    """Price persisted by an earlier run"""

    method = PriceMethod.CACHED

    def __init__(self, cache: PriceCache, reference: str = "last_prices_usd"):
        self.cache = cache
        self.reference = reference

    def try_resolve(self, asset_id: str) -> Optional[PriceRecord]:
        price = self.cache.get(asset_id)
        if price is None:
            return None
        logger.debug(f"💾 Cache HIT: {asset_id} = ${price}")
        return PriceRecord(asset_id, price, self.method, self.reference)


class LiveFetchStrategy(PriceStrategy):
    """
    CoinGecko batch lookup

    All unresolved assets sharing an id are priced from one round trip.
    Each id is requested at most once per run.
    """

    method = PriceMethod.COINGECKO
    batched = True

    def __init__(self, coingecko_map: Dict[str, str], client: CoinGeckoClient):
        self.coingecko_map = {str(k): str(v) for k, v in (coingecko_map or {}).items() if v}
        self.client = client
        self._attempted: set = set()
        self._id_prices: Dict[str, float] = {}
        self.fetched: Dict[str, float] = {}

    def prepare(self, asset_ids: List[str]):
        ids = {self.coingecko_map[a] for a in asset_ids if a in self.coingecko_map}
        new_ids = sorted(ids - self._attempted)
        if not new_ids:
            return

        self._attempted.update(new_ids)
        logger.info(f"🔄 Fetching live prices for {len(new_ids)} CoinGecko ids...")
        self._id_prices.update(self.client.fetch_usd_prices(new_ids))

    def try_resolve(self, asset_id: str) -> Optional[PriceRecord]:
        cg_id = self.coingecko_map.get(asset_id)
        if not cg_id:
            return None
        price = self._id_prices.get(cg_id)
        if price is None:
            return None
        self.fetched[asset_id] = price
        return PriceRecord(asset_id, price, self.method, cg_id)


class PriceResolver:
    """
    Ordered strategy chain with per-run memo

    Features:
    - Short-circuit at first strategy hit
    - Batch preparation for live fetch (only still-unresolved assets)
    - Method tracking per asset
    - Cache merge of newly fetched prices
    """

    def __init__(self, strategies: List[PriceStrategy], cache: Optional[PriceCache] = None):
        """
        Initialize resolver

        Args:
            strategies: Chain in precedence order
            cache: Store receiving newly fetched prices on persist()
        """
        self.strategies = list(strategies)
        self.cache = cache
        self._records: Dict[str, PriceRecord] = {}

    @classmethod
    def from_config(
        cls,
        config: ConsolidationConfig,
        client: Optional[CoinGeckoClient] = None,
        cache: Optional[PriceCache] = None
    ) -> 'PriceResolver':
        """
        Build the standard chain from config and execute/ side tables

        Args:
            config: Run configuration
            client: Live price client (default: CoinGeckoClient from config)
            cache: Price store (default: execute/last_prices_usd.json)
        """
        cache = cache if cache is not None else PriceCache(config.execute_file('price_cache'))

        strategies: List[PriceStrategy] = [
            OverrideStrategy(load_json_mapping(config.execute_file('overrides'))),
        ]
        if not config.strict_pricing:
            strategies.append(StableFallbackStrategy(config.stable_tickers))
        strategies.append(BasisSymbolStrategy(load_json_mapping(config.execute_file('basis')), cache))
        strategies.append(CachedPriceStrategy(cache))

        if not config.offline:
            client = client or CoinGeckoClient(
                url=config.coingecko_url,
                chunk_size=config.price_chunk_size,
                timeout=config.request_timeout_seconds,
            )
            strategies.append(LiveFetchStrategy(load_json_mapping(config.execute_file('coingecko_map')), client))

        logger.info(
            f"💱 Price chain: {' -> '.join(s.method.value for s in strategies)}"
            f" (strict={config.strict_pricing}, offline={config.offline})"
        )
        return cls(strategies, cache)

    def resolve_all(self, asset_ids: Iterable[str]) -> Dict[str, PriceRecord]:
        """
        Resolve a set of assets

        Args:
            asset_ids: Assets to price

        Returns:
            Dict of {asset_id: PriceRecord} for every requested asset
        """
        wanted = sorted({a for a in asset_ids if a is not None})
        open_ids = [a for a in wanted if a not in self._records]

        for strategy in self.strategies:
            if not open_ids:
                break
            if strategy.batched:
                strategy.prepare(open_ids)

            still_open = []
            for asset_id in open_ids:
                record = strategy.try_resolve(asset_id)
                if record is None:
                    still_open.append(asset_id)
                else:
                    self._records[asset_id] = record
            open_ids = still_open

        for asset_id in open_ids:
            self._records[asset_id] = PriceRecord.unknown(asset_id)

        if open_ids:
            logger.debug(f"Unknown price for {len(open_ids)} assets: {', '.join(open_ids[:20])}")

        return {a: self._records[a] for a in wanted}

    def resolve(self, asset_id: str) -> PriceRecord:
        return self.resolve_all([asset_id])[asset_id]

    @property
    def records(self) -> Dict[str, PriceRecord]:
        return dict(sorted(self._records.items()))

    def method_counts(self) -> Dict[str, int]:
        counts = {m.value: 0 for m in PriceMethod}
        for record in self._records.values():
            counts[record.method.value] += 1
        return counts

    def fetched_prices(self) -> Dict[str, float]:
        fetched: Dict[str, float] = {}
        for strategy in self.strategies:
            if isinstance(strategy, LiveFetchStrategy):
                fetched.update(strategy.fetched)
        return fetched

    def persist(self) -> bool:
        """Merge newly fetched prices into the cache and rewrite it"""
        if self.cache is None:
            return False
        fetched = self.fetched_prices()
        if not fetched:
            logger.debug("No new live prices, cache left untouched")
            return False
        self.cache.upsert(fetched)
        return self.cache.persist()
