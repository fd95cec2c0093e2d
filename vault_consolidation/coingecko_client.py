"""
CoinGecko Price Client

Batch USD price lookup via the public /simple/price endpoint.
Ids are fetched in chunks; a failing chunk is logged and skipped so the rest
of the run still gets prices.
"""

import math
from typing import Dict, Iterable, List, Optional

import requests
from loguru import logger


COINGECKO_SIMPLE_PRICE_URL = "https://api.coingecko.com/api/v3/simple/price"


def chunked(items: List[str], size: int) -> List[List[str]]:
    """Split into consecutive chunks of at most size items"""
    size = max(1, int(size))
    return [items[i:i + size] for i in range(0, len(items), size)]


class CoinGeckoClient:
    """
    Fetch USD prices for CoinGecko ids

    Features:
    - Chunked batch requests (<= 250 ids per call)
    - Per-chunk failure isolation
    - Positive finite prices only
    """

    def __init__(
        self,
        url: str = COINGECKO_SIMPLE_PRICE_URL,
        chunk_size: int = 150,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize client

        Args:
            url: /simple/price endpoint
            chunk_size: Max ids per request
            timeout: Request timeout in seconds
            session: Optional requests session (shared connection pool)
        """
        self.url = url
        self.chunk_size = max(1, min(250, int(chunk_size)))
        self.timeout = timeout
        self.session = session or requests.Session()
        self.failed_chunks = 0

    def _fetch_chunk(self, ids: List[str]) -> Dict:
        resp = self.session.get(
            self.url,
            params={'ids': ','.join(ids), 'vs_currencies': 'usd'},
            headers={'accept': 'application/json', 'User-Agent': 'vault-consolidation/1.0'},
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json() or {}

    def fetch_usd_prices(self, coingecko_ids: Iterable[str]) -> Dict[str, float]:
        """
        Fetch prices for a set of ids

        Args:
            coingecko_ids: CoinGecko ids (duplicates are collapsed)

        Returns:
            Dict of {coingecko_id: usd} for ids that returned a positive price
        """
        ids = sorted({i for i in coingecko_ids if i})
        prices: Dict[str, float] = {}
        if not ids:
            return prices

        chunks = chunked(ids, self.chunk_size)
        for n, chunk in enumerate(chunks, 1):
            try:
                payload = self._fetch_chunk(chunk)
            except (requests.RequestException, ValueError) as e:
                self.failed_chunks += 1
                logger.warning(f"⚠️  CoinGecko chunk {n}/{len(chunks)} failed ({len(chunk)} ids): {e}")
                continue

            if not isinstance(payload, dict):
                self.failed_chunks += 1
                logger.warning(f"⚠️  CoinGecko chunk {n}/{len(chunks)} returned {type(payload).__name__}")
                continue

            for cg_id, obj in payload.items():
                usd = obj.get('usd') if isinstance(obj, dict) else None
                try:
                    usd = float(usd)
                except (TypeError, ValueError):
                    continue
                if math.isfinite(usd) and usd > 0:
                    prices[cg_id] = usd

            logger.debug(f"🔄 CoinGecko chunk {n}/{len(chunks)}: {len(payload)} ids returned")

        logger.info(f"💰 CoinGecko: {len(prices)}/{len(ids)} ids priced ({self.failed_chunks} failed chunks)")
        return prices
