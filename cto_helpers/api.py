# -*- coding: utf-8 -*-
import asyncio
import json
import logging
import random
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from cachetools import TTLCache

from config import CONFIG, CTO_LATEST_URL, TOKEN_PAIRS_URL
from cto_helpers.utils import TokenBucket

log = logging.getLogger("cto_hunter.api")

BROWSER_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/117.0.0.0 Safari/537.36",
}

TIMEFRAMES = ("m5", "h1", "h6", "h24")


def _num(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _timeframes(block: Any) -> Dict[str, Optional[float]]:
    block = block if isinstance(block, dict) else {}
    return {tf: _num(block.get(tf)) for tf in TIMEFRAMES}


def pick_pair(pairs: List[Dict[str, Any]], chain: str) -> Optional[Dict[str, Any]]:
    """First pair on the requested chain, else the first pair at all."""
    pairs = [p for p in pairs if isinstance(p, dict)]
    want = (chain or "").lower()
    for p in pairs:
        cid = p.get("chainId")
        if isinstance(cid, str) and cid.lower() == want:
            return p
    return pairs[0] if pairs else None


def details_from_pair(pair: Dict[str, Any]) -> Dict[str, Any]:
    base = pair.get("baseToken") or {}
    info = pair.get("info") or {}
    return {
        "name": base.get("name"),
        "symbol": base.get("symbol"),
        "chain_id": pair.get("chainId"),
        "market_cap": _num(pair.get("marketCap")) or _num(pair.get("fdv")),
        "pair_created_ms": _num(pair.get("pairCreatedAt")),
        "volume": _timeframes(pair.get("volume")),
        "price_change": _timeframes(pair.get("priceChange")),
        "header": info.get("header"),
        # Priority: header -> imageUrl -> icon
        "banner": info.get("header") or info.get("imageUrl") or info.get("icon"),
        "pair_url": pair.get("url"),
    }


class DexScreenerClient:
    """Data source for CTO events and per-token pair details.

    Every public method is best-effort: failures are logged, counted in
    ``health`` and turned into ``[]`` / ``None``.
    """

    def __init__(self, client: httpx.AsyncClient, *, sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
                 bucket: Optional[TokenBucket] = None, details_delay: Optional[float] = None) -> None:
        self._client = client
        self._sleep = sleep or asyncio.sleep
        # Keep DS calls modest to avoid null/blocked responses
        self._bucket = bucket or TokenBucket(capacity=2, refill_amount=2, interval_seconds=1.0)
        self.details_delay = CONFIG["DETAILS_DELAY_SECONDS"] if details_delay is None else details_delay
        self.retries = int(CONFIG.get("HTTP_RETRIES", 2))
        self._pairs_cache: TTLCache = TTLCache(maxsize=256, ttl=CONFIG["DETAILS_CACHE_TTL_SECONDS"])
        self.health: Dict[str, Any] = {"success": 0, "failure": 0, "last_error": None, "last_ok_at": None}
        self.last_fetch_failed = False

    def _record_ok(self) -> None:
        self.health["success"] += 1
        self.health["last_ok_at"] = datetime.now(timezone.utc)

    def _record_fail(self, reason: str) -> None:
        self.health["failure"] += 1
        self.health["last_error"] = reason

    async def _fetch(self, url: str) -> Optional[Any]:
        """GET ``url`` and return decoded JSON, or None once retries are exhausted."""
        await self._bucket.acquire(1)
        reason = "no attempt"
        for attempt in range(self.retries):
            will_retry = attempt < self.retries - 1
            try:
                r = await self._client.get(url, headers=BROWSER_HEADERS, timeout=CONFIG["HTTP_TIMEOUT"], follow_redirects=True)
                r.raise_for_status()
                data = r.json()
                self._record_ok()
                return data
            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                reason = f"HTTP {code}"
                if code == 429 and will_retry:
                    # Honor Retry-After when present
                    try:
                        ra = float(e.response.headers.get("Retry-After", "2"))
                    except ValueError:
                        ra = 2.0
                    log.warning(f"Rate limited by {url}; sleeping {ra:.1f}s ({attempt + 1}/{self.retries})")
                    await self._sleep(min(10.0, ra) + random.uniform(0, 0.5))
                    continue
                if 400 <= code < 500 and code not in (408, 429):
                    log.warning(f"Client error for {url}: {code}. Not retrying.")
                    break
                log.warning(f"HTTP error for {url}: {code}. Attempt ({attempt + 1}/{self.retries}).")
            except (httpx.RequestError, json.JSONDecodeError, ValueError) as e:
                reason = f"{type(e).__name__}: {e}"
                log.warning(f"Fetch failed for {url}: {reason}. Attempt ({attempt + 1}/{self.retries}).")
            if will_retry:
                await self._sleep(1.2 * (attempt + 1))
        self._record_fail(reason)
        return None

    async def fetch_latest_events(self) -> List[Dict[str, Any]]:
        data = await self._fetch(CTO_LATEST_URL)
        if data is None:
            self.last_fetch_failed = True
            log.warning("Could not fetch latest CTOs; treating as no news this cycle.")
            return []
        if not isinstance(data, list):
            self.last_fetch_failed = True
            self._record_fail("unexpected payload")
            log.warning(f"Unexpected CTO payload type {type(data).__name__}; ignoring.")
            return []
        self.last_fetch_failed = False
        return [item for item in data if isinstance(item, dict)]

    async def fetch_details(self, chain: str, token_address: str) -> Optional[Dict[str, Any]]:
        key = (token_address or "").lower()
        pairs = self._pairs_cache.get(key)
        if pairs is None:
            # DexScreener token endpoint rate limit
            await self._sleep(self.details_delay)
            data = await self._fetch(f"{TOKEN_PAIRS_URL}/{token_address}")
            if not isinstance(data, dict):
                log.warning(f"No token details for {token_address} ({chain}).")
                return None
            pairs = data.get("pairs") or []
            if not isinstance(pairs, list):
                return None
            self._pairs_cache[key] = pairs
        pair = pick_pair(pairs, chain)
        if pair is None:
            log.info(f"DexScreener knows no pairs for {token_address} yet.")
            return None
        try:
            details = details_from_pair(pair)
        except (AttributeError, TypeError) as e:
            log.warning(f"Could not parse DexScreener pair for {token_address}: {e}")
            return None
        log.debug(f"Banner URL for {token_address}: {details['banner']}")
        return details
