from __future__ import annotations

import asyncio
import json
import logging
import random
import time
import urllib.parse

import aiohttp

from ostium_client.errors import TransientNetworkError


class HttpService:
    """Shared HTTP layer for read-only feeds: host pacing, 429/5xx retry, stale cache fallback.

    Never used for anything that mutates remote state.
    """

    def __init__(
        self,
        *,
        min_gap_ms: float = 100.0,
        retries_429: int = 2,
        retries_5xx: int = 2,
        cache_ttl: float = 1.0,
        stale_ttl: float = 30.0,
        session: aiohttp.ClientSession | None = None,
        log: logging.Logger | None = None,
    ):
        self._min_gap_s = max(0.0, float(min_gap_ms) / 1000.0)
        self._retries_429 = max(0, int(retries_429))
        self._retries_5xx = max(0, int(retries_5xx))
        self._cache_ttl = max(0.0, float(cache_ttl))
        self._stale_ttl = max(1.0, float(stale_ttl))
        self._session = session
        self._owns_session = session is None
        self.log = log or logging.getLogger("ostium.http")

        self._cache: dict[str, dict] = {}
        self._host_backoff: dict[str, float] = {}
        self._host_last_ts: dict[str, float] = {}
        self._host_locks: dict[str, asyncio.Lock] = {}

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": "ostium-client/0.1"})
            self._owns_session = True
        return self._session

    def _fresh(self, cached: dict | None, ttl: float) -> bool:
        return cached is not None and (time.time() - float(cached.get("ts", 0.0) or 0.0)) <= ttl

    async def get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        timeout: float = 8.0,
        cache_ttl: float | None = None,
    ):
        return await self._fetch(url, params=params, timeout=timeout, cache_ttl=cache_ttl)

    async def post_json(self, url: str, body: dict, *, timeout: float = 8.0, cache_ttl: float | None = None):
        """POST for read-only query endpoints (GraphQL). Same pacing, retry and cache as GET."""
        return await self._fetch(url, body=body, timeout=timeout, cache_ttl=cache_ttl)

    @staticmethod
    def _open(session: aiohttp.ClientSession, url: str, params: dict | None, body: dict | None, timeout: float):
        t = aiohttp.ClientTimeout(total=timeout)
        if body is None:
            return session.get(url, params=params, timeout=t)
        return session.post(url, json=body, timeout=t)

    async def _fetch(
        self,
        url: str,
        *,
        params: dict | None = None,
        body: dict | None = None,
        timeout: float = 8.0,
        cache_ttl: float | None = None,
    ):
        cache_ttl = self._cache_ttl if cache_ttl is None else max(0.0, float(cache_ttl))
        host = urllib.parse.urlparse(url).netloc
        ck = json.dumps([url, params or {}, body], sort_keys=True, separators=(",", ":"), default=str)
        cached = self._cache.get(ck)
        if self._fresh(cached, cache_ttl):
            return cached["data"]

        session = await self._ensure_session()
        lock = self._host_locks.setdefault(host, asyncio.Lock())

        async with lock:
            last_ts = float(self._host_last_ts.get(host, 0.0) or 0.0)
            gap = time.time() - last_ts
            if last_ts > 0 and gap < self._min_gap_s:
                await asyncio.sleep(self._min_gap_s - gap)
            self._host_last_ts[host] = time.time()

            backoff_until = float(self._host_backoff.get(host, 0.0) or 0.0)
            if backoff_until > time.time():
                if self._fresh(cached, self._stale_ttl):
                    return cached["data"]
                raise TransientNetworkError(f"http 429 backoff active for {host} ({backoff_until - time.time():.0f}s left)")

            last_err: Exception | None = None
            attempts = max(1, max(self._retries_429, self._retries_5xx) + 1)
            for i in range(attempts):
                try:
                    async with self._open(session, url, params, body, timeout) as r:
                        if r.status == 429:
                            retry_after = max(1.0, float(r.headers.get("Retry-After", "2") or 2.0))
                            backoff_s = min(90.0, retry_after + 0.35 * i + random.uniform(0.05, 0.35))
                            self._host_backoff[host] = time.time() + backoff_s
                            last_err = TransientNetworkError(f"http 429 {url}")
                            if i < min(attempts, self._retries_429 + 1) - 1:
                                await asyncio.sleep(backoff_s)
                                continue
                            break
                        if r.status >= 500:
                            last_err = TransientNetworkError(f"http {r.status} {url}")
                            if i < self._retries_5xx:
                                await asyncio.sleep(0.25 + 0.25 * i)
                                continue
                            break
                        if r.status >= 400:
                            last_err = TransientNetworkError(f"http {r.status} {url}")
                            break
                        payload = await r.json(content_type=None)
                        self._cache[ck] = {"ts": time.time(), "data": payload}
                        return payload
                except (aiohttp.ClientError, asyncio.TimeoutError, json.JSONDecodeError) as exc:
                    last_err = exc
                    if i < attempts - 1:
                        await asyncio.sleep(0.20 + 0.15 * i)
                        continue

            verb = "GET" if body is None else "POST"
            if self._fresh(cached, self._stale_ttl):
                self.log.warning("%s %s failed (%s); serving stale cache", verb, host, last_err)
                return cached["data"]
            raise TransientNetworkError(f"http {verb.lower()} failed: {url} err={last_err}")
