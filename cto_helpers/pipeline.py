# -*- coding: utf-8 -*-
"""Poll-and-dispatch loop for community takeover alerts.

One run: fetch the latest CTO list, drop records already announced, enrich
each new one with pair data, post it, mark it seen, and persist the seen set
once at the end. Runs never overlap; the seen set belongs to the Pipeline
instance that loaded it.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from config import CONFIG
from cto_helpers.db import SeenStore
from cto_helpers.reports import action_links, build_cto_report, pick_banner

log = logging.getLogger("cto_hunter.pipeline")


def identity_key(chain: str, token_address: str) -> str:
    return f"{chain.lower()}-{token_address.lower()}"


def event_key(event: Dict[str, Any]) -> Optional[str]:
    """Identity key for an upstream CTO record, or None when it lacks chain/address."""
    chain = event.get("chainId")
    address = event.get("tokenAddress")
    if not isinstance(chain, str) or not isinstance(address, str):
        return None
    if not chain.strip() or not address.strip():
        return None
    return identity_key(chain, address)


@dataclass
class RunReport:
    fetched: int = 0
    new: int = 0
    skipped_seen: int = 0
    skipped_invalid: int = 0
    delivered: int = 0
    failed: int = 0
    persisted: bool = False
    fetch_failed: bool = False
    skipped_busy: bool = False


class Pipeline:
    def __init__(self, source, notifier, store: SeenStore, seen: Optional[Iterable[str]] = None, *,
                 dispatch_delay: Optional[float] = None,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None) -> None:
        self.source = source
        self.notifier = notifier
        self.store = store
        # dict keeps insertion order so /list can show the newest keys
        self._seen: Dict[str, None] = dict.fromkeys(store.load() if seen is None else seen)
        self.dispatch_delay = CONFIG["DISPATCH_DELAY_SECONDS"] if dispatch_delay is None else dispatch_delay
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self.counters: Dict[str, Any] = {"runs": 0, "attempted": 0, "delivered": 0, "failed": 0, "last_run_at": None}

    # --- read-only views -----------------------------------------------------------

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, key: str) -> bool:
        return key in self._seen

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def seen_keys(self) -> List[str]:
        return list(self._seen)

    def recent(self, limit: int) -> List[str]:
        """Newest keys first."""
        if limit <= 0:
            return []
        return list(reversed(self.seen_keys()[-limit:]))

    # --- runs ------------------------------------------------------------------------

    async def tick(self) -> RunReport:
        """Periodic entry point: skips instead of queueing when a run is in flight."""
        if self._lock.locked():
            log.info("Previous check still running; skipping this tick.")
            return RunReport(skipped_busy=True)
        return await self.run_once()

    async def run_once(self) -> RunReport:
        """Run one full cycle, waiting for any in-flight run to finish first."""
        async with self._lock:
            return await self._run()

    async def _run(self) -> RunReport:
        report = RunReport()
        self.counters["runs"] += 1
        self.counters["last_run_at"] = datetime.now(timezone.utc)
        log.info("Looking for new CTO tokens...")
        events = await self.source.fetch_latest_events()
        report.fetch_failed = bool(getattr(self.source, "last_fetch_failed", False))
        if not events:
            log.info("No new tokens found")
            return report
        report.fetched = len(events)
        log.info(f"Found {len(events)} tokens in API")

        for event in events:
            key = event_key(event) if isinstance(event, dict) else None
            if key is None:
                report.skipped_invalid += 1
                log.warning(f"Invalid token data, skipping: {str(event)[:120]}")
                continue
            if key in self._seen:
                report.skipped_seen += 1
                log.debug(f"Already processed: {key}")
                continue

            if report.new:
                await self._sleep(self.dispatch_delay)
            log.info(f"New token found: {event['tokenAddress']} ({event['chainId']}), claimed {event.get('claimDate')}")
            ok = await self._dispatch(event)
            # At-most-once: a failed post is not retried on the next run
            self._seen[key] = None
            report.new += 1
            if ok:
                report.delivered += 1
            else:
                report.failed += 1

        self.counters["attempted"] += report.new
        self.counters["delivered"] += report.delivered
        self.counters["failed"] += report.failed
        if report.new:
            report.persisted = await asyncio.to_thread(self.store.save, list(self._seen))
            log.info(f"Processed {report.new} new token(s)")
        else:
            log.info("All tokens already processed")
        return report

    async def _dispatch(self, event: Dict[str, Any]) -> bool:
        try:
            details = await self.source.fetch_details(event["chainId"], event["tokenAddress"])
        except Exception:
            log.exception(f"Enrichment failed for {event['tokenAddress']}; sending without details")
            details = None
        try:
            text = build_cto_report(event, details)
            banner = pick_banner(event, details)
            ok = bool(await self.notifier.send(text, photo=banner, links=action_links(event, details)))
        except Exception:
            log.exception(f"Failed to deliver alert for {event.get('tokenAddress')}")
            return False
        if ok:
            log.info(f"Sent message about token {event['tokenAddress']} (banner: {'yes' if banner else 'no'})")
        return ok

    # --- control ---------------------------------------------------------------------

    async def clear(self) -> int:
        async with self._lock:
            removed = len(self._seen)
            self._seen.clear()
            await asyncio.to_thread(self.store.save, [])
            log.info(f"Seen set cleared ({removed} removed)")
            return removed

    def flush(self) -> bool:
        """Synchronous save for shutdown paths; safe while a run is suspended."""
        return self.store.save(list(self._seen))
