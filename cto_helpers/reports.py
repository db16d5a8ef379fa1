# -*- coding: utf-8 -*-
import math
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from config import AXIOM_URL, FOOTER_TEXT, MAESTRO_URL
from cto_helpers.utils import _esc


NA = "N/A"
DIVIDER = "➖➖➖➖➖➖"

CHAIN_NAMES = {
    'ethereum': 'ETH',
    'bsc': 'BSC',
    'polygon': 'POLYGON',
    'arbitrum': 'ARBITRUM',
    'solana': 'SOLANA',
    'base': 'BASE',
    'avalanche': 'AVAX',
    'fantom': 'FTM',
}

def _finite(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    try:
        v = float(x)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None

def format_usd(x: Any) -> str:
    v = _finite(x)
    # Zero reads as "no data" upstream, same as missing
    if not v: return NA
    if v >= 1e9: return f"${v / 1e9:.1f}B"
    if v >= 1e6: return f"${v / 1e6:.1f}M"
    if v >= 1e3: return f"${v / 1e3:.1f}k"
    return f"${v:.2f}"

def format_percent(x: Any) -> str:
    v = _finite(x)
    if v is None: return NA
    return f"{'+' if v >= 0 else ''}{v:.0f}%"

def format_age(created_ms: Any, now: Optional[float] = None) -> str:
    ms = _finite(created_ms)
    if not ms: return NA
    now = time.time() if now is None else now
    days = int((now * 1000 - ms) // 86_400_000)
    if days <= 0: return "< 1 day"
    return f"{days} {'day' if days == 1 else 'days'}"

def chain_label(chain: Any) -> str:
    c = str(chain or "").strip()
    return CHAIN_NAMES.get(c.lower(), c.upper() or "UNKNOWN")

def extract_socials(event: Dict[str, Any]) -> List[Tuple[str, str]]:
    socials = []
    links = event.get("links")
    if not isinstance(links, list):
        return socials
    for link in links:
        url = link.get("url") if isinstance(link, dict) else None
        if not isinstance(url, str) or not url:
            continue
        low = url.lower()
        if "twitter.com" in low or "x.com" in low:
            socials.append(("🐦", url))
        elif "t.me" in low or "telegram" in low:
            socials.append(("📱", url))
        elif "discord" in low:
            socials.append(("💬", url))
        else:
            socials.append(("🌐", url))
    return socials

def _timeframe_row(emoji: str, block: Optional[Dict[str, Any]], fmt) -> str:
    block = block if isinstance(block, dict) else {}
    cells = [("5m", "m5"), ("1hr", "h1"), ("6hr", "h6"), ("24hr", "h24")]
    return f"{emoji} " + " | ".join(f"{label}: <b>{fmt(block.get(key))}</b>" for label, key in cells)

def build_cto_report(event: Dict[str, Any], details: Optional[Dict[str, Any]], now: Optional[float] = None) -> str:
    """HTML notification for one CTO. ``details`` may be None; every figure then reads N/A."""
    d = details or {}
    lines = [f"🕵️‍♂️ New <b>{_esc(chain_label(event.get('chainId')))}</b> CTO Detected", ""]

    if details:
        lines.append(f"🪙 {_esc(d.get('name') or 'Unknown')} ({_esc(d.get('symbol') or NA)})")
    else:
        lines.append("🪙 Token Details Unavailable")
    lines.append(f"🏦 Market Cap: <b>{format_usd(d.get('market_cap'))}</b>")
    lines.append(f"🌱 Token Age: <b>{format_age(d.get('pair_created_ms'), now)}</b>")

    socials = extract_socials(event)
    if socials:
        lines.append("👥 Socials: " + " ".join(f"<a href='{_esc(url)}'>{kind}</a>" for kind, url in socials))
        lines.append("")

    lines.append(f"CA: <code>{_esc(event.get('tokenAddress', ''))}</code>")
    lines.append(DIVIDER)
    lines.append(_timeframe_row("💸", d.get("volume"), format_usd))
    lines.append(_timeframe_row("📈", d.get("price_change"), format_percent))
    lines.append(DIVIDER)
    if FOOTER_TEXT:
        lines.append(_esc(FOOTER_TEXT))
    return "\n".join(lines)

def pick_banner(event: Dict[str, Any], details: Optional[Dict[str, Any]]) -> Optional[str]:
    """Header from the CTO itself wins, then the pair's artwork, then any other CTO image."""
    d = details or {}
    for candidate in (event.get("header"), d.get("header"), d.get("banner"), event.get("banner"), event.get("image")):
        if isinstance(candidate, str) and candidate.startswith(("http://", "https://")):
            return candidate
    return None

def dexscreener_link(event: Dict[str, Any], details: Optional[Dict[str, Any]] = None) -> str:
    url = event.get("url") or (details or {}).get("pair_url")
    if isinstance(url, str) and url:
        return url
    return f"https://dexscreener.com/{str(event.get('chainId', '')).lower()}/{event.get('tokenAddress', '')}"

def action_links(event: Dict[str, Any], details: Optional[Dict[str, Any]] = None) -> List[Tuple[str, str]]:
    return [
        ("📊 DexScreener", dexscreener_link(event, details)),
        ("🪙 Axiom.trade", AXIOM_URL),
        ("🤖 @maestro", MAESTRO_URL),
    ]

# --------------------------------------------------------------------------------------
# Command replies
# --------------------------------------------------------------------------------------

def help_text(bot_username: str) -> str:
    return "\n".join([
        f"🤖 <b>DAC CTO Hunter Bot</b> {_esc(bot_username)}",
        "",
        "Available commands:",
        "/status - Check bot status",
        "/check - Force check for new tokens",
        "/stats - View statistics",
        "/list - Show processed tokens",
        "/clear - Forget all processed tokens",
        "/getchatid - Get current chat ID",
    ])

def status_text(seen: int, interval_s: float, channel: Any, uptime_s: float, busy: bool, health: Dict[str, Any]) -> str:
    lines = [
        "✅ <b>Bot Status</b>",
        "",
        f"Processed Tokens: {seen}",
        f"Check Interval: {interval_s:g}s",
        f"Target Channel: <code>{_esc(channel)}</code>",
        f"Uptime: {int(uptime_s // 60)} minutes",
        f"Check Running: {'yes' if busy else 'no'}",
    ]
    ok, fail = health.get("success", 0), health.get("failure", 0)
    if ok + fail:
        lines.append(f"DexScreener: {ok / (ok + fail):.1%} success ({fail} failed)")
        if health.get("last_error"):
            lines.append(f"Last API Error: {_esc(health['last_error'])}")
    else:
        lines.append("DexScreener: Idle")
    return "\n".join(lines)

def stats_text(seen: int, started_at: datetime, counters: Dict[str, Any]) -> str:
    last = counters.get("last_run_at")
    return "\n".join([
        "📈 <b>Bot Statistics</b>",
        "",
        f"Processed Tokens: {seen}",
        f"Running Since: {started_at.strftime('%Y-%m-%d %H:%M:%S %Z').strip()}",
        f"Checks Run: {counters.get('runs', 0)}",
        f"Alerts Sent: {counters.get('delivered', 0)} (failed: {counters.get('failed', 0)})",
        f"Last Check: {last.strftime('%H:%M:%S') if last else 'never'}",
    ])

def list_text(keys: Iterable[str], total: int) -> str:
    keys = list(keys)
    if not total or not keys:
        return "📋 No tokens in database yet."
    lines = [f"📋 <b>Processed Tokens</b> (showing {len(keys)}/{total}):", ""]
    lines.extend(f"{i}. <code>{_esc(k)}</code>" for i, k in enumerate(keys, 1))
    return "\n".join(lines)

def chat_info_text(chat_id: Any, chat_type: Any) -> str:
    return "\n".join([
        "🆔 <b>Chat Information</b>",
        "",
        f"Chat ID: <code>{_esc(chat_id)}</code>",
        f"Chat Type: {_esc(chat_type)}",
    ])
