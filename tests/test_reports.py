from datetime import datetime, timezone

from cto_helpers.reports import (action_links, build_cto_report, chain_label,
                                 extract_socials, format_age, format_percent,
                                 format_usd, list_text, pick_banner,
                                 stats_text, status_text)

NOW = 1_700_000_000.0
DAY_MS = 86_400_000


def test_format_usd():
    assert format_usd(None) == "N/A"
    assert format_usd(0) == "N/A"
    assert format_usd("junk") == "N/A"
    assert format_usd(float("nan")) == "N/A"
    assert format_usd(12.5) == "$12.50"
    assert format_usd(1234) == "$1.2k"
    assert format_usd("2500000") == "$2.5M"
    assert format_usd(3.2e9) == "$3.2B"


def test_format_percent_keeps_sign():
    assert format_percent(12.4) == "+12%"
    assert format_percent(-7.6) == "-8%"
    assert format_percent(0) == "+0%"
    assert format_percent(None) == "N/A"


def test_format_age():
    now_ms = NOW * 1000
    assert format_age(None, NOW) == "N/A"
    assert format_age(now_ms - 2 * 3600 * 1000, NOW) == "< 1 day"
    assert format_age(now_ms - DAY_MS - 1, NOW) == "1 day"
    assert format_age(now_ms - 3 * DAY_MS, NOW) == "3 days"


def test_chain_label():
    assert chain_label("solana") == "SOLANA"
    assert chain_label("Avalanche") == "AVAX"
    assert chain_label("sui") == "SUI"
    assert chain_label(None) == "UNKNOWN"


def test_report_without_details_uses_placeholders():
    text = build_cto_report({"chainId": "solana", "tokenAddress": "Abc123"}, None, now=NOW)

    assert "New <b>SOLANA</b> CTO Detected" in text
    assert "Token Details Unavailable" in text
    assert "Market Cap: <b>N/A</b>" in text
    assert "Token Age: <b>N/A</b>" in text
    assert "💸 5m: <b>N/A</b> | 1hr: <b>N/A</b> | 6hr: <b>N/A</b> | 24hr: <b>N/A</b>" in text
    assert "📈 5m: <b>N/A</b> | 1hr: <b>N/A</b> | 6hr: <b>N/A</b> | 24hr: <b>N/A</b>" in text
    assert "CA: <code>Abc123</code>" in text


def test_report_with_details():
    details = {
        "name": "Pepe <3",
        "symbol": "PEPE",
        "market_cap": 1_500_000,
        "pair_created_ms": NOW * 1000 - 10 * DAY_MS,
        "volume": {"m5": 1200, "h1": None, "h6": 50_000, "h24": 2_000_000},
        "price_change": {"m5": 3.2, "h1": -12.7, "h6": None, "h24": 140},
    }
    text = build_cto_report({"chainId": "bsc", "tokenAddress": "0xabc"}, details, now=NOW)

    assert "🪙 Pepe &lt;3 (PEPE)" in text
    assert "Market Cap: <b>$1.5M</b>" in text
    assert "Token Age: <b>10 days</b>" in text
    assert "💸 5m: <b>$1.2k</b> | 1hr: <b>N/A</b> | 6hr: <b>$50.0k</b> | 24hr: <b>$2.0M</b>" in text
    assert "📈 5m: <b>+3%</b> | 1hr: <b>-13%</b> | 6hr: <b>N/A</b> | 24hr: <b>+140%</b>" in text


def test_socials_are_classified_and_rendered():
    event = {
        "chainId": "solana",
        "tokenAddress": "abc",
        "links": [
            {"type": "twitter", "url": "https://x.com/cto"},
            {"url": "https://t.me/ctochat"},
            {"url": "https://discord.gg/cto"},
            {"url": "https://cto.fun"},
            {"label": "broken"},
            "nonsense",
        ],
    }
    assert [kind for kind, _ in extract_socials(event)] == ["🐦", "📱", "💬", "🌐"]
    text = build_cto_report(event, None)
    assert "<a href='https://x.com/cto'>🐦</a>" in text


def test_socials_tolerate_missing_links():
    assert extract_socials({"links": None}) == []
    assert extract_socials({}) == []


def test_banner_priority():
    details = {"header": "https://pair/header.png", "banner": "https://pair/icon.png"}
    assert pick_banner({"header": "https://cto/header.png"}, details) == "https://cto/header.png"
    assert pick_banner({"image": "https://cto/image.png"}, details) == "https://pair/header.png"
    assert pick_banner({"image": "https://cto/image.png"}, {"banner": "https://pair/icon.png"}) == "https://pair/icon.png"
    assert pick_banner({"banner": "https://cto/banner.png", "image": "https://cto/image.png"}, None) == "https://cto/banner.png"
    assert pick_banner({"header": "not-a-url"}, None) is None


def test_action_links_fall_back_to_built_url():
    links = action_links({"chainId": "Solana", "tokenAddress": "Abc"})
    assert links[0] == ("📊 DexScreener", "https://dexscreener.com/solana/Abc")
    assert [label for label, _ in links] == ["📊 DexScreener", "🪙 Axiom.trade", "🤖 @maestro"]
    assert action_links({"url": "https://dexscreener.com/solana/abc"})[0][1] == "https://dexscreener.com/solana/abc"


def test_list_text():
    assert list_text([], 0) == "📋 No tokens in database yet."
    text = list_text(["bsc-0x2", "bsc-0x1"], 12)
    assert "(showing 2/12)" in text
    assert "1. <code>bsc-0x2</code>" in text


def test_status_and_stats_text():
    text = status_text(7, 20.0, "-100123", 185, False, {"success": 3, "failure": 1, "last_error": "HTTP 502"})
    assert "Processed Tokens: 7" in text
    assert "Check Interval: 20s" in text
    assert "Uptime: 3 minutes" in text
    assert "75.0% success" in text
    assert "HTTP 502" in text
    assert "DexScreener: Idle" in status_text(0, 20.0, "-1", 0, True, {"success": 0, "failure": 0})

    started = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    stats = stats_text(4, started, {"runs": 9, "delivered": 4, "failed": 1, "last_run_at": None})
    assert "Running Since: 2026-01-02 03:04:05 UTC" in stats
    assert "Checks Run: 9" in stats
    assert "Last Check: never" in stats
