#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# DAC CTO Hunter - watches DexScreener community takeovers and posts them to Telegram.

import asyncio
import functools
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler

import httpx
from telegram import LinkPreviewOptions, Update
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.ext import (Application, CommandHandler, ContextTypes,
                          MessageHandler, filters)
from telegram.request import HTTPXRequest

from config import (BOT_USERNAME, CHECK_INTERVAL_SECONDS, CONFIG, DATABASE_FILE,
                    LOG_FILE, TELEGRAM_BOT_TOKEN, TELEGRAM_CHANNEL_ID,
                    missing_settings, parse_chat_id)
from cto_helpers.api import DexScreenerClient
from cto_helpers.db import SeenStore
from cto_helpers.pipeline import Pipeline
from cto_helpers.reports import (chat_info_text, help_text, list_text,
                                 stats_text, status_text)
from cto_helpers.utils import ChannelNotifier, TelegramOutbox, _can_post_to_chat

log = logging.getLogger("cto_hunter")


def setup_logging() -> None:
    handlers = [TimedRotatingFileHandler(LOG_FILE, when='midnight', backupCount=7, encoding="utf-8"), logging.StreamHandler()]
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s: %(message)s", handlers=handlers)
    logging.getLogger("telegram").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

# ======================================================================================
# Telegram reply helpers
# ======================================================================================

async def _safe_is_group(u: Update) -> bool:
    t = (getattr(u.effective_chat, 'type', '') or '').lower()
    return t in {"group", "supergroup", "channel"}

async def safe_reply_text(u: Update, c: ContextTypes.DEFAULT_TYPE, text: str, **kwargs):
    outbox: TelegramOutbox = c.bot_data.setdefault("outbox", TelegramOutbox())
    kwargs.setdefault("parse_mode", ParseMode.HTML)
    kwargs.setdefault("link_preview_options", LinkPreviewOptions(is_disabled=True))
    return await outbox.send_text(u.get_bot(), u.effective_chat.id, text, is_group=await _safe_is_group(u), **kwargs)

def command(func):
    """Operator commands must never take the bot down; failures are reported in chat."""
    @functools.wraps(func)
    async def wrapper(u: Update, c: ContextTypes.DEFAULT_TYPE):
        try:
            return await func(u, c)
        except Exception as e:
            log.error(f"Error in /{func.__name__}: {e}", exc_info=True)
            try:
                await safe_reply_text(u, c, f"❌ Command failed: {e}", parse_mode=None)
            except TelegramError as reply_err:
                log.error(f"Could not report /{func.__name__} failure: {reply_err}")
    return wrapper

# ======================================================================================
# Commands
# ======================================================================================

@command
async def start(u: Update, c: ContextTypes.DEFAULT_TYPE):
    await safe_reply_text(u, c, help_text(BOT_USERNAME))

@command
async def status(u: Update, c: ContextTypes.DEFAULT_TYPE):
    pipeline: Pipeline = c.bot_data["pipeline"]
    uptime = (datetime.now(timezone.utc) - c.bot_data["started_at"]).total_seconds()
    await safe_reply_text(u, c, status_text(
        len(pipeline), CHECK_INTERVAL_SECONDS, TELEGRAM_CHANNEL_ID, uptime,
        pipeline.busy, c.bot_data["source"].health,
    ))

@command
async def check(u: Update, c: ContextTypes.DEFAULT_TYPE):
    pipeline: Pipeline = c.bot_data["pipeline"]
    await safe_reply_text(u, c, "🔍 Checking for new tokens...")
    report = await pipeline.run_once()
    tail = " (DexScreener unreachable)" if report.fetch_failed else ""
    await safe_reply_text(u, c, f"✅ Check complete! {report.new} new token(s){tail}.")

@command
async def stats(u: Update, c: ContextTypes.DEFAULT_TYPE):
    pipeline: Pipeline = c.bot_data["pipeline"]
    await safe_reply_text(u, c, stats_text(len(pipeline), c.bot_data["started_at"], pipeline.counters))

@command
async def list_tokens(u: Update, c: ContextTypes.DEFAULT_TYPE):
    pipeline: Pipeline = c.bot_data["pipeline"]
    await safe_reply_text(u, c, list_text(pipeline.recent(int(CONFIG["LIST_LIMIT"])), len(pipeline)))

@command
async def clear(u: Update, c: ContextTypes.DEFAULT_TYPE):
    pipeline: Pipeline = c.bot_data["pipeline"]
    removed = await pipeline.clear()
    await safe_reply_text(u, c, f"🗑️ Database cleared!\nRemoved {removed} token(s)")

@command
async def getchatid(u: Update, c: ContextTypes.DEFAULT_TYPE):
    chat = u.effective_chat
    await safe_reply_text(u, c, chat_info_text(chat.id, chat.type))

COMMANDS = {
    'start': start,
    'help': start,
    'status': status,
    'check': check,
    'stats': stats,
    'list': list_tokens,
    'clear': clear,
    'getchatid': getchatid,
}

async def route_channel_commands(u: Update, c: ContextTypes.DEFAULT_TYPE):
    """In channels, commands arrive as channel_post updates. Route them explicitly."""
    text = (getattr(getattr(u, 'effective_message', None), 'text', '') or '').strip()
    # Extract '/cmd' and strip optional '@BotUser'
    m = re.match(r"^/([A-Za-z0-9_]+)(?:@\w+)?(?:\s|$)", text)
    if not m:
        return
    func = COMMANDS.get(m.group(1).lower())
    if func:
        await func(u, c)

# ======================================================================================
# Scheduling & lifecycle
# ======================================================================================

async def check_job(context: ContextTypes.DEFAULT_TYPE):
    await context.bot_data["pipeline"].tick()

def _flush(app: Application, reason: str) -> None:
    pipeline = app.bot_data.get("pipeline")
    if pipeline is not None:
        log.info(f"Flushing seen tokens ({reason})")
        pipeline.flush()

async def on_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    _flush(context.application, "unhandled error")
    log.error("Unhandled error while processing an update or job", exc_info=context.error)

async def post_init(app: Application) -> None:
    """Wires the pipeline and schedules the periodic check after the bot is initialized."""
    http = httpx.AsyncClient(timeout=CONFIG["HTTP_TIMEOUT"])
    outbox = TelegramOutbox()
    source = DexScreenerClient(http)
    channel_id = parse_chat_id(TELEGRAM_CHANNEL_ID)
    notifier = ChannelNotifier(app.bot, channel_id, outbox)
    pipeline = Pipeline(source, notifier, SeenStore(DATABASE_FILE))
    app.bot_data.update({
        "http": http,
        "outbox": outbox,
        "source": source,
        "pipeline": pipeline,
        "started_at": datetime.now(timezone.utc),
    })

    loop = asyncio.get_running_loop()
    def _loop_exception(loop, ctx):
        _flush(app, "unhandled loop exception")
        log.error(f"Unhandled asyncio error: {ctx.get('message')}", exc_info=ctx.get("exception"))
    loop.set_exception_handler(_loop_exception)

    ok, reason = await _can_post_to_chat(app.bot, channel_id)
    if not ok:
        log.error(f"TELEGRAM_CHANNEL_ID={TELEGRAM_CHANNEL_ID} is not writable: {reason}. Alerts will fail until the bot is made admin.")

    app.job_queue.run_repeating(
        check_job,
        interval=CHECK_INTERVAL_SECONDS,
        first=float(CONFIG["FIRST_CHECK_DELAY_SECONDS"]),
        name="cto_check",
    )
    log.info(f"Bot is running! Check interval: {CHECK_INTERVAL_SECONDS:g}s, target channel: {TELEGRAM_CHANNEL_ID}, {len(pipeline)} tokens known")

async def post_shutdown(app: Application) -> None:
    log.info("Shutting down bot...")
    _flush(app, "shutdown")
    http = app.bot_data.get("http")
    if http is not None:
        await http.aclose()

def main() -> None:
    """Configures and runs the Telegram bot."""
    setup_logging()
    missing = missing_settings()
    if missing:
        log.critical(f"FATAL: {', '.join(missing)} not set."); sys.exit(1)

    log.info("Starting DAC CTO Hunter...")
    app = (
        Application.builder()
        .token(TELEGRAM_BOT_TOKEN)
        .request(
            HTTPXRequest(
                connection_pool_size=int(CONFIG.get("TELEGRAM_POOL_SIZE", 8) or 8),
                pool_timeout=float(CONFIG.get("TELEGRAM_POOL_TIMEOUT", 30.0) or 30.0),
                connect_timeout=float(CONFIG.get("TELEGRAM_CONNECT_TIMEOUT", 20.0) or 20.0),
                read_timeout=float(CONFIG.get("TELEGRAM_READ_TIMEOUT", 30.0) or 30.0),
                write_timeout=float(CONFIG.get("TELEGRAM_READ_TIMEOUT", 30.0) or 30.0),
            )
        )
        .post_init(post_init)
        .post_shutdown(post_shutdown)
        .build()
    )

    app.add_handlers([CommandHandler(cmd, func) for cmd, func in COMMANDS.items()])
    app.add_handler(MessageHandler(filters.ChatType.CHANNEL & filters.COMMAND, route_channel_commands))
    app.add_error_handler(on_error)

    # SIGINT/SIGTERM stop polling and run post_shutdown, which flushes the seen set
    app.run_polling(drop_pending_updates=True, allowed_updates=Update.ALL_TYPES)

if __name__ == "__main__":
    main()
