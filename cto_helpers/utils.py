# -*- coding: utf-8 -*-
import asyncio
import html as _html
import logging
import random
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple, Union

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, LinkPreviewOptions
from telegram.constants import ParseMode
from telegram.error import BadRequest, NetworkError, RetryAfter, TelegramError, TimedOut

from config import CONFIG

log = logging.getLogger("cto_hunter.utils")

ChatId = Union[int, str]
Sleep = Callable[[float], Awaitable[Any]]

# --------------------------------------------------------------------------------------
# Rate limiting primitives (token buckets) and Telegram outbox gating
# --------------------------------------------------------------------------------------

class TokenBucket:
    def __init__(self, capacity: int, refill_amount: int, interval_seconds: float) -> None:
        self.capacity = max(1, capacity)
        self.tokens = float(capacity)
        self.refill_amount = float(refill_amount)
        self.interval = float(interval_seconds)
        self._last = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self, amount: float = 1.0) -> None:
        amount = float(amount)
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = max(0.0, now - self._last)
                if elapsed >= self.interval:
                    # Add whole-interval refills for stability under load
                    intervals = int(elapsed // self.interval)
                    self.tokens = min(self.capacity, self.tokens + intervals * self.refill_amount)
                    self._last = now if intervals > 0 else self._last
                if self.tokens >= amount:
                    self.tokens -= amount
                    return
                needed = amount - self.tokens
                rate_per_sec = (self.refill_amount / self.interval) if self.interval > 0 else self.refill_amount
                wait = max(0.01, needed / max(1e-6, rate_per_sec))
            await asyncio.sleep(min(2.0, wait + random.uniform(0, 0.05)))


def _retry_after_seconds(e: RetryAfter) -> float:
    ra = getattr(e, "retry_after", 1.0)
    if isinstance(ra, timedelta):
        return ra.total_seconds()
    try:
        return float(ra)
    except (TypeError, ValueError):
        return 1.0


class TelegramOutbox:
    """Global + per-chat + per-group token buckets for Telegram sends."""

    def __init__(self, per_chat_interval: float = 1.0, sleep: Optional[Sleep] = None) -> None:
        # Global: ~30 msgs/sec
        self.global_bucket = TokenBucket(capacity=30, refill_amount=30, interval_seconds=1.0)
        self.per_chat: Dict[ChatId, TokenBucket] = {}
        self.per_group: Dict[ChatId, TokenBucket] = {}
        self.per_chat_interval = per_chat_interval
        self.attempts = int(CONFIG.get("TELEGRAM_SEND_ATTEMPTS", 4))
        self._sleep = sleep or asyncio.sleep
        self._lock = asyncio.Lock()

    async def _chat_bucket(self, chat_id: ChatId) -> TokenBucket:
        async with self._lock:
            if chat_id not in self.per_chat:
                self.per_chat[chat_id] = TokenBucket(capacity=1, refill_amount=1, interval_seconds=self.per_chat_interval)
            return self.per_chat[chat_id]

    async def _group_bucket(self, chat_id: ChatId) -> TokenBucket:
        async with self._lock:
            if chat_id not in self.per_group:
                # 20 msgs/min per group or channel
                self.per_group[chat_id] = TokenBucket(capacity=20, refill_amount=20, interval_seconds=60.0)
            return self.per_group[chat_id]

    async def _gate(self, chat_id: ChatId, is_group: bool) -> None:
        await self.global_bucket.acquire(1)
        if is_group:
            await (await self._group_bucket(chat_id)).acquire(1)
        await (await self._chat_bucket(chat_id)).acquire(1)

    async def _with_retries(self, send: Callable[[], Awaitable[Any]]):
        for attempt in range(self.attempts):
            last = attempt >= self.attempts - 1
            try:
                return await send()
            except RetryAfter as e:
                if last:
                    raise
                wait = _retry_after_seconds(e)
                log.warning(f"Telegram flood control, retrying in {wait:.1f}s ({attempt + 1}/{self.attempts})")
                await self._sleep(wait + random.uniform(0, 0.6))
            except BadRequest:
                # Payload problem; not retried
                raise
            except TimedOut:
                # Delivery unknown; not retried
                raise
            except NetworkError as e:
                if last:
                    raise
                log.warning(f"Telegram network error: {e}. Retrying ({attempt + 1}/{self.attempts})...")
                await self._sleep(0.8 + 0.4 * attempt + random.uniform(0, 0.3))

    async def send_text(self, bot, chat_id: ChatId, text: str, is_group: bool, **kwargs):
        await self._gate(chat_id, is_group)
        return await self._with_retries(lambda: bot.send_message(chat_id=chat_id, text=text, **kwargs))

    async def send_photo(self, bot, chat_id: ChatId, photo: str, is_group: bool, **kwargs):
        await self._gate(chat_id, is_group)
        return await self._with_retries(lambda: bot.send_photo(chat_id=chat_id, photo=photo, **kwargs))


def links_keyboard(links: Iterable[Tuple[str, str]]) -> Optional[InlineKeyboardMarkup]:
    buttons = [InlineKeyboardButton(label, url=url) for label, url in links if label and url]
    if not buttons:
        return None
    return InlineKeyboardMarkup([buttons])


class ChannelNotifier:
    """Posts alerts to the one configured destination chat.

    ``send`` returns True when Telegram accepted the message and False when it
    did not; it never raises ``TelegramError`` to the caller.
    """

    def __init__(self, bot, chat_id: ChatId, outbox: Optional[TelegramOutbox] = None) -> None:
        self.bot = bot
        self.chat_id = chat_id
        self.outbox = outbox or TelegramOutbox()

    async def send_text(self, text: str, markup: Optional[InlineKeyboardMarkup] = None) -> bool:
        try:
            await self.outbox.send_text(
                self.bot, self.chat_id, text, is_group=True,
                parse_mode=ParseMode.HTML,
                link_preview_options=LinkPreviewOptions(is_disabled=True),
                reply_markup=markup,
            )
            return True
        except TelegramError as e:
            log.error(f"Failed to send message to {self.chat_id}: {e}")
            return False

    async def send(self, text: str, photo: Optional[str] = None, links: Iterable[Tuple[str, str]] = ()) -> bool:
        markup = links_keyboard(links)
        if photo:
            try:
                await self.outbox.send_photo(
                    self.bot, self.chat_id, photo, is_group=True,
                    caption=text, parse_mode=ParseMode.HTML, reply_markup=markup,
                )
                return True
            except BadRequest as e:
                log.warning(f"Photo rejected for {self.chat_id} ({e}); sending as text instead.")
            except TelegramError as e:
                log.error(f"Failed to send photo to {self.chat_id}: {e}")
                return False
        return await self.send_text(text, markup)


# --- Telegram helpers for channel access checks ---
async def _can_post_to_chat(bot, chat_id: ChatId) -> tuple[bool, str]:
    """Check if the bot can post to the given chat (channel/group).
    Returns (ok, reason). ok=True when bot is admin (channels) or member with send rights (groups).
    """
    try:
        me = await bot.get_me()
        chat = await bot.get_chat(chat_id)
        m = await bot.get_chat_member(chat_id, me.id)
    except TelegramError as e:
        return False, f"lookup failed: {e}"
    status = getattr(m, 'status', '')
    chat_type = getattr(chat, 'type', '') or ''
    is_channel = (chat_type == 'channel')
    if status in ("administrator", "creator"):
        flag = 'can_post_messages' if is_channel else 'can_send_messages'
        # Flag is missing on some member types; only an explicit False blocks posting
        if getattr(m, flag, None) is not False:
            return True, "ok"
        return False, f"admin but posting disabled (type={chat_type})"
    if not is_channel and status in ("member", "restricted"):
        if getattr(m, 'can_send_messages', None) is not False:
            return True, "ok"
        return False, "member but cannot send messages"
    return False, f"insufficient rights (type={chat_type}, status={status})"

def _esc(v: Any) -> str: return _html.escape(str(v), quote=True)
