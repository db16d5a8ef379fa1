import asyncio

from telegram import InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TimedOut

from cto_helpers.utils import ChannelNotifier, TelegramOutbox, links_keyboard

LINKS = [("📊 DexScreener", "https://dexscreener.com/solana/abc"), ("🤖 @maestro", "https://t.me/maestro")]


def make_notifier(bot, sleeper):
    return ChannelNotifier(bot, -100123, TelegramOutbox(per_chat_interval=0.01, sleep=sleeper))


def test_links_keyboard_single_row():
    markup = links_keyboard(LINKS + [("", "https://ignored")])
    assert isinstance(markup, InlineKeyboardMarkup)
    assert [b.text for b in markup.inline_keyboard[0]] == ["📊 DexScreener", "🤖 @maestro"]
    assert links_keyboard([]) is None


def test_text_alert_disables_previews(fake_bot, sleeper):
    notifier = make_notifier(fake_bot, sleeper)

    assert asyncio.run(notifier.send("<b>hi</b>", links=LINKS)) is True

    msg = fake_bot.messages[0]
    assert msg["chat_id"] == -100123
    assert msg["parse_mode"] == ParseMode.HTML
    assert msg["link_preview_options"].is_disabled is True
    assert msg["reply_markup"].inline_keyboard[0][0].url == LINKS[0][1]
    assert fake_bot.photos == []


def test_photo_alert_uses_caption(fake_bot, sleeper):
    notifier = make_notifier(fake_bot, sleeper)

    assert asyncio.run(notifier.send("caption", photo="https://img/banner.png", links=LINKS)) is True

    photo = fake_bot.photos[0]
    assert photo["photo"] == "https://img/banner.png"
    assert photo["caption"] == "caption"
    assert photo["parse_mode"] == ParseMode.HTML
    assert fake_bot.messages == []


def test_rejected_photo_falls_back_to_text(fake_bot, sleeper):
    fake_bot.photo_errors.append(BadRequest("Wrong file identifier/http url specified"))
    notifier = make_notifier(fake_bot, sleeper)

    assert asyncio.run(notifier.send("caption", photo="https://img/broken.png", links=LINKS)) is True

    assert fake_bot.photos == []
    assert fake_bot.messages[0]["text"] == "caption"


def test_flood_control_is_retried(fake_bot, sleeper):
    fake_bot.message_errors.append(RetryAfter(5))
    notifier = make_notifier(fake_bot, sleeper)

    assert asyncio.run(notifier.send("hello")) is True

    assert len(fake_bot.messages) == 1
    assert sleeper.calls and sleeper.calls[0] >= 5


def test_network_errors_are_retried_until_attempts_run_out(fake_bot, sleeper):
    outbox = TelegramOutbox(per_chat_interval=0.01, sleep=sleeper)
    fake_bot.message_errors.extend([NetworkError("Server disconnected")] * outbox.attempts)
    notifier = ChannelNotifier(fake_bot, -100123, outbox)

    assert asyncio.run(notifier.send("hello")) is False
    assert len(sleeper.calls) == outbox.attempts - 1


def test_forbidden_is_reported_not_raised(fake_bot, sleeper):
    fake_bot.message_errors.append(Forbidden("bot is not a member of the channel chat"))
    notifier = make_notifier(fake_bot, sleeper)

    assert asyncio.run(notifier.send("hello")) is False
    assert sleeper.calls == []


def test_timeout_after_send_is_not_resent(fake_bot, sleeper):
    class SlowAckBot(type(fake_bot)):
        async def send_message(self, chat_id, text, **kwargs):
            await super().send_message(chat_id, text, **kwargs)
            raise TimedOut()

    bot = SlowAckBot()
    notifier = make_notifier(bot, sleeper)

    assert asyncio.run(notifier.send("hello")) is False
    assert len(bot.messages) == 1
    assert sleeper.calls == []
