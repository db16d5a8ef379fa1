import pytest


class FakeBot:
    """Records outgoing Telegram calls; optionally fails them in order."""

    def __init__(self):
        self.messages = []
        self.photos = []
        self.message_errors = []
        self.photo_errors = []

    async def send_message(self, chat_id, text, **kwargs):
        if self.message_errors:
            raise self.message_errors.pop(0)
        self.messages.append({"chat_id": chat_id, "text": text, **kwargs})
        return len(self.messages)

    async def send_photo(self, chat_id, photo, **kwargs):
        if self.photo_errors:
            raise self.photo_errors.pop(0)
        self.photos.append({"chat_id": chat_id, "photo": photo, **kwargs})
        return len(self.photos)


class SleepRecorder:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def fake_bot():
    return FakeBot()


@pytest.fixture
def sleeper():
    return SleepRecorder()
