import asyncio
import os
import tempfile

# Point the app at a throwaway database before anything imports spillmate.
_DB_DIR = tempfile.mkdtemp(prefix="spillmate-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["GEMINI_API_KEY"] = ""
os.environ["OPENAI_API_KEY"] = ""

import pytest

from spillmate.provider import ChatProvider


class FakeProvider(ChatProvider):
    """Records every history it is given and answers from a script."""

    name = "fake"

    def __init__(self, replies=None, error=None, delay=0.0):
        self.replies = list(replies or [])
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, messages):
        self.calls.append(list(messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.replies:
            return self.replies.pop(0)
        return f"echo: {messages[-1].content}"


@pytest.fixture
def fake_provider():
    return FakeProvider()
