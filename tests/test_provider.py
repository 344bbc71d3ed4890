import asyncio

import pytest
from google.generativeai.types import BlockedPromptException

from spillmate import provider
from spillmate.messages import InvalidRoleError, Message, Role
from spillmate.provider import (
    FALLBACK_REPLY,
    GeminiChatProvider,
    ProviderError,
    ProviderLogicError,
    from_provider_history,
    internal_role,
    provider_role,
    to_provider_history,
)


def msgs(*pairs):
    return [Message(role=r, content=c) for r, c in pairs]


def test_role_mapping():
    assert provider_role(Role.USER) == "user"
    assert provider_role(Role.ASSISTANT) == "model"
    assert internal_role("model") is Role.ASSISTANT
    assert internal_role("user") is Role.USER
    with pytest.raises(InvalidRoleError):
        provider_role("system")


def test_history_splits_off_latest_user_message():
    history, latest = to_provider_history(msgs(
        (Role.ASSISTANT, "Hi there"),
        (Role.USER, "I can't sleep"),
        (Role.ASSISTANT, "That sounds hard"),
        (Role.USER, "It is"),
    ))
    assert latest == "It is"
    assert history == [
        {"role": "model", "parts": ["Hi there"]},
        {"role": "user", "parts": ["I can't sleep"]},
        {"role": "model", "parts": ["That sounds hard"]},
    ]
    assert from_provider_history(history, latest) == [
        (Role.ASSISTANT, "Hi there"),
        (Role.USER, "I can't sleep"),
        (Role.ASSISTANT, "That sounds hard"),
        (Role.USER, "It is"),
    ]


def test_history_must_end_with_user_message():
    with pytest.raises(ProviderLogicError):
        to_provider_history(msgs((Role.USER, "hi"), (Role.ASSISTANT, "hello")))
    with pytest.raises(ProviderLogicError):
        to_provider_history([])


class FakeResponse:
    def __init__(self, text=None, error=None):
        self._text = text
        self._error = error
        self.prompt_feedback = None

    @property
    def text(self):
        if self._error:
            raise self._error
        return self._text


class FakeChat:
    def __init__(self, model, history):
        self.model = model
        self.history = history

    async def send_message_async(self, content, request_options=None):
        self.model.sent.append((content, request_options))
        if isinstance(self.model.outcome, Exception):
            raise self.model.outcome
        return self.model.outcome


class FakeModel:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.chats = []
        self.sent = []
        self.outcome = FakeResponse("I'm listening.")

    def start_chat(self, history=None):
        chat = FakeChat(self, history)
        self.chats.append(chat)
        return chat


@pytest.fixture
def gemini(monkeypatch):
    monkeypatch.setattr(provider.genai, "configure", lambda **kwargs: None)
    monkeypatch.setattr(provider.genai, "GenerativeModel", FakeModel)
    return GeminiChatProvider("test-key", "gemini-test", timeout=5)


def test_gemini_requires_key():
    with pytest.raises(ValueError):
        GeminiChatProvider("", "gemini-test")


def test_gemini_model_is_configured_with_persona_and_safety(gemini):
    kwargs = gemini.model.kwargs
    assert kwargs["model_name"] == "gemini-test"
    assert kwargs["system_instruction"] == provider.SYSTEM_PROMPT
    assert len(kwargs["safety_settings"]) == 4


def test_gemini_sends_history_and_latest_turn(gemini):
    reply = asyncio.run(gemini.generate(msgs(
        (Role.ASSISTANT, "Hello! I'm here to listen."),
        (Role.USER, "Work has been rough"),
        (Role.ASSISTANT, "I'm sorry to hear that"),
        (Role.USER, "Thanks"),
    )))
    assert reply == "I'm listening."
    chat = gemini.model.chats[0]
    # the opening greeting is not sent as history
    assert [h["role"] for h in chat.history] == ["user", "model"]
    assert gemini.model.sent == [("Thanks", {"timeout": 5})]


def test_gemini_empty_reply_becomes_fallback(gemini):
    gemini.model.outcome = FakeResponse("   ")
    assert asyncio.run(gemini.generate(msgs((Role.USER, "hi")))) == FALLBACK_REPLY


def test_gemini_filtered_reply_becomes_fallback(gemini):
    gemini.model.outcome = FakeResponse(error=ValueError("no parts"))
    assert asyncio.run(gemini.generate(msgs((Role.USER, "hi")))) == FALLBACK_REPLY


def test_gemini_blocked_prompt_becomes_fallback(gemini):
    gemini.model.outcome = BlockedPromptException("blocked")
    assert asyncio.run(gemini.generate(msgs((Role.USER, "hi")))) == FALLBACK_REPLY


def test_gemini_failure_is_reported_as_provider_error(gemini):
    gemini.model.outcome = RuntimeError("429 quota exceeded")
    with pytest.raises(ProviderError, match="429 quota exceeded"):
        asyncio.run(gemini.generate(msgs((Role.USER, "hi"))))


def test_gemini_rejects_history_ending_with_assistant(gemini):
    with pytest.raises(ProviderLogicError):
        asyncio.run(gemini.generate(msgs((Role.USER, "hi"), (Role.ASSISTANT, "hello"))))
    assert gemini.model.sent == []
