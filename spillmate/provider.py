# spillmate/provider.py
"""Adapter between conversation messages and the hosted Gemini chat endpoint.

The provider receives every message but the last as prior context and the last
one as the new turn. The last message must come from the user; anything else
means the caller broke the round-trip invariant and is reported as a
``ProviderLogicError`` rather than a provider fault.
"""
from __future__ import annotations
from typing import Dict, List, Optional, Sequence, Tuple
import logging

import google.generativeai as genai
from google.generativeai.types import (
    BlockedPromptException,
    HarmBlockThreshold,
    HarmCategory,
    StopCandidateException,
)

from spillmate.messages import Message, Role, parse_role

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are Spillmate, a compassionate AI mental health companion. You provide empathetic, "
    "supportive responses to people seeking emotional support. Always be:\n"
    "1. Empathetic and non-judgmental\n"
    "2. Supportive but not prescriptive\n"
    "3. Encouraging of professional help when appropriate\n"
    "4. Respectful of the user's feelings and experiences\n"
    "5. Focused on emotional support and coping strategies\n"
    "Keep responses concise and ask gentle follow-up questions. Never give medical advice.\n"
    "If the user expresses thoughts of self-harm or suicide, acknowledge their pain, express care, "
    "and gently encourage them to seek immediate professional help or contact crisis resources."
)

# Shown instead of an empty or safety-filtered reply
FALLBACK_REPLY = (
    "I'm here to listen and support you. Could you tell me more about what you're experiencing right now?"
)

SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
}

GENERATION_CONFIG = {
    "temperature": 0.7,
    "top_k": 40,
    "top_p": 0.95,
    "max_output_tokens": 1024,
}


class ProviderError(Exception):
    """The provider could not produce a reply (network, quota, bad status...)."""


class ProviderLogicError(ProviderError):
    """The request itself violated the round-trip contract."""


_PROVIDER_ROLES = {
    Role.USER: "user",
    Role.ASSISTANT: "model",
}


def provider_role(role) -> str:
    return _PROVIDER_ROLES[parse_role(role)]


def internal_role(provider_value: str) -> Role:
    for role, value in _PROVIDER_ROLES.items():
        if value == provider_value:
            return role
    return parse_role(provider_value)


def to_provider_history(messages: Sequence[Message]) -> Tuple[List[Dict], str]:
    """Split messages into (history, latest_text) in the provider's shape."""
    if not messages:
        raise ProviderLogicError("Cannot request a reply for an empty conversation.")
    *earlier, latest = messages
    if latest.role is not Role.USER:
        raise ProviderLogicError(
            f"The last message must come from the user, got {latest.role.value!r}."
        )
    history = [{"role": provider_role(m.role), "parts": [m.content]} for m in earlier]
    return history, latest.content


def from_provider_history(history: Sequence[Dict], latest_text: str) -> List[Tuple[Role, str]]:
    pairs = [(internal_role(h["role"]), "".join(h["parts"])) for h in history]
    pairs.append((Role.USER, latest_text))
    return pairs


class ChatProvider:
    """Anything that turns an ordered message history into a reply."""

    name = "provider"

    async def generate(self, messages: Sequence[Message]) -> str:
        raise NotImplementedError


def _response_text(response) -> str:
    try:
        return (response.text or "").strip()
    except ValueError:
        # .text raises when the candidate has no text parts (e.g. filtered)
        feedback = getattr(response, "prompt_feedback", None)
        logger.warning("Gemini returned no text (feedback=%s)", feedback)
        return ""


class GeminiChatProvider(ChatProvider):
    name = "gemini"

    def __init__(self, api_key: str, model_name: str, timeout: Optional[float] = None):
        if not api_key:
            raise ValueError("GEMINI_API_KEY is not configured.")
        genai.configure(api_key=api_key)
        self.model_name = model_name
        self.timeout = timeout
        self.model = genai.GenerativeModel(
            model_name=model_name,
            system_instruction=SYSTEM_PROMPT,
            safety_settings=SAFETY_SETTINGS,
            generation_config=GENERATION_CONFIG,
        )

    async def generate(self, messages: Sequence[Message]) -> str:
        history, latest = to_provider_history(messages)
        # Gemini expects the history to open with a user turn; drop greeting-only model turns
        while history and history[0]["role"] == "model":
            history.pop(0)

        chat = self.model.start_chat(history=history)
        request_options = {"timeout": self.timeout} if self.timeout else None
        try:
            response = await chat.send_message_async(latest, request_options=request_options)
        except (BlockedPromptException, StopCandidateException) as e:
            logger.warning("Gemini blocked the reply: %s", type(e).__name__)
            return FALLBACK_REPLY
        except Exception as e:
            logger.exception("Gemini API call failed")
            raise ProviderError(str(e) or type(e).__name__) from e

        return _response_text(response) or FALLBACK_REPLY
