# spillmate/conversation.py
"""In-memory conversation sessions and the chat round trip.

``ConversationManager`` owns the list of conversations, the active one and the
bot state indicator. ``send_turn`` appends the user's text, asks the provider
for a reply and appends it; provider failures become an apology message in the
thread, and the indicator always returns to idle.
"""
from __future__ import annotations
from enum import Enum
from typing import Callable, List, Optional, Union
import asyncio
import logging

from spillmate.messages import DEFAULT_TITLE, Conversation, Message, Role
from spillmate.mood import MoodState, conversation_mood
from spillmate.provider import FALLBACK_REPLY, ChatProvider, ProviderError, ProviderLogicError

logger = logging.getLogger(__name__)

WELCOME_TITLE = "Your First Conversation"
WELCOME_GREETING = "Hello! I'm here to listen. Whatever is on your mind, feel free to share."
NEW_CHAT_GREETING = "It's a fresh start. What would you like to talk about?"
APOLOGY = "I'm sorry, I'm having a little trouble connecting right now."


class BotState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


_TRANSITIONS = {
    BotState.IDLE: {BotState.LISTENING, BotState.THINKING, BotState.SPEAKING},
    BotState.LISTENING: {BotState.IDLE, BotState.THINKING},
    BotState.THINKING: {BotState.IDLE},
    BotState.SPEAKING: {BotState.IDLE},
}


class ConversationNotFound(LookupError):
    pass


class BotStateError(RuntimeError):
    pass


class TurnInProgressError(BotStateError):
    pass


StateListener = Callable[[BotState, BotState], None]
Confirm = Union[bool, Callable[[Conversation], bool]]


class ConversationManager:
    def __init__(
        self,
        provider: ChatProvider,
        speaker=None,
        timeout: Optional[float] = 30.0,
        strict: bool = False,
        on_state_change: Optional[StateListener] = None,
    ):
        self.provider = provider
        self.timeout = timeout
        self.strict = strict
        self.conversations: List[Conversation] = []
        self.active: Optional[Conversation] = None
        self._state = BotState.IDLE
        self._listeners: List[StateListener] = []
        if on_state_change:
            self._listeners.append(on_state_change)
        self.speaker = speaker
        if speaker is not None:
            speaker.on_state = self._on_speech_state

    # -------- bot state --------
    @property
    def state(self) -> BotState:
        return self._state

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def transition(self, new) -> None:
        new = BotState(new)
        old = self._state
        if new is old:
            return
        if new not in _TRANSITIONS[old]:
            raise BotStateError(f"Illegal bot state change {old.value} -> {new.value}")
        self._state = new
        logger.debug("bot state %s -> %s", old.value, new.value)
        for listener in list(self._listeners):
            listener(old, new)

    def _on_speech_state(self, state: BotState) -> None:
        if state is BotState.SPEAKING and self._state is BotState.IDLE:
            self.transition(BotState.SPEAKING)
        elif state is BotState.IDLE and self._state is BotState.SPEAKING:
            self.transition(BotState.IDLE)

    # -------- conversations --------
    def _get(self, conversation_id: str) -> Conversation:
        for c in self.conversations:
            if c.id == conversation_id:
                return c
        raise ConversationNotFound(conversation_id)

    def ensure_conversation(self) -> Conversation:
        """On first load, seed the welcome conversation if there is none."""
        if self.active is not None:
            return self.active
        if self.conversations:
            self.active = self.conversations[0]
            return self.active
        return self.create_conversation(title=WELCOME_TITLE, greeting=WELCOME_GREETING)

    def create_conversation(self, title: str = DEFAULT_TITLE, greeting: str = NEW_CHAT_GREETING) -> Conversation:
        conversation = Conversation(title=title)
        conversation.append(Message(role=Role.ASSISTANT, content=greeting))
        self.conversations.insert(0, conversation)
        self.active = conversation
        return conversation

    def select_conversation(self, conversation_id: str) -> Conversation:
        conversation = self._get(conversation_id)
        self.active = conversation
        return conversation

    def append_message(self, conversation_id: str, role, content: str) -> Message:
        conversation = self._get(conversation_id)
        return conversation.append(Message(role=role, content=content))

    def delete_conversation(self, conversation_id: str, confirm: Confirm = False) -> bool:
        """Remove a conversation once ``confirm`` approves it. Returns whether it was removed."""
        conversation = self._get(conversation_id)
        approved = confirm(conversation) if callable(confirm) else bool(confirm)
        if not approved:
            return False
        self.conversations.remove(conversation)
        if self.active is conversation:
            self.active = self.conversations[0] if self.conversations else None
        logger.info("Deleted conversation %s", conversation_id)
        return True

    @property
    def mood(self) -> MoodState:
        if self.active is None:
            return MoodState.NEUTRAL
        return conversation_mood(self.active.messages)

    # -------- round trip --------
    async def _request_reply(self, conversation: Conversation) -> str:
        pending = self.provider.generate(conversation.messages)
        if self.timeout:
            reply = await asyncio.wait_for(pending, timeout=self.timeout)
        else:
            reply = await pending
        return (reply or "").strip() or FALLBACK_REPLY

    async def send_turn(self, conversation_id: str, user_text: str) -> Optional[Message]:
        text = (user_text or "").strip()
        if not text:
            return None
        conversation = self._get(conversation_id)
        if self._state is BotState.THINKING:
            raise TurnInProgressError("A reply is already being generated.")
        # a reply that is still queued or playing is cut off by the new turn
        if self.speaker is not None:
            self.speaker.cancel()

        self.append_message(conversation.id, Role.USER, text)
        self.transition(BotState.THINKING)
        preview = (text[:120] + "...") if len(text) > 120 else text
        logger.info("send_turn conversation=%s preview=%s", conversation.id, preview)
        try:
            try:
                reply = await self._request_reply(conversation)
            except ProviderLogicError:
                if self.strict:
                    raise
                logger.exception("Chat round trip broke its invariant")
                reply = APOLOGY
            except asyncio.TimeoutError:
                logger.warning("Provider timed out after %ss", self.timeout)
                reply = f"{APOLOGY} (The reply took longer than {self.timeout:g} seconds.)"
            except ProviderError as e:
                logger.warning("Provider failed: %s", e)
                reply = f"{APOLOGY} ({e})"
            except Exception as e:
                logger.exception("Provider raised unexpectedly")
                reply = f"{APOLOGY} ({str(e) or type(e).__name__})"
            message = conversation.append(Message(role=Role.ASSISTANT, content=reply))
        finally:
            self.transition(BotState.IDLE)

        if conversation not in self.conversations:
            logger.info("Conversation %s was deleted during the turn; reply not spoken", conversation.id)
            return message
        if self.speaker is not None:
            self.speaker.speak(message.content)
        return message

    def close(self) -> None:
        if self.speaker is not None:
            self.speaker.close()
