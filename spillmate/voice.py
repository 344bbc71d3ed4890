"""Speech capture and synthesis bridged into the conversation manager.

Recognition and synthesis engines are pluggable backends. Without one the
adapter reports itself unavailable and the session stays text-only.
"""
from __future__ import annotations
from typing import Callable, Optional, Sequence
import logging

from spillmate.conversation import BotState, ConversationManager
from spillmate.messages import Message

logger = logging.getLogger(__name__)


class RecognitionBackend:
    """A speech recognition engine. Reports the transcript so far as segments."""

    def start(self, on_result: Callable[[Sequence[str]], None], on_end: Callable[[], None]) -> None:
        raise NotImplementedError

    def stop(self) -> None:
        raise NotImplementedError


class SynthesisBackend:
    def speak(self, text: str, on_start: Callable[[], None], on_end: Callable[[], None]) -> None:
        raise NotImplementedError

    def cancel(self) -> None:
        raise NotImplementedError


class ListeningHandle:
    """One capture session: ``start() -> handle``, ``handle.stop()``."""

    def __init__(
        self,
        backend: RecognitionBackend,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_terminated: Optional[Callable[["ListeningHandle"], None]] = None,
    ):
        self._backend = backend
        self._on_transcript = on_transcript
        self._on_terminated = on_terminated
        self.transcript = ""
        self.active = False

    def _begin(self):
        self.active = True
        self._backend.start(self._handle_result, self._handle_end)

    def _handle_result(self, segments: Sequence[str]):
        if not self.active:
            return
        self.transcript = "".join(segments)
        if self._on_transcript:
            self._on_transcript(self.transcript)

    def _handle_end(self):
        if not self.active:
            return
        self.active = False
        if self._on_terminated:
            self._on_terminated(self)

    def stop(self) -> str:
        if self.active:
            self._backend.stop()
            # backends that end asynchronously still count as terminated here
            self._handle_end()
        return self.transcript


class VoiceInput:
    """Push-to-talk: ``press()`` starts capture, ``release()`` stops it and submits the transcript."""

    def __init__(self, manager: ConversationManager, backend: Optional[RecognitionBackend] = None):
        self.manager = manager
        self.backend = backend
        self._handle: Optional[ListeningHandle] = None
        self._submitting = False
        if backend is None:
            logger.info("Speech recognition is not available; using text-only input.")

    @property
    def available(self) -> bool:
        return self.backend is not None

    @property
    def listening(self) -> bool:
        return self._handle is not None and self._handle.active

    def start(self, on_transcript: Optional[Callable[[str], None]] = None) -> Optional[ListeningHandle]:
        if not self.available:
            return None
        if self.listening:
            return self._handle
        if self.manager.state is BotState.THINKING:
            logger.info("Ignoring talk button while a reply is being generated")
            return None
        # talking over the bot stops its speech
        if self.manager.speaker is not None:
            self.manager.speaker.cancel()
        self.manager.transition(BotState.LISTENING)
        handle = ListeningHandle(self.backend, on_transcript=on_transcript, on_terminated=self._terminated)
        self._handle = handle
        try:
            handle._begin()
        except Exception:
            logger.exception("Speech recognition failed to start")
            self._handle = None
            self.manager.transition(BotState.IDLE)
            raise
        return handle

    press = start

    def _terminated(self, handle: ListeningHandle):
        # the handle is kept until release so a transcript from an engine that
        # stopped on its own is still submitted
        if not self._submitting and self.manager.state is BotState.LISTENING:
            self.manager.transition(BotState.IDLE)

    async def release(self, conversation_id: str) -> Optional[Message]:
        handle = self._handle
        if handle is None:
            return None
        self._handle = None
        self._submitting = True
        try:
            transcript = handle.stop()
        finally:
            self._submitting = False
        if not transcript.strip():
            if self.manager.state is BotState.LISTENING:
                self.manager.transition(BotState.IDLE)
            return None
        return await self.manager.send_turn(conversation_id, transcript)

    def close(self):
        if self._handle is not None:
            self._handle.stop()
        self._handle = None


class Speaker:
    """Speaks assistant replies; at most one utterance plays at a time."""

    def __init__(self, backend: Optional[SynthesisBackend] = None):
        self.backend = backend
        self.on_state: Optional[Callable[[BotState], None]] = None
        self.speaking = False
        self._utterance = 0

    @property
    def available(self) -> bool:
        return self.backend is not None

    def _notify(self, state: BotState):
        if self.on_state:
            self.on_state(state)

    def speak(self, text: str) -> bool:
        if not self.available or not (text or "").strip():
            return False
        self.cancel()
        self._utterance += 1
        token = self._utterance

        def on_start():
            if token == self._utterance:
                self.speaking = True
                self._notify(BotState.SPEAKING)

        def on_end():
            if token == self._utterance and self.speaking:
                self.speaking = False
                self._notify(BotState.IDLE)

        self.backend.speak(text, on_start, on_end)
        return True

    def cancel(self):
        if self.backend is None:
            return
        # callbacks from the cancelled utterance are ignored from here on
        self._utterance += 1
        self.backend.cancel()
        if self.speaking:
            self.speaking = False
            self._notify(BotState.IDLE)

    close = cancel
