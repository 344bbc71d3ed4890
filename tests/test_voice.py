import asyncio

import pytest

from spillmate.conversation import BotState, ConversationManager
from spillmate.messages import Role
from spillmate.voice import Speaker, VoiceInput


class FakeRecognizer:
    def __init__(self, fail=False):
        self.fail = fail
        self.on_result = None
        self.on_end = None
        self.stopped = 0

    def start(self, on_result, on_end):
        if self.fail:
            raise OSError("microphone busy")
        self.on_result = on_result
        self.on_end = on_end

    def stop(self):
        self.stopped += 1


class FakeSynth:
    def __init__(self, autostart=True):
        self.autostart = autostart
        self.spoken = []
        self.cancelled = 0

    def speak(self, text, on_start, on_end):
        self.spoken.append((text, on_start, on_end))
        if self.autostart:
            on_start()

    def cancel(self):
        self.cancelled += 1

    def begin(self, index=-1):
        self.spoken[index][1]()

    def finish(self, index=-1):
        self.spoken[index][2]()


@pytest.fixture
def manager(fake_provider):
    m = ConversationManager(fake_provider)
    m.create_conversation()
    return m


def test_no_backend_means_text_only(manager):
    voice = VoiceInput(manager)
    assert not voice.available
    assert voice.press() is None
    assert manager.state is BotState.IDLE


def test_push_to_talk_submits_transcript(manager):
    recognizer = FakeRecognizer()
    voice = VoiceInput(manager, recognizer)
    states = []
    manager.subscribe(lambda old, new: states.append(new))

    seen = []
    handle = voice.press(on_transcript=seen.append)
    assert manager.state is BotState.LISTENING
    recognizer.on_result(["I feel", " anxious"])
    assert handle.transcript == "I feel anxious"
    assert seen == ["I feel anxious"]

    reply = asyncio.run(voice.release(manager.active.id))
    assert reply.role is Role.ASSISTANT
    assert manager.active.messages[-2].content == "I feel anxious"
    assert recognizer.stopped == 1
    assert states == [BotState.LISTENING, BotState.THINKING, BotState.IDLE]
    assert not voice.listening


def test_release_with_silence_sends_nothing(manager, fake_provider):
    voice = VoiceInput(manager, FakeRecognizer())
    voice.press()
    before = len(manager.active)
    assert asyncio.run(voice.release(manager.active.id)) is None
    assert len(manager.active) == before
    assert manager.state is BotState.IDLE
    assert fake_provider.calls == []


def test_recognizer_ending_by_itself_returns_to_idle(manager):
    recognizer = FakeRecognizer()
    voice = VoiceInput(manager, recognizer)
    voice.press()
    recognizer.on_end()
    assert manager.state is BotState.IDLE
    assert not voice.listening


def test_recognizer_start_failure_restores_idle(manager):
    voice = VoiceInput(manager, FakeRecognizer(fail=True))
    with pytest.raises(OSError):
        voice.press()
    assert manager.state is BotState.IDLE
    assert not voice.listening


def test_reply_is_spoken_and_speech_end_returns_to_idle(fake_provider):
    synth = FakeSynth()
    manager = ConversationManager(fake_provider, speaker=Speaker(synth))
    conv = manager.create_conversation()
    asyncio.run(manager.send_turn(conv.id, "Hello"))
    assert synth.spoken[0][0] == "echo: Hello"
    assert manager.state is BotState.SPEAKING
    synth.finish()
    assert manager.state is BotState.IDLE


def test_new_utterance_cancels_the_previous_one():
    synth = FakeSynth()
    speaker = Speaker(synth)
    speaker.speak("first")
    speaker.speak("second")
    assert synth.cancelled == 2
    # the superseded utterance finishing late changes nothing
    synth.finish(0)
    assert speaker.speaking
    synth.finish(1)
    assert not speaker.speaking


def test_typing_while_speaking_cancels_speech(fake_provider):
    synth = FakeSynth()
    manager = ConversationManager(fake_provider, speaker=Speaker(synth))
    conv = manager.create_conversation()

    async def two_turns():
        await manager.send_turn(conv.id, "one")
        await manager.send_turn(conv.id, "two")

    asyncio.run(two_turns())
    assert [s[0] for s in synth.spoken] == ["echo: one", "echo: two"]
    assert [m.content for m in conv.messages[1:]] == ["one", "echo: one", "two", "echo: two"]


def test_close_stops_speech(fake_provider):
    synth = FakeSynth()
    manager = ConversationManager(fake_provider, speaker=Speaker(synth))
    manager.speaker.speak("still talking")
    assert manager.state is BotState.SPEAKING
    manager.close()
    assert manager.state is BotState.IDLE
    assert not manager.speaker.speaking


def test_transcript_survives_recognizer_stopping_on_its_own(manager):
    recognizer = FakeRecognizer()
    voice = VoiceInput(manager, recognizer)
    voice.press()
    recognizer.on_result(["I feel anxious"])
    # engines stop on silence while the button is still held
    recognizer.on_end()
    assert manager.state is BotState.IDLE

    reply = asyncio.run(voice.release(manager.active.id))
    assert reply.role is Role.ASSISTANT
    assert manager.active.messages[-2].content == "I feel anxious"
    assert asyncio.run(voice.release(manager.active.id)) is None


def test_pressing_talk_while_speaking_cuts_speech(fake_provider):
    synth = FakeSynth()
    manager = ConversationManager(fake_provider, speaker=Speaker(synth))
    conv = manager.create_conversation()
    asyncio.run(manager.send_turn(conv.id, "Hello"))
    assert manager.state is BotState.SPEAKING

    voice = VoiceInput(manager, FakeRecognizer())
    assert voice.press() is not None
    assert manager.state is BotState.LISTENING
    assert not manager.speaker.speaking


def test_pressing_talk_while_thinking_is_ignored(manager, fake_provider):
    fake_provider.delay = 0.05
    voice = VoiceInput(manager, FakeRecognizer())

    async def press_mid_turn():
        turn = asyncio.create_task(manager.send_turn(manager.active.id, "Hello"))
        await asyncio.sleep(0.01)
        handle = voice.press()
        state = manager.state
        await turn
        return handle, state

    handle, state = asyncio.run(press_mid_turn())
    assert handle is None
    assert state is BotState.THINKING
    assert manager.state is BotState.IDLE


def test_new_turn_cuts_off_reply_still_queued_for_speech(fake_provider):
    synth = FakeSynth(autostart=False)
    manager = ConversationManager(fake_provider, speaker=Speaker(synth))
    conv = manager.create_conversation()
    asyncio.run(manager.send_turn(conv.id, "one"))
    fake_provider.delay = 0.05

    async def second_turn():
        before = synth.cancelled
        turn = asyncio.create_task(manager.send_turn(conv.id, "two"))
        await asyncio.sleep(0.01)
        cancelled_while_thinking = synth.cancelled - before
        # the engine reporting the old reply as started changes nothing now
        synth.begin(0)
        state = manager.state
        await turn
        return cancelled_while_thinking, state

    cancelled, state = asyncio.run(second_turn())
    assert cancelled == 1
    assert state is BotState.THINKING
    assert not manager.speaker.speaking
