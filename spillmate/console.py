#!/usr/bin/env python3
"""
Talk to Spillmate from a terminal. Conversations live in memory for the
length of the session.

Commands:
  /new            start a new conversation
  /list           show conversations (the active one is marked)
  /open N         switch to conversation N from /list
  /delete N       delete conversation N (asks for confirmation)
  /mood           show the mood read from your latest message
  /quit           leave
"""
import argparse
import asyncio
import logging
import sys

from spillmate import config
from spillmate.conversation import ConversationManager, ConversationNotFound
from spillmate.messages import Role
from spillmate.provider import GeminiChatProvider
from spillmate.voice import Speaker, VoiceInput

MOOD_EMOJI = {"positive": "😊", "negative": "😔", "neutral": "🙂"}


def _ask_yes_no(prompt: str) -> bool:
    answer = input(f"{prompt} [y/N] ").strip().lower()
    return answer in ("y", "yes")


def _print_conversation(manager: ConversationManager):
    conv = manager.active
    if conv is None:
        print("No conversation selected. Use /new to start one.")
        return
    print(f"--- {conv.title} ---")
    for m in conv.messages:
        who = "you" if m.role is Role.USER else "spillmate"
        print(f"{who}: {m.content}")


def _pick(manager: ConversationManager, arg: str):
    try:
        return manager.conversations[int(arg) - 1]
    except (ValueError, IndexError):
        print(f"No conversation {arg!r}; see /list")
        return None


async def run(manager: ConversationManager, voice: VoiceInput):
    manager.ensure_conversation()
    _print_conversation(manager)
    if not voice.available:
        print("(voice input unavailable: type your messages)")
    loop = asyncio.get_running_loop()
    while True:
        try:
            line = await loop.run_in_executor(None, input, "> ")
        except EOFError:
            break
        cmd, _, arg = line.strip().partition(" ")
        if cmd == "/quit":
            break
        if cmd == "/new":
            manager.create_conversation()
            _print_conversation(manager)
        elif cmd == "/list":
            for i, c in enumerate(manager.conversations, 1):
                mark = "*" if c is manager.active else " "
                print(f"{mark} {i}. {c.title} ({len(c)} messages)")
        elif cmd == "/open":
            conv = _pick(manager, arg)
            if conv:
                manager.select_conversation(conv.id)
                _print_conversation(manager)
        elif cmd == "/delete":
            conv = _pick(manager, arg)
            if conv and manager.delete_conversation(
                    conv.id, confirm=lambda c: _ask_yes_no(f"Delete {c.title!r}?")):
                print("Deleted.")
                _print_conversation(manager)
        elif cmd == "/mood":
            print(MOOD_EMOJI[manager.mood.value], manager.mood.value)
        elif cmd.startswith("/"):
            print(__doc__)
        elif manager.active is None:
            print("No conversation selected. Use /new to start one.")
        else:
            try:
                reply = await manager.send_turn(manager.active.id, line)
            except ConversationNotFound:
                print("That conversation is gone. Use /new to start one.")
                continue
            if reply is not None:
                print(f"spillmate: {reply.content}")
    manager.close()
    voice.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Chat with Spillmate in the terminal.")
    parser.add_argument("--model", default=config.GEMINI_MODEL)
    parser.add_argument("--timeout", type=float, default=config.CHAT_TIMEOUT_SECONDS,
                        help="seconds to wait for a reply")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    if not config.GEMINI_API_KEY:
        print("ERROR: GEMINI_API_KEY is not configured.", file=sys.stderr)
        return 2

    provider = GeminiChatProvider(config.GEMINI_API_KEY, args.model, timeout=args.timeout)
    manager = ConversationManager(provider, speaker=Speaker(), timeout=args.timeout,
                                  strict=config.STRICT_LOGIC_ERRORS)
    voice = VoiceInput(manager)
    try:
        asyncio.run(run(manager, voice))
    except KeyboardInterrupt:
        manager.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
