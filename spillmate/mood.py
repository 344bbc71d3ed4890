from __future__ import annotations
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, Optional, Sequence, Tuple
import re

from spillmate.messages import Message, Role

MIN_RATING = 1
MAX_RATING = 8

# rating -> (emoji, label)
MOOD_SCALE: Dict[int, Tuple[str, str]] = {
    1: ("😢", "Very Sad"),
    2: ("😔", "Sad"),
    3: ("😐", "Neutral"),
    4: ("🙂", "Okay"),
    5: ("😊", "Good"),
    6: ("😄", "Happy"),
    7: ("🤩", "Great"),
    8: ("🥳", "Euphoric"),
}


class MoodState(str, Enum):
    NEUTRAL = "neutral"
    POSITIVE = "positive"
    NEGATIVE = "negative"


def mood_label(rating: float) -> Tuple[str, str]:
    r = min(MAX_RATING, max(MIN_RATING, int(round(rating))))
    return MOOD_SCALE[r]


def detect_mood_from_text(text: str) -> str:
    """Small heuristic label for a piece of text: sad, anxious, happy, grateful or neutral."""
    if not text:
        return "neutral"
    t = text.lower()
    # negated positives ("not good", "could be better") count as sad
    if re.search(r"\b(not\s+(?:good|okay|ok|great|fine|happy|alright|well)|could\s+be\s+better|worse|awful|terrible|really\s+bad|so\s+bad)\b", t):
        return "sad"
    if re.search(r"\b(sad|depress\w*|down|miserable|hopeless|lonely|crying)\b", t):
        return "sad"
    if re.search(r"\b(anxious|anxiety|panic\w*|nervous|scared|worried|overwhelmed|stressed)\b", t):
        return "anxious"
    if re.search(r"\b(happy|good|great|awesome|fantastic|glad|excited|calm)\b", t):
        return "happy"
    if re.search(r"\b(thank\w*|grateful|appreciate)\b", t):
        return "grateful"
    return "neutral"


def conversation_mood(messages: Sequence[Message]) -> MoodState:
    for m in reversed(messages):
        if m.role is Role.USER:
            label = detect_mood_from_text(m.content)
            if label in ("sad", "anxious"):
                return MoodState.NEGATIVE
            if label in ("happy", "grateful"):
                return MoodState.POSITIVE
            return MoodState.NEUTRAL
    return MoodState.NEUTRAL


def mood_streak(days: Iterable[date], today: date) -> int:
    """Consecutive days with at least one log, ending today (or yesterday if
    nothing has been logged yet today)."""
    logged = set(days)
    cursor = today if today in logged else today - timedelta(days=1)
    streak = 0
    while cursor in logged:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


def summarize_moods(entries: Sequence, today: Optional[date] = None) -> Dict:
    today = today or datetime.now(timezone.utc).date()
    if not entries:
        return {"count": 0, "average": None, "label": None, "emoji": None, "streak_days": 0}
    average = sum(e.mood_rating for e in entries) / len(entries)
    emoji, label = mood_label(average)
    return {
        "count": len(entries),
        "average": round(average, 2),
        "label": label,
        "emoji": emoji,
        "streak_days": mood_streak((e.created_at.date() for e in entries), today),
    }
