from datetime import date, datetime, timedelta
from types import SimpleNamespace

from spillmate.mood import detect_mood_from_text, mood_label, mood_streak, summarize_moods


def entry(rating, day):
    return SimpleNamespace(mood_rating=rating, created_at=datetime.combine(day, datetime.min.time()))


def test_mood_scale_ends():
    assert mood_label(1) == ("😢", "Very Sad")
    assert mood_label(8) == ("🥳", "Euphoric")
    assert mood_label(4.6) == ("😊", "Good")
    assert mood_label(42) == ("🥳", "Euphoric")


def test_detect_mood_from_text():
    assert detect_mood_from_text("I feel anxious today") == "anxious"
    assert detect_mood_from_text("not good at all") == "sad"
    assert detect_mood_from_text("Had a great walk") == "happy"
    assert detect_mood_from_text("thank you") == "grateful"
    assert detect_mood_from_text("") == "neutral"


def test_streak_counts_back_from_today():
    today = date(2024, 5, 10)
    days = [today, today - timedelta(days=1), today - timedelta(days=2), today - timedelta(days=5)]
    assert mood_streak(days, today) == 3


def test_streak_survives_until_today_is_logged():
    today = date(2024, 5, 10)
    assert mood_streak([today - timedelta(days=1), today - timedelta(days=2)], today) == 2
    assert mood_streak([today - timedelta(days=3)], today) == 0


def test_summary():
    today = date(2024, 5, 10)
    summary = summarize_moods([entry(6, today), entry(7, today), entry(2, today - timedelta(days=1))], today)
    assert summary == {"count": 3, "average": 5.0, "label": "Good", "emoji": "😊", "streak_days": 2}
