from spillmate.safety import check_moderation, looks_like_crisis, moderation_enabled


def test_moderation_is_heuristic_only_without_key():
    assert moderation_enabled() is False


def test_crisis_language_is_high_severity():
    result = check_moderation("Sometimes I think I want to end my life")
    assert result == {"flagged": True, "reason": "crisis-heuristic", "severity": "high"}


def test_distress_is_low_severity():
    result = check_moderation("I feel hopeless lately")
    assert result["flagged"] is True
    assert result["severity"] == "low"


def test_everyday_talk_is_not_flagged():
    assert check_moderation("Work was busy but fine")["flagged"] is False
    assert not looks_like_crisis("I'd die for a coffee")
