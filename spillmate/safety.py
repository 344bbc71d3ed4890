# spillmate/safety.py
import logging
import re
from typing import Dict, Any

from openai import OpenAI

from spillmate import config
from spillmate.models import Severity

logger = logging.getLogger(__name__)

# --- Crisis heuristics (always available) ---
CRISIS_PATTERNS = [
    r"\b(suicide|suicidal|kill myself|end my life|want to die|self[- ]?harm)\b",
    r"\b(harm|hurt|cut) (myself|my self)\b",
    r"\bi (don['’]t|do not) feel safe\b",
    r"\b(plan|method) (to|for) (die|harm)\b",
]

# Distress that an admin may want to look at, but not an emergency
DISTRESS_PATTERNS = [
    r"\b(hopeless|worthless|can['’]?t go on|no point|give up on everything)\b",
    r"\b(panic attack|can['’]?t breathe|breakdown)\b",
]


def looks_like_crisis(text: str) -> bool:
    t = (text or "").lower()
    return any(re.search(p, t) for p in CRISIS_PATTERNS)


def looks_like_distress(text: str) -> bool:
    t = (text or "").lower()
    return any(re.search(p, t) for p in DISTRESS_PATTERNS)


# --- Optional OpenAI moderation (used if OPENAI_API_KEY is set) ---
_client = OpenAI(api_key=config.OPENAI_API_KEY) if config.OPENAI_API_KEY else None


def moderation_enabled() -> bool:
    return _client is not None


def check_moderation(text: str) -> Dict[str, Any]:
    """
    Returns: {"flagged": bool, "reason": str, "severity": str | None}
    Crisis language is always flagged high. OpenAI moderation is consulted when
    configured; otherwise milder distress heuristics flag low.
    """
    if looks_like_crisis(text):
        return {"flagged": True, "reason": "crisis-heuristic", "severity": Severity.HIGH.value}

    if _client:
        try:
            resp = _client.moderations.create(
                model="omni-moderation-latest",
                input=text,
            )
            if resp.results[0].flagged:
                return {"flagged": True, "reason": "openai-moderation", "severity": Severity.MEDIUM.value}
        except Exception:
            # fall through to heuristic
            logger.exception("OpenAI moderation call failed; using heuristics")

    if looks_like_distress(text):
        return {"flagged": True, "reason": "distress-heuristic", "severity": Severity.LOW.value}

    return {"flagged": False, "reason": "none", "severity": None}
