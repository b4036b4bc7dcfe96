from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

HIGH_PATTERNS = [
    r"\bkill myself\b",
    r"\bsuicide\b",
    r"\bsuicidal\b",
    r"\bend my life\b",
    r"\bending it all\b",
    r"\bwant to die\b",
    r"\bwish i was dead\b",
    r"\bdon'?t want to live\b",
    r"\bbetter off dead\b",
    r"\bplan to (die|kill myself|end my life|end it)\b",
]

CRISIS_KEYWORDS = [
    "hurt myself",
    "harm myself",
    "self-harm",
    "self harm",
    "cut myself",
    "overdose",
    "no reason to live",
    "can't go on",
    "cant go on",
    "want to disappear",
    "want it to end",
]

SELF_HARM_HINTS = ["self-harm", "self harm", "hurt myself", "harm myself", "cut myself"]

CRISIS_MESSAGE = (
    "I'm really concerned about what you're sharing with me. Your life has value and there are "
    "people who want to help you right now. Please reach out to one of the helplines below. "
    "You are not alone, and your safety is the most important thing."
)

CRISIS_RESOURCES = [
    {"name": "iCall", "contact": "9152987821", "availability": "Mon-Sat, 8am-10pm"},
    {"name": "Vandrevala Foundation", "contact": "1860-2662-345", "availability": "24/7"},
    {"name": "KIRAN Mental Health", "contact": "1800-599-0019", "availability": "24/7, toll-free"},
    {"name": "Snehi", "contact": "044-24640050", "availability": "24/7"},
    {"name": "Emergency", "contact": "112", "availability": "24/7"},
]

CRISIS_NEXT_STEPS = [
    "Go to your nearest hospital emergency room if you are in immediate danger.",
    "Contact your college counselling centre.",
    "Reach out to a trusted professor, warden or friend right now.",
]


def _find_matches(text: str, patterns: List[str]) -> List[str]:
    matches: List[str] = []
    for pattern in patterns:
        if re.search(pattern, text):
            matches.append(pattern.replace(r"\b", "").replace("'?", "'"))
    return matches


def detect_crisis(
    texts: Optional[List[str]] = None,
    structured: Optional[Dict[str, object]] = None,
) -> dict:
    texts = [item for item in (texts or []) if item]
    structured = structured or {}
    combined = " ".join(texts).lower().replace("\u2019", "'").replace("\u2018", "'")

    high_matches = _find_matches(combined, HIGH_PATTERNS)
    if structured.get("self_harm_plan") or structured.get("self_harm_intent"):
        high_matches.append("self_harm_plan")
    if high_matches:
        logger.warning("Crisis language detected (level=high, terms=%d)", len(high_matches))
        return {
            "is_crisis": True,
            "level": "high",
            "matched_terms": list(dict.fromkeys(high_matches)),
            "reason": "Explicit self-harm intent or plan detected.",
        }

    keyword_matches = [term for term in CRISIS_KEYWORDS if term in combined]
    hopelessness_score = structured.get("hopelessness_score")
    hopeless_flag = isinstance(hopelessness_score, (int, float)) and hopelessness_score >= 8
    self_harm_hint = structured.get("self_harm_thoughts") is True or any(
        term in combined for term in SELF_HARM_HINTS
    )

    if keyword_matches or (hopeless_flag and self_harm_hint):
        logger.warning("Crisis language detected (level=elevated, terms=%d)", len(keyword_matches))
        return {
            "is_crisis": True,
            "level": "elevated",
            "matched_terms": list(dict.fromkeys(keyword_matches)),
            "reason": "Self-harm or crisis language detected.",
        }

    return {
        "is_crisis": False,
        "level": "none",
        "matched_terms": [],
        "reason": "",
    }


def crisis_payload(detection: dict) -> dict:
    return {
        **detection,
        "message": CRISIS_MESSAGE,
        "resources": CRISIS_RESOURCES,
        "next_steps": CRISIS_NEXT_STEPS,
    }
