from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .crisis_detector import CRISIS_MESSAGE, CRISIS_RESOURCES, crisis_payload, detect_crisis
from .gemini_client import GeminiAuthError, GeminiClient, GeminiError, GeminiQuotaError

logger = logging.getLogger(__name__)

CONTEXT_MESSAGES = 6

SYSTEM_PROMPT = """You are Manas Svasthya, a compassionate mental health companion for college students in India.

Your role:
- Provide supportive, empathetic, and understanding responses
- Help with academic stress, anxiety, relationships, sleep issues and loneliness
- Be culturally sensitive to Indian student experiences

Guidelines:
1. Validate feelings first
2. Be warm and conversational
3. Offer practical coping strategies when appropriate
4. Keep responses to 2-4 sentences unless the situation needs more
5. Encourage talking to a counsellor when needed

Never diagnose conditions, never recommend medication, never minimise serious concerns."""

NO_SERVICE_MESSAGE = (
    "I'm here to support you, but I'm having trouble connecting to my AI service right now. "
    "Please try again in a moment, or if you're in crisis, please call KIRAN at 1800-599-0019."
)
QUOTA_MESSAGE = "I'm experiencing high demand right now. Please try again in a few minutes."
CONFIG_MESSAGE = "There's a configuration issue with the AI service. Please contact support."
CONNECTION_MESSAGE = "I'm having trouble connecting. Please check your internet connection."
GENERIC_MESSAGE = "I'm sorry, I'm having trouble responding right now. Please try again in a moment."

JOURNAL_MOODS = ("happy", "sad", "anxious", "calm", "excited", "neutral")


def format_crisis_reply() -> str:
    lines = [CRISIS_MESSAGE, "", "Helplines:"]
    for resource in CRISIS_RESOURCES:
        lines.append(f"- {resource['name']}: {resource['contact']} ({resource['availability']})")
    return "\n".join(lines)


def build_chat_prompt(history: Sequence[dict], message: str) -> str:
    recent = list(history)[-(CONTEXT_MESSAGES - 1):] + [{"role": "user", "content": message}]
    lines = [SYSTEM_PROMPT, "", "--- Conversation ---"]
    for item in recent:
        speaker = "Student" if item["role"] == "user" else "Manas Svasthya"
        lines.append(f"{speaker}: {item['content']}")
    lines.append("")
    lines.append("Respond as Manas Svasthya (warm, supportive, 2-4 sentences):")
    return "\n".join(lines)


def error_message(exc: GeminiError) -> str:
    if isinstance(exc, GeminiQuotaError):
        return QUOTA_MESSAGE
    if isinstance(exc, GeminiAuthError):
        return CONFIG_MESSAGE
    if "network" in str(exc).lower():
        return CONNECTION_MESSAGE
    return GENERIC_MESSAGE


def companion_reply(history: Sequence[dict], message: str, client: Optional[GeminiClient] = None) -> dict:
    """Reply to a chat message.

    ``history`` holds earlier turns as ``{"role": "user"|"assistant", "content": str}``.
    Crisis language short-circuits the model call entirely.
    """
    detection = detect_crisis(texts=[message])
    if detection["is_crisis"]:
        return {"reply": format_crisis_reply(), "source": "crisis", "crisis": crisis_payload(detection)}
    if client is None:
        return {"reply": NO_SERVICE_MESSAGE, "source": "fallback", "crisis": None}
    try:
        reply = client.generate(build_chat_prompt(history, message)).strip()
    except GeminiError as exc:
        logger.warning("Chat reply failed: %s", exc)
        return {"reply": error_message(exc), "source": "fallback", "crisis": None}
    return {"reply": reply, "source": "ai", "crisis": None}


def fallback_mood_summary(reason: str = "AI analysis temporarily unavailable. Your entry has been saved.") -> dict:
    return {
        "primary_mood": "neutral",
        "confidence": 0.3,
        "emotions": [{"emotion": "unknown", "score": 0.5}],
        "insights": reason,
        "source": "fallback",
    }


def build_mood_prompt(text: str) -> str:
    escaped = text.replace('"', '\\"')
    return f"""Analyze the emotional tone of this journal entry and provide a mood summary. Return ONLY a JSON object:
{{
  "primary_mood": "happy|sad|anxious|calm|excited|neutral",
  "confidence": 0.0-1.0,
  "emotions": [{{"emotion": "name", "score": 0.0-1.0}}],
  "insights": "brief encouraging insight about the emotional state"
}}

Journal text: "{escaped}\""""


def _clean_emotions(raw) -> List[dict]:
    emotions = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict) or not isinstance(item.get("emotion"), str):
            continue
        score = item.get("score")
        if isinstance(score, bool) or not isinstance(score, (int, float)):
            continue
        emotions.append({"emotion": item["emotion"], "score": max(0.0, min(1.0, float(score)))})
    return emotions


def summarize_journal_mood(text: str, client: Optional[GeminiClient] = None) -> dict:
    if not text.strip() or client is None:
        return fallback_mood_summary()
    try:
        payload = client.generate_json(build_mood_prompt(text))
    except GeminiError as exc:
        logger.warning("Journal mood analysis failed: %s", exc)
        return fallback_mood_summary("Could not analyze mood. Please try again later.")
    mood = str(payload.get("primary_mood", "")).strip().lower()
    if mood not in JOURNAL_MOODS:
        return fallback_mood_summary("Could not analyze mood. Please try again later.")
    confidence = payload.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = 0.5
    insights = payload.get("insights")
    return {
        "primary_mood": mood,
        "confidence": max(0.0, min(1.0, float(confidence))),
        "emotions": _clean_emotions(payload.get("emotions")),
        "insights": insights if isinstance(insights, str) else "",
        "source": "ai",
    }
