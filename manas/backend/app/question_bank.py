from __future__ import annotations

import random
import uuid
from dataclasses import asdict, dataclass, field
from typing import Iterable, List, Optional, Sequence

from .gemini_client import parse_json_lenient

CATEGORIES = (
    "academic",
    "social",
    "emotional",
    "behavioral",
    "cognitive",
    "physical",
    "stress",
    "anxiety",
    "sleep",
    "general",
)


@dataclass
class Question:
    text: str
    category: str
    options: List[str] = field(default_factory=list)
    difficulty: int = 2
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    source: str = "initial"
    relevance: Optional[float] = None
    ai_confidence: Optional[float] = None

    def __post_init__(self) -> None:
        if self.category not in CATEGORIES:
            raise ValueError(f"Unknown question category: {self.category}")
        if not 1 <= self.difficulty <= 5:
            raise ValueError("difficulty must be between 1 and 5")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Question":
        return cls(
            id=data["id"],
            text=data["text"],
            category=data.get("category", "general"),
            options=list(data.get("options") or []),
            difficulty=int(data.get("difficulty", 2)),
            source=data.get("source", "initial"),
            relevance=data.get("relevance"),
            ai_confidence=data.get("ai_confidence"),
        )


INITIAL_QUESTIONS = [
    {
        "text": "How would you describe your overall mood today?",
        "category": "general",
        "options": [
            "Excellent - feeling great and positive",
            "Good - generally positive with minor concerns",
            "Okay - neutral, neither great nor terrible",
            "Poor - feeling down or negative",
        ],
    },
    {
        "text": "On a scale of 1-10, how stressed do you feel right now?",
        "category": "stress",
        "options": [
            "1-3: Very low stress, feeling calm",
            "4-6: Moderate stress, manageable",
            "7-8: High stress, feeling overwhelmed",
            "9-10: Extreme stress, very difficult to cope",
        ],
    },
    {
        "text": "How has your sleep been over the past week?",
        "category": "sleep",
        "options": [
            "Excellent - sleeping well and feeling rested",
            "Good - mostly good sleep with minor issues",
            "Fair - some sleep problems but manageable",
            "Poor - significant sleep difficulties",
        ],
    },
]

FALLBACK_POOL = [
    {
        "text": "How do you typically start your day and what sets the tone for your mood?",
        "category": "general",
        "options": [
            "I have a positive morning routine that energizes me",
            "I usually feel okay but sometimes rushed or stressed",
            "My mornings are often chaotic and affect my mood",
            "I frequently wake up feeling anxious or overwhelmed",
        ],
    },
    {
        "text": "When you face a challenging situation, what is your first instinct?",
        "category": "stress",
        "options": [
            "I approach it systematically and break it down into steps",
            "I seek advice from others or research solutions",
            "I feel overwhelmed but try to push through",
            "I tend to avoid or procrastinate on difficult tasks",
        ],
    },
    {
        "text": "How would you describe your relationships with family and friends?",
        "category": "general",
        "options": [
            "Strong, supportive relationships that bring me joy",
            "Generally good with occasional conflicts or distance",
            "Mixed - some supportive, others stressful or complicated",
            "Challenging relationships that add to my stress",
        ],
    },
    {
        "text": "What happens to your energy levels throughout the day?",
        "category": "general",
        "options": [
            "I maintain steady energy and feel productive",
            "I have natural ups and downs but manage well",
            "I often feel drained by afternoon or evening",
            "I frequently feel exhausted or low energy",
        ],
    },
    {
        "text": "How do you handle unexpected changes or disruptions to your plans?",
        "category": "anxiety",
        "options": [
            "I adapt easily and see it as an opportunity",
            "I feel some stress but can adjust my approach",
            "I find it challenging and it affects my mood",
            "Unexpected changes cause significant anxiety or panic",
        ],
    },
    {
        "text": "How do you typically unwind and relax after a busy day?",
        "category": "general",
        "options": [
            "I have consistent relaxation routines that work well",
            "I try different activities but sometimes struggle to relax",
            "I often feel too busy or stressed to properly unwind",
            "I rarely find time or methods that help me relax",
        ],
    },
    {
        "text": "What role does social media and technology play in your daily stress?",
        "category": "stress",
        "options": [
            "Technology helps me stay connected and organized",
            "It's mostly positive but sometimes adds pressure",
            "It creates some stress and comparison issues",
            "It significantly contributes to my anxiety and stress",
        ],
    },
    {
        "text": "How do you feel about your current academic or work situation?",
        "category": "general",
        "options": [
            "I'm satisfied and feel challenged in a good way",
            "It's generally okay with some manageable pressures",
            "I feel overwhelmed by demands and expectations",
            "I'm struggling with motivation and performance",
        ],
    },
    {
        "text": "When you feel anxious or worried, what physical symptoms do you notice?",
        "category": "anxiety",
        "options": [
            "I rarely experience physical symptoms of anxiety",
            "I notice some tension or restlessness occasionally",
            "I often feel muscle tension, headaches, or stomach issues",
            "I experience frequent physical symptoms that affect my daily life",
        ],
    },
    {
        "text": "How would you describe your relationship with your body and physical health?",
        "category": "general",
        "options": [
            "I feel good about my health and take care of myself",
            "I'm generally healthy but could improve some habits",
            "I have some health concerns that worry me",
            "I'm struggling with physical health issues that affect my mental state",
        ],
    },
    {
        "text": "What gives you the most sense of purpose and fulfillment in life?",
        "category": "general",
        "options": [
            "I have clear goals and feel motivated by my purpose",
            "I find meaning in relationships and personal growth",
            "I'm searching for direction and sometimes feel lost",
            "I struggle to find meaning and feel disconnected from purpose",
        ],
    },
    {
        "text": "How do you typically respond when someone close to you is going through a difficult time?",
        "category": "general",
        "options": [
            "I'm naturally supportive and good at helping others",
            "I try to help but sometimes feel overwhelmed by their problems",
            "I care but struggle to know how to support them effectively",
            "I often feel drained or stressed when others need support",
        ],
    },
]

LAST_RESORT_QUESTION = {
    "text": "How would you rate your overall sense of well-being and life satisfaction?",
    "category": "general",
    "options": [
        "Excellent - I feel fulfilled and optimistic about life",
        "Good - I'm generally satisfied with how things are going",
        "Fair - I have some concerns but also positive aspects",
        "Poor - I'm struggling with multiple areas of life",
    ],
}


def initial_question(index: int) -> Question:
    item = INITIAL_QUESTIONS[index]
    return Question(text=item["text"], category=item["category"], options=list(item["options"]), difficulty=1)


def determine_category(question_text: str) -> str:
    text = question_text.lower()
    if any(word in text for word in ("stress", "pressure", "overwhelm")):
        return "stress"
    if any(word in text for word in ("anxious", "worry", "nervous")):
        return "anxiety"
    if any(word in text for word in ("sleep", "tired", "rest")):
        return "sleep"
    return "general"


def pick_fallback_question(asked_texts: Iterable[str], rng: Optional[random.Random] = None) -> Question:
    rng = rng or random.Random()
    asked = set(asked_texts)
    available = [item for item in FALLBACK_POOL if item["text"] not in asked]
    if available:
        item = rng.choice(available)
    else:
        item = LAST_RESORT_QUESTION
    return Question(
        text=item["text"],
        category=item["category"],
        options=list(item["options"]),
        source="fallback",
    )


def format_history(history: Sequence) -> str:
    return "\n\n".join(
        f"{index}. Q: {response.question.text}\nA: {response.answer}"
        for index, response in enumerate(history, start=1)
    )


def build_question_prompt(history: Sequence, asked_texts: Sequence[str]) -> str:
    asked_list = "\n".join(f"{index}. {text}" for index, text in enumerate(asked_texts, start=1))
    return f"""Based on the student's previous responses, generate a COMPLETELY NEW mental health assessment question with 4 multiple choice options.

Previous Q&A:
{format_history(history)}

Already asked questions (DO NOT repeat these):
{asked_list}

The new question must:
- be different from every question already asked
- explore an area suggested by their answers (triggers, coping, support, routines, academics, sleep, physical health)
- be empathetic, non-judgmental and specific

Respond with ONLY a JSON object:
{{
  "question": "question text",
  "options": [
    "most positive/healthy response",
    "moderately positive response",
    "moderately concerning response",
    "most concerning response"
  ],
  "relevance": 0.0-1.0,
  "confidence": 0.0-1.0
}}"""


def _as_unit_float(value) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return max(0.0, min(1.0, float(value)))


def parse_generated_question(raw: str, asked_texts: Iterable[str]) -> Question:
    payload = parse_json_lenient(raw)
    text = payload.get("question")
    options = payload.get("options")
    if not isinstance(text, str) or not text.strip():
        raise ValueError("generated question has no text")
    if not isinstance(options, list) or len(options) != 4 or not all(isinstance(o, str) and o.strip() for o in options):
        raise ValueError("generated question must have 4 text options")
    text = text.strip()
    asked = {item.strip().lower() for item in asked_texts}
    if text.lower() in asked:
        raise ValueError("generated question is a repeat")
    return Question(
        text=text,
        category=determine_category(text),
        options=[o.strip() for o in options],
        difficulty=3,
        source="ai",
        relevance=_as_unit_float(payload.get("relevance")),
        ai_confidence=_as_unit_float(payload.get("confidence")),
    )
