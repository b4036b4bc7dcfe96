from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .question_bank import Question

POSITIVE_KEYWORDS = [
    "excellent", "great", "good", "well", "positive", "satisfied", "confident", "calm",
    "relaxed", "energized", "productive", "manageable", "healthy", "supportive", "strong",
]
CONCERNING_KEYWORDS = [
    "poor", "bad", "terrible", "awful", "struggling", "difficult", "overwhelmed", "anxious",
    "stressed", "exhausted", "drained", "worried", "nervous", "panic", "crisis", "hopeless",
    "helpless",
]
UNCLEAR_KEYWORDS = ["okay", "fine", "alright", "not sure", "maybe", "sometimes", "depends", "mixed", "neutral"]

MIN_CATEGORIES_FOR_COVERAGE = 3


@dataclass
class Response:
    question: Question
    answer: str
    value: Optional[int] = None
    response_time_ms: int = 0
    confidence: float = 1.0
    note: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("confidence must be between 0 and 1")
        if self.response_time_ms < 0:
            raise ValueError("response_time_ms cannot be negative")
        if self.value is not None and self.question.options and not 0 <= self.value < len(self.question.options):
            raise ValueError("value must index one of the question options")

    @property
    def question_id(self) -> str:
        return self.question.id

    @property
    def free_text(self) -> str:
        return " ".join(part for part in (self.answer, self.note or "") if part)

    def to_dict(self) -> dict:
        return {
            "question_id": self.question.id,
            "answer": self.answer,
            "value": self.value,
            "response_time_ms": self.response_time_ms,
            "confidence": self.confidence,
            "note": self.note,
        }


@dataclass
class ResponsePatterns:
    total: int = 0
    positive_count: int = 0
    concerning_count: int = 0
    unclear_count: int = 0
    categories: List[str] = field(default_factory=list)

    def _ratio(self, count: int) -> float:
        return count / self.total if self.total else 0.0

    @property
    def is_very_positive(self) -> bool:
        return self.total > 0 and self._ratio(self.positive_count) >= 0.7 and self._ratio(self.concerning_count) <= 0.2

    @property
    def has_concerning_patterns(self) -> bool:
        return self._ratio(self.concerning_count) >= 0.4 or self.concerning_count >= 3

    @property
    def needs_more_clarity(self) -> bool:
        return self._ratio(self.unclear_count) >= 0.5 or self.unclear_count >= 3

    @property
    def has_good_coverage(self) -> bool:
        return len(self.categories) >= MIN_CATEGORIES_FOR_COVERAGE

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "positive_count": self.positive_count,
            "concerning_count": self.concerning_count,
            "unclear_count": self.unclear_count,
            "categories": list(self.categories),
            "is_very_positive": self.is_very_positive,
            "has_concerning_patterns": self.has_concerning_patterns,
            "needs_more_clarity": self.needs_more_clarity,
            "has_good_coverage": self.has_good_coverage,
        }


def contains_any(text: str, keywords: Sequence[str]) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def analyze_response_patterns(history: Sequence[Response]) -> ResponsePatterns:
    patterns = ResponsePatterns(total=len(history))
    for response in history:
        if contains_any(response.answer, POSITIVE_KEYWORDS):
            patterns.positive_count += 1
        if contains_any(response.answer, CONCERNING_KEYWORDS):
            patterns.concerning_count += 1
        if contains_any(response.answer, UNCLEAR_KEYWORDS):
            patterns.unclear_count += 1
        if response.question.category not in patterns.categories:
            patterns.categories.append(response.question.category)
    return patterns


def concern_level(response: Response) -> float:
    """0.0 (no concern) to 1.0 (most concerning) for a single answer."""
    if response.value is not None and len(response.question.options) > 1:
        return response.value / (len(response.question.options) - 1)
    concerning = contains_any(response.answer, CONCERNING_KEYWORDS)
    positive = contains_any(response.answer, POSITIVE_KEYWORDS)
    if concerning and not positive:
        return 0.8
    if positive and not concerning:
        return 0.2
    return 0.5


def analyze_response(response: Response) -> dict:
    level = concern_level(response)
    if level >= 0.7:
        state = "elevated_concern"
    elif level <= 0.3:
        state = "positive_state"
    else:
        state = "neutral"
    return {
        "concern_level": round(level, 2),
        "emotional_state": state,
        "adaptation_needed": level >= 0.7 or response.confidence < 0.5,
    }
