"""Adaptive assessment sessions.

A session starts with the fixed initial questions, then asks generated
follow-ups (or static fallback questions when the model is unavailable) until
`should_continue` says the picture is clear enough. Crisis language in any
answer ends the session immediately.
"""
from __future__ import annotations

import logging
import os
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

from .crisis_detector import crisis_payload, detect_crisis
from .gemini_client import GeminiClient, GeminiError
from .question_bank import (
    INITIAL_QUESTIONS,
    Question,
    build_question_prompt,
    initial_question,
    parse_generated_question,
    pick_fallback_question,
)
from .response_analyzer import Response, analyze_response, analyze_response_patterns
from .scoring_engine import AI_WEIGHT, build_result

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_CANCELLED = "cancelled"


class AssessmentError(Exception):
    pass


class SessionClosedError(AssessmentError):
    pass


class UnknownQuestionError(AssessmentError):
    pass


@dataclass
class AssessmentConfig:
    initial_question_count: int = len(INITIAL_QUESTIONS)
    max_questions_per_session: int = 20
    min_questions: int = 5
    clarity_question_limit: int = 15
    default_question_limit: int = 12
    ai_weight: float = AI_WEIGHT
    crisis_detection_enabled: bool = True

    def __post_init__(self) -> None:
        if not 1 <= self.initial_question_count <= len(INITIAL_QUESTIONS):
            raise ValueError("initial_question_count out of range")
        if self.max_questions_per_session < self.min_questions:
            raise ValueError("max_questions_per_session must be >= min_questions")

    @classmethod
    def from_env(cls) -> "AssessmentConfig":
        raw = os.getenv("MANAS_MAX_QUESTIONS", "").strip()
        if raw.isdigit():
            return cls(max_questions_per_session=max(5, int(raw)))
        return cls()


@dataclass
class AssessmentSession:
    user_id: int
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    questions: List[Question] = field(default_factory=list)
    responses: List[Response] = field(default_factory=list)
    status: str = STATUS_ACTIVE
    started_at: datetime = field(default_factory=datetime.utcnow)
    ended_at: Optional[datetime] = None
    ended_reason: Optional[str] = None
    stress_level: float = 5.0
    result: Optional[dict] = None
    crisis: Optional[dict] = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    @property
    def current_question(self) -> Optional[Question]:
        if not self.is_active or len(self.questions) <= len(self.responses):
            return None
        return self.questions[len(self.responses)]

    @property
    def asked_texts(self) -> List[str]:
        return [q.text for q in self.questions]

    def _close(self, status: str, reason: str) -> None:
        if not self.is_active:
            raise SessionClosedError(f"Session already {self.status}")
        self.status = status
        self.ended_reason = reason
        self.ended_at = datetime.utcnow()


@dataclass
class StepResult:
    session: AssessmentSession
    next_question: Optional[Question] = None
    result: Optional[dict] = None
    crisis: Optional[dict] = None
    analysis: dict = field(default_factory=dict)

    @property
    def completed(self) -> bool:
        return not self.session.is_active


def should_continue(history: Sequence[Response], config: Optional[AssessmentConfig] = None) -> bool:
    config = config or AssessmentConfig()
    answered = len(history)
    if answered >= config.max_questions_per_session:
        return False
    if answered < config.min_questions:
        return True
    patterns = analyze_response_patterns(history)
    if patterns.is_very_positive and patterns.has_good_coverage:
        return False
    if patterns.has_concerning_patterns:
        return True
    if patterns.needs_more_clarity and answered < config.clarity_question_limit:
        return True
    return answered < config.default_question_limit


def _session_rng(session: AssessmentSession) -> random.Random:
    return random.Random(f"{session.id}:{len(session.questions)}")


def generate_next_question(
    session: AssessmentSession,
    client: Optional[GeminiClient] = None,
    config: Optional[AssessmentConfig] = None,
) -> Question:
    config = config or AssessmentConfig()
    asked = session.asked_texts
    index = len(session.questions)
    if index < config.initial_question_count:
        return initial_question(index)
    if client is not None:
        try:
            raw = client.generate(build_question_prompt(session.responses, asked))
            return parse_generated_question(raw, asked)
        except (GeminiError, ValueError) as exc:
            logger.warning("Question generation failed, using fallback pool: %s", exc)
    return pick_fallback_question(asked, _session_rng(session))


def start_session(
    user_id: int,
    client: Optional[GeminiClient] = None,
    config: Optional[AssessmentConfig] = None,
) -> AssessmentSession:
    session = AssessmentSession(user_id=user_id)
    session.questions.append(generate_next_question(session, client, config))
    return session


def _finish(session: AssessmentSession, client: Optional[GeminiClient], config: AssessmentConfig) -> dict:
    result = build_result(session.responses, client, config.ai_weight).to_dict()
    session._close(STATUS_COMPLETED, "scored")
    session.result = result
    return result


def submit_response(
    session: AssessmentSession,
    question_id: str,
    answer: str,
    value: Optional[int] = None,
    response_time_ms: int = 0,
    confidence: float = 1.0,
    note: Optional[str] = None,
    client: Optional[GeminiClient] = None,
    config: Optional[AssessmentConfig] = None,
) -> StepResult:
    config = config or AssessmentConfig()
    if not session.is_active:
        raise SessionClosedError(f"Session already {session.status}")
    current = session.current_question
    if current is None or current.id != question_id:
        raise UnknownQuestionError("Answer does not match the current question")

    answer = (answer or "").strip()
    if not answer and value is not None and 0 <= value < len(current.options):
        answer = current.options[value]
    if not answer:
        raise ValueError("Answer cannot be empty")

    response = Response(
        question=current,
        answer=answer,
        value=value,
        response_time_ms=response_time_ms,
        confidence=confidence,
        note=(note or "").strip() or None,
    )

    if config.crisis_detection_enabled:
        detection = detect_crisis(texts=[response.answer, response.note or ""])
        if detection["is_crisis"]:
            session.responses.append(response)
            session._close(STATUS_COMPLETED, "crisis")
            session.crisis = crisis_payload(detection)
            return StepResult(session=session, crisis=session.crisis)

    analysis = analyze_response(response)
    if analysis["concern_level"] > 0.7:
        session.stress_level = min(10.0, session.stress_level + 1)
    elif analysis["concern_level"] < 0.3:
        session.stress_level = max(1.0, session.stress_level - 0.5)
    session.responses.append(response)

    if should_continue(session.responses, config) and len(session.questions) < config.max_questions_per_session:
        next_question = generate_next_question(session, client, config)
        session.questions.append(next_question)
        return StepResult(session=session, next_question=next_question, analysis=analysis)

    result = _finish(session, client, config)
    return StepResult(session=session, result=result, analysis=analysis)


def complete_session(
    session: AssessmentSession,
    client: Optional[GeminiClient] = None,
    config: Optional[AssessmentConfig] = None,
) -> dict:
    config = config or AssessmentConfig()
    if not session.is_active:
        raise SessionClosedError(f"Session already {session.status}")
    if not session.responses:
        raise AssessmentError("Answer at least one question before completing")
    # Unanswered trailing question is dropped from the record.
    del session.questions[len(session.responses):]
    return _finish(session, client, config)


def cancel_session(session: AssessmentSession) -> None:
    session._close(STATUS_CANCELLED, "cancelled")


def dump_questions(session: AssessmentSession) -> List[dict]:
    return [q.to_dict() for q in session.questions]


def dump_responses(session: AssessmentSession) -> List[dict]:
    return [r.to_dict() for r in session.responses]


def restore_session(
    session_id: str,
    user_id: int,
    questions: List[dict],
    responses: List[dict],
    status: str,
    started_at: datetime,
    ended_at: Optional[datetime] = None,
    ended_reason: Optional[str] = None,
    stress_level: float = 5.0,
    result: Optional[dict] = None,
    crisis: Optional[dict] = None,
) -> AssessmentSession:
    restored_questions = [Question.from_dict(item) for item in questions]
    by_id = {q.id: q for q in restored_questions}
    restored_responses = []
    for item in responses:
        question = by_id.get(item["question_id"])
        if question is None:
            raise AssessmentError(f"Stored response references unknown question {item['question_id']}")
        restored_responses.append(Response(
            question=question,
            answer=item["answer"],
            value=item.get("value"),
            response_time_ms=int(item.get("response_time_ms") or 0),
            confidence=float(item.get("confidence", 1.0)),
            note=item.get("note"),
        ))
    return AssessmentSession(
        id=session_id,
        user_id=user_id,
        questions=restored_questions,
        responses=restored_responses,
        status=status,
        started_at=started_at,
        ended_at=ended_at,
        ended_reason=ended_reason,
        stress_level=stress_level,
        result=result,
        crisis=crisis,
    )
