import json
import unittest

from manas.backend.app.assessment_engine import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    AssessmentConfig,
    AssessmentError,
    SessionClosedError,
    UnknownQuestionError,
    cancel_session,
    complete_session,
    dump_questions,
    dump_responses,
    restore_session,
    should_continue,
    start_session,
    submit_response,
)
from manas.backend.app.gemini_client import GeminiError
from manas.backend.app.question_bank import INITIAL_QUESTIONS, Question
from manas.backend.app.response_analyzer import Response


class QuestionWriter:
    """Answers question prompts with numbered questions and fails everything else."""

    def __init__(self):
        self.count = 0

    def generate(self, prompt):
        self.count += 1
        return json.dumps({
            "question": f"Generated question number {self.count}?",
            "options": ["one", "two", "three", "four"],
            "relevance": 0.8,
            "confidence": 0.7,
        })

    def generate_json(self, prompt):
        raise GeminiError("scoring offline")


class BrokenClient:
    def generate(self, prompt):
        raise GeminiError("offline")

    def generate_json(self, prompt):
        raise GeminiError("offline")


def answer_all(session, text, config=None, client=None, limit=50):
    step = None
    for _ in range(limit):
        if not session.is_active:
            break
        step = submit_response(session, session.current_question.id, text, client=client, config=config)
    return step


def history(*texts):
    categories = ["general", "stress", "sleep"]
    return [
        Response(question=Question(text=f"Q{i}?", category=categories[i % 3]), answer=text)
        for i, text in enumerate(texts)
    ]


class ShouldContinueTests(unittest.TestCase):
    def test_always_asks_minimum(self):
        self.assertTrue(should_continue(history(*["great"] * 4)))

    def test_stops_when_positive_and_covered(self):
        self.assertFalse(should_continue(history(*["great"] * 5)))

    def test_concerning_extends_past_default(self):
        self.assertTrue(should_continue(history(*["overwhelmed"] * 14)))

    def test_never_exceeds_max(self):
        self.assertFalse(should_continue(history(*["overwhelmed"] * 20)))

    def test_unclear_capped_at_fifteen(self):
        self.assertTrue(should_continue(history(*["not sure"] * 14)))
        self.assertFalse(should_continue(history(*["not sure"] * 15)))

    def test_default_limit(self):
        self.assertTrue(should_continue(history(*["nothing to report"] * 11)))
        self.assertFalse(should_continue(history(*["nothing to report"] * 12)))


class SessionFlowTests(unittest.TestCase):
    def test_starts_with_initial_question(self):
        session = start_session(user_id=1)
        self.assertEqual(len(session.questions), 1)
        self.assertEqual(session.current_question.text, INITIAL_QUESTIONS[0]["text"])
        self.assertTrue(session.is_active)

    def test_positive_session_stops_at_five(self):
        session = start_session(user_id=1)
        step = answer_all(session, "Great, feeling good and calm")
        self.assertTrue(step.completed)
        self.assertEqual(len(session.responses), 5)
        self.assertEqual(session.status, STATUS_COMPLETED)
        self.assertEqual(session.ended_reason, "scored")
        self.assertEqual(step.result["method"], "heuristic")

    def test_concerning_session_runs_to_max(self):
        session = start_session(user_id=1)
        answer_all(session, "Overwhelmed and exhausted")
        self.assertEqual(len(session.questions), 20)
        self.assertEqual(len(session.responses), 20)
        self.assertIsNotNone(session.result)

    def test_neutral_session_uses_default_limit(self):
        session = start_session(user_id=1)
        answer_all(session, "Nothing much to report")
        self.assertEqual(len(session.responses), 12)

    def test_custom_max_questions(self):
        config = AssessmentConfig(max_questions_per_session=8)
        session = start_session(user_id=1, config=config)
        answer_all(session, "Overwhelmed", config=config)
        self.assertEqual(len(session.questions), 8)

    def test_fallback_questions_do_not_repeat(self):
        session = start_session(user_id=1)
        answer_all(session, "Nothing much to report")
        texts = [q.text for q in session.questions]
        self.assertEqual(len(texts), len(set(texts)))
        self.assertTrue(all(q.source == "fallback" for q in session.questions[3:]))

    def test_generated_questions_after_initial(self):
        client = QuestionWriter()
        session = start_session(user_id=1, client=client)
        answer_all(session, "Nothing much to report", client=client)
        self.assertEqual([q.source for q in session.questions[:3]], ["initial"] * 3)
        self.assertEqual(session.questions[3].source, "ai")
        self.assertEqual(session.questions[3].relevance, 0.8)
        self.assertEqual(session.result["method"], "heuristic")

    def test_broken_client_falls_back(self):
        client = BrokenClient()
        session = start_session(user_id=1, client=client)
        step = answer_all(session, "Great, feeling good and calm", client=client)
        self.assertEqual(session.questions[3].source, "fallback")
        self.assertEqual(step.result["method"], "heuristic")

    def test_crisis_ends_session_immediately(self):
        session = start_session(user_id=1)
        submit_response(session, session.current_question.id, "Okay I guess")
        step = submit_response(session, session.current_question.id, "I want to end my life")
        self.assertTrue(step.completed)
        self.assertEqual(session.ended_reason, "crisis")
        self.assertIsNone(session.result)
        self.assertEqual(step.crisis["level"], "high")
        self.assertEqual(len(session.responses), 2)
        self.assertIsNone(step.next_question)

    def test_crisis_in_note(self):
        session = start_session(user_id=1)
        step = submit_response(session, session.current_question.id, "", value=2, note="thinking about self-harm")
        self.assertIsNotNone(step.crisis)

    def test_crisis_detection_can_be_disabled(self):
        config = AssessmentConfig(crisis_detection_enabled=False)
        session = start_session(user_id=1, config=config)
        step = submit_response(session, session.current_question.id, "I want to die", config=config)
        self.assertIsNone(step.crisis)
        self.assertTrue(session.is_active)

    def test_value_only_answer_uses_option_text(self):
        session = start_session(user_id=1)
        step = submit_response(session, session.current_question.id, "", value=3)
        self.assertEqual(session.responses[0].answer, INITIAL_QUESTIONS[0]["options"][3])
        self.assertEqual(step.analysis["concern_level"], 1.0)
        self.assertEqual(session.stress_level, 6.0)

    def test_empty_answer_rejected(self):
        session = start_session(user_id=1)
        with self.assertRaises(ValueError):
            submit_response(session, session.current_question.id, "   ")

    def test_wrong_question_rejected(self):
        session = start_session(user_id=1)
        with self.assertRaises(UnknownQuestionError):
            submit_response(session, "not-a-question", "fine")

    def test_closed_session_rejects_answers(self):
        session = start_session(user_id=1)
        question_id = session.current_question.id
        cancel_session(session)
        self.assertEqual(session.status, STATUS_CANCELLED)
        with self.assertRaises(SessionClosedError):
            submit_response(session, question_id, "fine")
        with self.assertRaises(SessionClosedError):
            cancel_session(session)

    def test_complete_early(self):
        session = start_session(user_id=1)
        submit_response(session, session.current_question.id, "Good")
        submit_response(session, session.current_question.id, "Some pressure")
        result = complete_session(session)
        self.assertEqual(len(session.questions), 2)
        self.assertEqual(session.ended_reason, "scored")
        self.assertIn("overall_score", result)
        with self.assertRaises(SessionClosedError):
            complete_session(session)

    def test_complete_requires_an_answer(self):
        session = start_session(user_id=1)
        with self.assertRaises(AssessmentError):
            complete_session(session)


class PersistenceTests(unittest.TestCase):
    def test_restore_keeps_current_question(self):
        session = start_session(user_id=7)
        submit_response(session, session.current_question.id, "Good", response_time_ms=1200, confidence=0.8)
        restored = restore_session(
            session_id=session.id,
            user_id=7,
            questions=json.loads(json.dumps(dump_questions(session))),
            responses=json.loads(json.dumps(dump_responses(session))),
            status=session.status,
            started_at=session.started_at,
            stress_level=session.stress_level,
        )
        self.assertEqual(restored.current_question.id, session.current_question.id)
        self.assertEqual(restored.responses[0].response_time_ms, 1200)
        self.assertEqual(restored.responses[0].question, session.questions[0])

    def test_restore_rejects_dangling_response(self):
        with self.assertRaises(AssessmentError):
            restore_session(
                session_id="x",
                user_id=1,
                questions=[],
                responses=[{"question_id": "missing", "answer": "fine"}],
                status="active",
                started_at=None,
            )


def test_config_reads_max_questions(monkeypatch):
    monkeypatch.setenv("MANAS_MAX_QUESTIONS", "9")
    assert AssessmentConfig.from_env().max_questions_per_session == 9


def test_config_ignores_bad_max_questions(monkeypatch):
    monkeypatch.setenv("MANAS_MAX_QUESTIONS", "lots")
    assert AssessmentConfig.from_env().max_questions_per_session == 20


def test_config_rejects_max_below_minimum():
    try:
        AssessmentConfig(max_questions_per_session=3)
    except ValueError:
        return
    raise AssertionError("expected ValueError")


if __name__ == "__main__":
    unittest.main()
