import unittest

from manas.backend.app.gemini_client import GeminiError, GeminiQuotaError
from manas.backend.app.question_bank import Question
from manas.backend.app.response_analyzer import Response
from manas.backend.app import scoring_engine
from manas.backend.app.scoring_engine import (
    AssessmentScores,
    blend_scores,
    build_result,
    calculate_dynamic_scores,
    calculate_scores,
    overall_score,
    parse_ai_scores,
    stress_level,
)


class StubClient:
    def __init__(self, scores=None, insights=None, error=None):
        self.scores = scores
        self.insights = insights
        self.error = error
        self.prompts = []

    def generate(self, prompt):
        raise GeminiError("not used")

    def generate_json(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        if "numerical scores" in prompt:
            return self.scores
        return self.insights


def answer(text, category="general"):
    return Response(question=Question(text=f"About {category}?", category=category), answer=text)


class DynamicScoreTests(unittest.TestCase):
    def test_empty_history_uses_baseline(self):
        scores = calculate_dynamic_scores([])
        self.assertEqual((scores.stress, scores.anxiety, scores.sleep), (24, 24, 40))

    def test_scores_stay_in_bounds(self):
        worst = [answer("hopeless crisis, overwhelmed by stress and panic", "stress")] * 20
        best = [answer("excellent, thriving and well-rested", "sleep")] * 20
        for history in (worst, best):
            scores = calculate_dynamic_scores(history)
            for value in (scores.stress, scores.anxiety, scores.sleep):
                self.assertGreaterEqual(value, 0)
                self.assertLessEqual(value, 100)

    def test_concerning_history_scores_higher_stress(self):
        calm = calculate_dynamic_scores([answer("calm and relaxed", "stress")] * 5)
        strained = calculate_dynamic_scores([answer("overwhelmed and stressed", "stress")] * 5)
        self.assertGreater(strained.stress, calm.stress)

    def test_same_history_same_scores(self):
        history = [answer("some pressure but manageable", "stress"), answer("poor sleep", "sleep")]
        self.assertEqual(calculate_dynamic_scores(history), calculate_dynamic_scores(history))


class BlendTests(unittest.TestCase):
    def test_seventy_thirty_blend(self):
        blended = blend_scores(AssessmentScores(100, 100, 100), AssessmentScores(0, 0, 0))
        self.assertEqual((blended.stress, blended.anxiety, blended.sleep), (70, 70, 70))

    def test_parse_ai_scores_clamps(self):
        scores = parse_ai_scores({"stress": 150, "anxiety": -5, "sleep": 55.4})
        self.assertEqual((scores.stress, scores.anxiety, scores.sleep), (100, 0, 55))

    def test_clamp_rounds_halves_up(self):
        self.assertEqual(scoring_engine.clamp(60.5), 61)
        self.assertEqual(scoring_engine.clamp(2.5), 3)
        self.assertEqual(scoring_engine.clamp(2.4), 2)

    def test_parse_ai_scores_requires_numbers(self):
        with self.assertRaises(ValueError):
            parse_ai_scores({"stress": "high", "anxiety": 10, "sleep": 10})
        with self.assertRaises(ValueError):
            parse_ai_scores({"stress": True, "anxiety": 10, "sleep": 10})

    def test_blended_when_ai_answers(self):
        history = [answer("good", "general")] * 5
        client = StubClient(scores={"stress": 80, "anxiety": 60, "sleep": 40})
        scores, method = calculate_scores(history, client)
        dynamic = calculate_dynamic_scores(history)
        self.assertEqual(method, "blended")
        self.assertEqual(scores.stress, scoring_engine.clamp(80 * 0.7 + dynamic.stress * 0.3))

    def test_heuristic_when_ai_fails(self):
        history = [answer("good", "general")] * 5
        scores, method = calculate_scores(history, StubClient(error=GeminiQuotaError("quota")))
        self.assertEqual(method, "heuristic")
        self.assertEqual(scores, calculate_dynamic_scores(history))

    def test_heuristic_when_ai_returns_garbage(self):
        scores, method = calculate_scores([answer("fine")], StubClient(scores={"mood": "ok"}))
        self.assertEqual(method, "heuristic")


class LabelTests(unittest.TestCase):
    def test_stress_level_boundaries(self):
        self.assertEqual(stress_level(30), "Low")
        self.assertEqual(stress_level(31), "Moderate")
        self.assertEqual(stress_level(60), "Moderate")
        self.assertEqual(stress_level(61), "High")

    def test_overall_score_inverts_sleep(self):
        self.assertEqual(overall_score(AssessmentScores(60, 30, 90)), 33)


class ResultTests(unittest.TestCase):
    def test_result_without_client_uses_fallback_insights(self):
        history = [answer("overwhelmed and exhausted", "stress")] * 6
        result = build_result(history)
        self.assertEqual(result.method, "heuristic")
        self.assertEqual(len(result.insights), 3)
        self.assertIn("elevated stress", result.risk_factors)
        self.assertEqual(result.activities[0]["name"], "Deep Breathing Exercise")
        self.assertEqual(set(result.category_scores), {
            "academic_pressure", "family_relationships", "peer_social",
            "future_uncertainty", "sleep_worries", "modern_coping",
        })

    def test_result_uses_ai_insights(self):
        client = StubClient(
            scores={"stress": 20, "anxiety": 20, "sleep": 80},
            insights={
                "insights": ["You described steady routines."],
                "strengths": ["Supportive friends"],
                "recommendations": ["Keep your sleep schedule"],
                "encouragement": "Keep going!",
            },
        )
        result = build_result([answer("supportive friends and a calm routine")] * 5, client)
        self.assertEqual(result.method, "blended")
        self.assertEqual(result.insights, ["You described steady routines."])
        self.assertEqual(result.encouragement, "Keep going!")
        self.assertIn("social support", result.protective_factors)
        self.assertEqual(result.to_dict()["stress_level"], result.stress_level)

    def test_malformed_insights_fall_back(self):
        client = StubClient(scores={"stress": 20, "anxiety": 20, "sleep": 80}, insights={"insights": "nope"})
        result = build_result([answer("good")] * 5, client)
        self.assertEqual(result.method, "blended")
        self.assertEqual(len(result.insights), 3)


if __name__ == "__main__":
    unittest.main()
