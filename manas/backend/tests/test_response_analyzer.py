import unittest

from manas.backend.app.question_bank import Question, initial_question
from manas.backend.app.response_analyzer import (
    Response,
    analyze_response,
    analyze_response_patterns,
    concern_level,
)


def answer(text, category="general", value=None):
    question = Question(text=f"Question about {category}?", category=category)
    return Response(question=question, answer=text, value=value)


class ResponseModelTests(unittest.TestCase):
    def test_confidence_bounds(self):
        with self.assertRaises(ValueError):
            Response(question=initial_question(0), answer="fine", confidence=1.5)

    def test_value_must_index_option(self):
        with self.assertRaises(ValueError):
            Response(question=initial_question(0), answer="x", value=4)

    def test_free_text_includes_note(self):
        response = Response(question=initial_question(0), answer="Okay", note="exams next week")
        self.assertEqual(response.free_text, "Okay exams next week")


class PatternTests(unittest.TestCase):
    def test_very_positive_with_coverage(self):
        history = [
            answer("Excellent, feeling great", "general"),
            answer("Calm and relaxed", "stress"),
            answer("Sleeping well", "sleep"),
        ]
        patterns = analyze_response_patterns(history)
        self.assertTrue(patterns.is_very_positive)
        self.assertTrue(patterns.has_good_coverage)
        self.assertFalse(patterns.has_concerning_patterns)

    def test_concerning_by_count(self):
        history = [answer("overwhelmed")] * 3 + [answer("good")] * 7
        patterns = analyze_response_patterns(history)
        self.assertEqual(patterns.concerning_count, 3)
        self.assertTrue(patterns.has_concerning_patterns)

    def test_unclear_ratio(self):
        history = [answer("not sure"), answer("maybe"), answer("good")]
        self.assertTrue(analyze_response_patterns(history).needs_more_clarity)

    def test_empty_history(self):
        patterns = analyze_response_patterns([])
        self.assertFalse(patterns.is_very_positive)
        self.assertFalse(patterns.has_concerning_patterns)
        self.assertFalse(patterns.has_good_coverage)


class ConcernLevelTests(unittest.TestCase):
    def test_option_index_scales_concern(self):
        question = initial_question(1)
        self.assertEqual(concern_level(Response(question=question, answer="x", value=0)), 0.0)
        self.assertEqual(concern_level(Response(question=question, answer="x", value=3)), 1.0)

    def test_keyword_concern_without_value(self):
        self.assertEqual(concern_level(answer("I feel exhausted")), 0.8)
        self.assertEqual(concern_level(answer("Pretty good")), 0.2)
        self.assertEqual(concern_level(answer("Nothing to add")), 0.5)

    def test_analysis_flags_adaptation(self):
        result = analyze_response(answer("I feel hopeless"))
        self.assertEqual(result["emotional_state"], "elevated_concern")
        self.assertTrue(result["adaptation_needed"])


if __name__ == "__main__":
    unittest.main()
