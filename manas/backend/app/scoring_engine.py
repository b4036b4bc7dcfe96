from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Sequence

from .gemini_client import GeminiClient, GeminiError
from .question_bank import format_history
from .response_analyzer import Response, analyze_response_patterns, contains_any

logger = logging.getLogger(__name__)

AI_WEIGHT = 0.7

WEIGHTS = {
    "stress": {"high": 25, "medium": 15, "low": 5},
    "anxiety": {"high": 25, "medium": 15, "low": 5},
    "sleep": {"high": 20, "medium": 10, "low": 5},
}

CRISIS_LANGUAGE = ["crisis", "hopeless", "suicidal"]
FLOURISHING_LANGUAGE = ["excellent", "thriving", "flourishing"]


@dataclass
class AssessmentScores:
    stress: int
    anxiety: int
    sleep: int

    def __post_init__(self) -> None:
        self.stress = clamp(self.stress)
        self.anxiety = clamp(self.anxiety)
        self.sleep = clamp(self.sleep)


@dataclass
class AssessmentResult:
    stress: int
    anxiety: int
    sleep: int
    overall_score: int
    stress_level: str
    method: str
    category_scores: Dict[str, int] = field(default_factory=dict)
    risk_factors: List[str] = field(default_factory=list)
    protective_factors: List[str] = field(default_factory=list)
    insights: List[str] = field(default_factory=list)
    strengths: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    encouragement: str = ""
    activities: List[dict] = field(default_factory=list)
    games: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def clamp(value: float, low: int = 0, high: int = 100) -> int:
    # half-up, not banker's rounding
    return int(max(low, min(high, math.floor(value + 0.5))))


def accuracy_multiplier(answer_count: int) -> float:
    return min(1.2, 0.8 + answer_count * 0.02)


def calculate_dynamic_scores(history: Sequence[Response]) -> AssessmentScores:
    stress = 30.0
    anxiety = 30.0
    sleep = 50.0

    patterns = analyze_response_patterns(history)
    if patterns.has_concerning_patterns:
        stress += 20
        anxiety += 20
        sleep -= 15
    elif patterns.is_very_positive:
        stress -= 10
        anxiety -= 10
        sleep += 15

    for response in history:
        answer = response.answer.lower()
        category = response.question.category

        if category == "stress" or "stress" in answer or "pressure" in answer:
            if contains_any(answer, ["overwhelmed", "extreme", "unmanageable"]):
                stress += WEIGHTS["stress"]["high"]
            elif contains_any(answer, ["moderate", "some", "manageable"]):
                stress += WEIGHTS["stress"]["medium"]
            elif contains_any(answer, ["low", "minimal", "calm"]):
                stress += WEIGHTS["stress"]["low"]

        if category == "anxiety" or "anxious" in answer or "worry" in answer:
            if contains_any(answer, ["panic", "constant", "debilitating"]):
                anxiety += WEIGHTS["anxiety"]["high"]
            elif contains_any(answer, ["sometimes", "occasional", "manageable"]):
                anxiety += WEIGHTS["anxiety"]["medium"]
            elif contains_any(answer, ["rarely", "confident", "calm"]):
                anxiety += WEIGHTS["anxiety"]["low"]

        if category == "sleep" or "sleep" in answer or "rest" in answer:
            if contains_any(answer, ["excellent", "great", "well-rested"]):
                sleep += WEIGHTS["sleep"]["high"]
            elif contains_any(answer, ["good", "decent", "okay"]):
                sleep += WEIGHTS["sleep"]["medium"]
            elif contains_any(answer, ["poor", "insomnia", "tired"]):
                sleep += WEIGHTS["sleep"]["low"]

        if contains_any(answer, CRISIS_LANGUAGE):
            stress += 30
            anxiety += 30
            sleep -= 20
        if contains_any(answer, FLOURISHING_LANGUAGE):
            stress -= 15
            anxiety -= 15
            sleep += 20

    multiplier = accuracy_multiplier(len(history))
    return AssessmentScores(
        stress=clamp(stress * multiplier),
        anxiety=clamp(anxiety * multiplier),
        sleep=clamp(sleep * multiplier),
    )


def build_scoring_prompt(history: Sequence[Response], dynamic: AssessmentScores) -> str:
    return f"""Analyze these mental health assessment responses and provide numerical scores (0-100) for stress, anxiety, and sleep quality.

User responses ({len(history)} questions):
{format_history(history)}

Current calculated scores:
- Stress: {dynamic.stress}/100
- Anxiety: {dynamic.anxiety}/100
- Sleep: {dynamic.sleep}/100

Consider response patterns and consistency, severity of concerns, coping strategies, support systems and physical symptoms.
For sleep: higher score = better sleep quality.
For stress/anxiety: higher score = more stress/anxiety.

Respond with ONLY a JSON object: {{"stress": number, "anxiety": number, "sleep": number}}"""


def parse_ai_scores(payload: dict) -> AssessmentScores:
    values = {}
    for key in ("stress", "anxiety", "sleep"):
        value = payload.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"AI score '{key}' is missing or not a number")
        values[key] = value
    return AssessmentScores(**values)


def blend_scores(ai: AssessmentScores, dynamic: AssessmentScores, ai_weight: float = AI_WEIGHT) -> AssessmentScores:
    heuristic_weight = 1 - ai_weight
    return AssessmentScores(
        stress=clamp(ai.stress * ai_weight + dynamic.stress * heuristic_weight),
        anxiety=clamp(ai.anxiety * ai_weight + dynamic.anxiety * heuristic_weight),
        sleep=clamp(ai.sleep * ai_weight + dynamic.sleep * heuristic_weight),
    )


def calculate_scores(
    history: Sequence[Response],
    client: Optional[GeminiClient] = None,
    ai_weight: float = AI_WEIGHT,
) -> tuple[AssessmentScores, str]:
    dynamic = calculate_dynamic_scores(history)
    if client is None or not history:
        return dynamic, "heuristic"
    try:
        ai_scores = parse_ai_scores(client.generate_json(build_scoring_prompt(history, dynamic)))
    except (GeminiError, ValueError) as exc:
        logger.warning("AI scoring unavailable, using heuristic scores: %s", exc)
        return dynamic, "heuristic"
    return blend_scores(ai_scores, dynamic, ai_weight), "blended"


def stress_level(score: int) -> str:
    if score <= 30:
        return "Low"
    if score <= 60:
        return "Moderate"
    return "High"


def sleep_level(score: int) -> str:
    if score >= 70:
        return "Excellent"
    if score >= 50:
        return "Good"
    if score >= 30:
        return "Fair"
    return "Needs Attention"


def overall_score(scores: AssessmentScores) -> int:
    return clamp((scores.stress + scores.anxiety + (100 - scores.sleep)) / 3)


def derive_category_scores(scores: AssessmentScores) -> Dict[str, int]:
    return {
        "academic_pressure": clamp(scores.stress * 0.8),
        "family_relationships": clamp(scores.anxiety * 0.6),
        "peer_social": clamp(scores.anxiety * 0.7),
        "future_uncertainty": clamp(scores.stress * 0.9),
        "sleep_worries": clamp((100 - scores.sleep) * 0.8),
        "modern_coping": clamp((100 - scores.stress) * 0.5),
    }


def identify_risk_factors(scores: AssessmentScores, history: Sequence[Response]) -> List[str]:
    factors = []
    if scores.stress > 60:
        factors.append("elevated stress")
    if scores.anxiety > 60:
        factors.append("elevated anxiety")
    if scores.sleep < 40:
        factors.append("poor sleep quality")
    patterns = analyze_response_patterns(history)
    if patterns.has_concerning_patterns:
        factors.append("persistent concerning responses")
    if any(contains_any(r.answer, ["avoid", "procrastinate"]) for r in history):
        factors.append("avoidance under stress")
    return factors


def identify_protective_factors(history: Sequence[Response]) -> List[str]:
    factors = []
    answers = " ".join(r.answer.lower() for r in history)
    if contains_any(answers, ["supportive", "relationships", "friends", "connected"]):
        factors.append("social support")
    if contains_any(answers, ["routine", "systematically", "steps"]):
        factors.append("structured coping routine")
    if contains_any(answers, ["calm", "relax", "meditat", "mindful"]):
        factors.append("mindfulness and relaxation")
    if contains_any(answers, ["purpose", "goals", "motivated", "creative"]):
        factors.append("sense of purpose and creativity")
    return factors


def suggest_activities(risk_factors: Sequence[str]) -> List[dict]:
    activities = []
    if any("stress" in factor for factor in risk_factors):
        activities.append({"name": "Deep Breathing Exercise", "duration": "10 min"})
    if any("anxiety" in factor for factor in risk_factors):
        activities.append({"name": "Progressive Muscle Relaxation", "duration": "15 min"})
    if any("sleep" in factor for factor in risk_factors):
        activities.append({"name": "Sleep Hygiene Routine", "duration": "20 min"})
    if not activities:
        activities = [
            {"name": "Mindful Walking", "duration": "10 min"},
            {"name": "Gratitude Journaling", "duration": "5 min"},
            {"name": "Meditation", "duration": "10 min"},
        ]
    return activities[:3]


def suggest_games(protective_factors: Sequence[str]) -> List[dict]:
    games = []
    if any("mindfulness" in factor for factor in protective_factors):
        games.append({"name": "Mindful Breathing Game", "duration": "5 min"})
    if any("creativity" in factor for factor in protective_factors):
        games.append({"name": "Creative Expression Activity", "duration": "15 min"})
    if any("social" in factor for factor in protective_factors):
        games.append({"name": "Social Connection Challenge", "duration": "20 min"})
    if not games:
        games = [
            {"name": "Positive Affirmation Cards", "duration": "10 min"},
            {"name": "Relaxation Music Therapy", "duration": "15 min"},
            {"name": "Mindfulness Bingo", "duration": "10 min"},
        ]
    return games[:3]


def fallback_insights(scores: AssessmentScores) -> dict:
    if scores.stress > 60:
        stress_insight = "Your stress levels appear elevated. Consider stress-reduction techniques like deep breathing or meditation."
    elif scores.stress > 30:
        stress_insight = "Your stress levels are moderate. Regular relaxation practices could help maintain balance."
    else:
        stress_insight = "Your stress levels are well-managed. Keep up the good work!"

    if scores.anxiety > 60:
        anxiety_insight = "Your anxiety scores suggest you might benefit from relaxation practices and professional support."
    elif scores.anxiety > 30:
        anxiety_insight = "Your anxiety levels are moderate. Mindfulness techniques could be helpful."
    else:
        anxiety_insight = "Your anxiety levels appear to be in a healthy range."

    if scores.sleep < 50:
        sleep_insight = "Your sleep quality could be improved with better sleep hygiene and a consistent bedtime routine."
    elif scores.sleep < 70:
        sleep_insight = "Your sleep quality is decent but could be enhanced with some adjustments."
    else:
        sleep_insight = "You seem to be getting good rest. Maintain your healthy sleep habits!"

    return {
        "insights": [stress_insight, anxiety_insight, sleep_insight],
        "strengths": [
            "You're proactive about understanding your mental health",
            "You're willing to engage in self-reflection",
        ],
        "recommendations": [
            "Try guided meditation and deep breathing exercises",
            "Connect with peer support or counseling services",
            "Consider professional consultation if scores are concerning",
            "Maintain a consistent sleep schedule and bedtime routine",
        ],
        "encouragement": (
            "You've taken an important step by completing this assessment. Try one or two of the "
            "recommended actions this week; small, consistent changes add up."
        ),
    }


def build_insights_prompt(history: Sequence[Response], scores: AssessmentScores) -> str:
    return f"""Based on these assessment responses and scores, provide personalized insights for a college student.

User responses ({len(history)} questions answered):
{format_history(history)}

Calculated scores:
- Stress: {scores.stress}/100 ({stress_level(scores.stress)})
- Anxiety: {scores.anxiety}/100 ({stress_level(scores.anxiety)})
- Sleep: {scores.sleep}/100 ({sleep_level(scores.sleep)})

Respond with ONLY a JSON object:
{{
  "insights": ["3-5 insights grounded in their answers"],
  "recommendations": ["3-5 actionable recommendations"],
  "strengths": ["2-3 strengths"],
  "encouragement": "short supportive message with next steps"
}}"""


def _string_list(value) -> List[str]:
    if not isinstance(value, list):
        raise ValueError("expected a list of strings")
    items = [item.strip() for item in value if isinstance(item, str) and item.strip()]
    if not items:
        raise ValueError("expected at least one non-empty string")
    return items


def generate_insights(
    history: Sequence[Response],
    scores: AssessmentScores,
    client: Optional[GeminiClient] = None,
) -> dict:
    if client is None:
        return fallback_insights(scores)
    try:
        payload = client.generate_json(build_insights_prompt(history, scores))
        encouragement = payload.get("encouragement")
        return {
            "insights": _string_list(payload.get("insights")),
            "strengths": _string_list(payload.get("strengths")),
            "recommendations": _string_list(payload.get("recommendations")),
            "encouragement": encouragement if isinstance(encouragement, str) else "",
        }
    except (GeminiError, ValueError) as exc:
        logger.warning("AI insights unavailable, using canned insights: %s", exc)
        return fallback_insights(scores)


def build_result(
    history: Sequence[Response],
    client: Optional[GeminiClient] = None,
    ai_weight: float = AI_WEIGHT,
) -> AssessmentResult:
    scores, method = calculate_scores(history, client, ai_weight)
    risk_factors = identify_risk_factors(scores, history)
    protective_factors = identify_protective_factors(history)
    narrative = generate_insights(history, scores, client)
    return AssessmentResult(
        stress=scores.stress,
        anxiety=scores.anxiety,
        sleep=scores.sleep,
        overall_score=overall_score(scores),
        stress_level=stress_level(scores.stress),
        method=method,
        category_scores=derive_category_scores(scores),
        risk_factors=risk_factors,
        protective_factors=protective_factors,
        insights=narrative["insights"],
        strengths=narrative["strengths"],
        recommendations=narrative["recommendations"],
        encouragement=narrative["encouragement"],
        activities=suggest_activities(risk_factors),
        games=suggest_games(protective_factors),
    )
