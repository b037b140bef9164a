"""Tests for blending heuristic and model assessments."""

from payshield.pipelines.fusion_engine import blend_assessments
from payshield.services.llm_client import ReasoningAnalysis
from payshield.services.risk_service import RiskAssessment


def make_heuristic(score, flags=None):
    return RiskAssessment(
        risk_score=score,
        fraud_probability=score / 100,
        risk_level="low",
        flags=flags or [],
    )


def make_analysis(**overrides):
    fields = dict(
        summary="Looks suspicious",
        risk_level=None,
        risk_score=None,
        fraud_probability=None,
        risk_factors=[],
    )
    fields.update(overrides)
    return ReasoningAnalysis(**fields)


class TestBlendAssessments:
    """Tests for the 0.6 model / 0.4 heuristic blend."""

    def test_without_model_heuristic_stands(self):
        blended = blend_assessments(make_heuristic(77, ["keyword:urgent"]), None)
        assert blended.risk_score == 77
        assert blended.fraud_probability == 0.77
        assert blended.risk_level == "medium"
        assert blended.flags == ["keyword:urgent"]

    def test_model_100_heuristic_0(self):
        blended = blend_assessments(make_heuristic(0), make_analysis(risk_score=100))
        assert blended.risk_score == 60
        assert blended.fraud_probability == 0.6
        assert blended.risk_level == "medium"

    def test_weighted_blend_rounds_to_nearest(self):
        # 0.6 * 85 + 0.4 * 44 = 68.6 -> 69; 0.6 * 75 + 0.4 * 50 = 65
        assert blend_assessments(make_heuristic(44), make_analysis(risk_score=85)).risk_score == 69
        assert blend_assessments(make_heuristic(50), make_analysis(risk_score=75)).risk_score == 65

    def test_probability_only_model(self):
        blended = blend_assessments(make_heuristic(30), make_analysis(fraud_probability=0.92))
        assert blended.risk_score == 92
        assert blended.fraud_probability == 0.92
        assert blended.risk_level == "critical"

    def test_model_without_numbers_keeps_heuristic_score(self):
        blended = blend_assessments(make_heuristic(64), make_analysis())
        assert blended.risk_score == 64
        assert blended.fraud_probability == 0.64

    def test_model_level_wins_when_present(self):
        blended = blend_assessments(make_heuristic(20), make_analysis(risk_score=30, risk_level="high"))
        assert blended.risk_score == 26
        assert blended.risk_level == "high"

    def test_factors_become_prefixed_flags(self):
        blended = blend_assessments(
            make_heuristic(50, ["missing_reference_id"]),
            make_analysis(risk_score=80, risk_factors=["Urgency language", " ", "Urgency language"]),
        )
        assert blended.flags == ["missing_reference_id", "llm:Urgency language"]
