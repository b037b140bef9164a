from typing import List, Optional

from payshield.services.llm_client import ReasoningAnalysis
from payshield.services.risk_service import RiskAssessment
from payshield.utils.risk_levels import clamp, derive_risk_level, round_half_up

MODEL_WEIGHT = 0.6
HEURISTIC_WEIGHT = 0.4


def blend_assessments(
    heuristic: RiskAssessment,
    analysis: Optional[ReasoningAnalysis],
) -> RiskAssessment:
    """
    Merge the heuristic assessment with the reasoning model's opinion.

    Without a model opinion the heuristic score stands. With one, the model
    score is weighted 0.6 against 0.4 for the heuristic score; a model that
    reported only a probability has its score derived from it.
    """
    if analysis is None:
        score = heuristic.risk_score
        return RiskAssessment(
            risk_score=score,
            fraud_probability=clamp(round(score / 100, 4), 0.0, 1.0),
            risk_level=derive_risk_level(score),
            flags=list(dict.fromkeys(heuristic.flags)),
        )

    if analysis.risk_score is not None:
        score = round_half_up(MODEL_WEIGHT * analysis.risk_score + HEURISTIC_WEIGHT * heuristic.risk_score)
    elif analysis.fraud_probability is not None:
        score = round_half_up(analysis.fraud_probability * 100)
    else:
        score = heuristic.risk_score
    score = int(clamp(score, 0, 100))

    if analysis.fraud_probability is not None:
        probability = clamp(round(analysis.fraud_probability, 4), 0.0, 1.0)
    else:
        probability = clamp(round(score / 100, 4), 0.0, 1.0)

    flags: List[str] = list(heuristic.flags)
    flags.extend(f"llm:{factor.strip()}" for factor in analysis.risk_factors if factor.strip())

    return RiskAssessment(
        risk_score=score,
        fraud_probability=probability,
        risk_level=analysis.risk_level or derive_risk_level(score),
        flags=list(dict.fromkeys(flags)),
    )
