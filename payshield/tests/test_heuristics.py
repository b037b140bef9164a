"""Tests for the rule-based risk scorer."""

from payshield.services.payment_extractor import PaymentDetails, parse_payment_details
from payshield.services.risk_service import heuristic_assessment, score_heuristics


class TestScoreHeuristics:
    """Tests for individual scoring rules."""

    def test_merchant_scenario_scores_77(self):
        text = "Pay to merchant@upi Rs. 75000 urgent"
        details = parse_payment_details(text)

        result = score_heuristics(details, text)

        # 30 base + 8 no reference + 25 amount + 6 keyword + 8 high-risk keyword
        assert result.score == 77
        assert result.flags == ["missing_reference_id", "amount_gt_50k", "keyword:urgent"]

    def test_merchant_scenario_level_follows_thresholds(self):
        text = "Pay to merchant@upi Rs. 75000 urgent"
        assessment = heuristic_assessment(parse_payment_details(text), text)
        assert assessment.risk_level == "medium"
        assert assessment.fraud_probability == 0.77

    def test_obvious_fraud_cues_escalate(self, sample_scam_text):
        details = parse_payment_details(sample_scam_text)
        assessment = heuristic_assessment(details, sample_scam_text)

        assert assessment.risk_score >= 70
        assert assessment.risk_level in ("high", "critical")
        assert "keyword:urgent" in assessment.flags

    def test_clean_receipt_stays_low(self, sample_receipt_text):
        details = parse_payment_details(sample_receipt_text)
        assessment = heuristic_assessment(details, sample_receipt_text)
        assert assessment.risk_score == 30
        assert assessment.risk_level == "low"
        assert assessment.flags == []

    def test_empty_details(self):
        result = score_heuristics(PaymentDetails(), "")
        # base + missing upi + missing reference + low confidence
        assert result.score == 68
        assert result.flags == ["missing_upi_id", "missing_reference_id", "low_confidence_extraction"]

    def test_elevated_amount(self):
        details = PaymentDetails(upi_id="a@upi", reference_id="REF123456", amount=25000.0, confidence=1.0)
        result = score_heuristics(details, "")
        assert result.score == 45
        assert result.flags == ["amount_gt_20k"]

    def test_score_is_clamped(self):
        text = "urgent otp pin blocked freeze warning scam kyc lottery prize jackpot"
        result = score_heuristics(PaymentDetails(), text)
        assert result.score == 100

    def test_lakh_formatted_amount_is_penalised(self):
        text = "You won a prize!\nAmount: ₹1,50,000\nUTR: 412345678901"
        details = parse_payment_details(text)
        assert details.amount == 150000.0
        assert "amount_gt_50k" in score_heuristics(details, text).flags
