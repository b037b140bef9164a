"""Tests for the HTTP surface."""

import json

import httpx
import pytest

from payshield.api.security import get_current_user
from payshield.api.server import app, get_notification_dispatcher, get_scan_pipeline, main
from payshield.errors import RetrievalError
from payshield.pipelines.scan_pipeline import ScanPipeline
from payshield.services.notification_service import NotificationDispatcher
from payshield.services.llm_client import ReasoningAnalysis
from payshield.tests.fakes import EXPO_TOKEN, NO_WAIT, FakeOCR, FakeReasoning, FakeStorage

SCAM_TEXT = "Pay to merchant@upi Rs. 75000 urgent"


def use_pipeline(alert_service, storage=None, analysis=None):
    pipeline = ScanPipeline(
        storage=storage or FakeStorage(),
        ocr=FakeOCR(SCAM_TEXT),
        reasoning=FakeReasoning(analysis),
        alerts=alert_service,
    )
    app.dependency_overrides[get_scan_pipeline] = lambda: pipeline
    return pipeline


def use_dispatcher(handler):
    dispatcher = NotificationDispatcher(
        push_url="https://push.test/send",
        access_token="",
        retry_policy=NO_WAIT,
        transport=httpx.MockTransport(handler),
    )
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher
    return dispatcher


def ok_tickets(request):
    batch = json.loads(request.content)
    return httpx.Response(200, json={"data": [{"status": "ok", "id": f"t-{index}"} for index, _ in enumerate(batch)]})


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_status(self, client):
        body = client.get("/status").json()
        assert body["status"] == "ok"
        assert body["alert_threshold"] == 70

    def test_metrics(self, client):
        client.get("/health")
        assert "counters" in client.get("/metrics").json()

    def test_request_id_header(self, client):
        response = client.get("/health")
        assert response.headers["X-Request-ID"]
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestAnalyzeUpi:
    """Tests for POST /analyze-upi."""

    def test_full_response(self, client, alert_service):
        use_pipeline(alert_service)

        response = client.post("/analyze-upi", json={"storagePath": "user-1/shot.png", "hints": ["en"]})

        assert response.status_code == 200
        body = response.json()
        assert body["request_id"] == response.headers["X-Request-ID"]
        assert body["user_id"] == "user-1"
        assert body["status"] == "complete"
        assert body["risk_score"] == 77
        assert body["fraud_probability"] == 0.77
        assert body["risk_level"] == "medium"
        assert body["upi_details"]["upi_id"] == "merchant@upi"
        assert body["ocr_text"] == SCAM_TEXT
        assert body["claude_analysis"] is None
        assert "keyword:urgent" in body["flags"]
        assert body["profile_stats"]["total_scans"] == 1
        assert body["fraud_alert"]["severity"] == "medium"
        assert set(body["timings"]) == {"total_ms", "ocr_ms"}

    def test_completed_scan_short_circuits(self, client, alert_service):
        use_pipeline(alert_service)
        first = client.post("/analyze-upi", json={"storagePath": "user-1/shot.png"}).json()

        response = client.post("/analyze-upi", json={"storagePath": "user-1/shot.png", "scanId": first["scan_id"]})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Scan already completed"
        assert body["scan_id"] == first["scan_id"]

    def test_high_risk_scan_pushes_to_device(self, client, db, profile, alert_service):
        analysis = ReasoningAnalysis(summary="Prize scam", risk_level="critical", risk_score=98, fraud_probability=0.97)
        use_pipeline(alert_service, analysis=analysis)
        pushed = []

        def handler(request):
            pushed.extend(json.loads(request.content))
            return ok_tickets(request)

        use_dispatcher(handler)

        response = client.post("/analyze-upi", json={"storagePath": "user-1/shot.png"})

        assert response.status_code == 200
        assert response.json()["fraud_alert"]["severity"] == "critical"
        assert response.json()["claude_analysis"]["summary"] == "Prize scam"
        assert len(pushed) == 1
        assert pushed[0]["to"] == EXPO_TOKEN
        assert pushed[0]["title"] == "Critical fraud alert"
        assert pushed[0]["priority"] == "high"

    def test_missing_storage_path(self, client, alert_service):
        use_pipeline(alert_service)
        response = client.post("/analyze-upi", json={"bucket": "scans"})
        assert response.status_code == 400
        assert response.json()["error"] == "storagePath is required"
        assert response.json()["details"] == {"field": "storagePath"}

    def test_invalid_json(self, client, alert_service):
        use_pipeline(alert_service)
        response = client.post(
            "/analyze-upi", content="{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON payload"

    def test_unknown_scan_is_404(self, client, alert_service):
        use_pipeline(alert_service)
        response = client.post("/analyze-upi", json={"storagePath": "p.png", "scanId": "nope"})
        assert response.status_code == 404
        assert response.json()["error"] == "Scan not found"

    def test_pipeline_failure_is_500(self, client, alert_service):
        use_pipeline(alert_service, storage=FakeStorage(error=RetrievalError("Failed to download image: 404")))

        response = client.post("/analyze-upi", json={"storagePath": "p.png"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "Analyze request failed"
        assert body["message"] == "Failed to download image: 404"
        assert body["request_id"]

    def test_requires_authorization(self, client):
        app.dependency_overrides.pop(get_current_user)
        response = client.post("/analyze-upi", json={"storagePath": "p.png"})
        assert response.status_code == 401
        assert response.json()["error"] == "Missing Authorization header"

    def test_body_is_validated_before_authorization(self, client):
        app.dependency_overrides.pop(get_current_user)
        response = client.post("/analyze-upi", json={"bucket": "scans"})
        assert response.status_code == 400
        assert response.json()["error"] == "storagePath is required"


class TestSendNotification:
    """Tests for POST /send-notification."""

    def test_delivered(self, client):
        use_dispatcher(ok_tickets)
        response = client.post(
            "/send-notification",
            json={"deviceToken": EXPO_TOKEN, "title": "Hi", "body": "There", "data": {"severity": "critical"}},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["priority"] == "high"
        assert body["tickets"] == [{"to": EXPO_TOKEN, "status": "ok", "id": "t-0"}]
        assert body["failures"] == []
        assert "error" not in body

    def test_partial_delivery_is_207(self, client):
        def handler(request):
            return httpx.Response(200, json={"data": [{"status": "ok", "id": "t-0"}]})

        use_dispatcher(handler)
        response = client.post(
            "/send-notification",
            json={"deviceToken": [EXPO_TOKEN, "ExpoPushToken[second00]"], "title": "Hi", "body": "There"},
        )
        assert response.status_code == 207
        body = response.json()
        assert body["success"] is False
        assert body["priority"] == "default"
        assert body["failures"][0]["message"] == "Expo push ticket missing from response"

    def test_nothing_delivered_is_502(self, client):
        use_dispatcher(lambda request: httpx.Response(500, text="down"))
        response = client.post("/send-notification", json={"deviceToken": EXPO_TOKEN, "title": "Hi", "body": "There"})
        assert response.status_code == 502
        assert response.json()["success"] is False

    def test_wrong_content_type(self, client):
        response = client.post("/send-notification", content="hello", headers={"Content-Type": "text/plain"})
        assert response.status_code == 415
        body = response.json()
        assert body["success"] is False
        assert body["priority"] is None
        assert body["error"] == "Unsupported content type, expected application/json"

    def test_invalid_json(self, client):
        response = client.post(
            "/send-notification", content="{oops", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid JSON payload"

    @pytest.mark.parametrize(
        "payload, error",
        [
            ({"deviceToken": "bogus", "title": "t", "body": "b"}, "Invalid deviceToken: bogus is not a valid Expo push token"),
            ({"deviceToken": EXPO_TOKEN, "body": "b"}, "Invalid title: expected string"),
            ([1, 2], "Request body must be a JSON object"),
        ],
    )
    def test_validation_errors(self, client, payload, error):
        response = client.post("/send-notification", json=payload)
        assert response.status_code == 400
        assert response.json()["error"] == error
        assert response.json()["requestId"] == response.headers["X-Request-ID"]


class TestEntryPoint:

    def test_main_serves_app_with_uvicorn(self, monkeypatch):
        calls = []
        monkeypatch.setattr("payshield.api.server.uvicorn.run", lambda target, **kwargs: calls.append((target, kwargs)))

        main()

        target, kwargs = calls[0]
        assert target == "payshield.api.server:app"
        assert kwargs["port"] == 8000
        assert kwargs["log_config"] is None
