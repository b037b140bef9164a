import json
import uuid
from typing import Any, Optional, Union

import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from payshield.api.security import AuthenticatedUser, get_current_user
from payshield.config import settings
from payshield.database import Base, engine, get_db
from payshield.errors import PayShieldError, ScanNotFoundError, ValidationError
from payshield.pipelines.scan_pipeline import ScanPipeline, ShortCircuitResult
from payshield.schemas.analyze_schemas import AlreadyCompletedResponse, AnalyzeResponse, ErrorResponse
from payshield.schemas.notification_schemas import NotificationResponse
from payshield.services.notification_service import (
    NotificationDispatcher,
    NotificationPayload,
    derive_priority,
    validate_notification_payload,
)
from payshield.utils.logging_config import StructuredLogger, init_logging, metrics, request_id_var
from payshield.utils.preprocessing import NormalizedRequest, coerce_request_body

# Initialize structured logging
init_logging()

logger = StructuredLogger(__name__)

Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="PayShield API",
    version="0.1.0",
    description="UPI payment screenshot fraud analysis and alerting API",
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Request id middleware; every log line and error body carries the id
@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    request_id_var.set(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


@app.exception_handler(PayShieldError)
async def payshield_error_handler(request: Request, exc: PayShieldError):
    content = {"error": exc.message, "request_id": _request_id(request)}
    if isinstance(exc, ValidationError) and exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


# ============== DEPENDENCIES ==============

scan_pipeline = ScanPipeline()
notification_dispatcher = NotificationDispatcher()


def get_scan_pipeline() -> ScanPipeline:
    return scan_pipeline


def get_notification_dispatcher() -> NotificationDispatcher:
    return notification_dispatcher


async def read_json_body(request: Request) -> Any:
    """Parsed request body; an empty body reads as ``{}``."""
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Invalid JSON payload")
        raise ValidationError("Invalid JSON payload")


async def read_analysis_request(request: Request) -> NormalizedRequest:
    """Declared ahead of the auth dependency so a bad body answers 400 first."""
    return coerce_request_body(await read_json_body(request))


async def deliver_notification(
    dispatcher: NotificationDispatcher,
    payload: NotificationPayload,
    request_id: Optional[str],
):
    """Background task for alert pushes. Failures are logged, never raised."""
    try:
        result = await dispatcher.dispatch(payload, request_id)
    except Exception as e:
        logger.warning("High risk notification threw during dispatch", request_id=request_id, error=str(e))
        return

    if result.success:
        logger.info("High risk notification dispatched", request_id=request_id, tickets=len(result.tickets))
    else:
        logger.warning(
            "Failed to dispatch high risk notification",
            request_id=request_id,
            failures=result.failures,
        )


# ============== HEALTH ==============


@app.get("/health")
def health():
    """Health check endpoint - no auth required."""
    return {"status": "ok"}


@app.get("/status")
def status_info():
    """
    API status and configuration info.
    Useful for debugging and monitoring.
    """
    return {
        "status": "ok",
        "version": "0.1.0",
        "environment": settings.environment,
        "ocr_configured": bool(settings.google_vision_api_key),
        "reasoning_enabled": settings.reasoning_enabled,
        "reasoning_model": settings.openai_model,
        "push_authenticated": bool(settings.expo_access_token),
        "alert_threshold": settings.alert_threshold,
    }


@app.get("/metrics")
async def get_metrics():
    """Get current application metrics."""
    return metrics.get_stats()


# ============== ANALYSIS ==============


@app.post(
    "/analyze-upi",
    response_model=Union[AnalyzeResponse, AlreadyCompletedResponse],
    responses={500: {"model": ErrorResponse}},
)
async def analyze_upi(
    request: Request,
    background_tasks: BackgroundTasks,
    normalized: NormalizedRequest = Depends(read_analysis_request),
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    pipeline: ScanPipeline = Depends(get_scan_pipeline),
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Analyze a stored payment screenshot.

    Body: ``storagePath`` (required), ``bucket``, ``scanId``, ``hints``,
    ``metadata``, ``forceRefresh``. High-severity alerts are pushed to the
    user's device after the response is sent.
    """
    request_id = _request_id(request)

    def schedule_notification(payload: NotificationPayload, alert_request_id: Optional[str]):
        background_tasks.add_task(deliver_notification, dispatcher, payload, alert_request_id)

    try:
        result = await pipeline.analyze(
            db,
            user_id=user.id,
            request=normalized,
            request_id=request_id,
            schedule_notification=schedule_notification,
        )
    except ScanNotFoundError:
        raise
    except Exception as e:
        logger.error("Analyze request failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Analyze request failed",
                request_id=request_id,
                message=str(e) or type(e).__name__,
            ).model_dump(),
        )

    if isinstance(result, ShortCircuitResult):
        return AlreadyCompletedResponse(**result.to_dict())
    return AnalyzeResponse(**result.to_dict())


# ============== NOTIFICATIONS ==============


def _notification_reply(status_code: int, response: NotificationResponse) -> JSONResponse:
    content = response.model_dump(exclude_none=True)
    content.setdefault("priority", None)
    return JSONResponse(status_code=status_code, content=content)


@app.post("/send-notification", response_model=NotificationResponse)
async def send_notification(
    request: Request,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Push a notification to one or more Expo device tokens.

    Returns 200 when every token was accepted, 207 on partial delivery and
    502 when nothing was delivered.
    """
    request_id = _request_id(request)

    def rejected(status_code: int, error: str) -> JSONResponse:
        return _notification_reply(
            status_code,
            NotificationResponse(requestId=request_id, success=False, error=error),
        )

    try:
        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type.lower():
            return rejected(
                status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                "Unsupported content type, expected application/json",
            )

        try:
            body = json.loads(await request.body())
        except ValueError as e:
            logger.error("Failed to parse JSON body", error=str(e))
            return rejected(status.HTTP_400_BAD_REQUEST, "Invalid JSON payload")

        try:
            payload = validate_notification_payload(body)
        except ValidationError as e:
            logger.warning("Payload validation failed", error=e.message)
            return rejected(e.status_code, e.message)

        result = await dispatcher.dispatch(payload, request_id)

        return _notification_reply(
            result.http_status,
            NotificationResponse(
                requestId=request_id,
                success=result.success,
                priority=derive_priority(payload.raw_priority, payload.data),
                tickets=result.tickets,
                failures=result.failures,
            ),
        )
    except Exception as e:
        logger.error("Unexpected error while processing notification", error=str(e), exc_info=True)
        return rejected(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def main():
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run(
        "payshield.api.server:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug and not settings.is_production,
        log_config=None,  # keep the handlers installed by init_logging
    )


if __name__ == "__main__":
    main()
