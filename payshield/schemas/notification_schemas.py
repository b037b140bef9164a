from pydantic import BaseModel
from typing import Any, Dict, List, Optional


class PushTicket(BaseModel):
    to: str
    status: str  # always "ok"
    id: Optional[str] = None


class PushFailure(BaseModel):
    to: Optional[str] = None
    status: str  # always "error"
    message: str
    details: Optional[Dict[str, Any]] = None


class NotificationResponse(BaseModel):
    requestId: str
    success: bool
    priority: Optional[str] = None  # "high" | "default"; null when rejected before dispatch
    tickets: List[PushTicket] = []
    failures: List[PushFailure] = []
    error: Optional[str] = None  # only set when the request failed before dispatch
