from __future__ import annotations

import json
from typing import Optional


class ReportConsoleError(Exception):
    """Base class for failures surfaced by the report console."""


class ReportKindError(ReportConsoleError):
    pass


class NetworkFailure(ReportConsoleError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class DecodeFailure(ReportConsoleError):
    pass


class SchedulePersistFailure(ReportConsoleError):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RoutePlanningError(ReportConsoleError):
    pass


def error_message_from_body(body: Optional[str]) -> str:
    """Prefer the ``message`` field of a JSON error body, else the raw text."""
    text = body or ""
    try:
        payload = json.loads(text)
    except ValueError:
        return text
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message:
            return message
    return text
