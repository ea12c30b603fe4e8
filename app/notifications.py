# app/notifications.py
# best-effort delivery; runs after the state change has been committed
from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Optional

import httpx

from app.workflow_logger import log_event
from case_engine.corrections import field_label

NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL")
NOTIFY_TIMEOUT_SECS = float(os.getenv("NOTIFY_TIMEOUT_SECS", "5"))

Sink = Callable[[Dict[str, Any]], None]


def webhook_sink(payload: Dict[str, Any]) -> None:
    if not NOTIFY_WEBHOOK_URL:
        return
    resp = httpx.post(NOTIFY_WEBHOOK_URL, json=payload, timeout=NOTIFY_TIMEOUT_SECS)
    resp.raise_for_status()


_sink: Sink = webhook_sink


def set_sink(sink: Optional[Sink]) -> None:
    global _sink
    _sink = sink or webhook_sink


def dispatch(
    *,
    case_id: str,
    event: str,
    title: str,
    message: str,
    recipient: Optional[str] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> bool:
    payload = {
        "caseId": case_id,
        "event": event,
        "recipient": recipient,
        "title": title,
        "message": message,
        "extra": extra or {},
    }
    try:
        _sink(payload)
    except Exception as ex:
        # never turns the committed transition into a failure
        log_event(
            case_id=case_id,
            status=None,
            actor="system",
            event="NotificationFailed",
            extra={"notification": event, "error": str(ex)},
        )
        return False
    return True


def correction_message(control_number: str, items: List[Dict[str, str]]) -> str:
    issues = "\n".join(f"• {field_label(i['field_key'])}: {i['message']}" for i in items)
    head = (
        f"Your Direct Hire application (Control Number: {control_number}) has been returned for correction."
        if control_number
        else "Your Direct Hire application has been returned for correction."
    )
    return (
        f"{head}\n\nIssues that need correction:\n{issues}\n\n"
        "Please review the noted issues and resubmit your application once corrected."
    )
