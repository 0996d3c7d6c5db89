"""EventSub webhook HTTP handler.

The handler:
1. Reads raw body (needed for HMAC verification)
2. Verifies the Twitch signature
3. Answers the verification challenge
4. Applies the replay and duplicate guard
5. Returns 200 immediately; state changes run as a background task

Security contract:
- Never return error details to the webhook caller
- 403 (empty body) only for signature failures
- Duplicates, stale and unrecognized events still get 200 so Twitch stops
  redelivering
- Log all webhook activity for audit trail
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from fastapi import APIRouter, BackgroundTasks, Request, Response
from fastapi.responses import PlainTextResponse

from chatsage.errors import ErrorKind
from chatsage.observability import bind_log_context
from chatsage.webhooks.notifications import parse_notification
from chatsage.webhooks.verification import (
    HEADER_MESSAGE_ID,
    HEADER_MESSAGE_TYPE,
    HEADER_TIMESTAMP,
    verify_signature,
)

if TYPE_CHECKING:
    from chatsage.runtime import Runtime

logger = logging.getLogger(__name__)

router = APIRouter(tags=["twitch"])

MESSAGE_TYPE_VERIFICATION = "webhook_callback_verification"
MESSAGE_TYPE_NOTIFICATION = "notification"
MESSAGE_TYPE_REVOCATION = "revocation"


def _log_webhook(message_type: str, event_type: str, message_id: str, status: str) -> None:
    """Audit log for webhook activity."""
    logger.info(
        "WEBHOOK_AUDIT provider=twitch type=%s event=%s id=%s status=%s",
        message_type or "unknown",
        event_type or "unknown",
        message_id or "unknown",
        status,
    )


@router.post("/twitch/event")
async def twitch_event(request: Request, background_tasks: BackgroundTasks) -> Response:
    """Receive Twitch EventSub webhooks (signature-verified)."""
    start = time.time()
    runtime = request.app.state.runtime
    settings = runtime.settings

    body = await request.body()
    headers = {k.lower(): v for k, v in request.headers.items()}
    message_id = headers.get(HEADER_MESSAGE_ID, "")
    message_type = headers.get(HEADER_MESSAGE_TYPE, "")

    # 1. Verify signature
    if not verify_signature(
        headers,
        body,
        settings.twitch_eventsub_secret,
        skip_verification=settings.eventsub_skip_signature_verification,
    ):
        _log_webhook(message_type, "", message_id, ErrorKind.SIGNATURE_INVALID.value)
        return Response(status_code=403)

    with bind_log_context(message_id=message_id or None):
        try:
            return _accept(runtime, headers, body, message_id, message_type, background_tasks)
        except Exception:
            logger.exception("Failed to process webhook %s", message_id)
            _log_webhook(message_type, "", message_id, "error")
            return Response(status_code=200)
        finally:
            logger.debug("Webhook handled in %.1fms", (time.time() - start) * 1000)


def _accept(
    runtime: Runtime,
    headers: dict[str, str],
    body: bytes,
    message_id: str,
    message_type: str,
    background_tasks: BackgroundTasks,
) -> Response:
    # 2. Parse JSON payload
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        _log_webhook(message_type, "", message_id, "invalid_json")
        return Response(status_code=200)
    if not isinstance(payload, dict):
        _log_webhook(message_type, "", message_id, "invalid_json")
        return Response(status_code=200)

    subscription = payload.get("subscription") if isinstance(payload.get("subscription"), dict) else {}
    event_type = str(subscription.get("type") or "")

    # 3. Verification challenge (no dedup; Twitch may repeat it)
    if message_type == MESSAGE_TYPE_VERIFICATION:
        _log_webhook(message_type, event_type, message_id, "challenge")
        return PlainTextResponse(str(payload.get("challenge") or ""), status_code=200)

    # 4. Replay / duplicate guard
    admission = runtime.window.should_process_event(message_id, headers.get(HEADER_TIMESTAMP))
    if not admission.admitted:
        _log_webhook(
            message_type, event_type, message_id, f"{ErrorKind.REPLAY_OR_DUPLICATE.value}:{admission.value}"
        )
        return Response(status_code=200)

    if message_type == MESSAGE_TYPE_REVOCATION:
        logger.warning(
            "EventSub subscription revoked: type=%s status=%s",
            event_type,
            subscription.get("status"),
        )
        _log_webhook(message_type, event_type, message_id, "revoked")
        return Response(status_code=200)

    if message_type != MESSAGE_TYPE_NOTIFICATION:
        _log_webhook(message_type, event_type, message_id, "skipped")
        return Response(status_code=200)

    # 5. Acknowledge now, apply after the response is sent
    notification = parse_notification(payload)
    background_tasks.add_task(runtime.dispatcher.dispatch, notification, message_id=message_id)
    _log_webhook(message_type, event_type, message_id, "dispatched")
    return Response(status_code=200)
