"""Ready-made senders for ``LegacyOutbox.flush``."""
import json
import logging
import sys
from typing import Any, Dict, Optional, TextIO

from outbox_relay.adapters.webhook.dispatcher import HttpWebhookDispatcher, WebhookDispatcher
from outbox_relay.utils.logging import null_logger

DEFAULT_USER_AGENT = "outbox-relay-legacy-sender/1.0"


def _decode(raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


class StdoutSender:
    """Writes each row as one JSON line. Useful for local runs and debugging."""

    def __init__(self, decode_payload: bool = True, stream: Optional[TextIO] = None):
        self.decode_payload = decode_payload
        self.stream = stream

    def send(self, row: Dict[str, Any]) -> bool:
        out = dict(row)
        if self.decode_payload:
            out["payload"] = _decode(out.get("payload"))
            out["headers"] = _decode(out.get("headers"))
        stream = self.stream or sys.stdout
        stream.write(json.dumps(out, ensure_ascii=False, default=str) + "\n")
        stream.flush()
        return True


class WebhookSender:
    """Posts the row payload to the ``webhook_url`` carried in its headers.

    Rows without a ``webhook_url`` header count as delivered.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        dispatcher: Optional[WebhookDispatcher] = None,
        timeout_seconds: int = 5,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.log = logger or null_logger()
        self.dispatcher = dispatcher or HttpWebhookDispatcher(timeout_seconds, user_agent=user_agent, logger=logger)

    def send(self, row: Dict[str, Any]) -> bool:
        headers = _decode(row.get("headers"))
        headers = headers if isinstance(headers, dict) else {}

        url = headers.get("webhook_url")
        if not isinstance(url, str) or not url.strip():
            return True

        payload = _decode(row.get("payload"))
        request: Dict[str, Any] = {
            "webhook_url": url.strip(),
            "payload": payload if isinstance(payload, dict) else {"value": payload},
        }
        extra_headers = headers.get("webhook_headers")
        if isinstance(extra_headers, (dict, list)):
            request["headers"] = extra_headers

        event_type = str(row.get("topic") or "").strip() or "event"
        result = self.dispatcher.dispatch(event_type, request, {"id": row.get("id"), "attempts": row.get("attempts")})
        if not result.ok:
            self.log.warning(
                "outbox-webhook-sender-failed",
                extra={"id": row.get("id"), "topic": event_type, "error": result.error, "status": result.http_status},
            )
        return result.ok
