"""HTTP delivery for webhook outbox rows."""
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import httpx

from outbox_relay.domain.models.events import WebhookDispatchResult
from outbox_relay.utils.logging import null_logger

DEFAULT_USER_AGENT = "outbox-relay-webhook/1.0"

URL_KEYS = ("url", "webhook_url", "endpoint")
TRANSPORT_KEYS = URL_KEYS + ("headers", "method")


class WebhookDispatcher(Protocol):
    def dispatch(
        self, event_type: str, payload: Dict[str, Any], meta: Optional[Dict[str, Any]] = None
    ) -> WebhookDispatchResult:
        ...


def read_url(payload: Mapping[str, Any]) -> Optional[str]:
    url = None
    for key in URL_KEYS:
        if payload.get(key) is not None:
            url = payload[key]
            break
    if not isinstance(url, str):
        return None
    url = url.strip()
    return url or None


def resolve_body(payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Prefer ``body``, then ``payload``; otherwise send the row minus its transport keys."""
    body = payload.get("body")
    if isinstance(body, dict):
        return dict(body)

    inner = payload.get("payload")
    if isinstance(inner, dict):
        return dict(inner)

    return {k: v for k, v in payload.items() if k not in TRANSPORT_KEYS}


def normalize_headers(headers: Any) -> List[str]:
    """Accept ``["Name: value", ...]`` or ``{"Name": "value"}`` and return trimmed ``Name: value`` lines."""
    out: List[str] = []
    if isinstance(headers, (list, tuple)):
        for h in headers:
            if isinstance(h, str) and h.strip():
                out.append(h.strip())
        return out

    if not isinstance(headers, Mapping):
        return out

    for key, value in headers.items():
        name = str(key).strip()
        if not name or value is None or isinstance(value, (list, tuple, dict)):
            continue
        value = str(value).strip()
        if not value:
            continue
        out.append(f"{name}: {value}")
    return out


def _split_header_lines(lines: List[str]) -> List[Tuple[str, str]]:
    pairs = []
    for line in lines:
        name, sep, value = line.partition(":")
        if sep and name.strip():
            pairs.append((name.strip(), value.strip()))
    return pairs


class HttpWebhookDispatcher:
    """Posts the resolved JSON body to the row's URL with httpx."""

    def __init__(
        self,
        timeout_seconds: int = 5,
        user_agent: str = DEFAULT_USER_AGENT,
        client: Optional[httpx.Client] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.timeout_seconds = max(1, timeout_seconds)
        self.user_agent = user_agent
        self._client = client
        self.log = logger or null_logger()

    @property
    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout_seconds, connect=max(1, min(3, self.timeout_seconds)))

    def dispatch(
        self, event_type: str, payload: Dict[str, Any], meta: Optional[Dict[str, Any]] = None
    ) -> WebhookDispatchResult:
        url = read_url(payload)
        if url is None:
            return WebhookDispatchResult.failed("missing_webhook_url")

        method = str(payload.get("method") or "POST").strip().upper() or "POST"
        headers = payload.get("headers")
        headers = headers if isinstance(headers, (list, tuple, Mapping)) else []

        body = resolve_body(payload)
        body.setdefault("event_type", event_type)

        try:
            content = json.dumps(body, ensure_ascii=False, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError):
            return WebhookDispatchResult.failed("json_encode_failed")

        lines = normalize_headers(headers)
        lines.append("Content-Type: application/json")
        lines.append(f"User-Agent: {self.user_agent}")

        try:
            response = self._send(method, url, content.encode("utf-8"), _split_header_lines(lines))
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            self.log.debug("messaging.webhook.transport_error", extra={"url": url, "error": str(exc), **(meta or {})})
            return WebhookDispatchResult.failed(str(exc) or exc.__class__.__name__)
        except (UnicodeError, ValueError) as exc:
            # httpx rejects headers it cannot encode while building the request
            self.log.debug("messaging.webhook.invalid_request", extra={"url": url, "error": str(exc), **(meta or {})})
            return WebhookDispatchResult.failed("invalid_request")

        code = response.status_code
        if 200 <= code < 300:
            return WebhookDispatchResult.success(code)
        return WebhookDispatchResult.failed(f"http_{code}", code)

    def _send(self, method: str, url: str, content: bytes, headers: List[Tuple[str, str]]) -> httpx.Response:
        if self._client is not None:
            return self._client.request(method, url, content=content, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.request(method, url, content=content, headers=headers)
