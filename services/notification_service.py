"""Notification channel adapters used by alert delivery."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx

from alerts.payloads import AlertContext, render_channel_payload
from core.env import env_float
from models.alert import CHANNEL_GOOGLE_CHAT, CHANNEL_SLACK, CHANNEL_WEBHOOK, AlertChannel

logger = logging.getLogger(__name__)

ALERT_WEBHOOK_TIMEOUT = env_float("ALERT_WEBHOOK_TIMEOUT", 10.0, minimum=0.5)
STATUS_DELIVERED = "delivered"
STATUS_FAILED = "failed"


@dataclass
class NotificationResult:
    status: str
    error: Optional[str] = None
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def delivered(self) -> bool:
        return self.status == STATUS_DELIVERED


def _build_client(timeout: float) -> httpx.Client:
    return httpx.Client(timeout=timeout)


def _post_payload(
    url: str,
    payload: Mapping[str, Any],
    *,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = ALERT_WEBHOOK_TIMEOUT,
    result_metadata: Optional[Dict[str, Any]] = None,
) -> NotificationResult:
    """POST once and classify: any 2xx is delivered, everything else failed."""
    try:
        with _build_client(timeout) as client:
            response = client.post(url, json=dict(payload), headers=headers)
    except httpx.TimeoutException as exc:
        logger.warning("Notification timed out after %.1fs: %s", timeout, exc)
        return NotificationResult(status=STATUS_FAILED, error=f"timeout: {exc}", metadata=result_metadata)
    except httpx.HTTPError as exc:
        logger.warning("Notification request error: %s", exc)
        return NotificationResult(status=STATUS_FAILED, error=str(exc) or exc.__class__.__name__, metadata=result_metadata)

    body = response.text
    if response.is_success:
        return NotificationResult(
            status=STATUS_DELIVERED,
            status_code=response.status_code,
            response_body=body,
            metadata=result_metadata,
        )
    logger.warning("Notification HTTP error %s: %s", response.status_code, body[:200])
    return NotificationResult(
        status=STATUS_FAILED,
        status_code=response.status_code,
        response_body=body,
        error=f"HTTP {response.status_code}",
        metadata=result_metadata,
    )


def _validated_url(channel: AlertChannel) -> Optional[str]:
    url = (channel.webhook_url or "").strip()
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        return None
    return url


def _handle_google_chat(channel: AlertChannel, context: AlertContext) -> NotificationResult:
    url = _validated_url(channel)
    if url is None:
        return NotificationResult(status=STATUS_FAILED, error="Google Chat webhook URL is invalid.")
    payload = render_channel_payload(CHANNEL_GOOGLE_CHAT, context)
    return _post_payload(url, payload, result_metadata={"channel": str(channel.id)})


def _handle_slack(channel: AlertChannel, context: AlertContext) -> NotificationResult:
    url = _validated_url(channel)
    if url is None:
        return NotificationResult(status=STATUS_FAILED, error="Slack webhook URL is invalid.")
    payload = render_channel_payload(CHANNEL_SLACK, context)
    return _post_payload(url, payload, result_metadata={"channel": str(channel.id)})


def _handle_webhook(channel: AlertChannel, context: AlertContext) -> NotificationResult:
    url = _validated_url(channel)
    if url is None:
        return NotificationResult(status=STATUS_FAILED, error="Unsupported webhook URL.")
    config = channel.config if isinstance(channel.config, dict) else {}
    headers = config.get("headers") if isinstance(config.get("headers"), dict) else None
    payload = render_channel_payload(CHANNEL_WEBHOOK, context)
    return _post_payload(
        url,
        payload,
        headers={str(key): str(value) for key, value in headers.items()} if headers else None,
        result_metadata={"channel": str(channel.id)},
    )


CHANNEL_REGISTRY: Dict[str, Callable[[AlertChannel, AlertContext], NotificationResult]] = {
    CHANNEL_GOOGLE_CHAT: _handle_google_chat,
    CHANNEL_SLACK: _handle_slack,
    CHANNEL_WEBHOOK: _handle_webhook,
}


def dispatch_alert(channel: AlertChannel, context: AlertContext) -> NotificationResult:
    """Render and send one alert to one channel."""
    kind = str(channel.kind or "").upper()
    handler = CHANNEL_REGISTRY.get(kind)
    if handler is None:
        logger.warning("Unsupported alert channel kind requested: %s", channel.kind)
        return NotificationResult(status=STATUS_FAILED, error=f"Unsupported channel kind {channel.kind}")
    return handler(channel, context)


__all__ = ["CHANNEL_REGISTRY", "NotificationResult", "dispatch_alert"]
