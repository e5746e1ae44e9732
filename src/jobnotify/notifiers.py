"""
Notification channels for job completion events.

This module provides:
- The ``Notifier`` protocol the coordinator depends on
- Human-readable summary rendering
- Slack, Discord, and generic JSON webhook channels
- Channel construction from validated settings

Channels make exactly one HTTP request per delivery. Retrying is the
caller's decision, and the coordinator deliberately never retries.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import requests

from jobnotify.classifier import NotificationEvent, Outcome
from jobnotify.config import Settings


SCHEMA_VERSION = "v1"
EVENT_JOB_SUCCEEDED = "job_succeeded"
EVENT_JOB_FAILED = "job_failed"
USER_AGENT = "kube-job-notify"

SUMMARY_RULE = "━" * 26


class DeliveryError(RuntimeError):
    """Raised when a channel could not confirm delivery."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class Notifier(Protocol):
    """Outbound notification channel."""

    def deliver(self, event: NotificationEvent, summary: str, timeout: float) -> None:
        """
        Deliver one notification.

        Args:
            event: The completion edge being reported.
            summary: Rendered human-readable summary.
            timeout: Seconds the outbound call may take.

        Raises:
            DeliveryError: On a non-success response, transport error, or timeout.
        """


# =============================================================================
# Rendering
# =============================================================================

def _format_time(value: datetime) -> str:
    """Render a timestamp as RFC 3339 in UTC, second precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def event_name(outcome: Outcome) -> str:
    return EVENT_JOB_SUCCEEDED if outcome is Outcome.SUCCEEDED else EVENT_JOB_FAILED


def render_summary(event: NotificationEvent) -> str:
    """Render the human-readable (Slack mrkdwn flavoured) summary of an event."""
    if event.outcome is Outcome.SUCCEEDED:
        emoji, title, status = ":tada:", "Job Completed Successfully", "Succeeded"
    else:
        emoji, title, status = ":x:", "Job Failed", "Failed"

    lines = [
        f"{emoji} *{title}*",
        SUMMARY_RULE,
        f"• *Name:* {event.identity.name}",
        f"• *Namespace:* {event.identity.namespace}",
        f"• *Status:* {status}",
        f"• *Time:* {_format_time(event.observed_at)}",
    ]
    return "\n".join(lines)


def _fallback_text(event: NotificationEvent) -> str:
    """One-line plain text used where rich formatting is not shown."""
    if event.outcome is Outcome.SUCCEEDED:
        return f"Job {event.identity} completed successfully"
    return f"Job {event.identity} failed"


# =============================================================================
# Transport
# =============================================================================

def _post_json(
    url: str,
    payload: Dict[str, Any],
    timeout: float,
    headers: Optional[Dict[str, str]] = None,
) -> int:
    """POST a JSON payload once and return the status code of a 2xx response."""
    request_headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    request_headers.update(headers or {})

    try:
        response = requests.post(url, json=payload, headers=request_headers, timeout=timeout)
    except requests.Timeout:
        raise DeliveryError(f"Timeout after {timeout}s") from None
    except requests.RequestException as exc:
        raise DeliveryError(f"Request error: {exc}") from exc

    status = response.status_code
    if 200 <= status < 300:
        return status

    body_excerpt = (response.text or "").strip()[:200]
    error = f"HTTP {status}"
    if body_excerpt:
        error = f"{error}: {body_excerpt}"
    raise DeliveryError(error, status_code=status)


# =============================================================================
# Channels
# =============================================================================

class SlackNotifier:
    """Slack incoming-webhook channel."""

    def __init__(self, webhook_url: str):
        self.webhook_url = webhook_url

    def build_payload(self, event: NotificationEvent, summary: str) -> Dict[str, Any]:
        return {
            "text": _fallback_text(event),
            "blocks": [
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": summary},
                }
            ],
        }

    def deliver(self, event: NotificationEvent, summary: str, timeout: float) -> None:
        _post_json(self.webhook_url, self.build_payload(event, summary), timeout)


class DiscordNotifier:
    """Discord webhook channel."""

    def __init__(self, webhook_url: str):
        self.webhook_url = webhook_url

    def build_payload(self, event: NotificationEvent, summary: str) -> Dict[str, Any]:
        # Discord markdown uses ** for bold
        return {"content": summary.replace("*", "**")}

    def deliver(self, event: NotificationEvent, summary: str, timeout: float) -> None:
        _post_json(self.webhook_url, self.build_payload(event, summary), timeout)


class WebhookNotifier:
    """Generic JSON webhook channel with a canonical payload."""

    def __init__(self, url: str, headers: Optional[Dict[str, str]] = None):
        self.url = url
        self.headers = dict(headers or {})

    def build_payload(self, event: NotificationEvent, summary: str) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "event": event_name(event.outcome),
            "generated_at": _format_time(datetime.now(timezone.utc)),
            "job": {
                "namespace": event.identity.namespace,
                "name": event.identity.name,
                "outcome": event.outcome.value,
                "observed_at": _format_time(event.observed_at),
            },
            "summary": summary,
        }

    def deliver(self, event: NotificationEvent, summary: str, timeout: float) -> None:
        headers = {"X-Job-Event": event_name(event.outcome)}
        headers.update(self.headers)
        _post_json(self.url, self.build_payload(event, summary), timeout, headers=headers)


def build_notifier(settings: Settings) -> Notifier:
    """Create the channel selected by ``settings.channel_type``."""
    if settings.channel_type == "slack":
        return SlackNotifier(settings.channel_url)
    if settings.channel_type == "discord":
        return DiscordNotifier(settings.channel_url)
    if settings.channel_type == "webhook":
        return WebhookNotifier(settings.channel_url, headers=settings.channel_headers)
    raise ValueError(f"Unsupported channel type: {settings.channel_type}")
