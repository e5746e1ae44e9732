"""Tests for jobnotify.notifiers module."""

from datetime import datetime, timezone

import pytest
import requests

import jobnotify.notifiers as notifiers_module
from jobnotify.classifier import JobIdentity, NotificationEvent, Outcome
from jobnotify.config import Settings
from jobnotify.notifiers import (
    DeliveryError,
    DiscordNotifier,
    SlackNotifier,
    WebhookNotifier,
    build_notifier,
    render_summary,
)


OBSERVED = datetime(2026, 10, 19, 12, 30, 5, tzinfo=timezone.utc)


def _event(outcome=Outcome.SUCCEEDED) -> NotificationEvent:
    return NotificationEvent(
        identity=JobIdentity(namespace="batch", name="nightly-report"),
        outcome=outcome,
        observed_at=OBSERVED,
    )


class _Response:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


@pytest.fixture
def posts(monkeypatch):
    """Capture requests.post calls and answer with a configurable response."""
    calls = []
    state = {"response": _Response(200), "error": None}

    def fake_post(url, **kwargs):
        calls.append({"url": url, **kwargs})
        if state["error"] is not None:
            raise state["error"]
        return state["response"]

    monkeypatch.setattr(notifiers_module.requests, "post", fake_post)
    return calls, state


class TestRenderSummary:
    """Tests for the human-readable summary."""

    def test_success_summary(self):
        summary = render_summary(_event())
        lines = summary.splitlines()

        assert lines[0] == ":tada: *Job Completed Successfully*"
        assert "• *Name:* nightly-report" in lines
        assert "• *Namespace:* batch" in lines
        assert "• *Status:* Succeeded" in lines
        assert "• *Time:* 2026-10-19T12:30:05Z" in lines

    def test_failure_summary(self):
        summary = render_summary(_event(Outcome.FAILED))
        assert summary.startswith(":x: *Job Failed*")
        assert "• *Status:* Failed" in summary

    def test_naive_time_treated_as_utc(self):
        event = NotificationEvent(
            identity=JobIdentity("batch", "nightly-report"),
            outcome=Outcome.FAILED,
            observed_at=datetime(2026, 10, 19, 12, 30, 5),
        )
        assert "2026-10-19T12:30:05Z" in render_summary(event)


class TestChannels:
    """Tests for channel payloads and transport errors."""

    def test_slack_payload(self, posts):
        calls, _state = posts
        event = _event()
        summary = render_summary(event)
        SlackNotifier("https://hooks.slack.test/T/B/X").deliver(event, summary, 10.0)

        assert len(calls) == 1
        call = calls[0]
        assert call["url"] == "https://hooks.slack.test/T/B/X"
        assert call["timeout"] == 10.0
        assert call["headers"]["Content-Type"] == "application/json"
        block = call["json"]["blocks"][0]
        assert block["type"] == "section"
        assert block["text"] == {"type": "mrkdwn", "text": summary}
        assert call["json"]["text"] == "Job batch/nightly-report completed successfully"

    def test_discord_payload_uses_double_asterisks(self, posts):
        calls, _state = posts
        event = _event(Outcome.FAILED)
        DiscordNotifier("https://discord.test/api/webhooks/1").deliver(event, render_summary(event), 5)

        content = calls[0]["json"]["content"]
        assert content.startswith(":x: **Job Failed**")
        assert "**Namespace:** batch" in content

    def test_webhook_payload_and_headers(self, posts):
        calls, _state = posts
        event = _event(Outcome.FAILED)
        notifier = WebhookNotifier("https://example.test/hook", headers={"Authorization": "Bearer t"})
        notifier.deliver(event, "summary text", 3)

        call = calls[0]
        payload = call["json"]
        assert payload["schema_version"] == "v1"
        assert payload["event"] == "job_failed"
        assert payload["job"] == {
            "namespace": "batch",
            "name": "nightly-report",
            "outcome": "failed",
            "observed_at": "2026-10-19T12:30:05Z",
        }
        assert payload["summary"] == "summary text"
        assert call["headers"]["Authorization"] == "Bearer t"
        assert call["headers"]["X-Job-Event"] == "job_failed"

    def test_non_success_status_raises(self, posts):
        _calls, state = posts
        state["response"] = _Response(500, "internal error")

        with pytest.raises(DeliveryError) as excinfo:
            SlackNotifier("https://hooks.slack.test/x").deliver(_event(), "s", 10)
        assert excinfo.value.status_code == 500
        assert "HTTP 500: internal error" in str(excinfo.value)

    def test_single_attempt_no_retry(self, posts):
        calls, state = posts
        state["response"] = _Response(503)

        with pytest.raises(DeliveryError):
            SlackNotifier("https://hooks.slack.test/x").deliver(_event(), "s", 10)
        assert len(calls) == 1

    def test_timeout_raises_delivery_error(self, posts):
        _calls, state = posts
        state["error"] = requests.Timeout("read timed out")

        with pytest.raises(DeliveryError, match="Timeout after 2"):
            SlackNotifier("https://hooks.slack.test/x").deliver(_event(), "s", 2)

    def test_transport_error_raises_delivery_error(self, posts):
        _calls, state = posts
        state["error"] = requests.ConnectionError("connection refused")

        with pytest.raises(DeliveryError, match="Request error"):
            DiscordNotifier("https://discord.test/api/webhooks/1").deliver(_event(), "s", 2)


@pytest.mark.parametrize(
    "channel_type, expected",
    [("slack", SlackNotifier), ("discord", DiscordNotifier), ("webhook", WebhookNotifier)],
)
def test_build_notifier(channel_type, expected):
    settings = Settings(channel_url="https://example.test/hook", channel_type=channel_type)
    assert isinstance(build_notifier(settings), expected)


def test_build_notifier_rejects_unknown_type():
    with pytest.raises(ValueError):
        build_notifier(Settings(channel_url="https://example.test/hook", channel_type="pager"))
