"""Tests for sweep notifications."""

from types import SimpleNamespace

import pytest
import requests

from certrotation import notification
from certrotation.audit import AuditResultAggregator, RotationOutcome, RotationResult
from certrotation.config_loader import (
    EmailNotificationConfig,
    NotificationsConfig,
    TeamsNotificationConfig,
)
from certrotation.notification import NotificationManager


def _summary(*outcomes):
    aggregator = AuditResultAggregator("kv-test", threshold_days=30)
    for i, outcome in enumerate(outcomes):
        aggregator.add(RotationResult(
            certificate_name=f"cert-{i}",
            outcome=outcome,
            error="boom" if outcome is RotationOutcome.FAILED else None,
        ))
    return aggregator.finalize()


@pytest.fixture
def posts(monkeypatch):
    sent = []

    def fake_post(url, json=None, headers=None, timeout=None):
        sent.append((url, json))
        return SimpleNamespace(status_code=200, text="1")

    monkeypatch.setattr(notification.requests, "post", fake_post)
    return sent


def _teams(only_on_failure=True):
    return NotificationsConfig(
        teams=TeamsNotificationConfig(enabled=True, webhook_url="https://hooks.example.com/x"),
        only_on_failure=only_on_failure,
    )


class TestNotificationManager:
    def test_disabled(self, posts):
        manager = NotificationManager(NotificationsConfig())

        assert not manager.is_enabled()
        assert manager.notify(_summary(RotationOutcome.FAILED)) is None
        assert posts == []

    def test_suppressed_without_failures(self, posts):
        manager = NotificationManager(_teams())

        assert manager.notify(_summary(RotationOutcome.ROTATED)) is None
        assert posts == []

    def test_sends_on_failure(self, posts):
        manager = NotificationManager(_teams())

        sent = manager.notify(_summary(RotationOutcome.ROTATED, RotationOutcome.FAILED))

        assert sent == 1
        url, card = posts[0]
        assert url == "https://hooks.example.com/x"
        assert card["themeColor"] == "dc3545"
        assert "cert-1: FAILED - boom" in card["sections"][0]["text"]

    def test_always_send(self, posts):
        manager = NotificationManager(_teams(only_on_failure=False))

        assert manager.notify(_summary(RotationOutcome.SKIPPED)) == 1
        assert posts[0][1]["themeColor"] == "28a745"

    def test_transport_error_is_contained(self, monkeypatch):
        def broken_post(*args, **kwargs):
            raise requests.ConnectionError("no route")

        monkeypatch.setattr(notification.requests, "post", broken_post)
        manager = NotificationManager(_teams())

        assert manager.notify(_summary(RotationOutcome.FAILED)) == 0

    def test_email_without_api_key(self, posts, monkeypatch):
        monkeypatch.delenv("SENDGRID_API_KEY", raising=False)
        manager = NotificationManager(NotificationsConfig(
            email=EmailNotificationConfig(
                enabled=True, from_email="ops@example.com", to_emails=["team@example.com"]
            ),
        ))

        assert manager.notify(_summary(RotationOutcome.TIMED_OUT)) == 0
        assert posts == []
