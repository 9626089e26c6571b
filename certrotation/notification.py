"""
Notification of sweep outcomes.

Supports two channels:
- Email via SendGrid API
- Microsoft Teams via incoming webhook

Notification failures are logged and never affect the sweep result.
"""

import os
from abc import ABC, abstractmethod
from typing import List, Optional, TYPE_CHECKING

import requests

from .audit import SweepSummary
from .logger import get_logger

if TYPE_CHECKING:
    from .config_loader import NotificationsConfig, EmailNotificationConfig, TeamsNotificationConfig


SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


def _headline(summary: SweepSummary) -> str:
    status = "FAILED" if summary.has_failures else "SUCCESS"
    return f"{status}: certificate rotation sweep for {summary.vault_name}"


def _result_lines(summary: SweepSummary) -> List[str]:
    lines = []
    for result in summary.results:
        if result.is_failure:
            lines.append(f"{result.certificate_name}: {result.outcome.value.upper()} - {result.error}")
        elif result.new_thumbprint:
            lines.append(f"{result.certificate_name}: {result.outcome.value.upper()}")
    return lines


class NotificationSender(ABC):
    """Abstract base class for notification senders."""

    @abstractmethod
    def send(self, summary: SweepSummary) -> bool:
        """
        Send a notification.

        Args:
            summary: Completed sweep summary

        Returns:
            True if notification was sent successfully, False otherwise
        """
        pass


class SendGridNotifier(NotificationSender):
    """Send email notifications via SendGrid API."""

    def __init__(self, config: "EmailNotificationConfig"):
        self.config = config
        self.api_key = os.environ.get("SENDGRID_API_KEY", "")
        self.logger = get_logger()

    def _render(self, summary: SweepSummary) -> str:
        counts = summary.counts()
        rows = "".join(
            f"<tr><td>{name}</td><td>{value}</td></tr>" for name, value in counts.items()
        )
        details = "".join(f"<li>{line}</li>" for line in _result_lines(summary))
        return (
            f"<h2>{_headline(summary)}</h2>"
            f"<p>Started {summary.started_at}, completed {summary.completed_at}</p>"
            f"<table>{rows}</table>"
            f"<ul>{details}</ul>"
        )

    def send(self, summary: SweepSummary) -> bool:
        """Send email notification via SendGrid."""
        if not self.api_key:
            self.logger.warning("SENDGRID_API_KEY not set, skipping email notification")
            return False

        if not self.config.from_email or not self.config.to_emails:
            self.logger.warning("Email sender or recipients not configured, skipping email notification")
            return False

        payload = {
            "personalizations": [
                {"to": [{"email": email} for email in self.config.to_emails]}
            ],
            "from": {"email": self.config.from_email},
            "subject": _headline(summary),
            "content": [{"type": "text/html", "value": self._render(summary)}],
        }

        try:
            response = requests.post(
                SENDGRID_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=30,
            )
        except requests.RequestException as e:
            self.logger.error(f"Failed to send email notification: {e}")
            return False

        if response.status_code in (200, 202):
            self.logger.info("Email notification sent")
            return True

        self.logger.error(f"SendGrid API error: {response.status_code} - {response.text}")
        return False


class TeamsWebhookNotifier(NotificationSender):
    """Send notifications to Microsoft Teams via incoming webhook."""

    def __init__(self, config: "TeamsNotificationConfig"):
        self.config = config
        self.logger = get_logger()

    def _webhook_url(self) -> str:
        return self.config.webhook_url or os.environ.get("TEAMS_WEBHOOK_URL", "")

    def _render(self, summary: SweepSummary) -> dict:
        facts = [{"name": "Vault", "value": summary.vault_name}]
        facts.extend(
            {"name": name, "value": str(value)} for name, value in summary.counts().items()
        )
        return {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": "dc3545" if summary.has_failures else "28a745",
            "summary": _headline(summary),
            "sections": [
                {
                    "activityTitle": _headline(summary),
                    "facts": facts,
                    "text": "<br>".join(_result_lines(summary)),
                    "markdown": True,
                }
            ],
        }

    def send(self, summary: SweepSummary) -> bool:
        """Send notification to Teams via webhook."""
        webhook_url = self._webhook_url()
        if not webhook_url:
            self.logger.warning("Teams webhook URL not configured, skipping Teams notification")
            return False

        try:
            response = requests.post(webhook_url, json=self._render(summary), timeout=30)
        except requests.RequestException as e:
            self.logger.error(f"Failed to send Teams notification: {e}")
            return False

        if response.status_code == 200:
            self.logger.info("Teams notification sent")
            return True

        self.logger.error(f"Teams webhook error: {response.status_code} - {response.text}")
        return False


class NotificationManager:
    """
    Sends a sweep summary through every enabled channel.
    """

    def __init__(self, config: "NotificationsConfig"):
        self.config = config
        self.logger = get_logger()
        self.notifiers: List[NotificationSender] = []

        if config.email.enabled:
            self.notifiers.append(SendGridNotifier(config.email))
        if config.teams.enabled:
            self.notifiers.append(TeamsWebhookNotifier(config.teams))

    def is_enabled(self) -> bool:
        return len(self.notifiers) > 0

    def notify(self, summary: SweepSummary) -> Optional[int]:
        """
        Send the summary through all enabled channels.

        Never raises. When ``only_on_failure`` is set, summaries without
        failures are not sent.

        Args:
            summary: Completed sweep summary

        Returns:
            Number of channels that accepted the notification, or None
            when nothing was sent
        """
        if not self.notifiers:
            return None
        if self.config.only_on_failure and not summary.has_failures:
            self.logger.debug("No failures, notifications suppressed")
            return None

        sent = 0
        for notifier in self.notifiers:
            try:
                if notifier.send(summary):
                    sent += 1
            except Exception as e:
                self.logger.error(f"Notification failed ({type(notifier).__name__}): {e}")
        return sent
