# PromptLoop
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of PromptLoop.
#
# PromptLoop is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""Reviewer notifications for prompt proposals.

Delivery is fire-and-forget: a sink that fails returns False and logs, it
never raises into the evolution cycle. Messages are template-only.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger("promptloop.integrations.notifications")

TEMPLATES: dict[str, str] = {
    "proposal_ready": (
        "New prompt proposal for {prompt_id}: v{original_version} -> v{new_version}. "
        "Success rate {success_rate}, edit rate {edit_rate}. Review key: {proposal_key}"
    ),
    "review_needed": (
        "Prompt {prompt_id} needs human review. Success rate {success_rate}, "
        "edit rate {edit_rate} over {total_interactions} interactions."
    ),
    "proposal_committed": (
        "Proposal {proposal_key} committed. {prompt_id} is now v{version}{reviewer_note}."
    ),
}


def percent(rate: float) -> str:
    return f"{rate * 100:.1f}%"


@dataclass
class Notification:
    """A single notification to be delivered."""

    template: str
    params: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def message(self) -> str:
        tmpl = TEMPLATES.get(self.template, self.template)
        try:
            return tmpl.format(**self.params)
        except (KeyError, IndexError):
            return tmpl

    def to_dict(self) -> dict[str, Any]:
        return {
            "template": self.template,
            "params": self.params,
            "message": self.message,
            "timestamp": self.timestamp,
        }


class NotificationSink(ABC):
    """Somewhere a notification can be delivered."""

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Deliver a notification. Returns True on success."""

    @property
    @abstractmethod
    def sink_name(self) -> str: ...


class LogNotificationSink(NotificationSink):
    """Writes notifications to the application log. Always succeeds."""

    @property
    def sink_name(self) -> str:
        return "log"

    async def send(self, notification: Notification) -> bool:
        logger.info("[%s] %s", notification.template, notification.message)
        return True


class WebhookNotificationSink(NotificationSink):
    """POSTs JSON to a webhook. The ``text`` field makes it Slack-compatible."""

    def __init__(
        self,
        url: str,
        timeout: float = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._url = url
        self._timeout = timeout
        self._transport = transport

    @property
    def sink_name(self) -> str:
        return "webhook"

    async def send(self, notification: Notification) -> bool:
        payload = {"text": notification.message, **notification.to_dict()}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            logger.error("Webhook failed: %s", e)
            return False

        if resp.is_success:
            logger.info("Webhook delivered: %s", notification.template)
            return True
        logger.warning("Webhook returned %d for %s", resp.status_code, notification.template)
        return False


class NotificationManager:
    """Fans a notification out to every configured sink.

    Returns True if at least one sink succeeded. Keeps a delivery history.
    """

    def __init__(self, sinks: list[NotificationSink] | None = None):
        self._sinks = sinks if sinks is not None else [LogNotificationSink()]
        self._history: list[dict[str, Any]] = []

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._history)

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    async def notify(self, template: str, params: dict[str, Any] | None = None) -> bool:
        if template not in TEMPLATES:
            logger.warning("Unknown notification template: %s", template)
            return False

        notification = Notification(template=template, params=params or {})
        delivered = []
        for sink in self._sinks:
            try:
                if await sink.send(notification):
                    delivered.append(sink.sink_name)
            except Exception as e:
                logger.error("Sink %s raised: %s", sink.sink_name, e)

        self._history.append({**notification.to_dict(), "delivered": delivered})
        return bool(delivered)


def build_notifier(webhook_url: str = "") -> NotificationManager:
    sinks: list[NotificationSink] = [LogNotificationSink()]
    if webhook_url:
        sinks.append(WebhookNotificationSink(webhook_url))
    return NotificationManager(sinks)
