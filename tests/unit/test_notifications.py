# PromptLoop
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for reviewer notifications -- templates, sinks and the manager."""

import json

import httpx
import pytest

from promptloop.integrations.notifications import (
    LogNotificationSink,
    Notification,
    NotificationManager,
    NotificationSink,
    WebhookNotificationSink,
    build_notifier,
    percent,
)

READY = {
    "prompt_id": "prompt:developer:global",
    "proposal_key": "prompt:proposed:prompt:developer:global:v2",
    "original_version": 1,
    "new_version": 2,
    "success_rate": "65.0%",
    "edit_rate": "20.0%",
}


class ExplodingSink(NotificationSink):
    @property
    def sink_name(self):
        return "exploding"

    async def send(self, notification):
        raise RuntimeError("boom")


class TestNotification:
    def test_message_from_template(self):
        n = Notification("proposal_ready", READY)
        assert n.message.startswith("New prompt proposal for prompt:developer:global: v1 -> v2.")
        assert "Review key: prompt:proposed:prompt:developer:global:v2" in n.message

    def test_missing_params_fall_back_to_template(self):
        assert "{prompt_id}" in Notification("review_needed", {}).message

    def test_percent(self):
        assert percent(0.4) == "40.0%"
        assert percent(0.6666) == "66.7%"


class TestWebhookSink:
    @pytest.mark.asyncio
    async def test_posts_slack_compatible_text(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200)

        sink = WebhookNotificationSink("https://hooks.example/x", transport=httpx.MockTransport(handler))

        assert await sink.send(Notification("proposal_ready", READY)) is True
        assert seen[0]["text"].startswith("New prompt proposal")
        assert seen[0]["template"] == "proposal_ready"

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self):
        sink = WebhookNotificationSink(
            "https://hooks.example/x", transport=httpx.MockTransport(lambda r: httpx.Response(500))
        )
        assert await sink.send(Notification("proposal_ready", READY)) is False

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        sink = WebhookNotificationSink("https://hooks.example/x", transport=httpx.MockTransport(handler))
        assert await sink.send(Notification("proposal_ready", READY)) is False


class TestNotificationManager:
    @pytest.mark.asyncio
    async def test_default_log_sink(self):
        mgr = NotificationManager()
        assert await mgr.notify("proposal_ready", READY) is True
        assert mgr.history[0]["delivered"] == ["log"]

    @pytest.mark.asyncio
    async def test_unknown_template(self):
        mgr = NotificationManager()
        assert await mgr.notify("no_such_template", {}) is False
        assert mgr.history == []

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_block_others(self):
        mgr = NotificationManager([ExplodingSink(), LogNotificationSink()])
        assert await mgr.notify("review_needed", {
            "prompt_id": "p", "success_rate": "40.0%", "edit_rate": "60.0%", "total_interactions": 200,
        }) is True
        assert mgr.history[0]["delivered"] == ["log"]

    @pytest.mark.asyncio
    async def test_all_sinks_failing(self):
        mgr = NotificationManager([ExplodingSink()])
        assert await mgr.notify("proposal_ready", READY) is False

    def test_build_notifier_adds_webhook(self):
        assert [s.sink_name for s in build_notifier()._sinks] == ["log"]
        assert [s.sink_name for s in build_notifier("https://hooks.example/x")._sinks] == ["log", "webhook"]
