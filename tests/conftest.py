"""Pytest configuration for promptloop tests."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure src/promptloop is importable
src_path = str(Path(__file__).parent.parent / "src")
if src_path not in sys.path:
    sys.path.insert(0, src_path)

from promptloop.core.config import PromptLoopSettings  # noqa: E402
from promptloop.core.store.kv import MemoryKeyValueStore  # noqa: E402
from promptloop.core.store.models import FeedbackKind, RawFeedback, to_iso  # noqa: E402
from promptloop.core.store.versioned import VersionedStore  # noqa: E402

# Sunday 2025-01-05, 13:30 UTC
NOW = datetime(2025, 1, 5, 13, 30, tzinfo=timezone.utc)

BASE_PROMPT = (
    "You are Scout, a photo assistant. Maintain professional tone. "
    "Include core personality traits. Keep response style appropriate for user type."
)


class FixedClock:
    """Settable clock returning timezone-aware datetimes."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGenerator:
    """TextGenerator double that records calls and replays canned replies."""

    def __init__(self, reply="A reasonably long answer about the photos.", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def generate(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        if callable(self.reply):
            return self.reply(system_prompt, user_prompt)
        return self.reply


def make_event(
    kind,
    when: datetime,
    user_type: str = "developer",
    user_id=None,
    original=None,
    edited=None,
) -> RawFeedback:
    metadata = {"originalSuggestion": original} if original is not None else {}
    return RawFeedback(
        item_id=f"item-{when.timestamp():.0f}",
        item_type="suggestion",
        feedback=FeedbackKind(kind),
        timestamp=to_iso(when),
        user_type=user_type,
        user_id=user_id,
        confidence=0.9,
        edited_content=edited,
        metadata=metadata,
    )


@pytest.fixture(autouse=True)
def _isolated_live_log(tmp_path, monkeypatch):
    """Point the live logger at a temp dir and drop it after each test."""
    from promptloop.core import logging as live

    live.reset_logger()
    monkeypatch.setattr(live, "LOG_DIR", tmp_path / "logs")
    yield
    live.reset_logger()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def settings():
    return PromptLoopSettings()


@pytest.fixture
def kv():
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv, settings, clock):
    return VersionedStore(kv, settings, clock=clock)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def base_prompt():
    return BASE_PROMPT


@pytest.fixture
def event():
    """Factory for RawFeedback events."""
    return make_event


@pytest.fixture
def generator():
    """The FakeGenerator class, for building text-generator doubles."""
    return FakeGenerator


@pytest.fixture
def runtime(settings, store, clock, base_prompt):
    """A PipelineRuntime over the in-memory store with canned text generators."""
    from promptloop.core.learning.aggregator import FeedbackAggregator
    from promptloop.core.learning.evolution import PromptEvolutionEngine
    from promptloop.core.runtime import PipelineRuntime
    from promptloop.integrations.notifications import NotificationManager

    engine = PromptEvolutionEngine(
        store,
        drafter=FakeGenerator(reply=base_prompt + " Keep answers short."),
        prober=FakeGenerator(),
        notifier=NotificationManager(),
        clock=clock,
    )
    return PipelineRuntime(
        settings=settings,
        store=store,
        aggregator=FeedbackAggregator(store, clock=clock),
        engine=engine,
    )
