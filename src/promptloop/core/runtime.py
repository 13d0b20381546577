"""Wiring for the batch pipeline.

Builds the store, aggregator and evolution engine from settings so the CLI
and the API assemble them the same way.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from promptloop.core.config import PromptLoopSettings, load_settings
from promptloop.core.learning.aggregator import FeedbackAggregator
from promptloop.core.learning.evolution import PromptEvolutionEngine
from promptloop.core.llm.providers import ProviderTextGenerator
from promptloop.core.store.kv import KeyValueStore, SqliteKeyValueStore
from promptloop.core.store.versioned import VersionedStore
from promptloop.integrations.notifications import build_notifier

logger = logging.getLogger("promptloop.runtime")


@dataclass
class PipelineRuntime:
    settings: PromptLoopSettings
    store: VersionedStore
    aggregator: FeedbackAggregator
    engine: PromptEvolutionEngine


def build_runtime(
    settings: PromptLoopSettings | None = None, kv: KeyValueStore | None = None
) -> PipelineRuntime:
    settings = settings or load_settings()
    store = VersionedStore(kv or SqliteKeyValueStore(settings.db_path), settings)
    engine = PromptEvolutionEngine(
        store,
        drafter=ProviderTextGenerator(settings.drafter, component="Drafter"),
        prober=ProviderTextGenerator(settings.prober, component="Prober"),
        notifier=build_notifier(settings.webhook_url),
    )
    logger.debug("Runtime built (db=%s)", settings.db_path)
    return PipelineRuntime(
        settings=settings,
        store=store,
        aggregator=FeedbackAggregator(store),
        engine=engine,
    )
