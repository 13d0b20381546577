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
"""PromptLoop settings.

Loaded from YAML (``~/.promptloop/config.yaml`` or ``$PROMPTLOOP_CONFIG``),
then overridden from the environment. Word lists used by the edit-pattern
miner and the safety gate live here as data so they can be extended without
touching the algorithms.

Example::

    thresholds:
      min_interactions: 50
      success_rate: 0.7
      edit_rate: 0.3
    vocabulary:
      technical_terms: [api, endpoint, implementation]
    validation:
      regression_queries:
        - "Show me roofing images"
    drafter:
      provider: anthropic
      model: claude-sonnet-4-20250514
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from promptloop.core.llm.config import DEFAULT_DRAFTER, DEFAULT_PROBER, RoleConfig

logger = logging.getLogger("promptloop.config")

PROMPTLOOP_HOME = Path(os.environ.get("PROMPTLOOP_HOME", str(Path.home() / ".promptloop")))
DEFAULT_CONFIG_PATH = PROMPTLOOP_HOME / "config.yaml"

DAY_SECONDS = 24 * 60 * 60

DEFAULT_BOUNDARIES = (
    "Maintain professional tone",
    "Include core personality traits",
    "Keep response style appropriate for user type",
)


@dataclass
class EvolutionThresholds:
    """Decision thresholds for analyze_performance()."""

    min_interactions: int = 50
    success_rate: float = 0.7
    edit_rate: float = 0.3
    review_success_rate: float = 0.5
    review_edit_rate: float = 0.5
    lookback_days: int = 7
    top_patterns: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvolutionThresholds:
        d = cls()
        return cls(
            min_interactions=int(data.get("min_interactions", d.min_interactions)),
            success_rate=float(data.get("success_rate", d.success_rate)),
            edit_rate=float(data.get("edit_rate", d.edit_rate)),
            review_success_rate=float(data.get("review_success_rate", d.review_success_rate)),
            review_edit_rate=float(data.get("review_edit_rate", d.review_edit_rate)),
            lookback_days=int(data.get("lookback_days", d.lookback_days)),
            top_patterns=int(data.get("top_patterns", d.top_patterns)),
        )


@dataclass
class MiningVocabulary:
    """Word lists driving the heuristic edit-pattern miner."""

    technical_terms: list[str] = field(default_factory=lambda: [
        "api", "endpoint", "implementation", "function", "method", "interface",
    ])
    context_phrases: list[str] = field(default_factory=lambda: [
        "specifically", "for example", "such as", "including",
    ])
    casual_words: list[str] = field(default_factory=lambda: [
        "hey", "yeah", "stuff", "things", "got",
    ])
    formal_words: list[str] = field(default_factory=lambda: [
        "greetings", "indeed", "items", "elements", "obtained",
    ])
    shorten_ratio: float = 0.7
    expand_ratio: float = 1.3

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MiningVocabulary:
        d = cls()
        return cls(
            technical_terms=_lower_list(data.get("technical_terms", d.technical_terms)),
            context_phrases=_lower_list(data.get("context_phrases", d.context_phrases)),
            casual_words=_lower_list(data.get("casual_words", d.casual_words)),
            formal_words=_lower_list(data.get("formal_words", d.formal_words)),
            shorten_ratio=float(data.get("shorten_ratio", d.shorten_ratio)),
            expand_ratio=float(data.get("expand_ratio", d.expand_ratio)),
        )


@dataclass
class ValidationConfig:
    """Regression panel and safety phrases for validate_mutation()."""

    regression_queries: list[str] = field(default_factory=lambda: [
        "Find foundation photos from last week",
        "Show me roofing images",
        "What photos do we have from the Johnson project?",
    ])
    min_response_chars: int = 10
    injection_phrases: list[str] = field(default_factory=lambda: [
        "ignore previous",
        "disregard instructions",
        "pretend you are",
        "act as if",
        "bypass",
        "hack",
    ])

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationConfig:
        d = cls()
        return cls(
            regression_queries=list(data.get("regression_queries", d.regression_queries)),
            min_response_chars=int(data.get("min_response_chars", d.min_response_chars)),
            injection_phrases=_lower_list(data.get("injection_phrases", d.injection_phrases)),
        )


@dataclass
class PromptLoopSettings:
    """Top-level settings object passed explicitly to every component."""

    thresholds: EvolutionThresholds = field(default_factory=EvolutionThresholds)
    vocabulary: MiningVocabulary = field(default_factory=MiningVocabulary)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    default_boundaries: list[str] = field(default_factory=lambda: list(DEFAULT_BOUNDARIES))
    drafter: RoleConfig = field(default_factory=lambda: RoleConfig(**DEFAULT_DRAFTER.to_dict()))
    prober: RoleConfig = field(default_factory=lambda: RoleConfig(**DEFAULT_PROBER.to_dict()))
    aggregation_ttl_days: dict[str, int] = field(default_factory=lambda: {
        "hour": 7, "day": 30, "week": 90, "month": 365,
    })
    proposal_ttl_days: int = 30
    default_cooldown_hours: int = 24
    rejection_cooldown_hours: int = 24
    feedback_retention_days: int = 30
    max_preference_terms: int = 20
    db_path: str = str(PROMPTLOOP_HOME / "promptloop.db")
    cron_secret: str = ""
    webhook_url: str = ""

    def aggregation_ttl_seconds(self, period: str) -> int:
        return self.aggregation_ttl_days[period] * DAY_SECONDS

    @property
    def proposal_ttl_seconds(self) -> int:
        return self.proposal_ttl_days * DAY_SECONDS

    def validate(self) -> list[str]:
        errors: list[str] = []
        t = self.thresholds
        if t.min_interactions < 0:
            errors.append("thresholds.min_interactions must be >= 0")
        for name in ("success_rate", "edit_rate", "review_success_rate", "review_edit_rate"):
            value = getattr(t, name)
            if not 0.0 <= value <= 1.0:
                errors.append(f"thresholds.{name} must be within [0, 1], got {value}")
        if t.lookback_days <= 0:
            errors.append("thresholds.lookback_days must be positive")
        v = self.vocabulary
        if not 0.0 < v.shorten_ratio < 1.0 < v.expand_ratio:
            errors.append("vocabulary ratios must satisfy 0 < shorten_ratio < 1 < expand_ratio")
        if not self.validation.regression_queries:
            errors.append("validation.regression_queries must not be empty")
        for period in ("hour", "day", "week", "month"):
            if self.aggregation_ttl_days.get(period, 0) <= 0:
                errors.append(f"aggregation_ttl_days.{period} must be positive")
        if self.proposal_ttl_days <= 0:
            errors.append("proposal_ttl_days must be positive")
        if self.rejection_cooldown_hours < 0 or self.default_cooldown_hours < 0:
            errors.append("cooldown hours must be >= 0")
        errors.extend(f"drafter: {e}" for e in self.drafter.validate())
        errors.extend(f"prober: {e}" for e in self.prober.validate())
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptLoopSettings:
        d = cls()
        ttl = dict(d.aggregation_ttl_days)
        ttl.update({k: int(v) for k, v in (data.get("aggregation_ttl_days") or {}).items()})
        return cls(
            thresholds=EvolutionThresholds.from_dict(data.get("thresholds") or {}),
            vocabulary=MiningVocabulary.from_dict(data.get("vocabulary") or {}),
            validation=ValidationConfig.from_dict(data.get("validation") or {}),
            default_boundaries=list(data.get("default_boundaries", d.default_boundaries)),
            drafter=RoleConfig.from_dict(data.get("drafter") or {}, defaults=DEFAULT_DRAFTER),
            prober=RoleConfig.from_dict(data.get("prober") or {}, defaults=DEFAULT_PROBER),
            aggregation_ttl_days=ttl,
            proposal_ttl_days=int(data.get("proposal_ttl_days", d.proposal_ttl_days)),
            default_cooldown_hours=int(data.get("default_cooldown_hours", d.default_cooldown_hours)),
            rejection_cooldown_hours=int(
                data.get("rejection_cooldown_hours", d.rejection_cooldown_hours)
            ),
            feedback_retention_days=int(
                data.get("feedback_retention_days", d.feedback_retention_days)
            ),
            max_preference_terms=int(data.get("max_preference_terms", d.max_preference_terms)),
            db_path=str(data.get("db_path", d.db_path)),
            cron_secret=str(data.get("cron_secret", "")),
            webhook_url=str(data.get("webhook_url", "")),
        )


class ConfigValidationError(ValueError):
    """Raised when settings fail validation."""

    def __init__(self, source: str, errors: list[str]):
        self.source = source
        self.errors = errors
        msg = f"Config '{source}' validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


def _lower_list(values: list[str]) -> list[str]:
    return [str(v).lower() for v in values]


def _apply_env(settings: PromptLoopSettings) -> PromptLoopSettings:
    secret = os.environ.get("PROMPTLOOP_CRON_SECRET") or os.environ.get("CRON_SECRET")
    if secret:
        settings.cron_secret = secret
    db_path = os.environ.get("PROMPTLOOP_DB")
    if db_path:
        settings.db_path = db_path
    webhook = os.environ.get("PROMPTLOOP_WEBHOOK_URL")
    if webhook:
        settings.webhook_url = webhook
    return settings


def load_settings(path: Path | None = None) -> PromptLoopSettings:
    """Load settings from YAML (if present) and the environment."""
    if path is None:
        env_path = os.environ.get("PROMPTLOOP_CONFIG")
        path = Path(env_path) if env_path else DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if path.exists():
        with open(path) as f:
            loaded = yaml.safe_load(f)
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigValidationError(str(path), ["top-level YAML value must be a mapping"])
        data = loaded or {}
        logger.info("Loaded settings from %s", path)

    settings = _apply_env(PromptLoopSettings.from_dict(data))
    errors = settings.validate()
    if errors:
        raise ConfigValidationError(str(path), errors)
    return settings


def save_settings(settings: PromptLoopSettings, path: Path | None = None) -> Path:
    """Write settings as YAML. Secrets are not written."""
    path = path or DEFAULT_CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    data = {
        "thresholds": vars(settings.thresholds),
        "vocabulary": vars(settings.vocabulary),
        "validation": vars(settings.validation),
        "default_boundaries": list(settings.default_boundaries),
        "drafter": settings.drafter.to_dict(),
        "prober": settings.prober.to_dict(),
        "aggregation_ttl_days": dict(settings.aggregation_ttl_days),
        "proposal_ttl_days": settings.proposal_ttl_days,
        "default_cooldown_hours": settings.default_cooldown_hours,
        "rejection_cooldown_hours": settings.rejection_cooldown_hours,
        "feedback_retention_days": settings.feedback_retention_days,
        "max_preference_terms": settings.max_preference_terms,
        "db_path": settings.db_path,
    }
    with open(path, "w") as f:
        yaml.dump(data, f, default_flow_style=False, sort_keys=False)
    logger.info("Saved settings to %s", path)
    return path
