# PromptLoop
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of PromptLoop.
#
# PromptLoop is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
PromptLoop -- Persisted Record Shapes

Every record is stored as a JSON object whose field names are camelCase.
The serving layer and older deployments read the same keys, so the
to_dict()/from_dict() pairs below are the wire format and must not drift.

RECORDS:
    EvolvingPrompt          live prompt + bounded version history
    FeedbackAggregation     immutable time-bucketed summary
    UserPreferenceProfile   derived per-user preferences
    MutationProposal        candidate revision awaiting human review
    RawFeedback             event written by the serving layer
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

MAX_HISTORY = 10
MAX_PATTERNS = 10
MAX_EXAMPLES = 3


# =============================================================================
# TIME HELPERS
# =============================================================================


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Render as ``2025-01-05T13:00:00.000Z`` (millisecond precision, UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


# =============================================================================
# ENUMS
# =============================================================================


class Period(str, Enum):
    """Aggregation window sizes."""

    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class FeedbackKind(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    EDIT = "edit"


class Recommendation(str, Enum):
    EVOLVE = "evolve"
    MAINTAIN = "maintain"
    REVIEW = "review"


RESPONSE_STYLES = ("technical", "conversational", "balanced")
DETAIL_LEVELS = ("concise", "detailed", "comprehensive")


# =============================================================================
# EVOLVING PROMPT
# =============================================================================


@dataclass
class PromptPerformance:
    """Last computed performance of a prompt."""

    success_rate: float = 0.5
    edit_rate: float = 0.0
    total_interactions: int = 0
    last_calculated: str = field(default_factory=lambda: to_iso(utc_now()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "successRate": self.success_rate,
            "editRate": self.edit_rate,
            "totalInteractions": self.total_interactions,
            "lastCalculated": self.last_calculated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptPerformance:
        return cls(
            success_rate=float(data.get("successRate", 0.5)),
            edit_rate=float(data.get("editRate", 0.0)),
            total_interactions=int(data.get("totalInteractions", 0)),
            last_calculated=data.get("lastCalculated") or to_iso(utc_now()),
        )


@dataclass
class EvolutionMetadata:
    """Evolution bookkeeping.

    ``cooldown_until`` is persisted as ``lockedUntil``. It is a policy window
    during which the engine skips the prompt, not a mutual-exclusion lock.
    """

    last_updated: str = field(default_factory=lambda: to_iso(utc_now()))
    boundaries: tuple[str, ...] = ()
    evolution_count: int = 0
    cooldown_until: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "lastUpdated": self.last_updated,
            "boundaries": list(self.boundaries),
            "evolutionCount": self.evolution_count,
        }
        if self.cooldown_until:
            data["lockedUntil"] = self.cooldown_until
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvolutionMetadata:
        return cls(
            last_updated=data.get("lastUpdated") or to_iso(utc_now()),
            boundaries=tuple(data.get("boundaries", [])),
            evolution_count=int(data.get("evolutionCount", 0)),
            cooldown_until=data.get("lockedUntil"),
        )


@dataclass
class PromptHistoryEntry:
    version: int
    prompt: str
    performance: PromptPerformance
    timestamp: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "prompt": self.prompt,
            "performance": self.performance.to_dict(),
            "timestamp": self.timestamp,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromptHistoryEntry:
        return cls(
            version=int(data["version"]),
            prompt=data["prompt"],
            performance=PromptPerformance.from_dict(data.get("performance", {})),
            timestamp=data.get("timestamp", ""),
            reason=data.get("reason", ""),
        )


@dataclass
class EvolvingPrompt:
    """The unit of adaptation: one prompt per user segment (or user)."""

    id: str
    base_prompt: str
    current_prompt: str
    version: int = 1
    performance: PromptPerformance = field(default_factory=PromptPerformance)
    evolution: EvolutionMetadata = field(default_factory=EvolutionMetadata)
    history: list[PromptHistoryEntry] = field(default_factory=list)

    @property
    def boundaries(self) -> tuple[str, ...]:
        return self.evolution.boundaries

    def find_version(self, version: int) -> PromptHistoryEntry | None:
        for entry in self.history:
            if entry.version == version:
                return entry
        return None

    def missing_boundaries(self, text: str) -> list[str]:
        lower = text.lower()
        return [b for b in self.evolution.boundaries if b.lower() not in lower]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "basePrompt": self.base_prompt,
            "currentPrompt": self.current_prompt,
            "version": self.version,
            "performance": self.performance.to_dict(),
            "evolution": self.evolution.to_dict(),
            "history": [h.to_dict() for h in self.history],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvolvingPrompt:
        return cls(
            id=data["id"],
            base_prompt=data["basePrompt"],
            current_prompt=data["currentPrompt"],
            version=int(data.get("version", 1)),
            performance=PromptPerformance.from_dict(data.get("performance", {})),
            evolution=EvolutionMetadata.from_dict(data.get("evolution", {})),
            history=[PromptHistoryEntry.from_dict(h) for h in data.get("history", [])],
        )


# =============================================================================
# FEEDBACK AGGREGATION
# =============================================================================


@dataclass
class EditPattern:
    pattern: str
    frequency: int = 1
    examples: list[str] = field(default_factory=list)

    def add_example(self, example: str):
        self.examples.append(example)
        if len(self.examples) > MAX_EXAMPLES:
            self.examples = self.examples[-MAX_EXAMPLES:]

    def to_dict(self) -> dict[str, Any]:
        return {"pattern": self.pattern, "frequency": self.frequency, "examples": list(self.examples)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EditPattern:
        return cls(
            pattern=data["pattern"],
            frequency=int(data.get("frequency", 0)),
            examples=list(data.get("examples", []))[-MAX_EXAMPLES:],
        )


@dataclass
class FeedbackMetrics:
    positive: int = 0
    negative: int = 0
    edits: int = 0
    patterns: list[EditPattern] = field(default_factory=list)

    @property
    def total_interactions(self) -> int:
        return self.positive + self.negative + self.edits

    @property
    def success_rate(self) -> float:
        polar = self.positive + self.negative
        return self.positive / polar if polar > 0 else 0.5

    @property
    def edit_rate(self) -> float:
        total = self.total_interactions
        return self.edits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "positive": self.positive,
            "negative": self.negative,
            "edits": self.edits,
            "totalInteractions": self.total_interactions,
            "patterns": [p.to_dict() for p in self.patterns],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeedbackMetrics:
        return cls(
            positive=int(data.get("positive", 0)),
            negative=int(data.get("negative", 0)),
            edits=int(data.get("edits", 0)),
            patterns=[EditPattern.from_dict(p) for p in data.get("patterns", [])],
        )


@dataclass(frozen=True)
class FeedbackAggregation:
    """Immutable summary of one prompt's feedback over one window."""

    prompt_id: str
    period: Period
    start_time: str
    end_time: str
    metrics: FeedbackMetrics

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptId": self.prompt_id,
            "period": self.period.value,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FeedbackAggregation:
        return cls(
            prompt_id=data["promptId"],
            period=Period(data["period"]),
            start_time=data["startTime"],
            end_time=data["endTime"],
            metrics=FeedbackMetrics.from_dict(data.get("metrics", {})),
        )


# =============================================================================
# USER PREFERENCES
# =============================================================================


@dataclass
class UserPreferences:
    response_style: str = "balanced"
    detail_level: str = "concise"
    terminology: list[str] = field(default_factory=list)
    avoided_phrases: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "responseStyle": self.response_style,
            "detailLevel": self.detail_level,
            "terminology": list(self.terminology),
            "avoidedPhrases": list(self.avoided_phrases),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserPreferences:
        return cls(
            response_style=data.get("responseStyle", "balanced"),
            detail_level=data.get("detailLevel", "concise"),
            terminology=list(data.get("terminology", [])),
            avoided_phrases=list(data.get("avoidedPhrases", [])),
        )


@dataclass
class LearningHistory:
    total_feedback: int = 0
    positive_ratio: float = 0.5
    last_updated: str = field(default_factory=lambda: to_iso(utc_now()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFeedback": self.total_feedback,
            "positiveRatio": self.positive_ratio,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LearningHistory:
        return cls(
            total_feedback=int(data.get("totalFeedback", 0)),
            positive_ratio=float(data.get("positiveRatio", 0.5)),
            last_updated=data.get("lastUpdated") or to_iso(utc_now()),
        )


@dataclass
class UserPreferenceProfile:
    user_id: str
    preferences: UserPreferences = field(default_factory=UserPreferences)
    learning_history: LearningHistory = field(default_factory=LearningHistory)

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "preferences": self.preferences.to_dict(),
            "learningHistory": self.learning_history.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UserPreferenceProfile:
        return cls(
            user_id=data["userId"],
            preferences=UserPreferences.from_dict(data.get("preferences", {})),
            learning_history=LearningHistory.from_dict(data.get("learningHistory", {})),
        )


# =============================================================================
# EVOLUTION ENGINE RECORDS
# =============================================================================


@dataclass
class PerformanceSummary:
    prompt_id: str
    success_rate: float
    edit_rate: float
    total_interactions: int
    top_patterns: list[dict[str, Any]] = field(default_factory=list)
    recommendation: Recommendation = Recommendation.MAINTAIN

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptId": self.prompt_id,
            "successRate": self.success_rate,
            "editRate": self.edit_rate,
            "totalInteractions": self.total_interactions,
            "topPatterns": [dict(p) for p in self.top_patterns],
            "recommendation": self.recommendation.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PerformanceSummary:
        return cls(
            prompt_id=data["promptId"],
            success_rate=float(data.get("successRate", 0.5)),
            edit_rate=float(data.get("editRate", 0.0)),
            total_interactions=int(data.get("totalInteractions", 0)),
            top_patterns=[dict(p) for p in data.get("topPatterns", [])],
            recommendation=Recommendation(data.get("recommendation", "maintain")),
        )


@dataclass
class ValidationResult:
    boundary_check: bool
    regression_check: bool
    safety_check: bool
    details: list[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.boundary_check and self.regression_check and self.safety_check

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "boundaryCheck": self.boundary_check,
            "regressionCheck": self.regression_check,
            "safetyCheck": self.safety_check,
            "details": list(self.details),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationResult:
        return cls(
            boundary_check=bool(data.get("boundaryCheck", False)),
            regression_check=bool(data.get("regressionCheck", False)),
            safety_check=bool(data.get("safetyCheck", False)),
            details=list(data.get("details", [])),
        )


@dataclass
class MutationProposal:
    """A validated candidate revision. Never applied without a human commit."""

    prompt_id: str
    original_version: int
    new_version: int
    original_prompt: str
    proposed_prompt: str
    performance_summary: PerformanceSummary
    validation_results: ValidationResult
    proposed_at: str = field(default_factory=lambda: to_iso(utc_now()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "promptId": self.prompt_id,
            "originalVersion": self.original_version,
            "newVersion": self.new_version,
            "originalPrompt": self.original_prompt,
            "proposedPrompt": self.proposed_prompt,
            "performanceSummary": self.performance_summary.to_dict(),
            "validationResults": self.validation_results.to_dict(),
            "proposedAt": self.proposed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MutationProposal:
        return cls(
            prompt_id=data["promptId"],
            original_version=int(data["originalVersion"]),
            new_version=int(data["newVersion"]),
            original_prompt=data["originalPrompt"],
            proposed_prompt=data["proposedPrompt"],
            performance_summary=PerformanceSummary.from_dict(data["performanceSummary"]),
            validation_results=ValidationResult.from_dict(data["validationResults"]),
            proposed_at=data.get("proposedAt") or to_iso(utc_now()),
        )


# =============================================================================
# RAW FEEDBACK (written by the serving layer)
# =============================================================================


@dataclass
class RawFeedback:
    item_id: str
    item_type: str
    feedback: FeedbackKind
    timestamp: str
    user_type: str = "unknown"
    user_id: str | None = None
    confidence: float = 0.0
    session_id: str | None = None
    edited_content: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def original_suggestion(self) -> str | None:
        return self.metadata.get("originalSuggestion")

    def to_dict(self) -> dict[str, Any]:
        context: dict[str, Any] = {"userType": self.user_type, "confidence": self.confidence}
        if self.session_id:
            context["sessionId"] = self.session_id
        if self.user_id:
            context["userId"] = self.user_id
        data: dict[str, Any] = {
            "itemId": self.item_id,
            "itemType": self.item_type,
            "feedback": self.feedback.value,
            "context": context,
            "timestamp": self.timestamp,
        }
        if self.edited_content is not None:
            data["editedContent"] = self.edited_content
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RawFeedback:
        context = data.get("context", {})
        return cls(
            item_id=data.get("itemId", ""),
            item_type=data.get("itemType", "suggestion"),
            feedback=FeedbackKind(data["feedback"]),
            timestamp=data.get("timestamp", ""),
            user_type=context.get("userType", "unknown"),
            user_id=context.get("userId"),
            confidence=float(context.get("confidence", 0.0)),
            session_id=context.get("sessionId"),
            edited_content=data.get("editedContent"),
            metadata=dict(data.get("metadata", {})),
        )
