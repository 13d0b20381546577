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
PromptLoop -- Feedback Aggregator

Rolls raw feedback events into time-bucketed FeedbackAggregation records,
mines edit patterns, and keeps per-user preference profiles current.

Pipeline for one prompt and one window:
  1. Fetch events in [start, end) whose context matches the prompt's segment
  2. Count positive / negative / edit events
  3. Mine edit patterns
  4. Persist the aggregation with its period TTL
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from promptloop.core.store import keys
from promptloop.core.store.models import (
    FeedbackAggregation,
    FeedbackKind,
    FeedbackMetrics,
    Period,
    PromptPerformance,
    RawFeedback,
    UserPreferenceProfile,
    to_iso,
    utc_now,
)
from promptloop.core.store.versioned import VersionedStore
from promptloop.core.learning.patterns import (
    EXPANDED,
    MORE_FORMAL,
    REMOVED_JARGON,
    SHORTENED,
    analyze_edit,
    identify_edit_patterns,
    minable_edits,
    technical_term_changes,
)
from promptloop.core.learning.windows import window_end, window_start_for

logger = logging.getLogger("promptloop.learning.aggregator")

IMPROVING = "improving"
STABLE = "stable"
DECLINING = "declining"

TREND_BAND = 0.1


def count_feedback(events: Iterable[RawFeedback]) -> FeedbackMetrics:
    metrics = FeedbackMetrics()
    for event in events:
        if event.feedback is FeedbackKind.POSITIVE:
            metrics.positive += 1
        elif event.feedback is FeedbackKind.NEGATIVE:
            metrics.negative += 1
        elif event.feedback is FeedbackKind.EDIT:
            metrics.edits += 1
    return metrics


def sum_metrics(aggregations: Iterable[FeedbackAggregation]) -> FeedbackMetrics:
    """Add up counts across aggregations (patterns are not merged here)."""
    total = FeedbackMetrics()
    for agg in aggregations:
        total.positive += agg.metrics.positive
        total.negative += agg.metrics.negative
        total.edits += agg.metrics.edits
    return total


def calculate_trend(values: List[float]) -> str:
    """Compare the mean of the later half with the earlier half (±10%)."""
    if len(values) < 2:
        return STABLE
    mid = len(values) // 2
    first, second = values[:mid], values[mid:]
    avg_first = sum(first) / len(first)
    avg_second = sum(second) / len(second)
    if avg_second > avg_first * (1 + TREND_BAND):
        return IMPROVING
    if avg_second < avg_first * (1 - TREND_BAND):
        return DECLINING
    return STABLE


def _dedupe_capped(existing: List[str], additions: List[str], cap: int) -> List[str]:
    """Move additions to the end, drop duplicates, keep the newest `cap`."""
    merged = list(dict.fromkeys([t for t in existing if t not in additions] + additions))
    return merged[-cap:] if cap > 0 else []


class FeedbackAggregator:
    """Turns raw feedback into aggregations and preference profiles."""

    def __init__(self, store: VersionedStore, clock=utc_now):
        self.store = store
        self.settings = store.settings
        self._clock = clock

    # =========================================================================
    # AGGREGATION
    # =========================================================================

    def fetch_events(self, prompt_id: str, start: datetime, end: datetime) -> List[RawFeedback]:
        """Events in [start, end) belonging to the prompt's segment."""
        user_type, user_id = keys.parse_prompt_id(prompt_id)
        events = self.store.list_feedback(user_id=user_id, start=start, end=end)
        return [
            e
            for e in events
            if e.user_type == user_type and (user_id is None or e.user_id == user_id)
        ]

    def aggregate(
        self, prompt_id: str, period: Period, window_start: datetime
    ) -> FeedbackAggregation:
        """Aggregate one prompt over one window and persist the result."""
        period = Period(period)
        end = window_end(window_start, period)
        events = self.fetch_events(prompt_id, window_start, end)

        metrics = count_feedback(events)
        metrics.patterns = identify_edit_patterns(events, self.settings.vocabulary)

        aggregation = FeedbackAggregation(
            prompt_id=prompt_id,
            period=period,
            start_time=to_iso(window_start),
            end_time=to_iso(end),
            metrics=metrics,
        )
        self.store.store_aggregation(aggregation)
        logger.debug(
            "Aggregated %s %s@%s: +%d -%d edits=%d",
            prompt_id,
            period.value,
            aggregation.start_time,
            metrics.positive,
            metrics.negative,
            metrics.edits,
        )
        return aggregation

    def run_cycle(self, period: Period = Period.HOUR, now: Optional[datetime] = None) -> int:
        """Aggregate every live prompt for the window containing `now`.

        A failure on one prompt is logged and the cycle moves on.
        Returns the number of prompts aggregated.
        """
        period = Period(period)
        start = window_start_for(period, now or self._clock())
        prompt_ids = self.store.list_prompt_ids()

        count = 0
        for prompt_id in prompt_ids:
            try:
                self.aggregate(prompt_id, period, start)
                count += 1
            except Exception as e:
                logger.error("Error aggregating %s (%s): %s", prompt_id, period.value, e)

        logger.info("Aggregated %d/%d prompts (%s)", count, len(prompt_ids), period.value)
        return count

    # =========================================================================
    # USER PREFERENCES
    # =========================================================================

    def update_preferences(
        self, user_id: str, recent_events: List[RawFeedback]
    ) -> UserPreferenceProfile:
        """Fold a batch of one user's events into their preference profile."""
        profile = self.store.get_or_create_preference_profile(user_id)
        prefs = profile.preferences
        cap = self.settings.max_preference_terms
        vocab = self.settings.vocabulary

        polarity = count_feedback(recent_events)
        if polarity.positive + polarity.negative > 0:
            profile.learning_history.positive_ratio = polarity.success_rate

        for edit in sorted(minable_edits(recent_events), key=lambda e: e.timestamp):
            original, edited = edit.original_suggestion, edit.edited_content
            patterns = analyze_edit(original, edited, vocab)

            if REMOVED_JARGON in patterns:
                prefs.response_style = "conversational"
            if MORE_FORMAL in patterns:
                prefs.response_style = "technical"
            if SHORTENED in patterns:
                prefs.detail_level = "concise"
            if EXPANDED in patterns:
                prefs.detail_level = "detailed"

            removed, added = technical_term_changes(original, edited, vocab)
            if removed:
                prefs.avoided_phrases = _dedupe_capped(prefs.avoided_phrases, removed, cap)
                prefs.terminology = [t for t in prefs.terminology if t not in removed]
            if added:
                prefs.terminology = _dedupe_capped(prefs.terminology, added, cap)
                prefs.avoided_phrases = [t for t in prefs.avoided_phrases if t not in added]

        profile.learning_history.total_feedback += len(recent_events)
        profile.learning_history.last_updated = to_iso(self._clock())
        self.store.save_preference_profile(profile)
        return profile

    def update_all_preferences(
        self, period: Period = Period.HOUR, now: Optional[datetime] = None
    ) -> int:
        """Refresh the profile of every identified user active in the window."""
        period = Period(period)
        start = window_start_for(period, now or self._clock())
        events = self.store.list_feedback(start=start, end=window_end(start, period))

        by_user: Dict[str, List[RawFeedback]] = {}
        for event in events:
            if event.user_id:
                by_user.setdefault(event.user_id, []).append(event)

        updated = 0
        for user_id, user_events in by_user.items():
            try:
                self.update_preferences(user_id, user_events)
                updated += 1
            except Exception as e:
                logger.error("Error updating preferences for %s: %s", user_id, e)
        return updated

    # =========================================================================
    # PERFORMANCE
    # =========================================================================

    def calculate_prompt_performance(self, prompt_id: str, window_hours: int = 24) -> PromptPerformance:
        """Rolling performance over the most recent hourly aggregations."""
        totals = sum_metrics(self.store.list_aggregations(prompt_id, Period.HOUR, limit=window_hours))
        return PromptPerformance(
            success_rate=totals.success_rate,
            edit_rate=totals.edit_rate,
            total_interactions=totals.total_interactions,
            last_calculated=to_iso(self._clock()),
        )

    def generate_performance_report(
        self, prompt_id: str, hours: int = 24, days: int = 0, weeks: int = 0
    ) -> Dict[str, Any]:
        """Current performance, hourly trends and plain-language recommendations."""
        current = self.calculate_prompt_performance(prompt_id, hours or 24)

        # Oldest first so the later half of each series is the recent one
        hourly = list(reversed(self.store.list_aggregations(prompt_id, Period.HOUR, hours))) if hours else []
        daily = self.store.list_aggregations(prompt_id, Period.DAY, days) if days else []
        weekly = self.store.list_aggregations(prompt_id, Period.WEEK, weeks) if weeks else []

        success_series = [
            a.metrics.success_rate for a in hourly if a.metrics.positive + a.metrics.negative > 0
        ]
        edit_series = [a.metrics.edit_rate for a in hourly if a.metrics.total_interactions > 0]
        trends = {
            "successRateTrend": calculate_trend(success_series),
            "editRateTrend": calculate_trend(edit_series),
            "volumeTrend": calculate_trend([a.metrics.total_interactions for a in hourly]),
        }

        recommendations = []
        if current.success_rate < 0.6:
            recommendations.append("Consider reviewing negative feedback patterns")
        if current.edit_rate > 0.3:
            recommendations.append("High edit rate detected - analyze common edit patterns")
        if trends["successRateTrend"] == DECLINING:
            recommendations.append("Success rate declining - consider prompt adjustment")

        return {
            "promptId": prompt_id,
            "current": current.to_dict(),
            "trends": trends,
            "windows": {"hour": len(hourly), "day": len(daily), "week": len(weekly)},
            "recommendations": recommendations,
        }

    def cleanup(self, days_to_keep: Optional[int] = None) -> int:
        return self.store.cleanup_old_feedback(days_to_keep)
