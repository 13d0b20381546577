# PromptLoop
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
"""Tests for FeedbackAggregator -- windows, counts, preferences and reports."""

from datetime import timedelta

import pytest

from promptloop.core.learning.aggregator import (
    DECLINING,
    IMPROVING,
    STABLE,
    FeedbackAggregator,
    calculate_trend,
)
from promptloop.core.learning.patterns import SHORTENED
from promptloop.core.learning.windows import window_start_for
from promptloop.core.store.models import (
    FeedbackAggregation,
    FeedbackMetrics,
    Period,
    to_iso,
)

GLOBAL_DEV = "prompt:developer:global"
LONG_ANSWER = "Call the API endpoint to get the roof photos from the Johnson project last week."


@pytest.fixture
def aggregator(store, clock):
    return FeedbackAggregator(store, clock=clock)


@pytest.fixture
def hour_start(now):
    return window_start_for(Period.HOUR, now)


def _hourly(prompt_id, start, positive, negative, edits=0):
    return FeedbackAggregation(
        prompt_id=prompt_id,
        period=Period.HOUR,
        start_time=to_iso(start),
        end_time=to_iso(start + timedelta(hours=1)),
        metrics=FeedbackMetrics(positive=positive, negative=negative, edits=edits),
    )


# =============================================================================
# AGGREGATION
# =============================================================================


class TestAggregate:
    def test_balanced_feedback_gives_half_success(self, aggregator, store, event, base_prompt, hour_start):
        store.get_or_create_prompt("developer", base_prompt=base_prompt)
        for i in range(5):
            store.record_feedback(event("positive", hour_start + timedelta(minutes=i)))
            store.record_feedback(event("negative", hour_start + timedelta(minutes=10 + i)))

        agg = aggregator.aggregate(GLOBAL_DEV, Period.HOUR, hour_start)

        assert agg.metrics.positive == 5
        assert agg.metrics.negative == 5
        assert agg.metrics.edits == 0
        assert agg.metrics.total_interactions == 10
        assert agg.metrics.success_rate == 0.5
        assert agg.start_time == to_iso(hour_start)
        assert agg.end_time == to_iso(hour_start + timedelta(hours=1))
        assert len(store.list_aggregations(GLOBAL_DEV, Period.HOUR)) == 1

    def test_only_matching_segment_and_window(self, aggregator, store, event, hour_start):
        store.record_feedback(event("positive", hour_start + timedelta(minutes=1)))
        store.record_feedback(event("positive", hour_start + timedelta(minutes=2), user_type="endUser"))
        store.record_feedback(event("positive", hour_start - timedelta(seconds=1)))
        store.record_feedback(event("positive", hour_start + timedelta(hours=1)))

        agg = aggregator.aggregate(GLOBAL_DEV, Period.HOUR, hour_start)
        assert agg.metrics.positive == 1

    def test_user_specific_prompt_filters_by_user(self, aggregator, store, event, hour_start):
        store.record_feedback(event("negative", hour_start + timedelta(minutes=1), user_id="u1"))
        store.record_feedback(event("negative", hour_start + timedelta(minutes=2), user_id="u2"))

        agg = aggregator.aggregate("prompt:developer:u1", Period.HOUR, hour_start)
        assert agg.metrics.negative == 1

    def test_empty_window_neutral_rates(self, aggregator, hour_start):
        agg = aggregator.aggregate(GLOBAL_DEV, Period.HOUR, hour_start)
        assert agg.metrics.total_interactions == 0
        assert agg.metrics.success_rate == 0.5
        assert agg.metrics.edit_rate == 0.0

    def test_edits_are_mined(self, aggregator, store, event, hour_start):
        for i in range(2):
            store.record_feedback(event(
                "edit", hour_start + timedelta(minutes=i), original=LONG_ANSWER, edited="Roof photos.",
            ))

        agg = aggregator.aggregate(GLOBAL_DEV, Period.HOUR, hour_start)
        assert agg.metrics.edits == 2
        labels = {p.pattern: p.frequency for p in agg.metrics.patterns}
        assert labels[SHORTENED] == 2


class TestRunCycle:
    def test_aggregates_every_prompt_but_not_proposals(self, aggregator, store, base_prompt):
        store.get_or_create_prompt("developer", base_prompt=base_prompt)
        store.get_or_create_prompt("endUser", base_prompt=base_prompt)
        store.kv.set("prompt:proposed:prompt:developer:global:v2", {"promptId": GLOBAL_DEV})

        assert aggregator.run_cycle(Period.HOUR) == 2

    def test_failure_on_one_prompt_does_not_stop_cycle(self, aggregator, store, base_prompt, monkeypatch):
        store.get_or_create_prompt("developer", base_prompt=base_prompt)
        store.get_or_create_prompt("endUser", base_prompt=base_prompt)
        real = aggregator.aggregate

        def flaky(prompt_id, period, start):
            if prompt_id == GLOBAL_DEV:
                raise RuntimeError("store hiccup")
            return real(prompt_id, period, start)

        monkeypatch.setattr(aggregator, "aggregate", flaky)

        assert aggregator.run_cycle(Period.HOUR) == 1
        assert store.list_aggregations("prompt:endUser:global", Period.HOUR)
        assert not store.list_aggregations(GLOBAL_DEV, Period.HOUR)

    def test_daily_window(self, aggregator, store, event, base_prompt, now):
        store.get_or_create_prompt("developer", base_prompt=base_prompt)
        midnight = window_start_for(Period.DAY, now)
        store.record_feedback(event("positive", midnight + timedelta(hours=2)))

        aggregator.run_cycle(Period.DAY)

        [agg] = store.list_aggregations(GLOBAL_DEV, Period.DAY)
        assert agg.start_time == to_iso(midnight)
        assert agg.metrics.positive == 1


# =============================================================================
# PREFERENCES
# =============================================================================


class TestPreferences:
    def test_shortened_jargon_free_edits(self, aggregator, event, now):
        edits = [event("edit", now, user_id="u1", original=LONG_ANSWER, edited="Here are the roof photos.")]

        profile = aggregator.update_preferences("u1", edits)

        assert profile.preferences.detail_level == "concise"
        assert profile.preferences.response_style == "conversational"
        assert profile.preferences.avoided_phrases == ["api", "endpoint"]
        assert profile.learning_history.total_feedback == 1

    def test_added_terms_become_terminology(self, aggregator, event, now):
        edits = [event(
            "edit", now, user_id="u1",
            original="Use the upload helper for photos.",
            edited="Use the upload function for photos.",
        )]
        profile = aggregator.update_preferences("u1", edits)
        assert profile.preferences.terminology == ["function"]

    def test_expanded_edit_prefers_detail(self, aggregator, event, now):
        edits = [event("edit", now, user_id="u1", original="Roof photos.", edited="Here are all the roof photos.")]
        assert aggregator.update_preferences("u1", edits).preferences.detail_level == "detailed"

    def test_terms_capped(self, settings, aggregator, event, now):
        settings.max_preference_terms = 1
        edits = [event("edit", now, user_id="u1", original=LONG_ANSWER, edited="Roof photos.")]
        profile = aggregator.update_preferences("u1", edits)
        assert profile.preferences.avoided_phrases == ["endpoint"]

    def test_positive_ratio_and_persistence(self, aggregator, store, event, now):
        events = [
            event("positive", now, user_id="u1"),
            event("positive", now + timedelta(minutes=1), user_id="u1"),
            event("positive", now + timedelta(minutes=2), user_id="u1"),
            event("negative", now + timedelta(minutes=3), user_id="u1"),
        ]
        aggregator.update_preferences("u1", events)

        stored = store.get_or_create_preference_profile("u1")
        assert stored.learning_history.positive_ratio == 0.75
        assert stored.learning_history.total_feedback == 4

    def test_update_all_preferences_skips_anonymous(self, aggregator, store, event, hour_start):
        store.record_feedback(event("positive", hour_start + timedelta(minutes=1), user_id="u1"))
        store.record_feedback(event("negative", hour_start + timedelta(minutes=2), user_id="u2"))
        store.record_feedback(event("negative", hour_start + timedelta(minutes=3)))

        assert aggregator.update_all_preferences(Period.HOUR) == 2


# =============================================================================
# PERFORMANCE AND REPORTS
# =============================================================================


class TestCalculateTrend:
    def test_bands(self):
        assert calculate_trend([0.5, 0.5, 0.7, 0.7]) == IMPROVING
        assert calculate_trend([0.7, 0.7, 0.5, 0.5]) == DECLINING
        assert calculate_trend([0.6, 0.62, 0.61, 0.6]) == STABLE

    def test_too_short(self):
        assert calculate_trend([]) == STABLE
        assert calculate_trend([0.9]) == STABLE


class TestPerformance:
    def test_sums_recent_hourly(self, aggregator, store, hour_start):
        for h, (pos, neg, edits) in enumerate([(8, 2, 0), (6, 4, 10)]):
            store.store_aggregation(_hourly(GLOBAL_DEV, hour_start - timedelta(hours=h), pos, neg, edits))

        perf = aggregator.calculate_prompt_performance(GLOBAL_DEV)

        assert perf.success_rate == pytest.approx(0.7)
        assert perf.edit_rate == pytest.approx(10 / 30)
        assert perf.total_interactions == 30

    def test_no_aggregations_neutral(self, aggregator):
        perf = aggregator.calculate_prompt_performance(GLOBAL_DEV)
        assert perf.success_rate == 0.5
        assert perf.total_interactions == 0

    def test_report_detects_decline(self, aggregator, store, hour_start):
        series = [(9, 1), (9, 1), (3, 7), (3, 7)]
        for i, (pos, neg) in enumerate(series):
            start = hour_start - timedelta(hours=len(series) - 1 - i)
            store.store_aggregation(_hourly(GLOBAL_DEV, start, pos, neg))

        report = aggregator.generate_performance_report(GLOBAL_DEV, hours=24)

        assert report["promptId"] == GLOBAL_DEV
        assert report["current"]["successRate"] == pytest.approx(0.6)
        assert report["trends"]["successRateTrend"] == DECLINING
        assert report["trends"]["volumeTrend"] == STABLE
        assert report["windows"]["hour"] == 4
        assert report["recommendations"] == ["Success rate declining - consider prompt adjustment"]

    def test_report_flags_low_success_and_edits(self, aggregator, store, hour_start):
        store.store_aggregation(_hourly(GLOBAL_DEV, hour_start, 2, 8, 10))
        report = aggregator.generate_performance_report(GLOBAL_DEV)
        assert "Consider reviewing negative feedback patterns" in report["recommendations"]
        assert "High edit rate detected - analyze common edit patterns" in report["recommendations"]

    def test_cleanup_delegates(self, aggregator, store, event, now):
        store.record_feedback(event("positive", now - timedelta(days=45)))
        assert aggregator.cleanup() == 1
