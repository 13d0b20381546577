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
PromptLoop -- Versioned Store

Single source of truth for evolving prompts, feedback aggregations,
preference profiles and mutation proposals. Every other component reads and
writes records through this class.

VERSIONING RULES:
    - version starts at 1 and grows by exactly 1 on every commit or rollback
    - a rollback restores old text under a NEW version number
    - history keeps the 10 most recent snapshots, oldest evicted first
    - boundaries are copied in at creation and never rewritten

CONCURRENCY:
    Plain read-then-write, last writer wins. Pass expected_version to
    commit_evolution()/rollback() to turn that into a compare-and-swap.
    The cooldown window (lockedUntil) is a scheduling policy, not a lock.

Usage:
    store = VersionedStore(SqliteKeyValueStore())
    prompt = store.get_or_create_prompt("developer", base_prompt=BASE)
    store.commit_evolution(prompt.id, new_text, "Reduce jargon", perf)
    store.rollback(prompt.id, target_version=1)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from promptloop.core.config import PromptLoopSettings
from promptloop.core.errors import (
    BoundaryViolation,
    MissingBasePrompt,
    PromptNotFound,
    ProposalNotFound,
    VersionConflict,
    VersionNotFound,
)
from promptloop.core.store import keys
from promptloop.core.store.kv import KeyValueStore
from promptloop.core.store.models import (
    MAX_HISTORY,
    EvolutionMetadata,
    EvolvingPrompt,
    FeedbackAggregation,
    MutationProposal,
    Period,
    PromptHistoryEntry,
    PromptPerformance,
    RawFeedback,
    UserPreferenceProfile,
    parse_iso,
    to_iso,
    utc_now,
)

logger = logging.getLogger("promptloop.store.versioned")


class VersionedStore:
    """Typed accessors and read-modify-write helpers over a KeyValueStore."""

    def __init__(
        self,
        kv: KeyValueStore,
        settings: Optional[PromptLoopSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.kv = kv
        self.settings = settings or PromptLoopSettings()
        self._clock = clock

    def _now_iso(self) -> str:
        return to_iso(self._clock())

    # =========================================================================
    # EVOLVING PROMPTS
    # =========================================================================

    def get_prompt(self, prompt_id: str) -> EvolvingPrompt:
        data = self.kv.get(prompt_id)
        if data is None:
            raise PromptNotFound(prompt_id)
        return EvolvingPrompt.from_dict(data)

    def save_prompt(self, prompt: EvolvingPrompt) -> None:
        self.kv.set(prompt.id, prompt.to_dict())

    def get_or_create_prompt(
        self,
        user_type: str,
        user_id: Optional[str] = None,
        base_prompt: Optional[str] = None,
        boundaries: Optional[Iterable[str]] = None,
    ) -> EvolvingPrompt:
        """Return the segment's prompt, creating version 1 from base_prompt if absent."""
        key = keys.evolving_prompt(user_type, user_id)
        data = self.kv.get(key)
        if data is not None:
            return EvolvingPrompt.from_dict(data)

        if not base_prompt:
            raise MissingBasePrompt(key)

        now = self._now_iso()
        chosen = self.settings.default_boundaries if boundaries is None else boundaries
        prompt = EvolvingPrompt(
            id=key,
            base_prompt=base_prompt,
            current_prompt=base_prompt,
            version=1,
            performance=PromptPerformance(last_calculated=now),
            evolution=EvolutionMetadata(
                last_updated=now,
                boundaries=tuple(dict.fromkeys(chosen)),
                evolution_count=0,
            ),
            history=[],
        )
        self.save_prompt(prompt)
        logger.info("Created evolving prompt %s (boundaries=%d)", key, len(prompt.boundaries))
        return prompt

    def list_prompt_ids(self) -> List[str]:
        """Live prompt keys, excluding the proposal namespace."""
        return sorted(
            k for k in self.kv.list_keys(keys.PROMPT_PREFIX) if not keys.is_proposal_key(k)
        )

    def _snapshot(self, prompt: EvolvingPrompt, reason: str) -> None:
        prompt.history.append(
            PromptHistoryEntry(
                version=prompt.version,
                prompt=prompt.current_prompt,
                performance=prompt.performance,
                timestamp=self._now_iso(),
                reason=reason,
            )
        )
        if len(prompt.history) > MAX_HISTORY:
            prompt.history = prompt.history[-MAX_HISTORY:]

    @staticmethod
    def _check_version(prompt: EvolvingPrompt, expected_version: Optional[int]) -> None:
        if expected_version is not None and prompt.version != expected_version:
            raise VersionConflict(prompt.id, expected_version, prompt.version)

    def commit_evolution(
        self,
        prompt_id: str,
        new_prompt: str,
        reason: str,
        performance: PromptPerformance,
        expected_version: Optional[int] = None,
    ) -> EvolvingPrompt:
        """Make new_prompt the live text under the next version number."""
        prompt = self.get_prompt(prompt_id)
        self._check_version(prompt, expected_version)

        missing = prompt.missing_boundaries(new_prompt)
        if missing:
            raise BoundaryViolation(prompt_id, missing)

        self._snapshot(prompt, reason)
        prompt.current_prompt = new_prompt
        prompt.version += 1
        prompt.performance = performance
        prompt.evolution.last_updated = self._now_iso()
        prompt.evolution.evolution_count += 1

        self.save_prompt(prompt)
        logger.info("Committed %s v%d: %s", prompt_id, prompt.version, reason[:80])
        return prompt

    def rollback(
        self,
        prompt_id: str,
        target_version: int,
        expected_version: Optional[int] = None,
    ) -> EvolvingPrompt:
        """Restore a historical prompt text as a new version."""
        prompt = self.get_prompt(prompt_id)
        self._check_version(prompt, expected_version)

        target = prompt.find_version(target_version)
        if target is None:
            raise VersionNotFound(prompt_id, target_version)

        self._snapshot(prompt, f"Rolled back to version {target_version}")
        prompt.current_prompt = target.prompt
        prompt.version += 1
        prompt.evolution.last_updated = self._now_iso()

        self.save_prompt(prompt)
        logger.info("Rolled back %s to v%d text (now v%d)", prompt_id, target_version, prompt.version)
        return prompt

    # =========================================================================
    # COOLDOWN
    # =========================================================================

    def set_cooldown(self, prompt_id: str, hours: Optional[float] = None) -> EvolvingPrompt:
        """Exclude a prompt from automatic evolution for the next `hours`."""
        if hours is None:
            hours = self.settings.default_cooldown_hours
        prompt = self.get_prompt(prompt_id)
        until = self._clock() + timedelta(hours=hours)
        prompt.evolution.cooldown_until = to_iso(until)
        self.save_prompt(prompt)
        logger.info("Cooldown on %s until %s", prompt_id, prompt.evolution.cooldown_until)
        return prompt

    def clear_cooldown(self, prompt_id: str) -> EvolvingPrompt:
        prompt = self.get_prompt(prompt_id)
        prompt.evolution.cooldown_until = None
        self.save_prompt(prompt)
        return prompt

    def in_cooldown(self, prompt_id: str) -> bool:
        data = self.kv.get(prompt_id)
        if data is None:
            return False
        until = EvolvingPrompt.from_dict(data).evolution.cooldown_until
        if not until:
            return False
        return parse_iso(until) > self._clock()

    # =========================================================================
    # FEEDBACK AGGREGATIONS
    # =========================================================================

    def store_aggregation(self, aggregation: FeedbackAggregation) -> str:
        key = keys.feedback_agg(
            aggregation.prompt_id, aggregation.period.value, aggregation.start_time
        )
        ttl = self.settings.aggregation_ttl_seconds(aggregation.period.value)
        self.kv.set(key, aggregation.to_dict(), ttl=ttl)
        return key

    def list_aggregations(
        self, prompt_id: str, period: Period, limit: int = 10
    ) -> List[FeedbackAggregation]:
        """Most recent first. Start times are ISO strings, so key order is time order."""
        prefix = keys.feedback_agg_prefix(prompt_id, Period(period).value)
        newest_first = sorted(self.kv.list_keys(prefix), reverse=True)[:limit]
        result = []
        for key in newest_first:
            data = self.kv.get(key)
            if data is not None:
                result.append(FeedbackAggregation.from_dict(data))
        return result

    # =========================================================================
    # USER PREFERENCE PROFILES
    # =========================================================================

    def get_or_create_preference_profile(self, user_id: str) -> UserPreferenceProfile:
        key = keys.user_prefs(user_id)
        data = self.kv.get(key)
        if data is not None:
            return UserPreferenceProfile.from_dict(data)

        profile = UserPreferenceProfile(user_id=user_id)
        profile.learning_history.last_updated = self._now_iso()
        self.kv.set(key, profile.to_dict())
        return profile

    def save_preference_profile(self, profile: UserPreferenceProfile) -> None:
        self.kv.set(keys.user_prefs(profile.user_id), profile.to_dict())

    # =========================================================================
    # MUTATION PROPOSALS
    # =========================================================================

    def store_proposal(self, proposal: MutationProposal) -> str:
        key = keys.proposal(proposal.prompt_id, proposal.new_version)
        self.kv.set(key, proposal.to_dict(), ttl=self.settings.proposal_ttl_seconds)
        return key

    def get_proposal(self, proposal_key: str) -> MutationProposal:
        data = self.kv.get(proposal_key)
        if data is None:
            raise ProposalNotFound(proposal_key)
        return MutationProposal.from_dict(data)

    def list_proposals(self, prompt_id: Optional[str] = None) -> Dict[str, MutationProposal]:
        prefix = keys.PROPOSAL_PREFIX + (f"{prompt_id}:" if prompt_id else "")
        result = {}
        for key in sorted(self.kv.list_keys(prefix)):
            data = self.kv.get(key)
            if data is not None:
                result[key] = MutationProposal.from_dict(data)
        return result

    def delete_proposal(self, proposal_key: str) -> None:
        self.kv.delete(proposal_key)

    # =========================================================================
    # RAW FEEDBACK
    # =========================================================================

    def record_feedback(self, event: RawFeedback, timestamp_ms: Optional[int] = None) -> str:
        """Write a raw feedback event the way the serving layer does."""
        if timestamp_ms is None:
            ts = parse_iso(event.timestamp) if event.timestamp else self._clock()
            timestamp_ms = int(ts.timestamp() * 1000)
        if not event.timestamp:
            event.timestamp = to_iso(datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc))
        key = keys.feedback(event.user_id, timestamp_ms)
        self.kv.set(key, event.to_dict())
        return key

    def list_feedback(
        self,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[RawFeedback]:
        """Raw events in [start, end), ordered by key timestamp."""
        prefix = keys.FEEDBACK_PREFIX + (f"{user_id}:" if user_id else "")
        start_ms = int(start.timestamp() * 1000) if start else None
        end_ms = int(end.timestamp() * 1000) if end else None

        selected = []
        for key in self.kv.list_keys(prefix):
            ts = keys.feedback_timestamp(key)
            if ts is None:
                continue
            if start_ms is not None and ts < start_ms:
                continue
            if end_ms is not None and ts >= end_ms:
                continue
            selected.append((ts, key))

        events = []
        for _, key in sorted(selected):
            data = self.kv.get(key)
            if data is None:
                continue
            try:
                events.append(RawFeedback.from_dict(data))
            except (KeyError, ValueError) as e:
                logger.warning("Skipping malformed feedback %s: %s", key, e)
        return events

    def cleanup_old_feedback(self, days_to_keep: Optional[int] = None) -> int:
        """Delete raw feedback older than days_to_keep. Returns the count deleted."""
        if days_to_keep is None:
            days_to_keep = self.settings.feedback_retention_days
        cutoff_ms = int((self._clock() - timedelta(days=days_to_keep)).timestamp() * 1000)
        deleted = 0
        for key in self.kv.list_keys(keys.FEEDBACK_PREFIX):
            ts = keys.feedback_timestamp(key)
            if ts is not None and ts < cutoff_ms:
                self.kv.delete(key)
                deleted += 1
        if deleted:
            logger.info("Deleted %d feedback events older than %d days", deleted, days_to_keep)
        return deleted
