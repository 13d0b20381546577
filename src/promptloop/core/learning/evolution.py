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
PromptLoop -- Prompt Evolution Engine

Reads aggregated feedback, decides per prompt whether to evolve, maintain or
escalate to a human, drafts a revision with a text-generation model, validates
it and stores it as a proposal.

WHAT THIS DOES:
    1. Sums the last 7 daily aggregations into a PerformanceSummary
    2. Recommends maintain / review / evolve from configured thresholds
    3. Drafts a revised prompt from a structured meta-prompt
    4. Runs the boundary, regression and safety gate
    5. Persists passing drafts as proposals and notifies reviewers

Nothing here changes a live prompt. commit_proposal() is the only path from
a proposal to a new version, and it is invoked by a human.

STATE MACHINE (per prompt, per cycle):
    STABLE -> EVALUATING -> MAINTAIN | REVIEW | EVOLVE
    EVOLVE -> PROPOSAL_DRAFTED -> VALIDATED | REJECTED
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from promptloop.core.errors import GenerationFailed, PromptLoopError, ValidationFailed
from promptloop.core.llm.providers import TextGenerator
from promptloop.core.store import keys
from promptloop.core.store.models import (
    EvolvingPrompt,
    MutationProposal,
    PerformanceSummary,
    Period,
    PromptPerformance,
    Recommendation,
    ValidationResult,
    to_iso,
    utc_now,
)
from promptloop.core.store.versioned import VersionedStore
from promptloop.core.learning.aggregator import sum_metrics
from promptloop.core.learning.patterns import merge_pattern_frequencies
from promptloop.core.learning.validation import MutationValidator
from promptloop.integrations.notifications import NotificationManager, percent

logger = logging.getLogger("promptloop.learning.evolution")

DRAFTER_SYSTEM_PROMPT = (
    "You are an expert prompt engineer. Output only the improved prompt, no explanations."
)


# =============================================================================
# STATE MACHINE
# =============================================================================


class EvolutionState(str, Enum):
    STABLE = "stable"
    EVALUATING = "evaluating"
    MAINTAIN = "maintain"
    REVIEW = "review"
    EVOLVE = "evolve"
    PROPOSAL_DRAFTED = "proposal_drafted"
    VALIDATED = "validated"
    REJECTED = "rejected"


VALID_TRANSITIONS: Dict[EvolutionState, set] = {
    EvolutionState.STABLE: {EvolutionState.EVALUATING},
    EvolutionState.EVALUATING: {
        EvolutionState.MAINTAIN,
        EvolutionState.REVIEW,
        EvolutionState.EVOLVE,
    },
    EvolutionState.EVOLVE: {EvolutionState.PROPOSAL_DRAFTED},
    EvolutionState.PROPOSAL_DRAFTED: {EvolutionState.VALIDATED, EvolutionState.REJECTED},
    EvolutionState.MAINTAIN: set(),
    EvolutionState.REVIEW: set(),
    EvolutionState.VALIDATED: set(),
    EvolutionState.REJECTED: set(),
}

_DECISION_STATES = {
    Recommendation.MAINTAIN: EvolutionState.MAINTAIN,
    Recommendation.REVIEW: EvolutionState.REVIEW,
    Recommendation.EVOLVE: EvolutionState.EVOLVE,
}


class InvalidTransitionError(PromptLoopError, ValueError):
    """Raised when an invalid state transition is attempted."""


@dataclass
class EvolutionOutcome:
    """Where one prompt ended up in one evolution cycle."""

    prompt_id: str
    state: EvolutionState = EvolutionState.STABLE
    summary: Optional[PerformanceSummary] = None
    validation: Optional[ValidationResult] = None
    proposal_key: Optional[str] = None
    error: Optional[str] = None
    trail: List[str] = field(default_factory=lambda: [EvolutionState.STABLE.value])

    def transition(self, new_state: EvolutionState) -> None:
        valid = VALID_TRANSITIONS.get(self.state, set())
        if new_state not in valid:
            raise InvalidTransitionError(
                f"Cannot transition from {self.state.value} to {new_state.value}. "
                f"Valid: {', '.join(s.value for s in valid) or 'none'}"
            )
        self.state = new_state
        self.trail.append(new_state.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "promptId": self.prompt_id,
            "state": self.state.value,
            "trail": list(self.trail),
            "summary": self.summary.to_dict() if self.summary else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "proposalKey": self.proposal_key,
            "error": self.error,
        }


# =============================================================================
# META-PROMPT
# =============================================================================


def build_meta_prompt(current_prompt: str, summary: PerformanceSummary, boundaries) -> str:
    """The instruction sent to the drafting model."""
    patterns = "\n".join(
        f'- "{p["pattern"]}" ({p["frequency"]} times)' for p in summary.top_patterns
    )
    bounds = "\n".join(f"- {b}" for b in boundaries)
    return f"""You are an expert AI Prompt Engineer. Your task is to improve the following prompt based on the provided performance data.

CURRENT PROMPT:
{current_prompt}

PERFORMANCE DATA:
- Success Rate: {percent(summary.success_rate)}
- Edit Rate: {percent(summary.edit_rate)}
- Total Interactions: {summary.total_interactions}

TOP USER EDIT PATTERNS:
{patterns}

IMMUTABLE BOUNDARIES (must be preserved):
{bounds}

TASK:
Propose a new version of the prompt that addresses the performance issues while:
1. Maintaining all immutable boundaries
2. Preserving the core personality and purpose
3. Improving based on the edit patterns observed

Focus particularly on the most frequent edit patterns. For example, if users frequently "shortened response", make the prompt more concise.

OUTPUT ONLY THE NEW PROMPT TEXT, nothing else."""


# =============================================================================
# ENGINE
# =============================================================================


class PromptEvolutionEngine:
    """
    Proposes improvements to evolving prompts.

    Args:
        store: Versioned store holding prompts, aggregations and proposals
        drafter: Text generator that writes revised prompts
        prober: Text generator used by the regression panel (defaults to drafter)
        notifier: Reviewer notifications; None disables them
    """

    def __init__(
        self,
        store: VersionedStore,
        drafter: TextGenerator,
        prober: Optional[TextGenerator] = None,
        notifier: Optional[NotificationManager] = None,
        clock=utc_now,
    ):
        self.store = store
        self.settings = store.settings
        self.drafter = drafter
        self.validator = MutationValidator(prober or drafter, self.settings.validation)
        self.notifier = notifier
        self._clock = clock
        self.last_outcomes: Dict[str, EvolutionOutcome] = {}

    # ── Analysis ─────────────────────────────────────────────────────────

    def recommend(self, success_rate: float, edit_rate: float, total: int) -> Recommendation:
        t = self.settings.thresholds
        if total < t.min_interactions:
            return Recommendation.MAINTAIN
        # Severe cases go to a human before the automatic evolve band is considered
        if success_rate < t.review_success_rate or edit_rate > t.review_edit_rate:
            return Recommendation.REVIEW
        if success_rate < t.success_rate or edit_rate > t.edit_rate:
            return Recommendation.EVOLVE
        return Recommendation.MAINTAIN

    def analyze_performance(self, prompt_id: str) -> PerformanceSummary:
        """Summarise the recent daily aggregations of one prompt."""
        t = self.settings.thresholds
        aggregations = self.store.list_aggregations(prompt_id, Period.DAY, limit=t.lookback_days)
        totals = sum_metrics(aggregations)
        top = merge_pattern_frequencies((a.metrics.patterns for a in aggregations), t.top_patterns)

        return PerformanceSummary(
            prompt_id=prompt_id,
            success_rate=totals.success_rate,
            edit_rate=totals.edit_rate,
            total_interactions=totals.total_interactions,
            top_patterns=top,
            recommendation=self.recommend(
                totals.success_rate, totals.edit_rate, totals.total_interactions
            ),
        )

    # ── Drafting and validation ──────────────────────────────────────────

    async def generate_mutation(
        self, current_prompt: str, summary: PerformanceSummary, boundaries
    ) -> str:
        """Ask the drafting model for a revised prompt."""
        meta_prompt = build_meta_prompt(current_prompt, summary, boundaries)
        text = await self.drafter.generate(DRAFTER_SYSTEM_PROMPT, meta_prompt)
        text = (text or "").strip()
        if not text:
            raise GenerationFailed(f"No prompt generated for {summary.prompt_id}")
        return text

    async def validate_mutation(self, new_prompt: str, boundaries) -> ValidationResult:
        return await self.validator.validate(new_prompt, boundaries)

    async def propose_mutation(
        self,
        prompt: EvolvingPrompt,
        new_prompt: str,
        summary: PerformanceSummary,
        validation: ValidationResult,
    ) -> MutationProposal:
        """Store a validated draft for human review. Refuses failed validations."""
        if not validation.passed:
            raise ValidationFailed(
                f"Refusing to propose a draft for {prompt.id} that failed validation", validation
            )

        proposal = MutationProposal(
            prompt_id=prompt.id,
            original_version=prompt.version,
            new_version=prompt.version + 1,
            original_prompt=prompt.current_prompt,
            proposed_prompt=new_prompt,
            performance_summary=summary,
            validation_results=validation,
            proposed_at=to_iso(self._clock()),
        )
        proposal_key = self.store.store_proposal(proposal)
        logger.info("Proposal stored: %s", proposal_key)

        await self._notify(
            "proposal_ready",
            {
                "prompt_id": prompt.id,
                "proposal_key": proposal_key,
                "original_version": proposal.original_version,
                "new_version": proposal.new_version,
                "success_rate": percent(summary.success_rate),
                "edit_rate": percent(summary.edit_rate),
            },
        )
        return proposal

    async def _notify(self, template: str, params: Dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.notify(template, params)
        except Exception as e:
            logger.error("Notification %s failed: %s", template, e)

    # ── Cycle ────────────────────────────────────────────────────────────

    async def evolve_prompt(self, prompt_id: str) -> EvolutionOutcome:
        """Run the full decision sequence for one prompt."""
        outcome = EvolutionOutcome(prompt_id=prompt_id)
        outcome.transition(EvolutionState.EVALUATING)

        summary = self.analyze_performance(prompt_id)
        outcome.summary = summary
        outcome.transition(_DECISION_STATES[summary.recommendation])

        if outcome.state is EvolutionState.REVIEW:
            await self._notify(
                "review_needed",
                {
                    "prompt_id": prompt_id,
                    "success_rate": percent(summary.success_rate),
                    "edit_rate": percent(summary.edit_rate),
                    "total_interactions": summary.total_interactions,
                },
            )
        if outcome.state is not EvolutionState.EVOLVE:
            return outcome

        prompt = self.store.get_prompt(prompt_id)
        draft = await self.generate_mutation(prompt.current_prompt, summary, prompt.boundaries)
        outcome.transition(EvolutionState.PROPOSAL_DRAFTED)

        validation = await self.validate_mutation(draft, prompt.boundaries)
        outcome.validation = validation
        if not validation.passed:
            outcome.transition(EvolutionState.REJECTED)
            logger.info("Validation failed for %s: %s", prompt_id, "; ".join(validation.details))
            hours = self.settings.rejection_cooldown_hours
            if hours > 0:
                self.store.set_cooldown(prompt_id, hours)
            return outcome

        outcome.transition(EvolutionState.VALIDATED)
        proposal = await self.propose_mutation(prompt, draft, summary, validation)
        outcome.proposal_key = keys.proposal(proposal.prompt_id, proposal.new_version)
        return outcome

    async def run_evolution_cycle(self) -> List[MutationProposal]:
        """
        Evaluate every live prompt once and return the proposals produced.

        Prompts in cooldown are skipped. A failure on one prompt is logged
        and recorded in last_outcomes; the cycle continues.
        """
        logger.info("Starting evolution cycle")
        self.last_outcomes = {}
        proposals: List[MutationProposal] = []

        for prompt_id in self.store.list_prompt_ids():
            try:
                if self.store.in_cooldown(prompt_id):
                    logger.info("Skipping prompt in cooldown: %s", prompt_id)
                    continue
                outcome = await self.evolve_prompt(prompt_id)
            except Exception as e:
                logger.error("Error processing %s: %s", prompt_id, e)
                self.last_outcomes[prompt_id] = EvolutionOutcome(prompt_id=prompt_id, error=str(e))
                continue

            self.last_outcomes[prompt_id] = outcome
            if outcome.proposal_key:
                proposals.append(self.store.get_proposal(outcome.proposal_key))

        logger.info("Completed cycle with %d proposals", len(proposals))
        return proposals

    # ── Human review ─────────────────────────────────────────────────────

    async def commit_proposal(self, proposal_key: str, reviewer: str = "") -> EvolvingPrompt:
        """Apply a stored proposal as the next version, then discard it.

        The commit is a compare-and-swap on the version the proposal was drafted
        against; a prompt that moved on since raises VersionConflict.
        """
        proposal = self.store.get_proposal(proposal_key)
        summary = proposal.performance_summary
        reason = "Approved proposal"
        if reviewer:
            reason += f" (reviewer: {reviewer})"
        if summary.top_patterns:
            reason += ": " + ", ".join(p["pattern"] for p in summary.top_patterns)

        prompt = self.store.commit_evolution(
            proposal.prompt_id,
            proposal.proposed_prompt,
            reason,
            PromptPerformance(
                success_rate=summary.success_rate,
                edit_rate=summary.edit_rate,
                total_interactions=summary.total_interactions,
                last_calculated=to_iso(self._clock()),
            ),
            expected_version=proposal.original_version,
        )
        self.store.delete_proposal(proposal_key)

        await self._notify(
            "proposal_committed",
            {
                "proposal_key": proposal_key,
                "prompt_id": prompt.id,
                "version": prompt.version,
                "reviewer_note": f" by {reviewer}" if reviewer else "",
            },
        )
        return prompt

    def reject_proposal(self, proposal_key: str) -> MutationProposal:
        proposal = self.store.get_proposal(proposal_key)
        self.store.delete_proposal(proposal_key)
        logger.info("Proposal rejected: %s", proposal_key)
        return proposal
