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
PromptLoop -- Edit Pattern Mining

Labels what a user changed when they rewrote a suggestion. The heuristics are
keyword lists from MiningVocabulary so deployments can extend them.

User edits are the strongest signal we get: they show exactly what was wanted.
"""

import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

from promptloop.core.config import MiningVocabulary
from promptloop.core.store.models import (
    MAX_PATTERNS,
    EditPattern,
    FeedbackKind,
    RawFeedback,
)

logger = logging.getLogger("promptloop.learning.patterns")

# ── Pattern labels ───────────────────────────────────────────────────────

SHORTENED = "shortened response"
EXPANDED = "expanded response"
REMOVED_JARGON = "removed technical jargon"
ADDED_EXAMPLES = "added specific examples"
MORE_CONVERSATIONAL = "made more conversational"
MORE_FORMAL = "made more formal"

_TOKEN_RE = re.compile(r"[a-z0-9']+")


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens, punctuation stripped."""
    return _TOKEN_RE.findall(text.lower())


def _contains(tokens: List[str], joined: str, term: str) -> bool:
    """Whole-word match for single words, padded substring match for phrases."""
    if " " in term:
        return f" {term} " in joined
    return term in tokens


def _introduced(original: str, edited: str, terms: Iterable[str]) -> List[str]:
    o_tokens, e_tokens = tokenize(original), tokenize(edited)
    o_joined, e_joined = f" {' '.join(o_tokens)} ", f" {' '.join(e_tokens)} "
    return [
        t
        for t in terms
        if not _contains(o_tokens, o_joined, t) and _contains(e_tokens, e_joined, t)
    ]


def _removed(original: str, edited: str, terms: Iterable[str]) -> List[str]:
    return _introduced(edited, original, terms)


def technical_term_changes(
    original: str, edited: str, vocab: MiningVocabulary
) -> Tuple[List[str], List[str]]:
    """(removed, added) technical terms between the two texts."""
    return (
        _removed(original, edited, vocab.technical_terms),
        _introduced(original, edited, vocab.technical_terms),
    )


def analyze_edit(original: str, edited: str, vocab: Optional[MiningVocabulary] = None) -> List[str]:
    """Return every pattern label that applies to one (original, edited) pair."""
    vocab = vocab or MiningVocabulary()
    patterns: List[str] = []

    if len(edited) < len(original) * vocab.shorten_ratio:
        patterns.append(SHORTENED)
    elif len(edited) > len(original) * vocab.expand_ratio:
        patterns.append(EXPANDED)

    if _removed(original, edited, vocab.technical_terms):
        patterns.append(REMOVED_JARGON)

    if _introduced(original, edited, vocab.context_phrases):
        patterns.append(ADDED_EXAMPLES)

    added_casual = len(_introduced(original, edited, vocab.casual_words))
    added_formal = len(_introduced(original, edited, vocab.formal_words))
    if added_casual > added_formal:
        patterns.append(MORE_CONVERSATIONAL)
    elif added_formal > added_casual:
        patterns.append(MORE_FORMAL)

    return patterns


def minable_edits(events: Iterable[RawFeedback]) -> List[RawFeedback]:
    """Edit events that carry both the original suggestion and the edited text."""
    return [
        e
        for e in events
        if e.feedback is FeedbackKind.EDIT and e.edited_content and e.original_suggestion
    ]


def identify_edit_patterns(
    events: Iterable[RawFeedback], vocab: Optional[MiningVocabulary] = None
) -> List[EditPattern]:
    """
    Mine a batch of feedback events for edit patterns.

    Events are processed in timestamp order so each pattern keeps its three
    most recent examples. Returns the top 10 patterns by frequency; ties keep
    first-seen order.
    """
    ordered = sorted(minable_edits(events), key=lambda e: e.timestamp)
    found: Dict[str, EditPattern] = {}

    for event in ordered:
        for label in analyze_edit(event.original_suggestion, event.edited_content, vocab):
            existing = found.get(label)
            if existing is None:
                found[label] = EditPattern(pattern=label, frequency=1, examples=[event.edited_content])
            else:
                existing.frequency += 1
                existing.add_example(event.edited_content)

    ranked = sorted(found.values(), key=lambda p: p.frequency, reverse=True)
    logger.debug("Mined %d pattern labels from %d edits", len(ranked), len(ordered))
    return ranked[:MAX_PATTERNS]


def merge_pattern_frequencies(pattern_lists: Iterable[Iterable[EditPattern]], limit: int) -> List[dict]:
    """Sum frequencies per label across aggregations, top `limit` by frequency."""
    totals: Dict[str, int] = {}
    for patterns in pattern_lists:
        for p in patterns:
            totals[p.pattern] = totals.get(p.pattern, 0) + p.frequency
    ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
    return [{"pattern": label, "frequency": freq} for label, freq in ranked[:limit]]
