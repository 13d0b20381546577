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
PromptLoop -- Mutation Validation Gate

Three independent checks, all of which must pass:

    boundary    every boundary string appears in the candidate (case-insensitive)
    regression  each panel query, answered through the candidate, yields a
                response of at least min_response_chars
    safety      no injection phrase appears in the candidate

The gate fails closed: a generation error during the regression panel fails
the regression check instead of propagating.
"""

import logging
from typing import Iterable, List, Tuple

from promptloop.core.config import ValidationConfig
from promptloop.core.errors import GenerationFailed
from promptloop.core.llm.providers import TextGenerator
from promptloop.core.store.models import ValidationResult

logger = logging.getLogger("promptloop.learning.validation")


def missing_boundaries(text: str, boundaries: Iterable[str]) -> List[str]:
    lower = text.lower()
    return [b for b in boundaries if b.lower() not in lower]


def injection_hits(text: str, phrases: Iterable[str]) -> List[str]:
    lower = text.lower()
    return [p for p in phrases if p.lower() in lower]


class MutationValidator:
    """Runs the boundary, regression and safety checks for a candidate prompt."""

    def __init__(self, prober: TextGenerator, config: ValidationConfig):
        self.prober = prober
        self.config = config

    async def run_regression(self, candidate: str) -> Tuple[bool, str]:
        """Answer every panel query with the candidate as the system prompt."""
        for query in self.config.regression_queries:
            try:
                response = await self.prober.generate(candidate, query)
            except GenerationFailed as e:
                logger.warning("Regression probe failed on %r: %s", query, e)
                return False, f"Regression probe error on {query!r}: {e}"

            if not response or len(response.strip()) < self.config.min_response_chars:
                return False, (
                    f"Regression response to {query!r} shorter than "
                    f"{self.config.min_response_chars} characters"
                )
        return True, ""

    async def validate(self, candidate: str, boundaries: Iterable[str]) -> ValidationResult:
        details: List[str] = []

        missing = missing_boundaries(candidate, boundaries)
        if missing:
            details.append("Missing required boundaries: " + ", ".join(repr(m) for m in missing))

        regression_ok, regression_detail = await self.run_regression(candidate)
        if not regression_ok:
            details.append(f"Failed regression tests: {regression_detail}")

        hits = injection_hits(candidate, self.config.injection_phrases)
        if hits:
            details.append("Failed safety check: " + ", ".join(repr(h) for h in hits))

        return ValidationResult(
            boundary_check=not missing,
            regression_check=regression_ok,
            safety_check=not hits,
            details=details,
        )
