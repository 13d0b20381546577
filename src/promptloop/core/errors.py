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
"""PromptLoop error taxonomy.

Batch cycles catch these per prompt key, log them with context, and move on.
Single operations (commit, rollback, get) let them propagate to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from promptloop.core.store.models import ValidationResult


class PromptLoopError(Exception):
    """Base class for every error raised by the PromptLoop core."""


class NotFound(PromptLoopError, LookupError):
    """An unknown prompt, version, proposal or profile was referenced."""


class PromptNotFound(NotFound):
    def __init__(self, prompt_id: str):
        self.prompt_id = prompt_id
        super().__init__(f"Prompt not found: {prompt_id}")


class VersionNotFound(NotFound):
    def __init__(self, prompt_id: str, version: int):
        self.prompt_id = prompt_id
        self.version = version
        super().__init__(f"Version {version} not found in history of {prompt_id}")


class ProposalNotFound(NotFound):
    def __init__(self, proposal_key: str):
        self.proposal_key = proposal_key
        super().__init__(f"Proposal not found: {proposal_key}")


class MissingBasePrompt(PromptLoopError, ValueError):
    """A new evolving prompt was requested without a base prompt."""

    def __init__(self, prompt_id: str):
        self.prompt_id = prompt_id
        super().__init__(f"Base prompt required for new evolving prompt: {prompt_id}")


class ValidationFailed(PromptLoopError):
    """A candidate prompt did not pass the validation gate."""

    def __init__(self, message: str, result: ValidationResult | None = None):
        self.result = result
        super().__init__(message)

    @property
    def details(self) -> list[str]:
        return list(self.result.details) if self.result else []


class BoundaryViolation(ValidationFailed):
    """A prompt text is missing one or more required boundary strings."""

    def __init__(self, prompt_id: str, missing: list[str]):
        self.prompt_id = prompt_id
        self.missing = missing
        super().__init__(
            f"Prompt {prompt_id} is missing boundaries: " + ", ".join(repr(m) for m in missing)
        )


class GenerationFailed(PromptLoopError):
    """The text-generation service failed or returned nothing usable."""


class StoreUnavailable(PromptLoopError):
    """The key-value store could not be read or written."""


class VersionConflict(PromptLoopError):
    """The stored version differs from the version the caller expected."""

    def __init__(self, prompt_id: str, expected: int, actual: int):
        self.prompt_id = prompt_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict on {prompt_id}: expected {expected}, found {actual}"
        )
