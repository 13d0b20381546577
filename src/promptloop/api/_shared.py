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
PromptLoop -- Shared API Utilities

Runtime dependency, live logger access and Pydantic response models shared
across route modules.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from promptloop.core.runtime import PipelineRuntime, build_runtime

logger = logging.getLogger("promptloop.api")


# =============================================================================
# LIVE LOGGER
# =============================================================================


def _get_live_log():
    """The process-wide live operations logger."""
    from promptloop.core.logging import get_logger

    return get_logger()


# =============================================================================
# RUNTIME DEPENDENCY
# =============================================================================

_runtime: Optional[PipelineRuntime] = None


def get_runtime() -> PipelineRuntime:
    """FastAPI dependency. Tests replace it through app.dependency_overrides."""
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


# =============================================================================
# RESPONSE MODELS
# =============================================================================


class AggregationCounts(BaseModel):
    hourly: int = 0
    daily: int = 0
    weekly: int = 0
    monthly: int = 0


class AggregateFeedbackResponse(BaseModel):
    success: bool = True
    aggregations: AggregationCounts
    preferences: int = 0
    timestamp: str


class ProposalPerformance(BaseModel):
    successRate: str
    editRate: str


class ProposalSummaryModel(BaseModel):
    promptId: str
    version: str
    performance: ProposalPerformance
    validation: Dict[str, Any]


class EvolvePromptsResponse(BaseModel):
    success: bool = True
    proposals: List[ProposalSummaryModel]
    timestamp: str


class ErrorResponse(BaseModel):
    error: str
    message: Optional[str] = None


def get_clock():
    """FastAPI dependency returning the clock used to pick due windows."""
    from promptloop.core.store.models import utc_now

    return utc_now
