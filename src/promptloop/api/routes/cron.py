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
"""PromptLoop -- Scheduler Trigger Routes.

An external scheduler hits these hourly (aggregation) and daily (evolution).
When a cron secret is configured every call must carry
``Authorization: Bearer <secret>``.
"""

import hmac
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from promptloop.api._shared import (
    AggregateFeedbackResponse,
    AggregationCounts,
    EvolvePromptsResponse,
    ProposalPerformance,
    ProposalSummaryModel,
    _get_live_log,
    get_clock,
    get_runtime,
    logger,
)
from promptloop.core.learning.windows import due_periods
from promptloop.core.runtime import PipelineRuntime
from promptloop.core.store.models import Period, to_iso
from promptloop.integrations.notifications import percent

router = APIRouter(prefix="/api/cron")

_COUNT_FIELDS = {
    Period.HOUR: "hourly",
    Period.DAY: "daily",
    Period.WEEK: "weekly",
    Period.MONTH: "monthly",
}


def _authorized(request: Request, secret: str) -> bool:
    if not secret:
        return True
    header = request.headers.get("authorization", "")
    return hmac.compare_digest(header, f"Bearer {secret}")


def _unauthorized(job: str) -> JSONResponse:
    _get_live_log().cron(job, status=401)
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


@router.api_route("/aggregate-feedback", methods=["GET", "POST"])
async def aggregate_feedback(
    request: Request,
    runtime: PipelineRuntime = Depends(get_runtime),
    clock=Depends(get_clock),
):
    """Hourly aggregation, plus daily/weekly/monthly when their boundary is due.

    Each run summarises the window containing ``now``; at 00 UTC that window has
    just opened, so a daily record only fills in if the job is triggered again
    later in the day.
    """
    if not _authorized(request, runtime.settings.cron_secret):
        return _unauthorized("aggregate-feedback")

    start = time.monotonic()
    now = clock()
    try:
        counts = AggregationCounts()
        for period in due_periods(now):
            count = runtime.aggregator.run_cycle(period, now=now)
            setattr(counts, _COUNT_FIELDS[period], count)
            _get_live_log().aggregation(period.value, prompts=count, stored=count)
        preferences = runtime.aggregator.update_all_preferences(Period.HOUR, now=now)
    except Exception as e:
        logger.error("Aggregation cycle failed: %s", e)
        _get_live_log().cron("aggregate-feedback", status=500, error=str(e)[:200])
        return JSONResponse(
            status_code=500, content={"error": "Aggregation failed", "message": str(e)}
        )

    _get_live_log().cron(
        "aggregate-feedback", latency_ms=int((time.monotonic() - start) * 1000)
    )
    return AggregateFeedbackResponse(
        aggregations=counts, preferences=preferences, timestamp=to_iso(clock())
    )


@router.api_route("/evolve-prompts", methods=["GET", "POST"])
async def evolve_prompts(
    request: Request,
    runtime: PipelineRuntime = Depends(get_runtime),
    clock=Depends(get_clock),
):
    """Run one evolution cycle and summarise the proposals it stored."""
    if not _authorized(request, runtime.settings.cron_secret):
        return _unauthorized("evolve-prompts")

    start = time.monotonic()
    try:
        proposals = await runtime.engine.run_evolution_cycle()
    except Exception as e:
        logger.error("Evolution cycle failed: %s", e)
        _get_live_log().cron("evolve-prompts", status=500, error=str(e)[:200])
        return JSONResponse(
            status_code=500, content={"error": "Evolution failed", "message": str(e)}
        )

    log = _get_live_log()
    for prompt_id, outcome in runtime.engine.last_outcomes.items():
        log.evolution(prompt_id, outcome.state.value, error=outcome.error or "")
    log.cron(
        "evolve-prompts",
        latency_ms=int((time.monotonic() - start) * 1000),
        proposals=len(proposals),
    )

    return EvolvePromptsResponse(
        proposals=[
            ProposalSummaryModel(
                promptId=p.prompt_id,
                version=f"{p.original_version} → {p.new_version}",
                performance=ProposalPerformance(
                    successRate=percent(p.performance_summary.success_rate),
                    editRate=percent(p.performance_summary.edit_rate),
                ),
                validation=p.validation_results.to_dict(),
            )
            for p in proposals
        ],
        timestamp=to_iso(clock()),
    )
