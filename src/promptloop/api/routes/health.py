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
"""PromptLoop -- Health Routes."""

from fastapi import APIRouter

from promptloop._version import __version__

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint (K8s compatible)."""
    return {"status": "healthy", "version": __version__}
