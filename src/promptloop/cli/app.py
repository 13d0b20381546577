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
PromptLoop CLI -- Main entry point.

Usage:
    promptloop aggregate [hour|day|week|month]   # Aggregate the current window
    promptloop evolve                            # Run one evolution cycle
    promptloop proposals [prompt-id]             # List pending proposals
    promptloop commit <proposal-key> [reviewer]  # Apply a proposal
    promptloop reject <proposal-key>             # Discard a proposal
    promptloop rollback <prompt-id> <version>    # Restore an older version
    promptloop report <prompt-id> [hours]        # Performance report
    promptloop cleanup [days]                    # Delete old raw feedback
    promptloop serve [port]                      # Start the API server
    promptloop --version                         # Version info
"""

import asyncio
import json
import sys

from promptloop import __version__
from promptloop.core.errors import PromptLoopError

USAGE = __doc__.split("Usage:", 1)[1].rstrip()


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _cmd_aggregate(runtime, args):
    from promptloop.core.store.models import Period

    period = Period(args[0] if args else "hour")
    count = runtime.aggregator.run_cycle(period)
    users = runtime.aggregator.update_all_preferences(period)
    _log().aggregation(period.value, prompts=count, stored=count)
    print(f"Aggregated {count} prompt(s) for the current {period.value}; {users} profile(s) updated.")


def _cmd_evolve(runtime, args):
    proposals = asyncio.run(runtime.engine.run_evolution_cycle())
    log = _log()
    for prompt_id, outcome in runtime.engine.last_outcomes.items():
        log.evolution(prompt_id, outcome.state.value, error=outcome.error or "")
        suffix = f" ({outcome.error})" if outcome.error else ""
        print(f"  {prompt_id}: {' -> '.join(outcome.trail)}{suffix}")
    print(f"{len(proposals)} proposal(s) stored for review.")


def _cmd_proposals(runtime, args):
    proposals = runtime.store.list_proposals(args[0] if args else None)
    if not proposals:
        print("No pending proposals.")
        return
    for key, p in proposals.items():
        s = p.performance_summary
        print(
            f"{key}\n  v{p.original_version} -> v{p.new_version}  "
            f"success={s.success_rate:.1%} edits={s.edit_rate:.1%} proposed={p.proposed_at}"
        )


def _cmd_commit(runtime, args):
    if not args:
        raise SystemExit("usage: promptloop commit <proposal-key> [reviewer]")
    reviewer = args[1] if len(args) > 1 else ""
    prompt = asyncio.run(runtime.engine.commit_proposal(args[0], reviewer=reviewer))
    _log().proposal(prompt.id, "committed", version=str(prompt.version), reviewer=reviewer)
    print(f"{prompt.id} is now version {prompt.version}.")


def _cmd_reject(runtime, args):
    if not args:
        raise SystemExit("usage: promptloop reject <proposal-key>")
    proposal = runtime.engine.reject_proposal(args[0])
    _log().proposal(proposal.prompt_id, "rejected", version=str(proposal.new_version))
    print(f"Discarded {args[0]}.")


def _cmd_rollback(runtime, args):
    if len(args) < 2:
        raise SystemExit("usage: promptloop rollback <prompt-id> <version>")
    prompt = runtime.store.rollback(args[0], int(args[1]))
    print(f"{prompt.id} restored to the text of version {args[1]} as version {prompt.version}.")


def _cmd_report(runtime, args):
    if not args:
        raise SystemExit("usage: promptloop report <prompt-id> [hours]")
    hours = int(args[1]) if len(args) > 1 else 24
    _print_json(runtime.aggregator.generate_performance_report(args[0], hours=hours, days=7))


def _cmd_cleanup(runtime, args):
    days = int(args[0]) if args else None
    deleted = runtime.aggregator.cleanup(days)
    print(f"Deleted {deleted} raw feedback event(s).")


COMMANDS = {
    "aggregate": _cmd_aggregate,
    "evolve": _cmd_evolve,
    "proposals": _cmd_proposals,
    "commit": _cmd_commit,
    "reject": _cmd_reject,
    "rollback": _cmd_rollback,
    "report": _cmd_report,
    "cleanup": _cmd_cleanup,
}


def _log():
    from promptloop.core.logging import get_logger

    return get_logger()


def _serve(args):
    import uvicorn

    port = int(args[0]) if args else 8000
    _log().info("Server", "API server starting", port=port)
    uvicorn.run("promptloop.api.server:app", host="0.0.0.0", port=port)


def main(argv=None, runtime=None) -> int:
    """Main CLI entry point. Returns the process exit code."""
    argv = sys.argv[1:] if argv is None else argv

    if not argv or argv[0] in ("-h", "--help", "help"):
        print(f"Usage:{USAGE}")
        return 0
    if argv[0] == "--version":
        print(f"promptloop {__version__}")
        return 0

    command, args = argv[0], argv[1:]
    if command == "serve":
        _serve(args)
        return 0

    handler = COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command: {command}\nUsage:{USAGE}", file=sys.stderr)
        return 2

    try:
        if runtime is None:
            from promptloop.core.runtime import build_runtime

            runtime = build_runtime()
        handler(runtime, args)
    except (PromptLoopError, ValueError) as e:
        _log().info("CLI", f"{command} failed", error=str(e)[:200])
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
