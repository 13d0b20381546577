"""
PromptLoop -- Key Naming

Deterministic key builders. Existing deployments already hold data under
these names, so the formats are frozen:

    prompt:{userType}:{userId|global}
    prompt:proposed:{promptId}:v{newVersion}
    feedback_agg:{promptId}:{period}:{startTime}
    user_prefs:{userId}
    feedback:{userId|anonymous}:{epochMillis}
    learning:{sessionId}
"""

from __future__ import annotations

PROMPT_PREFIX = "prompt:"
PROPOSAL_PREFIX = "prompt:proposed:"
FEEDBACK_AGG_PREFIX = "feedback_agg:"
USER_PREFS_PREFIX = "user_prefs:"
FEEDBACK_PREFIX = "feedback:"

GLOBAL_USER = "global"
ANONYMOUS_USER = "anonymous"


def evolving_prompt(user_type: str, user_id: str | None = None) -> str:
    return f"{PROMPT_PREFIX}{user_type}:{user_id or GLOBAL_USER}"


def proposal(prompt_id: str, new_version: int) -> str:
    return f"{PROPOSAL_PREFIX}{prompt_id}:v{new_version}"


def feedback_agg(prompt_id: str, period: str, start_time: str) -> str:
    return f"{FEEDBACK_AGG_PREFIX}{prompt_id}:{period}:{start_time}"


def feedback_agg_prefix(prompt_id: str, period: str) -> str:
    return f"{FEEDBACK_AGG_PREFIX}{prompt_id}:{period}:"


def user_prefs(user_id: str) -> str:
    return f"{USER_PREFS_PREFIX}{user_id}"


def feedback(user_id: str | None, timestamp_ms: int) -> str:
    return f"{FEEDBACK_PREFIX}{user_id or ANONYMOUS_USER}:{timestamp_ms}"


def learning(session_id: str) -> str:
    return f"learning:{session_id}"


def is_proposal_key(key: str) -> bool:
    return key.startswith(PROPOSAL_PREFIX)


def parse_prompt_id(prompt_id: str) -> tuple[str, str | None]:
    """Split ``prompt:{userType}:{userId}`` into (user_type, user_id).

    ``global`` maps to ``None``: a global prompt collects feedback from every
    user of its segment.
    """
    parts = prompt_id.split(":", 2)
    if len(parts) < 2 or parts[0] != PROMPT_PREFIX.rstrip(":"):
        raise ValueError(f"Not a prompt key: {prompt_id}")
    user_type = parts[1]
    user_id = parts[2] if len(parts) > 2 else GLOBAL_USER
    return user_type, (None if user_id == GLOBAL_USER else user_id)


def feedback_timestamp(key: str) -> int | None:
    """Epoch millis encoded in a ``feedback:`` key, or None if malformed."""
    tail = key.rsplit(":", 1)[-1]
    try:
        return int(tail)
    except ValueError:
        return None
