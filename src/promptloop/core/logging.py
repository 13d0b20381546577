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
PromptLoop -- Live Operations Logger

Every batch run, evolution decision, proposal and text-generation call is
written to a rotating log file that operators can tail.

LOG LOCATION:
    ~/.promptloop/logs/promptloop.log      (current)
    ~/.promptloop/logs/promptloop.log.1    (previous rotation)

RULES:
    - Single log file, max 10 MB before rotation
    - Log folder purges oldest files once it exceeds 1 GB
    - Human-readable format with key=value fields
    - WARNING and above are mirrored to stderr

USAGE:
    from promptloop.core.logging import get_logger
    log = get_logger()
    log.aggregation("hour", prompts=4, stored=4)
    log.evolution("prompt:developer:global", "evolve", success_rate=0.55)
    log.llm("Drafter", model="gpt-4o", latency_ms=1500)
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# =============================================================================
# CONSTANTS
# =============================================================================

MAX_LOG_FILE_BYTES = 10 * 1024 * 1024  # 10 MB per file
MAX_LOG_FOLDER_BYTES = 1024 * 1024 * 1024  # 1 GB total
LOG_BACKUP_COUNT = 100
LOG_DIR = Path(os.environ.get("PROMPTLOOP_HOME", str(Path.home() / ".promptloop"))) / "logs"
LOG_FILE_NAME = "promptloop.log"


# =============================================================================
# FORMATTER
# =============================================================================


class PromptLoopLogFormatter(logging.Formatter):
    """
    Format: TIMESTAMP | LEVEL | COMPONENT | MESSAGE | {fields}

    Example:
    2025-01-05T13:00:02.114Z | AGG   | Aggregator   | hour cycle complete | prompts=4 stored=4
    2025-01-05T13:00:09.870Z | EVOL  | Evolution    | evolve | prompt="prompt:developer:global"
    """

    LEVEL_WIDTH = 5
    COMPONENT_WIDTH = 12

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        ts = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"

        level = getattr(record, "loop_level", record.levelname)
        component = getattr(record, "component", "System")
        message = record.getMessage()

        fields = getattr(record, "fields", {})
        field_str = ""
        if fields:
            parts = []
            for k, v in fields.items():
                if isinstance(v, str):
                    parts.append(f'{k}="{v}"')
                elif isinstance(v, float):
                    parts.append(f"{k}={v:.3f}")
                else:
                    parts.append(f"{k}={v}")
            field_str = " | " + " ".join(parts)

        return (
            f"{ts} | {level:<{self.LEVEL_WIDTH}} | "
            f"{component:<{self.COMPONENT_WIDTH}} | {message}{field_str}"
        )


def _purge_old_logs(log_dir: Path, max_bytes: int = MAX_LOG_FOLDER_BYTES):
    """Delete oldest log files while the folder exceeds max_bytes."""
    try:
        log_files = sorted(
            [f for f in log_dir.iterdir() if f.is_file() and f.name.startswith(LOG_FILE_NAME)],
            key=lambda f: f.stat().st_mtime,
        )
        total_size = sum(f.stat().st_size for f in log_files)
        while total_size > max_bytes and len(log_files) > 1:
            oldest = log_files.pop(0)
            total_size -= oldest.stat().st_size
            oldest.unlink()
    except OSError:
        pass


# =============================================================================
# PROMPTLOOP LOGGER
# =============================================================================


class PromptLoopLogger:
    """
    Component-tagged operations logger.

    Writes to <log_dir>/promptloop.log with 10 MB rotation and mirrors
    warnings to stderr.
    """

    def __init__(self, log_dir: Optional[Path] = None):
        self._log_dir = Path(log_dir) if log_dir else LOG_DIR
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_file = self._log_dir / LOG_FILE_NAME

        self._logger = logging.getLogger("promptloop.live")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False
        self._logger.handlers.clear()

        file_handler = logging.handlers.RotatingFileHandler(
            str(self._log_file),
            maxBytes=MAX_LOG_FILE_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(PromptLoopLogFormatter())
        self._logger.addHandler(file_handler)

        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setLevel(logging.WARNING)
        stderr_handler.setFormatter(PromptLoopLogFormatter())
        self._logger.addHandler(stderr_handler)

        self._run_id = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        _purge_old_logs(self._log_dir)

        self.info("System", "Logger initialized", log_file=str(self._log_file), run=self._run_id)

    def _log(self, level: int, loop_level: str, component: str, message: str, **fields):
        fields["run"] = self._run_id
        record = self._logger.makeRecord(
            name="promptloop.live",
            level=level,
            fn="",
            lno=0,
            msg=message,
            args=(),
            exc_info=None,
        )
        record.component = component
        record.loop_level = loop_level
        record.fields = fields
        self._logger.handle(record)

    # =========================================================================
    # Standard levels
    # =========================================================================

    def info(self, component: str, message: str, **fields):
        self._log(logging.INFO, "INFO", component, message, **fields)

    def warn(self, component: str, message: str, **fields):
        self._log(logging.WARNING, "WARN", component, message, **fields)

    def error(self, component: str, message: str, **fields):
        self._log(logging.ERROR, "ERROR", component, message, **fields)

    def debug(self, component: str, message: str, **fields):
        self._log(logging.DEBUG, "DEBUG", component, message, **fields)

    # =========================================================================
    # Domain events
    # =========================================================================

    def aggregation(self, period: str, prompts: int = 0, stored: int = 0, failed: int = 0, **fields):
        """Log the end of one aggregation cycle."""
        fields.update(period=period, prompts=prompts, stored=stored, failed=failed)
        level = logging.INFO if not failed else logging.WARNING
        self._log(level, "AGG", "Aggregator", f"{period} cycle complete", **fields)

    def evolution(self, prompt_id: str, outcome: str, **fields):
        """Log the decision reached for one prompt."""
        fields.update(prompt=prompt_id)
        self._log(logging.INFO, "EVOL", "Evolution", outcome, **fields)

    def proposal(self, prompt_id: str, action: str, version: str = "", passed: bool = True, **fields):
        """Log a proposal being stored, committed or rejected."""
        fields.update(prompt=prompt_id, version=version, passed=passed)
        level = logging.INFO if passed else logging.WARNING
        self._log(level, "PROP", "Proposals", f"Proposal {action}", **fields)

    def llm(
        self,
        component: str,
        model: str = "",
        latency_ms: int = 0,
        success: bool = True,
        **fields,
    ):
        """Log a text-generation call."""
        fields.update(model=model, latency_ms=latency_ms, success=success)
        level = "LLM" if success else "LLM-E"
        self._log(logging.INFO if success else logging.WARNING, level, component, "LLM call", **fields)

    def cron(self, job: str, status: int = 200, latency_ms: int = 0, **fields):
        """Log a scheduled job invocation."""
        fields.update(job=job, status=status, latency_ms=latency_ms)
        level = logging.INFO if status < 400 else logging.WARNING
        self._log(level, "CRON", "Scheduler", f"{job} -> {status}", **fields)

    @property
    def log_file(self) -> str:
        return str(self._log_file)

    @property
    def log_dir(self) -> str:
        return str(self._log_dir)


# =============================================================================
# SINGLETON
# =============================================================================

_logger_instance: Optional[PromptLoopLogger] = None


def get_logger(log_dir: Optional[Path] = None) -> PromptLoopLogger:
    """Get or create the process-wide PromptLoopLogger."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = PromptLoopLogger(log_dir=log_dir)
    return _logger_instance


def reset_logger() -> None:
    """Drop the singleton so the next get_logger() reopens its handlers."""
    global _logger_instance
    if _logger_instance is not None:
        for handler in list(_logger_instance._logger.handlers):
            handler.close()
        _logger_instance._logger.handlers.clear()
    _logger_instance = None
