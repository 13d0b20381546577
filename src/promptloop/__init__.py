"""
PromptLoop — Adaptive instruction tuning from user feedback.

Watches how users react to and edit AI suggestions, aggregates that feedback
into time-bucketed statistics, and proposes revised prompts for human review
without ever dropping the prompt's safety boundaries.
"""

from promptloop._version import __version__

__author__ = "PromptLoop Team"
