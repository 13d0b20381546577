"""
Feedback Learning & Prompt Evolution.

Aggregates user feedback into time windows, mines edit patterns, and proposes
validated prompt revisions for human review.
"""

from promptloop.core.learning.aggregator import FeedbackAggregator
from promptloop.core.learning.evolution import PromptEvolutionEngine

__all__ = ["FeedbackAggregator", "PromptEvolutionEngine"]
