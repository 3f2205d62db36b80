"""
Recurrence math.

Components:
- rule.py: RecurrenceRule value object, end conditions, JSON pattern codec
- calculator.py: compute_next / iter_occurrences / OccurrencePreview
"""

from .calculator import OccurrencePreview, compute_next, iter_occurrences, preview_occurrences
from .rule import NEVER, AfterOccurrences, EndCondition, Frequency, Never, OnDate, RecurrenceRule

__all__ = [
    "NEVER",
    "AfterOccurrences",
    "EndCondition",
    "Frequency",
    "Never",
    "OccurrencePreview",
    "OnDate",
    "RecurrenceRule",
    "compute_next",
    "iter_occurrences",
    "preview_occurrences",
]
