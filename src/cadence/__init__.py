"""
cadence: recurring task series engine.

Subpackages:
- recurrence: rule value object + occurrence calculator
- series: series state, persistence, exceptions (skip dates), scheduler, API
- tasks: concrete task store the scheduler materializes into
- cli: operator console and entrypoint
"""

__version__ = "0.1.0"
