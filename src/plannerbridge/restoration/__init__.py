"""Planner restoration module.

This module provides the restoration run state, error tracking, conditional
detail updates and the coordinator that restores exported plans into a
target tenant.
"""

from plannerbridge.restoration.context import RunContext
from plannerbridge.restoration.error_tracker import ErrorReport, ErrorTracker

__all__ = [
    "ErrorReport",
    "ErrorTracker",
    "RunContext",
]
