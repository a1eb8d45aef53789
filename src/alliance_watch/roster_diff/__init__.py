"""Roster diff engine for corporation join/leave detection."""

from .engine import DiffResult, diff_rosters, summarize

__all__ = ["DiffResult", "diff_rosters", "summarize"]
