"""Calbrew Sync - Hebrew-date anniversaries materialized into Google Calendar."""

__version__ = "1.0.0"
