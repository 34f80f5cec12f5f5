"""Recurring-task scheduling and overdue-notification engine."""

__version__ = "0.1.0"
