"""Overdue detection and dismissible notifications."""
