"""Recurring-task period engine."""
