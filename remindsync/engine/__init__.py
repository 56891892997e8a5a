"""Scheduling and reconciliation engine."""
