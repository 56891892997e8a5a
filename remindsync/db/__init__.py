"""Persistent store."""
