"""Workspace filesystem helpers for cloned repositories."""
