"""Canonical types and tracing."""
