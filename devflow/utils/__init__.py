"""Shared utilities: structured logging setup and retry helpers."""
