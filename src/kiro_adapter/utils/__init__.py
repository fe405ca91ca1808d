"""Shared utilities: logging, errors, configuration and events."""
