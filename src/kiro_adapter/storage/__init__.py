"""Persistence helpers for converted agents, state and metrics."""

from .files import ensure_directory, read_json, write_json_atomic, write_text_atomic

__all__ = ['ensure_directory', 'read_json', 'write_json_atomic', 'write_text_atomic']
