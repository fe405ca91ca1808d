"""Data models for the conversion and activation pipeline."""
