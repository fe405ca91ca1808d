"""
Kiro Adapter - converts BMad Method agents into Kiro IDE agents.

This package provides the conversion and runtime pipeline:
- Agent discovery and dependency resolution
- Rule-based transformation with context injection
- Workflow hook generation
- Agent registration, activation and monitoring
"""

__version__ = "0.1.0"
__author__ = "BMad Kiro Adapter Team"

from .pipeline import ConversionPipeline, PipelineReport

__all__ = [
    'ConversionPipeline',
    'PipelineReport',
]
