"""Agent transformation: rules, context injection and output writing."""

from .context_injector import ContextInjector, ContextMapping, FallbackContext, FallbackInstruction
from .rules import (
    ContextAwarenessRule,
    ExpansionPackRule,
    KiroBaseRule,
    SteeringIntegrationRule,
    TransformationRule,
)
from .transformer import AgentTransformer, BatchTransformResult
from .writer import write_converted_agent, write_steering_files

__all__ = [
    'AgentTransformer',
    'BatchTransformResult',
    'ContextInjector',
    'ContextMapping',
    'FallbackContext',
    'FallbackInstruction',
    'TransformationRule',
    'KiroBaseRule',
    'ContextAwarenessRule',
    'SteeringIntegrationRule',
    'ExpansionPackRule',
    'write_converted_agent',
    'write_steering_files',
]
