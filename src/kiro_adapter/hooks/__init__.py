"""Kiro hook generation for BMad workflows"""

from .config import HookDescriptor, HookTrigger, HookAction, HookTriggerType, kiro_event_type
from .templates import HookTemplate, TemplateManager
from .generator import HookGenerator, hook_filename

__all__ = [
    'HookDescriptor',
    'HookTrigger',
    'HookAction',
    'HookTriggerType',
    'kiro_event_type',
    'HookTemplate',
    'TemplateManager',
    'HookGenerator',
    'hook_filename',
]
