"""Registry of converted agents"""

from .agent_registry import (
    AgentRegistry,
    RegistryObserver,
    default_handler_factory,
    normalize_agent_id,
)

__all__ = [
    'AgentRegistry',
    'RegistryObserver',
    'default_handler_factory',
    'normalize_agent_id',
]
