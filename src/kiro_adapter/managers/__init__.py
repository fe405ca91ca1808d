"""Long-running managers: activation and monitoring"""

from .base import BaseManager, ManagerConfig, ManagerState, HealthStatus
from .activation import ActivationManager, ActivationObserver
from .monitor import ActivationMonitor

__all__ = [
    'BaseManager',
    'ManagerConfig',
    'ManagerState',
    'HealthStatus',
    'ActivationManager',
    'ActivationObserver',
    'ActivationMonitor',
]
