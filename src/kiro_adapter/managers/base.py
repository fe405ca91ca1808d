"""
Base manager abstract class for long-running adapter components.

This module provides the foundation for the activation manager and monitor with:
- Lifecycle management (initialize/start/stop)
- Named event notification
- Periodic background tasks
- Health checking
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Callable, Awaitable
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ..utils.events import EventEmitter
from ..utils.logging import get_logger


class ManagerState(Enum):
    """Manager lifecycle states."""
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    ERROR = "error"


class ManagerError(Exception):
    """Base exception for manager lifecycle errors."""
    pass


class ManagerNotReadyError(ManagerError):
    """Raised when a manager is started before initialization."""
    pass


class ManagerAlreadyRunningError(ManagerError):
    """Raised when trying to start an already running manager."""
    pass


@dataclass
class ManagerConfig:
    """Base configuration for all managers."""
    name: str
    enable_notifications: bool = True
    health_check_interval: float = 60  # seconds, 0 disables the loop
    custom_config: Dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthStatus:
    """Health status information."""
    healthy: bool
    last_check: datetime
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class BaseManager(EventEmitter, ABC):
    """
    Abstract base class for manager components.

    Operations work in any state; ``start()`` only adds background work
    (the health loop and any periodic tasks registered by subclasses).
    """

    def __init__(self, config: ManagerConfig):
        super().__init__(f"kiro-adapter.managers.{config.name}")
        self.manager_config = config
        self.logger = get_logger(f"kiro-adapter.managers.{config.name}")
        self.state = ManagerState.UNINITIALIZED
        self._health_status = HealthStatus(healthy=True, last_check=datetime.now(timezone.utc))
        self._health_task: Optional[asyncio.Task] = None
        self._tasks: List[asyncio.Task] = []

    @property
    def is_ready(self) -> bool:
        """Check if manager is ready for operations."""
        return self.state in (ManagerState.READY, ManagerState.RUNNING)

    @property
    def is_running(self) -> bool:
        """Check if manager is actively running."""
        return self.state == ManagerState.RUNNING

    async def initialize(self) -> None:
        """Perform component setup and transition to READY."""
        if self.state not in (ManagerState.UNINITIALIZED, ManagerState.STOPPED):
            raise ManagerError(f"Cannot initialize from state: {self.state}")

        self.state = ManagerState.INITIALIZING
        self.logger.info("initializing_manager", manager=self.manager_config.name)

        try:
            await self._initialize()
            self.state = ManagerState.READY
            self.logger.info("manager_initialized")
        except Exception as e:
            self.state = ManagerState.ERROR
            self.logger.error("initialization_failed", error=str(e), exc_info=True)
            raise ManagerError(f"Failed to initialize {self.manager_config.name}: {e}") from e

    async def start(self) -> None:
        """Start background work. Initializes first when needed."""
        if self.state in (ManagerState.UNINITIALIZED, ManagerState.STOPPED):
            await self.initialize()

        if self.is_running:
            raise ManagerAlreadyRunningError(f"Manager {self.manager_config.name} already running")

        if not self.is_ready:
            raise ManagerNotReadyError(f"Manager {self.manager_config.name} not ready")

        self.state = ManagerState.STARTING
        self.logger.info("starting_manager")

        try:
            await self._start()

            if self.manager_config.health_check_interval > 0:
                self._health_task = asyncio.create_task(self._health_monitor())
                self._tasks.append(self._health_task)

            self.state = ManagerState.RUNNING
            self.logger.info("manager_started")
        except Exception as e:
            self.state = ManagerState.ERROR
            self.logger.error("start_failed", error=str(e), exc_info=True)
            raise ManagerError(f"Failed to start {self.manager_config.name}: {e}") from e

    async def stop(self) -> None:
        """Cancel background work and run component cleanup."""
        if not self.is_running:
            self.logger.debug("stop_called_when_not_running", state=self.state.value)
            return

        self.state = ManagerState.STOPPING
        self.logger.info("stopping_manager")

        try:
            for task in self._tasks:
                if not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass
            self._tasks.clear()
            self._health_task = None

            await self._stop()

            self.state = ManagerState.STOPPED
            self.logger.info("manager_stopped")
        except Exception as e:
            self.state = ManagerState.ERROR
            self.logger.error("stop_failed", error=str(e), exc_info=True)
            raise ManagerError(f"Failed to stop {self.manager_config.name}: {e}") from e

    async def health_check(self) -> HealthStatus:
        """Run the component health check and record the outcome."""
        try:
            details = await self._health_check()
            self._health_status = HealthStatus(
                healthy=True,
                last_check=datetime.now(timezone.utc),
                details=details
            )
        except Exception as e:
            self._health_status = HealthStatus(
                healthy=False,
                last_check=datetime.now(timezone.utc),
                error=str(e)
            )
            self.logger.error("health_check_failed", error=str(e))

        return self._health_status

    def run_periodic(self, interval: float, func: Callable[[], Awaitable[Any]], name: str) -> asyncio.Task:
        """Schedule ``func`` every ``interval`` seconds until the manager stops."""

        async def loop():
            while True:
                try:
                    await asyncio.sleep(interval)
                    await func()
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    self.logger.error("periodic_task_error", task=name, error=str(e))

        task = asyncio.create_task(loop(), name=name)
        self._tasks.append(task)
        return task

    async def _notify_event(self, event: str, data: Dict[str, Any]) -> None:
        if not self.manager_config.enable_notifications:
            return
        await super()._notify_event(event, data)

    async def _health_monitor(self) -> None:
        """Background task for health monitoring."""
        while True:
            try:
                await asyncio.sleep(self.manager_config.health_check_interval)
                await self.health_check()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("health_monitor_error", error=str(e))

    async def _initialize(self) -> None:
        """Component-specific initialization logic."""
        pass

    async def _start(self) -> None:
        """Component-specific start logic."""
        pass

    async def _stop(self) -> None:
        """Component-specific stop logic."""
        pass

    @abstractmethod
    async def _health_check(self) -> Dict[str, Any]:
        """Component-specific health check logic."""
        pass
