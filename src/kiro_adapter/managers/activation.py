"""
Activation manager for registered agents.

Owns every AgentInstance and is the only component allowed to change an
instance's status. Activation enforces the concurrency ceiling and a
per-attempt timeout; a failed or timed-out attempt never leaves a
partially built instance behind.
"""

import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .base import BaseManager, ManagerConfig
from ..models.activation import (
    ActivationContext,
    ActivationSession,
    AgentInstance,
    AgentStatus,
    STATUS_TRANSITIONS,
)
from ..registry.agent_registry import AgentRegistry
from ..storage.files import write_json_atomic, read_json
from ..utils.config import ActivationConfig
from ..utils.errors import ActivationError, FailureCategory, ValidationError, classify_error


ContextLike = Union[ActivationContext, Dict[str, Any], None]


class ActivationObserver:
    """Receives activation lifecycle callbacks. Override what you need."""

    async def on_activated(self, instance: AgentInstance, duration_ms: float) -> None:
        pass

    async def on_failed(self, agent_id: str, error: ActivationError, duration_ms: float) -> None:
        pass

    async def on_deactivated(self, instance: AgentInstance, session_time_ms: float) -> None:
        pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivationManager(BaseManager):
    """
    Activates and deactivates registered agents.

    Events: ``agent_activated``, ``agent_activation_failed``,
    ``agent_deactivated``.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        config: Optional[ActivationConfig] = None,
        observers: Optional[List[ActivationObserver]] = None
    ):
        self.config = config or ActivationConfig()
        super().__init__(ManagerConfig(
            name="activation",
            health_check_interval=0
        ))
        self.registry = registry
        self._instances: Dict[str, AgentInstance] = {}
        self._activating: set = set()
        self._sessions: Dict[str, ActivationSession] = {}
        self._observers: List[ActivationObserver] = list(observers or [])
        self._stats = {"activations": 0, "failures": 0, "deactivations": 0, "timeouts": 0}

    def add_observer(self, observer: ActivationObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: ActivationObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    async def _start(self) -> None:
        if self.config.session_cleanup_interval > 0:
            self.run_periodic(
                self.config.session_cleanup_interval,
                self.cleanup_expired_sessions,
                "session-cleanup"
            )

    async def _stop(self) -> None:
        if self.config.persist_state:
            await self.save_state()

    async def _health_check(self) -> Dict[str, Any]:
        return self.get_statistics()

    async def activate_agent(self, agent_id: str, context: ContextLike = None) -> AgentInstance:
        """
        Activate a registered agent and return a snapshot of its instance.

        Activating an agent that is already active returns the existing
        instance instead of creating a second one.

        Raises:
            ActivationError: unregistered id, ceiling reached, handler
                failure or timeout
        """
        activation_context = context if isinstance(context, ActivationContext) else ActivationContext.from_dict(context)
        started = time.perf_counter()

        existing = self._instances.get(agent_id)
        if existing is not None:
            existing.touch()
            self._touch_session(existing.session_id)
            self.logger.debug("agent_already_active", agent_id=agent_id)
            return existing.snapshot()

        entry = self.registry.get_agent(agent_id)
        if entry is None:
            raise await self._fail(
                agent_id,
                f"Agent not registered: {agent_id}",
                activation_context,
                FailureCategory.NOT_FOUND,
                started
            )

        if agent_id in self._activating:
            raise await self._fail(
                agent_id,
                f"Agent {agent_id} is already activating",
                activation_context,
                FailureCategory.CONFLICT,
                started
            )

        limit = self.config.max_concurrent_activations
        if len(self._instances) + len(self._activating) >= limit:
            raise await self._fail(
                agent_id,
                f"Concurrent activation limit reached ({limit})",
                activation_context,
                FailureCategory.CONFLICT,
                started
            )

        handler = entry.activation_handler
        if handler is None:
            raise await self._fail(
                agent_id,
                f"No activation handler for agent {agent_id}",
                activation_context,
                FailureCategory.NOT_FOUND,
                started
            )

        instance = AgentInstance(
            agent_id=agent_id,
            name=entry.agent.name,
            status=AgentStatus.ACTIVATING,
            context=activation_context,
            capabilities=list(entry.agent.capabilities)
        )

        self._activating.add(agent_id)
        try:
            timeout = self.config.activation_timeout_ms / 1000
            try:
                await asyncio.wait_for(handler(activation_context.to_dict()), timeout=timeout)
            except asyncio.TimeoutError:
                self._stats["timeouts"] += 1
                raise await self._fail(
                    agent_id,
                    f"Activation of agent {agent_id} timed out after {self.config.activation_timeout_ms} ms",
                    activation_context,
                    FailureCategory.PERFORMANCE,
                    started
                )
            except Exception as e:
                raise await self._fail(
                    agent_id,
                    f"Activation handler failed for agent {agent_id}: {e}",
                    activation_context,
                    classify_error(e),
                    started,
                    cause=e
                )

            # The registry may have dropped the agent while the handler ran
            if not self.registry.is_registered(agent_id):
                raise await self._fail(
                    agent_id,
                    f"Agent {agent_id} was unregistered during activation",
                    activation_context,
                    FailureCategory.NOT_FOUND,
                    started
                )
        finally:
            self._activating.discard(agent_id)

        now = _utcnow()
        instance.status = AgentStatus.ACTIVE
        instance.activated_at = now
        instance.last_activity = now
        instance.session_id = self._join_session(agent_id, activation_context)
        self._instances[agent_id] = instance
        self._stats["activations"] += 1

        duration_ms = (time.perf_counter() - started) * 1000
        self.logger.info("agent_activated", agent_id=agent_id, duration_ms=round(duration_ms, 2))

        snapshot = instance.snapshot()
        await self._notify_observers(self._observers, "on_activated", snapshot, duration_ms)
        await self._notify_event("agent_activated", {
            "agent_id": agent_id,
            "instance": snapshot.to_dict(),
            "duration_ms": duration_ms
        })
        await self._persist()
        return instance.snapshot()

    async def _fail(
        self,
        agent_id: str,
        message: str,
        context: ActivationContext,
        reason: FailureCategory,
        started: float,
        cause: Optional[Exception] = None
    ) -> ActivationError:
        """Build, log and publish an activation failure; the caller raises it."""
        error = ActivationError(
            message,
            agent_id=agent_id,
            activation_context=context.to_dict(),
            reason=reason,
            cause=cause
        )
        self._stats["failures"] += 1
        duration_ms = (time.perf_counter() - started) * 1000

        self.logger.warning(
            "agent_activation_failed",
            agent_id=agent_id,
            reason=reason.value,
            error=message
        )
        await self._notify_observers(self._observers, "on_failed", agent_id, error, duration_ms)
        await self._notify_event("agent_activation_failed", {
            "agent_id": agent_id,
            "error": error.to_dict(),
            "duration_ms": duration_ms
        })
        return error

    async def deactivate_agent(self, agent_id: str) -> bool:
        """
        Deactivate an agent. Unknown or inactive ids are a no-op.

        Returns True when an active instance was removed.
        """
        instance = self._instances.pop(agent_id, None)
        if instance is None:
            self.logger.debug("deactivate_inactive_agent", agent_id=agent_id)
            return False

        self._leave_session(agent_id, instance.session_id)
        session_time_ms = 0.0
        if instance.activated_at:
            session_time_ms = (_utcnow() - instance.activated_at).total_seconds() * 1000

        instance.status = AgentStatus.INACTIVE
        instance.touch()
        self._stats["deactivations"] += 1
        self.logger.info("agent_deactivated", agent_id=agent_id, session_time_ms=round(session_time_ms, 2))

        snapshot = instance.snapshot()
        await self._notify_observers(self._observers, "on_deactivated", snapshot, session_time_ms)
        await self._notify_event("agent_deactivated", {
            "agent_id": agent_id,
            "instance": snapshot.to_dict(),
            "session_time_ms": session_time_ms
        })
        await self._persist()
        return True

    async def deactivate_all(self) -> int:
        count = 0
        for agent_id in list(self._instances):
            if await self.deactivate_agent(agent_id):
                count += 1
        return count

    def set_instance_status(
        self,
        agent_id: str,
        status: Union[AgentStatus, str],
        error: Optional[str] = None
    ) -> AgentInstance:
        """
        Move an active instance between active, busy, idle and error.

        ``error`` is recorded on the instance when it moves to error. An
        instance in error stays there until it is deactivated.
        """
        status = AgentStatus(status)
        instance = self._instances.get(agent_id)
        if instance is None:
            raise ValidationError("agent_id", agent_id, "Agent is not active")

        allowed = STATUS_TRANSITIONS.get(instance.status, frozenset())
        if status != instance.status and status not in allowed:
            raise ValidationError(
                "status",
                status.value,
                f"Cannot move from {instance.status.value} to {status.value}"
            )

        instance.status = status
        if status == AgentStatus.ERROR:
            instance.error = error or instance.error or "Agent reported an error"
            self.logger.warning("instance_error", agent_id=agent_id, error=instance.error)
        instance.touch()
        self._touch_session(instance.session_id)
        self.logger.debug("instance_status_changed", agent_id=agent_id, status=status.value)
        return instance.snapshot()

    def get_agent_state(self, agent_id: str) -> Optional[AgentInstance]:
        """Snapshot of an agent's instance, or None when it is not active."""
        instance = self._instances.get(agent_id)
        return instance.snapshot() if instance else None

    def is_active(self, agent_id: str) -> bool:
        return agent_id in self._instances

    def get_active_agents(self) -> Dict[str, AgentInstance]:
        return {agent_id: instance.snapshot() for agent_id, instance in self._instances.items()}

    # Sessions

    def _join_session(self, agent_id: str, context: ActivationContext) -> str:
        session_id = context.session_id or f"sess_{uuid.uuid4().hex[:12]}"
        session = self._sessions.get(session_id)
        if session is None:
            session = ActivationSession(session_id=session_id, context=context)
            self._sessions[session_id] = session
        if agent_id not in session.agent_ids:
            session.agent_ids.append(agent_id)
        session.touch()
        return session_id

    def _leave_session(self, agent_id: str, session_id: Optional[str]) -> None:
        session = self._sessions.get(session_id) if session_id else None
        if session is None:
            return
        if agent_id in session.agent_ids:
            session.agent_ids.remove(agent_id)
        if not session.agent_ids:
            del self._sessions[session.session_id]

    def _touch_session(self, session_id: Optional[str]) -> None:
        session = self._sessions.get(session_id) if session_id else None
        if session:
            session.touch()

    def get_session(self, session_id: str) -> Optional[ActivationSession]:
        return self._sessions.get(session_id)

    def get_sessions(self) -> List[ActivationSession]:
        return list(self._sessions.values())

    async def cleanup_expired_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """Deactivate every agent whose session has been idle past the timeout."""
        expired = [
            session for session in self._sessions.values()
            if session.is_expired(self.config.session_timeout_ms, now)
        ]

        deactivated = []
        for session in expired:
            self.logger.info("session_expired", session_id=session.session_id, agents=len(session.agent_ids))
            for agent_id in list(session.agent_ids):
                if await self.deactivate_agent(agent_id):
                    deactivated.append(agent_id)
            self._sessions.pop(session.session_id, None)
        return deactivated

    # State persistence

    async def _persist(self) -> None:
        if self.config.persist_state:
            await self.save_state()

    async def save_state(self) -> None:
        """Write active agents and sessions to the state file."""
        state = {
            "active_agents": [instance.to_dict() for instance in self._instances.values()],
            "sessions": [session.to_dict() for session in self._sessions.values()],
            "saved_at": _utcnow().isoformat(),
        }
        try:
            await write_json_atomic(self.config.state_file, state)
        except OSError as e:
            self.logger.warning("state_save_failed", path=str(self.config.state_file), error=str(e))

    async def load_state(self) -> List[AgentInstance]:
        """
        Read the previously persisted activation state.

        Instances are returned for inspection but are not re-activated.
        """
        try:
            state = await read_json(self.config.state_file)
        except (OSError, ValueError) as e:
            self.logger.warning("state_load_failed", path=str(self.config.state_file), error=str(e))
            return []

        if not state:
            return []
        if not isinstance(state, dict):
            self.logger.warning(
                "state_load_failed",
                path=str(self.config.state_file),
                error=f"expected an object, got {type(state).__name__}"
            )
            return []

        instances = [AgentInstance.from_dict(item) for item in state.get("active_agents", [])]
        self.logger.info("activation_state_loaded", previously_active=len(instances))
        return instances

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "active_agents": len(self._instances),
            "activating": len(self._activating),
            "total_sessions": len(self._sessions),
            "max_concurrent_activations": self.config.max_concurrent_activations,
            "active_agent_ids": list(self._instances),
            "total_activations": self._stats["activations"],
            "total_failures": self._stats["failures"],
            "total_deactivations": self._stats["deactivations"],
            "total_timeouts": self._stats["timeouts"],
            "sessions": [
                {
                    "session_id": s.session_id,
                    "agent_ids": list(s.agent_ids),
                    "created_at": s.created_at.isoformat(),
                    "last_activity": s.last_activity.isoformat(),
                }
                for s in self._sessions.values()
            ],
        }
