"""
Agent registry for converted BMad agents.

The registry is the only component that adds or removes entries. It
validates agents structurally, retries transient registration failures
with exponential backoff, and creates a per-agent activation handler that
the activation manager invokes.
"""

import asyncio
import re
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..models.agent import ConvertedAgent, RegisteredAgentEntry, RegistrationResult
from ..utils.config import RegistryConfig
from ..utils.errors import RegistrationError, ValidationError, KiroAdapterError
from ..utils.events import EventEmitter
from ..utils.logging import get_logger


logger = get_logger("kiro-adapter.registry")

RegistrationStep = Callable[[ConvertedAgent], Awaitable[None]]
ActivationHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]
HandlerFactory = Callable[[ConvertedAgent], ActivationHandler]


class RegistryObserver:
    """Receives registry lifecycle callbacks. Override what you need."""

    async def on_registered(self, entry: RegisteredAgentEntry) -> None:
        pass

    async def on_unregistered(self, agent_id: str) -> None:
        pass

    async def on_error(self, agent_id: str, error: Exception) -> None:
        pass


def normalize_agent_id(agent_id: str) -> str:
    """Lowercase an id and collapse anything outside ``[a-z0-9-]`` into single dashes."""
    normalized = re.sub(r"[^a-z0-9-]", "-", agent_id.lower())
    normalized = re.sub(r"-+", "-", normalized)
    return normalized.strip("-")


def default_handler_factory(agent: ConvertedAgent) -> ActivationHandler:
    """Build the handler that prepares an agent for activation."""

    async def activate(context: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug(
            "activation_handler_invoked",
            agent_id=agent.id,
            steering_rules=len(agent.integration.steering_rules)
        )
        return {
            "agent_id": agent.id,
            "name": agent.name,
            "capabilities": list(agent.capabilities),
            "context_providers": list(agent.context_providers),
            "steering_rules": list(agent.integration.steering_rules),
        }

    activate.__name__ = agent.integration.activation_handler or f"activate_{agent.id}"
    return activate


class AgentRegistry(EventEmitter):
    """
    In-memory registry of converted agents.

    Events: ``agent_registered``, ``agent_unregistered``, ``error``.
    """

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        observers: Optional[List[RegistryObserver]] = None,
        registration_step: Optional[RegistrationStep] = None,
        handler_factory: Optional[HandlerFactory] = None
    ):
        super().__init__("kiro-adapter.registry.events")
        self.config = config or RegistryConfig()
        self._agents: Dict[str, RegisteredAgentEntry] = {}
        self._errors: Dict[str, RegistrationError] = {}
        self._observers: List[RegistryObserver] = list(observers or [])
        self._registration_step = registration_step
        self._handler_factory = handler_factory or default_handler_factory

    def add_observer(self, observer: RegistryObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: RegistryObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before the retry that follows failed ``attempt`` (1-based)."""
        delay = self.config.retry_delay_ms * (2 ** (attempt - 1))
        return min(delay, self.config.max_retry_delay_ms)

    def validate_agent(self, agent: ConvertedAgent) -> None:
        """Raise ValidationError when an agent cannot be registered."""
        if not agent.id:
            raise ValidationError("id", agent.id, "Agent id is required")
        if not agent.name:
            raise ValidationError("name", agent.name, "Agent name is required")
        if agent.integration is None:
            raise ValidationError("integration", None, "Integration bundle is required")

    async def register_agent(self, agent: ConvertedAgent) -> RegistrationResult:
        """
        Register an agent, retrying transient failures.

        Raises:
            ValidationError: the agent is structurally invalid (not retried)
            RegistrationError: every attempt failed, or the activation handler
                could not be created
        """
        self.validate_agent(agent)

        attempts = self.config.retry_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                if self._registration_step:
                    await self._registration_step(agent)
            except Exception as e:
                last_error = e
                logger.warning(
                    "registration_attempt_failed",
                    agent_id=agent.id,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(e)
                )
                if attempt < attempts:
                    await asyncio.sleep(self.backoff_delay_ms(attempt) / 1000)
                continue

            retry_count = attempt - 1
            try:
                handler = self._handler_factory(agent)
            except Exception as e:
                error = RegistrationError(
                    f"Could not create an activation handler for agent '{agent.id}': {e}",
                    agent_id=agent.id,
                    retry_count=retry_count,
                    cause=e
                )
                self._errors[agent.id] = error
                logger.error("activation_handler_failed", agent_id=agent.id, error=str(e))
                await self._report_error(agent.id, error)
                raise error

            entry = RegisteredAgentEntry(
                agent=agent,
                registered_at=datetime.now(timezone.utc),
                retry_count=retry_count,
                activation_handler=handler
            )

            # Another caller may have registered the same id while we slept
            if agent.id in self._agents:
                logger.info("agent_reregistered", agent_id=agent.id)

            self._agents[agent.id] = entry
            self._errors.pop(agent.id, None)

            logger.info("agent_registered", agent_id=agent.id, retry_count=retry_count)
            await self._notify_observers(self._observers, "on_registered", entry)
            await self._notify_event("agent_registered", {"agent_id": agent.id, "retry_count": retry_count})
            return RegistrationResult(agent_id=agent.id, success=True, retry_count=retry_count)

        error = RegistrationError(
            f"Registration of agent '{agent.id}' failed after {attempts} attempts: {last_error}",
            agent_id=agent.id,
            retry_count=attempts - 1,
            cause=last_error
        )
        self._errors[agent.id] = error
        logger.error("agent_registration_failed", agent_id=agent.id, attempts=attempts, error=str(last_error))
        await self._report_error(agent.id, error)
        raise error

    async def register_batch(self, agents: List[ConvertedAgent]) -> List[RegistrationResult]:
        """Register agents one by one, reporting a result per agent in input order."""
        results = []
        for agent in agents:
            try:
                results.append(await self.register_agent(agent))
            except RegistrationError as e:
                results.append(RegistrationResult(
                    agent_id=agent.id,
                    success=False,
                    retry_count=e.retry_count,
                    error=e.message
                ))
            except ValidationError as e:
                await self._report_error(agent.id, e)
                results.append(RegistrationResult(agent_id=agent.id, success=False, error=e.message))
            except Exception as e:
                logger.error(
                    "agent_registration_error",
                    agent_id=agent.id,
                    error=str(e),
                    error_type=type(e).__name__
                )
                results.append(RegistrationResult(agent_id=agent.id, success=False, error=str(e)))

        logger.info(
            "batch_registration_complete",
            total=len(results),
            succeeded=sum(1 for r in results if r.success)
        )
        return results

    async def unregister_agent(self, agent_id: str) -> bool:
        """Remove an agent. Returns False when it was not registered."""
        if self._agents.pop(agent_id, None) is None:
            logger.debug("unregister_unknown_agent", agent_id=agent_id)
            return False

        logger.info("agent_unregistered", agent_id=agent_id)
        await self._notify_observers(self._observers, "on_unregistered", agent_id)
        await self._notify_event("agent_unregistered", {"agent_id": agent_id})
        return True

    async def _report_error(self, agent_id: str, error: KiroAdapterError) -> None:
        await self._notify_observers(self._observers, "on_error", agent_id, error)
        await self._notify_event("error", {"agent_id": agent_id, "error": error.to_dict()})

    def get_registered_agents(self) -> Dict[str, RegisteredAgentEntry]:
        """Copy of the registry map; mutating it does not affect the registry."""
        return dict(self._agents)

    def is_registered(self, agent_id: str) -> bool:
        return agent_id in self._agents

    def get_agent(self, agent_id: str) -> Optional[RegisteredAgentEntry]:
        return self._agents.get(agent_id)

    def get_activation_handler(self, agent_id: str) -> Optional[ActivationHandler]:
        entry = self._agents.get(agent_id)
        return entry.activation_handler if entry else None

    def set_activation_handler(self, agent_id: str, handler: Optional[ActivationHandler]) -> None:
        """Replace the activation handler of a registered agent."""
        entry = self._agents.get(agent_id)
        if entry is None:
            raise ValidationError("agent_id", agent_id, "Agent is not registered")
        entry.activation_handler = handler

    def get_registration_errors(self) -> Dict[str, RegistrationError]:
        return dict(self._errors)

    def get_statistics(self) -> Dict[str, Any]:
        by_source = Counter(entry.agent.source.value for entry in self._agents.values())
        return {
            "total_registered": len(self._agents),
            "total_errors": len(self._errors),
            "by_source": dict(by_source),
            "total_retries": sum(entry.retry_count for entry in self._agents.values()),
            "registered_agent_ids": list(self._agents),
            "error_agent_ids": list(self._errors),
        }

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents
