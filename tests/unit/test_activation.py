"""
Unit tests for ActivationManager.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from kiro_adapter.managers.activation import ActivationManager, ActivationObserver
from kiro_adapter.models.activation import ActivationContext, AgentStatus
from kiro_adapter.utils.config import ActivationConfig
from kiro_adapter.utils.errors import ActivationError, FailureCategory, ValidationError


class RecordingObserver(ActivationObserver):
    def __init__(self):
        self.activated = []
        self.failed = []
        self.deactivated = []

    async def on_activated(self, instance, duration_ms):
        self.activated.append(instance.agent_id)

    async def on_failed(self, agent_id, error, duration_ms):
        self.failed.append((agent_id, error.failure_category))

    async def on_deactivated(self, instance, session_time_ms):
        self.deactivated.append(instance.agent_id)


def slow_handler(seconds: float):
    async def handler(context):
        await asyncio.sleep(seconds)
        return {}
    return handler


async def failing_handler(context):
    raise RuntimeError("permission denied for workspace")


@pytest.fixture
async def registered(registry, make_converted):
    """Registry with dev, qa and sm registered."""
    for agent_id in ("dev", "qa", "sm"):
        await registry.register_agent(make_converted(agent_id))
    return registry


def make_manager(registry, temp_dir, **overrides) -> ActivationManager:
    settings = {
        "session_cleanup_interval": 0,
        "state_file": temp_dir / "state" / "agent-state.json",
    }
    settings.update(overrides)
    return ActivationManager(registry, ActivationConfig(**settings))


class TestActivation:
    """Test activating agents."""

    @pytest.mark.asyncio
    async def test_activate_agent(self, registered, activation_manager):
        """Test a registered agent becomes active."""
        instance = await activation_manager.activate_agent("dev", {"user_id": "u1", "project_id": "p1"})

        assert instance.agent_id == "dev"
        assert instance.status == AgentStatus.ACTIVE
        assert instance.activated_at is not None
        assert instance.session_id is not None
        assert instance.context.user_id == "u1"
        assert instance.capabilities == ["help"]
        assert activation_manager.is_active("dev")

    @pytest.mark.asyncio
    async def test_activate_twice_returns_existing(self, registered, activation_manager):
        """Test re-activating an active agent reuses its instance."""
        first = await activation_manager.activate_agent("dev")
        second = await activation_manager.activate_agent("dev", ActivationContext(user_id="other"))

        assert first.instance_id == second.instance_id
        assert len(activation_manager.get_active_agents()) == 1

    @pytest.mark.asyncio
    async def test_unregistered_agent(self, registered, activation_manager):
        """Test unknown agents are rejected as not found."""
        events = []
        activation_manager.register_event_handler("agent_activation_failed", lambda e, d: events.append(d))

        with pytest.raises(ActivationError) as exc_info:
            await activation_manager.activate_agent("ghost")

        assert exc_info.value.failure_category == FailureCategory.NOT_FOUND
        assert exc_info.value.agent_id == "ghost"
        assert events[0]["agent_id"] == "ghost"
        assert not activation_manager.is_active("ghost")

    @pytest.mark.asyncio
    async def test_concurrency_ceiling(self, registered, temp_dir):
        """Test a second activation is refused at a ceiling of one."""
        manager = make_manager(registered, temp_dir, max_concurrent_activations=1)

        await manager.activate_agent("dev")
        with pytest.raises(ActivationError, match="Concurrent activation limit reached") as exc_info:
            await manager.activate_agent("qa")

        assert exc_info.value.failure_category == FailureCategory.CONFLICT
        assert list(manager.get_active_agents()) == ["dev"]

        await manager.deactivate_agent("dev")
        instance = await manager.activate_agent("qa")
        assert instance.status == AgentStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_concurrent_activation_of_same_agent(self, registered, activation_manager):
        """Test simultaneous activations of one agent produce one instance."""
        registered.set_activation_handler("dev", slow_handler(0.05))

        results = await asyncio.gather(
            activation_manager.activate_agent("dev"),
            activation_manager.activate_agent("dev"),
            return_exceptions=True
        )

        errors = [r for r in results if isinstance(r, ActivationError)]
        assert len(errors) == 1
        assert errors[0].failure_category == FailureCategory.CONFLICT
        assert len(activation_manager.get_active_agents()) == 1

    @pytest.mark.asyncio
    async def test_activation_timeout(self, registered, temp_dir):
        """Test a slow handler times out and leaves nothing behind."""
        manager = make_manager(registered, temp_dir, activation_timeout_ms=50)
        registered.set_activation_handler("dev", slow_handler(1.0))

        with pytest.raises(ActivationError) as exc_info:
            await manager.activate_agent("dev")

        assert exc_info.value.failure_category == FailureCategory.PERFORMANCE
        assert "timed out" in exc_info.value.message
        assert not manager.is_active("dev")
        assert manager.get_statistics()["total_timeouts"] == 1
        assert manager.get_statistics()["activating"] == 0

    @pytest.mark.asyncio
    async def test_handler_failure(self, registered, activation_manager):
        """Test handler exceptions are classified and wrapped."""
        observer = RecordingObserver()
        activation_manager.add_observer(observer)
        registered.set_activation_handler("dev", failing_handler)

        with pytest.raises(ActivationError) as exc_info:
            await activation_manager.activate_agent("dev")

        assert exc_info.value.failure_category == FailureCategory.PERMISSION
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert observer.failed == [("dev", FailureCategory.PERMISSION)]
        assert not activation_manager.is_active("dev")

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_fail_activation(self, registered, activation_manager):
        """Test observer errors never turn a completed activation into a failure."""

        class BrokenObserver(ActivationObserver):
            async def on_activated(self, instance, duration_ms):
                raise RuntimeError("observer down")

            async def on_deactivated(self, instance, session_time_ms):
                raise RuntimeError("observer down")

        recorder = RecordingObserver()
        activation_manager.add_observer(BrokenObserver())
        activation_manager.add_observer(recorder)

        instance = await activation_manager.activate_agent("dev")

        assert instance.status == AgentStatus.ACTIVE
        assert recorder.activated == ["dev"]
        assert await activation_manager.deactivate_agent("dev") is True
        assert recorder.deactivated == ["dev"]

    @pytest.mark.asyncio
    async def test_missing_handler(self, registered, activation_manager):
        """Test agents without a handler cannot be activated."""
        registered.set_activation_handler("dev", None)

        with pytest.raises(ActivationError) as exc_info:
            await activation_manager.activate_agent("dev")

        assert exc_info.value.failure_category == FailureCategory.NOT_FOUND

    @pytest.mark.asyncio
    async def test_unregistered_during_activation(self, registered, activation_manager):
        """Test an agent removed while its handler runs is not activated."""

        async def handler(context):
            await registered.unregister_agent("dev")
            return {}

        registered.set_activation_handler("dev", handler)

        with pytest.raises(ActivationError, match="unregistered during activation"):
            await activation_manager.activate_agent("dev")

        assert not activation_manager.is_active("dev")


class TestDeactivation:
    """Test deactivating agents."""

    @pytest.mark.asyncio
    async def test_deactivate_is_idempotent(self, registered, activation_manager):
        """Test deactivating twice is a no-op the second time."""
        observer = RecordingObserver()
        activation_manager.add_observer(observer)
        await activation_manager.activate_agent("dev")

        assert await activation_manager.deactivate_agent("dev") is True
        assert await activation_manager.deactivate_agent("dev") is False
        assert await activation_manager.deactivate_agent("ghost") is False
        assert observer.deactivated == ["dev"]
        assert activation_manager.get_agent_state("dev") is None

    @pytest.mark.asyncio
    async def test_deactivate_all(self, registered, activation_manager):
        """Test every active agent is deactivated."""
        await activation_manager.activate_agent("dev")
        await activation_manager.activate_agent("qa")

        assert await activation_manager.deactivate_all() == 2
        assert activation_manager.get_active_agents() == {}


class TestInstanceState:
    """Test instance status and snapshots."""

    @pytest.mark.asyncio
    async def test_snapshots_are_detached(self, registered, activation_manager):
        """Test mutating a returned instance does not affect the manager."""
        await activation_manager.activate_agent("dev")

        state = activation_manager.get_agent_state("dev")
        state.status = AgentStatus.ERROR
        state.capabilities.append("hacked")

        current = activation_manager.get_agent_state("dev")
        assert current.status == AgentStatus.ACTIVE
        assert current.capabilities == ["help"]

    @pytest.mark.asyncio
    async def test_status_transitions(self, registered, activation_manager):
        """Test allowed and rejected status changes."""
        await activation_manager.activate_agent("dev")

        assert activation_manager.set_instance_status("dev", "busy").status == AgentStatus.BUSY
        assert activation_manager.set_instance_status("dev", AgentStatus.IDLE).status == AgentStatus.IDLE

        with pytest.raises(ValidationError):
            activation_manager.set_instance_status("dev", AgentStatus.ACTIVATING)
        with pytest.raises(ValidationError):
            activation_manager.set_instance_status("qa", AgentStatus.BUSY)

    @pytest.mark.asyncio
    async def test_error_status_then_deactivate(self, registered, activation_manager):
        """Test a busy instance can fail and is then deactivated."""
        statuses = []

        class StatusObserver(ActivationObserver):
            async def on_deactivated(self, instance, session_time_ms):
                statuses.append(instance.status)

        activation_manager.add_observer(StatusObserver())
        await activation_manager.activate_agent("dev")
        activation_manager.set_instance_status("dev", AgentStatus.BUSY)

        failed = activation_manager.set_instance_status("dev", "error", error="workspace locked")

        assert failed.status == AgentStatus.ERROR
        assert failed.error == "workspace locked"
        with pytest.raises(ValidationError):
            activation_manager.set_instance_status("dev", AgentStatus.ACTIVE)

        assert await activation_manager.deactivate_agent("dev") is True
        assert statuses == [AgentStatus.INACTIVE]
        assert activation_manager.get_agent_state("dev") is None

    @pytest.mark.parametrize("start", [AgentStatus.ACTIVE, AgentStatus.IDLE])
    @pytest.mark.asyncio
    async def test_error_reachable_from_running_states(self, registered, activation_manager, start):
        """Test error is reachable from active and idle too."""
        await activation_manager.activate_agent("dev")
        activation_manager.set_instance_status("dev", start)

        assert activation_manager.set_instance_status("dev", AgentStatus.ERROR).error == "Agent reported an error"


class TestSessions:
    """Test activation sessions."""

    @pytest.mark.asyncio
    async def test_shared_session(self, registered, activation_manager):
        """Test agents activated with one session id share it."""
        await activation_manager.activate_agent("dev", {"session_id": "s1"})
        await activation_manager.activate_agent("qa", {"session_id": "s1"})

        session = activation_manager.get_session("s1")
        assert session.agent_ids == ["dev", "qa"]

        await activation_manager.deactivate_agent("dev")
        await activation_manager.deactivate_agent("qa")
        assert activation_manager.get_session("s1") is None

    @pytest.mark.asyncio
    async def test_expired_sessions_are_cleaned_up(self, registered, activation_manager):
        """Test idle sessions deactivate their agents."""
        await activation_manager.activate_agent("dev", {"session_id": "s1"})
        await activation_manager.activate_agent("qa", {"session_id": "s2"})
        later = datetime.now(timezone.utc) + timedelta(hours=1)

        deactivated = await activation_manager.cleanup_expired_sessions(now=later)

        assert sorted(deactivated) == ["dev", "qa"]
        assert activation_manager.get_sessions() == []

    @pytest.mark.asyncio
    async def test_fresh_sessions_are_kept(self, registered, activation_manager):
        """Test active sessions survive cleanup."""
        await activation_manager.activate_agent("dev")

        assert await activation_manager.cleanup_expired_sessions() == []
        assert activation_manager.is_active("dev")


class TestStatePersistence:
    """Test saving and loading activation state."""

    @pytest.mark.asyncio
    async def test_state_is_persisted(self, registered, temp_dir):
        """Test state is written on activation and can be read back."""
        manager = make_manager(registered, temp_dir, persist_state=True)
        await manager.activate_agent("dev", {"user_id": "u1"})

        assert (temp_dir / "state" / "agent-state.json").exists()

        restored = await make_manager(registered, temp_dir).load_state()
        assert [i.agent_id for i in restored] == ["dev"]
        assert restored[0].status == AgentStatus.ACTIVE
        assert restored[0].context.user_id == "u1"

    @pytest.mark.asyncio
    async def test_load_without_state_file(self, registered, temp_dir):
        """Test loading before anything was saved."""
        assert await make_manager(registered, temp_dir).load_state() == []

    @pytest.mark.asyncio
    async def test_load_non_object_state(self, registered, temp_dir):
        """Test a state file holding a JSON list loads as empty."""
        state_file = temp_dir / "state" / "agent-state.json"
        state_file.parent.mkdir(parents=True)
        state_file.write_text("[1]", encoding="utf-8")

        assert await make_manager(registered, temp_dir).load_state() == []

    @pytest.mark.asyncio
    async def test_concurrent_activations_persist_cleanly(self, registered, make_converted, temp_dir):
        """Test parallel activations leave one readable state file and no temp files."""
        for agent_id in ("pm", "po", "architect"):
            await registered.register_agent(make_converted(agent_id))
        agent_ids = ["dev", "qa", "sm", "pm", "po", "architect"]
        manager = make_manager(registered, temp_dir, persist_state=True, max_concurrent_activations=6)

        await asyncio.gather(*[manager.activate_agent(agent_id) for agent_id in agent_ids])
        await manager.save_state()

        restored = await make_manager(registered, temp_dir).load_state()
        assert sorted(i.agent_id for i in restored) == sorted(agent_ids)
        assert list((temp_dir / "state").glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_lifecycle(self, registered, temp_dir):
        """Test start and stop of the manager."""
        manager = make_manager(registered, temp_dir, persist_state=True, session_cleanup_interval=60)

        await manager.start()
        assert manager.is_running
        await manager.stop()

        assert not manager.is_running
        assert (temp_dir / "state" / "agent-state.json").exists()
