"""
Activation monitor.

Observes the registry and the activation manager, accumulates per-agent
performance and usage metrics, and runs periodic health checks over every
registered agent. Failure categories come from ``classify_error``, which
trusts structured error categories and otherwise falls back to message
matching.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import aiofiles.os

from .activation import ActivationManager, ActivationObserver
from .base import BaseManager, ManagerConfig
from ..models.activation import AgentInstance
from ..models.agent import RegisteredAgentEntry
from ..models.metrics import (
    ActivationRecord,
    AgentHealthReport,
    CheckStatus,
    HealthCheck,
    HealthState,
    PerformanceRating,
    PerformanceStats,
    UsageAnalytics,
)
from ..registry.agent_registry import AgentRegistry, RegistryObserver
from ..storage.files import write_json_atomic, read_json
from ..utils.config import MonitorConfig
from ..utils.errors import classify_error
from ..utils.logging import MetricsLogger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivationMonitor(BaseManager, ActivationObserver, RegistryObserver):
    """
    Collects activation metrics and agent health.

    Events: ``health_check_completed``, ``metrics_reset``.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        metrics_logger: Optional[MetricsLogger] = None
    ):
        self.config = config or MonitorConfig()
        super().__init__(ManagerConfig(
            name="monitor",
            health_check_interval=self.config.health_check_interval if self.config.enable_health_checks else 0
        ))
        self.metrics_logger = metrics_logger
        self.registry: Optional[AgentRegistry] = None
        self.manager: Optional[ActivationManager] = None
        self._reset_state()

    def _reset_state(self) -> None:
        self.total_activations = 0
        self.successful_activations = 0
        self.failed_activations = 0
        self.performance: Dict[str, PerformanceStats] = {}
        self.usage: Dict[str, UsageAnalytics] = {}
        self.history: List[ActivationRecord] = []
        self.errors: List[Dict[str, Any]] = []
        self.health: Dict[str, AgentHealthReport] = {}

    def attach(self, registry: AgentRegistry, manager: Optional[ActivationManager] = None) -> None:
        """Subscribe to a registry and, optionally, an activation manager."""
        self.registry = registry
        registry.add_observer(self)
        if manager is not None:
            self.manager = manager
            manager.add_observer(self)
        self.logger.info("monitor_attached", has_manager=manager is not None)

    def detach(self) -> None:
        if self.registry is not None:
            self.registry.remove_observer(self)
        if self.manager is not None:
            self.manager.remove_observer(self)
        self.registry = None
        self.manager = None

    async def _initialize(self) -> None:
        await self.load_metrics()

    async def _stop(self) -> None:
        await self.save_metrics()

    async def _health_check(self) -> Dict[str, Any]:
        reports = await self.perform_health_checks()
        await self.cleanup_old_data()
        return {
            "agents_checked": len(reports),
            "unhealthy": sum(1 for r in reports.values() if r.status == HealthState.UNHEALTHY),
        }

    def _ensure_agent(self, agent_id: str) -> None:
        self.performance.setdefault(agent_id, PerformanceStats())
        self.usage.setdefault(agent_id, UsageAnalytics())

    # Observer callbacks

    async def on_registered(self, entry: RegisteredAgentEntry) -> None:
        self._ensure_agent(entry.agent_id)
        self.logger.debug("agent_tracked", agent_id=entry.agent_id)

    async def on_unregistered(self, agent_id: str) -> None:
        self.health.pop(agent_id, None)

    async def on_error(self, agent_id: str, error: Exception) -> None:
        self._log_error(agent_id, error, source="registry")

    async def on_activated(self, instance: AgentInstance, duration_ms: float) -> None:
        self.record_activation(instance.agent_id, True, duration_ms)

    async def on_failed(self, agent_id: str, error: Exception, duration_ms: float) -> None:
        self.record_activation(agent_id, False, duration_ms, error=error)

    async def on_deactivated(self, instance: AgentInstance, session_time_ms: float) -> None:
        self._ensure_agent(instance.agent_id)
        usage = self.usage[instance.agent_id]
        usage.deactivations += 1
        usage.total_session_time_ms += session_time_ms

    def record_activation(
        self,
        agent_id: str,
        success: bool,
        duration_ms: float,
        error: Optional[Exception] = None
    ) -> ActivationRecord:
        """Record one activation attempt."""
        self._ensure_agent(agent_id)
        now = _utcnow()

        self.total_activations += 1
        self.performance[agent_id].record(duration_ms, success, self.config.performance_threshold_ms)

        usage = self.usage[agent_id]
        if success:
            self.successful_activations += 1
            usage.activations += 1
            usage.first_used = usage.first_used or now
            usage.last_used = now
        else:
            self.failed_activations += 1
            usage.failed_activations += 1

        record = ActivationRecord(
            agent_id=agent_id,
            success=success,
            duration_ms=duration_ms,
            timestamp=now,
            error=str(error) if error else None,
            error_category=classify_error(error).value if error else None
        )
        self.history.append(record)
        if len(self.history) > self.config.max_history:
            del self.history[:len(self.history) - self.config.max_history]

        if error is not None:
            self._log_error(agent_id, error, source="activation")

        if self.metrics_logger:
            tags = {"agent_id": agent_id, "success": str(success).lower()}
            self.metrics_logger.log_duration("agent.activation", duration_ms, tags)
            self.metrics_logger.log_count("agent.activation", 1, tags)

        return record

    def _log_error(self, agent_id: str, error: Exception, source: str) -> None:
        category = classify_error(error)
        self.errors.append({
            "agent_id": agent_id,
            "source": source,
            "message": str(error),
            "category": category.value,
            "timestamp": _utcnow().isoformat(),
        })
        self.logger.debug("activation_error_tracked", agent_id=agent_id, category=category.value)

    # Health checks

    async def check_agent_health(self, entry: RegisteredAgentEntry) -> AgentHealthReport:
        """Run every health check for one registered agent."""
        agent = entry.agent
        checks = []

        exists = await aiofiles.os.path.exists(agent.original_path)
        checks.append(HealthCheck(
            "file_exists",
            CheckStatus.PASS if exists else CheckStatus.FAIL,
            "Agent file exists" if exists else f"Agent file not found: {agent.original_path}"
        ))

        valid = bool(agent.id and agent.name)
        checks.append(HealthCheck(
            "valid_metadata",
            CheckStatus.PASS if valid else CheckStatus.FAIL,
            "Agent metadata is valid" if valid else "Agent metadata is missing id or name"
        ))

        has_handler = callable(entry.activation_handler)
        checks.append(HealthCheck(
            "activation_handler",
            CheckStatus.PASS if has_handler else CheckStatus.FAIL,
            "Activation handler is available" if has_handler else "Activation handler is missing"
        ))

        stats = self.performance.get(agent.id)
        if stats and stats.total_activations:
            average = stats.average_duration_ms
            checks.append(HealthCheck(
                "performance",
                CheckStatus.PASS if average < self.config.performance_threshold_ms else CheckStatus.WARN,
                f"Average activation time: {average:.1f}ms"
            ))

        usage = self.usage.get(agent.id)
        if usage and (usage.activations + usage.failed_activations):
            effectiveness = usage.effectiveness
            if effectiveness >= 80:
                status = CheckStatus.PASS
            elif effectiveness >= 50:
                status = CheckStatus.WARN
            else:
                status = CheckStatus.FAIL
            checks.append(HealthCheck("effectiveness", status, f"Activation success rate: {effectiveness:.1f}%"))

        return AgentHealthReport(agent_id=agent.id, checks=checks)

    async def perform_health_checks(self) -> Dict[str, AgentHealthReport]:
        """Check every registered agent concurrently."""
        if self.registry is None:
            return {}

        entries = list(self.registry.get_registered_agents().values())
        results = await asyncio.gather(
            *[self.check_agent_health(entry) for entry in entries],
            return_exceptions=True
        )

        reports = {}
        for entry, result in zip(entries, results):
            if isinstance(result, Exception):
                self.logger.error("agent_health_check_failed", agent_id=entry.agent_id, error=str(result))
                result = AgentHealthReport(
                    agent_id=entry.agent_id,
                    checks=[HealthCheck("health_check", CheckStatus.FAIL, str(result))]
                )
            elif result.status != HealthState.HEALTHY:
                self.logger.warning("agent_health_degraded", agent_id=entry.agent_id, status=result.status.value)
            reports[entry.agent_id] = result

        self.health.update(reports)
        healthy = sum(1 for r in reports.values() if r.status == HealthState.HEALTHY)
        self.logger.info("health_check_completed", total_agents=len(reports), healthy_agents=healthy)
        await self._notify_event("health_check_completed", {
            "total_agents": len(reports),
            "healthy_agents": healthy,
            "reports": {agent_id: r.to_dict() for agent_id, r in reports.items()},
        })
        return reports

    # Queries

    def get_activation_statistics(self) -> Dict[str, Any]:
        success_rate = 0.0
        if self.total_activations:
            success_rate = self.successful_activations / self.total_activations * 100
        return {
            "total_activations": self.total_activations,
            "successful_activations": self.successful_activations,
            "failed_activations": self.failed_activations,
            "success_rate": round(success_rate, 2),
            "total_errors": len(self.errors),
            "is_monitoring": self.is_running,
        }

    def get_usage_analytics(self, agent_id: str) -> Optional[UsageAnalytics]:
        return self.usage.get(agent_id)

    def get_performance_stats(self, agent_id: str) -> Optional[PerformanceStats]:
        return self.performance.get(agent_id)

    def get_performance_rating(self, agent_id: str) -> PerformanceRating:
        """Rate an agent from its average duration and share of slow activations."""
        stats = self.performance.get(agent_id)
        if stats is None or not stats.total_activations:
            return PerformanceRating.UNKNOWN

        average = stats.average_duration_ms
        slow = stats.slow_percentage
        if average < 1000 and slow < 10:
            return PerformanceRating.EXCELLENT
        if average < 3000 and slow < 25:
            return PerformanceRating.GOOD
        if average < 5000 and slow < 50:
            return PerformanceRating.FAIR
        return PerformanceRating.POOR

    def get_most_popular_agents(self, limit: int = 10) -> List[Dict[str, Any]]:
        now = _utcnow()
        ranked = sorted(
            (
                {
                    "agent_id": agent_id,
                    "popularity_score": round(usage.popularity_score(now), 2),
                    "activations": usage.activations,
                    "effectiveness": round(usage.effectiveness, 2),
                }
                for agent_id, usage in self.usage.items()
            ),
            key=lambda item: item["popularity_score"],
            reverse=True
        )
        return ranked[:limit]

    def get_performance_issues(self) -> List[Dict[str, Any]]:
        threshold = self.config.performance_threshold_ms
        issues = []
        for agent_id, stats in self.performance.items():
            if not stats.total_activations:
                continue
            if stats.average_duration_ms > threshold:
                issues.append({
                    "agent_id": agent_id,
                    "issue": "slow_activation",
                    "average_duration_ms": round(stats.average_duration_ms, 2),
                    "threshold_ms": threshold,
                    "severity": "high" if stats.average_duration_ms > threshold * 2 else "medium",
                })
            if stats.slow_percentage > 50:
                issues.append({
                    "agent_id": agent_id,
                    "issue": "frequent_slow_activations",
                    "slow_percentage": round(stats.slow_percentage, 2),
                    "severity": "high" if stats.slow_percentage > 75 else "medium",
                })
        return issues

    def get_low_effectiveness_agents(self, threshold: float = 70) -> List[Dict[str, Any]]:
        """Agents with at least one attempt whose success rate is below ``threshold`` percent."""
        agents = [
            {
                "agent_id": agent_id,
                "effectiveness": round(usage.effectiveness, 2),
                "activations": usage.activations,
                "failed_activations": usage.failed_activations,
                "severity": "high" if usage.effectiveness < 50 else "medium",
            }
            for agent_id, usage in self.usage.items()
            if (usage.activations + usage.failed_activations) and usage.effectiveness < threshold
        ]
        return sorted(agents, key=lambda item: item["effectiveness"])

    def get_health_report(self, agent_id: str) -> Optional[AgentHealthReport]:
        return self.health.get(agent_id)

    def generate_report(self) -> Dict[str, Any]:
        return {
            "overview": self.get_activation_statistics(),
            "performance": {
                agent_id: {**stats.to_dict(), "rating": self.get_performance_rating(agent_id).value}
                for agent_id, stats in self.performance.items()
            },
            "usage": {agent_id: usage.to_dict() for agent_id, usage in self.usage.items()},
            "health": {agent_id: report.to_dict() for agent_id, report in self.health.items()},
            "insights": {
                "most_popular": self.get_most_popular_agents(5),
                "performance_issues": self.get_performance_issues(),
                "low_effectiveness": self.get_low_effectiveness_agents(),
                "total_agents_monitored": len(self.performance),
            },
            "metadata": {
                "generated_at": _utcnow().isoformat(),
                "retention_days": self.config.retention_days,
                "health_check_interval": self.config.health_check_interval,
            },
        }

    # Persistence

    async def save_metrics(self) -> None:
        """Persist every accumulated metric to the metrics file."""
        data = {
            "total_activations": self.total_activations,
            "successful_activations": self.successful_activations,
            "failed_activations": self.failed_activations,
            "history": [record.to_dict() for record in self.history],
            "errors": list(self.errors),
            "performance": {agent_id: s.to_dict() for agent_id, s in self.performance.items()},
            "usage": {agent_id: u.to_dict() for agent_id, u in self.usage.items()},
            "health": {agent_id: r.to_dict() for agent_id, r in self.health.items()},
            "saved_at": _utcnow().isoformat(),
        }
        try:
            await write_json_atomic(self.config.metrics_file, data)
            self.logger.debug("metrics_saved", path=str(self.config.metrics_file))
        except OSError as e:
            self.logger.warning("metrics_save_failed", path=str(self.config.metrics_file), error=str(e))

    async def load_metrics(self) -> bool:
        """Restore metrics saved by ``save_metrics``. Returns False when nothing was loaded."""
        try:
            data = await read_json(self.config.metrics_file)
        except (OSError, ValueError) as e:
            self.logger.warning("metrics_load_failed", path=str(self.config.metrics_file), error=str(e))
            return False

        if not data:
            return False
        if not isinstance(data, dict):
            self.logger.warning(
                "metrics_load_failed",
                path=str(self.config.metrics_file),
                error=f"expected an object, got {type(data).__name__}"
            )
            return False

        self.total_activations = data.get("total_activations", 0)
        self.successful_activations = data.get("successful_activations", 0)
        self.failed_activations = data.get("failed_activations", 0)
        self.history = [ActivationRecord.from_dict(r) for r in data.get("history", [])]
        self.errors = list(data.get("errors", []))
        self.performance = {k: PerformanceStats.from_dict(v) for k, v in data.get("performance", {}).items()}
        self.usage = {k: UsageAnalytics.from_dict(v) for k, v in data.get("usage", {}).items()}
        self.health = {k: AgentHealthReport.from_dict(v) for k, v in data.get("health", {}).items()}

        self.logger.info("metrics_loaded", agents=len(self.performance), history=len(self.history))
        return True

    async def cleanup_old_data(self, now: Optional[datetime] = None) -> int:
        """Drop history and error entries older than the retention window."""
        cutoff = (now or _utcnow()) - timedelta(days=self.config.retention_days)
        before = len(self.history) + len(self.errors)

        self.history = [r for r in self.history if r.timestamp > cutoff]
        self.errors = [
            e for e in self.errors
            if datetime.fromisoformat(e["timestamp"]) > cutoff
        ]

        removed = before - len(self.history) - len(self.errors)
        if removed:
            self.logger.info("old_metrics_removed", removed=removed, retention_days=self.config.retention_days)
        return removed

    async def reset_metrics(self) -> None:
        self._reset_state()
        self.logger.info("metrics_reset")
        await self._notify_event("metrics_reset", {})
