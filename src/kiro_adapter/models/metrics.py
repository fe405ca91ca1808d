"""
Monitoring models for agent activations.

Counters only grow during a monitoring session; ``reset`` on the monitor is
the one way to clear them. Derived values such as effectiveness are
computed on read.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class CheckStatus(str, Enum):
    PASS = "pass"
    WARN = "warn"
    FAIL = "fail"


class HealthState(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"


class PerformanceRating(str, Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    UNKNOWN = "unknown"


@dataclass
class PerformanceStats:
    """Activation timing statistics for one agent."""
    total_activations: int = 0
    successful_activations: int = 0
    failed_activations: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: Optional[float] = None
    max_duration_ms: float = 0.0
    slow_activations: int = 0
    last_activation: Optional[datetime] = None

    @property
    def average_duration_ms(self) -> float:
        if not self.total_activations:
            return 0.0
        return self.total_duration_ms / self.total_activations

    @property
    def slow_percentage(self) -> float:
        if not self.total_activations:
            return 0.0
        return self.slow_activations / self.total_activations * 100

    def record(self, duration_ms: float, success: bool, slow_threshold_ms: float) -> None:
        self.total_activations += 1
        if success:
            self.successful_activations += 1
        else:
            self.failed_activations += 1

        self.total_duration_ms += duration_ms
        if self.min_duration_ms is None or duration_ms < self.min_duration_ms:
            self.min_duration_ms = duration_ms
        self.max_duration_ms = max(self.max_duration_ms, duration_ms)
        if duration_ms > slow_threshold_ms:
            self.slow_activations += 1
        self.last_activation = _utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_activations": self.total_activations,
            "successful_activations": self.successful_activations,
            "failed_activations": self.failed_activations,
            "total_duration_ms": self.total_duration_ms,
            "average_duration_ms": self.average_duration_ms,
            "min_duration_ms": self.min_duration_ms,
            "max_duration_ms": self.max_duration_ms,
            "slow_activations": self.slow_activations,
            "last_activation": _iso(self.last_activation),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PerformanceStats':
        return cls(
            total_activations=data.get("total_activations", 0),
            successful_activations=data.get("successful_activations", 0),
            failed_activations=data.get("failed_activations", 0),
            total_duration_ms=data.get("total_duration_ms", 0.0),
            min_duration_ms=data.get("min_duration_ms"),
            max_duration_ms=data.get("max_duration_ms", 0.0),
            slow_activations=data.get("slow_activations", 0),
            last_activation=_parse_dt(data.get("last_activation")),
        )


@dataclass
class UsageAnalytics:
    """Usage counters for one agent."""
    activations: int = 0
    failed_activations: int = 0
    deactivations: int = 0
    total_session_time_ms: float = 0.0
    first_used: Optional[datetime] = None
    last_used: Optional[datetime] = None

    @property
    def effectiveness(self) -> float:
        """Successful activations as a percentage of all attempts."""
        attempts = self.activations + self.failed_activations
        if not attempts:
            return 0.0
        return self.activations / attempts * 100

    @property
    def average_session_time_ms(self) -> float:
        if not self.deactivations:
            return 0.0
        return self.total_session_time_ms / self.deactivations

    def popularity_score(self, now: Optional[datetime] = None) -> float:
        """Blend of volume, effectiveness and recency, in that order."""
        recency = 0.0
        if self.last_used:
            days = ((now or _utcnow()) - self.last_used).total_seconds() / 86400
            recency = max(0.0, 100 - days)
        return (self.activations * 10 + self.effectiveness + recency) / 3

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activations": self.activations,
            "failed_activations": self.failed_activations,
            "deactivations": self.deactivations,
            "total_session_time_ms": self.total_session_time_ms,
            "average_session_time_ms": self.average_session_time_ms,
            "effectiveness": self.effectiveness,
            "first_used": _iso(self.first_used),
            "last_used": _iso(self.last_used),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UsageAnalytics':
        return cls(
            activations=data.get("activations", 0),
            failed_activations=data.get("failed_activations", 0),
            deactivations=data.get("deactivations", 0),
            total_session_time_ms=data.get("total_session_time_ms", 0.0),
            first_used=_parse_dt(data.get("first_used")),
            last_used=_parse_dt(data.get("last_used")),
        )


@dataclass
class ActivationRecord:
    """One activation attempt in the history log."""
    agent_id: str
    success: bool
    duration_ms: float
    timestamp: datetime = field(default_factory=_utcnow)
    error: Optional[str] = None
    error_category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "success": self.success,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
            "error": self.error,
            "error_category": self.error_category,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActivationRecord':
        return cls(
            agent_id=data["agent_id"],
            success=data["success"],
            duration_ms=data.get("duration_ms", 0.0),
            timestamp=_parse_dt(data.get("timestamp")) or _utcnow(),
            error=data.get("error"),
            error_category=data.get("error_category"),
        )


@dataclass
class HealthCheck:
    """Single check inside an agent health report."""
    name: str
    status: CheckStatus
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "status": self.status.value, "message": self.message}


@dataclass
class AgentHealthReport:
    """Aggregated health checks for one agent."""
    agent_id: str
    checks: List[HealthCheck] = field(default_factory=list)
    checked_at: datetime = field(default_factory=_utcnow)

    @property
    def status(self) -> HealthState:
        statuses = {c.status for c in self.checks}
        if CheckStatus.FAIL in statuses:
            return HealthState.UNHEALTHY
        if CheckStatus.WARN in statuses:
            return HealthState.WARNING
        return HealthState.HEALTHY

    @property
    def passed(self) -> int:
        return sum(1 for c in self.checks if c.status == CheckStatus.PASS)

    @property
    def failed(self) -> int:
        return sum(1 for c in self.checks if c.status == CheckStatus.FAIL)

    def get_check(self, name: str) -> Optional[HealthCheck]:
        for check in self.checks:
            if check.name == name:
                return check
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "status": self.status.value,
            "checked_at": self.checked_at.isoformat(),
            "passed": self.passed,
            "failed": self.failed,
            "checks": [c.to_dict() for c in self.checks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AgentHealthReport':
        return cls(
            agent_id=data["agent_id"],
            checks=[
                HealthCheck(c["name"], CheckStatus(c["status"]), c.get("message", ""))
                for c in data.get("checks", [])
            ],
            checked_at=_parse_dt(data.get("checked_at")) or _utcnow(),
        )
