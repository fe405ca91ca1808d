"""Activation models: instance status, activation context and sessions."""

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class AgentStatus(str, Enum):
    """Lifecycle status of an agent instance."""
    INACTIVE = "inactive"
    ACTIVATING = "activating"
    ACTIVE = "active"
    BUSY = "busy"
    IDLE = "idle"
    ERROR = "error"


# Allowed status transitions. INACTIVE is reached only by deactivation, which
# accepts any status, ERROR included.
STATUS_TRANSITIONS: Dict[AgentStatus, frozenset] = {
    AgentStatus.INACTIVE: frozenset({AgentStatus.ACTIVATING}),
    AgentStatus.ACTIVATING: frozenset({AgentStatus.ACTIVE}),
    AgentStatus.ACTIVE: frozenset({AgentStatus.BUSY, AgentStatus.IDLE, AgentStatus.ERROR}),
    AgentStatus.BUSY: frozenset({AgentStatus.ACTIVE, AgentStatus.IDLE, AgentStatus.ERROR}),
    AgentStatus.IDLE: frozenset({AgentStatus.ACTIVE, AgentStatus.BUSY, AgentStatus.ERROR}),
    AgentStatus.ERROR: frozenset(),
}


@dataclass
class ActivationContext:
    """Who is activating an agent, and for which project."""
    user_id: Optional[str] = None
    project_id: Optional[str] = None
    workspace_id: Optional[str] = None
    session_id: Optional[str] = None
    preferences: Dict[str, Any] = field(default_factory=dict)
    resources: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "project_id": self.project_id,
            "workspace_id": self.workspace_id,
            "session_id": self.session_id,
            "preferences": dict(self.preferences),
            "resources": dict(self.resources),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ActivationContext':
        data = data or {}
        return cls(
            user_id=data.get("user_id"),
            project_id=data.get("project_id"),
            workspace_id=data.get("workspace_id"),
            session_id=data.get("session_id"),
            preferences=dict(data.get("preferences") or {}),
            resources=dict(data.get("resources") or {}),
        )


@dataclass
class AgentInstance:
    """A live activation of a registered agent."""
    agent_id: str
    name: str = ""
    instance_id: str = field(default_factory=lambda: f"inst_{uuid.uuid4().hex[:12]}")
    status: AgentStatus = AgentStatus.INACTIVE
    activated_at: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    context: ActivationContext = field(default_factory=ActivationContext)
    capabilities: List[str] = field(default_factory=list)
    session_id: Optional[str] = None
    error: Optional[str] = None

    def touch(self) -> None:
        self.last_activity = _utcnow()

    def snapshot(self) -> 'AgentInstance':
        """Deep copy detached from the manager's state."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "agent_id": self.agent_id,
            "name": self.name,
            "status": self.status.value,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "last_activity": self.last_activity.isoformat() if self.last_activity else None,
            "context": self.context.to_dict(),
            "capabilities": list(self.capabilities),
            "session_id": self.session_id,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AgentInstance':
        return cls(
            agent_id=data["agent_id"],
            name=data.get("name", ""),
            instance_id=data.get("instance_id") or f"inst_{uuid.uuid4().hex[:12]}",
            status=AgentStatus(data.get("status", AgentStatus.INACTIVE.value)),
            activated_at=_parse_dt(data.get("activated_at")),
            last_activity=_parse_dt(data.get("last_activity")),
            context=ActivationContext.from_dict(data.get("context")),
            capabilities=list(data.get("capabilities") or []),
            session_id=data.get("session_id"),
            error=data.get("error"),
        )


@dataclass
class ActivationSession:
    """Groups the agents activated for one user/project pair."""
    session_id: str
    context: ActivationContext
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    agent_ids: List[str] = field(default_factory=list)

    def touch(self) -> None:
        self.last_activity = _utcnow()

    def is_expired(self, timeout_ms: int, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        return (now - self.last_activity).total_seconds() * 1000 > timeout_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "context": self.context.to_dict(),
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "agent_ids": list(self.agent_ids),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActivationSession':
        return cls(
            session_id=data["session_id"],
            context=ActivationContext.from_dict(data.get("context")),
            created_at=_parse_dt(data.get("created_at")) or _utcnow(),
            last_activity=_parse_dt(data.get("last_activity")) or _utcnow(),
            agent_ids=list(data.get("agent_ids") or []),
        )
