"""
Agent models for the BMad Kiro adapter.

This module defines the records that flow through the conversion
pipeline: discovered agent metadata, resolved dependencies, converted
agents and their integration bundles, and registry entries.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple, Iterator, Callable
from enum import Enum


DEPENDENCY_CATEGORIES: Tuple[str, ...] = ("tasks", "templates", "checklists", "data", "utils")

DEFAULT_TITLE = "Assistant"
DEFAULT_ICON = "🤖"


class AgentSource(str, Enum):
    """Where an agent definition was discovered."""
    CORE = "bmad-core"
    EXPANSION_PACK = "expansion-pack"


def _as_names(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value if v is not None)
    return (str(value),)


@dataclass(frozen=True)
class AgentCommand:
    """A command exposed by an agent persona."""
    name: str
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "description": self.description}


@dataclass(frozen=True)
class AgentPersona:
    """Persona block of an agent definition."""
    role: str = ""
    style: str = ""
    identity: str = ""
    focus: str = ""
    core_principles: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> 'AgentPersona':
        data = data or {}
        return cls(
            role=str(data.get("role") or ""),
            style=str(data.get("style") or ""),
            identity=str(data.get("identity") or ""),
            focus=str(data.get("focus") or ""),
            core_principles=_as_names(data.get("core_principles")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "style": self.style,
            "identity": self.identity,
            "focus": self.focus,
            "core_principles": list(self.core_principles),
        }


@dataclass(frozen=True)
class AgentDependencies:
    """Dependency names declared by an agent, grouped by category."""
    tasks: Tuple[str, ...] = ()
    templates: Tuple[str, ...] = ()
    checklists: Tuple[str, ...] = ()
    data: Tuple[str, ...] = ()
    utils: Tuple[str, ...] = ()
    other: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Any) -> 'AgentDependencies':
        """Normalize a raw front-matter ``dependencies`` value."""
        if not isinstance(data, dict):
            return cls()

        known = {name: _as_names(data.get(name)) for name in DEPENDENCY_CATEGORIES}
        other = {
            str(key): _as_names(value)
            for key, value in data.items()
            if key not in DEPENDENCY_CATEGORIES
        }
        return cls(other=other, **known)

    def items(self) -> Iterator[Tuple[str, Tuple[str, ...]]]:
        """Iterate (category, names) over the resolvable categories."""
        for category in DEPENDENCY_CATEGORIES:
            yield category, getattr(self, category)

    @property
    def total(self) -> int:
        return sum(len(names) for _, names in self.items())

    @property
    def is_empty(self) -> bool:
        return self.total == 0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {name: list(names) for name, names in self.items()}
        if self.other:
            result["other"] = {key: list(value) for key, value in self.other.items()}
        return result


@dataclass(frozen=True)
class AgentMetadata:
    """One discovered agent definition. Immutable once created."""
    id: str
    name: str
    file_path: Path
    source: AgentSource
    expansion_pack: Optional[str] = None
    title: str = ""
    description: str = ""
    icon: str = ""
    when_to_use: str = ""
    last_modified: Optional[datetime] = None
    persona: AgentPersona = field(default_factory=AgentPersona)
    commands: Tuple[AgentCommand, ...] = ()
    dependencies: AgentDependencies = field(default_factory=AgentDependencies)
    front_matter: Dict[str, Any] = field(default_factory=dict)
    content: str = ""
    raw_content: str = ""

    @property
    def has_dependencies(self) -> bool:
        return not self.dependencies.is_empty

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "when_to_use": self.when_to_use,
            "source": self.source.value,
            "expansion_pack": self.expansion_pack,
            "file_path": str(self.file_path),
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "persona": self.persona.to_dict(),
            "commands": [c.to_dict() for c in self.commands],
            "dependencies": self.dependencies.to_dict(),
        }


@dataclass
class ResolvedResource:
    """A dependency file located on disk."""
    name: str
    category: str
    path: Path
    content: str
    last_modified: Optional[datetime] = None
    size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "path": str(self.path),
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "size": self.size,
        }


@dataclass
class MissingDependency:
    """A dependency that could not be located."""
    name: str
    category: str
    searched_paths: List[Path] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "searched_paths": [str(p) for p in self.searched_paths],
            "suggestions": list(self.suggestions),
        }


@dataclass
class ResolvedResources:
    """Resolved resources per dependency category."""
    tasks: List[ResolvedResource] = field(default_factory=list)
    templates: List[ResolvedResource] = field(default_factory=list)
    checklists: List[ResolvedResource] = field(default_factory=list)
    data: List[ResolvedResource] = field(default_factory=list)
    utils: List[ResolvedResource] = field(default_factory=list)

    def category(self, name: str) -> List[ResolvedResource]:
        return getattr(self, name)

    def all(self) -> List[ResolvedResource]:
        return [r for name in DEPENDENCY_CATEGORIES for r in self.category(name)]


@dataclass
class ResolvedDependencies:
    """Outcome of resolving one agent's declared dependencies."""
    agent_id: str
    resolved: ResolvedResources = field(default_factory=ResolvedResources)
    missing: List[str] = field(default_factory=list)
    missing_details: List[MissingDependency] = field(default_factory=list)
    errors: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def resolved_count(self) -> int:
        return len(self.resolved.all())

    @property
    def is_complete(self) -> bool:
        return not self.missing

    def missing_in(self, category: str) -> List[str]:
        return [m.name for m in self.missing_details if m.category == category]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "resolved": {
                name: [r.to_dict() for r in self.resolved.category(name)]
                for name in DEPENDENCY_CATEGORIES
            },
            "missing": list(self.missing),
            "missing_details": [m.to_dict() for m in self.missing_details],
            "errors": [str(e) for e in self.errors],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class IntegrationBundle:
    """Generated artifacts tying a converted agent into Kiro."""
    steering_rules: Tuple[str, ...] = ()
    hooks: Tuple[str, ...] = ()
    context_prompts: Tuple[str, ...] = ()
    spec_templates: Tuple[str, ...] = ()
    activation_handler: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steering_rules": list(self.steering_rules),
            "hooks": list(self.hooks),
            "context_prompts": list(self.context_prompts),
            "spec_templates": list(self.spec_templates),
            "activation_handler": self.activation_handler,
        }


@dataclass(frozen=True)
class ConvertedAgent:
    """Kiro-ready form of an agent. Re-transformation builds a new object."""
    id: str
    name: str
    source: AgentSource
    original_path: Path
    output_path: Path
    description: str = ""
    role: str = ""
    expansion_pack: Optional[str] = None
    content: str = ""
    context_providers: Tuple[str, ...] = ()
    mcp_tools: Tuple[str, ...] = ()
    capabilities: Tuple[str, ...] = ()
    integration: IntegrationBundle = field(default_factory=IntegrationBundle)
    dependencies: Optional[ResolvedDependencies] = field(default=None, compare=False)
    metadata: Optional[AgentMetadata] = field(default=None, compare=False, repr=False)

    def with_changes(self, **changes: Any) -> 'ConvertedAgent':
        """Return a copy with fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "role": self.role,
            "source": self.source.value,
            "expansion_pack": self.expansion_pack,
            "original_path": str(self.original_path),
            "output_path": str(self.output_path),
            "context_providers": list(self.context_providers),
            "mcp_tools": list(self.mcp_tools),
            "capabilities": list(self.capabilities),
            "integration": self.integration.to_dict(),
        }


@dataclass
class RegisteredAgentEntry:
    """Registry bookkeeping around a converted agent."""
    agent: ConvertedAgent
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    retry_count: int = 0
    activation_handler: Optional[Callable] = field(default=None, repr=False)

    @property
    def agent_id(self) -> str:
        return self.agent.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.agent.to_dict(),
            "registered_at": self.registered_at.isoformat(),
            "retry_count": self.retry_count,
            "has_activation_handler": self.activation_handler is not None,
        }


@dataclass
class RegistrationResult:
    """Per-agent outcome of a registration attempt."""
    agent_id: str
    success: bool
    retry_count: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "success": self.success,
            "retry_count": self.retry_count,
            "error": self.error,
        }
