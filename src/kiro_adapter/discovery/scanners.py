"""
Agent file scanners.

A scanner decides whether it understands a file (``applies``) and turns it
into AgentMetadata (``scan``). Discovery asks scanners in descending
priority order and uses the first one that applies.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os

from ..models.agent import (
    DEFAULT_ICON,
    DEFAULT_TITLE,
    AgentCommand,
    AgentDependencies,
    AgentMetadata,
    AgentPersona,
    AgentSource,
)
from ..utils.logging import get_logger
from .frontmatter import parse_agent_document


logger = get_logger(__name__)

ROLE_NAMES: Dict[str, str] = {
    "pm": "Product Manager",
    "architect": "Architect",
    "dev": "Developer",
    "qa": "QA Engineer",
    "sm": "Scrum Master",
    "po": "Product Owner",
    "analyst": "Business Analyst",
    "ux-expert": "UX Expert",
    "bmad-master": "BMad Master",
    "bmad-orchestrator": "BMad Orchestrator",
}


@dataclass(frozen=True)
class SourceRoot:
    """A directory of agent files and how its agents are classified."""
    path: Path
    source: AgentSource
    expansion_pack: Optional[str] = None


def agent_name_from_stem(stem: str) -> str:
    if stem in ROLE_NAMES:
        return ROLE_NAMES[stem]
    return " ".join(part.capitalize() for part in stem.replace("_", "-").split("-") if part)


def normalize_commands(commands: Any) -> Tuple[AgentCommand, ...]:
    """Accept a list of names / one-key mappings, or a name->description mapping."""
    if not commands:
        return ()

    result: List[AgentCommand] = []
    if isinstance(commands, dict):
        for name, description in commands.items():
            result.append(AgentCommand(str(name), description if isinstance(description, str) else ""))
    elif isinstance(commands, list):
        for command in commands:
            if isinstance(command, str):
                result.append(AgentCommand(command))
            elif isinstance(command, dict) and command:
                name, description = next(iter(command.items()))
                result.append(AgentCommand(str(name), description if isinstance(description, str) else ""))
            else:
                result.append(AgentCommand(""))
    return tuple(result)


def build_metadata(
    path: Path,
    content: str,
    root: SourceRoot,
    last_modified: Optional[datetime] = None
) -> AgentMetadata:
    """Build AgentMetadata from a file's text."""
    front_matter, body = parse_agent_document(content, path=path)

    agent = front_matter.get("agent") or {}
    if not isinstance(agent, dict):
        agent = {}
    persona = AgentPersona.from_mapping(
        front_matter.get("persona") if isinstance(front_matter.get("persona"), dict) else None
    )

    agent_id = str(agent.get("id") or path.stem)
    title = str(agent.get("title") or DEFAULT_TITLE)
    when_to_use = str(agent.get("whenToUse") or "")

    return AgentMetadata(
        id=agent_id,
        name=str(agent.get("name") or agent_name_from_stem(path.stem)),
        file_path=path,
        source=root.source,
        expansion_pack=root.expansion_pack,
        title=title,
        description=when_to_use or persona.identity or title,
        icon=str(agent.get("icon") or DEFAULT_ICON),
        when_to_use=when_to_use,
        last_modified=last_modified,
        persona=persona,
        commands=normalize_commands(front_matter.get("commands")),
        dependencies=AgentDependencies.from_mapping(front_matter.get("dependencies")),
        front_matter=front_matter,
        content=body,
        raw_content=content,
    )


class AgentScanner(ABC):
    """Pluggable scanner for one agent file convention."""

    name: str = "scanner"
    priority: int = 0

    @abstractmethod
    def applies(self, path: Path) -> bool:
        """Whether this scanner understands the file."""

    @abstractmethod
    async def scan(self, path: Path, root: SourceRoot) -> AgentMetadata:
        """Parse the file; raises MetadataExtractionError when malformed."""


class MarkdownAgentScanner(AgentScanner):
    """BMad markdown agents with YAML front-matter or an embedded yaml block."""

    name = "markdown"
    priority = 0

    def applies(self, path: Path) -> bool:
        return path.suffix.lower() == ".md"

    async def scan(self, path: Path, root: SourceRoot) -> AgentMetadata:
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        stat = await aiofiles.os.stat(path)
        last_modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

        metadata = build_metadata(path, content, root, last_modified)
        logger.debug("agent_file_parsed", path=str(path), agent_id=metadata.id)
        return metadata


__all__ = [
    'AgentScanner',
    'MarkdownAgentScanner',
    'SourceRoot',
    'ROLE_NAMES',
    'agent_name_from_stem',
    'build_metadata',
    'normalize_commands',
]
