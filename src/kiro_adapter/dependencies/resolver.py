"""
Dependency resolution for agent tasks, templates, checklists and data.

Each declared name is looked up under the agent's own tree first, then the
shared ``common`` tree, then ``bmad-core`` for expansion-pack agents, trying
alternative spellings along the way. Missing names are collected, never
raised.
"""

import difflib
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import aiofiles
import aiofiles.os
import yaml

from ..models.agent import (
    AgentMetadata,
    AgentSource,
    MissingDependency,
    ResolvedDependencies,
    ResolvedResource,
)
from ..utils.config import ResolverConfig
from ..utils.errors import DependencyError
from ..utils.logging import get_logger


logger = get_logger(__name__)

NAME_PREFIXES = ("bmad-", "common-")
NAME_SUFFIXES = ("-task", "-template", "-checklist", "-util")

_INLINE_REFERENCE = re.compile(r"\[\[([^\]]+)\]\]|@include\s+(\S+)")


@dataclass
class _CachedFile:
    path: Path
    content: str
    last_modified: datetime
    size: int


class DependencyResolver:
    """Locates dependency files for discovered agents."""

    def __init__(self, config: Optional[ResolverConfig] = None):
        self.config = config or ResolverConfig()
        self._cache: Dict[Tuple[str, Optional[str], str, str], _CachedFile] = {}
        self._cache_hits = 0

    async def resolve_dependencies(self, agent: AgentMetadata) -> ResolvedDependencies:
        """
        Resolve every dependency the agent declares.

        Every declared name ends up either in ``resolved.<category>`` or in
        ``missing``; a DependencyError is recorded for each missing name.
        """
        result = ResolvedDependencies(agent_id=agent.id)

        for category, names in agent.dependencies.items():
            for name in names:
                found, searched = await self._locate(agent, category, name)
                if found is not None:
                    result.resolved.category(category).append(ResolvedResource(
                        name=name,
                        category=category,
                        path=found.path,
                        content=found.content,
                        last_modified=found.last_modified,
                        size=found.size,
                    ))
                    continue

                suggestions = await self._suggest(agent, category, name)
                result.missing.append(name)
                result.missing_details.append(MissingDependency(
                    name=name,
                    category=category,
                    searched_paths=searched,
                    suggestions=suggestions,
                ))
                result.errors.append(DependencyError(
                    f"Missing {category} dependency: {name}",
                    agent_id=agent.id,
                    dependency=name,
                    dependency_type=category,
                ))

        for cycle in self._find_cycles(agent, result):
            result.warnings.append("Circular dependencies detected: " + " -> ".join(cycle))

        if result.missing:
            logger.warning(
                "dependencies_missing",
                agent_id=agent.id,
                missing=result.missing,
            )
        logger.debug(
            "dependencies_resolved",
            agent_id=agent.id,
            resolved=result.resolved_count,
            missing=len(result.missing),
        )
        return result

    resolve = resolve_dependencies

    def ensure_extension(self, category: str, name: str) -> str:
        """Give a dependency name the extension its category expects."""
        expected = self.config.extensions.get(category, ".md")
        if name.endswith(expected):
            return name
        return Path(name).stem + expected

    def alternative_names(self, filename: str) -> List[str]:
        """Other spellings a dependency file may have on disk."""
        path = Path(filename)
        base, ext = path.stem, path.suffix
        alternatives: List[str] = []

        if "-" in base:
            alternatives.append(base.replace("-", "_") + ext)
        if "_" in base:
            alternatives.append(base.replace("_", "-") + ext)

        for prefix in NAME_PREFIXES:
            if base.startswith(prefix):
                alternatives.append(base[len(prefix):] + ext)
            else:
                alternatives.append(prefix + base + ext)

        for suffix in NAME_SUFFIXES:
            if base.endswith(suffix):
                alternatives.append(base[:-len(suffix)] + ext)
            else:
                alternatives.append(base + suffix + ext)

        return alternatives

    def _base_dirs(self, agent: AgentMetadata, category: str) -> List[Path]:
        root = Path(self.config.root_path)
        core = root / self.config.core_dir / category
        common = root / self.config.common_dir / category

        if agent.source == AgentSource.EXPANSION_PACK and agent.expansion_pack:
            pack = root / self.config.expansion_packs_dir / agent.expansion_pack / category
            return [pack, common, core]
        return [core, common]

    def candidate_paths(self, agent: AgentMetadata, category: str, name: str) -> List[Path]:
        """Ordered, de-duplicated list of paths tried for a dependency."""
        filename = self.ensure_extension(category, name)
        dirs = self._base_dirs(agent, category)

        candidates = [d / filename for d in dirs]
        for alternative in self.alternative_names(filename):
            candidates.extend(d / alternative for d in dirs)

        seen: Set[Path] = set()
        ordered = []
        for candidate in candidates:
            if candidate not in seen:
                seen.add(candidate)
                ordered.append(candidate)
        return ordered

    async def _locate(
        self,
        agent: AgentMetadata,
        category: str,
        name: str
    ) -> Tuple[Optional[_CachedFile], List[Path]]:
        key = (agent.source.value, agent.expansion_pack, category, name)
        if self.config.enable_cache and key in self._cache:
            self._cache_hits += 1
            return self._cache[key], []

        searched = self.candidate_paths(agent, category, name)
        for path in searched:
            if not await aiofiles.os.path.isfile(path):
                continue
            try:
                async with aiofiles.open(path, "r", encoding="utf-8") as f:
                    content = await f.read()
                stat = await aiofiles.os.stat(path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("dependency_read_failed", path=str(path), error=str(e))
                continue

            found = _CachedFile(
                path=path,
                content=content,
                last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                size=stat.st_size,
            )
            if self.config.enable_cache:
                self._cache[key] = found
            return found, searched

        return None, searched

    async def _suggest(self, agent: AgentMetadata, category: str, name: str) -> List[str]:
        target = Path(name).stem.lower()
        candidates: Dict[str, str] = {}

        for directory in self._base_dirs(agent, category):
            if not await aiofiles.os.path.isdir(directory):
                continue
            for entry in await aiofiles.os.listdir(directory):
                candidates.setdefault(Path(entry).stem.lower(), entry)

        matches = difflib.get_close_matches(
            target,
            list(candidates),
            n=self.config.max_suggestions,
            cutoff=self.config.similarity_threshold,
        )
        return [candidates[m] for m in matches]

    def _references(self, content: str) -> Set[str]:
        refs: Set[str] = set()
        for match in _INLINE_REFERENCE.finditer(content):
            refs.add(Path((match.group(1) or match.group(2)).strip()).stem)

        if content.startswith("---"):
            parts = content.split("---", 2)
            if len(parts) == 3:
                try:
                    header = yaml.safe_load(parts[1])
                except yaml.YAMLError:
                    header = None
                deps = header.get("dependencies") if isinstance(header, dict) else None
                if isinstance(deps, dict):
                    for value in deps.values():
                        for item in value if isinstance(value, list) else [value]:
                            refs.add(Path(str(item)).stem)
        return refs

    def _find_cycles(self, agent: AgentMetadata, result: ResolvedDependencies) -> List[List[str]]:
        """Cycles among the agent and the resources it resolved, by file stem."""
        resources = result.resolved.all()
        graph: Dict[str, Set[str]] = {agent.id: {Path(r.name).stem for r in resources}}
        known = set(graph[agent.id]) | {agent.id}
        for resource in resources:
            graph.setdefault(Path(resource.name).stem, set()).update(
                ref for ref in self._references(resource.content) if ref in known
            )

        cycles: List[List[str]] = []
        visited: Set[str] = set()

        def visit(node: str, stack: List[str]) -> None:
            if node in stack:
                cycles.append(stack[stack.index(node):] + [node])
                return
            if node in visited:
                return
            visited.add(node)
            for child in sorted(graph.get(node, ())):
                visit(child, stack + [node])

        visit(agent.id, [])
        return cycles

    def validate_dependencies(self, result: ResolvedDependencies) -> Dict[str, Any]:
        """Summarize a resolution into a validation report."""
        errors = [str(e) for e in result.errors]
        warnings = list(result.warnings)

        for resource in result.resolved.all():
            if not resource.content.strip():
                warnings.append(f"Dependency file is empty: {resource.path}")

        resolved = result.resolved_count
        missing = len(result.missing)
        if missing:
            errors.insert(0, f"{missing} dependencies could not be resolved")

        return {
            "valid": missing == 0,
            "errors": errors,
            "warnings": warnings,
            "statistics": {
                "total": resolved + missing,
                "resolved": resolved,
                "missing": missing,
            },
        }

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "enabled": self.config.enable_cache,
            "size": len(self._cache),
            "hits": self._cache_hits,
        }

    def clear_cache(self) -> None:
        self._cache.clear()
        self._cache_hits = 0
        logger.debug("dependency_cache_cleared")


__all__ = ['DependencyResolver']
