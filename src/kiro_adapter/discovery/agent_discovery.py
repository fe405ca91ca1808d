"""
Agent discovery for BMad core and expansion-pack agents.

Scans the configured source roots, parses each agent file with the first
applicable scanner and builds a catalog keyed by agent id. A malformed file
is logged and skipped; an unreadable root or a duplicate id fails the scan.
"""

import asyncio
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles.os

from ..models.agent import AgentMetadata, AgentSource
from ..utils.config import DiscoveryConfig
from ..utils.errors import DiscoveryError, MetadataExtractionError
from ..utils.events import EventEmitter
from ..utils.logging import get_logger
from .scanners import AgentScanner, MarkdownAgentScanner, SourceRoot


logger = get_logger(__name__)


class AgentDiscovery(EventEmitter):
    """
    Discovers agent definitions on disk.

    Events:
        agent_found: {"agent_id", "path", "source", "expansion_pack"}
        scan_complete: {"total", "errors"}
        error: {"path", "error"}
    """

    def __init__(
        self,
        config: Optional[DiscoveryConfig] = None,
        scanners: Optional[List[AgentScanner]] = None
    ):
        super().__init__("kiro-adapter.discovery.events")
        self.config = config or DiscoveryConfig()
        self._scanners: List[AgentScanner] = []
        self._agents: Dict[str, AgentMetadata] = {}
        self.errors: List[MetadataExtractionError] = []
        self.validation_results: Dict[str, Dict[str, Any]] = {}

        for scanner in scanners or [MarkdownAgentScanner()]:
            self.add_scanner(scanner)

    def add_scanner(self, scanner: AgentScanner) -> None:
        """Register a scanner; scanners are kept in descending priority."""
        self._scanners.append(scanner)
        self._scanners.sort(key=lambda s: s.priority, reverse=True)

    @property
    def scanners(self) -> List[AgentScanner]:
        return list(self._scanners)

    def default_source_roots(self) -> List[SourceRoot]:
        """Core agents directory plus every expansion pack's agents directory."""
        root = Path(self.config.root_path)
        roots = [SourceRoot(root / self.config.core_dir / self.config.agents_subdir, AgentSource.CORE)]

        packs_dir = root / self.config.expansion_packs_dir
        if self.config.include_expansion_packs and packs_dir.is_dir():
            for pack_dir in sorted(p for p in packs_dir.iterdir() if p.is_dir()):
                agents_dir = pack_dir / self.config.agents_subdir
                if agents_dir.is_dir():
                    roots.append(SourceRoot(agents_dir, AgentSource.EXPANSION_PACK, pack_dir.name))

        return roots

    async def scan_all_agents(self) -> List[AgentMetadata]:
        """Scan the core set and all expansion packs under the root path."""
        root = Path(self.config.root_path)
        if not await aiofiles.os.path.isdir(root):
            raise DiscoveryError(f"BMad root directory not found: {root}", path=root)

        roots = await asyncio.to_thread(self.default_source_roots)
        return await self.scan(roots)

    async def scan(self, source_roots: List[SourceRoot]) -> List[AgentMetadata]:
        """
        Scan the given source roots.

        Results keep root order, then file-name order within a root.

        Raises:
            DiscoveryError: a root is unreadable or two files share an id
        """
        self._agents = {}
        self.errors = []
        self.validation_results = {}
        discovered: List[AgentMetadata] = []

        for root in source_roots:
            files = await self._list_files(root)
            logger.info(
                "scanning_source_root",
                path=str(root.path),
                source=root.source.value,
                expansion_pack=root.expansion_pack,
                files=len(files)
            )

            for path in files:
                metadata = await self._scan_file(path, root)
                if metadata is None:
                    continue

                existing = self._agents.get(metadata.id)
                if existing is not None:
                    raise DiscoveryError(
                        f"Duplicate agent id '{metadata.id}' in {path} "
                        f"(already defined in {existing.file_path})",
                        path=path
                    )

                self._agents[metadata.id] = metadata
                discovered.append(metadata)
                await self._notify_event("agent_found", {
                    "agent_id": metadata.id,
                    "path": str(path),
                    "source": metadata.source.value,
                    "expansion_pack": metadata.expansion_pack,
                })

        logger.info("scan_complete", total=len(discovered), errors=len(self.errors))
        await self._notify_event("scan_complete", {
            "total": len(discovered),
            "errors": len(self.errors),
        })
        return discovered

    async def _list_files(self, root: SourceRoot) -> List[Path]:
        if not await aiofiles.os.path.isdir(root.path):
            raise DiscoveryError(f"Agent source directory not found: {root.path}", path=root.path)

        try:
            return await asyncio.to_thread(
                lambda: sorted(p for p in root.path.glob(self.config.file_pattern) if p.is_file())
            )
        except OSError as e:
            raise DiscoveryError(
                f"Cannot read agent source directory {root.path}: {e}",
                path=root.path,
                cause=e
            ) from e

    async def _scan_file(self, path: Path, root: SourceRoot) -> Optional[AgentMetadata]:
        scanner = next((s for s in self._scanners if s.applies(path)), None)
        if scanner is None:
            logger.debug("no_scanner_for_file", path=str(path))
            return None

        try:
            metadata = await scanner.scan(path, root)
        except MetadataExtractionError as e:
            await self._record_error(e)
            return None
        except (OSError, UnicodeDecodeError) as e:
            await self._record_error(
                MetadataExtractionError(f"Failed to read agent file: {e}", path=path, cause=e)
            )
            return None

        if self.config.validate_metadata:
            result = self.validate_agent(metadata)
            self.validation_results[metadata.id] = result
            if not result["valid"]:
                logger.warning(
                    "agent_validation_failed",
                    agent_id=metadata.id,
                    path=str(path),
                    errors=result["errors"]
                )

        return metadata

    async def _record_error(self, error: MetadataExtractionError) -> None:
        self.errors.append(error)
        logger.warning("agent_file_skipped", path=error.path, error=error.message)
        await self._notify_event("error", {"path": error.path, "error": error.message})

    def validate_agent(self, metadata: AgentMetadata) -> Dict[str, Any]:
        """Check an agent definition for required structure."""
        errors: List[str] = []
        warnings: List[str] = []

        if not metadata.id:
            errors.append("Missing agent ID")
        if not metadata.name:
            errors.append("Missing agent name")
        if not metadata.title:
            errors.append("Missing agent title")
        if not metadata.persona.role:
            errors.append("Missing persona role")
        if not Path(metadata.file_path).exists():
            errors.append("Agent file does not exist")
        if not metadata.raw_content.strip():
            errors.append("Agent file is empty")
        if not isinstance(metadata.front_matter.get("agent"), dict):
            errors.append("Missing agent configuration in YAML")

        unnamed = sum(1 for c in metadata.commands if not c.name)
        if unnamed:
            errors.append(f"{unnamed} commands missing names")

        if not metadata.commands:
            warnings.append("Agent declares no commands")
        if metadata.dependencies.other:
            warnings.append(
                "Unknown dependency categories: " + ", ".join(sorted(metadata.dependencies.other))
            )

        return {"valid": not errors, "errors": errors, "warnings": warnings}

    def get_agent(self, agent_id: str) -> Optional[AgentMetadata]:
        return self._agents.get(agent_id)

    def get_all_agents(self) -> List[AgentMetadata]:
        return list(self._agents.values())

    def get_agents_by_source(self, source: AgentSource) -> List[AgentMetadata]:
        return [a for a in self._agents.values() if a.source == source]

    def get_agents_by_expansion_pack(self, pack: str) -> List[AgentMetadata]:
        return [a for a in self._agents.values() if a.expansion_pack == pack]

    def get_statistics(self) -> Dict[str, Any]:
        """Summary of the last scan."""
        agents = list(self._agents.values())
        with_deps = sum(1 for a in agents if a.has_dependencies)
        return {
            "total": len(agents),
            "by_source": dict(Counter(a.source.value for a in agents)),
            "by_expansion_pack": dict(Counter(a.expansion_pack for a in agents if a.expansion_pack)),
            "with_dependencies": with_deps,
            "without_dependencies": len(agents) - with_deps,
            "total_commands": sum(len(a.commands) for a in agents),
            "invalid": sum(1 for r in self.validation_results.values() if not r["valid"]),
            "errors": len(self.errors),
        }


__all__ = ['AgentDiscovery']
