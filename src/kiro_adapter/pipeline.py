"""
End-to-end conversion of a BMad project into Kiro agents.

Stages run in order: discover, resolve dependencies, transform, write
agent and steering files, generate workflow hooks, register. Per-agent
failures are collected in the report; only a missing source root stops
the run.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .dependencies.resolver import DependencyResolver
from .discovery.agent_discovery import AgentDiscovery
from .hooks.generator import HookGenerator
from .models.agent import RegistrationResult, ResolvedDependencies
from .registry.agent_registry import AgentRegistry
from .transform.context_injector import ContextInjector
from .transform.transformer import AgentTransformer
from .transform.writer import write_converted_agent, write_steering_files
from .utils.config import AdapterConfig
from .utils.errors import KiroAdapterError, error_context
from .utils.logging import get_logger


logger = get_logger("kiro-adapter.pipeline")


@dataclass
class PipelineReport:
    """Outcome of one pipeline run."""
    discovered: List[str] = field(default_factory=list)
    converted: List[str] = field(default_factory=list)
    missing_dependencies: Dict[str, List[str]] = field(default_factory=dict)
    written_files: List[Path] = field(default_factory=list)
    hook_files: List[Path] = field(default_factory=list)
    hooks_generated: Optional[bool] = None
    registrations: List[RegistrationResult] = field(default_factory=list)
    errors: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    def add_error(self, stage: str, error: Exception) -> None:
        if isinstance(error, KiroAdapterError):
            entry = error.to_dict()["error"]
        else:
            entry = {"message": str(error), "type": type(error).__name__}
        self.errors.setdefault(stage, []).append(entry)

    @property
    def registered(self) -> List[str]:
        return [r.agent_id for r in self.registrations if r.success]

    @property
    def success(self) -> bool:
        return not self.errors and all(r.success for r in self.registrations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "discovered": list(self.discovered),
            "converted": list(self.converted),
            "registered": self.registered,
            "missing_dependencies": dict(self.missing_dependencies),
            "written_files": [str(p) for p in self.written_files],
            "hook_files": [str(p) for p in self.hook_files],
            "hooks_generated": self.hooks_generated,
            "registrations": [r.to_dict() for r in self.registrations],
            "errors": dict(self.errors),
            "success": self.success,
        }


class ConversionPipeline:
    """Runs every conversion stage with injected components."""

    def __init__(
        self,
        config: AdapterConfig,
        discovery: Optional[AgentDiscovery] = None,
        resolver: Optional[DependencyResolver] = None,
        transformer: Optional[AgentTransformer] = None,
        hook_generator: Optional[HookGenerator] = None,
        registry: Optional[AgentRegistry] = None
    ):
        self.config = config
        self.discovery = discovery if discovery is not None else AgentDiscovery(config.discovery)
        self.resolver = resolver if resolver is not None else DependencyResolver(config.resolver)
        self.transformer = transformer if transformer is not None else AgentTransformer(config.transformer, ContextInjector())
        self.hook_generator = hook_generator if hook_generator is not None else HookGenerator(config.hooks)
        self.registry = registry if registry is not None else AgentRegistry(config.registry)

    @property
    def steering_dir(self) -> Path:
        return Path(self.config.transformer.output_dir).parent / "steering"

    async def run(
        self,
        workflow: Optional[Dict[str, Any]] = None,
        write_output: bool = True,
        register: bool = True
    ) -> PipelineReport:
        """
        Convert every discovered agent.

        Raises:
            DiscoveryError: the BMad root or a source directory is missing
        """
        report = PipelineReport()

        with error_context("pipeline", "discover", root=str(self.config.discovery.root_path)):
            agents = await self.discovery.scan_all_agents()
        report.discovered = [agent.id for agent in agents]
        for error in self.discovery.errors:
            report.add_error("discovery", error)

        dependencies: Dict[str, ResolvedDependencies] = {}
        for agent in agents:
            resolved = await self.resolver.resolve_dependencies(agent)
            dependencies[agent.id] = resolved
            if resolved.missing:
                report.missing_dependencies[agent.id] = list(resolved.missing)

        batch = self.transformer.batch_transform(agents, dependencies)
        report.converted = [agent.id for agent in batch.converted]
        for error in batch.errors:
            report.add_error("transform", error)

        if write_output:
            for converted in batch.converted:
                try:
                    report.written_files.append(await write_converted_agent(converted))
                    await write_steering_files(converted, self.steering_dir)
                except OSError as e:
                    logger.error("agent_write_failed", agent_id=converted.id, error=str(e))
                    report.add_error("write", e)

        if workflow is not None:
            before = len(self.hook_generator.generated_files)
            output = self.config.hooks.output_path if write_output else None
            report.hooks_generated = await self.hook_generator.generate_hooks_from_workflow(workflow, output)
            report.hook_files = list(self.hook_generator.generated_files[before:])

        if register:
            report.registrations = await self.registry.register_batch(batch.converted)

        logger.info(
            "pipeline_complete",
            discovered=len(report.discovered),
            converted=len(report.converted),
            registered=len(report.registered),
            errors=sum(len(v) for v in report.errors.values())
        )
        return report
