"""
Pytest configuration and shared fixtures for Kiro adapter tests.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator, Dict, Any

from kiro_adapter.dependencies.resolver import DependencyResolver
from kiro_adapter.discovery.agent_discovery import AgentDiscovery
from kiro_adapter.managers.activation import ActivationManager
from kiro_adapter.managers.monitor import ActivationMonitor
from kiro_adapter.models.agent import AgentSource, ConvertedAgent, IntegrationBundle
from kiro_adapter.registry.agent_registry import AgentRegistry
from kiro_adapter.transform.context_injector import ContextInjector
from kiro_adapter.transform.transformer import AgentTransformer
from kiro_adapter.utils.config import AdapterConfig


DEV_AGENT = """---
agent:
  name: James
  id: dev
  title: Full Stack Developer
  icon: "💻"
  whenToUse: Use for code implementation, debugging and refactoring
persona:
  role: Expert Senior Software Engineer & Implementation Specialist
  style: Extremely concise, pragmatic, detail-oriented
  identity: Expert who implements stories by reading requirements and executing tasks
  focus: Executing story tasks with precision
  core_principles:
    - Story has all info needed
    - Run tests before marking a task complete
commands:
  - help: Show numbered list of the following commands
  - run-tests: Execute linting and tests
dependencies:
  tasks:
    - create-doc.md
---
# dev

ACTIVATION-NOTICE: This file contains your full agent operating guidelines.

Implement the story one task at a time.
"""

QA_AGENT = """---
agent:
  name: Quinn
  id: qa
  title: Senior Developer & QA Architect
  icon: "🧪"
  whenToUse: Use for senior code review and refactoring
persona:
  role: Senior Developer & Test Architect
  style: Methodical, detail-oriented, quality-focused
  identity: Senior developer with deep expertise in code quality
commands:
  - help: Show numbered list of the following commands
  - review: Review the current story
dependencies:
  tasks:
    - review-story.md
---
# qa

Review every story before it is marked done.
"""

INFRA_AGENT = """---
agent:
  name: Alex
  id: infra-devops-platform
  title: DevOps Infrastructure Specialist
persona:
  role: DevOps Engineer & Platform Reliability Expert
commands:
  - help: Show numbered list of the following commands
dependencies:
  tasks:
    - create-doc.md
---
# infra-devops-platform

Keep environments reproducible.
"""

CREATE_DOC_TASK = """# Create Document from Template

Select a template and walk the user through each section.
"""

PACK_NAME = "bmad-infrastructure-devops"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def bmad_project(temp_dir: Path) -> Path:
    """Create a BMad project with two core agents and one expansion-pack agent."""
    core = temp_dir / "bmad-core"
    (core / "agents").mkdir(parents=True)
    (core / "tasks").mkdir(parents=True)
    (core / "agents" / "dev.md").write_text(DEV_AGENT, encoding="utf-8")
    (core / "agents" / "qa.md").write_text(QA_AGENT, encoding="utf-8")
    (core / "tasks" / "create-doc.md").write_text(CREATE_DOC_TASK, encoding="utf-8")

    pack_agents = temp_dir / "expansion-packs" / PACK_NAME / "agents"
    pack_agents.mkdir(parents=True)
    (pack_agents / "infra-devops-platform.md").write_text(INFRA_AGENT, encoding="utf-8")

    return temp_dir


@pytest.fixture
def adapter_config(bmad_project: Path) -> AdapterConfig:
    """Project-anchored configuration without retry or background delays."""
    return AdapterConfig.for_project(
        bmad_project,
        registry={"retry_delay_ms": 0},
        activation={"session_cleanup_interval": 0},
        monitor={"health_check_interval": 0},
    )


@pytest.fixture
def discovery(adapter_config: AdapterConfig) -> AgentDiscovery:
    return AgentDiscovery(adapter_config.discovery)


@pytest.fixture
def resolver(adapter_config: AdapterConfig) -> DependencyResolver:
    return DependencyResolver(adapter_config.resolver)


@pytest.fixture
def transformer(adapter_config: AdapterConfig) -> AgentTransformer:
    return AgentTransformer(adapter_config.transformer, ContextInjector())


@pytest.fixture
async def discovered_agents(discovery: AgentDiscovery) -> Dict[str, Any]:
    """Agents of the sample project keyed by id."""
    agents = await discovery.scan_all_agents()
    return {agent.id: agent for agent in agents}


@pytest.fixture
def make_converted(temp_dir: Path):
    """Factory for converted agents backed by a real source file."""

    def factory(agent_id: str = "dev", name: str = None, create_file: bool = True, **changes) -> ConvertedAgent:
        original = temp_dir / "sources" / f"{agent_id}.md"
        if create_file:
            original.parent.mkdir(parents=True, exist_ok=True)
            original.write_text(f"# {agent_id}\n", encoding="utf-8")

        fields = dict(
            id=agent_id,
            name=name if name is not None else f"BMad {agent_id.title()}",
            source=AgentSource.CORE,
            original_path=original,
            output_path=temp_dir / ".kiro" / "agents" / f"{agent_id}.md",
            capabilities=("help",),
            integration=IntegrationBundle(
                steering_rules=("product.md",),
                activation_handler=f"activate_{agent_id}",
            ),
        )
        fields.update(changes)
        return ConvertedAgent(**fields)

    return factory


@pytest.fixture
def registry(adapter_config: AdapterConfig) -> AgentRegistry:
    return AgentRegistry(adapter_config.registry)


@pytest.fixture
async def activation_manager(registry: AgentRegistry, adapter_config: AdapterConfig):
    """Started activation manager bound to the test registry."""
    manager = ActivationManager(registry, adapter_config.activation)
    await manager.start()
    yield manager
    await manager.stop()


@pytest.fixture
def monitor(adapter_config: AdapterConfig) -> ActivationMonitor:
    return ActivationMonitor(adapter_config.monitor)
