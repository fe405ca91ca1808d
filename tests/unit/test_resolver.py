"""
Unit tests for DependencyResolver.
"""

import pytest
from pathlib import Path

from kiro_adapter.dependencies.resolver import DependencyResolver
from kiro_adapter.models.agent import AgentDependencies, AgentMetadata, AgentSource
from kiro_adapter.utils.config import ResolverConfig
from kiro_adapter.utils.errors import DependencyError


def make_agent(root: Path, agent_id: str = "pm", pack: str = None, **dependencies) -> AgentMetadata:
    source = AgentSource.EXPANSION_PACK if pack else AgentSource.CORE
    return AgentMetadata(
        id=agent_id,
        name=agent_id.upper(),
        file_path=root / f"{agent_id}.md",
        source=source,
        expansion_pack=pack,
        dependencies=AgentDependencies(**{k: tuple(v) for k, v in dependencies.items()}),
    )


class TestDependencyResolver:
    """Test dependency lookup."""

    @pytest.mark.asyncio
    async def test_resolves_core_task(self, resolver, discovered_agents, bmad_project):
        """Test the dev agent's task is found in bmad-core."""
        result = await resolver.resolve_dependencies(discovered_agents["dev"])

        assert result.agent_id == "dev"
        assert result.missing == []
        assert result.is_complete
        assert len(result.resolved.tasks) == 1

        task = result.resolved.tasks[0]
        assert task.name == "create-doc.md"
        assert task.path == bmad_project / "bmad-core" / "tasks" / "create-doc.md"
        assert task.content.startswith("# Create Document")
        assert task.size > 0

    @pytest.mark.asyncio
    async def test_reports_missing_task(self, resolver, discovered_agents):
        """Test a missing dependency is collected, not raised."""
        result = await resolver.resolve_dependencies(discovered_agents["qa"])

        assert result.missing == ["review-story.md"]
        assert not result.is_complete
        assert result.resolved_count == 0
        assert result.missing_in("tasks") == ["review-story.md"]
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], DependencyError)
        assert result.errors[0].dependency_type == "tasks"
        assert result.missing_details[0].searched_paths

    @pytest.mark.asyncio
    async def test_agent_without_dependencies(self, resolver, bmad_project):
        """Test an agent declaring nothing resolves to an empty result."""
        result = await resolver.resolve_dependencies(make_agent(bmad_project))

        assert result.resolved_count == 0
        assert result.missing == []
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_expansion_pack_falls_back_to_core(self, resolver, discovered_agents, bmad_project):
        """Test pack agents find shared tasks in bmad-core."""
        result = await resolver.resolve_dependencies(discovered_agents["infra-devops-platform"])

        assert result.missing == []
        assert result.resolved.tasks[0].path == bmad_project / "bmad-core" / "tasks" / "create-doc.md"

    @pytest.mark.asyncio
    async def test_expansion_pack_prefers_own_tree(self, resolver, bmad_project):
        """Test a pack's own copy wins over bmad-core."""
        pack_tasks = bmad_project / "expansion-packs" / "bmad-infrastructure-devops" / "tasks"
        pack_tasks.mkdir(parents=True)
        (pack_tasks / "create-doc.md").write_text("# Pack version\n", encoding="utf-8")

        agent = make_agent(bmad_project, "infra", pack="bmad-infrastructure-devops", tasks=["create-doc.md"])
        result = await resolver.resolve_dependencies(agent)

        assert result.resolved.tasks[0].content == "# Pack version\n"

    @pytest.mark.asyncio
    async def test_alternative_spelling(self, resolver, bmad_project):
        """Test underscores and missing extensions still resolve."""
        agent = make_agent(bmad_project, tasks=["create_doc"])

        result = await resolver.resolve_dependencies(agent)

        assert result.missing == []
        assert result.resolved.tasks[0].path.name == "create-doc.md"

    @pytest.mark.asyncio
    async def test_template_extension(self, resolver, bmad_project):
        """Test templates are looked up as YAML files."""
        templates = bmad_project / "bmad-core" / "templates"
        templates.mkdir()
        (templates / "prd-tmpl.yaml").write_text("template:\n  id: prd\n", encoding="utf-8")

        result = await resolver.resolve_dependencies(make_agent(bmad_project, templates=["prd-tmpl.md"]))

        assert result.missing == []
        assert result.resolved.templates[0].path == templates / "prd-tmpl.yaml"

    @pytest.mark.asyncio
    async def test_suggestions_for_near_misses(self, resolver, bmad_project):
        """Test similar file names are suggested for a missing dependency."""
        (bmad_project / "bmad-core" / "tasks" / "review-stories.md").write_text("# Review\n", encoding="utf-8")

        result = await resolver.resolve_dependencies(make_agent(bmad_project, tasks=["review-story.md"]))

        assert result.missing == ["review-story.md"]
        assert "review-stories.md" in result.missing_details[0].suggestions

    @pytest.mark.asyncio
    async def test_circular_reference_warning(self, resolver, bmad_project):
        """Test tasks that reference each other produce a warning."""
        tasks = bmad_project / "bmad-core" / "tasks"
        (tasks / "a.md").write_text("Run [[b]] first\n", encoding="utf-8")
        (tasks / "b.md").write_text("Then @include a.md\n", encoding="utf-8")

        result = await resolver.resolve_dependencies(make_agent(bmad_project, tasks=["a", "b"]))

        assert result.missing == []
        assert any("Circular dependencies detected" in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_validate_dependencies(self, resolver, discovered_agents):
        """Test the validation summary of a partial resolution."""
        result = await resolver.resolve_dependencies(discovered_agents["qa"])

        report = resolver.validate_dependencies(result)

        assert report["valid"] is False
        assert report["statistics"] == {"total": 1, "resolved": 0, "missing": 1}
        assert report["errors"][0] == "1 dependencies could not be resolved"

    @pytest.mark.asyncio
    async def test_cache(self, bmad_project, discovered_agents):
        """Test cached lookups are counted and can be cleared."""
        resolver = DependencyResolver(ResolverConfig(root_path=bmad_project, enable_cache=True))

        await resolver.resolve_dependencies(discovered_agents["dev"])
        await resolver.resolve_dependencies(discovered_agents["dev"])

        stats = resolver.get_cache_stats()
        assert stats["size"] == 1
        assert stats["hits"] == 1

        resolver.clear_cache()
        assert resolver.get_cache_stats()["size"] == 0


class TestNaming:
    """Test file name helpers."""

    def test_ensure_extension(self):
        """Test category extensions are applied."""
        resolver = DependencyResolver(ResolverConfig(root_path=Path("/tmp")))

        assert resolver.ensure_extension("tasks", "create-doc") == "create-doc.md"
        assert resolver.ensure_extension("tasks", "create-doc.md") == "create-doc.md"
        assert resolver.ensure_extension("templates", "prd-tmpl.md") == "prd-tmpl.yaml"

    def test_alternative_names(self):
        """Test alternative spellings for a file name."""
        resolver = DependencyResolver(ResolverConfig(root_path=Path("/tmp")))

        names = resolver.alternative_names("bmad-create-doc.md")

        assert "bmad_create_doc.md" in names
        assert "create-doc.md" in names
        assert "bmad-create-doc-task.md" in names

    def test_candidate_order(self):
        """Test core agents look in bmad-core before common."""
        root = Path("/project")
        resolver = DependencyResolver(ResolverConfig(root_path=root))

        candidates = resolver.candidate_paths(make_agent(root), "tasks", "create-doc")

        assert candidates[0] == root / "bmad-core" / "tasks" / "create-doc.md"
        assert candidates[1] == root / "common" / "tasks" / "create-doc.md"
        assert len(candidates) == len(set(candidates))
