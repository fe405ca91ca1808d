"""
Unit tests for hook descriptors, templates and the hook generator.
"""

import time

import pytest
import yaml

from kiro_adapter.hooks.config import HookAction, HookDescriptor, HookTrigger, kiro_event_type
from kiro_adapter.hooks.generator import HookGenerator, hook_filename
from kiro_adapter.hooks.templates import HookTemplate, TemplateManager
from kiro_adapter.utils.config import HookGeneratorConfig
from kiro_adapter.utils.errors import ValidationError


BUILTIN_HOOKS = [
    "BMad Story Progression",
    "BMad Task Completion",
    "BMad Code Review",
    "BMad Git Commit Status Update",
    "BMad Documentation Update",
    "BMad Manual Workflow Control",
    "BMad Build Status Integration",
]

WORKFLOW = {
    "devStoryLocation": "docs/sprint",
    "phases": [
        {"name": "planning", "agent": "pm", "pattern": "docs/prd.md"},
        {"name": "development", "agent": "dev"},
    ],
    "transitions": [
        {"from": "planning", "to": "development"},
    ],
}


def make_hook(name: str = "BMad Custom", **changes) -> HookDescriptor:
    fields = dict(
        name=name,
        description="A custom hook",
        trigger=HookTrigger(type="file_save", pattern="src/**/*.py"),
        action=HookAction(agent="bmad-dev", task="review", context=["#File"]),
    )
    fields.update(changes)
    return HookDescriptor(**fields)


@pytest.fixture
def generator(temp_dir) -> HookGenerator:
    return HookGenerator(HookGeneratorConfig(output_path=temp_dir / "hooks"))


class TestHookDescriptor:
    """Test hook validation and Kiro integration metadata."""

    def test_valid_hook(self):
        """Test a complete hook validates."""
        assert make_hook().is_valid()

    @pytest.mark.parametrize("changes,field", [
        ({"name": ""}, "name"),
        ({"description": ""}, "description"),
        ({"trigger": HookTrigger(type="")}, "trigger.type"),
        ({"trigger": HookTrigger(type="on_lunch_break")}, "trigger.type"),
        ({"action": HookAction(agent="")}, "action.agent"),
    ])
    def test_invalid_hooks(self, changes, field):
        """Test each required field is enforced."""
        with pytest.raises(ValidationError) as exc_info:
            make_hook(**changes).validate()

        assert exc_info.value.field == field

    def test_from_dict_rejects_bad_shapes(self):
        """Test non-mapping hooks and sections are rejected."""
        with pytest.raises(ValidationError):
            HookDescriptor.from_dict(["not", "a", "hook"])
        with pytest.raises(ValidationError):
            HookDescriptor.from_dict({"name": "x", "trigger": "file_change", "action": {}})

    @pytest.mark.parametrize("changes,field", [
        ({"name": 42}, "name"),
        ({"description": ["text"]}, "description"),
        ({"trigger": {"type": {"type": "file_save"}}}, "trigger.type"),
        ({"action": {"agent": 7}}, "action.agent"),
        ({"action": {"agent": "bmad-dev", "context": "#File"}}, "action.context"),
        ({"metadata": "owner: qa"}, "metadata"),
        ({"settings": ["debounce"]}, "settings"),
    ])
    def test_from_dict_rejects_wrong_types(self, changes, field):
        """Test field types are checked when reading a mapping."""
        data = make_hook().to_dict()
        data.update(changes)

        with pytest.raises(ValidationError) as exc_info:
            HookDescriptor.from_dict(data)

        assert exc_info.value.field == field

    def test_file_trigger_integration(self):
        """Test file triggers watch actively with a debounce."""
        data = make_hook(settings={"debounce_ms": 250}).integrate(retry_attempts=5, retry_delay_ms=10)

        assert data["trigger"]["kiro_event_type"] == "kiro.file.saved"
        assert data["trigger"]["watch_mode"] == "active"
        assert data["trigger"]["event_debounce"] == 250
        assert data["action"]["activation_method"] == "kiro_native"
        assert data["action"]["context_validation"]["required_contexts"] == ["#File"]
        assert data["error_handling"]["retry_attempts"] == 5
        assert data["kiro_integration"]["supports_agent_activation"] is True

    def test_manual_trigger_integration(self):
        """Test manual triggers get UI placement hints."""
        data = make_hook(trigger=HookTrigger(type="manual")).integrate()

        assert data["trigger"]["kiro_event_type"] == "kiro.user.manual_trigger"
        assert data["trigger"]["ui_integration"]["button_location"] == "agent_panel"
        assert "watch_mode" not in data["trigger"]

    def test_custom_event_type(self):
        """Test unknown trigger types map to custom events."""
        assert kiro_event_type("git_commit") == "kiro.git.commit"
        assert kiro_event_type("deploy") == "kiro.custom.deploy"


class TestTemplateManager:
    """Test the built-in hook templates."""

    def test_builtin_templates(self):
        """Test every built-in template is registered."""
        manager = TemplateManager()

        assert [t.name for t in manager.list_templates()] == BUILTIN_HOOKS
        assert "story" in manager.get_categories()

    def test_variable_substitution(self):
        """Test template variables fill trigger patterns."""
        manager = TemplateManager()

        hook = manager.create_hook_from_template("BMad Story Progression", {"story_location": "docs/sprint"})

        assert hook.trigger.pattern == "docs/sprint/*.story.md"
        assert hook.action.agent == "bmad-scrum-master"
        assert hook.metadata["bmad_integration"] is True

    def test_unknown_template(self):
        """Test a missing template name is rejected."""
        with pytest.raises(ValidationError):
            TemplateManager().create_hook_from_template("Nope")

    def test_unknown_variable(self):
        """Test undeclared variables are rejected by a template."""
        template = TemplateManager().get_template("BMad Code Review")

        with pytest.raises(ValidationError):
            template.create_hook({"story_location": "x"})

    def test_custom_template(self):
        """Test caller templates can replace the built-ins."""
        template = HookTemplate(
            name="Lint On Save",
            description="Lint files on save",
            category="quality",
            trigger={"type": "file_save", "pattern": "${glob}"},
            action={"agent": "bmad-qa", "task": "lint"},
            workflow_type="lint",
            variables={"glob": "**/*.py"},
        )
        manager = TemplateManager(templates=[template])

        hooks = manager.create_suite()

        assert [h.name for h in hooks] == ["Lint On Save"]
        assert hooks[0].trigger.pattern == "**/*.py"


class TestHookGenerator:
    """Test hook generation from workflows."""

    def test_hook_filename(self):
        """Test hook names are slugified."""
        assert hook_filename("BMad Story Progression") == "bmad-story-progression.yaml"
        assert hook_filename("BMad  Planning -> Dev!") == "bmad-planning-dev.yaml"

    def test_empty_workflow_gets_builtin_suite(self, generator):
        """Test an empty workflow still yields the built-in hooks."""
        hooks = generator.generate_workflow_hooks({})

        assert [h.name for h in hooks] == BUILTIN_HOOKS

    def test_phases_and_transitions(self, generator):
        """Test phase and transition hooks are added after the templates."""
        hooks = {h.name: h for h in generator.generate_workflow_hooks(WORKFLOW)}

        assert hooks["BMad Story Progression"].trigger.pattern == "docs/sprint/*.story.md"

        planning = hooks["BMad Planning Phase"]
        assert planning.trigger.type == "file_change"
        assert planning.trigger.pattern == "docs/prd.md"
        assert planning.action.agent == "bmad-pm"

        development = hooks["BMad Development Phase"]
        assert development.trigger.type == "manual"
        assert development.action.task == "execute-development"

        transition = hooks["BMad Planning To Development Transition"]
        assert transition.action.agent == "bmad-dev"
        assert transition.trigger.condition == "planning_complete"
        assert transition.metadata["workflow_type"] == "transition"

    def test_malformed_items_are_skipped(self, generator):
        """Test unexpected workflow shapes do not fail generation."""
        workflow = {
            "phases": ["oops", {"name": "no-agent"}],
            "transitions": [{"from": "a"}, {"from": "a", "to": "b"}],
            "automations": [{"name": "bad", "trigger": "nope"}],
        }

        hooks = generator.generate_workflow_hooks(workflow)

        assert [h.name for h in hooks] == BUILTIN_HOOKS

    def test_invalid_automation_trigger_is_dropped(self, generator):
        """Test automations with unknown trigger types are left out."""
        workflow = {"automations": [
            make_hook("BMad Valid Automation").to_dict(),
            make_hook("BMad Invalid Automation", trigger=HookTrigger(type="bogus")).to_dict(),
        ]}

        names = [h.name for h in generator.generate_workflow_hooks(workflow)]

        assert "BMad Valid Automation" in names
        assert "BMad Invalid Automation" not in names

    def test_transition_trigger_mapping(self, generator):
        """Test a transition may give its trigger as a mapping."""
        workflow = {
            "phases": [{"name": "planning", "agent": "pm", "pattern": "docs/prd.md"}],
            "transitions": [
                {"from": "planning", "to": "development", "agent": "dev",
                 "trigger": {"type": "file_save", "pattern": "docs/prd.md"}},
                {"from": "review", "to": "release", "agent": "po", "trigger": ["file_save"]},
            ],
        }

        hooks = {h.name: h for h in generator.generate_workflow_hooks(workflow)}

        transition = hooks["BMad Planning To Development Transition"]
        assert transition.trigger.type == "file_save"
        assert transition.trigger.pattern == "docs/prd.md"
        assert transition.trigger.condition == "planning_complete"
        assert "BMad Review To Release Transition" not in hooks
        assert "BMad Planning Phase" in hooks

    def test_automation_with_non_string_name(self, generator):
        """Test an automation named by a number is skipped, not fatal."""
        automation = make_hook().to_dict()
        automation["name"] = 42
        workflow = {"automations": [automation, make_hook("BMad Lint").to_dict()]}

        names = [h.name for h in generator.generate_workflow_hooks(workflow)]

        assert names == BUILTIN_HOOKS + ["BMad Lint"]
        assert hook_filename(42) == "42.yaml"

    def test_automation_with_scalar_metadata(self, generator):
        """Test non-mapping metadata or settings skip only that automation."""
        bad_metadata = make_hook("BMad Bad Metadata").to_dict()
        bad_metadata["metadata"] = "owner: qa"
        bad_settings = make_hook("BMad Bad Settings").to_dict()
        bad_settings["settings"] = ["debounce"]
        workflow = {
            "phases": [{"name": "development", "agent": "dev"}],
            "automations": [bad_metadata, bad_settings],
        }

        names = [h.name for h in generator.generate_workflow_hooks(workflow)]

        assert names == BUILTIN_HOOKS + ["BMad Development Phase"]

    @pytest.mark.asyncio
    async def test_odd_items_do_not_block_saving(self, generator, temp_dir):
        """Test valid hooks are still written when one item has an odd shape."""
        workflow = {
            "phases": [{"name": "planning", "agent": "pm", "pattern": "docs/prd.md"}],
            "transitions": [{"from": "planning", "to": "dev", "agent": "dev", "trigger": {"type": ["x"]}}],
        }

        assert await generator.generate_hooks_from_workflow(workflow, temp_dir / "out") is True
        assert (temp_dir / "out" / "bmad-planning-phase.yaml").exists()
        assert len(list((temp_dir / "out").glob("*.yaml"))) == len(BUILTIN_HOOKS) + 1

    def test_duplicate_names_keep_first(self, generator):
        """Test hooks that map to the same file are de-duplicated."""
        workflow = {"automations": [make_hook("BMad Code Review", description="Override").to_dict()]}

        hooks = [h for h in generator.generate_workflow_hooks(workflow) if h.name == "BMad Code Review"]

        assert len(hooks) == 1
        assert hooks[0].action.agent == "bmad-qa"

    def test_validate_hook_dict(self, generator):
        """Test validation accepts mappings."""
        assert generator.validate_hook(make_hook().to_dict()) is True
        assert generator.validate_hook({"name": "x", "description": "y", "trigger": {"type": "manual"}, "action": {}}) is False

    @pytest.mark.asyncio
    async def test_generate_and_save(self, generator, temp_dir):
        """Test hooks are written as YAML files."""
        output = temp_dir / "hooks"

        assert await generator.generate_hooks_from_workflow(WORKFLOW, output) is True

        story = output / "bmad-story-progression.yaml"
        review = output / "bmad-code-review.yaml"
        assert story.exists()
        assert review.exists()
        assert (output / "bmad-planning-phase.yaml").exists()

        data = yaml.safe_load(review.read_text(encoding="utf-8"))
        assert data["name"] == "BMad Code Review"
        assert data["trigger"]["kiro_event_type"] == "kiro.file.changed"
        assert data["trigger"]["event_debounce"] == 2000
        assert data["action"]["agent"] == "bmad-qa"
        assert len(generator.generated_files) == len(WORKFLOW["phases"]) + len(BUILTIN_HOOKS) + 1

    @pytest.mark.asyncio
    async def test_generate_without_output(self, generator, temp_dir):
        """Test generation without an output path writes nothing."""
        assert await generator.generate_hooks_from_workflow({}) is True
        assert generator.generated_files == []
        assert not (temp_dir / "hooks").exists()

    @pytest.mark.asyncio
    async def test_missing_or_invalid_workflow(self, generator):
        """Test missing and non-mapping workflows report failure."""
        assert await generator.generate_hooks_from_workflow(None) is False
        assert await generator.generate_hooks_from_workflow(["phases"]) is False

    @pytest.mark.asyncio
    async def test_save_skips_invalid(self, generator, temp_dir):
        """Test invalid hooks are not written."""
        hooks = [make_hook("BMad One"), make_hook("BMad Two", action=HookAction(agent=""))]

        paths = await generator.save_hooks(hooks, temp_dir / "out")

        assert [p.name for p in paths] == ["bmad-one.yaml"]

    @pytest.mark.asyncio
    @pytest.mark.slow
    async def test_many_hooks_are_saved_quickly(self, generator, temp_dir):
        """Test dozens of hooks are generated and written in well under a second each."""
        workflow = {"automations": [make_hook(f"BMad Automation {i}").to_dict() for i in range(48)]}

        started = time.perf_counter()
        result = await generator.generate_hooks_from_workflow(workflow, temp_dir / "many")
        elapsed = time.perf_counter() - started

        assert result is True
        assert len(list((temp_dir / "many").glob("*.yaml"))) == 48 + len(BUILTIN_HOOKS)
        assert elapsed < 5.0
