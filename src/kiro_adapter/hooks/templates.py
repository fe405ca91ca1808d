"""Built-in hook templates for BMad workflows"""

import copy
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from .config import HookDescriptor, HookTrigger, HookAction, HookTriggerType
from ..utils.logging import get_logger
from ..utils.errors import ValidationError

logger = get_logger(__name__)

DEFAULT_STORY_LOCATION = "docs/stories"
DEFAULT_SPEC_LOCATION = ".kiro/specs"
CODE_FILE_PATTERN = "**/*.{js,ts,py,java,cpp,c,go,rs}"


@dataclass
class HookTemplate:
    """Template for creating hooks

    String values in the trigger may reference ``${variable}`` placeholders,
    filled from the template defaults and any caller supplied values.
    """
    name: str
    description: str
    category: str
    trigger: Dict[str, Any]
    action: Dict[str, Any]
    workflow_type: str
    variables: Dict[str, Any] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)

    def create_hook(
        self,
        variables: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> HookDescriptor:
        """Create hook from template

        Args:
            variables: Placeholder values overriding the template defaults
            metadata: Extra metadata merged over the workflow metadata

        Returns:
            Hook descriptor
        """
        values = {**self.variables, **(variables or {})}
        unknown = set(variables or {}) - set(self.variables)
        if unknown:
            raise ValidationError(
                "variable",
                sorted(unknown),
                f"Template '{self.name}' does not define variables: {', '.join(sorted(unknown))}"
            )

        trigger = self._substitute(copy.deepcopy(self.trigger), values)
        hook_metadata = {"bmad_integration": True, "workflow_type": self.workflow_type}
        hook_metadata.update(metadata or {})

        return HookDescriptor(
            name=self.name,
            description=self.description,
            trigger=HookTrigger.from_dict(trigger),
            action=HookAction.from_dict(copy.deepcopy(self.action)),
            metadata=hook_metadata,
            settings=dict(self.settings)
        )

    def _substitute(self, value: Any, variables: Dict[str, Any]) -> Any:
        """Recursively substitute variables"""
        if isinstance(value, str):
            for var_name, var_value in variables.items():
                value = value.replace(f"${{{var_name}}}", str(var_value))
            return value
        if isinstance(value, dict):
            return {k: self._substitute(v, variables) for k, v in value.items()}
        if isinstance(value, list):
            return [self._substitute(v, variables) for v in value]
        return value


def _builtin_templates() -> List[HookTemplate]:
    return [
        HookTemplate(
            name="BMad Story Progression",
            description="Automatically progress to the next story when the current story is marked Done",
            category="story",
            workflow_type="story_progression",
            trigger={
                "type": HookTriggerType.FILE_CHANGE.value,
                "pattern": "${story_location}/*.story.md",
                "condition": "story_status_done",
            },
            action={
                "agent": "bmad-scrum-master",
                "task": "create-next-story",
                "context": ["#File", "#Git Diff", "#Codebase"],
            },
            variables={"story_location": DEFAULT_STORY_LOCATION},
            tags=["story", "progression"]
        ),
        HookTemplate(
            name="BMad Task Completion",
            description="Update story status when spec tasks are completed",
            category="story",
            workflow_type="task_completion",
            trigger={
                "type": HookTriggerType.FILE_CHANGE.value,
                "pattern": "${spec_location}/*/tasks.md",
                "condition": "task_marked_complete",
            },
            action={
                "agent": "bmad-scrum-master",
                "task": "update-story-status",
                "context": ["#File", "#Folder"],
            },
            variables={"spec_location": DEFAULT_SPEC_LOCATION},
            tags=["story", "tasks"]
        ),
        HookTemplate(
            name="BMad Code Review",
            description="Trigger BMad QA agent for code review when code files are saved",
            category="quality",
            workflow_type="code_review",
            trigger={
                "type": HookTriggerType.FILE_CHANGE.value,
                "pattern": "${code_pattern}",
                "condition": "file_modified",
            },
            action={
                "agent": "bmad-qa",
                "task": "review-code-changes",
                "context": ["#File", "#Git Diff", "#Problems"],
            },
            variables={"code_pattern": CODE_FILE_PATTERN},
            settings={"debounce_ms": 2000},
            tags=["review", "qa"]
        ),
        HookTemplate(
            name="BMad Git Commit Status Update",
            description="Update story status when commits are made",
            category="vcs",
            workflow_type="git_commit",
            trigger={
                "type": HookTriggerType.GIT_COMMIT.value,
                "condition": "commit_created",
            },
            action={
                "agent": "bmad-scrum-master",
                "task": "update-story-status",
                "context": ["#Git Diff", "#File"],
            },
            tags=["git", "story"]
        ),
        HookTemplate(
            name="BMad Documentation Update",
            description="Update specs when requirement documents change",
            category="documentation",
            workflow_type="documentation_update",
            trigger={
                "type": HookTriggerType.FILE_CHANGE.value,
                "pattern": "${docs_location}/requirements/**/*.md",
                "condition": "documentation_modified",
            },
            action={
                "agent": "bmad-architect",
                "task": "update-spec-requirements",
                "context": ["#File", "#Folder", "#Codebase"],
            },
            variables={"docs_location": "docs"},
            tags=["docs", "requirements"]
        ),
        HookTemplate(
            name="BMad Manual Workflow Control",
            description="Provide manual control over BMad workflow progression",
            category="workflow",
            workflow_type="manual_control",
            trigger={
                "type": HookTriggerType.MANUAL.value,
                "button_text": "Control Workflow",
            },
            action={
                "agent": "bmad-scrum-master",
                "task": "manual-workflow-control",
                "context": ["#File", "#Folder", "#Codebase"],
            },
            settings={"show_in_command_palette": True},
            tags=["workflow", "manual"]
        ),
        HookTemplate(
            name="BMad Build Status Integration",
            description="Integrate build results with story status",
            category="build",
            workflow_type="build_status",
            trigger={
                "type": HookTriggerType.BUILD_COMPLETE.value,
                "condition": "build_status_changed",
            },
            action={
                "agent": "bmad-dev",
                "task": "integrate-build-results",
                "context": ["#Terminal", "#Problems"],
            },
            tags=["build"]
        ),
    ]


class TemplateManager:
    """Manager for hook templates"""

    def __init__(self, templates: Optional[List[HookTemplate]] = None):
        self._templates: Dict[str, HookTemplate] = {}
        for template in templates if templates is not None else _builtin_templates():
            self.add_template(template)

    def add_template(self, template: HookTemplate) -> None:
        self._templates[template.name] = template
        logger.debug("hook_template_added", template=template.name, category=template.category)

    def get_template(self, name: str) -> Optional[HookTemplate]:
        """Get template by name"""
        return self._templates.get(name)

    def list_templates(self, category: Optional[str] = None) -> List[HookTemplate]:
        """List templates, optionally filtered by category"""
        templates = list(self._templates.values())
        if category:
            templates = [t for t in templates if t.category == category]
        return templates

    def get_categories(self) -> List[str]:
        return sorted({t.category for t in self._templates.values()})

    def create_hook_from_template(
        self,
        template_name: str,
        variables: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> HookDescriptor:
        """Create a hook from a named template

        Only the variables a template declares are passed through, so a
        single workflow variable set can be shared by every template.
        """
        template = self.get_template(template_name)
        if not template:
            raise ValidationError("template", template_name, "Template not found")

        scoped = {k: v for k, v in (variables or {}).items() if k in template.variables}
        return template.create_hook(scoped, metadata)

    def create_suite(
        self,
        variables: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> List[HookDescriptor]:
        """Create one hook from every registered template"""
        return [
            self.create_hook_from_template(name, variables, metadata)
            for name in self._templates
        ]
