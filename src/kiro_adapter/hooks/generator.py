"""
Hook generation from BMad workflow definitions.

A workflow is a mapping that may carry ``phases``, ``transitions`` and
``automations``. Every generated suite starts with the built-in templates;
workflow items add phase, transition and custom hooks on top. Items with
an unexpected shape are logged and skipped rather than failing the run.
"""

import re
import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .config import HookDescriptor, HookTrigger, HookAction, HookTriggerType
from .templates import TemplateManager, DEFAULT_STORY_LOCATION, DEFAULT_SPEC_LOCATION
from ..storage.files import write_text_atomic, ensure_directory
from ..utils.config import HookGeneratorConfig
from ..utils.errors import ValidationError
from ..utils.logging import get_logger


logger = get_logger("kiro-adapter.hooks")

DEFAULT_PHASE_CONTEXT = ["#File", "#Folder"]


def hook_filename(name: str) -> str:
    """Slugify a hook name into its YAML file name."""
    slug = re.sub(r"[^a-z0-9\s-]", "", str(name).lower())
    slug = re.sub(r"\s+", "-", slug.strip())
    slug = re.sub(r"-+", "-", slug)
    return f"{slug}.yaml"


def bmad_agent_id(agent: str) -> str:
    return agent if agent.startswith("bmad-") else f"bmad-{agent}"


def _title(value: str) -> str:
    return " ".join(part.capitalize() for part in re.split(r"[-_\s]+", value) if part)


class HookGenerator:
    """Builds Kiro hook files for BMad workflows."""

    def __init__(
        self,
        config: Optional[HookGeneratorConfig] = None,
        templates: Optional[TemplateManager] = None
    ):
        self.config = config or HookGeneratorConfig()
        self.templates = templates if templates is not None else TemplateManager()
        self.generated_files: List[Path] = []

    def validate_hook(self, hook: Union[HookDescriptor, Dict[str, Any]]) -> bool:
        """Return True when the hook is structurally valid."""
        try:
            descriptor = hook if isinstance(hook, HookDescriptor) else HookDescriptor.from_dict(hook)
            descriptor.validate()
        except ValidationError as e:
            logger.debug("hook_invalid", field=e.field, constraint=e.constraint)
            return False
        return True

    def generate_hook_yaml(self, hook: HookDescriptor) -> str:
        """Render a hook, with Kiro event integration, as YAML."""
        data = hook.integrate(
            retry_attempts=self.config.max_retries,
            retry_delay_ms=self.config.retry_delay_ms
        )
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)

    def generate_workflow_hooks(self, workflow: Dict[str, Any]) -> List[HookDescriptor]:
        """Build the hook suite for a workflow."""
        generated_at = datetime.now(timezone.utc).isoformat()
        metadata = {"generated_at": generated_at}
        variables = {
            "story_location": workflow.get("story_location")
            or workflow.get("devStoryLocation")
            or DEFAULT_STORY_LOCATION,
            "spec_location": workflow.get("spec_location") or DEFAULT_SPEC_LOCATION,
        }

        hooks = self.templates.create_suite(variables, metadata)

        phase_agents: Dict[str, str] = {}
        for phase in self._items(workflow, "phases"):
            hook = self._build("phases", phase, self._phase_hook, phase, metadata)
            if hook:
                phase_agents[str(phase["name"])] = hook.action.agent
                hooks.append(hook)

        for transition in self._items(workflow, "transitions"):
            hook = self._build("transitions", transition, self._transition_hook, transition, phase_agents, metadata)
            if hook:
                hooks.append(hook)

        for automation in self._items(workflow, "automations"):
            hook = self._build("automations", automation, self._automation_hook, automation, metadata)
            if hook:
                hooks.append(hook)

        unique: Dict[str, HookDescriptor] = {}
        for hook in hooks:
            if not self.validate_hook(hook):
                logger.warning("workflow_item_skipped", section="hooks", hook=hook.name, reason="invalid")
                continue
            filename = hook_filename(hook.name)
            if filename in unique:
                logger.warning("duplicate_hook_skipped", hook=hook.name, filename=filename)
                continue
            unique[filename] = hook

        logger.info("workflow_hooks_generated", count=len(unique))
        return list(unique.values())

    def _build(self, section: str, item: Any, builder, *args) -> Optional[HookDescriptor]:
        try:
            hook = builder(*args)
            if hook is not None:
                hook.validate()
            return hook
        except (ValidationError, TypeError, ValueError, AttributeError, KeyError) as e:
            logger.warning(
                "workflow_item_skipped",
                section=section,
                item=repr(item)[:80],
                error=str(e),
                error_type=type(e).__name__
            )
            return None

    def _items(self, workflow: Dict[str, Any], key: str) -> List[Any]:
        items = workflow.get(key)
        if items is None:
            return []
        if isinstance(items, dict):
            # Mapping form: {"name": {...}}
            return [
                {"name": name, **body} if isinstance(body, dict) else body
                for name, body in items.items()
            ]
        if not isinstance(items, list):
            logger.warning("workflow_section_skipped", section=key, type=type(items).__name__)
            return []
        return items

    def _phase_hook(self, phase: Any, metadata: Dict[str, Any]) -> Optional[HookDescriptor]:
        if not isinstance(phase, dict) or not phase.get("name") or not phase.get("agent"):
            logger.warning("workflow_item_skipped", section="phases", item=repr(phase)[:80])
            return None

        name = str(phase["name"])
        pattern = phase.get("pattern") or phase.get("inputs")
        if pattern and not phase.get("manual"):
            trigger = HookTrigger(
                type=HookTriggerType.FILE_CHANGE.value,
                pattern=pattern,
                condition=phase.get("condition", "phase_ready")
            )
        else:
            trigger = HookTrigger(type=HookTriggerType.MANUAL.value, extra={"button_text": f"Run {_title(name)}"})

        return HookDescriptor(
            name=f"BMad {_title(name)} Phase",
            description=phase.get("description") or f"Run the {name} phase of the BMad workflow",
            trigger=trigger,
            action=HookAction(
                agent=bmad_agent_id(str(phase["agent"])),
                task=phase.get("task") or f"execute-{hook_filename(name)[:-5]}",
                context=list(phase.get("context") or DEFAULT_PHASE_CONTEXT)
            ),
            metadata={"bmad_integration": True, "workflow_type": "phase", "phase": name, **metadata}
        )

    def _transition_hook(
        self,
        transition: Any,
        phase_agents: Dict[str, str],
        metadata: Dict[str, Any]
    ) -> Optional[HookDescriptor]:
        if not isinstance(transition, dict) or not transition.get("from") or not transition.get("to"):
            logger.warning("workflow_item_skipped", section="transitions", item=repr(transition)[:80])
            return None

        source, target = str(transition["from"]), str(transition["to"])
        agent = transition.get("agent") or phase_agents.get(target)
        if not agent:
            logger.warning("workflow_item_skipped", section="transitions", reason="no agent", to=target)
            return None

        trigger_spec = transition.get("trigger", HookTriggerType.FILE_CHANGE.value)
        if isinstance(trigger_spec, dict):
            trigger = HookTrigger.from_dict(trigger_spec)
        else:
            trigger = HookTrigger(type=trigger_spec)
        if trigger.pattern is None:
            trigger.pattern = transition.get("pattern")
        if trigger.condition is None:
            trigger.condition = transition.get("condition", f"{source}_complete")

        return HookDescriptor(
            name=f"BMad {_title(source)} To {_title(target)} Transition",
            description=f"Hand off from the {source} phase to the {target} phase",
            trigger=trigger,
            action=HookAction(
                agent=bmad_agent_id(str(agent)),
                task=transition.get("task") or f"start-{hook_filename(target)[:-5]}",
                context=list(transition.get("context") or ["#File", "#Git Diff"])
            ),
            metadata={
                "bmad_integration": True,
                "workflow_type": "transition",
                "from": source,
                "to": target,
                **metadata
            }
        )

    def _automation_hook(self, automation: Any, metadata: Dict[str, Any]) -> Optional[HookDescriptor]:
        try:
            hook = HookDescriptor.from_dict(automation)
        except ValidationError as e:
            logger.warning("workflow_item_skipped", section="automations", field=e.field)
            return None
        hook.metadata = {"bmad_integration": True, "workflow_type": "automation", **metadata, **hook.metadata}
        return hook

    async def save_hooks(
        self,
        hooks: List[HookDescriptor],
        output_dir: Optional[Path] = None
    ) -> List[Path]:
        """
        Write valid hooks as ``<slug>.yaml`` files.

        Invalid hooks are skipped. Returns the paths written.
        """
        output_dir = Path(output_dir or self.config.output_path)
        await ensure_directory(output_dir)

        valid = []
        for hook in hooks:
            if self.validate_hook(hook):
                valid.append(hook)
            else:
                logger.warning("hook_skipped_invalid", hook=hook.name)

        paths = await asyncio.gather(*[
            write_text_atomic(output_dir / hook_filename(hook.name), self.generate_hook_yaml(hook))
            for hook in valid
        ])

        self.generated_files.extend(paths)
        logger.info("hooks_saved", count=len(paths), skipped=len(hooks) - len(valid), output_dir=str(output_dir))
        return list(paths)

    async def generate_hooks_from_workflow(
        self,
        workflow: Optional[Dict[str, Any]],
        output_path: Optional[Path] = None
    ) -> bool:
        """
        Generate and optionally save hooks for a workflow.

        Returns False for a missing workflow or on any failure, True otherwise.
        Errors are logged, never raised.
        """
        if workflow is None:
            return False
        if not isinstance(workflow, dict):
            logger.error("workflow_invalid", type=type(workflow).__name__)
            return False

        try:
            hooks = self.generate_workflow_hooks(workflow)
            if output_path is not None:
                saved = await self.save_hooks(hooks, output_path)
                return len(saved) == len(hooks)
            return True
        except Exception as e:
            logger.error("hook_generation_failed", error=str(e), error_type=type(e).__name__)
            return False
