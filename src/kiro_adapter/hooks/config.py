"""Hook descriptor schema and Kiro event system mapping"""

from enum import Enum
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

from ..utils.logging import get_logger
from ..utils.errors import ValidationError

logger = get_logger(__name__)


class HookTriggerType(str, Enum):
    """Trigger types understood by Kiro hooks"""
    # File events
    FILE_CHANGE = "file_change"
    FILE_SAVE = "file_save"

    # Git events
    GIT_COMMIT = "git_commit"
    GIT_PUSH = "git_push"
    GIT_PULL_REQUEST = "git_pull_request"
    GIT_MERGE = "git_merge"

    # Build and user events
    BUILD_COMPLETE = "build_complete"
    MANUAL = "manual"


VALID_TRIGGER_TYPES = frozenset(t.value for t in HookTriggerType)

FILE_TRIGGER_TYPES = frozenset({HookTriggerType.FILE_CHANGE.value, HookTriggerType.FILE_SAVE.value})

KIRO_EVENT_TYPES: Dict[str, str] = {
    "file_change": "kiro.file.changed",
    "file_save": "kiro.file.saved",
    "git_commit": "kiro.git.commit",
    "git_push": "kiro.git.push",
    "git_pull_request": "kiro.git.pull_request",
    "git_merge": "kiro.git.merge",
    "build_complete": "kiro.build.completed",
    "manual": "kiro.user.manual_trigger",
}

DEFAULT_DEBOUNCE_MS = 1000


def _require_str(data: Dict[str, Any], key: str, field_name: str) -> None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValidationError(field_name, value, f"{field_name} must be a string")


def kiro_event_type(trigger_type: str) -> str:
    """Map a trigger type onto the Kiro event it listens for."""
    return KIRO_EVENT_TYPES.get(trigger_type, f"kiro.custom.{trigger_type}")


@dataclass
class HookTrigger:
    """What causes a hook to fire"""
    type: str
    pattern: Optional[Any] = None  # Glob string or list of globs
    condition: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type}
        if self.pattern is not None:
            data["pattern"] = self.pattern
        if self.condition is not None:
            data["condition"] = self.condition
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HookTrigger":
        if not isinstance(data, dict):
            raise ValidationError("trigger", data, "Trigger must be a mapping")
        _require_str(data, "type", "trigger.type")
        _require_str(data, "condition", "trigger.condition")
        extra = {k: v for k, v in data.items() if k not in ("type", "pattern", "condition")}
        return cls(
            type=data.get("type") or "",
            pattern=data.get("pattern"),
            condition=data.get("condition"),
            extra=extra
        )


@dataclass
class HookAction:
    """Which agent runs, with what task and context"""
    agent: str
    task: Optional[str] = None
    context: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"agent": self.agent}
        if self.task is not None:
            data["task"] = self.task
        data["context"] = list(self.context)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HookAction":
        if not isinstance(data, dict):
            raise ValidationError("action", data, "Action must be a mapping")
        _require_str(data, "agent", "action.agent")
        _require_str(data, "task", "action.task")
        if not isinstance(data.get("context") or [], (list, tuple)):
            raise ValidationError("action.context", data.get("context"), "Action context must be a list")
        return cls(
            agent=data.get("agent") or "",
            task=data.get("task"),
            context=list(data.get("context") or [])
        )


@dataclass
class HookDescriptor:
    """A single Kiro hook definition"""
    name: str
    description: str
    trigger: HookTrigger
    action: HookAction
    metadata: Dict[str, Any] = field(default_factory=dict)
    settings: Dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """Validate hook configuration"""
        if not self.name or not isinstance(self.name, str):
            raise ValidationError("name", self.name, "Hook name is required")
        if not self.description or not isinstance(self.description, str):
            raise ValidationError("description", self.description, "Hook description is required")
        if not self.trigger.type:
            raise ValidationError("trigger.type", None, "Trigger type is required")
        if not isinstance(self.trigger.type, str) or self.trigger.type not in VALID_TRIGGER_TYPES:
            raise ValidationError(
                "trigger.type",
                self.trigger.type,
                f"Trigger type must be one of: {', '.join(sorted(VALID_TRIGGER_TYPES))}"
            )
        if not self.action.agent or not isinstance(self.action.agent, str):
            raise ValidationError("action.agent", self.action.agent, "Action agent is required")

    def is_valid(self) -> bool:
        try:
            self.validate()
        except ValidationError:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "trigger": self.trigger.to_dict(),
            "action": self.action.to_dict(),
        }
        if self.settings:
            data["settings"] = dict(self.settings)
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HookDescriptor":
        """Create descriptor from a mapping, raising ValidationError for bad shapes"""
        if not isinstance(data, dict):
            raise ValidationError("hook", data, "Hook must be a mapping")
        trigger = data.get("trigger")
        action = data.get("action")
        if not isinstance(trigger, dict):
            raise ValidationError("trigger", trigger, "Trigger must be a mapping")
        if not isinstance(action, dict):
            raise ValidationError("action", action, "Action must be a mapping")
        _require_str(data, "name", "name")
        _require_str(data, "description", "description")
        for key in ("metadata", "settings"):
            if not isinstance(data.get(key) or {}, dict):
                raise ValidationError(key, data.get(key), f"Hook {key} must be a mapping")

        return cls(
            name=data.get("name") or "",
            description=data.get("description") or "",
            trigger=HookTrigger.from_dict(trigger),
            action=HookAction.from_dict(action),
            metadata=dict(data.get("metadata") or {}),
            settings=dict(data.get("settings") or {})
        )

    def integrate(self, retry_attempts: int = 3, retry_delay_ms: int = 1000) -> Dict[str, Any]:
        """
        Render the hook with Kiro event system metadata attached.

        File triggers are put in active watch mode with a debounce, manual
        triggers get UI placement hints, and every hook carries retry settings.
        """
        data = self.to_dict()
        data["kiro_integration"] = {
            "version": "1.0",
            "event_system_compatible": True,
            "supports_context_injection": True,
            "supports_agent_activation": True,
        }

        trigger = data["trigger"]
        trigger["kiro_event_type"] = kiro_event_type(self.trigger.type)
        if self.trigger.type in FILE_TRIGGER_TYPES:
            trigger["watch_mode"] = "active"
            trigger["event_debounce"] = self.settings.get("debounce_ms", DEFAULT_DEBOUNCE_MS)
        elif self.trigger.type == HookTriggerType.MANUAL.value:
            trigger["ui_integration"] = {
                "command_palette": self.settings.get("show_in_command_palette", False),
                "button_location": "agent_panel",
                "keyboard_shortcut": self.settings.get("keyboard_shortcut"),
            }

        action = data["action"]
        action["activation_method"] = "kiro_native"
        action["context_injection"] = True
        action["agent_registry_lookup"] = True
        if self.action.context:
            action["context_validation"] = {
                "required_contexts": list(self.action.context),
                "validate_before_execution": True,
            }

        data["error_handling"] = {
            "retry_attempts": retry_attempts,
            "retry_delay_ms": retry_delay_ms,
            "fallback_to_steering": True,
            "log_errors": True,
        }
        return data
