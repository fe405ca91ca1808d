"""
Context injection for Kiro.

Maps the context needs BMad agents describe in prose onto Kiro context
provider tokens, and produces fallback instructions when a provider is not
available in the current session.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..utils.logging import get_logger


logger = get_logger(__name__)

FILE = "#File"
FOLDER = "#Folder"
CODEBASE = "#Codebase"
PROBLEMS = "#Problems"
TERMINAL = "#Terminal"
GIT_DIFF = "#Git Diff"

CONTEXT_MAPPINGS: Dict[str, str] = {
    "current file": FILE,
    "project structure": FOLDER,
    "full codebase": CODEBASE,
    "build issues": PROBLEMS,
    "terminal output": TERMINAL,
    "test results": TERMINAL,
    "recent changes": GIT_DIFF,
}

# Checked in order once no exact phrase matched
FUZZY_MAPPINGS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("file", "code"), FILE),
    (("structure", "directory", "folder"), FOLDER),
    (("error", "issue", "problem", "build"), PROBLEMS),
    (("command", "output", "terminal", "test"), TERMINAL),
    (("change", "diff", "git"), GIT_DIFF),
    (("codebase", "repository", "project"), CODEBASE),
)

AGENT_CONTEXT_REQUIREMENTS: Dict[str, Dict[str, Any]] = {
    "dev": {
        "primary": [FILE, PROBLEMS, TERMINAL, GIT_DIFF],
        "secondary": [FOLDER, CODEBASE],
        "description": "Development agent needs current file context, build issues, and recent changes",
    },
    "qa": {
        "primary": [PROBLEMS, GIT_DIFF, FILE],
        "secondary": [TERMINAL, CODEBASE],
        "description": "QA agent needs to review code issues, changes, and current files",
    },
    "architect": {
        "primary": [CODEBASE, FOLDER],
        "secondary": [FILE, PROBLEMS, TERMINAL],
        "description": "Architect needs full codebase understanding and project structure",
    },
    "pm": {
        "primary": [FOLDER, CODEBASE],
        "secondary": [PROBLEMS, TERMINAL],
        "description": "PM needs project overview and structure understanding",
    },
    "po": {
        "primary": [FOLDER, CODEBASE],
        "secondary": [FILE, GIT_DIFF],
        "description": "Product Owner needs backlog context and project structure",
    },
    "analyst": {
        "primary": [CODEBASE, FOLDER],
        "secondary": [FILE, PROBLEMS],
        "description": "Analyst needs comprehensive project understanding",
    },
    "sm": {
        "primary": [FOLDER, FILE],
        "secondary": [PROBLEMS, TERMINAL, GIT_DIFF],
        "description": "Scrum Master needs project structure and current work context",
    },
}

FALLBACK_STRATEGIES: Dict[str, str] = {
    FILE: "Ask user to open relevant file or provide file path",
    FOLDER: "Request project structure overview or specific directory listing",
    CODEBASE: "Ask for relevant code snippets or architectural overview",
    PROBLEMS: "Request current error messages or build output",
    TERMINAL: "Ask for recent command output or build logs",
    GIT_DIFF: "Request recent changes summary or specific diff output",
}

ALTERNATIVE_SOURCES: Dict[str, List[str]] = {
    FILE: ["Ask user to share relevant code snippets", "Request specific file contents"],
    CODEBASE: ["Ask for architectural overview", "Request key component descriptions"],
    PROBLEMS: ["Ask for error messages", "Request build output or logs"],
    TERMINAL: ["Ask for command output", "Request recent build/test results"],
    GIT_DIFF: ["Ask for recent changes summary", "Request specific change descriptions"],
    FOLDER: ["Ask for project structure", "Request directory listing"],
}

CONTEXT_PRIORITIES: Dict[str, int] = {
    FILE: 10,
    PROBLEMS: 9,
    TERMINAL: 8,
    GIT_DIFF: 7,
    FOLDER: 6,
    CODEBASE: 5,
}

CRITICAL_CONTEXT = frozenset({FILE, PROBLEMS})
CRITICAL_PRIORITY = 8

TASK_CONTEXT: Dict[str, List[str]] = {
    "code-review": [PROBLEMS, GIT_DIFF],
    "debugging": [TERMINAL, PROBLEMS],
    "architecture": [CODEBASE, FOLDER],
    "planning": [FOLDER, CODEBASE],
}


@dataclass
class ContextMapping:
    """Result of mapping context needs to provider tokens."""
    mapped: List[str] = field(default_factory=list)
    unmapped: List[str] = field(default_factory=list)


@dataclass
class FallbackInstruction:
    missing: str
    instruction: str
    priority: int
    alternatives: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "missing": self.missing,
            "instruction": self.instruction,
            "priority": self.priority,
            "alternatives": list(self.alternatives),
        }


@dataclass
class FallbackContext:
    """What to do when some context providers are unavailable."""
    missing_context: List[str]
    fallback_instructions: List[FallbackInstruction]
    user_guidance: str
    can_proceed_without_context: bool
    reason: str


@dataclass
class DynamicContext:
    """Context plan for an agent performing a task."""
    agent_id: str
    task_type: Optional[str]
    required_context: List[str]
    available_context: List[str]
    instructions: List[str]
    fallback_needed: List[str]
    error: Optional[str] = None


def context_priority(token: str) -> int:
    return CONTEXT_PRIORITIES.get(token, 1)


class ContextInjector:
    """Maps BMad context needs onto Kiro context providers."""

    def __init__(
        self,
        mappings: Optional[Dict[str, str]] = None,
        requirements: Optional[Dict[str, Dict[str, Any]]] = None
    ):
        self.mappings = dict(CONTEXT_MAPPINGS)
        if mappings:
            self.mappings.update({k.lower(): v for k, v in mappings.items()})
        self.requirements = dict(AGENT_CONTEXT_REQUIREMENTS)
        if requirements:
            self.requirements.update(requirements)

    def map_need(self, need: str) -> Optional[str]:
        """Map a single need phrase, or None if nothing matches."""
        normalized = need.lower().strip()
        if not normalized:
            return None

        for phrase, token in self.mappings.items():
            if phrase in normalized:
                return token

        for keywords, token in FUZZY_MAPPINGS:
            if any(keyword in normalized for keyword in keywords):
                return token
        return None

    def map_context_needs(self, needs: Iterable[str]) -> ContextMapping:
        """Map needs to tokens; unmatched needs are returned, not dropped."""
        result = ContextMapping()
        for need in needs:
            token = self.map_need(need)
            if token is None:
                result.unmapped.append(need)
            elif token not in result.mapped:
                result.mapped.append(token)

        if result.unmapped:
            logger.debug("context_needs_unmapped", unmapped=result.unmapped)
        return result

    def get_requirements(self, agent_id: str) -> Optional[Dict[str, Any]]:
        return self.requirements.get(agent_id)

    def provide_fallback_context(self, missing_tokens: Iterable[str]) -> FallbackContext:
        """
        Build deterministic substitutes for unavailable context providers.

        Instructions are ordered by descending priority; the agent cannot
        proceed on its own when #File or #Problems is missing.
        """
        missing = list(dict.fromkeys(missing_tokens))
        instructions = [
            FallbackInstruction(
                missing=token,
                instruction=FALLBACK_STRATEGIES.get(
                    token, f"Ask the user to provide {token} context manually"
                ),
                priority=context_priority(token),
                alternatives=list(ALTERNATIVE_SOURCES.get(token, [])),
            )
            for token in missing
        ]
        instructions.sort(key=lambda i: i.priority, reverse=True)

        critical_missing = any(token in CRITICAL_CONTEXT for token in missing)
        return FallbackContext(
            missing_context=missing,
            fallback_instructions=instructions,
            user_guidance=self._user_guidance(instructions),
            can_proceed_without_context=not critical_missing,
            reason=(
                "Critical context missing - agent effectiveness will be limited"
                if critical_missing
                else "Can proceed with available context, though additional context would be helpful"
            ),
        )

    def _user_guidance(self, instructions: List[FallbackInstruction]) -> str:
        if not instructions:
            return "All required context is available automatically."

        critical = [i for i in instructions if i.priority >= CRITICAL_PRIORITY]
        optional = [i for i in instructions if i.priority < CRITICAL_PRIORITY]

        lines = ["To provide the best assistance, I need additional context:", ""]
        if critical:
            lines.append("**Critical Context (please provide):**")
            lines.extend(f"- {i.missing}: {i.instruction}" for i in critical)
            lines.append("")
        if optional:
            lines.append("**Optional Context (helpful but not required):**")
            lines.extend(f"- {i.missing}: {i.instruction}" for i in optional)
        return "\n".join(lines).rstrip()

    def plan_context(
        self,
        agent_id: str,
        available_tokens: Iterable[str],
        task_type: Optional[str] = None,
        context_needs: Iterable[str] = ()
    ) -> DynamicContext:
        """Work out required context for a task and what falls back."""
        requirements = self.requirements.get(agent_id)
        if requirements is None:
            return DynamicContext(agent_id, task_type, [], [], [], [], error=f"Unknown agent: {agent_id}")

        required = list(requirements["primary"])
        required.extend(TASK_CONTEXT.get(task_type or "", []))
        required.extend(self.map_context_needs(context_needs).mapped)
        required = list(dict.fromkeys(required))

        available_set = set(available_tokens)
        available = [token for token in required if token in available_set]
        instructions = []
        for token in required:
            if token in available_set:
                instructions.append(f"✓ {token} - Available for automatic access")
            else:
                instructions.append(f"⚠ {token} - Not available. {FALLBACK_STRATEGIES.get(token, '')}".rstrip())

        return DynamicContext(
            agent_id=agent_id,
            task_type=task_type,
            required_context=required,
            available_context=available,
            instructions=instructions,
            fallback_needed=[token for token in required if token not in available_set],
        )

    def context_awareness_section(self, agent_id: str) -> str:
        requirements = self.requirements.get(agent_id)
        if requirements is None:
            return ""

        lines = [
            "## Context Awareness",
            "",
            requirements["description"],
            "",
            "### Automatic Context Access",
            "I automatically access your current project context through:",
        ]
        lines.extend(f"- {token} (primary context)" for token in requirements["primary"])
        lines.extend(f"- {token} (secondary context)" for token in requirements["secondary"])
        lines.extend([
            "",
            "### Context Integration",
            "When working on tasks, I will:",
            "1. Automatically reference relevant context from the above sources",
            "2. Provide context-aware guidance based on your current project state",
            "3. Request additional context if needed for specific tasks",
            "4. Fall back to manual context gathering when automatic context is unavailable",
        ])
        return "\n".join(lines)

    def inject_context_awareness(self, content: str, agent_id: str) -> str:
        """Append a Context Awareness section for agents with known needs."""
        section = self.context_awareness_section(agent_id)
        if not section or "## Context Awareness" in content:
            return content
        return content.rstrip("\n") + "\n\n" + section + "\n"


__all__ = [
    'ContextInjector',
    'ContextMapping',
    'FallbackContext',
    'FallbackInstruction',
    'DynamicContext',
    'CONTEXT_MAPPINGS',
    'context_priority',
]
