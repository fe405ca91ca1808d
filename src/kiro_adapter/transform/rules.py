"""
Transformation rules.

A rule contributes a partial set of converted-agent fields. The transformer
applies every rule whose ``applies_to`` accepts the agent, highest priority
first; the highest-priority rule that sets a field owns it.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from ..models.agent import DEFAULT_TITLE, AgentMetadata, AgentSource
from .context_injector import ContextInjector, FILE, FOLDER, CODEBASE, PROBLEMS, TERMINAL, GIT_DIFF


RULE_FIELDS = frozenset({
    "name",
    "description",
    "role",
    "output_path",
    "context_providers",
    "mcp_tools",
    "capabilities",
    "steering_rules",
    "hooks",
    "context_prompts",
    "spec_templates",
    "activation_handler",
    # content sections, rendered in a fixed order
    "intro",
    "persona_enhancement",
    "context_section",
    "steering_section",
    "capabilities_section",
    "expansion_section",
    "workflow_section",
})

DEFAULT_CONTEXT_PROVIDERS = [FILE, FOLDER, CODEBASE]
DEFAULT_STEERING_RULES = ["product.md", "tech.md", "structure.md"]
DEFAULT_MCP_TOOLS = ["web-search"]

ROLE_TITLES: Dict[str, str] = {
    "pm": "Product Management",
    "architect": "Software Architecture",
    "dev": "Software Development",
    "qa": "Quality Assurance",
    "sm": "Scrum Management",
    "po": "Product Ownership",
    "analyst": "Business Analysis",
    "ux-expert": "User Experience Design",
}

ROLE_CONTEXT_PROVIDERS: Dict[str, List[str]] = {
    "dev": [PROBLEMS, TERMINAL, GIT_DIFF],
    "qa": [PROBLEMS, TERMINAL, GIT_DIFF],
    "architect": [CODEBASE],
    "pm": [FOLDER],
    "analyst": [CODEBASE, FOLDER],
    "sm": [GIT_DIFF],
}

ROLE_MCP_TOOLS: Dict[str, List[str]] = {
    "analyst": ["web-search", "documentation"],
    "dev": ["web-search", "api-testing"],
    "architect": ["documentation", "web-search"],
    "pm": ["web-search", "documentation"],
    "qa": ["api-testing", "web-search"],
}

SPECIALIZATIONS: Dict[str, str] = {
    "pm": "creating comprehensive Product Requirements Documents and managing product planning workflows",
    "architect": "designing software architecture and technical decision-making",
    "dev": "software development and implementation guidance",
    "qa": "quality assurance, testing strategies, and code review",
    "sm": "scrum management and agile workflow coordination",
    "po": "product ownership and stakeholder management",
    "analyst": "business analysis and requirements gathering",
    "ux-expert": "user experience design and usability optimization",
}

PACK_MCP_TOOLS: Dict[str, List[str]] = {
    "bmad-2d-phaser-game-dev": ["web-search", "documentation", "api-testing"],
    "bmad-2d-unity-game-dev": ["web-search", "documentation", "file-manager"],
    "bmad-infrastructure-devops": ["web-search", "api-testing", "ssh-client", "kubernetes"],
}

PACK_DOMAINS: Dict[str, str] = {
    "bmad-2d-phaser-game-dev": "Phaser.js 2D game development",
    "bmad-2d-unity-game-dev": "Unity 2D game development",
    "bmad-infrastructure-devops": "Infrastructure and DevOps",
}


def unique(*groups: Iterable[str]) -> List[str]:
    """Concatenate groups, keeping the first occurrence of each item."""
    return list(dict.fromkeys(item for group in groups for item in group))


def agent_role(agent: AgentMetadata) -> str:
    if agent.title and agent.title != DEFAULT_TITLE:
        return agent.title
    return ROLE_TITLES.get(agent.id, "Development Support")


def handler_reference(agent_id: str) -> str:
    return f"activate_{agent_id.replace('-', '_')}"


class TransformationRule(ABC):
    """A prioritized contribution to the converted agent."""

    name: str = "rule"
    priority: int = 0

    def applies_to(self, agent: AgentMetadata) -> bool:
        return True

    @abstractmethod
    def transform(self, agent: AgentMetadata) -> Dict[str, Any]:
        """Return a partial mapping of converted-agent fields."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, priority={self.priority})"


class KiroBaseRule(TransformationRule):
    """Identity, role, defaults and the persona sections every agent gets."""

    name = "kiro-base"
    priority = 0

    def __init__(self, mcp_tools: Optional[List[str]] = None):
        self.extra_mcp_tools = list(mcp_tools or [])

    def transform(self, agent: AgentMetadata) -> Dict[str, Any]:
        return {
            "name": f"BMad {agent.title if agent.title and agent.title != DEFAULT_TITLE else agent.name}",
            "description": agent.description,
            "role": agent_role(agent),
            "context_providers": unique(DEFAULT_CONTEXT_PROVIDERS, ROLE_CONTEXT_PROVIDERS.get(agent.id, [])),
            "mcp_tools": unique(ROLE_MCP_TOOLS.get(agent.id, DEFAULT_MCP_TOOLS), self.extra_mcp_tools),
            "capabilities": [c.name for c in agent.commands if c.name],
            "steering_rules": list(DEFAULT_STEERING_RULES),
            "activation_handler": handler_reference(agent.id),
            "intro": self._introduction(agent),
            "capabilities_section": self._capabilities(agent),
            "workflow_section": self._workflow(agent),
        }

    def _introduction(self, agent: AgentMetadata) -> str:
        title = agent.title or "Assistant"
        role = agent.persona.role or title
        style = agent.persona.style or "professional and helpful"
        identity = agent.persona.identity or f"{title} specialized in project support"
        specialization = SPECIALIZATIONS.get(agent.id, "development support and project guidance")

        return (
            f"I am **{agent.name}**, your BMad {title}, bringing {role.lower()} expertise "
            f"to your Kiro IDE environment.\n\n"
            f"**My Identity**: {identity}\n\n"
            f"**My Style**: {style}\n\n"
            f"**My Specialization**: {specialization}\n\n"
            f"**Enhanced with Kiro**: I maintain my BMad Method expertise while leveraging Kiro's "
            f"context awareness, steering rules, and MCP integrations to provide more targeted "
            f"and effective assistance."
        )

    def _capabilities(self, agent: AgentMetadata) -> str:
        lines = ["## My BMad Method Capabilities", ""]
        if agent.persona.core_principles:
            lines.append("**Core Principles I Follow**:")
            lines.extend(f"- {p}" for p in agent.persona.core_principles)
            lines.append("")
        if agent.persona.focus:
            lines.extend([f"**Primary Focus**: {agent.persona.focus}", ""])
        if agent.commands:
            lines.append("**Available BMad Commands**:")
            for command in agent.commands:
                if command.description:
                    lines.append(f"- `*{command.name}`: {command.description}")
                else:
                    lines.append(f"- `*{command.name}`")
        return "\n".join(lines).rstrip()

    def _workflow(self, agent: AgentMetadata) -> str:
        lines = ["## How I Work with You", ""]
        if agent.when_to_use:
            lines.extend([f"**When to engage me**: {agent.when_to_use}", ""])
        lines.extend([
            "**My approach**:",
            "1. I leverage both BMad Method structured workflows and Kiro's real-time context",
            "2. I maintain my specialized expertise while adapting to your current project state",
            "3. I follow BMad's systematic approach enhanced with Kiro's intelligent context injection",
            "4. I preserve the quality and rigor of BMad Method while being more responsive to your immediate needs",
            "",
            "**Getting started**: Use `*help` to see my available commands, or simply describe what "
            "you'd like to accomplish and I'll guide you through the appropriate BMad Method workflow.",
        ])
        return "\n".join(lines)


class ContextAwarenessRule(TransformationRule):
    """Context prompts and the Context Awareness section for known roles."""

    name = "context-awareness"
    priority = 10

    def __init__(self, injector: ContextInjector):
        self.injector = injector

    def applies_to(self, agent: AgentMetadata) -> bool:
        return self.injector.get_requirements(agent.id) is not None

    def transform(self, agent: AgentMetadata) -> Dict[str, Any]:
        requirements = self.injector.get_requirements(agent.id)
        primary = requirements["primary"]
        return {
            "context_providers": unique(
                DEFAULT_CONTEXT_PROVIDERS,
                ROLE_CONTEXT_PROVIDERS.get(agent.id, []),
                primary,
                requirements["secondary"],
            ),
            "context_prompts": [
                f"Reference {token} automatically when it is relevant to the request" for token in primary
            ],
            "context_section": self.injector.context_awareness_section(agent.id),
        }


class SteeringIntegrationRule(TransformationRule):
    """Steering rule list and the section that explains it."""

    name = "steering-integration"
    priority = 20

    def __init__(self, custom_rules: Optional[List[str]] = None):
        self.custom_rules = list(custom_rules or [])

    def transform(self, agent: AgentMetadata) -> Dict[str, Any]:
        rules = unique(DEFAULT_STEERING_RULES, self.custom_rules)
        if agent.expansion_pack:
            rules = unique(rules, [f"{agent.expansion_pack}.md"])

        lines = [
            "## Steering Rules Integration",
            "",
            "I automatically apply project-specific conventions and technical preferences from your Kiro steering rules:",
            "- **product.md**: Product and business context",
            "- **tech.md**: Technical stack and preferences",
            "- **structure.md**: Project structure and conventions",
        ]
        for rule in rules[len(DEFAULT_STEERING_RULES):]:
            lines.append(f"- **{rule}**: {rule[:-3] if rule.endswith('.md') else rule} conventions and best practices")
        lines.extend([
            "",
            "These rules ensure consistency across all my recommendations and align with your project's established patterns.",
        ])

        return {"steering_rules": rules, "steering_section": "\n".join(lines)}


class ExpansionPackRule(TransformationRule):
    """Domain expertise and tools for agents shipped in expansion packs."""

    name = "expansion-pack"
    priority = 30

    def __init__(self, mcp_tools: Optional[List[str]] = None):
        self.extra_mcp_tools = list(mcp_tools or [])

    def applies_to(self, agent: AgentMetadata) -> bool:
        return agent.source == AgentSource.EXPANSION_PACK and bool(agent.expansion_pack)

    def transform(self, agent: AgentMetadata) -> Dict[str, Any]:
        pack = agent.expansion_pack
        domain = PACK_DOMAINS.get(pack, pack.replace("-", " "))
        return {
            "mcp_tools": unique(
                ROLE_MCP_TOOLS.get(agent.id, DEFAULT_MCP_TOOLS),
                PACK_MCP_TOOLS.get(pack, ["web-search", "documentation"]),
                self.extra_mcp_tools,
            ),
            "persona_enhancement": (
                f"**Enhanced with {domain}**: I bring specialized expertise in {domain} while "
                f"maintaining my core BMad Method approach."
            ),
            "expansion_section": "\n".join([
                f"## {domain[0].upper() + domain[1:]} Expertise",
                "",
                "**Specialized Knowledge**:",
                "- Domain-specific patterns and best practices",
                "- Industry-standard tools and workflows",
                "- Performance optimization techniques",
                "- Quality assurance and testing strategies",
            ]),
        }


__all__ = [
    'TransformationRule',
    'KiroBaseRule',
    'ContextAwarenessRule',
    'SteeringIntegrationRule',
    'ExpansionPackRule',
    'RULE_FIELDS',
    'unique',
]
