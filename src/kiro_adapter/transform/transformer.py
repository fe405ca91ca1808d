"""
Agent transformer.

Turns discovered BMad agents into Kiro agents by merging the contributions
of prioritized transformation rules and rendering the result as a markdown
document with Kiro front-matter. Transformation is a pure function of the
agent, its resolved dependencies and the registered rules.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from ..models.agent import (
    AgentMetadata,
    ConvertedAgent,
    IntegrationBundle,
    ResolvedDependencies,
)
from ..utils.config import TransformerConfig
from ..utils.errors import TransformationError
from ..utils.logging import get_logger
from .context_injector import ContextInjector
from .rules import (
    RULE_FIELDS,
    ContextAwarenessRule,
    ExpansionPackRule,
    KiroBaseRule,
    SteeringIntegrationRule,
    TransformationRule,
)


logger = get_logger(__name__)

SECTION_ORDER = (
    "intro",
    "persona_enhancement",
    "@body",
    "context_section",
    "steering_section",
    "capabilities_section",
    "expansion_section",
    "workflow_section",
)

_TUPLE_FIELDS = ("context_providers", "mcp_tools", "capabilities")
_INTEGRATION_FIELDS = ("steering_rules", "hooks", "context_prompts", "spec_templates")

_BODY_CLEANUP = (
    re.compile(r"ACTIVATION-NOTICE:.*?(?=\n#|\n\n|\Z)", re.DOTALL),
    re.compile(r"CRITICAL:.*?(?=\n#|\n\n|\Z)", re.DOTALL),
    re.compile(r"## COMPLETE AGENT DEFINITION FOLLOWS[^\n]*\n?", re.DOTALL),
    re.compile(r"^# [\w-]+\s*$", re.MULTILINE),
)


@dataclass
class BatchTransformResult:
    """Successes and per-agent failures of a batch transform."""
    converted: List[ConvertedAgent] = field(default_factory=list)
    errors: List[TransformationError] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.converted)


def clean_body(body: str) -> str:
    for pattern in _BODY_CLEANUP:
        body = pattern.sub("", body)
    return re.sub(r"\n{3,}", "\n\n", body).strip()


class AgentTransformer:
    """Applies transformation rules to agents in descending priority."""

    def __init__(
        self,
        config: Optional[TransformerConfig] = None,
        context_injector: Optional[ContextInjector] = None,
        rules: Optional[Sequence[TransformationRule]] = None
    ):
        self.config = config or TransformerConfig()
        self.context_injector = context_injector if context_injector is not None else ContextInjector()
        self._rules: List[TransformationRule] = []

        for rule in rules if rules is not None else self._default_rules():
            self.add_rule(rule)

    def _default_rules(self) -> List[TransformationRule]:
        mcp_tools = self.config.mcp_tools if self.config.enable_mcp_integration else []
        rules: List[TransformationRule] = [KiroBaseRule(mcp_tools=mcp_tools)]
        if self.config.enable_context_injection:
            rules.append(ContextAwarenessRule(self.context_injector))
        if self.config.enable_steering_integration:
            rules.append(SteeringIntegrationRule(self.config.steering_rules))
        if self.config.enable_expansion_pack_features:
            rules.append(ExpansionPackRule(mcp_tools=mcp_tools))
        return rules

    def add_rule(self, rule: TransformationRule) -> None:
        """Register a rule. Equal priorities keep registration order."""
        self._rules.append(rule)
        self._rules.sort(key=lambda r: r.priority, reverse=True)
        logger.debug("transformation_rule_added", rule=rule.name, priority=rule.priority)

    def remove_rule(self, name: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.name != name]
        return len(self._rules) != before

    @property
    def rules(self) -> List[TransformationRule]:
        return list(self._rules)

    def transform(
        self,
        agent: AgentMetadata,
        dependencies: Optional[ResolvedDependencies] = None
    ) -> ConvertedAgent:
        """Transform one agent; rule failures are logged and skipped."""
        converted, _ = self.transform_with_errors(agent, dependencies)
        return converted

    def transform_with_errors(
        self,
        agent: AgentMetadata,
        dependencies: Optional[ResolvedDependencies] = None
    ) -> Tuple[ConvertedAgent, List[TransformationError]]:
        """Transform one agent and return the rule failures alongside."""
        merged: Dict[str, Any] = {}
        errors: List[TransformationError] = []

        for rule in self._rules:
            try:
                if not rule.applies_to(agent):
                    continue
                patch = rule.transform(agent) or {}
                unknown = set(patch) - RULE_FIELDS
                if unknown:
                    raise ValueError(f"unknown fields: {', '.join(sorted(unknown))}")
            except Exception as e:
                error = TransformationError(
                    f"Rule '{rule.name}' failed for agent '{agent.id}': {e}",
                    agent_id=agent.id,
                    rule_name=rule.name,
                    phase="rule",
                    cause=e,
                )
                errors.append(error)
                logger.error(
                    "transformation_rule_failed",
                    agent_id=agent.id,
                    rule=rule.name,
                    error=str(e)
                )
                continue

            for key, value in patch.items():
                if value is not None and key not in merged:
                    merged[key] = value

        return self._assemble(agent, merged, dependencies), errors

    def batch_transform(
        self,
        agents: Sequence[AgentMetadata],
        dependencies: Optional[Dict[str, ResolvedDependencies]] = None
    ) -> BatchTransformResult:
        """
        Transform agents independently, preserving input order.

        An agent that cannot be assembled at all is reported in ``errors``
        and left out of ``converted``; rule-level failures are reported too
        but the agent is still converted.
        """
        result = BatchTransformResult()
        dependencies = dependencies or {}

        for agent in agents:
            try:
                converted, errors = self.transform_with_errors(agent, dependencies.get(agent.id))
            except Exception as e:
                result.errors.append(TransformationError(
                    f"Failed to transform agent '{agent.id}': {e}",
                    agent_id=agent.id,
                    phase="assemble",
                    cause=e,
                ))
                logger.error("agent_transformation_failed", agent_id=agent.id, error=str(e))
                continue

            result.converted.append(converted)
            result.errors.extend(errors)

        logger.info(
            "batch_transform_complete",
            total=len(agents),
            converted=len(result.converted),
            errors=len(result.errors)
        )
        return result

    def _assemble(
        self,
        agent: AgentMetadata,
        merged: Dict[str, Any],
        dependencies: Optional[ResolvedDependencies]
    ) -> ConvertedAgent:
        spec_templates = merged.get("spec_templates")
        if spec_templates is None and dependencies is not None:
            spec_templates = [str(r.path) for r in dependencies.resolved.templates]

        integration = IntegrationBundle(
            steering_rules=tuple(merged.get("steering_rules") or ()),
            hooks=tuple(merged.get("hooks") or ()),
            context_prompts=tuple(merged.get("context_prompts") or ()),
            spec_templates=tuple(spec_templates or ()),
            activation_handler=str(merged.get("activation_handler") or ""),
        )

        output_path = merged.get("output_path") or Path(self.config.output_dir) / f"{agent.id}.md"
        fields: Dict[str, Any] = {name: tuple(merged.get(name) or ()) for name in _TUPLE_FIELDS}

        converted = ConvertedAgent(
            id=agent.id,
            name=str(merged.get("name") or agent.name),
            source=agent.source,
            expansion_pack=agent.expansion_pack,
            original_path=Path(agent.file_path),
            output_path=Path(output_path),
            description=str(merged.get("description") or ""),
            role=str(merged.get("role") or ""),
            integration=integration,
            dependencies=dependencies,
            metadata=agent,
            **fields,
        )
        return converted.with_changes(content=self.render(agent, converted, merged))

    def render(self, agent: AgentMetadata, converted: ConvertedAgent, sections: Dict[str, Any]) -> str:
        """Kiro front-matter followed by the ordered content sections."""
        front_matter = {
            "name": converted.name,
            "role": converted.role,
            "context_providers": list(converted.context_providers),
            "steering_rules": list(converted.integration.steering_rules),
            "mcp_tools": list(converted.mcp_tools),
            "bmad_dependencies": [name for _, names in agent.dependencies.items() for name in names],
            "bmad_source": Path(agent.file_path).name,
            "agent_type": "bmad-native",
        }
        if agent.expansion_pack:
            front_matter["expansion_pack"] = {
                "id": agent.expansion_pack,
                "enabled": True,
                "features": ["templates", "workflows", "hooks"] if self.config.enable_expansion_pack_features else [],
            }

        body: List[str] = []
        for key in SECTION_ORDER:
            text = clean_body(agent.content) if key == "@body" else sections.get(key)
            if text and str(text).strip():
                body.append(str(text).strip())

        header = yaml.safe_dump(front_matter, sort_keys=False, allow_unicode=True)
        return f"---\n{header}---\n\n" + "\n\n".join(body) + "\n"


__all__ = ['AgentTransformer', 'BatchTransformResult', 'clean_body']
