"""Agent discovery: scanning source roots for BMad agent definitions."""

from .agent_discovery import AgentDiscovery
from .scanners import AgentScanner, MarkdownAgentScanner, SourceRoot

__all__ = ['AgentDiscovery', 'AgentScanner', 'MarkdownAgentScanner', 'SourceRoot']
