"""Front-matter extraction for BMad agent definition files."""

import re
from typing import Any, Dict, Tuple

import yaml

from ..utils.errors import MetadataExtractionError


_FRONT_MATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)(.*)\Z", re.DOTALL)
_YAML_BLOCK = re.compile(r"```ya?ml[ \t]*\r?\n(.*?)\r?\n```[ \t]*\r?\n?", re.DOTALL)


def split_front_matter(content: str) -> Tuple[str, str]:
    """
    Split an agent file into its YAML header and markdown body.

    A leading ``---`` block wins; otherwise the first fenced yaml block is
    used and removed from the body. Returns ("", content) when neither is
    present.
    """
    match = _FRONT_MATTER.match(content)
    if match:
        return match.group(1), match.group(2)

    match = _YAML_BLOCK.search(content)
    if match:
        body = content[:match.start()] + content[match.end():]
        return match.group(1), body.strip("\n")

    return "", content


def parse_agent_document(content: str, path: Any = None) -> Tuple[Dict[str, Any], str]:
    """Parse front-matter into a mapping; raises MetadataExtractionError."""
    if not content.strip():
        raise MetadataExtractionError("Agent file is empty", path=path)

    header, body = split_front_matter(content)
    if not header:
        raise MetadataExtractionError("No valid YAML configuration found", path=path)

    try:
        data = yaml.safe_load(header)
    except yaml.YAMLError as e:
        raise MetadataExtractionError(f"Invalid YAML front-matter: {e}", path=path, cause=e) from e

    if not isinstance(data, dict) or not data:
        raise MetadataExtractionError("YAML front-matter is not a mapping", path=path)

    return data, body
