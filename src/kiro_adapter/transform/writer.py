"""Writes converted agents and their steering files to the Kiro workspace."""

from pathlib import Path
from typing import Dict, List

import aiofiles.os

from ..models.agent import ConvertedAgent
from ..storage.files import write_text_atomic
from ..utils.logging import get_logger


logger = get_logger(__name__)

STEERING_TEMPLATES: Dict[str, str] = {
    "product.md": "# Product Context\n\nDescribe the product, its users and the business goals agents should keep in mind.\n",
    "tech.md": "# Technical Preferences\n\nList the technology stack, libraries and coding conventions agents should follow.\n",
    "structure.md": "# Project Structure\n\nDescribe the repository layout and where new code and documents belong.\n",
}


async def write_converted_agent(agent: ConvertedAgent) -> Path:
    """Write the rendered agent document to its output path."""
    path = await write_text_atomic(agent.output_path, agent.content)
    logger.info("converted_agent_written", agent_id=agent.id, path=str(path))
    return path


async def write_steering_files(agent: ConvertedAgent, steering_dir: Path) -> List[Path]:
    """
    Create the steering files an agent refers to.

    Existing files are left untouched so user edits survive re-conversion.
    Returns the paths of every steering file the agent uses.
    """
    paths = []
    for rule in agent.integration.steering_rules:
        path = Path(steering_dir) / rule
        paths.append(path)
        if await aiofiles.os.path.exists(path):
            continue

        template = STEERING_TEMPLATES.get(rule)
        if template is None:
            topic = Path(rule).stem.replace("-", " ")
            template = f"# {topic.title()} Conventions\n\nDomain-specific conventions and best practices for {topic}.\n"
        await write_text_atomic(path, template)
        logger.debug("steering_file_created", path=str(path))

    return paths


__all__ = ['write_converted_agent', 'write_steering_files', 'STEERING_TEMPLATES']
