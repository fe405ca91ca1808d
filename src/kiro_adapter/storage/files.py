"""Async file helpers with write-to-temp-then-rename semantics."""

import json
import uuid
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiofiles.os

from ..utils.logging import get_logger


logger = get_logger(__name__)


async def ensure_directory(path: Path) -> None:
    await aiofiles.os.makedirs(path, exist_ok=True)


async def write_text_atomic(path: Path, text: str) -> Path:
    """Write text so readers never observe a partial file."""
    path = Path(path)
    await ensure_directory(path.parent)

    # Unique per write so concurrent writers to one path never share a temp file
    temp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
            await f.write(text)
        await aiofiles.os.replace(temp_path, path)
    except BaseException:
        if await aiofiles.os.path.exists(temp_path):
            await aiofiles.os.remove(temp_path)
        raise
    return path


async def write_json_atomic(path: Path, data: Any) -> Path:
    return await write_text_atomic(path, json.dumps(data, indent=2, default=str))


async def read_json(path: Path) -> Optional[Any]:
    """Load a JSON document, or None when the file does not exist."""
    path = Path(path)
    if not await aiofiles.os.path.exists(path):
        return None

    async with aiofiles.open(path, "r", encoding="utf-8") as f:
        data = await f.read()
    return json.loads(data)


__all__ = ['ensure_directory', 'write_text_atomic', 'write_json_atomic', 'read_json']
