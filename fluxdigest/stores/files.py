"""JSON file helpers shared by the stores.

Reads and writes run in a worker thread so disk IO never blocks the event
loop. Writes go to a temporary file in the same directory and are moved into
place with `os.replace`, so concurrent readers see either the old or the new
contents.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from fluxdigest.core.exceptions import StorageError
from fluxdigest.core.logging import get_logger

logger = get_logger(__name__)


def _read(path: Path) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def _write(path: Path, data: Any, mode: int | None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


async def read_json(path: Path, default: Any = None) -> Any:
    """Load a JSON file; a missing or unreadable file yields `default`."""
    try:
        return await asyncio.to_thread(_read, path)
    except FileNotFoundError:
        return default
    except (OSError, ValueError) as e:
        logger.bind(path=str(path), error=str(e)).error("json_file_read_failed")
        return default


async def write_json(path: Path, data: Any, mode: int | None = None) -> None:
    """Atomically replace a JSON file.

    Raises:
        StorageError: the file could not be written
    """
    try:
        await asyncio.to_thread(_write, path, data, mode)
    except OSError as e:
        logger.bind(path=str(path), error=str(e)).error("json_file_write_failed")
        raise StorageError(f"Failed to write {path.name}: {e}") from e
