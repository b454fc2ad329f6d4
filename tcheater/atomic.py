"""Crash-safe file writes.

The document store and the config writer both go through here: content is
written to a temp file in the target directory, chmod'ed, then renamed over
the target, which is atomic on POSIX. A reader never sees a half-written
checkpoint document.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from tcheater.errors import Result, TcheaterError, err, ok

logger = logging.getLogger(__name__)

WRITE_FAILED = "ATOMIC_WRITE_FAILED"
SERIALIZATION_FAILED = "YAML_SERIALIZATION_FAILED"


def atomic_write_text(
    path: Path,
    content: str,
    mode: int = 0o600,
) -> Result[Path, TcheaterError]:
    """Atomically replace path with content.

    Parent directories are created (0o700) when missing. The temp file is
    removed again if anything fails before the rename.

    Args:
        path: Target file path
        content: Text to write (UTF-8)
        mode: Permissions of the resulting file

    Returns:
        Ok(path) on success, Err(ATOMIC_WRITE_FAILED) on OS errors
    """
    path = Path(path)
    temp_path: str | None = None

    try:
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        fd, temp_path = tempfile.mkstemp(
            dir=path.parent,
            prefix=f".{path.stem}_",
            suffix=f"{path.suffix}.tmp",
        )
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(temp_path, mode)
        os.replace(temp_path, path)
        temp_path = None
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        return err(
            TcheaterError(
                code=WRITE_FAILED,
                message=f"Failed to write {path}: {e}",
                context={"path": str(path), "error": str(e)},
            )
        )
    finally:
        _cleanup_temp(temp_path)

    logger.debug(f"Atomic write complete: {path}")
    return ok(path)


def atomic_write_yaml(
    path: Path,
    data: Any,
    mode: int = 0o600,
) -> Result[Path, TcheaterError]:
    """Serialize data with yaml.safe_dump and write it atomically."""
    try:
        content = yaml.safe_dump(
            data,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )
    except yaml.YAMLError as e:
        logger.error(f"YAML serialization failed: {e}")
        return err(
            TcheaterError(
                code=SERIALIZATION_FAILED,
                message=f"Failed to serialize data to YAML: {e}",
                context={"path": str(path), "error": str(e)},
            )
        )

    return atomic_write_text(path, content, mode)


def _cleanup_temp(temp_path: str | None) -> None:
    if temp_path is None:
        return
    try:
        os.unlink(temp_path)
    except OSError:
        # Already gone
        pass
