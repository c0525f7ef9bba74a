"""Persistence of the index artifact.

The artifact is a YAML document (``entries`` + ``metadata``). Saves go
through a temp file in the target directory followed by ``os.replace``, so a
concurrent reader sees either the previous or the new artifact, never a
partial one.
"""
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from civic_index.exceptions import CorruptIndexError, ErrorCode, StorageError
from civic_index.models.schema import Index
from civic_index.observability import traced

logger = logging.getLogger(__name__)


class IndexStore:
    """Saves and loads Index artifacts."""

    @traced("save_index")
    def save(self, index: Index, path: Union[str, Path]) -> Path:
        """Atomically write ``index`` to ``path``.

        Raises:
            StorageError: If the artifact cannot be written. The previous
                artifact (if any) is left untouched.
        """
        path = Path(path)
        text = yaml.safe_dump(index.to_dict(), sort_keys=False, allow_unicode=True)

        # Plain open() so the artifact gets the umask-derived mode of a normal file
        temp_name = path.parent / f".{path.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_name, "x", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_name, path)
        except OSError as e:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
            raise StorageError(
                f"Failed to write index: {e}",
                operation="save_index",
                path=str(path),
                code=ErrorCode.INDEX_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.info(f"Wrote index with {index.metadata.total_records} records to {path}")
        return path

    @traced("load_index")
    def load(self, path: Union[str, Path]) -> Optional[Index]:
        """Read an artifact written by ``save``.

        Returns:
            The Index, or None when no artifact exists at ``path``.

        Raises:
            CorruptIndexError: If the file is not YAML, is not a mapping or
                does not describe a consistent Index.
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise CorruptIndexError(
                f"Cannot read index: {e}", path=str(path), original_error=e
            ) from e

        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise CorruptIndexError(
                "Index is not valid YAML", path=str(path), original_error=e
            ) from e

        if not isinstance(data, dict):
            raise CorruptIndexError("Index is not a mapping", path=str(path))

        try:
            return Index.model_validate(data)
        except ValidationError as e:
            raise CorruptIndexError(
                f"Index failed validation: {e.error_count()} error(s)",
                path=str(path),
                original_error=e,
            ) from e


class IndexCache:
    """Holds the most recently generated or loaded Index.

    Owned by whoever creates it (normally the IndexingService); there is no
    module-level cache.
    """

    def __init__(self):
        self._index: Optional[Index] = None
        self._lock = threading.Lock()

    def get(self) -> Optional[Index]:
        with self._lock:
            return self._index

    def put(self, index: Index) -> None:
        with self._lock:
            self._index = index

    def invalidate(self) -> None:
        with self._lock:
            self._index = None

    def __bool__(self) -> bool:
        return self.get() is not None
