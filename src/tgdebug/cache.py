"""Durable storage for the `CacheDocument`.

The document is a single JSON file:

    {"schema_version": 1, "token": "...", "offset": 42,
     "chats": {"-1001234567890": {...}}}

Design notes / invariants:
- Writes go to a temporary file in the same directory which then replaces the
  target (`Path.replace`), so a crash mid-write leaves the previous valid
  document in place.
- `load()` never fails startup: a missing file is a fresh install, and a
  corrupt or version-mismatched file is logged and treated as empty. No
  partial migration is attempted.
- Chat id keys are serialized as strings (JSON object keys) and parsed back to
  integers on load.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path

from pydantic import ValidationError

from .errors import PersistenceError
from .models import SCHEMA_VERSION, CacheDocument

logger = logging.getLogger(__name__)


def read_bytes(path: Path) -> bytes | None:
    """Return the file contents, or `None` when `path` does not exist.

    Raises:
        PersistenceError: If the file exists but cannot be read.
    """

    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise PersistenceError(f"Cannot read {path}: {type(e).__name__}: {e}") from e


def write_bytes_atomic(path: Path, data: bytes) -> None:
    """Replace `path` with `data` via temporary file + rename.

    Side effects:
    - Creates parent directories for `path`.

    Raises:
        PersistenceError: On any filesystem error; `path` is left untouched.
    """

    tmp_path: Path | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "wb",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tf:
            tmp_path = Path(tf.name)
            tf.write(data)
        tmp_path.replace(path)
    except OSError as e:
        if tmp_path is not None:
            tmp_path.unlink(missing_ok=True)
        raise PersistenceError(f"Cannot write {path}: {type(e).__name__}: {e}") from e


class CacheStore:
    """Loads and saves the cache document at a fixed path."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> CacheDocument:
        """Load the document, degrading to an empty one on any problem."""

        try:
            raw = read_bytes(self.path)
        except PersistenceError as e:
            logger.warning("cache unreadable, starting empty: %s", e)
            return CacheDocument()
        if raw is None:
            return CacheDocument()

        try:
            doc = CacheDocument.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(
                "cache corrupt at %s, starting empty (%d error(s))",
                self.path,
                e.error_count(),
            )
            return CacheDocument()

        if doc.schema_version != SCHEMA_VERSION:
            logger.warning(
                "cache schema_version %r at %s does not match %d, starting empty",
                doc.schema_version,
                self.path,
                SCHEMA_VERSION,
            )
            return CacheDocument()
        return doc

    def save(self, doc: CacheDocument) -> None:
        """Persist `doc` atomically.

        Raises:
            PersistenceError: If the write fails.
        """

        data = doc.model_dump_json(indent=2).encode("utf-8") + b"\n"
        write_bytes_atomic(self.path, data)

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"Cannot remove {self.path}: {type(e).__name__}: {e}"
            ) from e
