from __future__ import annotations

import errno
import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

from tiny_resilience.domain.errors import BackingStoreError, QuotaExceededError

logger = logging.getLogger(__name__)

NO_SPACE_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class FileBackingStore:
    """One file per key under ``directory``, named by the key's sha256.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace`` so a failed write never leaves a torn record.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory).expanduser()
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackingStoreError(f"cannot create store directory {self.directory}: {exc}") from exc
        logger.debug("File backing store at %s", self.directory)

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / digest[:2] / digest

    def read(self, key: str) -> Optional[bytes]:
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise BackingStoreError(f"cannot read {key!r}: {exc}") from exc

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        tmp_name = None
        try:
            path.parent.mkdir(exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            if exc.errno in NO_SPACE_ERRNOS:
                raise QuotaExceededError(f"no space left writing {key!r}: {exc}") from exc
            raise BackingStoreError(f"cannot write {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise BackingStoreError(f"cannot delete {key!r}: {exc}") from exc
