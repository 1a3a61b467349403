"""
On-disk storage for cached responses.

Each entry is a pair of files in the cache root:

    <key>.header   JSON object of response headers
    <key>.payload  raw response body

The payload file's modification time is the entry's save time. Headers are
written before the payload so that the payload mtime marks completion of the
pair. There is no locking: a read racing a write for the same key may see the
new header with the old payload (or the reverse). Each part is replaced
atomically, so a read never sees a truncated file.
"""

import asyncio
import json
import os
import stat
import tempfile
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Tuple, Union

from shared.logging import get_logger
from .exceptions import CacheEntryNotFound, CacheReadError, CacheWriteError

HEADER_SUFFIX = ".header"
PAYLOAD_SUFFIX = ".payload"
TEMP_SUFFIX = ".tmp"


class FileCacheStore:
    """Pair-wise header/payload storage under a single root directory."""

    def __init__(self, root: Union[str, Path], clock: Callable[[], float] = time.time):
        self.root = Path(root)
        self.clock = clock
        self.logger = get_logger("render_cache.file_store")

        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise CacheWriteError("*", f"cannot create cache directory {self.root}: {exc}") from exc

    def header_path(self, key: str) -> Path:
        return self.root / f"{key}{HEADER_SUFFIX}"

    def payload_path(self, key: str) -> Path:
        return self.root / f"{key}{PAYLOAD_SUFFIX}"

    async def exists(self, key: str) -> bool:
        """True iff both parts of the entry are present."""
        return await asyncio.to_thread(self._exists, key)

    async def age_of(self, key: str) -> timedelta:
        """Age of the entry, measured from the payload's modification time."""
        mtime = await asyncio.to_thread(self._payload_mtime, key)
        return timedelta(seconds=self.clock() - mtime)

    async def saved_at(self, key: str) -> datetime:
        """UTC time the payload was last written."""
        mtime = await asyncio.to_thread(self._payload_mtime, key)
        return datetime.fromtimestamp(mtime, tz=timezone.utc)

    async def write(self, key: str, headers: Dict[str, str], payload: bytes) -> None:
        """Serialize headers and write both parts, replacing any previous entry."""
        try:
            header_text = json.dumps(dict(headers))
        except (TypeError, ValueError) as exc:
            raise CacheWriteError(key, f"headers are not serializable: {exc}") from exc

        await asyncio.to_thread(self._write_pair, key, header_text.encode("utf-8"), bytes(payload))

    async def read(self, key: str) -> Tuple[str, bytes]:
        """Return the raw header text and payload bytes of an entry."""
        return await asyncio.to_thread(self._read_pair, key)

    async def clear(self) -> int:
        """Delete every stored part under the root. Returns the number of files removed."""
        removed = await asyncio.to_thread(self._clear)
        self.logger.info("Cache cleared", directory=str(self.root), removed=removed)
        return removed

    async def entry_count(self) -> int:
        """Number of complete header/payload pairs on disk."""
        return await asyncio.to_thread(self._entry_count)

    def _exists(self, key: str) -> bool:
        for path in (self.header_path(key), self.payload_path(key)):
            try:
                if not stat.S_ISREG(path.stat().st_mode):
                    return False
            except FileNotFoundError:
                return False
            except OSError as exc:
                raise CacheReadError(key, str(exc)) from exc
        return True

    def _payload_mtime(self, key: str) -> float:
        try:
            return self.payload_path(key).stat().st_mtime
        except FileNotFoundError as exc:
            raise CacheEntryNotFound(key, "payload") from exc
        except OSError as exc:
            raise CacheReadError(key, str(exc)) from exc

    def _write_pair(self, key: str, header_bytes: bytes, payload: bytes) -> None:
        self._write_atomic(key, self.header_path(key), header_bytes)
        self._write_atomic(key, self.payload_path(key), payload)

    def _write_atomic(self, key: str, path: Path, data: bytes) -> None:
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=f"{path.name}.", suffix=TEMP_SUFFIX)
        except OSError as exc:
            raise CacheWriteError(key, str(exc)) from exc

        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, path)
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise CacheWriteError(key, str(exc)) from exc

    def _read_pair(self, key: str) -> Tuple[str, bytes]:
        header_path = self.header_path(key)
        payload_path = self.payload_path(key)

        try:
            header_text = header_path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise CacheEntryNotFound(key, "header") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise CacheReadError(key, str(exc)) from exc

        try:
            payload = payload_path.read_bytes()
        except FileNotFoundError as exc:
            raise CacheEntryNotFound(key, "payload") from exc
        except OSError as exc:
            raise CacheReadError(key, str(exc)) from exc

        return header_text, payload

    def _clear(self) -> int:
        try:
            paths = list(self.root.iterdir())
        except OSError as exc:
            raise CacheWriteError("*", f"cannot list {self.root}: {exc}") from exc

        removed = 0
        for path in paths:
            if path.suffix not in (HEADER_SUFFIX, PAYLOAD_SUFFIX, TEMP_SUFFIX) or not path.is_file():
                continue
            try:
                path.unlink()
            except FileNotFoundError:
                # Removed concurrently
                continue
            except OSError as exc:
                raise CacheWriteError(path.stem, f"cannot delete {path}: {exc}") from exc
            removed += 1
        return removed

    def _entry_count(self) -> int:
        return sum(
            1 for path in self.root.glob(f"*{PAYLOAD_SUFFIX}")
            if self.header_path(path.name[:-len(PAYLOAD_SUFFIX)]).is_file()
        )
