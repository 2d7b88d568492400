"""File-backed store for the daily crypto digest cache."""
from __future__ import annotations

import contextlib
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class DigestStoreError(RuntimeError):
    """Raised when a digest cannot be written to disk."""


class DigestEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    symbol: str
    summary: str
    references: list[str] = Field(default_factory=list)


def dump_digest(digest: list[DigestEntry]) -> list[dict[str, Any]]:
    return [entry.model_dump() for entry in digest]


class DailyDigestStore:
    """One JSON file per date key, with an optional lock-guarded in-memory map in front of it."""

    def __init__(self, data_dir: str | Path, *, memory_cache: bool = True) -> None:
        self.data_dir = Path(data_dir)
        self.memory_cache = memory_cache
        self._memory: dict[str, list[DigestEntry]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Any) -> "DailyDigestStore":
        return cls(config.data_dir, memory_cache=config.memory_cache)

    def path_for(self, date_key: str) -> Path:
        return self.data_dir / f"{date_key}.json"

    def get(self, date_key: str) -> Optional[list[DigestEntry]]:
        if self.memory_cache:
            with self._lock:
                cached = self._memory.get(date_key)
            if cached is not None:
                return list(cached)

        path = self.path_for(date_key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("digest_cache_read_failed path=%s error=%s", path, exc)
            return None

        try:
            rows = json.loads(raw)
            if not isinstance(rows, list):
                raise ValueError("digest file must hold a JSON array")
            digest = [DigestEntry.model_validate(row) for row in rows]
        except (ValueError, ValidationError) as exc:
            logger.warning("digest_cache_corrupt path=%s error=%s", path, exc)
            return None

        if self.memory_cache:
            with self._lock:
                self._memory[date_key] = digest
        return list(digest)

    def put(self, date_key: str, digest: list[DigestEntry]) -> None:
        path = self.path_for(date_key)
        tmp = path.with_name(f"{path.name}.tmp.{os.getpid()}.{threading.get_ident()}")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as handle:
                json.dump(dump_digest(digest), handle, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise DigestStoreError(f"Failed to write digest cache {path}: {exc}") from exc

        if self.memory_cache:
            with self._lock:
                self._memory[date_key] = list(digest)
        logger.info("digest_cache_written path=%s entries=%s", path, len(digest))
