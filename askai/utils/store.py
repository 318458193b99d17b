"""Async key-value stores backing the credential bookkeeping."""

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from askai.utils.logging import get_logger

logger = get_logger(__name__)


class KeyValueStore(Protocol):
    """Storage boundary consumed by the core."""

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any) -> None: ...


class MemoryStore:
    """In-process store, mostly for tests and one-shot runs"""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStore:
    """Manages a single JSON document on disk as a key-value store"""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.debug(f"Store miss: {self.path} does not exist")
            return {}

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Store read failed for {self.path}: Invalid JSON - {e}")
            return {}
        except OSError as e:
            logger.warning(f"Store read failed for {self.path}: File error - {e}")
            return {}

    def _write(self, data: Dict[str, Any]) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            tmp_path.replace(self.path)
            logger.debug(f"Store write successful: {self.path}")
        except OSError as e:
            logger.warning(f"Store write failed for {self.path}: {e}")
            if tmp_path.exists():
                tmp_path.unlink()
        except (TypeError, ValueError) as e:
            logger.warning(f"Store write failed for {self.path}: Value not JSON serializable - {e}")

    async def get(self, key: str) -> Optional[Any]:
        data = await asyncio.to_thread(self._read)
        return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        data = await asyncio.to_thread(self._read)
        data[key] = value
        await asyncio.to_thread(self._write, data)
