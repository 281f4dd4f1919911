"""Output sinks. Each push stores exactly one finished record."""

from __future__ import annotations

import asyncio
import json
import pathlib
from typing import Any, Dict, List, Protocol


class OutputSink(Protocol):
    async def push(self, record: Dict[str, Any]) -> None: ...


class MemorySink:
    """Keeps records in a list; used by the service for small runs and by tests."""

    def __init__(self) -> None:
        self.items: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    async def push(self, record: Dict[str, Any]) -> None:
        async with self._lock:
            self.items.append(record)

    def __len__(self) -> int:
        return len(self.items)


class JsonLinesSink:
    """Appends one JSON document per line to ``<run_dir>/dataset.jsonl``."""

    def __init__(self, run_dir: str | pathlib.Path, filename: str = "dataset.jsonl"):
        self.path = pathlib.Path(run_dir) / filename
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.count = 0
        self._lock = asyncio.Lock()

    async def push(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False, default=str)
        async with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
            self.count += 1

    def read_all(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
