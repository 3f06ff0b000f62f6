"""Persist raw channel traffic as newline-delimited JSON."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Mapping


class WireLogSink:
    """Append wire-level WebSocket messages to ``<base_dir>/<name>.<timestamp>.jsonl``."""

    def __init__(self, name: str, base_dir: str) -> None:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
        self.path = Path(base_dir) / f"{name}.{timestamp}.jsonl"
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append_messages(self, messages: Iterable[Mapping]) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            for message in messages:
                handle.write(json.dumps(message, ensure_ascii=False))
                handle.write("\n")

    def append_message(self, message: Mapping) -> None:
        self.append_messages([message])


__all__ = ["WireLogSink"]
