"""Strip the ``<memory>`` tag the model appends when it notices something worth remembering."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

MEMORY_TAG = re.compile(r"<memory>(.*?)</memory>", re.DOTALL)

logger = logging.getLogger("penguin_brain.memory_tag")


@dataclass
class MemoryTag:
    content: str
    memory: Optional[Dict[str, Any]] = None

    @property
    def metadata(self) -> Optional[Dict[str, Any]]:
        return {"memory": self.memory} if self.memory is not None else None


def extract_memory_tag(content: str) -> MemoryTag:
    """Remove every memory tag; the first one that parses becomes the memory."""

    memory: Optional[Dict[str, Any]] = None
    for match in MEMORY_TAG.finditer(content):
        if memory is not None:
            break
        try:
            parsed = json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            logger.warning("Unparseable memory tag dropped", extra={"chars": len(match.group(1))})
            continue
        if isinstance(parsed, dict):
            memory = parsed
        else:
            logger.warning("Memory tag is not an object", extra={"chars": len(match.group(1))})
    stripped = MEMORY_TAG.sub("", content).rstrip()
    return MemoryTag(content=stripped, memory=memory)


__all__ = ["MEMORY_TAG", "MemoryTag", "extract_memory_tag"]
