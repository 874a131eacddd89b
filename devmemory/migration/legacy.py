"""Loader for the legacy flat-file memory layout.

The legacy store kept one JSON document per memory, either as
``memory-<millis>.json`` at the root of the store directory or as any
``*.json`` under ``interactions/``. Each document looks like::

    {"id": "...", "content": "...",
     "metadata": {"timestamp": "2024-01-15T10:30:00Z", "type": "conversation",
                  "importance": 0.8, "category": "...", "topics": [...],
                  "source": "..."}}

Unreadable or malformed files are skipped and reported, never fatal.
"""

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from devmemory.log_config import get_logger
from devmemory.models import ContextEntry, ContextMetadata

log = get_logger("migration.legacy")

_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F-\u009F]")

# Metadata keys with a dedicated ContextMetadata field
_MAPPED_KEYS = {"timestamp", "type", "topics", "tags", "source"}

DEFAULT_TYPE = "conversation"


@dataclass
class LegacyLoadResult:
    """Entries read from a legacy store plus the files that were skipped.

    Attributes:
        entries: Successfully parsed entries, in file order
        skipped: (path, reason) for every file that could not be used
    """

    entries: list[ContextEntry] = field(default_factory=list)
    skipped: list[tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": len(self.entries),
            "skipped": [{"path": p, "reason": r} for p, r in self.skipped],
        }


def sanitize_content(text: str) -> str:
    """Strip ASCII and C1 control characters."""
    return _CONTROL_CHARS.sub("", text)


def parse_timestamp(value: Any) -> int:
    """Convert a legacy timestamp to integer milliseconds since epoch.

    Accepts ISO-8601 strings (naive values are taken as UTC) and numbers
    already expressed in milliseconds.

    Raises:
        ValueError: If the value cannot be interpreted
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    raise ValueError(f"Invalid timestamp: {value!r}")


def legacy_to_entry(data: dict[str, Any]) -> ContextEntry:
    """Map one legacy document to a ContextEntry.

    Raises:
        ValueError: If id, content or timestamp is missing or malformed
    """
    if not isinstance(data, dict):
        raise ValueError("Document is not a JSON object")
    entry_id = data.get("id")
    content = data.get("content")
    metadata = data.get("metadata") or {}
    if not entry_id or not isinstance(entry_id, str):
        raise ValueError("Missing id")
    if not isinstance(content, str):
        raise ValueError("Missing content")
    if "timestamp" not in metadata:
        raise ValueError("Missing metadata.timestamp")

    tags = metadata.get("topics", metadata.get("tags")) or []
    return ContextEntry(
        id=entry_id,
        content=sanitize_content(content),
        metadata=ContextMetadata(
            type=metadata.get("type") or DEFAULT_TYPE,
            timestamp=parse_timestamp(metadata["timestamp"]),
            tags=[str(t) for t in tags],
            source=metadata.get("source"),
            attributes={k: v for k, v in metadata.items() if k not in _MAPPED_KEYS},
        ),
    )


def find_legacy_files(directory: Path) -> list[Path]:
    """memory-*.json at the root plus *.json under interactions/, sorted."""
    files = sorted(directory.glob("memory-*.json"))
    interactions = directory / "interactions"
    if interactions.is_dir():
        files.extend(sorted(interactions.glob("*.json")))
    return files


def load_legacy_entries(directory: str | Path) -> LegacyLoadResult:
    """Read every legacy memory file under directory.

    A missing directory yields an empty result with one skipped item.
    """
    directory = Path(directory).expanduser()
    result = LegacyLoadResult()
    if not directory.is_dir():
        log.warning(f"Legacy directory not found: {directory}")
        result.skipped.append((str(directory), "Directory not found"))
        return result

    seen: set[str] = set()
    for path in find_legacy_files(directory):
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            entry = legacy_to_entry(data)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, ValueError) as e:
            log.warning(f"Skipping legacy file {path.name}: {e}")
            result.skipped.append((str(path), str(e)))
            continue
        if entry.id in seen:
            result.skipped.append((str(path), f"Duplicate id: {entry.id}"))
            continue
        seen.add(entry.id)
        result.entries.append(entry)

    log.info(f"Loaded {len(result.entries)} legacy entries from {directory} ({len(result.skipped)} skipped)")
    return result
