"""
Audit trail -- every grant KeyMesh pushes leaves a line behind.

The log is JSONL (one JSON object per line) at ``<home>/audit.log``,
append-only and machine-parseable. Entries record which recipient got
which kind of grant, never the key material itself.
"""

from __future__ import annotations

import json
import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

AUDIT_LOG_NAME = "audit.log"


class AuditEntry(BaseModel):
    """A single structured audit log entry."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    event_type: str
    detail: str
    host: str = Field(default_factory=socket.gethostname)
    metadata: Optional[dict] = None


def audit_event(
    home: Path,
    event_type: str,
    detail: str,
    metadata: Optional[dict] = None,
) -> AuditEntry:
    """Append a structured event to the audit log.

    Args:
        home: KeyMesh home directory.
        event_type: Event category (DEVICE_REGISTER, DEVICE_GRANT,
            ORG_BOOTSTRAP, USER_PUBLIC_KEY, TEAM_GRANT, SYNC).
        detail: Human-readable event description.
        metadata: Optional dict of extra structured data.

    Returns:
        AuditEntry: The entry that was written.
    """
    home.mkdir(parents=True, exist_ok=True)
    entry = AuditEntry(event_type=event_type, detail=detail, metadata=metadata)

    with (home / AUDIT_LOG_NAME).open("a", encoding="utf-8") as f:
        f.write(entry.model_dump_json() + "\n")

    return entry


def read_audit_log(home: Path, limit: int = 0) -> list[AuditEntry]:
    """Read and parse the audit log.

    Lines that are not valid entries are kept as ``UNPARSED`` entries
    rather than dropped.

    Args:
        home: KeyMesh home directory.
        limit: Maximum entries to return (0 = all), most recent last.

    Returns:
        list[AuditEntry]: Parsed audit entries.
    """
    audit_log = home / AUDIT_LOG_NAME
    if not audit_log.exists():
        return []

    entries: list[AuditEntry] = []
    for line in audit_log.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(AuditEntry.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValidationError):
            entries.append(AuditEntry(event_type="UNPARSED", detail=line))

    if limit > 0:
        entries = entries[-limit:]

    return entries
