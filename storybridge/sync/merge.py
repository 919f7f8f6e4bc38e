"""Property merge engine.

Every importer and exporter moves field values through ``import_property``
and ``export_property``. Each row keeps, per ``(type, server_id)``, an
``ImportSnapshot`` holding the last value we imported (``imported``) and the
last value we know the remote side had for what we export (``exported``).

Overwrite policies:

* ``always``: the incoming value replaces the current one.
* ``match-previous:<field>``: the incoming value replaces the current one only
  when the current value still equals the snapshot entry ``<field>``. A
  difference means somebody edited the field since the last sync, and their
  edit wins.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from storybridge.sync.paths import get_path, has_path, set_path

logger = logging.getLogger(__name__)


class OverwriteMode(str, enum.Enum):
    ALWAYS = "always"
    MATCH_PREVIOUS = "match-previous"


@dataclass(frozen=True)
class OverwritePolicy:
    mode: OverwriteMode
    field: Optional[str] = None

    @classmethod
    def parse(cls, value: str) -> "OverwritePolicy":
        mode, _, field = (value or "").partition(":")
        try:
            mode = OverwriteMode(mode)
        except ValueError:
            raise ValueError(f"Unknown overwrite policy: {value!r}") from None
        if mode is OverwriteMode.MATCH_PREVIOUS and not field:
            raise ValueError(f"Overwrite policy {value!r} does not name a field")
        if mode is OverwriteMode.ALWAYS and field:
            raise ValueError(f"Overwrite policy {value!r} takes no field")
        return cls(mode=mode, field=field or None)


class ImportSnapshot(BaseModel):
    type: str
    server_id: int
    imported: Dict[str, Any] = Field(default_factory=dict)
    exported: Dict[str, Any] = Field(default_factory=dict)


def _normalize(value: Any) -> Any:
    """JSON-safe form used both for storage and for comparisons."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, tuple):
        return [_normalize(v) for v in value]
    if isinstance(value, list):
        return [_normalize(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    return value


def get_snapshots(record: Any) -> List[ImportSnapshot]:
    return [ImportSnapshot.model_validate(item) for item in (getattr(record, "exchange", None) or [])]


def get_snapshot(record: Any, type: str, server_id: int) -> ImportSnapshot:
    for snapshot in get_snapshots(record):
        if snapshot.type == type and snapshot.server_id == server_id:
            return snapshot
    return ImportSnapshot(type=type, server_id=server_id)


def _put_snapshot(record: Any, snapshot: ImportSnapshot) -> None:
    snapshots = [
        s for s in get_snapshots(record) if not (s.type == snapshot.type and s.server_id == snapshot.server_id)
    ]
    snapshots.append(snapshot)
    record.exchange = [s.model_dump() for s in snapshots]


def clear_snapshot(record: Any, type: str, server_id: Optional[int] = None) -> None:
    record.exchange = [
        s.model_dump()
        for s in get_snapshots(record)
        if not (s.type == type and (server_id is None or s.server_id == server_id))
    ]


def import_property(
    record: Any,
    type: str,
    server_id: int,
    path: str,
    value: Any,
    overwrite: str = "always",
) -> bool:
    """Apply a remote value to ``record``; returns True when the field changed."""
    policy = OverwritePolicy.parse(overwrite)
    snapshot = get_snapshot(record, type, server_id)
    key = policy.field or path
    current = _normalize(get_path(record, path))
    incoming = _normalize(value)

    if policy.mode is OverwriteMode.MATCH_PREVIOUS and key in snapshot.imported:
        if current != snapshot.imported[key]:
            logger.debug(f"Keeping local edit of '{path}' on {record!r}")
            return False

    changed = current != incoming or not has_path(record, path)
    if changed:
        set_path(record, path, value)
    if snapshot.imported.get(key, _MISSING) != incoming:
        snapshot.imported[key] = incoming
        _put_snapshot(record, snapshot)
    return changed


def export_property(
    record: Any,
    draft: Dict[str, Any],
    type: str,
    server_id: int,
    path: str,
    value: Any,
    overwrite: str = "always",
) -> bool:
    """Write a local value into ``draft`` (the object bound for the remote API).

    ``draft`` holds the remote object's current values (empty when creating).
    Returns True when the draft changed.
    """
    policy = OverwritePolicy.parse(overwrite)
    snapshot = get_snapshot(record, type, server_id)
    key = policy.field or path
    present = has_path(draft, path)
    current = _normalize(get_path(draft, path))
    outgoing = _normalize(value)

    if policy.mode is OverwriteMode.MATCH_PREVIOUS and present and key in snapshot.exported:
        if current != snapshot.exported[key]:
            logger.debug(f"Keeping remote edit of '{path}' for {record!r}")
            return False

    changed = current != outgoing or not present
    if changed:
        set_path(draft, path, value)
    if snapshot.exported.get(key, _MISSING) != outgoing:
        snapshot.exported[key] = outgoing
        _put_snapshot(record, snapshot)
    return changed


def record_exported(record: Any, type: str, server_id: int, values: Dict[str, Any]) -> None:
    """Remember what the remote side holds after a successful write."""
    snapshot = get_snapshot(record, type, server_id)
    updated = False
    for key, value in values.items():
        value = _normalize(value)
        if snapshot.exported.get(key, _MISSING) != value:
            snapshot.exported[key] = value
            updated = True
    if updated:
        _put_snapshot(record, snapshot)


_MISSING = object()
