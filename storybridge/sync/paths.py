"""Field access for the merge engine.

Only the paths listed in ``FIELD_PATHS`` can be read or written. A top level
name is a column (or a key of a draft dict); ``details.<name>`` addresses a
key inside the row's ``details`` JSON.
"""

import copy
from typing import Any, Dict, FrozenSet, Optional

FIELD_PATHS: Dict[str, FrozenSet[str]] = {
    "story": frozenset(
        {
            "type",
            "tags",
            "user_ids",
            "public",
            "published",
            "ready",
            "ptime",
            "details.title",
            "details.text",
            "details.markdown",
            "details.description",
            "details.labels",
            "details.state",
            "details.exported",
            "details.branch",
            "details.from_branches",
            "details.commit_ids",
            "details.lines",
            "details.files",
        }
    ),
    "reaction": frozenset(
        {"type", "story_id", "user_id", "public", "published", "ready", "ptime", "details.text"}
    ),
    "user": frozenset(
        {"type", "username", "email", "disabled", "details.name", "details.email", "details.profile_image"}
    ),
    "repo": frozenset({"name", "details.web_url", "details.issues_enabled", "details.last_event_id"}),
    "commit": frozenset(
        {"title_hash", "initial_branch", "details.title", "details.message", "details.author", "details.lines", "details.files", "details.parent_ids"}
    ),
    # Object about to be sent to the issue tracker
    "issue": frozenset({"title", "description", "confidential", "labels", "state_event"}),
}

_MISSING = object()


def _kind_of(obj: Any, kind: Optional[str] = None) -> str:
    if kind:
        return kind
    if isinstance(obj, dict):
        return "issue"
    return getattr(obj, "field_kind", "")


def _check(obj: Any, path: str, kind: Optional[str] = None) -> str:
    kind = _kind_of(obj, kind)
    allowed = FIELD_PATHS.get(kind)
    if allowed is None or path not in allowed:
        raise KeyError(f"Unknown field '{path}' for {kind or type(obj).__name__}")
    return kind


def get_path(obj: Any, path: str, default: Any = None, *, kind: Optional[str] = None) -> Any:
    _check(obj, path, kind)
    if isinstance(obj, dict):
        return copy.deepcopy(obj.get(path, default))
    head, _, rest = path.partition(".")
    if rest:
        container = getattr(obj, head, None) or {}
        return copy.deepcopy(container.get(rest, default))
    value = getattr(obj, head, _MISSING)
    return default if value is _MISSING else value


def has_path(obj: Any, path: str, *, kind: Optional[str] = None) -> bool:
    _check(obj, path, kind)
    if isinstance(obj, dict):
        return path in obj
    head, _, rest = path.partition(".")
    if rest:
        return rest in (getattr(obj, head, None) or {})
    # A column is always present, even when it holds None
    return getattr(obj, head, _MISSING) is not _MISSING


def set_path(obj: Any, path: str, value: Any, *, kind: Optional[str] = None) -> None:
    _check(obj, path, kind)
    value = copy.deepcopy(value)
    if isinstance(obj, dict):
        obj[path] = value
        return
    head, _, rest = path.partition(".")
    if rest:
        # Assign a new dict so the ORM sees the JSON column change.
        container = copy.deepcopy(getattr(obj, head, None) or {})
        container[rest] = value
        setattr(obj, head, container)
    else:
        setattr(obj, head, value)


def delete_path(obj: Any, path: str, *, kind: Optional[str] = None) -> None:
    _check(obj, path, kind)
    if isinstance(obj, dict):
        obj.pop(path, None)
        return
    head, _, rest = path.partition(".")
    if rest:
        container = copy.deepcopy(getattr(obj, head, None) or {})
        if rest in container:
            del container[rest]
            setattr(obj, head, container)
    else:
        setattr(obj, head, None)
