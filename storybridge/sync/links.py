"""Link registry.

A row's ``links`` column holds at most one ``ExternalLink`` per
``(type, server_id)``. Each link carries ``ObjectKeys``: one optional
``ObjectRef`` per object kind, so the same row can point at a project,
an issue inside it and a note on that issue at the same time.

Two operations refer to the same external object when type, server id and
the keys of the object kind in question are equal.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

OBJECT_KINDS = ("project", "issue", "merge_request", "note", "commit", "user")


class ObjectRef(BaseModel):
    """Identifier(s) of one object on the external server."""

    id: Optional[Union[int, str]] = None
    # Issue / merge request iid (the per-project number users see)
    number: Optional[int] = None
    # A push story points at every commit it contains
    ids: Optional[List[str]] = None

    def matches(self, criteria: "ObjectRef") -> bool:
        if criteria.id is not None:
            if self.id is not None:
                if str(self.id) != str(criteria.id):
                    return False
            elif not self.ids or str(criteria.id) not in self.ids:
                return False
        if criteria.number is not None and self.number != criteria.number:
            return False
        if criteria.ids is not None and set(criteria.ids) - set(self.ids or []):
            return False
        return True


class ObjectKeys(BaseModel):
    project: Optional[ObjectRef] = None
    issue: Optional[ObjectRef] = None
    merge_request: Optional[ObjectRef] = None
    note: Optional[ObjectRef] = None
    commit: Optional[ObjectRef] = None
    user: Optional[ObjectRef] = None

    def union(self, other: Optional["ObjectKeys"]) -> "ObjectKeys":
        """Kinds named in ``other`` replace ours, the rest are kept."""
        merged = self.model_copy(deep=True)
        if other is not None:
            for kind in OBJECT_KINDS:
                ref = getattr(other, kind)
                if ref is not None:
                    setattr(merged, kind, ref.model_copy(deep=True))
        return merged

    def without(self, *kinds: str) -> "ObjectKeys":
        trimmed = self.model_copy(deep=True)
        for kind in kinds:
            setattr(trimmed, kind, None)
        return trimmed

    def kinds(self) -> List[str]:
        return [kind for kind in OBJECT_KINDS if getattr(self, kind) is not None]


class ExternalLink(BaseModel):
    type: str
    server_id: int
    keys: ObjectKeys = Field(default_factory=ObjectKeys)

    def same_server(self, type: str, server_id: Optional[int]) -> bool:
        if self.type != type:
            return False
        return server_id is None or self.server_id == server_id

    def matches(self, criteria: "ExternalLink") -> bool:
        if not self.same_server(criteria.type, criteria.server_id):
            return False
        for kind in criteria.keys.kinds():
            ours = getattr(self.keys, kind)
            if ours is None or not ours.matches(getattr(criteria.keys, kind)):
                return False
        return True

    def tokens(self) -> List[str]:
        prefix = f"{self.type}:{self.server_id}"
        tokens = [prefix]
        for kind in self.keys.kinds():
            ref = getattr(self.keys, kind)
            if ref.id is not None:
                tokens.append(f"{prefix}:{kind}.id={ref.id}")
            for commit_id in ref.ids or []:
                tokens.append(f"{prefix}:{kind}.id={commit_id}")
        return tokens


KeysLike = Union[ObjectKeys, dict, None]


def _as_keys(keys: KeysLike) -> ObjectKeys:
    if keys is None:
        return ObjectKeys()
    if isinstance(keys, ObjectKeys):
        return keys
    return ObjectKeys.model_validate(keys)


def get_links(record: Any) -> List[ExternalLink]:
    return [ExternalLink.model_validate(item) for item in (getattr(record, "links", None) or [])]


def set_links(record: Any, links: Iterable[ExternalLink]) -> None:
    links = list(links)
    record.links = [link.model_dump(exclude_none=True) for link in links]
    tokens = [token for link in links for token in link.tokens()]
    record.link_tokens = f" {' '.join(tokens)} " if tokens else ""


def find_link(record: Any, type: str, server_id: Optional[int] = None) -> Optional[ExternalLink]:
    """First link of the given provider type (and server, when given)."""
    for link in get_links(record):
        if link.same_server(type, server_id):
            return link
    return None


def find_links(record: Any, type: str) -> List[ExternalLink]:
    return [link for link in get_links(record) if link.type == type]


def extend_link(record: Any, type: str, server_id: int, keys: KeysLike = None) -> ExternalLink:
    """Build a criteria link from ``record``'s link plus ``keys``; nothing is mutated."""
    base = find_link(record, type, server_id) if record is not None else None
    base_keys = base.keys if base is not None else ObjectKeys()
    return ExternalLink(type=type, server_id=server_id, keys=base_keys.union(_as_keys(keys)))


def inherit_link(record: Any, type: str, server_id: int, keys: KeysLike = None) -> ExternalLink:
    """Merge ``keys`` into the record's link for ``(type, server_id)``, adding one if needed."""
    links = get_links(record)
    keys = _as_keys(keys)
    for index, link in enumerate(links):
        if link.type == type and link.server_id == server_id:
            links[index] = ExternalLink(type=type, server_id=server_id, keys=link.keys.union(keys))
            set_links(record, links)
            return links[index]
    link = ExternalLink(type=type, server_id=server_id, keys=ObjectKeys().union(keys))
    links.append(link)
    set_links(record, links)
    return link


def remove_link(record: Any, type: str, server_id: Optional[int] = None) -> List[ExternalLink]:
    """Drop matching links; returns what was removed."""
    links = get_links(record)
    kept = [link for link in links if not link.same_server(type, server_id)]
    removed = [link for link in links if link.same_server(type, server_id)]
    if removed:
        set_links(record, kept)
    return removed


def has_link_to(record: Any, criteria: ExternalLink) -> bool:
    return any(link.matches(criteria) for link in get_links(record))


def find_by_link(session, model, criteria: ExternalLink, *, include_deleted: bool = False):
    """Rows of ``model`` with a link matching ``criteria``.

    ``link_tokens`` narrows the query; the match itself is decided by
    ``ExternalLink.matches``.
    """
    query = session.query(model)
    for token in criteria.tokens():
        query = query.filter(model.link_tokens.contains(f" {token} ", autoescape=True))
    if not include_deleted:
        query = query.filter(model.deleted == False)  # noqa: E712
    return [row for row in query.order_by(model.id).all() if has_link_to(row, criteria)]


def find_one_by_link(session, model, criteria: ExternalLink, *, include_deleted: bool = False):
    rows = find_by_link(session, model, criteria, include_deleted=include_deleted)
    return rows[0] if rows else None
