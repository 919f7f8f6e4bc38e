"""Decides which subscribers hear about which row changes"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from sqlalchemy import event, inspect

logger = logging.getLogger(__name__)

TRACKED_TABLES = frozenset({"stories", "reactions", "tasks", "users", "repos", "servers"})
# Columns a change event carries along for the relevance rules
_EVENT_COLUMNS = ("public", "published", "ready", "user_ids", "user_id", "deleted", "type")


@dataclass
class ChangeEvent:
    table: str
    id: int
    op: str  # "insert", "update" or "delete"
    current: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Subscription:
    user_id: Optional[int]
    # "client" or "admin"
    area: str = "client"
    tables: FrozenSet[str] = TRACKED_TABLES


def is_relevant_to(change: ChangeEvent, user, subscription: Subscription) -> bool:
    if change.table not in subscription.tables:
        return False
    user_type = getattr(user, "type", "guest")
    if user_type == "guest" and change.current.get("public") is False:
        return False

    if change.table == "stories":
        if subscription.area == "admin":
            return False
        if change.current.get("published") and change.current.get("ready"):
            return True
        return getattr(user, "id", None) in (change.current.get("user_ids") or [])
    if change.table == "reactions":
        return subscription.area != "admin"
    if change.table == "tasks":
        owner = change.current.get("user_id")
        if owner is not None:
            return owner == getattr(user, "id", None)
        return subscription.area == "admin" and user_type == "admin"
    return True


@dataclass
class _Listener:
    subscription: Subscription
    user: Any
    callback: Callable[[ChangeEvent], None]


class ChangeNotifier:
    """Collects changes after each flush and delivers the relevant ones after commit"""

    _INFO_KEY = "storybridge_changes"

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[_Listener] = []

    def attach(self, target) -> None:
        """Listen on a ``Session`` class or ``sessionmaker``."""
        event.listen(target, "after_flush", self._collect)
        event.listen(target, "after_commit", self._deliver)
        event.listen(target, "after_soft_rollback", self._discard)

    def subscribe(self, subscription: Subscription, user, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        listener = _Listener(subscription, user, callback)
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _collect(self, session, flush_context) -> None:
        pending = session.info.setdefault(self._INFO_KEY, [])
        for op, objects in (("insert", session.new), ("update", session.dirty), ("delete", session.deleted)):
            for obj in objects:
                table = getattr(obj, "__tablename__", None)
                if table not in TRACKED_TABLES:
                    continue
                if op == "update" and not session.is_modified(obj):
                    continue
                state = inspect(obj)
                current = {key: getattr(obj, key) for key in _EVENT_COLUMNS if key in state.mapper.column_attrs}
                pending.append(ChangeEvent(table=table, id=obj.id, op=op, current=current))

    def _deliver(self, session) -> None:
        changes = session.info.pop(self._INFO_KEY, [])
        if not changes:
            return
        with self._lock:
            listeners = list(self._listeners)
        for change in changes:
            for listener in listeners:
                if not is_relevant_to(change, listener.user, listener.subscription):
                    continue
                try:
                    listener.callback(change)
                except Exception as e:
                    logger.error(f"Change listener failed on {change.table}:{change.id}: {e}")

    def _discard(self, session, previous_transaction) -> None:
        session.info.pop(self._INFO_KEY, None)


notifier = ChangeNotifier()
