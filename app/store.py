"""Note store.

SQLAlchemy で notes テーブルを読み書きし、変更があるたびに ChangeFeed へ
イベントを流します。ストアは同期 API で、UI 側からはスレッドプール経由で
呼ばれる前提です。
"""
from __future__ import annotations

import itertools
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional

from sqlalchemy import select, update as sa_update, delete as sa_delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .models import Note
from .schemas import NoteOut

logger = logging.getLogger(__name__)

_UPDATABLE = {"title", "content", "updated_at"}


class StoreError(Exception):
    """list / insert / update / delete の失敗（接続・クエリエラー）"""


@dataclass(frozen=True)
class ChangeEvent:
    kind: str  # INSERT / UPDATE / DELETE
    note_id: str


@dataclass(frozen=True)
class Subscription:
    id: int


# ------------------------------------------------------------------------------
# Change feed
# ------------------------------------------------------------------------------
class ChangeFeed:
    """notes コレクションの変更通知。コールバックは任意のスレッドから呼ばれる。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[ChangeEvent], Any]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, callback: Callable[[ChangeEvent], Any]) -> Subscription:
        with self._lock:
            sub = Subscription(next(self._ids))
            self._callbacks[sub.id] = callback
        logger.debug(f"change feed subscribe id={sub.id}")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            removed = self._callbacks.pop(sub.id, None)
        if removed is not None:
            logger.debug(f"change feed unsubscribe id={sub.id}")

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._callbacks)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            callbacks = list(self._callbacks.values())
        for cb in callbacks:
            try:
                cb(event)
            except Exception:
                logger.exception(f"change feed subscriber failed event={event.kind} note_id={event.note_id}")


# ------------------------------------------------------------------------------
# Store
# ------------------------------------------------------------------------------
class NoteStore:
    def __init__(self, session_factory: sessionmaker, feed: Optional[ChangeFeed] = None):
        self.session_factory = session_factory
        self.feed = feed or ChangeFeed()

    @contextmanager
    def _session(self, op: str) -> Iterator[Session]:
        s = self.session_factory()
        try:
            yield s
        except SQLAlchemyError as e:
            s.rollback()
            logger.error(f"store {op} failed: {e}")
            raise StoreError(f"{op} failed") from e
        finally:
            s.close()

    def list(self) -> list[NoteOut]:
        with self._session("list") as s:
            rows = s.execute(select(Note).order_by(Note.created_at.desc())).scalars().all()
            return [NoteOut.model_validate(r) for r in rows]

    def get(self, note_id: str) -> Optional[NoteOut]:
        with self._session("get") as s:
            row = s.get(Note, note_id)
            return NoteOut.model_validate(row) if row else None

    def insert(self, title: str, content: str) -> NoteOut:
        with self._session("insert") as s:
            row = Note(title=title, content=content)
            s.add(row)
            s.commit()
            s.refresh(row)
            note = NoteOut.model_validate(row)
        self.feed.publish(ChangeEvent("INSERT", note.id))
        return note

    def update(self, note_id: str, changes: dict[str, Any]) -> None:
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValueError(f"not updatable: {sorted(unknown)}")
        if not changes:
            return
        with self._session("update") as s:
            res = s.execute(sa_update(Note).where(Note.id == note_id).values(**changes))
            s.commit()
            changed = res.rowcount
        if changed:
            self.feed.publish(ChangeEvent("UPDATE", note_id))

    def delete(self, note_id: str) -> None:
        with self._session("delete") as s:
            res = s.execute(sa_delete(Note).where(Note.id == note_id))
            s.commit()
            changed = res.rowcount
        if changed:
            self.feed.publish(ChangeEvent("DELETE", note_id))

    def subscribe(self, callback: Callable[[ChangeEvent], Any]) -> Subscription:
        return self.feed.subscribe(callback)

    def unsubscribe(self, sub: Subscription) -> None:
        self.feed.unsubscribe(sub)
