"""NotesView: ノート一覧ページの状態コンテナ。

notes を書き換えるのは refresh() だけ。それ以外の操作は下書きフィールドを
触るか、ストアを呼んだあと refresh() で締めくくる。変更フィードからの
イベントはペイロードを見ずに refresh() のトリガーとしてだけ使う。
"""
from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Callable, Optional, Protocol

from starlette.concurrency import run_in_threadpool

from .schemas import NoteOut
from .store import StoreError, Subscription
from .utils import utcnow

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    pass


class Dialogs(Protocol):
    async def alert(self, message: str) -> None: ...
    async def confirm(self, message: str) -> bool: ...


def _require_title(title: str) -> None:
    if not title.strip():
        raise ValidationError("Title required")


class NotesView:
    def __init__(self, store, dialogs: Dialogs, clock: Callable = utcnow):
        self.store = store
        self.dialogs = dialogs
        self.clock = clock

        self.notes: list[NoteOut] = []
        self.title_input = ""
        self.content_input = ""
        self.editing_id: Optional[str] = None
        self.revision = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._subscription: Optional[Subscription] = None
        self._tasks: set[asyncio.Task] = set()
        self._watchers: set[asyncio.Queue] = set()
        self._closed = False

    @property
    def editing(self) -> bool:
        return self.editing_id is not None

    @property
    def mounted(self) -> bool:
        return self._subscription is not None

    # --------------------------------------------------------------------------
    # mount / unmount
    # --------------------------------------------------------------------------
    async def mount(self) -> None:
        if self._subscription is not None:
            return
        self._closed = False
        self._loop = asyncio.get_running_loop()
        self._subscription = self.store.subscribe(self._on_change)
        try:
            await self.refresh()
        except BaseException:
            self.unmount()
            raise

    def unmount(self) -> None:
        sub, self._subscription = self._subscription, None
        if sub is not None:
            self.store.unsubscribe(sub)
            self._closed = True
        # changes() を待っている側を終わらせる
        for q in list(self._watchers):
            q.put_nowait(None)
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def __aenter__(self) -> "NotesView":
        await self.mount()
        return self

    async def __aexit__(self, *exc) -> None:
        self.unmount()

    def _on_change(self, event) -> None:
        # ストアのワーカースレッドから呼ばれるのでループへ受け渡す
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._spawn_refresh)

    def _spawn_refresh(self) -> None:
        if self._subscription is None:
            return
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def settle(self) -> None:
        """イベント起因で走っている refresh をすべて待つ"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --------------------------------------------------------------------------
    # live push
    # --------------------------------------------------------------------------
    async def changes(self) -> AsyncIterator[int]:
        """refresh が反映されるたびに revision を返す。unmount されたら終わる"""
        if self._closed:
            return
        q: asyncio.Queue = asyncio.Queue()
        self._watchers.add(q)
        try:
            while True:
                revision = await q.get()
                if revision is None:
                    return
                yield revision
        finally:
            self._watchers.discard(q)

    # --------------------------------------------------------------------------
    # operations
    # --------------------------------------------------------------------------
    async def refresh(self) -> None:
        try:
            notes = await run_in_threadpool(self.store.list)
        except StoreError as e:
            logger.warning(f"refresh failed, keeping {len(self.notes)} notes: {e}")
            return
        self.notes = list(notes)
        self.revision += 1
        for q in list(self._watchers):
            q.put_nowait(self.revision)

    async def create(self, title: str, content: str) -> None:
        try:
            _require_title(title)
        except ValidationError as e:
            await self.dialogs.alert(str(e))
            return

        await self._call("insert", self.store.insert, title, content)
        self.title_input = ""
        self.content_input = ""
        await self.refresh()

    def begin_edit(self, note: NoteOut) -> None:
        self.editing_id = note.id
        self.title_input = note.title
        self.content_input = note.content

    async def commit_edit(self) -> None:
        if self.editing_id is None:
            return
        changes = {
            "title": self.title_input,
            "content": self.content_input,
            "updated_at": self.clock(),
        }
        await self._call("update", self.store.update, self.editing_id, changes)
        self.cancel_edit()
        await self.refresh()

    def cancel_edit(self) -> None:
        self.editing_id = None
        self.title_input = ""
        self.content_input = ""

    async def remove(self, note_id: str) -> None:
        if not await self.dialogs.confirm("Delete this note?"):
            return
        await self._call("delete", self.store.delete, note_id)
        await self.refresh()

    async def submit(self) -> None:
        """メインボタン（Create Note / Save）"""
        if self.editing:
            await self.commit_edit()
        else:
            await self.create(self.title_input, self.content_input)

    def find(self, note_id: str) -> Optional[NoteOut]:
        return next((n for n in self.notes if n.id == note_id), None)

    async def _call(self, op: str, fn, *args) -> None:
        # 失敗はユーザーに見せず、ログだけ残して先に進む
        try:
            await run_in_threadpool(fn, *args)
        except StoreError as e:
            logger.warning(f"{op} failed (ignored): {e}")
