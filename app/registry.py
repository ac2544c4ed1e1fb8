# app/registry.py
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Optional

from .dialogs import DialogHost
from .view import NotesView

logger = logging.getLogger(__name__)


class ViewSession:
    """ブラウザセッション 1 つぶんの NotesView とダイアログ"""

    def __init__(self, view: NotesView, dialogs: DialogHost):
        self.view = view
        self.dialogs = dialogs
        self.pending: Optional[asyncio.Task] = None

    @property
    def dialog(self):
        return self.dialogs.current

    @property
    def busy(self) -> bool:
        return self.dialogs.current is not None or self.pending is not None

    async def run(self, coro) -> None:
        """アクションを開始し、完了するかダイアログが開くまで待つ"""
        if self.busy:
            # モーダル表示中は他の操作を受け付けない
            coro.close()
            return
        self.pending = asyncio.ensure_future(coro)
        await self._drive()

    async def answer(self, value: bool) -> None:
        self.dialogs.answer(value)
        await self._drive()

    async def _drive(self) -> None:
        task = self.pending
        if task is None:
            return
        opened = asyncio.ensure_future(self.dialogs.wait_opened())
        try:
            await asyncio.wait({task, opened}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            opened.cancel()
        if task.done():
            self.pending = None
            if not task.cancelled() and task.exception() is not None:
                # 失敗はダイアログに答えたリクエストではなくログに残す
                logger.error("view action failed", exc_info=task.exception())

    def close(self) -> None:
        self.dialogs.close()
        if self.pending is not None:
            self.pending.cancel()
            self.pending = None
        self.view.unmount()


class ViewRegistry:
    def __init__(self, store, max_views: int = 256):
        self.store = store
        self.max_views = max_views
        self._sessions: "OrderedDict[str, ViewSession]" = OrderedDict()
        # 同じ sid への同時リクエストは 1 つの mount を共有する
        self._mounting: dict[str, asyncio.Future] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, sid: str) -> bool:
        return sid in self._sessions

    async def get(self, sid: str) -> ViewSession:
        entry = self._sessions.get(sid)
        if entry is not None:
            self._sessions.move_to_end(sid)
            return entry

        fut = self._mounting.get(sid)
        if fut is None:
            fut = asyncio.ensure_future(self._mount(sid))
            self._mounting[sid] = fut
            fut.add_done_callback(lambda f: self._mount_done(sid, f))
        return await asyncio.shield(fut)

    def _mount_done(self, sid: str, fut: asyncio.Future) -> None:
        if self._mounting.get(sid) is fut:
            del self._mounting[sid]

    async def _mount(self, sid: str) -> ViewSession:
        dialogs = DialogHost()
        entry = ViewSession(NotesView(self.store, dialogs), dialogs)
        await entry.view.mount()
        self._sessions[sid] = entry
        logger.info(f"view mounted sid={sid[:8]} live={len(self._sessions)}")

        while len(self._sessions) > self.max_views:
            old_sid, old = self._sessions.popitem(last=False)
            old.close()
            logger.info(f"view evicted sid={old_sid[:8]}")
        return entry

    def discard(self, sid: str) -> None:
        entry = self._sessions.pop(sid, None)
        if entry is not None:
            entry.close()

    def close_all(self) -> None:
        for fut in list(self._mounting.values()):
            fut.cancel()
        while self._sessions:
            _, entry = self._sessions.popitem()
            entry.close()
