# app/dialogs.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Dialog:
    kind: str  # "alert" / "confirm"
    message: str
    future: asyncio.Future = field(repr=False)


class DialogHost:
    """ブロッキングな alert / confirm の代わりに、結果を future で返すモーダル。

    表示中のダイアログは current に入り、answer() で閉じるまで呼び出し側は待機する。
    同時に開けるのは 1 つだけ。
    """

    def __init__(self) -> None:
        self.current: Optional[Dialog] = None
        self._opened = asyncio.Event()

    async def alert(self, message: str) -> None:
        await self._open("alert", message)

    async def confirm(self, message: str) -> bool:
        return bool(await self._open("confirm", message))

    async def _open(self, kind: str, message: str):
        if self.current is not None:
            raise RuntimeError("dialog already open")
        fut = asyncio.get_running_loop().create_future()
        self.current = Dialog(kind, message, fut)
        self._opened.set()
        try:
            return await fut
        finally:
            if self.current is not None and self.current.future is fut:
                self.current = None
                self._opened.clear()

    def answer(self, value: bool) -> None:
        dlg = self.current
        if dlg is None:
            return
        self.current = None
        self._opened.clear()
        if not dlg.future.done():
            # alert は OK しかないので値は無視される
            dlg.future.set_result(value if dlg.kind == "confirm" else None)

    async def wait_opened(self) -> None:
        await self._opened.wait()

    def close(self) -> None:
        dlg = self.current
        self.current = None
        self._opened.clear()
        if dlg is not None and not dlg.future.done():
            dlg.future.cancel()
