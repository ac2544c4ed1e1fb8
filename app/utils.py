# app/utils.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# ---- Clock ----
def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(dt: datetime) -> datetime:
    """naive な datetime は UTC とみなす（SQLite はタイムゾーンを保存しないため）"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt

# ---- Formatting ----
def local_time(dt: Optional[datetime], fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    """タイムスタンプをサーバーのローカル時刻で表示用に整形"""
    if dt is None:
        return ""
    return as_utc(dt).astimezone().strftime(fmt)
