"""Database setup.

- DATABASE_URL があればそれを使います（Supabase / Render などの Postgres を想定）。
- ローカルでは ./notes.db (SQLite) に保存されます。
"""
from __future__ import annotations
from pathlib import Path
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# 環境変数があれば使う
DATABASE_URL = os.environ.get("DATABASE_URL", "").strip() or f"sqlite:///{PROJECT_ROOT / 'notes.db'}"

if DATABASE_URL.startswith("postgres://"):
    # URL 文字列を SQLAlchemy 形式に補正
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg://", 1)

if DATABASE_URL.startswith("sqlite"):
    # ストア呼び出しはスレッドプールから来るので check_same_thread を外す
    engine = create_engine(DATABASE_URL, future=True, connect_args={"check_same_thread": False})
else:
    engine = create_engine(DATABASE_URL, future=True, pool_pre_ping=True)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
