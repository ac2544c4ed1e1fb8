# app/main.py
from __future__ import annotations

import os
import logging
import time
import uuid
import secrets
from typing import Annotated

from fastapi import FastAPI, Request, HTTPException, Depends, Form
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from starlette.middleware.sessions import SessionMiddleware

from .db import engine, SessionLocal, PROJECT_ROOT
from .models import Base
from .registry import ViewRegistry, ViewSession
from .routers.notes import router as notes_api_router
from .store import NoteStore
from .utils import local_time

# ------------------------------------------------------------------------------
# Logging
# ------------------------------------------------------------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger("notes")

# ------------------------------------------------------------------------------
# 基本セットアップ
# ------------------------------------------------------------------------------
MAX_VIEWS = int(os.environ.get("MAX_VIEWS", "256"))

store = NoteStore(SessionLocal)
views = ViewRegistry(store, max_views=MAX_VIEWS)

app = FastAPI(title="notes (live)")
app.state.store = store
app.state.views = views

# Session
SESSION_SECRET = os.environ.get("SESSION_SECRET") or secrets.token_urlsafe(32)
app.add_middleware(
    SessionMiddleware,
    secret_key=SESSION_SECRET,
    session_cookie="notes_session",
    same_site="lax",
    https_only=False,
    max_age=60 * 60 * 24 * 30,
)

# Static / Templates
app.mount("/static", StaticFiles(directory=PROJECT_ROOT / "static"), name="static")
templates = Jinja2Templates(directory=str(PROJECT_ROOT / "templates"))
templates.env.filters["local_time"] = local_time

# CORS
_raw = os.environ.get("ALLOW_ORIGINS", "")
ALLOWED_ORIGINS = [o.strip() for o in _raw.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or [],
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=True,
)

app.include_router(notes_api_router)

@app.on_event("startup")
def on_startup():
    Base.metadata.create_all(engine)
    logger.info(f"tables ensured url={engine.url.render_as_string(hide_password=True)}")

@app.on_event("shutdown")
def on_shutdown():
    n = len(views)
    views.close_all()
    logger.info(f"views unmounted count={n}")

# Security headers
@app.middleware("http")
async def security_headers(request: Request, call_next):
    resp = await call_next(request)
    resp.headers["X-Content-Type-Options"] = "nosniff"
    resp.headers["X-Frame-Options"] = "DENY"
    resp.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return resp

@app.middleware("http")
async def request_id_mw(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = rid
    resp = await call_next(request)
    resp.headers["X-Request-ID"] = rid
    resp.headers.setdefault("Access-Control-Expose-Headers", "X-Request-ID")
    return resp

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    status = 500
    try:
        resp = await call_next(request)
        status = resp.status_code
    finally:
        ms = (time.time() - start) * 1000
        rid = getattr(request.state, "request_id", "-")
        logger.info(f"rid={rid} {request.method} {request.url.path} {status} {ms:.1f}ms")
    return resp

# Error handlers
@app.exception_handler(HTTPException)
async def http_exc_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "status_code": exc.status_code, "path": request.url.path},
        headers=exc.headers or None,
    )

@app.exception_handler(Exception)
async def unhandled_exc_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error")
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": "Something went wrong."})

# ------------------------------------------------------------------------------
# セッションごとの NotesView
# ------------------------------------------------------------------------------
async def current_view(request: Request) -> ViewSession:
    sid = request.session.get("sid")
    if not sid:
        sid = uuid.uuid4().hex
        request.session["sid"] = sid
    return await request.app.state.views.get(sid)

def ctx(entry: ViewSession, **kw):
    d = {"view": entry.view, "dialog": entry.dialog}
    d.update(kw)
    return d

def _back_home() -> RedirectResponse:
    return RedirectResponse("/", status_code=303)

# ------------------------------------------------------------------------------
# 公開ルート
# ------------------------------------------------------------------------------
@app.get("/health")
def health():
    return {"status": "healthy"}

@app.get("/", response_class=HTMLResponse, name="index")
async def index(request: Request, entry: ViewSession = Depends(current_view)):
    await entry.view.settle()
    return templates.TemplateResponse(request, "index.html", ctx(entry))

@app.get("/fragments/notes", response_class=HTMLResponse, name="notes_fragment")
async def notes_fragment(request: Request, entry: ViewSession = Depends(current_view)):
    return templates.TemplateResponse(request, "_notes.html", ctx(entry), headers={"Cache-Control": "no-store"})

@app.get("/events", name="events")
async def events(request: Request, entry: ViewSession = Depends(current_view)):
    async def stream():
        yield f"event: hello\ndata: {entry.view.revision}\n\n"
        async for revision in entry.view.changes():
            if await request.is_disconnected():
                break
            yield f"event: refresh\ndata: {revision}\n\n"

    return StreamingResponse(stream(), media_type="text/event-stream", headers={"Cache-Control": "no-store"})

# ------------------------------------------------------------------------------
# フォーム操作
# ------------------------------------------------------------------------------
@app.post("/submit", name="submit")
async def submit(
    entry: ViewSession = Depends(current_view),
    title: Annotated[str, Form()] = "",
    content: Annotated[str, Form()] = "",
):
    if not entry.busy:
        entry.view.title_input = title
        entry.view.content_input = content
        await entry.run(entry.view.submit())
    return _back_home()

@app.post("/notes/{note_id}/edit", name="begin_edit")
async def begin_edit(note_id: str, entry: ViewSession = Depends(current_view)):
    note = entry.view.find(note_id)
    if note is None:
        raise HTTPException(404, "note_not_found")
    if not entry.busy:
        entry.view.begin_edit(note)
    return _back_home()

@app.post("/cancel", name="cancel_edit")
async def cancel_edit(entry: ViewSession = Depends(current_view)):
    if not entry.busy:
        entry.view.cancel_edit()
    return _back_home()

@app.post("/notes/{note_id}/delete", name="remove")
async def remove(note_id: str, entry: ViewSession = Depends(current_view)):
    await entry.run(entry.view.remove(note_id))
    return _back_home()

@app.post("/dialog", name="dialog_answer")
async def dialog_answer(
    entry: ViewSession = Depends(current_view),
    answer: Annotated[str, Form()] = "no",
):
    await entry.answer(answer.lower() in ("ok", "yes"))
    return _back_home()
