# app/routers/notes.py
from fastapi import APIRouter, Depends, HTTPException, Request

from app.schemas import NoteIn, NoteOut, NoteUpdate
from app.store import NoteStore, StoreError
from app.utils import utcnow

router = APIRouter(prefix="/api/notes", tags=["notes"])

def get_store(request: Request) -> NoteStore:
    return request.app.state.store

@router.get("", response_model=list[NoteOut])
def list_notes(store: NoteStore = Depends(get_store)):
    try:
        return store.list()
    except StoreError as e:
        raise HTTPException(503, "store_unavailable") from e

@router.post("", response_model=NoteOut, status_code=201)
def create_note(note: NoteIn, store: NoteStore = Depends(get_store)):
    try:
        return store.insert(note.title, note.content)
    except StoreError as e:
        raise HTTPException(503, "store_unavailable") from e

@router.patch("/{note_id}", response_model=NoteOut)
def update_note(note_id: str, patch: NoteUpdate, store: NoteStore = Depends(get_store)):
    try:
        if store.get(note_id) is None:
            raise HTTPException(404, "not_found")
        changes = patch.model_dump(exclude_none=True)
        changes["updated_at"] = utcnow()
        store.update(note_id, changes)
        note = store.get(note_id)
    except StoreError as e:
        raise HTTPException(503, "store_unavailable") from e
    if note is None:
        # update と get の間に削除された
        raise HTTPException(404, "not_found")
    return note

@router.delete("/{note_id}", status_code=204)
def delete_note(note_id: str, store: NoteStore = Depends(get_store)):
    try:
        if store.get(note_id) is None:
            raise HTTPException(404, "not_found")
        store.delete(note_id)
    except StoreError as e:
        raise HTTPException(503, "store_unavailable") from e
    return
