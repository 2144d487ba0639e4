"""
Notes REST routes (/api/notes). All routes require a Bearer token; rows are scoped to the token subject.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from notes_server import store
from notes_server.auth import CurrentIdentity
from notes_server.database import get_db
from notes_server.store import StorageError

router = APIRouter(prefix="/api/notes")

NOT_FOUND = "Note not found or access denied"
# notes.id is a 32-bit INTEGER on PostgreSQL
MAX_NOTE_ID = 2**31 - 1


class NoteIn(BaseModel):
    title: str | None = None
    content: str | None = None


def _validated(body: NoteIn | None) -> tuple[str, str]:
    """Trimmed (title, content). Raises 400 if title is empty or the body is missing."""
    if body is None:
        body = NoteIn()
    title = (body.title or "").strip()
    if not title:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Title is required")
    content = (body.content or "").strip()
    return title, content


def _parse_id(note_id: str) -> int:
    # Non-numeric or out-of-range ids can't match a row; same 404 as a missing note
    try:
        nid = int(note_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    if not 1 <= nid <= MAX_NOTE_ID:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return nid


@router.get("")
def list_notes(identity: CurrentIdentity, db: Session = Depends(get_db)):
    """Caller's notes, newest first."""
    try:
        notes = store.list_notes(db, identity.subject)
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to fetch notes")
    return [n.to_dict() for n in notes]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_note(identity: CurrentIdentity, body: NoteIn | None = None, db: Session = Depends(get_db)):
    title, content = _validated(body)
    try:
        note = store.create_note(db, identity.subject, identity.email, title, content)
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to create note")
    return note.to_dict()


@router.put("/{note_id}")
def update_note(note_id: str, identity: CurrentIdentity, body: NoteIn | None = None, db: Session = Depends(get_db)):
    """
    Replace title/content. 404 when the id doesn't exist or belongs to someone else;
    the two cases are indistinguishable to the caller.
    """
    title, content = _validated(body)
    nid = _parse_id(note_id)
    try:
        result = store.update_note(db, nid, identity.subject, title, content)
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to update note")
    if not result.applied:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    response = {"id": nid, "title": title, "content": content}
    if result.note is not None:
        response["updated_at"] = result.note.to_dict()["updated_at"]
    return response


@router.delete("/{note_id}")
def delete_note(note_id: str, identity: CurrentIdentity, db: Session = Depends(get_db)):
    nid = _parse_id(note_id)
    try:
        result = store.delete_note(db, nid, identity.subject)
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to delete note")
    if not result.applied:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NOT_FOUND)
    return {"message": "Note deleted successfully"}
