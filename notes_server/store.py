"""
Note persistence. Every operation is scoped to the owning subject; update and delete match
id AND owner in one statement, so another user's note id behaves exactly like a missing one.
"""
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notes_server.models import Note, utc_now

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Underlying database read/write failed."""


@dataclass
class UpdateResult:
    applied: bool
    note: Note | None = None


@dataclass
class DeleteResult:
    applied: bool


def list_notes(db: Session, owner: str) -> list[Note]:
    """Owner's notes, newest first."""
    try:
        return (
            db.query(Note)
            .filter(Note.user_id == owner)
            .order_by(Note.created_at.desc(), Note.id.desc())
            .all()
        )
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Error fetching notes for %s", owner)
        raise StorageError("Failed to fetch notes") from e


def create_note(db: Session, owner: str, email: str | None, title: str, content: str) -> Note:
    """Insert one note. Input is assumed validated (non-empty title)."""
    now = utc_now()
    note = Note(
        user_id=owner,
        user_email=email or "",
        title=title,
        content=content,
        created_at=now,
        updated_at=now,
    )
    try:
        db.add(note)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Error creating note for %s", owner)
        raise StorageError("Failed to create note") from e
    logger.info("Created note id=%s for %s", note.id, owner)
    return note


def update_note(db: Session, note_id: int, owner: str, title: str, content: str) -> UpdateResult:
    """UPDATE ... WHERE id = :id AND user_id = :owner. applied=False if nothing matched."""
    try:
        count = (
            db.query(Note)
            .filter(Note.id == note_id, Note.user_id == owner)
            .update(
                {Note.title: title, Note.content: content, Note.updated_at: utc_now()},
                synchronize_session=False,
            )
        )
        if count == 0:
            db.rollback()
            return UpdateResult(applied=False)
        # Same transaction as the update, so this is the row just written
        note = db.query(Note).filter(Note.id == note_id, Note.user_id == owner).populate_existing().one()
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Error updating note id=%s", note_id)
        raise StorageError("Failed to update note") from e
    logger.info("Updated note id=%s", note_id)
    return UpdateResult(applied=True, note=note)


def delete_note(db: Session, note_id: int, owner: str) -> DeleteResult:
    """DELETE ... WHERE id = :id AND user_id = :owner. applied=False if nothing matched."""
    try:
        count = (
            db.query(Note)
            .filter(Note.id == note_id, Note.user_id == owner)
            .delete(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Error deleting note id=%s", note_id)
        raise StorageError("Failed to delete note") from e
    if count:
        logger.info("Deleted note id=%s", note_id)
    return DeleteResult(applied=count > 0)
