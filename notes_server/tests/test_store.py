"""Tests for the note store: owner scoping, ordering, delete idempotence."""
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from notes_server import store
from notes_server.models import Note
from notes_server.store import StorageError


def test_list_empty_for_new_owner(db):
    assert store.list_notes(db, "nobody") == []


def test_create_then_list_returns_note_first(db):
    note = store.create_note(db, "a", "a@example.com", "First", "body")
    notes = store.list_notes(db, "a")
    assert [n.id for n in notes] == [note.id]
    assert notes[0].title == "First"
    assert notes[0].user_id == "a"
    assert notes[0].created_at == notes[0].updated_at


def test_list_newest_first(db):
    older = store.create_note(db, "a", "a@example.com", "Older", "")
    newer = store.create_note(db, "a", "a@example.com", "Newer", "")
    older.created_at = newer.created_at - timedelta(minutes=5)
    db.commit()
    assert [n.id for n in store.list_notes(db, "a")] == [newer.id, older.id]


def test_list_scoped_to_owner(db):
    store.create_note(db, "a", "a@example.com", "Mine", "")
    store.create_note(db, "b", "b@example.com", "Theirs", "")
    assert [n.title for n in store.list_notes(db, "a")] == ["Mine"]


def test_update_own_note(db):
    note = store.create_note(db, "a", "a@example.com", "Old", "old body")
    result = store.update_note(db, note.id, "a", "New", "new body")
    assert result.applied is True
    assert result.note.title == "New"
    assert result.note.content == "new body"
    assert result.note.user_id == "a"
    assert result.note.updated_at >= result.note.created_at


def test_update_other_owner_not_applied(db):
    note = store.create_note(db, "a", "a@example.com", "A's note", "secret")
    result = store.update_note(db, note.id, "b", "hijacked", "")
    assert result.applied is False
    assert result.note is None
    row = db.query(Note).filter(Note.id == note.id).one()
    db.refresh(row)
    assert row.title == "A's note"
    assert row.user_id == "a"


def test_update_missing_not_applied(db):
    assert store.update_note(db, 999, "a", "x", "").applied is False


def test_delete_other_owner_not_applied(db):
    note = store.create_note(db, "a", "a@example.com", "Keep", "")
    assert store.delete_note(db, note.id, "b").applied is False
    assert len(store.list_notes(db, "a")) == 1


def test_delete_twice(db):
    note = store.create_note(db, "a", "a@example.com", "Gone", "")
    assert store.delete_note(db, note.id, "a").applied is True
    assert store.delete_note(db, note.id, "a").applied is False
    assert store.list_notes(db, "a") == []


# --- storage failures ---


def _db_down():
    return OperationalError("statement", {}, Exception("database is locked"))


def test_list_failure_raises_storage_error(db):
    with patch.object(db, "query", side_effect=_db_down()):
        with pytest.raises(StorageError):
            store.list_notes(db, "a")
    assert store.list_notes(db, "a") == []


def test_create_failure_rolls_back(db):
    with patch.object(db, "commit", side_effect=_db_down()):
        with pytest.raises(StorageError):
            store.create_note(db, "a", "a@example.com", "Lost", "")
    assert store.list_notes(db, "a") == []
    assert store.create_note(db, "a", "a@example.com", "Saved", "").id is not None


def test_update_failure_rolls_back(db):
    note = store.create_note(db, "a", "a@example.com", "Old", "")
    with patch.object(db, "commit", side_effect=_db_down()):
        with pytest.raises(StorageError):
            store.update_note(db, note.id, "a", "New", "")
    assert [n.title for n in store.list_notes(db, "a")] == ["Old"]


def test_delete_failure_rolls_back(db):
    note = store.create_note(db, "a", "a@example.com", "Keep", "")
    with patch.object(db, "commit", side_effect=_db_down()):
        with pytest.raises(StorageError):
            store.delete_note(db, note.id, "a")
    assert [n.id for n in store.list_notes(db, "a")] == [note.id]
