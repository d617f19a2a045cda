"""Tests for folders and note-folder mapping repository."""

import sqlite3

import pytest

from chatgpa.db import folders_repository as folders
from chatgpa.db.database import get_db
from chatgpa.db.folders_repository import CircularFolderError
from chatgpa.db.notes_repository import insert_note, list_folder_notes, list_uncategorized_notes

USER = "11111111-1111-4111-8111-111111111111"


class TestInsertFolder:
    """Tests for folder creation and sort_index assignment."""

    def test_first_folder_gets_100(self, klass):
        folder = folders.insert_folder(USER, klass.id, "Unit 1")
        assert folder.sort_index == 100
        assert folder.parent_id is None

    def test_siblings_step_by_100(self, klass):
        """New folders go after the last sibling."""
        folders.insert_folder(USER, klass.id, "A")
        folders.insert_folder(USER, klass.id, "B")
        third = folders.insert_folder(USER, klass.id, "C")
        assert third.sort_index == 300

    def test_sort_index_is_per_parent(self, klass):
        """Children count from 100 again under their parent."""
        root = folders.insert_folder(USER, klass.id, "Root")
        folders.insert_folder(USER, klass.id, "Other root")
        child = folders.insert_folder(USER, klass.id, "Child", parent_id=root.id)
        assert child.sort_index == 100

    def test_self_parent_rejected_by_schema(self, klass):
        """The table itself refuses parent_id = id."""
        folder = folders.insert_folder(USER, klass.id, "A")
        with pytest.raises(sqlite3.IntegrityError):
            with get_db() as conn:
                conn.execute("UPDATE folders SET parent_id = id WHERE id = ?", (folder.id,))


class TestUpdateFolder:
    """Tests for rename, move and cycle prevention."""

    def test_rename(self, klass):
        folder = folders.insert_folder(USER, klass.id, "Old")
        updated = folders.update_folder(folder.id, {"name": "New"})
        assert updated.name == "New"
        assert updated.updated_at >= folder.updated_at

    def test_move_to_root(self, klass):
        """parent_id None moves the folder to the root."""
        root = folders.insert_folder(USER, klass.id, "Root")
        child = folders.insert_folder(USER, klass.id, "Child", parent_id=root.id)

        moved = folders.update_folder(child.id, {"parent_id": None})
        assert moved.parent_id is None

    def test_move_under_descendant_is_circular(self, klass):
        """A → B → C; moving A under C would close a loop."""
        a = folders.insert_folder(USER, klass.id, "A")
        b = folders.insert_folder(USER, klass.id, "B", parent_id=a.id)
        c = folders.insert_folder(USER, klass.id, "C", parent_id=b.id)

        with pytest.raises(CircularFolderError):
            folders.update_folder(a.id, {"parent_id": c.id})

        assert folders.get_folder(a.id).parent_id is None

    def test_move_under_self_is_circular(self, klass):
        a = folders.insert_folder(USER, klass.id, "A")
        with pytest.raises(CircularFolderError):
            folders.update_folder(a.id, {"parent_id": a.id})

    def test_move_to_sibling_is_fine(self, klass):
        a = folders.insert_folder(USER, klass.id, "A")
        b = folders.insert_folder(USER, klass.id, "B")
        assert folders.update_folder(a.id, {"parent_id": b.id}).parent_id == b.id

    def test_missing_folder(self, klass):
        with pytest.raises(KeyError):
            folders.update_folder("does-not-exist", {"name": "x"})


class TestDeleteFolder:
    """Tests for cascading deletes."""

    @pytest.fixture
    def tree(self, klass):
        """root → mid → leaf, with one note in mid."""
        root = folders.insert_folder(USER, klass.id, "Root")
        mid = folders.insert_folder(USER, klass.id, "Mid", parent_id=root.id)
        leaf = folders.insert_folder(USER, klass.id, "Leaf", parent_id=mid.id)
        note = insert_note(USER, klass.id, "N", "body")
        folders.add_note_to_folder(note.id, mid.id, klass.id, USER)
        return root, mid, leaf, note

    def test_contents(self, tree):
        root, mid, leaf, _ = tree
        assert not folders.get_folder_contents(mid.id).is_empty
        assert folders.get_folder_contents(leaf.id).is_empty

    def test_move_to_parent(self, tree):
        """Children and notes move up one level."""
        root, mid, leaf, note = tree

        folders.delete_folder(mid.id, "move-to-parent")

        assert folders.get_folder(mid.id) is None
        assert folders.get_folder(leaf.id).parent_id == root.id
        assert folders.get_note_mappings() == [(note.id, root.id)]

    def test_move_to_parent_at_root_uncategorizes(self, klass):
        """A root folder has no parent: notes lose their mapping."""
        root = folders.insert_folder(USER, klass.id, "Root")
        note = insert_note(USER, klass.id, "N")
        folders.add_note_to_folder(note.id, root.id, klass.id, USER)

        folders.delete_folder(root.id, "move-to-parent")

        assert folders.get_note_mappings() == []

    def test_move_to_uncategorized(self, tree):
        """Children become roots; notes become uncategorized."""
        root, mid, leaf, note = tree

        folders.delete_folder(mid.id, "move-to-uncategorized")

        assert folders.get_folder(leaf.id).parent_id is None
        assert folders.get_note_mappings() == []
        assert folders.get_folder(root.id) is not None

    def test_delete_empty(self, klass):
        folder = folders.insert_folder(USER, klass.id, "Empty")
        folders.delete_folder(folder.id)
        assert folders.get_folder(folder.id) is None


class TestNoteMapping:
    """Tests for note ↔ folder mapping."""

    def test_add_replaces_previous_folder(self, klass):
        """A note lives in at most one folder per class."""
        a = folders.insert_folder(USER, klass.id, "A")
        b = folders.insert_folder(USER, klass.id, "B")
        note = insert_note(USER, klass.id, "N")

        folders.add_note_to_folder(note.id, a.id, klass.id, USER)
        folders.add_note_to_folder(note.id, b.id, klass.id, USER)

        assert folders.get_note_mappings() == [(note.id, b.id)]

    def test_add_is_idempotent(self, klass):
        a = folders.insert_folder(USER, klass.id, "A")
        note = insert_note(USER, klass.id, "N")

        folders.add_note_to_folder(note.id, a.id, klass.id, USER)
        folders.add_note_to_folder(note.id, a.id, klass.id, USER)

        assert folders.count_notes_by_folder([a.id]) == {a.id: 1}

    def test_trigger_blocks_second_folder(self, klass):
        """Direct inserts cannot map a note twice in one class."""
        a = folders.insert_folder(USER, klass.id, "A")
        b = folders.insert_folder(USER, klass.id, "B")
        note = insert_note(USER, klass.id, "N")
        folders.add_note_to_folder(note.id, a.id, klass.id, USER)

        with pytest.raises(sqlite3.IntegrityError):
            with get_db() as conn:
                conn.execute(
                    "INSERT INTO note_folders (note_id, folder_id, class_id, user_id, created_at) "
                    "VALUES (?, ?, ?, ?, 'now')",
                    (note.id, b.id, klass.id, USER),
                )

    def test_remove(self, klass):
        a = folders.insert_folder(USER, klass.id, "A")
        note = insert_note(USER, klass.id, "N")
        folders.add_note_to_folder(note.id, a.id, klass.id, USER)

        assert folders.remove_note_from_folder(note.id, a.id, USER) is True
        assert folders.remove_note_from_folder(note.id, a.id, USER) is False

    def test_remove_other_users_mapping(self, klass):
        a = folders.insert_folder(USER, klass.id, "A")
        note = insert_note(USER, klass.id, "N")
        folders.add_note_to_folder(note.id, a.id, klass.id, USER)

        assert folders.remove_note_from_folder(note.id, a.id, "someone-else") is False

    def test_counts_include_empty_folders(self, klass):
        a = folders.insert_folder(USER, klass.id, "A")
        b = folders.insert_folder(USER, klass.id, "B")
        note = insert_note(USER, klass.id, "N")
        folders.add_note_to_folder(note.id, a.id, klass.id, USER)

        assert folders.count_notes_by_folder([a.id, b.id]) == {a.id: 1, b.id: 0}


class TestNotePaging:
    """Tests for cursor pagination of notes."""

    @pytest.fixture
    def notes(self, klass):
        """Five notes with increasing created_at."""
        return [
            insert_note(USER, klass.id, f"Note {i}", created_at=f"2025-01-0{i + 1}T00:00:00.000Z")
            for i in range(5)
        ]

    def test_uncategorized_pages(self, klass, notes):
        """Newest first; the cursor continues where the page ended."""
        first = list_uncategorized_notes(USER, klass.id, limit=2)
        assert [n.title for n in first.notes] == ["Note 4", "Note 3"]
        assert first.has_more is True
        assert first.cursor == notes[3].created_at

        second = list_uncategorized_notes(USER, klass.id, limit=2, cursor=first.cursor)
        assert [n.title for n in second.notes] == ["Note 2", "Note 1"]

        last = list_uncategorized_notes(USER, klass.id, limit=2, cursor=second.cursor)
        assert [n.title for n in last.notes] == ["Note 0"]
        assert last.has_more is False
        assert last.cursor is None

    def test_mapped_notes_not_uncategorized(self, klass, notes):
        folder = folders.insert_folder(USER, klass.id, "F")
        folders.add_note_to_folder(notes[0].id, folder.id, klass.id, USER)

        page = list_uncategorized_notes(USER, klass.id, limit=10)
        assert notes[0].id not in [n.id for n in page.notes]
        assert len(page.notes) == 4

    def test_folder_notes(self, klass, notes):
        folder = folders.insert_folder(USER, klass.id, "F")
        for note in notes[:3]:
            folders.add_note_to_folder(note.id, folder.id, klass.id, USER)

        page = list_folder_notes(folder.id, limit=20)
        assert [n.title for n in page.notes] == ["Note 2", "Note 1", "Note 0"]
        assert page.has_more is False
