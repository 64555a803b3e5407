"""Unit tests for the SQLite DocumentStore."""

import sqlite3

from guardedAgent.memory.store import DocumentStore


def test_round_trip_survives_new_instance(tmp_path):
    db_path = str(tmp_path / "nested" / "knowledge.db")
    DocumentStore(db_path).save("notes", {"entries": [1, 2, 3]})

    assert DocumentStore(db_path).load("notes") == {"entries": [1, 2, 3]}


def test_save_overwrites(tmp_path):
    store = DocumentStore(str(tmp_path / "k.db"))
    store.save("notes", {"v": 1})
    store.save("notes", {"v": 2})

    assert store.load("notes") == {"v": 2}
    assert [name for name, _ in store.list_documents()] == ["notes"]


def test_missing_and_deleted(tmp_path):
    store = DocumentStore(str(tmp_path / "k.db"))
    store.save("notes", {"v": 1})

    store.delete("notes")

    assert store.load("notes") is None
    assert store.load("never-saved") is None


def test_corrupt_document_is_ignored(tmp_path):
    db_path = str(tmp_path / "k.db")
    store = DocumentStore(db_path)
    conn = sqlite3.connect(db_path)
    conn.execute(
        "INSERT INTO documents (name, payload_json, updated_at) VALUES (?, ?, ?)",
        ("broken", "{not json", "2024-01-01"),
    )
    conn.commit()
    conn.close()

    assert store.load("broken") is None


def test_in_memory_store_keeps_data():
    store = DocumentStore(":memory:")
    store.save("notes", {"v": 1})

    assert store.load("notes") == {"v": 1}
