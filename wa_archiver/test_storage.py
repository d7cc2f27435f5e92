"""
Tests for the chat and message repository.

Tests cover:
- Chat upsert (last write wins)
- Message upsert idempotency on (id, chat_jid)
- Empty messages are skipped
- Media descriptor lookup
- Health check
"""

import os
import tempfile
from datetime import datetime, timezone

from wa_archiver.models import Chat, Message
from wa_archiver.storage import (
    check_db_health,
    engine,
    get_chat,
    get_chat_name,
    get_media_info,
    get_message,
    store_chat,
    store_message,
)


T1 = datetime(2025, 1, 15, 10, 0, 0, tzinfo=timezone.utc)
T2 = datetime(2025, 1, 15, 11, 30, 0, tzinfo=timezone.utc)


class TestStoreChat:
    """Test chat upserts."""

    def test_insert_chat(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)

        chat = get_chat(db, "111@s.whatsapp.net")
        assert chat.name == "Alice"
        assert chat.last_message_time == "2025-01-15T10:00:00Z"

    def test_last_write_wins(self, db):
        """A later upsert overwrites both name and timestamp, even with an older time."""
        store_chat(db, "111@s.whatsapp.net", "Alice", T2)
        store_chat(db, "111@s.whatsapp.net", "Alice B.", T1)

        assert db.query(Chat).count() == 1
        chat = get_chat(db, "111@s.whatsapp.net")
        db.refresh(chat)
        assert chat.name == "Alice B."
        assert chat.last_message_time == "2025-01-15T10:00:00Z"

    def test_naive_timestamp_is_utc(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", datetime(2025, 1, 15, 10, 0, 0))

        assert get_chat(db, "111@s.whatsapp.net").last_message_time == "2025-01-15T10:00:00Z"

    def test_chat_name(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)

        assert get_chat_name(db, "111@s.whatsapp.net") == "Alice"
        assert get_chat_name(db, "222@s.whatsapp.net") is None

    def test_empty_chat_name_is_none(self, db):
        store_chat(db, "111@s.whatsapp.net", "", T1)

        assert get_chat_name(db, "111@s.whatsapp.net") is None


class TestStoreMessage:
    """Test message upserts."""

    def test_store_text_message(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)

        stored = store_message(db, "m1", "111@s.whatsapp.net", "111", "hello", T1, False)

        assert stored is True
        message = get_message(db, "m1", "111@s.whatsapp.net")
        assert message.sender == "111"
        assert message.content == "hello"
        assert message.timestamp == "2025-01-15T10:00:00Z"
        assert message.is_from_me is False
        assert message.media_type == ""

    def test_upsert_is_idempotent(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)

        store_message(db, "m1", "111@s.whatsapp.net", "111", "hello", T1, False)
        store_message(db, "m1", "111@s.whatsapp.net", "111", "hello", T1, False)

        assert db.query(Message).count() == 1

    def test_upsert_overwrites_fields(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)
        store_message(db, "m1", "111@s.whatsapp.net", "111", "hello", T1, False)

        store_message(db, "m1", "111@s.whatsapp.net", "111", "hello (edited)", T2, False)

        message = get_message(db, "m1", "111@s.whatsapp.net")
        db.refresh(message)
        assert message.content == "hello (edited)"
        assert message.timestamp == "2025-01-15T11:30:00Z"

    def test_same_id_in_different_chats(self, db):
        """The key is (id, chat_jid), not id alone."""
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)
        store_chat(db, "222@s.whatsapp.net", "Bob", T1)

        store_message(db, "m1", "111@s.whatsapp.net", "111", "to alice", T1, False)
        store_message(db, "m1", "222@s.whatsapp.net", "222", "to bob", T1, False)

        assert db.query(Message).count() == 2

    def test_empty_message_is_skipped(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)

        stored = store_message(db, "m1", "111@s.whatsapp.net", "111", "", T1, False)

        assert stored is False
        assert get_message(db, "m1", "111@s.whatsapp.net") is None

    def test_media_only_message_is_stored(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)

        stored = store_message(
            db,
            "m1",
            "111@s.whatsapp.net",
            "111",
            "",
            T1,
            True,
            media_type="audio",
            filename="audio_20250115_100000.ogg",
            url="https://mmg.whatsapp.net/v/t62/a.enc",
            media_key=b"\x01" * 32,
            file_sha256=b"\x02" * 32,
            file_enc_sha256=b"\x03" * 32,
            file_length=4096,
        )

        assert stored is True
        assert get_message(db, "m1", "111@s.whatsapp.net").is_from_me is True


class TestMediaInfo:
    """Test the stored media descriptor lookup."""

    def test_media_info(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)
        store_message(
            db,
            "m1",
            "111@s.whatsapp.net",
            "111",
            "",
            T1,
            False,
            media_type="image",
            filename="image_20250115_100000.jpg",
            url="https://mmg.whatsapp.net/v/t62/i.enc",
            media_key=b"\x01" * 32,
            file_sha256=b"\x02" * 32,
            file_enc_sha256=b"\x03" * 32,
            file_length=1024,
        )

        info = get_media_info(db, "m1", "111@s.whatsapp.net")

        assert info == {
            "media_type": "image",
            "filename": "image_20250115_100000.jpg",
            "url": "https://mmg.whatsapp.net/v/t62/i.enc",
            "media_key": b"\x01" * 32,
            "file_sha256": b"\x02" * 32,
            "file_enc_sha256": b"\x03" * 32,
            "file_length": 1024,
        }

    def test_text_message_has_empty_media_info(self, db):
        store_chat(db, "111@s.whatsapp.net", "Alice", T1)
        store_message(db, "m1", "111@s.whatsapp.net", "111", "hello", T1, False)

        info = get_media_info(db, "m1", "111@s.whatsapp.net")

        assert info["media_type"] == ""
        assert info["media_key"] == b""
        assert info["file_length"] == 0

    def test_unknown_message(self, db):
        assert get_media_info(db, "missing", "111@s.whatsapp.net") is None


class TestHealth:
    """Test the database health check."""

    def test_healthy_with_schema(self, db):
        assert check_db_health() is True

    def test_unhealthy_without_schema(self):
        assert check_db_health() is False

    def test_database_file_is_private_to_the_session(self):
        database = engine.url.database

        assert os.path.basename(os.path.dirname(database)).startswith("wa_archiver_test_")
        assert os.path.dirname(database) != tempfile.gettempdir()
