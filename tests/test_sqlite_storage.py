from __future__ import annotations

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.models import Direction, MessagePayload, PayloadKind, Platform, SenderProfile


def _storage(tmp_path) -> SQLiteStorage:
    storage = SQLiteStorage(str(tmp_path / "relay.db"))
    storage.init_db()
    return storage


def test_get_or_create_entry_is_idempotent(tmp_path) -> None:
    storage = _storage(tmp_path)
    profile = SenderProfile(first_name="Ann", last_name="Lee", username="annlee")

    first = storage.get_or_create_entry(Platform.TELEGRAM, "42", profile)
    second = storage.get_or_create_entry(Platform.TELEGRAM, "42", SenderProfile(first_name="Other"))

    assert first.id == second.id
    assert second.title == "Ann Lee"
    assert second.username == "annlee"
    assert first.thread_id is None
    assert first.created_at is not None
    assert storage.count_entries() == 1


def test_platform_is_part_of_the_user_key(tmp_path) -> None:
    storage = _storage(tmp_path)
    telegram = storage.get_or_create_entry(Platform.TELEGRAM, "42")
    vk = storage.get_or_create_entry(Platform.VK, "42")
    assert telegram.id != vk.id
    assert storage.get_entry(Platform.VK, "42") == vk


def test_set_thread_id_never_overwrites(tmp_path) -> None:
    storage = _storage(tmp_path)
    entry = storage.get_or_create_entry(Platform.TELEGRAM, "42")

    assert storage.set_thread_id(entry.id, 101).thread_id == 101
    assert storage.set_thread_id(entry.id, 202).thread_id == 101
    assert storage.get_entry_by_thread(101).id == entry.id
    assert storage.get_entry_by_thread(202) is None


def test_records_roundtrip_and_edit(tmp_path) -> None:
    storage = _storage(tmp_path)
    entry = storage.get_or_create_entry(Platform.TELEGRAM, "42")
    photo = MessagePayload(kind=PayloadKind.PHOTO, text="look", file_ref="AgAD")

    saved = storage.save_record(entry.id, Direction.INCOMING, "7", "501", photo)
    found = storage.find_record(entry.id, Direction.INCOMING, "7")
    assert found.id == saved.id
    assert found.payload == photo
    assert found.edited_at is None
    assert storage.find_record(entry.id, Direction.OUTGOING, "7") is None

    storage.update_record_payload(saved.id, photo.with_text("better"))
    edited = storage.find_record(entry.id, Direction.INCOMING, "7")
    assert edited.payload.text == "better"
    assert edited.payload.file_ref == "AgAD"
    assert edited.edited_at is not None


def test_recent_and_latest_records(tmp_path) -> None:
    storage = _storage(tmp_path)
    entry = storage.get_or_create_entry(Platform.TELEGRAM, "42")
    for index in range(5):
        direction = Direction.INCOMING if index % 2 == 0 else Direction.OUTGOING
        storage.save_record(entry.id, direction, str(index), str(100 + index), MessagePayload(text=f"m{index}"))

    recent = storage.recent_records(entry.id, 3)
    assert [record.payload.text for record in recent] == ["m2", "m3", "m4"]
    assert storage.latest_record(entry.id, Direction.OUTGOING).payload.text == "m3"


def test_ai_state_counts_generations(tmp_path) -> None:
    storage = _storage(tmp_path)
    entry = storage.get_or_create_entry(Platform.TELEGRAM, "42")

    assert storage.get_ai_state(entry.id) is None
    storage.save_ai_state(entry.id, "700")
    state = storage.save_ai_state(entry.id, "701")
    assert state.draft_message_id == "701"
    assert state.generations == 2


def test_ai_state_that_cannot_be_read_back_raises(tmp_path, monkeypatch) -> None:
    storage = _storage(tmp_path)
    entry = storage.get_or_create_entry(Platform.TELEGRAM, "42")
    monkeypatch.setattr(storage, "get_ai_state", lambda entry_id: None)

    with pytest.raises(LookupError):
        storage.save_ai_state(entry.id, "700")
