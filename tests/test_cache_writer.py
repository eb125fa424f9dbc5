"""
Cache writer tests.
"""

import pytest

from conftest import create_sample_event

from release_sync.cache_writer import CacheWriter
from release_sync.exceptions import StoreError

OWNER = "user-1"


@pytest.fixture
def writer(mock_store, fake_clock, log_dir):
    return CacheWriter(mock_store, chunk_size=2, max_chunk_retries=3, clock=fake_clock, log_dir=log_dir)


def test_writes_in_chunks(writer, mock_store):
    events = [create_sample_event(OWNER, 1, number=n) for n in range(1, 6)]

    written = writer.upsert(OWNER, events)

    assert written == 5
    assert [len(call) for call in mock_store.upsert_calls] == [2, 2, 1]
    assert len(mock_store.read_owner_events(OWNER)) == 5


def test_duplicate_keys_last_wins(writer, mock_store):
    events = [
        create_sample_event(OWNER, 1, air_date="2025-01-01"),
        create_sample_event(OWNER, 1, air_date="2025-01-08"),
    ]

    assert writer.upsert(OWNER, events) == 1

    stored = mock_store.read_owner_events(OWNER)
    assert len(stored) == 1
    assert stored[0].air_date == "2025-01-08"


def test_repeated_upsert_is_one_record(writer, mock_store):
    event = create_sample_event(OWNER, 1)
    writer.upsert(OWNER, [event])
    writer.upsert(OWNER, [event])
    assert len(mock_store.read_owner_events(OWNER)) == 1


def test_foreign_owner_rejected(writer, mock_store):
    events = [create_sample_event(OWNER, 1), create_sample_event("someone-else", 2)]

    with pytest.raises(ValueError):
        writer.upsert(OWNER, events)
    assert mock_store.upsert_calls == []


def test_chunk_retried_after_transient_failure(writer, mock_store, fake_clock):
    mock_store.fail_upserts_from = 1
    mock_store.fail_upsert_times = 2

    assert writer.upsert(OWNER, [create_sample_event(OWNER, 1)]) == 1
    assert len(mock_store.upsert_calls) == 3
    assert fake_clock.waits == [1.0, 1.0]


def test_chunk_gives_up_after_retries(writer, mock_store):
    events = [create_sample_event(OWNER, 1, number=n) for n in range(1, 5)]
    mock_store.fail_upserts_from = 2

    with pytest.raises(StoreError):
        writer.upsert(OWNER, events)

    # First chunk stays written; second chunk tried 1 + 3 times
    assert len(mock_store.upsert_calls) == 5
    assert len(mock_store.read_owner_events(OWNER)) == 2


def test_empty_input(writer, mock_store):
    assert writer.upsert(OWNER, []) == 0
    assert mock_store.upsert_calls == []


def test_invalid_chunk_size(mock_store):
    with pytest.raises(ValueError):
        CacheWriter(mock_store, chunk_size=0)
