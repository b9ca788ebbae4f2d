# ABOUTME: Unit tests for the keystroke store contract and its implementations
import pytest
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from typing_biometrics.store import (
    InMemoryKeystrokeStore, JsonKeystrokeStore, chunked
)
from typing_biometrics.utils import KeystrokeEvent, StoreError, ValidationError

BASE_TIME = datetime(2024, 5, 1, 9, 0, 0, tzinfo=timezone.utc)


def make_event(user_id='user-1', game_id='game-1', sequence_number=0, **fields):
    fields.setdefault('recorded_at', BASE_TIME + timedelta(seconds=sequence_number))
    return KeystrokeEvent(
        user_id=user_id, game_id=game_id, sequence_number=sequence_number,
        key='a', expected_char='a', is_correct=True, **fields
    )


class RecordingStore(InMemoryKeystrokeStore):
    """In-memory store that remembers the size of each submitted chunk."""

    def __init__(self, batch_size=100):
        super().__init__(batch_size)
        self.written = []
        self.deleted = []

    def _write_chunk(self, user_id, events):
        self.written.append((user_id, len(events)))
        super()._write_chunk(user_id, events)

    def _delete_chunk(self, user_id, events):
        self.deleted.append((user_id, len(events)))
        super()._delete_chunk(user_id, events)


@pytest.fixture(params=['memory', 'json'])
def store(request):
    """Each contract test runs against both store implementations."""
    if request.param == 'memory':
        yield InMemoryKeystrokeStore(batch_size=10)
    else:
        with tempfile.TemporaryDirectory() as temp_dir:
            yield JsonKeystrokeStore(Path(temp_dir) / 'data', batch_size=10)


class TestChunking:
    """Test batch partitioning helpers."""

    def test_chunked(self):
        assert list(chunked(list(range(7)), 3)) == [[0, 1, 2], [3, 4, 5], [6]]
        assert list(chunked([], 3)) == []

    def test_batch_partitioned_by_user_and_chunked(self):
        """Test 250 + 30 events across two users become 100/100/50 and 30."""
        store = RecordingStore(batch_size=100)
        events = [make_event('alice', sequence_number=i) for i in range(250)]
        events += [make_event('bob', sequence_number=i) for i in range(30)]

        store.add_events_batch(events)

        assert store.written == [('alice', 100), ('alice', 100), ('alice', 50), ('bob', 30)]
        assert store.count_user_events('alice') == 250
        assert store.count_user_events('bob') == 30

    def test_delete_is_chunked(self):
        store = RecordingStore(batch_size=100)
        store.add_events_batch([make_event(sequence_number=i) for i in range(205)])

        assert store.delete_user_events('user-1') == 205
        assert [size for _, size in store.deleted] == [100, 100, 5]

    def test_empty_batch_is_a_no_op(self):
        store = RecordingStore()
        store.add_events_batch([])
        assert store.written == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            InMemoryKeystrokeStore(batch_size=0)


class TestStoreContract:
    """Test the operations the analytics engine relies on."""

    def test_add_event_assigns_row_key(self, store):
        stored = store.add_event(make_event(sequence_number=7))
        assert stored.row_key == 'game-1_000007'
        assert store.count_user_events('user-1') == 1

    def test_add_event_keeps_existing_row_key(self, store):
        stored = store.add_event(make_event(row_key='custom'))
        assert stored.row_key == 'custom'

    def test_duplicate_sequence_rejected(self, store):
        store.add_event(make_event(sequence_number=1))
        with pytest.raises(StoreError):
            store.add_event(make_event(sequence_number=1))

    def test_invalid_event_rejected(self, store):
        with pytest.raises(ValidationError):
            store.add_event(make_event(user_id=''))
        with pytest.raises(ValidationError):
            store.add_events_batch([make_event(sequence_number=-1)])

    def test_user_events_in_capture_order(self, store):
        """Test ordering by recorded time, then sequence number."""
        late = make_event(game_id='g2', sequence_number=0,
                          recorded_at=BASE_TIME + timedelta(hours=1))
        early_b = make_event(game_id='g1', sequence_number=1, recorded_at=BASE_TIME)
        early_a = make_event(game_id='g1', sequence_number=0, recorded_at=BASE_TIME)
        store.add_events_batch([late, early_b, early_a])

        events = store.get_user_events('user-1')

        assert [(e.game_id, e.sequence_number) for e in events] == [
            ('g1', 0), ('g1', 1), ('g2', 0)
        ]
        assert len(store.get_user_events('user-1', limit=2)) == 2

    def test_naive_and_aware_timestamps_sort_together(self, store):
        """Test naive capture times are treated as UTC alongside aware ones."""
        naive = make_event(sequence_number=0, recorded_at=datetime(2024, 5, 1, 10, 0, 0))
        aware = make_event(sequence_number=1, recorded_at=BASE_TIME)
        store.add_events_batch([naive, aware])

        events = store.get_user_events('user-1')
        in_range = store.get_user_events_in_range(
            'user-1', datetime(2024, 5, 1, 9, 30), BASE_TIME + timedelta(hours=2)
        )

        assert [e.sequence_number for e in events] == [1, 0]
        assert [e.sequence_number for e in in_range] == [0]

    def test_session_events_in_sequence_order(self, store):
        store.add_events_batch([
            make_event(game_id='g1', sequence_number=i,
                       recorded_at=BASE_TIME - timedelta(seconds=i))
            for i in (3, 0, 2, 1)
        ])
        store.add_event(make_event(game_id='g2', sequence_number=0))

        events = store.get_session_events('user-1', 'g1')

        assert [e.sequence_number for e in events] == [0, 1, 2, 3]

    def test_events_in_range(self, store):
        store.add_events_batch([make_event(sequence_number=i) for i in range(10)])

        events = store.get_user_events_in_range(
            'user-1', BASE_TIME + timedelta(seconds=2), BASE_TIME + timedelta(seconds=5)
        )

        assert [e.sequence_number for e in events] == [2, 3, 4, 5]

    def test_users_are_isolated(self, store):
        store.add_event(make_event('alice'))
        store.add_event(make_event('bob'))

        assert store.delete_user_events('alice') == 1
        assert store.count_user_events('alice') == 0
        assert store.get_user_events('alice') == []
        assert store.count_user_events('bob') == 1

    def test_blank_ids_rejected(self, store):
        with pytest.raises(ValidationError):
            store.get_user_events('')
        with pytest.raises(ValidationError):
            store.get_session_events('user-1', ' ')
        with pytest.raises(ValidationError):
            store.delete_user_events('')


class TestJsonKeystrokeStore:
    """Test file-backed persistence."""

    def test_events_survive_reopen(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonKeystrokeStore(temp_dir, batch_size=4)
            store.add_events_batch(
                [make_event(sequence_number=i, current_wpm=40.0 + i) for i in range(10)]
            )

            reopened = JsonKeystrokeStore(temp_dir)
            events = reopened.get_session_events('user-1', 'game-1')

            assert len(list(store._user_dir('user-1').glob('keystrokes_*.json'))) == 3
            assert [e.current_wpm for e in events] == [40.0 + i for i in range(10)]
            assert events[0].recorded_at == BASE_TIME

    def test_delete_removes_files(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonKeystrokeStore(temp_dir, batch_size=4)
            store.add_events_batch([make_event(sequence_number=i) for i in range(6)])

            assert store.delete_user_events('user-1') == 6
            assert list(store._user_dir('user-1').glob('*.json')) == []

    def test_corrupt_file_raises_store_error(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonKeystrokeStore(temp_dir)
            store.add_event(make_event())
            (store._user_dir('user-1') / 'keystrokes_broken.json').write_text('{not json')

            with pytest.raises(StoreError) as excinfo:
                store.get_user_events('user-1')
            assert excinfo.value.user_id == 'user-1'

    def test_user_ids_stay_inside_data_directory(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonKeystrokeStore(Path(temp_dir) / 'data')
            store.add_event(make_event(user_id='../escape'))

            assert not (Path(temp_dir) / 'escape').exists()
            assert store._user_dir('../escape').parent == store.data_dir
            assert store.count_user_events('../escape') == 1

    def test_similar_user_ids_do_not_share_data(self):
        """Ids that differ only in punctuation keep separate partitions."""
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonKeystrokeStore(temp_dir)
            store.add_event(make_event(user_id='alice@x.com'))
            store.add_event(make_event(user_id='alice_x_com', sequence_number=1))

            assert store._user_dir('alice@x.com') != store._user_dir('alice_x_com')
            assert store.count_user_events('alice@x.com') == 1
            assert store.count_user_events('alice_x_com') == 1

            assert store.delete_user_events('alice_x_com') == 1
            assert [e.user_id for e in store.get_user_events('alice@x.com')] == ['alice@x.com']


if __name__ == '__main__':
    pytest.main([__file__])
