import json
import logging
import threading
from datetime import datetime, timezone

import pytest

from ch_analytics import tracker as tracker_module
from ch_analytics.config import TrackerConfig
from ch_analytics.events import BiEvents
from ch_analytics.exceptions import ConnectionFailure, InsertFailed, TrackerClosed
from ch_analytics.tracker import Event, EventTracker, JsonlDeadLetter, SessionManager


class FakeInsertClient:
    """Клиент, который может падать заданное число раз."""

    def __init__(self, failures=None, block=None):
        self.failures = list(failures or [])
        self.block = block
        self.calls = []
        self.delivered = []
        self.inserted = threading.Event()
        self._lock = threading.Lock()

    def insert_batch(self, table, rows):
        with self._lock:
            self.calls.append((table, list(rows)))
            failure = self.failures.pop(0) if self.failures else None
        if self.block is not None:
            self.block.wait(5)
        if failure is not None:
            raise failure
        with self._lock:
            self.delivered.append((table, list(rows)))
        self.inserted.set()


def make_tracker(client, **overrides):
    settings = dict(batch_size=100, flush_interval=60, table_name="events", max_retries=3, retry_delay=0)
    settings.update(overrides)
    return EventTracker(client, config=TrackerConfig(**settings))


class TestEventRow:
    def test_row_shape(self):
        event = Event(
            event_name="purchase",
            user_id="42",
            properties={'order_id': 'o-1', 'amount': 9.99},
            timestamp=datetime(2025, 1, 2, 3, 4, 5, 6000, tzinfo=timezone.utc)
        )

        row = event.to_row()

        assert row['event_name'] == "purchase"
        assert row['user_id'] == "42"
        assert row['session_id'] == ""
        assert row['anonymous_id'] == ""
        assert row['timestamp'] == "2025-01-02 03:04:05.006"
        assert json.loads(row['properties']) == {'order_id': 'o-1', 'amount': 9.99}
        assert row['event_id'] == event.event_id
        assert 'device_type' not in row

    def test_context_columns(self):
        row = Event(event_name="a", context={'os': 'ios', 'app_version': '1.2.0'}).to_row()
        assert row['os'] == 'ios'
        assert row['app_version'] == '1.2.0'
        assert row['device_type'] == ''
        assert row['country'] == ''

    def test_event_is_immutable(self):
        props = {'a': 1}
        event = Event(event_name="a", properties=props)
        props['a'] = 2
        assert event.properties['a'] == 1
        with pytest.raises(Exception):
            event.event_name = "b"
        with pytest.raises(TypeError):
            event.properties['b'] = 1

    def test_unique_ids(self):
        assert Event(event_name="a").event_id != Event(event_name="a").event_id


class TestBatching:
    def test_full_batch_is_sent_once(self):
        client = FakeInsertClient()
        tracker = make_tracker(client, batch_size=100)

        for i in range(100):
            tracker.track("screen_view", user_id=str(i))
        tracker.shutdown()

        assert len(client.delivered) == 1
        table, rows = client.delivered[0]
        assert table == "events"
        assert len(rows) == 100
        assert [row['user_id'] for row in rows] == [str(i) for i in range(100)]

    def test_size_trigger_flushes_in_background(self):
        client = FakeInsertClient()
        tracker = make_tracker(client, batch_size=5)
        try:
            for _ in range(5):
                tracker.track("a")
            assert client.inserted.wait(5)
            assert len(client.delivered[0][1]) == 5
        finally:
            tracker.shutdown()

    def test_timer_flushes_partial_batch(self):
        client = FakeInsertClient()
        tracker = make_tracker(client, batch_size=100, flush_interval=0.05)
        try:
            tracker.track("a")
            assert client.inserted.wait(5)
            assert len(client.delivered[0][1]) == 1
        finally:
            tracker.shutdown()

    def test_shutdown_sends_remaining_events(self):
        client = FakeInsertClient()
        tracker = make_tracker(client, batch_size=10)

        for _ in range(25):
            tracker.track("a")
        tracker.shutdown()

        assert sum(len(rows) for _, rows in client.delivered) == 25
        assert all(len(rows) <= 10 for _, rows in client.delivered)
        assert tracker.buffer_size == 0

    def test_flush_empty_buffer_is_noop(self):
        client = FakeInsertClient()
        tracker = make_tracker(client)
        tracker.flush()
        tracker.shutdown()
        assert client.calls == []

    def test_common_context_is_merged(self):
        client = FakeInsertClient()
        tracker = make_tracker(client)
        tracker.common_context = {'os': 'android', 'app_version': '3.0'}

        tracker.track("a", context={'app_version': '3.1'})
        tracker.shutdown()

        row = client.delivered[0][1][0]
        assert row['os'] == 'android'
        assert row['app_version'] == '3.1'


def wait_until(predicate, timeout=5.0):
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return True
        threading.Event().wait(0.01)
    return predicate()


class TestDeliveryTriggers:
    def test_below_batch_size_nothing_is_sent(self):
        client = FakeInsertClient()
        tracker = make_tracker(client, batch_size=100, flush_interval=60)
        try:
            for i in range(99):
                tracker.track("a", user_id=str(i))
            threading.Event().wait(0.2)
            assert client.calls == []
            assert tracker.buffer_size == 99

            tracker.track("a", user_id="99")
            assert client.inserted.wait(5)
            assert len(client.calls) == 1
            assert len(client.delivered[0][1]) == 100
        finally:
            tracker.shutdown()

        assert len(client.calls) == 1

    def test_timer_survives_failed_flush(self, caplog):
        caplog.set_level(logging.ERROR, logger="ch_analytics.tracker")
        client = FakeInsertClient(failures=[InsertFailed("fail", 500, "")])
        tracker = make_tracker(client, flush_interval=0.05, max_retries=1)
        try:
            tracker.track("a")
            assert wait_until(lambda: any(
                "Периодическая отправка" in record.getMessage() for record in caplog.records
            ))

            tracker.track("b")
            assert client.inserted.wait(5)
            assert [row['event_name'] for row in client.delivered[0][1]] == ["b"]
        finally:
            tracker.shutdown()

    def test_pending_background_flushes_are_collapsed(self):
        release = threading.Event()
        client = FakeInsertClient(block=release)
        tracker = make_tracker(client, batch_size=2)

        runs = []
        original = tracker._flush_in_background

        def counting_flush():
            runs.append(1)
            original()

        tracker._flush_in_background = counting_flush

        tracker.track("a")
        tracker.track("b")
        assert wait_until(lambda: client.calls)

        for _ in range(20):
            tracker.track("c")

        release.set()
        tracker.shutdown()

        assert len(runs) <= 2
        assert sum(len(rows) for _, rows in client.delivered) == 22


class TestRetries:
    def test_gives_up_after_max_retries(self):
        failures = [InsertFailed("fail", 500, "err") for _ in range(3)]
        client = FakeInsertClient(failures=failures)
        dead = []
        tracker = make_tracker(client, max_retries=3)
        tracker.dead_letter = lambda events, error: dead.append((events, error))

        tracker.track("a")
        with pytest.raises(InsertFailed):
            tracker.flush()

        assert len(client.calls) == 3
        assert tracker.buffer_size == 0
        assert len(dead) == 1
        assert [event.event_name for event in dead[0][0]] == ["a"]

        # Батч не возвращается в буфер
        tracker.shutdown()
        assert len(client.calls) == 3

    def test_linear_backoff(self, monkeypatch):
        delays = []
        monkeypatch.setattr(tracker_module.time, "sleep", delays.append)
        client = FakeInsertClient(failures=[ConnectionFailure("down"), ConnectionFailure("down")])
        tracker = make_tracker(client, max_retries=3, retry_delay=0.5)

        tracker.track("a")
        tracker.flush()
        tracker.shutdown()

        assert delays == [0.5, 1.0]
        assert len(client.delivered) == 1

    def test_continues_draining_after_failed_batch(self):
        client = FakeInsertClient(failures=[InsertFailed("fail", 500, "")])
        tracker = make_tracker(client, batch_size=2, max_retries=1)

        # Размер батча достигнут, но фоновая отправка может не успеть начаться;
        # ставим события под блокировкой и отправляем вручную
        with tracker._lock:
            for name in ["a", "b", "c", "d"]:
                tracker._buffer.append(Event(event_name=name))

        with pytest.raises(InsertFailed):
            tracker.flush()

        assert [row['event_name'] for row in client.delivered[0][1]] == ["c", "d"]
        tracker.shutdown()

    def test_dead_letter_errors_do_not_stop_flush(self):
        client = FakeInsertClient(failures=[InsertFailed("fail", 500, "")])
        tracker = make_tracker(client, max_retries=1)

        def broken_handler(events, error):
            raise RuntimeError("disk full")

        tracker.dead_letter = broken_handler
        tracker.track("a")
        with pytest.raises(InsertFailed):
            tracker.flush()
        tracker.shutdown()


class TestConcurrency:
    def test_concurrent_flush_is_dropped(self):
        release = threading.Event()
        client = FakeInsertClient(block=release)
        tracker = make_tracker(client)
        tracker.track("a")

        worker = threading.Thread(target=tracker.flush)
        worker.start()
        for _ in range(500):
            if client.calls:
                break
            threading.Event().wait(0.01)

        tracker.track("b")
        tracker.flush()
        assert len(client.calls) == 1

        release.set()
        worker.join(5)
        tracker.shutdown()

        # Второе событие отправлено той же активной отправкой
        assert [row['event_name'] for _, rows in client.delivered for row in rows] == ["a", "b"]

    def test_parallel_tracking(self):
        client = FakeInsertClient()
        tracker = make_tracker(client, batch_size=50)

        def produce():
            for _ in range(200):
                tracker.track("a")

        threads = [threading.Thread(target=produce) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        tracker.shutdown()

        assert sum(len(rows) for _, rows in client.delivered) == 800


class TestShutdown:
    def test_track_after_shutdown(self):
        tracker = make_tracker(FakeInsertClient())
        tracker.shutdown()
        assert tracker.closed
        with pytest.raises(TrackerClosed):
            tracker.track("a")

    def test_shutdown_is_idempotent(self):
        client = FakeInsertClient()
        tracker = make_tracker(client)
        tracker.track("a")
        tracker.shutdown()
        tracker.shutdown()
        assert len(client.delivered) == 1

    def test_context_manager(self):
        client = FakeInsertClient()
        with make_tracker(client) as tracker:
            tracker.track("a")
        assert tracker.closed
        assert len(client.delivered) == 1


class TestConvenienceMethods:
    def setup_method(self):
        self.client = FakeInsertClient()
        self.tracker = make_tracker(self.client)

    def teardown_method(self):
        self.tracker.shutdown()

    def test_navigation_omits_missing_values(self):
        event = self.tracker.track_navigation("Cart", from_screen="Home", user_id="1")
        assert event.event_name == BiEvents.NAVIGATION
        assert dict(event.properties) == {'to_screen': 'Cart', 'from_screen': 'Home'}

    def test_screen_view(self):
        event = self.tracker.track_screen_view("Home", properties={'tab': 'feed'})
        assert dict(event.properties) == {'screen_name': 'Home', 'tab': 'feed'}

    def test_purchase(self):
        event = self.tracker.track_purchase("o-1", 19.9, currency="USD", items=[{'product_id': 'p1'}])
        assert event.event_name == BiEvents.PURCHASE
        assert event.properties['total_amount'] == 19.9
        assert event.properties['items'] == [{'product_id': 'p1'}]

    def test_flow_abandoned(self):
        event = self.tracker.track_flow_abandoned("checkout", abandoned_at="Payment", step_index=3)
        assert dict(event.properties) == {'flow_name': 'checkout', 'abandoned_at': 'Payment', 'step_index': 3}

    def test_error(self):
        event = self.tracker.track_error("NetworkError", "timeout")
        assert dict(event.properties) == {'error_type': 'NetworkError', 'error_message': 'timeout'}

    def test_identify(self):
        event = self.tracker.identify("42", traits={'plan': 'pro'})
        assert event.event_name == BiEvents.USER_IDENTIFIED
        assert event.user_id == "42"


class TestDeadLetterFile:
    def test_writes_jsonl(self, tmp_path):
        path = tmp_path / "failed" / "events.jsonl"
        handler = JsonlDeadLetter(path)

        handler([Event(event_name="a"), Event(event_name="b")], InsertFailed("fail", 500, ""))

        lines = path.read_text(encoding="utf-8").strip().split("\n")
        records = [json.loads(line) for line in lines]
        assert [record['event_name'] for record in records] == ["a", "b"]
        assert all('failed_at' in record and 'fail' in record['error'] for record in records)


class TestSessionManager:
    def test_session_expires_after_inactivity(self):
        now = [0.0]
        sessions = SessionManager(session_timeout=30, clock=lambda: now[0])

        first = sessions.session_id
        now[0] = 20
        assert sessions.session_id == first

        now[0] = 100
        assert sessions.session_id != first

    def test_touch_extends_session(self):
        now = [0.0]
        sessions = SessionManager(session_timeout=30, clock=lambda: now[0])
        first = sessions.session_id
        now[0] = 25
        sessions.touch()
        now[0] = 50
        assert sessions.session_id == first

    def test_reset(self):
        sessions = SessionManager()
        first = sessions.session_id
        sessions.reset_session()
        assert sessions.session_id != first
