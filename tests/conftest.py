import threading

import pytest
import requests

from ch_analytics.client import ClickHouseClient, ClickHouseResult
from ch_analytics.config import ClickHouseConfig, TrackerConfig


class FakeResponse:
    def __init__(self, status_code=200, text=""):
        self.status_code = status_code
        self.text = text


class FakeSession:
    """
    Совместимая с requests.Session заглушка: записывает вызовы post и
    возвращает ответы из очереди (или ответ по умолчанию).
    """

    def __init__(self, responses=None, default=None):
        self.responses = list(responses or [])
        self.default = default if default is not None else FakeResponse(200, "")
        self.calls = []
        self.closed = False
        self._lock = threading.Lock()

    def post(self, url, params=None, data=None, headers=None, auth=None, timeout=None):
        with self._lock:
            self.calls.append({
                'url': url,
                'params': dict(params or {}),
                'data': data.decode("utf-8") if isinstance(data, bytes) else data,
                'headers': headers,
                'auth': auth,
                'timeout': timeout,
            })
            response = self.responses.pop(0) if self.responses else self.default

        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


class RecordingClient:
    """Клиент без сети: запоминает запросы и вставки."""

    def __init__(self, rows=None, database="analytics"):
        self.rows = rows or []
        self.queries = []
        self.executed = []
        self.inserted = []
        self.config = ClickHouseConfig(host="localhost", database=database)

    def query(self, sql, params=None, format=None):
        self.queries.append((sql, params))
        return ClickHouseResult(rows=list(self.rows))

    def execute(self, sql):
        self.executed.append(sql)

    def insert_batch(self, table, rows):
        if not rows:
            return
        self.inserted.append((table, list(rows)))


@pytest.fixture
def config():
    return ClickHouseConfig(
        host="ch.example.com",
        database="analytics",
        username="analyst",
        password="secret",
        use_ssl=True
    )


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def client(config, fake_session):
    return ClickHouseClient(config, session=fake_session)


@pytest.fixture
def recording_client():
    return RecordingClient()


@pytest.fixture
def tracker_config():
    return TrackerConfig(batch_size=100, flush_interval=60, table_name="events", max_retries=3, retry_delay=0)


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection refused")
