import json

import pytest
import requests

from ch_analytics.config import TrackerConfig
from ch_analytics.exceptions import ConnectionFailure
from ch_analytics.service import ClickHouseService
from tests.conftest import FakeResponse, FakeSession


@pytest.fixture
def tracker_config():
    return TrackerConfig(batch_size=10, flush_interval=60, max_retries=1, retry_delay=0)


def test_components_share_client(config, tracker_config):
    service = ClickHouseService(config, tracker_config=tracker_config, session=FakeSession())
    try:
        assert service.analytics.client is service.client
        assert service.schema.client is service.client
        assert service.sync.client is service.client
    finally:
        service.shutdown()


def test_connect_and_shutdown_flushes_events(config, tracker_config):
    session = FakeSession(responses=[FakeResponse(200, '{"1":1}\n')])

    with ClickHouseService(config, tracker_config=tracker_config, session=session) as service:
        service.tracker.track_screen_view("Home", user_id="42")

    insert = session.calls[-1]
    assert insert['params']['query'] == "INSERT INTO events FORMAT JSONEachRow"
    row = json.loads(insert['data'])
    assert row['event_name'] == "screen_view"
    assert json.loads(row['properties']) == {'screen_name': 'Home'}
    assert session.closed
    assert service.tracker.closed


def test_connect_failure(config, tracker_config):
    session = FakeSession(responses=[requests.ConnectionError("refused")])

    with pytest.raises(ConnectionFailure):
        with ClickHouseService(config, tracker_config=tracker_config, session=session):
            pass

    assert session.closed


def test_default_tracker_table_follows_events_table(config, monkeypatch):
    monkeypatch.delenv("CLICKHOUSE_TRACKER_TABLE_NAME", raising=False)
    config.events_table = "app_events"
    service = ClickHouseService(config, session=FakeSession())
    try:
        assert service.tracker.config.table_name == "app_events"
        assert service.analytics.events_table == "app_events"
    finally:
        service.shutdown()


def test_from_env(monkeypatch):
    monkeypatch.setenv("CLICKHOUSE_HOST", "env-host")
    monkeypatch.setenv("CLICKHOUSE_TRACKER_BATCH_SIZE", "25")
    service = ClickHouseService.from_env(session=FakeSession())
    try:
        assert service.config.host == "env-host"
        assert service.tracker.config.batch_size == 25
    finally:
        service.shutdown()


def test_from_env_tracker_writes_to_events_table(monkeypatch):
    monkeypatch.setenv("CLICKHOUSE_HOST", "env-host")
    monkeypatch.setenv("CLICKHOUSE_EVENTS_TABLE", "app_events")
    monkeypatch.delenv("CLICKHOUSE_TRACKER_TABLE_NAME", raising=False)
    service = ClickHouseService.from_env(session=FakeSession())
    try:
        assert service.analytics.events_table == "app_events"
        assert service.tracker.config.table_name == "app_events"
    finally:
        service.shutdown()


def test_from_env_explicit_tracker_table_wins(monkeypatch):
    monkeypatch.setenv("CLICKHOUSE_HOST", "env-host")
    monkeypatch.setenv("CLICKHOUSE_EVENTS_TABLE", "app_events")
    monkeypatch.setenv("CLICKHOUSE_TRACKER_TABLE_NAME", "raw_events")
    service = ClickHouseService.from_env(session=FakeSession())
    try:
        assert service.analytics.events_table == "app_events"
        assert service.tracker.config.table_name == "raw_events"
    finally:
        service.shutdown()
