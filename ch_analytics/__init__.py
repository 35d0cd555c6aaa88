"""
ch_analytics - сбор событий и продуктовая аналитика на ClickHouse.
"""

__version__ = "0.1.0"

from ch_analytics.config import ClickHouseConfig, TrackerConfig
from ch_analytics.exceptions import (
    ClickHouseError,
    ConnectionFailure,
    ClickHouseHTTPError,
    QueryFailed,
    InsertFailed,
    ExecuteFailed,
    UnsupportedSetting,
    TrackerClosed,
    InvalidArgument
)
from ch_analytics.client import ClickHouseClient, ClickHouseResult, ClickHouseFormat
from ch_analytics.events import BiEvents, BiEventProperties, NavigationTrigger, AppOpenSource
from ch_analytics.tracker import Event, EventTracker, SessionManager, JsonlDeadLetter
from ch_analytics.analysis.funnel import FunnelResult, FunnelStep
from ch_analytics.queries import AnalyticsQueries
from ch_analytics.schema import SchemaManager, SyncUtility
from ch_analytics.service import ClickHouseService

__all__ = [
    "ClickHouseConfig",
    "TrackerConfig",
    "ClickHouseError",
    "ConnectionFailure",
    "ClickHouseHTTPError",
    "QueryFailed",
    "InsertFailed",
    "ExecuteFailed",
    "UnsupportedSetting",
    "TrackerClosed",
    "InvalidArgument",
    "ClickHouseClient",
    "ClickHouseResult",
    "ClickHouseFormat",
    "BiEvents",
    "BiEventProperties",
    "NavigationTrigger",
    "AppOpenSource",
    "Event",
    "EventTracker",
    "SessionManager",
    "JsonlDeadLetter",
    "FunnelResult",
    "FunnelStep",
    "AnalyticsQueries",
    "SchemaManager",
    "SyncUtility",
    "ClickHouseService"
]
