"""
Создание таблиц аналитики и синхронизация данных из операционной БД.
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Any, Mapping, Optional

from ch_analytics.client import ClickHouseClient, ClickHouseResult, format_datetime
from ch_analytics.query_builder import validate_identifier


logger = logging.getLogger(__name__)

DEFAULT_EVENTS_TTL_DAYS = 180
# Заказы хранятся два года
DEFAULT_ORDERS_TTL_DAYS = 365 * 2


class SchemaManager:
    """
    Создание и обслуживание таблиц ClickHouse.

    Все операторы CREATE идемпотентны (IF NOT EXISTS).
    """

    def __init__(self, client: ClickHouseClient):
        self.client = client

    def create_events_table(self, table_name: str = 'events', ttl_days: int = DEFAULT_EVENTS_TTL_DAYS) -> None:
        """
        Таблица событий с bloom-filter индексами по event_name и session_id.

        Args:
            table_name: Имя таблицы
            ttl_days: Срок хранения событий в днях
        """
        validate_identifier(table_name)
        self.client.execute(f"""
            CREATE TABLE IF NOT EXISTS {table_name} (
                event_id UUID DEFAULT generateUUIDv4(),
                event_name LowCardinality(String),

                user_id String,
                session_id String,
                anonymous_id String,

                timestamp DateTime64(3) DEFAULT now64(3),
                server_time DateTime64(3) DEFAULT now64(3),

                -- Устройство и приложение
                device_type LowCardinality(String) DEFAULT '',
                os LowCardinality(String) DEFAULT '',
                os_version LowCardinality(String) DEFAULT '',
                app_version LowCardinality(String) DEFAULT '',

                country LowCardinality(String) DEFAULT '',
                region LowCardinality(String) DEFAULT '',

                -- Свойства события в JSON
                properties String DEFAULT '{{}}' CODEC(ZSTD(1)),

                _inserted_at DateTime64(3) DEFAULT now64(3)
            )
            ENGINE = MergeTree()
            PARTITION BY toYYYYMM(timestamp)
            ORDER BY (user_id, timestamp, event_id)
            TTL toDateTime(timestamp) + INTERVAL {int(ttl_days)} DAY
            SETTINGS index_granularity = 8192
        """)

        self.client.execute(
            f"ALTER TABLE {table_name} "
            "ADD INDEX IF NOT EXISTS idx_event_name event_name TYPE bloom_filter GRANULARITY 4"
        )
        self.client.execute(
            f"ALTER TABLE {table_name} "
            "ADD INDEX IF NOT EXISTS idx_session session_id TYPE bloom_filter GRANULARITY 4"
        )
        logger.info("Таблица событий %s готова (TTL %d дней)", table_name, ttl_days)

    def create_orders_table(self, table_name: str = 'orders', ttl_days: int = DEFAULT_ORDERS_TTL_DAYS) -> None:
        """Таблица заказов для анализа выручки."""
        validate_identifier(table_name)
        self.client.execute(f"""
            CREATE TABLE IF NOT EXISTS {table_name} (
                order_id String,
                external_order_id String DEFAULT '',
                user_id String,

                total_amount Decimal64(2),
                discount_amount Decimal64(2) DEFAULT 0,
                tax_amount Decimal64(2) DEFAULT 0,
                currency LowCardinality(String) DEFAULT 'KRW',

                -- pending, completed, cancelled, refunded
                status LowCardinality(String),

                payment_method LowCardinality(String) DEFAULT '',
                payment_provider LowCardinality(String) DEFAULT '',

                created_at DateTime64(3),
                completed_at Nullable(DateTime64(3)),

                _synced_at DateTime64(3) DEFAULT now64(3)
            )
            ENGINE = ReplacingMergeTree(_synced_at)
            PARTITION BY toYYYYMM(created_at)
            ORDER BY (user_id, created_at, order_id)
            TTL toDateTime(created_at) + INTERVAL {int(ttl_days)} DAY
        """)
        logger.info("Таблица заказов %s готова", table_name)

    def create_order_items_table(self, table_name: str = 'order_items',
                                 ttl_days: int = DEFAULT_ORDERS_TTL_DAYS) -> None:
        validate_identifier(table_name)
        self.client.execute(f"""
            CREATE TABLE IF NOT EXISTS {table_name} (
                order_id String,
                item_id String,

                product_id String,
                product_name String,
                category LowCardinality(String) DEFAULT '',

                price Decimal64(2),
                quantity UInt32,
                discount Decimal64(2) DEFAULT 0,

                created_at DateTime64(3),

                _synced_at DateTime64(3) DEFAULT now64(3)
            )
            ENGINE = ReplacingMergeTree(_synced_at)
            PARTITION BY toYYYYMM(created_at)
            ORDER BY (order_id, item_id)
            TTL toDateTime(created_at) + INTERVAL {int(ttl_days)} DAY
        """)
        logger.info("Таблица позиций заказов %s готова", table_name)

    def create_users_table(self, table_name: str = 'users') -> None:
        """Справочник пользователей (последняя версия строки по _synced_at)."""
        validate_identifier(table_name)
        self.client.execute(f"""
            CREATE TABLE IF NOT EXISTS {table_name} (
                user_id String,

                email String DEFAULT '',
                name String DEFAULT '',

                plan LowCardinality(String) DEFAULT 'free',
                user_type LowCardinality(String) DEFAULT '',

                created_at DateTime64(3),
                first_seen_at DateTime64(3),
                last_seen_at DateTime64(3),

                properties String DEFAULT '{{}}' CODEC(ZSTD(1)),
                _synced_at DateTime64(3) DEFAULT now64(3)
            )
            ENGINE = ReplacingMergeTree(_synced_at)
            ORDER BY user_id
        """)
        logger.info("Таблица пользователей %s готова", table_name)

    def create_daily_aggregation_mv(self, source_table: str = 'events', mv_name: str = 'events_daily_mv') -> None:
        """Материализованное представление с дневным числом событий по пользователям."""
        validate_identifier(source_table)
        validate_identifier(mv_name)
        self.client.execute(f"""
            CREATE MATERIALIZED VIEW IF NOT EXISTS {mv_name}
            ENGINE = SummingMergeTree()
            PARTITION BY toYYYYMM(date)
            ORDER BY (date, event_name, user_id)
            AS SELECT
                toDate(timestamp) AS date,
                event_name,
                user_id,
                count() AS event_count
            FROM {source_table}
            GROUP BY date, event_name, user_id
        """)
        logger.info("Материализованное представление %s готово", mv_name)

    def initialize_schema(self) -> None:
        """Создает все таблицы по умолчанию."""
        self.create_events_table()
        self.create_orders_table()
        self.create_order_items_table()
        self.create_users_table()
        self.create_daily_aggregation_mv()

    def drop_table(self, table_name: str) -> None:
        """Удаляет таблицу (данные не восстанавливаются)."""
        validate_identifier(table_name)
        self.client.execute(f"DROP TABLE IF EXISTS {table_name}")
        logger.warning("Таблица %s удалена", table_name)

    def list_tables(self) -> List[str]:
        result = self.client.query(
            "SELECT name FROM system.tables WHERE database = {db} ORDER BY name",
            params={'db': self.client.config.database}
        )
        return [str(row['name']) for row in result.rows]

    def describe_table(self, table_name: str) -> ClickHouseResult:
        validate_identifier(table_name)
        return self.client.query(f"DESCRIBE TABLE {table_name}")


def _pick(record: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Первое непустое значение по одному из ключей (camelCase или snake_case)."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return default


def _to_timestamp(value: Any, default: Optional[datetime] = None) -> str:
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, str) and value:
        return value
    return format_datetime(default or datetime.now(timezone.utc))


class SyncUtility:
    """
    Пакетная выгрузка заказов и пользователей из операционной БД в ClickHouse.

    Записи могут использовать ключи в camelCase (totalAmount) или snake_case
    (total_amount).
    """

    def __init__(self, client: ClickHouseClient):
        self.client = client

    def sync_orders(self, orders: List[Mapping[str, Any]], table_name: str = 'orders') -> int:
        """
        Выгружает заказы.

        Args:
            orders: Записи заказов
            table_name: Таблица назначения

        Returns:
            Количество выгруженных строк
        """
        if not orders:
            return 0

        rows = []
        for order in orders:
            completed_at = _pick(order, 'completedAt', 'completed_at')
            rows.append({
                'order_id': str(_pick(order, 'id', 'order_id', default='')),
                'external_order_id': str(_pick(order, 'externalId', 'external_order_id', default='')),
                'user_id': str(_pick(order, 'userId', 'user_id', default='')),
                'total_amount': _pick(order, 'totalAmount', 'total_amount', default=0),
                'discount_amount': _pick(order, 'discountAmount', 'discount_amount', default=0),
                'tax_amount': _pick(order, 'taxAmount', 'tax_amount', default=0),
                'currency': _pick(order, 'currency', default='KRW'),
                'status': _pick(order, 'status', default='pending'),
                'payment_method': _pick(order, 'paymentMethod', 'payment_method', default=''),
                'payment_provider': _pick(order, 'paymentProvider', 'payment_provider', default=''),
                'created_at': _to_timestamp(_pick(order, 'createdAt', 'created_at')),
                'completed_at': _to_timestamp(completed_at) if completed_at is not None else None,
            })

        self.client.insert_batch(table_name, rows)
        logger.info("Выгружено %d заказов в %s", len(rows), table_name)
        return len(rows)

    def sync_users(self, users: List[Mapping[str, Any]], table_name: str = 'users') -> int:
        """
        Выгружает профили пользователей.

        first_seen_at по умолчанию равно created_at, а last_seen_at текущему времени.

        Returns:
            Количество выгруженных строк
        """
        if not users:
            return 0

        rows = []
        for user in users:
            created_at = _pick(user, 'createdAt', 'created_at')
            properties = _pick(user, 'properties')
            row = {
                'user_id': str(_pick(user, 'id', 'user_id', default='')),
                'email': _pick(user, 'email', default=''),
                'name': _pick(user, 'name', default=''),
                'plan': _pick(user, 'plan', default='free'),
                'user_type': _pick(user, 'userType', 'user_type', default=''),
                'created_at': _to_timestamp(created_at),
                'first_seen_at': _to_timestamp(_pick(user, 'firstSeenAt', 'first_seen_at', default=created_at)),
                'last_seen_at': _to_timestamp(_pick(user, 'lastSeenAt', 'last_seen_at')),
            }
            if properties is not None:
                row['properties'] = properties if isinstance(properties, str) else json.dumps(
                    dict(properties), ensure_ascii=False, default=str
                )
            rows.append(row)

        self.client.insert_batch(table_name, rows)
        logger.info("Выгружено %d пользователей в %s", len(rows), table_name)
        return len(rows)
