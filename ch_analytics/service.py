"""
Сборка всех компонентов поверх одного подключения к ClickHouse.
"""

import logging
from typing import Optional

import requests

from ch_analytics.client import ClickHouseClient
from ch_analytics.config import ClickHouseConfig, TrackerConfig
from ch_analytics.exceptions import ConnectionFailure
from ch_analytics.queries import AnalyticsQueries
from ch_analytics.schema import SchemaManager, SyncUtility
from ch_analytics.tracker import EventTracker, DeadLetterHandler


logger = logging.getLogger(__name__)


class ClickHouseService:
    """
    Клиент, трекер событий, аналитические запросы, схема и синхронизация,
    использующие одно подключение.

    Пример:

        with ClickHouseService.from_env() as service:
            service.tracker.track_screen_view('Home', user_id='42')
            print(service.analytics.funnel(['app_opened', 'purchase']))
    """

    def __init__(
        self,
        config: ClickHouseConfig,
        tracker_config: Optional[TrackerConfig] = None,
        session: Optional[requests.Session] = None,
        dead_letter: Optional[DeadLetterHandler] = None
    ):
        """
        Args:
            config: Параметры подключения
            tracker_config: Параметры трекера (по умолчанию пишет в config.events_table)
            session: Готовая сессия requests (необязательно)
            dead_letter: Обработчик недоставленных батчей событий
        """
        self.config = config
        self.client = ClickHouseClient(config, session=session)

        if tracker_config is None:
            tracker_config = TrackerConfig(table_name=config.events_table)
        self.tracker = EventTracker(self.client, config=tracker_config, dead_letter=dead_letter)

        self.analytics = AnalyticsQueries(self.client, events_table=config.events_table)
        self.schema = SchemaManager(self.client)
        self.sync = SyncUtility(self.client)

    @classmethod
    def from_env(cls, **kwargs) -> "ClickHouseService":
        """
        Создает сервис с настройками из переменных окружения и .env.

        Если CLICKHOUSE_TRACKER_TABLE_NAME не задана, трекер пишет в
        CLICKHOUSE_EVENTS_TABLE, из которой читают аналитические запросы.
        """
        config = ClickHouseConfig()
        tracker_config = TrackerConfig()
        if 'table_name' not in tracker_config.model_fields_set:
            tracker_config = tracker_config.model_copy(update={'table_name': config.events_table})
        return cls(config, tracker_config=tracker_config, **kwargs)

    def connect(self) -> "ClickHouseService":
        """
        Проверяет соединение с сервером.

        Raises:
            ConnectionFailure: если сервер не отвечает
        """
        if not self.client.ping():
            raise ConnectionFailure(
                f"Не удалось подключиться к ClickHouse {self.config.host}:{self.config.effective_port}"
            )
        logger.info("Подключение к ClickHouse %s установлено", self.config.base_url)
        return self

    def shutdown(self) -> None:
        """Отправляет оставшиеся события и закрывает соединение."""
        try:
            self.tracker.shutdown()
        finally:
            self.client.close()
        logger.info("Сервис ClickHouse остановлен")

    def __enter__(self) -> "ClickHouseService":
        try:
            return self.connect()
        except ConnectionFailure:
            self.shutdown()
            raise

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
