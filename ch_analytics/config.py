"""
Настройки подключения к ClickHouse и трекера событий.

Значения читаются из переменных окружения и файла .env через pydantic-settings.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


SECURE_PORT = 8443
PLAIN_PORT = 8123


class ClickHouseConfig(BaseSettings):
    """
    Параметры HTTP-подключения к ClickHouse.

    Переменные окружения: CLICKHOUSE_HOST (обязательна), CLICKHOUSE_PORT,
    CLICKHOUSE_DATABASE, CLICKHOUSE_USERNAME, CLICKHOUSE_PASSWORD,
    CLICKHOUSE_USE_SSL, CLICKHOUSE_TIMEOUT, CLICKHOUSE_EVENTS_TABLE.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLICKHOUSE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    host: str
    port: Optional[int] = None
    database: str = "analytics"
    username: str = "default"
    password: str = ""
    use_ssl: bool = True
    timeout: float = Field(default=30.0, gt=0)
    events_table: str = "events"

    @classmethod
    def cloud(cls, host: str, database: str, username: str, password: str) -> "ClickHouseConfig":
        """Подключение к ClickHouse Cloud (TLS, порт 8443)."""
        return cls(
            host=host,
            port=SECURE_PORT,
            database=database,
            username=username,
            password=password,
            use_ssl=True
        )

    @classmethod
    def local(cls, host: str = "localhost", port: int = PLAIN_PORT, database: str = "default") -> "ClickHouseConfig":
        """Локальный сервер для разработки (без TLS)."""
        return cls(host=host, port=port, database=database, password="", use_ssl=False)

    @property
    def effective_port(self) -> int:
        """Порт с учетом значения по умолчанию для выбранной схемы."""
        if self.port:
            return self.port
        return SECURE_PORT if self.use_ssl else PLAIN_PORT

    @property
    def base_url(self) -> str:
        scheme = "https" if self.use_ssl else "http"
        return f"{scheme}://{self.host}:{self.effective_port}"


class TrackerConfig(BaseSettings):
    """
    Параметры пакетной отправки событий.

    Переменные окружения с префиксом CLICKHOUSE_TRACKER_
    (например, CLICKHOUSE_TRACKER_BATCH_SIZE).
    """

    model_config = SettingsConfigDict(
        env_prefix="CLICKHOUSE_TRACKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Сколько событий должно накопиться для немедленной отправки
    batch_size: int = Field(default=100, ge=1)
    # Период фоновой отправки в секундах
    flush_interval: float = Field(default=10.0, gt=0)
    table_name: str = "events"
    # Общее число попыток отправки одного батча
    max_retries: int = Field(default=3, ge=1)
    # Базовая задержка между попытками в секундах (растет линейно)
    retry_delay: float = Field(default=1.0, ge=0)
