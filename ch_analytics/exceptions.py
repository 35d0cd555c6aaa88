"""
Исключения пакета ch_analytics.
"""

from typing import Optional


class ClickHouseError(Exception):
    """Базовое исключение пакета."""
    pass


class ConnectionFailure(ClickHouseError):
    """Хранилище недоступно (ошибка транспорта, таймаут)."""
    pass


class ClickHouseHTTPError(ClickHouseError):
    """
    Хранилище вернуло неуспешный HTTP-статус.

    Attributes:
        status_code: HTTP-статус ответа
        body: Тело ответа (текст ошибки ClickHouse)
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body

    def __str__(self) -> str:
        if self.body:
            return f"{self.message}\n{self.body}"
        return self.message


class QueryFailed(ClickHouseHTTPError):
    """Ошибка выполнения SELECT-запроса."""
    pass


class InsertFailed(ClickHouseHTTPError):
    """Ошибка вставки строк."""
    pass


class ExecuteFailed(ClickHouseHTTPError):
    """Ошибка выполнения DDL или SET."""
    pass


class UnsupportedSetting(ExecuteFailed):
    """Сервер не знает указанную настройку (несовместимость версий, а не сбой)."""

    def __init__(self, setting: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(f"Настройка не поддерживается сервером: {setting}", status_code, body)
        self.setting = setting


class TrackerClosed(ClickHouseError):
    """Попытка записать событие после остановки трекера."""
    pass


class InvalidArgument(ClickHouseError, ValueError):
    """Некорректные аргументы аналитического запроса (до обращения к сети)."""
    pass
