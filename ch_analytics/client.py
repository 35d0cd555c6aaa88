"""
HTTP-клиент ClickHouse: запросы, вставка строк, DDL и проверка версии сервера.
"""

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Optional, Any, Iterator

import pandas as pd
import requests
from requests.auth import HTTPBasicAuth

from ch_analytics.config import ClickHouseConfig
from ch_analytics.exceptions import (
    ConnectionFailure,
    QueryFailed,
    InsertFailed,
    ExecuteFailed,
    UnsupportedSetting
)
from ch_analytics.query_builder import bind_params, render_literal, validate_identifier


logger = logging.getLogger(__name__)

UNKNOWN_SETTING_MARKER = "Unknown setting"

RECOMMENDED_SETTINGS = {
    # Оценка skip-индексов во время чтения данных (ClickHouse 25.9+)
    'use_skip_indexes_on_data_read': 1,
    'optimize_read_in_order': 1,
}


class ClickHouseFormat(str, Enum):
    """Формат ответа сервера."""

    JSON = "JSON"
    JSON_EACH_ROW = "JSONEachRow"
    JSON_COMPACT = "JSONCompact"
    CSV = "CSV"
    TAB_SEPARATED = "TabSeparated"


@dataclass
class ClickHouseResult:
    """
    Результат запроса.

    Attributes:
        rows: Строки результата в виде словарей
        rows_read: Количество прочитанных сервером строк (только для формата JSON)
        bytes_read: Количество прочитанных байт (только для формата JSON)
        elapsed: Время выполнения запроса в секундах
        meta: Описание столбцов (только для формата JSON)
    """

    rows: List[Dict[str, Any]] = field(default_factory=list)
    rows_read: int = 0
    bytes_read: int = 0
    elapsed: float = 0.0
    meta: Optional[List[Dict[str, Any]]] = None

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def first_or_none(self) -> Optional[Dict[str, Any]]:
        return self.rows[0] if self.rows else None

    def scalar(self) -> Any:
        """Первое значение первой строки (для COUNT, SUM и т.п.)."""
        if not self.rows or not self.rows[0]:
            return None
        return next(iter(self.rows[0].values()))

    def to_dataframe(self) -> pd.DataFrame:
        """Преобразование строк результата в pandas.DataFrame."""
        if self.meta and not self.rows:
            return pd.DataFrame(columns=[column['name'] for column in self.meta])
        return pd.DataFrame(self.rows)

    def __len__(self) -> int:
        return len(self.rows)

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        return iter(self.rows)


def compare_versions(a: str, b: str) -> int:
    """
    Покомпонентное сравнение версий вида "25.9.1.123".

    Нечисловые и отсутствующие компоненты считаются нулями.

    Returns:
        -1 если a < b, 0 если равны, 1 если a > b
    """
    def _parts(version: str) -> List[int]:
        parts = []
        for part in (version or "").strip().split('.'):
            try:
                parts.append(int(part))
            except ValueError:
                parts.append(0)
        return parts

    a_parts = _parts(a)
    b_parts = _parts(b)
    length = max(len(a_parts), len(b_parts))

    for i in range(length):
        a_val = a_parts[i] if i < len(a_parts) else 0
        b_val = b_parts[i] if i < len(b_parts) else 0
        if a_val < b_val:
            return -1
        if a_val > b_val:
            return 1

    return 0


class ClickHouseClient:
    """
    Клиент HTTP-интерфейса ClickHouse.

    Каждый вызов выполняет отдельный POST-запрос, поэтому один клиент можно
    использовать из нескольких потоков без дополнительной синхронизации.
    """

    def __init__(self, config: ClickHouseConfig, session: Optional[requests.Session] = None):
        """
        Args:
            config: Параметры подключения
            session: Готовая сессия requests (необязательно)
        """
        self.config = config
        self.session = session if session is not None else requests.Session()
        self._auth = HTTPBasicAuth(config.username, config.password)
        # Настройки, принятые сервером; передаются с каждым запросом
        self.session_settings: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # Запросы
    # ------------------------------------------------------------------

    def query(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        format: ClickHouseFormat = ClickHouseFormat.JSON_EACH_ROW
    ) -> ClickHouseResult:
        """
        Выполняет запрос на чтение.

        Args:
            sql: Текст запроса с плейсхолдерами вида {name}
            params: Значения плейсхолдеров
            format: Формат ответа сервера

        Returns:
            ClickHouseResult со строками ответа

        Raises:
            QueryFailed: неуспешный статус или тело, не разбираемое в указанном формате
        """
        format = ClickHouseFormat(format)
        processed_sql = bind_params(sql, params)
        started = time.monotonic()

        response = self._post(
            {'database': self.config.database, 'default_format': format.value},
            processed_sql
        )
        elapsed = time.monotonic() - started

        if not _is_success(response):
            raise QueryFailed(f"Query failed: {response.status_code}", response.status_code, response.text)

        try:
            return self._parse_response(response.text, format, elapsed)
        except ValueError as e:
            raise QueryFailed(
                f"Некорректный ответ в формате {format.value}: {e}", response.status_code, response.text
            ) from e

    def insert(self, table: str, row: Dict[str, Any]) -> None:
        """Вставка одной строки."""
        self.insert_batch(table, [row])

    def insert_batch(self, table: str, rows: List[Dict[str, Any]]) -> None:
        """
        Вставка строк одним запросом в формате JSONEachRow.

        Пустой список не приводит к обращению к серверу.

        Args:
            table: Имя таблицы
            rows: Строки для вставки
        """
        if not rows:
            return

        validate_identifier(table)
        body = "\n".join(json.dumps(row, ensure_ascii=False, default=str) for row in rows)

        response = self._post(
            {
                'database': self.config.database,
                'query': f"INSERT INTO {table} FORMAT {ClickHouseFormat.JSON_EACH_ROW.value}"
            },
            body
        )

        if not _is_success(response):
            raise InsertFailed(f"Insert failed: {response.status_code}", response.status_code, response.text)

        logger.debug("Вставлено %d строк в %s", len(rows), table)

    def execute(self, sql: str) -> None:
        """Выполнение DDL или служебной команды без результата."""
        response = self._post({'database': self.config.database}, sql)

        if not _is_success(response):
            raise ExecuteFailed(f"Execute failed: {response.status_code}", response.status_code, response.text)

    def ping(self) -> bool:
        """
        Проверяет соединение, выполняя простой запрос.

        Returns:
            True, если сервер ответил, иначе False (ошибки не пробрасываются)
        """
        try:
            result = self.query("SELECT 1")
            return not result.is_empty
        except Exception as e:
            logger.warning("Ошибка соединения с ClickHouse: %s", e)
            return False

    # ------------------------------------------------------------------
    # Версия сервера и настройки
    # ------------------------------------------------------------------

    def get_server_version(self) -> str:
        """Версия сервера, например "25.9.1.123"."""
        row = self.query("SELECT version() AS version").first_or_none
        if not row:
            return ""
        return str(row.get('version') or "")

    def meets_minimum_version(self, required_version: str) -> bool:
        """
        Проверяет, что версия сервера не ниже требуемой.

        Args:
            required_version: Версия вида "25.9" или "25.9.1"
        """
        return compare_versions(self.get_server_version(), required_version) >= 0

    def set_setting(self, name: str, value: Any) -> None:
        """
        Применяет настройку сессии.

        Raises:
            UnsupportedSetting: если сервер не знает настройку
        """
        validate_identifier(name)
        try:
            self.execute(f"SET {name} = {render_literal(value)}")
        except ExecuteFailed as e:
            if UNKNOWN_SETTING_MARKER in (e.body or ""):
                raise UnsupportedSetting(name, e.status_code, e.body) from e
            raise
        self.session_settings[name] = value

    def apply_settings(self, settings: Dict[str, Any], raise_on_error: bool = False) -> List[str]:
        """
        Применяет несколько настроек, пропуская неподдерживаемые.

        Args:
            settings: Словарь {настройка: значение}
            raise_on_error: Пробрасывать UnsupportedSetting вместо пропуска

        Returns:
            Список успешно примененных настроек
        """
        applied = []

        for name, value in settings.items():
            try:
                self.set_setting(name, value)
                applied.append(name)
            except UnsupportedSetting:
                if raise_on_error:
                    raise
                logger.warning("Настройка %s не поддерживается сервером и не применена", name)

        return applied

    def enable_streaming_indices(self) -> bool:
        """
        Включает потоковую оценку skip-индексов (ClickHouse 25.9+).

        Returns:
            False, если версия сервера не поддерживает настройку
        """
        return bool(self.apply_settings({'use_skip_indexes_on_data_read': 1}))

    def apply_recommended_settings(self) -> List[str]:
        """Рекомендуемые настройки для аналитической нагрузки."""
        return self.apply_settings(dict(RECOMMENDED_SETTINGS))

    def table_exists(self, table: str) -> bool:
        result = self.query(
            "SELECT 1 FROM system.tables WHERE database = {db} AND name = {table}",
            params={'db': self.config.database, 'table': table}
        )
        return not result.is_empty

    # ------------------------------------------------------------------
    # Служебные методы
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "ClickHouseClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _post(self, query_params: Dict[str, Any], body: str) -> requests.Response:
        url_params = {name: render_setting(value) for name, value in self.session_settings.items()}
        url_params.update(query_params)

        logger.debug("POST %s params=%s", self.config.base_url, query_params)
        try:
            return self.session.post(
                self.config.base_url,
                params=url_params,
                data=body.encode("utf-8"),
                headers={'Content-Type': 'text/plain; charset=utf-8'},
                auth=self._auth,
                timeout=self.config.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise ConnectionFailure(
                f"ClickHouse недоступен ({self.config.host}:{self.config.effective_port}): {e}"
            ) from e

    def _parse_response(self, body: str, format: ClickHouseFormat, elapsed: float) -> ClickHouseResult:
        if format is ClickHouseFormat.JSON_EACH_ROW:
            rows = [json.loads(line) for line in body.strip().split("\n") if line.strip()]
            return ClickHouseResult(rows=rows, elapsed=elapsed)

        if format is ClickHouseFormat.JSON:
            payload = json.loads(body)
            if not isinstance(payload, dict):
                raise ValueError("ожидался JSON-объект")
            statistics = payload.get('statistics') or {}
            return ClickHouseResult(
                rows=payload.get('data') or [],
                rows_read=int(statistics.get('rows_read', payload.get('rows_read', 0)) or 0),
                bytes_read=int(statistics.get('bytes_read', payload.get('bytes_read', 0)) or 0),
                elapsed=elapsed,
                meta=payload.get('meta')
            )

        # CSV, TabSeparated и прочие форматы возвращаются как есть
        return ClickHouseResult(rows=[{'raw': body}], elapsed=elapsed)


def format_datetime(value: datetime) -> str:
    """
    Значение для столбца DateTime64(3) в строке JSONEachRow.

    Наивное время считается UTC.

    Returns:
        Строка вида "2025-01-31 12:00:00.000" в UTC
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime('%Y-%m-%d %H:%M:%S.') + f"{value.microsecond // 1000:03d}"


def render_setting(value: Any) -> str:
    """Значение настройки для передачи в параметрах URL."""
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def _is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300
