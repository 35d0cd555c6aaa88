"""
Модуль для построения SQL-запросов к ClickHouse.

Все значения подставляются в текст запроса через render_literal, это
единственная функция экранирования в пакете.
"""

import json
import re
from collections.abc import Mapping
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Dict, Optional, Union, Any

from ch_analytics.exceptions import InvalidArgument


# Максимальное число условий, которое принимает windowFunnel
MAX_FUNNEL_STEPS = 32

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def render_literal(value: Any) -> str:
    """
    Преобразует значение Python в литерал SQL для ClickHouse.

    Правила:
        None -> NULL; bool -> 1/0; числа без изменений;
        datetime -> строка ISO-8601 в UTC; date -> 'YYYY-MM-DD';
        list/tuple/set -> [a, b, c]; словарь -> JSON-строка;
        остальное -> строка в одинарных кавычках, кавычки и обратные слэши удваиваются.

    Args:
        value: Значение параметра

    Returns:
        Текст литерала
    """
    if value is None:
        return "NULL"
    # bool проверяется раньше int: bool является подклассом int
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return "'" + value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z'"
    if isinstance(value, date):
        return f"'{value.isoformat()}'"
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return "[" + ", ".join(render_literal(item) for item in items) + "]"
    if isinstance(value, Mapping):
        return _quote_string(json.dumps(dict(value), ensure_ascii=False, default=str))
    return _quote_string(str(value))


def _quote_string(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("'", "''")
    return f"'{escaped}'"


def bind_params(sql: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Подставляет параметры вида {name} в текст запроса.

    Плейсхолдеры без соответствующего ключа остаются как есть.

    Args:
        sql: Текст запроса с плейсхолдерами
        params: Словарь значений

    Returns:
        Запрос с подставленными литералами
    """
    if not params:
        return sql

    def _replace(match: "re.Match[str]") -> str:
        name = match.group(1)
        if name not in params:
            return match.group(0)
        return render_literal(params[name])

    return _PLACEHOLDER_RE.sub(_replace, sql)


def validate_identifier(name: str) -> str:
    """
    Проверяет, что строка является простым идентификатором (column или db.table).

    Raises:
        InvalidArgument: если строка содержит недопустимые символы
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise InvalidArgument(f"Недопустимый идентификатор: {name!r}")
    return name


def parse_time_window(window: Union[str, int, float, timedelta]) -> int:
    """
    Преобразование временного окна в секунды.

    Args:
        window: Строка ('30m', '8h', '24h', '7d'), число секунд или timedelta

    Returns:
        Количество секунд

    Raises:
        InvalidArgument: если окно нельзя разобрать
    """
    if isinstance(window, timedelta):
        return int(window.total_seconds())
    if isinstance(window, bool):
        raise InvalidArgument(f"Недопустимое временное окно: {window!r}")
    if isinstance(window, (int, float)):
        return int(window)
    if not isinstance(window, str) or len(window.strip()) < 2:
        raise InvalidArgument(f"Недопустимое временное окно: {window!r}")

    window = window.strip()
    unit = window[-1].lower()
    try:
        value = int(window[:-1])
    except ValueError:
        raise InvalidArgument(f"Недопустимое временное окно: {window!r}") from None

    if unit == 'h':
        return value * 3600
    elif unit == 'd':
        return value * 86400
    elif unit == 'm':
        return value * 60
    elif unit == 's':
        return value
    else:
        raise InvalidArgument(f"Неподдерживаемая единица времени: {unit}. Используйте 's', 'm', 'h' или 'd'.")


def build_filter_conditions(filters: Dict[str, Union[Any, List[Any]]]) -> str:
    """
    Создание условий фильтрации для SQL запроса.

    Args:
        filters: Словарь фильтров в формате {столбец: значение или список значений}

    Returns:
        Строка с условиями WHERE для SQL запроса
    """
    conditions = []

    for field, value in filters.items():
        validate_identifier(field)
        if isinstance(value, (list, tuple, set)):
            conditions.append(f"{field} IN {render_literal(list(value))}")
        else:
            conditions.append(f"{field} = {render_literal(value)}")

    return " AND ".join(conditions)


def normalize_step(step: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Нормализует шаг воронки, преобразуя строку в словарь.

    Args:
        step: Название события или словарь {'name': ..., 'params': {...}}

    Returns:
        Новый словарь с ключами 'name' и 'params'
    """
    if isinstance(step, str):
        return {'name': step, 'params': {}}
    elif isinstance(step, Mapping) and 'name' in step:
        return {'name': step['name'], 'params': dict(step.get('params') or {})}
    else:
        raise InvalidArgument("Шаг воронки должен быть строкой или словарем с ключом 'name'")


def build_step_condition(step: Dict[str, Any]) -> str:
    """
    Создает условие для шага воронки с учетом свойств события.

    Параметры шага сравниваются со значениями из JSON-столбца properties.

    Args:
        step: Нормализованный шаг с ключами 'name' и 'params'

    Returns:
        SQL условие для windowFunnel
    """
    conditions = [f"event_name = {render_literal(step['name'])}"]

    for param, value in step['params'].items():
        key = render_literal(str(param))
        if isinstance(value, (list, tuple, set)):
            conditions.append(f"JSONExtractString(properties, {key}) IN {render_literal([str(v) for v in value])}")
        else:
            conditions.append(f"JSONExtractString(properties, {key}) = {render_literal(str(value))}")

    if len(conditions) == 1:
        return conditions[0]
    return "(" + " AND ".join(conditions) + ")"


def build_funnel_query(
    steps: List[Union[str, Dict[str, Any]]],
    days: int,
    window_seconds: int,
    table: str,
    group_by: Optional[str] = None,
    filters: Optional[Dict[str, Union[Any, List[Any]]]] = None
) -> str:
    """
    Формирование запроса воронки на основе windowFunnel.

    Сервер сам определяет для каждого пользователя максимальный уровень
    последовательности шагов внутри окна; запрос возвращает число
    пользователей на каждом уровне.

    Args:
        steps: Шаги воронки в порядке следования
        days: Период анализа в днях
        window_seconds: Временное окно windowFunnel в секундах
        table: Таблица событий
        group_by: Столбец для группировки результатов
        filters: Словарь фильтров, применяемых ко всем событиям

    Returns:
        SQL запрос для выполнения в ClickHouse
    """
    if not steps:
        raise InvalidArgument("Воронка должна содержать хотя бы один шаг")
    if len(steps) > MAX_FUNNEL_STEPS:
        raise InvalidArgument(f"Воронка не может содержать больше {MAX_FUNNEL_STEPS} шагов")
    if window_seconds <= 0:
        raise InvalidArgument("Временное окно воронки должно быть положительным")

    validate_identifier(table)
    normalized_steps = [normalize_step(step) for step in steps]
    step_conditions = ", ".join(build_step_condition(step) for step in normalized_steps)

    # Уникальные имена событий в порядке появления
    step_names = list(dict.fromkeys(step['name'] for step in normalized_steps))

    # Значения подставляются сразу: повторная подстановка через bind_params
    # могла бы изменить фигурные скобки внутри строковых литералов
    where_clauses = [
        f"timestamp >= now() - INTERVAL {int(days)} DAY",
        f"event_name IN {render_literal(step_names)}",
        "user_id != ''"
    ]
    if filters:
        where_clauses.append(build_filter_conditions(filters))

    group_select = ""
    outer_group = ""
    if group_by:
        validate_identifier(group_by)
        group_select = f"toString({group_by}) AS group_value,\n            "
        outer_group = "group_value, "

    query = f"""
    SELECT
        {outer_group}level,
        count() AS users
    FROM (
        SELECT
            {group_select}user_id,
            windowFunnel({int(window_seconds)})(timestamp, {step_conditions}) AS level
        FROM {table}
        WHERE {' AND '.join(where_clauses)}
        GROUP BY {outer_group}user_id
    )
    GROUP BY {outer_group}level
    ORDER BY {outer_group}level
    """

    return query
