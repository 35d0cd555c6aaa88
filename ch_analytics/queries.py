"""
Готовые аналитические запросы: активность, воронки, удержание, выручка и пути пользователей.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Dict, Optional, Union, Any, Iterable

from ch_analytics.analysis.funnel import FunnelResult
from ch_analytics.client import ClickHouseClient, ClickHouseResult
from ch_analytics.events import BiEvents
from ch_analytics.exceptions import InvalidArgument
from ch_analytics.query_builder import (
    build_funnel_query,
    normalize_step,
    parse_time_window,
    validate_identifier
)


logger = logging.getLogger(__name__)

FunnelSteps = List[Union[str, Dict[str, Any]]]
TimeWindow = Union[str, int, float, timedelta]


class AnalyticsQueries:
    """
    Набор аналитических запросов к таблице событий.

    Все значения передаются через параметры {name}; имена таблиц
    проверяются как идентификаторы.
    """

    def __init__(self, client: ClickHouseClient, events_table: str = 'events'):
        """
        Args:
            client: Клиент ClickHouse
            events_table: Таблица событий
        """
        self.client = client
        self.events_table = validate_identifier(events_table)

    # ------------------------------------------------------------------
    # Активность
    # ------------------------------------------------------------------

    def dau(self, date: Optional[Union[date, datetime]] = None, days: int = 30) -> ClickHouseResult:
        """
        Ежедневно активные пользователи за days дней до указанной даты включительно.

        Args:
            date: Последний день периода (по умолчанию сегодня, UTC)
            days: Длина периода в днях
        """
        target = date if date is not None else datetime.now(timezone.utc)
        if isinstance(target, datetime):
            target = target.date()

        return self.client.query(f"""
            SELECT
                toDate(timestamp) AS date,
                uniqExact(user_id) AS dau
            FROM {self.events_table}
            WHERE timestamp >= toDate({{start_date}})
              AND timestamp < toDate({{end_date}})
              AND user_id != ''
            GROUP BY date
            ORDER BY date
        """, params={
            'start_date': target - timedelta(days=days),
            'end_date': target + timedelta(days=1),
        })

    def wau(self, weeks: int = 12) -> ClickHouseResult:
        return self.client.query(f"""
            SELECT
                toStartOfWeek(timestamp) AS week,
                uniqExact(user_id) AS wau
            FROM {self.events_table}
            WHERE timestamp >= now() - INTERVAL {{weeks}} WEEK
              AND user_id != ''
            GROUP BY week
            ORDER BY week
        """, params={'weeks': int(weeks)})

    def mau(self, months: int = 12) -> ClickHouseResult:
        return self.client.query(f"""
            SELECT
                toStartOfMonth(timestamp) AS month,
                uniqExact(user_id) AS mau
            FROM {self.events_table}
            WHERE timestamp >= now() - INTERVAL {{months}} MONTH
              AND user_id != ''
            GROUP BY month
            ORDER BY month
        """, params={'months': int(months)})

    def event_counts(self, event_names: List[str], days: int = 7) -> ClickHouseResult:
        """
        Количество событий и уникальных пользователей по именам событий.

        Args:
            event_names: Имена событий (непустой список)
            days: Период анализа в днях
        """
        if not event_names:
            raise InvalidArgument("Нужно указать хотя бы одно событие")

        return self.client.query(f"""
            SELECT
                event_name,
                count() AS event_count,
                uniqExact(user_id) AS unique_users
            FROM {self.events_table}
            WHERE timestamp >= now() - INTERVAL {{days}} DAY
              AND event_name IN {{events}}
            GROUP BY event_name
            ORDER BY event_count DESC
        """, params={'days': int(days), 'events': list(event_names)})

    # ------------------------------------------------------------------
    # Воронки
    # ------------------------------------------------------------------

    def funnel(
        self,
        steps: FunnelSteps,
        days: int = 7,
        window: TimeWindow = '1d',
        filters: Optional[Dict[str, Union[Any, List[Any]]]] = None
    ) -> FunnelResult:
        """
        Воронка по последовательности событий.

        Args:
            steps: Шаги воронки в порядке следования. Каждый элемент может быть
                   строкой с названием события или словарем вида
                   {'name': 'event_name', 'params': {'param1': 'value1'}}
            days: Период анализа в днях
            window: Временное окно прохождения воронки ('30m', '24h', '7d',
                    число секунд или timedelta)
            filters: Словарь фильтров {столбец: значение или список значений}

        Returns:
            FunnelResult с числом пользователей и конверсией по шагам
        """
        step_names = [normalize_step(step)['name'] for step in steps]
        query = build_funnel_query(
            steps=steps,
            days=days,
            window_seconds=parse_time_window(window),
            table=self.events_table,
            filters=filters
        )

        logger.debug("Запрос воронки из %d шагов за %d дней", len(step_names), days)
        result = self.client.query(query)
        return FunnelResult.from_rows(step_names, result.rows)

    def funnel_by_group(
        self,
        steps: FunnelSteps,
        group_by: str,
        days: int = 7,
        window: TimeWindow = '1d',
        filters: Optional[Dict[str, Union[Any, List[Any]]]] = None
    ) -> Dict[str, FunnelResult]:
        """
        Воронка с разбивкой по значению столбца (например, country или app_version).

        Returns:
            Словарь {значение группы: FunnelResult}
        """
        step_names = [normalize_step(step)['name'] for step in steps]
        query = build_funnel_query(
            steps=steps,
            days=days,
            window_seconds=parse_time_window(window),
            table=self.events_table,
            group_by=group_by,
            filters=filters
        )

        result = self.client.query(query)
        return FunnelResult.grouped_from_rows(step_names, result.rows)

    # ------------------------------------------------------------------
    # Удержание
    # ------------------------------------------------------------------

    def cohort_retention(
        self,
        cohort_event: str,
        return_event: str = BiEvents.APP_OPENED,
        weeks: int = 8
    ) -> ClickHouseResult:
        """
        Недельное когортное удержание.

        Когортой пользователя считается неделя первого события cohort_event.

        Returns:
            Строки cohort_week, week_number, users
        """
        return self.client.query(f"""
            WITH cohort AS (
                SELECT
                    user_id,
                    toStartOfWeek(min(timestamp)) AS cohort_week
                FROM {self.events_table}
                WHERE event_name = {{cohort_event}}
                  AND timestamp >= now() - INTERVAL {{weeks}} WEEK
                GROUP BY user_id
            ),
            activity AS (
                SELECT
                    user_id,
                    toStartOfWeek(timestamp) AS activity_week
                FROM {self.events_table}
                WHERE event_name = {{return_event}}
                  AND timestamp >= now() - INTERVAL {{weeks}} WEEK
                GROUP BY user_id, activity_week
            )
            SELECT
                cohort_week,
                dateDiff('week', cohort_week, activity_week) AS week_number,
                uniqExact(c.user_id) AS users
            FROM cohort c
            JOIN activity a ON c.user_id = a.user_id
            WHERE activity_week >= cohort_week
            GROUP BY cohort_week, week_number
            ORDER BY cohort_week, week_number
        """, params={
            'cohort_event': cohort_event,
            'return_event': return_event,
            'weeks': int(weeks),
        })

    def n_day_retention(
        self,
        cohort_event: str,
        return_event: str = BiEvents.APP_OPENED,
        days: Iterable[int] = (1, 7, 30),
        lookback_days: int = 60
    ) -> ClickHouseResult:
        """
        Удержание на N-й день (Day 1, Day 7, Day 30) по дневным когортам.

        Args:
            cohort_event: Событие, определяющее дату когорты
            return_event: Событие возврата
            days: Номера дней
            lookback_days: Глубина выборки в днях

        Returns:
            Строки cohort_date, cohort_size, day_N_retained (последние 30 когорт)
        """
        day_numbers = [int(day) for day in days]
        if not day_numbers:
            raise InvalidArgument("Нужно указать хотя бы один день удержания")
        if any(day < 0 for day in day_numbers):
            raise InvalidArgument("Номер дня удержания не может быть отрицательным")

        retained_flags = ",\n                    ".join(
            f"countIf(dateDiff('day', first_date, return_date) = {day}) > 0 AS retained_day_{day}"
            for day in day_numbers
        )
        retained_sums = ",\n                ".join(
            f"sum(retained_day_{day}) AS day_{day}_retained" for day in day_numbers
        )

        return self.client.query(f"""
            WITH first_events AS (
                SELECT
                    user_id,
                    toDate(min(timestamp)) AS first_date
                FROM {self.events_table}
                WHERE event_name = {{cohort_event}}
                  AND timestamp >= now() - INTERVAL {{lookback}} DAY
                GROUP BY user_id
            ),
            return_events AS (
                SELECT
                    user_id,
                    toDate(timestamp) AS return_date
                FROM {self.events_table}
                WHERE event_name = {{return_event}}
                  AND timestamp >= now() - INTERVAL {{lookback}} DAY
                GROUP BY user_id, return_date
            ),
            user_retention AS (
                SELECT
                    f.user_id,
                    f.first_date,
                    {retained_flags}
                FROM first_events f
                LEFT JOIN return_events r ON f.user_id = r.user_id
                GROUP BY f.user_id, f.first_date
            )
            SELECT
                first_date AS cohort_date,
                count() AS cohort_size,
                {retained_sums}
            FROM user_retention
            GROUP BY first_date
            ORDER BY first_date DESC
            LIMIT 30
        """, params={
            'cohort_event': cohort_event,
            'return_event': return_event,
            'lookback': int(lookback_days),
        })

    # ------------------------------------------------------------------
    # Выручка
    # ------------------------------------------------------------------

    def daily_revenue(self, revenue_table: str = 'orders', days: int = 30) -> ClickHouseResult:
        validate_identifier(revenue_table)
        return self.client.query(f"""
            SELECT
                toDate(created_at) AS date,
                sum(total_amount) AS revenue,
                count() AS order_count,
                uniqExact(user_id) AS unique_customers
            FROM {revenue_table}
            WHERE created_at >= now() - INTERVAL {{days}} DAY
              AND status = 'completed'
            GROUP BY date
            ORDER BY date
        """, params={'days': int(days)})

    def top_products_by_revenue(
        self,
        revenue_table: str = 'order_items',
        limit: int = 10,
        days: int = 30
    ) -> ClickHouseResult:
        validate_identifier(revenue_table)
        return self.client.query(f"""
            SELECT
                product_id,
                product_name,
                sum(price * quantity) AS revenue,
                sum(quantity) AS units_sold,
                uniqExact(order_id) AS order_count
            FROM {revenue_table}
            WHERE created_at >= now() - INTERVAL {{days}} DAY
            GROUP BY product_id, product_name
            ORDER BY revenue DESC
            LIMIT {{limit}}
        """, params={'days': int(days), 'limit': int(limit)})

    def arpu(self, revenue_table: str = 'orders', months: int = 6) -> ClickHouseResult:
        """Средняя выручка на платящего пользователя по месяцам."""
        validate_identifier(revenue_table)
        return self.client.query(f"""
            SELECT
                toStartOfMonth(created_at) AS month,
                sum(total_amount) / uniqExact(user_id) AS arpu,
                sum(total_amount) AS total_revenue,
                uniqExact(user_id) AS paying_users
            FROM {revenue_table}
            WHERE created_at >= now() - INTERVAL {{months}} MONTH
              AND status = 'completed'
            GROUP BY month
            ORDER BY month
        """, params={'months': int(months)})

    # ------------------------------------------------------------------
    # Пути пользователей
    # ------------------------------------------------------------------

    def navigation_paths(self, days: int = 7, min_count: int = 10, flow_name: Optional[str] = None) -> ClickHouseResult:
        """
        Переходы между экранами для диаграммы Санки.

        Args:
            days: Период анализа в днях
            min_count: Минимальное число переходов (отсекает шум)
            flow_name: Только переходы внутри указанного сценария

        Returns:
            Строки from_screen, to_screen, transitions, unique_users
        """
        params = {'days': int(days), 'min_count': int(min_count)}
        flow_condition = ""
        if flow_name is not None:
            flow_condition = "AND JSONExtractString(properties, 'flow_name') = {flow_name}"
            params['flow_name'] = flow_name

        return self.client.query(f"""
            SELECT
                JSONExtractString(properties, 'from_screen') AS from_screen,
                JSONExtractString(properties, 'to_screen') AS to_screen,
                count() AS transitions,
                uniqExact(user_id) AS unique_users
            FROM {self.events_table}
            WHERE event_name = '{BiEvents.NAVIGATION}'
              AND timestamp >= now() - INTERVAL {{days}} DAY
              AND JSONExtractString(properties, 'from_screen') != ''
              {flow_condition}
            GROUP BY from_screen, to_screen
            HAVING transitions >= {{min_count}}
            ORDER BY transitions DESC
        """, params=params)

    def flow_step_conversion(self, flow_name: str, days: int = 7) -> ClickHouseResult:
        """
        Число пользователей и конверсия на каждом шаге сценария.

        Конверсия считается в процентах от пользователей, начавших сценарий.
        """
        return self.client.query(f"""
            WITH flow_users AS (
                SELECT DISTINCT user_id
                FROM {self.events_table}
                WHERE event_name = '{BiEvents.FLOW_STARTED}'
                  AND JSONExtractString(properties, 'flow_name') = {{flow_name}}
                  AND timestamp >= now() - INTERVAL {{days}} DAY
                  AND user_id != ''
            ),
            step_counts AS (
                SELECT
                    JSONExtractInt(properties, 'step_index') AS step_index,
                    JSONExtractString(properties, 'to_screen') AS screen_name,
                    count() AS step_count,
                    uniqExact(user_id) AS users_at_step
                FROM {self.events_table}
                WHERE event_name = '{BiEvents.NAVIGATION}'
                  AND JSONExtractString(properties, 'flow_name') = {{flow_name}}
                  AND timestamp >= now() - INTERVAL {{days}} DAY
                  AND user_id IN (SELECT user_id FROM flow_users)
                GROUP BY step_index, screen_name
            )
            SELECT
                step_index,
                screen_name,
                step_count,
                users_at_step,
                users_at_step * 100.0 / (SELECT count() FROM flow_users) AS conversion_rate
            FROM step_counts
            ORDER BY step_index
        """, params={'flow_name': flow_name, 'days': int(days)})

    def drop_off_points(self, flow_name: Optional[str] = None, days: int = 7, limit: int = 20) -> ClickHouseResult:
        """Экраны, на которых пользователи чаще всего бросают сценарии."""
        params = {'days': int(days), 'limit': int(limit)}
        flow_condition = ""
        if flow_name is not None:
            flow_condition = "AND JSONExtractString(properties, 'flow_name') = {flow_name}"
            params['flow_name'] = flow_name

        return self.client.query(f"""
            SELECT
                JSONExtractString(properties, 'flow_name') AS flow_name,
                JSONExtractString(properties, 'abandoned_at') AS abandoned_at,
                JSONExtractInt(properties, 'step_index') AS step_index,
                count() AS abandon_count,
                uniqExact(user_id) AS unique_users
            FROM {self.events_table}
            WHERE event_name = '{BiEvents.FLOW_ABANDONED}'
              AND timestamp >= now() - INTERVAL {{days}} DAY
              {flow_condition}
            GROUP BY flow_name, abandoned_at, step_index
            ORDER BY abandon_count DESC
            LIMIT {{limit}}
        """, params=params)

    def entry_points(self, days: int = 7) -> ClickHouseResult:
        """
        Источники открытия приложения и первый экран сессии.

        Первым считается экран первого перехода в течение 5 минут после открытия.
        """
        return self.client.query(f"""
            WITH app_opens AS (
                SELECT
                    user_id,
                    session_id,
                    JSONExtractString(properties, 'source') AS source,
                    timestamp
                FROM {self.events_table}
                WHERE event_name = '{BiEvents.APP_OPENED}'
                  AND timestamp >= now() - INTERVAL {{days}} DAY
            ),
            first_screens AS (
                SELECT
                    ao.user_id,
                    ao.session_id,
                    ao.source,
                    argMin(JSONExtractString(e.properties, 'to_screen'), e.timestamp) AS first_screen
                FROM app_opens ao
                LEFT JOIN {self.events_table} e ON ao.user_id = e.user_id
                    AND ao.session_id = e.session_id
                    AND e.event_name = '{BiEvents.NAVIGATION}'
                    AND e.timestamp > ao.timestamp
                    AND e.timestamp < ao.timestamp + INTERVAL 5 MINUTE
                GROUP BY ao.user_id, ao.session_id, ao.source
            )
            SELECT
                source,
                first_screen,
                count() AS session_count,
                uniqExact(user_id) AS unique_users
            FROM first_screens
            GROUP BY source, first_screen
            ORDER BY session_count DESC
        """, params={'days': int(days)})

    def user_journey(self, user_id: str, days: int = 7, session_id: Optional[str] = None) -> ClickHouseResult:
        """
        Последовательность экранов и сценариев одного пользователя (не больше 1000 событий).

        Args:
            user_id: Идентификатор пользователя
            days: Период в днях
            session_id: Только указанная сессия
        """
        params = {'user_id': user_id, 'days': int(days)}
        session_condition = ""
        if session_id is not None:
            session_condition = "AND session_id = {session_id}"
            params['session_id'] = session_id

        journey_events = [
            BiEvents.NAVIGATION,
            BiEvents.SCREEN_VIEW,
            BiEvents.FLOW_STARTED,
            BiEvents.FLOW_COMPLETED,
            BiEvents.FLOW_ABANDONED,
        ]
        params['journey_events'] = journey_events

        return self.client.query(f"""
            SELECT
                session_id,
                timestamp,
                event_name,
                JSONExtractString(properties, 'from_screen') AS from_screen,
                JSONExtractString(properties, 'to_screen') AS to_screen,
                JSONExtractString(properties, 'screen_name') AS screen_name,
                JSONExtractString(properties, 'flow_name') AS flow_name,
                JSONExtractInt(properties, 'step_index') AS step_index
            FROM {self.events_table}
            WHERE user_id = {{user_id}}
              AND timestamp >= now() - INTERVAL {{days}} DAY
              AND event_name IN {{journey_events}}
              {session_condition}
            ORDER BY timestamp
            LIMIT 1000
        """, params=params)

    def flow_completion_rates(self, days: int = 7) -> ClickHouseResult:
        """Доля завершенных и брошенных сценариев (в процентах от начатых)."""
        return self.client.query(f"""
            SELECT
                flow_name,
                sum(started) AS started_count,
                sum(completed) AS completed_count,
                sum(abandoned) AS abandoned_count,
                if(started_count > 0, completed_count * 100.0 / started_count, 0) AS completion_rate,
                if(started_count > 0, abandoned_count * 100.0 / started_count, 0) AS abandon_rate
            FROM (
                SELECT
                    JSONExtractString(properties, 'flow_name') AS flow_name,
                    countIf(event_name = '{BiEvents.FLOW_STARTED}') AS started,
                    countIf(event_name = '{BiEvents.FLOW_COMPLETED}') AS completed,
                    countIf(event_name = '{BiEvents.FLOW_ABANDONED}') AS abandoned
                FROM {self.events_table}
                WHERE event_name IN ('{BiEvents.FLOW_STARTED}', '{BiEvents.FLOW_COMPLETED}', '{BiEvents.FLOW_ABANDONED}')
                  AND timestamp >= now() - INTERVAL {{days}} DAY
                GROUP BY flow_name, user_id
            )
            GROUP BY flow_name
            ORDER BY started_count DESC
        """, params={'days': int(days)})

    def screens_per_session(self, days: int = 7) -> ClickHouseResult:
        return self.client.query(f"""
            SELECT
                toDate(timestamp) AS date,
                avg(screen_count) AS avg_screens_per_session,
                median(screen_count) AS median_screens_per_session,
                max(screen_count) AS max_screens_per_session
            FROM (
                SELECT
                    session_id,
                    min(timestamp) AS timestamp,
                    count() AS screen_count
                FROM {self.events_table}
                WHERE event_name IN ('{BiEvents.SCREEN_VIEW}', '{BiEvents.NAVIGATION}')
                  AND timestamp >= now() - INTERVAL {{days}} DAY
                  AND session_id != ''
                GROUP BY session_id
            )
            GROUP BY date
            ORDER BY date
        """, params={'days': int(days)})

    # ------------------------------------------------------------------
    # Произвольные запросы
    # ------------------------------------------------------------------

    def custom(self, sql: str, params: Optional[Dict[str, Any]] = None) -> ClickHouseResult:
        """
        Выполняет произвольный SQL-запрос.

        Args:
            sql: SQL-запрос с плейсхолдерами вида {name}
            params: Параметры запроса для подстановки (необязательно)
        """
        return self.client.query(sql, params=params)
