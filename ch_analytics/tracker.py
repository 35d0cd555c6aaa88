"""
Пакетная отправка событий в ClickHouse.

События копятся в буфере и отправляются батчами: сразу после достижения
batch_size, по таймеру раз в flush_interval секунд и при остановке трекера.
Одновременно выполняется не больше одной отправки.
"""

import json
import logging
import threading
import time
import uuid
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Union

from ch_analytics.client import ClickHouseClient, format_datetime
from ch_analytics.config import TrackerConfig
from ch_analytics.events import BiEvents, BiEventProperties
from ch_analytics.exceptions import ClickHouseError, TrackerClosed


logger = logging.getLogger(__name__)

# Поля контекста, которые пишутся в отдельные столбцы таблицы событий
CONTEXT_FIELDS = ('device_type', 'os', 'os_version', 'app_version', 'country', 'region')

DeadLetterHandler = Callable[[List["Event"], Exception], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _compact(**values: Any) -> Dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


@dataclass(frozen=True)
class Event:
    """
    Аналитическое событие. После создания не изменяется.
    """

    event_name: str
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    anonymous_id: Optional[str] = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    context: Optional[Mapping[str, Any]] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=_utc_now)

    def __post_init__(self):
        object.__setattr__(self, 'properties', MappingProxyType(dict(self.properties or {})))
        if self.context is not None:
            object.__setattr__(self, 'context', MappingProxyType(dict(self.context)))

    def to_row(self) -> Dict[str, Any]:
        """
        Строка для вставки в таблицу событий в формате JSONEachRow.

        Returns:
            Словарь со значениями столбцов
        """
        row = {
            'event_id': self.event_id,
            'event_name': self.event_name,
            'user_id': self.user_id or '',
            'session_id': self.session_id or '',
            'anonymous_id': self.anonymous_id or '',
            'timestamp': format_datetime(self.timestamp),
            # Столбец properties имеет тип String
            'properties': json.dumps(dict(self.properties), ensure_ascii=False, default=str),
        }

        if self.context is not None:
            for name in CONTEXT_FIELDS:
                row[name] = str(self.context.get(name) or '')

        return row


class JsonlDeadLetter:
    """
    Сохраняет батчи, которые не удалось доставить, в файл JSON Lines.

    Каждая строка файла: строка события плюс поля error и failed_at.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def __call__(self, events: List[Event], error: Exception) -> None:
        failed_at = _utc_now().isoformat()
        lines = []
        for event in events:
            record = event.to_row()
            record['error'] = str(error)
            record['failed_at'] = failed_at
            lines.append(json.dumps(record, ensure_ascii=False))

        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write("\n".join(lines) + "\n")


class EventTracker:
    """
    Трекер событий с пакетной отправкой в ClickHouse.

    track() не выполняет сетевых вызовов: отправка идет в фоновом потоке,
    а shutdown() дожидается ее и отправляет остаток буфера.
    """

    def __init__(
        self,
        client: ClickHouseClient,
        config: Optional[TrackerConfig] = None,
        dead_letter: Optional[DeadLetterHandler] = None
    ):
        """
        Args:
            client: Клиент ClickHouse
            config: Параметры батчей и повторов (по умолчанию из окружения)
            dead_letter: Обработчик батчей, не доставленных после всех попыток
        """
        self._client = client
        self.config = config if config is not None else TrackerConfig()
        self.dead_letter = dead_letter

        # Общий контекст, добавляется ко всем событиям
        self.common_context: Dict[str, Any] = {}

        self._buffer: Deque[Event] = deque()
        self._lock = threading.Lock()
        self._flushing = False
        # Не больше одной фоновой отправки в очереди исполнителя
        self._flush_scheduled = False
        self._closed = False

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ch-analytics-flush")
        self._stop = threading.Event()
        self._timer = threading.Thread(target=self._run_timer, name="ch-analytics-flush-timer", daemon=True)
        self._timer.start()

    # ------------------------------------------------------------------
    # Запись событий
    # ------------------------------------------------------------------

    def track(
        self,
        event_name: str,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        anonymous_id: Optional[str] = None,
        properties: Optional[Mapping[str, Any]] = None,
        context: Optional[Mapping[str, Any]] = None
    ) -> Event:
        """
        Добавляет событие в буфер.

        При достижении batch_size отправка запускается в фоне, вызов не ждет ее.

        Returns:
            Созданное событие
        """
        merged_context = {**self.common_context, **(context or {})}

        event = Event(
            event_name=event_name,
            user_id=user_id,
            session_id=session_id,
            anonymous_id=anonymous_id,
            properties=properties or {},
            context=merged_context or None
        )

        with self._lock:
            if self._closed:
                raise TrackerClosed("Трекер остановлен, событие не может быть записано")
            self._buffer.append(event)
            if len(self._buffer) >= self.config.batch_size and not self._flush_scheduled:
                self._flush_scheduled = True
                self._executor.submit(self._flush_in_background)

        return event

    def track_screen_view(self, screen_name: str, user_id: Optional[str] = None,
                          session_id: Optional[str] = None,
                          properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.SCREEN_VIEW,
            user_id=user_id,
            session_id=session_id,
            properties={BiEventProperties.SCREEN_NAME: screen_name, **(properties or {})}
        )

    def track_button_click(self, button_name: str, screen_name: Optional[str] = None,
                           user_id: Optional[str] = None, session_id: Optional[str] = None,
                           properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.BUTTON_CLICK,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(button_name=button_name, screen_name=screen_name),
                **(properties or {})
            }
        )

    def track_conversion(self, conversion_type: str, value: Optional[float] = None,
                         currency: Optional[str] = None, user_id: Optional[str] = None,
                         session_id: Optional[str] = None,
                         properties: Optional[Mapping[str, Any]] = None) -> Event:
        """Конверсия: регистрация, покупка и т.п."""
        return self.track(
            BiEvents.CONVERSION,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(conversion_type=conversion_type, value=value, currency=currency),
                **(properties or {})
            }
        )

    # Жизненный цикл приложения

    def track_app_opened(self, source: Optional[str] = None, campaign: Optional[str] = None,
                         referrer: Optional[str] = None, user_id: Optional[str] = None,
                         session_id: Optional[str] = None,
                         properties: Optional[Mapping[str, Any]] = None) -> Event:
        """
        Запуск приложения.

        Args:
            source: Источник открытия (см. AppOpenSource)
            campaign: UTM-кампания
            referrer: Откуда пришел пользователь
        """
        return self.track(
            BiEvents.APP_OPENED,
            user_id=user_id,
            session_id=session_id,
            properties={**_compact(source=source, campaign=campaign, referrer=referrer), **(properties or {})}
        )

    def track_app_closed(self, session_duration_ms: Optional[int] = None, last_screen: Optional[str] = None,
                         screen_count: Optional[int] = None, user_id: Optional[str] = None,
                         session_id: Optional[str] = None,
                         properties: Optional[Mapping[str, Any]] = None) -> Event:
        """
        Закрытие приложения или уход в фон.

        Args:
            session_duration_ms: Длительность сессии
            last_screen: Последний экран (для анализа точек выхода)
            screen_count: Сколько экранов просмотрено за сессию
        """
        return self.track(
            BiEvents.APP_CLOSED,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(
                    session_duration_ms=session_duration_ms,
                    last_screen=last_screen,
                    screen_count=screen_count
                ),
                **(properties or {})
            }
        )

    def track_app_resumed(self, background_duration_ms: Optional[int] = None, user_id: Optional[str] = None,
                          session_id: Optional[str] = None,
                          properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.APP_RESUMED,
            user_id=user_id,
            session_id=session_id,
            properties={**_compact(background_duration_ms=background_duration_ms), **(properties or {})}
        )

    # Пути пользователя

    def track_navigation(self, to_screen: str, from_screen: Optional[str] = None, trigger: Optional[str] = None,
                         step_index: Optional[int] = None, flow_name: Optional[str] = None,
                         user_id: Optional[str] = None, session_id: Optional[str] = None,
                         properties: Optional[Mapping[str, Any]] = None) -> Event:
        """
        Переход между экранами (данные для диаграммы Санки).

        Args:
            to_screen: Экран назначения
            from_screen: Предыдущий экран (None для точки входа)
            trigger: Чем вызван переход (см. NavigationTrigger)
            step_index: Номер шага внутри сценария
            flow_name: Название сценария, например checkout
        """
        return self.track(
            BiEvents.NAVIGATION,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(
                    to_screen=to_screen,
                    from_screen=from_screen,
                    trigger=trigger,
                    step_index=step_index,
                    flow_name=flow_name
                ),
                **(properties or {})
            }
        )

    def track_flow_started(self, flow_name: str, entry_point: Optional[str] = None,
                           user_id: Optional[str] = None, session_id: Optional[str] = None,
                           properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.FLOW_STARTED,
            user_id=user_id,
            session_id=session_id,
            properties={**_compact(flow_name=flow_name, entry_point=entry_point), **(properties or {})}
        )

    def track_flow_completed(self, flow_name: str, total_steps: Optional[int] = None,
                             duration_ms: Optional[int] = None, success: Optional[bool] = None,
                             user_id: Optional[str] = None, session_id: Optional[str] = None,
                             properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.FLOW_COMPLETED,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(flow_name=flow_name, total_steps=total_steps, duration_ms=duration_ms, success=success),
                **(properties or {})
            }
        )

    def track_flow_abandoned(self, flow_name: str, abandoned_at: str, step_index: int,
                             reason: Optional[str] = None, user_id: Optional[str] = None,
                             session_id: Optional[str] = None,
                             properties: Optional[Mapping[str, Any]] = None) -> Event:
        """
        Выход из сценария на промежуточном шаге.

        Args:
            flow_name: Название сценария
            abandoned_at: Экран, на котором пользователь ушел
            step_index: Номер шага
            reason: Причина (если известна)
        """
        return self.track(
            BiEvents.FLOW_ABANDONED,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(flow_name=flow_name, abandoned_at=abandoned_at, step_index=step_index, reason=reason),
                **(properties or {})
            }
        )

    # Ошибки

    def track_error(self, error_type: str, message: str, stack_trace: Optional[str] = None,
                    screen_name: Optional[str] = None, user_id: Optional[str] = None,
                    session_id: Optional[str] = None,
                    properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.ERROR,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(error_type=error_type, error_message=message,
                           stack_trace=stack_trace, screen_name=screen_name),
                **(properties or {})
            }
        )

    def track_api_error(self, endpoint: str, status_code: int, error_message: Optional[str] = None,
                        duration_ms: Optional[int] = None, user_id: Optional[str] = None,
                        session_id: Optional[str] = None,
                        properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.API_ERROR,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(endpoint=endpoint, status_code=status_code,
                           error_message=error_message, duration_ms=duration_ms),
                **(properties or {})
            }
        )

    # Пользователь

    def set_user_properties(self, user_properties: Mapping[str, Any], user_id: Optional[str] = None,
                            session_id: Optional[str] = None) -> Event:
        return self.track(
            BiEvents.USER_PROPERTIES_UPDATED,
            user_id=user_id,
            session_id=session_id,
            properties=user_properties
        )

    def identify(self, user_id: str, session_id: Optional[str] = None,
                 traits: Optional[Mapping[str, Any]] = None) -> Event:
        """Связывает анонимного пользователя с учетной записью после входа."""
        return self.track(BiEvents.USER_IDENTIFIED, user_id=user_id, session_id=session_id, properties=traits)

    def track_logout(self, user_id: Optional[str] = None, session_id: Optional[str] = None,
                     properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(BiEvents.USER_LOGOUT, user_id=user_id, session_id=session_id, properties=properties)

    # Производительность

    def track_timing(self, category: str, variable: str, duration_ms: int, label: Optional[str] = None,
                     user_id: Optional[str] = None, session_id: Optional[str] = None,
                     properties: Optional[Mapping[str, Any]] = None) -> Event:
        """
        Длительность операции.

        Args:
            category: Категория (page_load, api, render)
            variable: Что измерялось (home_screen, user_list)
            duration_ms: Длительность в миллисекундах
            label: Дополнительная метка
        """
        return self.track(
            BiEvents.TIMING,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(category=category, variable=variable, duration_ms=duration_ms, label=label),
                **(properties or {})
            }
        )

    def track_api_call(self, endpoint: str, method: str, duration_ms: int, status_code: Optional[int] = None,
                       success: Optional[bool] = None, user_id: Optional[str] = None,
                       session_id: Optional[str] = None,
                       properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.API_CALL,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(endpoint=endpoint, method=method, duration_ms=duration_ms,
                           status_code=status_code, success=success),
                **(properties or {})
            }
        )

    def track_search(self, query: str, result_count: Optional[int] = None, category: Optional[str] = None,
                     user_id: Optional[str] = None, session_id: Optional[str] = None,
                     properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.SEARCH,
            user_id=user_id,
            session_id=session_id,
            properties={**_compact(query=query, result_count=result_count, category=category), **(properties or {})}
        )

    # Коммерция

    def track_product_view(self, product_id: str, product_name: Optional[str] = None,
                           price: Optional[float] = None, category: Optional[str] = None,
                           user_id: Optional[str] = None, session_id: Optional[str] = None,
                           properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.PRODUCT_VIEW,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(product_id=product_id, product_name=product_name, price=price, category=category),
                **(properties or {})
            }
        )

    def track_add_to_cart(self, product_id: str, quantity: int = 1, price: Optional[float] = None,
                          product_name: Optional[str] = None, user_id: Optional[str] = None,
                          session_id: Optional[str] = None,
                          properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.ADD_TO_CART,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(product_id=product_id, quantity=quantity, price=price, product_name=product_name),
                **(properties or {})
            }
        )

    def track_remove_from_cart(self, product_id: str, quantity: int = 1, user_id: Optional[str] = None,
                               session_id: Optional[str] = None,
                               properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.REMOVE_FROM_CART,
            user_id=user_id,
            session_id=session_id,
            properties={**_compact(product_id=product_id, quantity=quantity), **(properties or {})}
        )

    def track_checkout_started(self, total_amount: Optional[float] = None, item_count: Optional[int] = None,
                               currency: Optional[str] = None, user_id: Optional[str] = None,
                               session_id: Optional[str] = None,
                               properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.CHECKOUT_STARTED,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(total_amount=total_amount, item_count=item_count, currency=currency),
                **(properties or {})
            }
        )

    def track_purchase(self, order_id: str, amount: float, currency: Optional[str] = None,
                       items: Optional[List[Mapping[str, Any]]] = None, user_id: Optional[str] = None,
                       session_id: Optional[str] = None,
                       properties: Optional[Mapping[str, Any]] = None) -> Event:
        """
        Завершенная покупка.

        Args:
            order_id: Идентификатор заказа
            amount: Сумма платежа
            currency: Код валюты (USD, KRW)
            items: Список купленных товаров
        """
        return self.track(
            BiEvents.PURCHASE,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(order_id=order_id, total_amount=amount, currency=currency,
                           items=[dict(item) for item in items] if items is not None else None),
                **(properties or {})
            }
        )

    # Контент

    def track_content_view(self, content_id: str, content_type: str, content_name: Optional[str] = None,
                           user_id: Optional[str] = None, session_id: Optional[str] = None,
                           properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.CONTENT_VIEW,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(content_id=content_id, content_type=content_type, content_name=content_name),
                **(properties or {})
            }
        )

    def track_share(self, content_type: str, method: str, content_id: Optional[str] = None,
                    user_id: Optional[str] = None, session_id: Optional[str] = None,
                    properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.SHARE,
            user_id=user_id,
            session_id=session_id,
            properties={
                **_compact(content_type=content_type, share_method=method, content_id=content_id),
                **(properties or {})
            }
        )

    # Push-уведомления

    def track_push_received(self, campaign_id: str, title: Optional[str] = None,
                            user_id: Optional[str] = None, session_id: Optional[str] = None,
                            properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.PUSH_RECEIVED,
            user_id=user_id,
            session_id=session_id,
            properties={**_compact(campaign_id=campaign_id, title=title), **(properties or {})}
        )

    def track_push_clicked(self, campaign_id: str, action: Optional[str] = None,
                           user_id: Optional[str] = None, session_id: Optional[str] = None,
                           properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.PUSH_CLICKED,
            user_id=user_id,
            session_id=session_id,
            properties={**_compact(campaign_id=campaign_id, action=action), **(properties or {})}
        )

    def track_feature_used(self, feature_name: str, screen_name: Optional[str] = None,
                           user_id: Optional[str] = None, session_id: Optional[str] = None,
                           properties: Optional[Mapping[str, Any]] = None) -> Event:
        return self.track(
            BiEvents.FEATURE_USED,
            user_id=user_id,
            session_id=session_id,
            properties={**_compact(feature_name=feature_name, screen_name=screen_name), **(properties or {})}
        )

    # ------------------------------------------------------------------
    # Отправка буфера
    # ------------------------------------------------------------------

    @property
    def buffer_size(self) -> int:
        with self._lock:
            return len(self._buffer)

    def flush(self) -> None:
        """
        Отправляет буфер батчами по batch_size событий.

        Если отправка уже идет, вызов ничего не делает: активная отправка
        выгребает буфер до конца. Батч, не доставленный после max_retries
        попыток, передается в dead_letter (если задан) и отбрасывается;
        оставшиеся батчи продолжают отправляться, после чего первая ошибка
        пробрасывается вызывающему.
        """
        with self._lock:
            if self._flushing:
                return
            self._flushing = True

        first_error: Optional[Exception] = None
        try:
            while True:
                with self._lock:
                    if not self._buffer:
                        # Флаг снимается под той же блокировкой, что и проверка буфера
                        self._flushing = False
                        break
                    size = min(self.config.batch_size, len(self._buffer))
                    batch = [self._buffer.popleft() for _ in range(size)]

                try:
                    self._send_batch(batch)
                except ClickHouseError as e:
                    self._handle_failed_batch(batch, e)
                    if first_error is None:
                        first_error = e
        finally:
            with self._lock:
                self._flushing = False

        if first_error is not None:
            raise first_error

    def _send_batch(self, batch: List[Event]) -> None:
        rows = [event.to_row() for event in batch]
        max_retries = self.config.max_retries

        for attempt in range(1, max_retries + 1):
            try:
                self._client.insert_batch(self.config.table_name, rows)
                logger.debug("Отправлено %d событий в %s", len(rows), self.config.table_name)
                return
            except ClickHouseError as e:
                if attempt >= max_retries:
                    logger.error(
                        "Не удалось отправить батч из %d событий после %d попыток: %s",
                        len(rows), max_retries, e
                    )
                    raise
                delay = self.config.retry_delay * attempt
                logger.warning(
                    "Ошибка отправки батча (попытка %d из %d), повтор через %.1f с: %s",
                    attempt, max_retries, delay, e
                )
                time.sleep(delay)

    def _handle_failed_batch(self, batch: List[Event], error: Exception) -> None:
        if self.dead_letter is None:
            return
        try:
            self.dead_letter(batch, error)
        except Exception:
            logger.exception("Обработчик dead_letter не смог сохранить %d событий", len(batch))

    def _flush_in_background(self) -> None:
        with self._lock:
            self._flush_scheduled = False
        try:
            self.flush()
        except Exception:
            logger.exception("Фоновая отправка событий завершилась ошибкой")

    def _run_timer(self) -> None:
        while not self._stop.wait(self.config.flush_interval):
            try:
                self.flush()
            except Exception:
                logger.exception("Периодическая отправка событий завершилась ошибкой")

    # ------------------------------------------------------------------
    # Остановка
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        """
        Останавливает таймер, дожидается фоновых отправок и отправляет остаток буфера.

        Ошибка финальной отправки пробрасывается. Повторный вызов ничего не делает.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._stop.set()
        if threading.current_thread() is not self._timer:
            self._timer.join()
        self._executor.shutdown(wait=True)

        logger.info("Остановка трекера, в буфере %d событий", self.buffer_size)
        self.flush()

    def __enter__(self) -> "EventTracker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


class SessionManager:
    """
    Идентификатор сессии с тайм-аутом неактивности.
    """

    def __init__(self, session_timeout: float = 30 * 60, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            session_timeout: Тайм-аут неактивности в секундах
            clock: Источник монотонного времени в секундах
        """
        self.session_timeout = session_timeout
        self._clock = clock
        self._session_id: Optional[str] = None
        self._last_activity: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def session_id(self) -> str:
        """Текущая сессия; новая создается, если прошлая истекла."""
        with self._lock:
            now = self._clock()
            if self._session_id is not None and self._last_activity is not None:
                if now - self._last_activity > self.session_timeout:
                    self._session_id = None

            if self._session_id is None:
                self._session_id = str(uuid.uuid4())
            self._last_activity = now
            return self._session_id

    def reset_session(self) -> None:
        """Сброс сессии (например, при выходе пользователя)."""
        with self._lock:
            self._session_id = None
            self._last_activity = None

    def touch(self) -> None:
        with self._lock:
            self._last_activity = self._clock()
