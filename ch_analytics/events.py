"""
Стандартные имена BI-событий и ключи их свойств.

Имена событий записываются в snake_case, например:

    tracker.track(BiEvents.SCREEN_VIEW, properties={BiEventProperties.SCREEN_NAME: 'Home'})
"""


class BiEvents:
    """Имена событий."""

    # Жизненный цикл приложения
    APP_OPENED = 'app_opened'
    APP_CLOSED = 'app_closed'
    APP_RESUMED = 'app_resumed'
    SESSION_START = 'session_start'
    SESSION_END = 'session_end'

    # Анализ путей (диаграмма Санки)
    NAVIGATION = 'navigation'
    FLOW_STARTED = 'flow_started'
    FLOW_COMPLETED = 'flow_completed'
    FLOW_ABANDONED = 'flow_abandoned'

    # Экраны и элементы интерфейса
    SCREEN_VIEW = 'screen_view'
    BUTTON_CLICK = 'button_click'
    FEATURE_USED = 'feature_used'

    # Идентификация пользователя
    USER_IDENTIFIED = 'user_identified'
    USER_LOGOUT = 'user_logout'
    USER_PROPERTIES_UPDATED = 'user_properties_updated'

    # Ошибки
    ERROR = 'error'
    API_ERROR = 'api_error'

    # Производительность
    TIMING = 'timing'
    API_CALL = 'api_call'

    SEARCH = 'search'

    # Коммерция
    PRODUCT_VIEW = 'product_view'
    ADD_TO_CART = 'add_to_cart'
    REMOVE_FROM_CART = 'remove_from_cart'
    CHECKOUT_STARTED = 'checkout_started'
    PURCHASE = 'purchase'
    CONVERSION = 'conversion'

    # Контент
    CONTENT_VIEW = 'content_view'
    SHARE = 'share'

    # Push-уведомления
    PUSH_RECEIVED = 'push_received'
    PUSH_CLICKED = 'push_clicked'


class BiEventProperties:
    """Ключи словаря properties."""

    SCREEN_NAME = 'screen_name'
    USER_ID = 'user_id'
    SESSION_ID = 'session_id'
    TIMESTAMP = 'timestamp'

    # Пути
    FROM_SCREEN = 'from_screen'
    TO_SCREEN = 'to_screen'
    TRIGGER = 'trigger'
    STEP_INDEX = 'step_index'
    FLOW_NAME = 'flow_name'
    ENTRY_POINT = 'entry_point'
    ABANDONED_AT = 'abandoned_at'
    TOTAL_STEPS = 'total_steps'
    DURATION_MS = 'duration_ms'
    REASON = 'reason'
    SUCCESS = 'success'

    # Жизненный цикл
    SOURCE = 'source'
    CAMPAIGN = 'campaign'
    REFERRER = 'referrer'
    LAST_SCREEN = 'last_screen'
    SCREEN_COUNT = 'screen_count'
    SESSION_DURATION_MS = 'session_duration_ms'
    BACKGROUND_DURATION_MS = 'background_duration_ms'

    # Ошибки
    ERROR_TYPE = 'error_type'
    ERROR_MESSAGE = 'error_message'
    STACK_TRACE = 'stack_trace'
    ENDPOINT = 'endpoint'
    STATUS_CODE = 'status_code'

    # Производительность
    CATEGORY = 'category'
    VARIABLE = 'variable'
    LABEL = 'label'
    METHOD = 'method'

    QUERY = 'query'
    RESULT_COUNT = 'result_count'

    # Коммерция
    PRODUCT_ID = 'product_id'
    PRODUCT_NAME = 'product_name'
    PRICE = 'price'
    QUANTITY = 'quantity'
    CURRENCY = 'currency'
    VALUE = 'value'
    ORDER_ID = 'order_id'
    TOTAL_AMOUNT = 'total_amount'
    ITEM_COUNT = 'item_count'
    ITEMS = 'items'
    CONVERSION_TYPE = 'conversion_type'

    # Контент
    CONTENT_ID = 'content_id'
    CONTENT_TYPE = 'content_type'
    CONTENT_NAME = 'content_name'
    SHARE_METHOD = 'share_method'

    # Push
    CAMPAIGN_ID = 'campaign_id'
    TITLE = 'title'
    ACTION = 'action'

    BUTTON_NAME = 'button_name'
    FEATURE_NAME = 'feature_name'


class NavigationTrigger:
    """Чем вызван переход между экранами."""

    BUTTON = 'button'
    TAB = 'tab'
    BACK = 'back'
    DEEP_LINK = 'deep_link'
    PUSH = 'push'
    SWIPE = 'swipe'
    AUTO = 'auto'


class AppOpenSource:
    """Источник открытия приложения."""

    ORGANIC = 'organic'
    DEEP_LINK = 'deep_link'
    PUSH = 'push'
    WIDGET = 'widget'
    SHORTCUT = 'shortcut'
