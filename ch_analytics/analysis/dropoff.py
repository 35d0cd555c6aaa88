"""
Модуль для анализа оттока пользователей между шагами воронки.
"""

from typing import Optional

import pandas as pd

from ch_analytics.analysis.conversion import FunnelInput, _as_groups
from ch_analytics.analysis.funnel import FunnelResult


def analyze_dropoffs(funnels: FunnelInput) -> pd.DataFrame:
    """
    Анализирует отток пользователей между шагами воронки и определяет критические точки.

    Args:
        funnels: Результат funnel() или словарь {группа: FunnelResult}

    Returns:
        DataFrame с одной строкой на переход между шагами; is_critical
        отмечает переход с наибольшим оттоком в каждой группе
    """
    dropoff_data = []
    for group, funnel in _as_groups(funnels).items():
        dropoff_data.extend(_calculate_dropoffs(funnel, group))

    dropoff_df = pd.DataFrame(dropoff_data)
    if dropoff_df.empty:
        return dropoff_df

    dropoff_df['is_critical'] = False
    if 'group_value' in dropoff_df.columns:
        for group in dropoff_df['group_value'].unique():
            group_indices = dropoff_df.index[dropoff_df['group_value'] == group]
            max_dropoff_idx = dropoff_df.loc[group_indices, 'dropoff_percent'].idxmax()
            dropoff_df.loc[max_dropoff_idx, 'is_critical'] = True
    else:
        dropoff_df.loc[dropoff_df['dropoff_percent'].idxmax(), 'is_critical'] = True

    return dropoff_df


def _calculate_dropoffs(funnel: FunnelResult, group_value: Optional[str] = None) -> list:
    """
    Расчет оттока для одной воронки.

    Returns:
        Список словарей с данными об оттоке
    """
    dropoff_data = []
    initial_users = funnel.total_users

    for current, following in zip(funnel.steps, funnel.steps[1:]):
        dropoff_count = current.users - following.users

        # Процент отпавших от текущего шага
        dropoff_percent = dropoff_count / current.users * 100 if current.users > 0 else 0
        # Процент отпавших от общего количества в начале воронки
        dropoff_percent_total = dropoff_count / initial_users * 100 if initial_users > 0 else 0

        data = {
            'step_from': current.name,
            'step_to': following.name,
            'users_before': current.users,
            'users_after': following.users,
            'dropoff_count': dropoff_count,
            'dropoff_percent': round(dropoff_percent, 2),
            'dropoff_percent_total': round(dropoff_percent_total, 2),
            'retention_percent': round(100 - dropoff_percent, 2)
        }

        if group_value is not None:
            data['group_value'] = group_value

        dropoff_data.append(data)

    return dropoff_data
