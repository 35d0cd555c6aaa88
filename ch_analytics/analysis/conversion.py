"""
Модуль для расчета коэффициентов конверсии между шагами воронки.
"""

import pandas as pd
from typing import Dict, List, Mapping, Optional, Union

from ch_analytics.analysis.funnel import FunnelResult


FunnelInput = Union[FunnelResult, Mapping[str, FunnelResult]]


def _as_groups(funnels: FunnelInput) -> Dict[Optional[str], FunnelResult]:
    """Приводит одну воронку или словарь воронок к словарю {группа: воронка}."""
    if isinstance(funnels, FunnelResult):
        return {funnels.group: funnels}
    return dict(funnels)


def calculate_conversion_rates(funnels: FunnelInput) -> pd.DataFrame:
    """
    Рассчитывает коэффициенты конверсии между шагами воронки.

    Args:
        funnels: Результат funnel() или словарь {группа: FunnelResult},
                 полученный из funnel_by_group()

    Returns:
        DataFrame с одной строкой на группу: stepN_users, stepN_name,
        conversion_i_to_j и total_conversion (в процентах)
    """
    groups = _as_groups(funnels)
    results = []
    max_steps = 0

    for group, funnel in groups.items():
        result = {}
        if group is not None:
            result['group_value'] = group

        result['total_users'] = funnel.total_users
        users = [step.users for step in funnel.steps]
        max_steps = max(max_steps, len(users))

        for i, step in enumerate(funnel.steps):
            result[f'step{i+1}_users'] = step.users
            result[f'step{i+1}_name'] = step.name

        # Конверсия между соседними шагами
        for i in range(1, len(users)):
            prev_value = users[i - 1]
            if prev_value > 0:
                result[f'conversion_{i}_to_{i+1}'] = round(users[i] / prev_value * 100, 2)
            else:
                result[f'conversion_{i}_to_{i+1}'] = 0

        result['total_conversion'] = round(funnel.overall_conversion_rate * 100, 2)
        results.append(result)

    result_df = pd.DataFrame(results)
    if result_df.empty:
        return result_df

    # Переупорядочиваем столбцы для лучшей читаемости
    columns_order: List[str] = ['group_value'] if 'group_value' in result_df.columns else []
    columns_order.append('total_users')
    for step_num in range(1, max_steps + 1):
        columns_order.extend([f'step{step_num}_users', f'step{step_num}_name'])
    columns_order.extend(f'conversion_{i}_to_{i+1}' for i in range(1, max_steps))
    columns_order.append('total_conversion')

    result_df = result_df[[col for col in columns_order if col in result_df.columns]]

    if 'group_value' in result_df.columns:
        result_df = result_df.sort_values(by='group_value').reset_index(drop=True)

    return result_df
