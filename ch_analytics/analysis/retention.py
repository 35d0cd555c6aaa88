"""
Модуль для обработки результатов когортного анализа удержания.
"""

from typing import Iterable, Tuple, Union

import numpy as np
import pandas as pd

from ch_analytics.client import ClickHouseResult


def _to_frame(result: Union[ClickHouseResult, pd.DataFrame]) -> pd.DataFrame:
    if isinstance(result, pd.DataFrame):
        return result.copy()
    return result.to_dataframe()


def retention_matrix(result: Union[ClickHouseResult, pd.DataFrame]) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Строит матрицу удержания по результату cohort_retention().

    Args:
        result: Строки с полями cohort_week, week_number и users

    Returns:
        Кортеж (пользователи, доли): строки соответствуют неделям когорт, столбцы номеру
        недели; доли считаются от нулевой недели когорты
    """
    df = _to_frame(result)
    if df.empty:
        empty = pd.DataFrame()
        return empty, empty.copy()

    # UInt64 приходит строкой в JSONEachRow
    df['week_number'] = df['week_number'].astype(int)
    df['users'] = df['users'].astype(int)

    users = df.pivot_table(
        index='cohort_week',
        columns='week_number',
        values='users',
        aggfunc='sum',
        fill_value=0
    ).sort_index()
    users.columns.name = 'week_number'

    if 0 in users.columns:
        base = users[0].replace(0, np.nan)
        rates = users.div(base, axis=0).fillna(0.0).round(4)
    else:
        rates = pd.DataFrame(0.0, index=users.index, columns=users.columns)

    return users, rates


def n_day_retention_rates(
    result: Union[ClickHouseResult, pd.DataFrame],
    days: Iterable[int] = (1, 7, 30)
) -> pd.DataFrame:
    """
    Добавляет к результату n_day_retention() доли удержания.

    Args:
        result: Строки с полями cohort_date, cohort_size и day_N_retained
        days: Дни, для которых считается удержание

    Returns:
        DataFrame со столбцами day_N_rate = day_N_retained / cohort_size
    """
    df = _to_frame(result)
    if df.empty:
        return df

    df['cohort_size'] = df['cohort_size'].astype(int)
    cohort_size = df['cohort_size'].replace(0, np.nan)

    for day in days:
        retained_col = f'day_{day}_retained'
        if retained_col not in df.columns:
            raise ValueError(f"Столбец {retained_col} не найден в результате")
        df[retained_col] = df[retained_col].astype(int)
        df[f'day_{day}_rate'] = (df[retained_col] / cohort_size).fillna(0.0).round(4)

    return df
