"""
Модуль для сравнения нескольких воронок на одном графике.
"""

import warnings
from collections.abc import Mapping
from typing import List, Optional, Sequence, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.figure import Figure

from ch_analytics.analysis.funnel import FunnelResult
from ch_analytics.visualization.funnel_plot import COLORS


def compare_funnels(
    funnels: Union[Sequence[FunnelResult], Mapping],
    labels: Optional[List[str]] = None,
    title: str = "Сравнение воронок",
    show: bool = False
) -> Optional[Figure]:
    """
    Сравнивает несколько воронок на одном графике.

    Верхний график показывает пользователей на каждом шаге, нижний показывает
    конверсию между шагами и общую конверсию.

    Args:
        funnels: Список FunnelResult или словарь {группа: FunnelResult}
        labels: Метки воронок (для словаря по умолчанию берутся ключи)
        title: Заголовок графика
        show: Вызвать plt.show() после построения и закрыть фигуру

    Returns:
        Figure с графиками или None, если сравнивать нечего. При show=False
        фигура остается открытой в pyplot, ее закрывает вызывающий (plt.close(fig))
    """
    if isinstance(funnels, Mapping):
        if labels is None:
            labels = [str(key) for key in funnels.keys()]
        funnels = list(funnels.values())
    else:
        funnels = list(funnels)
        if labels is None:
            labels = [funnel.group or f"Воронка {i+1}" for i, funnel in enumerate(funnels)]

    if len(funnels) != len(labels):
        raise ValueError("Количество воронок должно соответствовать количеству меток.")

    pairs = []
    for funnel, label in zip(funnels, labels):
        if not funnel.steps:
            warnings.warn(f"Воронка '{label}' пуста. Группа пропущена.")
            continue
        pairs.append((funnel, label))

    if not pairs:
        warnings.warn("Нет данных для сравнения воронок.")
        return None

    # Названия шагов берем из первой воронки
    step_names = pairs[0][0].step_names
    n_steps = max(len(funnel.steps) for funnel, _ in pairs)
    if len(step_names) < n_steps:
        step_names = step_names + [f"Шаг {i+1}" for i in range(len(step_names), n_steps)]

    sns.set_style("whitegrid")
    fig, (ax_users, ax_conversion) = plt.subplots(2, 1, figsize=(14, 12))

    bar_width = 0.8 / len(pairs)
    conversion_data = []

    for i, (funnel, label) in enumerate(pairs):
        users = [step.users for step in funnel.steps]
        positions = np.arange(len(users)) + (i - len(pairs) / 2 + 0.5) * bar_width

        bars = ax_users.bar(
            positions, users, width=bar_width,
            label=f"{label} (конв: {funnel.overall_conversion_rate * 100:.1f}%)",
            color=COLORS[i % len(COLORS)], alpha=0.8
        )

        for bar, value in zip(bars, users):
            ax_users.text(bar.get_x() + bar.get_width() / 2., bar.get_height() + 0.1, f'{value}',
                          ha='center', va='bottom', fontsize=8)

        for j in range(1, len(users)):
            prev_value = users[j - 1]
            conversion_data.append({
                'Группа': label,
                'Переход': f"{step_names[j-1]} → {step_names[j]}",
                'Конверсия (%)': users[j] / prev_value * 100 if prev_value > 0 else 0
            })

        conversion_data.append({
            'Группа': label,
            'Переход': 'Общая конверсия',
            'Конверсия (%)': funnel.overall_conversion_rate * 100
        })

    ax_users.set_title(title, fontsize=14, fontweight='bold')
    ax_users.set_ylabel("Количество пользователей", fontsize=12)
    ax_users.set_xticks(np.arange(n_steps))
    ax_users.set_xticklabels(step_names, rotation=15)
    ax_users.legend(title="Группа", fontsize=10)

    conversion_df = pd.DataFrame(conversion_data)
    sns.barplot(
        data=conversion_df,
        x='Переход',
        y='Конверсия (%)',
        hue='Группа',
        palette=COLORS[:len(pairs)],
        ax=ax_conversion
    )
    for container in ax_conversion.containers:
        ax_conversion.bar_label(container, fmt='%.1f%%', fontsize=8)

    ax_conversion.set_title(f"{title} - Сравнение конверсий между шагами", fontsize=14, fontweight='bold')
    ax_conversion.set_ylabel("Конверсия (%)", fontsize=12)
    ax_conversion.tick_params(axis='x', labelrotation=15)

    fig.tight_layout()
    if show:
        plt.show()
        plt.close(fig)

    return fig
