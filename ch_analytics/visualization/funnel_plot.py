"""
Модуль для визуализации воронки конверсии.
"""

import warnings
from typing import Optional

import matplotlib.pyplot as plt
import seaborn as sns
from matplotlib.figure import Figure

from ch_analytics.analysis.funnel import FunnelResult


COLORS = ['#3498db', '#2ecc71', '#e74c3c', '#f39c12', '#9b59b6', '#1abc9c', '#e67e22', '#34495e']


def visualize_funnel(funnel: FunnelResult, title: str = "Воронка пользователей", show: bool = False) -> Optional[Figure]:
    """
    Строит столбчатую диаграмму воронки.

    Args:
        funnel: Результат funnel()
        title: Заголовок графика
        show: Вызвать plt.show() после построения и закрыть фигуру

    Returns:
        Figure с графиком или None, если в воронке нет шагов. При show=False
        фигура остается открытой в pyplot, ее закрывает вызывающий (plt.close(fig))
    """
    if not funnel.steps:
        warnings.warn("Воронка не содержит шагов. Визуализация невозможна.")
        return None

    users = [step.users for step in funnel.steps]
    step_names = funnel.step_names

    sns.set_style("whitegrid")
    fig, ax = plt.subplots(figsize=(12, 6))

    bars = ax.bar(range(len(users)), users, width=0.6, color=[COLORS[i % len(COLORS)] for i in range(len(users))])

    for i, (bar, step) in enumerate(zip(bars, funnel.steps)):
        height = bar.get_height()
        ax.text(bar.get_x() + bar.get_width() / 2., height + 0.1, f'{step.users}',
                ha='center', va='bottom', fontweight='bold')

        # Конверсия относительно предыдущего шага
        if i > 0:
            conversion = (1 - step.dropoff_rate) * 100 if users[i - 1] > 0 else 0
            ax.text(bar.get_x() - 0.15, (height + users[i - 1]) / 2, f"{conversion:.1f}%",
                    ha='center', va='center', fontsize=9, rotation=90, color='#2c3e50', fontweight='bold')

    ax.set_xticks(range(len(users)))
    ax.set_xticklabels(step_names, rotation=15, ha='center')
    ax.set_ylabel('Количество пользователей', fontsize=12)
    ax.set_title(title, fontsize=14, fontweight='bold')

    if len(users) > 1:
        fig.text(0.5, 0.01, f'Общая конверсия: {funnel.overall_conversion_rate * 100:.1f}%',
                 ha='center', fontsize=12, fontweight='bold')

    fig.tight_layout()
    if show:
        plt.show()
        plt.close(fig)

    return fig
