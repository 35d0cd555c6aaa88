"""
Результат анализа воронки.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Iterable, Mapping

import numpy as np
import pandas as pd


@dataclass(frozen=True)
class FunnelStep:
    """
    Шаг воронки.

    Attributes:
        name: Название события шага
        users: Пользователи, дошедшие как минимум до этого шага
        conversion_rate: Доля от вошедших в воронку (0..1)
        dropoff_rate: Доля потерянных относительно предыдущего шага (0..1)
    """

    name: str
    users: int
    conversion_rate: float
    dropoff_rate: float


@dataclass(frozen=True)
class FunnelResult:
    """
    Воронка, рассчитанная по уровням windowFunnel.

    Уровень пользователя равен номеру последнего шага, до которого он дошел
    по порядку внутри окна (0 означает, что он не вошел в воронку).
    """

    steps: List[FunnelStep] = field(default_factory=list)
    group: Optional[str] = None

    @classmethod
    def from_level_counts(
        cls,
        step_names: List[str],
        level_counts: Mapping[int, Any],
        group: Optional[str] = None
    ) -> "FunnelResult":
        """
        Расчет шагов по числу пользователей на каждом уровне.

        Args:
            step_names: Названия шагов в порядке следования
            level_counts: Словарь {уровень: число пользователей}; значения
                могут быть строками (UInt64 в JSONEachRow)
            group: Значение группы (для воронок с группировкой)

        Returns:
            FunnelResult
        """
        n_steps = len(step_names)
        counts = np.zeros(n_steps, dtype=np.int64)
        for level, users in level_counts.items():
            level = int(level)
            if 1 <= level <= n_steps:
                counts[level - 1] += int(users)

        # До шага i дошли все пользователи с уровнем >= i
        users_at_step = np.cumsum(counts[::-1])[::-1]
        entrants = int(users_at_step[0]) if n_steps else 0

        steps = []
        for i, name in enumerate(step_names):
            users = int(users_at_step[i])
            conversion_rate = users / entrants if entrants > 0 else 0.0
            previous = int(users_at_step[i - 1]) if i > 0 else 0
            dropoff_rate = 1 - users / previous if i > 0 and previous > 0 else 0.0
            steps.append(FunnelStep(name, users, conversion_rate, dropoff_rate))

        return cls(steps=steps, group=group)

    @classmethod
    def from_rows(cls, step_names: List[str], rows: Iterable[Mapping[str, Any]]) -> "FunnelResult":
        """Расчет по строкам ответа с полями level и users."""
        level_counts: Dict[int, int] = {}
        for row in rows:
            level = int(row['level'])
            level_counts[level] = level_counts.get(level, 0) + int(row['users'])
        return cls.from_level_counts(step_names, level_counts)

    @classmethod
    def grouped_from_rows(
        cls,
        step_names: List[str],
        rows: Iterable[Mapping[str, Any]]
    ) -> Dict[str, "FunnelResult"]:
        """Расчет воронок по группам из строк с полями group_value, level и users."""
        grouped: Dict[str, Dict[int, int]] = {}
        for row in rows:
            level_counts = grouped.setdefault(str(row['group_value']), {})
            level = int(row['level'])
            level_counts[level] = level_counts.get(level, 0) + int(row['users'])

        return {
            group: cls.from_level_counts(step_names, level_counts, group=group)
            for group, level_counts in grouped.items()
        }

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    @property
    def total_users(self) -> int:
        """Число пользователей, вошедших в воронку."""
        return self.steps[0].users if self.steps else 0

    @property
    def overall_conversion_rate(self) -> float:
        """Конверсия от первого шага до последнего."""
        if not self.steps:
            return 0.0
        first = self.steps[0].users
        return self.steps[-1].users / first if first > 0 else 0.0

    def to_dataframe(self) -> pd.DataFrame:
        """Таблица с одной строкой на шаг."""
        return pd.DataFrame(
            [
                {
                    'step': i + 1,
                    'step_name': step.name,
                    'users': step.users,
                    'conversion_rate': step.conversion_rate,
                    'dropoff_rate': step.dropoff_rate,
                }
                for i, step in enumerate(self.steps)
            ],
            columns=['step', 'step_name', 'users', 'conversion_rate', 'dropoff_rate']
        )

    def __str__(self) -> str:
        title = "Funnel Analysis" + (f" [{self.group}]" if self.group is not None else "")
        lines = [f"{title}:"]
        for step in self.steps:
            lines.append(
                f"  {step.name}: {step.users} users "
                f"({step.conversion_rate * 100:.1f}% conversion, "
                f"{step.dropoff_rate * 100:.1f}% dropoff)"
            )
        lines.append(f"Overall conversion: {self.overall_conversion_rate * 100:.1f}%")
        return "\n".join(lines)
