"""
Подпакет для визуализации данных воронки.
"""

from ch_analytics.visualization.funnel_plot import visualize_funnel
from ch_analytics.visualization.comparison_plot import compare_funnels

__all__ = ["visualize_funnel", "compare_funnels"]
